# JSON:API filtering (https://jsonapi.org/format/#fetching-filtering)
#
# The filter query parameters are compiled into a tree of conditions and groups:
#
#   filter[title]=foo                                       shorthand condition: title = foo
#   filter[a][path]=author.name                             explicit condition
#   filter[a][operator]=STARTS_WITH
#   filter[a][value]=J
#   filter[a][group]=or-group                               member of the "or-group" group
#   filter[or-group][group][conjunction]=OR                 group
#   filter[or-group][group][group]=parent                   nested group
#
# Conditions and groups may reference their parent group before it is declared,
# the tree is built with a worklist that is repeated until every item is placed.
#
from collections import deque
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
import contentapi
from .config import get_int_config
from .errors import ParseError

AND = "AND"
OR = "OR"
CONJUNCTIONS = (AND, OR)
ROOT_ID = "@root"

OPERATORS = (
    "=",
    "<>",
    "!=",
    ">",
    ">=",
    "<",
    "<=",
    "STARTS_WITH",
    "CONTAINS",
    "ENDS_WITH",
    "IN",
    "NOT IN",
    "BETWEEN",
    "NOT BETWEEN",
    "IS NULL",
    "IS NOT NULL",
)
MULTI_VALUE_OPERATORS = ("IN", "NOT IN", "BETWEEN", "NOT BETWEEN")
NULLARY_OPERATORS = ("IS NULL", "IS NOT NULL")
RANGE_OPERATORS = ("BETWEEN", "NOT BETWEEN")


@dataclass(frozen=True)
class ConditionDescriptor:
    id: str
    path: str
    operators: Tuple[str, ...]
    values: Tuple[str, ...]
    parent_id: Optional[str] = None


@dataclass(frozen=True)
class GroupDescriptor:
    id: str
    conjunction: str = AND
    parent_id: Optional[str] = None


def _as_list(value) -> list:
    """
    query string values are strings, lists (filter[x][value][]=...) or dicts (filter[x][value][0]=...)
    """
    if value is None:
        return []
    if isinstance(value, dict):
        return [value[key] for key in sorted(value, key=lambda k: (len(k), k))]
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _parent_id(value, filter_id) -> Optional[str]:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ParseError(f"Invalid group reference in filter '{filter_id}'")
    return value


def expand_filter(raw) -> dict:
    """
    Expand the parsed filter query parameter into condition and group descriptors
    :param raw: dict tree parsed from the filter[...] query parameters
    :return: filter id -> ConditionDescriptor | GroupDescriptor
    """
    if not isinstance(raw, dict):
        raise ParseError("Incorrect value passed to the filter parameter, expected filter[...] parameters")

    result = {}
    for filter_id, item in raw.items():
        if filter_id == ROOT_ID:
            raise ParseError(f"'{ROOT_ID}' is a reserved filter id")
        if isinstance(item, dict) and isinstance(item.get("group"), dict):
            result[filter_id] = expand_group(filter_id, item["group"])
        elif isinstance(item, dict):
            condition = item.get("condition", item)
            if not isinstance(condition, dict):
                raise ParseError(f"Invalid filter condition '{filter_id}'")
            result[filter_id] = expand_condition(filter_id, condition)
        else:
            # shorthand: filter[field]=value
            values = _as_list(item)
            result[filter_id] = ConditionDescriptor(filter_id, filter_id, ("=",) * len(values), tuple(values))
    return result


def expand_group(filter_id, group) -> GroupDescriptor:
    conjunction = str(group.get("conjunction", AND)).upper()
    if conjunction not in CONJUNCTIONS:
        raise ParseError(f"Invalid conjunction '{conjunction}' in filter group '{filter_id}', use AND or OR")
    return GroupDescriptor(filter_id, conjunction, _parent_id(group.get("group"), filter_id))


def expand_condition(filter_id, condition) -> ConditionDescriptor:
    path = condition.get("path", filter_id)
    if not isinstance(path, str):
        raise ParseError(f"Invalid path in filter '{filter_id}'")
    operators = [str(op).strip().upper() for op in _as_list(condition.get("operator"))]
    for operator in operators:
        if operator not in OPERATORS:
            raise ParseError(f"Invalid operator '{operator}' in filter '{filter_id}', valid operators: {', '.join(OPERATORS)}")
    values = _as_list(condition.get("value"))
    if not values and not (operators and operators[0] in NULLARY_OPERATORS):
        raise ParseError(f"Filter '{filter_id}' has no value")
    operators = reconcile_operators(operators, values, filter_id)
    return ConditionDescriptor(filter_id, path, tuple(operators), tuple(values), _parent_id(condition.get("group"), filter_id))


def reconcile_operators(operators, values, filter_id="") -> List[str]:
    """
    Match the operators with the values of a condition:
    - no operator: "=" applies to every value
    - a leading multi-value operator (IN, BETWEEN, ...) or a value-less operator (IS NULL) applies to all values
    - missing operators are padded with "="
    """
    operators = list(operators)
    if len(operators) == len(values):
        return operators
    if operators and (operators[0] in MULTI_VALUE_OPERATORS or operators[0] in NULLARY_OPERATORS):
        return operators[:1]
    if len(operators) < len(values):
        return operators + ["="] * (len(values) - len(operators))
    raise ParseError(f"Filter '{filter_id}' has more operators than values")


@dataclass(eq=False)
class FilterConditionNode:
    id: str
    path: str
    operators: Tuple[str, ...]
    values: Tuple
    parent_id: Optional[str] = None
    resolved: object = None  # ResolvedPath

    def predicates(self) -> List[Tuple[str, tuple]]:
        """
        :return: (operator, values) pairs that must all hold,
        several "=" values are combined into a single IN predicate
        """
        if self.operators and self.operators[0] in NULLARY_OPERATORS:
            return [(self.operators[0], ())]
        if self.operators and self.operators[0] in MULTI_VALUE_OPERATORS:
            return [(self.operators[0], tuple(self.values))]
        result = []
        equal = tuple(value for op, value in zip(self.operators, self.values) if op == "=")
        if len(equal) == 1:
            result.append(("=", equal))
        elif equal:
            result.append(("IN", equal))
        for op, value in zip(self.operators, self.values):
            if op != "=":
                result.append((op, (value,)))
        return result

    def to_dict(self) -> dict:
        return {"condition": {"id": self.id, "path": self.path, "operators": list(self.operators), "values": list(self.values)}}

    def __eq__(self, other):
        return isinstance(other, FilterConditionNode) and self.to_dict() == other.to_dict()

    __hash__ = None


@dataclass(eq=False)
class FilterGroupNode:
    id: str
    conjunction: str = AND
    parent_id: Optional[str] = None
    children: list = field(default_factory=list)

    def to_dict(self) -> dict:
        children = sorted(self.children, key=lambda child: child.id)
        return {"group": {"id": self.id, "conjunction": self.conjunction, "children": [child.to_dict() for child in children]}}

    def __eq__(self, other):
        return isinstance(other, FilterGroupNode) and self.to_dict() == other.to_dict()

    __hash__ = None

    def conditions(self):
        """
        :return: all conditions in the tree
        """
        for child in self.children:
            if isinstance(child, FilterGroupNode):
                yield from child.conditions()
            else:
                yield child


def to_node(descriptor, resolver=None, resource_type=None):
    if isinstance(descriptor, GroupDescriptor):
        return FilterGroupNode(descriptor.id, descriptor.conjunction, descriptor.parent_id)
    if descriptor.operators and descriptor.operators[0] in RANGE_OPERATORS and len(descriptor.values) != 2:
        raise ParseError(f"{descriptor.operators[0]} in filter '{descriptor.id}' requires two values")
    node = FilterConditionNode(descriptor.id, descriptor.path, descriptor.operators, descriptor.values, descriptor.parent_id)
    if resolver is not None and resource_type is not None:
        node.resolved = resolver.resolve(resource_type, descriptor.path)
    return node


def build_tree(nodes, max_passes=None) -> FilterGroupNode:
    """
    Place every node under its parent group, the nodes may come in any order.

    Each pass takes the items from the worklist, places those whose parent has been placed
    and puts the others back. A pass that places nothing means a parent doesn't exist
    (or groups reference each other in a cycle).
    :param nodes: FilterConditionNode and FilterGroupNode instances
    :param max_passes: iteration cap
    :return: the implicit AND root group holding the top level nodes
    """
    ids = {node.id for node in nodes}
    for node in nodes:
        if node.parent_id is not None and node.parent_id in ids:
            parent = next(n for n in nodes if n.id == node.parent_id)
            if not isinstance(parent, FilterGroupNode):
                raise ParseError(f"Filter '{node.id}' references '{node.parent_id}' which is not a group")

    if max_passes is None:
        max_passes = get_int_config("FILTER_MAX_PASSES") or len(nodes) + 1
    root = FilterGroupNode(ROOT_ID, AND)
    placed = {}
    worklist = deque(nodes)
    passes = 0
    while worklist:
        passes += 1
        if passes > max_passes:
            raise ParseError(f"Invalid filter: could not place {', '.join(n.id for n in worklist)} in {max_passes} passes")
        progress = False
        for _ in range(len(worklist)):
            node = worklist.popleft()
            if node.parent_id is None:
                parent = root
            else:
                parent = placed.get(node.parent_id)
            if parent is None:
                worklist.append(node)
                continue
            parent.children.append(node)
            if isinstance(node, FilterGroupNode):
                placed[node.id] = node
            progress = True
        if not progress:
            dangling = ", ".join(f"{n.id} -> {n.parent_id}" for n in worklist)
            raise ParseError(f"Invalid filter: dangling filter group reference ({dangling})")
    return root


def compile_filter(descriptors, resolver=None, resource_type=None, max_passes=None) -> Optional[FilterGroupNode]:
    """
    :param descriptors: filter id -> descriptor, as returned by expand_filter
    :param resolver: FieldResolver used to resolve the condition paths
    :param resource_type: ResourceType the condition paths start from
    :return: root FilterGroupNode or None if there are no filters
    """
    if not descriptors:
        return None
    nodes = [to_node(descriptor, resolver, resource_type) for descriptor in descriptors.values()]
    root = build_tree(nodes, max_passes)
    contentapi.log.debug(f"Compiled filter: {root.to_dict()}")
    return root
