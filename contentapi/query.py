# Collection queries
#
# The QueryBuilder compiles the filter, sort and page query parameters (failing fast on invalid input,
# before any document assembly takes place) and drives a QueryEngine with the result:
#
#   filter -> apply_condition(root group)
#   sort   -> apply_sort(keys)
#   page   -> apply_range(offset, page size + 1)
#   execute() -> ids
#
# The SQLAlchemyQueryEngine translates the filter tree into sqla expressions,
# dotted field paths traverse the relationships with has()/any()
#
from dataclasses import dataclass
from typing import Optional, Protocol, Tuple
from sqlalchemy import and_, or_
from sqlalchemy.orm import RelationshipProperty, aliased
import contentapi
from .errors import ParseError
from .filters import AND, FilterGroupNode, compile_filter, expand_filter
from .paging import OffsetPage
from .resource_type import ID_DELIMITER, coerce_value
from .sorting import DESC, parse_sort, resolve_sort

# operator -> sqla expression builder, values are coerced to the column type
PREDICATES = {
    "=": lambda attr, values: attr == values[0],
    "<>": lambda attr, values: attr != values[0],
    "!=": lambda attr, values: attr != values[0],
    ">": lambda attr, values: attr > values[0],
    ">=": lambda attr, values: attr >= values[0],
    "<": lambda attr, values: attr < values[0],
    "<=": lambda attr, values: attr <= values[0],
    "STARTS_WITH": lambda attr, values: attr.startswith(values[0], autoescape=True),
    "CONTAINS": lambda attr, values: attr.contains(values[0], autoescape=True),
    "ENDS_WITH": lambda attr, values: attr.endswith(values[0], autoescape=True),
    "IN": lambda attr, values: attr.in_(values),
    "NOT IN": lambda attr, values: attr.not_in(values),
    "BETWEEN": lambda attr, values: attr.between(values[0], values[1]),
    "NOT BETWEEN": lambda attr, values: ~attr.between(values[0], values[1]),
    "IS NULL": lambda attr, values: attr.is_(None),
    "IS NOT NULL": lambda attr, values: attr.is_not(None),
}
# string matching operators compare with the raw value
STRING_OPERATORS = ("STARTS_WITH", "CONTAINS", "ENDS_WITH")


class QueryEngine(Protocol):
    """
    Storage backend query interface
    """

    def apply_condition(self, root: Optional[FilterGroupNode]) -> None:
        ...

    def apply_sort(self, keys) -> None:
        ...

    def apply_range(self, offset: int, size: int) -> None:
        ...

    def execute(self) -> list:
        ...


class SQLAlchemyQueryEngine:
    """
    QueryEngine for sqla models
    """

    def __init__(self, session, resource_type):
        self.session = session
        self.resource_type = resource_type
        self.model = resource_type.model
        self.query = session.query(self.model)
        self.offset = 0
        self.limit = None
        self._joins = {}  # internal path prefix -> aliased model, for sorting

    def apply_condition(self, root):
        if root is None:
            return
        clause = self.compile_group(root, self.model)
        if clause is not None:
            self.query = self.query.filter(clause)

    def compile_group(self, group, model):
        clauses = []
        for child in group.children:
            if isinstance(child, FilterGroupNode):
                clause = self.compile_group(child, model)
            else:
                clause = self.compile_condition(child, model)
            if clause is not None:
                clauses.append(clause)
        if not clauses:
            return None
        if group.conjunction == AND:
            return and_(*clauses)
        return or_(*clauses)

    def compile_condition(self, condition, model):
        if condition.resolved is not None:
            path = condition.resolved.internal_path
        else:
            path = tuple(condition.path.split("."))
        clauses = [self._traverse(model, path, operator, values) for operator, values in condition.predicates()]
        return and_(*clauses)

    def _traverse(self, model, path, operator, values):
        attr = getattr(model, path[0], None)
        if attr is None:
            raise ParseError(f"Invalid filter field {path[0]}")
        prop = attr.property
        if not isinstance(prop, RelationshipProperty):
            return self.predicate(attr, prop.columns[0], operator, values)
        if len(path) == 1:
            return self._reference_predicate(attr, prop, operator, values)
        inner = self._traverse(prop.mapper.class_, path[1:], operator, values)
        return attr.any(inner) if prop.uselist else attr.has(inner)

    def _reference_predicate(self, attr, prop, operator, values):
        """
        A path ending on a relationship compares the primary key of the related items
        """
        exists = attr.any if prop.uselist else attr.has
        if operator == "IS NULL":
            return ~exists()
        if operator == "IS NOT NULL":
            return exists()
        target = prop.mapper
        if len(target.primary_key) != 1:
            raise ParseError(f"Can't filter on relationship {prop.key}: composite primary key")
        pk_column = target.primary_key[0]
        pk_attr = getattr(target.class_, target.get_property_by_column(pk_column).key)
        return exists(self.predicate(pk_attr, pk_column, operator, values))

    @staticmethod
    def predicate(attr, column, operator, values):
        if operator not in STRING_OPERATORS:
            try:
                values = [coerce_value(column, value) for value in values]
            except (ValueError, ArithmeticError):
                raise ParseError(f"Invalid filter value {list(values)} for {attr.key}")
        return PREDICATES[operator](attr, values)

    def apply_sort(self, keys):
        for key in keys:
            if key.resolved is not None:
                path = key.resolved.internal_path
            else:
                path = tuple(key.path.split("."))
            column = self._sort_column(path)
            self.query = self.query.order_by(column.desc() if key.direction == DESC else column.asc())

    def _sort_column(self, path):
        """
        Sort keys on related fields are joined with an outer join, so items without related item aren't dropped
        """
        model = self.model
        for position, name in enumerate(path[:-1]):
            prefix = path[: position + 1]
            target = self._joins.get(prefix)
            if target is None:
                rel = getattr(model, name)
                target = aliased(rel.property.mapper.class_)
                self.query = self.query.outerjoin(rel.of_type(target))
                self._joins[prefix] = target
            model = target
        column = getattr(model, path[-1], None)
        if column is None:
            raise ParseError(f"Invalid sort field {'.'.join(path)}")
        return column

    def apply_range(self, offset, size):
        self.offset = offset
        self.limit = size

    def execute(self) -> list:
        """
        :return: the jsonapi ids of the matching items
        """
        pk_attrs = [getattr(self.model, name) for name in self.resource_type.id_fields]
        # the primary key makes the order deterministic for paging
        query = self.query.order_by(*pk_attrs).with_entities(*pk_attrs)
        if self.offset:
            query = query.offset(self.offset)
        if self.limit is not None:
            query = query.limit(self.limit)
        result = []
        for row in query.all():
            item_id = ID_DELIMITER.join(str(value) for value in row)
            if item_id not in result:
                result.append(item_id)
        return result


@dataclass(frozen=True)
class CompiledQuery:
    resource_type: object
    filter: Optional[FilterGroupNode] = None
    sort: Tuple = ()
    page: OffsetPage = OffsetPage()


class QueryBuilder:
    """
    Compile the collection query parameters and run them on a query engine
    """

    def __init__(self, resolver, engine_factory):
        """
        :param resolver: FieldResolver
        :param engine_factory: callable returning a QueryEngine for a ResourceType
        """
        self.resolver = resolver
        self.engine_factory = engine_factory

    def build(self, resource_type, filter_param=None, sort_param=None, page_param=None, max_page_size=None) -> CompiledQuery:
        """
        :param resource_type: ResourceType of the collection
        :param filter_param: parsed filter[...] query parameters
        :param sort_param: sort query parameter
        :param page_param: parsed page[...] query parameters
        :return: CompiledQuery
        :raises ParseError: invalid parameters
        """
        root = None
        if filter_param is not None:
            root = compile_filter(expand_filter(filter_param), self.resolver, resource_type)
        sort = ()
        if sort_param is not None:
            sort = tuple(resolve_sort(parse_sort(sort_param), self.resolver, resource_type))
        page = OffsetPage.from_params(page_param, max_page_size)
        return CompiledQuery(resource_type, root, sort, page)

    @staticmethod
    def apply(engine, compiled: CompiledQuery):
        engine.apply_condition(compiled.filter)
        engine.apply_sort(compiled.sort)
        engine.apply_range(compiled.page.offset, compiled.page.query_size)

    def fetch(self, compiled: CompiledQuery):
        """
        :return: the ids of the requested page, whether there's a next page
        """
        engine = self.engine_factory(compiled.resource_type)
        self.apply(engine, compiled)
        ids = engine.execute()
        contentapi.log.debug(f"{compiled.resource_type.type_name} query returned {len(ids)} ids")
        return compiled.page.slice_results(ids)
