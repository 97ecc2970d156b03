# JSON:API document value nodes
#
# The document assembler builds a tree of value nodes before anything is serialized:
#
#   DocumentNode
#     data: ResourceNode | ErrorNode (or the linkage RelationshipNode of a relationship endpoint)
#       attributes: FieldNode -> FieldItemNode
#       relationships: RelationshipNode -> RelationshipItemNode -> DocumentNode (included)
#
# Every node carries its own cacheability, the cacheability property of a node
# merges it with the cacheability of all of its children.
# rasterize() renders a node to JSON-serializable primitives.
#
import datetime
import decimal
import uuid
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional
from .cacheability import CacheableMetadata
from .includes import collect_includes, collect_omitted
from .resource_type import UNLIMITED

ATTRIBUTE = "attribute"
RELATIONSHIP = "relationship"


def rasterize_value(value):
    """
    Render a stored value to JSON primitives
    """
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, Mapping):
        return {key: rasterize_value(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [rasterize_value(val) for val in value]
    if isinstance(value, datetime.timedelta):
        return str(value)
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, decimal.Decimal):
        return float(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, bytes):
        return value.hex()
    return str(value)


@dataclass
class FieldItemNode:
    """
    A single value of a field, raw holds the item's property values
    (stored scalars only have a "value" property)
    """

    raw: Mapping[str, Any]
    own_cacheability: CacheableMetadata = field(default_factory=CacheableMetadata)

    def rasterize(self):
        if len(self.raw) == 1:
            return rasterize_value(next(iter(self.raw.values())))
        return rasterize_value(dict(self.raw))

    def includes(self) -> list:
        return []

    @property
    def cacheability(self) -> CacheableMetadata:
        return self.own_cacheability


@dataclass
class FieldNode:
    """
    A field: cardinality 1 fields rasterize to their single value or null,
    unlimited cardinality fields to a list.
    A field the user may not view holds no items and rasterizes to null.
    """

    name: str
    items: List[Any] = field(default_factory=list)
    cardinality: int = 1
    own_cacheability: CacheableMetadata = field(default_factory=CacheableMetadata)
    denied: bool = False

    kind = ATTRIBUTE

    def __post_init__(self):
        if self.cardinality == 1 and len(self.items) > 1:
            raise ValueError(f"Field {self.name} has cardinality 1 but holds {len(self.items)} items")
        if self.denied and self.items:
            raise ValueError(f"Inaccessible field {self.name} can't hold items")

    @property
    def is_to_many(self) -> bool:
        return self.cardinality == UNLIMITED or self.cardinality > 1

    def rasterize_items(self):
        if not self.is_to_many:
            return self.items[0].rasterize() if self.items else None
        return [item.rasterize() for item in self.items]

    def rasterize(self):
        if self.denied:
            return None
        return self.rasterize_items()

    def includes(self) -> list:
        result = []
        for item in self.items:
            result.extend(item.includes())
        return result

    @property
    def cacheability(self) -> CacheableMetadata:
        return self.own_cacheability.merge(CacheableMetadata.merge_all(item.cacheability for item in self.items))


@dataclass
class RelationshipItemNode:
    """
    Resource identifier of a related item, include holds the included document of the item
    """

    target_type: str
    target_id: str
    meta: Optional[dict] = None
    include: Optional["DocumentNode"] = None
    own_cacheability: CacheableMetadata = field(default_factory=CacheableMetadata)

    @property
    def identifier(self):
        return (self.target_type, self.target_id)

    def rasterize(self) -> dict:
        result = {"type": self.target_type, "id": self.target_id}
        if self.meta:
            result["meta"] = rasterize_value(self.meta)
        return result

    def includes(self) -> list:
        return [self.include] if self.include is not None else []

    @property
    def cacheability(self) -> CacheableMetadata:
        if self.include is None:
            return self.own_cacheability
        return self.own_cacheability.merge(self.include.cacheability)


@dataclass
class RelationshipNode(FieldNode):
    """
    A relationship rasterizes to a relationship object:
        {"data": null | identifier | [identifiers], "links": {...}}
    to-many relationships never have null data
    """

    links: dict = field(default_factory=dict)

    kind = RELATIONSHIP

    def rasterize(self) -> dict:
        if self.denied and not self.is_to_many:
            data = None
        else:
            data = self.rasterize_items()
        result = {"data": data}
        if self.links:
            result["links"] = dict(self.links)
        return result


@dataclass
class ResourceNode:
    """
    A resource object, attribute and relationship names share one namespace
    """

    type: str
    id: str
    attributes: Mapping[str, FieldNode] = field(default_factory=dict)
    relationships: Mapping[str, RelationshipNode] = field(default_factory=dict)
    links: dict = field(default_factory=dict)
    meta: dict = field(default_factory=dict)
    own_cacheability: CacheableMetadata = field(default_factory=CacheableMetadata)

    def __post_init__(self):
        overlap = set(self.attributes) & set(self.relationships)
        if overlap:
            raise ValueError(f"{self.type} fields {sorted(overlap)} are both attributes and relationships")

    @property
    def identifier(self):
        return (self.type, self.id)

    def rasterize(self) -> dict:
        result = {"type": self.type, "id": self.id}
        if self.attributes:
            result["attributes"] = {name: node.rasterize() for name, node in self.attributes.items()}
        if self.relationships:
            result["relationships"] = {name: node.rasterize() for name, node in self.relationships.items()}
        if self.links:
            result["links"] = dict(self.links)
        if self.meta:
            result["meta"] = rasterize_value(self.meta)
        return result

    def includes(self) -> list:
        """
        :return: the included documents of the relationships
        """
        result = []
        for node in self.relationships.values():
            result.extend(node.includes())
        return result

    @property
    def cacheability(self) -> CacheableMetadata:
        result = self.own_cacheability
        for node in list(self.attributes.values()) + list(self.relationships.values()):
            result = result.merge(node.cacheability)
        return result


@dataclass
class ErrorNode:
    """
    Inline error, replaces a resource the user may not view
    """

    status: int = 403
    title: str = "Forbidden"
    detail: str = ""
    pointer: str = "/data"
    source_entity: Optional[dict] = None
    own_cacheability: CacheableMetadata = field(default_factory=CacheableMetadata)

    identifier = None

    def rasterize(self) -> dict:
        result = {"status": str(self.status), "title": self.title, "detail": self.detail, "source": {"pointer": self.pointer}}
        if self.source_entity:
            result["meta"] = {"entity": dict(self.source_entity)}
        return result

    def includes(self) -> list:
        return []

    @property
    def cacheability(self) -> CacheableMetadata:
        return self.own_cacheability


@dataclass
class DocumentNode:
    """
    A JSON:API document (or an included document nested in a relationship item)

    :param data: ResourceNode and ErrorNode instances
    :param is_collection: whether data rasterizes to a list
    :param linkage: relationship whose linkage is the primary data (relationship endpoints)
    """

    data: List[Any] = field(default_factory=list)
    is_collection: bool = False
    links: dict = field(default_factory=dict)
    meta: dict = field(default_factory=dict)
    linkage: Optional[RelationshipNode] = None
    own_cacheability: CacheableMetadata = field(default_factory=CacheableMetadata)

    def resources(self) -> List[ResourceNode]:
        return [node for node in self.data if isinstance(node, ResourceNode)]

    def errors(self) -> List[ErrorNode]:
        return [node for node in self.data if isinstance(node, ErrorNode)]

    def includes(self) -> list:
        """
        :return: the documents nested in the primary data
        """
        if self.linkage is not None:
            return self.linkage.includes()
        result = []
        for node in self.data:
            result.extend(node.includes())
        return result

    @property
    def cacheability(self) -> CacheableMetadata:
        result = self.own_cacheability
        for node in self.data:
            result = result.merge(node.cacheability)
        if self.linkage is not None:
            result = result.merge(self.linkage.cacheability)
        return result

    def rasterize(self) -> dict:
        """
        :return: the top level document, including the deduplicated "included" resources
        """
        if self.linkage is not None:
            result = {"data": self.linkage.rasterize()["data"]}
        elif self.is_collection:
            result = {"data": [node.rasterize() for node in self.resources()]}
        else:
            resources = self.resources()
            result = {"data": resources[0].rasterize() if resources else None}

        included = collect_includes(self)
        if included:
            result["included"] = [node.rasterize() for node in included]

        meta = dict(self.meta)
        omitted = collect_omitted(self)
        if omitted:
            meta["omitted"] = {
                "detail": "Some resources have been omitted because of insufficient authorization.",
                "errors": [node.rasterize() for node in omitted],
            }
        if self.links:
            result["links"] = dict(self.links)
        if meta:
            result["meta"] = rasterize_value(meta)
        result["jsonapi"] = {"version": "1.0"}
        return result
