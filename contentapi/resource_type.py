# Resource types
#
# A ResourceType describes how a stored model is exposed as a JSON:API resource:
#   - the public type name: "<internal type id>" or "<internal type id>--<subtype id>"
#   - the field mapping: internal field name -> True (exposed as-is), False (disabled) or an alias (public name)
#   - for reference fields (relationships): the public types they may point to and their cardinality
#
# The ResourceTypeRepository builds the resource types from the SQLAlchemy mappers
# and memoizes them, they're written once when a model is exposed and read afterwards.
#
import datetime
import decimal
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple
import sqlalchemy
from sqlalchemy.types import ARRAY
import contentapi
from .errors import GenericError, NotFoundError

UNLIMITED = -1  # cardinality of to-many fields
ID_DELIMITER = "_"  # joins the primary key values of composite keys into a single jsonapi id
TYPE_DELIMITER = "--"  # joins internal type id and subtype id
RESERVED_NAMES = ("id", "type")  # JSON:API reserves these member names
LABEL_CANDIDATES = ("name", "title", "label")


@dataclass(frozen=True, eq=False)
class ResourceType:
    """
    Immutable description of an exposed resource type
    """

    internal_type_id: str
    subtype_id: Optional[str] = None
    field_mapping: Mapping[str, Any] = field(default_factory=dict)
    relatable: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    cardinalities: Mapping[str, int] = field(default_factory=dict)
    model: Any = None
    is_mutable: bool = True
    is_locatable: bool = True
    label_field: Optional[str] = None
    id_fields: Tuple[str, ...] = ("id",)
    columns: Mapping[str, Any] = field(default_factory=dict)
    allow_client_generated_ids: bool = False

    def __post_init__(self):
        object.__setattr__(self, "field_mapping", MappingProxyType(dict(self.field_mapping)))
        object.__setattr__(self, "relatable", MappingProxyType({k: tuple(v) for k, v in self.relatable.items()}))
        object.__setattr__(self, "cardinalities", MappingProxyType(dict(self.cardinalities)))
        object.__setattr__(self, "columns", MappingProxyType(dict(self.columns)))
        public_names = {}
        for internal, mapped in self.field_mapping.items():
            if mapped is False:
                continue
            public_names[internal if mapped is True else mapped] = internal
        object.__setattr__(self, "_internal_names", MappingProxyType(public_names))

    @property
    def type_name(self) -> str:
        if self.subtype_id:
            return f"{self.internal_type_id}{TYPE_DELIMITER}{self.subtype_id}"
        return self.internal_type_id

    def __repr__(self):
        return f"<ResourceType {self.type_name}>"

    def get_public_name(self, internal_name: str) -> str:
        mapped = self.field_mapping.get(internal_name, True)
        return internal_name if mapped is True or mapped is False else mapped

    def get_internal_name(self, public_name: str) -> Optional[str]:
        """
        :return: the internal name of an enabled field, None if there's no such public field
        """
        return self._internal_names.get(public_name)

    def is_field_enabled(self, internal_name: str) -> bool:
        return self.field_mapping.get(internal_name, False) is not False

    def has_field(self, public_name: str) -> bool:
        return public_name in self._internal_names

    def is_reference_field(self, public_name: str) -> bool:
        return public_name in self.relatable

    def get_relatable_types(self, public_name: str) -> Tuple[str, ...]:
        return self.relatable.get(public_name, ())

    def get_cardinality(self, public_name: str) -> int:
        return self.cardinalities.get(public_name, 1)

    def enabled_fields(self):
        """
        :return: internal names of the enabled fields, in mapping order
        """
        return [name for name in self.field_mapping if self.is_field_enabled(name)]

    def attribute_names(self):
        return [name for name in self._internal_names if name not in self.relatable]

    def relationship_names(self):
        return [name for name in self._internal_names if name in self.relatable]

    def get_column(self, internal_name: str):
        return self.columns.get(internal_name)

    def item_id(self, item) -> str:
        """
        :return: the jsonapi id of a stored item
        """
        return ID_DELIMITER.join(str(getattr(item, name)) for name in self.id_fields)

    def parse_id(self, item_id: str) -> dict:
        """
        Split a jsonapi id into primary key values
        :raises ValueError: when the id doesn't match the primary key
        """
        values = str(item_id).split(ID_DELIMITER, len(self.id_fields) - 1)
        if len(values) != len(self.id_fields):
            raise ValueError(f"Invalid id {item_id} for {self.type_name}")
        result = {}
        for name, value in zip(self.id_fields, values):
            column = self.get_column(name)
            result[name] = coerce_value(column, value)
        return result


def coerce_value(column, value):
    """
    Convert a (query string) value to the python type of a column
    :raises ValueError: when the value can't be converted
    """
    if column is None or value is None:
        return value
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value
    if isinstance(value, python_type):
        return value
    if python_type is bool:
        if str(value).lower() in ("true", "1"):
            return True
        if str(value).lower() in ("false", "0"):
            return False
        raise ValueError(f"Invalid boolean value {value}")
    if python_type in (int, float, str, decimal.Decimal):
        return python_type(value)
    if python_type in (datetime.datetime, datetime.date, datetime.time):
        return python_type.fromisoformat(str(value))
    return value


def internal_type_id_for(model) -> str:
    """
    :return: the internal type id of a model: its __jsonapi_type__ or the table name of the inheritance base
    """
    base = sqlalchemy.inspect(model).base_mapper.class_
    return getattr(model, "__jsonapi_type__", None) or getattr(base, "__jsonapi_type__", None) or base.__tablename__


def subtype_id_for(model) -> Optional[str]:
    """
    :return: the polymorphic identity of an inheriting model, None for base models
    """
    mapper = sqlalchemy.inspect(model)
    if mapper.inherits is None or mapper.polymorphic_identity is None:
        return None
    return str(mapper.polymorphic_identity)


def type_name_for(model) -> str:
    subtype_id = subtype_id_for(model)
    if subtype_id:
        return f"{internal_type_id_for(model)}{TYPE_DELIMITER}{subtype_id}"
    return internal_type_id_for(model)


class ResourceTypeRepository:
    """
    Process-wide registry of the exposed resource types
    """

    def __init__(self):
        self._types = {}  # (internal_type_id, subtype_id) -> ResourceType
        self._by_name = {}
        self._by_model = {}
        self._lock = threading.Lock()

    def __contains__(self, type_name):
        return type_name in self._by_name

    def all(self):
        return list(self._types.values())

    def register(self, model, **properties) -> ResourceType:
        """
        Build the ResourceType of an SQLAlchemy model (once)
        :param model: declarative model class
        :param properties: ResourceType overrides, eg. is_mutable=False
        """
        with self._lock:
            resource_type = self._by_model.get(model)
            if resource_type is not None:
                return resource_type
            resource_type = self.build(model, **properties)
            key = (resource_type.internal_type_id, resource_type.subtype_id)
            if key in self._types:
                raise GenericError(f"Resource type {resource_type.type_name} is already registered")
            self._types[key] = resource_type
            self._by_name[resource_type.type_name] = resource_type
            self._by_model[model] = resource_type
            contentapi.log.debug(f"Registered resource type {resource_type.type_name}")
            return resource_type

    def get(self, internal_type_id: str, subtype_id: Optional[str] = None) -> ResourceType:
        try:
            return self._types[(internal_type_id, subtype_id)]
        except KeyError:
            raise NotFoundError(f"Unknown resource type {internal_type_id} {subtype_id or ''}")

    def get_by_type_name(self, type_name: str) -> ResourceType:
        try:
            return self._by_name[type_name]
        except KeyError:
            raise NotFoundError(f"Unknown resource type {type_name}")

    def find_for_model(self, model) -> Optional[ResourceType]:
        for cls in getattr(model, "__mro__", (model,)):
            resource_type = self._by_model.get(cls)
            if resource_type is not None:
                return resource_type
        return None

    def find_for_item(self, item) -> Optional[ResourceType]:
        return self.find_for_model(type(item))

    def for_item(self, item) -> ResourceType:
        resource_type = self.find_for_item(item)
        if resource_type is None:
            raise NotFoundError(f"{type(item).__name__} is not exposed")
        return resource_type

    @classmethod
    def build(cls, model, **properties) -> ResourceType:
        mapper = sqlalchemy.inspect(model)
        internal_type_id = internal_type_id_for(model)

        columns = {prop.key: prop.columns[0] for prop in mapper.column_attrs}
        relationships = {rel.key: rel for rel in mapper.relationships}
        id_fields = tuple(mapper.get_property_by_column(column).key for column in mapper.primary_key)

        disabled = set(properties.pop("exclude_attrs", getattr(model, "exclude_attrs", [])))
        disabled |= set(properties.pop("exclude_rels", getattr(model, "exclude_rels", [])))
        for name, column in columns.items():
            if name.startswith("_") or column.info.get("expose", True) is False:
                disabled.add(name)
        for name, rel in relationships.items():
            if name.startswith("_") or rel.info.get("expose", True) is False:
                disabled.add(name)

        field_mapping = cls.build_field_mapping(internal_type_id, list(columns) + list(relationships), id_fields, disabled)

        public = {name: name if mapped is True else mapped for name, mapped in field_mapping.items() if mapped is not False}
        relatable = {}
        cardinalities = {}
        for name, rel in relationships.items():
            if name not in public:
                continue
            relatable[public[name]] = tuple(type_name_for(m.class_) for m in rel.mapper.self_and_descendants)
            cardinalities[public[name]] = UNLIMITED if rel.uselist else 1
        for name, column in columns.items():
            if name in public:
                cardinalities[public[name]] = UNLIMITED if isinstance(column.type, ARRAY) else 1

        label_field = getattr(model, "__jsonapi_label__", None)
        if label_field is None:
            label_field = next((name for name in LABEL_CANDIDATES if name in columns and name in public), None)

        kwargs = dict(
            internal_type_id=internal_type_id,
            subtype_id=subtype_id_for(model),
            field_mapping=field_mapping,
            relatable=relatable,
            cardinalities=cardinalities,
            model=model,
            label_field=label_field,
            id_fields=id_fields,
            columns=columns,
            allow_client_generated_ids=getattr(model, "allow_client_generated_ids", False),
        )
        kwargs.update(properties)
        return ResourceType(**kwargs)

    @staticmethod
    def build_field_mapping(internal_type_id, field_names, id_fields=(), disabled=()) -> dict:
        """
        :param internal_type_id: used to alias the reserved field names
        :param field_names: internal field names
        :param id_fields: primary key fields, exposed as "internal__<name>"
        :param disabled: field names that shouldn't be exposed
        :return: internal name -> True | False | alias
        """
        mapping = {}
        for name in field_names:
            if name in disabled:
                mapping[name] = False
            elif name in id_fields:
                mapping[name] = f"internal__{name}"
            elif name in RESERVED_NAMES:
                alias = f"{internal_type_id}_{name}"
                if alias in field_names:
                    raise GenericError(f"The generated alias '{alias}' for field name '{name}' conflicts with an existing field")
                mapping[name] = alias
            else:
                mapping[name] = True
        return mapping
