# Content store
#
# The document assembler and the denormalizer access the stored items through a ContentStore:
# field values, ids, resource types, access checks, loading and saving.
# SQLAlchemyContentStore implements it for sqla declarative models.
#
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Tuple
import sqlalchemy
from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import selectinload
import contentapi
from .access import AccessPolicy
from .errors import ConflictError, GenericError, NotFoundError
from .query import SQLAlchemyQueryEngine
from .resource_type import UNLIMITED


@dataclass(frozen=True)
class FieldSource:
    """
    The stored values of a field
    :param name: internal field name
    :param values: scalar values, or the related items for reference fields
    :param cardinality: 1 or UNLIMITED
    :param is_reference: whether this is a relationship
    :param target_model: model of the related items
    """

    name: str
    values: Tuple[Any, ...] = ()
    cardinality: int = 1
    is_reference: bool = False
    target_model: Any = None


class ContentStore(Protocol):
    def resource_type_of(self, item):
        ...

    def find_resource_type(self, item):
        ...

    def item_id(self, item, resource_type=None) -> str:
        ...

    def read_fields(self, item, resource_type=None) -> dict:
        ...

    def access(self, operation, item, resource_type, field=None):
        ...

    def load(self, resource_type, item_id):
        ...

    def load_multiple(self, resource_type, ids, include=()) -> list:
        ...

    def engine(self, resource_type):
        ...

    def create(self, resource_type, attributes, relationships=None, item_id=None):
        ...

    def save(self, item):
        ...

    def delete(self, item):
        ...


class SQLAlchemyContentStore:
    """
    ContentStore for sqla declarative models
    """

    def __init__(self, repository, session=None, policy: Optional[AccessPolicy] = None):
        """
        :param repository: ResourceTypeRepository
        :param session: sqla session, contentapi.DB.session (the flask-sqlalchemy scoped session) by default
        :param policy: AccessPolicy answering the access checks
        """
        self.repository = repository
        self._session = session
        self.policy = policy if policy is not None else AccessPolicy()

    @property
    def session(self):
        if self._session is not None:
            return self._session
        return contentapi.DB.session

    def resource_type_of(self, item):
        return self.repository.for_item(item)

    def find_resource_type(self, item):
        return self.repository.find_for_item(item)

    def item_id(self, item, resource_type=None) -> str:
        if resource_type is None:
            resource_type = self.resource_type_of(item)
        return resource_type.item_id(item)

    def access(self, operation, item, resource_type, field=None):
        return self.policy.check(operation, item, resource_type, field)

    def read_fields(self, item, resource_type=None) -> dict:
        """
        :return: internal name -> FieldSource for every enabled field of the item
        """
        if resource_type is None:
            resource_type = self.resource_type_of(item)
        relationships = sqlalchemy.inspect(type(item)).relationships
        result = {}
        for name in resource_type.enabled_fields():
            public = resource_type.get_public_name(name)
            cardinality = resource_type.get_cardinality(public)
            value = getattr(item, name)
            if value is None:
                values = ()
            elif cardinality == UNLIMITED:
                values = tuple(value)
            else:
                values = (value,)
            if resource_type.is_reference_field(public):
                result[name] = FieldSource(name, values, cardinality, True, relationships[name].mapper.class_)
            else:
                result[name] = FieldSource(name, values, cardinality)
        return result

    def _pk_filter(self, resource_type, item_ids):
        model = resource_type.model
        keys = []
        for item_id in item_ids:
            try:
                keys.append(resource_type.parse_id(item_id))
            except (ValueError, ArithmeticError):
                contentapi.log.debug(f"Invalid {resource_type.type_name} id {item_id}")
        if not keys:
            return None
        if len(resource_type.id_fields) == 1:
            name = resource_type.id_fields[0]
            return getattr(model, name).in_([key[name] for key in keys])
        return or_(*[and_(*[getattr(model, name) == value for name, value in key.items()]) for key in keys])

    def load(self, resource_type, item_id):
        """
        :raises NotFoundError: there's no item with this id
        """
        items = self.load_multiple(resource_type, [item_id])
        if not items:
            raise NotFoundError(f"{resource_type.type_name} with id {item_id} not found")
        return items[0]

    def load_multiple(self, resource_type, ids, include=()) -> list:
        """
        :param ids: jsonapi ids
        :param include: public include paths, the related items are loaded with the items
        :return: the items, in the order of the ids (missing items are skipped)
        """
        ids = [str(item_id) for item_id in ids]
        criterion = self._pk_filter(resource_type, ids)
        if criterion is None:
            return []
        query = self.session.query(resource_type.model).filter(criterion)
        options = self._loader_options(resource_type, include)
        if options:
            query = query.options(*options)
        try:
            items = {resource_type.item_id(item): item for item in query.all()}
        except SQLAlchemyError as exc:
            raise GenericError(f"Failed to load {resource_type.type_name}: {exc}")
        return [items[item_id] for item_id in ids if item_id in items]

    def _loader_options(self, resource_type, include):
        """
        The included relationships are eager loaded if possible,
        see https://docs.sqlalchemy.org/en/14/orm/loading_relationships.html
        """
        options = []
        for path in include:
            current = resource_type
            option = None
            for segment in path.split("."):
                internal = current.get_internal_name(segment)
                if internal is None or not current.is_reference_field(segment):
                    break
                rel = getattr(current.model, internal)
                if rel.property.lazy not in ("select", "joined", "subquery", "selectin"):
                    # we can't set options for lazy_load 'dynamic'/'raise'/'noload' relationships
                    break
                option = option.selectinload(rel) if option is not None else selectinload(rel)
                current = self.repository.find_for_model(rel.property.mapper.class_)
                if current is None:
                    break
            if option is not None:
                options.append(option)
        return options

    def exists(self, resource_type, item_id) -> bool:
        return bool(self.load_multiple(resource_type, [item_id]))

    def engine(self, resource_type):
        return SQLAlchemyQueryEngine(self.session, resource_type)

    def create(self, resource_type, attributes, relationships=None, item_id=None):
        """
        :param attributes: internal name -> value
        :param relationships: internal name -> related item(s)
        :param item_id: client generated id
        :return: the new item
        :raises ConflictError: the item violates a constraint (eg. the id is taken)
        """
        item = resource_type.model()
        if item_id is not None:
            for name, value in resource_type.parse_id(item_id).items():
                setattr(item, name, value)
        self.assign(item, attributes, relationships)
        self.session.add(item)
        self.flush()
        return item

    @staticmethod
    def assign(item, attributes, relationships=None):
        for name, value in attributes.items():
            setattr(item, name, value)
        for name, value in (relationships or {}).items():
            setattr(item, name, value)

    def save(self, item):
        self.session.add(item)
        self.flush()
        return item

    def delete(self, item):
        self.session.delete(item)
        self.flush()

    def flush(self):
        try:
            self.session.flush()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError(f"Constraint violation: {exc.orig}")
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise GenericError(f"Failed to store item: {exc}")
