# JSON:API request documents -> stored items
#
# https://jsonapi.org/format/#crud
#
# The payload is validated completely before anything is written: all problems with the
# attributes and relationships are collected and reported at once (422 Unprocessable Entity),
# every error object points to the offending member, eg. "/data/attributes/title".
#
from collections import Counter
from dataclasses import dataclass, field
import decimal
from typing import Optional
import contentapi
from .access import CREATE, DELETE, EDIT, AccessChecker
from .errors import AccessDeniedError, ConflictError, NotFoundError, ParseError, ValidationFailure
from .resource_type import UNLIMITED, coerce_value


@dataclass
class ParsedResource:
    """
    :param attributes: internal name -> value
    :param relationships: internal name -> related item, None or list of related items
    :param item_id: the id member of the resource object
    """

    attributes: dict = field(default_factory=dict)
    relationships: dict = field(default_factory=dict)
    item_id: Optional[str] = None


@dataclass
class RelationshipChange:
    """
    Outcome of a relationship mutation, as lists of "type:id" keys
    """

    before: list
    expected: list
    after: list

    @property
    def arity_changed(self) -> bool:
        return relationship_arity_changed(self.expected, self.after)


def relationship_arity_changed(expected, after) -> bool:
    """
    :param expected: the related items the relationship should hold after the request
    :param after: the related items it actually holds
    :return: True if the stored relationship differs from what the client asked for
    (the response then includes the resulting linkage), the order of the items doesn't matter
    """
    return Counter(expected) != Counter(after)


def _unique(items) -> list:
    result = []
    for item in items:
        if not any(item is other for other in result):
            result.append(item)
    return result


def convert_attribute(column, value):
    """
    Convert a JSON value to the python type of a column
    :raises ValueError: the value doesn't fit the column
    """
    if column is None or value is None:
        return value
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value
    if isinstance(value, python_type) and not (isinstance(value, bool) and python_type is not bool):
        return value
    if python_type is float and isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    if python_type is decimal.Decimal and isinstance(value, (int, float)) and not isinstance(value, bool):
        return decimal.Decimal(str(value))
    if isinstance(value, str) and python_type is not str:
        return coerce_value(column, value)
    raise ValueError(f"expected {python_type.__name__}, got {type(value).__name__}")


class Denormalizer:
    def __init__(self, store, repository, policy=None):
        """
        :param store: ContentStore
        :param repository: ResourceTypeRepository
        :param policy: AccessPolicy, the store answers the access checks by default
        """
        self.store = store
        self.repository = repository
        self.policy = policy

    def access_checker(self) -> AccessChecker:
        return AccessChecker(self.policy.check if self.policy is not None else self.store.access)

    @staticmethod
    def resource_object(document) -> dict:
        if not isinstance(document, dict) or not isinstance(document.get("data"), dict):
            raise ParseError("The request document must contain a single resource object as primary data", pointer="/data")
        return document["data"]

    def denormalize(self, document, resource_type, item=None) -> ParsedResource:
        """
        :param document: request document
        :param resource_type: the ResourceType of the endpoint
        :param item: the item that's updated, None when creating
        :return: ParsedResource
        :raises ParseError: malformed document
        :raises ConflictError: type (or id) mismatch
        :raises ValidationFailure: invalid attributes or relationships
        """
        data = self.resource_object(document)
        data_type = data.get("type")
        if data_type != resource_type.type_name:
            raise ConflictError(f"Invalid type member '{data_type}', expected '{resource_type.type_name}'", pointer="/data/type")

        result = ParsedResource(item_id=None if data.get("id") is None else str(data.get("id")))
        if item is not None:
            item_id = resource_type.item_id(item)
            if result.item_id is None:
                raise ParseError("The resource object must contain an id member", pointer="/data/id")
            if result.item_id != item_id:
                raise ConflictError(f"The id member '{result.item_id}' doesn't match the url id '{item_id}'", pointer="/data/id")

        attributes = data.get("attributes", {})
        relationships = data.get("relationships", {})
        if not isinstance(attributes, dict):
            raise ParseError("The attributes member must be an object", pointer="/data/attributes")
        if not isinstance(relationships, dict):
            raise ParseError("The relationships member must be an object", pointer="/data/relationships")

        violations = []
        for public, value in attributes.items():
            pointer = f"/data/attributes/{public}"
            internal = resource_type.get_internal_name(public)
            if internal is None or resource_type.is_reference_field(public):
                violations.append((pointer, f"'{public}' is not an attribute of {resource_type.type_name}"))
                continue
            if internal in resource_type.id_fields:
                violations.append((pointer, "The primary key can't be written"))
                continue
            column = resource_type.get_column(internal)
            if value is None and column is not None and not column.nullable:
                violations.append((pointer, f"'{public}' may not be null"))
                continue
            try:
                result.attributes[internal] = convert_attribute(column, value)
            except (ValueError, ArithmeticError) as exc:
                violations.append((pointer, f"Invalid value for '{public}': {exc}"))

        for public, relationship in relationships.items():
            pointer = f"/data/relationships/{public}"
            if not resource_type.is_reference_field(public):
                violations.append((pointer, f"'{public}' is not a relationship of {resource_type.type_name}"))
                continue
            if not isinstance(relationship, dict) or "data" not in relationship:
                violations.append((pointer, "A relationship object must contain a data member"))
                continue
            value, linkage_violations = self.resolve_linkage(resource_type, public, relationship["data"], f"{pointer}/data")
            violations.extend(linkage_violations)
            if not linkage_violations:
                result.relationships[resource_type.get_internal_name(public)] = value

        if item is None:
            violations.extend(self.missing_required(resource_type, result))

        if violations:
            raise ValidationFailure(violations)
        return result

    @staticmethod
    def missing_required(resource_type, parsed):
        """
        :return: violations for the non-nullable columns without default that weren't given
        """
        result = []
        for internal in resource_type.enabled_fields():
            column = resource_type.get_column(internal)
            if column is None or column.nullable or column.primary_key or column.foreign_keys:
                continue
            if column.default is not None or column.server_default is not None:
                continue
            if internal not in parsed.attributes:
                public = resource_type.get_public_name(internal)
                result.append((f"/data/attributes/{public}", f"'{public}' is required"))
        return result

    def resolve_linkage(self, resource_type, public, data, pointer):
        """
        Load the items a resource linkage refers to
        :return: (related item | None | list of related items, violations)
        """
        to_many = resource_type.get_cardinality(public) == UNLIMITED
        if to_many:
            if not isinstance(data, list):
                return None, [(pointer, f"The data of to-many relationship '{public}' must be an array")]
            identifiers = data
        else:
            if data is None:
                return None, []
            if not isinstance(data, dict):
                return None, [(pointer, f"The data of to-one relationship '{public}' must be a resource identifier or null")]
            identifiers = [data]

        targets = []
        violations = []
        relatable = resource_type.get_relatable_types(public)
        for index, identifier in enumerate(identifiers):
            item_pointer = f"{pointer}/{index}" if to_many else pointer
            if not isinstance(identifier, dict) or not identifier.get("type") or identifier.get("id") is None:
                violations.append((item_pointer, "Invalid resource identifier, type and id members are required"))
                continue
            target_type_name = identifier["type"]
            if target_type_name not in relatable or target_type_name not in self.repository:
                violations.append((item_pointer, f"'{target_type_name}' resources can't be related through '{public}'"))
                continue
            target_type = self.repository.get_by_type_name(target_type_name)
            found = self.store.load_multiple(target_type, [identifier["id"]])
            if not found:
                violations.append((item_pointer, f"The related resource {target_type_name}:{identifier['id']} does not exist"))
                continue
            targets.append(found[0])

        if to_many:
            return _unique(targets), violations
        return (targets[0] if targets else None), violations

    def check_fields(self, checker, operation, item, resource_type, parsed, item_id=None):
        for internal in list(parsed.attributes) + list(parsed.relationships):
            access = checker.check(operation, item, resource_type, item_id, field=internal)
            if not access.is_allowed:
                public = resource_type.get_public_name(internal)
                kind = "relationships" if internal in parsed.relationships else "attributes"
                raise AccessDeniedError(
                    access.reason or f"The current user is not allowed to {operation} the field '{public}'.",
                    pointer=f"/data/{kind}/{public}",
                    cacheability=access.cacheability,
                )

    def create(self, document, resource_type):
        """
        :return: the new item
        """
        data = self.resource_object(document)
        if not resource_type.is_mutable:
            raise AccessDeniedError(f"{resource_type.type_name} resources can't be created")
        checker = self.access_checker()
        access = checker.check(CREATE, None, resource_type)
        if not access.is_allowed:
            raise AccessDeniedError(access.reason or f"The current user is not allowed to create {resource_type.type_name} resources.")

        client_id = data.get("id")
        if client_id is not None:
            if not resource_type.allow_client_generated_ids:
                raise AccessDeniedError("Client-generated ids are not supported", pointer="/data/id")
            if self.store.exists(resource_type, client_id):
                raise ConflictError(f"A {resource_type.type_name} resource with id {client_id} already exists", pointer="/data/id")

        parsed = self.denormalize(document, resource_type)
        self.check_fields(checker, CREATE, None, resource_type, parsed)
        item = self.store.create(resource_type, parsed.attributes, parsed.relationships, parsed.item_id)
        contentapi.log.info(f"Created {resource_type.type_name}:{resource_type.item_id(item)}")
        return item

    def update(self, item, document, resource_type):
        """
        :return: the updated item
        """
        item_id = resource_type.item_id(item)
        self.check_item(item, resource_type, EDIT)
        parsed = self.denormalize(document, resource_type, item)
        self.check_fields(self.access_checker(), EDIT, item, resource_type, parsed, item_id)
        self.store.assign(item, parsed.attributes, parsed.relationships)
        return self.store.save(item)

    def delete(self, item, resource_type):
        self.check_item(item, resource_type, DELETE)
        self.store.delete(item)
        contentapi.log.info(f"Deleted {resource_type.type_name}:{resource_type.item_id(item)}")

    def check_item(self, item, resource_type, operation, field=None):
        """
        :raises AccessDeniedError: the operation isn't allowed on the item (or field)
        """
        if not resource_type.is_mutable:
            raise AccessDeniedError(f"{resource_type.type_name} resources are read-only")
        item_id = resource_type.item_id(item)
        checker = self.access_checker()
        access = checker.check(operation, item, resource_type, item_id)
        if access.is_allowed and field is not None:
            access = access.and_(checker.check(operation, item, resource_type, item_id, field=field))
        if not access.is_allowed:
            raise AccessDeniedError(
                access.reason or f"The current user is not allowed to {operation} this {resource_type.type_name} resource.",
                resource_identifier={"type": resource_type.type_name, "id": item_id},
                cacheability=access.cacheability,
            )

    # Relationship endpoints: https://jsonapi.org/format/#crud-updating-relationships

    def _relationship(self, resource_type, field):
        if not resource_type.is_reference_field(field):
            raise NotFoundError(f"{resource_type.type_name} has no relationship {field}")
        return resource_type.get_internal_name(field)

    def parse_linkage_document(self, document, resource_type, field):
        if not isinstance(document, dict) or "data" not in document:
            raise ParseError("The request document must contain a data member", pointer="/data")
        value, violations = self.resolve_linkage(resource_type, field, document["data"], "/data")
        if violations:
            raise ValidationFailure(violations)
        return value

    def _keys(self, items) -> list:
        result = []
        for item in items:
            resource_type = self.store.find_resource_type(item)
            if resource_type is not None:
                result.append(f"{resource_type.type_name}:{resource_type.item_id(item)}")
        return result

    def _current(self, item, internal, to_many) -> list:
        value = getattr(item, internal)
        if to_many:
            return list(value)
        return [] if value is None else [value]

    def add_to_relationship(self, item, resource_type, field, document) -> RelationshipChange:
        """
        POST to a to-many relationship: add the given members
        """
        internal = self._relationship(resource_type, field)
        if resource_type.get_cardinality(field) != UNLIMITED:
            raise ConflictError(f"'{field}' is a to-one relationship, use PATCH to replace it", pointer="/data")
        targets = self.parse_linkage_document(document, resource_type, field)
        self.check_item(item, resource_type, EDIT, internal)

        current = self._current(item, internal, True)
        before = self._keys(current)
        added = [target for target in targets if not any(target is member for member in current)]
        collection = getattr(item, internal)
        for target in added:
            collection.append(target)
        self.store.save(item)
        expected = before + self._keys(added)
        return RelationshipChange(before, expected, self._keys(self._current(item, internal, True)))

    def replace_relationship(self, item, resource_type, field, document) -> RelationshipChange:
        """
        PATCH a relationship: replace all members (to-many) or the related item (to-one)
        """
        internal = self._relationship(resource_type, field)
        to_many = resource_type.get_cardinality(field) == UNLIMITED
        value = self.parse_linkage_document(document, resource_type, field)
        self.check_item(item, resource_type, EDIT, internal)

        before = self._keys(self._current(item, internal, to_many))
        setattr(item, internal, value)
        self.store.save(item)
        expected = self._keys(value if to_many else ([] if value is None else [value]))
        return RelationshipChange(before, expected, self._keys(self._current(item, internal, to_many)))

    def remove_from_relationship(self, item, resource_type, field, document) -> RelationshipChange:
        """
        DELETE from a to-many relationship: remove the given members
        """
        internal = self._relationship(resource_type, field)
        if resource_type.get_cardinality(field) != UNLIMITED:
            raise ConflictError(f"'{field}' is a to-one relationship, PATCH it with null data to clear it", pointer="/data")
        targets = self.parse_linkage_document(document, resource_type, field)
        self.check_item(item, resource_type, EDIT, internal)

        current = self._current(item, internal, True)
        before = self._keys(current)
        collection = getattr(item, internal)
        for target in targets:
            if any(target is member for member in current):
                collection.remove(target)
        self.store.save(item)
        removed = set(self._keys(targets))
        expected = [key for key in before if key not in removed]
        return RelationshipChange(before, expected, self._keys(self._current(item, internal, True)))


