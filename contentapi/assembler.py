# JSON:API document assembly
#
# The DocumentAssembler turns stored items into a DocumentNode tree:
#   - every item and every field is checked against the access policy, denials don't raise
#     but result in null fields, label-only resources or inline errors
#   - sparse fieldsets (fields[type]=a,b) select the attributes of a type
#   - include paths (include=author,comments.author) nest a document in the relationship items
#   - the cacheability of everything that was used is merged into the document
#
# Only a sole top-level resource that may not be viewed results in an AccessDeniedError
# (a 403 response): a collection member becomes an inline error instead.
#
import json
from typing import Optional
import contentapi
from .access import VIEW, VIEW_LABEL, AccessChecker
from .cacheability import CacheableMetadata
from .errors import AccessDeniedError, NotFoundError, ParseError
from .links import LinkManager
from .nodes import DocumentNode, ErrorNode, FieldItemNode, FieldNode, RelationshipItemNode, RelationshipNode, ResourceNode


def parse_include(value) -> list:
    """
    :param value: include query parameter (csv) or list of paths
    :return: list of dotted include paths
    """
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    result = []
    for path in value:
        path = path.strip()
        if not path:
            continue
        if any(not segment for segment in path.split(".")):
            raise ParseError(f"Invalid include path '{path}'")
        result.append(path)
    return result


def build_include_tree(paths) -> dict:
    """
    ["author", "comments.author"] -> {"author": {}, "comments": {"author": {}}}
    """
    tree = {}
    for path in paths:
        node = tree
        for segment in path.split("."):
            node = node.setdefault(segment, {})
    return tree


def validate_include(resource_type, tree, repository):
    """
    Check the include tree before anything is loaded
    :raises ParseError: an include path segment is not a relationship
    """
    for name, subtree in tree.items():
        if not resource_type.is_reference_field(name):
            raise ParseError(f"Invalid include: '{name}' is not a relationship of {resource_type.type_name}")
        if not subtree:
            continue
        targets = [repository.get_by_type_name(t) for t in resource_type.get_relatable_types(name) if t in repository]
        invalid = None
        for target in targets:
            try:
                validate_include(target, subtree, repository)
                break
            except ParseError as exc:
                invalid = exc
        else:
            if invalid is not None:
                raise invalid


def parse_fields(fields) -> dict:
    """
    :param fields: type -> csv string or list of public field names
    :return: type -> frozenset of public field names
    """
    result = {}
    for type_name, names in (fields or {}).items():
        if isinstance(names, str):
            names = names.split(",")
        result[type_name] = frozenset(name.strip() for name in names if name.strip())
    return result


class AssemblyContext:
    """
    State of a single assembly pass
    """

    def __init__(self, fields, access):
        self.fields = fields
        self.access = access
        self.memo = {}  # (type, id, include subtree) -> ResourceNode | ErrorNode


class DocumentAssembler:
    def __init__(self, repository, store, policy=None, links: Optional[LinkManager] = None):
        """
        :param repository: ResourceTypeRepository
        :param store: ContentStore
        :param policy: AccessPolicy, the store answers the access checks by default
        :param links: LinkManager
        """
        self.repository = repository
        self.store = store
        self.policy = policy
        self.links = links if links is not None else LinkManager()

    def context(self, fields=None) -> AssemblyContext:
        check = self.policy.check if self.policy is not None else self.store.access
        return AssemblyContext(parse_fields(fields), AccessChecker(check))

    def assemble(
        self,
        data,
        include=(),
        fields=None,
        links=None,
        meta=None,
        has_next_page=False,
        page=None,
        is_collection=None,
        cacheability=None,
    ) -> DocumentNode:
        """
        :param data: a stored item, None, or a list of items
        :param include: include paths
        :param fields: sparse fieldsets, type -> field names
        :param links: additional top level links
        :param meta: top level meta
        :param has_next_page: whether the collection has a next page
        :param page: OffsetPage of the collection
        :param is_collection: whether data is a collection, by default lists and tuples are
        :param cacheability: additional CacheableMetadata of the document (eg. the list tag of the collection)
        :return: DocumentNode
        """
        if is_collection is None:
            is_collection = isinstance(data, (list, tuple))
        if is_collection:
            items = list(data)
        else:
            items = [] if data is None else [data]
        tree = build_include_tree(parse_include(include))
        ctx = self.context(fields)

        with self.links.render_scope() as scope:
            nodes = [self.build_item(item, ctx, tree, top_level=not is_collection) for item in items]
            if is_collection:
                document_links = self.links.pager_links(page, has_next_page)
            else:
                document_links = {"self": self.links.request_link()}
            document_links.update(links or {})

        document_links = {key: value for key, value in document_links.items() if value}
        own = scope.cacheability.merge(cacheability)
        return DocumentNode(nodes, is_collection, document_links, dict(meta or {}), own_cacheability=own)

    def assemble_relationship(self, item, field, include=(), fields=None, meta=None) -> DocumentNode:
        """
        Relationship endpoint document: the primary data is the resource linkage of the relationship
        :param item: the stored item owning the relationship
        :param field: public relationship name
        :param include: include paths, relative to the related resources
        """
        resource_type = self.store.resource_type_of(item)
        item_id = resource_type.item_id(item)
        if not resource_type.is_reference_field(field):
            raise NotFoundError(f"{resource_type.type_name} has no relationship {field}")
        internal = resource_type.get_internal_name(field)
        ctx = self.context(fields)
        identifier = {"type": resource_type.type_name, "id": item_id}

        item_access = ctx.access.check(VIEW, item, resource_type, item_id)
        if not item_access.is_allowed:
            raise AccessDeniedError(self._reason(item_access, resource_type), "/data", identifier, item_access.cacheability)
        field_access = ctx.access.check(VIEW, item, resource_type, item_id, field=internal)
        if not field_access.is_allowed:
            raise AccessDeniedError(self._reason(field_access, resource_type), "/data", identifier, field_access.cacheability)

        tree = {field: build_include_tree(parse_include(include))} if include else {}
        with self.links.render_scope() as scope:
            source = self.store.read_fields(item, resource_type)[internal]
            relationship = self.build_relationship(item, resource_type, item_id, field, source, field_access, ctx, tree)
            document_links = dict(relationship.links)
            relationship.links = {}

        own = scope.cacheability.merge(item_access.cacheability).merge(CacheableMetadata.for_item(resource_type.type_name, item_id))
        return DocumentNode([], False, document_links, dict(meta or {}), linkage=relationship, own_cacheability=own)

    @staticmethod
    def assemble_errors(exc) -> dict:
        """
        :param exc: JsonapiError
        :return: JSON:API error document
        """
        return {"errors": exc.to_error_objects(), "jsonapi": {"version": "1.0"}}

    @staticmethod
    def _reason(access, resource_type) -> str:
        return access.reason or f"The current user is not allowed to view this {resource_type.type_name} resource."

    def build_item(self, item, ctx, tree, top_level=False):
        """
        :return: ResourceNode, or ErrorNode if the item may not be viewed
        :raises AccessDeniedError: a top level item may not be viewed
        """
        resource_type = self.store.resource_type_of(item)
        item_id = resource_type.item_id(item)
        key = (resource_type.type_name, item_id, json.dumps(tree, sort_keys=True))
        if key in ctx.memo:
            return ctx.memo[key]

        access = ctx.access.check(VIEW, item, resource_type, item_id)
        if access.is_allowed:
            node = self.build_resource(item, resource_type, item_id, ctx, tree, access.cacheability)
            ctx.memo[key] = node
            return node

        label_access = None
        if resource_type.label_field is not None:
            label_access = ctx.access.check(VIEW_LABEL, item, resource_type, item_id)
        cacheability = access.cacheability.merge(label_access.cacheability if label_access is not None else None)
        if label_access is not None and label_access.is_allowed:
            node = self.build_resource(item, resource_type, item_id, ctx, {}, cacheability, only=(resource_type.label_field,))
            ctx.memo[key] = node
            return node

        identifier = {"type": resource_type.type_name, "id": item_id}
        cacheability = cacheability.merge(CacheableMetadata.for_item(resource_type.type_name, item_id))
        reason = self._reason(access, resource_type)
        if top_level:
            raise AccessDeniedError(reason, "/data", identifier, cacheability)
        contentapi.log.debug(f"{resource_type.type_name}:{item_id} replaced by an inline error")
        node = ErrorNode(403, "Forbidden", reason, "/data", identifier, cacheability)
        ctx.memo[key] = node
        return node

    def build_resource(self, item, resource_type, item_id, ctx, tree, cacheability, only=None) -> ResourceNode:
        """
        :param only: internal field names to restrict the resource to (label-only projection)
        """
        if only is None:
            for name in tree:
                if not resource_type.is_reference_field(name):
                    raise ParseError(f"Invalid include: '{name}' is not a relationship of {resource_type.type_name}")

        requested = ctx.fields.get(resource_type.type_name)
        attributes = {}
        relationships = {}
        for internal, source in self.store.read_fields(item, resource_type).items():
            if only is not None and internal not in only:
                continue
            public = resource_type.get_public_name(internal)
            if not source.is_reference and requested is not None and public not in requested:
                continue
            access = ctx.access.check(VIEW, item, resource_type, item_id, field=internal)
            if source.is_reference:
                relationships[public] = self.build_relationship(item, resource_type, item_id, public, source, access, ctx, tree)
            else:
                attributes[public] = self.build_attribute(public, source, access)

        links = {}
        if resource_type.is_locatable:
            links["self"] = self.links.resource_link(resource_type.type_name, item_id)
        cacheability = cacheability.merge(CacheableMetadata.for_item(resource_type.type_name, item_id))
        return ResourceNode(resource_type.type_name, item_id, attributes, relationships, links, {}, cacheability)

    @staticmethod
    def build_attribute(public, source, access) -> FieldNode:
        if not access.is_allowed:
            return FieldNode(public, [], source.cardinality, access.cacheability, denied=True)
        items = [FieldItemNode({"value": value}) for value in source.values]
        return FieldNode(public, items, source.cardinality, access.cacheability)

    def build_relationship(self, item, resource_type, item_id, public, source, access, ctx, tree) -> RelationshipNode:
        links = {}
        if resource_type.is_locatable:
            links["self"] = self.links.relationship_link(resource_type.type_name, item_id, public)
            links["related"] = self.links.related_link(resource_type.type_name, item_id, public)
        if not access.is_allowed:
            return RelationshipNode(public, [], source.cardinality, access.cacheability, denied=True, links=links)

        subtree = tree.get(public)
        items = []
        for target in source.values:
            target_type = self.store.find_resource_type(target)
            if target_type is None:
                # the related item's type isn't exposed
                continue
            include = None
            if subtree is not None:
                include = DocumentNode([self.build_item(target, ctx, subtree)])
            items.append(RelationshipItemNode(target_type.type_name, target_type.item_id(target), include=include))
        return RelationshipNode(public, items, source.cardinality, access.cacheability, links=links)
