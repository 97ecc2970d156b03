#  This file contains the jsonapi flask-restful "Resource" objects:
#  - CollectionResource for /<type>
#  - InstanceResource for /<type>/<id>
#  - RelatedResource for /<type>/<id>/<field>
#  - RelationshipResource for /<type>/<id>/relationships/<field>
#  - EntryPointResource for the api root
#
#  JsonApi.expose_object creates a subclass of each with the exposed ResourceType and
#  the JsonApi instance holding the collaborators (repository, store, query builder, policy).
#  A DocumentAssembler and a Denormalizer are created for every request.
#
# pylint: disable=redefined-builtin,invalid-name,no-member
#
from http import HTTPStatus
from flask import jsonify, make_response, request
from flask_restful import Resource as FRResource
import contentapi
from .assembler import DocumentAssembler, build_include_tree, parse_include, validate_include
from .nodes import DocumentNode
from .access import VIEW, AccessChecker
from .cacheability import CacheableMetadata
from .config import get_config
from .denormalizer import Denormalizer
from .errors import AccessDeniedError, NotFoundError
from .paging import max_page_size


class Resource(FRResource):
    """
    Superclass for the exposed endpoints
    """

    # ResourceType served by the endpoint
    resource_type = None
    # JsonApi instance that exposed the endpoint
    api = None

    @property
    def store(self):
        return self.api.store

    @property
    def repository(self):
        return self.api.repository

    def assembler(self) -> DocumentAssembler:
        return DocumentAssembler(self.repository, self.store, self.api.policy, self.api.link_manager())

    def denormalizer(self) -> Denormalizer:
        return Denormalizer(self.store, self.repository, self.api.policy)

    def includes(self, resource_type=None, field=None) -> list:
        """
        :param resource_type: ResourceType the include paths start from
        :param field: relationship the include paths are relative to (related and relationship endpoints)
        :return: the requested include paths, or the DEFAULT_INCLUDE paths
        :raises ParseError: an include path is invalid
        """
        include = request.include_param
        if include is None:
            include = get_config("DEFAULT_INCLUDE") or ""
        paths = parse_include(include)
        tree = build_include_tree(paths)
        if field is not None:
            tree = {field: tree}
        validate_include(resource_type or self.resource_type, tree, self.repository)
        return paths

    def load_item(self, id):
        return self.store.load(self.resource_type, id)

    @staticmethod
    def render(document, status=HTTPStatus.OK, headers=None):
        """
        :param document: DocumentNode
        :return: response with the rasterized document
        """
        response = make_response(jsonify(document.rasterize()), status)
        for name, value in (headers or {}).items():
            response.headers[name] = value
        if request.method == "GET" and get_config("ENABLE_CACHE_HEADERS"):
            response.apply_cacheability(document.cacheability)
        return response

    @staticmethod
    def no_content():
        return make_response("", HTTPStatus.NO_CONTENT)


class CollectionResource(Resource):
    """
    /<type>: list and create resources
    """

    def get(self, **kwargs):
        """
        Fetch a page of the collection: https://jsonapi.org/format/#fetching-resources
        """
        resource_type = self.resource_type
        include = self.includes()
        compiled = self.api.query_builder.build(
            resource_type, request.filter_param, request.sort_param, request.page_param, max_page_size()
        )
        ids, has_next_page = self.api.query_builder.fetch(compiled)
        items = self.store.load_multiple(resource_type, ids, include)
        document = self.assembler().assemble(
            items,
            include,
            request.fields_param,
            has_next_page=has_next_page,
            page=compiled.page,
            is_collection=True,
            cacheability=CacheableMetadata.for_list(resource_type.type_name),
        )
        return self.render(document)

    def post(self, **kwargs):
        """
        Create a resource: https://jsonapi.org/format/#crud-creating
        """
        include = self.includes()
        item = self.denormalizer().create(request.get_jsonapi_payload(), self.resource_type)
        assembler = self.assembler()
        document = assembler.assemble(item, include, request.fields_param)
        location = assembler.links.resource_link(self.resource_type.type_name, self.resource_type.item_id(item))
        return self.render(document, HTTPStatus.CREATED, {"Location": location})


class InstanceResource(Resource):
    """
    /<type>/<id>: fetch, update and delete a resource
    """

    def get(self, id, **kwargs):
        include = self.includes()
        item = self.load_item(id)
        document = self.assembler().assemble(item, include, request.fields_param)
        return self.render(document)

    def patch(self, id, **kwargs):
        """
        Update a resource: https://jsonapi.org/format/#crud-updating
        """
        include = self.includes()
        item = self.load_item(id)
        item = self.denormalizer().update(item, request.get_jsonapi_payload(), self.resource_type)
        document = self.assembler().assemble(item, include, request.fields_param)
        return self.render(document)

    def delete(self, id, **kwargs):
        item = self.load_item(id)
        self.denormalizer().delete(item, self.resource_type)
        return self.no_content()


class RelatedResource(Resource):
    """
    /<type>/<id>/<field>: the related resources of a relationship
    """

    def get(self, id, field, **kwargs):
        resource_type = self.resource_type
        if not resource_type.is_reference_field(field):
            raise NotFoundError(f"{resource_type.type_name} has no relationship {field}")
        internal = resource_type.get_internal_name(field)
        item = self.load_item(id)
        item_id = resource_type.item_id(item)

        checker = AccessChecker(self.api.policy.check if self.api.policy is not None else self.store.access)
        access = checker.check(VIEW, item, resource_type, item_id)
        if access.is_allowed:
            access = access.and_(checker.check(VIEW, item, resource_type, item_id, field=internal))
        if not access.is_allowed:
            raise AccessDeniedError(
                access.reason or f"The current user is not allowed to view the '{field}' relationship.",
                resource_identifier={"type": resource_type.type_name, "id": item_id},
                cacheability=access.cacheability,
            )

        source = self.store.read_fields(item, resource_type)[internal]
        targets = [target for target in source.values if self.store.find_resource_type(target) is not None]
        include = self.includes(resource_type, field)
        to_many = source.cardinality != 1
        cacheability = access.cacheability.merge(CacheableMetadata.for_item(resource_type.type_name, item_id))
        data = targets if to_many else (targets[0] if targets else None)
        document = self.assembler().assemble(data, include, request.fields_param, is_collection=to_many, cacheability=cacheability)
        return self.render(document)


class RelationshipResource(Resource):
    """
    /<type>/<id>/relationships/<field>: the resource linkage of a relationship
    https://jsonapi.org/format/#fetching-relationships
    """

    def get(self, id, field, **kwargs):
        include = self.includes(field=field) if self.resource_type.is_reference_field(field) else []
        item = self.load_item(id)
        document = self.assembler().assemble_relationship(item, field, include, request.fields_param)
        return self.render(document)

    def post(self, id, field, **kwargs):
        item = self.load_item(id)
        change = self.denormalizer().add_to_relationship(item, self.resource_type, field, request.get_jsonapi_payload())
        return self.changed(item, field, change)

    def patch(self, id, field, **kwargs):
        item = self.load_item(id)
        change = self.denormalizer().replace_relationship(item, self.resource_type, field, request.get_jsonapi_payload())
        return self.changed(item, field, change)

    def delete(self, id, field, **kwargs):
        item = self.load_item(id)
        change = self.denormalizer().remove_from_relationship(item, self.resource_type, field, request.get_jsonapi_payload())
        return self.changed(item, field, change)

    def changed(self, item, field, change):
        """
        :return: 204 No Content when the relationship holds exactly what was requested,
        200 with the resulting linkage otherwise
        """
        if not change.arity_changed:
            return self.no_content()
        contentapi.log.info(f"Relationship {self.resource_type.type_name}.{field} differs from the request: {change.after}")
        document = self.assembler().assemble_relationship(item, field)
        return self.render(document)


class EntryPointResource(Resource):
    """
    /: the api root, links to the collection of every exposed resource type
    """

    def get(self, **kwargs):
        links = self.api.link_manager()
        with links.render_scope() as scope:
            collections = {
                resource_type.type_name: links.collection_link(resource_type.type_name)
                for resource_type in self.repository.all()
                if resource_type.is_locatable
            }
            collections["self"] = links.base_url()
        document = DocumentNode([], is_collection=True, links=collections, own_cacheability=scope.cacheability)
        return self.render(document)
