# flask_restful API subclass
from http import HTTPStatus
import werkzeug
from flask_restful import Api as FRApiBase
from flask_restful.representations.json import output_json
from flask_restful.utils import OrderedDict, cors
from flask import jsonify, make_response, request
from functools import wraps
import contentapi
from .access import AccessPolicy
from .assembler import DocumentAssembler
from .config import get_config, is_debug
from .errors import JsonapiError, GenericError
from .field_resolver import FieldResolver
from .json_encoder import JsonApiJSONProvider
from .jsonapi import CollectionResource, EntryPointResource, InstanceResource, RelatedResource, RelationshipResource
from .links import LinkManager
from .query import QueryBuilder
from .resource_type import ResourceTypeRepository
from .store import SQLAlchemyContentStore
from flask.app import Flask
from typing import Callable

HTTP_METHODS = ["GET", "POST", "PATCH", "DELETE"]
DEFAULT_REPRESENTATIONS = [("application/vnd.api+json", output_json)]
# methods that must send a JSON:API request document
BODY_METHODS = ["post", "patch"]


class JsonApi(FRApiBase):
    """
    Subclass of the flask_restful Api class where we add the expose_object method:
    this method creates the JSON:API endpoints of an sqla model

    The collaborators can be replaced:
    :param repository: ResourceTypeRepository holding the exposed resource types
    :param store: ContentStore, an SQLAlchemyContentStore by default
    :param policy: AccessPolicy answering the access checks, the store's policy by default
    """

    def __init__(
        self,
        app: Flask,
        prefix: str = "",
        store=None,
        policy=None,
        url_root: str = None,
        app_db=None,
        repository=None,
        **kwargs,
    ) -> None:
        """
        http://jsonapi.org/format/#content-negotiation-servers
        Servers MUST send all JSON:API data in response documents with
        the header Content-Type: application/vnd.api+json without any media type parameters.

        Servers MUST respond with a 415 Unsupported Media Type status code if
        a request specifies the header Content-Type: application/vnd.api+json with any media type parameters.
        """
        config = {name: kwargs.pop(name) for name in list(kwargs) if name.isupper()}
        kwargs["default_mediatype"] = "application/vnd.api+json"
        contentapi.ContentAPI(app, prefix=prefix, app_db=app_db, **config)

        self.repository = repository if repository is not None else ResourceTypeRepository()
        self.policy = policy
        if store is None:
            store = SQLAlchemyContentStore(self.repository, policy=policy if policy is not None else AccessPolicy())
        self.store = store
        self.url_root = url_root
        self.resolver = FieldResolver(self.repository)
        self.query_builder = QueryBuilder(self.resolver, self.store.engine)

        super().__init__(app, prefix=prefix, **kwargs)
        app.json = JsonApiJSONProvider(app)
        self.representations = OrderedDict(DEFAULT_REPRESENTATIONS)
        entry_point = api_decorator(type("EntryPoint_API", (EntryPointResource,), {"api": self}))
        self.add_resource(entry_point, "/", endpoint="entry_point", methods=["GET"])

    def link_manager(self) -> LinkManager:
        """
        :return: a LinkManager for the current request
        """
        return LinkManager(self.prefix, self.url_root)

    def expose_object(self, model, **properties):
        """This methods creates the API url endpoints for an sqla model
        :param model: sqla declarative model class that we would like to expose
        :param properties: ResourceType properties, eg. exclude_attrs, label_field, allow_client_generated_ids
        :return: the registered ResourceType

        creates classes of the form

        @api_decorator
        class Article_API(CollectionResource):
            resource_type = <ResourceType articles>
            api = self

        and adds them as api resources to
            /articles
            /articles/<id>
            /articles/<id>/<field>
            /articles/<id>/relationships/<field>
        """
        resource_type = self.repository.register(model, **properties)
        type_name = resource_type.type_name
        class_properties = {"resource_type": resource_type, "api": self}
        api_class_name = f"{model.__name__}_API"  # name for dynamically generated classes

        resources = [
            (CollectionResource, "", f"/{type_name}", ["GET", "POST"]),
            (InstanceResource, "_i", f"/{type_name}/<string:id>", ["GET", "PATCH", "DELETE"]),
            (RelatedResource, "_related", f"/{type_name}/<string:id>/<string:field>", ["GET"]),
            (RelationshipResource, "_rel", f"/{type_name}/<string:id>/relationships/<string:field>", HTTP_METHODS),
        ]
        for base, suffix, url, methods in resources:
            api_class = api_decorator(type(api_class_name + suffix, (base,), class_properties))
            endpoint = f"{type_name}{suffix}"
            contentapi.log.info(f"Exposing {type_name} on {url}, endpoint: {endpoint}")
            self.add_resource(api_class, url, endpoint=endpoint, methods=methods)

        return resource_type

    def expose(self, *models, **properties):
        """
        Expose multiple models at once
        """
        return [self.expose_object(model, **properties) for model in models]


def api_decorator(cls):
    """Decorator for the API views:
        - add cors
        - add generic exception handling
        - add the custom decorators of the exposed model

    We couldn't use inheritance because the method decorator
    references the cls.resource_type which isn't known

    :param cls: The class that will be decorated (e.g. CollectionResource)
    :return: decorated class
    """

    cors_domain = get_config("cors_domain")
    for method_name in ["patch", "post", "delete", "get"]:
        method = getattr(cls, method_name, None)
        if not method:
            continue

        decorated_method = method
        # Add cors
        if cors_domain is not None:
            decorated_method = cors.crossdomain(origin=cors_domain)(decorated_method)
        # Add exception handling
        decorated_method = http_method_decorator(decorated_method, method_name)

        # The user can add custom decorators
        # Apply the custom decorators, specified as class variable list
        for custom_decorator in getattr(getattr(cls.resource_type, "model", None), "custom_decorators", []):
            decorated_method = custom_decorator(decorated_method)

        setattr(cls, method_name, decorated_method)
    return cls


def error_response(exc: JsonapiError):
    """
    :return: response with the JSON:API errors document of the exception
    """
    response = make_response(jsonify(DocumentAssembler.assemble_errors(exc)), exc.status_code)
    if exc.cacheability is not None and get_config("ENABLE_CACHE_HEADERS"):
        response.apply_cacheability(exc.cacheability)
    return response


def http_method_decorator(fun: Callable, method_name: str = None) -> Callable:
    """Decorator for the supported jsonapi HTTP methods (get, post, patch, delete)
    - commit the database
    - convert all exceptions to a JSON:API errors document

    This method will be called for all requests
    :param fun:
    :param method_name: http method implemented by fun, its name by default
    :return: wrapped fun
    """

    @wraps(fun)
    def method_wrapper(resource, *args, **kwargs):
        """Wrap the method and perform error handling
        :param resource: the Resource instance
        :return: result of the wrapped method
        """
        session = resource.store.session
        try:
            if (method_name or fun.__name__) in BODY_METHODS:
                request.check_content_type()
            result = fun(resource, *args, **kwargs)
            session.commit()
            return result

        except JsonapiError as exc:
            if exc.status_code >= HTTPStatus.INTERNAL_SERVER_ERROR:
                contentapi.log.exception(exc)
            contentapi_exception = exc

        except werkzeug.exceptions.HTTPException as exc:
            contentapi.log.error(exc.description)
            contentapi_exception = GenericError(exc.description, exc.code)

        except Exception as exc:
            contentapi.log.exception(exc)
            contentapi_exception = GenericError(str(exc) if is_debug() else "Logging Disabled")

        session.rollback()
        return error_response(contentapi_exception)

    return method_wrapper
