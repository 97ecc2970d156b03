# flake8: noqa: F401
#
# contentapi_init defines DB, log and the ContentAPI configuration class,
# it has to be imported before the modules that use them
#
from .contentapi_init import DB, log, ContentAPI
from .errors import (
    JsonapiError,
    ParseError,
    FieldResolutionError,
    AccessDeniedError,
    NotFoundError,
    ConflictError,
    UnsupportedMediaTypeError,
    ValidationFailure,
    GenericError,
)
from .request import JsonApiRequest
from .response import JsonApiResponse
from .cacheability import CacheableMetadata
from .access import AccessPolicy, AccessResult, ColumnPermissionPolicy
from .resource_type import ResourceType, ResourceTypeRepository
from .field_resolver import FieldResolver
from .filters import compile_filter, expand_filter
from .paging import OffsetPage
from .sorting import parse_sort
from .query import QueryBuilder, SQLAlchemyQueryEngine
from .store import SQLAlchemyContentStore
from .nodes import DocumentNode, ResourceNode, ErrorNode
from .assembler import DocumentAssembler
from .denormalizer import Denormalizer
from .links import LinkManager
from .json_encoder import JsonApiJSONEncoder, JsonApiJSONProvider
from .api import JsonApi
from .__about__ import __version__, __description__

__all__ = (
    "__version__",
    "__description__",
    #
    "ContentAPI",
    "JsonApi",
    "DB",
    "log",
    # collaborators:
    "ResourceType",
    "ResourceTypeRepository",
    "FieldResolver",
    "SQLAlchemyContentStore",
    "SQLAlchemyQueryEngine",
    "QueryBuilder",
    "DocumentAssembler",
    "Denormalizer",
    "LinkManager",
    # access:
    "AccessPolicy",
    "AccessResult",
    "ColumnPermissionPolicy",
    "CacheableMetadata",
    # query parameters:
    "compile_filter",
    "expand_filter",
    "parse_sort",
    "OffsetPage",
    # documents:
    "DocumentNode",
    "ResourceNode",
    "ErrorNode",
    "JsonApiJSONEncoder",
    "JsonApiJSONProvider",
    # Errors:
    "JsonapiError",
    "ParseError",
    "FieldResolutionError",
    "AccessDeniedError",
    "NotFoundError",
    "ConflictError",
    "UnsupportedMediaTypeError",
    "ValidationFailure",
    "GenericError",
    # request
    "JsonApiRequest",
    "JsonApiResponse",
)
