# Exception Handlers
#
# The application loglevel determines the level of detail shown to the user.
# If set to debug, too much sensitive info might be shown !
#
# The exceptions will be caught in http_method_decorator and formatted as
# JSON:API error objects, for example:
# {
#      "status": "403",
#      "title": "Forbidden",
#      "detail": "Forbidden: The current user is not allowed to view this resource.",
#      "source": {"pointer": "/data"}
# }
#
import traceback
from flask import has_request_context, request
from werkzeug.exceptions import NotFound
import contentapi
from sqlalchemy.exc import DontWrapMixin
from http import HTTPStatus
from .config import is_debug

HIDDEN_LOG = "(debug logging disabled)"


class JsonapiError(Exception, DontWrapMixin):
    """
    Base class for the errors that are returned to the client as a JSON:API "errors" document
    """

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR.value
    message = ""
    pointer = None
    api_code = None
    # CacheableMetadata the error response depends on (set by access denials)
    cacheability = None

    def to_error_objects(self) -> list:
        """
        :return: list of JSON:API error objects describing this error
        """
        error = {
            "status": str(self.status_code),
            "title": HTTPStatus(self.status_code).phrase,
            "detail": self.message,
        }
        if self.pointer is not None:
            error["source"] = {"pointer": self.pointer}
        if self.api_code is not None:
            error["code"] = str(self.api_code)
        return [error]


class ParseError(JsonapiError):
    """
    This exception is raised when the request could not be parsed (malformed filter, sort, page,
    include or payload). Client side input: the message is always sent back to the client.
    """

    status_code = HTTPStatus.BAD_REQUEST.value
    message = "Bad Request: "

    def __init__(self, message="", status_code=HTTPStatus.BAD_REQUEST.value, pointer=None, api_code=None):
        Exception.__init__(self, message)
        self.status_code = status_code
        self.pointer = pointer
        self.api_code = api_code
        contentapi.log.warning("ParseError: %s", message)
        self.message += message


class FieldResolutionError(ParseError):
    """
    This exception is raised when a public field path can't be resolved against a resource type
    """

    message = "Invalid field: "

    def __init__(self, message="", path=None):
        super().__init__(message)
        self.path = path


class AccessDeniedError(JsonapiError):
    """
    This exception is raised when the current user may not perform an operation on a resource
    we use FORBIDDEN(403) instead of UNAUTHORIZED(401) (old http status code descriptions were not clear)
    """

    status_code = HTTPStatus.FORBIDDEN.value
    message = "Forbidden: "

    def __init__(self, reason="", pointer="/data", resource_identifier=None, cacheability=None, api_code=None):
        Exception.__init__(self, reason)
        self.reason = reason
        self.pointer = pointer
        self.resource_identifier = resource_identifier
        self.cacheability = cacheability
        self.api_code = api_code
        contentapi.log.warning("AccessDeniedError: %s (%s)", reason, resource_identifier)
        self.message += reason

    def to_error_objects(self) -> list:
        result = super().to_error_objects()
        if self.resource_identifier is not None:
            result[0]["meta"] = {"entity": dict(self.resource_identifier)}
        return result


class NotFoundError(JsonapiError, NotFound):
    """
    This exception is raised when an item was not found
    """

    status_code = HTTPStatus.NOT_FOUND.value
    message = "NotFoundError "

    def __init__(self, message="", status_code=HTTPStatus.NOT_FOUND.value, api_code=None):
        """
        :param message: Message to be returned in the (json) body
        :param status_code: HTTP Status code
        :param api_code: API code
        """
        JsonapiError.__init__(self)
        self.status_code = status_code
        self.api_code = api_code
        contentapi.log.error("Not found: %s", message)
        if is_debug():
            self.message += message
        else:
            self.message += HIDDEN_LOG


class ConflictError(JsonapiError):
    """
    This exception is raised when the request conflicts with the stored state
    (client-generated id that already exists, type mismatch, to-one relationship POST)
    """

    status_code = HTTPStatus.CONFLICT.value
    message = "Conflict: "

    def __init__(self, message="", pointer=None, api_code=None):
        Exception.__init__(self, message)
        self.pointer = pointer
        self.api_code = api_code
        contentapi.log.warning("ConflictError: %s", message)
        self.message += message


class UnsupportedMediaTypeError(JsonapiError):
    """
    Servers MUST respond with a 415 Unsupported Media Type status code if a request specifies
    the header "Content-Type: application/vnd.api+json" with any media type parameters.
    """

    status_code = HTTPStatus.UNSUPPORTED_MEDIA_TYPE.value
    message = "Unsupported Media Type: "

    def __init__(self, content_type=""):
        Exception.__init__(self, content_type)
        contentapi.log.warning("UnsupportedMediaTypeError: %s", content_type)
        self.message += str(content_type)


class ValidationFailure(JsonapiError):
    """
    This exception is raised when a payload fails validation,
    every violation is reported to the client with its own error object
    """

    status_code = HTTPStatus.UNPROCESSABLE_ENTITY.value
    message = "Unprocessable Entity: "

    def __init__(self, violations):
        """
        :param violations: list of (pointer, detail) tuples
        """
        Exception.__init__(self, violations)
        self.violations = list(violations)
        contentapi.log.warning("ValidationFailure: %s", self.violations)
        self.message += "; ".join(detail for _, detail in self.violations)

    def to_error_objects(self) -> list:
        result = []
        for pointer, detail in self.violations:
            error = {"status": str(self.status_code), "title": HTTPStatus(self.status_code).phrase, "detail": detail}
            if pointer:
                error["source"] = {"pointer": pointer}
            result.append(error)
        return result


class GenericError(JsonapiError):
    """
    This exception is raised when an error has been detected
    """

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR.value  # 500
    message = "Generic Error: "

    def __init__(self, message, status_code=HTTPStatus.INTERNAL_SERVER_ERROR.value, api_code=None):
        Exception.__init__(self, message)
        self.status_code = status_code
        self.api_code = api_code
        contentapi.log.error("Generic Error: %s", message)
        if is_debug():
            if has_request_context():
                contentapi.log.info(f"Error in {request.url}")
            contentapi.log.debug(traceback.format_exc(120))
            self.message += str(message)
        else:
            self.message += HIDDEN_LOG
