"""
http://jsonapi.org/format/#content-negotiation-servers

Server Responsibilities
Servers MUST send all JSON API data in response documents with the header
"Content-Type: application/vnd.api+json" without any media type parameters.

Servers MUST respond with a 415 Unsupported Media Type status code if a request specifies the header
"Content-Type: application/vnd.api+json" with any media type parameters.
"""

import re
from flask import Request
from werkzeug.utils import cached_property
import contentapi
from .errors import ParseError, UnsupportedMediaTypeError

JSONAPI_MEDIA_TYPE = "application/vnd.api+json"
BRACKETS = re.compile(r"\[([^\[\]]*)\]")


def parse_nested_arg(args, name):
    """
    Parse the bracketed query parameters with the given name into a nested dict:
        filter[a][condition][path]=title&filter[a][condition][value][]=x
        -> {"a": {"condition": {"path": "title", "value": ["x"]}}}
    a trailing "[]" collects all values of the parameter in a list.

    :param args: werkzeug MultiDict of query arguments
    :param name: parameter name, eg. "filter"
    :return: nested dict, the plain parameter value if there are no bracketed parameters, or None
    """
    result = {}
    plain = None
    for key, values in args.lists():
        if key == name:
            plain = values[-1]
            continue
        if not key.startswith(name + "["):
            continue
        rest = key[len(name) :]
        segments = BRACKETS.findall(rest)
        if "".join(f"[{segment}]" for segment in segments) != rest:
            raise ParseError(f"Invalid query parameter '{key}'")
        collect = segments[-1] == ""
        if collect:
            segments = segments[:-1]
        if not segments or any(not segment for segment in segments):
            raise ParseError(f"Invalid query parameter '{key}'")

        node = result
        for segment in segments[:-1]:
            node = node.setdefault(segment, {})
            if not isinstance(node, dict):
                raise ParseError(f"Conflicting query parameter '{key}'")
        last = segments[-1]
        if collect:
            existing = node.setdefault(last, [])
            if not isinstance(existing, list):
                raise ParseError(f"Conflicting query parameter '{key}'")
            existing.extend(values)
        else:
            if isinstance(node.get(last), (dict, list)):
                raise ParseError(f"Conflicting query parameter '{key}'")
            node[last] = values[-1]

    if result:
        return result
    return plain


# pylint: disable=too-many-ancestors
class JsonApiRequest(Request):
    """
    Parse the jsonapi request arguments:
    - header: Content-Type should be "application/vnd.api+json"
    - query args: filter, sort, page, fields, include
    - body: valid json

    The query arguments are parsed lazily, so a ParseError is raised while the request is
    handled (and formatted by the http method decorator) instead of when the request is created
    """

    jsonapi_content_types = ["application/json", JSONAPI_MEDIA_TYPE]

    @property
    def is_jsonapi(self) -> bool:
        """
        :return: whether the request content type is a json content type
        """
        if not isinstance(self.content_type, str):
            return False
        return self.content_type.split(";")[0].strip() in self.jsonapi_content_types

    def check_content_type(self):
        """
        :raises UnsupportedMediaTypeError: the JSON:API media type has parameters, or the body isn't json
        """
        content_type = self.content_type or ""
        media_type, *parameters = content_type.split(";")
        if media_type.strip() == JSONAPI_MEDIA_TYPE and any(param.strip() for param in parameters):
            raise UnsupportedMediaTypeError(content_type)
        if not self.is_jsonapi:
            raise UnsupportedMediaTypeError(content_type or "no Content-Type")

    @cached_property
    def filter_param(self):
        return parse_nested_arg(self.args, "filter")

    @cached_property
    def page_param(self):
        return parse_nested_arg(self.args, "page")

    @cached_property
    def fields_param(self) -> dict:
        """
        https://jsonapi.org/format/#fetching-sparse-fieldsets
        :return: type -> csv field names
        """
        fields = parse_nested_arg(self.args, "fields")
        if fields is None:
            return {}
        if not isinstance(fields, dict) or any(not isinstance(names, str) for names in fields.values()):
            raise ParseError("Invalid fields parameter, use fields[type]=field1,field2")
        return fields

    @property
    def sort_param(self):
        return self.args.get("sort")

    @property
    def include_param(self):
        return self.args.get("include")

    def get_jsonapi_payload(self) -> dict:
        """
        :return: jsonapi request payload
        """
        result = self.get_json(force=True, silent=True)
        if result is None:
            contentapi.log.warning(f'Invalid JSON payload, content type "{self.content_type}"')
            raise ParseError("Invalid JSON payload")
        if not isinstance(result, dict):
            raise ParseError(f"Invalid JSON payload: {result}")
        return result
