# contentapi to json encoding

import json
from flask.json.provider import DefaultJSONProvider
import contentapi
from .cacheability import CacheableMetadata
from .nodes import DocumentNode, ErrorNode, FieldNode, ResourceNode, rasterize_value


class _JsonApiJSONEncoder:
    """
    JSON encoding for the document nodes and the common stored types
    """

    # pylint: disable=arguments-differ,method-hidden
    def default(self, obj, **kwargs):
        """
        override the default json encoding
        :param obj: object to be encoded
        :return: encoded/serialized object
        """
        if obj is None:
            return None
        if isinstance(obj, (DocumentNode, ResourceNode, ErrorNode, FieldNode)):
            return obj.rasterize()
        if isinstance(obj, CacheableMetadata):
            return {"tags": sorted(obj.tags), "contexts": sorted(obj.contexts), "max-age": obj.max_age}
        result = rasterize_value(obj)
        if isinstance(result, str) and not isinstance(obj, str):
            # rasterize_value falls back to str() for unknown types
            contentapi.log.debug(f'JSON Encoding: encoded "{type(obj)}" as string')
        return result


class JsonApiJSONProvider(_JsonApiJSONEncoder, DefaultJSONProvider):
    """
    Flask JSON encoding
    """

    mimetype = "application/vnd.api+json"


class JsonApiJSONEncoder(_JsonApiJSONEncoder, json.JSONEncoder):
    """
    Common JSON encoding
    """

    pass
