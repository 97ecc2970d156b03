# Response class
from flask import Response


class JsonApiResponse(Response):
    """
    Response class, JSON:API documents are sent without media type parameters
    """

    default_mimetype = "application/vnd.api+json"

    def apply_cacheability(self, cacheability):
        """
        :param cacheability: CacheableMetadata of the response document
        """
        for name, value in cacheability.headers().items():
            self.headers[name] = value
        return self
