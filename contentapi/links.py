# JSON:API links
#
# Links are built from the url root of the current request (or the URL_ROOT config),
# the generated links depend on the site url (and on the query string for request links):
# LinkManager.render_scope() tracks these dependencies as cache contexts.
#
from contextlib import contextmanager
from urllib.parse import urlencode
from flask import has_request_context, request
from .cacheability import CacheableMetadata
from .config import get_config

URL_SITE = "url.site"
URL_QUERY_ARGS = "url.query_args"


class RenderScope:
    """
    Collects the cache contexts of the links generated while it's active
    """

    def __init__(self):
        self.contexts = set()

    @property
    def cacheability(self) -> CacheableMetadata:
        return CacheableMetadata.create(contexts=self.contexts)


class LinkManager:
    def __init__(self, prefix: str = "", url_root: str = None):
        """
        :param prefix: api url prefix, eg. "/api"
        :param url_root: absolute url root, eg. "https://example.com/"
        """
        self.prefix = "/" + prefix.strip("/") if prefix.strip("/") else ""
        self.url_root = url_root
        self._scopes = []

    @contextmanager
    def render_scope(self):
        scope = RenderScope()
        self._scopes.append(scope)
        try:
            yield scope
        finally:
            self._scopes.remove(scope)

    def _track(self, *contexts):
        for scope in self._scopes:
            scope.contexts.update(contexts)

    def base_url(self) -> str:
        """
        :return: the url of the api root, without trailing slash
        """
        url_root = self.url_root or get_config("URL_ROOT")
        if not url_root and has_request_context():
            url_root = request.url_root
        self._track(URL_SITE)
        return (url_root or "").rstrip("/") + self.prefix

    def collection_link(self, type_name: str) -> str:
        return f"{self.base_url()}/{type_name}"

    def resource_link(self, type_name: str, item_id: str) -> str:
        return f"{self.collection_link(type_name)}/{item_id}"

    def relationship_link(self, type_name: str, item_id: str, field: str) -> str:
        return f"{self.resource_link(type_name, item_id)}/relationships/{field}"

    def related_link(self, type_name: str, item_id: str, field: str) -> str:
        return f"{self.resource_link(type_name, item_id)}/{field}"

    def request_link(self, override=None) -> str:
        """
        :param override: query parameters to replace in the current request query string
        :return: the url of the current request
        """
        if not has_request_context():
            return ""
        self._track(URL_SITE, URL_QUERY_ARGS)
        base = self.url_root.rstrip("/") + request.path if self.url_root else request.base_url
        args = [(key, value) for key, value in request.args.items(multi=True) if not override or key not in override]
        if override:
            args += [(key, value) for key, value in override.items() if value is not None]
        if not args:
            return base
        return f"{base}?{urlencode(args)}"

    def pager_links(self, page, has_next_page: bool) -> dict:
        """
        :param page: OffsetPage of the current request
        :param has_next_page: whether there are more items after this page
        :return: the "self", "first", "prev" and "next" links of a collection
        """
        result = {"self": self.request_link()}
        if page is None or not result["self"]:
            return {key: value for key, value in result.items() if value}
        if page.offset > 0:
            result["first"] = self.request_link(self._page_params(page.first_page()))
            result["prev"] = self.request_link(self._page_params(page.previous_page()))
        if has_next_page:
            result["next"] = self.request_link(self._page_params(page.next_page()))
        return result

    @staticmethod
    def _page_params(page) -> dict:
        params = page.to_params()
        # page[size] and page[number] are replaced by page[limit] and page[offset]
        params["page[size]"] = None
        params["page[number]"] = None
        return params
