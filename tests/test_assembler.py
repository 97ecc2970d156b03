import pytest
from contentapi.access import VIEW, AccessPolicy, AccessResult
from contentapi.assembler import DocumentAssembler, build_include_tree, parse_include, validate_include
from contentapi.cacheability import CacheableMetadata
from contentapi.errors import AccessDeniedError, NotFoundError, ParseError
from contentapi.links import LinkManager
from conftest import DB, Article, Person


@pytest.fixture
def assembler(repository, store):
    return DocumentAssembler(repository, store, links=LinkManager("/api", "http://example.com"))


def load(model, id):
    return DB.session.get(model, id)


def test_parse_include() -> None:
    assert parse_include("author, comments.author,") == ["author", "comments.author"]
    assert build_include_tree(["author", "comments.author", "comments"]) == {"author": {}, "comments": {"author": {}}}
    with pytest.raises(ParseError):
        parse_include("comments..author")


def test_validate_include(repository) -> None:
    articles = repository.get_by_type_name("articles")
    validate_include(articles, build_include_tree(["comments.author.articles"]), repository)
    with pytest.raises(ParseError):
        validate_include(articles, {"title": {}}, repository)
    with pytest.raises(ParseError):
        validate_include(articles, build_include_tree(["comments.body"]), repository)


def test_single_resource(assembler) -> None:
    document = assembler.assemble(load(Article, 1))
    result = document.rasterize()
    data = result["data"]
    assert data["type"] == "articles"
    assert data["id"] == "1"
    assert data["attributes"]["title"] == "First"
    assert data["attributes"]["internal__id"] == 1
    assert data["attributes"]["created"] == "2024-01-01"
    assert data["relationships"]["author"]["data"] == {"type": "people", "id": "1"}
    assert data["relationships"]["tags"]["data"] == [{"type": "tags", "id": "1"}, {"type": "tags", "id": "2"}]
    assert data["relationships"]["author"]["links"] == {
        "self": "http://example.com/api/articles/1/relationships/author",
        "related": "http://example.com/api/articles/1/author",
    }
    assert data["links"] == {"self": "http://example.com/api/articles/1"}
    assert "included" not in result


def test_includes(assembler) -> None:
    document = assembler.assemble(load(Article, 1), include="author,comments.author")
    included = document.rasterize()["included"]
    assert [(item["type"], item["id"]) for item in included] == [
        ("people", "1"),
        ("comments", "1"),
        ("people", "2"),
        ("comments", "2"),
    ]


def test_invalid_include(assembler) -> None:
    with pytest.raises(ParseError):
        assembler.assemble(load(Article, 1), include="title")


def test_sparse_fieldsets(assembler) -> None:
    document = assembler.assemble(load(Article, 1), include="author", fields={"articles": "title", "people": ["name"]})
    result = document.rasterize()
    assert result["data"]["attributes"] == {"title": "First"}
    # relationships are always serialized
    assert set(result["data"]["relationships"]) == {"author", "tags", "comments"}
    assert result["included"][0]["attributes"] == {"name": "Alice"}


def test_inaccessible_field_is_null(assembler) -> None:
    result = assembler.assemble(load(Person, 1)).rasterize()
    assert result["data"]["attributes"]["email"] is None
    assert result["data"]["attributes"]["name"] == "Alice"


def test_label_only_projection(assembler) -> None:
    result = assembler.assemble(load(Article, 3)).rasterize()
    assert result["data"]["attributes"] == {"title": "secret plans"}
    assert "relationships" not in result["data"]


def test_top_level_access_denied(assembler) -> None:
    with pytest.raises(AccessDeniedError) as exc_info:
        assembler.assemble(load(Article, 4))
    error = exc_info.value.to_error_objects()[0]
    assert error["status"] == "403"
    assert error["meta"] == {"entity": {"type": "articles", "id": "4"}}
    assert error["source"] == {"pointer": "/data"}


def test_collection_member_access_denied(assembler, store, repository) -> None:
    articles = repository.get_by_type_name("articles")
    items = store.load_multiple(articles, ["1", "2", "3", "4"])
    result = assembler.assemble(items, is_collection=True).rasterize()
    assert [item["id"] for item in result["data"]] == ["1", "2", "3"]
    errors = result["meta"]["omitted"]["errors"]
    assert len(errors) == 1
    assert errors[0]["meta"] == {"entity": {"type": "articles", "id": "4"}}


def test_included_access_denied(assembler) -> None:
    result = assembler.assemble(load(Person, 2), include="articles").rasterize()
    assert [item["id"] for item in result["included"]] == ["2"]
    assert result["meta"]["omitted"]["errors"][0]["meta"]["entity"] == {"type": "articles", "id": "4"}


def test_cacheability(assembler) -> None:
    document = assembler.assemble(load(Article, 1), include="author", cacheability=CacheableMetadata.create(max_age=300))
    cacheability = document.cacheability
    assert {"articles:1", "people:1"} <= cacheability.tags
    assert "user.permissions" in cacheability.contexts
    assert "url.site" in cacheability.contexts
    assert cacheability.max_age == 300


class UncacheablePolicy(AccessPolicy):
    def check(self, operation, item, resource_type, field=None) -> AccessResult:
        if field == "body":
            return AccessResult.allowed(CacheableMetadata.uncacheable())
        return AccessResult.allowed()


def test_uncacheable_field(repository, store) -> None:
    assembler = DocumentAssembler(repository, store, UncacheablePolicy())
    document = assembler.assemble(load(Article, 1), fields={"articles": "title,body"})
    assert not document.cacheability.is_cacheable
    document = assembler.assemble(load(Article, 1), fields={"articles": "title"})
    assert document.cacheability.is_cacheable


def test_relationship_document(assembler) -> None:
    document = assembler.assemble_relationship(load(Article, 1), "tags", include="articles")
    result = document.rasterize()
    assert result["data"] == [{"type": "tags", "id": "1"}, {"type": "tags", "id": "2"}]
    assert result["links"]["self"] == "http://example.com/api/articles/1/relationships/tags"
    assert [(item["type"], item["id"]) for item in result["included"]][:2] == [("tags", "1"), ("articles", "1")]
    assert "articles:1" in document.cacheability.tags


def test_relationship_document_errors(assembler) -> None:
    with pytest.raises(NotFoundError):
        assembler.assemble_relationship(load(Article, 1), "title")
    with pytest.raises(AccessDeniedError):
        assembler.assemble_relationship(load(Article, 4), "author")


class DenyAuthorPolicy(AccessPolicy):
    def check(self, operation, item, resource_type, field=None) -> AccessResult:
        if operation == VIEW and field == "author":
            return AccessResult.denied("no authors")
        return AccessResult.allowed()


def test_denied_relationship(repository, store) -> None:
    assembler = DocumentAssembler(repository, store, DenyAuthorPolicy())
    result = assembler.assemble(load(Article, 1), include="author").rasterize()
    assert result["data"]["relationships"]["author"]["data"] is None
    assert "included" not in result
