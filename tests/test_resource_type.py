import pytest
from contentapi.errors import FieldResolutionError, GenericError, NotFoundError
from contentapi.field_resolver import FieldResolver
from contentapi.resource_type import UNLIMITED, ResourceType, ResourceTypeRepository
from conftest import DB, Article, Comment, Person, Tag


def test_field_mapping(repository) -> None:
    articles = repository.get_by_type_name("articles")
    assert articles.type_name == "articles"
    assert articles.model is Article
    assert articles.get_public_name("id") == "internal__id"
    assert articles.get_internal_name("internal__id") == "id"
    assert articles.get_internal_name("id") is None
    assert articles.label_field == "title"
    assert set(articles.relationship_names()) == {"author", "tags", "comments"}
    assert {"title", "body", "published", "created", "author_id"} <= set(articles.attribute_names())


def test_relationship_metadata(repository) -> None:
    articles = repository.get_by_type_name("articles")
    assert articles.is_reference_field("author")
    assert not articles.is_reference_field("title")
    assert articles.get_relatable_types("author") == ("people",)
    assert articles.get_cardinality("author") == 1
    assert articles.get_cardinality("tags") == UNLIMITED
    assert articles.get_cardinality("title") == 1


def test_repository_lookups(repository) -> None:
    assert "tags" in repository
    assert "unknown" not in repository
    assert repository.find_for_model(Tag).type_name == "tags"
    assert repository.register(Tag) is repository.get("tags")
    assert len(repository.all()) == 4
    with pytest.raises(NotFoundError):
        repository.get_by_type_name("unknown")


def test_exclude_fields() -> None:
    repository = ResourceTypeRepository()
    people = repository.register(Person, exclude_attrs=["email"], exclude_rels=["articles"])
    assert not people.has_field("email")
    assert not people.is_field_enabled("articles")
    assert people.enabled_fields() == ["id", "name"]


def test_reserved_names_are_aliased() -> None:
    mapping = ResourceTypeRepository.build_field_mapping("things", ["uid", "type", "name"], id_fields=("uid",))
    assert mapping == {"uid": "internal__uid", "type": "things_type", "name": True}
    with pytest.raises(GenericError):
        ResourceTypeRepository.build_field_mapping("things", ["type", "things_type"])


def test_field_mapping_is_immutable() -> None:
    resource_type = ResourceType("things", field_mapping={"name": True})
    with pytest.raises(TypeError):
        resource_type.field_mapping["name"] = False


def test_ids(repository, app) -> None:
    comments = repository.get_by_type_name("comments")
    comment = DB.session.get(Comment, 2)
    assert comments.item_id(comment) == "2"
    assert comments.parse_id("2") == {"id": 2}
    with pytest.raises(ValueError):
        comments.parse_id("two")


def test_resolve_paths(repository) -> None:
    resolver = FieldResolver(repository)
    comments = repository.get_by_type_name("comments")

    resolved = resolver.resolve(comments, "article.author.name")
    assert resolved.internal_path == ("article", "author", "name")
    assert [t.type_name for t in resolved.resource_types] == ["comments", "articles", "people"]
    assert not resolved.is_reference

    resolved = resolver.resolve(comments, "article.id")
    assert resolved.internal == "article.id"
    assert resolved.is_id

    assert resolver.resolve(comments, "author").is_reference


@pytest.mark.parametrize("path", ["", "article..title", "nope", "body.length", "article.nope"])
def test_resolve_invalid_paths(repository, path) -> None:
    resolver = FieldResolver(repository)
    with pytest.raises(FieldResolutionError):
        resolver.resolve(repository.get_by_type_name("comments"), path)
