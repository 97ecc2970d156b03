import pytest
from contentapi.access import AccessChecker, AccessResult
from contentapi.cacheability import PERMANENT, UNCACHEABLE, CacheableMetadata, merge_max_age


@pytest.mark.parametrize(
    "first, second, expected",
    [
        (PERMANENT, PERMANENT, PERMANENT),
        (PERMANENT, 60, 60),
        (300, PERMANENT, 300),
        (300, 60, 60),
        (UNCACHEABLE, PERMANENT, UNCACHEABLE),
        (60, UNCACHEABLE, UNCACHEABLE),
    ],
)
def test_merge_max_age(first, second, expected) -> None:
    assert merge_max_age(first, second) == expected


def test_merge_is_a_union() -> None:
    first = CacheableMetadata.create(tags=["articles:1"], contexts=["url.site"], max_age=300)
    second = CacheableMetadata.create(tags=["people:2", "articles:1"], contexts=["user.permissions"], max_age=60)
    merged = first.merge(second)
    assert merged.tags == {"articles:1", "people:2"}
    assert merged.contexts == {"url.site", "user.permissions"}
    assert merged.max_age == 60
    # merging is order independent
    assert merged == second.merge(first)
    assert first.merge(None) is first


def test_merge_all() -> None:
    merged = CacheableMetadata.merge_all([CacheableMetadata.for_item("tags", "1"), None, CacheableMetadata.for_list("tags")])
    assert merged.tags == {"tags:1", "tags_list"}
    assert merged.max_age is PERMANENT


def test_headers() -> None:
    metadata = CacheableMetadata.create(tags=["b", "a"], contexts=["user.permissions"])
    headers = metadata.headers()
    assert headers["Cache-Control"] == "public"
    assert headers["X-Cache-Tags"] == "a b"
    assert headers["X-Cache-Contexts"] == "user.permissions"
    assert headers["Vary"] == "Authorization, Cookie"

    headers = CacheableMetadata.create(max_age=120).headers()
    assert headers == {"Cache-Control": "max-age=120, public"}

    headers = metadata.merge(CacheableMetadata.uncacheable()).headers()
    assert headers["Cache-Control"] == "no-cache, private"


def test_access_result_and() -> None:
    allowed = AccessResult.allowed(CacheableMetadata.create(contexts=["user"]))
    denied = AccessResult.denied("no", CacheableMetadata.for_item("articles", "1"))
    neutral = AccessResult.neutral("maybe")

    result = allowed.and_(denied)
    assert result.is_denied
    assert result.reason == "no"
    assert result.cacheability.tags == {"articles:1"}
    assert result.cacheability.contexts == {"user"}

    assert not allowed.and_(neutral).is_allowed
    assert neutral.and_(denied).is_denied
    assert allowed.and_(AccessResult.allowed()).is_allowed


def test_access_checker_memoizes_per_item() -> None:
    calls = []

    def check(operation, item, resource_type, field=None):
        calls.append((operation, item, field))
        return True

    resource_type = type("FakeType", (), {"type_name": "articles"})()
    checker = AccessChecker(check)
    assert checker.check("view", "item", resource_type, "1").is_allowed
    assert checker.check("view", "item", resource_type, "1").is_allowed
    assert checker.check("view", "item", resource_type, "1", field="title").is_allowed
    assert len(calls) == 2
    # checks without item id aren't memoized
    checker.check("create", None, resource_type)
    checker.check("create", None, resource_type)
    assert len(calls) == 4
