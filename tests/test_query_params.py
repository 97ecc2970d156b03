import pytest
from werkzeug.datastructures import MultiDict
from contentapi.errors import ParseError
from contentapi.paging import OffsetPage
from contentapi.request import parse_nested_arg
from contentapi.sorting import ASC, DESC, SortKey, parse_sort


def test_parse_nested_filter() -> None:
    args = MultiDict(
        [
            ("filter[a][condition][path]", "title"),
            ("filter[a][condition][value][]", "x"),
            ("filter[a][condition][value][]", "y"),
            ("filter[author.name]", "Alice"),
            ("sort", "title"),
        ]
    )
    assert parse_nested_arg(args, "filter") == {
        "a": {"condition": {"path": "title", "value": ["x", "y"]}},
        "author.name": "Alice",
    }
    assert parse_nested_arg(args, "page") is None


def test_parse_plain_arg() -> None:
    assert parse_nested_arg(MultiDict([("filter", "custom")]), "filter") == "custom"


@pytest.mark.parametrize(
    "key",
    ["filter[a]x", "filter[]", "filter[a][][b]", "filter[a[b]]"],
)
def test_parse_invalid_nested_arg(key) -> None:
    with pytest.raises(ParseError):
        parse_nested_arg(MultiDict([(key, "1")]), "filter")


def test_parse_conflicting_arg() -> None:
    args = MultiDict([("filter[a]", "1"), ("filter[a][path]", "title")])
    with pytest.raises(ParseError):
        parse_nested_arg(args, "filter")


def test_page_defaults() -> None:
    page = OffsetPage.from_params(None, max_size=50)
    assert (page.offset, page.size, page.query_size) == (0, 50, 51)


def test_page_clamped() -> None:
    page = OffsetPage.from_params({"offset": "10", "limit": "500"}, max_size=50)
    assert (page.offset, page.size) == (10, 50)


def test_page_number() -> None:
    page = OffsetPage.from_params({"number": "3", "size": "10"}, max_size=50)
    assert (page.offset, page.size) == (20, 10)


@pytest.mark.parametrize(
    "raw",
    ["5", {"limit": "0"}, {"limit": "-1"}, {"offset": "x"}, {"number": "0"}],
)
def test_page_invalid(raw) -> None:
    with pytest.raises(ParseError):
        OffsetPage.from_params(raw, max_size=50)


def test_page_navigation() -> None:
    page = OffsetPage(10, 5)
    assert page.next_page() == OffsetPage(15, 5)
    assert page.previous_page() == OffsetPage(5, 5)
    assert OffsetPage(3, 5).previous_page() == OffsetPage(0, 5)
    assert page.first_page() == OffsetPage(0, 5)
    assert page.to_params() == {"page[offset]": "10", "page[limit]": "5"}
    assert page.slice_results(range(6)) == ([0, 1, 2, 3, 4], True)
    assert page.slice_results(range(5)) == ([0, 1, 2, 3, 4], False)


def test_parse_sort() -> None:
    assert parse_sort("-created, title") == [SortKey("created", DESC), SortKey("title", ASC)]


@pytest.mark.parametrize("value", ["", "title,", "-", None])
def test_parse_sort_invalid(value) -> None:
    with pytest.raises(ParseError):
        parse_sort(value)
