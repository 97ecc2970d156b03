import json
from http import HTTPStatus
import pytest
from conftest import DB, Article, Tag

JSONAPI = "application/vnd.api+json"


def send(client, method, url, document, content_type=JSONAPI):
    return client.open(url, method=method, data=json.dumps(document), content_type=content_type)


def ids(response) -> list:
    return [item["id"] for item in response.get_json()["data"]]


def test_get_collection(client) -> None:
    response = client.get("/api/articles")
    assert response.status_code == HTTPStatus.OK
    assert response.mimetype == JSONAPI
    result = response.get_json()
    assert ids(response) == ["1", "2", "3"]
    assert result["jsonapi"] == {"version": "1.0"}
    assert result["meta"]["omitted"]["errors"][0]["meta"]["entity"] == {"type": "articles", "id": "4"}
    assert result["links"]["self"] == "http://localhost/api/articles"
    assert "articles_list" in response.headers["X-Cache-Tags"].split()
    assert response.headers["Vary"] == "Authorization, Cookie"


def test_paging(client) -> None:
    response = client.get("/api/articles?page[limit]=1")
    assert ids(response) == ["1"]
    links = response.get_json()["links"]
    assert "page%5Boffset%5D=1" in links["next"]
    assert "prev" not in links

    response = client.get("/api/articles?page[limit]=2&page[offset]=2")
    links = response.get_json()["links"]
    assert ids(response) == ["3"]
    assert "next" not in links
    assert "page%5Boffset%5D=0" in links["prev"]
    assert "first" in links


@pytest.mark.parametrize(
    "query, expected",
    [
        ("filter[author.name]=Alice", ["1", "3"]),
        ("filter[title][]=First&filter[title][]=Second", ["1", "2"]),
        (
            "filter[either][group][conjunction]=OR"
            "&filter[a][condition][path]=title&filter[a][condition][value]=Second&filter[a][condition][group]=either"
            "&filter[b][condition][path]=published&filter[b][condition][value]=1&filter[b][condition][group]=either",
            ["1", "2"],
        ),
        ("filter[r][condition][path]=id&filter[r][condition][operator]=BETWEEN&filter[r][condition][value][]=2&filter[r][condition][value][]=3", ["2", "3"]),
        ("filter[t][condition][path]=tags.name&filter[t][condition][value]=tech", ["1", "2"]),
        ("filter[t][condition][path]=comments&filter[t][condition][operator]=IS NULL", ["3"]),
        ("sort=-title", ["3", "2", "1"]),
        ("sort=author.name,-internal__id", ["3", "1", "2"]),
    ],
)
def test_filter_and_sort(client, query, expected) -> None:
    response = client.get(f"/api/articles?{query}")
    assert response.status_code == HTTPStatus.OK, response.get_json()
    assert ids(response) == expected


@pytest.mark.parametrize(
    "query",
    [
        "filter[x][condition][path]=nope&filter[x][condition][value]=1",
        "filter[x][condition][path]=title&filter[x][condition][value]=1&filter[x][condition][group]=missing",
        "filter=title",
        "sort=author",
        "sort=",
        "sort=-tags.name",
        "sort=comments.author.name",
        "page[limit]=0",
        "page[offset]=-1",
        "include=title",
        "include=comments.body",
    ],
)
def test_invalid_query(client, query) -> None:
    response = client.get(f"/api/articles?{query}")
    assert response.status_code == HTTPStatus.BAD_REQUEST
    error = response.get_json()["errors"][0]
    assert error["status"] == "400"
    assert error["title"] == "Bad Request"


def test_get_instance(client) -> None:
    response = client.get("/api/articles/1?include=author,comments.author&fields[articles]=title")
    assert response.status_code == HTTPStatus.OK
    result = response.get_json()
    assert result["data"]["attributes"] == {"title": "First"}
    assert [(item["type"], item["id"]) for item in result["included"]] == [
        ("people", "1"),
        ("comments", "1"),
        ("people", "2"),
        ("comments", "2"),
    ]
    assert result["links"]["self"].startswith("http://localhost/api/articles/1")


def test_get_instance_errors(client) -> None:
    response = client.get("/api/articles/4")
    assert response.status_code == HTTPStatus.FORBIDDEN
    error = response.get_json()["errors"][0]
    assert error["meta"]["entity"] == {"type": "articles", "id": "4"}
    assert error["source"]["pointer"] == "/data"
    assert "articles:4" in response.headers["X-Cache-Tags"]

    assert client.get("/api/articles/99").status_code == HTTPStatus.NOT_FOUND
    assert client.get("/api/articles/abc").status_code == HTTPStatus.NOT_FOUND


def test_create(client) -> None:
    document = {
        "data": {
            "type": "articles",
            "attributes": {"title": "Third"},
            "relationships": {"author": {"data": {"type": "people", "id": "1"}}},
        }
    }
    response = send(client, "POST", "/api/articles", document)
    assert response.status_code == HTTPStatus.CREATED
    data = response.get_json()["data"]
    assert data["attributes"]["title"] == "Third"
    assert response.headers["Location"] == f"http://localhost/api/articles/{data['id']}"
    assert DB.session.get(Article, int(data["id"])).author.name == "Alice"


def test_create_errors(client) -> None:
    document = {"data": {"type": "articles", "attributes": {"title": "x"}}}
    response = send(client, "POST", "/api/articles", document, content_type=JSONAPI + "; ext=bulk")
    assert response.status_code == HTTPStatus.UNSUPPORTED_MEDIA_TYPE

    response = send(client, "POST", "/api/articles", {"data": {"type": "articles", "attributes": {"nope": 1}}})
    assert response.status_code == HTTPStatus.UNPROCESSABLE_ENTITY
    pointers = [error["source"]["pointer"] for error in response.get_json()["errors"]]
    assert pointers == ["/data/attributes/nope", "/data/attributes/title"]

    response = send(client, "POST", "/api/articles", {"data": {"type": "people", "attributes": {"name": "x"}}})
    assert response.status_code == HTTPStatus.CONFLICT

    response = send(client, "POST", "/api/articles", {"data": {"type": "articles", "id": "5", "attributes": {"title": "x"}}})
    assert response.status_code == HTTPStatus.FORBIDDEN

    response = client.post("/api/articles", data="{not json", content_type=JSONAPI)
    assert response.status_code == HTTPStatus.BAD_REQUEST


def test_update(client) -> None:
    document = {"data": {"type": "articles", "id": "2", "attributes": {"title": "Second!"}}}
    response = send(client, "PATCH", "/api/articles/2", document)
    assert response.status_code == HTTPStatus.OK
    assert response.get_json()["data"]["attributes"]["title"] == "Second!"
    assert "X-Cache-Tags" not in response.headers

    response = send(client, "PATCH", "/api/articles/2", {"data": {"type": "articles", "id": "1", "attributes": {}}})
    assert response.status_code == HTTPStatus.CONFLICT


def test_delete(client) -> None:
    response = client.delete("/api/comments/3")
    assert response.status_code == HTTPStatus.NO_CONTENT
    assert client.get("/api/comments/3").status_code == HTTPStatus.NOT_FOUND


def test_related(client) -> None:
    response = client.get("/api/articles/1/author")
    assert response.status_code == HTTPStatus.OK
    assert response.get_json()["data"]["id"] == "1"
    assert response.get_json()["data"]["type"] == "people"

    response = client.get("/api/people/1/articles?include=tags")
    assert ids(response) == ["1", "3"]
    assert {item["type"] for item in response.get_json()["included"]} == {"tags"}

    assert client.get("/api/articles/1/title").status_code == HTTPStatus.NOT_FOUND


def test_relationship(client) -> None:
    response = client.get("/api/articles/1/relationships/tags")
    assert response.status_code == HTTPStatus.OK
    result = response.get_json()
    assert result["data"] == [{"type": "tags", "id": "1"}, {"type": "tags", "id": "2"}]
    assert result["links"]["related"] == "http://localhost/api/articles/1/tags"


def test_relationship_mutations(client) -> None:
    url = "/api/articles/2/relationships/tags"
    response = send(client, "POST", url, {"data": [{"type": "tags", "id": "1"}]})
    assert response.status_code == HTTPStatus.NO_CONTENT
    assert sorted(ids(client.get(url))) == ["1", "2"]

    response = send(client, "DELETE", url, {"data": [{"type": "tags", "id": "2"}]})
    assert response.status_code == HTTPStatus.NO_CONTENT
    assert ids(client.get(url)) == ["1"]

    response = send(client, "PATCH", url, {"data": []})
    assert response.status_code == HTTPStatus.NO_CONTENT
    assert ids(client.get(url)) == []

    response = send(client, "PATCH", "/api/articles/2/relationships/author", {"data": {"type": "people", "id": "1"}})
    assert response.status_code == HTTPStatus.NO_CONTENT
    assert client.get("/api/articles/2/relationships/author").get_json()["data"] == {"type": "people", "id": "1"}

    response = send(client, "POST", "/api/articles/2/relationships/author", {"data": {"type": "people", "id": "1"}})
    assert response.status_code == HTTPStatus.CONFLICT

    response = send(client, "PATCH", url, {"data": [{"type": "people", "id": "1"}]})
    assert response.status_code == HTTPStatus.UNPROCESSABLE_ENTITY


def test_label_only_resource(client) -> None:
    response = client.get("/api/articles/3")
    assert response.status_code == HTTPStatus.OK
    assert response.get_json()["data"]["attributes"] == {"title": "secret plans"}


def test_page_size_is_clamped(client, monkeypatch) -> None:
    monkeypatch.setitem(client.application.config, "MAX_PAGE_SIZE", 2)
    response = client.get("/api/articles?page[limit]=10")
    assert ids(response) == ["1", "2"]
    assert "next" in response.get_json()["links"]


def test_paging_with_to_many_tags(client) -> None:
    news, tech = DB.session.get(Tag, 1), DB.session.get(Tag, 2)
    for title in ("Fifth", "Sixth"):
        DB.session.add(Article(title=title, tags=[news, tech]))
    DB.session.commit()

    response = client.get("/api/articles?sort=-tags.name&page[size]=2")
    assert response.status_code == HTTPStatus.BAD_REQUEST

    seen = []
    url = "/api/articles?filter[tags.name]=news&page[size]=2"
    while url:
        response = client.get(url)
        assert response.status_code == HTTPStatus.OK
        seen.extend(ids(response))
        url = response.get_json()["links"].get("next")
    assert seen == ["1", "5", "6"]


def test_entry_point(client) -> None:
    response = client.get("/api/")
    assert response.status_code == HTTPStatus.OK
    result = response.get_json()
    assert result["data"] == []
    assert result["links"] == {
        "people": "http://localhost/api/people",
        "articles": "http://localhost/api/articles",
        "tags": "http://localhost/api/tags",
        "comments": "http://localhost/api/comments",
        "self": "http://localhost/api",
    }
    assert response.headers["X-Cache-Contexts"] == "url.site"
    assert response.headers["Cache-Control"] == "public"
