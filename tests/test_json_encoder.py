import datetime
import decimal
import json
from contentapi.cacheability import CacheableMetadata
from contentapi.json_encoder import JsonApiJSONEncoder, JsonApiJSONProvider
from contentapi.nodes import DocumentNode, ErrorNode


def test_encode_nodes() -> None:
    document = DocumentNode([ErrorNode(detail="no access")], is_collection=True)
    result = json.loads(json.dumps({"document": document}, cls=JsonApiJSONEncoder))
    assert result["document"]["data"] == []
    assert result["document"]["meta"]["omitted"]["errors"][0]["status"] == "403"


def test_encode_values() -> None:
    value = {"date": datetime.date(2024, 1, 2), "price": decimal.Decimal("2.5"), "meta": CacheableMetadata.create(tags=["b", "a"])}
    result = json.loads(json.dumps(value, cls=JsonApiJSONEncoder))
    assert result == {"date": "2024-01-02", "price": 2.5, "meta": {"tags": ["a", "b"], "contexts": [], "max-age": None}}


def test_provider(app) -> None:
    provider = JsonApiJSONProvider(app)
    assert provider.mimetype == "application/vnd.api+json"
    assert json.loads(provider.dumps({"created": datetime.date(2024, 1, 1)})) == {"created": "2024-01-01"}
