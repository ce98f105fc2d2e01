import pytest

from app import create_app
from conftest import FakeCama, FakeDynamoDBClient, FakeSession, cama_enrichment, openrouter_reply
from property_store import PropertyStore

TABLE = "home-harbor-properties-test"


@pytest.fixture
def client(sample_records, secrets):
    dynamodb = FakeDynamoDBClient()
    dynamodb.seed(TABLE, sample_records)
    app = create_app(
        store=PropertyStore(dynamodb, TABLE),
        cama=FakeCama(matches={"12 Main St": cama_enrichment()}, town_rows=[cama_enrichment()], town_count=1),
        dynamodb_client=dynamodb,
        secrets_client=secrets,
        http_session=FakeSession(openrouter_reply({"architectural_style": "Cape", "exterior_condition": 9})),
    )
    app.config["TESTING"] = True
    return app.test_client()


def test_health(client):
    assert client.get("/health").get_json() == {"status": "ok"}


def test_search_passes_query_string(client):
    r = client.get("/search", query_string={"city": "Hartford", "sortOrder": "desc"})

    assert r.status_code == 200
    assert [p["id"] for p in r.get_json()["properties"]] == ["ct-1", "ct-2"]
    assert r.headers["Access-Control-Allow-Origin"] == "*"


def test_properties_and_single_property(client):
    assert client.get("/properties").get_json()["totalCount"] == 3
    assert client.get("/properties/ct-3").get_json()["property"]["city"] == "Avon"
    assert client.get("/properties/nope").status_code == 404


def test_analyze(client):
    r = client.post("/analyze", json={"property_id": "ct-1", "image_url": "https://img.example.com/1.jpg"})

    assert r.status_code == 200
    assert r.get_json()["insights"]["architectural_style"] == "Cape"
    assert r.get_json()["insights"]["exterior_condition"] == 9


def test_analyze_bad_body(client):
    assert client.post("/analyze", data="{", content_type="application/json").status_code == 400


def test_describe_requires_property_data(client):
    assert client.post("/describe", json={"property_id": "ct-1"}).status_code == 400


def test_enrich_routes(client):
    assert client.get("/enrich", query_string={"address": "12 Main St", "town": "Hartford"}).status_code == 200
    assert client.get("/enrich").status_code == 400
    assert client.get("/enrich/bulk", query_string={"town": "Avon"}).get_json()["meta"]["count"] == 1
