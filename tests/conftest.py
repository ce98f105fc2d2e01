import json
import sys
from pathlib import Path

import pytest
import requests
from botocore.exceptions import ClientError

REPO_ROOT = Path(__file__).resolve().parents[1]

# Prefer repo sources over any installed copy.
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from property_store import serialize_item  # noqa: E402


# ===============================================
# IN-MEMORY FAKES
# ===============================================

class FakeDynamoDBClient:
    """
    Dict-backed stand-in for the low-level boto3 DynamoDB client.

    Tables are keyed by the string values of their key attributes. scan()
    pages results page_size at a time so LastEvaluatedKey handling is
    exercised.
    """

    KEY_ATTRIBUTES = {
        "properties": ("id",),
        "ai_cache": ("property_id", "analysis_type"),
    }

    def __init__(self, page_size=2, unprocessed_rounds=0):
        self.tables = {}
        self.page_size = page_size
        self.unprocessed_rounds = unprocessed_rounds
        self.calls = []
        self.fail_with = None

    def _key_names(self, table_name, item_or_key):
        if "analysis_type" in item_or_key:
            return self.KEY_ATTRIBUTES["ai_cache"]
        return self.KEY_ATTRIBUTES["properties"]

    def _key(self, table_name, item_or_key):
        names = self._key_names(table_name, item_or_key)
        return tuple(list(item_or_key[n].values())[0] for n in names)

    def _check(self, op):
        self.calls.append(op)
        if self.fail_with is not None:
            raise self.fail_with

    def put_item(self, TableName, Item):
        self._check("put_item")
        self.tables.setdefault(TableName, {})[self._key(TableName, Item)] = dict(Item)
        return {}

    def get_item(self, TableName, Key):
        self._check("get_item")
        item = self.tables.get(TableName, {}).get(self._key(TableName, Key))
        return {"Item": dict(item)} if item is not None else {}

    def update_item(self, TableName, Key, UpdateExpression, ExpressionAttributeValues):
        self._check("update_item")
        item = self.tables.get(TableName, {}).get(self._key(TableName, Key))
        if item is not None:
            item["last_accessed"] = ExpressionAttributeValues[":now"]
            item["access_count"] = ExpressionAttributeValues[":count"]
        return {}

    def scan(self, TableName, ExclusiveStartKey=None):
        self._check("scan")
        items = list(self.tables.get(TableName, {}).values())
        start = int(ExclusiveStartKey["offset"]["N"]) if ExclusiveStartKey else 0
        page = items[start:start + self.page_size]
        response = {"Items": [dict(i) for i in page], "Count": len(page)}
        if start + self.page_size < len(items):
            response["LastEvaluatedKey"] = {"offset": {"N": str(start + self.page_size)}}
        return response

    def batch_write_item(self, RequestItems):
        self._check("batch_write_item")
        for table_name, requests_ in RequestItems.items():
            keys = [self._key(table_name, r["PutRequest"]["Item"]) for r in requests_]
            if len(keys) != len(set(keys)):
                raise ClientError(
                    {"Error": {"Code": "ValidationException",
                               "Message": "Provided list of item keys contains duplicates"}},
                    "BatchWriteItem",
                )

        unprocessed = {}
        for table_name, requests_ in RequestItems.items():
            if self.unprocessed_rounds > 0 and len(requests_) > 1:
                # Accept the first request, bounce the rest
                requests_, bounced = requests_[:1], requests_[1:]
                unprocessed[table_name] = bounced
            for req in requests_:
                item = req["PutRequest"]["Item"]
                self.tables.setdefault(table_name, {})[self._key(table_name, item)] = dict(item)
        if unprocessed:
            self.unprocessed_rounds -= 1
        return {"UnprocessedItems": unprocessed}

    def seed(self, table_name, records):
        for record in records:
            self.put_item(TableName=table_name, Item=serialize_item(record))
        self.calls.clear()


class FakeSecretsClient:
    def __init__(self, secret=None, error=None):
        self.secret = secret
        self.error = error
        self.requested = []

    def get_secret_value(self, SecretId):
        self.requested.append(SecretId)
        if self.error is not None:
            raise self.error
        if self.secret is None:
            return {}
        return {"SecretString": self.secret if isinstance(self.secret, str) else json.dumps(self.secret)}


class FakeResponse:
    def __init__(self, payload=None, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSession:
    """
    Minimal requests.Session stand-in. Responses are either a fixed
    FakeResponse, an exception to raise, or a callable(url, **kwargs).
    """

    def __init__(self, response=None):
        self.response = response
        self.posts = []
        self.gets = []

    def _respond(self, url, kwargs):
        if isinstance(self.response, Exception):
            raise self.response
        if callable(self.response):
            return self.response(url, **kwargs)
        return self.response

    def post(self, url, **kwargs):
        self.posts.append((url, kwargs))
        return self._respond(url, kwargs)

    def get(self, url, **kwargs):
        self.gets.append((url, kwargs))
        return self._respond(url, kwargs)


def openrouter_reply(content):
    """Wrap content the way OpenRouter's chat completions endpoint does."""
    text = content if isinstance(content, str) else json.dumps(content)
    return FakeResponse({"choices": [{"message": {"role": "assistant", "content": text}}]})


class FakeCama:
    """Stand-in for CamaClient keyed by (address, town)."""

    def __init__(self, matches=None, fail_for=(), town_rows=None, town_count=0):
        self.matches = matches or {}
        self.fail_for = set(fail_for)
        self.town_rows = town_rows or []
        self.town_count = town_count
        self.lookups = []

    def find_by_address(self, address, town):
        self.lookups.append((address, town))
        if address in self.fail_for:
            raise RuntimeError(f"CAMA unavailable for {address}")
        return self.matches.get(address)

    def list_by_town(self, town, limit=100, offset=0):
        return self.town_rows[offset:offset + limit]

    def count_by_town(self, town):
        return self.town_count


def cama_enrichment(**overrides):
    enrichment = {
        "beds": 3, "baths": 2, "halfBaths": 1, "sqft": 1850, "lotAcres": 0.34,
        "yearBuilt": 1956, "style": "Colonial", "condition": "Average",
        "stories": "2", "totalRooms": 7, "basement": "Full",
        "heating": "Hot Water", "cooling": "Central", "photoUrl": None,
        "assessedValue": 150000.0, "appraisedValue": 214300.0,
        "source": "cama_2025", "fetchedAt": "2025-01-01T00:00:00+00:00",
    }
    enrichment.update(overrides)
    return enrichment


def api_event(method="GET", path="/", query=None, body=None, path_parameters=None):
    return {
        "httpMethod": method,
        "path": path,
        "queryStringParameters": query,
        "pathParameters": path_parameters,
        "body": body if body is None or isinstance(body, str) else json.dumps(body),
    }


def response_json(response):
    return json.loads(response["body"])


# ===============================================
# FIXTURES
# ===============================================

@pytest.fixture
def sample_records():
    return [
        {"id": "ct-1", "address": "12 Main St, Hartford", "city": "Hartford", "price": 300000,
         "propertyType": "Residential", "metadata": {"residentialType": "Single Family"}},
        {"id": "ct-2", "address": "48 Elm St, Hartford", "city": "Hartford", "price": 150000,
         "propertyType": "Condo"},
        {"id": "ct-3", "address": "7 Oak Rd, Avon", "city": "Avon", "price": 500000,
         "propertyType": "Residential"},
    ]


@pytest.fixture
def dynamodb():
    return FakeDynamoDBClient()


@pytest.fixture
def secrets():
    return FakeSecretsClient({"OPENROUTER_API_KEY": "sk-or-test"})
