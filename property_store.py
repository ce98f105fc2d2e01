"""
property_store.py - DynamoDB access for property records

The properties table is only ever scanned, fetched or written by primary key
("id"); all filtering beyond that happens in query_processor.py.

Items are converted between DynamoDB attribute values and plain Python with
boto3's TypeSerializer/TypeDeserializer. Numbers come back as int when
integral and float otherwise so records serialize cleanly to JSON.
"""

import logging
import os
from decimal import Decimal
from typing import Any, Dict, Iterable, List

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError

from common import PROPERTIES_TABLE, create_dynamodb_client
from errors import NotFoundError, UpstreamError

logger = logging.getLogger(__name__)
logger.setLevel(os.getenv("LOG_LEVEL", "INFO"))

BATCH_WRITE_SIZE = 25  # DynamoDB BatchWriteItem limit
MAX_UNPROCESSED_ROUNDS = 5

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def _from_dynamodb_number(value: Any) -> Any:
    """Recursively convert Decimals produced by TypeDeserializer to int/float."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, list):
        return [_from_dynamodb_number(v) for v in value]
    if isinstance(value, set):
        return sorted(_from_dynamodb_number(v) for v in value)
    if isinstance(value, dict):
        return {k: _from_dynamodb_number(v) for k, v in value.items()}
    return value


def _to_dynamodb_number(value: Any) -> Any:
    """Recursively convert floats to Decimal (TypeSerializer rejects float)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, list):
        return [_to_dynamodb_number(v) for v in value]
    if isinstance(value, dict):
        return {k: _to_dynamodb_number(v) for k, v in value.items()}
    return value


def deserialize_item(item: Dict[str, Any]) -> Dict[str, Any]:
    return {k: _from_dynamodb_number(_deserializer.deserialize(v)) for k, v in item.items()}


def serialize_item(record: Dict[str, Any]) -> Dict[str, Any]:
    return {k: _serializer.serialize(_to_dynamodb_number(v)) for k, v in record.items() if v is not None}


class PropertyStore:
    """
    Scan/get/put access to the properties table.

    Args:
        dynamodb_client: Boto3 low-level DynamoDB client
        table_name: Properties table name
    """

    def __init__(self, dynamodb_client, table_name: str = PROPERTIES_TABLE):
        self.client = dynamodb_client
        self.table_name = table_name

    @classmethod
    def from_env(cls) -> "PropertyStore":
        return cls(create_dynamodb_client(), PROPERTIES_TABLE)

    def scan_all(self) -> List[Dict[str, Any]]:
        """Scan the whole table, following LastEvaluatedKey pagination."""
        records: List[Dict[str, Any]] = []
        scan_kwargs: Dict[str, Any] = {"TableName": self.table_name}
        pages = 0

        try:
            while True:
                response = self.client.scan(**scan_kwargs)
                pages += 1
                records.extend(deserialize_item(item) for item in response.get("Items", []))

                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                scan_kwargs["ExclusiveStartKey"] = last_key
        except (ClientError, BotoCoreError) as e:
            raise UpstreamError(f"Scan of {self.table_name} failed: {e}") from e

        logger.debug(f"Scanned {len(records)} records from {self.table_name} in {pages} page(s)")
        return records

    def get(self, property_id: str) -> Dict[str, Any]:
        """
        Fetch one record by id.

        Raises:
            NotFoundError: No record with this id
            UpstreamError: DynamoDB call failed
        """
        try:
            response = self.client.get_item(
                TableName=self.table_name,
                Key={"id": {"S": str(property_id)}}
            )
        except (ClientError, BotoCoreError) as e:
            raise UpstreamError(f"Get of {property_id} from {self.table_name} failed: {e}") from e

        if "Item" not in response:
            raise NotFoundError(f"Property {property_id} not found")
        return deserialize_item(response["Item"])

    def put(self, record: Dict[str, Any]) -> None:
        if not record.get("id"):
            raise ValueError("Property record requires an id")
        try:
            self.client.put_item(TableName=self.table_name, Item=serialize_item(record))
        except (ClientError, BotoCoreError) as e:
            raise UpstreamError(f"Put of {record.get('id')} to {self.table_name} failed: {e}") from e

    def put_many(self, records: Iterable[Dict[str, Any]]) -> int:
        """
        Write records in BatchWriteItem chunks of 25.

        BatchWriteItem rejects a request that names the same key twice, so a
        repeated id within one chunk keeps only its last record (the same
        outcome as sequential put() calls). Unprocessed items are resubmitted
        a bounded number of times; anything still unprocessed after that
        raises UpstreamError.

        Returns:
            Number of put requests written
        """
        written = 0
        chunk: Dict[str, Dict[str, Any]] = {}

        for record in records:
            if not record.get("id"):
                raise ValueError("Property record requires an id")
            key = str(record["id"])
            if key in chunk:
                logger.debug(f"Duplicate id {key} in batch, keeping the later record")
                del chunk[key]
            chunk[key] = {"PutRequest": {"Item": serialize_item(record)}}
            if len(chunk) == BATCH_WRITE_SIZE:
                written += self._write_chunk(list(chunk.values()))
                chunk = {}

        if chunk:
            written += self._write_chunk(list(chunk.values()))
        return written

    def _write_chunk(self, requests_: List[Dict[str, Any]]) -> int:
        pending = {self.table_name: requests_}
        for _ in range(MAX_UNPROCESSED_ROUNDS):
            try:
                response = self.client.batch_write_item(RequestItems=pending)
            except (ClientError, BotoCoreError) as e:
                raise UpstreamError(f"Batch write to {self.table_name} failed: {e}") from e

            pending = response.get("UnprocessedItems") or {}
            if not pending.get(self.table_name):
                return len(requests_)
            logger.debug(f"{len(pending[self.table_name])} unprocessed items, resubmitting")

        raise UpstreamError(f"Batch write to {self.table_name} left unprocessed items")
