"""
Caching utilities for AI-generated property insights.

Vision analyses and generated descriptions are expensive OpenRouter calls, so
each result is stored in DynamoDB under a composite key and looked up before
the next call.

Table: home-harbor-ai-insights-dev (AI_CACHE_TABLE)
- Partition key: property_id (S)
- Sort key:      analysis_type (S) - "vision" or "description"

Entries carry a `ttl` attribute (epoch seconds) so DynamoDB's TTL feature
expires them; the application itself never evicts.
"""

import json
import time
import logging
from typing import Dict, Any, Optional
from datetime import datetime
import pytz

from common import AI_CACHE_TABLE

logger = logging.getLogger(__name__)

ANALYSIS_VISION = "vision"
ANALYSIS_DESCRIPTION = "description"

# Days before DynamoDB TTL removes an entry
VISION_TTL_DAYS = 90
DESCRIPTION_TTL_DAYS = 30


def get_edt_timestamp(unix_timestamp: Optional[int] = None) -> str:
    """
    Convert Unix timestamp to EDT timezone string.

    Args:
        unix_timestamp: Unix timestamp (seconds since epoch). If None, uses current time.

    Returns:
        Formatted string like "2025-10-14 22:30:45 EDT"
    """
    if unix_timestamp is None:
        unix_timestamp = int(time.time())

    edt = pytz.timezone('America/New_York')
    dt = datetime.fromtimestamp(unix_timestamp, edt)
    return dt.strftime('%Y-%m-%d %H:%M:%S %Z')


def _cache_key(property_id: str, analysis_type: str) -> Dict[str, Any]:
    return {
        "property_id": {"S": str(property_id)},
        "analysis_type": {"S": analysis_type}
    }


def cache_insight(
    dynamodb_client,
    property_id: str,
    analysis_type: str,
    payload: Dict[str, Any],
    model: str,
    ttl_days: int,
    table_name: str = AI_CACHE_TABLE
) -> bool:
    """
    Store an AI insight with metadata.

    Write failures are logged and swallowed: a failed cache write must not
    fail a request whose insight was already generated.

    Args:
        dynamodb_client: Boto3 DynamoDB client
        property_id: Property the insight belongs to
        analysis_type: "vision" or "description"
        payload: Normalized insight to cache
        model: Model ID that produced it
        ttl_days: Days until DynamoDB expires the entry
        table_name: Cache table

    Returns:
        True if the write succeeded
    """
    try:
        utc_time = int(time.time())

        item = {
            **_cache_key(property_id, analysis_type),
            "payload": {"S": json.dumps(payload)},
            "model": {"S": model},
            "cached_at": {"N": str(utc_time)},
            "cached_at_edt": {"S": get_edt_timestamp(utc_time)},
            "access_count": {"N": "0"},
            "ttl": {"N": str(utc_time + ttl_days * 24 * 3600)}
        }

        dynamodb_client.put_item(TableName=table_name, Item=item)

        logger.info(f"Cached {analysis_type} insight for property: {property_id}")
        return True

    except Exception as e:
        logger.warning(f"Failed to cache {analysis_type} insight for {property_id}: {e}")
        return False


def get_cached_insight(
    dynamodb_client,
    property_id: str,
    analysis_type: str,
    table_name: str = AI_CACHE_TABLE
) -> Optional[Dict[str, Any]]:
    """
    Retrieve a cached AI insight.

    Missing entries, incomplete entries and read failures are all reported as
    a cache miss. A hit bumps access_count/last_accessed on a best-effort basis.

    Returns:
        Cached payload dict, or None on cache miss
    """
    key = _cache_key(property_id, analysis_type)

    try:
        response = dynamodb_client.get_item(TableName=table_name, Key=key)
    except Exception as e:
        logger.warning(f"Cache read failed for {property_id}/{analysis_type}: {e}")
        return None

    item = response.get("Item")
    if not item:
        return None

    if "payload" not in item:
        logger.warning(f"Incomplete cache entry for {property_id}/{analysis_type}")
        return None

    try:
        payload = json.loads(item["payload"]["S"])
    except (KeyError, TypeError, json.JSONDecodeError) as e:
        logger.warning(f"Corrupt cache entry for {property_id}/{analysis_type}: {e}")
        return None

    # Update access tracking
    try:
        access_count = int(item.get("access_count", {}).get("N", "0")) + 1
        dynamodb_client.update_item(
            TableName=table_name,
            Key=key,
            UpdateExpression="SET last_accessed = :now, access_count = :count",
            ExpressionAttributeValues={
                ":now": {"N": str(int(time.time()))},
                ":count": {"N": str(access_count)}
            }
        )
        logger.debug(f"Cache hit for {property_id}/{analysis_type} (hit #{access_count})")
    except Exception as e:
        logger.debug(f"Failed to update access metrics: {e}")

    return payload
