"""
search.py - Lambda functions for property search and retrieval

Endpoints:
- GET /search           Filter, sort and paginate properties (+ optional free text)
- GET /properties       Filter and paginate properties (price ascending)
- GET /properties/{id}  Fetch a single property
- lambda_handler        Router that also dispatches /analyze, /describe, /enrich

Search Pipeline:
1. Parse queryStringParameters into QueryParameters (bad values fall back to defaults)
2. Scan the properties table (DynamoDB) for the full record set
3. Optional free-text filter: case-insensitive substring of address or city
4. QueryProcessor: conjunctive filters -> stable sort -> offset/limit page
5. Optional enrichment of the returned page with CT CAMA data (enrich=true),
   run in fixed-size concurrent batches
6. Return the page plus totalCount and the effective limit/offset/sort

Example:
    GET /search?city=Hartford&minPrice=200000&sortBy=price&sortOrder=desc&limit=10
"""

import logging
import os
from typing import Any, Dict, List, Optional

import description_generator
import vision_analysis
from common import (
    ENRICH_MAX_CONCURRENT, FILTER_MATCH_MODE, error_response, get_method_and_path,
    internal_error_response, is_preflight, json_response, query_params
)
from enrichment import CamaClient, bulk_enrich_handler, enrich_handler, enrich_properties
from errors import NotFoundError, UpstreamError
from property_store import PropertyStore
from query_processor import QueryProcessor, parse_query_parameters, result_to_dict

logger = logging.getLogger(__name__)
logger.setLevel(os.getenv("LOG_LEVEL", "INFO"))


def build_query_processor(match_mode: str = FILTER_MATCH_MODE) -> QueryProcessor:
    try:
        return QueryProcessor(match_mode)
    except ValueError:
        logger.warning(f"Unknown FILTER_MATCH_MODE={match_mode!r}, using exact matching")
        return QueryProcessor()


def text_search(records: List[Dict[str, Any]], q: Optional[str]) -> List[Dict[str, Any]]:
    """Keep records whose address or city contains q (case-insensitive)."""
    needle = (q or "").strip().lower()
    if not needle:
        return records
    return [
        r for r in records
        if needle in str(r.get("address") or "").lower() or needle in str(r.get("city") or "").lower()
    ]


def _flag(params: Dict[str, Any], name: str) -> bool:
    return str(params.get(name, "false")).lower() == "true"


# ===============================================
# SEARCH
# ===============================================

def search_handler(event, context, store: Optional[PropertyStore] = None, cama: Optional[CamaClient] = None):
    """
    AWS Lambda handler for GET /search.

    Query Parameters:
        - q (str): Free-text match on address or city
        - city, propertyType (str): Exact-match filters
        - minPrice, maxPrice (int): Inclusive price bounds
        - sortBy (str, default price), sortOrder (asc|desc)
        - limit (int, default 50), offset (int, default 0)
        - enrich (bool): Merge CAMA data into the returned page

    Returns:
        {"properties", "totalCount", "limit", "offset", "sortBy", "sortOrder"}
    """
    if is_preflight(event):
        return json_response(200, {})

    raw_params = query_params(event)
    params = parse_query_parameters(raw_params)
    logger.info(f"search_handler invoked: {params}")

    try:
        store = store or PropertyStore.from_env()
        records = text_search(store.scan_all(), raw_params.get("q"))

        result = build_query_processor().process(records, params)
        body = result_to_dict(result, params)

        if _flag(raw_params, "enrich") and result.items:
            body["properties"] = enrich_properties(result.items, cama or CamaClient(),
                                                   max_concurrent=ENRICH_MAX_CONCURRENT)

        logger.info(f"Search matched {result.total_count} properties, returning {len(result.items)}")
        return json_response(200, body)

    except UpstreamError as e:
        logger.error(f"Search API upstream error: {e}", exc_info=True)
        return internal_error_response()
    except Exception as e:
        logger.error(f"Search API error: {e}", exc_info=True)
        return internal_error_response()


def properties_handler(event, context, store: Optional[PropertyStore] = None):
    """
    AWS Lambda handler for GET /properties.

    Same filters as /search without free text; results are price ascending
    unless sortBy/sortOrder are given.

    Returns:
        {"properties", "totalCount", "limit", "offset"}
    """
    if is_preflight(event):
        return json_response(200, {})

    params = parse_query_parameters(query_params(event))

    try:
        store = store or PropertyStore.from_env()
        result = build_query_processor().process(store.scan_all(), params)

        return json_response(200, {
            "properties": result.items,
            "totalCount": result.total_count,
            "limit": params.effective_limit,
            "offset": params.effective_offset
        })

    except Exception as e:
        logger.error(f"Properties API error: {e}", exc_info=True)
        return internal_error_response()


def _property_id_from_event(event: Dict[str, Any]) -> Optional[str]:
    path_params = event.get("pathParameters") or {}
    property_id = path_params.get("id")
    if property_id:
        return property_id

    _, path = get_method_and_path(event)
    prefix = "/properties/"
    if prefix in path:
        return path.split(prefix, 1)[1].strip("/") or None
    return None


def get_property_handler(event, context, store: Optional[PropertyStore] = None):
    """
    Get a single property by id.

    Endpoint: GET /properties/{id}

    Returns:
        {"ok": true, "property": {...}}; 404 if the id is unknown
    """
    if is_preflight(event):
        return json_response(200, {})

    property_id = _property_id_from_event(event)
    if not property_id:
        return error_response(400, "Missing property id in path")

    logger.info(f"Fetching property id={property_id}")

    try:
        store = store or PropertyStore.from_env()
        record = store.get(property_id)
        return json_response(200, {"ok": True, "property": record})

    except NotFoundError:
        return error_response(404, f"Property {property_id} not found")
    except Exception as e:
        logger.error(f"Error fetching property {property_id}: {e}", exc_info=True)
        return internal_error_response()


# ===============================================
# ROUTER
# ===============================================

def lambda_handler(event, context):
    """
    Router function that dispatches to the correct handler based on HTTP method and path.

    This allows a single Lambda to handle every endpoint:
    - GET  /search           -> search_handler()
    - GET  /properties       -> properties_handler()
    - GET  /properties/{id}  -> get_property_handler()
    - POST /analyze          -> vision_analysis.handler()
    - POST /describe         -> description_generator.handler()
    - GET  /enrich           -> enrichment.enrich_handler()
    - GET  /enrich/bulk      -> enrichment.bulk_enrich_handler()

    API Gateway uses Lambda Proxy integration, so all request details are in event.
    """
    method, path = get_method_and_path(event)
    path = path.rstrip("/") or "/"

    # Handle OPTIONS preflight request
    if method == "OPTIONS":
        return json_response(200, {})

    logger.info(f"Router: {method} {path}")

    if method == "GET" and path == "/search":
        return search_handler(event, context)
    elif method == "GET" and path == "/properties":
        return properties_handler(event, context)
    elif method == "GET" and path.startswith("/properties/"):
        return get_property_handler(event, context)
    elif method == "POST" and path == "/analyze":
        return vision_analysis.handler(event, context)
    elif method == "POST" and path == "/describe":
        return description_generator.handler(event, context)
    elif method == "GET" and path == "/enrich":
        return enrich_handler(event, context)
    elif method == "GET" and path == "/enrich/bulk":
        return bulk_enrich_handler(event, context)

    # Unknown route
    return error_response(404, "Not found", path=path, method=method)
