"""
enrichment.py - Property enrichment from Connecticut CAMA open data

Sales records carry address, town and price but no structural details. The CT
CAMA (Computer-Assisted Mass Appraisal) dataset on data.ct.gov has beds,
baths, living area, year built, condition, photos, etc. This module:

- Normalizes addresses/towns so the two datasets can be matched
- Queries the Socrata API for CAMA candidates and picks the best match
- Merges CAMA fields into a property's metadata (never mutating the input)
- Enriches lists of properties in fixed-size concurrent batches
- Exposes Lambda handlers for GET /enrich and GET /enrich/bulk

Enrichment is best-effort: any failure for one property returns that
property unchanged and never aborts the rest of the batch.
"""

import concurrent.futures
import logging
import math
import os
import re
from typing import Any, Dict, List, Optional, Sequence

import requests

from common import (
    CAMA_BASE_URL, CAMA_TIMEOUT, ENRICH_MAX_CONCURRENT, error_response,
    internal_error_response, is_preflight, json_response, query_params, utc_now_iso
)

logger = logging.getLogger(__name__)
logger.setLevel(os.getenv("LOG_LEVEL", "INFO"))

CAMA_SOURCE = "cama_2025"
CANDIDATE_LIMIT = 20
BULK_DEFAULT_LIMIT = 50
BULK_MAX_LIMIT = 100

# Street-type abbreviations applied after upper-casing
_ABBREVIATIONS = [
    (r"\bSTREET\b", "ST"),
    (r"\bAVENUE\b", "AVE"),
    (r"\bROAD\b", "RD"),
    (r"\bDRIVE\b", "DR"),
    (r"\bLANE\b", "LN"),
    (r"\bCOURT\b", "CT"),
    (r"\bCIRCLE\b", "CIR"),
    (r"\bBOULEVARD\b", "BLVD"),
    (r"\bPARKWAY\b", "PKWY"),
    (r"\bPLACE\b", "PL"),
]


# ===============================================
# NORMALIZATION
# ===============================================

def normalize_address(address: str) -> str:
    """
    Normalize an address for matching between the sales and CAMA datasets.

    "12 Main Street, #3" -> "12 MAIN ST 3"
    """
    text = re.sub(r"[.,#]", "", (address or "").upper())
    text = re.sub(r"\s+", " ", text)
    for pattern, abbrev in _ABBREVIATIONS:
        text = re.sub(pattern, abbrev, text)
    return text.strip()


def normalize_town(town: str) -> str:
    """Title Case a town name ("WEST HARTFORD" -> "West Hartford")."""
    words = (town or "").lower().split()
    return " ".join(w[:1].upper() + w[1:] for w in words)


def _street_number(address: str) -> Optional[str]:
    match = re.match(r"^(\d+)", address)
    return match.group(1) if match else None


def _soql_quote(value: str) -> str:
    return value.replace("'", "''")


def _int_or_none(value: Any) -> Optional[int]:
    number = _float_or_none(value)
    return int(math.floor(number + 0.5)) if number is not None else None


def _float_or_none(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _photo_url(photo: Any) -> Optional[str]:
    if not isinstance(photo, dict) or not photo.get("url"):
        return None
    # CAMA exports Windows-style paths inside URLs
    return photo["url"].replace("\\\\", "/").replace("\\", "/")


def transform_cama_record(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Map a raw CAMA Socrata row to the enrichment shape."""
    return {
        "beds": _int_or_none(raw.get("number_of_bedroom")),
        "baths": _int_or_none(raw.get("number_of_baths")),
        "halfBaths": _int_or_none(raw.get("number_of_half_baths")),
        "sqft": _int_or_none(raw.get("living_area")),
        "lotAcres": _float_or_none(raw.get("land_acres")),
        "yearBuilt": _int_or_none(raw.get("ayb")),
        "style": raw.get("style_desc") or None,
        "condition": raw.get("condition_description") or None,
        "stories": raw.get("stories") or None,
        "totalRooms": _int_or_none(raw.get("total_rooms")),
        "basement": raw.get("basement_type") or None,
        "heating": raw.get("heat_type_description") or None,
        "cooling": raw.get("ac_type_description") or None,
        "photoUrl": _photo_url(raw.get("building_photo")),
        "assessedValue": _float_or_none(raw.get("assessed_total")),
        "appraisedValue": _float_or_none(raw.get("appraised_total")),
        "source": CAMA_SOURCE,
        "fetchedAt": utc_now_iso(),
    }


# ===============================================
# CAMA API CLIENT
# ===============================================

class CamaClient:
    """
    Socrata client for the CT CAMA dataset.

    Args:
        session: requests.Session (or compatible object with .get); a new one if None
        base_url: Dataset resource URL
        timeout: Request timeout in seconds
    """

    def __init__(self, session=None, base_url: str = CAMA_BASE_URL, timeout: int = CAMA_TIMEOUT):
        self.session = session or requests.Session()
        self.base_url = base_url
        self.timeout = timeout

    def _get(self, params: Dict[str, str]) -> Optional[List[Dict[str, Any]]]:
        try:
            response = self.session.get(self.base_url, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"[CAMA] API error: {e}")
            return None
        return data if isinstance(data, list) else None

    def find_by_address(self, address: str, town: str) -> Optional[Dict[str, Any]]:
        """
        Look up CAMA data for one property.

        Returns:
            Enrichment dict, or None if the API failed or nothing matched
        """
        upper_town = _soql_quote(normalize_town(town).upper())
        normalized_address = normalize_address(address)
        street_number = _street_number(normalized_address)

        where = f"upper(property_city)='{upper_town}'"
        if street_number:
            where += f" AND location LIKE '{street_number} %'"

        results = self._get({"$where": where, "$limit": str(CANDIDATE_LIMIT)})
        if not results:
            return None

        logger.debug(f"[CAMA] Found {len(results)} candidates for {address}, {town}")

        for candidate in results:
            location = candidate.get("location")
            if not location:
                continue
            cama_address = normalize_address(location)
            if (cama_address == normalized_address
                    or normalized_address in cama_address
                    or cama_address in normalized_address):
                logger.debug(f"[CAMA] Found match: {location}")
                return transform_cama_record(candidate)

        logger.info(f"[CAMA] No match for {address}. Candidates: {[r.get('location') for r in results[:3]]}")
        return None

    def list_by_town(self, town: str, limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
        upper_town = _soql_quote(normalize_town(town).upper())
        results = self._get({
            "$where": f"upper(property_city)='{upper_town}'",
            "$limit": str(limit),
            "$offset": str(offset),
            "$order": "location ASC",
        })
        return [transform_cama_record(r) for r in results or []]

    def count_by_town(self, town: str) -> int:
        upper_town = _soql_quote(normalize_town(town).upper())
        results = self._get({
            "$where": f"upper(property_city)='{upper_town}'",
            "$select": "count(*)",
        })
        if not results:
            return 0
        try:
            return int(results[0].get("count", 0))
        except (TypeError, ValueError):
            return 0


# ===============================================
# RECORD ENRICHMENT
# ===============================================

def enrich_property(record: Dict[str, Any], cama: CamaClient) -> Dict[str, Any]:
    """
    Return a copy of record with CAMA fields merged into its metadata.

    The original record is returned as-is when address/city are missing,
    no CAMA match exists, or the lookup fails.
    """
    address = record.get("address")
    city = record.get("city")
    if not address or not city:
        logger.debug(f"Skipping enrichment, missing address or city: {record.get('id')}")
        return record

    try:
        enrichment = cama.find_by_address(address, city)
    except Exception as e:
        logger.warning(f"Error enriching {address}: {e}")
        return record

    if not enrichment:
        return record

    metadata = dict(record.get("metadata") or {})
    metadata.update({
        "bedrooms": enrichment["beds"],
        "bathrooms": enrichment["baths"],
        "halfBathrooms": enrichment["halfBaths"],
        "squareFeet": enrichment["sqft"],
        "lotSize": enrichment["lotAcres"],
        "yearBuilt": enrichment["yearBuilt"],
        "style": enrichment["style"],
        "condition": enrichment["condition"],
        "heating": enrichment["heating"],
        "cooling": enrichment["cooling"],
        "photoUrl": enrichment["photoUrl"],
        "appraisedValue": enrichment["appraisedValue"],
        "enrichedAt": utc_now_iso(),
        "enrichmentSource": enrichment["source"],
    })
    return {**record, "metadata": metadata}


def enrich_properties(records: Sequence[Dict[str, Any]], cama: CamaClient,
                      max_concurrent: int = ENRICH_MAX_CONCURRENT) -> List[Dict[str, Any]]:
    """
    Enrich records in groups of max_concurrent.

    Each group runs on a thread pool and completes before the next group
    starts, so at most max_concurrent CAMA lookups are in flight. Output order
    matches input order.
    """
    records = list(records or [])
    if not records:
        return records

    batch_size = max(1, int(max_concurrent))
    logger.info(f"Enriching {len(records)} properties (max {batch_size} concurrent)")

    enriched: List[Dict[str, Any]] = []
    for start in range(0, len(records), batch_size):
        batch = records[start:start + batch_size]

        with concurrent.futures.ThreadPoolExecutor(max_workers=len(batch)) as executor:
            futures = [executor.submit(enrich_property, record, cama) for record in batch]

            for record, future in zip(batch, futures):
                try:
                    enriched.append(future.result())
                except Exception as e:
                    logger.warning(f"Enrichment failed for {record.get('address')}: {e}")
                    enriched.append(record)

    success_count = sum(1 for r in enriched if (r.get("metadata") or {}).get("enrichedAt"))
    logger.info(f"Successfully enriched {success_count}/{len(records)} properties")
    return enriched


# ===============================================
# LAMBDA HANDLERS
# ===============================================

def enrich_handler(event, context, cama: Optional[CamaClient] = None):
    """
    GET /enrich?address=...&town=...

    Returns CAMA enrichment for a single property, 404 when CAMA has no match.
    """
    if is_preflight(event):
        return json_response(200, {})

    params = query_params(event)
    address = (params.get("address") or "").strip()
    town = (params.get("town") or "").strip()

    if not address or not town:
        return error_response(400, "Missing required parameters", required=["address", "town"])

    logger.info(f"[Enrich] Request for: {address}, {town}")

    try:
        enrichment = (cama or CamaClient()).find_by_address(address, town)
    except Exception as e:
        logger.error(f"[Enrich] Error: {e}", exc_info=True)
        return internal_error_response()

    if not enrichment:
        return error_response(
            404,
            "Property not found in CAMA database",
            address=address,
            town=town,
            suggestion="CAMA data may not be available for this property"
        )

    return json_response(200, {
        "success": True,
        "address": address,
        "town": town,
        "enrichment": enrichment
    })


def _bounded_int(raw: Any, default: int, minimum: int, maximum: Optional[int] = None) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        value = default
    if value < minimum:
        value = default
    return min(value, maximum) if maximum is not None else value


def bulk_enrich_handler(event, context, cama: Optional[CamaClient] = None):
    """
    GET /enrich/bulk?town=...&limit=50&offset=0

    Returns a page of CAMA records for a town (limit capped at 100).
    """
    if is_preflight(event):
        return json_response(200, {})

    params = query_params(event)
    town = (params.get("town") or "").strip()
    if not town:
        return error_response(400, "Missing required parameter: town")

    limit = _bounded_int(params.get("limit"), BULK_DEFAULT_LIMIT, 1, BULK_MAX_LIMIT)
    offset = _bounded_int(params.get("offset"), 0, 0)

    logger.info(f"[Enrich/Bulk] Request for: {town} limit={limit} offset={offset}")

    try:
        cama = cama or CamaClient()
        enrichments = cama.list_by_town(town, limit, offset)
        total_count = cama.count_by_town(town)
    except Exception as e:
        logger.error(f"[Enrich/Bulk] Error: {e}", exc_info=True)
        return internal_error_response()

    return json_response(200, {
        "success": True,
        "town": town,
        "data": enrichments,
        "meta": {
            "limit": limit,
            "offset": offset,
            "count": len(enrichments),
            "totalAvailable": total_count,
            "hasMore": offset + len(enrichments) < total_count
        }
    })
