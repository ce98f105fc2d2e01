"""
query_processor.py - Filter, sort and paginate property records in-process

The properties table is scanned broadly and narrowed here, so every search
handler shares one definition of how filters, sorting and pagination behave:

- Filters are conjunctive: city, property type, inclusive min/max price
- Sorting is stable; missing values sort lowest; strings compare lower-cased
- 'desc' inverts the comparison, so equal keys keep their input order
- Pagination is offset/limit, clamped to the filtered set

Processing is pure: input records are never mutated and no state is kept
between calls, so one QueryProcessor can serve concurrent requests.
"""

import functools
import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

DEFAULT_LIMIT = 50
DEFAULT_OFFSET = 0
DEFAULT_SORT_BY = "price"
DEFAULT_SORT_ORDER = "asc"

MATCH_EXACT = "exact"
MATCH_CASEFOLD = "casefold"

# Marks a field that is absent or None on a record
_MISSING = object()


@dataclass(frozen=True)
class QueryParameters:
    """Per-request query options. Out-of-range limit/offset are corrected, not rejected."""
    city: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    property_type: Optional[str] = None
    sort_by: str = DEFAULT_SORT_BY
    sort_order: str = DEFAULT_SORT_ORDER
    limit: int = DEFAULT_LIMIT
    offset: int = DEFAULT_OFFSET

    @property
    def effective_limit(self) -> int:
        if _is_int(self.limit) and self.limit > 0:
            return self.limit
        return DEFAULT_LIMIT

    @property
    def effective_offset(self) -> int:
        if _is_int(self.offset) and self.offset >= 0:
            return self.offset
        return DEFAULT_OFFSET

    @property
    def effective_sort_order(self) -> str:
        return "desc" if str(self.sort_order).lower() == "desc" else "asc"

    @property
    def effective_sort_by(self) -> str:
        return self.sort_by or DEFAULT_SORT_BY


@dataclass(frozen=True)
class QueryResult:
    items: List[Dict[str, Any]] = field(default_factory=list)
    total_count: int = 0


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _as_number(value: Any) -> Optional[float]:
    """Return value as a number, or None if it is not a finite number (bools excluded)."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
        return number if math.isfinite(number) else None
    return None


def field_value(record: Mapping[str, Any], name: str) -> Any:
    """
    Look up a field by name on a record, falling back to its metadata mapping.

    Returns the _MISSING sentinel when the field is absent or None, so callers
    can tell a missing value apart from a falsy one (0, "").
    """
    value = record.get(name)
    if value is None:
        metadata = record.get("metadata")
        if isinstance(metadata, Mapping):
            value = metadata.get(name)
    return _MISSING if value is None else value


def compare_values(a: Any, b: Any) -> int:
    """
    Three-way comparison used for sorting.

    Missing sorts below everything present. Two strings compare lower-cased.
    Values that have no ordering between them (e.g. str vs int) compare equal,
    which leaves them in input order under a stable sort.
    """
    if a is _MISSING and b is _MISSING:
        return 0
    if a is _MISSING:
        return -1
    if b is _MISSING:
        return 1

    if isinstance(a, str) and isinstance(b, str):
        a, b = a.lower(), b.lower()

    try:
        if a < b:
            return -1
        if a > b:
            return 1
    except TypeError:
        return 0
    return 0


class QueryProcessor:
    """
    Turns a full record set plus QueryParameters into one result page.

    Args:
        match_mode: "exact" (case-sensitive, the default) or "casefold" for
            city and property type comparisons
    """

    def __init__(self, match_mode: str = MATCH_EXACT):
        if match_mode not in (MATCH_EXACT, MATCH_CASEFOLD):
            raise ValueError(f"Unknown match mode: {match_mode}")
        self.match_mode = match_mode

    def process(self, records: Sequence[Mapping[str, Any]], params: Optional[QueryParameters] = None) -> QueryResult:
        """
        Filter, sort and paginate records.

        Args:
            records: Property records (may be empty); never mutated
            params: Query parameters; defaults apply when None

        Returns:
            QueryResult with the page of items and the post-filter, pre-pagination count
        """
        params = params or QueryParameters()

        filtered = [r for r in (records or []) if self._matches(r, params)]
        ordered = self._sort(filtered, params.effective_sort_by, params.effective_sort_order)

        offset = params.effective_offset
        limit = params.effective_limit
        return QueryResult(items=ordered[offset:offset + limit], total_count=len(filtered))

    # ===============================================
    # FILTERING
    # ===============================================

    def _text_matches(self, value: Any, wanted: str) -> bool:
        if value is _MISSING:
            return False
        if self.match_mode == MATCH_CASEFOLD:
            return str(value).casefold() == wanted.casefold()
        return value == wanted

    def _matches(self, record: Mapping[str, Any], params: QueryParameters) -> bool:
        if params.city and not self._text_matches(field_value(record, "city"), params.city):
            return False

        if params.property_type and not self._text_matches(field_value(record, "propertyType"), params.property_type):
            return False

        # Non-numeric bounds are inactive, same as unparseable query values
        min_price = _as_number(params.min_price)
        max_price = _as_number(params.max_price)
        if min_price is not None or max_price is not None:
            price = _as_number(field_value(record, "price"))
            if price is None:
                return False
            if min_price is not None and price < min_price:
                return False
            if max_price is not None and price > max_price:
                return False

        return True

    # ===============================================
    # SORTING
    # ===============================================

    @staticmethod
    def _sort(records: List[Mapping[str, Any]], sort_by: str, sort_order: str) -> List[Mapping[str, Any]]:
        sign = -1 if sort_order == "desc" else 1

        def cmp(a, b):
            return sign * compare_values(field_value(a, sort_by), field_value(b, sort_by))

        # sorted() is stable, so inverting the comparison keeps ties in input order
        return sorted(records, key=functools.cmp_to_key(cmp))


# ===============================================
# QUERY STRING COERCION
# ===============================================

def _first_present(raw: Mapping[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = raw.get(key)
        if value is not None and str(value).strip() != "":
            return str(value).strip()
    return None


def _parse_int(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _parse_price(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return int(number) if number.is_integer() else number


def parse_query_parameters(query_params: Optional[Mapping[str, Any]]) -> QueryParameters:
    """
    Build QueryParameters from an API Gateway queryStringParameters dict.

    Missing, blank or unparseable values fall back to defaults. Accepts the
    alias spellings used by older clients: type, priceMin, priceMax, order.
    """
    raw = query_params or {}

    sort_order = (_first_present(raw, "sortOrder", "order") or DEFAULT_SORT_ORDER).lower()

    params = QueryParameters(
        city=_first_present(raw, "city"),
        min_price=_parse_price(_first_present(raw, "minPrice", "priceMin")),
        max_price=_parse_price(_first_present(raw, "maxPrice", "priceMax")),
        property_type=_first_present(raw, "propertyType", "type"),
        sort_by=_first_present(raw, "sortBy") or DEFAULT_SORT_BY,
        sort_order="desc" if sort_order == "desc" else "asc",
        limit=_parse_int(_first_present(raw, "limit"), DEFAULT_LIMIT),
        offset=_parse_int(_first_present(raw, "offset"), DEFAULT_OFFSET),
    )
    return params


def process(records: Sequence[Mapping[str, Any]], params: Optional[QueryParameters] = None,
            match_mode: str = MATCH_EXACT) -> QueryResult:
    """Convenience wrapper around QueryProcessor(match_mode).process()."""
    return QueryProcessor(match_mode).process(records, params)


def result_to_dict(result: QueryResult, params: QueryParameters) -> Dict[str, Any]:
    """Response body fields shared by the search endpoints (effective values echoed)."""
    return {
        "properties": result.items,
        "totalCount": result.total_count,
        "limit": params.effective_limit,
        "offset": params.effective_offset,
        "sortBy": params.effective_sort_by,
        "sortOrder": params.effective_sort_order,
    }
