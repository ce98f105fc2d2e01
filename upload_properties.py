#!/usr/bin/env python3
"""
upload_properties.py - Load Connecticut real estate sales into DynamoDB

Reads the CT "Real Estate Sales 2001-2023 GL" CSV export from data.ct.gov,
maps each row to a property record, and writes the records to the
properties table used by the search Lambdas.

Row mapping:
- id            <- "Town" + "Serial Number" (serials repeat across towns; falls
                   back to a hash of address/town/date)
- address       <- "Address, Town"
- city          <- "Town"
- price         <- "Sale Amount" (must be positive)
- propertyType  <- "Property Type"
- saleDate      <- "Date Recorded" (MM/DD/YYYY converted to YYYY-MM-DD so it sorts)
- metadata      <- residentialType, assessedValue, listYear, salesRatio, serialNumber, location

Invalid rows are reported and skipped; they never stop the load.

Usage Examples:
    # Load everything
    python3 upload_properties.py --file real_estate_sales.csv

    # Validate the first 200 rows without writing
    python3 upload_properties.py --file real_estate_sales.csv --limit 200 --dry-run

    # Load into another table
    python3 upload_properties.py --file sales.csv --table home-harbor-properties-prod
"""

import argparse
import csv
import hashlib
import logging
import math
import re
import sys
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from common import PROPERTIES_TABLE, create_dynamodb_client
from errors import HomeHarborError, ValidationError
from property_store import PropertyStore

logger = logging.getLogger(__name__)


def parse_currency(value: Optional[str]) -> Optional[float]:
    """Parse "248,400.00" or "$248,400" to a float; blank or garbage -> None."""
    if value is None or str(value).strip() == "":
        return None
    cleaned = str(value).replace(",", "").replace("$", "").strip()
    try:
        number = float(cleaned)
    except ValueError:
        return None
    # "NaN" and "inf" parse as floats but DynamoDB cannot store them
    return number if math.isfinite(number) else None


def _num(value: Optional[str]):
    number = parse_currency(value)
    if number is None:
        return None
    return int(number) if number.is_integer() else number


def parse_sale_date(value: Optional[str]) -> Optional[str]:
    """Convert MM/DD/YYYY to ISO YYYY-MM-DD; ISO input passes through."""
    text = (value or "").strip()
    if not text:
        return None
    for fmt in ("%m/%d/%Y", "%Y-%m-%d", "%Y-%m-%dT%H:%M:%S.%f", "%Y-%m-%dT%H:%M:%S"):
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def _serial_id(town: str, serial: str) -> str:
    """Town-qualified id, e.g. ("West Hartford", "2100123") -> ct-west-hartford-2100123."""
    town_slug = re.sub(r"[^a-z0-9]+", "-", town.lower()).strip("-")
    return f"ct-{town_slug}-{serial}"


def _fallback_id(address: str, town: str, sale_date: Optional[str]) -> str:
    digest = hashlib.sha1(f"{address}|{town}|{sale_date or ''}".encode("utf-8")).hexdigest()
    return f"ct-{digest[:16]}"


def ct_row_to_property(row: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map one CT sales CSV row to a property record.

    Raises:
        ValidationError: Address or town missing, or sale amount not positive
    """
    town = (row.get("Town") or "").strip()
    address = (row.get("Address") or "").strip()
    sale_amount = parse_currency(row.get("Sale Amount"))

    if not address:
        raise ValidationError("Address is required")
    if not town:
        raise ValidationError("Town is required")
    if sale_amount is None or sale_amount <= 0:
        raise ValidationError("Sale Amount must be positive")

    sale_date = parse_sale_date(row.get("Date Recorded"))
    serial = (row.get("Serial Number") or "").strip()

    metadata = {
        "residentialType": (row.get("Residential Type") or "").strip(),
        "assessedValue": _num(row.get("Assessed Value")),
        "listYear": _num(row.get("List Year")),
        "salesRatio": _num(row.get("Sales Ratio")),
        "serialNumber": serial or None,
        "location": (row.get("Location") or "").strip() or None,
    }

    return {
        "id": _serial_id(town, serial) if serial else _fallback_id(address, town, sale_date),
        "address": f"{address}, {town}",
        "city": town,
        "state": "CT",
        "price": int(sale_amount) if sale_amount.is_integer() else sale_amount,
        "propertyType": (row.get("Property Type") or "").strip(),
        "saleDate": sale_date,
        "metadata": {k: v for k, v in metadata.items() if v not in (None, "")},
    }


def load_csv(path: str, limit: Optional[int] = None) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """
    Read and map a CT sales CSV.

    Args:
        path: CSV file path (first row is the header)
        limit: Stop after this many data rows (None = all)

    Returns:
        Tuple of (valid property records, errors as {"line", "error"} dicts)
    """
    records: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []

    with open(path, newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        for line_no, row in enumerate(reader, start=2):
            if limit is not None and line_no - 1 > limit:
                break
            try:
                records.append(ct_row_to_property(row))
            except ValidationError as e:
                errors.append({"line": line_no, "error": str(e)})

    return records, errors


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Load CT real estate sales CSV into DynamoDB")
    parser.add_argument("--file", required=True, help="Path to the CT sales CSV")
    parser.add_argument("--table", default=PROPERTIES_TABLE, help=f"Target table (default: {PROPERTIES_TABLE})")
    parser.add_argument("--limit", type=int, default=None, help="Only process the first N rows")
    parser.add_argument("--dry-run", action="store_true", help="Parse and validate without writing")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    start_time = time.time()
    try:
        records, errors = load_csv(args.file, limit=args.limit)
    except OSError as e:
        logger.error(f"Cannot read {args.file}: {e}")
        return 1

    logger.info(f"Parsed {len(records)} valid properties ({len(errors)} invalid rows skipped)")
    for err in errors[:10]:
        logger.info(f"  line {err['line']}: {err['error']}")

    if not records:
        logger.error("No valid properties loaded from CSV")
        return 1

    if args.dry_run:
        logger.info("Dry run - nothing written")
        return 0

    store = PropertyStore(create_dynamodb_client(), args.table)
    try:
        written = store.put_many(records)
    except HomeHarborError as e:
        logger.error(f"Load failed: {e}")
        return 1

    logger.info(f"Wrote {written} properties to {args.table} in {time.time() - start_time:.1f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
