"""
Catalog Normalizer
Parses the vendor licensing CSV into uniform CatalogRow records with stable
field names and trimmed values.
"""

from __future__ import annotations

import csv
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Optional

from ..config import UNKNOWN_PRODUCT
from .errors import CatalogFormatError

logger = logging.getLogger("m365_license_engine.catalog.normalizer")

_WHITESPACE = re.compile(r"\s+")
_NON_WORD = re.compile(r"[^0-9A-Za-z_ ]")

# Normalized header -> CatalogRow attribute
COLUMN_MAP = {
    "Product_Display_Name": "product_display_name",
    "String_Id": "string_id",
    "GUID": "sku_guid",
    "Service_Plan_Id": "service_plan_id",
    "Service_Plan_Name": "service_plan_name",
    "Service_Plans_Included_Friendly_Names": "service_plans_included_friendly_names",
}

REQUIRED_COLUMNS = ("Service_Plan_Id",)


@dataclass(frozen=True)
class CatalogRow:
    """One product/service-plan pairing from the catalog."""
    product_display_name: Optional[str] = None
    string_id: Optional[str] = None
    sku_guid: Optional[str] = None
    service_plan_id: Optional[str] = None
    service_plan_name: Optional[str] = None
    service_plans_included_friendly_names: Optional[str] = None

    @property
    def resolved_product_name(self) -> str:
        """Display name, falling back to the string id, then UnknownProduct."""
        return self.product_display_name or self.string_id or UNKNOWN_PRODUCT


def normalize_header(name: str) -> str:
    """
    Normalize a CSV header: trim, collapse whitespace, strip punctuation,
    then join words with underscores.

        >>> normalize_header("  Service Plans Included (Friendly Names) ")
        'Service_Plans_Included_Friendly_Names'
    """
    cleaned = name.replace("\ufeff", "").strip()
    cleaned = _NON_WORD.sub("", cleaned)
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    return cleaned.replace(" ", "_")


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def normalize_record(record: Mapping[str, Optional[str]]) -> CatalogRow:
    """Build a CatalogRow from a raw record keyed by (un-normalized) headers."""
    fields = {}
    for header, value in record.items():
        if header is None:
            # DictReader puts overflow cells under a None key
            continue
        attr = COLUMN_MAP.get(normalize_header(header))
        if attr and attr not in fields:
            fields[attr] = _clean(value)
    return CatalogRow(**fields)


def normalize_records(records: Iterable[Mapping[str, Optional[str]]]) -> list[CatalogRow]:
    return [normalize_record(r) for r in records]


def read_catalog(path: Path) -> list[CatalogRow]:
    """
    Read the licensing catalog CSV at `path`.

    Raises:
        FileNotFoundError: the catalog does not exist.
        CatalogFormatError: a required column is missing.
    """
    path = Path(path)
    with open(path, "r", newline="", encoding="utf-8-sig") as fh:
        reader = csv.DictReader(fh)
        headers = {normalize_header(h) for h in (reader.fieldnames or [])}
        missing = [c for c in REQUIRED_COLUMNS if c not in headers]
        if missing:
            raise CatalogFormatError(
                f"Catalog {path} is missing required column(s): {', '.join(missing)}"
            )
        rows = normalize_records(reader)

    logger.info(f"Read {len(rows)} catalog rows from {path}")
    return rows
