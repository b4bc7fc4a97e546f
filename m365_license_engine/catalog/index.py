"""
Service-Plan Index Builder
Turns normalized catalog rows into a service-plan id -> products index and
persists it as a JSON document with a summary block.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from ..config import SUMMARY_TOP_PLANS
from .atomic import write_json_atomic
from .errors import IndexFormatError
from .keys import CaseInsensitiveDict, CaseInsensitiveSet
from .normalizer import CatalogRow

logger = logging.getLogger("m365_license_engine.catalog.index")


# ─── Data model ─────────────────────────────────────────────────────────────

@dataclass
class ProductRef:
    """A product that contains a service plan, as first seen in the catalog."""
    product_display_name: str
    string_id: Optional[str] = None
    sku_guid: Optional[str] = None
    service_plans_included_friendly_names: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "ProductDisplayName": self.product_display_name,
            "StringId": self.string_id,
            "GUID": self.sku_guid,
            "ServicePlansIncludedFriendlyNames": self.service_plans_included_friendly_names,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ProductRef":
        return cls(
            product_display_name=data["ProductDisplayName"],
            string_id=data.get("StringId"),
            sku_guid=data.get("GUID"),
            service_plans_included_friendly_names=data.get("ServicePlansIncludedFriendlyNames"),
        )


@dataclass
class ServicePlanEntry:
    """All products containing one service plan, plus every name the plan goes by."""
    service_plan_id: str
    service_plan_names: list[str] = field(default_factory=list)
    products: list[ProductRef] = field(default_factory=list)
    _seen_products: CaseInsensitiveSet = field(
        default_factory=CaseInsensitiveSet, repr=False, compare=False
    )

    @property
    def product_count(self) -> int:
        return len(self.products)

    def add_name(self, name: Optional[str]) -> None:
        if name and name not in self.service_plan_names:
            self.service_plan_names.append(name)

    def add_product(self, product: ProductRef) -> bool:
        """Append `product` unless one with the same name (any case) exists."""
        if product.product_display_name in self._seen_products:
            return False
        self._seen_products.add(product.product_display_name)
        self.products.append(product)
        return True

    def finalize(self) -> None:
        self.service_plan_names.sort()
        self.products.sort(key=lambda p: p.product_display_name)

    def to_dict(self) -> dict:
        return {
            "ServicePlanId": self.service_plan_id,
            "ServicePlanNames": list(self.service_plan_names),
            "ProductCount": self.product_count,
            "Products": [p.to_dict() for p in self.products],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ServicePlanEntry":
        entry = cls(service_plan_id=data["ServicePlanId"])
        for name in data.get("ServicePlanNames") or []:
            entry.add_name(name)
        for p in data.get("Products") or []:
            entry.add_product(ProductRef.from_dict(p))
        entry.finalize()
        return entry


@dataclass
class ServicePlanIndex:
    """Case-insensitive mapping of service-plan id to ServicePlanEntry."""
    entries: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    rows_processed: int = 0
    source_file: str = ""
    generated_utc: str = ""

    def __contains__(self, plan_id: object) -> bool:
        return plan_id in self.entries

    def __getitem__(self, plan_id: str) -> ServicePlanEntry:
        return self.entries[plan_id]

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, plan_id: str) -> Optional[ServicePlanEntry]:
        return self.entries.get(plan_id)

    def values(self) -> Iterable[ServicePlanEntry]:
        return self.entries.values()

    def sorted_entries(self) -> list[ServicePlanEntry]:
        """Presentation order: most products first, then plan id ascending."""
        return sorted(
            self.entries.values(),
            key=lambda e: (-e.product_count, e.service_plan_id),
        )

    def top_plans(self, limit: int = SUMMARY_TOP_PLANS) -> list[ServicePlanEntry]:
        return self.sorted_entries()[:limit]


# ─── Builder ────────────────────────────────────────────────────────────────

def build_index(rows: Iterable[CatalogRow], source_file: str = "") -> ServicePlanIndex:
    """
    Build the service-plan index from catalog rows.

    Rows without a service plan id are skipped; the catalog carries a few
    metadata-only rows. Duplicate (plan, product) pairs collapse to the
    first-seen ProductRef.
    """
    index = ServicePlanIndex(source_file=source_file)
    skipped = 0

    for row in rows:
        index.rows_processed += 1
        plan_id = (row.service_plan_id or "").strip()
        if not plan_id:
            skipped += 1
            continue

        entry = index.entries.get(plan_id)
        if entry is None:
            entry = ServicePlanEntry(service_plan_id=plan_id)
            index.entries[plan_id] = entry

        entry.add_name(row.service_plan_name)
        entry.add_product(ProductRef(
            product_display_name=row.resolved_product_name,
            string_id=row.string_id,
            sku_guid=row.sku_guid,
            service_plans_included_friendly_names=row.service_plans_included_friendly_names,
        ))

    for entry in index.entries.values():
        entry.finalize()

    index.generated_utc = datetime.now(timezone.utc).isoformat()
    logger.info(
        f"Built index of {len(index)} service plans from {index.rows_processed} rows "
        f"({skipped} rows without a service plan id skipped)"
    )
    return index


# ─── Persistence ────────────────────────────────────────────────────────────

def index_to_document(index: ServicePlanIndex) -> dict[str, Any]:
    return {
        "Summary": {
            "GeneratedUtc": index.generated_utc,
            "SourceFile": index.source_file,
            "TotalServicePlans": len(index),
            "RowsProcessed": index.rows_processed,
            "TopServicePlans": [
                {
                    "ServicePlanId": e.service_plan_id,
                    "ServicePlanNames": list(e.service_plan_names),
                    "ProductCount": e.product_count,
                }
                for e in index.top_plans()
            ],
        },
        "Items": [e.to_dict() for e in index.sorted_entries()],
    }


def index_from_document(document: Any) -> ServicePlanIndex:
    if not isinstance(document, dict) or not isinstance(document.get("Items"), list):
        raise IndexFormatError("Index document has no 'Items' list")
    summary = document.get("Summary") or {}
    index = ServicePlanIndex(
        rows_processed=summary.get("RowsProcessed", 0),
        source_file=summary.get("SourceFile", ""),
        generated_utc=summary.get("GeneratedUtc", ""),
    )
    try:
        for item in document["Items"]:
            entry = ServicePlanEntry.from_dict(item)
            if not entry.service_plan_id:
                continue
            index.entries[entry.service_plan_id] = entry
    except (KeyError, TypeError, AttributeError) as e:
        raise IndexFormatError(f"Malformed index item: {e}") from e
    return index


def save_index(index: ServicePlanIndex, path: Path) -> Path:
    """Persist the index atomically; readers never see a partial file."""
    path = write_json_atomic(Path(path), index_to_document(index))
    logger.info(f"Saved index ({len(index)} service plans) to {path}")
    return path


def load_index(path: Path) -> ServicePlanIndex:
    """
    Load a persisted index.

    Raises:
        FileNotFoundError: the index file does not exist.
        IndexFormatError: the file is not a valid index document.
    """
    path = Path(path)
    with open(path, "r", encoding="utf-8") as fh:
        try:
            document = json.load(fh)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise IndexFormatError(f"Index {path} is not valid UTF-8 JSON: {e}") from e
    index = index_from_document(document)
    logger.info(f"Loaded index ({len(index)} service plans) from {path}")
    return index
