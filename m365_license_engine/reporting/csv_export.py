"""
CSV exporter — flat views of assignment reports and query results.
"""

from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import Any

from ..catalog.atomic import write_text_atomic

ASSIGNMENT_FIELDS = [
    "UserPrincipalName", "DisplayName", "UserId", "SkuPartNumber", "SkuId",
    "ServicePlanName", "ServicePlanId", "Enabled",
]

PRODUCT_FIELDS = [
    "ProductDisplayName", "StringIds", "GUIDs", "MatchedServicePlanIds",
    "MatchedPlanCount", "RequiredPlanCount",
]


def _render(fields: list[str], rows: list[dict]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=fields, extrasaction="ignore")
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue()


def export_csv(report: dict[str, Any], path: Path) -> Path:
    """One row per (assignment, matching plan)."""
    rows = []
    for a in report.get("Assignments", []):
        for plan in a.get("MatchingPlans", []):
            rows.append({
                "UserPrincipalName": a["UserPrincipalName"],
                "DisplayName": a["DisplayName"],
                "UserId": a["UserId"],
                "SkuPartNumber": a["SkuPartNumber"],
                "SkuId": a["SkuId"],
                "ServicePlanName": plan["ServicePlanName"],
                "ServicePlanId": plan["ServicePlanId"],
                "Enabled": plan["Enabled"],
            })
    # utf-8-sig so Excel picks up the encoding
    return write_text_atomic(Path(path), _render(ASSIGNMENT_FIELDS, rows), encoding="utf-8-sig")


def export_query_csv(result: Any, path: Path) -> Path:
    """Products containing every requested service plan."""
    rows = []
    for match in result.products_with_all_plans:
        row = match.to_dict()
        for key in ("StringIds", "GUIDs", "MatchedServicePlanIds"):
            row[key] = ";".join(row[key])
        rows.append(row)
    return write_text_atomic(Path(path), _render(PRODUCT_FIELDS, rows), encoding="utf-8-sig")
