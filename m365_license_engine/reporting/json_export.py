"""
JSON exporter — writes report documents atomically.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .. import __version__
from ..catalog.atomic import write_json_atomic


def _metadata(kind: str, audit: Optional[dict] = None, graph_stats: Optional[dict] = None) -> dict:
    metadata = {
        "engine": "M365 License Engine",
        "version": __version__,
        "report": kind,
        "generated_utc": datetime.now(timezone.utc).isoformat(),
        "mode": "READ-ONLY",
    }
    if audit is not None:
        metadata["safety_audit"] = audit
    if graph_stats is not None:
        metadata["graph_stats"] = graph_stats
    return metadata


def export_json(
    report: dict[str, Any],
    path: Path,
    audit: Optional[dict] = None,
    graph_stats: Optional[dict] = None,
) -> Path:
    """
    Write the assignment report document to `path`.

    `audit` is the SafetyGuardian audit record and `graph_stats` the Graph
    client request counters; both land in the Metadata block when given.

    Returns:
        Path to the created JSON file.
    """
    payload = {"Metadata": _metadata("assignments", audit, graph_stats), **report}
    return write_json_atomic(Path(path), payload)


def export_findings_json(
    findings: list,
    tenant: dict,
    path: Path,
    audit: Optional[dict] = None,
    graph_stats: Optional[dict] = None,
) -> Path:
    """Write CA license findings to `path`."""
    payload = {
        "Metadata": _metadata("ca_licenses", audit, graph_stats),
        "Tenant": tenant,
        "Findings": [f.to_dict() for f in findings],
    }
    return write_json_atomic(Path(path), payload)
