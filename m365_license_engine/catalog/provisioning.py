"""
Provisioning chain for missing artifacts: catalog download -> index build.
Each failure names the step so the operator knows what to retry by hand.
"""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Optional

import httpx

from ..config import CatalogConfig
from .downloader import download_catalog
from .errors import CatalogError, DownloadError, IndexFormatError, ProvisioningError
from .index import ServicePlanIndex, build_index, load_index, save_index
from .normalizer import read_catalog

logger = logging.getLogger("m365_license_engine.catalog.provisioning")

STEP_DOWNLOAD = "download"
STEP_INDEX_BUILD = "index build"


async def ensure_catalog(
    config: CatalogConfig,
    force: bool = False,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Path:
    """Return the catalog path, downloading it first if absent (or `force`)."""
    path = config.catalog_path
    if path.exists() and not force:
        return path
    try:
        return await download_catalog(
            config.catalog_url, path, timeout=config.download_timeout, transport=transport
        )
    except DownloadError as e:
        if force and path.exists():
            reason = f"licensing catalog {path} could not be re-downloaded; the existing copy was kept ({e})"
        else:
            reason = f"licensing catalog {path} is missing and could not be downloaded ({e})"
        raise ProvisioningError(STEP_DOWNLOAD, reason) from e


def rebuild_index(catalog_path: Path, index_path: Path) -> ServicePlanIndex:
    """Build the index from `catalog_path` and persist it at `index_path`."""
    try:
        rows = read_catalog(catalog_path)
        index = build_index(rows, source_file=Path(catalog_path).name)
        save_index(index, index_path)
    except (OSError, UnicodeDecodeError, csv.Error, CatalogError) as e:
        raise ProvisioningError(
            STEP_INDEX_BUILD,
            f"could not build service plan index {index_path} from {catalog_path} ({e})",
        ) from e
    return index


async def ensure_index(
    config: CatalogConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ServicePlanIndex:
    """
    Load the persisted index, provisioning catalog and index when missing.

    An index that exists but cannot be parsed is rebuilt from the catalog.
    """
    index_path = config.index_path
    if index_path.exists():
        try:
            return load_index(index_path)
        except IndexFormatError as e:
            logger.warning(f"Index {index_path} is unreadable ({e}); rebuilding")

    print(f"  ⚙  Service plan index not found, provisioning {index_path}")
    catalog_path = await ensure_catalog(config, transport=transport)
    return rebuild_index(catalog_path, index_path)
