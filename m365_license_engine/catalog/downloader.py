"""
Catalog downloader — fetches the vendor licensing CSV over HTTPS.
No retries here: a failure is reported to the caller with its cause.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import httpx

from .atomic import write_bytes_atomic
from .errors import DownloadError

logger = logging.getLogger("m365_license_engine.catalog.downloader")


async def download_catalog(
    url: str,
    destination: Path,
    timeout: float = 120.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Path:
    """
    Download the catalog at `url` and atomically place it at `destination`.

    Raises:
        DownloadError: on transport errors, non-2xx responses or an empty body.
    """
    logger.info(f"Downloading licensing catalog from {url}")
    try:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=30.0),
            follow_redirects=True,
            transport=transport,
        ) as client:
            response = await client.get(url)
            response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise DownloadError(url, f"HTTP {e.response.status_code}") from e
    except httpx.HTTPError as e:
        raise DownloadError(url, f"{type(e).__name__}: {e}") from e

    if not response.content.strip():
        raise DownloadError(url, "server returned an empty body")

    path = write_bytes_atomic(Path(destination), response.content)
    logger.info(f"Catalog saved to {path} ({len(response.content)} bytes)")
    return path
