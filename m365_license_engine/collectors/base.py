"""
Base collector class — Abstract interface for directory data collectors.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx

from ..graph.client import GraphClient, GraphAPIError
from ..config import CollectionConfig

logger = logging.getLogger("m365_license_engine.collectors")


class DirectoryServiceError(Exception):
    """
    Connectivity failure talking to the directory service (auth, network,
    missing permission). Carries the endpoint and the underlying cause.
    """
    def __init__(self, endpoint: str, cause: Exception):
        self.endpoint = endpoint
        self.cause = cause
        self.status_code = getattr(cause, "status_code", None)
        super().__init__(f"Directory service request failed for {endpoint}: {cause}")


class CollectorResult:
    """Standardized result from a collector."""

    def __init__(self, collector_name: str):
        self.collector_name = collector_name
        self.data: dict[str, Any] = {}
        self.metadata: dict[str, Any] = {
            "collector": collector_name,
            "started_at": None,
            "completed_at": None,
            "duration_seconds": 0,
            "items_collected": 0,
            "errors": [],
            "warnings": [],
            "endpoints_queried": 0,
        }

    def add_data(self, key: str, value: Any):
        self.data[key] = value
        if isinstance(value, list):
            self.metadata["items_collected"] += len(value)
        elif isinstance(value, dict):
            self.metadata["items_collected"] += 1

    def add_error(self, error: str):
        self.metadata["errors"].append(error)
        logger.error(f"[{self.collector_name}] {error}")

    def add_warning(self, warning: str):
        self.metadata["warnings"].append(warning)
        logger.warning(f"[{self.collector_name}] {warning}")


class BaseCollector(ABC):
    """
    Abstract base class for all collectors.

    Subclasses implement collect() to gather data from Graph. Failures are
    recorded in the result metadata and re-raised as DirectoryServiceError;
    partial data is never passed off as a complete collection.
    """

    name: str = "base"
    description: str = "Base collector"

    def __init__(self, graph: GraphClient, config: CollectionConfig):
        self.graph = graph
        self.config = config

    async def execute(self) -> CollectorResult:
        """Execute the collector with timing and error handling."""
        result = CollectorResult(self.name)
        result.metadata["started_at"] = time.time()
        logger.info(f"[{self.name}] Starting collection...")

        try:
            await self.collect(result)
        except DirectoryServiceError as e:
            result.add_error(str(e))
            raise
        finally:
            result.metadata["completed_at"] = time.time()
            result.metadata["duration_seconds"] = round(
                result.metadata["completed_at"] - result.metadata["started_at"], 2
            )

        logger.info(
            f"[{self.name}] Completed in {result.metadata['duration_seconds']}s — "
            f"{result.metadata['items_collected']} items"
        )
        return result

    @abstractmethod
    async def collect(self, result: CollectorResult):
        """
        Implement data collection logic.
        Add data to result via result.add_data(key, value).
        """
        raise NotImplementedError

    async def fetch(self, endpoint: str, result: CollectorResult, **kwargs) -> dict:
        """Single GET; any failure becomes a DirectoryServiceError."""
        try:
            data = await self.graph.get(endpoint, **kwargs)
        except (GraphAPIError, httpx.HTTPError) as e:
            raise DirectoryServiceError(endpoint, e) from e
        result.metadata["endpoints_queried"] += 1
        return data

    async def fetch_all(self, endpoint: str, result: CollectorResult, **kwargs) -> list:
        """All pages of `endpoint`; any failure becomes a DirectoryServiceError."""
        try:
            data = await self.graph.get_all_pages(
                endpoint, max_pages=self.config.max_pages, **kwargs
            )
        except (GraphAPIError, httpx.HTTPError) as e:
            raise DirectoryServiceError(endpoint, e) from e
        result.metadata["endpoints_queried"] += 1
        return data
