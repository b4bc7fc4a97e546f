"""Exceptions raised by the catalog, index and query layers."""

from __future__ import annotations


class CatalogError(Exception):
    """Base class for catalog and index failures."""
    pass


class CatalogFormatError(CatalogError):
    """Raised when the catalog CSV is missing required columns."""
    pass


class IndexFormatError(CatalogError):
    """Raised when a persisted index document cannot be parsed."""
    pass


class DownloadError(CatalogError):
    """Raised when the catalog cannot be fetched from its source URL."""
    def __init__(self, url: str, message: str):
        self.url = url
        super().__init__(f"Catalog download failed for {url}: {message}")


class QueryError(CatalogError):
    """Raised for malformed query criteria (e.g. an invalid regex)."""
    pass


class ProvisioningError(CatalogError):
    """
    Raised when a missing catalog or index cannot be provisioned.
    `step` names the prerequisite that failed ("download" or "index build").
    """
    def __init__(self, step: str, message: str):
        self.step = step
        super().__init__(f"Provisioning failed at step '{step}': {message}")
