"""
Configuration module for the M365 License Engine.
Defines catalog locations, Graph API settings, and operational defaults.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


# ─── Tenant Authentication ───────────────────────────────────────────────────

@dataclass
class CertificateAuth:
    """Certificate-based app-only authentication configuration."""
    tenant_id: str
    client_id: str
    certificate_path: str          # Path to base64-encoded PFX
    certificate_password: str = "" # Will be prompted if empty
    thumbprint: str = ""

@dataclass
class DelegatedAuth:
    """Delegated (interactive) authentication configuration."""
    tenant_id: str
    client_id: str
    scopes: list[str] = field(default_factory=lambda: [
        "https://graph.microsoft.com/.default"
    ])

@dataclass
class AuthConfig:
    """Authentication configuration — supports both modes."""
    mode: str = "certificate"  # "certificate" or "delegated"
    certificate: Optional[CertificateAuth] = None
    delegated: Optional[DelegatedAuth] = None


# ─── Graph API Settings ─────────────────────────────────────────────────────

GRAPH_BASE_URL = "https://graph.microsoft.com"
GRAPH_API_VERSION = "v1.0"
GRAPH_BETA_VERSION = "beta"

# Rate limiting / throttling
MAX_CONCURRENT_REQUESTS = 4       # Parallel requests to Graph
MAX_RETRIES = 5                   # Retry count for throttled requests
INITIAL_BACKOFF_SECONDS = 2.0     # First retry delay
MAX_BACKOFF_SECONDS = 120.0       # Cap on exponential backoff
BACKOFF_MULTIPLIER = 2.0          # Exponential factor

# Pagination
DEFAULT_PAGE_SIZE = 999           # Maximum items per page ($top)
MAX_PAGES_PER_ENDPOINT = 10000   # Safety cap on pagination loops


# ─── Licensing Catalog ──────────────────────────────────────────────────────

CATALOG_URL = (
    "https://download.microsoft.com/download/e/3/e/"
    "e3e9faf2-f28b-490a-9ada-c6089a1fc5b0/"
    "Product%20names%20and%20service%20plan%20identifiers%20for%20licensing.csv"
)
CATALOG_FILENAME = "licensing_catalog.csv"
INDEX_FILENAME = "service_plan_index.json"
UNKNOWN_PRODUCT = "UnknownProduct"
SUMMARY_TOP_PLANS = 10


@dataclass
class CatalogConfig:
    """Where the catalog and the derived index live on disk."""
    data_dir: str = ""
    catalog_filename: str = CATALOG_FILENAME
    index_filename: str = INDEX_FILENAME
    catalog_url: str = CATALOG_URL
    download_timeout: float = 120.0

    def __post_init__(self):
        if not self.data_dir:
            self.data_dir = os.path.join(os.getcwd(), "license_data")

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir)

    @property
    def catalog_path(self) -> Path:
        return self.data_path / self.catalog_filename

    @property
    def index_path(self) -> Path:
        return self.data_path / self.index_filename


# ─── Collection Settings ────────────────────────────────────────────────────

@dataclass
class CollectionConfig:
    """Controls for directory data collection."""
    page_size: int = DEFAULT_PAGE_SIZE
    max_pages: int = MAX_PAGES_PER_ENDPOINT
    user_select: str = "id,displayName,userPrincipalName,accountEnabled,assignedLicenses"


# ─── Output Configuration ───────────────────────────────────────────────────

@dataclass
class OutputConfig:
    """Report output settings."""
    base_dir: str = ""
    formats: list[str] = field(default_factory=lambda: ["json"])

    def __post_init__(self):
        if not self.base_dir:
            self.base_dir = os.path.join(os.getcwd(), "license_reports")

    @property
    def report_dir(self) -> Path:
        return Path(self.base_dir)


# ─── Master Configuration ───────────────────────────────────────────────────

@dataclass
class EngineConfig:
    """Top-level configuration for the entire engine."""
    auth: AuthConfig = field(default_factory=AuthConfig)
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    collection: CollectionConfig = field(default_factory=CollectionConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    verbose: bool = False

    @classmethod
    def from_file(cls, path: str | Path) -> "EngineConfig":
        """Load configuration from a JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        config = cls()
        if "auth" in data:
            auth_data = data["auth"]
            config.auth.mode = auth_data.get("mode", "certificate")
            if "certificate" in auth_data:
                c = auth_data["certificate"]
                config.auth.certificate = CertificateAuth(
                    tenant_id=c["tenant_id"],
                    client_id=c["client_id"],
                    certificate_path=c.get("certificate_path", "./base64.txt"),
                    certificate_password=c.get("certificate_password", ""),
                    thumbprint=c.get("thumbprint", ""),
                )
            if "delegated" in auth_data:
                d = auth_data["delegated"]
                config.auth.delegated = DelegatedAuth(
                    tenant_id=d["tenant_id"],
                    client_id=d["client_id"],
                )
        for section in ("catalog", "collection", "output"):
            target = getattr(config, section)
            for k, v in data.get(section, {}).items():
                if hasattr(target, k):
                    setattr(target, k, v)
        config.verbose = data.get("verbose", False)
        return config


# ─── Required Graph API Permissions (Least Privilege, Read-Only) ─────────

REQUIRED_PERMISSIONS = {
    "User.Read.All": "Enumerate users and their assigned licenses",
    "Organization.Read.All": "Read subscribed SKUs and tenant details",
    "Policy.Read.All": "Read Conditional Access policies (ca-licenses only)",
}
