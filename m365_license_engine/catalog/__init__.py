"""Catalog package — licensing catalog parsing, service-plan index and queries."""

from .errors import (
    CatalogError,
    CatalogFormatError,
    DownloadError,
    IndexFormatError,
    ProvisioningError,
    QueryError,
)
from .keys import CaseInsensitiveDict, CaseInsensitiveSet
from .normalizer import CatalogRow, normalize_header, normalize_record, read_catalog
from .index import (
    ProductRef,
    ServicePlanEntry,
    ServicePlanIndex,
    build_index,
    load_index,
    save_index,
)
from .query import (
    PlanProducts,
    ProductMatch,
    QueryResult,
    has_criteria,
    index_summary,
    query,
    resolve_target_ids,
)
from .provisioning import ensure_catalog, ensure_index, rebuild_index

__all__ = [
    "CatalogError",
    "CatalogFormatError",
    "DownloadError",
    "IndexFormatError",
    "ProvisioningError",
    "QueryError",
    "CaseInsensitiveDict",
    "CaseInsensitiveSet",
    "CatalogRow",
    "normalize_header",
    "normalize_record",
    "read_catalog",
    "ProductRef",
    "ServicePlanEntry",
    "ServicePlanIndex",
    "build_index",
    "load_index",
    "save_index",
    "PlanProducts",
    "ProductMatch",
    "QueryResult",
    "has_criteria",
    "index_summary",
    "query",
    "resolve_target_ids",
    "ensure_catalog",
    "ensure_index",
    "rebuild_index",
]
