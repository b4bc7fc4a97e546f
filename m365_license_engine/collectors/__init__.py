from .base import BaseCollector, CollectorResult, DirectoryServiceError
from .licensing import LicensingCollector
from .conditional_access import ConditionalAccessCollector

__all__ = [
    "BaseCollector",
    "CollectorResult",
    "DirectoryServiceError",
    "LicensingCollector",
    "ConditionalAccessCollector",
]
