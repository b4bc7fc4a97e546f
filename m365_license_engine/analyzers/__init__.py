from .base import BaseAnalyzer, Finding
from .assignment_classifier import (
    Assignment,
    MatchingPlan,
    SkuPlans,
    build_assignment_report,
    classify_assignments,
    sku_plan_table,
)
from .ca_license_analyzer import ConditionalAccessLicenseAnalyzer

__all__ = [
    "BaseAnalyzer",
    "Finding",
    "Assignment",
    "MatchingPlan",
    "SkuPlans",
    "build_assignment_report",
    "classify_assignments",
    "sku_plan_table",
    "ConditionalAccessLicenseAnalyzer",
]
