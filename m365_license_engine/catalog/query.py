"""
Intersection Query Engine
Resolves search criteria (ids, glob patterns, regexes over plan names) into
target service-plan ids, then finds the products that contain all of them.
"""

from __future__ import annotations

import fnmatch
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .errors import QueryError
from .index import ProductRef, ServicePlanEntry, ServicePlanIndex
from .keys import CaseInsensitiveDict, CaseInsensitiveSet

logger = logging.getLogger("m365_license_engine.catalog.query")


@dataclass
class ProductMatch:
    """A product containing every requested service plan."""
    product_display_name: str
    string_ids: list[str] = field(default_factory=list)
    sku_guids: list[str] = field(default_factory=list)
    matched_plan_ids: list[str] = field(default_factory=list)
    matched_plan_count: int = 0
    required_plan_count: int = 0

    def to_dict(self) -> dict:
        return {
            "ProductDisplayName": self.product_display_name,
            "StringIds": self.string_ids,
            "GUIDs": self.sku_guids,
            "MatchedServicePlanIds": self.matched_plan_ids,
            "MatchedPlanCount": self.matched_plan_count,
            "RequiredPlanCount": self.required_plan_count,
        }


@dataclass
class PlanProducts:
    """One matched plan and its own product listing."""
    service_plan_id: str
    service_plan_names: list[str]
    product_names: list[str]

    def to_dict(self) -> dict:
        return {
            "ServicePlanId": self.service_plan_id,
            "ServicePlanNames": self.service_plan_names,
            "ProductCount": len(self.product_names),
            "Products": self.product_names,
        }


@dataclass
class QueryResult:
    criteria_plan_ids: CaseInsensitiveSet = field(default_factory=CaseInsensitiveSet)
    products_with_all_plans: list[ProductMatch] = field(default_factory=list)
    per_plan_products: list[PlanProducts] = field(default_factory=list)
    total_matches: int = 0

    @property
    def truncated(self) -> bool:
        return self.total_matches > len(self.products_with_all_plans)

    def to_dict(self) -> dict:
        return {
            "CriteriaServicePlanIds": sorted(self.criteria_plan_ids),
            "TotalMatches": self.total_matches,
            "Truncated": self.truncated,
            "ProductsWithAllPlans": [p.to_dict() for p in self.products_with_all_plans],
            "PerPlanProducts": [p.to_dict() for p in self.per_plan_products],
        }


def has_criteria(
    exact_ids: Optional[Iterable[str]] = None,
    name_patterns: Optional[Iterable[str]] = None,
    name_regexes: Optional[Iterable[str]] = None,
) -> bool:
    """True when the caller supplied at least one non-blank criterion."""
    return any(
        v and v.strip()
        for group in (exact_ids, name_patterns, name_regexes)
        for v in (group or ())
    )


def _compile_regexes(name_regexes: Iterable[str]) -> list[re.Pattern]:
    compiled = []
    for expr in name_regexes:
        try:
            compiled.append(re.compile(expr, re.IGNORECASE))
        except re.error as e:
            raise QueryError(f"Invalid regular expression {expr!r}: {e}") from e
    return compiled


def resolve_target_ids(
    index: ServicePlanIndex,
    exact_ids: Optional[Iterable[str]] = None,
    name_patterns: Optional[Iterable[str]] = None,
    name_regexes: Optional[Iterable[str]] = None,
) -> CaseInsensitiveSet:
    """
    Resolve criteria into a set of target service-plan ids.

    Exact ids are taken verbatim, even when the index does not know them.
    Patterns and regexes contribute the id of every entry with at least one
    matching plan name. No criteria at all yields an empty set; use
    `has_criteria` to tell that apart from "criteria matched nothing".
    """
    targets = CaseInsensitiveSet()

    for plan_id in exact_ids or ():
        plan_id = plan_id.strip()
        if plan_id:
            targets.add(plan_id)

    patterns = [p.strip().casefold() for p in (name_patterns or ()) if p and p.strip()]
    regexes = _compile_regexes(r for r in (name_regexes or ()) if r and r.strip())

    if patterns or regexes:
        for entry in index.values():
            if _entry_matches(entry, patterns, regexes):
                targets.add(entry.service_plan_id)

    logger.debug(f"Resolved {len(targets)} target service plan ids")
    return targets


def _entry_matches(entry: ServicePlanEntry, patterns: list[str], regexes: list[re.Pattern]) -> bool:
    for name in entry.service_plan_names:
        folded = name.casefold()
        if any(fnmatch.fnmatchcase(folded, p) for p in patterns):
            return True
        if any(r.search(name) for r in regexes):
            return True
    return False


def query(
    index: ServicePlanIndex,
    target_ids: Iterable[str],
    top: Optional[int] = None,
) -> QueryResult:
    """
    Find products that contain every target service plan.

    Unknown ids are ignored when gathering products but still count towards
    the required total, so mixing an unknown id with real ones yields no
    products. This strictness is intentional: stale ids must not silently
    widen the result.
    """
    targets = CaseInsensitiveSet(target_ids)
    result = QueryResult(criteria_plan_ids=targets)
    if not targets:
        return result

    matched_plans = [index[pid] for pid in targets if pid in index]
    unknown = [pid for pid in targets if pid not in index]
    if unknown:
        logger.info(f"Ignoring {len(unknown)} service plan id(s) not in the index: {sorted(unknown)}")

    # product name -> (refs seen across plans, plan ids that touched it)
    accumulator: CaseInsensitiveDict = CaseInsensitiveDict()
    for entry in matched_plans:
        for product in entry.products:
            refs, plan_ids = accumulator.setdefault(
                product.product_display_name, ([], CaseInsensitiveSet())
            )
            refs.append(product)
            plan_ids.add(entry.service_plan_id)

    required = len(targets)
    matches = [
        _to_match(name, refs, plan_ids, required)
        for name, (refs, plan_ids) in accumulator.items()
        if len(plan_ids) == required
    ]
    matches.sort(key=lambda m: m.product_display_name)
    result.total_matches = len(matches)
    # A negative top shows nothing rather than everything
    result.products_with_all_plans = matches[:max(top, 0)] if top is not None else matches

    result.per_plan_products = [
        PlanProducts(
            service_plan_id=entry.service_plan_id,
            service_plan_names=list(entry.service_plan_names),
            product_names=sorted(CaseInsensitiveSet(p.product_display_name for p in entry.products)),
        )
        for entry in sorted(matched_plans, key=lambda e: e.service_plan_id)
    ]
    return result


def _to_match(
    name: str,
    refs: list[ProductRef],
    plan_ids: CaseInsensitiveSet,
    required: int,
) -> ProductMatch:
    return ProductMatch(
        product_display_name=name,
        string_ids=sorted({r.string_id for r in refs if r.string_id}),
        sku_guids=sorted({r.sku_guid for r in refs if r.sku_guid}),
        matched_plan_ids=sorted(plan_ids),
        matched_plan_count=len(plan_ids),
        required_plan_count=required,
    )


def index_summary(index: ServicePlanIndex, top: int = 10) -> list[dict]:
    """Rows for the `--summary` display: the plans found in the most products."""
    return [
        {
            "ServicePlanId": e.service_plan_id,
            "ServicePlanNames": ", ".join(e.service_plan_names),
            "ProductCount": e.product_count,
        }
        for e in index.top_plans(top)
    ]
