"""
Assignment Classifier
Cross-references users' license assignments with the service plans each SKU
contains, and keeps the assignments that carry at least one target plan.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional

from ..catalog.keys import CaseInsensitiveDict, CaseInsensitiveSet

logger = logging.getLogger("m365_license_engine.analyzers.assignments")


@dataclass
class SkuPlans:
    """A subscribed SKU and the service plans it contains."""
    sku_id: str
    sku_part_number: str = ""
    plans: list[tuple[str, str]] = field(default_factory=list)   # (id, name)


@dataclass
class MatchingPlan:
    service_plan_id: str
    service_plan_name: str
    enabled: bool

    def to_dict(self) -> dict:
        return {
            "ServicePlanId": self.service_plan_id,
            "ServicePlanName": self.service_plan_name,
            "Enabled": self.enabled,
        }


@dataclass
class Assignment:
    """One user's SKU assignment that includes a target service plan."""
    user_id: str
    user_display_name: str
    user_principal_name: str
    sku_id: str
    sku_part_number: str
    matching_plans: list[MatchingPlan] = field(default_factory=list)

    @property
    def total_matching_plans(self) -> int:
        return len(self.matching_plans)

    @property
    def enabled_matching_plans(self) -> int:
        return sum(1 for p in self.matching_plans if p.enabled)

    def to_dict(self) -> dict:
        return {
            "UserId": self.user_id,
            "DisplayName": self.user_display_name,
            "UserPrincipalName": self.user_principal_name,
            "SkuId": self.sku_id,
            "SkuPartNumber": self.sku_part_number,
            "MatchingPlans": [p.to_dict() for p in self.matching_plans],
            "TotalMatchingPlans": self.total_matching_plans,
            "EnabledMatchingPlans": self.enabled_matching_plans,
        }


def sku_plan_table(subscribed_skus: Iterable[Mapping[str, Any]]) -> CaseInsensitiveDict:
    """Build the sku id -> SkuPlans table from Graph `subscribedSkus` items."""
    table = CaseInsensitiveDict()
    for sku in subscribed_skus:
        sku_id = sku.get("skuId")
        if not sku_id:
            continue
        table[sku_id] = SkuPlans(
            sku_id=sku_id,
            sku_part_number=sku.get("skuPartNumber") or "",
            plans=[
                (sp["servicePlanId"], sp.get("servicePlanName") or "")
                for sp in sku.get("servicePlans", []) or []
                if sp.get("servicePlanId")
            ],
        )
    return table


def classify_assignments(
    users: Iterable[Mapping[str, Any]],
    sku_service_plans: Mapping[str, SkuPlans],
    target_ids: Iterable[str],
    include_disabled: bool = False,
) -> list[Assignment]:
    """
    Return the assignments that include at least one target service plan.

    A plan is enabled unless its id is in that assignment's `disabledPlans`.
    With include_disabled False, disabled plans are dropped, and an assignment
    whose matching plans are all disabled is not returned.
    """
    targets = CaseInsensitiveSet(target_ids)
    assignments: list[Assignment] = []
    if not targets:
        return assignments

    for user in users:
        for lic in user.get("assignedLicenses", []) or []:
            sku_id = lic.get("skuId")
            sku = sku_service_plans.get(sku_id) if sku_id else None
            if sku is None:
                continue

            disabled = CaseInsensitiveSet(lic.get("disabledPlans", []) or [])
            matching = [
                MatchingPlan(
                    service_plan_id=plan_id,
                    service_plan_name=plan_name,
                    enabled=plan_id not in disabled,
                )
                for plan_id, plan_name in sku.plans
                if plan_id in targets
            ]
            if not include_disabled:
                matching = [p for p in matching if p.enabled]
            if not matching:
                continue

            assignments.append(Assignment(
                user_id=user.get("id") or "",
                user_display_name=user.get("displayName") or "",
                user_principal_name=user.get("userPrincipalName") or "",
                sku_id=sku_id,
                sku_part_number=sku.sku_part_number,
                matching_plans=matching,
            ))

    logger.info(f"Classified {len(assignments)} matching license assignments")
    return assignments


def build_assignment_report(
    assignments: list[Assignment],
    users_processed: int,
    criteria: Mapping[str, Any],
    tenant_id: Optional[str],
    caller: str,
    retrieved_utc: Optional[str] = None,
) -> dict[str, Any]:
    """Assemble the assignment report document."""
    return {
        "SearchCriteria": dict(criteria),
        "Summary": {
            "UsersProcessed": users_processed,
            "UsersMatched": len({a.user_id for a in assignments}),
            "TotalMatchingAssignments": len(assignments),
            "UniqueSkus": len({a.sku_id.casefold() for a in assignments}),
        },
        "Assignments": [a.to_dict() for a in assignments],
        "TenantContext": {
            "TenantId": tenant_id,
            "CallerIdentity": caller,
            "RetrievedUtc": retrieved_utc or datetime.now(timezone.utc).isoformat(),
        },
    }
