"""
Conditional Access License Analyzer
Finds CA features that need a specific Entra ID license tier and checks the
tenant's subscribed SKUs for a service plan that provides that tier.
"""

from __future__ import annotations

import logging
from typing import Any

from .base import BaseAnalyzer

logger = logging.getLogger("m365_license_engine.analyzers.ca_license")

TIER_P1 = "Entra ID P1"
TIER_P2 = "Entra ID P2"
TIER_WORKLOAD = "Workload Identities Premium"

# Service plan names (from the licensing catalog) that grant each tier.
# P2 includes everything in P1.
TIER_SERVICE_PLANS = {
    TIER_P1: {"AAD_PREMIUM", "AAD_PREMIUM_P2"},
    TIER_P2: {"AAD_PREMIUM_P2"},
    TIER_WORKLOAD: {"AAD_WRKLDID_P1", "AAD_WRKLDID_P2"},
}

ACTIVE_SKU_STATES = {"Enabled", "Warning"}
INACTIVE_POLICY_STATES = {"disabled"}


def policy_requirements(policy: dict[str, Any]) -> dict[str, list[str]]:
    """Map license tier -> CA features in `policy` that need it."""
    reqs: dict[str, list[str]] = {TIER_P1: ["Conditional Access"]}

    if policy.get("signInRiskLevels"):
        reqs.setdefault(TIER_P2, []).append("Sign-in risk condition")
    if policy.get("userRiskLevels"):
        reqs.setdefault(TIER_P2, []).append("User risk condition")
    if policy.get("insiderRiskLevels"):
        reqs.setdefault(TIER_P2, []).append("Insider risk condition")
    if policy.get("servicePrincipalRiskLevels"):
        reqs.setdefault(TIER_WORKLOAD, []).append("Service principal risk condition")

    if policy.get("authenticationStrength"):
        reqs[TIER_P1].append("Authentication strength")
    if policy.get("deviceFilter"):
        reqs[TIER_P1].append("Device filter")
    if policy.get("includeLocations") or policy.get("excludeLocations"):
        reqs[TIER_P1].append("Named locations")
    if (policy.get("cloudAppSecurity") or {}).get("isEnabled"):
        reqs[TIER_P1].append("App control session (Defender for Cloud Apps)")
    return reqs


def licensed_plan_names(subscribed_skus: list[dict]) -> set[str]:
    """Upper-cased service plan names across active subscribed SKUs."""
    names = set()
    for sku in subscribed_skus:
        if sku.get("capabilityStatus", "Enabled") not in ACTIVE_SKU_STATES:
            continue
        for sp in sku.get("servicePlans", []) or []:
            if sp.get("servicePlanName"):
                names.add(sp["servicePlanName"].upper())
    return names


class ConditionalAccessLicenseAnalyzer(BaseAnalyzer):
    name = "ca_license_analyzer"
    domain = "conditional_access"
    description = "License tiers required by Conditional Access features"

    def _analyze(self, data: dict[str, Any]):
        ca_data = data.get("conditional_access", {})
        policies = ca_data.get("ca_policies", [])
        skus = ca_data.get("subscribed_skus", [])
        permission_gaps = ca_data.get("_metadata", {}).get("permission_gaps", [])

        if not policies and permission_gaps:
            self.add_finding(
                control_name="Conditional Access Policies Inaccessible",
                detection_logic="Graph API returned 403 for identity/conditionalAccess/policies",
                evidence={"permission_gaps": permission_gaps, "required_permission": "Policy.Read.All"},
                severity="medium",
                recommendation="Grant Policy.Read.All to the app registration and re-run.",
            )
            return

        active = [p for p in policies if p.get("state") not in INACTIVE_POLICY_STATES]
        licensed = licensed_plan_names(skus)

        # tier -> [{"policy": name, "features": [...]}]
        by_tier: dict[str, list[dict]] = {}
        for p in active:
            for tier, features in policy_requirements(p).items():
                by_tier.setdefault(tier, []).append({
                    "policy": p.get("displayName"),
                    "state": p.get("state"),
                    "features": features,
                })

        self.add_finding(
            control_name="CA License Requirement Inventory",
            detection_logic="License tier required by each non-disabled CA policy",
            evidence={
                "policies_evaluated": len(active),
                "policies_disabled": len(policies) - len(active),
                "tiers_required": {tier: len(items) for tier, items in sorted(by_tier.items())},
            },
            severity="informational",
        )

        for tier in sorted(by_tier):
            provided_by = sorted(TIER_SERVICE_PLANS[tier] & licensed)
            if provided_by:
                logger.info(f"[{self.name}] {tier} satisfied by {provided_by}")
                continue
            items = by_tier[tier]
            self.add_finding(
                control_name=f"{tier} Required but Not Licensed",
                detection_logic=(
                    f"{len(items)} CA policies use features needing {tier}; no active SKU "
                    f"contains any of {sorted(TIER_SERVICE_PLANS[tier])}"
                ),
                evidence={"policies": items},
                required_license=tier,
                severity="high" if tier == TIER_P2 else "medium",
                recommendation=(
                    f"Acquire {tier} for the users in scope, or remove the features "
                    f"listed from the affected policies."
                ),
            )
