"""
Conditional Access Policy Collector
Enumerates CA policies and subscribed SKUs for the license-tier analyzer.
"""

from __future__ import annotations

import asyncio
import logging

from .base import BaseCollector, CollectorResult, DirectoryServiceError

logger = logging.getLogger("m365_license_engine.collectors.conditional_access")


class ConditionalAccessCollector(BaseCollector):
    name = "conditional_access"
    description = "Conditional Access policies and the SKUs that license them"

    async def collect(self, result: CollectorResult):
        await asyncio.gather(
            self._collect_ca_policies(result),
            self._collect_sku_plans(result),
        )

    async def _collect_ca_policies(self, result: CollectorResult):
        """Collect CA policies, flattening the conditions the analyzer checks."""
        try:
            policies = await self.fetch_all("identity/conditionalAccess/policies", result)
        except DirectoryServiceError as e:
            if e.status_code != 403:
                raise
            # Missing Policy.Read.All is reported, not fatal
            result.add_warning(f"Permission denied: identity/conditionalAccess/policies — {e.cause}")
            result.metadata.setdefault("permission_gaps", []).append(
                "identity/conditionalAccess/policies"
            )
            result.add_data("ca_policies", [])
            return

        ca_policies = []
        for p in policies:
            # `or {}` handles JSON nulls
            conditions = p.get("conditions", {}) or {}
            grant_controls = p.get("grantControls", {}) or {}
            session_controls = p.get("sessionControls", {}) or {}
            users_cond = conditions.get("users", {}) or {}
            devices = conditions.get("devices", {}) or {}
            locations = conditions.get("locations", {}) or {}

            ca_policies.append({
                "id": p.get("id"),
                "displayName": p.get("displayName"),
                "state": p.get("state"),
                "signInRiskLevels": conditions.get("signInRiskLevels", []) or [],
                "userRiskLevels": conditions.get("userRiskLevels", []) or [],
                "servicePrincipalRiskLevels": conditions.get("servicePrincipalRiskLevels", []) or [],
                "insiderRiskLevels": conditions.get("insiderRiskLevels"),
                "includeLocations": locations.get("includeLocations", []) or [],
                "excludeLocations": locations.get("excludeLocations", []) or [],
                "deviceFilter": devices.get("deviceFilter", {}) or {},
                "includeGuestsOrExternalUsers": users_cond.get("includeGuestsOrExternalUsers"),
                "grantBuiltInControls": grant_controls.get("builtInControls", []) or [],
                "authenticationStrength": grant_controls.get("authenticationStrength", {}) or {},
                "cloudAppSecurity": session_controls.get("cloudAppSecurity", {}) or {},
                "signInFrequency": session_controls.get("signInFrequency", {}) or {},
            })

        result.add_data("ca_policies", ca_policies)

    async def _collect_sku_plans(self, result: CollectorResult):
        skus = await self.fetch_all("subscribedSkus", result, skip_top=True)
        result.add_data("subscribed_skus", [
            {
                "skuId": s.get("skuId"),
                "skuPartNumber": s.get("skuPartNumber"),
                "capabilityStatus": s.get("capabilityStatus"),
                "servicePlans": [
                    {
                        "servicePlanId": sp.get("servicePlanId"),
                        "servicePlanName": sp.get("servicePlanName"),
                    }
                    for sp in (s.get("servicePlans", []) or [])
                ],
            }
            for s in skus
        ])
