"""
Licensing Collector
Enumerates: tenant organization, subscribed SKUs with their service plans,
users with assigned licenses and per-assignment disabled plans.
"""

from __future__ import annotations

import asyncio
import logging

from .base import BaseCollector, CollectorResult

logger = logging.getLogger("m365_license_engine.collectors.licensing")


class LicensingCollector(BaseCollector):
    name = "licensing"
    description = "Tenant info, subscribed SKUs and user license assignments"

    async def collect(self, result: CollectorResult):
        await asyncio.gather(
            self._collect_tenant_info(result),
            self._collect_subscribed_skus(result),
            self._collect_users(result),
        )

    async def _collect_tenant_info(self, result: CollectorResult):
        data = await self.fetch("organization", result, params={"$select": "id,displayName"})
        orgs = data.get("value", [])
        org = orgs[0] if orgs else {}
        result.add_data("tenant", {
            "id": org.get("id"),
            "displayName": org.get("displayName"),
        })

    async def _collect_subscribed_skus(self, result: CollectorResult):
        """Collect SKUs and the service plans each one contains."""
        skus = await self.fetch_all("subscribedSkus", result, skip_top=True)
        result.add_data("subscribed_skus", [
            {
                "skuId": s.get("skuId"),
                "skuPartNumber": s.get("skuPartNumber"),
                "capabilityStatus": s.get("capabilityStatus"),
                "consumedUnits": s.get("consumedUnits", 0),
                "prepaidUnits": s.get("prepaidUnits", {}) or {},
                "servicePlans": [
                    {
                        "servicePlanId": sp.get("servicePlanId"),
                        "servicePlanName": sp.get("servicePlanName"),
                        "provisioningStatus": sp.get("provisioningStatus"),
                        "appliesTo": sp.get("appliesTo"),
                    }
                    for sp in (s.get("servicePlans", []) or [])
                ],
            }
            for s in skus
        ])

    async def _collect_users(self, result: CollectorResult):
        users = await self.fetch_all(
            "users",
            result,
            params={"$select": self.config.user_select, "$top": str(self.config.page_size)},
        )
        result.add_data("users", [
            {
                "id": u.get("id"),
                "displayName": u.get("displayName"),
                "userPrincipalName": u.get("userPrincipalName"),
                "accountEnabled": u.get("accountEnabled"),
                "assignedLicenses": [
                    {
                        "skuId": lic.get("skuId"),
                        "disabledPlans": lic.get("disabledPlans", []) or [],
                    }
                    for lic in (u.get("assignedLicenses", []) or [])
                ],
            }
            for u in users
        ])
        logger.info(f"[licensing] {len(users)} users enumerated")
