"""Directory collectors against a mocked Graph endpoint."""

import httpx
import pytest

from m365_license_engine.collectors import (
    ConditionalAccessCollector,
    DirectoryServiceError,
    LicensingCollector,
)
from m365_license_engine.config import CollectionConfig
from m365_license_engine.graph.client import GraphAPIError, GraphClient
from m365_license_engine.safety.guardian import SafetyGuardian

SKUS = {
    "value": [{
        "skuId": "sku-e3",
        "skuPartNumber": "ENTERPRISEPACK",
        "capabilityStatus": "Enabled",
        "consumedUnits": 5,
        "prepaidUnits": {"enabled": 10},
        "servicePlans": [
            {"servicePlanId": "p1", "servicePlanName": "EXCHANGE_S_ENTERPRISE",
             "provisioningStatus": "Success", "appliesTo": "User"},
        ],
    }]
}

USERS = {
    "value": [
        {"id": "u1", "displayName": "Alice", "userPrincipalName": "alice@contoso.com",
         "accountEnabled": True, "assignedLicenses": [{"skuId": "sku-e3", "disabledPlans": ["p9"]}]},
        {"id": "u2", "displayName": "Bob", "userPrincipalName": "bob@contoso.com",
         "accountEnabled": False, "assignedLicenses": None},
    ]
}

POLICIES = {
    "value": [{
        "id": "pol-1",
        "displayName": "Require MFA for risky sign-ins",
        "state": "enabled",
        "conditions": {
            "signInRiskLevels": ["high"],
            "users": {"includeUsers": ["All"]},
            "locations": None,
        },
        "grantControls": {"builtInControls": ["mfa"], "authenticationStrength": None},
        "sessionControls": None,
    }]
}


def _graph(routes):
    def handler(request):
        path = request.url.path.removeprefix("/v1.0/")
        response = routes.get(path)
        if response is None:
            return httpx.Response(404, json={"error": {"message": f"no route {path}"}})
        if isinstance(response, Exception):
            raise response
        return response

    return GraphClient(
        access_token="token",
        guardian=SafetyGuardian(),
        transport=httpx.MockTransport(handler),
    )


def _licensing_routes(**overrides):
    routes = {
        "organization": httpx.Response(200, json={"value": [{"id": "tenant-1", "displayName": "Contoso"}]}),
        "subscribedSkus": httpx.Response(200, json=SKUS),
        "users": httpx.Response(200, json=USERS),
    }
    routes.update(overrides)
    return routes


@pytest.mark.asyncio
async def test_licensing_collector():
    async with _graph(_licensing_routes()) as graph:
        result = await LicensingCollector(graph=graph, config=CollectionConfig()).execute()

    assert result.data["tenant"] == {"id": "tenant-1", "displayName": "Contoso"}
    sku = result.data["subscribed_skus"][0]
    assert sku["skuPartNumber"] == "ENTERPRISEPACK"
    assert sku["servicePlans"][0]["servicePlanName"] == "EXCHANGE_S_ENTERPRISE"
    users = result.data["users"]
    assert users[0]["assignedLicenses"] == [{"skuId": "sku-e3", "disabledPlans": ["p9"]}]
    assert users[1]["assignedLicenses"] == []
    assert result.metadata["endpoints_queried"] == 3
    assert result.metadata["errors"] == []


@pytest.mark.asyncio
async def test_licensing_collector_graph_failure_propagates():
    routes = _licensing_routes(users=httpx.Response(401, json={"error": {"message": "Token expired"}}))

    async with _graph(routes) as graph:
        with pytest.raises(DirectoryServiceError) as excinfo:
            await LicensingCollector(graph=graph, config=CollectionConfig()).execute()

    assert excinfo.value.endpoint == "users"
    assert excinfo.value.status_code == 401
    assert isinstance(excinfo.value.cause, GraphAPIError)


@pytest.mark.asyncio
async def test_licensing_collector_transport_failure_propagates():
    request = httpx.Request("GET", "https://graph.microsoft.com/v1.0/organization")
    routes = _licensing_routes(organization=httpx.ConnectError("network down", request=request))

    async with _graph(routes) as graph:
        with pytest.raises(DirectoryServiceError) as excinfo:
            await LicensingCollector(graph=graph, config=CollectionConfig()).execute()

    assert excinfo.value.endpoint == "organization"
    assert excinfo.value.status_code is None
    assert isinstance(excinfo.value.cause, httpx.ConnectError)


@pytest.mark.asyncio
async def test_conditional_access_collector_flattens_policies():
    routes = {
        "identity/conditionalAccess/policies": httpx.Response(200, json=POLICIES),
        "subscribedSkus": httpx.Response(200, json=SKUS),
    }

    async with _graph(routes) as graph:
        result = await ConditionalAccessCollector(graph=graph, config=CollectionConfig()).execute()

    policy = result.data["ca_policies"][0]
    assert policy["signInRiskLevels"] == ["high"]
    assert policy["includeLocations"] == []
    assert policy["grantBuiltInControls"] == ["mfa"]
    assert policy["authenticationStrength"] == {}
    assert policy["cloudAppSecurity"] == {}
    assert result.data["subscribed_skus"][0]["skuId"] == "sku-e3"


@pytest.mark.asyncio
async def test_conditional_access_collector_records_permission_gap():
    routes = {
        "identity/conditionalAccess/policies": httpx.Response(
            403, json={"error": {"message": "Insufficient privileges"}}
        ),
        "subscribedSkus": httpx.Response(200, json=SKUS),
    }

    async with _graph(routes) as graph:
        result = await ConditionalAccessCollector(graph=graph, config=CollectionConfig()).execute()

    assert result.data["ca_policies"] == []
    assert result.metadata["permission_gaps"] == ["identity/conditionalAccess/policies"]
    assert len(result.metadata["warnings"]) == 1


@pytest.mark.asyncio
async def test_conditional_access_collector_other_errors_propagate():
    routes = {
        "identity/conditionalAccess/policies": httpx.Response(500, json={"error": {"message": "boom"}}),
        "subscribedSkus": httpx.Response(200, json=SKUS),
    }

    async with _graph(routes) as graph:
        with pytest.raises(DirectoryServiceError):
            await ConditionalAccessCollector(graph=graph, config=CollectionConfig()).execute()
