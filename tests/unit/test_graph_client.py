"""Graph client pagination, throttling and error handling over a mock transport."""

import httpx
import pytest

from m365_license_engine.config import MAX_RETRIES
from m365_license_engine.graph.client import GraphAPIError, GraphClient
from m365_license_engine.safety.guardian import SafetyGuardian, SafetyViolation

USERS_URL = "https://graph.microsoft.com/v1.0/users"


class FakeSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def _client(handler, sleep=None):
    return GraphClient(
        access_token="token",
        guardian=SafetyGuardian(),
        transport=httpx.MockTransport(handler),
        sleep=sleep or FakeSleep(),
    )


@pytest.mark.asyncio
async def test_get_all_pages_follows_next_link():
    requests = []

    def handler(request):
        requests.append(request)
        if request.url.params.get("$skiptoken"):
            return httpx.Response(200, json={"value": [{"id": "3"}]})
        return httpx.Response(200, json={
            "value": [{"id": "1"}, {"id": "2"}],
            "@odata.nextLink": f"{USERS_URL}?$skiptoken=abc",
        })

    async with _client(handler) as client:
        items = await client.get_all_pages("users", params={"$select": "id"})

    assert [i["id"] for i in items] == ["1", "2", "3"]
    assert requests[0].url.params["$top"] == "999"
    assert requests[0].url.params["$select"] == "id"
    assert requests[0].headers["Authorization"] == "Bearer token"
    assert requests[1].url.params["$skiptoken"] == "abc"
    assert "$select" not in requests[1].url.params


@pytest.mark.asyncio
async def test_skip_top():
    seen = []

    def handler(request):
        seen.append(request.url)
        return httpx.Response(200, json={"value": []})

    async with _client(handler) as client:
        await client.get_all_pages("subscribedSkus", skip_top=True)

    assert "$top" not in seen[0].params


@pytest.mark.asyncio
async def test_max_pages_cap():
    def handler(request):
        return httpx.Response(200, json={"value": [{"id": "x"}], "@odata.nextLink": f"{USERS_URL}?page=n"})

    async with _client(handler) as client:
        items = await client.get_all_pages("users", max_pages=3)

    assert len(items) == 3


@pytest.mark.asyncio
async def test_forbidden_raises_with_graph_message():
    def handler(request):
        return httpx.Response(403, json={"error": {"code": "Authorization_RequestDenied", "message": "Insufficient privileges"}})

    async with _client(handler) as client:
        with pytest.raises(GraphAPIError) as excinfo:
            await client.get("organization")

    assert excinfo.value.status_code == 403
    assert "Insufficient privileges" in str(excinfo.value)


@pytest.mark.asyncio
async def test_throttling_is_retried_with_backoff():
    sleep = FakeSleep()
    responses = [
        httpx.Response(429, headers={"Retry-After": "1"}),
        httpx.Response(503),
        httpx.Response(200, json={"id": "org"}),
    ]

    def handler(request):
        return responses.pop(0)

    async with _client(handler, sleep) as client:
        data = await client.get("organization")
        stats = client.get_stats()

    assert data == {"id": "org"}
    assert sleep.calls == [2.0, 4.0]
    assert stats == {"total_requests": 3, "throttle_events": 2}


@pytest.mark.asyncio
async def test_retry_after_longer_than_backoff_wins():
    sleep = FakeSleep()
    responses = [httpx.Response(429, headers={"Retry-After": "30"}), httpx.Response(200, json={})]

    async with _client(lambda request: responses.pop(0), sleep) as client:
        await client.get("users")

    assert sleep.calls == [30.0]


@pytest.mark.asyncio
async def test_throttling_gives_up_after_max_retries():
    sleep = FakeSleep()

    async with _client(lambda request: httpx.Response(504), sleep) as client:
        with pytest.raises(GraphAPIError) as excinfo:
            await client.get("users")

    assert excinfo.value.status_code == 504
    assert len(sleep.calls) == MAX_RETRIES


@pytest.mark.asyncio
async def test_empty_and_no_content_bodies():
    responses = [httpx.Response(200, content=b""), httpx.Response(204)]

    async with _client(lambda request: responses.pop(0)) as client:
        assert await client.get("users") == {"value": []}
        assert await client.get("users") == {}


@pytest.mark.asyncio
async def test_guardian_blocks_license_writes_before_sending():
    def handler(request):
        raise AssertionError("request should not be sent")

    async with _client(handler) as client:
        with pytest.raises(SafetyViolation):
            await client.get("users/u1/assignLicense")


@pytest.mark.asyncio
async def test_requires_context_manager():
    client = _client(lambda request: httpx.Response(200, json={}))

    with pytest.raises(RuntimeError, match="async with"):
        await client.get("users")
