from pathlib import Path
import json
import sys

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from crawler.apify_client import ApifyClient, ApifyError, actor_path, classify_apify_error
from crawler.config import ScraperSettings
from crawler.types import OUTCOME_COMPLETED, OUTCOME_FAILED, OUTCOME_TIMEOUT


def _settings(**overrides) -> ScraperSettings:
    values = dict(
        apify_token="test-token",
        max_retries=2,
        retry_backoff_ms=0,
        poll_interval_sec=0.0,
        max_wait_sec=5.0,
    )
    values.update(overrides)
    return ScraperSettings(**values)


def _client(handler, **overrides) -> ApifyClient:
    return ApifyClient(settings=_settings(**overrides), transport=httpx.MockTransport(handler))


def test_actor_path():
    assert actor_path("apify/instagram-scraper") == "apify~instagram-scraper"


def test_classify_apify_error():
    payload = {"error": {"type": "token-not-valid", "message": "Token is invalid"}}
    assert classify_apify_error(401, payload) == ("auth", False, "token-not-valid: Token is invalid")
    assert classify_apify_error(429, None)[:2] == ("quota", True)
    assert classify_apify_error(503, None, "upstream")[:2] == ("transient", True)
    assert classify_apify_error(404, None)[:2] == ("not_found", False)
    assert classify_apify_error(400, None)[:2] == ("fatal", False)


@pytest.mark.asyncio
async def test_run_actor_posts_input_with_bearer_token():
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"data": {"id": "run-9", "status": "READY"}})

    async with _client(handler) as client:
        run = await client.run_actor("clockworks/tiktok-scraper", {"hashtags": ["gym"]})

    assert run["id"] == "run-9"
    assert seen["path"] == "/v2/acts/clockworks~tiktok-scraper/runs"
    assert seen["auth"] == "Bearer test-token"
    assert seen["body"] == {"hashtags": ["gym"]}


@pytest.mark.asyncio
async def test_transient_error_is_retried():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(502, text="bad gateway")
        return httpx.Response(200, json={"data": {"id": "r", "status": "RUNNING"}})

    async with _client(handler) as client:
        run = await client.get_run_status("r")

    assert run["status"] == "RUNNING"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_auth_error_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(401, json={"error": {"type": "token-not-valid", "message": "bad token"}})

    async with _client(handler) as client:
        with pytest.raises(ApifyError) as exc_info:
            await client.run_actor("apify/instagram-scraper", {})

    assert exc_info.value.status_code == 401
    assert exc_info.value.category == "auth"
    assert not exc_info.value.unreachable
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_network_failure_marks_unreachable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        with pytest.raises(ApifyError) as exc_info:
            await client.get_run_status("r")

    assert exc_info.value.unreachable


@pytest.mark.asyncio
async def test_request_before_start_raises():
    client = _client(lambda request: httpx.Response(200, json={}))
    with pytest.raises(RuntimeError):
        await client.get_run_status("r")


@pytest.mark.asyncio
async def test_dataset_items_are_paged():
    offsets = []

    def handler(request):
        offset = int(request.url.params["offset"])
        limit = int(request.url.params["limit"])
        offsets.append((offset, limit))
        assert request.url.params["clean"] == "true"
        return httpx.Response(200, json=[{"i": offset + n} for n in range(limit)])

    async with _client(handler) as client:
        items = await client.get_dataset_items("ds-1", limit=1500)

    assert len(items) == 1500
    assert offsets == [(0, 1000), (1000, 500)]
    assert items[-1] == {"i": 1499}


@pytest.mark.asyncio
async def test_wait_for_run_succeeds_and_fetches_items():
    statuses = iter(["READY", "RUNNING", "SUCCEEDED"])

    def handler(request):
        if request.url.path.endswith("/actor-runs/run-1"):
            return httpx.Response(200, json={"data": {
                "id": "run-1", "status": next(statuses), "defaultDatasetId": "ds-1",
            }})
        return httpx.Response(200, json=[{"id": "a"}, {"id": "b"}])

    async with _client(handler) as client:
        outcome = await client.wait_for_run("run-1")

    assert outcome.status == OUTCOME_COMPLETED
    assert outcome.completed
    assert outcome.provider_status == "SUCCEEDED"
    assert outcome.items == [{"id": "a"}, {"id": "b"}]


@pytest.mark.asyncio
async def test_wait_for_run_reports_provider_failure():
    def handler(request):
        return httpx.Response(200, json={"data": {"id": "run-1", "status": "ABORTED"}})

    async with _client(handler) as client:
        outcome = await client.wait_for_run("run-1")

    assert outcome.status == OUTCOME_FAILED
    assert outcome.provider_status == "ABORTED"
    assert outcome.items == []


@pytest.mark.asyncio
async def test_wait_for_run_times_out_locally():
    polls = []

    def handler(request):
        polls.append(request)
        return httpx.Response(200, json={"data": {"id": "run-1", "status": "RUNNING"}})

    async with _client(handler) as client:
        outcome = await client.wait_for_run("run-1", poll_interval_sec=0.01, max_wait_sec=0.05)

    assert outcome.status == OUTCOME_TIMEOUT
    assert outcome.provider_status == "RUNNING"
    assert len(polls) >= 2
