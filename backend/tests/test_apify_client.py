import asyncio
import json

import httpx
import pytest

from reelwatch.errors import ActorInvocationError, ActorTimeoutError
from reelwatch.integrations.apify_client import ApifyActorClient


def _client(handler, **kwargs):
    kwargs.setdefault("poll_interval_s", 0)
    return ApifyActorClient(
        "tok", "apify/instagram-reel-scraper", transport=httpx.MockTransport(handler), **kwargs
    )


class ApifyStub:
    """Scripted Apify API: run start, status polls, dataset pages."""

    def __init__(self, statuses=("RUNNING", "SUCCEEDED"), items=(), start_status=201):
        self.statuses = list(statuses)
        self.items = list(items)
        self.start_status = start_status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "POST" and path.endswith("/runs"):
            if self.start_status >= 400:
                return httpx.Response(self.start_status, text="actor not found")
            return httpx.Response(self.start_status, json={"data": {"id": "run-1", "status": "READY"}})
        if path == "/v2/actor-runs/run-1":
            status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
            data = {"id": "run-1", "status": status, "defaultDatasetId": "ds-1"}
            if status != "SUCCEEDED":
                data["errorMessage"] = "actor crashed"
            return httpx.Response(200, json={"data": data})
        if path == "/v2/datasets/ds-1/items":
            offset = int(request.url.params["offset"])
            limit = int(request.url.params["limit"])
            return httpx.Response(200, json=self.items[offset:offset + limit])
        return httpx.Response(404)


def test_invoke_starts_polls_and_reads_dataset():
    stub = ApifyStub(items=[{"url": "u1"}, {"url": "u2"}])

    items = asyncio.run(_client(stub).invoke("competitor", 10))

    assert items == [{"url": "u1"}, {"url": "u2"}]
    start = stub.requests[0]
    assert start.url.path == "/v2/acts/apify~instagram-reel-scraper/runs"
    assert start.url.params["token"] == "tok"
    assert json.loads(start.content) == {"username": ["competitor"], "resultsLimit": 10}
    polls = [r for r in stub.requests if r.url.path.startswith("/v2/actor-runs/")]
    assert len(polls) == 2


def test_dataset_is_paged_up_to_limit():
    stub = ApifyStub(statuses=("SUCCEEDED",), items=[{"url": f"u{i}"} for i in range(7)])

    items = asyncio.run(_client(stub).invoke("x", 5))

    assert [i["url"] for i in items] == ["u0", "u1", "u2", "u3", "u4"]


def test_default_limit_applied():
    stub = ApifyStub(statuses=("SUCCEEDED",))

    asyncio.run(_client(stub).invoke("x"))

    assert json.loads(stub.requests[0].content)["resultsLimit"] == 1000


def test_non_dict_items_are_dropped():
    stub = ApifyStub(statuses=("SUCCEEDED",), items=[{"url": "u1"}, "junk", 3])

    assert asyncio.run(_client(stub).invoke("x", 10)) == [{"url": "u1"}]


@pytest.mark.parametrize("final", ["FAILED", "ABORTED", "TIMED-OUT"])
def test_unsuccessful_run_raises(final):
    stub = ApifyStub(statuses=("RUNNING", final))

    with pytest.raises(ActorInvocationError) as exc_info:
        asyncio.run(_client(stub).invoke("x", 10))

    err = exc_info.value
    assert err.status == final
    assert err.run_id == "run-1"
    assert "actor crashed" in str(err)


def test_http_error_on_start_raises():
    stub = ApifyStub(start_status=404)

    with pytest.raises(ActorInvocationError) as exc_info:
        asyncio.run(_client(stub).invoke("x", 10))

    assert exc_info.value.status == 404
    assert exc_info.value.to_dict()["body"] == "actor not found"


def test_network_error_raises_invocation_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ActorInvocationError):
        asyncio.run(_client(handler).invoke("x", 10))


def test_run_exceeding_timeout_raises_timeout():
    stub = ApifyStub(statuses=("RUNNING",))

    with pytest.raises(ActorTimeoutError):
        asyncio.run(_client(stub, timeout_s=0.05, poll_interval_s=0.01).invoke("x", 10))


def test_timeout_is_an_invocation_error():
    assert issubclass(ActorTimeoutError, ActorInvocationError)


def test_from_settings_requires_token():
    from reelwatch.errors import ConfigurationError

    from helpers import make_settings

    with pytest.raises(ConfigurationError):
        ApifyActorClient.from_settings(make_settings(APIFY_TOKEN=None))
    client = ApifyActorClient.from_settings(make_settings(ACTOR_TIMEOUT_SEC=30))
    assert client.timeout_s == 30
    assert client.actor_id == "apify~instagram-reel-scraper"
