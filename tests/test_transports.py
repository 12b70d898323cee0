"""
Tests for the backend transports, using httpx.MockTransport.
"""

import asyncio
import json
import random

import httpx
import pytest

from seatsync.services.errors import (
    AuthError,
    ErrorType,
    RateLimitError,
    RequestTimeoutError,
    TransportError,
    ValidationError,
)
from seatsync.transport.primary import HttpPrimaryTransport
from seatsync.transport.probe import http_probe
from seatsync.transport.secondary import CallbackTransport, UrlRotator, parse_padded

BASE_URL = "http://primary.test/rest/v1"


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# --- primary ---------------------------------------------------------------


@pytest.mark.asyncio
async def test_primary_posts_params_to_the_rpc_endpoint():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"success": True, "data": {"A1": "free"}})

    async with mock_client(handler) as http:
        primary = HttpPrimaryTransport(BASE_URL, api_key="secret", http_client=http)
        result = await primary.invoke("getSeatData", ["G1", "1", "A", False], timeout=5)

    assert seen["method"] == "POST"
    assert seen["url"] == f"{BASE_URL}/rpc/getSeatData"
    assert seen["body"] == {"params": ["G1", "1", "A", False]}
    assert seen["auth"] == "Bearer secret"
    assert result.success
    assert result.data == {"A1": "free"}
    assert result.source == "primary"


@pytest.mark.asyncio
async def test_primary_passes_backend_failures_through_as_results():
    def handler(request):
        return httpx.Response(
            200, json={"success": False, "error": "Seat taken", "errorType": "validation"}
        )

    async with mock_client(handler) as http:
        primary = HttpPrimaryTransport(BASE_URL, http_client=http)
        result = await primary.invoke("reserveSeats", [], timeout=5)

    assert not result.success
    assert result.resolved_error_type == ErrorType.VALIDATION


@pytest.mark.asyncio
async def test_primary_wraps_bare_payloads_and_plain_text():
    bodies = iter(
        [
            httpx.Response(200, json=["A1", "A2"]),
            httpx.Response(200, text="pong", headers={"content-type": "text/plain"}),
            httpx.Response(204),
        ]
    )

    async with mock_client(lambda request: next(bodies)) as http:
        primary = HttpPrimaryTransport(BASE_URL, http_client=http)
        listed = await primary.invoke("getAllTimeslotsForGroup", ["G1"], timeout=5)
        text = await primary.invoke("testApi", [], timeout=5)
        empty = await primary.invoke("setSystemLock", [True, "pw"], timeout=5)

    assert listed.data == ["A1", "A2"]
    assert text.data == "pong"
    assert empty.success and empty.data is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, exc_type, error_type",
    [
        (503, TransportError, ErrorType.SERVER_ERROR),
        (429, RateLimitError, ErrorType.RATE_LIMITED),
        (400, ValidationError, ErrorType.VALIDATION),
        (401, AuthError, ErrorType.AUTH),
    ],
)
async def test_primary_maps_http_status_codes(status, exc_type, error_type):
    def handler(request):
        return httpx.Response(status, text="nope", headers={"Retry-After": "2"})

    async with mock_client(handler) as http:
        primary = HttpPrimaryTransport(BASE_URL, http_client=http)
        with pytest.raises(exc_type) as info:
            await primary.invoke("getSeatData", [], timeout=5)

    assert info.value.error_type == error_type
    assert info.value.backend == "primary"
    if status == 429:
        assert info.value.retry_after == 2.0


@pytest.mark.asyncio
async def test_primary_maps_network_errors_and_timeouts():
    def refused(request):
        raise httpx.ConnectError("connection refused", request=request)

    def slow(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    async with mock_client(refused) as http:
        with pytest.raises(TransportError) as info:
            await HttpPrimaryTransport(BASE_URL, http_client=http).invoke(
                "getSeatData", [], timeout=5
            )
    assert info.value.error_type == ErrorType.NETWORK_ERROR

    async with mock_client(slow) as http:
        with pytest.raises(RequestTimeoutError) as info:
            await HttpPrimaryTransport(BASE_URL, http_client=http).invoke(
                "getSeatData", [], timeout=5
            )
    assert info.value.error_type == ErrorType.TIMEOUT
    assert info.value.timeout == 5


# --- secondary -------------------------------------------------------------


def padded(request: httpx.Request, payload) -> httpx.Response:
    callback = request.url.params["callback"]
    return httpx.Response(
        200,
        text=f"{callback}({json.dumps(payload)})",
        headers={"content-type": "application/javascript"},
    )


@pytest.mark.asyncio
async def test_secondary_routes_the_padded_answer_to_its_caller(clock):
    seen = {}

    def handler(request):
        seen["func"] = request.url.params["func"]
        seen["params"] = json.loads(request.url.params["params"])
        return padded(request, {"success": True, "data": {"locked": False}})

    async with mock_client(handler) as http:
        secondary = CallbackTransport(["http://a.test/exec"], http_client=http, clock=clock)
        result = await secondary.invoke("getSystemLock", [], timeout=5)
        await secondary.close()

    assert seen == {"func": "getSystemLock", "params": []}
    assert result.success
    assert result.data == {"locked": False}
    assert result.source == "secondary"
    assert secondary.callbacks.pending_count == 0


@pytest.mark.asyncio
async def test_secondary_fails_over_to_another_url(clock):
    hosts = []

    def handler(request):
        hosts.append(request.url.host)
        if len(hosts) == 1:
            return httpx.Response(503)
        return padded(request, {"success": True, "data": "ok"})

    async with mock_client(handler) as http:
        secondary = CallbackTransport(
            ["http://a.test/exec", "http://b.test/exec"], http_client=http, clock=clock
        )
        result = await secondary.invoke("testApi", [], timeout=5)
        await secondary.close()

    assert result.success
    assert len(hosts) == 2
    assert hosts[0] != hosts[1]


@pytest.mark.asyncio
async def test_secondary_reports_exhausted_urls_as_network_errors(clock):
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    async with mock_client(handler) as http:
        secondary = CallbackTransport(
            ["http://a.test/exec", "http://b.test/exec"], http_client=http, clock=clock
        )
        result = await secondary.invoke("testApi", [], timeout=5)
        await secondary.close()

    assert not result.success
    assert result.resolved_error_type == ErrorType.NETWORK_ERROR


@pytest.mark.asyncio
async def test_secondary_flags_unparseable_bodies(clock):
    def handler(request):
        return httpx.Response(200, text="<html>maintenance</html>")

    async with mock_client(handler) as http:
        secondary = CallbackTransport(["http://a.test/exec"], http_client=http, clock=clock)
        result = await secondary.invoke("getSeatData", [], timeout=5)
        await secondary.close()

    assert result.resolved_error_type == ErrorType.INVALID_RESPONSE


@pytest.mark.asyncio
async def test_secondary_timeout_leaves_a_tombstone_for_the_late_answer(clock):
    release = asyncio.Event()

    async def handler(request):
        await release.wait()
        return padded(request, {"success": True, "data": "late"})

    async with mock_client(handler) as http:
        secondary = CallbackTransport(
            ["http://a.test/exec"], http_client=http, clock=clock, grace=60
        )
        result = await secondary.invoke("getSeatData", [], timeout=0.05)

        assert result.timeout is True
        assert result.resolved_error_type == ErrorType.TIMEOUT
        assert secondary.callbacks.tombstone_count == 1

        release.set()
        for _ in range(100):
            if secondary.callbacks.late_responses:
                break
            await asyncio.sleep(0.01)
        assert secondary.callbacks.late_responses == 1

        clock.advance(61)
        assert secondary.maintenance() == 1
        assert secondary.callbacks.tombstone_count == 0
        await secondary.close()


def test_parse_padded_variants():
    assert parse_padded('cb({"success": true})', "cb") == {"success": True}
    assert parse_padded('/**/ cb({"a": 1});', "cb") == {"a": 1}
    assert parse_padded('{"plain": true}', "cb") == {"plain": True}
    with pytest.raises(ValueError):
        parse_padded("other(1)", "cb")


def test_url_rotator_rotates_on_interval(clock):
    rotator = UrlRotator(
        ["http://a.test", "http://b.test"],
        rotation_interval=300,
        clock=clock,
        rng=random.Random(1),
    )
    first = rotator.current()
    clock.advance(299)
    assert rotator.current() == first

    clock.advance(1)
    assert rotator.current() != first
    assert sorted(rotator.failover_order()) == ["http://a.test", "http://b.test"]


def test_url_rotator_requires_urls():
    with pytest.raises(ValueError):
        UrlRotator([])


# --- probe -----------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize("status, reachable", [(200, True), (404, True), (500, False)])
async def test_probe_answers_by_status(status, reachable):
    async with mock_client(lambda request: httpx.Response(status)) as http:
        probe = http_probe("http://probe.test/ping", http_client=http)
        assert await probe() is reachable


@pytest.mark.asyncio
async def test_probe_reports_network_errors_as_unreachable():
    def handler(request):
        raise httpx.ConnectError("no route", request=request)

    async with mock_client(handler) as http:
        probe = http_probe("http://probe.test/ping", http_client=http)
        assert await probe() is False
