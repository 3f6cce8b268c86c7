"""
Tests for ProviderClient: classification, retry, rate limiting and breaker wiring.
HTTP is served by httpx.MockTransport; sleeps and clocks are fakes.

Run: pytest backend/tests/test_provider_client.py -v
"""
from __future__ import annotations

from typing import Callable

import httpx
import pytest

from shared.config import Settings
from shared.models.enums import Endpoint
from provider.circuit_breaker import CircuitBreaker, CircuitState
from provider.client import ProviderClient
from provider.errors import (
    AuthError,
    CircuitOpenError,
    ClientError,
    NetworkError,
    ProviderResponseError,
    ProviderTimeoutError,
    ServerError,
)
from provider.rate_limiter import EndpointRateLimiter
from conftest import FakeClock, FakeSleep

Handler = Callable[[httpx.Request], httpx.Response]


class Recorder:
    """MockTransport handler that replays responses in order and records requests."""

    def __init__(self, *responses: httpx.Response | Exception) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item


def _ok(results: object = None) -> httpx.Response:
    return httpx.Response(200, json={"code": 0, "results": results if results is not None else []})


@pytest.fixture
def make_client(
    settings: Settings, clock: FakeClock, fake_sleep: FakeSleep
) -> Callable[..., ProviderClient]:
    def _make(handler: Handler, breaker: CircuitBreaker | None = None) -> ProviderClient:
        limiter = EndpointRateLimiter(default_interval_s=0.0, clock=clock, sleep=fake_sleep)
        return ProviderClient(
            settings,
            rate_limiter=limiter,
            breaker=breaker or CircuitBreaker("thesports", 5, 30.0, clock=clock),
            transport=httpx.MockTransport(handler),
            sleep=fake_sleep,
        )

    return _make


# ── Success path ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_get_sends_auth_params_and_request_id(make_client: Callable[..., ProviderClient]) -> None:
    recorder = Recorder(_ok([{"id": "m1"}]))
    async with make_client(recorder) as client:
        body = await client.get(Endpoint.DETAIL_LIVE, {"match_id": "m1", "skip": None})

    assert body["results"] == [{"id": "m1"}]
    request = recorder.requests[0]
    assert request.url.path == "/v1/football/match/detail_live"
    assert request.url.params["user"] == "test-user"
    assert request.url.params["secret"] == "test-secret"
    assert request.url.params["match_id"] == "m1"
    assert "skip" not in request.url.params
    assert request.headers["X-Request-ID"].startswith("req_")


@pytest.mark.asyncio
async def test_get_before_start_raises(make_client: Callable[..., ProviderClient]) -> None:
    client = make_client(Recorder(_ok()))
    with pytest.raises(RuntimeError):
        await client.get("/match/detail_live")


# ── Retry ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_server_error_is_retried_with_backoff(
    make_client: Callable[..., ProviderClient], fake_sleep: FakeSleep
) -> None:
    recorder = Recorder(httpx.Response(503), httpx.Response(502), _ok())
    async with make_client(recorder) as client:
        await client.get("/match/detail_live", {"match_id": "m"})
    assert len(recorder.requests) == 3
    assert fake_sleep.calls == [0.5, 1.0]


@pytest.mark.asyncio
async def test_server_error_exhausts_attempts(make_client: Callable[..., ProviderClient]) -> None:
    recorder = Recorder(httpx.Response(500))
    async with make_client(recorder) as client:
        with pytest.raises(ServerError):
            await client.get("/match/detail_live")
    assert len(recorder.requests) == 3


@pytest.mark.asyncio
async def test_rate_limited_honours_retry_after(
    make_client: Callable[..., ProviderClient], fake_sleep: FakeSleep
) -> None:
    recorder = Recorder(httpx.Response(429, headers={"Retry-After": "3"}), _ok())
    async with make_client(recorder) as client:
        await client.get("/match/diary", {"date": "20251017"})
    assert len(recorder.requests) == 2
    assert fake_sleep.calls == [3.0]


@pytest.mark.asyncio
async def test_retry_after_beyond_max_delay_is_honoured(
    make_client: Callable[..., ProviderClient], clock: FakeClock, fake_sleep: FakeSleep
) -> None:
    recorder = Recorder(httpx.Response(429, headers={"Retry-After": "60"}), _ok())
    started = clock.now
    async with make_client(recorder) as client:
        await client.get("/match/diary", {"date": "20251017"})
    assert len(recorder.requests) == 2
    assert fake_sleep.calls == [60.0]
    assert clock.now - started >= 60.0


@pytest.mark.asyncio
async def test_timeout_is_retried_then_classified(make_client: Callable[..., ProviderClient]) -> None:
    recorder = Recorder(httpx.ReadTimeout("read timed out"))
    async with make_client(recorder) as client:
        with pytest.raises(ProviderTimeoutError):
            await client.get("/match/detail_live")
    assert len(recorder.requests) == 3


@pytest.mark.asyncio
async def test_network_error_is_classified(make_client: Callable[..., ProviderClient]) -> None:
    recorder = Recorder(httpx.ConnectError("connection refused"), _ok())
    async with make_client(recorder) as client:
        body = await client.get("/match/detail_live")
    assert body["code"] == 0

    recorder = Recorder(httpx.ConnectError("connection refused"))
    async with make_client(recorder) as client:
        with pytest.raises(NetworkError):
            await client.get("/match/detail_live")


# ── Non-retryable ───────────────────────────────────────────────────────

@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "error"),
    [(401, AuthError), (403, AuthError), (404, ClientError), (400, ClientError)],
)
async def test_client_errors_fail_immediately(
    make_client: Callable[..., ProviderClient],
    fake_sleep: FakeSleep,
    status: int,
    error: type[Exception],
) -> None:
    recorder = Recorder(httpx.Response(status, text="nope"))
    async with make_client(recorder) as client:
        with pytest.raises(error):
            await client.get("/match/detail_live")
    assert len(recorder.requests) == 1
    assert fake_sleep.calls == []


@pytest.mark.asyncio
async def test_api_level_error_is_not_retried(make_client: Callable[..., ProviderClient]) -> None:
    recorder = Recorder(httpx.Response(200, json={"code": 1001, "err": "IP not authorized"}))
    async with make_client(recorder) as client:
        with pytest.raises(ProviderResponseError, match="IP not authorized"):
            await client.get("/match/detail_live")
    assert len(recorder.requests) == 1


@pytest.mark.asyncio
async def test_malformed_json(make_client: Callable[..., ProviderClient]) -> None:
    recorder = Recorder(httpx.Response(200, text="<html>oops</html>"))
    async with make_client(recorder) as client:
        with pytest.raises(ProviderResponseError):
            await client.get("/match/detail_live")


# ── Breaker wiring ──────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_open_breaker_fails_fast_without_network(
    make_client: Callable[..., ProviderClient], clock: FakeClock
) -> None:
    breaker = CircuitBreaker("thesports", failure_threshold=2, cooldown_s=30.0, clock=clock)
    recorder = Recorder(httpx.Response(500))
    async with make_client(recorder, breaker=breaker) as client:
        for _ in range(2):
            with pytest.raises(ServerError):
                await client.get("/match/detail_live")
        sent = len(recorder.requests)
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(CircuitOpenError):
            await client.get("/match/detail_live")
        assert len(recorder.requests) == sent

        health = client.health
    assert health["circuit_state"] == "open"
    assert health["metrics"]["requests"] == 3
    assert health["metrics"]["errors"] == 3
    assert health["metrics"]["circuit_open_count"] == 1


@pytest.mark.asyncio
async def test_auth_errors_do_not_open_breaker(
    make_client: Callable[..., ProviderClient], clock: FakeClock
) -> None:
    breaker = CircuitBreaker("thesports", failure_threshold=2, cooldown_s=30.0, clock=clock)
    recorder = Recorder(httpx.Response(401))
    async with make_client(recorder, breaker=breaker) as client:
        for _ in range(5):
            with pytest.raises(AuthError):
                await client.get("/match/detail_live")
    assert breaker.state == CircuitState.CLOSED
