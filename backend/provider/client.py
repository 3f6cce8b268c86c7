"""
Async HTTP client for the sports-data provider.
Every call goes through the endpoint rate limiter, then the shared circuit
breaker, which wraps a bounded retry loop with exponential backoff.
"""
from __future__ import annotations

import asyncio
import time
import uuid
from typing import Any, Awaitable, Callable, Optional

import httpx

from shared.config import Settings, get_settings
from shared.models.enums import Endpoint
from shared.utils.logging import get_logger
from shared.utils.metrics import (
    PROVIDER_LATENCY,
    PROVIDER_REQUESTS,
    PROVIDER_RETRIES,
    track_latency,
)

from provider.circuit_breaker import CircuitBreaker
from provider.errors import (
    AuthError,
    ClientError,
    NetworkError,
    ProviderError,
    ProviderResponseError,
    ProviderTimeoutError,
    RateLimited,
    ServerError,
)
from provider.rate_limiter import EndpointRateLimiter

logger = get_logger(__name__)

# TheSports reports success as code 0 (older plans) or 200
_OK_CODES = (None, 0, 200)


def _retry_after(response: httpx.Response) -> Optional[float]:
    raw = response.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


def classify_response(endpoint: str, response: httpx.Response) -> dict[str, Any]:
    """Turn an HTTP response into the decoded body or a classified ProviderError."""
    status = response.status_code
    if status == 429:
        raise RateLimited("HTTP 429 Too Many Requests", endpoint=endpoint, retry_after=_retry_after(response))
    if status in (401, 403):
        raise AuthError(f"HTTP {status}: credentials rejected", endpoint=endpoint, status_code=status)
    if status >= 500:
        raise ServerError(f"HTTP {status}", endpoint=endpoint, status_code=status)
    if status >= 400:
        raise ClientError(f"HTTP {status}: {response.text[:200]}", endpoint=endpoint, status_code=status)

    try:
        body = response.json()
    except ValueError as exc:
        raise ProviderResponseError(f"Malformed JSON: {exc}", endpoint=endpoint, status_code=status) from exc
    if not isinstance(body, dict):
        raise ProviderResponseError("Response body is not an object", endpoint=endpoint, status_code=status)

    if body.get("err") or body.get("code") not in _OK_CODES:
        message = body.get("err") or body.get("msg") or "Unknown error"
        raise ProviderResponseError(
            f"API error: {message} (code: {body.get('code')})",
            endpoint=endpoint,
            status_code=status,
        )
    return body


class ProviderClient:
    """
    Resilient GET client for TheSports-style APIs.

    Args:
        settings: Provider credentials, timeouts and retry policy.
        rate_limiter: Shared per-endpoint limiter; built from settings when omitted.
        breaker: Shared circuit breaker; built from settings when omitted.
        transport: Optional httpx transport (tests use httpx.MockTransport).
        sleep: Awaitable sleep used between retries.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        rate_limiter: EndpointRateLimiter | None = None,
        breaker: CircuitBreaker | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._settings = settings or get_settings()
        self._provider = self._settings.provider_name
        self._base_url = self._settings.provider_base_url.rstrip("/")
        self._limiter = rate_limiter or EndpointRateLimiter.from_settings(self._settings)
        self._breaker = breaker or CircuitBreaker(
            name=self._provider,
            failure_threshold=self._settings.circuit_failure_threshold,
            cooldown_s=self._settings.circuit_cooldown_s,
        )
        self._transport = transport
        self._sleep = sleep
        self._max_attempts = max(1, self._settings.provider_max_retries)
        self._client: Optional[httpx.AsyncClient] = None

        self._request_count = 0
        self._error_count = 0
        self._last_request_time: Optional[float] = None

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def rate_limiter(self) -> EndpointRateLimiter:
        return self._limiter

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Accept": "application/json", "User-Agent": "matchsync/1.0"},
            timeout=httpx.Timeout(
                self._settings.provider_request_timeout_s,
                connect=self._settings.provider_connect_timeout_s,
            ),
            follow_redirects=True,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ProviderClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def get(self, endpoint: str | Endpoint, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Perform an authenticated GET.

        Args:
            endpoint: API path relative to the base URL, e.g. "/match/detail_live".
            params: Query parameters; None values are dropped.

        Returns:
            The decoded `{code, results, ...}` body.

        Raises:
            ProviderError: A classified failure (see provider.errors).
        """
        if not self._client:
            raise RuntimeError("ProviderClient not started. Call start() first.")

        path = endpoint.value if isinstance(endpoint, Endpoint) else endpoint
        request_id = f"req_{uuid.uuid4().hex[:12]}"
        query = {k: v for k, v in (params or {}).items() if v is not None}
        query["user"] = self._settings.provider_user
        query["secret"] = self._settings.provider_secret

        await self._limiter.acquire(path)
        self._request_count += 1
        self._last_request_time = time.time()
        started = time.perf_counter()

        try:
            body = await self._breaker.execute(self._get_with_retry, path, query, request_id)
        except ProviderError as exc:
            self._error_count += 1
            logger.warning(
                "provider_request_failed",
                provider=self._provider,
                endpoint=path,
                request_id=request_id,
                error_type=type(exc).__name__,
                error=str(exc),
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            raise

        logger.debug(
            "provider_request_success",
            provider=self._provider,
            endpoint=path,
            request_id=request_id,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return body

    async def _get_with_retry(self, path: str, query: dict[str, Any], request_id: str) -> dict[str, Any]:
        assert self._client is not None
        attempt = 0
        while True:
            attempt += 1
            status = "error"
            try:
                try:
                    with track_latency(PROVIDER_LATENCY, provider=self._provider, endpoint=path):
                        response = await self._client.get(
                            path, params=query, headers={"X-Request-ID": request_id}
                        )
                except httpx.TimeoutException as exc:
                    status = "timeout"
                    raise ProviderTimeoutError(f"Request timeout: {exc}", endpoint=path) from exc
                except httpx.TransportError as exc:
                    status = "network"
                    raise NetworkError(f"Network error: {exc}", endpoint=path) from exc
                status = str(response.status_code)
                return classify_response(path, response)

            except ProviderError as exc:
                if not exc.retryable or attempt >= self._max_attempts:
                    raise
                delay = self._backoff_delay(attempt, exc, path)
                PROVIDER_RETRIES.labels(
                    provider=self._provider, endpoint=path, reason=type(exc).__name__
                ).inc()
                logger.warning(
                    "provider_retry",
                    provider=self._provider,
                    endpoint=path,
                    request_id=request_id,
                    attempt=attempt,
                    delay_s=round(delay, 3),
                    error=str(exc),
                )
                await self._sleep(delay)
                await self._limiter.acquire(path)

            finally:
                PROVIDER_REQUESTS.labels(provider=self._provider, endpoint=path, status=status).inc()

    def _backoff_delay(self, attempt: int, exc: ProviderError, path: str) -> float:
        delay = min(
            self._settings.provider_retry_base_delay_s * (2 ** (attempt - 1)),
            self._settings.provider_retry_max_delay_s,
        )
        if isinstance(exc, RateLimited):
            # A provider-supplied Retry-After is a floor, never capped
            if exc.retry_after is not None:
                delay = max(delay, exc.retry_after)
            self._limiter.record_backoff(path, delay)
        return delay

    @property
    def health(self) -> dict[str, Any]:
        return {
            "provider": self._provider,
            "started": self._client is not None,
            "circuit_state": self._breaker.state.value,
            "circuit": self._breaker.stats,
            "rate_limiter": self._limiter.stats,
            "metrics": {
                "requests": self._request_count,
                "errors": self._error_count,
                "last_request": self._last_request_time,
                "circuit_open_count": self._breaker.stats["open_count"],
            },
        }
