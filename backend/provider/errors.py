"""
Classified provider failures.

Every failure the client raises is a ProviderError subclass carrying two flags:
`retryable` (the client's retry loop may try again) and `trips_breaker`
(the failure counts against the circuit breaker).
"""
from __future__ import annotations

from typing import Optional


class ProviderError(Exception):
    """Base class for all provider call failures."""

    retryable: bool = False
    trips_breaker: bool = True

    def __init__(
        self,
        message: str,
        endpoint: str = "",
        status_code: Optional[int] = None,
    ) -> None:
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(message)


class NetworkError(ProviderError):
    """Connection refused, DNS failure, reset mid-response."""

    retryable = True


class ProviderTimeoutError(ProviderError):
    """The call exceeded its connect or read timeout."""

    retryable = True


class ServerError(ProviderError):
    """5xx from the provider."""

    retryable = True


class RateLimited(ProviderError):
    """429 from the provider; `retry_after` is in seconds when the header was sent."""

    retryable = True

    def __init__(
        self,
        message: str,
        endpoint: str = "",
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message, endpoint=endpoint, status_code=429)
        self.retry_after = retry_after


class AuthError(ProviderError):
    """401/403: credentials rejected. Not retried, does not trip the breaker."""

    trips_breaker = False


class ClientError(ProviderError):
    """Any other 4xx: the request itself is wrong."""

    trips_breaker = False


class ProviderResponseError(ProviderError):
    """Malformed JSON, or an API-level error inside a 200 response."""


class CircuitOpenError(ProviderError):
    """The breaker rejected the call without touching the network."""

    trips_breaker = False

    def __init__(self, name: str, retry_after: float) -> None:
        super().__init__(f"Circuit breaker '{name}' is OPEN. Retry after {retry_after:.0f}s.")
        self.name = name
        self.retry_after = retry_after


def counts_as_failure(exc: BaseException) -> bool:
    """Default breaker predicate: provider faults count, client-side errors do not."""
    if isinstance(exc, ProviderError):
        return exc.trips_breaker
    return True
