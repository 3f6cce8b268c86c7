"""
Per-endpoint rate limiting with a minimum interval between granted calls.
Each key keeps its own FIFO schedule; a 429 pushes that key's schedule back.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Mapping, Optional

from shared.config import Settings
from shared.utils.logging import get_logger
from shared.utils.metrics import RATE_LIMIT_WAIT

logger = get_logger(__name__)


class EndpointRateLimiter:
    """
    Minimum-interval limiter keyed by endpoint path.

    Waiters on the same key are served in arrival order (asyncio.Lock wakes
    waiters FIFO); different keys never block each other.
    """

    def __init__(
        self,
        default_interval_s: float = 1.0,
        intervals: Optional[Mapping[str, float]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._default_interval_s = max(0.0, default_interval_s)
        self._intervals = dict(intervals or {})
        self._clock = clock
        self._sleep = sleep
        self._locks: dict[str, asyncio.Lock] = {}
        self._next_allowed: dict[str, float] = {}
        self._backoff_until: dict[str, float] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "EndpointRateLimiter":
        return cls(
            default_interval_s=settings.rate_limit_default_interval_s,
            intervals=settings.rate_limit_intervals,
        )

    def interval_for(self, key: str) -> float:
        return self._intervals.get(key, self._default_interval_s)

    async def acquire(self, key: str) -> float:
        """
        Wait for the next slot on `key`.

        Returns:
            Seconds spent waiting.
        """
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            now = self._clock()
            earliest = max(
                self._next_allowed.get(key, now),
                self._backoff_until.get(key, now),
            )
            wait = earliest - now
            if wait > 0:
                logger.debug("rate_limit_wait", key=key, wait_s=round(wait, 3))
                await self._sleep(wait)
            granted = max(self._clock(), earliest)
            self._next_allowed[key] = granted + self.interval_for(key)
        waited = max(wait, 0.0)
        RATE_LIMIT_WAIT.labels(key=key).observe(waited)
        return waited

    def record_backoff(self, key: str, seconds: float) -> None:
        """Hold back every caller of `key` for at least `seconds` (after a 429)."""
        if seconds <= 0:
            return
        until = self._clock() + seconds
        if until > self._backoff_until.get(key, 0.0):
            self._backoff_until[key] = until
        logger.warning("rate_limit_backoff", key=key, backoff_s=round(seconds, 3))

    @property
    def stats(self) -> dict[str, Any]:
        now = self._clock()
        return {
            "keys": len(self._locks),
            "waiting": sum(1 for lock in self._locks.values() if lock.locked()),
            "backoff": {
                key: round(until - now, 1)
                for key, until in self._backoff_until.items()
                if until > now
            },
        }
