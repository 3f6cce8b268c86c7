"""
Circuit breaker pattern for provider calls.

States:
  CLOSED   : normal operation, requests pass through
  OPEN     : too many consecutive failures, requests fail fast without calling the provider
  HALF_OPEN: after cooldown, exactly one trial request tests recovery

One instance is shared by every caller of a provider.
"""
from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Any, Callable, Coroutine, TypeVar

from shared.utils.logging import get_logger
from shared.utils.metrics import CIRCUIT_STATE, CIRCUIT_TRANSITIONS

from provider.errors import CircuitOpenError, counts_as_failure

logger = get_logger(__name__)

T = TypeVar("T")

_STATE_GAUGE = {"closed": 0, "half_open": 1, "open": 2}


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Async circuit breaker.

    Args:
        name: Identifier for logging and metrics.
        failure_threshold: Consecutive failures before opening the circuit.
        cooldown_s: Seconds to stay OPEN before allowing a trial.
        is_failure: Predicate deciding whether an exception counts against the breaker.
            Exceptions it rejects are re-raised untouched and count as a success
            (the provider answered).
        clock: Monotonic time source.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        cooldown_s: float = 30.0,
        is_failure: Callable[[BaseException], bool] = counts_as_failure,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = max(1, failure_threshold)
        self.cooldown_s = cooldown_s
        self._is_failure = is_failure
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._open_count = 0
        self._opened_at: float = 0.0
        self._last_failure_time: float = 0.0
        self._trial_in_flight = False
        self._lock = asyncio.Lock()
        CIRCUIT_STATE.labels(name=self.name).set(_STATE_GAUGE[self._state.value])

    @property
    def state(self) -> CircuitState:
        """Current state as a caller would see it; OPEN past cooldown reads as HALF_OPEN."""
        if self._state == CircuitState.OPEN and self._cooldown_elapsed():
            return CircuitState.HALF_OPEN
        return self._state

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "open_count": self._open_count,
            "trial_in_flight": self._trial_in_flight,
            "last_failure_ago_s": round(self._clock() - self._last_failure_time, 1)
            if self._last_failure_time > 0
            else None,
        }

    async def execute(
        self, func: Callable[..., Coroutine[Any, Any, T]], *args: Any, **kwargs: Any
    ) -> T:
        """Run `func` under the breaker, or raise CircuitOpenError without calling it."""
        is_trial = await self._admit()
        try:
            try:
                result = await func(*args, **kwargs)
            except Exception as exc:
                if self._is_failure(exc):
                    await self._on_failure(exc, is_trial)
                else:
                    await self._on_success(is_trial)
                raise
            await self._on_success(is_trial)
            return result
        finally:
            if is_trial:
                # Released without awaiting so the next caller can be admitted,
                # whatever ended this one (cancellation included)
                self._trial_in_flight = False

    # ── Internals ──────────────────────────────────────────────────────

    def _cooldown_elapsed(self) -> bool:
        return self._clock() - self._opened_at >= self.cooldown_s

    def _transition(self, new_state: CircuitState, event: str, **fields: Any) -> None:
        self._state = new_state
        CIRCUIT_STATE.labels(name=self.name).set(_STATE_GAUGE[new_state.value])
        CIRCUIT_TRANSITIONS.labels(name=self.name, transition=event).inc()
        if new_state == CircuitState.OPEN:
            self._open_count += 1
            logger.warning(f"circuit_breaker_{event}", name=self.name, **fields)
        else:
            logger.info(f"circuit_breaker_{event}", name=self.name, **fields)

    async def _admit(self) -> bool:
        """Decide whether a call may proceed. Returns True when the call is the HALF_OPEN trial."""
        async with self._lock:
            if self._state == CircuitState.CLOSED:
                return False

            if self._state == CircuitState.OPEN:
                if not self._cooldown_elapsed():
                    retry_after = self.cooldown_s - (self._clock() - self._opened_at)
                    raise CircuitOpenError(self.name, max(retry_after, 0.0))
                self._transition(CircuitState.HALF_OPEN, "half_opened")

            if self._trial_in_flight:
                raise CircuitOpenError(self.name, 1.0)
            self._trial_in_flight = True
            return True

    async def _on_success(self, is_trial: bool) -> None:
        async with self._lock:
            self._success_count += 1
            if is_trial:
                self._trial_in_flight = False
                self._failure_count = 0
                self._transition(CircuitState.CLOSED, "closed")
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0

    async def _on_failure(self, exc: Exception, is_trial: bool) -> None:
        async with self._lock:
            self._failure_count += 1
            self._last_failure_time = self._clock()

            if is_trial:
                self._trial_in_flight = False
                self._opened_at = self._clock()
                self._transition(CircuitState.OPEN, "reopened", error=str(exc))
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                self._opened_at = self._clock()
                self._transition(
                    CircuitState.OPEN,
                    "opened",
                    failures=self._failure_count,
                    error=str(exc),
                )
