"""
Match watchdog.
Finds matches whose stored state looks wrong (kickoff passed but still
NOT_STARTED, or live but no longer moving) and reconciles them one by one.
The watchdog only selects; status always comes from the provider.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

from shared.models.domain import WatchdogCandidate, WatchdogReport
from shared.utils.logging import get_logger
from shared.utils.metrics import WATCHDOG_OUTCOMES

from reconciler.finalizer import PostMatchFinalizer
from reconciler.reconciler import MatchReconciler
from reconciler.store import MatchStore
from scheduler.config import JobSettings, get_job_settings

logger = get_logger(__name__)


class WatchdogScanner:
    def __init__(
        self,
        reconciler: MatchReconciler,
        store: MatchStore,
        settings: Optional[JobSettings] = None,
        finalizer: Optional[PostMatchFinalizer] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._reconciler = reconciler
        self._store = store
        self._settings = settings or get_job_settings()
        self._finalizer = finalizer if self._settings.finalize_on_end else None
        self._clock = clock
        self._sleep = sleep

    async def collect_candidates(self, now: int) -> list[WatchdogCandidate]:
        s = self._settings
        should_be_live = await self._store.find_should_be_live(
            now, s.watchdog_grace_s, s.watchdog_lookback_s, s.watchdog_batch_size
        )
        stale_live = await self._store.find_stale_live(
            now, s.stale_live_s, s.halftime_stale_s, s.watchdog_batch_size
        )
        seen: set[str] = set()
        candidates: list[WatchdogCandidate] = []
        for candidate in [*should_be_live, *stale_live]:
            if candidate.external_id in seen:
                continue
            seen.add(candidate.external_id)
            candidates.append(candidate)
        return candidates

    async def scan(self) -> WatchdogReport:
        now = int(self._clock())
        candidates = await self.collect_candidates(now)
        report = WatchdogReport(candidates=len(candidates))
        for candidate in candidates:
            report.by_kind[candidate.kind.value] = report.by_kind.get(candidate.kind.value, 0) + 1

        for index, candidate in enumerate(candidates):
            if index:
                await self._sleep(self._settings.watchdog_call_delay_s)
            kind = candidate.kind.value
            try:
                result = await self._reconciler.reconcile_match(candidate.external_id)
            except Exception as exc:
                report.errors += 1
                WATCHDOG_OUTCOMES.labels(kind=kind, outcome="error").inc()
                logger.warning(
                    "watchdog_reconcile_failed",
                    external_id=candidate.external_id,
                    kind=kind,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                continue

            if result.applied:
                report.fixed += 1
                WATCHDOG_OUTCOMES.labels(kind=kind, outcome="fixed").inc()
                logger.info(
                    "watchdog_match_fixed",
                    external_id=candidate.external_id,
                    kind=kind,
                    reason=candidate.reason,
                    status_id=result.status_id,
                    score=result.score,
                )
            else:
                report.skipped += 1
                WATCHDOG_OUTCOMES.labels(kind=kind, outcome="skipped").inc()
                logger.debug(
                    "watchdog_match_skipped",
                    external_id=candidate.external_id,
                    kind=kind,
                    reason=result.reason,
                )

            if result.ended and self._finalizer is not None:
                try:
                    finalized = await self._finalizer.finalize_match(candidate.external_id)
                except Exception as exc:
                    report.finalize_incomplete += 1
                    logger.warning(
                        "watchdog_finalize_failed",
                        external_id=candidate.external_id,
                        error=str(exc),
                    )
                else:
                    if finalized.complete:
                        report.finalized += 1
                    else:
                        # Missing datasets are picked up by the post-match sweep
                        report.finalize_incomplete += 1

        logger.info(
            "watchdog_scan_done",
            candidates=report.candidates,
            fixed=report.fixed,
            skipped=report.skipped,
            errors=report.errors,
            finalized=report.finalized,
            finalize_incomplete=report.finalize_incomplete,
            by_kind=report.by_kind,
        )
        return report
