"""
Changed-matches feed.
Polls /data/update, which lists the matches the provider touched recently
together with their update time, and reconciles each one that already has a
row. Matches the diary has not created yet are skipped, never inserted.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

from shared.models.domain import DataUpdateReport
from shared.models.enums import Endpoint
from shared.utils.logging import get_logger
from shared.utils.metrics import DATA_UPDATE_OUTCOMES

from provider.client import ProviderClient
from provider.payload import parse_data_update
from reconciler.finalizer import PostMatchFinalizer
from reconciler.reconciler import MatchReconciler
from reconciler.store import MatchStore
from scheduler.config import JobSettings, get_job_settings

logger = get_logger(__name__)


class DataUpdateSync:
    def __init__(
        self,
        client: ProviderClient,
        reconciler: MatchReconciler,
        store: MatchStore,
        settings: Optional[JobSettings] = None,
        finalizer: Optional[PostMatchFinalizer] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._reconciler = reconciler
        self._store = store
        self._settings = settings or get_job_settings()
        self._finalizer = finalizer
        self._sleep = sleep

    async def sync(self) -> DataUpdateReport:
        payload = await self._client.get(Endpoint.DATA_UPDATE)
        changed = parse_data_update(payload)
        report = DataUpdateReport(changed=len(changed))
        if not changed:
            return report

        known = await self._store.existing_ids(list(changed))
        for index, (external_id, update_time) in enumerate(
            (mid, ut) for mid, ut in changed.items() if mid in known
        ):
            if index:
                await self._sleep(self._settings.data_update_call_delay_s)
            await self._reconcile(external_id, update_time, report)

        report.not_in_store = len(changed) - len(known)
        if report.not_in_store:
            DATA_UPDATE_OUTCOMES.labels(outcome="not_in_store").inc(report.not_in_store)
            logger.debug("data_update_unknown_matches", count=report.not_in_store)

        logger.info(
            "data_update_done",
            changed=report.changed,
            applied=report.applied,
            skipped=report.skipped,
            not_in_store=report.not_in_store,
            errors=report.errors,
            finalized=report.finalized,
        )
        return report

    async def _reconcile(
        self, external_id: str, update_time: Optional[int], report: DataUpdateReport
    ) -> None:
        try:
            result = await self._reconciler.reconcile_match(
                external_id, provider_update_time=update_time
            )
        except Exception as exc:
            report.errors += 1
            DATA_UPDATE_OUTCOMES.labels(outcome="error").inc()
            logger.warning(
                "data_update_reconcile_failed",
                external_id=external_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return

        if result.applied:
            report.applied += 1
            DATA_UPDATE_OUTCOMES.labels(outcome="applied").inc()
        else:
            report.skipped += 1
            DATA_UPDATE_OUTCOMES.labels(outcome="skipped").inc()

        if not result.ended or self._finalizer is None:
            return
        try:
            finalized = await self._finalizer.finalize_match(external_id)
        except Exception as exc:
            report.finalize_incomplete += 1
            logger.warning("data_update_finalize_failed", external_id=external_id, error=str(exc))
            return
        if finalized.complete:
            report.finalized += 1
        else:
            report.finalize_incomplete += 1
