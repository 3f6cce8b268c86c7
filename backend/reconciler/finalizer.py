"""
Post-match finalizer.

Once a match reaches ENDED, its derived datasets (statistics, incidents,
trend, player stats, season standings) are fetched and persisted exactly once.
Each dataset is checked, fetched and written on its own: one failing endpoint
never blocks the others, and a rerun only fills what is still missing.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

from shared.models.domain import FinalizeBatchReport, FinalizeReport, MatchRecord
from shared.models.enums import Dataset, DatasetOutcome, Endpoint, MatchStatus
from shared.utils.logging import get_logger
from shared.utils.metrics import FINALIZER_DATASETS

from provider.client import ProviderClient
from provider.payload import (
    extract_history,
    extract_player_stats,
    extract_season_table,
    extract_trend,
)
from reconciler.store import MatchStore

logger = get_logger(__name__)

# Provider responses fetched during one run, keyed by (endpoint, params).
# A failed fetch is remembered too so sibling datasets fail without a second call.
ResponseMemo = dict[tuple[str, tuple[tuple[str, str], ...]], Any]


class PostMatchFinalizer:
    """
    Args:
        client: Provider client.
        store: Match store.
        lookback_s: `finalize_recent` only considers matches kicked off within this window.
        batch_size: Max matches per `finalize_recent` sweep.
        match_delay_s: Pause between matches within one sweep.
    """

    def __init__(
        self,
        client: ProviderClient,
        store: MatchStore,
        *,
        lookback_s: int = 24 * 3600,
        batch_size: int = 20,
        match_delay_s: float = 0.5,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._store = store
        self._lookback_s = lookback_s
        self._batch_size = batch_size
        self._match_delay_s = match_delay_s
        self._clock = clock
        self._sleep = sleep

    async def finalize_match(
        self,
        external_id: str,
        record: Optional[MatchRecord] = None,
        memo: Optional[ResponseMemo] = None,
    ) -> FinalizeReport:
        external_id = str(external_id)
        report = FinalizeReport(external_id=external_id)
        if record is None:
            record = await self._store.get_match(external_id)
        if record is None:
            report.reason = "not_in_store"
            return report
        if record.status_id != MatchStatus.ENDED:
            report.reason = "not_ended"
            return report

        memo = memo if memo is not None else {}
        for dataset in Dataset:
            outcome = await self._finalize_dataset(record, dataset, memo)
            report.outcomes[dataset] = outcome
            FINALIZER_DATASETS.labels(dataset=dataset.value, outcome=outcome.value).inc()

        report.reason = "complete" if report.complete else "incomplete"
        logger.info(
            "finalize_match_done",
            external_id=external_id,
            outcomes={d.value: o.value for d, o in report.outcomes.items()},
        )
        return report

    async def finalize_recent(self, limit: Optional[int] = None) -> FinalizeBatchReport:
        """Finalize the most recently ended matches that still miss a dataset."""
        now = int(self._clock())
        batch = FinalizeBatchReport()
        records = await self._store.find_ended_missing_data(
            now,
            self._lookback_s,
            limit or self._batch_size,
        )
        memo: ResponseMemo = {}

        for index, record in enumerate(records):
            if index:
                await self._sleep(self._match_delay_s)
            batch.matches += 1
            try:
                report = await self.finalize_match(record.external_id, record=record, memo=memo)
            except Exception as exc:
                batch.failed += 1
                logger.exception("finalize_match_failed", external_id=record.external_id, error=str(exc))
                continue
            if report.complete:
                batch.complete += 1
            for outcome in report.outcomes.values():
                batch.by_outcome[outcome.value] = batch.by_outcome.get(outcome.value, 0) + 1

        if batch.matches:
            logger.info(
                "finalize_recent_done",
                matches=batch.matches,
                complete=batch.complete,
                failed=batch.failed,
                by_outcome=batch.by_outcome,
            )
        return batch

    # ── Per dataset ────────────────────────────────────────────────────

    async def _finalize_dataset(
        self, record: MatchRecord, dataset: Dataset, memo: ResponseMemo
    ) -> DatasetOutcome:
        external_id = record.external_id
        if dataset == Dataset.STANDINGS and not record.season_id:
            return DatasetOutcome.SKIPPED
        try:
            if await self._store.dataset_present(external_id, dataset):
                return DatasetOutcome.PRESENT

            value = await self._fetch(record, dataset, memo)
            if value is None:
                logger.debug("finalize_dataset_empty", external_id=external_id, dataset=dataset.value)
                return DatasetOutcome.EMPTY

            if dataset == Dataset.STANDINGS:
                await self._store.upsert_standings(record.season_id, value)
                written = await self._store.mark_standings_synced(external_id, int(self._clock()))
            else:
                written = await self._store.save_dataset(external_id, dataset, value)
        except Exception as exc:
            logger.warning(
                "finalize_dataset_failed",
                external_id=external_id,
                dataset=dataset.value,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return DatasetOutcome.FAILED

        if not written:
            # Filled by a concurrent run between the check and the write
            return DatasetOutcome.PRESENT
        logger.info("finalize_dataset_saved", external_id=external_id, dataset=dataset.value)
        return DatasetOutcome.SAVED

    async def _fetch(self, record: MatchRecord, dataset: Dataset, memo: ResponseMemo) -> Any:
        external_id = record.external_id
        if dataset in (Dataset.STATISTICS, Dataset.INCIDENTS):
            payload = await self._get(memo, Endpoint.LIVE_HISTORY, {"match_id": external_id})
            stats, incidents = extract_history(payload, external_id)
            return stats if dataset == Dataset.STATISTICS else incidents
        if dataset == Dataset.TREND:
            payload = await self._get(memo, Endpoint.TREND_DETAIL, {"match_id": external_id})
            return extract_trend(payload)
        if dataset == Dataset.PLAYER_STATS:
            payload = await self._get(memo, Endpoint.PLAYER_STATS, {"match_id": external_id})
            return extract_player_stats(payload)
        if dataset == Dataset.STANDINGS:
            season_id = str(record.season_id)
            payload = await self._get(memo, Endpoint.TABLE_LIVE, {"season_id": season_id})
            return extract_season_table(payload, season_id)
        raise ValueError(f"unknown dataset {dataset}")

    async def _get(self, memo: ResponseMemo, endpoint: Endpoint, params: dict[str, str]) -> Any:
        key = (endpoint.value, tuple(sorted(params.items())))
        if key in memo:
            cached = memo[key]
            if isinstance(cached, Exception):
                raise cached
            return cached
        try:
            payload = await self._client.get(endpoint, params)
        except Exception as exc:
            memo[key] = exc
            raise
        memo[key] = payload
        return payload
