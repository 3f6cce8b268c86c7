"""
Pre-match lineup sync.
Fetches /match/lineup/detail for matches kicking off soon that have no lineup
stored yet. A lineup is written once; matches the provider has no lineup for
are tried again on the next run.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

from shared.models.domain import LineupReport
from shared.models.enums import Endpoint
from shared.utils.logging import get_logger
from shared.utils.metrics import LINEUP_OUTCOMES

from provider.client import ProviderClient
from provider.payload import extract_lineup
from reconciler.store import MatchStore
from scheduler.config import JobSettings, get_job_settings

logger = get_logger(__name__)


class LineupSync:
    def __init__(
        self,
        client: ProviderClient,
        store: MatchStore,
        settings: Optional[JobSettings] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._store = store
        self._settings = settings or get_job_settings()
        self._clock = clock
        self._sleep = sleep

    async def sync(self) -> LineupReport:
        now = int(self._clock())
        s = self._settings
        records = await self._store.find_needing_lineup(now, s.lineup_window_s, s.lineup_batch_size)
        report = LineupReport(matches=len(records))

        for index, record in enumerate(records):
            if index:
                await self._sleep(s.lineup_call_delay_s)
            external_id = record.external_id
            try:
                payload = await self._client.get(Endpoint.LINEUP_DETAIL, {"match_id": external_id})
                lineup = extract_lineup(payload, external_id)
                if lineup is None:
                    report.empty += 1
                    LINEUP_OUTCOMES.labels(outcome="empty").inc()
                    logger.debug("lineup_not_available", external_id=external_id)
                    continue
                await self._store.save_lineup(external_id, lineup)
            except Exception as exc:
                report.failed += 1
                LINEUP_OUTCOMES.labels(outcome="failed").inc()
                logger.warning(
                    "lineup_fetch_failed",
                    external_id=external_id,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                continue

            report.synced += 1
            LINEUP_OUTCOMES.labels(outcome="synced").inc()
            logger.info(
                "lineup_synced",
                external_id=external_id,
                kickoff_in_s=record.match_time - now,
                home_players=len(lineup.home),
                away_players=len(lineup.away),
            )

        if report.matches:
            logger.info(
                "lineup_sync_done",
                matches=report.matches,
                synced=report.synced,
                empty=report.empty,
                failed=report.failed,
            )
        return report
