"""
Diary sync.
Creates rows for matches announced by /match/diary. Existing rows are never
touched here: after creation a match changes only through the reconciler.
"""
from __future__ import annotations

import time
from typing import Callable, Optional

from shared.models.domain import ScheduledMatch
from shared.models.enums import Endpoint, MatchStatus
from shared.utils.logging import get_logger
from shared.utils.metrics import DIARY_INSERTS

from provider.client import ProviderClient
from provider.payload import diary_date, parse_diary
from reconciler.store import MatchStore
from scheduler.config import JobSettings, get_job_settings

logger = get_logger(__name__)

DAY_S = 86400


class DiarySync:
    def __init__(
        self,
        client: ProviderClient,
        store: MatchStore,
        settings: Optional[JobSettings] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._store = store
        self._settings = settings or get_job_settings()
        self._clock = clock

    async def sync(self, days: Optional[int] = None) -> int:
        """
        Fetch today plus `days` following days. Returns the number of new rows.
        A failing day is logged and skipped; the remaining days still sync.
        """
        now = int(self._clock())
        days_ahead = self._settings.diary_days_ahead if days is None else days
        inserted = 0
        for offset in range(days_ahead + 1):
            date = diary_date(now + offset * DAY_S)
            try:
                payload = await self._client.get(Endpoint.DIARY, {"date": date})
                matches = [self._guard(m, now) for m in parse_diary(payload)]
                created = await self._store.insert_scheduled(matches)
            except Exception as exc:
                logger.warning(
                    "diary_day_failed",
                    date=date,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                continue
            inserted += created
            logger.info("diary_day_synced", date=date, seen=len(matches), created=created)
        DIARY_INSERTS.inc(inserted)
        return inserted

    @staticmethod
    def _guard(match: ScheduledMatch, now: int) -> ScheduledMatch:
        """A match that has not kicked off cannot be created as ENDED."""
        if match.status_id == MatchStatus.ENDED and match.match_time > now:
            logger.warning(
                "diary_future_ended_guard",
                external_id=match.external_id,
                match_time=match.match_time,
            )
            return match.model_copy(update={"status_id": int(MatchStatus.NOT_STARTED)})
        return match
