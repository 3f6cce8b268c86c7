"""
Match reconciler.
Pulls one match from /match/detail_live and applies it to the canonical row
through the store's conditional update.
"""
from __future__ import annotations

import time
from typing import Callable, Optional

from shared.config import Settings, get_settings
from shared.models.domain import MatchRecord, MatchSnapshot, ReconcileResult
from shared.models.enums import LIVE_STATUSES, Endpoint, MatchStatus
from shared.utils.logging import get_logger
from shared.utils.metrics import RECONCILE_OUTCOMES

from provider.client import ProviderClient
from provider.payload import decode_detail_live
from reconciler.minute import calculate_minute, estimate_second_half_kickoff
from reconciler.store import Freshness, MatchChanges, MatchStore

logger = get_logger(__name__)


class MatchReconciler:
    """
    Reconciles a single match against the provider.

    Provider errors propagate to the caller unchanged; the reconciler adds no
    retry of its own on top of the client's.
    """

    def __init__(
        self,
        client: ProviderClient,
        store: MatchStore,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._store = store
        self._settings = settings or get_settings()
        self._clock = clock

    async def reconcile_match(
        self, external_id: str, provider_update_time: Optional[int] = None
    ) -> ReconcileResult:
        """
        Pull the match from the provider and apply it if it is fresher than the row.

        Args:
            external_id: Provider match id.
            provider_update_time: Update time announced by /data/update. When
                given it replaces the snapshot's own update_time as the
                incoming watermark.
        """
        external_id = str(external_id)
        record = await self._store.get_match(external_id)
        if record is None:
            logger.warning("reconcile_not_in_store", external_id=external_id)
            RECONCILE_OUTCOMES.labels(outcome="not_in_store").inc()
            return ReconcileResult(external_id=external_id, reason="not_in_store")

        payload = await self._client.get(Endpoint.DETAIL_LIVE, {"match_id": external_id})
        ingestion_ts = int(self._clock())

        snapshot = decode_detail_live(payload, external_id)
        if snapshot is None or not snapshot.has_live_data:
            RECONCILE_OUTCOMES.labels(outcome="absent").inc()
            return ReconcileResult(external_id=external_id, reason="absent_in_payload")

        if provider_update_time is not None:
            snapshot = snapshot.model_copy(update={"update_time": provider_update_time})

        status_id = snapshot.status_id if snapshot.status_id is not None else record.status_id
        result = ReconcileResult(
            external_id=external_id,
            status_id=status_id,
            score=snapshot.score,
            provider_update_time=snapshot.update_time,
        )

        stale_reason = self._stale_reason(record, snapshot, ingestion_ts)
        if stale_reason:
            logger.debug(
                "reconcile_skipped",
                external_id=external_id,
                reason=stale_reason,
                provider_update_time=snapshot.update_time,
                stored_update_time=record.provider_update_time,
            )
            RECONCILE_OUTCOMES.labels(outcome="stale").inc()
            result.reason = stale_reason
            return result

        if record.status_id == MatchStatus.ENDED and status_id != MatchStatus.ENDED:
            logger.warning(
                "reconcile_terminal_regression_ignored",
                external_id=external_id,
                provider_status=MatchStatus.label(status_id),
            )
            RECONCILE_OUTCOMES.labels(outcome="terminal").inc()
            result.reason = "terminal_status"
            return result

        if status_id == MatchStatus.ENDED and record.match_time > ingestion_ts:
            logger.warning(
                "reconcile_future_ended_guard",
                external_id=external_id,
                match_time=record.match_time,
                now=ingestion_ts,
            )
            status_id = int(MatchStatus.NOT_STARTED)
            result.status_id = status_id

        changes = self._build_changes(record, snapshot, status_id, ingestion_ts)
        freshness = Freshness(
            ingestion_ts=ingestion_ts,
            provider_update_time=snapshot.update_time,
            dedupe_window_s=self._settings.reconcile_dedupe_window_s,
        )
        row_count = await self._store.apply_update(external_id, changes, freshness)

        result.row_count = row_count
        result.applied = row_count > 0
        if not result.applied:
            # Another writer got there first with something at least as fresh
            result.reason = "lost_race"
            RECONCILE_OUTCOMES.labels(outcome="lost_race").inc()
            logger.info("reconcile_lost_race", external_id=external_id)
            return result

        result.reason = "applied"
        result.ended = status_id == MatchStatus.ENDED and record.status_id != MatchStatus.ENDED
        RECONCILE_OUTCOMES.labels(outcome="applied").inc()
        logger.info(
            "reconcile_applied",
            external_id=external_id,
            old_status=MatchStatus.label(record.status_id),
            new_status=MatchStatus.label(status_id),
            score=result.score,
            minute=changes.minute,
            provider_update_time=snapshot.update_time,
            ended=result.ended,
        )
        return result

    def _stale_reason(self, record: MatchRecord, snapshot: MatchSnapshot, now: int) -> str:
        if snapshot.update_time is not None:
            stored = record.provider_update_time
            if stored is not None and snapshot.update_time <= stored:
                return "stale_provider_update"
            return ""
        if (
            record.last_event_ts is not None
            and now <= record.last_event_ts + self._settings.reconcile_dedupe_window_s
        ):
            return "dedupe_window"
        return ""

    def _build_changes(
        self,
        record: MatchRecord,
        snapshot: MatchSnapshot,
        status_id: int,
        now: int,
    ) -> MatchChanges:
        first_half = second_half = overtime = None

        if status_id in LIVE_STATUSES:
            if status_id == MatchStatus.FIRST_HALF:
                first_half = snapshot.kickoff_ts or now
            else:
                first_half = record.match_time

        effective_first = record.first_half_kickoff_ts or first_half

        if status_id == MatchStatus.SECOND_HALF:
            estimate = estimate_second_half_kickoff(effective_first)
            if snapshot.kickoff_ts:
                second_half = snapshot.kickoff_ts
            elif estimate is not None:
                second_half = min(estimate, now)
            else:
                second_half = now

        if status_id == MatchStatus.OVERTIME:
            overtime = snapshot.kickoff_ts or now

        minute = snapshot.minute if status_id != MatchStatus.NOT_STARTED else None
        if minute is None:
            minute = calculate_minute(
                status_id,
                now,
                first_half_kickoff_ts=effective_first,
                second_half_kickoff_ts=record.second_half_kickoff_ts or second_half,
                overtime_kickoff_ts=record.overtime_kickoff_ts or overtime,
                existing_minute=record.minute,
            )

        return MatchChanges(
            status_id=status_id,
            minute=minute,
            home_score=snapshot.home_score,
            away_score=snapshot.away_score,
            home_red_cards=snapshot.home_red_cards,
            away_red_cards=snapshot.away_red_cards,
            home_yellow_cards=snapshot.home_yellow_cards,
            away_yellow_cards=snapshot.away_yellow_cards,
            home_corners=snapshot.home_corners,
            away_corners=snapshot.away_corners,
            first_half_kickoff_ts=first_half,
            second_half_kickoff_ts=second_half,
            overtime_kickoff_ts=overtime,
        )
