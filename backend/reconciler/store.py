"""
Canonical match store.

All writes to a match row go through `apply_update`, a single conditional
UPDATE whose WHERE clause carries the freshness predicate, so concurrent
reconciles race safely: whichever statement is fresher wins, the other
changes zero rows.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from shared.models.domain import Lineup, MatchRecord, ScheduledMatch, WatchdogCandidate
from shared.models.enums import LIVE_STATUSES, CandidateKind, Dataset, MatchStatus
from shared.models.orm import MatchORM, SeasonStandingsORM
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# Derived dataset -> column on `matches`. Standings live in their own table
# and are tracked per match by `standings_synced_at`.
DATASET_COLUMNS = {
    Dataset.STATISTICS: MatchORM.statistics,
    Dataset.INCIDENTS: MatchORM.incidents,
    Dataset.TREND: MatchORM.trend_data,
    Dataset.PLAYER_STATS: MatchORM.player_stats,
    Dataset.STANDINGS: MatchORM.standings_synced_at,
}

_COUNTER_FIELDS = (
    "home_score",
    "away_score",
    "home_red_cards",
    "away_red_cards",
    "home_yellow_cards",
    "away_yellow_cards",
    "home_corners",
    "away_corners",
)

_KICKOFF_FIELDS = (
    "first_half_kickoff_ts",
    "second_half_kickoff_ts",
    "overtime_kickoff_ts",
)


@dataclass
class MatchChanges:
    """Values a reconcile wants to write. None means "leave the column alone"."""

    status_id: int
    minute: Optional[int] = None
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    home_red_cards: Optional[int] = None
    away_red_cards: Optional[int] = None
    home_yellow_cards: Optional[int] = None
    away_yellow_cards: Optional[int] = None
    home_corners: Optional[int] = None
    away_corners: Optional[int] = None
    # Candidates only: applied when the stored column is still NULL
    first_half_kickoff_ts: Optional[int] = None
    second_half_kickoff_ts: Optional[int] = None
    overtime_kickoff_ts: Optional[int] = None


@dataclass(frozen=True)
class Freshness:
    """The watermarks an update carries."""

    ingestion_ts: int
    provider_update_time: Optional[int] = None
    dedupe_window_s: int = 5

    def predicate(self) -> Any:
        if self.provider_update_time is not None:
            return or_(
                MatchORM.provider_update_time.is_(None),
                MatchORM.provider_update_time < self.provider_update_time,
            )
        return or_(
            MatchORM.last_event_ts.is_(None),
            MatchORM.last_event_ts + self.dedupe_window_s < self.ingestion_ts,
        )


class MatchStore:
    """Reads and conditional writes against `matches` and `season_standings`."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    # ── Reads ──────────────────────────────────────────────────────────
    async def get_match(self, external_id: str) -> Optional[MatchRecord]:
        async with self._db.read_session() as session:
            row = await session.scalar(
                select(MatchORM).where(MatchORM.external_id == str(external_id))
            )
            return MatchRecord.model_validate(row) if row is not None else None

    async def find_should_be_live(
        self, now: int, grace_s: int, lookback_s: int, limit: int
    ) -> list[WatchdogCandidate]:
        """NOT_STARTED matches whose kickoff passed at least `grace_s` ago, newest first."""
        stmt = (
            select(MatchORM.external_id, MatchORM.status_id, MatchORM.match_time)
            .where(
                MatchORM.status_id == int(MatchStatus.NOT_STARTED),
                MatchORM.match_time <= now - grace_s,
                MatchORM.match_time >= now - lookback_s,
            )
            .order_by(MatchORM.match_time.desc())
            .limit(limit)
        )
        async with self._db.read_session() as session:
            rows = (await session.execute(stmt)).all()
        return [
            WatchdogCandidate(
                external_id=r.external_id,
                kind=CandidateKind.SHOULD_BE_LIVE,
                status_id=r.status_id,
                match_time=r.match_time,
                reason=f"kickoff {now - r.match_time}s ago, still not started",
            )
            for r in rows
        ]

    async def find_stale_live(
        self, now: int, stale_s: int, halftime_stale_s: int, limit: int
    ) -> list[WatchdogCandidate]:
        """Live matches whose watermarks stopped moving, least recently updated first."""
        threshold = case(
            (MatchORM.status_id == int(MatchStatus.HALF_TIME), halftime_stale_s),
            else_=stale_s,
        )
        stmt = (
            select(
                MatchORM.external_id,
                MatchORM.status_id,
                MatchORM.match_time,
                MatchORM.last_event_ts,
            )
            .where(
                MatchORM.status_id.in_([int(s) for s in LIVE_STATUSES]),
                MatchORM.match_time <= now + 3600,
                or_(
                    MatchORM.last_event_ts.is_(None),
                    MatchORM.last_event_ts <= now - threshold,
                    and_(
                        MatchORM.provider_update_time.is_not(None),
                        MatchORM.provider_update_time <= now - threshold,
                    ),
                ),
            )
            .order_by(MatchORM.updated_at.asc())
            .limit(limit)
        )
        async with self._db.read_session() as session:
            rows = (await session.execute(stmt)).all()
        return [
            WatchdogCandidate(
                external_id=r.external_id,
                kind=CandidateKind.STALE_LIVE,
                status_id=r.status_id,
                match_time=r.match_time,
                reason=(
                    "never reconciled"
                    if r.last_event_ts is None
                    else f"last event {now - r.last_event_ts}s ago"
                ),
            )
            for r in rows
        ]

    async def find_ended_missing_data(
        self, now: int, lookback_s: int, limit: int
    ) -> list[MatchRecord]:
        """Recently ended matches with at least one derived dataset still missing."""
        stmt = (
            select(MatchORM)
            .where(
                MatchORM.status_id == int(MatchStatus.ENDED),
                MatchORM.match_time >= now - lookback_s,
                or_(
                    MatchORM.statistics.is_(None),
                    MatchORM.incidents.is_(None),
                    MatchORM.trend_data.is_(None),
                    MatchORM.player_stats.is_(None),
                    and_(
                        MatchORM.season_id.is_not(None),
                        MatchORM.standings_synced_at.is_(None),
                    ),
                ),
            )
            .order_by(MatchORM.match_time.desc())
            .limit(limit)
        )
        async with self._db.read_session() as session:
            rows = (await session.scalars(stmt)).all()
        return [MatchRecord.model_validate(r) for r in rows]

    async def existing_ids(self, external_ids: list[str]) -> set[str]:
        """The subset of `external_ids` that already have a row."""
        if not external_ids:
            return set()
        stmt = select(MatchORM.external_id).where(
            MatchORM.external_id.in_([str(i) for i in external_ids])
        )
        async with self._db.read_session() as session:
            return set((await session.scalars(stmt)).all())

    async def find_needing_lineup(self, now: int, window_s: int, limit: int) -> list[MatchRecord]:
        """Matches kicking off within `window_s` that have no lineup yet, soonest first."""
        stmt = (
            select(MatchORM)
            .where(
                MatchORM.status_id == int(MatchStatus.NOT_STARTED),
                MatchORM.match_time >= now,
                MatchORM.match_time <= now + window_s,
                MatchORM.lineups.is_(None),
            )
            .order_by(MatchORM.match_time.asc())
            .limit(limit)
        )
        async with self._db.read_session() as session:
            rows = (await session.scalars(stmt)).all()
        return [MatchRecord.model_validate(r) for r in rows]

    async def dataset_present(self, external_id: str, dataset: Dataset) -> bool:
        column = DATASET_COLUMNS[dataset]
        async with self._db.read_session() as session:
            count = await session.scalar(
                select(func.count())
                .select_from(MatchORM)
                .where(MatchORM.external_id == str(external_id), column.is_not(None))
            )
        return bool(count)

    # ── Writes ─────────────────────────────────────────────────────────
    async def apply_update(
        self, external_id: str, changes: MatchChanges, freshness: Freshness
    ) -> int:
        """
        Apply `changes` only if `freshness` beats the stored watermark.

        Kickoff columns are write-once: each is set through
        CASE WHEN col IS NULL THEN :candidate ELSE col END.

        Returns:
            Number of rows changed (0 or 1).
        """
        values: dict[str, Any] = {
            "status_id": changes.status_id,
            "minute": changes.minute,
            "last_event_ts": freshness.ingestion_ts,
            "updated_at": func.now(),
        }
        for name in _COUNTER_FIELDS:
            value = getattr(changes, name)
            if value is not None:
                values[name] = value
        for name in _KICKOFF_FIELDS:
            candidate = getattr(changes, name)
            if candidate is not None:
                column = getattr(MatchORM, name)
                values[name] = case((column.is_(None), candidate), else_=column)
        if freshness.provider_update_time is not None:
            values["provider_update_time"] = case(
                (
                    or_(
                        MatchORM.provider_update_time.is_(None),
                        MatchORM.provider_update_time < freshness.provider_update_time,
                    ),
                    freshness.provider_update_time,
                ),
                else_=MatchORM.provider_update_time,
            )

        stmt = (
            update(MatchORM)
            .where(MatchORM.external_id == str(external_id), freshness.predicate())
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self._db.write_session() as session:
            result = await session.execute(stmt)
            return result.rowcount or 0

    async def save_dataset(self, external_id: str, dataset: Dataset, value: Any) -> int:
        """Write a derived dataset only while its column is still NULL."""
        if dataset == Dataset.STANDINGS:
            raise ValueError("standings are saved with upsert_standings + mark_standings_synced")
        column = DATASET_COLUMNS[dataset]
        stmt = (
            update(MatchORM)
            .where(MatchORM.external_id == str(external_id), column.is_(None))
            .values({column.key: value, "updated_at": func.now()})
            .execution_options(synchronize_session=False)
        )
        async with self._db.write_session() as session:
            result = await session.execute(stmt)
            return result.rowcount or 0

    async def upsert_standings(self, season_id: str, standings: Any) -> None:
        """Replace the season's table with the latest one."""
        insert = pg_insert if self._db.dialect == "postgresql" else sqlite_insert
        stmt = insert(SeasonStandingsORM).values(
            season_id=str(season_id), standings=standings
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[SeasonStandingsORM.season_id],
            set_={"standings": stmt.excluded.standings, "updated_at": func.now()},
        )
        async with self._db.write_session() as session:
            await session.execute(stmt)

    async def mark_standings_synced(self, external_id: str, synced_at: int) -> int:
        stmt = (
            update(MatchORM)
            .where(
                MatchORM.external_id == str(external_id),
                MatchORM.standings_synced_at.is_(None),
            )
            .values(standings_synced_at=synced_at)
            .execution_options(synchronize_session=False)
        )
        async with self._db.write_session() as session:
            result = await session.execute(stmt)
            return result.rowcount or 0

    async def insert_scheduled(self, matches: list[ScheduledMatch]) -> int:
        """Create rows for unseen matches; existing rows are never touched."""
        if not matches:
            return 0
        insert = pg_insert if self._db.dialect == "postgresql" else sqlite_insert
        rows = [
            {
                "id": uuid.uuid4(),
                "external_id": m.external_id,
                "season_id": m.season_id,
                "competition_id": m.competition_id,
                "home_team_id": m.home_team_id,
                "away_team_id": m.away_team_id,
                "status_id": m.status_id,
                "match_time": m.match_time,
            }
            for m in matches
        ]
        stmt = insert(MatchORM).values(rows).on_conflict_do_nothing(
            index_elements=[MatchORM.external_id]
        )
        async with self._db.write_session() as session:
            result = await session.execute(stmt)
            return result.rowcount or 0

    async def save_lineup(self, external_id: str, lineup: Lineup) -> int:
        """Store lineups and formations while the match has none."""
        stmt = (
            update(MatchORM)
            .where(MatchORM.external_id == str(external_id), MatchORM.lineups.is_(None))
            .values(
                lineups={"home": lineup.home, "away": lineup.away},
                home_formation=lineup.home_formation,
                away_formation=lineup.away_formation,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        async with self._db.write_session() as session:
            result = await session.execute(stmt)
            return result.rowcount or 0
