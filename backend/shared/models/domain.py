"""
Pydantic v2 domain models shared across matchsync services.
These are the canonical internal representations, not ORM models.
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.models.enums import CandidateKind, Dataset, DatasetOutcome


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# ── Canonical match row ─────────────────────────────────────────────────
class MatchRecord(DomainModel):
    """Read view of one row of the `matches` table."""
    external_id: str
    season_id: Optional[str] = None
    status_id: int
    match_time: int
    provider_update_time: Optional[int] = None
    last_event_ts: Optional[int] = None
    first_half_kickoff_ts: Optional[int] = None
    second_half_kickoff_ts: Optional[int] = None
    overtime_kickoff_ts: Optional[int] = None
    minute: Optional[int] = None
    home_score: int = 0
    away_score: int = 0
    home_red_cards: int = 0
    away_red_cards: int = 0
    home_yellow_cards: int = 0
    away_yellow_cards: int = 0
    home_corners: int = 0
    away_corners: int = 0

    @property
    def score(self) -> str:
        return f"{self.home_score}-{self.away_score}"


# ── Provider snapshots ──────────────────────────────────────────────────
class MatchSnapshot(DomainModel):
    """
    One match as reported by /match/detail_live, decoded from whatever shape
    the provider used. Every field is optional: providers omit freely.
    """
    external_id: str
    status_id: Optional[int] = None
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    home_red_cards: Optional[int] = None
    away_red_cards: Optional[int] = None
    home_yellow_cards: Optional[int] = None
    away_yellow_cards: Optional[int] = None
    home_corners: Optional[int] = None
    away_corners: Optional[int] = None
    kickoff_ts: Optional[int] = None
    update_time: Optional[int] = None
    minute: Optional[int] = None

    @property
    def has_live_data(self) -> bool:
        return (
            self.status_id is not None
            or self.home_score is not None
            or self.away_score is not None
        )

    @property
    def score(self) -> Optional[str]:
        if self.home_score is None or self.away_score is None:
            return None
        return f"{self.home_score}-{self.away_score}"


class ScheduledMatch(DomainModel):
    """A fixture announced by /match/diary."""
    external_id: str
    match_time: int
    status_id: int
    season_id: Optional[str] = None
    competition_id: Optional[str] = None
    home_team_id: Optional[str] = None
    away_team_id: Optional[str] = None


class Lineup(DomainModel):
    """Starting lineups from /match/lineup/detail."""
    home: list[Any] = Field(default_factory=list)
    away: list[Any] = Field(default_factory=list)
    home_formation: Optional[str] = None
    away_formation: Optional[str] = None


# ── Job inputs / outputs ────────────────────────────────────────────────
class WatchdogCandidate(DomainModel):
    external_id: str
    kind: CandidateKind
    status_id: int
    match_time: int
    reason: str = ""


class ReconcileResult(DomainModel):
    """Outcome of one reconcile call; `row_count` is the sole success signal."""
    external_id: str
    applied: bool = False
    row_count: int = 0
    status_id: Optional[int] = None
    score: Optional[str] = None
    provider_update_time: Optional[int] = None
    reason: str = ""
    ended: bool = False


class WatchdogReport(DomainModel):
    candidates: int = 0
    fixed: int = 0
    skipped: int = 0
    errors: int = 0
    finalized: int = 0
    finalize_incomplete: int = 0
    by_kind: dict[str, int] = Field(default_factory=dict)


class FinalizeReport(DomainModel):
    """Per-dataset outcome of finalizing one ended match."""
    external_id: str
    outcomes: dict[Dataset, DatasetOutcome] = Field(default_factory=dict)
    reason: str = ""

    @property
    def complete(self) -> bool:
        return bool(self.outcomes) and all(o.is_done for o in self.outcomes.values())


class FinalizeBatchReport(DomainModel):
    matches: int = 0
    complete: int = 0
    failed: int = 0
    by_outcome: dict[str, int] = Field(default_factory=dict)


class DataUpdateReport(DomainModel):
    """One pass over the provider's changed-matches feed."""
    changed: int = 0
    not_in_store: int = 0
    applied: int = 0
    skipped: int = 0
    errors: int = 0
    finalized: int = 0
    finalize_incomplete: int = 0


class LineupReport(DomainModel):
    matches: int = 0
    synced: int = 0
    empty: int = 0
    failed: int = 0
