"""
SQLAlchemy 2.0 ORM models for matchsync.
Only the columns the reconciler, the periodic jobs and the finalizer read and write.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Index,
    Integer,
    SmallInteger,
    String,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on Postgres, plain JSON elsewhere (tests run on SQLite).
JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


class Base(DeclarativeBase):
    pass


class MatchORM(Base):
    __tablename__ = "matches"
    __table_args__ = (
        Index("ix_matches_status_match_time", "status_id", "match_time"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    external_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    season_id: Mapped[Optional[str]] = mapped_column(String(64))
    competition_id: Mapped[Optional[str]] = mapped_column(String(64))
    home_team_id: Mapped[Optional[str]] = mapped_column(String(64))
    away_team_id: Mapped[Optional[str]] = mapped_column(String(64))

    status_id: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=1)
    match_time: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Watermarks
    provider_update_time: Mapped[Optional[int]] = mapped_column(BigInteger)
    last_event_ts: Mapped[Optional[int]] = mapped_column(BigInteger)

    # Write-once kickoff timestamps
    first_half_kickoff_ts: Mapped[Optional[int]] = mapped_column(BigInteger)
    second_half_kickoff_ts: Mapped[Optional[int]] = mapped_column(BigInteger)
    overtime_kickoff_ts: Mapped[Optional[int]] = mapped_column(BigInteger)

    minute: Mapped[Optional[int]] = mapped_column(SmallInteger)
    home_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    away_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    home_red_cards: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    away_red_cards: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    home_yellow_cards: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    away_yellow_cards: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    home_corners: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    away_corners: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)

    # Derived post-match datasets
    statistics: Mapped[Optional[Any]] = mapped_column(JSONType)
    incidents: Mapped[Optional[Any]] = mapped_column(JSONType)
    trend_data: Mapped[Optional[Any]] = mapped_column(JSONType)
    player_stats: Mapped[Optional[Any]] = mapped_column(JSONType)
    standings_synced_at: Mapped[Optional[int]] = mapped_column(BigInteger)

    # Pre-match lineups
    lineups: Mapped[Optional[Any]] = mapped_column(JSONType)
    home_formation: Mapped[Optional[str]] = mapped_column(String(16))
    away_formation: Mapped[Optional[str]] = mapped_column(String(16))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class SeasonStandingsORM(Base):
    __tablename__ = "season_standings"

    season_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    standings: Mapped[Any] = mapped_column(JSONType, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
