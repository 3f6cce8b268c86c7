"""
Shared fixtures: in-memory SQLite store, fake clocks and a stub provider client.
"""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy import select

# Ensure backend is on sys.path when pytest runs from the repo root or from backend/
_backend = str(Path(__file__).resolve().parent.parent)
if _backend not in sys.path:
    sys.path.insert(0, _backend)

from shared.config import Settings  # noqa: E402
from shared.models.orm import MatchORM, SeasonStandingsORM  # noqa: E402
from shared.utils.database import DatabaseManager  # noqa: E402
from reconciler.store import MatchStore  # noqa: E402
from scheduler.config import JobSettings  # noqa: E402

NOW = 1_760_000_000  # fixed "current" epoch for tests


class FakeClock:
    """Callable clock whose time only moves when told to."""

    def __init__(self, now: float = NOW) -> None:
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested sleeps and advances the paired clock instead of waiting."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.clock = clock
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep(clock: FakeClock) -> FakeSleep:
    return FakeSleep(clock)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        provider_base_url="https://provider.test/v1/football",
        provider_user="test-user",
        provider_secret="test-secret",
        provider_max_retries=3,
        provider_retry_base_delay_s=0.5,
        provider_retry_max_delay_s=10.0,
        circuit_failure_threshold=5,
        circuit_cooldown_s=30.0,
        rate_limit_default_interval_s=0.0,
        rate_limit_intervals={},
        reconcile_dedupe_window_s=5,
        metrics_enabled=False,
    )


@pytest.fixture
def job_settings() -> JobSettings:
    return JobSettings(
        watchdog_grace_s=60,
        watchdog_lookback_s=1440 * 60,
        watchdog_batch_size=50,
        watchdog_call_delay_s=0.2,
        stale_live_s=120,
        halftime_stale_s=300,
        post_match_lookback_s=24 * 3600,
        post_match_batch_size=20,
        post_match_delay_s=0.5,
        diary_days_ahead=1,
    )


@pytest_asyncio.fixture
async def db(settings: Settings) -> AsyncIterator[DatabaseManager]:
    manager = DatabaseManager(settings)
    await manager.connect()
    await manager.create_schema()
    try:
        yield manager
    finally:
        await manager.disconnect()


@pytest.fixture
def store(db: DatabaseManager) -> MatchStore:
    return MatchStore(db)


@pytest.fixture
def insert_match(db: DatabaseManager) -> Callable[..., Any]:
    """Insert a `matches` row; keyword arguments override column defaults."""

    async def _insert(external_id: str, **columns: Any) -> None:
        columns.setdefault("match_time", NOW - 600)
        columns.setdefault("status_id", 1)
        async with db.write_session() as session:
            session.add(MatchORM(external_id=external_id, **columns))

    return _insert


@pytest.fixture
def read_standings(db: DatabaseManager) -> Callable[[str], Awaitable[Any]]:
    """Read the stored `season_standings` payload for a season, or None."""

    async def _read(season_id: str) -> Any:
        async with db.read_session() as session:
            return await session.scalar(
                select(SeasonStandingsORM.standings).where(SeasonStandingsORM.season_id == season_id)
            )

    return _read


@pytest.fixture
def provider() -> MagicMock:
    """Stub ProviderClient; set `provider.get.return_value` / `side_effect` per test."""
    client = MagicMock()
    client.get = AsyncMock(return_value={"code": 0, "results": []})
    return client


def detail_live(
    external_id: str,
    status_id: int,
    home: int = 0,
    away: int = 0,
    kickoff_ts: int = 0,
    update_time: int | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """A /match/detail_live response in TheSports score-array shape."""
    entry: dict[str, Any] = {
        "id": external_id,
        "score": [
            external_id,
            status_id,
            [home, 0, 0, 0, 0, 0, 0],
            [away, 0, 0, 0, 0, 0, 0],
            kickoff_ts,
            "",
        ],
        **extra,
    }
    if update_time is not None:
        entry["update_time"] = update_time
    return {"code": 0, "results": [entry]}
