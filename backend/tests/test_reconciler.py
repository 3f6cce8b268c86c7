"""
MatchReconciler tests: conditional apply, write-once kickoffs, sanity guards.
Provider is a stub; the store is real (in-memory SQLite).

Run: pytest backend/tests/test_reconciler.py -v
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable
from unittest.mock import MagicMock

import pytest

from shared.config import Settings
from shared.models.domain import ReconcileResult
from shared.models.enums import Endpoint, MatchStatus
from provider.errors import ProviderTimeoutError
from reconciler.reconciler import MatchReconciler
from reconciler.store import MatchStore
from conftest import NOW, FakeClock, detail_live

Insert = Callable[..., Any]


@pytest.fixture
def reconciler(
    provider: MagicMock, store: MatchStore, settings: Settings, clock: FakeClock
) -> MatchReconciler:
    return MatchReconciler(provider, store, settings, clock=clock)


# ── First reconcile applies, immediate repeat is a no-op ────────────────

@pytest.mark.asyncio
async def test_first_reconcile_applies_then_repeat_is_noop(
    reconciler: MatchReconciler, provider: MagicMock, store: MatchStore, insert_match: Insert
) -> None:
    await insert_match("m1", status_id=1, match_time=NOW - 600)
    provider.get.return_value = {
        "code": 0,
        "results": [{"id": "m1", "status_id": 2, "home_score": 1, "away_score": 0}],
    }

    first = await reconciler.reconcile_match("m1")
    assert first.row_count == 1
    assert first.applied
    assert first.status_id == 2
    assert first.score == "1-0"
    provider.get.assert_awaited_with(Endpoint.DETAIL_LIVE, {"match_id": "m1"})

    record = await store.get_match("m1")
    assert record is not None
    assert record.status_id == 2
    assert record.score == "1-0"
    assert record.last_event_ts == NOW

    second = await reconciler.reconcile_match("m1")
    assert second.row_count == 0
    assert not second.applied
    assert second.reason == "dedupe_window"
    assert await store.get_match("m1") == record


@pytest.mark.asyncio
async def test_repeat_after_dedupe_window_applies(
    reconciler: MatchReconciler, provider: MagicMock, clock: FakeClock, insert_match: Insert
) -> None:
    await insert_match("m1")
    provider.get.return_value = detail_live("m1", 2, 1, 0)
    assert (await reconciler.reconcile_match("m1")).row_count == 1
    clock.advance(6)
    assert (await reconciler.reconcile_match("m1")).row_count == 1


# ── Provider watermark ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_stale_provider_update_is_skipped(
    reconciler: MatchReconciler, provider: MagicMock, store: MatchStore, insert_match: Insert
) -> None:
    await insert_match("m", status_id=4, provider_update_time=NOW - 10, home_score=2, away_score=2)
    provider.get.return_value = detail_live("m", 2, 1, 0, update_time=NOW - 20)

    result = await reconciler.reconcile_match("m")
    assert result.row_count == 0
    assert result.reason == "stale_provider_update"

    record = await store.get_match("m")
    assert record is not None
    assert record.status_id == 4
    assert record.score == "2-2"


@pytest.mark.asyncio
async def test_provider_watermark_advances(
    reconciler: MatchReconciler, provider: MagicMock, store: MatchStore, insert_match: Insert
) -> None:
    await insert_match("m", status_id=2, provider_update_time=NOW - 60, last_event_ts=NOW - 1)
    provider.get.return_value = detail_live("m", 2, 1, 1, update_time=NOW - 5)

    result = await reconciler.reconcile_match("m")
    assert result.row_count == 1
    assert result.provider_update_time == NOW - 5

    record = await store.get_match("m")
    assert record is not None
    assert record.provider_update_time == NOW - 5


@pytest.mark.asyncio
async def test_feed_update_time_replaces_snapshot_watermark(
    reconciler: MatchReconciler, provider: MagicMock, store: MatchStore, insert_match: Insert
) -> None:
    await insert_match("m", status_id=2, provider_update_time=NOW - 30, last_event_ts=NOW - 1)
    provider.get.return_value = detail_live("m", 4, 2, 0)

    result = await reconciler.reconcile_match("m", provider_update_time=NOW - 10)
    assert result.row_count == 1
    assert result.provider_update_time == NOW - 10

    record = await store.get_match("m")
    assert record is not None
    assert record.status_id == 4
    assert record.provider_update_time == NOW - 10


@pytest.mark.asyncio
async def test_stale_feed_update_time_is_skipped(
    reconciler: MatchReconciler, provider: MagicMock, store: MatchStore, insert_match: Insert
) -> None:
    await insert_match("m", status_id=2, provider_update_time=NOW - 30)
    provider.get.return_value = detail_live("m", 4, 2, 0, update_time=NOW)

    result = await reconciler.reconcile_match("m", provider_update_time=NOW - 30)
    assert result.row_count == 0
    assert result.reason == "stale_provider_update"


# ── Write-once kickoffs ─────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_existing_first_half_kickoff_is_preserved(
    reconciler: MatchReconciler, provider: MagicMock, store: MatchStore, insert_match: Insert
) -> None:
    original = NOW - 900
    await insert_match("m", status_id=2, first_half_kickoff_ts=original)
    provider.get.return_value = detail_live("m", 2, 0, 0, kickoff_ts=NOW - 300)

    result = await reconciler.reconcile_match("m")
    assert result.row_count == 1

    record = await store.get_match("m")
    assert record is not None
    assert record.first_half_kickoff_ts == original
    assert record.minute == 16


@pytest.mark.asyncio
async def test_first_half_kickoff_from_provider(
    reconciler: MatchReconciler, provider: MagicMock, store: MatchStore, insert_match: Insert
) -> None:
    await insert_match("m", match_time=NOW - 400)
    provider.get.return_value = detail_live("m", 2, 0, 0, kickoff_ts=NOW - 240)

    await reconciler.reconcile_match("m")
    record = await store.get_match("m")
    assert record is not None
    assert record.first_half_kickoff_ts == NOW - 240
    assert record.minute == 5


@pytest.mark.asyncio
async def test_second_half_kickoff_and_backfilled_first_half(
    reconciler: MatchReconciler, provider: MagicMock, store: MatchStore, insert_match: Insert
) -> None:
    await insert_match("m", status_id=3, match_time=NOW - 4000)
    provider.get.return_value = detail_live("m", 4, 1, 0, kickoff_ts=NOW - 120)

    await reconciler.reconcile_match("m")
    record = await store.get_match("m")
    assert record is not None
    assert record.first_half_kickoff_ts == NOW - 4000
    assert record.second_half_kickoff_ts == NOW - 120
    assert record.minute == 48


@pytest.mark.asyncio
async def test_provider_minute_wins(
    reconciler: MatchReconciler, provider: MagicMock, store: MatchStore, insert_match: Insert
) -> None:
    await insert_match("m", status_id=2, first_half_kickoff_ts=NOW - 600)
    provider.get.return_value = detail_live("m", 2, minute=33)

    await reconciler.reconcile_match("m")
    record = await store.get_match("m")
    assert record is not None
    assert record.minute == 33


# ── Guards ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_future_match_cannot_end(
    reconciler: MatchReconciler, provider: MagicMock, store: MatchStore, insert_match: Insert
) -> None:
    await insert_match("m", status_id=1, match_time=NOW + 3600)
    provider.get.return_value = detail_live("m", 8, 2, 1)

    result = await reconciler.reconcile_match("m")
    assert result.row_count == 1
    assert result.status_id == MatchStatus.NOT_STARTED
    assert not result.ended

    record = await store.get_match("m")
    assert record is not None
    assert record.status_id == MatchStatus.NOT_STARTED
    assert record.first_half_kickoff_ts is None
    assert record.minute is None


@pytest.mark.asyncio
async def test_ending_a_started_match_reports_ended(
    reconciler: MatchReconciler, provider: MagicMock, insert_match: Insert
) -> None:
    await insert_match("m", status_id=4, match_time=NOW - 6500, minute=90)
    provider.get.return_value = detail_live("m", 8, 2, 1)

    result = await reconciler.reconcile_match("m")
    assert result.applied
    assert result.ended


@pytest.mark.asyncio
async def test_ended_match_does_not_regress_to_live(
    reconciler: MatchReconciler, provider: MagicMock, store: MatchStore, insert_match: Insert
) -> None:
    await insert_match("m", status_id=8, match_time=NOW - 8000)
    provider.get.return_value = detail_live("m", 4, 1, 1)

    result = await reconciler.reconcile_match("m")
    assert result.row_count == 0
    assert result.reason == "terminal_status"
    record = await store.get_match("m")
    assert record is not None
    assert record.status_id == 8


# ── Absent / missing ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_absent_match_in_payload_writes_nothing(
    reconciler: MatchReconciler, provider: MagicMock, store: MatchStore, insert_match: Insert
) -> None:
    await insert_match("mine", status_id=1)
    provider.get.return_value = detail_live("someone-else", 8, 3, 0)

    result = await reconciler.reconcile_match("mine")
    assert result.status_id is None
    assert result.score is None
    assert result.row_count == 0

    record = await store.get_match("mine")
    assert record is not None
    assert record.status_id == 1
    assert record.last_event_ts is None


@pytest.mark.asyncio
async def test_match_not_in_store_skips_provider(
    reconciler: MatchReconciler, provider: MagicMock
) -> None:
    result = await reconciler.reconcile_match("ghost")
    assert result.reason == "not_in_store"
    provider.get.assert_not_awaited()


@pytest.mark.asyncio
async def test_provider_errors_propagate(
    reconciler: MatchReconciler, provider: MagicMock, store: MatchStore, insert_match: Insert
) -> None:
    await insert_match("m", status_id=2)
    provider.get.side_effect = ProviderTimeoutError("timeout", endpoint="/match/detail_live")

    with pytest.raises(ProviderTimeoutError):
        await reconciler.reconcile_match("m")
    record = await store.get_match("m")
    assert record is not None
    assert record.last_event_ts is None


# ── Concurrent reconciles ───────────────────────────────────────────────

@pytest.mark.asyncio
async def test_concurrent_reconciles_freshest_watermark_wins(
    reconciler: MatchReconciler, provider: MagicMock, store: MatchStore, insert_match: Insert
) -> None:
    await insert_match("m", status_id=1, match_time=NOW - 3000)
    release = asyncio.Event()
    calls = 0

    async def respond(endpoint: Any, params: dict[str, str]) -> dict[str, Any]:
        nonlocal calls
        calls += 1
        if calls == 1:
            # The older snapshot is held until the newer one has been written
            await release.wait()
            return detail_live("m", 2, 1, 0, update_time=NOW + 10)
        return detail_live("m", 4, 2, 1, update_time=NOW + 20)

    provider.get.side_effect = respond

    async def fresh() -> ReconcileResult:
        while calls < 1:
            await asyncio.sleep(0)
        try:
            return await reconciler.reconcile_match("m")
        finally:
            release.set()

    stale_result, fresh_result = await asyncio.gather(reconciler.reconcile_match("m"), fresh())

    assert fresh_result.row_count == 1
    assert fresh_result.reason == "applied"
    assert stale_result.row_count == 0
    assert stale_result.reason == "lost_race"

    record = await store.get_match("m")
    assert record is not None
    assert record.status_id == 4
    assert record.score == "2-1"
    assert record.provider_update_time == NOW + 20
