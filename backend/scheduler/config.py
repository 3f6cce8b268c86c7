"""
Periodic job configuration.
Uses the MS_JOBS_ prefix; provider and database settings stay in shared.config.
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class JobSettings(BaseSettings):
    """Timers, windows and batch sizes for the periodic jobs."""

    model_config = SettingsConfigDict(
        env_prefix="MS_JOBS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Watchdog
    watchdog_enabled: bool = True
    watchdog_interval_s: float = Field(default=30.0, description="Seconds between watchdog scans")
    watchdog_grace_s: int = Field(default=60, description="Kickoff must be this far in the past before a NOT_STARTED match is suspicious")
    watchdog_lookback_s: int = Field(default=1440 * 60, description="Ignore should-be-live matches older than this")
    watchdog_batch_size: int = Field(default=50, description="Max candidates per kind per scan")
    watchdog_call_delay_s: float = Field(default=0.2, description="Pause between provider calls within one scan")
    stale_live_s: int = Field(default=120, description="Live match with no movement for this long is stale")
    halftime_stale_s: int = Field(default=300, description="Stale threshold during HALF_TIME")
    finalize_on_end: bool = Field(default=True, description="Run the post-match finalizer when a scan ends a match")

    # Post-match finalizer
    post_match_enabled: bool = True
    post_match_interval_s: float = Field(default=300.0, description="Seconds between finalizer sweeps")
    post_match_lookback_s: int = Field(default=24 * 3600, description="Only finalize matches kicked off within this window")
    post_match_batch_size: int = Field(default=20, description="Max matches per sweep")
    post_match_delay_s: float = Field(default=0.5, description="Pause between matches within one sweep")

    # Diary sync
    diary_enabled: bool = True
    diary_interval_s: float = Field(default=6 * 3600.0, description="Seconds between diary syncs")
    diary_days_ahead: int = Field(default=1, description="Sync today plus this many following days")

    # Changed-matches feed
    data_update_enabled: bool = True
    data_update_interval_s: float = Field(default=20.0, description="Seconds between /data/update polls")
    data_update_call_delay_s: float = Field(default=0.1, description="Pause between reconciles within one poll")

    # Pre-match lineups
    lineup_enabled: bool = True
    lineup_interval_s: float = Field(default=15 * 60.0, description="Seconds between lineup syncs")
    lineup_window_s: int = Field(default=3600, description="Fetch lineups for matches kicking off within this window")
    lineup_batch_size: int = Field(default=20, description="Max matches per lineup sync")
    lineup_call_delay_s: float = Field(default=0.5, description="Pause between lineup fetches")


@lru_cache(maxsize=1)
def get_job_settings() -> JobSettings:
    return JobSettings()
