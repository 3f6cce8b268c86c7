"""
Scheduler service for matchsync.
Wires the provider client, store, reconciler and periodic jobs (diary sync,
changed-matches feed, watchdog, post-match finalizer, lineups) and runs them
until SIGINT/SIGTERM.
"""
from __future__ import annotations

import asyncio
import signal
import sys
from pathlib import Path
from typing import Any, Optional

# Ensure backend root is on path when run as python -m scheduler.service
_backend = Path(__file__).resolve().parent.parent
if str(_backend) not in sys.path:
    sys.path.insert(0, str(_backend))

from shared.config import Settings, get_settings
from shared.utils.database import DatabaseManager
from shared.utils.health_server import start_health_server
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server

from provider.client import ProviderClient
from reconciler.finalizer import PostMatchFinalizer
from reconciler.reconciler import MatchReconciler
from reconciler.store import MatchStore
from scheduler.config import JobSettings, get_job_settings
from scheduler.data_update import DataUpdateSync
from scheduler.diary_sync import DiarySync
from scheduler.lineup_sync import LineupSync
from scheduler.timer import PeriodicScheduler
from scheduler.watchdog import WatchdogScanner

logger = get_logger(__name__)


class SchedulerService:
    """Owns the long-lived components and the periodic jobs built on them."""

    def __init__(
        self,
        db: DatabaseManager,
        client: ProviderClient,
        settings: Optional[Settings] = None,
        job_settings: Optional[JobSettings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._jobs_settings = job_settings or get_job_settings()
        self._db = db
        self._client = client
        self.store = MatchStore(db)
        self.reconciler = MatchReconciler(client, self.store, self._settings)
        self.finalizer = PostMatchFinalizer(
            client,
            self.store,
            lookback_s=self._jobs_settings.post_match_lookback_s,
            batch_size=self._jobs_settings.post_match_batch_size,
            match_delay_s=self._jobs_settings.post_match_delay_s,
        )
        self.watchdog = WatchdogScanner(
            self.reconciler, self.store, self._jobs_settings, finalizer=self.finalizer
        )
        self.diary = DiarySync(client, self.store, self._jobs_settings)
        self.data_update = DataUpdateSync(
            client, self.reconciler, self.store, self._jobs_settings, finalizer=self.finalizer
        )
        self.lineups = LineupSync(client, self.store, self._jobs_settings)
        self.scheduler = PeriodicScheduler()
        self._shutdown = asyncio.Event()

    def register_jobs(self) -> None:
        s = self._jobs_settings
        if s.diary_enabled:
            self.scheduler.register("diary_sync", s.diary_interval_s, self.diary.sync)
        if s.data_update_enabled:
            self.scheduler.register(
                "data_update", s.data_update_interval_s, self.data_update.sync, initial_delay_s=2.0
            )
        if s.watchdog_enabled:
            self.scheduler.register(
                "watchdog", s.watchdog_interval_s, self.watchdog.scan, initial_delay_s=5.0
            )
        if s.post_match_enabled:
            self.scheduler.register(
                "post_match", s.post_match_interval_s, self.finalizer.finalize_recent, initial_delay_s=15.0
            )
        if s.lineup_enabled:
            self.scheduler.register(
                "lineup_sync", s.lineup_interval_s, self.lineups.sync, initial_delay_s=30.0
            )

    def health(self) -> dict[str, Any]:
        return {
            "provider": self._client.health,
            "jobs": {
                name: {"runs": job.runs, "failures": job.failures, "running": job.running}
                for name, job in self.scheduler.jobs.items()
            },
        }

    async def run(self) -> None:
        self.register_jobs()
        logger.info("scheduler_service_started", instance_id=self._settings.instance_id)
        await self._shutdown.wait()

    def request_shutdown(self) -> None:
        self._shutdown.set()

    async def stop(self) -> None:
        await self.scheduler.shutdown()


async def main() -> None:
    """Scheduler service entrypoint."""
    settings = get_settings()
    setup_logging("scheduler")
    start_metrics_server()

    db = DatabaseManager(settings)
    try:
        await db.connect()
        if settings.is_sqlite:
            await db.create_schema()
    except Exception as exc:
        logger.exception("startup_connect_failed", error=str(exc))
        raise

    client = ProviderClient(settings)
    await client.start()

    service = SchedulerService(db, client, settings)
    health_server = start_health_server("scheduler", service.health)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, service.request_shutdown)
        except NotImplementedError:
            pass

    try:
        await service.run()
    finally:
        await service.stop()
        await client.close()
        await db.disconnect()
        if health_server is not None:
            health_server.shutdown()
        logger.info("scheduler_service_stopped")


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
