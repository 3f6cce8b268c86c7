"""
Periodic job timer.
Each registered job runs on its own asyncio task; a run never overlaps the
previous one, and a failing run is logged and counted without stopping the loop.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

from shared.utils.logging import get_logger, job_context
from shared.utils.metrics import JOB_DURATION, JOB_RUNS, track_latency

logger = get_logger(__name__)

JobTask = Callable[[], Awaitable[Any]]


class JobHandle:
    """Handle to one registered job."""

    def __init__(self, name: str, interval_s: float) -> None:
        self.name = name
        self.interval_s = interval_s
        self.runs = 0
        self.failures = 0
        self.last_error: Optional[str] = None
        self._task: Optional[asyncio.Task[None]] = None

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def wait(self) -> None:
        """Wait for the job's task to finish after cancel()."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class PeriodicScheduler:
    def __init__(self, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep) -> None:
        self._sleep = sleep
        self._jobs: dict[str, JobHandle] = {}

    @property
    def jobs(self) -> dict[str, JobHandle]:
        return dict(self._jobs)

    def register(
        self,
        name: str,
        interval_s: float,
        task: JobTask,
        initial_delay_s: float = 0.0,
    ) -> JobHandle:
        """Start running `task` every `interval_s` seconds. Must be called inside a running loop."""
        if name in self._jobs and self._jobs[name].running:
            raise ValueError(f"job '{name}' is already registered")
        handle = JobHandle(name, interval_s)
        handle._task = asyncio.create_task(
            self._run_forever(handle, task, initial_delay_s), name=f"job:{name}"
        )
        self._jobs[name] = handle
        logger.info("job_registered", job=name, interval_s=interval_s, initial_delay_s=initial_delay_s)
        return handle

    async def run_once(self, handle: JobHandle, task: JobTask) -> bool:
        """Run one iteration of a job with its error accounting. Returns True on success."""
        try:
            with job_context(handle.name, run=handle.runs + 1), track_latency(
                JOB_DURATION, job=handle.name
            ):
                await task()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            handle.failures += 1
            handle.last_error = str(exc)
            JOB_RUNS.labels(job=handle.name, result="error").inc()
            logger.exception("job_run_failed", job=handle.name, error=str(exc))
            return False
        finally:
            handle.runs += 1
        JOB_RUNS.labels(job=handle.name, result="ok").inc()
        return True

    async def _run_forever(self, handle: JobHandle, task: JobTask, initial_delay_s: float) -> None:
        if initial_delay_s > 0:
            await self._sleep(initial_delay_s)
        while True:
            await self.run_once(handle, task)
            await self._sleep(handle.interval_s)

    async def shutdown(self) -> None:
        """Cancel every job and wait for them to stop."""
        for handle in self._jobs.values():
            handle.cancel()
        for handle in self._jobs.values():
            await handle.wait()
        logger.info("scheduler_jobs_stopped", jobs=list(self._jobs))
        self._jobs.clear()
