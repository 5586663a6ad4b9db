"""Recurring job scheduling with per-job-kind run guards."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class SchedulerError(Exception):
    """Raised for invalid scheduler configuration or lifecycle misuse."""


class JobKind(str, Enum):
    DETECT = "detect"
    DISCOVER = "discover"
    BROAD_MONITOR = "broad_monitor"
    ALERT_SWEEP = "alert_sweep"


class JobState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class RunGuard:
    """Non-reentrancy flags, one per job kind.

    `try_acquire` never waits: it either marks the kind RUNNING and returns
    True, or returns False because a run of that kind is already in flight.
    """

    def __init__(self) -> None:
        self._locks: dict[JobKind, threading.Lock] = {kind: threading.Lock() for kind in JobKind}

    def try_acquire(self, kind: JobKind) -> bool:
        return self._locks[kind].acquire(blocking=False)

    def release(self, kind: JobKind) -> None:
        self._locks[kind].release()

    def state(self, kind: JobKind) -> JobState:
        return JobState.RUNNING if self._locks[kind].locked() else JobState.IDLE

    @contextlib.asynccontextmanager
    async def hold(self, kind: JobKind) -> AsyncIterator[bool]:
        """Context manager yielding whether the guard was acquired.

        The guard is released on exit only if it was acquired here.
        """
        acquired = self.try_acquire(kind)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(kind)


@dataclass
class JobStats:
    runs: int = 0
    skipped: int = 0
    failures: int = 0
    last_started_at: datetime | None = None
    last_finished_at: datetime | None = None
    last_error: str | None = None
    last_result: Any = None


@dataclass
class Job:
    """A coroutine function run every `interval_seconds`."""

    kind: JobKind
    func: Callable[[], Awaitable[Any]]
    interval_seconds: float
    run_immediately: bool = True
    stats: JobStats = field(default_factory=JobStats)


class Scheduler:
    """Runs each registered job kind on its own cadence.

    A tick that finds its job kind still RUNNING is skipped, not queued.
    Different job kinds may overlap; a job kind never overlaps itself.

    Example:
        ```python
        scheduler = Scheduler()
        scheduler.add_job(JobKind.DETECT, pipeline.run_detection, 600)
        await scheduler.start()
        ...
        await scheduler.stop()
        ```
    """

    def __init__(self, guard: RunGuard | None = None) -> None:
        self.guard = guard or RunGuard()
        self._jobs: dict[JobKind, Job] = {}
        self._tasks: dict[JobKind, asyncio.Task[None]] = {}
        self._ticks: set[asyncio.Task[bool]] = set()
        self._stop_event: asyncio.Event | None = None

    @property
    def jobs(self) -> dict[JobKind, Job]:
        return dict(self._jobs)

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)

    def add_job(
        self,
        kind: JobKind,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: float,
        *,
        run_immediately: bool = True,
    ) -> Job:
        """Register a job.

        Raises:
            SchedulerError: If the kind is already registered, the interval is
                not positive, or the scheduler is running.
        """
        if self.is_running:
            raise SchedulerError("Cannot add jobs while the scheduler is running")
        if kind in self._jobs:
            raise SchedulerError(f"Job {kind.value} is already registered")
        if interval_seconds <= 0:
            raise SchedulerError(f"Job {kind.value} interval must be positive")
        job = Job(kind, func, interval_seconds, run_immediately=run_immediately)
        self._jobs[kind] = job
        return job

    async def tick(self, kind: JobKind) -> bool:
        """Run one tick of a job kind.

        Returns:
            False when the tick was skipped because the kind is RUNNING.
        """
        job = self._jobs.get(kind)
        if job is None:
            raise SchedulerError(f"Job {kind.value} is not registered")

        if not self.guard.try_acquire(kind):
            job.stats.skipped += 1
            logger.warning("Skipping %s tick: previous run still in progress", kind.value)
            return False

        job.stats.last_started_at = datetime.now(UTC)
        try:
            job.stats.last_result = await job.func()
            job.stats.runs += 1
        except Exception as e:
            job.stats.failures += 1
            job.stats.last_error = str(e)
            logger.error("Job %s failed: %s", kind.value, e, exc_info=True)
        finally:
            job.stats.last_finished_at = datetime.now(UTC)
            self.guard.release(kind)
        return True

    async def start(self) -> None:
        if self.is_running:
            raise SchedulerError("Scheduler is already running")
        self._stop_event = asyncio.Event()
        for kind, job in self._jobs.items():
            self._tasks[kind] = asyncio.create_task(self._run_loop(job), name=f"job:{kind.value}")
            logger.info("Scheduled %s every %ss", kind.value, job.interval_seconds)

    async def stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()
        for task in self._tasks.values():
            task.cancel()
        for task in self._ticks:
            task.cancel()
        for task in [*self._tasks.values(), *self._ticks]:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
        self._ticks.clear()
        self._stop_event = None
        logger.debug("Scheduler stopped")

    async def _run_loop(self, job: Job) -> None:
        stop_event = self._stop_event
        if stop_event is None:
            return

        if job.run_immediately:
            await self._spawn_tick(job)

        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=job.interval_seconds)
            except TimeoutError:
                await self._spawn_tick(job)

    async def _spawn_tick(self, job: Job) -> None:
        # Ticks run detached so a slow run is observed as RUNNING by the next tick.
        task = asyncio.create_task(self.tick(job.kind))
        self._ticks.add(task)
        task.add_done_callback(self._on_tick_done)

    def _on_tick_done(self, task: asyncio.Task[bool]) -> None:
        self._ticks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Scheduler tick crashed: %s", exc)
