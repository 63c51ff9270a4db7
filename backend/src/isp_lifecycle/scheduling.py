"""Deadline scheduler shared by the automation services.

A single min-heap keyed by fire instant, drained by one driver task, holds
every sampling and billing deadline. Time comes from an injectable clock so
tests can step it deterministically with ``ManualClock`` and ``run_pending``.
"""
import asyncio
import calendar
import heapq
import itertools
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Awaitable, Callable, Hashable, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from isp_lifecycle import metrics

logger = structlog.get_logger(__name__)

# A job returns its next fire instant, or None to retire (ignored for interval jobs)
JobCallback = Callable[[], Awaitable[datetime | None]]


class Clock(Protocol):
    """Source of timezone-aware "now"."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self._now = _require_aware(start or datetime(2024, 1, 1, tzinfo=timezone.utc))

    def now(self) -> datetime:
        return self._now

    def set(self, when: datetime) -> None:
        self._now = _require_aware(when)

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        """Move the clock forward by ``delta`` or by ``timedelta(**kwargs)``."""
        self._now = self._now + (delta if delta is not None else timedelta(**kwargs))
        return self._now


def _require_aware(when: datetime) -> datetime:
    if when.tzinfo is None or when.utcoffset() is None:
        raise ValueError("Scheduler instants must be timezone-aware")
    return when


def resolve_timezone(name: str) -> ZoneInfo:
    """
    Look up an IANA timezone.

    Raises:
        ValueError: If the name is blank or unknown
    """
    if not name:
        raise ValueError("Timezone name is required")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {name}") from e


def local_today(clock: Clock, zone: tzinfo) -> date:
    """Calendar date of the clock's "now" in the given zone."""
    return clock.now().astimezone(zone).date()


def _cycle_midnight(year: int, month: int, cycle_day: int, zone: tzinfo) -> datetime:
    # Short months bill on their last day
    last_day = calendar.monthrange(year, month)[1]
    return datetime(year, month, min(cycle_day, last_day), tzinfo=zone)


def next_billing_time(
    cycle_day: int,
    tz: str | tzinfo,
    now: datetime,
    strictly_after: bool = False,
) -> datetime:
    """
    Compute the next billing instant for a day-of-month cycle.

    Takes local midnight of ``cycle_day`` in the current month. If that has
    already passed (or, with ``strictly_after``, is not later than ``now``),
    the same day of the following month is used instead.

    Args:
        cycle_day: Day of month (1-31)
        tz: IANA timezone name or tzinfo of the account
        now: Reference instant (timezone-aware)
        strictly_after: Exclude an instant equal to ``now``

    Returns:
        Timezone-aware local midnight

    Raises:
        ValueError: If cycle_day or timezone is invalid
    """
    if not 1 <= cycle_day <= 31:
        raise ValueError(f"Billing cycle day must be between 1 and 31, got {cycle_day}")

    zone = resolve_timezone(tz) if isinstance(tz, str) else tz
    _require_aware(now)
    local_now = now.astimezone(zone)

    candidate = _cycle_midnight(local_now.year, local_now.month, cycle_day, zone)
    if candidate < now or (strictly_after and candidate <= now):
        if local_now.month == 12:
            year, month = local_now.year + 1, 1
        else:
            year, month = local_now.year, local_now.month + 1
        candidate = _cycle_midnight(year, month, cycle_day, zone)

    return candidate


@dataclass
class _Job:
    key: Hashable
    callback: JobCallback
    due: datetime
    interval: timedelta | None = None


class DeadlineScheduler:
    """
    Single-owner deadline queue.

    Each key has at most one armed job. A key's next occurrence is pushed
    only after its current run completes, so a key never runs concurrently
    with itself; different keys may run concurrently on the event loop.
    A key re-armed while an earlier run is still in flight waits for that
    run to finish before it can fire.
    """

    def __init__(self, clock: Clock | None = None):
        self.clock = clock or SystemClock()
        self._heap: list[tuple[datetime, int, _Job]] = []
        self._jobs: dict[Hashable, _Job] = {}
        self._running: dict[Hashable, tuple[_Job, asyncio.Task]] = {}
        self._deferred: dict[Hashable, _Job] = {}
        self._sequence = itertools.count()
        self._wakeup: asyncio.Event | None = None
        self._driver: asyncio.Task | None = None

    @property
    def pending_count(self) -> int:
        return len(self._jobs)

    @property
    def is_running(self) -> bool:
        return self._driver is not None and not self._driver.done()

    def schedule(
        self,
        key: Hashable,
        when: datetime,
        callback: JobCallback,
        interval: timedelta | None = None,
    ) -> bool:
        """
        Arm a job.

        Args:
            key: Unique job key (e.g. ("billing", account_id))
            when: First fire instant (timezone-aware)
            callback: Async callable run at each deadline
            interval: Re-arm this long after each run completes

        Returns:
            False if the key is already armed, True otherwise

        Raises:
            ValueError: If ``when`` is naive or ``interval`` is not positive
        """
        _require_aware(when)
        if interval is not None and interval <= timedelta(0):
            raise ValueError("Job interval must be positive")

        if key in self._jobs:
            return False

        job = _Job(key=key, callback=callback, due=when, interval=interval)
        self._jobs[key] = job
        self._push(job)
        return True

    def cancel(self, key: Hashable) -> bool:
        """
        Disarm a job.

        No run of ``key`` starts after this returns. A run already in flight
        finishes but does not re-arm.

        Returns:
            True if a job was disarmed
        """
        job = self._jobs.pop(key, None)
        if job is None:
            return False

        metrics.scheduler_pending_jobs_gauge.set(len(self._jobs))
        self._notify()
        return True

    def is_scheduled(self, key: Hashable) -> bool:
        return key in self._jobs

    def next_fire_time(self, key: Hashable) -> datetime | None:
        job = self._jobs.get(key)
        return job.due if job else None

    async def run_pending(self) -> int:
        """
        Run every job due at the clock's current instant and wait for them.

        Returns:
            Number of jobs run
        """
        tasks = [self._dispatch(job) for job in self._pop_due(self.clock.now())]
        if tasks:
            await asyncio.gather(*tasks)
        return len(tasks)

    def start(self) -> None:
        """Start the driver task on the running event loop."""
        if self.is_running:
            return
        self._driver = asyncio.create_task(self._drive(), name="deadline-scheduler")

    async def stop(self) -> None:
        """
        Stop the driver and cancel in-flight runs.

        Jobs interrupted mid-run stay armed at the deadline they were
        fired for, so a later ``start`` or ``run_pending`` runs them again.
        """
        if self._driver is not None:
            self._driver.cancel()
            try:
                await self._driver
            except asyncio.CancelledError:
                pass
            self._driver = None

        in_flight = list(self._running.values())
        for _, task in in_flight:
            task.cancel()
        if in_flight:
            await asyncio.gather(*(task for _, task in in_flight), return_exceptions=True)

        # Runs cancelled before their first step never reach _run's handlers
        for job, task in in_flight:
            if self._running.get(job.key, (None, None))[1] is task:
                if self._is_live(job):
                    self._push(job)
                self._retire(job.key)

        logger.info("scheduler_stopped", pending_jobs=len(self._jobs))

    async def _drive(self) -> None:
        self._wakeup = asyncio.Event()
        logger.info("scheduler_started", pending_jobs=len(self._jobs))

        try:
            while True:
                self._wakeup.clear()
                for job in self._pop_due(self.clock.now()):
                    self._dispatch(job)

                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=self._seconds_until_next())
                except asyncio.TimeoutError:
                    pass
        finally:
            self._wakeup = None

    def _push(self, job: _Job) -> None:
        heapq.heappush(self._heap, (job.due, next(self._sequence), job))
        metrics.scheduler_pending_jobs_gauge.set(len(self._jobs))
        self._notify()

    def _notify(self) -> None:
        if self._wakeup is not None:
            self._wakeup.set()

    def _is_live(self, job: _Job) -> bool:
        return self._jobs.get(job.key) is job

    def _pop_due(self, now: datetime) -> list[_Job]:
        due = []
        while self._heap and self._heap[0][0] <= now:
            _, _, job = heapq.heappop(self._heap)
            # Entries left behind by cancel() are skipped here
            if not self._is_live(job):
                continue
            if job.key in self._running:
                self._deferred[job.key] = job
                continue
            due.append(job)
        return due

    def _seconds_until_next(self) -> float | None:
        while self._heap and not self._is_live(self._heap[0][2]):
            heapq.heappop(self._heap)
        if not self._heap:
            return None
        return max(0.0, (self._heap[0][0] - self.clock.now()).total_seconds())

    def _retire(self, key: Hashable) -> None:
        self._running.pop(key, None)
        waiting = self._deferred.pop(key, None)
        if waiting is not None and self._is_live(waiting):
            self._push(waiting)

    def _dispatch(self, job: _Job) -> asyncio.Task:
        task = asyncio.create_task(self._run(job), name=f"job:{job.key}")
        self._running[job.key] = (job, task)
        return task

    async def _run(self, job: _Job) -> None:
        next_due = None
        try:
            next_due = await job.callback()
        except asyncio.CancelledError:
            if self._is_live(job):
                logger.info("scheduled_job_interrupted", job_key=str(job.key), due=job.due.isoformat())
                self._push(job)
            raise
        except Exception as e:
            metrics.scheduled_job_failures_total.inc()
            logger.exception("scheduled_job_failed", job_key=str(job.key), exc_info=e)
        finally:
            self._retire(job.key)

        if not self._is_live(job):
            return

        if job.interval is not None:
            next_due = self.clock.now() + job.interval

        if next_due is None:
            del self._jobs[job.key]
            metrics.scheduler_pending_jobs_gauge.set(len(self._jobs))
            return

        job.due = _require_aware(next_due)
        self._push(job)
