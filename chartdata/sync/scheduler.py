from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Callable, Iterable

from chartdata.clock import next_daily_run, to_utc, utc_now

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ScheduledJob:
    """A periodic background action.

    ``at_utc`` runs the job once a day at that wall-clock time,
    ``interval_seconds`` runs it every N seconds. ``first_run_delay_seconds``
    schedules the first run relative to scheduler start; with neither of the
    other two set the job runs exactly once.
    """

    name: str
    action: Callable[[], object]
    at_utc: time | None = None
    interval_seconds: float | None = None
    first_run_delay_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.at_utc is not None and self.interval_seconds is not None:
            raise ValueError(f"job {self.name}: at_utc and interval_seconds are exclusive")
        if self.interval_seconds is not None and self.interval_seconds <= 0:
            raise ValueError(f"job {self.name}: interval_seconds must be > 0")
        if self.first_run_delay_seconds is not None and self.first_run_delay_seconds < 0:
            raise ValueError(f"job {self.name}: first_run_delay_seconds must be >= 0")
        if self.at_utc is None and self.interval_seconds is None and self.first_run_delay_seconds is None:
            raise ValueError(f"job {self.name}: no schedule given")

    def first_run(self, now: datetime) -> datetime | None:
        if self.first_run_delay_seconds is not None:
            return to_utc(now) + timedelta(seconds=self.first_run_delay_seconds)
        return self.next_run_after(now)

    def next_run_after(self, now: datetime) -> datetime | None:
        if self.at_utc is not None:
            return next_daily_run(now, self.at_utc)
        if self.interval_seconds is not None:
            return to_utc(now) + timedelta(seconds=self.interval_seconds)
        return None


@dataclass(slots=True)
class _JobState:
    job: ScheduledJob
    due_at: datetime | None
    runs: int = 0
    failures: int = 0
    last_run_at: datetime | None = None
    last_error: str | None = None


@dataclass(slots=True)
class JobStatus:
    name: str
    due_at: datetime | None
    runs: int
    failures: int
    last_run_at: datetime | None
    last_error: str | None = None


class JobScheduler:
    def __init__(
        self,
        jobs: Iterable[ScheduledJob] = (),
        *,
        poll_seconds: float = 30.0,
        now: Callable[[], datetime] = utc_now,
    ):
        self.poll_seconds = max(0.1, float(poll_seconds))
        self._now = now
        self._jobs: list[_JobState] = []
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        for job in jobs:
            self.add(job)

    def add(self, job: ScheduledJob) -> None:
        with self._lock:
            if any(state.job.name == job.name for state in self._jobs):
                raise ValueError(f"duplicate job name: {job.name}")
            due = job.first_run(self._now())
            self._jobs.append(_JobState(job=job, due_at=due))
        LOGGER.info("Scheduled job %s, first run at %s", job.name, due.isoformat() if due else "never")

    def status(self) -> list[JobStatus]:
        with self._lock:
            return [
                JobStatus(
                    name=state.job.name,
                    due_at=state.due_at,
                    runs=state.runs,
                    failures=state.failures,
                    last_run_at=state.last_run_at,
                    last_error=state.last_error,
                )
                for state in self._jobs
            ]

    def run_pending(self, now: datetime | None = None) -> list[str]:
        """Run every job that is due at ``now``; returns the names that ran."""
        current = to_utc(now) if now is not None else self._now()
        with self._lock:
            due = [state for state in self._jobs if state.due_at is not None and state.due_at <= current]
        ran: list[str] = []
        for state in due:
            self._run_job(state, current)
            ran.append(state.job.name)
        return ran

    def next_due_at(self) -> datetime | None:
        with self._lock:
            pending = [state.due_at for state in self._jobs if state.due_at is not None]
        return min(pending) if pending else None

    def _run_job(self, state: _JobState, now: datetime) -> None:
        job = state.job
        LOGGER.info("Running job %s", job.name)
        state.last_run_at = now
        state.runs += 1
        try:
            job.action()
            state.last_error = None
        except Exception as exc:  # noqa: BLE001
            state.failures += 1
            state.last_error = str(exc)
            LOGGER.exception("Job %s failed", job.name)
        finally:
            state.due_at = job.next_run_after(max(now, self._now()))
        if state.due_at is not None:
            LOGGER.info("Next run of %s at %s", job.name, state.due_at.isoformat())

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="chartdata-scheduler", daemon=True)
        self._thread.start()
        LOGGER.info("Scheduler started with %d jobs", len(self._jobs))

    def stop(self, timeout: float | None = 10.0) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                LOGGER.warning("Scheduler thread did not stop within %.1fs", timeout or 0.0)
        self._thread = None
        LOGGER.info("Scheduler stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_pending()
            self._stop_event.wait(self._wait_seconds())

    def _wait_seconds(self) -> float:
        upcoming = self.next_due_at()
        if upcoming is None:
            return self.poll_seconds
        remaining = (upcoming - self._now()).total_seconds()
        return min(self.poll_seconds, max(0.0, remaining))
