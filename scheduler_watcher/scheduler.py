"""Fixed-interval job scheduling on top of APScheduler."""
from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .config import ScheduleOptions, parse_interval
from .logger import log_event
from .models import Task
from .store import PersistenceError, TaskStore

LOGGER_NAME = "scheduler_watcher.scheduler"

Action = Callable[[], Any]
Clock = Callable[[], datetime]


class DuplicateIdentityError(ValueError):
    """An identity is already scheduled."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Scheduler:
    """Run actions on fixed wall-clock intervals, one job per identity.

    The first firing happens one interval after the job is scheduled (or after
    :meth:`start` for jobs added earlier). At most one firing per identity is
    in flight; firings missed by more than ``misfire_grace_time`` seconds are
    dropped instead of replayed. Failures are logged and never stop the job.
    """

    def __init__(
        self,
        *,
        misfire_grace_time: int = 1,
        backend: BackgroundScheduler | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if misfire_grace_time <= 0:
            raise ValueError("misfire_grace_time must be positive")
        self.misfire_grace_time = misfire_grace_time
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self._backend = backend or BackgroundScheduler(timezone=timezone.utc)
        self._jobs: dict[str, Any] = {}
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return bool(self._backend.running)

    @property
    def identities(self) -> list[str]:
        with self._lock:
            return sorted(self._jobs)

    def start(self) -> None:
        if not self.running:
            self._backend.start()
            log_event(
                self.logger,
                level=logging.INFO,
                action="schedule.started",
                message="Scheduler started",
                extra={"jobs": self.identities},
            )

    def shutdown(self, wait: bool = True) -> None:
        self._backend.remove_all_jobs()
        if self.running:
            self._backend.shutdown(wait=wait)
            log_event(
                self.logger,
                level=logging.INFO,
                action="schedule.stopped",
                message="Scheduler stopped",
            )
        with self._lock:
            self._jobs.clear()

    def __enter__(self) -> "Scheduler":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def schedule(
        self,
        interval: str | int | float | timedelta,
        identity: str,
        action: Action,
    ) -> None:
        """Fire *action* every *interval* under the deduplication key *identity*.

        Raises :class:`DuplicateIdentityError` while *identity* is scheduled.
        """

        if not identity:
            raise ValueError("identity must not be empty")
        every = parse_interval(interval)

        with self._lock:
            if identity in self._jobs:
                raise DuplicateIdentityError(f"Job already scheduled: {identity}")
            self._jobs[identity] = self._backend.add_job(
                self._fire,
                trigger=IntervalTrigger(seconds=every.total_seconds(), timezone=timezone.utc),
                args=(identity, action),
                id=identity,
                name=identity,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=self.misfire_grace_time,
            )

        log_event(
            self.logger,
            level=logging.INFO,
            action="schedule.added",
            message=f"Scheduled {identity} every {every.total_seconds():g}s",
            extra={"identity": identity, "interval_seconds": every.total_seconds()},
        )

    def cancel(self, identity: str) -> bool:
        """Retire *identity*; returns ``False`` if it was not scheduled."""

        with self._lock:
            if self._jobs.pop(identity, None) is None:
                return False
        self._backend.remove_job(identity)
        log_event(
            self.logger,
            level=logging.INFO,
            action="schedule.cancelled",
            message=f"Cancelled {identity}",
            extra={"identity": identity},
        )
        return True

    def _fire(self, identity: str, action: Action) -> None:
        started = time.monotonic()
        try:
            result = action()
        except PersistenceError as exc:
            log_event(
                self.logger,
                level=logging.WARNING,
                action="schedule.firing_failed",
                message=f"Firing of {identity} abandoned: {exc}",
                duration_ms=(time.monotonic() - started) * 1000,
                extra={"identity": identity, "error": repr(exc)},
            )
            return
        except Exception as exc:
            log_event(
                self.logger,
                level=logging.ERROR,
                action="schedule.firing_error",
                message=f"Firing of {identity} raised an exception",
                duration_ms=(time.monotonic() - started) * 1000,
                extra={"identity": identity, "error": repr(exc)},
            )
            return

        log_event(
            self.logger,
            level=logging.INFO,
            action="schedule.fired",
            message=f"Fired {identity}",
            task_id=result.id if isinstance(result, Task) else None,
            duration_ms=(time.monotonic() - started) * 1000,
            extra={"identity": identity},
        )


def create_task_action(store: TaskStore, clock: Clock | None = None) -> Callable[[], Task]:
    """Return an action that records one task stamped with the firing time."""

    now = clock or _utcnow

    def record_task() -> Task:
        fired_at = now()
        with store.transaction() as tx:
            return tx.create(fired_at)

    return record_task


def schedule_task_creation(
    scheduler: Scheduler,
    store: TaskStore,
    options: ScheduleOptions | None = None,
) -> None:
    """Schedule periodic task creation using *options* (default ``10s`` / ``task-job``)."""

    options = options or ScheduleOptions()
    scheduler.schedule(options.interval, options.identity, create_task_action(store))


__all__ = [
    "DuplicateIdentityError",
    "Scheduler",
    "create_task_action",
    "schedule_task_creation",
]
