"""Poll loop that reports changes in one watched directory."""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable

from .logger import LOGGER_NAME, configure_logging, log_event
from .utils.fs import resolve_directory
from .watcher.event_source import EventSource, RegistrationHandle
from .watcher.types import (
    ALL_KINDS,
    ChangeEvent,
    TransientWatchError,
    UnsupportedError,
    WatchError,
    WatchInvalidatedError,
)

WATCHER_LOGGER_NAME = "scheduler_watcher.watcher"

ChangeSink = Callable[[ChangeEvent], None]


def logging_sink(logger: logging.Logger) -> ChangeSink:
    """Return a sink that writes each event to *logger*."""

    def report(event: ChangeEvent) -> None:
        log_event(
            logger,
            level=logging.INFO,
            action="watch.event",
            message=f"Event kind = {event.kind.value}, Event.context = {event.path}",
            extra=event.to_dict(),
        )

    return report


class DirectoryWatcher:
    """Drive an :class:`EventSource` and report every change to a sink.

    Registration happens synchronously in :meth:`start` / :meth:`run`, so a
    missing or unwatchable directory fails the caller straight away. After
    that the loop waits up to ``poll_interval`` seconds per cycle, reports
    events in arrival order and re-arms the watch. A failed cycle is logged
    and skipped; a directory that disappears halts the loop with
    :class:`WatchInvalidatedError`. A watcher stopped with :meth:`stop` can be
    started again; it then registers the directory afresh.
    """

    def __init__(
        self,
        directory: str | Path,
        sink: ChangeSink | None = None,
        *,
        poll_interval: float = 0.5,
        source: EventSource | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if poll_interval < 0:
            raise ValueError("poll_interval must not be negative")

        self.directory = resolve_directory(directory)
        self.poll_interval = poll_interval
        self.logger = logger or logging.getLogger(WATCHER_LOGGER_NAME)
        if not logging.getLogger(LOGGER_NAME).handlers:
            configure_logging()
        self.sink = sink or logging_sink(self.logger)
        self.source = source or EventSource(logger=self.logger)
        self._owns_source = source is None
        self.error: WatchError | None = None

        self._handle: RegistrationHandle | None = None
        self._stop_event = threading.Event()
        self._worker: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def handle(self) -> RegistrationHandle | None:
        return self._handle

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self) -> None:
        """Register the directory and run the loop on a background thread."""

        with self._lock:
            if self.is_running:
                return
            self._register()
            self._stop_event.clear()
            self._worker = threading.Thread(target=self._run, name="DirectoryWatcher", daemon=True)
            self._worker.start()

    def stop(self) -> None:
        """Stop the loop and release the watch."""

        with self._lock:
            self._stop_event.set()
            worker = self._worker
            if worker and worker.is_alive() and worker is not threading.current_thread():
                worker.join()
            self._worker = None
            self.source.close()
            self._handle = None

    def run(self) -> None:
        """Run the loop in the calling thread until :meth:`stop` is called.

        Raises :class:`WatchInvalidatedError` when the directory goes away and
        :class:`WatchError` when the loop fails for any other reason.
        """

        self._register()
        self._stop_event.clear()
        self._run()
        if self.error is not None:
            raise self.error

    def run_once(self) -> int:
        """Run a single poll cycle and return the number of events reported."""

        handle = self._register()
        try:
            events = self.source.poll_pending(timeout=self.poll_interval)
        except TransientWatchError as exc:
            log_event(
                self.logger,
                level=logging.WARNING,
                action="watch.poll_error",
                message="Poll cycle failed; retrying",
                extra={"path": str(handle.path), "error": repr(exc)},
            )
            events = []
            self._stop_event.wait(self.poll_interval)

        for event in events:
            self._report(event)
        if self._stop_event.is_set():
            return len(events)

        if events or handle.signalled:
            if not self.source.acknowledge(handle):
                raise WatchInvalidatedError(
                    f"Watch on {handle.path} is no longer valid; the directory was removed or moved"
                )
        return len(events)

    def _register(self) -> RegistrationHandle:
        if self._handle is None:
            if self.source.closed:
                if not self._owns_source:
                    raise UnsupportedError("Watcher was stopped and its event source is closed")
                self.source = EventSource(logger=self.logger)
            self._handle = self.source.register(self.directory, ALL_KINDS)
        return self._handle

    def _run(self) -> None:
        self.error = None
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except WatchError as exc:
                self._halt(exc)
                break
            except Exception as exc:
                failure = WatchError(f"Watch loop failed: {exc!r}")
                failure.__cause__ = exc
                self._halt(failure)
                break

    def _halt(self, error: WatchError) -> None:
        self.error = error
        log_event(
            self.logger,
            level=logging.ERROR,
            action="watch.halted",
            message=str(error),
            extra={"path": str(self.directory), "error": repr(error.__cause__ or error)},
        )

    def _report(self, event: ChangeEvent) -> None:
        try:
            self.sink(event)
        except Exception as exc:
            log_event(
                self.logger,
                level=logging.ERROR,
                action="watch.sink_error",
                message="Change sink raised an exception",
                extra={"error": repr(exc), "path": str(event.path)},
            )


__all__ = ["ChangeSink", "DirectoryWatcher", "logging_sink"]
