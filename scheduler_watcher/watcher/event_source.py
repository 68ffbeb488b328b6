"""Native directory change notifications via :mod:`watchdog`.

Each registered directory gets its own ``Observer`` (inotify on Linux,
FSEvents on macOS, ReadDirectoryChangesW on Windows, kqueue on BSD). The
observer thread translates raw notifications into :class:`ChangeEvent`
objects and buffers them; :meth:`EventSource.poll_pending` hands them out in
arrival order.
"""
from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from ..logger import log_event
from .event_queue import PendingEvents
from .types import (
    ALL_KINDS,
    ChangeEvent,
    ChangeKind,
    PathNotFoundError,
    TransientWatchError,
    UnsupportedError,
)

LOGGER_NAME = "scheduler_watcher.watcher"

_KIND_BY_EVENT_TYPE = {
    EVENT_TYPE_CREATED: ChangeKind.CREATED,
    EVENT_TYPE_DELETED: ChangeKind.DELETED,
    EVENT_TYPE_MODIFIED: ChangeKind.MODIFIED,
}

_JOIN_TIMEOUT = 5.0


@dataclass(eq=False)
class RegistrationHandle:
    """A directory registered with an :class:`EventSource`.

    ``signalled`` is set when events arrive and cleared by
    :meth:`EventSource.acknowledge`. ``valid`` turns false for good once the
    directory itself is deleted or moved away.
    """

    path: Path
    kinds: frozenset[ChangeKind]
    observer: Any = field(repr=False)
    signalled: bool = False
    valid: bool = True


class _HandleEventHandler(FileSystemEventHandler):
    """Forward every watchdog event for one handle to its source."""

    def __init__(self, source: "EventSource", handle_path: Path) -> None:
        super().__init__()
        self._source = source
        self._handle_path = handle_path

    def on_any_event(self, event: FileSystemEvent) -> None:
        handle = self._source._handles.get(self._handle_path)
        if handle is not None:
            self._source.ingest(handle, event)


class EventSource:
    """Buffer filesystem changes for registered directories."""

    def __init__(
        self,
        *,
        observer_factory: Callable[[], Any] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._observer_factory = observer_factory or Observer
        self._pending = PendingEvents()
        self._handles: dict[Path, RegistrationHandle] = {}
        self._errors: list[BaseException] = []
        self._lock = threading.RLock()
        self._closed = False
        self.logger = logger or logging.getLogger(LOGGER_NAME)

    @property
    def handles(self) -> list[RegistrationHandle]:
        with self._lock:
            return list(self._handles.values())

    @property
    def closed(self) -> bool:
        return self._closed

    def register(
        self,
        path: str | Path,
        kinds: Iterable[ChangeKind] = ALL_KINDS,
    ) -> RegistrationHandle:
        """Start watching the direct children of directory *path*.

        Raises :class:`PathNotFoundError` when *path* does not exist and
        :class:`UnsupportedError` when it cannot be watched. Nothing stays
        registered after a failure.
        """

        wanted = frozenset(kinds)
        if not wanted:
            raise UnsupportedError("At least one change kind must be requested")

        directory = Path(path).expanduser()
        if not directory.exists():
            raise PathNotFoundError(f"Watch directory does not exist: {directory}")
        directory = directory.resolve()
        if not directory.is_dir():
            raise UnsupportedError(f"Watch target is not a directory: {directory}")

        with self._lock:
            if self._closed:
                raise UnsupportedError("Event source is closed")
            existing = self._handles.get(directory)
            if existing is not None:
                return existing

            observer = self._observer_factory()
            handle = RegistrationHandle(path=directory, kinds=wanted, observer=observer)
            try:
                observer.schedule(_HandleEventHandler(self, directory), str(directory), recursive=False)
                observer.start()
            except OSError as exc:
                _discard_observer(observer)
                raise UnsupportedError(f"Cannot watch {directory}: {exc}") from exc
            self._handles[directory] = handle

        log_event(
            self.logger,
            level=logging.INFO,
            action="watch.registered",
            message=f"Watching {directory}",
            extra={"path": str(directory), "kinds": sorted(kind.value for kind in wanted)},
        )
        return handle

    def poll_pending(self, timeout: float = 0.0) -> list[ChangeEvent]:
        """Return every buffered event in arrival order, possibly none.

        With ``timeout=0`` the call never blocks; otherwise it waits at most
        *timeout* seconds for the first event. Raises
        :class:`TransientWatchError` when notifications failed since the last
        poll; buffered events are then kept for the next call.
        """

        self._check_observers()
        with self._lock:
            errors, self._errors = self._errors, []
        if errors:
            raise TransientWatchError(
                f"{len(errors)} notification(s) could not be processed: {errors[0]!r}"
            ) from errors[0]
        return self._pending.drain(timeout)

    def acknowledge(self, handle: RegistrationHandle) -> bool:
        """Re-arm *handle* after its events were drained.

        Returns ``False`` when the handle is no longer valid.
        """

        with self._lock:
            if self._handles.get(handle.path) is not handle:
                raise ValueError(f"Handle is not registered with this source: {handle.path}")
            handle.signalled = False
            return handle.valid

    def ingest(self, handle: RegistrationHandle, event: FileSystemEvent) -> None:
        """Translate a raw watchdog *event* for *handle* and buffer the result.

        Called from the observer thread; also handy for feeding events by hand.
        """

        try:
            changes = self._translate(handle, event)
        except Exception as exc:  # keep the observer thread alive
            with self._lock:
                self._errors.append(exc)
                handle.signalled = True
            return

        for change in changes:
            if change.kind in handle.kinds:
                self._pending.add(change)
                with self._lock:
                    handle.signalled = True

    def close(self) -> None:
        """Stop every observer and release the OS watch handles."""

        with self._lock:
            if self._closed:
                return
            self._closed = True
            handles = list(self._handles.values())
            self._handles.clear()

        for handle in handles:
            handle.valid = False
            _discard_observer(handle.observer)
            log_event(
                self.logger,
                level=logging.INFO,
                action="watch.released",
                message=f"Stopped watching {handle.path}",
                extra={"path": str(handle.path)},
            )
        self._pending.clear()

    def __enter__(self) -> "EventSource":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _check_observers(self) -> None:
        with self._lock:
            for handle in self._handles.values():
                if handle.valid and not handle.observer.is_alive():
                    handle.valid = False
                    handle.signalled = True
                    log_event(
                        self.logger,
                        level=logging.ERROR,
                        action="watch.observer_died",
                        message=f"Notification thread for {handle.path} stopped",
                        extra={"path": str(handle.path)},
                    )

    def _translate(self, handle: RegistrationHandle, event: FileSystemEvent) -> list[ChangeEvent]:
        src = Path(os.fsdecode(event.src_path))
        is_directory = bool(event.is_directory)

        if event.event_type == EVENT_TYPE_MOVED:
            if src == handle.path:
                self._invalidate(handle)
                return []
            changes: list[ChangeEvent] = []
            old = _child_path(handle.path, src)
            if old is not None:
                changes.append(ChangeEvent(ChangeKind.DELETED, old, handle.path, is_directory))
            new = _child_path(handle.path, Path(os.fsdecode(event.dest_path)))
            if new is not None:
                changes.append(ChangeEvent(ChangeKind.CREATED, new, handle.path, is_directory))
            return changes

        kind = _KIND_BY_EVENT_TYPE.get(event.event_type)
        if kind is None:
            return []
        if src == handle.path:
            if kind is ChangeKind.DELETED:
                self._invalidate(handle)
            return []
        relative = _child_path(handle.path, src)
        if relative is None:
            return []
        return [ChangeEvent(kind, relative, handle.path, is_directory)]

    def _invalidate(self, handle: RegistrationHandle) -> None:
        with self._lock:
            handle.valid = False
            handle.signalled = True
        log_event(
            self.logger,
            level=logging.WARNING,
            action="watch.invalidated",
            message=f"Watched directory went away: {handle.path}",
            extra={"path": str(handle.path)},
        )


def _child_path(root: Path, candidate: Path) -> Path | None:
    """Return *candidate* relative to *root* when it is a direct child."""

    try:
        relative = candidate.relative_to(root)
    except ValueError:
        return None
    if len(relative.parts) != 1:
        return None
    return relative


def _discard_observer(observer: Any) -> None:
    observer.stop()
    if observer.is_alive():
        observer.join(timeout=_JOIN_TIMEOUT)


__all__ = ["EventSource", "RegistrationHandle"]
