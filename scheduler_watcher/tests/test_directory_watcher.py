"""Tests for :mod:`scheduler_watcher.directory_watcher`."""
from __future__ import annotations

import time
from pathlib import Path
from types import SimpleNamespace

import pytest
from watchdog.events import DirDeletedEvent, FileCreatedEvent, FileDeletedEvent, FileModifiedEvent

from scheduler_watcher.directory_watcher import DirectoryWatcher
from scheduler_watcher.watcher.event_source import EventSource
from scheduler_watcher.watcher.types import (
    ChangeEvent,
    ChangeKind,
    PathNotFoundError,
    UnsupportedError,
    WatchError,
    WatchInvalidatedError,
)


@pytest.fixture()
def watcher_factory(tmp_path: Path):
    created_watchers: list[DirectoryWatcher] = []

    def factory(**kwargs: object) -> DirectoryWatcher:
        events: list[ChangeEvent] = []

        sink = kwargs.pop("sink", events.append)
        directory = kwargs.pop("directory", tmp_path)
        kwargs.setdefault("poll_interval", 0.0)
        watcher = DirectoryWatcher(directory, sink, **kwargs)
        created_watchers.append(watcher)
        watcher._test_events = events  # type: ignore[attr-defined]
        return watcher

    yield factory

    for watcher in created_watchers:
        watcher.stop()


def collect_events(watcher: DirectoryWatcher) -> list[ChangeEvent]:
    return getattr(watcher, "_test_events")  # type: ignore[no-any-return]


def inject(watcher: DirectoryWatcher, event) -> None:
    assert watcher.handle is not None
    watcher.source.ingest(watcher.handle, event)


def wait_for_events(watcher: DirectoryWatcher, count: int, *, timeout: float = 2.0) -> list[ChangeEvent]:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        events = collect_events(watcher)
        if len(events) >= count:
            return events
        time.sleep(0.01)
    return collect_events(watcher)


def test_run_once_reports_events_in_order(watcher_factory) -> None:
    watcher = watcher_factory()
    assert watcher.run_once() == 0

    root = watcher.handle.path
    inject(watcher, FileCreatedEvent(str(root / "a.txt")))
    inject(watcher, FileModifiedEvent(str(root / "a.txt")))
    inject(watcher, FileDeletedEvent(str(root / "a.txt")))

    assert watcher.run_once() == 3
    assert [event.kind for event in collect_events(watcher)] == [
        ChangeKind.CREATED,
        ChangeKind.MODIFIED,
        ChangeKind.DELETED,
    ]
    assert watcher.handle.signalled is False
    assert watcher.run_once() == 0


def test_missing_directory_fails_on_start(watcher_factory, tmp_path: Path) -> None:
    watcher = watcher_factory(directory=tmp_path / "missing")

    with pytest.raises(PathNotFoundError):
        watcher.start()
    assert watcher.is_running is False
    assert watcher.source.handles == []

    with pytest.raises(PathNotFoundError):
        watcher.run()


def test_negative_poll_interval_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        DirectoryWatcher(tmp_path, lambda event: None, poll_interval=-1)


def test_sink_errors_do_not_stop_reporting(watcher_factory) -> None:
    received: list[str] = []

    def flaky_sink(event: ChangeEvent) -> None:
        received.append(event.path.name)
        if event.path.name == "first.txt":
            raise RuntimeError("sink down")

    watcher = watcher_factory(sink=flaky_sink)
    watcher.run_once()
    inject(watcher, FileCreatedEvent(str(watcher.handle.path / "first.txt")))
    inject(watcher, FileCreatedEvent(str(watcher.handle.path / "second.txt")))

    assert watcher.run_once() == 2
    assert received == ["first.txt", "second.txt"]


def test_transient_poll_error_is_contained(watcher_factory) -> None:
    watcher = watcher_factory()
    watcher.run_once()
    inject(watcher, SimpleNamespace(event_type="created", src_path=None, is_directory=False))
    inject(watcher, FileCreatedEvent(str(watcher.handle.path / "after.txt")))

    assert watcher.run_once() == 0
    assert watcher.run_once() == 1
    assert [event.path.name for event in collect_events(watcher)] == ["after.txt"]


def test_removed_directory_halts_run_once(watcher_factory) -> None:
    watcher = watcher_factory()
    watcher.run_once()
    inject(watcher, DirDeletedEvent(str(watcher.handle.path)))

    with pytest.raises(WatchInvalidatedError):
        watcher.run_once()


def test_background_loop_reports_and_stops(watcher_factory) -> None:
    watcher = watcher_factory(poll_interval=0.05)
    watcher.start()
    assert watcher.is_running is True

    inject(watcher, FileCreatedEvent(str(watcher.handle.path / "x")))
    inject(watcher, FileDeletedEvent(str(watcher.handle.path / "x")))

    events = wait_for_events(watcher, 2)
    assert [(event.kind, event.path.name) for event in events] == [
        (ChangeKind.CREATED, "x"),
        (ChangeKind.DELETED, "x"),
    ]

    handle = watcher.handle
    watcher.stop()
    assert watcher.is_running is False
    assert handle.valid is False


def test_background_loop_halts_when_directory_goes_away(watcher_factory) -> None:
    watcher = watcher_factory(poll_interval=0.05)
    watcher.start()
    inject(watcher, DirDeletedEvent(str(watcher.handle.path)))

    deadline = time.monotonic() + 2.0
    while watcher.is_running and time.monotonic() < deadline:
        time.sleep(0.01)

    assert watcher.is_running is False
    assert isinstance(watcher.error, WatchInvalidatedError)


def test_start_is_idempotent(watcher_factory) -> None:
    watcher = watcher_factory(poll_interval=0.05)
    watcher.start()
    worker = watcher._worker
    watcher.start()
    assert watcher._worker is worker


def test_restart_after_stop_registers_again(watcher_factory) -> None:
    watcher = watcher_factory(poll_interval=0.05)
    watcher.start()
    first_handle = watcher.handle
    watcher.stop()
    assert watcher.handle is None

    watcher.start()
    assert watcher.is_running is True
    assert watcher.handle is not first_handle
    assert watcher.handle.valid is True

    inject(watcher, FileCreatedEvent(str(watcher.handle.path / "late.txt")))
    events = wait_for_events(watcher, 1)
    assert [event.path.name for event in events] == ["late.txt"]
    assert watcher.error is None


def test_restart_with_closed_external_source_fails(watcher_factory) -> None:
    watcher = watcher_factory(source=EventSource())
    watcher.start()
    watcher.stop()

    with pytest.raises(UnsupportedError):
        watcher.start()
    assert watcher.is_running is False


def test_sink_may_stop_the_watcher(watcher_factory) -> None:
    received: list[str] = []
    holder: dict[str, DirectoryWatcher] = {}

    def stopping_sink(event: ChangeEvent) -> None:
        received.append(event.path.name)
        holder["watcher"].stop()

    watcher = watcher_factory(sink=stopping_sink, poll_interval=0.05)
    holder["watcher"] = watcher
    watcher.start()
    inject(watcher, FileCreatedEvent(str(watcher.handle.path / "last.txt")))

    deadline = time.monotonic() + 2.0
    while not received and time.monotonic() < deadline:
        time.sleep(0.01)
    worker = watcher._worker
    if worker is not None:
        worker.join(timeout=2.0)

    assert received == ["last.txt"]
    assert watcher.is_running is False
    assert watcher.error is None


def test_unexpected_loop_failure_is_recorded(watcher_factory, monkeypatch) -> None:
    watcher = watcher_factory(poll_interval=0.05)

    def broken_poll(timeout: float = 0.0):
        raise RuntimeError("notification backend crashed")

    monkeypatch.setattr(watcher.source, "poll_pending", broken_poll)
    watcher.start()

    deadline = time.monotonic() + 2.0
    while watcher.is_running and time.monotonic() < deadline:
        time.sleep(0.01)

    assert watcher.is_running is False
    assert isinstance(watcher.error, WatchError)
    assert isinstance(watcher.error.__cause__, RuntimeError)

    with pytest.raises(WatchError):
        watcher.run()
