"""Ordered buffer of change events waiting to be polled."""
from __future__ import annotations

import threading
import time

from .types import ChangeEvent


class PendingEvents:
    """Hold events between the notification thread and the poll loop.

    Arrival order is preserved. An event identical in kind and path to the
    newest pending one is folded into it by bumping ``count``; anything else
    is appended, so a create followed by a delete stays two events.
    """

    def __init__(self) -> None:
        self._events: list[ChangeEvent] = []
        self._ready = threading.Condition(threading.Lock())

    def add(self, event: ChangeEvent) -> None:
        """Append *event*, merging it into the newest pending event if identical."""

        with self._ready:
            if self._events and self._same_change(self._events[-1], event):
                self._merge_events(self._events[-1], event)
            else:
                self._events.append(event)
            self._ready.notify_all()

    def drain(self, timeout: float = 0.0) -> list[ChangeEvent]:
        """Remove and return every pending event.

        Waits up to *timeout* seconds for the first event when the buffer is
        empty; a zero timeout never blocks.
        """

        deadline = time.monotonic() + timeout
        with self._ready:
            while not self._events:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return []
                self._ready.wait(remaining)
            drained = self._events
            self._events = []
            return drained

    def clear(self) -> None:
        """Discard buffered events."""

        with self._ready:
            self._events.clear()

    def __len__(self) -> int:
        with self._ready:
            return len(self._events)

    @staticmethod
    def _same_change(existing: ChangeEvent, new: ChangeEvent) -> bool:
        return (
            existing.kind is new.kind
            and existing.path == new.path
            and existing.directory == new.directory
        )

    @staticmethod
    def _merge_events(existing: ChangeEvent, new: ChangeEvent) -> None:
        existing.count += new.count
        existing.timestamp = new.timestamp
        existing.is_directory = new.is_directory


__all__ = ["PendingEvents"]
