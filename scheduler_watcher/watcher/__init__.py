"""Watcher subsystem for scheduler-watcher."""
from .event_queue import PendingEvents
from .event_source import EventSource, RegistrationHandle
from .types import (
    ALL_KINDS,
    ChangeEvent,
    ChangeKind,
    PathNotFoundError,
    TransientWatchError,
    UnsupportedError,
    WatchError,
    WatchInvalidatedError,
    WatchRegistrationError,
)

__all__ = [
    "ALL_KINDS",
    "ChangeEvent",
    "ChangeKind",
    "EventSource",
    "PathNotFoundError",
    "PendingEvents",
    "RegistrationHandle",
    "TransientWatchError",
    "UnsupportedError",
    "WatchError",
    "WatchInvalidatedError",
    "WatchRegistrationError",
]
