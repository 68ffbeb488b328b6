"""Shared type definitions for the watcher subsystem."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class ChangeKind(str, Enum):
    """Directory entry changes the watcher reports."""

    CREATED = "created"
    DELETED = "deleted"
    MODIFIED = "modified"


ALL_KINDS: frozenset[ChangeKind] = frozenset(ChangeKind)


@dataclass(slots=True)
class ChangeEvent:
    """A single filesystem change inside a watched directory.

    ``path`` is relative to ``directory``. ``count`` is the number of identical
    back-to-back notifications folded into this event.
    """

    kind: ChangeKind
    path: Path
    directory: Path
    is_directory: bool = False
    timestamp: float = field(default_factory=time.time)
    count: int = 1

    @property
    def absolute_path(self) -> Path:
        return self.directory / self.path

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "path": str(self.path),
            "directory": str(self.directory),
            "is_directory": self.is_directory,
            "count": self.count,
        }


class WatchError(Exception):
    """Base class for watcher failures."""


class WatchRegistrationError(WatchError):
    """Registering a directory failed; fatal for the watcher."""


class PathNotFoundError(WatchRegistrationError):
    """The directory to watch does not exist."""


class UnsupportedError(WatchRegistrationError):
    """The notification backend cannot watch the given path."""


class TransientWatchError(WatchError):
    """A poll cycle failed; the next cycle may succeed."""


class WatchInvalidatedError(WatchError):
    """The watched directory went away and the watch can no longer be re-armed."""


__all__ = [
    "ALL_KINDS",
    "ChangeEvent",
    "ChangeKind",
    "PathNotFoundError",
    "TransientWatchError",
    "UnsupportedError",
    "WatchError",
    "WatchInvalidatedError",
    "WatchRegistrationError",
]
