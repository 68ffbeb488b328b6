"""Filesystem helpers used by scheduler-watcher."""
from __future__ import annotations

from pathlib import Path


def ensure_directory(path: Path) -> Path:
    """Ensure that *path* exists as a directory and return it."""

    path.mkdir(parents=True, exist_ok=True)
    return path


def resolve_directory(path: str | Path) -> Path:
    """Expand ``~`` and make *path* absolute without requiring it to exist."""

    return Path(path).expanduser().absolute()


__all__ = ["ensure_directory", "resolve_directory"]
