"""Core dataclasses shared across scheduler-watcher modules."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone


def as_utc(moment: datetime) -> datetime:
    """Return *moment* as an aware UTC datetime; naive values are taken as UTC."""

    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


@dataclass(frozen=True, slots=True)
class Task:
    """A persisted task entry. Never updated once created."""

    id: int
    created_at: datetime

    def to_dict(self) -> dict[str, object]:
        """Serialize the task for JSON output."""

        return {
            "id": self.id,
            "createdAt": self.created_at.isoformat(),
        }


__all__ = ["Task", "as_utc"]
