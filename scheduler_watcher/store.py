"""SQLite backed task store."""
from __future__ import annotations

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from .models import Task, as_utc
from .utils.fs import ensure_directory

LOGGER = logging.getLogger("scheduler_watcher.store")

DEFAULT_DB_PATH = Path("~/.scheduler_watcher/tasks.db")


class PersistenceError(RuntimeError):
    """The storage layer failed to read or write tasks."""


class TaskTransaction:
    """Operations that share one atomic unit of work."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def create(self, created_at: datetime | None = None) -> Task:
        """Insert a task stamped with *created_at* (default: now, UTC)."""

        moment = as_utc(created_at) if created_at is not None else datetime.now(timezone.utc)
        cursor = self._conn.execute(
            "INSERT INTO TASKS(created_at) VALUES(?)",
            (moment.isoformat(),),
        )
        return Task(id=int(cursor.lastrowid), created_at=moment)


class TaskStore:
    """Append-only store of :class:`Task` records.

    One connection is shared between threads and guarded by a re-entrant
    lock; every write goes through :meth:`transaction`.
    """

    def __init__(self, db_path: str | os.PathLike[str] | None = None) -> None:
        self.db_path = Path(db_path or DEFAULT_DB_PATH).expanduser()
        self._lock = threading.RLock()
        try:
            ensure_directory(self.db_path.parent)
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._initialize_schema()
        except (OSError, sqlite3.Error) as exc:
            raise PersistenceError(f"Cannot open task store {self.db_path}: {exc}") from exc
        LOGGER.debug("Task store ready at %s", self.db_path)

    # -- public API -----------------------------------------------------
    @contextmanager
    def transaction(self) -> Iterator[TaskTransaction]:
        """Atomic unit of work: commits on success, rolls back on any error."""

        with self._lock:
            try:
                with self._conn:
                    yield TaskTransaction(self._conn)
            except sqlite3.Error as exc:
                raise PersistenceError(f"Task store write failed: {exc}") from exc

    def create(self, created_at: datetime | None = None) -> Task:
        """Persist and return a new task."""

        with self.transaction() as tx:
            return tx.create(created_at)

    def get(self, task_id: int) -> Task | None:
        row = self._fetchone("SELECT id, created_at FROM TASKS WHERE id = ?", (task_id,))
        return self._row_to_task(row) if row is not None else None

    def list_all(self) -> list[Task]:
        """Return every task ordered by id."""

        with self._lock:
            try:
                rows = self._conn.execute("SELECT id, created_at FROM TASKS ORDER BY id").fetchall()
            except sqlite3.Error as exc:
                raise PersistenceError(f"Task store read failed: {exc}") from exc
        return [self._row_to_task(row) for row in rows]

    def count(self) -> int:
        row = self._fetchone("SELECT COUNT(*) AS total FROM TASKS", ())
        return int(row["total"]) if row is not None else 0

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "TaskStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- internal helpers -----------------------------------------------
    def _initialize_schema(self) -> None:
        with self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS TASKS (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    created_at TEXT NOT NULL
                )
                """
            )

    def _fetchone(self, query: str, params: tuple[object, ...]) -> sqlite3.Row | None:
        with self._lock:
            try:
                return self._conn.execute(query, params).fetchone()
            except sqlite3.Error as exc:
                raise PersistenceError(f"Task store read failed: {exc}") from exc

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(id=int(row["id"]), created_at=as_utc(datetime.fromisoformat(row["created_at"])))


__all__ = ["DEFAULT_DB_PATH", "PersistenceError", "TaskStore", "TaskTransaction"]
