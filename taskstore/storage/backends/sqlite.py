"""SQLite storage backend."""

import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from taskstore.core.models import Task, to_utc
from taskstore.storage.exceptions import (
    ConnectionFailedError,
    StorageError,
    TaskAlreadyExistsError,
    TaskNotFoundError,
)

from .base import HealthChecker, TaskStore

logger = logging.getLogger(__name__)

_DUPLICATE_KEY_ERRORS = {"SQLITE_CONSTRAINT_PRIMARYKEY", "SQLITE_CONSTRAINT_UNIQUE"}

_COLUMNS = "id, title, done, created_at, due_date"

SCHEMA = """
    CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        done BOOLEAN NOT NULL DEFAULT 0,
        created_at TIMESTAMP NOT NULL,
        due_date TIMESTAMP NULL
    );

    CREATE INDEX IF NOT EXISTS idx_tasks_due_date ON tasks(due_date);
    CREATE INDEX IF NOT EXISTS idx_tasks_done ON tasks(done);
    CREATE INDEX IF NOT EXISTS idx_tasks_created_at ON tasks(created_at);
    CREATE INDEX IF NOT EXISTS idx_tasks_done_due_date ON tasks(done, due_date);
"""


def _encode_timestamp(value: datetime | None) -> str | None:
    # Fixed-width UTC text so that ORDER BY on the column is chronological.
    if value is None:
        return None
    return to_utc(value).isoformat(timespec="microseconds")


def _decode_timestamp(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class SQLiteBackend(TaskStore, HealthChecker):
    """Embedded SQLite storage sharing one connection across threads."""

    kind = "sqlite"

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self._lock = threading.RLock()
        self.conn: sqlite3.Connection | None = None
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(
                str(self.db_path), check_same_thread=False, timeout=30.0
            )
            self.initialize()
        except (OSError, sqlite3.Error) as exc:
            if self.conn is not None:
                self.conn.close()
                self.conn = None
            raise ConnectionFailedError(self.kind, str(exc)) from exc
        logger.info("SQLite storage initialized at %s", self.db_path)

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the connection, ensuring it exists."""
        if self.conn is None:
            raise ConnectionFailedError(self.kind, "connection is closed")
        return self.conn

    def initialize(self) -> None:
        """Create the schema; safe to run against an existing database."""
        with self._lock:
            self.connection.execute("PRAGMA journal_mode=WAL")
            self.connection.executescript(SCHEMA)
            self.connection.commit()

    def create(self, task: Task) -> None:
        try:
            self._execute(
                f"INSERT INTO tasks ({_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                (
                    task.id,
                    task.title,
                    task.done,
                    _encode_timestamp(task.created_at),
                    _encode_timestamp(task.due_date),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise TaskAlreadyExistsError(task.id) from exc
        logger.debug("Created task %s", task.id)

    def get_all(self) -> list[Task]:
        rows = self._query(
            f"SELECT {_COLUMNS} FROM tasks ORDER BY created_at DESC, id", ()
        )
        return [self._row_to_task(row) for row in rows]

    def get_by_id(self, task_id: str) -> Task:
        rows = self._query(f"SELECT {_COLUMNS} FROM tasks WHERE id = ?", (task_id,))
        if not rows:
            raise TaskNotFoundError(task_id)
        return self._row_to_task(rows[0])

    def update(self, task: Task) -> None:
        cursor = self._execute(
            """
            UPDATE tasks
            SET title = ?, done = ?, created_at = ?, due_date = ?
            WHERE id = ?
            """,
            (
                task.title,
                task.done,
                _encode_timestamp(task.created_at),
                _encode_timestamp(task.due_date),
                task.id,
            ),
        )
        if cursor.rowcount == 0:
            raise TaskNotFoundError(task.id)
        logger.debug("Updated task %s", task.id)

    def delete(self, task_id: str) -> None:
        cursor = self._execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        if cursor.rowcount == 0:
            raise TaskNotFoundError(task_id)
        logger.debug("Deleted task %s", task_id)

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None

    def health_check(self) -> None:
        try:
            self._query("SELECT 1", ())
        except sqlite3.Error as exc:
            raise ConnectionFailedError(self.kind, str(exc)) from exc

    def _execute(self, sql: str, params: tuple) -> sqlite3.Cursor:
        with self._lock:
            try:
                cursor = self.connection.execute(sql, params)
                self.connection.commit()
                return cursor
            except sqlite3.IntegrityError as exc:
                self.connection.rollback()
                if getattr(exc, "sqlite_errorname", None) in _DUPLICATE_KEY_ERRORS:
                    raise
                raise StorageError(f"{self.kind} integrity error: {exc}") from exc
            except sqlite3.OperationalError as exc:
                self.connection.rollback()
                raise ConnectionFailedError(self.kind, str(exc)) from exc

    def _query(self, sql: str, params: tuple) -> list[tuple]:
        with self._lock:
            try:
                return self.connection.execute(sql, params).fetchall()
            except sqlite3.OperationalError as exc:
                raise ConnectionFailedError(self.kind, str(exc)) from exc

    @staticmethod
    def _row_to_task(row: tuple) -> Task:
        task_id, title, done, created_at, due_date = row
        return Task(
            id=task_id,
            title=title,
            done=bool(done),
            created_at=_decode_timestamp(created_at),
            due_date=_decode_timestamp(due_date),
        )
