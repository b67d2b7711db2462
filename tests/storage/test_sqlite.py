"""SQLite-specific backend tests."""

import sqlite3

import pytest

from taskstore.core.models import Task
from taskstore.storage.backends.base import HealthChecker, TaskQueries
from taskstore.storage.backends.sqlite import SQLiteBackend
from taskstore.storage.exceptions import ConnectionFailedError, StorageError


@pytest.fixture
def db_path(temp_dir):
    return temp_dir / "tasks.db"


@pytest.fixture
def backend(db_path):
    store = SQLiteBackend(db_path)
    yield store
    store.close()


def test_creates_schema_and_indexes(backend, db_path):
    conn = sqlite3.connect(str(db_path))
    try:
        tables = {
            row[0]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
        indexes = {
            row[0]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type='index'")
        }
    finally:
        conn.close()

    assert "tasks" in tables
    assert {
        "idx_tasks_due_date",
        "idx_tasks_done",
        "idx_tasks_created_at",
        "idx_tasks_done_due_date",
    } <= indexes


def test_schema_creation_is_idempotent(backend, db_path, buy_milk):
    backend.create(buy_milk)
    backend.close()

    reopened = SQLiteBackend(db_path)
    try:
        assert reopened.get_by_id("t1") == buy_milk
    finally:
        reopened.close()


def test_null_due_date_stored_as_null(backend, db_path):
    backend.create(Task(id="x", title="No due date"))

    conn = sqlite3.connect(str(db_path))
    try:
        (due_date,) = conn.execute("SELECT due_date FROM tasks WHERE id = 'x'").fetchone()
    finally:
        conn.close()

    assert due_date is None


def test_capabilities(backend):
    assert isinstance(backend, HealthChecker)
    assert not isinstance(backend, TaskQueries)


def test_health_check_passes(backend):
    backend.health_check()


def test_closed_backend_reports_connection_failure(backend):
    backend.close()

    with pytest.raises(ConnectionFailedError):
        backend.health_check()
    with pytest.raises(ConnectionFailedError):
        backend.get_all()


def test_unopenable_path_fails_construction(temp_dir):
    blocker = temp_dir / "file"
    blocker.write_text("not a directory")

    with pytest.raises(ConnectionFailedError) as exc_info:
        SQLiteBackend(blocker / "tasks.db")

    assert exc_info.value.backend == "sqlite"


def test_other_integrity_errors_become_storage_errors(backend, buy_milk):
    backend.create(buy_milk)

    with pytest.raises(StorageError) as exc_info:
        backend._execute(
            "INSERT INTO tasks (id, title, done, created_at) VALUES (?, ?, ?, ?)",
            ("t2", None, False, "2024-01-01T00:00:00.000000+00:00"),
        )

    assert isinstance(exc_info.value.__cause__, sqlite3.IntegrityError)
    assert [t.id for t in backend.get_all()] == [buy_milk.id]


def test_not_null_violation_on_update(backend, buy_milk):
    backend.create(buy_milk)

    with pytest.raises(StorageError) as exc_info:
        backend.update(buy_milk.replace(title=None))

    assert isinstance(exc_info.value.__cause__, sqlite3.IntegrityError)
    assert backend.get_by_id(buy_milk.id).title == "Buy milk"
