"""Tests for storage backend implementations.

Every backend must satisfy the same contract, so the behavior is written
once in :class:`BackendContract` and each backend subclasses it with its
own ``backend`` fixture. Backends that need a live server only run when the
matching environment variable points at one.
"""

import os
import threading
from datetime import UTC, datetime, timedelta, timezone

import pytest

from taskstore.core.models import Task
from taskstore.storage.exceptions import (
    StorageError,
    TaskAlreadyExistsError,
    TaskNotFoundError,
)

POSTGRES_URL = os.environ.get("TASKSTORE_TEST_POSTGRES_URL")
MYSQL_URL = os.environ.get("TASKSTORE_TEST_MYSQL_URL")
MONGODB_URI = os.environ.get("TASKSTORE_TEST_MONGODB_URI")


class BackendContract:
    """Contract tests that all backends must pass."""

    def test_new_store_is_empty(self, backend):
        assert backend.get_all() == []

    def test_buy_milk_scenario(self, backend, buy_milk):
        """Create without a due date, complete and schedule it, then delete."""
        task = buy_milk.replace(due_date=None)
        backend.create(task)
        assert backend.get_all() == [task]
        assert backend.get_by_id("t1").due_date is None

        tomorrow = task.created_at + timedelta(days=1)
        backend.update(task.replace(done=True, due_date=tomorrow))
        stored = backend.get_by_id("t1")
        assert stored.done is True
        assert stored.due_date == tomorrow
        assert stored.title == "Buy milk"
        assert stored.created_at == task.created_at
        assert backend.get_all() == [stored]

        backend.delete("t1")
        with pytest.raises(TaskNotFoundError):
            backend.get_by_id("t1")
        assert backend.get_all() == []

    def test_rejected_update_keeps_stored_task(self, backend, buy_milk):
        backend.create(buy_milk)

        with pytest.raises(StorageError):
            backend.update(buy_milk.replace(title=None))

        assert backend.get_by_id("t1").title == "Buy milk"

    def test_round_trip_preserves_fields(self, backend, sample_tasks):
        for task in sample_tasks:
            backend.create(task)

        for task in sample_tasks:
            stored = backend.get_by_id(task.id)
            assert stored == task
            assert stored.created_at.utcoffset() == timedelta(0)

    def test_get_all_returns_every_task(self, populated, sample_tasks):
        tasks = populated.get_all()
        assert len(tasks) == len(sample_tasks)
        assert {t.id for t in tasks} == {t.id for t in sample_tasks}

    def test_absent_due_date_stays_absent(self, backend):
        task = Task(
            id="no-due",
            title="Someday",
            created_at=datetime(2024, 5, 1, tzinfo=UTC),
        )
        backend.create(task)

        assert backend.get_by_id("no-due").due_date is None
        assert backend.get_all()[0].due_date is None

    def test_duplicate_create_fails(self, backend, buy_milk):
        backend.create(buy_milk)

        with pytest.raises(TaskAlreadyExistsError) as exc_info:
            backend.create(buy_milk.replace(title="Other title"))

        assert exc_info.value.task_id == "t1"
        assert backend.get_by_id("t1").title == "Buy milk"

    def test_update_is_full_replacement(self, backend, buy_milk):
        backend.create(buy_milk)

        backend.update(buy_milk.replace(title="Buy oat milk", due_date=None))

        stored = backend.get_by_id("t1")
        assert stored.title == "Buy oat milk"
        assert stored.due_date is None

    def test_update_stores_created_at_as_given(self, backend, buy_milk):
        backend.create(buy_milk)
        changed = datetime(2023, 12, 31, 23, 0, tzinfo=UTC)

        backend.update(buy_milk.replace(created_at=changed))

        assert backend.get_by_id("t1").created_at == changed

    def test_update_missing_task_fails(self, backend, buy_milk):
        with pytest.raises(TaskNotFoundError) as exc_info:
            backend.update(buy_milk)
        assert exc_info.value.task_id == "t1"

    def test_delete_twice_fails(self, backend, buy_milk):
        backend.create(buy_milk)
        backend.delete("t1")

        with pytest.raises(TaskNotFoundError):
            backend.delete("t1")
        with pytest.raises(TaskNotFoundError):
            backend.delete("t1")

    def test_get_missing_task_fails(self, backend):
        with pytest.raises(TaskNotFoundError, match="missing"):
            backend.get_by_id("missing")

    def test_delete_leaves_other_tasks(self, populated):
        populated.delete("b")

        assert {t.id for t in populated.get_all()} == {"a", "c", "d"}

    def test_non_ascii_title(self, backend):
        task = Task(
            id="unicode",
            title="Café ☕ – 日本語のタスク",
            created_at=datetime(2024, 6, 1, tzinfo=UTC),
        )
        backend.create(task)

        assert backend.get_by_id("unicode").title == "Café ☕ – 日本語のタスク"

    def test_offset_timestamps_compare_as_instants(self, backend):
        plus_two = timezone(timedelta(hours=2))
        task = Task(
            id="offset",
            title="Call Berlin",
            created_at=datetime(2024, 7, 1, 11, 0, tzinfo=plus_two),
            due_date=datetime(2024, 7, 2, 11, 0, tzinfo=plus_two),
        )
        backend.create(task)

        stored = backend.get_by_id("offset")
        assert stored.created_at == datetime(2024, 7, 1, 9, 0, tzinfo=UTC)
        assert stored.due_date == datetime(2024, 7, 2, 9, 0, tzinfo=UTC)

    def test_concurrent_reads(self, populated, sample_tasks):
        """Readers on several threads all see the full collection."""
        errors = []
        results = []

        def reader():
            try:
                for _ in range(10):
                    results.append(len(populated.get_all()))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert results == [len(sample_tasks)] * 40

    def test_context_manager_returns_store(self, backend, buy_milk):
        with backend as store:
            store.create(buy_milk)
        assert store is backend


class TestJSONFileBackend(BackendContract):
    """JSON file backend."""

    @pytest.fixture
    def backend(self, temp_dir):
        from taskstore.storage.backends import JSONFileBackend

        store = JSONFileBackend(temp_dir / "tasks.json")
        yield store
        store.close()

    def test_get_all_preserves_insertion_order(self, populated, sample_tasks):
        assert [t.id for t in populated.get_all()] == [t.id for t in sample_tasks]

    def test_concurrent_writes(self, backend):
        """Writers on several threads never lose an update."""
        errors = []

        def writer(prefix, count):
            try:
                for i in range(count):
                    backend.create(Task(id=f"{prefix}-{i}", title=f"task {i}"))
            except Exception as e:
                errors.append(e)

        threads = [
            threading.Thread(target=writer, args=(f"thread{i}", 10)) for i in range(3)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(backend.get_all()) == 30


class TestSQLiteBackend(BackendContract):
    """Embedded SQLite backend."""

    @pytest.fixture
    def backend(self, temp_dir):
        from taskstore.storage.backends import SQLiteBackend

        store = SQLiteBackend(temp_dir / "tasks.db")
        yield store
        store.close()

    def test_get_all_newest_first(self, populated):
        assert [t.id for t in populated.get_all()] == ["d", "c", "b", "a"]

    def test_concurrent_writes(self, backend):
        errors = []

        def writer(prefix, count):
            try:
                for i in range(count):
                    backend.create(Task(id=f"{prefix}-{i}", title=f"task {i}"))
            except Exception as e:
                errors.append(e)

        threads = [
            threading.Thread(target=writer, args=(f"thread{i}", 10)) for i in range(3)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(backend.get_all()) == 30


class TestSQLServerBackend(BackendContract):
    """Client/server backend driven through SQLAlchemy's SQLite dialect."""

    @pytest.fixture
    def backend(self, temp_dir):
        from taskstore.storage.backends import SQLServerBackend

        store = SQLServerBackend(f"sqlite:///{temp_dir / 'server.db'}")
        yield store
        store.close()

    def test_get_all_newest_first(self, populated):
        assert [t.id for t in populated.get_all()] == ["d", "c", "b", "a"]


def _clean_sql_backend(url):
    from taskstore.storage.backends import SQLServerBackend
    from taskstore.storage.backends.sqlserver import tasks_table

    store = SQLServerBackend(url)
    with store.engine.begin() as conn:
        conn.execute(tasks_table.delete())
    return store


@pytest.mark.skipif(not POSTGRES_URL, reason="TASKSTORE_TEST_POSTGRES_URL not set")
class TestLivePostgres(BackendContract):
    """PostgreSQL server."""

    @pytest.fixture
    def backend(self):
        store = _clean_sql_backend(POSTGRES_URL)
        yield store
        store.close()

    def test_kind(self, backend):
        assert backend.kind == "postgresql"


@pytest.mark.skipif(not MYSQL_URL, reason="TASKSTORE_TEST_MYSQL_URL not set")
class TestLiveMySQL(BackendContract):
    """MySQL server."""

    @pytest.fixture
    def backend(self):
        store = _clean_sql_backend(MYSQL_URL)
        yield store
        store.close()

    def test_kind(self, backend):
        assert backend.kind == "mysql"


@pytest.mark.skipif(not MONGODB_URI, reason="TASKSTORE_TEST_MONGODB_URI not set")
class TestLiveMongo(BackendContract):
    """MongoDB server."""

    @pytest.fixture
    def backend(self):
        from taskstore.storage.backends import MongoBackend

        store = MongoBackend(MONGODB_URI, "taskstore_test", "tasks")
        store.collection.delete_many({})
        yield store
        store.close()

    def test_get_all_newest_first(self, populated):
        assert [t.id for t in populated.get_all()] == ["d", "c", "b", "a"]
