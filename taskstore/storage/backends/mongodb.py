"""MongoDB document storage backend."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

import pymongo
from pymongo import ASCENDING, DESCENDING, TEXT, IndexModel, MongoClient
from pymongo.errors import (
    CollectionInvalid,
    ConnectionFailure,
    DuplicateKeyError,
    PyMongoError,
)

from taskstore.core.models import Task, to_utc, utcnow
from taskstore.storage.exceptions import (
    ConnectionFailedError,
    StorageError,
    TaskAlreadyExistsError,
    TaskNotFoundError,
)

from .base import HealthChecker, TaskQueries, TaskStore

logger = logging.getLogger(__name__)

TASK_VALIDATOR = {
    "$jsonSchema": {
        "bsonType": "object",
        "required": ["id", "title", "done", "created_at"],
        "properties": {
            "id": {"bsonType": "string", "description": "task id, required"},
            "title": {"bsonType": "string", "description": "task title, required"},
            "done": {"bsonType": "bool", "description": "completion flag, required"},
            "created_at": {"bsonType": "date", "description": "creation time, required"},
            "due_date": {"bsonType": ["date", "null"], "description": "optional due date"},
        },
    }
}

TASK_INDEXES = [
    IndexModel([("id", ASCENDING)], unique=True, name="idx_tasks_id"),
    IndexModel([("created_at", DESCENDING)], name="idx_tasks_created_at"),
    IndexModel([("due_date", ASCENDING)], name="idx_tasks_due_date"),
    IndexModel([("done", ASCENDING)], name="idx_tasks_done"),
    IndexModel(
        [("done", ASCENDING), ("due_date", ASCENDING)], name="idx_tasks_done_due_date"
    ),
    IndexModel([("title", TEXT)], name="idx_tasks_title_text"),
]

_PROJECTION = {"_id": False}


def _to_document(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "done": task.done,
        "created_at": to_utc(task.created_at),
        "due_date": to_utc(task.due_date) if task.due_date is not None else None,
    }


def _from_document(doc: dict[str, Any]) -> Task:
    return Task(
        id=doc["id"],
        title=doc["title"],
        done=bool(doc["done"]),
        created_at=doc["created_at"],
        due_date=doc.get("due_date"),
    )


class MongoBackend(TaskStore, HealthChecker, TaskQueries):
    """One document per task in a schema-validated collection.

    ``connect_timeout`` bounds server selection and the initial ping;
    ``query_timeout`` bounds every later operation through
    :func:`pymongo.timeout`. Both are in seconds.
    """

    kind = "mongodb"

    def __init__(
        self,
        uri: str,
        database: str,
        collection: str = "tasks",
        *,
        connect_timeout: float = 10.0,
        query_timeout: float = 5.0,
        max_pool_size: int = 100,
        min_pool_size: int = 10,
        client: MongoClient | None = None,
    ):
        self.query_timeout = query_timeout
        self.client: MongoClient | None = client
        try:
            if self.client is None:
                timeout_ms = int(connect_timeout * 1000)
                self.client = MongoClient(
                    uri,
                    serverSelectionTimeoutMS=timeout_ms,
                    connectTimeoutMS=timeout_ms,
                    maxPoolSize=max_pool_size,
                    minPoolSize=min_pool_size,
                    tz_aware=True,
                )
            with pymongo.timeout(connect_timeout):
                self.client.admin.command("ping")
                self.database = self.client[database]
                self.collection = self._ensure_collection(collection)
                self.collection.create_indexes(TASK_INDEXES)
        except PyMongoError as exc:
            if self.client is not None and client is None:
                self.client.close()
            raise ConnectionFailedError(self.kind, str(exc)) from exc
        logger.info(
            "MongoDB storage initialized (database=%s, collection=%s)",
            database,
            collection,
        )

    def _ensure_collection(self, name: str):
        """Create the validated collection unless it already exists."""
        if name not in self.database.list_collection_names(filter={"name": name}):
            try:
                self.database.create_collection(
                    name, validator=TASK_VALIDATOR, validationLevel="moderate"
                )
            except CollectionInvalid:
                # Created concurrently by another instance.
                pass
        return self.database[name]

    def create(self, task: Task) -> None:
        try:
            with self._operation():
                self.collection.insert_one(_to_document(task))
        except DuplicateKeyError as exc:
            raise TaskAlreadyExistsError(task.id) from exc
        logger.debug("Created task %s", task.id)

    def get_all(self) -> list[Task]:
        return self._find({}, sort=[("created_at", DESCENDING), ("id", ASCENDING)])

    def get_by_id(self, task_id: str) -> Task:
        with self._operation():
            doc = self.collection.find_one({"id": task_id}, _PROJECTION)
        if doc is None:
            raise TaskNotFoundError(task_id)
        return _from_document(doc)

    def update(self, task: Task) -> None:
        with self._operation():
            result = self.collection.replace_one({"id": task.id}, _to_document(task))
        if result.matched_count == 0:
            raise TaskNotFoundError(task.id)
        logger.debug("Updated task %s", task.id)

    def delete(self, task_id: str) -> None:
        with self._operation():
            result = self.collection.delete_one({"id": task_id})
        if result.deleted_count == 0:
            raise TaskNotFoundError(task_id)
        logger.debug("Deleted task %s", task_id)

    def close(self) -> None:
        if self.client is not None:
            self.client.close()

    def health_check(self) -> None:
        with self._operation():
            self.client.admin.command("ping")

    def get_by_status(self, done: bool) -> list[Task]:
        return self._find(
            {"done": done}, sort=[("created_at", DESCENDING), ("id", ASCENDING)]
        )

    def get_due_before(self, deadline: datetime) -> list[Task]:
        return self._find(
            {"due_date": {"$ne": None, "$lte": to_utc(deadline)}},
            sort=[("due_date", ASCENDING), ("id", ASCENDING)],
        )

    def count(self) -> int:
        return self._count({})

    def count_by_status(self, done: bool) -> int:
        return self._count({"done": done})

    def count_overdue(self, now: datetime | None = None) -> int:
        return self._count(
            {
                "due_date": {"$ne": None, "$lt": to_utc(now or utcnow())},
                "done": False,
            }
        )

    @contextmanager
    def _operation(self) -> Iterator[None]:
        """Bound the block by the query timeout and map driver errors."""
        try:
            with pymongo.timeout(self.query_timeout):
                yield
        except DuplicateKeyError:
            raise
        except PyMongoError as exc:
            if isinstance(exc, ConnectionFailure) or exc.timeout:
                raise ConnectionFailedError(self.kind, str(exc)) from exc
            raise StorageError(f"mongodb error: {exc}") from exc

    def _find(self, query: dict[str, Any], sort: list[tuple[str, int]]) -> list[Task]:
        with self._operation():
            docs = list(self.collection.find(query, _PROJECTION).sort(sort))
        return [_from_document(doc) for doc in docs]

    def _count(self, query: dict[str, Any]) -> int:
        with self._operation():
            return self.collection.count_documents(query)
