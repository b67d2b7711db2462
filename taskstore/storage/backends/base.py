"""Storage contract and optional backend capabilities."""

from abc import ABC, abstractmethod
from datetime import datetime

import msgspec

from taskstore.core.models import Task


class TaskStore(ABC):
    """Abstract base class for task storage backends.

    Backends implement this contract independently of each other. Every
    method either succeeds or raises a
    :class:`~taskstore.storage.exceptions.StorageError` subclass.
    """

    #: Short backend identifier used in logs and error messages.
    kind: str = "abstract"

    @abstractmethod
    def create(self, task: Task) -> None:
        """Persist a new task; the id must not already be stored."""
        pass

    @abstractmethod
    def get_all(self) -> list[Task]:
        """Return every stored task in the backend's own stable order."""
        pass

    @abstractmethod
    def get_by_id(self, task_id: str) -> Task:
        """Return the task with the given id."""
        pass

    @abstractmethod
    def update(self, task: Task) -> None:
        """Replace the stored task that has ``task.id`` with ``task``."""
        pass

    @abstractmethod
    def delete(self, task_id: str) -> None:
        """Remove the task with the given id."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release files, pools or sessions held by the backend."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class HealthChecker(ABC):
    """Optional capability: backends that can check their connection."""

    @abstractmethod
    def health_check(self) -> None:
        """Raise ConnectionFailedError if the backend is unreachable."""
        pass


class TaskStatistics(msgspec.Struct, frozen=True):
    """Aggregate counts over the stored tasks."""

    total: int
    completed: int
    pending: int
    overdue: int


class TaskQueries(ABC):
    """Optional capability: read-side filters evaluated by the engine."""

    @abstractmethod
    def get_by_status(self, done: bool) -> list[Task]:
        """Tasks with the given completion flag, newest first."""
        pass

    @abstractmethod
    def get_due_before(self, deadline: datetime) -> list[Task]:
        """Tasks with ``due_date <= deadline``, earliest due first."""
        pass

    @abstractmethod
    def count(self) -> int:
        pass

    @abstractmethod
    def count_by_status(self, done: bool) -> int:
        pass

    @abstractmethod
    def count_overdue(self, now: datetime | None = None) -> int:
        """Open tasks whose due date is strictly before ``now``."""
        pass

    def statistics(self, now: datetime | None = None) -> TaskStatistics:
        """Summarize totals, completion and overdue counts."""
        completed = self.count_by_status(True)
        pending = self.count_by_status(False)
        return TaskStatistics(
            total=completed + pending,
            completed=completed,
            pending=pending,
            overdue=self.count_overdue(now),
        )
