"""JSON file storage backend."""

import logging
import os
import tempfile
from collections.abc import Callable
from pathlib import Path

import msgspec

from taskstore.core.models import Task
from taskstore.storage.exceptions import (
    CorruptStoreError,
    InvalidTaskError,
    IOFailureError,
    TaskAlreadyExistsError,
    TaskNotFoundError,
)
from taskstore.storage.locking import ReadWriteLock

from .base import TaskStore

logger = logging.getLogger(__name__)

DEFAULT_FILE_MODE = 0o644


class JSONFileBackend(TaskStore):
    """Whole collection kept in one JSON array file.

    Every mutation loads the full file, applies one change in memory and
    writes the result to a sibling temporary file that is atomically renamed
    over the real path. Readers therefore see either the old or the new file,
    never a partial one. Writers are serialized by the exclusive side of a
    reader/writer lock; readers share it. Two processes pointed at the same
    file are not coordinated.
    """

    kind = "json"

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._lock = ReadWriteLock()
        self._encoder = msgspec.json.Encoder()
        self._decoder = msgspec.json.Decoder(list[Task])
        self._task_decoder = msgspec.json.Decoder(Task)
        self.initialize()
        logger.info("JSON file storage initialized at %s", self.path)

    def initialize(self) -> None:
        """Create parent directories and an empty collection if needed."""
        with self._lock.write_locked():
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                exists = self.path.exists()
            except OSError as exc:
                raise IOFailureError(str(self.path), str(exc)) from exc
            if not exists:
                self._save([])

    def create(self, task: Task) -> None:
        self._validate(task)

        def append(tasks: list[Task]) -> list[Task]:
            if any(t.id == task.id for t in tasks):
                raise TaskAlreadyExistsError(task.id)
            tasks.append(task)
            return tasks

        self._mutate(append)
        logger.debug("Created task %s", task.id)

    def get_all(self) -> list[Task]:
        with self._lock.read_locked():
            return self._load()

    def get_by_id(self, task_id: str) -> Task:
        with self._lock.read_locked():
            tasks = self._load()

        for task in tasks:
            if task.id == task_id:
                return task
        raise TaskNotFoundError(task_id)

    def update(self, task: Task) -> None:
        self._validate(task)

        def replace(tasks: list[Task]) -> list[Task]:
            for i, existing in enumerate(tasks):
                if existing.id == task.id:
                    tasks[i] = task
                    return tasks
            raise TaskNotFoundError(task.id)

        self._mutate(replace)
        logger.debug("Updated task %s", task.id)

    def delete(self, task_id: str) -> None:
        def remove(tasks: list[Task]) -> list[Task]:
            remaining = [t for t in tasks if t.id != task_id]
            if len(remaining) == len(tasks):
                raise TaskNotFoundError(task_id)
            return remaining

        self._mutate(remove)
        logger.debug("Deleted task %s", task_id)

    def close(self) -> None:
        """No resources are held between operations."""
        pass

    def _validate(self, task: Task) -> None:
        """Reject tasks that would not decode back from the file."""
        try:
            self._task_decoder.decode(self._encoder.encode(task))
        except (msgspec.ValidationError, msgspec.EncodeError, TypeError) as exc:
            raise InvalidTaskError(str(task.id), str(exc)) from exc

    def _mutate(self, change: Callable[[list[Task]], list[Task]]) -> None:
        """Load, change and atomically save under the writer lock."""
        with self._lock.write_locked():
            self._save(change(self._load()))

    def _load(self) -> list[Task]:
        try:
            data = self.path.read_bytes()
        except OSError as exc:
            raise IOFailureError(str(self.path), str(exc)) from exc

        try:
            return self._decoder.decode(data)
        except msgspec.DecodeError as exc:
            raise CorruptStoreError(str(self.path), str(exc)) from exc

    def _save(self, tasks: list[Task]) -> None:
        """Write the collection to a temp file, then rename it into place."""
        payload = msgspec.json.format(self._encoder.encode(tasks), indent=2) + b"\n"

        try:
            mode = self.path.stat().st_mode & 0o777
        except FileNotFoundError:
            mode = DEFAULT_FILE_MODE
        except OSError as exc:
            raise IOFailureError(str(self.path), str(exc)) from exc

        try:
            temp_fd, temp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
        except OSError as exc:
            raise IOFailureError(str(self.path), str(exc)) from exc

        temp_path = Path(temp_name)
        try:
            with open(temp_fd, "wb") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(temp_path, mode)
            temp_path.replace(self.path)
        except OSError as exc:
            temp_path.unlink(missing_ok=True)
            raise IOFailureError(str(self.path), str(exc)) from exc
        except Exception:
            temp_path.unlink(missing_ok=True)
            raise
