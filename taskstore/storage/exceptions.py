"""Exception classes for the storage layer.

Every backend raises exactly these types so callers can stay backend
agnostic. Driver exceptions are chained as ``__cause__``.
"""


class StorageError(Exception):
    """Base exception for storage-related errors."""

    pass


class TaskNotFoundError(StorageError, KeyError):
    """Raised when an operation targets a task id that is not stored."""

    def __init__(self, task_id: str):
        """Initialize with task ID."""
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")

    def __str__(self) -> str:
        return self.args[0]


class TaskAlreadyExistsError(StorageError):
    """Raised when creating a task whose id is already stored."""

    def __init__(self, task_id: str):
        """Initialize with task ID."""
        self.task_id = task_id
        super().__init__(f"Task already exists: {task_id}")


class InvalidTaskError(StorageError, ValueError):
    """Raised when a task's fields do not match the stored schema."""

    def __init__(self, task_id: str, details: str = ""):
        self.task_id = task_id
        message = f"Invalid task {task_id}"
        if details:
            message += f": {details}"
        super().__init__(message)


class CorruptStoreError(StorageError):
    """Raised when the contents of a file store cannot be parsed."""

    def __init__(self, path: str, details: str = ""):
        """Initialize with path and details."""
        self.path = path
        message = f"Storage corruption detected at {path}"
        if details:
            message += f": {details}"
        super().__init__(message)


class InvalidConfigError(StorageError, ValueError):
    """Raised when a storage configuration field is missing or invalid."""

    def __init__(self, field: str, message: str):
        """Initialize with field and message."""
        self.field = field
        super().__init__(f"Invalid storage configuration for {field}: {message}")


class ConnectionFailedError(StorageError):
    """Raised when a backend cannot be reached or initialized."""

    def __init__(self, backend: str, details: str = ""):
        """Initialize with backend name and details."""
        self.backend = backend
        message = f"Connection to {backend} storage failed"
        if details:
            message += f": {details}"
        super().__init__(message)


class IOFailureError(StorageError):
    """Raised on filesystem errors unrelated to corrupt content."""

    def __init__(self, path: str, details: str = ""):
        """Initialize with path and details."""
        self.path = path
        message = f"I/O failure at {path}"
        if details:
            message += f": {details}"
        super().__init__(message)
