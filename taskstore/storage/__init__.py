"""Task storage layer.

Every backend implements the :class:`TaskStore` contract and raises the
exceptions in :mod:`taskstore.storage.exceptions`. Callers normally build a
store from a :class:`StorageConfig` through :func:`create_store`::

    config = load_config_from_env()
    with create_store(config) as store:
        store.create(Task(id="t1", title="Buy milk"))
"""

from taskstore.storage.backends.base import (
    HealthChecker,
    TaskQueries,
    TaskStatistics,
    TaskStore,
)
from taskstore.storage.config import (
    StorageConfig,
    StorageType,
    apply_defaults,
    is_storage_type_supported,
    load_config,
    load_config_file,
    load_config_from_env,
    supported_storage_types,
    validate_config,
)
from taskstore.storage.exceptions import (
    ConnectionFailedError,
    CorruptStoreError,
    InvalidConfigError,
    InvalidTaskError,
    IOFailureError,
    StorageError,
    TaskAlreadyExistsError,
    TaskNotFoundError,
)
from taskstore.storage.factory import check_health, create_store, create_store_from_env

__all__ = [
    # Contract
    "TaskStore",
    "HealthChecker",
    "TaskQueries",
    "TaskStatistics",
    # Configuration
    "StorageConfig",
    "StorageType",
    "apply_defaults",
    "validate_config",
    "load_config",
    "load_config_file",
    "load_config_from_env",
    "supported_storage_types",
    "is_storage_type_supported",
    # Factory
    "create_store",
    "create_store_from_env",
    "check_health",
    # Errors
    "StorageError",
    "TaskNotFoundError",
    "TaskAlreadyExistsError",
    "CorruptStoreError",
    "InvalidConfigError",
    "InvalidTaskError",
    "ConnectionFailedError",
    "IOFailureError",
]
