"""Configuration-driven construction of storage backends."""

import logging
from collections.abc import Mapping

from taskstore.storage.backends.base import HealthChecker, TaskStore
from taskstore.storage.config import (
    StorageConfig,
    StorageType,
    apply_defaults,
    is_storage_type_supported,
    load_config_from_env,
    supported_storage_types,
    validate_config,
)

__all__ = [
    "create_store",
    "create_store_from_env",
    "check_health",
    "supported_storage_types",
    "is_storage_type_supported",
]

logger = logging.getLogger(__name__)


def create_store(config: StorageConfig) -> TaskStore:
    """Validate ``config``, fill defaults and build one backend.

    Raises:
        InvalidConfigError: before any connection is attempted.
        ConnectionFailedError: if the backend cannot be reached or initialized.
    """
    validate_config(config)
    config = apply_defaults(config)
    kind = StorageType(config.type)

    if kind is StorageType.JSON:
        from taskstore.storage.backends.filesystem import JSONFileBackend

        store: TaskStore = JSONFileBackend(config.file_path)

    elif kind is StorageType.SQLITE:
        from taskstore.storage.backends.sqlite import SQLiteBackend

        store = SQLiteBackend(config.file_path)

    elif kind is StorageType.POSTGRES:
        from taskstore.storage.backends.sqlserver import SQLServerBackend, postgres_url

        url = postgres_url(
            config.host,
            config.port,
            config.user,
            config.password or "",
            config.db_name,
            ssl_mode=config.ssl_mode,
        )
        store = SQLServerBackend(
            url,
            max_idle_conns=config.max_idle_conns,
            max_open_conns=config.max_open_conns,
            conn_max_lifetime=config.conn_max_lifetime,
            connect_args={"options": f"-c timezone={config.timezone}"},
            kind=kind.value,
        )

    elif kind is StorageType.MYSQL:
        from taskstore.storage.backends.sqlserver import SQLServerBackend, mysql_url

        url = mysql_url(
            config.host,
            config.port,
            config.user,
            config.password or "",
            config.db_name,
            charset=config.charset,
        )
        store = SQLServerBackend(
            url,
            max_idle_conns=config.max_idle_conns,
            max_open_conns=config.max_open_conns,
            conn_max_lifetime=config.conn_max_lifetime,
            kind=kind.value,
        )

    else:
        from taskstore.storage.backends.mongodb import MongoBackend

        store = MongoBackend(
            config.uri,
            config.db_name,
            config.collection,
            connect_timeout=config.connect_timeout,
            query_timeout=config.query_timeout,
        )

    logger.info("Storage initialized: %s", kind.value)
    return store


def create_store_from_env(environ: Mapping[str, str] | None = None) -> TaskStore:
    """Build a backend from environment variables."""
    return create_store(load_config_from_env(environ))


def check_health(store: TaskStore) -> bool | None:
    """Run the backend's health check if it offers one.

    Returns ``True`` when the check passes and ``None`` when the backend
    has no health check. Failures propagate as ConnectionFailedError.
    """
    if not isinstance(store, HealthChecker):
        logger.info("Storage %s does not support health checks", store.kind)
        return None
    store.health_check()
    logger.info("Storage health check passed")
    return True
