"""Pluggable storage backends.

Provides one interface over different storage mechanisms:

- **JSONFileBackend**: one JSON array file with atomic writes
- **SQLiteBackend**: embedded database with a single shared connection
- **SQLServerBackend**: PostgreSQL or MySQL through a pooled SQLAlchemy engine
- **MongoBackend**: schema-validated MongoDB collection

Health checks and read-side queries are optional capabilities, see
:class:`HealthChecker` and :class:`TaskQueries`.
"""

from .base import HealthChecker, TaskQueries, TaskStatistics, TaskStore
from .filesystem import JSONFileBackend
from .mongodb import MongoBackend
from .sqlite import SQLiteBackend
from .sqlserver import SQLServerBackend

__all__ = [
    "TaskStore",
    "HealthChecker",
    "TaskQueries",
    "TaskStatistics",
    "JSONFileBackend",
    "SQLiteBackend",
    "SQLServerBackend",
    "MongoBackend",
]
