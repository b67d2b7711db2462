"""Client/server relational storage backend.

One implementation serves PostgreSQL and MySQL through SQLAlchemy Core. The
dialect is chosen by the URL handed to :class:`SQLServerBackend`; the factory
builds those URLs with :func:`postgres_url` and :func:`mysql_url`. Any other
SQLAlchemy URL works as well, which is how the test suite exercises this
backend against SQLite.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

import sqlalchemy as sa
from sqlalchemy.dialects import mysql
from sqlalchemy.engine import URL, Connection, Engine, Row
from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.pool import QueuePool

from taskstore.core.models import Task, to_utc, utcnow
from taskstore.storage.exceptions import (
    ConnectionFailedError,
    StorageError,
    TaskAlreadyExistsError,
    TaskNotFoundError,
)

from .base import HealthChecker, TaskQueries, TaskStore

logger = logging.getLogger(__name__)

# PostgreSQL SQLSTATE unique_violation, MySQL ER_DUP_ENTRY.
PG_UNIQUE_VIOLATION = "23505"
MYSQL_DUPLICATE_ENTRY = 1062
SQLITE_DUPLICATE_KEY = {"SQLITE_CONSTRAINT_PRIMARYKEY", "SQLITE_CONSTRAINT_UNIQUE"}

# Microsecond precision on MySQL; plain TIMESTAMP elsewhere.
Timestamp = sa.DateTime(timezone=False).with_variant(mysql.DATETIME(fsp=6), "mysql")

metadata = sa.MetaData()

tasks_table = sa.Table(
    "tasks",
    metadata,
    sa.Column("id", sa.String(255), primary_key=True),
    sa.Column("title", sa.Text, nullable=False),
    sa.Column("done", sa.Boolean, nullable=False, server_default=sa.false()),
    sa.Column("created_at", Timestamp, nullable=False),
    sa.Column("due_date", Timestamp, nullable=True),
    sa.Index("idx_tasks_due_date", "due_date"),
    sa.Index("idx_tasks_done", "done"),
    sa.Index("idx_tasks_created_at", "created_at"),
    sa.Index("idx_tasks_done_due_date", "done", "due_date"),
)


def postgres_url(
    host: str,
    port: int,
    user: str,
    password: str,
    database: str,
    ssl_mode: str = "disable",
) -> URL:
    """Build a psycopg2 URL for PostgreSQL."""
    return URL.create(
        "postgresql+psycopg2",
        username=user,
        password=password or None,
        host=host,
        port=port,
        database=database,
        query={"sslmode": ssl_mode},
    )


def mysql_url(
    host: str,
    port: int,
    user: str,
    password: str,
    database: str,
    charset: str = "utf8mb4",
) -> URL:
    """Build a PyMySQL URL for MySQL."""
    return URL.create(
        "mysql+pymysql",
        username=user,
        password=password or None,
        host=host,
        port=port,
        database=database,
        query={"charset": charset},
    )


def _to_column(value: datetime | None) -> datetime | None:
    # Columns hold naive UTC; the offset is re-attached on read.
    if value is None:
        return None
    return to_utc(value).replace(tzinfo=None)


def _from_column(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def is_duplicate_key(exc: IntegrityError) -> bool:
    """Tell primary key conflicts apart from other integrity errors.

    Uses each driver's native error code rather than the message text.
    """
    orig = exc.orig
    pgcode = getattr(orig, "pgcode", None)
    if pgcode is not None:
        return pgcode == PG_UNIQUE_VIOLATION
    errorname = getattr(orig, "sqlite_errorname", None)
    if errorname is not None:
        return errorname in SQLITE_DUPLICATE_KEY
    args = getattr(orig, "args", ())
    return bool(args) and args[0] == MYSQL_DUPLICATE_ENTRY


class SQLServerBackend(TaskStore, HealthChecker, TaskQueries):
    """Pooled relational storage over a SQLAlchemy engine.

    The pool is configured once here: ``max_idle_conns`` connections are
    kept open, bursts may grow the pool up to ``max_open_conns``, and
    connections older than ``conn_max_lifetime`` seconds are recycled. The
    schema is created at construction and creation is idempotent.

    ``kind`` names the backend in errors and logs. It defaults to the URL's
    backend name, so the factory passes ``"postgres"`` explicitly.
    """

    def __init__(
        self,
        url: URL | str,
        *,
        max_idle_conns: int = 10,
        max_open_conns: int = 100,
        conn_max_lifetime: float = 3600.0,
        connect_args: dict | None = None,
        echo: bool = False,
        kind: str | None = None,
    ):
        self.url = sa.make_url(url)
        self.kind = kind or self.url.get_backend_name()
        options = {
            "pool_recycle": int(conn_max_lifetime),
            "pool_pre_ping": True,
            "connect_args": connect_args or {},
            "echo": echo,
        }
        try:
            # Only queue pools are sized; in-memory SQLite uses a singleton pool.
            pool_class = self.url.get_dialect().get_pool_class(self.url)
            if issubclass(pool_class, QueuePool):
                options["pool_size"] = max_idle_conns
                options["max_overflow"] = max(max_open_conns - max_idle_conns, 0)
            self.engine: Engine = sa.create_engine(self.url, **options)
        except (SQLAlchemyError, ImportError, TypeError) as exc:
            raise ConnectionFailedError(self.kind, str(exc)) from exc

        try:
            self.initialize()
        except SQLAlchemyError as exc:
            self.engine.dispose()
            raise ConnectionFailedError(self.kind, str(exc)) from exc
        logger.info(
            "%s storage initialized at %s",
            self.kind,
            self.url.render_as_string(hide_password=True),
        )

    def initialize(self) -> None:
        """Verify connectivity and create the table and indexes."""
        with self.engine.begin() as conn:
            conn.execute(sa.text("SELECT 1"))
            metadata.create_all(conn, checkfirst=True)

    def create(self, task: Task) -> None:
        stmt = tasks_table.insert().values(
            id=task.id,
            title=task.title,
            done=task.done,
            created_at=_to_column(task.created_at),
            due_date=_to_column(task.due_date),
        )
        try:
            with self._transaction() as conn:
                conn.execute(stmt)
        except IntegrityError as exc:
            raise TaskAlreadyExistsError(task.id) from exc
        logger.debug("Created task %s", task.id)

    def get_all(self) -> list[Task]:
        return self._select(
            order_by=(tasks_table.c.created_at.desc(), tasks_table.c.id)
        )

    def get_by_id(self, task_id: str) -> Task:
        tasks = self._select(tasks_table.c.id == task_id)
        if not tasks:
            raise TaskNotFoundError(task_id)
        return tasks[0]

    def update(self, task: Task) -> None:
        stmt = (
            tasks_table.update()
            .where(tasks_table.c.id == task.id)
            .values(
                title=task.title,
                done=task.done,
                created_at=_to_column(task.created_at),
                due_date=_to_column(task.due_date),
            )
        )
        with self._transaction() as conn:
            affected = conn.execute(stmt).rowcount
        if affected == 0:
            raise TaskNotFoundError(task.id)
        logger.debug("Updated task %s", task.id)

    def delete(self, task_id: str) -> None:
        stmt = tasks_table.delete().where(tasks_table.c.id == task_id)
        with self._transaction() as conn:
            affected = conn.execute(stmt).rowcount
        if affected == 0:
            raise TaskNotFoundError(task_id)
        logger.debug("Deleted task %s", task_id)

    def close(self) -> None:
        """Dispose of the connection pool."""
        self.engine.dispose()

    def health_check(self) -> None:
        with self._transaction() as conn:
            conn.execute(sa.text("SELECT 1"))

    def get_by_status(self, done: bool) -> list[Task]:
        return self._select(
            tasks_table.c.done == done,
            order_by=(tasks_table.c.created_at.desc(), tasks_table.c.id),
        )

    def get_due_before(self, deadline: datetime) -> list[Task]:
        return self._select(
            tasks_table.c.due_date.is_not(None),
            tasks_table.c.due_date <= _to_column(deadline),
            order_by=(tasks_table.c.due_date.asc(), tasks_table.c.id),
        )

    def count(self) -> int:
        return self._count()

    def count_by_status(self, done: bool) -> int:
        return self._count(tasks_table.c.done == done)

    def count_overdue(self, now: datetime | None = None) -> int:
        return self._count(
            tasks_table.c.due_date.is_not(None),
            tasks_table.c.due_date < _to_column(now or utcnow()),
            tasks_table.c.done == sa.false(),
        )

    @contextmanager
    def _transaction(self) -> Iterator[Connection]:
        """One statement, one transaction.

        Only duplicate keys leave as IntegrityError; connection loss becomes
        ConnectionFailedError and anything else StorageError.
        """
        try:
            with self.engine.begin() as conn:
                yield conn
        except IntegrityError as exc:
            if is_duplicate_key(exc):
                raise
            raise StorageError(f"{self.kind} integrity error: {exc.orig}") from exc
        except DBAPIError as exc:
            if exc.connection_invalidated or isinstance(
                exc, OperationalError | InterfaceError
            ):
                raise ConnectionFailedError(self.kind, str(exc.orig)) from exc
            raise StorageError(f"{self.kind} error: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            raise StorageError(f"{self.kind} error: {exc}") from exc

    def _select(self, *where, order_by=()) -> list[Task]:
        stmt = sa.select(tasks_table)
        if where:
            stmt = stmt.where(*where)
        if order_by:
            stmt = stmt.order_by(*order_by)
        with self._transaction() as conn:
            rows = conn.execute(stmt).all()
        return [self._row_to_task(row) for row in rows]

    def _count(self, *where) -> int:
        stmt = sa.select(sa.func.count()).select_from(tasks_table)
        if where:
            stmt = stmt.where(*where)
        with self._transaction() as conn:
            return conn.execute(stmt).scalar_one()

    @staticmethod
    def _row_to_task(row: Row) -> Task:
        return Task(
            id=row.id,
            title=row.title,
            done=bool(row.done),
            created_at=_from_column(row.created_at),
            due_date=_from_column(row.due_date),
        )
