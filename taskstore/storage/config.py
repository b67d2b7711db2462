"""Storage configuration.

A :class:`StorageConfig` value is built once (from the environment, a YAML
file, or directly in code) and handed to the factory. Nothing here keeps
process-wide state.

Environment variables:

- ``STORAGE_TYPE``: ``json`` (default), ``sqlite``, ``postgres``, ``mysql``
  or ``mongodb``
- ``STORAGE_FILE_PATH``: file for ``json``/``sqlite`` (default ``tasks.json``)
- ``DB_HOST``, ``DB_PORT``, ``DB_USER``, ``DB_PASSWORD``, ``DB_NAME``
- ``POSTGRES_SSL_MODE``, ``POSTGRES_TIMEZONE``, ``MYSQL_CHARSET``
- ``MONGODB_URI``, ``MONGODB_COLLECTION``, ``MONGODB_CONNECT_TIMEOUT``,
  ``MONGODB_QUERY_TIMEOUT``
- ``DB_MAX_IDLE_CONNS``, ``DB_MAX_OPEN_CONNS``, ``DB_CONN_MAX_LIFETIME``

Durations accept Go-style strings such as ``10s``, ``500ms`` or ``1m30s``;
a bare number is read as seconds.
"""

import enum
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import msgspec
import yaml

from taskstore.storage.exceptions import InvalidConfigError


class StorageType(enum.StrEnum):
    """Supported backend kinds."""

    JSON = "json"
    SQLITE = "sqlite"
    POSTGRES = "postgres"
    MYSQL = "mysql"
    MONGODB = "mongodb"


FILE_TYPES = frozenset({StorageType.JSON, StorageType.SQLITE})
SQL_SERVER_TYPES = frozenset({StorageType.POSTGRES, StorageType.MYSQL})

DEFAULT_PORTS = {
    StorageType.POSTGRES: 5432,
    StorageType.MYSQL: 3306,
    StorageType.MONGODB: 27017,
}
DEFAULT_SSL_MODE = "disable"
DEFAULT_TIMEZONE = "UTC"
DEFAULT_CHARSET = "utf8mb4"
DEFAULT_COLLECTION = "tasks"
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_QUERY_TIMEOUT = 5.0
DEFAULT_MAX_IDLE_CONNS = 10
DEFAULT_MAX_OPEN_CONNS = 100
DEFAULT_CONN_MAX_LIFETIME = 3600.0


class StorageConfig(msgspec.Struct, frozen=True, kw_only=True):
    """Settings for every backend kind.

    Fields left as ``None`` are filled by :func:`apply_defaults`; only the
    ones relevant to ``type`` are read by the factory.
    """

    type: str = StorageType.JSON.value
    file_path: str | None = None

    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    db_name: str | None = None

    ssl_mode: str | None = None
    timezone: str | None = None
    charset: str | None = None

    uri: str | None = None
    collection: str | None = None
    connect_timeout: float | None = None
    query_timeout: float | None = None

    max_idle_conns: int | None = None
    max_open_conns: int | None = None
    conn_max_lifetime: float | None = None

    def redacted(self) -> "StorageConfig":
        """Copy safe to log or display."""
        if self.password:
            return msgspec.structs.replace(self, password="***")
        return self


ENV_VARS = {
    "STORAGE_TYPE": "type",
    "STORAGE_FILE_PATH": "file_path",
    "DB_HOST": "host",
    "DB_PORT": "port",
    "DB_USER": "user",
    "DB_PASSWORD": "password",
    "DB_NAME": "db_name",
    "POSTGRES_SSL_MODE": "ssl_mode",
    "POSTGRES_TIMEZONE": "timezone",
    "MYSQL_CHARSET": "charset",
    "MONGODB_URI": "uri",
    "MONGODB_COLLECTION": "collection",
    "MONGODB_CONNECT_TIMEOUT": "connect_timeout",
    "MONGODB_QUERY_TIMEOUT": "query_timeout",
    "DB_MAX_IDLE_CONNS": "max_idle_conns",
    "DB_MAX_OPEN_CONNS": "max_open_conns",
    "DB_CONN_MAX_LIFETIME": "conn_max_lifetime",
}

# (section, key) in the YAML file -> StorageConfig field
FILE_KEYS = {
    ("storage", "type"): "type",
    ("storage", "path"): "file_path",
    ("database", "host"): "host",
    ("database", "port"): "port",
    ("database", "user"): "user",
    ("database", "password"): "password",
    ("database", "name"): "db_name",
    ("database", "ssl_mode"): "ssl_mode",
    ("database", "timezone"): "timezone",
    ("database", "charset"): "charset",
    ("database", "max_idle_conns"): "max_idle_conns",
    ("database", "max_open_conns"): "max_open_conns",
    ("database", "conn_max_lifetime"): "conn_max_lifetime",
    ("mongodb", "uri"): "uri",
    ("mongodb", "collection"): "collection",
    ("mongodb", "connect_timeout"): "connect_timeout",
    ("mongodb", "query_timeout"): "query_timeout",
}

BASE_VALUES = {
    "type": StorageType.JSON.value,
    "file_path": "tasks.json",
    "host": "localhost",
    "db_name": "gotask",
    "collection": DEFAULT_COLLECTION,
}

_INT_FIELDS = {"port", "max_idle_conns", "max_open_conns"}
_DURATION_FIELDS = {"connect_timeout", "query_timeout", "conn_max_lifetime"}

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: str | float | int) -> float:
    """Parse a duration into seconds.

    >>> parse_duration("1m30s")
    90.0
    """
    if isinstance(value, int | float):
        return float(value)

    text = value.strip()
    try:
        return float(text)
    except ValueError:
        pass

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if not text or pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return total


def _coerce(field: str, value: Any) -> Any:
    """Convert a raw env or YAML value to the field's type."""
    if value is None:
        return None
    try:
        if field in _INT_FIELDS:
            return int(value)
        if field in _DURATION_FIELDS:
            return parse_duration(value)
    except (TypeError, ValueError) as e:
        raise InvalidConfigError(field, f"cannot parse {value!r}") from e
    return str(value)


def _read_env(environ: Mapping[str, str]) -> dict[str, Any]:
    values = {}
    for var, field in ENV_VARS.items():
        raw = environ.get(var, "")
        if raw != "":
            values[field] = _coerce(field, raw)
    return values


def _read_file(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise InvalidConfigError("config_file", f"invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise InvalidConfigError("config_file", f"cannot read {path}: {e}") from e

    if not isinstance(data, dict):
        raise InvalidConfigError("config_file", f"{path} must contain a mapping")

    values = {}
    for (section, key), field in FILE_KEYS.items():
        block = data.get(section) or {}
        if isinstance(block, dict) and block.get(key) is not None:
            values[field] = _coerce(field, block[key])

    mongodb = data.get("mongodb") or {}
    if isinstance(mongodb, dict) and mongodb.get("database"):
        values["mongodb_database"] = str(mongodb["database"])
    return values


def _build(values: dict[str, Any]) -> StorageConfig:
    # mongodb.database only names the database when MongoDB is selected.
    mongodb_database = values.pop("mongodb_database", None)
    if values.get("type") == StorageType.MONGODB and mongodb_database:
        values["db_name"] = mongodb_database
    if values.get("type") == StorageType.MONGODB and not values.get("uri"):
        port = values.get("port") or DEFAULT_PORTS[StorageType.MONGODB]
        values["uri"] = f"mongodb://{values.get('host', 'localhost')}:{port}"
    try:
        return msgspec.convert(values, StorageConfig)
    except msgspec.ValidationError as e:
        raise InvalidConfigError("storage", str(e)) from e


def load_config_from_env(environ: Mapping[str, str] | None = None) -> StorageConfig:
    """Build a configuration from environment variables."""
    return load_config(None, environ)


def load_config_file(path: Path | str) -> StorageConfig:
    """Build a configuration from a YAML file alone."""
    return _build({**BASE_VALUES, **_read_file(Path(path))})


def load_config(
    path: Path | str | None = None, environ: Mapping[str, str] | None = None
) -> StorageConfig:
    """Build a configuration from an optional YAML file and the environment.

    Environment variables win over file values, which win over built-in
    defaults.
    """
    values = dict(BASE_VALUES)
    if path is not None:
        values.update(_read_file(Path(path)))
    env_values = _read_env(os.environ if environ is None else environ)
    if "db_name" in env_values:
        values.pop("mongodb_database", None)
    values.update(env_values)
    return _build(values)


def supported_storage_types() -> list[StorageType]:
    return list(StorageType)


def is_storage_type_supported(storage_type: str) -> bool:
    return storage_type in {t.value for t in StorageType}


def _require(config: StorageConfig, field: str, label: str) -> None:
    if not getattr(config, field):
        raise InvalidConfigError(field, f"{label} is required for {config.type} storage")


def _require_positive(config: StorageConfig, field: str) -> None:
    value = getattr(config, field)
    if value is not None and value <= 0:
        raise InvalidConfigError(field, f"must be positive, got {value}")


def validate_config(config: StorageConfig) -> None:
    """Check the fields required by ``config.type``.

    Raises:
        InvalidConfigError: naming the first missing or invalid field.
    """
    if not is_storage_type_supported(config.type):
        raise InvalidConfigError("type", f"unsupported storage type: {config.type!r}")

    kind = StorageType(config.type)
    if kind in FILE_TYPES:
        _require(config, "file_path", "file path")
    elif kind in SQL_SERVER_TYPES:
        _require(config, "host", "host")
        _require(config, "user", "user")
        _require(config, "db_name", "database name")
        if config.port is not None and config.port <= 0:
            raise InvalidConfigError(
                "port", f"valid port is required for {config.type} storage"
            )
        for field in ("max_idle_conns", "max_open_conns", "conn_max_lifetime"):
            _require_positive(config, field)
    elif kind is StorageType.MONGODB:
        _require(config, "uri", "URI")
        _require(config, "db_name", "database name")
        # An unset collection falls back to the default; an empty one is an error.
        if config.collection is not None:
            _require(config, "collection", "collection name")
        for field in ("connect_timeout", "query_timeout"):
            _require_positive(config, field)


def apply_defaults(config: StorageConfig) -> StorageConfig:
    """Fill unset fields with the defaults for ``config.type``."""
    kind = StorageType(config.type)
    changes: dict[str, Any] = {}

    def default(field: str, value: Any) -> None:
        if getattr(config, field) is None:
            changes[field] = value

    if kind in DEFAULT_PORTS:
        default("port", DEFAULT_PORTS[kind])
    if kind is StorageType.POSTGRES:
        default("ssl_mode", DEFAULT_SSL_MODE)
        default("timezone", DEFAULT_TIMEZONE)
    if kind is StorageType.MYSQL:
        default("charset", DEFAULT_CHARSET)
    if kind in SQL_SERVER_TYPES:
        default("max_idle_conns", DEFAULT_MAX_IDLE_CONNS)
        default("max_open_conns", DEFAULT_MAX_OPEN_CONNS)
        default("conn_max_lifetime", DEFAULT_CONN_MAX_LIFETIME)
    if kind is StorageType.MONGODB:
        default("collection", DEFAULT_COLLECTION)
        default("connect_timeout", DEFAULT_CONNECT_TIMEOUT)
        default("query_timeout", DEFAULT_QUERY_TIMEOUT)

    if not changes:
        return config
    return msgspec.structs.replace(config, **changes)
