"""Runtime configuration for the expense tracking service.

Settings are resolved from four layers, later layers winning:

1. built-in defaults;
2. an optional YAML file whose path is given by ``EXPENSES_CONFIG``;
3. environment variables (``DATABASE_URL``, ``DB_HOST``, ``PORT`` ...);
4. keyword overrides passed to :func:`load_settings`.

When ``DB_HOST`` is present and no explicit ``DATABASE_URL`` is given, a MySQL
URL is composed from the ``DB_*`` variables. Otherwise the service falls back
to a SQLite file stored next to the package.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final

import yaml
from sqlalchemy.engine import URL

from .errors import ConfigurationError

__all__ = ["CONFIG_ENV_FLAG", "DEFAULT_ORIGINS", "Settings", "load_settings"]

CONFIG_ENV_FLAG: Final[str] = "EXPENSES_CONFIG"
DEFAULT_SQLITE_PATH: Final[Path] = Path(__file__).with_name("expenses.db")
DEFAULT_ORIGINS: Final[tuple[str, ...]] = ("http://localhost:3000", "http://127.0.0.1:3000")
DEFAULT_DB_NAME: Final[str] = "expenses"
DEFAULT_MYSQL_PORT: Final[int] = 3306

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}

# Environment variable -> raw configuration key.
_ENV_KEYS: Final[dict[str, str]] = {
    "DATABASE_URL": "database_url",
    "EXPENSES_DB_PATH": "db_path",
    "DB_HOST": "db_host",
    "DB_PORT": "db_port",
    "DB_USER": "db_user",
    "DB_PASSWORD": "db_password",
    "DB_NAME": "db_name",
    "DB_SSL": "db_ssl",
    "DB_CA_CERT": "db_ca_cert",
    "DB_POOL_SIZE": "pool_size",
    "DB_POOL_TIMEOUT": "pool_timeout",
    "HOST": "host",
    "PORT": "port",
    "ALLOWED_ORIGINS": "allowed_origins",
    "FRONTEND_URL": "frontend_url",
    "DEBUG": "debug",
    "EXPENSES_LOG_LEVEL": "log_level",
    "EXPENSES_JSON_LOGS": "json_logs",
    "EXPENSES_LOG_DIR": "log_dir",
}
_KNOWN_KEYS: Final[frozenset[str]] = frozenset(_ENV_KEYS.values())


@dataclass(slots=True)
class Settings:
    """Resolved service configuration.

    Attributes:
      database_url: SQLAlchemy URL of the expense database.
      pool_size: Maximum number of pooled connections in flight.
      pool_timeout: Seconds a caller waits for a pooled connection.
      db_ssl: Whether the MySQL driver must negotiate TLS.
      db_ca_cert: Optional CA bundle used when ``db_ssl`` is enabled.
      host: Interface the HTTP server binds to.
      port: Port the HTTP server listens on.
      allowed_origins: Origins accepted by the CORS middleware.
      debug: Expose internal error detail in HTTP responses.
      log_level: Name of the logging level.
      json_logs: Also write JSON lines to ``log_dir``.
      log_dir: Directory holding the JSON log file.
    """

    database_url: str = f"sqlite:///{DEFAULT_SQLITE_PATH}"
    pool_size: int = 10
    pool_timeout: float = 30.0
    db_ssl: bool = False
    db_ca_cert: str | None = None
    host: str = "127.0.0.1"
    port: int = 5111
    allowed_origins: tuple[str, ...] = field(default=DEFAULT_ORIGINS)
    debug: bool = False
    log_level: str = "INFO"
    json_logs: bool = False
    log_dir: Path = field(default_factory=lambda: Path("logs"))

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{key} must be a boolean, got {value!r}")


def _as_int(value: Any, key: str, *, minimum: int = 1) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{key} must be an integer, got {value!r}")
    try:
        number = int(str(value).strip())
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer, got {value!r}") from exc
    if number < minimum:
        raise ConfigurationError(f"{key} must be >= {minimum}")
    return number


def _as_port(value: Any) -> int:
    port = _as_int(value, "port")
    if port > 65535:
        raise ConfigurationError("port must be <= 65535")
    return port


def _as_float(value: Any, key: str) -> float:
    if isinstance(value, bool):
        raise ConfigurationError(f"{key} must be a number, got {value!r}")
    try:
        number = float(str(value).strip())
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a number, got {value!r}") from exc
    if number <= 0:
        raise ConfigurationError(f"{key} must be > 0")
    return number


def _as_origins(value: Any) -> list[str]:
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, list | tuple):
        items = [str(item) for item in value]
    else:
        raise ConfigurationError("allowed_origins must be a string or a list of strings")
    return [item.strip() for item in items if item.strip()]


def _read_config_file(path: Path | str) -> dict[str, Any]:
    """Load and sanity-check a YAML configuration file."""

    try:
        with Path(path).open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except OSError as exc:
        raise ConfigurationError(f"Unable to read configuration file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in configuration file {path}: {exc}") from exc
    if payload is None:
        return {}
    if not isinstance(payload, Mapping):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")
    unknown = sorted(set(payload) - _KNOWN_KEYS)
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")
    return dict(payload)


def _compose_database_url(raw: Mapping[str, Any]) -> str:
    if raw.get("database_url"):
        return str(raw["database_url"]).strip()
    if raw.get("db_host"):
        url = URL.create(
            "mysql+pymysql",
            username=raw.get("db_user") or None,
            password=raw.get("db_password") or None,
            host=str(raw["db_host"]).strip(),
            port=_as_int(raw.get("db_port", DEFAULT_MYSQL_PORT), "db_port"),
            database=str(raw.get("db_name") or DEFAULT_DB_NAME),
        )
        return url.render_as_string(hide_password=False)
    db_path = raw.get("db_path") or DEFAULT_SQLITE_PATH
    return f"sqlite:///{db_path}"


def load_settings(
    environ: Mapping[str, str] | None = None,
    config_path: Path | str | None = None,
    **overrides: Any,
) -> Settings:
    """Resolve :class:`Settings` from file, environment and overrides.

    Args:
        environ: Environment mapping; defaults to :data:`os.environ`.
        config_path: YAML file to read; defaults to ``$EXPENSES_CONFIG``.
        **overrides: Raw configuration keys taking precedence over everything.

    Raises:
        ConfigurationError: If a value cannot be parsed or a key is unknown.
    """

    env = os.environ if environ is None else environ
    raw: dict[str, Any] = {}

    path = config_path or env.get(CONFIG_ENV_FLAG)
    if path:
        raw.update(_read_config_file(path))

    for env_name, key in _ENV_KEYS.items():
        value = env.get(env_name)
        if value is not None and value != "":
            raw[key] = value
    if "debug" not in raw and env.get("APP_ENV", "").strip().lower() == "development":
        raw["debug"] = True

    unknown = sorted(set(overrides) - _KNOWN_KEYS)
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")
    raw.update({key: value for key, value in overrides.items() if value is not None})

    defaults = Settings()
    origins = _as_origins(raw["allowed_origins"]) if "allowed_origins" in raw else list(DEFAULT_ORIGINS)
    frontend_url = str(raw.get("frontend_url") or "").strip()
    if frontend_url and frontend_url not in origins:
        origins.append(frontend_url)

    log_level = str(raw.get("log_level", defaults.log_level)).strip().upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigurationError(f"Unknown log level {log_level!r}")

    ca_cert = raw.get("db_ca_cert")
    return Settings(
        database_url=_compose_database_url(raw),
        pool_size=_as_int(raw.get("pool_size", defaults.pool_size), "pool_size"),
        pool_timeout=_as_float(raw.get("pool_timeout", defaults.pool_timeout), "pool_timeout"),
        db_ssl=_as_bool(raw.get("db_ssl", defaults.db_ssl), "db_ssl"),
        db_ca_cert=str(ca_cert) if ca_cert else None,
        host=str(raw.get("host", defaults.host)).strip(),
        port=_as_port(raw.get("port", defaults.port)),
        allowed_origins=tuple(origins),
        debug=_as_bool(raw.get("debug", defaults.debug), "debug"),
        log_level=log_level,
        json_logs=_as_bool(raw.get("json_logs", defaults.json_logs), "json_logs"),
        log_dir=Path(raw.get("log_dir", defaults.log_dir)),
    )
