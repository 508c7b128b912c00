"""Database configuration for the expense tracking service.

The :class:`Database` handle owns the SQLAlchemy engine and its bounded
connection pool. It is created from :class:`~expense_tracker.config.Settings`
and has an explicit lifecycle: :meth:`Database.open` builds the engine,
:meth:`Database.init_db` provisions the schema once at start-up and
:meth:`Database.close` disposes the pool.
"""
from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from .config import Settings
from .errors import ConfigurationError, StorageError

LOG = logging.getLogger(__name__)

Base = declarative_base()

_MEMORY_DATABASES = {None, "", ":memory:"}


def _engine_options(url: URL, settings: Settings) -> dict[str, Any]:
    """Build ``create_engine`` keyword arguments for ``url``."""

    pool_options: dict[str, Any] = {
        "poolclass": QueuePool,
        "pool_size": settings.pool_size,
        "max_overflow": 0,
        "pool_timeout": settings.pool_timeout,
    }
    if url.get_backend_name() == "sqlite":
        options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if url.database in _MEMORY_DATABASES:
            # One shared connection, otherwise every checkout sees an empty database.
            options["poolclass"] = StaticPool
        else:
            options.update(pool_options)
        return options

    options = dict(pool_options, pool_pre_ping=True, pool_recycle=3600)
    if settings.db_ssl and url.get_backend_name() == "mysql":
        # Without a CA bundle PyMySQL skips verification unless told otherwise;
        # ``True`` checks the server certificate against the system store.
        ssl_args: dict[str, Any] = {"check_hostname": True, "verify_mode": True}
        if settings.db_ca_cert:
            ssl_args["ca"] = settings.db_ca_cert
        options["connect_args"] = {"ssl": ssl_args}
    return options


class Database:
    """Process-scoped handle on the expense database."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._engine: Engine | None = None
        self._session_factory: sessionmaker[Session] | None = None

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise StorageError("Database is not open")
        return self._engine

    @property
    def safe_url(self) -> str:
        """Database URL with the password masked, suitable for logs."""

        try:
            return make_url(self.settings.database_url).render_as_string(hide_password=True)
        except ArgumentError:
            return "<invalid database url>"

    def open(self) -> None:
        """Create the engine and its pool. Calling it twice is a no-op."""

        if self._engine is not None:
            return
        try:
            url = make_url(self.settings.database_url)
            engine = create_engine(url, future=True, **_engine_options(url, self.settings))
        except (ArgumentError, ImportError) as exc:
            raise ConfigurationError(f"Invalid database configuration: {exc}") from exc
        self._engine = engine
        self._session_factory = sessionmaker(
            bind=engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            future=True,
        )
        LOG.info("Database engine created for %s", self.safe_url)

    def close(self) -> None:
        """Dispose the pool. Safe to call on a closed handle."""

        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        self._session_factory = None
        LOG.info("Database connections closed")

    def _ensure_database(self) -> None:
        url = self.engine.url
        backend = url.get_backend_name()
        if backend == "sqlite":
            if url.database not in _MEMORY_DATABASES:
                Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
            return
        if backend != "mysql" or not url.database:
            LOG.debug("Skipping database creation for backend %s", backend)
            return

        server_engine = create_engine(
            url.set(database=None),
            future=True,
            poolclass=StaticPool,
            connect_args=_engine_options(url, self.settings).get("connect_args", {}),
        )
        try:
            name = server_engine.dialect.identifier_preparer.quote(url.database)
            with server_engine.begin() as conn:
                conn.execute(text(f"CREATE DATABASE IF NOT EXISTS {name}"))
        finally:
            server_engine.dispose()

    def init_db(self) -> None:
        """Create the database and the ``expenses`` table if they do not already exist.

        Raises:
            ConfigurationError: If the database server cannot be reached or
                refuses the provisioning statements.
        """

        from . import models  # noqa: F401  # register models on the metadata

        try:
            self._ensure_database()
            Base.metadata.create_all(bind=self.engine)
        except (SQLAlchemyError, OSError) as exc:
            raise ConfigurationError(f"Unable to provision database {self.safe_url}: {exc}") from exc
        LOG.info("Database schema ready")

    def ping(self) -> None:
        """Run one round trip against the database.

        Raises:
            StorageError: If the database is closed or unreachable.
        """

        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise StorageError(f"Database unreachable: {exc}") from exc

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional scope around a series of operations.

        The session commits when the block exits cleanly and rolls back on any
        error. Driver errors are re-raised as :class:`StorageError`.
        """

        if self._session_factory is None:
            raise StorageError("Database is not open")
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            LOG.error("Storage failure, transaction rolled back: %s", exc)
            raise StorageError(str(exc)) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


__all__ = ["Base", "Database"]
