from __future__ import annotations

import logging
import pathlib
import sys
from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from expense_tracker.config import Settings
from expense_tracker.database import Database
from expense_tracker.server import create_app
from expense_tracker.store import ExpenseStore


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keep developer environment variables and handlers out of the tests."""

    for name in (
        "EXPENSES_CONFIG",
        "EXPENSES_LOG_LEVEL",
        "EXPENSES_JSON_LOGS",
        "EXPENSES_LOG_DIR",
        "EXPENSES_DB_PATH",
        "DATABASE_URL",
        "DB_HOST",
        "APP_ENV",
        "DEBUG",
        "PORT",
        "HOST",
    ):
        monkeypatch.delenv(name, raising=False)
    yield
    for logger in list(logging.Logger.manager.loggerDict.values()):
        if isinstance(logger, logging.Logger) and logger.name.startswith("expense_tracker"):
            for handler in logger.handlers:
                handler.close()
            logger.handlers = []
            logger.setLevel(logging.NOTSET)


@pytest.fixture()
def settings(tmp_path: pathlib.Path) -> Settings:
    return Settings(database_url="sqlite://", log_dir=tmp_path / "logs")


@pytest.fixture()
def database(settings: Settings) -> Iterator[Database]:
    db = Database(settings)
    db.open()
    db.init_db()
    yield db
    db.close()


@pytest.fixture()
def store(database: Database) -> ExpenseStore:
    return ExpenseStore(database)


@pytest.fixture()
def client(settings: Settings, database: Database) -> Iterator[TestClient]:
    app = create_app(settings, database=database)
    with TestClient(app) as test_client:
        yield test_client
