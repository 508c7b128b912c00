from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from expense_tracker import logging as service_logging
from expense_tracker.config import Settings, load_settings
from expense_tracker.logging import configure_logging, setup_logger


def test_setup_logger_is_idempotent(tmp_path: Path):
    first = setup_logger("expense_tracker.sample", json_format=True, log_dir=tmp_path)
    second = setup_logger("expense_tracker.sample", json_format=True, log_dir=tmp_path)
    assert first.handlers == second.handlers
    json_handlers = [h for h in second.handlers if getattr(h, service_logging.JSON_MARKER, False)]
    assert len(json_handlers) == 1


def test_level_comes_from_argument():
    logger = setup_logger("expense_tracker.tests.level", level="debug")
    assert logger.isEnabledFor(logging.DEBUG)
    console = [h for h in logger.handlers if getattr(h, service_logging.CONSOLE_MARKER, False)]
    assert console and console[0].formatter._fmt == service_logging.CONSOLE_FORMAT


def test_unknown_level_falls_back_to_info():
    logger = setup_logger("expense_tracker.tests.unknown", level="LOUD")
    assert logger.level == logging.INFO


def test_setup_logger_detaches_json_handler_when_disabled(tmp_path: Path):
    setup_logger("expense_tracker.tests.toggle", json_format=True, log_dir=tmp_path)
    logger = setup_logger("expense_tracker.tests.toggle", json_format=False, log_dir=tmp_path)
    assert not [h for h in logger.handlers if getattr(h, service_logging.JSON_MARKER, False)]
    assert [h for h in logger.handlers if getattr(h, service_logging.CONSOLE_MARKER, False)]


def test_json_payload_carries_request_fields(tmp_path: Path):
    logger = setup_logger("expense_tracker.tests.json", json_format=True, log_dir=tmp_path)
    logger.info(
        "GET /expenses -> 200",
        extra={"method": "GET", "path": "/expenses", "status_code": 200, "duration_ms": 1.5},
    )
    for handler in logger.handlers:
        handler.flush()

    lines = service_logging.log_path(tmp_path).read_text(encoding="utf-8").splitlines()
    payload = json.loads(lines[-1])
    assert payload["message"] == "GET /expenses -> 200"
    assert payload["method"] == "GET"
    assert payload["status_code"] == 200
    assert payload["duration_ms"] == 1.5
    assert payload["source"] == "expense_tracker.tests.json"


def test_configure_logging_applies_settings(tmp_path: Path):
    child = logging.getLogger("expense_tracker.store")
    child.setLevel(logging.CRITICAL)
    logger = configure_logging(Settings(log_level="WARNING", json_logs=True, log_dir=tmp_path))
    assert logger.name == "expense_tracker"
    assert logger.level == logging.WARNING
    assert child.getEffectiveLevel() == logging.WARNING
    assert service_logging.log_path(tmp_path).exists()


def test_request_logging_middleware(client, caplog: pytest.LogCaptureFixture):
    with caplog.at_level(logging.INFO, logger="expense_tracker.server"):
        client.get("/expenses")
    records = [record for record in caplog.records if getattr(record, "path", None) == "/expenses"]
    assert records
    assert records[0].status_code == 200
    assert records[0].method == "GET"


def test_settings_are_the_only_source_for_json_logs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("EXPENSES_JSON_LOGS", "true")
    monkeypatch.setenv("EXPENSES_LOG_LEVEL", "DEBUG")
    logger = configure_logging(Settings(json_logs=False, log_dir=tmp_path))
    assert logger.level == logging.INFO
    assert not [h for h in logger.handlers if getattr(h, service_logging.JSON_MARKER, False)]
    assert not service_logging.log_path(tmp_path).exists()


def test_cli_flag_overrides_json_logs_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("EXPENSES_JSON_LOGS", "true")
    settings = load_settings(json_logs=False, log_dir=tmp_path)
    assert settings.json_logs is False
    configure_logging(settings)
    assert not service_logging.log_path(tmp_path).exists()
