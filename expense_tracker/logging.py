"""Structured logging helpers for the expense tracking service."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Final

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .config import Settings

CONSOLE_FORMAT: Final[str] = "[%(levelname)s] %(name)s: %(message)s"
DEFAULT_LEVEL: Final[str] = "INFO"
ROOT_LOGGER: Final[str] = "expense_tracker"
LOG_FILENAME: Final[str] = "expense_tracker.log"
DEFAULT_LOG_DIR: Final[Path] = Path("logs")
CONSOLE_MARKER: Final[str] = "_expenses_console"
JSON_MARKER: Final[str] = "_expenses_json"


class JsonRequestFormatter(logging.Formatter):
    """Format log records as single-line JSON payloads."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=UTC).isoformat()
        payload = {
            "timestamp": timestamp,
            "level": record.levelname,
            "source": record.name,
            "message": record.getMessage(),
            "method": getattr(record, "method", None),
            "path": getattr(record, "path", None),
            "status_code": _coerce_int(getattr(record, "status_code", None)),
            "duration_ms": _coerce_number(getattr(record, "duration_ms", None)),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _coerce_number(value: object) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _coerce_int(value: object) -> int | None:
    number = _coerce_number(value)
    return None if number is None else int(number)


def log_path(log_dir: Path | str | None = None) -> Path:
    """Return the JSON log file location inside ``log_dir``."""

    return Path(log_dir or DEFAULT_LOG_DIR) / LOG_FILENAME


def _level_number(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName((level or DEFAULT_LEVEL).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _install_handler(
    logger: logging.Logger,
    marker: str,
    level: int,
    build: Callable[[], logging.Handler],
) -> None:
    for handler in logger.handlers:
        if getattr(handler, marker, False):
            handler.setLevel(level)
            return
    handler = build()
    handler.setLevel(level)
    setattr(handler, marker, True)
    logger.addHandler(handler)


def _remove_handler(logger: logging.Logger, marker: str) -> None:
    for handler in [h for h in logger.handlers if getattr(h, marker, False)]:
        logger.removeHandler(handler)
        handler.close()


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    return handler


def _json_handler(log_dir: Path | str | None) -> logging.Handler:
    path = log_path(log_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(JsonRequestFormatter())
    return handler


def setup_logger(
    name: str,
    json_format: bool = False,
    level: str | int | None = None,
    log_dir: Path | str | None = None,
) -> logging.Logger:
    """Configure and return a logger for the service modules.

    The arguments are authoritative: calling it again with ``json_format=False``
    detaches a JSON handler installed earlier, and repeated calls never attach
    duplicate handlers.
    """

    resolved_level = _level_number(level)
    logger = logging.getLogger(name)
    logger.setLevel(resolved_level)
    # Keep propagation so pytest's caplog still sees the records.
    logger.propagate = True
    _install_handler(logger, CONSOLE_MARKER, resolved_level, _console_handler)
    if json_format:
        _install_handler(logger, JSON_MARKER, resolved_level, lambda: _json_handler(log_dir))
    else:
        _remove_handler(logger, JSON_MARKER)
    return logger


def configure_logging(settings: Settings) -> logging.Logger:
    """Apply ``settings`` to the package logger and return it.

    Child loggers (``expense_tracker.store`` ...) only carry their level and
    delegate output to the package logger.
    """

    logger = setup_logger(
        ROOT_LOGGER,
        json_format=settings.json_logs,
        level=settings.log_level,
        log_dir=settings.log_dir,
    )
    for name, child in logging.Logger.manager.loggerDict.items():
        if isinstance(child, logging.Logger) and name.startswith(f"{ROOT_LOGGER}."):
            child.setLevel(logging.NOTSET)
    return logger


__all__ = ["JsonRequestFormatter", "configure_logging", "log_path", "setup_logger"]
