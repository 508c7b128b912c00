"""Command-line interface for provisioning and serving the expense API."""

from __future__ import annotations

import argparse
import logging

import uvicorn

from .config import Settings, load_settings
from .database import Database
from .errors import ConfigurationError
from .logging import configure_logging
from .server import create_app

DESCRIPTION = "Personal expense tracker API"
LOG = logging.getLogger("expense_tracker.cli")

_UVICORN_LEVELS = {"critical", "error", "warning", "info", "debug"}


def _add_init_db_subparser(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    subparsers.add_parser("init-db", help="Create the database and the expenses table if missing")


def _add_serve_subparser(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    serve = subparsers.add_parser("serve", help="Provision the schema and run the HTTP server")
    serve.add_argument("--host", help="Interface to bind (default: settings host)")
    serve.add_argument("--port", type=int, help="Port to listen on (default: settings port)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="expense-tracker", description=DESCRIPTION)
    parser.add_argument("--config", help="YAML configuration file (overrides $EXPENSES_CONFIG)")
    parser.add_argument(
        "--json-logs",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Mirror logs to <log_dir>/expense_tracker.log in JSON format",
    )
    parser.add_argument("--debug", action="store_true", default=None, help="Expose error details in responses")
    sub = parser.add_subparsers(dest="cmd", required=True)
    _add_init_db_subparser(sub)
    _add_serve_subparser(sub)
    return parser


def _provision(settings: Settings) -> Database:
    """Open the database and create the schema, failing fast when unreachable."""

    database = Database(settings)
    database.open()
    try:
        database.init_db()
    except ConfigurationError:
        database.close()
        raise
    return database


def _handle_init_db(args: argparse.Namespace, settings: Settings) -> int:
    database = _provision(settings)
    database.close()
    LOG.info("Database provisioned at %s", database.safe_url)
    return 0


def _handle_serve(args: argparse.Namespace, settings: Settings) -> int:
    database = _provision(settings)
    app = create_app(settings, database=database)
    level = settings.log_level.lower()
    host = args.host or settings.host
    port = args.port or settings.port
    LOG.info("Serving on http://%s:%s (CORS origins: %s)", host, port, ", ".join(settings.allowed_origins))
    try:
        uvicorn.run(
            app,
            host=host,
            port=port,
            log_level=level if level in _UVICORN_LEVELS else "info",
        )
    finally:
        database.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = load_settings(config_path=args.config, json_logs=args.json_logs, debug=args.debug)
        configure_logging(settings)
        if args.cmd == "init-db":
            return _handle_init_db(args, settings)
        if args.cmd == "serve":
            return _handle_serve(args, settings)
    except ConfigurationError as exc:
        LOG.error("Start-up failed: %s", exc)
        return 1
    parser.error(f"unknown command {args.cmd}")
    return 2


if __name__ == "__main__":  # pragma: no cover - module entrypoint
    raise SystemExit(main())
