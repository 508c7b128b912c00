"""Expense tracking service: REST API over a single ``expenses`` table."""

__version__ = "1.0.0"

__all__ = [
    "cli",
    "config",
    "crud",
    "database",
    "errors",
    "logging",
    "models",
    "schemas",
    "server",
    "store",
]
