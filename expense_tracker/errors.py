"""Exception hierarchy shared by the store, the API layer and the CLI."""
from __future__ import annotations


class ExpenseTrackerError(RuntimeError):
    """Base class for every error raised by the service."""


class ValidationError(ExpenseTrackerError):
    """Raised when client input fails validation. Nothing is persisted."""


class NotFoundError(ExpenseTrackerError):
    """Raised when a referenced expense id does not exist."""


class StorageError(ExpenseTrackerError):
    """Raised when the database cannot be reached or a statement fails."""


class ConfigurationError(ExpenseTrackerError):
    """Raised at start-up when the service cannot be configured or provisioned."""


__all__ = [
    "ConfigurationError",
    "ExpenseTrackerError",
    "NotFoundError",
    "StorageError",
    "ValidationError",
]
