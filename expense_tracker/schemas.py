"""Pydantic schemas for validating and serialising expense data."""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

DEFAULT_CATEGORY = "Other"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
AMOUNT_QUANTUM = Decimal("0.01")
MAX_AMOUNT = Decimal("99999999.99")
DESCRIPTION_MAX_LENGTH = 255
CATEGORY_MAX_LENGTH = 100

AMOUNT_ERROR = "Amount must be a positive number"


def parse_amount(value: Any) -> Decimal:
    """Coerce ``value`` to a positive two-decimal :class:`Decimal`.

    Accepts numbers and numeric strings. Booleans, blanks, non-finite values
    and anything that rounds to ``0.00`` or below are rejected.
    """

    if value is None or isinstance(value, bool):
        raise ValueError(AMOUNT_ERROR)
    if isinstance(value, str):
        value = value.strip()
    if not isinstance(value, str | int | float | Decimal) or value == "":
        raise ValueError(AMOUNT_ERROR)
    try:
        amount = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(AMOUNT_ERROR) from exc
    if not amount.is_finite() or amount <= 0:
        raise ValueError(AMOUNT_ERROR)
    try:
        amount = amount.quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError(f"Amount must not exceed {MAX_AMOUNT}") from exc
    if amount <= 0:
        raise ValueError(AMOUNT_ERROR)
    if amount > MAX_AMOUNT:
        raise ValueError(f"Amount must not exceed {MAX_AMOUNT}")
    return amount


def format_amount(value: Decimal | float | str) -> str:
    """Render an amount with exactly two decimal digits."""

    return str(Decimal(str(value)).quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP))


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ``YYYY-MM-DD HH:MM:SS``, ISO 8601 or ``YYYY-MM-DD`` into a naive UTC datetime."""

    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            parsed = datetime.strptime(text, TIMESTAMP_FORMAT)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError as exc:
                raise ValueError("Date must be formatted as YYYY-MM-DD HH:MM:SS") from exc
    else:
        raise ValueError("Date must be formatted as YYYY-MM-DD HH:MM:SS")
    if parsed.tzinfo is not None:
        try:
            parsed = parsed.astimezone(UTC).replace(tzinfo=None)
        except OverflowError as exc:
            raise ValueError("Date must be formatted as YYYY-MM-DD HH:MM:SS") from exc
    return parsed.replace(microsecond=0)


def _required_text(value: Any, label: str, max_length: int) -> str:
    if value is None:
        raise ValueError(f"{label} is required")
    if not isinstance(value, str):
        raise ValueError(f"{label} must be a string")
    text = value.strip()
    if not text:
        raise ValueError(f"{label} is required")
    if len(text) > max_length:
        raise ValueError(f"{label} must be at most {max_length} characters")
    return text


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class ExpenseUpdate(BaseModel):
    """Fields a client may overwrite on an existing expense."""

    description: str = Field(None, validate_default=True)
    amount: Decimal = Field(None, validate_default=True)
    category: str = Field(None, validate_default=True)

    @field_validator("description", mode="before")
    @classmethod
    def _check_description(cls, value: Any) -> str:
        return _required_text(value, "Description", DESCRIPTION_MAX_LENGTH)

    @field_validator("amount", mode="before")
    @classmethod
    def _check_amount(cls, value: Any) -> Decimal:
        return parse_amount(value)

    @field_validator("category", mode="before")
    @classmethod
    def _check_category(cls, value: Any) -> str:
        if value is None:
            return DEFAULT_CATEGORY
        return _required_text(value, "Category", CATEGORY_MAX_LENGTH)


class ExpenseCreate(ExpenseUpdate):
    """Payload of a new expense; ``date`` defaults to the insertion time."""

    date: Optional[datetime] = None

    @field_validator("date", mode="before")
    @classmethod
    def _check_date(cls, value: Any) -> Optional[datetime]:
        return parse_timestamp(value)


class ExpenseRead(ORMModel):
    id: int
    description: str
    amount: Decimal
    category: str
    date: datetime

    @field_serializer("amount", when_used="json")
    def _serialize_amount(self, value: Decimal) -> str:
        return format_amount(value)

    @field_serializer("date", when_used="json")
    def _serialize_date(self, value: datetime) -> str:
        return value.strftime(TIMESTAMP_FORMAT)


class ErrorRead(BaseModel):
    error: str
    message: Optional[str] = None


class HealthRead(BaseModel):
    status: str
    db: str
    uptime: float
    error: Optional[str] = None


def describe_errors(errors: Iterable[Mapping[str, Any]]) -> str:
    """Turn pydantic/FastAPI error entries into one human readable message."""

    for error in errors:
        kind = error.get("type", "")
        loc = tuple(error.get("loc", ()))
        if kind == "json_invalid":
            return "Malformed JSON body"
        if loc and loc[0] == "path":
            return f"Invalid {loc[-1].replace('_', ' ')}"
        if loc in {("body",), ()}:
            return "Request body must be a JSON object"
        message = str(error.get("msg", "Invalid request"))
        return message.removeprefix("Value error, ")
    return "Invalid request"


__all__ = [
    "AMOUNT_ERROR",
    "DEFAULT_CATEGORY",
    "TIMESTAMP_FORMAT",
    "ErrorRead",
    "ExpenseCreate",
    "ExpenseRead",
    "ExpenseUpdate",
    "HealthRead",
    "describe_errors",
    "format_amount",
    "parse_amount",
    "parse_timestamp",
]
