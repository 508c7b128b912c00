"""Expense store: validated CRUD over the ``expenses`` table.

Every operation runs in its own unit of work obtained from the injected
:class:`~expense_tracker.database.Database`. Input is validated with the
pydantic schemas before any statement reaches the database, so a rejected
write never touches storage.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Optional

from pydantic import ValidationError as SchemaValidationError

from . import crud, schemas
from .database import Database
from .errors import ValidationError

LOG = logging.getLogger(__name__)


def _validate(schema: type[schemas.ExpenseUpdate], **fields: Any) -> Any:
    try:
        return schema(**fields)
    except SchemaValidationError as exc:
        raise ValidationError(schemas.describe_errors(exc.errors())) from exc


class ExpenseStore:
    """CRUD operations on expenses backed by a :class:`Database` handle."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def list(self) -> List[schemas.ExpenseRead]:
        """Return every expense, newest ``date`` first."""

        with self.database.session_scope() as session:
            return [schemas.ExpenseRead.model_validate(row) for row in crud.list_expenses(session)]

    def get(self, expense_id: int) -> schemas.ExpenseRead:
        with self.database.session_scope() as session:
            return schemas.ExpenseRead.model_validate(crud.get_expense(session, expense_id))

    def create(
        self,
        description: Any = None,
        amount: Any = None,
        category: Any = None,
        date: Optional[datetime | str] = None,
    ) -> schemas.ExpenseRead:
        """Validate and insert a new expense, returning the stored record.

        The insert and the re-read of the new row share one transaction, so a
        failing read rolls the insert back.

        Raises:
            ValidationError: If any field is invalid.
            StorageError: If the database fails.
        """

        expense_in = _validate(
            schemas.ExpenseCreate,
            description=description,
            amount=amount,
            category=category,
            date=date,
        )
        with self.database.session_scope() as session:
            expense = schemas.ExpenseRead.model_validate(crud.create_expense(session, expense_in))
        LOG.info("Created expense %s (%s %s)", expense.id, expense.category, expense.amount)
        return expense

    def update(
        self,
        expense_id: int,
        description: Any = None,
        amount: Any = None,
        category: Any = None,
    ) -> schemas.ExpenseRead:
        """Overwrite description, amount and category of an existing expense.

        Raises:
            ValidationError: If any field is invalid.
            NotFoundError: If ``expense_id`` does not exist.
            StorageError: If the database fails.
        """

        update_in = _validate(
            schemas.ExpenseUpdate,
            description=description,
            amount=amount,
            category=category,
        )
        with self.database.session_scope() as session:
            expense = schemas.ExpenseRead.model_validate(crud.update_expense(session, expense_id, update_in))
        LOG.info("Updated expense %s", expense_id)
        return expense

    def delete(self, expense_id: int) -> None:
        """Hard-delete an expense; raises ``NotFoundError`` when it is already gone."""

        with self.database.session_scope() as session:
            crud.delete_expense(session, expense_id)
        LOG.info("Deleted expense %s", expense_id)

    def ping(self) -> None:
        self.database.ping()


__all__ = ["ExpenseStore"]
