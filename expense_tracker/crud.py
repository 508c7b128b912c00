"""CRUD helper functions working on an open SQLAlchemy session."""
from __future__ import annotations

from typing import List

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from . import models, schemas
from .errors import NotFoundError


def list_expenses(session: Session) -> List[models.Expense]:
    stmt = select(models.Expense).order_by(models.Expense.date.desc(), models.Expense.id.desc())
    return list(session.scalars(stmt))


def get_expense(session: Session, expense_id: int) -> models.Expense:
    expense = session.get(models.Expense, expense_id)
    if expense is None:
        raise NotFoundError(f"Expense {expense_id} not found")
    return expense


def create_expense(session: Session, expense_in: schemas.ExpenseCreate) -> models.Expense:
    data = expense_in.model_dump(exclude_none=True)
    expense = models.Expense(**data)
    session.add(expense)
    session.flush()
    # Re-read so server generated columns (id, date, timestamps) are authoritative.
    session.refresh(expense)
    return expense


def update_expense(session: Session, expense_id: int, update_in: schemas.ExpenseUpdate) -> models.Expense:
    expense = get_expense(session, expense_id)
    for field, value in update_in.model_dump().items():
        setattr(expense, field, value)
    expense.updated_at = func.now()
    session.flush()
    session.refresh(expense)
    return expense


def delete_expense(session: Session, expense_id: int) -> None:
    expense = get_expense(session, expense_id)
    session.delete(expense)
    session.flush()
