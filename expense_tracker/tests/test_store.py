from __future__ import annotations

from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from expense_tracker import crud, schemas
from expense_tracker.errors import NotFoundError, StorageError, ValidationError


def test_create_returns_persisted_record(store):
    expense = store.create(description="  Coffee ", amount="3.50", category=" Food ")
    assert expense.id == 1
    assert expense.description == "Coffee"
    assert expense.amount == Decimal("3.50")
    assert expense.category == "Food"
    assert isinstance(expense.date, datetime)


def test_create_defaults_category_to_other(store):
    expense = store.create(description="Bus ticket", amount=2)
    assert expense.category == "Other"
    assert expense.amount == Decimal("2.00")


def test_create_keeps_supplied_date(store):
    expense = store.create(description="Rent", amount="950", category="Home", date="2024-03-01 09:30:00")
    assert expense.date == datetime(2024, 3, 1, 9, 30, 0)


def test_create_rounds_to_two_decimals(store):
    expense = store.create(description="Gum", amount="1.005")
    assert expense.amount == Decimal("1.01")


def test_create_accepts_amount_rounding_down_to_maximum(store):
    expense = store.create(description="House", amount="99999999.994")
    assert expense.amount == Decimal("99999999.99")


@pytest.mark.parametrize(
    ("fields", "message"),
    [
        ({"description": "", "amount": "3.50"}, "Description is required"),
        ({"description": "   ", "amount": "3.50"}, "Description is required"),
        ({"amount": "3.50"}, "Description is required"),
        ({"description": "Coffee", "amount": "0"}, "Amount must be a positive number"),
        ({"description": "Coffee", "amount": -4}, "Amount must be a positive number"),
        ({"description": "Coffee", "amount": "abc"}, "Amount must be a positive number"),
        ({"description": "Coffee", "amount": "0.001"}, "Amount must be a positive number"),
        ({"description": "Coffee", "amount": True}, "Amount must be a positive number"),
        ({"description": "Coffee"}, "Amount must be a positive number"),
        ({"description": "Coffee", "amount": "3.50", "category": "  "}, "Category is required"),
        ({"description": "Coffee", "amount": "3.50", "date": "yesterday"}, "Date must be formatted"),
        ({"description": "Coffee", "amount": "3.50", "date": "0001-01-01T00:00:00+05:00"}, "Date must be formatted"),
        ({"description": "Coffee", "amount": "3.50", "date": "9999-12-31T23:59:59-05:00"}, "Date must be formatted"),
        ({"description": "Coffee", "amount": "99999999.995"}, "Amount must not exceed"),
        ({"description": "Coffee", "amount": "1e30"}, "Amount must not exceed"),
    ],
)
def test_create_rejects_invalid_input_without_writing(store, fields, message):
    with pytest.raises(ValidationError, match=message):
        store.create(**fields)
    assert store.list() == []


def test_list_orders_by_date_descending(store):
    old = store.create(description="Old", amount="1.00", date="2023-01-01 08:00:00")
    new = store.create(description="New", amount="2.00", date="2024-01-01 08:00:00")
    middle = store.create(description="Middle", amount="3.00", date="2023-06-01 08:00:00")
    assert [expense.id for expense in store.list()] == [new.id, middle.id, old.id]


def test_list_breaks_date_ties_by_newest_id(store):
    first = store.create(description="First", amount="1.00", date="2024-01-01 08:00:00")
    second = store.create(description="Second", amount="1.00", date="2024-01-01 08:00:00")
    assert [expense.id for expense in store.list()] == [second.id, first.id]


def test_update_overwrites_mutable_fields(store):
    created = store.create(description="Coffee", amount="3.50", category="Food", date="2024-05-05 10:00:00")
    updated = store.update(created.id, description="Large coffee", amount="4.00", category="Drinks")
    assert updated.id == created.id
    assert updated.description == "Large coffee"
    assert updated.amount == Decimal("4.00")
    assert updated.category == "Drinks"
    assert updated.date == created.date


def test_update_refreshes_updated_at(store, database):
    created = store.create(description="Coffee", amount="3.50")
    with database.session_scope() as session:
        row = crud.get_expense(session, created.id)
        row.updated_at = datetime(2000, 1, 1)
    store.update(created.id, description="Coffee", amount="3.50")
    with database.session_scope() as session:
        row = crud.get_expense(session, created.id)
        assert row.updated_at > datetime(2000, 1, 1)
        assert row.created_at is not None


def test_update_missing_expense_raises_not_found(store):
    store.create(description="Coffee", amount="3.50")
    before = store.list()
    with pytest.raises(NotFoundError):
        store.update(99, description="Tea", amount="2.00")
    assert store.list() == before


def test_update_validates_before_lookup(store):
    created = store.create(description="Coffee", amount="3.50")
    with pytest.raises(ValidationError):
        store.update(created.id, description="Coffee", amount="-1")
    assert store.get(created.id).amount == Decimal("3.50")


def test_delete_removes_record_and_reports_missing(store):
    expense = store.create(description="Coffee", amount="3.50")
    store.delete(expense.id)
    assert store.list() == []
    with pytest.raises(NotFoundError):
        store.delete(expense.id)
    with pytest.raises(NotFoundError):
        store.get(expense.id)


def test_failed_reread_rolls_back_insert(store, monkeypatch):
    def broken_refresh(self, instance, *args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("connection lost"))

    monkeypatch.setattr(Session, "refresh", broken_refresh)
    with pytest.raises(StorageError):
        store.create(description="Coffee", amount="3.50")
    monkeypatch.undo()
    assert store.list() == []


def test_closed_database_raises_storage_error(store, database):
    database.close()
    with pytest.raises(StorageError):
        store.list()
    with pytest.raises(StorageError):
        store.ping()


def test_crud_helpers_share_a_session(database):
    with database.session_scope() as session:
        expense = crud.create_expense(
            session,
            schemas.ExpenseCreate(description="Lunch", amount="12.00", category="Food"),
        )
        assert expense.id is not None
        assert [row.id for row in crud.list_expenses(session)] == [expense.id]
        crud.delete_expense(session, expense.id)
        with pytest.raises(NotFoundError):
            crud.get_expense(session, expense.id)
