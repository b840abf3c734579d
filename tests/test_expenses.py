from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from csv_utils import export_expenses, sanitize_csv_value
from database import Base
from errors import NotFoundError, ValidationError
from models import TransactionType, User
from periods import local_today
from schemas import CategoryIn, ExpenseFilters, ExpenseIn, ExpenseUpdate
from services import CATEGORY_NOT_OWNED, CategoryService, ExpenseService


def _setup(session: Session):
    alice = User(email="alice@example.com", password_hash="x")
    bob = User(email="bob@example.com", password_hash="x")
    session.add_all([alice, bob])
    session.commit()
    categories = CategoryService(session, alice.id)
    food = categories.create(CategoryIn(name="Food", type=TransactionType.expense))
    salary = categories.create(CategoryIn(name="Salary", type=TransactionType.income))
    return alice, bob, food, salary


def test_expense_requires_a_category_owned_by_the_caller() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, bob, food, _ = _setup(session)

        with pytest.raises(NotFoundError) as exc:
            ExpenseService(session, bob.id).create(
                ExpenseIn(amount=10, description="Sneaky", category_id=food.id)
            )
        assert exc.value.message == CATEGORY_NOT_OWNED

        expense = ExpenseService(session, alice.id).create(
            ExpenseIn(amount="12.345", description="  Lunch  ", category_id=food.id)
        )
        assert expense.amount_cents == 1235
        assert expense.description == "Lunch"
        assert expense.type == TransactionType.expense
        assert expense.date == local_today()
        assert expense.category.name == "Food"


def test_expense_of_another_user_is_not_found() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, bob, food, _ = _setup(session)
        expense = ExpenseService(session, alice.id).create(
            ExpenseIn(amount=10, description="Lunch", category_id=food.id)
        )

        others = ExpenseService(session, bob.id)
        with pytest.raises(NotFoundError) as exc:
            others.get(expense.id)
        assert exc.value.message == "Expense not found"
        with pytest.raises(NotFoundError):
            others.update(expense.id, ExpenseUpdate(amount=1))
        with pytest.raises(NotFoundError):
            others.delete(expense.id)
        assert others.list() == []


def test_expense_filters_and_ordering() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, _, food, salary = _setup(session)
        expenses = ExpenseService(session, alice.id)
        for amount, day, category, kind in [
            (50, date(2024, 1, 5), food, TransactionType.expense),
            (2000, date(2024, 1, 3), salary, TransactionType.income),
            (20, date(2024, 2, 1), food, TransactionType.expense),
            (15, date(2023, 12, 31), food, TransactionType.expense),
        ]:
            expenses.create(
                ExpenseIn(
                    amount=amount,
                    description=f"entry {amount}",
                    date=day,
                    type=kind,
                    category_id=category.id,
                )
            )

        everything = expenses.list()
        assert [e.date for e in everything] == sorted(
            (e.date for e in everything), reverse=True
        )

        january = expenses.list(
            ExpenseFilters(start_date=date(2024, 1, 1), end_date=date(2024, 1, 31))
        )
        assert [e.amount_cents for e in january] == [5000, 200000]

        food_only = expenses.list(ExpenseFilters(category_id=food.id))
        assert len(food_only) == 3

        income_only = expenses.list(ExpenseFilters(type=TransactionType.income))
        assert [e.amount_cents for e in income_only] == [200000]


def test_filters_reject_inverted_window() -> None:
    with pytest.raises(PydanticValidationError):
        ExpenseFilters(start_date=date(2024, 2, 1), end_date=date(2024, 1, 1))


def test_filters_accept_iso_timestamps() -> None:
    filters = ExpenseFilters.model_validate(
        {"startDate": "2024-01-01T10:00:00Z", "endDate": "2024-01-31"}
    )
    assert filters.window.start == date(2024, 1, 1)
    assert filters.window.end == date(2024, 1, 31)


def test_partial_update_keeps_untouched_fields() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, bob, food, salary = _setup(session)
        expenses = ExpenseService(session, alice.id)
        expense = expenses.create(
            ExpenseIn(amount=10, description="Lunch", date=date(2024, 1, 5), category_id=food.id)
        )

        updated = expenses.update(expense.id, ExpenseUpdate(amount="42.5"))
        assert updated.amount_cents == 4250
        assert updated.description == "Lunch"
        assert updated.date == date(2024, 1, 5)

        moved = expenses.update(
            expense.id,
            ExpenseUpdate(category_id=salary.id, type=TransactionType.income),
        )
        assert moved.category.name == "Salary"
        assert moved.type == TransactionType.income

        bob_food = CategoryService(session, bob.id).create(
            CategoryIn(name="Food", type=TransactionType.expense)
        )
        with pytest.raises(NotFoundError):
            expenses.update(expense.id, ExpenseUpdate(category_id=bob_food.id))


def test_amount_must_be_positive() -> None:
    with pytest.raises(PydanticValidationError):
        ExpenseIn(amount=0, description="Nothing", category_id=1)

    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        alice, _, food, _ = _setup(session)
        # rounds to zero cents
        with pytest.raises(ValidationError):
            ExpenseService(session, alice.id).create(
                ExpenseIn(amount="0.001", description="Dust", category_id=food.id)
            )


def test_csv_export_format() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, _, food, salary = _setup(session)
        expenses = ExpenseService(session, alice.id)
        expenses.create(
            ExpenseIn(
                amount=50,
                description='Lunch, "office"',
                date=date(2024, 1, 5),
                category_id=food.id,
            )
        )
        expenses.create(
            ExpenseIn(
                amount="2000.5",
                description="=HYPERLINK(1)",
                date=date(2024, 11, 23),
                type=TransactionType.income,
                category_id=salary.id,
            )
        )

        lines = export_expenses(expenses.list()).split("\n")

    assert lines[0] == "Date,Description,Category,Type,Amount"
    assert lines[1] == '23/11/2024,"\t=HYPERLINK(1)",Salary,income,2000.50'
    assert lines[2] == '5/1/2024,"Lunch, ""office""",Food,expense,50.00'


def test_sanitize_only_prefixes_formula_triggers() -> None:
    assert sanitize_csv_value("Shoes") == "Shoes"
    assert sanitize_csv_value("+1 555") == "\t+1 555"
    assert sanitize_csv_value("-5") == "\t-5"
    assert sanitize_csv_value("@SUM") == "\t@SUM"
    assert sanitize_csv_value("   ") == ""


def test_amount_has_an_upper_bound() -> None:
    with pytest.raises(PydanticValidationError):
        ExpenseIn(amount="1e30", description="Yacht", category_id=1)
    with pytest.raises(PydanticValidationError):
        ExpenseUpdate(amount="1000000000000")
    assert ExpenseIn(
        amount="999999999999.99", description="Everything", category_id=1
    ).amount == Decimal("999999999999.99")
