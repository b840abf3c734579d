from datetime import date, datetime

import pytest
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from analytics import LedgerEntry, budget_usage, spent_in_window
from database import Base
from errors import NotFoundError
from models import BudgetPeriod, TransactionType, User
from periods import budget_period_start
from schemas import BudgetIn, BudgetUpdate, CategoryIn, ExpenseIn
from services import BudgetService, CategoryService, ExpenseService


@pytest.mark.parametrize("day", range(14, 21))
def test_weekly_period_starts_on_sunday_midnight(day: int) -> None:
    now = datetime(2024, 1, day, 13, 45, 12)
    start = budget_period_start(BudgetPeriod.weekly, now)

    assert start.weekday() == 6
    assert (start.hour, start.minute, start.second) == (0, 0, 0)
    assert start <= now
    assert (now - start).days < 7
    assert start.date() == date(2024, 1, 14)


def test_other_period_starts() -> None:
    now = datetime(2024, 5, 20, 18, 30)
    assert budget_period_start(BudgetPeriod.daily, now) == datetime(2024, 5, 20)
    assert budget_period_start(BudgetPeriod.monthly, now) == datetime(2024, 5, 1)
    assert budget_period_start(BudgetPeriod.yearly, now) == datetime(2024, 1, 1)


def test_budget_usage() -> None:
    assert budget_usage(20_000, 8_000) == (12_000, 40.0)
    assert budget_usage(10_000, 12_345) == (-2_345, 123.5)
    assert budget_usage(0, 500) == (-500, 0.0)


def _seed(session: Session):
    user = User(email="alice@example.com", password_hash="x")
    session.add(user)
    session.commit()
    categories = CategoryService(session, user.id)
    food = categories.create(CategoryIn(name="Food", type=TransactionType.expense))
    rent = categories.create(CategoryIn(name="Rent", type=TransactionType.expense))
    salary = categories.create(CategoryIn(name="Salary", type=TransactionType.income))
    expenses = ExpenseService(session, user.id)
    for amount, day, category, kind in [
        (50, date(2024, 1, 5), food, TransactionType.expense),
        (30, date(2024, 1, 10), food, TransactionType.expense),
        (10, date(2024, 1, 11), rent, TransactionType.expense),
        (2000, date(2024, 1, 3), salary, TransactionType.income),
        (999, date(2023, 12, 31), food, TransactionType.expense),
        (77, date(2024, 1, 20), food, TransactionType.expense),
    ]:
        expenses.create(
            ExpenseIn(
                amount=amount,
                description="seed",
                date=day,
                type=kind,
                category_id=category.id,
            )
        )
    return user, food


def test_progress_counts_expenses_in_current_period_for_category() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user, food = _seed(session)
        budgets = BudgetService(session, user.id)
        budget = budgets.create(BudgetIn(name="Groceries", amount=200, category_id=food.id))
        assert budget.period == BudgetPeriod.monthly

        progress = budgets.progress(budget.id, now=datetime(2024, 1, 17, 12, 0))

    assert progress.spent_cents == 8_000
    assert progress.remaining_cents == 12_000
    assert progress.percentage == 40.0
    assert progress.period_start == datetime(2024, 1, 1)
    assert progress.period_end == datetime(2024, 1, 17, 12, 0)


def test_progress_without_category_counts_every_expense() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user, _ = _seed(session)
        budgets = BudgetService(session, user.id)
        budget = budgets.create(BudgetIn(name="Everything", amount=100))

        progress = budgets.progress(budget.id, now=datetime(2024, 1, 17, 12, 0))

    assert progress.spent_cents == 9_000
    assert progress.percentage == 90.0


def test_store_side_sum_matches_in_memory_sum() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user, food = _seed(session)
        entries = [
            LedgerEntry.from_expense(e) for e in ExpenseService(session, user.id).list()
        ]
        budgets = BudgetService(session, user.id)
        for start, end, category_id in [
            (date(2024, 1, 1), date(2024, 1, 31), None),
            (date(2024, 1, 1), date(2024, 1, 31), food.id),
            (date(2023, 12, 31), date(2024, 1, 5), food.id),
            (date(2024, 2, 1), date(2024, 2, 29), None),
        ]:
            assert budgets.spent_cents(start, end, category_id) == spent_in_window(
                entries, start, end, category_id
            )


def test_budget_update_and_clearing_category() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user, food = _seed(session)
        budgets = BudgetService(session, user.id)
        budget = budgets.create(
            BudgetIn(name="Food", amount=150, period=BudgetPeriod.weekly, category_id=food.id)
        )

        renamed = budgets.update(budget.id, BudgetUpdate(name="Weekly food", amount="175.5"))
        assert renamed.name == "Weekly food"
        assert renamed.amount_cents == 17_550
        assert renamed.category_id == food.id

        cleared = budgets.update(budget.id, BudgetUpdate.model_validate({"categoryId": None}))
        assert cleared.category_id is None
        assert cleared.period == BudgetPeriod.weekly


def test_budget_of_another_user_is_not_found() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user, food = _seed(session)
        budget = BudgetService(session, user.id).create(BudgetIn(name="Food", amount=10))
        stranger = User(email="eve@example.com", password_hash="x")
        session.add(stranger)
        session.commit()

        others = BudgetService(session, stranger.id)
        with pytest.raises(NotFoundError) as exc:
            others.progress(budget.id)
        assert exc.value.message == "Budget not found"
        with pytest.raises(NotFoundError):
            others.create(BudgetIn(name="Theirs", amount=10, category_id=food.id))
        assert others.list_all() == []


def test_blank_budget_name_is_rejected() -> None:
    with pytest.raises(PydanticValidationError):
        BudgetIn(name="   ", amount=10)
    with pytest.raises(PydanticValidationError):
        BudgetUpdate(name=" \t ")
    assert BudgetIn(name="  Food  ", amount=10).name == "Food"
    with pytest.raises(PydanticValidationError):
        BudgetIn(name="Food", amount="1e30")
