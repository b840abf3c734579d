from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from errors import ConflictError, NotFoundError
from models import TransactionType, User
from schemas import BudgetIn, CategoryFilters, CategoryIn, ExpenseIn
from services import BudgetService, CategoryService, ExpenseService


def _user(session: Session, email: str) -> User:
    user = User(email=email, password_hash="x")
    session.add(user)
    session.commit()
    return user


def test_categories_are_listed_per_owner_and_filtered_by_type() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice = _user(session, "alice@example.com")
        bob = _user(session, "bob@example.com")
        mine = CategoryService(session, alice.id)
        mine.create(CategoryIn(name="Food", type=TransactionType.expense, color="#ff0000"))
        mine.create(CategoryIn(name="Salary", type=TransactionType.income))
        CategoryService(session, bob.id).create(
            CategoryIn(name="Rent", type=TransactionType.expense)
        )

        names = {c.name for c in mine.list_all()}
        assert names == {"Food", "Salary"}

        income_only = mine.list_all(CategoryFilters(type=TransactionType.income))
        assert [c.name for c in income_only] == ["Salary"]


def test_duplicate_category_name_is_rejected_case_insensitively() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice = _user(session, "alice@example.com")
        bob = _user(session, "bob@example.com")
        categories = CategoryService(session, alice.id)
        categories.create(CategoryIn(name="Food", type=TransactionType.expense))

        with pytest.raises(ConflictError) as exc:
            categories.create(CategoryIn(name="  food ", type=TransactionType.expense))
        assert exc.value.message == "Category with this name already exists"
        assert exc.value.status_code == 400

        # another user may reuse the name
        other = CategoryService(session, bob.id).create(
            CategoryIn(name="Food", type=TransactionType.expense)
        )
        assert other.user_id == bob.id


def test_category_of_another_user_is_not_found() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice = _user(session, "alice@example.com")
        bob = _user(session, "bob@example.com")
        food = CategoryService(session, alice.id).create(
            CategoryIn(name="Food", type=TransactionType.expense)
        )

        with pytest.raises(NotFoundError):
            CategoryService(session, bob.id).get(food.id)
        with pytest.raises(NotFoundError):
            CategoryService(session, bob.id).delete(food.id)
        assert CategoryService(session, alice.id).get(food.id).name == "Food"


def test_delete_is_blocked_while_expenses_reference_the_category() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice = _user(session, "alice@example.com")
        categories = CategoryService(session, alice.id)
        food = categories.create(CategoryIn(name="Food", type=TransactionType.expense))
        expenses = ExpenseService(session, alice.id)
        first = expenses.create(
            ExpenseIn(amount=12, description="Lunch", date=date(2024, 1, 5), category_id=food.id)
        )
        expenses.create(
            ExpenseIn(amount=8, description="Coffee", date=date(2024, 1, 6), category_id=food.id)
        )

        with pytest.raises(ConflictError) as exc:
            categories.delete(food.id)
        assert exc.value.message == "Cannot delete category. It has 2 associated expense(s)"

        expenses.delete(first.id)
        with pytest.raises(ConflictError) as exc:
            categories.delete(food.id)
        assert "It has 1 associated expense(s)" in exc.value.message


def test_deleting_unused_category_detaches_budgets() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice = _user(session, "alice@example.com")
        categories = CategoryService(session, alice.id)
        travel = categories.create(CategoryIn(name="Travel", type=TransactionType.expense))
        budgets = BudgetService(session, alice.id)
        budget = budgets.create(BudgetIn(name="Trips", amount=300, category_id=travel.id))

        categories.delete(travel.id)

        assert categories.list_all() == []
        assert budgets.get(budget.id).category_id is None
