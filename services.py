from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import ClassVar, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, joinedload

from analytics import (
    LedgerEntry,
    budget_usage,
    category_breakdown,
    dashboard_summary,
    monthly_trends,
    to_cents,
    top_categories,
)
from config import get_settings
from errors import AuthError, ConflictError, NotFoundError, ValidationError
from models import (
    Budget,
    Category,
    Expense,
    RefreshToken,
    TransactionType,
    User,
)
from periods import (
    DateWindow,
    budget_period_start,
    local_now,
    local_today,
    previous_window,
    shift_months,
)
from schemas import (
    AnalyticsFilters,
    BudgetIn,
    BudgetUpdate,
    CategoryFilters,
    CategoryIn,
    ExpenseFilters,
    ExpenseIn,
    ExpenseUpdate,
    LoginIn,
    RegisterIn,
)
from security import (
    InvalidToken,
    hash_password,
    issue_access_token,
    issue_refresh_token,
    verify_password,
    verify_refresh_token,
)

logger = logging.getLogger(__name__)

CATEGORY_NOT_OWNED = "Category not found or doesn't belong to you"


def _positive_cents(amount) -> int:
    cents = to_cents(amount)
    if cents <= 0:
        raise ValidationError(
            "Validation failed",
            errors={"amount": "Amount must be a positive number"},
        )
    return cents


def _apply_window(stmt, window: DateWindow):
    if window.start is not None:
        stmt = stmt.where(Expense.date >= window.start)
    if window.end is not None:
        stmt = stmt.where(Expense.date <= window.end)
    return stmt


class OwnedService:
    """Base for per-user entity services.

    Every by-id read goes through ``get``, which filters on the owner, so a
    record belonging to another user is indistinguishable from a missing one.
    """

    model: ClassVar[type]
    label: ClassVar[str] = "Resource"

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _lookup(self, item_id: int):
        return select(self.model).where(
            self.model.id == item_id, self.model.user_id == self.user_id
        )

    def get(self, item_id: int):
        item = self.session.scalar(self._lookup(item_id))
        if item is None:
            raise NotFoundError(f"{self.label} not found")
        return item


class CategoryService(OwnedService):
    model = Category
    label = "Category"

    def list_all(self, filters: Optional[CategoryFilters] = None) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.created_at.desc(), Category.id.desc())
        )
        if filters and filters.type:
            stmt = stmt.where(Category.type == filters.type)
        return list(self.session.scalars(stmt).all())

    def require_owned(self, category_id: int) -> Category:
        try:
            return self.get(category_id)
        except NotFoundError:
            raise NotFoundError(CATEGORY_NOT_OWNED) from None

    def create(self, data: CategoryIn) -> Category:
        existing = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                func.lower(Category.name) == data.name.lower(),
            )
        )
        if existing:
            raise ConflictError("Category with this name already exists")
        category = Category(
            user_id=self.user_id,
            name=data.name,
            type=data.type,
            color=data.color or None,
            icon=data.icon or None,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        expense_count = self.session.execute(
            select(func.count(Expense.id)).where(Expense.category_id == category.id)
        ).scalar_one()
        if expense_count > 0:
            raise ConflictError(
                f"Cannot delete category. It has {expense_count} associated expense(s)"
            )
        self.session.execute(
            update(Budget)
            .where(Budget.user_id == self.user_id, Budget.category_id == category.id)
            .values(category_id=None)
        )
        self.session.delete(category)
        self.session.commit()


class ExpenseService(OwnedService):
    model = Expense
    label = "Expense"

    def _lookup(self, item_id: int):
        return super()._lookup(item_id).options(joinedload(Expense.category))

    def list(self, filters: Optional[ExpenseFilters] = None) -> list[Expense]:
        filters = filters or ExpenseFilters()
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.user_id == self.user_id)
            .order_by(Expense.date.desc(), Expense.id.desc())
        )
        stmt = _apply_window(stmt, filters.window)
        if filters.category_id is not None:
            stmt = stmt.where(Expense.category_id == filters.category_id)
        if filters.type is not None:
            stmt = stmt.where(Expense.type == filters.type)
        return list(self.session.scalars(stmt).all())

    def create(self, data: ExpenseIn) -> Expense:
        amount_cents = _positive_cents(data.amount)
        CategoryService(self.session, self.user_id).require_owned(data.category_id)
        expense = Expense(
            user_id=self.user_id,
            amount_cents=amount_cents,
            description=data.description,
            date=data.date or local_today(),
            type=data.type,
            category_id=data.category_id,
        )
        self.session.add(expense)
        self.session.commit()
        return self.get(expense.id)

    def update(self, expense_id: int, data: ExpenseUpdate) -> Expense:
        expense = self.get(expense_id)
        fields = data.model_fields_set
        if data.category_id is not None and data.category_id != expense.category_id:
            CategoryService(self.session, self.user_id).require_owned(data.category_id)
            expense.category_id = data.category_id
        if "amount" in fields and data.amount is not None:
            expense.amount_cents = _positive_cents(data.amount)
        if "description" in fields and data.description is not None:
            description = data.description.strip()
            if not description:
                raise ValidationError(
                    "Validation failed", errors={"description": "Description is required"}
                )
            expense.description = description
        if "date" in fields and data.date is not None:
            expense.date = data.date
        if "type" in fields and data.type is not None:
            expense.type = data.type
        self.session.commit()
        self.session.expire(expense, ["category"])
        return self.get(expense.id)

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        self.session.delete(expense)
        self.session.commit()


@dataclass(frozen=True)
class BudgetProgress:
    budget: Budget
    spent_cents: int
    remaining_cents: int
    percentage: float
    period_start: datetime
    period_end: datetime


class BudgetService(OwnedService):
    model = Budget
    label = "Budget"

    def _lookup(self, item_id: int):
        return super()._lookup(item_id).options(joinedload(Budget.category))

    def list_all(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.created_at.desc(), Budget.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def create(self, data: BudgetIn) -> Budget:
        amount_cents = _positive_cents(data.amount)
        if data.category_id is not None:
            CategoryService(self.session, self.user_id).require_owned(data.category_id)
        budget = Budget(
            user_id=self.user_id,
            name=data.name.strip(),
            amount_cents=amount_cents,
            period=data.period,
            category_id=data.category_id,
        )
        self.session.add(budget)
        self.session.commit()
        return self.get(budget.id)

    def update(self, budget_id: int, data: BudgetUpdate) -> Budget:
        budget = self.get(budget_id)
        fields = data.model_fields_set
        if "category_id" in fields:
            if data.category_id is not None:
                CategoryService(self.session, self.user_id).require_owned(
                    data.category_id
                )
            budget.category_id = data.category_id
        if "name" in fields and data.name is not None:
            budget.name = data.name.strip()
        if "amount" in fields and data.amount is not None:
            budget.amount_cents = _positive_cents(data.amount)
        if "period" in fields and data.period is not None:
            budget.period = data.period
        self.session.commit()
        self.session.expire(budget, ["category"])
        return self.get(budget.id)

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()

    def spent_cents(
        self, start: date, end: date, category_id: Optional[int] = None
    ) -> int:
        stmt = select(func.coalesce(func.sum(Expense.amount_cents), 0)).where(
            Expense.user_id == self.user_id,
            Expense.type == TransactionType.expense,
            Expense.date.between(start, end),
        )
        if category_id is not None:
            stmt = stmt.where(Expense.category_id == category_id)
        return int(self.session.execute(stmt).scalar_one() or 0)

    def progress(self, budget_id: int, now: Optional[datetime] = None) -> BudgetProgress:
        budget = self.get(budget_id)
        now = now or local_now()
        period_start = budget_period_start(budget.period, now)
        spent = self.spent_cents(period_start.date(), now.date(), budget.category_id)
        remaining, percentage = budget_usage(budget.amount_cents, spent)
        return BudgetProgress(
            budget=budget,
            spent_cents=spent,
            remaining_cents=remaining,
            percentage=percentage,
            period_start=period_start,
            period_end=now,
        )


class AnalyticsService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def entries(
        self,
        window: DateWindow,
        transaction_type: Optional[TransactionType] = None,
    ) -> list[LedgerEntry]:
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.user_id == self.user_id)
        )
        stmt = _apply_window(stmt, window)
        if transaction_type is not None:
            stmt = stmt.where(Expense.type == transaction_type)
        return [LedgerEntry.from_expense(e) for e in self.session.scalars(stmt).all()]

    def summary(self, filters: AnalyticsFilters) -> dict[str, object]:
        window = filters.window
        entries = self.entries(window)
        previous_entries = None
        if window.is_bounded:
            previous_entries = self.entries(previous_window(window))
        return dashboard_summary(entries, previous_entries)

    def category_breakdown(self, filters: AnalyticsFilters) -> list[dict[str, object]]:
        return category_breakdown(self.entries(filters.window, filters.type))

    def monthly_trends(
        self, months: int = 6, today: Optional[date] = None
    ) -> list[dict[str, object]]:
        today = today or local_today()
        window = DateWindow(shift_months(today, -months), today)
        return monthly_trends(self.entries(window))

    def top_categories(self, filters: AnalyticsFilters) -> list[dict[str, object]]:
        transaction_type = filters.type or TransactionType.expense
        entries = self.entries(filters.window, transaction_type)
        return top_categories(entries, transaction_type, filters.limit)


@dataclass(frozen=True)
class LoginResult:
    user: User
    access_token: str
    refresh_token: str


class AuthService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_user(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def find_by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(select(User).where(User.email == email.strip().lower()))

    def list_users(self) -> list[User]:
        return list(self.session.scalars(select(User).order_by(User.id)).all())

    def register(self, data: RegisterIn) -> User:
        if self.find_by_email(data.email):
            raise ConflictError("User already exists")
        user = User(email=data.email, password_hash=hash_password(data.password))
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user

    def login(self, data: LoginIn) -> LoginResult:
        user = self.find_by_email(data.email)
        if user is None or not verify_password(data.password, user.password_hash):
            logger.warning("login_failed: invalid credentials")
            raise ValidationError("Invalid credentials")
        refresh_token = issue_refresh_token(user.id)
        self.session.add(RefreshToken(token=refresh_token, user_id=user.id))
        self.session.commit()
        logger.info(f"login: user_id={user.id}")
        return LoginResult(
            user=user,
            access_token=issue_access_token(user.id),
            refresh_token=refresh_token,
        )

    def refresh(self, token: Optional[str]) -> str:
        if not token:
            raise AuthError("No token")
        try:
            user_id = verify_refresh_token(token)
        except InvalidToken as exc:
            raise AuthError("Invalid token") from exc
        stored = self.session.scalar(
            select(RefreshToken).where(RefreshToken.token == token)
        )
        if stored is None or stored.user_id != user_id:
            raise AuthError("Invalid token")
        return issue_access_token(user_id)

    def logout(self, token: Optional[str]) -> int:
        if not token:
            return 0
        result = self.session.execute(
            delete(RefreshToken).where(RefreshToken.token == token)
        )
        self.session.commit()
        return result.rowcount or 0

    def purge_stale_tokens(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        cutoff = now - timedelta(days=get_settings().refresh_token_ttl_days)
        result = self.session.execute(
            delete(RefreshToken).where(RefreshToken.created_at < cutoff)
        )
        self.session.commit()
        return result.rowcount or 0

    def clear_tokens(self) -> int:
        result = self.session.execute(delete(RefreshToken))
        self.session.commit()
        return result.rowcount or 0
