"""In-memory aggregation over a user's ledger.

Every function here takes already owner-filtered ``LedgerEntry`` rows and
makes a single pass over them. Amounts are summed in integer cents and only
converted to decimal amounts when the result payload is built.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from models import Expense, TransactionType

DEFAULT_CATEGORY_COLOR = "#8884d8"


def to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_amount(cents: int) -> float:
    return cents / 100


def percent_of(part: int, whole: int) -> float:
    """``part`` as a percentage of ``whole``, half-up to one decimal."""
    ratio = Decimal(part) * 100 / Decimal(whole)
    return float(ratio.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def percent_change(current: int, previous: int) -> float:
    if previous <= 0:
        return 0.0
    return percent_of(current - previous, previous)


@dataclass(frozen=True)
class LedgerEntry:
    amount_cents: int
    type: TransactionType
    date: date
    category_id: int
    category_name: str
    category_color: Optional[str] = None
    category_icon: Optional[str] = None

    @classmethod
    def from_expense(cls, expense: Expense) -> "LedgerEntry":
        category = expense.category
        return cls(
            amount_cents=expense.amount_cents,
            type=expense.type,
            date=expense.date,
            category_id=expense.category_id,
            category_name=category.name if category else "",
            category_color=category.color if category else None,
            category_icon=category.icon if category else None,
        )


@dataclass(frozen=True)
class Totals:
    income_cents: int
    expense_cents: int
    count: int

    @property
    def balance_cents(self) -> int:
        return self.income_cents - self.expense_cents


@dataclass
class CategoryTotal:
    category_id: int
    name: str
    color: Optional[str]
    icon: Optional[str]
    type: TransactionType
    total_cents: int = 0
    count: int = 0


def totals(entries: Iterable[LedgerEntry]) -> Totals:
    income = 0
    expense = 0
    count = 0
    for entry in entries:
        count += 1
        if entry.type == TransactionType.income:
            income += entry.amount_cents
        else:
            expense += entry.amount_cents
    return Totals(income_cents=income, expense_cents=expense, count=count)


def group_by_category(
    entries: Iterable[LedgerEntry],
    transaction_type: Optional[TransactionType] = None,
) -> list[CategoryTotal]:
    """Sum and count entries per category, largest total first.

    Ties keep the order in which categories were first seen.
    """
    groups: dict[int, CategoryTotal] = {}
    for entry in entries:
        if transaction_type is not None and entry.type != transaction_type:
            continue
        group = groups.get(entry.category_id)
        if group is None:
            group = CategoryTotal(
                category_id=entry.category_id,
                name=entry.category_name,
                color=entry.category_color,
                icon=entry.category_icon,
                type=entry.type,
            )
            groups[entry.category_id] = group
        group.total_cents += entry.amount_cents
        group.count += 1
    return sorted(groups.values(), key=lambda g: g.total_cents, reverse=True)


def dashboard_summary(
    entries: list[LedgerEntry],
    previous_entries: Optional[list[LedgerEntry]] = None,
) -> dict[str, object]:
    current = totals(entries)
    summary: dict[str, object] = {
        "totalIncome": cents_to_amount(current.income_cents),
        "totalExpenses": cents_to_amount(current.expense_cents),
        "balance": cents_to_amount(current.balance_cents),
        "savings": cents_to_amount(current.balance_cents),
        "transactionCount": current.count,
        "categoryBreakdown": [
            {
                "category": group.name,
                "categoryId": group.category_id,
                "color": group.color,
                "icon": group.icon,
                "amount": cents_to_amount(group.total_cents),
                "count": group.count,
                "type": group.type.value,
            }
            for group in group_by_category(entries)
        ],
    }
    if previous_entries is not None:
        previous = totals(previous_entries)
        summary["comparison"] = {
            "income": cents_to_amount(previous.income_cents),
            "expenses": cents_to_amount(previous.expense_cents),
            "incomeChange": percent_change(current.income_cents, previous.income_cents),
            "expenseChange": percent_change(
                current.expense_cents, previous.expense_cents
            ),
        }
    return summary


def category_breakdown(
    entries: Iterable[LedgerEntry],
    transaction_type: Optional[TransactionType] = None,
) -> list[dict[str, object]]:
    return [
        {
            "name": group.name,
            "categoryId": group.category_id,
            "value": cents_to_amount(group.total_cents),
            "count": group.count,
            "color": group.color or DEFAULT_CATEGORY_COLOR,
            "icon": group.icon,
        }
        for group in group_by_category(entries, transaction_type)
    ]


def monthly_trends(entries: Iterable[LedgerEntry]) -> list[dict[str, object]]:
    months: dict[str, list[int]] = {}
    for entry in entries:
        key = f"{entry.date.year:04d}-{entry.date.month:02d}"
        bucket = months.setdefault(key, [0, 0])
        if entry.type == TransactionType.income:
            bucket[0] += entry.amount_cents
        else:
            bucket[1] += entry.amount_cents
    # zero-padded YYYY-MM keys sort chronologically
    return [
        {
            "month": key,
            "income": cents_to_amount(income),
            "expenses": cents_to_amount(expense),
            "savings": cents_to_amount(income - expense),
        }
        for key, (income, expense) in sorted(months.items())
    ]


def top_categories(
    entries: Iterable[LedgerEntry],
    transaction_type: TransactionType = TransactionType.expense,
    limit: int = 5,
) -> list[dict[str, object]]:
    return [
        {
            "categoryId": group.category_id,
            "name": group.name,
            "color": group.color,
            "icon": group.icon,
            "total": cents_to_amount(group.total_cents),
            "count": group.count,
        }
        for group in group_by_category(entries, transaction_type)[:limit]
    ]


def spent_in_window(
    entries: Iterable[LedgerEntry],
    start: date,
    end: date,
    category_id: Optional[int] = None,
) -> int:
    """Expense cents inside ``[start, end]``, optionally for one category."""
    spent = 0
    for entry in entries:
        if entry.type != TransactionType.expense:
            continue
        if category_id is not None and entry.category_id != category_id:
            continue
        if start <= entry.date <= end:
            spent += entry.amount_cents
    return spent


def budget_usage(amount_cents: int, spent_cents: int) -> tuple[int, float]:
    remaining = amount_cents - spent_cents
    percentage = percent_of(spent_cents, amount_cents) if amount_cents > 0 else 0.0
    return remaining, percentage
