from datetime import date
from typing import Sequence

from models import Expense

EXPORT_HEADERS = ["Date", "Description", "Category", "Type", "Amount"]

_FORMULA_TRIGGERS = ("=", "+", "-", "@", "\t", "\r")


def sanitize_csv_value(value: str) -> str:
    """
    Prefix values that spreadsheets would evaluate as formulas with a tab.
    """
    if not value or value.strip() == "":
        return ""
    value = value.strip()
    if value.startswith(_FORMULA_TRIGGERS):
        return "\t" + value
    return value


def format_en_in_date(value: date) -> str:
    # en-IN short date: day/month/year without zero padding
    return f"{value.day}/{value.month}/{value.year}"


def quote(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def _plain(value: str) -> str:
    if any(ch in value for ch in (",", '"', "\n", "\r")):
        return quote(value)
    return value


def export_expenses(expenses: Sequence[Expense]) -> str:
    # csv.writer quotes per dialect, not per column; clients expect Description always quoted
    lines = [",".join(EXPORT_HEADERS)]
    for expense in expenses:
        category = expense.category.name if expense.category else ""
        lines.append(
            ",".join(
                [
                    format_en_in_date(expense.date),
                    quote(sanitize_csv_value(expense.description)),
                    _plain(sanitize_csv_value(category)),
                    expense.type.value,
                    f"{expense.amount_cents / 100:.2f}",
                ]
            )
        )
    return "\n".join(lines)
