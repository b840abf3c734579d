import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from models import BudgetPeriod


@dataclass(frozen=True)
class DateWindow:
    """Inclusive date range; either end may be open."""

    start: Optional[date] = None
    end: Optional[date] = None

    @property
    def is_bounded(self) -> bool:
        return self.start is not None and self.end is not None


def resolve_window(start: Optional[date], end: Optional[date]) -> DateWindow:
    if start and end and start > end:
        raise ValueError("startDate must be on or before endDate")
    return DateWindow(start, end)


def previous_window(window: DateWindow) -> DateWindow:
    """Window of equal length ending where ``window`` starts.

    Both ends are inclusive, so the boundary day belongs to both windows.
    """
    if not window.is_bounded:
        raise ValueError("Comparison needs both startDate and endDate")
    length = window.end - window.start
    return DateWindow(window.start - length, window.start)


def shift_months(day: date, count: int) -> date:
    month_index = (day.year * 12) + (day.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def local_now() -> datetime:
    return datetime.now(ZoneInfo(get_settings().timezone))


def local_today() -> date:
    return local_now().date()


def budget_period_start(period: BudgetPeriod, now: datetime) -> datetime:
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == BudgetPeriod.daily:
        return midnight
    if period == BudgetPeriod.weekly:
        # weeks start on Sunday
        days_since_sunday = (now.weekday() + 1) % 7
        return midnight - timedelta(days=days_since_sunday)
    if period == BudgetPeriod.yearly:
        return midnight.replace(month=1, day=1)
    return midnight.replace(day=1)
