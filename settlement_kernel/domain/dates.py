"""
Calendar arithmetic for schedules and overdue checks.

Whole calendar days only.  Month steps are anchored on the original day of
month and clamp to the last day of shorter months, so a schedule starting on
Jan 31 runs Feb 28/29, Mar 31, Apr 30.
"""

import calendar
from datetime import date, timedelta
from enum import Enum


class ScheduleInterval(str, Enum):
    """Cadence between consecutive installments."""

    MONTHLY = "monthly"
    BIWEEKLY = "biweekly"
    WEEKLY = "weekly"


def add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(start.day, last_day))


def step_date(start: date, steps: int, interval: ScheduleInterval) -> date:
    """The date ``steps`` cadence periods after ``start``."""
    if interval is ScheduleInterval.MONTHLY:
        return add_months(start, steps)
    if interval is ScheduleInterval.BIWEEKLY:
        return start + timedelta(days=14 * steps)
    return start + timedelta(days=7 * steps)


def first_step_on_or_after(
    start: date, as_of: date, interval: ScheduleInterval
) -> int:
    """Smallest ``k >= 0`` with ``step_date(start, k) >= as_of``."""
    if start >= as_of:
        return 0
    if interval is ScheduleInterval.MONTHLY:
        k = max(0, (as_of.year - start.year) * 12 + as_of.month - start.month - 1)
    else:
        period = 14 if interval is ScheduleInterval.BIWEEKLY else 7
        k = max(0, (as_of - start).days // period - 1)
    while step_date(start, k, interval) < as_of:
        k += 1
    return k


def days_overdue(due_date: date, as_of: date) -> int:
    """``max(0, as_of - due_date)`` in whole days."""
    return max(0, (as_of - due_date).days)


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """First and last day of a calendar month."""
    if not 1 <= month <= 12:
        raise ValueError(f"month must be 1..12, got {month}")
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])
