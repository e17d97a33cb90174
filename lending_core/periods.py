"""
Period Arithmetic Module

Pure calendar arithmetic for Daily, Weekly and Monthly installment periods.
All values are calendar dates; timestamps and ISO strings are normalized to
their date before any arithmetic.
"""

import calendar
from datetime import date, datetime, timedelta
from enum import Enum
from typing import List, Union


DateLike = Union[date, datetime, str]


class PeriodType(Enum):
    """Installment period"""
    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"


class MonthOverflowPolicy(Enum):
    """
    What to do when a monthly step lands on a day the target month lacks.

    CLAMP: Jan 31 + 1 month -> Feb 28 (Feb 29 in leap years)
    ROLL:  Jan 31 + 1 month -> Mar 3 (the excess days roll into the next month)
    """
    CLAMP = "clamp"
    ROLL = "roll"


def normalize_date(value: DateLike) -> date:
    """Reduce a date, datetime or ISO string to a calendar date"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        # Accept full timestamps as well as YYYY-MM-DD
        return datetime.fromisoformat(value.strip()).date()
    raise TypeError(f"Cannot interpret {value!r} as a date")


def _add_months(start: date, months: int, policy: MonthOverflowPolicy) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]

    if start.day <= last_day:
        return date(year, month, start.day)
    if policy == MonthOverflowPolicy.CLAMP:
        return date(year, month, last_day)
    return date(year, month, last_day) + timedelta(days=start.day - last_day)


def add_periods(
    value: DateLike,
    period_type: PeriodType,
    count: int,
    policy: MonthOverflowPolicy = MonthOverflowPolicy.CLAMP
) -> date:
    """
    Step a date by `count` periods (negative counts step backwards).

    Monthly stepping is not reversible when the overflow policy fires:
    add_periods(add_periods(d, MONTHLY, n), MONTHLY, -n) may differ from d.
    """
    start = normalize_date(value)

    if period_type == PeriodType.DAILY:
        return start + timedelta(days=count)
    elif period_type == PeriodType.WEEKLY:
        return start + timedelta(days=7 * count)
    elif period_type == PeriodType.MONTHLY:
        return _add_months(start, count, policy)
    else:
        raise ValueError(f"Unsupported period type: {period_type}")


def installment_due_date(
    schedule_start: DateLike,
    period_type: PeriodType,
    installment_number: int,
    policy: MonthOverflowPolicy = MonthOverflowPolicy.CLAMP
) -> date:
    """Due date of the 1-based installment, anchored on the schedule start"""
    if installment_number < 1:
        return normalize_date(schedule_start)
    return add_periods(schedule_start, period_type, installment_number - 1, policy)


def installment_number_for_date(
    schedule_start: DateLike,
    period_type: PeriodType,
    on_date: DateLike,
    policy: MonthOverflowPolicy = MonthOverflowPolicy.CLAMP
) -> int:
    """1-based installment whose period contains `on_date` (never below 1)"""
    start = normalize_date(schedule_start)
    target = normalize_date(on_date)
    days = (target - start).days

    if period_type == PeriodType.DAILY:
        number = days + 1
    elif period_type == PeriodType.WEEKLY:
        number = days // 7 + 1
    else:
        months = (target.year - start.year) * 12 + (target.month - start.month)
        number = months + 1
        # The due date of that calendar month may still lie ahead of target
        if number > 1 and installment_due_date(start, period_type, number, policy) > target:
            number -= 1

    return max(1, number)


def due_dates_between(
    schedule_start: DateLike,
    period_type: PeriodType,
    total_periods: int,
    from_date: DateLike,
    to_date: DateLike,
    policy: MonthOverflowPolicy = MonthOverflowPolicy.CLAMP
) -> List[tuple]:
    """
    List (installment_number, due_date) for every scheduled installment whose
    due date falls in [from_date, to_date] inclusive.
    """
    low = normalize_date(from_date)
    high = normalize_date(to_date)
    boundaries = []

    for number in range(1, total_periods + 1):
        due = installment_due_date(schedule_start, period_type, number, policy)
        if due > high:
            break
        if due >= low:
            boundaries.append((number, due))

    return boundaries
