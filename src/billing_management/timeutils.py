from __future__ import annotations

from datetime import datetime, timezone


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _last_day_of_month(year: int, month: int) -> int:
    if month == 12:
        next_year, next_month = year + 1, 1
    else:
        next_year, next_month = year, month + 1
    return (datetime(next_year, next_month, 1) - datetime(year, month, 1)).days


def add_calendar_months(dt: datetime, months: int) -> datetime:
    """
    Add whole calendar months, clamping the day to the end of the target month.

    Jan 31 + 1 month is Feb 28 (Feb 29 in leap years), never an overflow
    into March.
    """
    year = dt.year + (dt.month - 1 + months) // 12
    month = (dt.month - 1 + months) % 12 + 1
    day = min(dt.day, _last_day_of_month(year, month))
    return dt.replace(year=year, month=month, day=day)


def add_calendar_years(dt: datetime, years: int) -> datetime:
    # Feb 29 clamps to Feb 28 in non-leap target years
    return add_calendar_months(dt, years * 12)
