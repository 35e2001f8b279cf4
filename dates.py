"""
Month arithmetic for ledger dates.

Dates are plain calendar dates: they are parsed from their ``YYYY-MM-DD``
components and never go through a timezone-aware parser, so a stored date
can not drift by a day depending on where the code runs.
"""

from datetime import date, datetime
from typing import Iterator
from zoneinfo import ZoneInfo

from config import get_settings


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def last_day_of_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def date_in_month(year: int, month: int, day: int) -> date:
    """Day ``day`` of the given month, clamped to the month's last day."""
    return date(year, month, min(day, last_day_of_month(year, month)))


def shift_months(base: date, months: int) -> date:
    """
    The date ``months`` months after ``base`` on the same day of the month.

    When the target month is shorter than ``base.day`` the result is the
    target month's last day: Jan 31 + 1 is Feb 29 in a leap year and Feb 28
    otherwise, day 31 lands on day 30 in 30-day months.
    """
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date_in_month(year, month, base.day)


def month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def parse_month_key(key: str) -> tuple[int, int]:
    try:
        year_str, month_str = key.split("-", 1)
        year = int(year_str)
        month = int(month_str)
    except ValueError as exc:
        raise ValueError(f"Invalid month: {key!r} (expected YYYY-MM)") from exc
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month: {key!r} (expected YYYY-MM)")
    return year, month


def parse_iso_date(value: str) -> date:
    parts = value.strip().split("-")
    if len(parts) != 3:
        raise ValueError(f"Invalid date: {value!r} (expected YYYY-MM-DD)")
    try:
        year, month, day = (int(p) for p in parts)
        return date(year, month, day)
    except ValueError as exc:
        raise ValueError(f"Invalid date: {value!r} (expected YYYY-MM-DD)") from exc


def month_start(value: date) -> date:
    return value.replace(day=1)


def month_end(value: date) -> date:
    return value.replace(day=last_day_of_month(value.year, value.month))


def month_index(value: date) -> int:
    return value.year * 12 + (value.month - 1)


def months_between(start: date, end: date) -> int:
    """Whole calendar months from ``start``'s month to ``end``'s month."""
    return month_index(end) - month_index(start)


def iter_months(start: date, end: date) -> Iterator[date]:
    """First day of every month from ``start``'s month to ``end``'s, inclusive."""
    current = month_start(start)
    last = month_start(end)
    while current <= last:
        yield current
        current = shift_months(current, 1)


def months_back(today: date, count: int) -> list[str]:
    """Month keys of the ``count`` months ending with ``today``'s, oldest first."""
    first = shift_months(month_start(today), -(count - 1))
    return [month_key(m) for m in iter_months(first, today)]
