from dataclasses import dataclass
from datetime import date
from typing import Optional

from dates import (
    local_today,
    month_end,
    month_start,
    parse_iso_date,
    parse_month_key,
    shift_months,
)


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


def month_period(year: int, month: int) -> Period:
    first = date(year, month, 1)
    return Period(f"{year:04d}-{month:02d}", first, month_end(first))


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    month: Optional[str] = None,
    today: Optional[date] = None,
) -> Period:
    today = today or local_today()
    if month:
        year, month_num = parse_month_key(month)
        return month_period(year, month_num)
    if period == "last_month":
        last_month = shift_months(month_start(today), -1)
        return Period("last_month", last_month, month_end(last_month))
    if period == "last_12_months":
        first = shift_months(month_start(today), -11)
        return Period("last_12_months", first, month_end(today))
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = parse_iso_date(start)
        end_date = parse_iso_date(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)
    if period and period != "this_month":
        raise ValueError(f"Unknown period: {period}")

    first = month_start(today)
    return Period("this_month", first, month_end(first))
