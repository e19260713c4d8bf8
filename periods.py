from dataclasses import dataclass
from datetime import date
from typing import Optional

from errors import InvalidRange


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def month_bounds(year: int, month: int) -> tuple[date, date]:
    first = date(year, month, 1)
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return first, next_month - date.resolution


def add_months(d: date, count: int) -> date:
    """First day of the month ``count`` months away from ``d``."""
    month_index = (d.year * 12) + (d.month - 1) + count
    return date(month_index // 12, (month_index % 12) + 1, 1)


def check_range(start: date, end: date) -> None:
    if start > end:
        raise InvalidRange(
            f"Start date {start.isoformat()} is after end date {end.isoformat()}"
        )


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    months: Optional[int] = None,
    today: Optional[date] = None,
) -> Period:
    today = today or date.today()
    if period == "all":
        return Period("all", date(2000, 1, 1), today)
    if period == "last_month":
        first_this = today.replace(day=1)
        last_month_end = first_this - date.resolution
        return Period("last_month", last_month_end.replace(day=1), last_month_end)
    if period == "last_months":
        # dashboard "last N months" filter, counted back from today
        count = months or 3
        back = add_months(today, -count)
        day = min(today.day, month_bounds(back.year, back.month)[1].day)
        return Period("last_months", back.replace(day=day), today)
    if period == "this_year":
        return Period("this_year", date(today.year, 1, 1), date(today.year, 12, 31))
    if period == "custom":
        if not start or not end:
            raise InvalidRange("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        check_range(start_date, end_date)
        return Period("custom", start_date, end_date)

    first, last = month_bounds(today.year, today.month)
    return Period("this_month", first, last)
