from dataclasses import dataclass
from datetime import date, datetime
from typing import Literal, Optional
from zoneinfo import ZoneInfo

from config import get_settings

DateMode = Literal["creation", "travel"]


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def clamped_date(year: int, month: int, day: int) -> date:
    return date(year, month, min(max(day, 1), days_in_month(year, month)))


def add_months(base: date, months: int, *, desired_day: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return clamped_date(year, month, desired_day)


def month_range(year: int, month: int) -> Period:
    if month < 1 or month > 12:
        raise ValueError("month must be between 1 and 12")
    first = date(year, month, 1)
    last = clamped_date(year, month, 31)
    return Period(f"{year:04d}-{month:02d}", first, last)


def resolve_month(
    year: Optional[str],
    month: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or local_today()
    try:
        year_value = int(year) if year else today.year
        month_value = int(month) if month else today.month
    except ValueError as exc:
        raise ValueError("year and month must be numbers") from exc
    return month_range(year_value, month_value)


def resolve_day_range(start: Optional[str], end: Optional[str]) -> Period:
    """Inclusive day range from two ISO dates."""
    if not start or not end:
        raise ValueError("from and to are required")
    try:
        start_date = date.fromisoformat(start[:10])
        end_date = date.fromisoformat(end[:10])
    except ValueError as exc:
        raise ValueError("from and to must be ISO dates") from exc
    if start_date > end_date:
        raise ValueError("Start date must be before end date")
    return Period("custom", start_date, end_date)


def parse_date_mode(raw: Optional[str]) -> DateMode:
    return "travel" if raw == "travel" else "creation"
