from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


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


def month_start(day: date) -> date:
    return day.replace(day=1)


def month_end(day: date) -> date:
    return day.replace(day=days_in_month(day.year, day.month))


def add_months(base: date, months: int) -> date:
    """Shift ``base`` by whole calendar months.

    A day that does not exist in the target month snaps to that month's last
    day, so Jan 31 + 1 month is Feb 28 (Feb 29 in leap years) rather than a
    rollover into March.
    """
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = min(base.day, days_in_month(year, month))
    return date(year, month, day)


def month_period(day: date) -> Period:
    return Period(month_key(day), month_start(day), month_end(day))


def month_key(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def parse_month(value: str) -> date:
    """Parse a ``YYYY-MM`` key into the first day of that month."""
    try:
        year_raw, month_raw = value.strip().split("-")
        return date(int(year_raw), int(month_raw), 1)
    except (ValueError, AttributeError) as exc:
        raise ValueError(f"Invalid month '{value}', expected YYYY-MM") from exc


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Optional[Period]:
    today = today or local_today()
    if start or end:
        start_date = date.fromisoformat(start) if start else date(1970, 1, 1)
        end_date = date.fromisoformat(end) if end else date(9999, 12, 31)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)
    if not period or period == "all":
        return None
    if period == "last_month":
        return month_period(add_months(month_start(today), -1))
    if period == "this_month":
        return month_period(today)
    return month_period(parse_month(period))
