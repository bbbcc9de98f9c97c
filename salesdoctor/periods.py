"""
Named reporting periods.

Turns a period shortcut (today, yesterday, week, month, year) or an explicit
custom range into an inclusive YYYY-MM-DD window. "Today" is taken in the
business timezone, not the host's.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from salesdoctor.config import config
from salesdoctor.validators import validate_date_range, validate_period


@dataclass(frozen=True)
class Period:
    """Inclusive date window with both date objects and string forms."""
    name: str
    start: date
    end: date

    @property
    def start_str(self) -> str:
        """Start date as YYYY-MM-DD string."""
        return self.start.strftime("%Y-%m-%d")

    @property
    def end_str(self) -> str:
        """End date as YYYY-MM-DD string."""
        return self.end.strftime("%Y-%m-%d")

    def contains(self, day: str) -> bool:
        """Lexicographic check of a YYYY-MM-DD string; empty dates never match."""
        if not day:
            return False
        return self.start_str <= day <= self.end_str

    def to_params(self) -> dict:
        """Upstream `period` filter shape."""
        return {"startDate": self.start_str, "endDate": self.end_str}


def business_today(tz_name: Optional[str] = None) -> date:
    """Current date in the business timezone (Asia/Tashkent by default)."""
    return datetime.now(ZoneInfo(tz_name or config.timezone)).date()


def get_date_range(
    period: str = "today",
    today: Optional[date] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> Period:
    """
    Resolve a period shortcut into a Period.

    Args:
        period: today, yesterday, week, month, year or custom
        today: Reference date (default: today in the business timezone)
        start_date: Explicit start (YYYY-MM-DD), required for custom
        end_date: Explicit end (YYYY-MM-DD), required for custom

    Returns:
        Period with inclusive start and end

    Raises:
        ValidationError: Unknown period or invalid custom dates

    Examples:
        >>> get_date_range("week", today=date(2026, 1, 15))
        Period(name='week', start=date(2026, 1, 8), end=date(2026, 1, 15))
    """
    period = validate_period(period)
    today = today or business_today()

    if period == "today":
        return Period(period, today, today)

    elif period == "yesterday":
        yesterday = today - timedelta(days=1)
        return Period(period, yesterday, yesterday)

    elif period == "week":
        return Period(period, today - timedelta(days=7), today)

    elif period == "month":
        return Period(period, today.replace(day=1), today)

    elif period == "year":
        return Period(period, today.replace(month=1, day=1), today)

    start, end = validate_date_range(start_date, end_date)
    return Period(period, start, end)
