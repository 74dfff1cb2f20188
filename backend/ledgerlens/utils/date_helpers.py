"""Date utilities for transaction dates, reporting periods and match windows."""
import calendar
from datetime import date, datetime, timedelta
from typing import Optional, Tuple


MIN_YEAR = 2000
MAX_YEAR = 2100


def parse_transaction_date(value) -> date:
    """
    Convert an extracted or submitted date to a date object.

    Accepts date/datetime objects, 'YYYY-MM-DD' and ISO-8601 datetimes
    ('2025-01-31T00:00:00Z'). LLM output is expected in 'YYYY-MM-DD'.

    Raises:
        ValueError: If the value cannot be interpreted as a date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        raise ValueError(f"Invalid date: {value!r}")

    text = value.strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError as e:
        raise ValueError(f"Invalid date format '{value}': {e}")


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    """
    First and last day of a month.

    Examples:
        >>> month_bounds(2024, 2)
        (date(2024, 2, 1), date(2024, 2, 29))
    """
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def resolve_time_period(
    month: Optional[int],
    year: Optional[int],
    today: Optional[date] = None,
) -> Tuple[int, int]:
    """
    Validate a (month, year) reporting period.

    Month must be 1-12 and year 2000-2100; anything missing or out of range
    falls back to the current month/year independently.
    """
    today = today or date.today()

    if month is None or not 1 <= month <= 12:
        month = today.month
    if year is None or not MIN_YEAR <= year <= MAX_YEAR:
        year = today.year

    return month, year


def reconciliation_window(anchor: date, days: int) -> Tuple[date, date]:
    """Inclusive [anchor - days, anchor + days] window."""
    delta = timedelta(days=days)
    return anchor - delta, anchor + delta
