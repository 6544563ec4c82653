"""Utility functions for cafestock."""

from datetime import date, datetime, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

from dateutil import parser
from dateutil.relativedelta import relativedelta

from .config import settings

_RELATIVE_UNITS = {
    "day": "days",
    "week": "weeks",
    "month": "months",
    "year": "years",
}


def local_now(tz_name: Optional[str] = None) -> datetime:
    """Current time in the café's configured timezone."""
    return datetime.now(ZoneInfo(tz_name or settings.timezone))


def local_today(tz_name: Optional[str] = None) -> date:
    return local_now(tz_name).date()


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to UTC, treating naive values as UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _relative(num: int, unit: str) -> Optional[relativedelta]:
    key = _RELATIVE_UNITS.get(unit.rstrip("s"))
    if key is None:
        return None
    return relativedelta(**{key: num})


def parse_expiration_date(
    value: Union[str, date, datetime, None], today: Optional[date] = None
) -> Optional[date]:
    """
    Parse an expiration date supplied with a stock receipt.

    Accepts date/datetime objects as-is and strings in these forms:
    - ISO format: "2025-02-15", "2025/02/15"
    - Natural language: "today", "tomorrow", "next week", "next month"
    - Relative dates: "in 3 days", "2 weeks from now"
    - Month/Day: "April 15" (rolls to next year once passed)

    Args:
        value: The raw value from the request payload
        today: Reference date; defaults to the local date

    Returns:
        date object if parsing succeeds, None for empty or unparseable input

    Examples:
        >>> parse_expiration_date("2025-02-15")
        date(2025, 2, 15)

        >>> parse_expiration_date("in 3 days", today=date(2025, 2, 14))
        date(2025, 2, 17)
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value.strip():
        return None

    text = value.strip()
    today = today or local_today()
    lower = text.lower()

    if lower == "today":
        return today
    if lower == "tomorrow":
        return today + relativedelta(days=1)
    if lower == "next week":
        return today + relativedelta(weeks=1)
    if lower == "next month":
        return today + relativedelta(months=1)

    # "in X days" / "X weeks from now"
    phrase = None
    if lower.startswith("in "):
        phrase = lower[3:]
    elif lower.endswith("from now"):
        phrase = lower.replace("from now", "")
    if phrase is not None:
        parts = phrase.split()
        if len(parts) >= 2:
            try:
                delta = _relative(int(parts[0]), parts[1])
            except ValueError:
                delta = None
            if delta is not None:
                return today + delta

    try:
        parsed = parser.parse(text, default=datetime(today.year, today.month, today.day))
    except (ValueError, OverflowError, parser.ParserError):
        return None

    parsed_date = parsed.date()
    # Month/day without a year that already passed means next year
    if parsed_date < today and str(parsed.year) not in text:
        parsed_date = parsed_date.replace(year=today.year + 1)
    return parsed_date


def stock_in_date_part(when: Optional[datetime] = None, tz_name: Optional[str] = None) -> str:
    """MM/DD/YY in the café timezone, used in stock-in batch numbers."""
    tz = ZoneInfo(tz_name or settings.timezone)
    moment = to_utc(when).astimezone(tz) if when else datetime.now(tz)
    return moment.strftime("%m/%d/%y")
