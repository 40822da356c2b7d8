"""Date and time formatting shared by the derived series and the CLI."""

from datetime import date, datetime
from typing import Literal, Union

DateFormat = Literal["date", "time", "datetime"]

DAY_OF_WEEK_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

DATE_KEY_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M"


def date_key(value: Union[date, datetime]) -> str:
    """'YYYY-MM-DD' key of a calendar date, year always four digits."""
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def format_date(value: datetime, fmt: DateFormat) -> str:
    """Format a timestamp as 'YYYY-MM-DD', 'HH:MM' or 'YYYY-MM-DD HH:MM'."""
    if fmt == "date":
        return date_key(value)
    if fmt == "time":
        return value.strftime(TIME_FORMAT)
    if fmt == "datetime":
        return f"{date_key(value)} {value.strftime(TIME_FORMAT)}"
    raise ValueError(f"Unknown date format: {fmt!r}")


def parse_date_key(date_str: str) -> date:
    """Inverse of date_key."""
    return datetime.strptime(date_str, DATE_KEY_FORMAT).date()


def day_of_week(value: Union[str, date]) -> str:
    """Short weekday name ('Mon'..'Sun') for a date or 'YYYY-MM-DD' string."""
    if isinstance(value, str):
        value = parse_date_key(value)
    return DAY_OF_WEEK_NAMES[value.weekday()]


def is_weekend(value: Union[str, date]) -> bool:
    return day_of_week(value) in ("Sat", "Sun")
