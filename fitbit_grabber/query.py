"""
Date handling for Fitbit endpoint paths.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional, Union

from .errors import DateParseError

DATE_FORMAT = "%Y-%m-%d"


def parse_date(value: str) -> date:
    """Parse a YYYY-MM-DD string (or 'today') into a date."""
    if value == "today":
        return date.today()
    try:
        return datetime.strptime(value, DATE_FORMAT).date()
    except (TypeError, ValueError) as e:
        raise DateParseError(f"bad date format: {value!r} (expected YYYY-MM-DD)") from e


def format_date(value: Union[date, str]) -> str:
    if isinstance(value, str):
        value = parse_date(value)
    return value.strftime(DATE_FORMAT)


class Period(Enum):
    """Time series periods accepted by the Fitbit API."""

    DAY = "1d"
    SEVEN_DAYS = "7d"
    THIRTY_DAYS = "30d"
    WEEK = "1w"
    MONTH = "1m"
    THREE_MONTHS = "3m"
    SIX_MONTHS = "6m"
    YEAR = "1y"
    MAX = "max"


@dataclass(frozen=True)
class DateQuery:
    """A base date plus either a period or an end date."""

    start: date
    period: Optional[Period] = None
    end: Optional[date] = None

    @classmethod
    def for_date(cls, day: date) -> "DateQuery":
        return cls(start=day, period=Period.DAY)

    @classmethod
    def periodic_since(cls, day: date, period: Period) -> "DateQuery":
        return cls(start=day, period=period)

    @classmethod
    def date_range(cls, start: date, end: date) -> "DateQuery":
        if end < start:
            raise DateParseError(f"end date {end} is before start date {start}")
        return cls(start=start, end=end)

    def path_suffix(self) -> str:
        """Render '<base-date>/<period|end-date>' for a time series path."""
        if self.end is not None:
            return f"{format_date(self.start)}/{format_date(self.end)}"
        period = self.period or Period.DAY
        return f"{format_date(self.start)}/{period.value}"
