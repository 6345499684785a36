"""
Date and interval helpers used by the time series storage and regression code.

Dates are carried as pandas.Timestamp values truncated to the precision of the
series interval (first of month for monthly data, midnight for daily data,
January 1 for yearly data). The helpers here are the only place that knows how
to step from one date to the next:

- normalize()         coerce a date-like value to the interval precision
- add_interval()      step a date forward/backward by N interval units
- iter_dates()        inclusive ascending iteration over a period
- count_steps()       number of interval steps spanning a period
- month_abbreviation() "Jan".."Dec" used in fill flags
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Iterator, Optional

import pandas as pd

MONTH_ABBREVIATIONS = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)


class IntervalBase(Enum):
    """Base unit of a time series interval."""

    DAY = auto()
    MONTH = auto()
    YEAR = auto()
    IRREGULAR = auto()


@dataclass(frozen=True)
class TimeInterval:
    """
    Interval of a time series: base unit plus multiplier.

    Only a multiplier of 1 is supported by the storage layer; other multipliers
    are representable so that configuration errors can be reported clearly.
    """

    base: IntervalBase
    multiplier: int = 1

    @classmethod
    def parse(cls, text: str) -> "TimeInterval":
        """
        Parse strings such as "Month", "1Month", "Day", "Year" or "Irregular".

        Raises:
            ValueError: if the text is empty or the base is not recognized.
        """
        s = (text or "").strip()
        if not s:
            raise ValueError("Interval string is empty")
        digits = ""
        while s and s[0].isdigit():
            digits += s[0]
            s = s[1:]
        mult = int(digits) if digits else 1
        key = s.strip().upper()
        aliases = {
            "DAY": IntervalBase.DAY,
            "DAILY": IntervalBase.DAY,
            "MONTH": IntervalBase.MONTH,
            "MONTHLY": IntervalBase.MONTH,
            "YEAR": IntervalBase.YEAR,
            "YEARLY": IntervalBase.YEAR,
            "IRREGULAR": IntervalBase.IRREGULAR,
            "IRREG": IntervalBase.IRREGULAR,
        }
        if key not in aliases:
            raise ValueError(f"Unrecognized interval: {text!r}")
        return cls(aliases[key], mult)

    def __str__(self) -> str:
        name = self.base.name.capitalize()
        if self.base is IntervalBase.IRREGULAR:
            return name
        return name if self.multiplier == 1 else f"{self.multiplier}{name}"


def to_timestamp(value: Any) -> pd.Timestamp:
    """
    Convert a date-like value (str, datetime, date, numpy datetime64, Timestamp)
    into a timezone-naive pandas.Timestamp.

    Raises:
        ValueError: if the value is None or cannot be parsed.
    """
    if value is None:
        raise ValueError("Date is not set")
    ts = pd.Timestamp(value)
    if ts is pd.NaT:
        raise ValueError(f"Invalid date: {value!r}")
    if ts.tzinfo is not None:
        ts = ts.tz_localize(None)
    return ts


def normalize(value: Any, base: IntervalBase) -> pd.Timestamp:
    """Truncate a date-like value to the precision of the interval base."""
    ts = to_timestamp(value)
    if base is IntervalBase.MONTH:
        return pd.Timestamp(year=ts.year, month=ts.month, day=1)
    if base is IntervalBase.YEAR:
        return pd.Timestamp(year=ts.year, month=1, day=1)
    if base is IntervalBase.DAY:
        return ts.normalize()
    return ts


def add_interval(value: Any, base: IntervalBase, mult: int = 1) -> pd.Timestamp:
    """
    Return the date shifted by mult interval units (mult may be negative).

    Raises:
        ValueError: for irregular intervals, which have no fixed step.
    """
    ts = to_timestamp(value)
    if base is IntervalBase.MONTH:
        return ts + pd.DateOffset(months=mult)
    if base is IntervalBase.YEAR:
        return ts + pd.DateOffset(years=mult)
    if base is IntervalBase.DAY:
        return ts + pd.Timedelta(days=mult)
    raise ValueError("Cannot add an interval to an irregular date")


def iter_dates(
    start: Any, end: Any, interval: TimeInterval
) -> Iterator[pd.Timestamp]:
    """Yield dates from start to end inclusive, in ascending order."""
    date = normalize(start, interval.base)
    end_ts = normalize(end, interval.base)
    while date <= end_ts:
        yield date
        date = add_interval(date, interval.base, interval.multiplier)


def count_steps(start: Any, end: Any, interval: TimeInterval) -> int:
    """
    Number of interval steps spanning start..end inclusive (0 when end < start).
    Only unit multipliers are counted exactly; this mirrors the storage layer.
    """
    s = normalize(start, interval.base)
    e = normalize(end, interval.base)
    if e < s:
        return 0
    if interval.base is IntervalBase.MONTH:
        n = (e.year - s.year) * 12 + (e.month - s.month) + 1
    elif interval.base is IntervalBase.YEAR:
        n = e.year - s.year + 1
    elif interval.base is IntervalBase.DAY:
        n = (e - s).days + 1
    else:
        raise ValueError("Irregular intervals have no step count")
    mult = max(int(interval.multiplier), 1)
    return (n - 1) // mult + 1


def month_abbreviation(month: int) -> str:
    """Return "Jan".."Dec" for month 1..12."""
    if month < 1 or month > 12:
        raise ValueError(f"Month ({month}) is not in range 1-12")
    return MONTH_ABBREVIATIONS[month - 1]


def format_date(value: Optional[pd.Timestamp], base: IntervalBase) -> str:
    """Format a date at the interval precision, used in genesis and reports."""
    if value is None:
        return "None"
    if base is IntervalBase.MONTH:
        return value.strftime("%Y-%m")
    if base is IntervalBase.YEAR:
        return value.strftime("%Y")
    if base is IntervalBase.DAY:
        return value.strftime("%Y-%m-%d")
    return value.isoformat()
