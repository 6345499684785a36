"""
In-memory time series storage.

This module exposes the storage capability interface and its variants:
- TimeSeries            interface shared by every storage variant
- MonthTimeSeries       row = year, 12 columns
- DayTimeSeries         row = year, 366 columns (day of year)
- YearTimeSeries        row = year, 1 column
- IrregularTimeSeries   date-keyed mapping, no fixed step

Regular variants resolve a date to a storage cell in O(1) as a pure
(row, column) DataPosition; nothing is cached between calls. Values inside the
missing-value domain (and NaN) are treated as missing. Every set_value() marks
the series dirty; limits are recomputed lazily by refresh().
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, NamedTuple, Optional, Tuple

import numpy as np
import pandas as pd

from .dates import (
    IntervalBase,
    TimeInterval,
    count_steps,
    format_date,
    iter_dates,
    normalize,
    to_timestamp,
)

logger = logging.getLogger(__name__)

DEFAULT_MISSING: float = -999.0
# Half-width of the band around a single missing sentinel, to absorb precision truncation.
MISSING_TOLERANCE: float = 0.001


class TimeSeriesError(Exception):
    """Base exception for time series storage and analysis errors."""

    pass


class TimeSeriesConfigError(TimeSeriesError, ValueError):
    """Raised for invalid configuration (unset dates, unsupported interval, bad period)."""

    pass


@dataclass(frozen=True)
class MissingDomain:
    """
    Values treated as missing: NaN always, plus the closed range [lower, upper].
    When the sentinel itself is NaN the range is empty and only NaN is missing.
    """

    value: float = DEFAULT_MISSING
    lower: float = DEFAULT_MISSING - MISSING_TOLERANCE
    upper: float = DEFAULT_MISSING + MISSING_TOLERANCE

    @classmethod
    def single(cls, value: float) -> "MissingDomain":
        if math.isnan(value):
            return cls(value=math.nan, lower=math.nan, upper=math.nan)
        return cls(
            value=value, lower=value - MISSING_TOLERANCE, upper=value + MISSING_TOLERANCE
        )

    @classmethod
    def between(cls, lower: float, upper: float) -> "MissingDomain":
        if math.isnan(lower) or math.isnan(upper):
            raise TimeSeriesConfigError("Missing range bounds cannot be NaN")
        lo, hi = (lower, upper) if lower <= upper else (upper, lower)
        return cls(value=(lo + hi) / 2.0, lower=lo, upper=hi)

    def contains(self, value: float) -> bool:
        if value is None:
            return True
        v = float(value)
        if math.isnan(v):
            return True
        # NaN bounds compare False, so a NaN sentinel leaves only NaN as missing
        return self.lower <= v <= self.upper

    def mask(self, values: np.ndarray) -> np.ndarray:
        arr = np.asarray(values, dtype=float)
        with np.errstate(invalid="ignore"):
            return np.isnan(arr) | ((arr >= self.lower) & (arr <= self.upper))


class DataPosition(NamedTuple):
    """Storage cell of a regular series: year offset and sub-year column."""

    row: int
    column: int


@dataclass(frozen=True)
class TimeSeriesPoint:
    """Value carrier returned by point queries and iteration."""

    date: pd.Timestamp
    value: float
    units: str = ""
    flag: str = ""
    duration: int = 0


@dataclass(frozen=True)
class TimeSeriesIdentifier:
    """
    Opaque identifier fields. Only the alias and the dotted identifier string are
    used here; legend template expansion lives elsewhere.
    """

    location: str = ""
    source: str = ""
    data_type: str = ""
    interval: str = ""
    scenario: str = ""
    alias: str = ""

    def identifier_string(self) -> str:
        parts = [self.location, self.source, self.data_type, self.interval]
        if self.scenario:
            parts.append(self.scenario)
        return ".".join(parts)

    def alias_or_location(self) -> str:
        return self.alias if self.alias else self.location


@dataclass(frozen=True)
class Genesis:
    """
    Append-only provenance trail. append() returns a new Genesis; entries are
    never removed or rewritten.
    """

    entries: Tuple[str, ...] = ()

    def append(self, *lines: str) -> "Genesis":
        new = tuple(str(line) for line in lines if line is not None)
        if not new:
            return self
        return Genesis(self.entries + new)

    def __iter__(self) -> Iterator[str]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class TimeSeriesLimits:
    """Summary statistics over the non-missing values of a period."""

    found: bool = False
    min_value: Optional[float] = None
    min_date: Optional[pd.Timestamp] = None
    max_value: Optional[float] = None
    max_date: Optional[pd.Timestamp] = None
    mean: Optional[float] = None
    sum: Optional[float] = None
    non_missing_count: int = 0
    missing_count: int = 0
    first_non_missing_date: Optional[pd.Timestamp] = None
    last_non_missing_date: Optional[pd.Timestamp] = None

    @classmethod
    def compute(cls, series: pd.Series, missing_mask: np.ndarray) -> "TimeSeriesLimits":
        """Full scan of a date-indexed series given its precomputed missing mask."""
        values = series.to_numpy(dtype=float)
        ok = ~np.asarray(missing_mask, dtype=bool)
        n_ok = int(ok.sum())
        n_missing = int(len(values) - n_ok)
        if n_ok == 0:
            return cls(found=False, missing_count=n_missing)
        good = values[ok]
        dates = series.index[ok]
        i_min = int(np.argmin(good))
        i_max = int(np.argmax(good))
        total = float(np.sum(good))
        return cls(
            found=True,
            min_value=float(good[i_min]),
            min_date=dates[i_min],
            max_value=float(good[i_max]),
            max_date=dates[i_max],
            mean=total / n_ok,
            sum=total,
            non_missing_count=n_ok,
            missing_count=n_missing,
            first_non_missing_date=dates[0],
            last_non_missing_date=dates[-1],
        )


class TimeSeries(ABC):
    """
    Storage capability interface. Callers depend only on:
    get_value / set_value / allocate / date1, date2 / missing / is_missing.
    """

    interval_base: IntervalBase = IntervalBase.IRREGULAR

    def __init__(
        self,
        identifier: Optional[TimeSeriesIdentifier] = None,
        units: str = "",
        description: str = "",
        missing: float = DEFAULT_MISSING,
    ) -> None:
        self.identifier: TimeSeriesIdentifier = identifier or TimeSeriesIdentifier()
        self.units: str = units
        self.description: str = description
        self.genesis: Genesis = Genesis()
        self._missing: MissingDomain = MissingDomain.single(missing)
        self._date1: Optional[pd.Timestamp] = None
        self._date2: Optional[pd.Timestamp] = None
        self._dirty: bool = True
        self._limits: Optional[TimeSeriesLimits] = None

    # -------------------------
    # Identity and period
    # -------------------------
    @property
    def interval(self) -> TimeInterval:
        return TimeInterval(self.interval_base, 1)

    @property
    def name(self) -> str:
        return self.identifier.alias_or_location() or self.identifier.identifier_string()

    @property
    def date1(self) -> Optional[pd.Timestamp]:
        return self._date1

    @property
    def date2(self) -> Optional[pd.Timestamp]:
        return self._date2

    @property
    def dirty(self) -> bool:
        return self._dirty

    def normalize_date(self, date: Any) -> pd.Timestamp:
        return normalize(date, self.interval_base)

    def in_period(self, date: pd.Timestamp) -> bool:
        if self._date1 is None or self._date2 is None:
            return False
        return self._date1 <= date <= self._date2

    # -------------------------
    # Missing-value domain
    # -------------------------
    @property
    def missing(self) -> float:
        """The missing sentinel written into unset cells."""
        return self._missing.value

    @property
    def missing_domain(self) -> MissingDomain:
        return self._missing

    def set_missing(self, value: float) -> None:
        self._missing = MissingDomain.single(value)
        self._dirty = True

    def set_missing_range(self, lower: float, upper: float) -> None:
        self._missing = MissingDomain.between(lower, upper)
        self._dirty = True

    def is_missing(self, value: float) -> bool:
        return self._missing.contains(value)

    def missing_mask(self, values: Iterable[float]) -> np.ndarray:
        if not isinstance(values, np.ndarray):
            values = list(values)
        return self._missing.mask(np.asarray(values, dtype=float))

    # -------------------------
    # Storage operations
    # -------------------------
    @abstractmethod
    def allocate(self, date1: Any, date2: Any, interval_mult: int = 1) -> None:
        """Set the period and allocate storage filled with the missing sentinel."""

    @abstractmethod
    def get_value(self, date: Any) -> float:
        """Value at date, or the missing sentinel outside the period."""

    @abstractmethod
    def set_value(
        self, date: Any, value: float, flag: Optional[str] = None, duration: int = 0
    ) -> None:
        """Store a value (and optional flag); dates outside the period are ignored."""

    @abstractmethod
    def get_flag(self, date: Any) -> str:
        """Flag recorded at date ("" when none)."""

    @property
    @abstractmethod
    def has_data_flags(self) -> bool:
        """Whether flag storage has been allocated."""

    @property
    @abstractmethod
    def data_size(self) -> int:
        """Number of stored positions in the period."""

    @abstractmethod
    def dates(self, start: Any = None, end: Any = None) -> pd.DatetimeIndex:
        """Dates of the series between start and end (defaults: the period), ascending."""

    @abstractmethod
    def change_period(self, date1: Any, date2: Any) -> Genesis:
        """Reallocate to a new period, keeping the overlap. Returns the updated genesis."""

    def values_at(self, dates: Iterable[Any]) -> np.ndarray:
        """Values at each date; dates outside the period yield the missing sentinel."""
        return np.array([self.get_value(d) for d in dates], dtype=float)

    def get_point(self, date: Any) -> TimeSeriesPoint:
        ts = self.normalize_date(date)
        return TimeSeriesPoint(
            date=ts,
            value=self.get_value(ts),
            units=self.units,
            flag=self.get_flag(ts),
            duration=0,
        )

    def iterate(self, start: Any = None, end: Any = None) -> Iterator[TimeSeriesPoint]:
        for date in self.dates(start, end):
            yield self.get_point(date)

    def to_series(self, start: Any = None, end: Any = None) -> pd.Series:
        index = self.dates(start, end)
        return pd.Series(self.values_at(index), index=index, name=self.name or None)

    def to_dataframe(self, start: Any = None, end: Any = None) -> pd.DataFrame:
        """Date-indexed table with value and flag columns."""
        index = self.dates(start, end)
        return pd.DataFrame(
            {
                "value": self.values_at(index),
                "flag": [self.get_flag(d) for d in index],
            },
            index=index,
        )

    def add_to_genesis(self, *lines: str) -> Genesis:
        self.genesis = self.genesis.append(*lines)
        return self.genesis

    # -------------------------
    # Limits
    # -------------------------
    def refresh(self) -> None:
        """Recompute limits when dirty (full scan), then clear the dirty flag."""
        if not self._dirty:
            logger.debug("Series %s is not dirty; not recomputing limits", self.name)
            return
        series = self.to_series()
        self._limits = TimeSeriesLimits.compute(series, self.missing_mask(series.to_numpy()))
        self._dirty = False

    @property
    def limits(self) -> TimeSeriesLimits:
        self.refresh()
        return self._limits if self._limits is not None else TimeSeriesLimits()

    @classmethod
    def from_series(
        cls,
        series: pd.Series,
        identifier: Optional[TimeSeriesIdentifier] = None,
        units: str = "",
        missing: float = DEFAULT_MISSING,
    ) -> "TimeSeries":
        """
        Build a series from a date-indexed pandas Series. NaN values are stored
        as the missing sentinel. The period spans the first..last index date.

        Raises:
            TimeSeriesConfigError: if the series is empty.
        """
        if series is None or len(series) == 0:
            raise TimeSeriesConfigError("Cannot build a time series from an empty series")
        ts = cls(identifier=identifier, units=units, missing=missing)
        index = pd.DatetimeIndex([ts.normalize_date(d) for d in series.index])
        ts.allocate(index.min(), index.max())
        for date, value in zip(index, series.to_numpy(dtype=float)):
            ts.set_value(date, ts.missing if np.isnan(value) else float(value))
        return ts

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.name!r}, "
            f"period={format_date(self._date1, self.interval_base)}.."
            f"{format_date(self._date2, self.interval_base)})"
        )


class _RegularTimeSeries(TimeSeries):
    """
    Fixed-interval storage: a (years x columns) float array plus an optional
    object array of flags allocated on first use.
    """

    columns: int = 1
    # pandas frequency alias used to enumerate dates of the period
    freq: str = ""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._data: Optional[np.ndarray] = None
        self._flags: Optional[np.ndarray] = None

    @abstractmethod
    def _column(self, date: pd.Timestamp) -> int:
        """Sub-year column of a normalized date."""

    @abstractmethod
    def _columns_for(self, index: pd.DatetimeIndex) -> np.ndarray:
        """Vectorized _column()."""

    @abstractmethod
    def _normalize_index(self, index: pd.DatetimeIndex) -> pd.DatetimeIndex:
        """Vectorized normalize_date()."""

    def position(self, date: Any) -> Optional[DataPosition]:
        """
        Resolve a date to its storage cell, or None when outside the period.
        Pure: computed from the date and the period start only.
        """
        if self._data is None or self._date1 is None:
            return None
        ts = self.normalize_date(date)
        if not self.in_period(ts):
            return None
        return DataPosition(ts.year - self._date1.year, self._column(ts))

    def allocate(self, date1: Any, date2: Any, interval_mult: int = 1) -> None:
        """
        Allocate a row-per-year array spanning date1..date2 filled with the
        missing sentinel.

        Raises:
            TimeSeriesConfigError: if dates are unset, out of order, or the
                interval multiplier is not 1. The series is left unchanged.
        """
        if date1 is None or date2 is None:
            raise TimeSeriesConfigError(
                f"Dates have not been set for {self.name!r}; cannot allocate data space"
            )
        if interval_mult != 1:
            raise TimeSeriesConfigError(
                f"Only 1-{self.interval_base.name.lower()} data is supported, not "
                f"{interval_mult}-{self.interval_base.name.lower()}"
            )
        try:
            d1 = self.normalize_date(date1)
            d2 = self.normalize_date(date2)
        except ValueError as e:
            raise TimeSeriesConfigError(str(e)) from e
        if d2 < d1:
            raise TimeSeriesConfigError(f"Period end {d2} is before period start {d1}")

        nyears = d2.year - d1.year + 1
        data = np.full((nyears, self.columns), self.missing, dtype=float)
        flags = None
        if self._flags is not None:
            flags = np.full((nyears, self.columns), "", dtype=object)

        self._date1, self._date2 = d1, d2
        self._data, self._flags = data, flags
        self._dirty = True
        self._limits = None
        logger.debug(
            "Allocated %d years x %d columns (%d values) for %s",
            nyears,
            self.columns,
            self.data_size,
            self.name,
        )

    @property
    def has_data_flags(self) -> bool:
        return self._flags is not None

    @property
    def data_size(self) -> int:
        if self._date1 is None or self._date2 is None:
            return 0
        return count_steps(self._date1, self._date2, self.interval)

    def get_value(self, date: Any) -> float:
        pos = self.position(date)
        if pos is None:
            return self.missing
        return float(self._data[pos.row, pos.column])

    def get_flag(self, date: Any) -> str:
        if self._flags is None:
            return ""
        pos = self.position(date)
        if pos is None:
            return ""
        return str(self._flags[pos.row, pos.column])

    def set_value(
        self, date: Any, value: float, flag: Optional[str] = None, duration: int = 0
    ) -> None:
        # duration is accepted for interface compatibility; values are one interval long
        if date is None:
            return
        pos = self.position(date)
        if pos is None:
            logger.debug("%s not within period of %s; value ignored", date, self.name)
            return
        self._dirty = True
        self._data[pos.row, pos.column] = value
        if flag and self._flags is None:
            self._flags = np.full(self._data.shape, "", dtype=object)
        if self._flags is not None and flag is not None:
            self._flags[pos.row, pos.column] = flag

    def dates(self, start: Any = None, end: Any = None) -> pd.DatetimeIndex:
        s = self._date1 if start is None else self.normalize_date(start)
        e = self._date2 if end is None else self.normalize_date(end)
        if s is None or e is None or e < s:
            return pd.DatetimeIndex([])
        return pd.date_range(s, e, freq=self.freq)

    def values_at(self, dates: Iterable[Any]) -> np.ndarray:
        if not isinstance(dates, pd.DatetimeIndex):
            dates = pd.DatetimeIndex(list(dates))
        index = self._normalize_index(dates)
        out = np.full(len(index), self.missing, dtype=float)
        if self._data is None or len(index) == 0:
            return out
        inside = np.asarray((index >= self._date1) & (index <= self._date2))
        if inside.any():
            rows = np.asarray(index.year)[inside] - self._date1.year
            cols = self._columns_for(index[inside])
            out[inside] = self._data[rows, cols]
        return out

    def change_period(self, date1: Any, date2: Any) -> Genesis:
        """
        Reallocate to [date1, date2], either of which may be None to keep the
        current bound. Values and flags in the old/new overlap are preserved,
        values outside the new period are discarded and extension gaps are
        missing. Work is proportional to the overlap.

        Raises:
            TimeSeriesConfigError: if both dates are None or the series was
                never allocated.
        """
        if date1 is None and date2 is None:
            raise TimeSeriesConfigError(
                f"{self.name!r}: period dates are None; cannot change the period"
            )
        if self._data is None:
            raise TimeSeriesConfigError(f"{self.name!r} has no data space allocated")
        new1 = self._date1 if date1 is None else self.normalize_date(date1)
        new2 = self._date2 if date2 is None else self.normalize_date(date2)
        if new1 == self._date1 and new2 == self._date2:
            return self.genesis

        old1, old2 = self._date1, self._date2
        old_data, old_flags = self._data, self._flags
        self.allocate(new1, new2)

        transfer1 = max(old1, new1)
        transfer2 = min(old2, new2)
        if transfer1 <= transfer2:
            for date in iter_dates(transfer1, transfer2, self.interval):
                row = date.year - old1.year
                col = self._column(date)
                flag = old_flags[row, col] if old_flags is not None else None
                self.set_value(date, old_data[row, col], flag)
        return self.add_to_genesis(
            f"Changed period: {format_date(new1, self.interval_base)} to "
            f"{format_date(new2, self.interval_base)}"
        )


class MonthTimeSeries(_RegularTimeSeries):
    """Monthly series: rows are years, 12 month columns."""

    interval_base = IntervalBase.MONTH
    columns = 12
    freq = "MS"

    def _column(self, date: pd.Timestamp) -> int:
        return date.month - 1

    def _columns_for(self, index: pd.DatetimeIndex) -> np.ndarray:
        return np.asarray(index.month) - 1

    def _normalize_index(self, index: pd.DatetimeIndex) -> pd.DatetimeIndex:
        return index.to_period("M").to_timestamp()


class DayTimeSeries(_RegularTimeSeries):
    """Daily series: rows are years, 366 day-of-year columns."""

    interval_base = IntervalBase.DAY
    columns = 366
    freq = "D"

    def _column(self, date: pd.Timestamp) -> int:
        return date.dayofyear - 1

    def _columns_for(self, index: pd.DatetimeIndex) -> np.ndarray:
        return np.asarray(index.dayofyear) - 1

    def _normalize_index(self, index: pd.DatetimeIndex) -> pd.DatetimeIndex:
        return index.normalize()


class YearTimeSeries(_RegularTimeSeries):
    """Yearly series: one column per year row."""

    interval_base = IntervalBase.YEAR
    columns = 1
    freq = "YS"

    def _column(self, date: pd.Timestamp) -> int:
        return 0

    def _columns_for(self, index: pd.DatetimeIndex) -> np.ndarray:
        return np.zeros(len(index), dtype=int)

    def _normalize_index(self, index: pd.DatetimeIndex) -> pd.DatetimeIndex:
        return index.to_period("Y").to_timestamp()


class IrregularTimeSeries(TimeSeries):
    """
    Date-keyed storage for values without a fixed step. Setting a value inside
    the period adds a point; lookups are dictionary lookups.
    """

    interval_base = IntervalBase.IRREGULAR

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._values: Dict[pd.Timestamp, float] = {}
        self._point_flags: Dict[pd.Timestamp, str] = {}
        self._flags_allocated: bool = False

    def allocate(self, date1: Any, date2: Any, interval_mult: int = 1) -> None:
        if date1 is None or date2 is None:
            raise TimeSeriesConfigError(
                f"Dates have not been set for {self.name!r}; cannot allocate data space"
            )
        if interval_mult != 1:
            raise TimeSeriesConfigError("Irregular series do not support interval multipliers")
        try:
            d1, d2 = to_timestamp(date1), to_timestamp(date2)
        except ValueError as e:
            raise TimeSeriesConfigError(str(e)) from e
        if d2 < d1:
            raise TimeSeriesConfigError(f"Period end {d2} is before period start {d1}")
        self._date1, self._date2 = d1, d2
        self._values = {}
        self._point_flags = {}
        self._dirty = True
        self._limits = None

    @property
    def has_data_flags(self) -> bool:
        return self._flags_allocated

    @property
    def data_size(self) -> int:
        return len(self._values)

    def get_value(self, date: Any) -> float:
        ts = self.normalize_date(date)
        if not self.in_period(ts):
            return self.missing
        return self._values.get(ts, self.missing)

    def get_flag(self, date: Any) -> str:
        return self._point_flags.get(self.normalize_date(date), "")

    def set_value(
        self, date: Any, value: float, flag: Optional[str] = None, duration: int = 0
    ) -> None:
        if date is None:
            return
        ts = self.normalize_date(date)
        if not self.in_period(ts):
            logger.debug("%s not within period of %s; value ignored", ts, self.name)
            return
        self._dirty = True
        self._values[ts] = float(value)
        if flag:
            self._flags_allocated = True
        if self._flags_allocated and flag is not None:
            self._point_flags[ts] = flag

    def dates(self, start: Any = None, end: Any = None) -> pd.DatetimeIndex:
        s = self._date1 if start is None else self.normalize_date(start)
        e = self._date2 if end is None else self.normalize_date(end)
        if s is None or e is None:
            return pd.DatetimeIndex([])
        return pd.DatetimeIndex(sorted(d for d in self._values if s <= d <= e))

    def change_period(self, date1: Any, date2: Any) -> Genesis:
        if date1 is None and date2 is None:
            raise TimeSeriesConfigError(
                f"{self.name!r}: period dates are None; cannot change the period"
            )
        new1 = self._date1 if date1 is None else self.normalize_date(date1)
        new2 = self._date2 if date2 is None else self.normalize_date(date2)
        if new1 == self._date1 and new2 == self._date2:
            return self.genesis
        values = {d: v for d, v in self._values.items() if new1 <= d <= new2}
        flags = {d: f for d, f in self._point_flags.items() if new1 <= d <= new2}
        self._date1, self._date2 = new1, new2
        self._values, self._point_flags = values, flags
        self._dirty = True
        return self.add_to_genesis(f"Changed period: {new1.isoformat()} to {new2.isoformat()}")


_SERIES_CLASSES = {
    IntervalBase.MONTH: MonthTimeSeries,
    IntervalBase.DAY: DayTimeSeries,
    IntervalBase.YEAR: YearTimeSeries,
    IntervalBase.IRREGULAR: IrregularTimeSeries,
}


def series_class_for(interval: TimeInterval | str) -> type[TimeSeries]:
    """
    Storage class for an interval.

    Raises:
        TimeSeriesConfigError: if the interval is unsupported.
    """
    if isinstance(interval, str):
        try:
            interval = TimeInterval.parse(interval)
        except ValueError as e:
            raise TimeSeriesConfigError(str(e)) from e
    if interval.multiplier != 1:
        raise TimeSeriesConfigError(
            f"Interval multiplier {interval.multiplier} is not supported"
        )
    return _SERIES_CLASSES[interval.base]


def create_time_series(
    interval: TimeInterval | str,
    identifier: Optional[TimeSeriesIdentifier] = None,
    units: str = "",
    missing: float = DEFAULT_MISSING,
) -> TimeSeries:
    """Factory returning an empty series of the storage variant for an interval."""
    cls = series_class_for(interval)
    return cls(identifier=identifier, units=units, missing=missing)
