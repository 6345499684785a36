import math

import numpy as np
import pandas as pd
import pytest

from tsfill.timeseries import (
    DataPosition,
    DayTimeSeries,
    Genesis,
    IrregularTimeSeries,
    MissingDomain,
    MonthTimeSeries,
    TimeSeriesConfigError,
    TimeSeriesIdentifier,
    YearTimeSeries,
    create_time_series,
    series_class_for,
)


def _make_monthly(values, start="2000-01", name="Y"):
    """Monthly series starting at `start`; None entries are left missing."""
    ts = MonthTimeSeries(identifier=TimeSeriesIdentifier(location=name, alias=name))
    start_ts = pd.Timestamp(start)
    ts.allocate(start_ts, start_ts + pd.DateOffset(months=len(values) - 1))
    for i, v in enumerate(values):
        if v is not None:
            ts.set_value(start_ts + pd.DateOffset(months=i), v)
    return ts


def test_allocate_fills_period_with_missing():
    ts = MonthTimeSeries()
    ts.allocate("2000-01", "2001-12")
    assert ts.data_size == 24
    assert ts.date1 == pd.Timestamp("2000-01-01")
    assert ts.date2 == pd.Timestamp("2001-12-01")
    values = ts.to_series()
    assert len(values) == 24
    assert (values == -999.0).all()
    assert all(ts.is_missing(v) for v in values)


def test_set_get_round_trip_and_date_normalization():
    ts = _make_monthly([None] * 12)
    ts.set_value("2000-03-15", 5.5)
    assert ts.get_value(pd.Timestamp("2000-03-01")) == 5.5
    assert ts.position("2000-03-31") == DataPosition(0, 2)

    ts.set_value("2000-04-01", -999.0005)
    assert ts.is_missing(ts.get_value("2000-04-01"))


def test_out_of_period_get_returns_missing_and_set_is_noop():
    ts = _make_monthly([1.0, 2.0, 3.0])
    before = ts.to_series().copy()
    ts.refresh()

    assert ts.get_value("1999-12-01") == ts.missing
    assert ts.get_value("2000-04-01") == ts.missing
    ts.set_value("1999-12-01", 42.0)
    ts.set_value("2000-04-01", 42.0)

    pd.testing.assert_series_equal(ts.to_series(), before)
    assert not ts.dirty


def test_allocate_failures_leave_series_unchanged():
    ts = _make_monthly([1.0, 2.0])
    with pytest.raises(TimeSeriesConfigError):
        ts.allocate("2000-01", "2000-12", interval_mult=2)
    with pytest.raises(TimeSeriesConfigError):
        ts.allocate(None, "2000-12")
    with pytest.raises(TimeSeriesConfigError):
        ts.allocate("2001-01", "2000-01")
    assert ts.date2 == pd.Timestamp("2000-02-01")
    assert ts.get_value("2000-02-01") == 2.0


def test_change_period_preserves_overlap_and_records_genesis():
    ts = _make_monthly([float(m) for m in range(1, 13)])
    ts.set_value("2000-08-01", 8.0, flag="E")

    genesis = ts.change_period("2000-07", "2001-06")

    assert ts.data_size == 12
    for m in range(7, 13):
        assert ts.get_value(f"2000-{m:02d}-01") == float(m)
    for m in range(1, 7):
        assert ts.is_missing(ts.get_value(f"2001-{m:02d}-01"))
    assert ts.is_missing(ts.get_value("2000-06-01"))
    assert ts.get_flag("2000-08-01") == "E"
    assert genesis is ts.genesis
    assert list(genesis)[-1] == "Changed period: 2000-07 to 2001-06"


def test_change_period_with_same_dates_is_noop():
    ts = _make_monthly([1.0, 2.0, 3.0])
    n_before = len(ts.genesis)
    ts.change_period("2000-01", "2000-03")
    ts.change_period(None, "2000-03")
    assert len(ts.genesis) == n_before
    with pytest.raises(TimeSeriesConfigError):
        ts.change_period(None, None)


def test_flags_are_allocated_lazily():
    ts = _make_monthly([1.0, 2.0, 3.0])
    assert not ts.has_data_flags
    assert ts.get_flag("2000-01-01") == ""

    ts.set_value("2000-02-01", 2.5, flag="F")
    assert ts.has_data_flags
    assert ts.get_flag("2000-02-01") == "F"
    assert ts.get_flag("2000-01-01") == ""

    point = ts.get_point("2000-02-20")
    assert point.date == pd.Timestamp("2000-02-01")
    assert point.value == 2.5
    assert point.flag == "F"


def test_limits_are_recomputed_only_when_dirty():
    ts = _make_monthly([3.0, 1.0, None, 5.0])
    assert ts.dirty

    limits = ts.limits
    assert not ts.dirty
    assert limits.found
    assert limits.min_value == 1.0
    assert limits.min_date == pd.Timestamp("2000-02-01")
    assert limits.max_value == 5.0
    assert limits.max_date == pd.Timestamp("2000-04-01")
    assert limits.mean == pytest.approx(3.0)
    assert limits.non_missing_count == 3
    assert limits.missing_count == 1
    assert limits.first_non_missing_date == pd.Timestamp("2000-01-01")
    assert limits.last_non_missing_date == pd.Timestamp("2000-04-01")

    ts.set_value("2000-03-01", -10.0)
    assert ts.dirty
    assert ts.limits.min_value == -10.0
    assert ts.limits.non_missing_count == 4


def test_limits_when_everything_is_missing():
    ts = _make_monthly([None, None])
    assert not ts.limits.found
    assert ts.limits.missing_count == 2


def test_missing_domain_single_range_and_nan():
    domain = MissingDomain()
    assert domain.contains(-999.0)
    assert domain.contains(-998.9995)
    assert not domain.contains(-998.99)
    assert domain.contains(float("nan"))

    nan_only = MissingDomain.single(float("nan"))
    assert not nan_only.contains(-999.0)
    assert nan_only.contains(float("nan"))

    ranged = MissingDomain.between(0.0, -1.0)
    assert ranged.value == -0.5
    assert ranged.contains(-0.3)
    assert not ranged.contains(0.1)
    np.testing.assert_array_equal(
        ranged.mask(np.array([-0.5, 1.0, np.nan])), [True, False, True]
    )


def test_set_missing_range_changes_sentinel_for_new_storage():
    ts = MonthTimeSeries()
    ts.set_missing_range(-1.0, 0.0)
    ts.allocate("2000-01", "2000-03")
    assert ts.missing == -0.5
    assert ts.get_value("2000-02-01") == -0.5
    assert ts.is_missing(-0.25)

    ts.set_missing(float("nan"))
    assert math.isnan(ts.missing)
    assert not ts.is_missing(-999.0)


def test_day_series_handles_leap_day():
    ts = DayTimeSeries()
    ts.allocate("2000-02-27", "2000-03-02")
    assert ts.data_size == 5
    ts.set_value("2000-02-29", 29.0)
    ts.set_value("2000-03-01 18:00", 1.0)
    assert ts.get_value("2000-02-29") == 29.0
    assert ts.get_value("2000-03-01") == 1.0
    dates = ts.dates()
    np.testing.assert_array_equal(ts.values_at(dates), [ts.get_value(d) for d in dates])


def test_year_series_single_column():
    ts = YearTimeSeries()
    ts.allocate("1990", "1994")
    ts.set_value("1992-06-30", 7.0)
    assert ts.data_size == 5
    assert ts.get_value("1992-01-01") == 7.0
    assert ts.position("1992-12-31") == DataPosition(2, 0)


def test_irregular_series_adds_points_in_period():
    ts = IrregularTimeSeries()
    ts.allocate("2000-01-01", "2000-12-31")
    ts.set_value("2000-05-03 12:00", 4.0)
    ts.set_value("2000-02-01 08:30", 2.0, flag="R")
    ts.set_value("2001-01-01", 9.0)

    assert ts.data_size == 2
    assert list(ts.dates()) == [
        pd.Timestamp("2000-02-01 08:30"),
        pd.Timestamp("2000-05-03 12:00"),
    ]
    assert ts.get_value("2000-02-01 08:30") == 2.0
    assert ts.get_flag("2000-02-01 08:30") == "R"
    assert ts.is_missing(ts.get_value("2000-02-02"))

    ts.change_period("2000-03-01", "2000-12-31")
    assert ts.data_size == 1


def test_from_series_and_to_series_round_trip():
    index = pd.date_range("2000-01-01", periods=6, freq="MS")
    source = pd.Series([1.0, np.nan, 3.0, 4.0, np.nan, 6.0], index=index)
    ts = MonthTimeSeries.from_series(source, identifier=TimeSeriesIdentifier(location="X"))

    out = ts.to_series()
    assert list(out.index) == list(index)
    assert out.iloc[1] == ts.missing
    assert out.iloc[5] == 6.0
    assert [p.value for p in ts.iterate("2000-03", "2000-04")] == [3.0, 4.0]
    np.testing.assert_array_equal(ts.missing_mask(out.to_numpy()), source.isna().to_numpy())

    with pytest.raises(TimeSeriesConfigError):
        MonthTimeSeries.from_series(pd.Series([], dtype=float))


def test_values_at_outside_period_yields_missing():
    ts = _make_monthly([1.0, 2.0])
    vals = ts.values_at(pd.DatetimeIndex(["1999-12-01", "2000-02-01", "2000-03-01"]))
    np.testing.assert_array_equal(vals, [ts.missing, 2.0, ts.missing])
    from_list = ts.values_at(["1999-12-01", "2000-02-15"])
    np.testing.assert_array_equal(from_list, [ts.missing, 2.0])
    np.testing.assert_array_equal(ts.missing_mask(from_list.tolist()), [True, False])


def test_factory_and_identifier_helpers():
    assert isinstance(create_time_series("Month"), MonthTimeSeries)
    assert isinstance(create_time_series("Day"), DayTimeSeries)
    with pytest.raises(TimeSeriesConfigError):
        create_time_series("2Month")
    with pytest.raises(TimeSeriesConfigError):
        create_time_series("Fortnight")
    assert series_class_for("Year") is YearTimeSeries
    assert series_class_for("irregular") is IrregularTimeSeries
    with pytest.raises(TimeSeriesConfigError):
        series_class_for("3Day")

    ident = TimeSeriesIdentifier(
        location="GAGE1", source="USGS", data_type="Streamflow", interval="Month"
    )
    assert ident.identifier_string() == "GAGE1.USGS.Streamflow.Month"
    assert ident.alias_or_location() == "GAGE1"
    assert TimeSeriesIdentifier(location="L", alias="A").alias_or_location() == "A"


def test_genesis_is_append_only_value():
    g0 = Genesis()
    g1 = g0.append("first")
    g2 = g1.append("second", "third")
    assert len(g0) == 0
    assert list(g1) == ["first"]
    assert list(g2) == ["first", "second", "third"]
    assert g2.append() is g2
