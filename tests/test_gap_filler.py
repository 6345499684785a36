import threading

import numpy as np
import pandas as pd
import pytest

from tsfill.config import (
    AnalysisParams,
    BestFitIndicator,
    FillParams,
    NumberOfEquations,
    Transformation,
)
from tsfill.fill import FillResult, GapFiller, standard_error_of_prediction
from tsfill.regression import AnalyzedEquation, RegressionAnalyzer
from tsfill.timeseries import MonthTimeSeries, TimeSeriesIdentifier

FILL_POSITIONS = [3, 7, 11, 15, 19, 23]


def _ident(name):
    return TimeSeriesIdentifier(location=name, alias=name)


def _make_fill_inputs(years=2, seed=7, missing_positions=None):
    """
    Target T = 10 + 2*signal with gaps; A tracks the signal closely, B loosely.
    Returns (target, A, B).
    """
    rng = np.random.default_rng(seed)
    n = 12 * years
    dates = pd.date_range("2000-01-01", periods=n, freq="MS")
    signal = np.linspace(5.0, 100.0, n) + rng.uniform(-3.0, 3.0, n)
    a_vals = signal + rng.normal(0.0, 1.0, n)
    b_vals = signal + rng.normal(0.0, 10.0, n)
    y = 10.0 + 2.0 * signal
    positions = FILL_POSITIONS if missing_positions is None else missing_positions
    y[positions] = np.nan
    target = MonthTimeSeries.from_series(pd.Series(y, index=dates), identifier=_ident("T"))
    ind_a = MonthTimeSeries.from_series(pd.Series(a_vals, index=dates), identifier=_ident("A"))
    ind_b = MonthTimeSeries.from_series(pd.Series(b_vals, index=dates), identifier=_ident("B"))
    return target, ind_a, ind_b


def _analyze(target, *independents, params=None):
    analyzer = RegressionAnalyzer(params or AnalysisParams())
    return [analyzer.analyze(target, ind) for ind in independents]


def _fill_dates(target):
    return [target.dates()[i] for i in FILL_POSITIONS]


def test_lower_sep_candidate_wins_regardless_of_order():
    target1, ind_a, ind_b = _make_fill_inputs()
    target2, _, _ = _make_fill_inputs()
    a1, b1 = _analyze(target1, ind_a, ind_b)
    b2, a2 = _analyze(target2, ind_b, ind_a)

    r1 = GapFiller(FillParams(flag="auto")).fill(target1, [a1, b1])
    r2 = GapFiller(FillParams(flag="auto")).fill(target2, [b2, a2])

    assert r1.filled_count == r2.filled_count == len(FILL_POSITIONS)
    assert r1.candidate_counts == [6, 0]
    assert r2.candidate_counts == [0, 6]
    for date in _fill_dates(target1):
        expected = a1.estimate(ind_a.get_value(date), date.month)
        assert target1.get_value(date) == pytest.approx(expected)
        assert target2.get_value(date) == pytest.approx(expected)
        assert target1.get_flag(date) == "1"
        assert target2.get_flag(date) == "1"


def test_rank_by_r_prefers_higher_correlation():
    target, ind_a, ind_b = _make_fill_inputs()
    a, b = _analyze(target, ind_a, ind_b)
    assert a.results[0].r > b.results[0].r

    result = GapFiller(FillParams(rank_by=BestFitIndicator.R)).fill(target, [b, a])

    assert result.candidate_counts == [0, 6]
    date = _fill_dates(target)[0]
    assert target.get_value(date) == pytest.approx(a.estimate(ind_a.get_value(date), date.month))


def test_ties_go_to_the_later_candidate():
    target, ind_a, _ = _make_fill_inputs()
    first = MonthTimeSeries.from_series(ind_a.to_series(), identifier=_ident("A1"))
    second = MonthTimeSeries.from_series(ind_a.to_series(), identifier=_ident("A2"))
    analyses = _analyze(target, first, second)

    result = GapFiller(FillParams(flag="i")).fill(target, analyses)

    assert result.candidate_counts == [0, 6]
    assert {target.get_flag(d) for d in _fill_dates(target)} == {"A2"}

    target, ind_a, _ = _make_fill_inputs()
    (a,) = _analyze(target, ind_a)
    result = GapFiller(FillParams(rank_by=BestFitIndicator.R)).fill(target, [a, a])
    assert result.candidate_counts == [0, 6]


def test_second_pass_changes_nothing():
    target, ind_a, ind_b = _make_fill_inputs()
    analyses = _analyze(target, ind_a, ind_b)
    filler = GapFiller(FillParams())

    first = filler.fill(target, analyses)
    snapshot = target.to_series().copy()
    genesis_len = len(target.genesis)
    second = filler.fill(target, analyses)

    assert first.filled_count == 6
    assert second.filled_count == 0
    assert second.missing_count == 0
    pd.testing.assert_series_equal(target.to_series(), snapshot)
    assert len(target.genesis) == genesis_len


def test_flag_templates():
    target, ind_a, _ = _make_fill_inputs()
    (a,) = _analyze(target, ind_a)
    GapFiller(FillParams(flag="i")).fill(target, [a])
    assert {target.get_flag(d) for d in _fill_dates(target)} == {"A"}

    target, ind_a, _ = _make_fill_inputs()
    (a,) = _analyze(target, ind_a)
    GapFiller(FillParams(flag="E")).fill(target, [a])
    assert {target.get_flag(d) for d in _fill_dates(target)} == {"E"}

    target, ind_a, _ = _make_fill_inputs()
    (a,) = _analyze(target, ind_a)
    GapFiller(FillParams(flag=None)).fill(target, [a])
    assert not target.has_data_flags


def test_monthly_flags_carry_month_abbreviation():
    positions = [66, 67, 68]  # Jul, Aug, Sep of the last year
    target, ind_a, _ = _make_fill_inputs(years=6, missing_positions=positions)
    params = AnalysisParams(equations=NumberOfEquations.MONTHLY)
    (a,) = _analyze(target, ind_a, params=params)

    result = GapFiller(FillParams(flag="auto")).fill(target, [a])
    assert result.filled_count == 3
    dates = [target.dates()[i] for i in positions]
    assert [target.get_flag(d) for d in dates] == ["Jul1", "Aug1", "Sep1"]

    target, ind_a, _ = _make_fill_inputs(years=6, missing_positions=positions)
    (a,) = _analyze(target, ind_a, params=params)
    GapFiller(FillParams(flag="i")).fill(target, [a])
    assert target.get_flag(dates[0]) == "JulA"
    assert target.description.endswith(", fill OLS monthly using A")


def test_analysis_months_limit_filled_dates():
    # five years so that three Augusts remain paired
    target, ind_a, _ = _make_fill_inputs(years=5)
    params = AnalysisParams(analysis_months=[8])
    (a,) = _analyze(target, ind_a, params=params)
    assert a.results[0].n1 == 3

    result = GapFiller(FillParams()).fill(target, [a])

    # positions 7 and 19 are August
    assert result.filled_count == 2
    assert result.missing_count == 6
    assert target.description.endswith(", fill OLS Aug using A")


def test_exclude_zero_skips_zero_independent_values():
    target, ind_a, _ = _make_fill_inputs()
    (a,) = _analyze(target, ind_a)
    zero_date = _fill_dates(target)[2]
    ind_a.set_value(zero_date, 0.0)

    result = GapFiller(FillParams(exclude_zero=True)).fill(target, [a])

    assert result.filled_count == 5
    assert target.is_missing(target.get_value(zero_date))

    target, ind_a, _ = _make_fill_inputs()
    (a,) = _analyze(target, ind_a)
    ind_a.set_value(zero_date, 0.0)
    assert GapFiller(FillParams()).fill(target, [a]).filled_count == 6


def test_missing_independent_values_leave_gaps():
    target, ind_a, _ = _make_fill_inputs()
    (a,) = _analyze(target, ind_a)
    gap = _fill_dates(target)[0]
    ind_a.set_value(gap, ind_a.missing)

    result = GapFiller(FillParams()).fill(target, [a])

    assert result.filled_count == 5
    assert result.error_count == 0
    assert target.is_missing(target.get_value(gap))


class _ExplodingSeries(MonthTimeSeries):
    bad_date = None

    def get_value(self, date):
        if self.bad_date is not None and self.normalize_date(date) == self.bad_date:
            raise RuntimeError("storage failure")
        return super().get_value(date)


def test_per_date_errors_are_counted_and_the_pass_continues():
    target, ind_a, _ = _make_fill_inputs()
    exploding = _ExplodingSeries.from_series(ind_a.to_series(), identifier=_ident("X"))
    (analysis,) = _analyze(target, exploding)
    bad = _fill_dates(target)[1]
    exploding.bad_date = bad

    result = GapFiller(FillParams()).fill(target, [analysis])

    assert result.error_count == 1
    assert result.filled_count == 5
    assert len(result.problems) == 1
    assert target.is_missing(target.get_value(bad))
    assert not target.is_missing(target.get_value(_fill_dates(target)[-1]))


class _CancelAfter:
    """Event stand-in that reports cancellation after n checks."""

    def __init__(self, n):
        self.n = n
        self.calls = 0

    def is_set(self):
        self.calls += 1
        return self.calls > self.n


def test_cancellation_stops_between_dates():
    target, ind_a, _ = _make_fill_inputs()
    (a,) = _analyze(target, ind_a)

    result = GapFiller(FillParams()).fill(target, [a], cancel_event=_CancelAfter(10))

    # dates 0..9 processed: gaps at positions 3 and 7
    assert result.cancelled
    assert result.filled_count == 2
    assert target.is_missing(target.get_value(_fill_dates(target)[2]))

    target, ind_a, _ = _make_fill_inputs()
    (a,) = _analyze(target, ind_a)
    event = threading.Event()
    event.set()
    assert GapFiller(FillParams()).fill(target, [a], cancel_event=event).filled_count == 0


def test_genesis_and_description_record_contributing_candidates():
    target, ind_a, ind_b = _make_fill_inputs()
    a, b = _analyze(target, ind_a, ind_b)
    target.description = "Streamflow"

    result = GapFiller(FillParams()).fill(target, [a, b])

    entries = list(result.genesis)
    assert result.genesis is target.genesis
    assert entries[0] == "Filled 6 missing values 2000-01 to 2001-12 using analysis results:"
    assert entries[1:] == a.summary_lines()
    assert target.description == "Streamflow, fill OLS using A"


def test_log_fill_description_uses_identifier_string():
    target, ind_a, _ = _make_fill_inputs()
    (a,) = _analyze(target, ind_a, params=AnalysisParams(transformation=Transformation.LOG10))

    GapFiller(FillParams()).fill(target, [a])

    assert target.description == f", fill log OLS using {ind_a.identifier.identifier_string()}"


def test_explicit_description_is_used_verbatim():
    target, ind_a, _ = _make_fill_inputs()
    (a,) = _analyze(target, ind_a)
    GapFiller(FillParams(description=" (filled)")).fill(target, [a])
    assert target.description == " (filled)"


def test_fill_period_limits_the_pass():
    target, ind_a, _ = _make_fill_inputs()
    (a,) = _analyze(target, ind_a)

    result = GapFiller(FillParams(fill_start="2001-01", fill_end="2001-12")).fill(target, [a])

    assert result.filled_count == 3
    assert target.is_missing(target.get_value(_fill_dates(target)[0]))


def test_fill_period_beyond_target_is_clipped():
    target, ind_a, _ = _make_fill_inputs()
    ind_a.change_period(None, "2003-12")
    for i, date in enumerate(ind_a.dates("2002-01", "2003-12")):
        ind_a.set_value(date, 100.0 + i)
    (a,) = _analyze(target, ind_a)
    filler = GapFiller(FillParams(fill_end="2003-12"))

    first = filler.fill(target, [a])
    genesis_len = len(target.genesis)
    second = filler.fill(target, [a])

    assert first.missing_count == 6
    assert first.filled_count == 6
    assert first.candidate_counts == [6]
    assert max(first.filled_dates) == pd.Timestamp("2001-12-01")
    assert list(target.genesis)[-len(a.summary_lines()) - 1].startswith(
        "Filled 6 missing values 2000-01 to 2001-12"
    )
    assert second.filled_count == 0
    assert second.missing_count == 0
    assert len(target.genesis) == genesis_len
    assert target.date2 == pd.Timestamp("2001-12-01")

    outside = GapFiller(FillParams(fill_start="2005-01", fill_end="2006-12")).fill(target, [a])
    assert outside.skipped_reason == "fill period is outside the target period"
    assert outside.missing_count == 0
    assert len(target.genesis) == genesis_len


def test_no_candidates_is_skipped():
    target, _, _ = _make_fill_inputs()
    result = GapFiller().fill(target, [])
    assert result.filled_count == 0
    assert result.skipped_reason == "no candidate analyses"
    assert "skipped=no candidate analyses" in result.summarize()


def _equation(see, n1=10, mean_x1=5.0, sd_x1=2.0):
    return AnalyzedEquation(
        index=1, n1=n1, n2=0, a=0.0, b=1.0, r=0.9,
        mean_x1=mean_x1, sd_x1=sd_x1, mean_y1=5.0, sd_y1=2.0,
        mean_x2=None, sd_x2=None, mean_x=mean_x1, sd_x=sd_x1,
        rmse=see, rmse_transformed=None, see=see, see_transformed=None,
        se_slope=0.1, test_score=10.0,
    )


def test_standard_error_of_prediction_bounds():
    assert standard_error_of_prediction(_equation(0.0), 5.0, Transformation.NONE) == 0.0
    assert standard_error_of_prediction(_equation(1e6), 5.0, Transformation.NONE) is None
    assert standard_error_of_prediction(_equation(float("nan")), 5.0, Transformation.NONE) is None

    small = standard_error_of_prediction(_equation(2.0), 5.0, Transformation.NONE)
    large = standard_error_of_prediction(_equation(20.0), 5.0, Transformation.NONE)
    assert 0.0 < small < large


def test_fill_result_summary():
    result = FillResult(label="T")
    result.start()
    result.missing_count = 4
    result.filled_count = 3
    result.candidate_counts = [3]
    result.add_metric("rank_by", "SEP")
    result.stop()
    text = result.summarize()
    assert text.startswith("T fill: 3 of 4 missing filled")
    assert "per_candidate=[3]" in text
    assert "elapsed_ms=" in text
