"""
Regression analysis between a dependent and an independent time series.

RegressionAnalyzer.analyze() pairs the two series over the dependent analysis
period and fits one equation (SINGLE) or one per calendar month (MONTHLY)
using OLS (statsmodels) or MOVE.2. Each equation becomes either an
AnalyzedEquation carrying its statistics or a NotAnalyzedEquation carrying the
reason it could not be computed. Monthly equations are independent: a failure
in one month never affects its siblings. In SINGLE mode a failed equation
raises RegressionAnalysisError.

The RegressionAnalysis returned by analyze() is consumed by GapFiller and also
provides predicted/residual series, a validity mask and a statistics table.
"""

from __future__ import annotations

import dataclasses
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy import stats

from .config import (
    ALL_MONTHS,
    MIN_SAMPLE_SIZE_FLOOR,
    AnalysisParams,
    NumberOfEquations,
    RegressionMethod,
    Transformation,
)
from .dates import format_date, month_abbreviation
from .timeseries import (
    TimeSeries,
    TimeSeriesConfigError,
    TimeSeriesError,
)

logger = logging.getLogger(__name__)


class RegressionAnalysisError(TimeSeriesError):
    """Raised when a single-equation analysis cannot be computed."""

    pass


@dataclass(frozen=True)
class AnalyzedEquation:
    """
    Statistics of one successfully computed equation.

    X1/Y1 are the N1 paired values, X2 the N2 independent-only values and X all
    non-missing independent values in the independent analysis period. Under
    LOG10 every X/Y statistic is in log space; rmse is always computed on the
    untransformed values.
    """

    index: int
    n1: int
    n2: int
    a: float
    b: float
    r: float
    mean_x1: float
    sd_x1: float
    mean_y1: float
    sd_y1: float
    mean_x2: Optional[float]
    sd_x2: Optional[float]
    mean_x: float
    sd_x: float
    rmse: float
    rmse_transformed: Optional[float]
    see: float
    see_transformed: Optional[float]
    se_slope: float
    test_score: float
    test_quantile: Optional[float] = None
    test_ok: Optional[bool] = None
    analyzed: bool = field(default=True, init=False)

    @property
    def confidence_met(self) -> bool:
        """True when the slope test passed or no confidence level was requested."""
        return self.test_ok is not False

    @property
    def prediction_see(self) -> float:
        """Standard error of estimate in the space the equation is fitted in."""
        return self.see_transformed if self.see_transformed is not None else self.see

    @property
    def is_finite(self) -> bool:
        return bool(np.isfinite(self.a) and np.isfinite(self.b))


@dataclass(frozen=True)
class NotAnalyzedEquation:
    """An equation that could not be computed, with the reason."""

    index: int
    reason: str
    n1: int = 0
    n2: int = 0
    analyzed: bool = field(default=False, init=False)

    @property
    def confidence_met(self) -> bool:
        return False


RegressionResult = Union[AnalyzedEquation, NotAnalyzedEquation]


# -------------------------
# Numerical helpers
# -------------------------
def _sample_std(values: np.ndarray) -> np.float64:
    """Sample standard deviation (n - 1); NaN for fewer than two values."""
    n = len(values)
    if n < 2:
        return np.float64(np.nan)
    mean = np.mean(values)
    return np.float64(np.sqrt(np.sum((values - mean) ** 2) / (n - 1)))


def _mean(values: np.ndarray) -> np.float64:
    if len(values) == 0:
        return np.float64(np.nan)
    return np.float64(np.mean(values))


def pearson_r(x: np.ndarray, y: np.ndarray) -> Optional[float]:
    """
    Correlation coefficient from the computational formula
    (n*Sxy - Sx*Sy) / sqrt((n*Sxx - Sx^2) * (n*Syy - Sy^2)).

    Returns None when the denominator is not positive (constant X or Y).
    """
    n = float(len(x))
    if n == 0:
        return None
    sx, sy = float(np.sum(x)), float(np.sum(y))
    sxy = float(np.sum(x * y))
    sxx, syy = float(np.sum(x * x)), float(np.sum(y * y))
    denom = (n * sxx - sx * sx) * (n * syy - sy * sy)
    if not np.isfinite(denom) or denom <= 0.0:
        return None
    return (n * sxy - sx * sy) / np.sqrt(denom)


def fit_ols(x: np.ndarray, y: np.ndarray, through_origin: bool = False) -> tuple[float, float]:
    """
    Least-squares (a, b) for y = a + b*x. With through_origin the constant is
    omitted, giving b = Sxy / Sxx and a = 0.
    """
    if through_origin:
        res = sm.OLS(y, x.reshape(-1, 1)).fit()
        return 0.0, float(res.params[0])
    X = sm.add_constant(x.reshape(-1, 1), has_constant="add")
    res = sm.OLS(y, X).fit()
    return float(res.params[0]), float(res.params[1])


def standard_error_of_estimate(rmse: float, n: int) -> float:
    """SEE = RMSE * sqrt(n / (n - 2)); NaN when n <= 2."""
    if n <= 2:
        return float("nan")
    return float(rmse * np.sqrt(n) / np.sqrt(n - 2))


def student_t_quantile(confidence_percent: float, dof: int) -> Optional[float]:
    """Two-tailed Student's t critical value, or None for fewer than one degree of freedom."""
    if dof < 1:
        return None
    alpha = (100.0 - confidence_percent) / 100.0
    return float(stats.t.ppf(1.0 - alpha / 2.0, dof))


# -------------------------
# Analysis result
# -------------------------
@dataclass(frozen=True, eq=False)
class RegressionAnalysis:
    """
    Results of analyzing one dependent/independent pair.

    results holds one entry for SINGLE analyses and twelve (January first) for
    MONTHLY analyses.
    """

    dependent: TimeSeries
    independent: TimeSeries
    params: AnalysisParams
    results: Tuple[RegressionResult, ...]
    dependent_period: Tuple[pd.Timestamp, pd.Timestamp]
    independent_period: Tuple[pd.Timestamp, pd.Timestamp]

    @property
    def single(self) -> bool:
        return self.params.equations is NumberOfEquations.SINGLE

    @property
    def transformation(self) -> Transformation:
        return self.params.transformation

    @property
    def analysis_months(self) -> Tuple[int, ...]:
        return self.params.months

    def equation_for_month(self, month: int) -> RegressionResult:
        """The equation that applies to calendar month 1..12."""
        if self.single:
            return self.results[0]
        return self.results[month - 1]

    def validity_mask(
        self, min_sample_size: int = MIN_SAMPLE_SIZE_FLOOR, min_r: Optional[float] = None
    ) -> Tuple[bool, ...]:
        """
        Twelve booleans; month m is usable for filling when it is an analysis
        month and its equation is analyzed with finite coefficients, has at least
        max(3, min_sample_size) pairs, meets min_r, and passed the confidence test.
        """
        min_n = max(MIN_SAMPLE_SIZE_FLOOR, int(min_sample_size))
        months = set(self.analysis_months)
        mask = []
        for month in ALL_MONTHS:
            eq = self.equation_for_month(month)
            ok = (
                month in months
                and isinstance(eq, AnalyzedEquation)
                and eq.is_finite
                and eq.n1 >= min_n
                and (min_r is None or eq.r >= min_r)
                and eq.confidence_met
            )
            mask.append(bool(ok))
        return tuple(mask)

    def transform_x(self, x: float) -> float:
        if self.transformation is Transformation.LOG10:
            return float(np.log10(x if x > 0.0 else self.params.le_zero_log_value))
        return float(x)

    def estimate(self, x: float, month: int) -> Optional[float]:
        """Estimated dependent value for independent value x, or None if no usable equation."""
        eq = self.equation_for_month(month)
        if not isinstance(eq, AnalyzedEquation) or not eq.is_finite:
            return None
        y = eq.a + eq.b * self.transform_x(x)
        if self.transformation is Transformation.LOG10:
            y = 10.0**y
        return float(y)

    def predicted_series(self) -> TimeSeries:
        """
        New series over the dependent period holding the estimate at every date
        where the independent value is non-missing and an equation applies.
        """
        dep = self.dependent
        predicted = type(dep)(
            identifier=dataclasses.replace(dep.identifier, scenario="predicted"),
            units=dep.units,
            description=f"{dep.description} predicted from {self.independent.name}".strip(),
            missing=dep.missing,
        )
        predicted.allocate(dep.date1, dep.date2)
        months = set(self.analysis_months)
        for date in dep.dates():
            if date.month not in months:
                continue
            x = self.independent.get_value(date)
            if self.independent.is_missing(x):
                continue
            value = self.estimate(x, date.month)
            if value is not None:
                predicted.set_value(date, value)
        predicted.add_to_genesis(
            f"Predicted from {self.independent.name} using regression analysis:",
            *self.summary_lines(),
        )
        return predicted

    def residual_series(self) -> TimeSeries:
        """Predicted minus observed where both are non-missing."""
        dep = self.dependent
        predicted = self.predicted_series()
        residual = type(dep)(
            identifier=dataclasses.replace(dep.identifier, scenario="residual"),
            units=dep.units,
            description=f"{dep.description} residual (predicted - observed)".strip(),
            missing=dep.missing,
        )
        residual.allocate(dep.date1, dep.date2)
        for date in dep.dates():
            p = predicted.get_value(date)
            o = dep.get_value(date)
            if predicted.is_missing(p) or dep.is_missing(o):
                continue
            residual.set_value(date, p - o)
        residual.add_to_genesis(f"Residual of predicted minus observed for {dep.name}")
        return residual

    def overall_rmse(self) -> Optional[float]:
        """RMSE pooled over analyzed equations, weighted by N1."""
        analyzed = [
            eq for eq in self.results if isinstance(eq, AnalyzedEquation) and np.isfinite(eq.rmse)
        ]
        total_n = sum(eq.n1 for eq in analyzed)
        if total_n == 0:
            return None
        return float(np.sqrt(sum(eq.n1 * eq.rmse**2 for eq in analyzed) / total_n))

    def equation_label(self, eq: RegressionResult) -> str:
        return "All" if self.single else month_abbreviation(eq.index)

    def summary_lines(self) -> List[str]:
        """Provenance text describing the analysis, one line per item."""
        p = self.params
        base = self.dependent.interval_base
        lines = [
            f"Dependent: {self.dependent.name}  Independent: {self.independent.name}",
            f"Method: {p.method.name}  Equations: {p.equations.name}  "
            f"Transformation: {p.transformation.name}",
            f"Dependent analysis period: {format_date(self.dependent_period[0], base)} to "
            f"{format_date(self.dependent_period[1], base)}",
            f"Independent analysis period: {format_date(self.independent_period[0], base)} to "
            f"{format_date(self.independent_period[1], base)}",
        ]
        if p.analysis_months:
            lines.append(
                "Analysis months: " + ",".join(month_abbreviation(m) for m in p.months)
            )
        if p.forced_intercept is not None:
            lines.append(f"Forced intercept: {p.forced_intercept}")
        for eq in self.results:
            label = self.equation_label(eq)
            if isinstance(eq, AnalyzedEquation):
                line = (
                    f"{label}: N1={eq.n1} N2={eq.n2} a={eq.a:.6g} b={eq.b:.6g} "
                    f"R={eq.r:.4f} RMSE={eq.rmse:.6g} SEE={eq.see:.6g}"
                )
                if eq.test_ok is not None:
                    line += f" TestOK={eq.test_ok}"
                lines.append(line)
            else:
                lines.append(f"{label}: not analyzed ({eq.reason})")
        return lines

    def statistics_rows(self) -> List[Dict[str, Any]]:
        rows = []
        for eq in self.results:
            row: Dict[str, Any] = {
                "Independent": self.independent.name,
                "Equation": self.equation_label(eq),
                "N1": eq.n1,
                "N2": eq.n2,
                "Analyzed": eq.analyzed,
                "Reason": "" if eq.analyzed else eq.reason,
            }
            if isinstance(eq, AnalyzedEquation):
                row.update(
                    {
                        "MeanX1": eq.mean_x1,
                        "SX1": eq.sd_x1,
                        "MeanY1": eq.mean_y1,
                        "SY1": eq.sd_y1,
                        "MeanX2": eq.mean_x2,
                        "SX2": eq.sd_x2,
                        "a": eq.a,
                        "b": eq.b,
                        "R": eq.r,
                        "RMSE": eq.rmse,
                        "RMSE_transformed": eq.rmse_transformed,
                        "SEE": eq.see,
                        "SE_slope": eq.se_slope,
                        "TestScore": eq.test_score,
                        "TestQuantile": eq.test_quantile,
                        "TestOK": eq.test_ok,
                    }
                )
            rows.append(row)
        return rows


STATISTICS_COLUMNS = [
    "Independent",
    "Equation",
    "N1",
    "N2",
    "MeanX1",
    "SX1",
    "MeanY1",
    "SY1",
    "MeanX2",
    "SX2",
    "a",
    "b",
    "R",
    "RMSE",
    "RMSE_transformed",
    "SEE",
    "SE_slope",
    "TestScore",
    "TestQuantile",
    "TestOK",
    "Analyzed",
    "Reason",
]


def statistics_table(analyses: Iterable[RegressionAnalysis]) -> pd.DataFrame:
    """One row per (independent, equation) across the given analyses."""
    rows: List[Dict[str, Any]] = []
    for analysis in analyses:
        rows.extend(analysis.statistics_rows())
    return pd.DataFrame(rows, columns=STATISTICS_COLUMNS)


# -------------------------
# Analyzer
# -------------------------
@dataclass(frozen=True)
class _PairedData:
    """Arrays shared by every equation of one analysis run."""

    dep_months: np.ndarray
    x_dep: np.ndarray
    y_dep: np.ndarray
    x_dep_ok: np.ndarray
    y_dep_ok: np.ndarray
    ind_months: np.ndarray
    x_ind: np.ndarray
    x_ind_ok: np.ndarray
    ind_only: np.ndarray


class RegressionAnalyzer:
    """
    Fits dependent = a + b * independent per equation.

    Usage:
        analysis = RegressionAnalyzer(params).analyze(dependent, independent)
    """

    def __init__(self, params: Optional[AnalysisParams] = None) -> None:
        self.params = params if params is not None else AnalysisParams()

    def analyze(
        self,
        dependent: TimeSeries,
        independent: TimeSeries,
        executor: Optional[Executor] = None,
    ) -> RegressionAnalysis:
        """
        Analyze the relationship between dependent and independent.

        Args:
            dependent: Series whose values are estimated (Y).
            independent: Reference series (X).
            executor: Optional executor used to map over the equations.

        Raises:
            TimeSeriesConfigError: for invalid parameters or unset periods.
            RegressionAnalysisError: when a SINGLE equation cannot be computed.
        """
        p = self.params
        p.validate()
        dep_period = self._resolve_period(dependent, p.dependent_start, p.dependent_end)
        ind_period = self._resolve_period(independent, p.independent_start, p.independent_end)
        data = self._collect(dependent, independent, dep_period, ind_period)

        if p.equations is NumberOfEquations.SINGLE:
            indices = [1]
        else:
            indices = list(ALL_MONTHS)

        def _run(index: int) -> RegressionResult:
            return self._analyze_equation_safe(index, data)

        if executor is not None:
            results = list(executor.map(_run, indices))
        else:
            results = [_run(i) for i in indices]

        if p.equations is NumberOfEquations.SINGLE and isinstance(
            results[0], NotAnalyzedEquation
        ):
            raise RegressionAnalysisError(
                f"Unable to analyze {dependent.name} vs {independent.name}: {results[0].reason}"
            )

        n_ok = sum(1 for r in results if r.analyzed)
        logger.info(
            "Analyzed %s vs %s (%s, %s, %s): %d of %d equations",
            dependent.name,
            independent.name,
            p.method.name,
            p.equations.name,
            p.transformation.name,
            n_ok,
            len(results),
        )
        return RegressionAnalysis(
            dependent=dependent,
            independent=independent,
            params=p,
            results=tuple(results),
            dependent_period=dep_period,
            independent_period=ind_period,
        )

    @staticmethod
    def _resolve_period(
        ts: TimeSeries, start: Any, end: Any
    ) -> Tuple[pd.Timestamp, pd.Timestamp]:
        if ts.date1 is None or ts.date2 is None:
            raise TimeSeriesConfigError(f"Period of {ts.name!r} has not been set")
        s = ts.date1 if start is None else ts.normalize_date(start)
        e = ts.date2 if end is None else ts.normalize_date(end)
        if e < s:
            raise TimeSeriesConfigError(f"Analysis period end {e} is before start {s}")
        return s, e

    @staticmethod
    def _collect(
        dependent: TimeSeries,
        independent: TimeSeries,
        dep_period: Tuple[pd.Timestamp, pd.Timestamp],
        ind_period: Tuple[pd.Timestamp, pd.Timestamp],
    ) -> _PairedData:
        dep_dates = dependent.dates(*dep_period)
        x_dep = independent.values_at(dep_dates)
        y_dep = dependent.values_at(dep_dates)

        ind_dates = independent.dates(*ind_period)
        x_ind = independent.values_at(ind_dates)
        y_at_ind = dependent.values_at(ind_dates)
        outside_dep = np.asarray((ind_dates < dep_period[0]) | (ind_dates > dep_period[1]))
        x_ind_ok = ~independent.missing_mask(x_ind)
        # independent-only: the dependent is missing there or outside its analysis period
        ind_only = x_ind_ok & (outside_dep | dependent.missing_mask(y_at_ind))

        return _PairedData(
            dep_months=np.asarray(dep_dates.month),
            x_dep=x_dep,
            y_dep=y_dep,
            x_dep_ok=~independent.missing_mask(x_dep),
            y_dep_ok=~dependent.missing_mask(y_dep),
            ind_months=np.asarray(ind_dates.month),
            x_ind=x_ind,
            x_ind_ok=x_ind_ok,
            ind_only=ind_only,
        )

    def _transform(self, values: np.ndarray) -> np.ndarray:
        if self.params.transformation is not Transformation.LOG10:
            return values.astype(float)
        subst = self.params.le_zero_log_value
        return np.log10(np.where(values <= 0.0, subst, values))

    def _analyze_equation_safe(self, index: int, data: _PairedData) -> RegressionResult:
        try:
            return self._analyze_equation(index, data)
        except Exception as e:
            logger.warning("Equation %d: analysis failed: %s", index, e)
            return NotAnalyzedEquation(index=index, reason=f"analysis failed: {e}")

    def _analyze_equation(self, index: int, data: _PairedData) -> RegressionResult:
        p = self.params
        if p.equations is NumberOfEquations.SINGLE:
            months = list(p.months)
        else:
            if index not in p.months:
                return NotAnalyzedEquation(index=index, reason="month not in analysis months")
            months = [index]

        pair = np.isin(data.dep_months, months) & data.x_dep_ok & data.y_dep_ok
        n1 = int(pair.sum())
        if n1 == 0:
            logger.warning("Equation %d: no overlapping non-missing values", index)
            return NotAnalyzedEquation(index=index, reason="no overlapping data (N1 = 0)")

        in_months = np.isin(data.ind_months, months)
        x1_orig = data.x_dep[pair]
        y1_orig = data.y_dep[pair]
        x1 = self._transform(x1_orig)
        y1 = self._transform(y1_orig)
        x2 = self._transform(data.x_ind[in_months & data.ind_only])
        x_all = self._transform(data.x_ind[in_months & data.x_ind_ok])
        n2 = len(x2)

        r = pearson_r(x1, y1)
        if r is None:
            logger.warning("Equation %d: correlation is undefined (singular fit)", index)
            return NotAnalyzedEquation(
                index=index, reason="singular fit (undefined correlation)", n1=n1, n2=n2
            )

        mean_x1, sd_x1 = _mean(x1), _sample_std(x1)
        mean_y1, sd_y1 = _mean(y1), _sample_std(y1)
        mean_x2 = _mean(x2) if n2 > 0 else None
        sd_x2 = _sample_std(x2) if n2 > 0 else None
        mean_x, sd_x = _mean(x_all), _sample_std(x_all)

        if p.method is RegressionMethod.MOVE2:
            if n2 == 0:
                logger.warning("Equation %d: no independent-only values for MOVE2", index)
                return NotAnalyzedEquation(
                    index=index, reason="no independent-only data (N2 = 0)", n1=n1, n2=0
                )
            a, b = self._move2(
                n1, n2, r, mean_x1, sd_x1, mean_y1, sd_y1, mean_x2, sd_x2, mean_x, sd_x
            )
        else:
            through_origin = (
                p.forced_intercept is not None and p.transformation is Transformation.NONE
            )
            a, b = fit_ols(x1, y1, through_origin=through_origin)

        rmse, rmse_t = self._rmse(a, b, x1, y1, y1_orig)
        see = standard_error_of_estimate(rmse, n1)
        see_t = standard_error_of_estimate(rmse_t, n1) if rmse_t is not None else None

        with np.errstate(divide="ignore", invalid="ignore"):
            ss_x = np.float64(np.sum((x1 - mean_x1) ** 2))
            se_slope = np.float64(see_t if see_t is not None else see) / np.sqrt(ss_x)
            if se_slope == 0.0:
                test_score = float("inf")
            else:
                test_score = float(np.abs(b) / se_slope)

        test_quantile = None
        test_ok = None
        if p.confidence_interval_percent is not None:
            test_quantile = student_t_quantile(float(p.confidence_interval_percent), n1 - 2)
            test_ok = bool(test_quantile is not None and test_score >= test_quantile)

        logger.debug("Equation %d: N1=%d N2=%d a=%s b=%s r=%s", index, n1, n2, a, b, r)
        return AnalyzedEquation(
            index=index,
            n1=n1,
            n2=n2,
            a=float(a),
            b=float(b),
            r=float(r),
            mean_x1=float(mean_x1),
            sd_x1=float(sd_x1),
            mean_y1=float(mean_y1),
            sd_y1=float(sd_y1),
            mean_x2=None if mean_x2 is None else float(mean_x2),
            sd_x2=None if sd_x2 is None else float(sd_x2),
            mean_x=float(mean_x),
            sd_x=float(sd_x),
            rmse=float(rmse),
            rmse_transformed=None if rmse_t is None else float(rmse_t),
            see=see,
            see_transformed=see_t,
            se_slope=float(se_slope),
            test_score=test_score,
            test_quantile=test_quantile,
            test_ok=test_ok,
        )

    @staticmethod
    def _move2(
        n1: int,
        n2: int,
        r: float,
        mean_x1: np.float64,
        sd_x1: np.float64,
        mean_y1: np.float64,
        sd_y1: np.float64,
        mean_x2: np.float64,
        sd_x2: np.float64,
        mean_x: np.float64,
        sd_x: np.float64,
    ) -> tuple[float, float]:
        """
        MOVE.2 coefficients. Evaluated in float64 with IEEE semantics; for
        N1 <= 3 the variance term divides by zero and the result is non-finite.
        """
        with np.errstate(all="ignore"):
            n1f, n2f = np.float64(n1), np.float64(n2)
            r = np.float64(r)
            b = r * sd_y1 / sd_x1
            sy_sq = (1.0 / (n1f + n2f - 1.0)) * (
                (n1f - 1.0) * sd_y1 * sd_y1
                + (n2f - 1.0) * b * b * sd_x2 * sd_x2
                + n2f * (n1f - 4.0) * (n1f - 1.0) * (1.0 - r * r) * sd_y1 * sd_y1
                / ((n1f - 3.0) * (n1f - 2.0))
                + n1f * n2f / (n1f + n2f) * b * b * (mean_x2 - mean_x1) * (mean_x2 - mean_x1)
            )
            ybar = mean_y1 + n2f * b * (mean_x2 - mean_x1) / (n1f + n2f)
            b = np.sqrt(sy_sq) / sd_x
            a = ybar - b * mean_x
        return float(a), float(b)

    def _rmse(
        self,
        a: float,
        b: float,
        x1: np.ndarray,
        y1: np.ndarray,
        y1_orig: np.ndarray,
    ) -> tuple[float, Optional[float]]:
        """(rmse, rmse_transformed); rmse_transformed is None unless LOG10."""
        log = self.params.transformation is Transformation.LOG10
        with np.errstate(all="ignore"):
            if self.params.analyze_for_filling:
                est = a + b * x1
                if log:
                    rmse_t = float(np.sqrt(np.mean((est - y1) ** 2)))
                    rmse = float(np.sqrt(np.mean((10.0**est - y1_orig) ** 2)))
                    return rmse, rmse_t
                return float(np.sqrt(np.mean((est - y1) ** 2))), None
            if log:
                rmse_t = float(np.sqrt(np.mean((y1 - x1) ** 2)))
                rmse = float(np.sqrt(np.mean((10.0**y1 - 10.0**x1) ** 2)))
                return rmse, rmse_t
            return float(np.sqrt(np.mean((y1 - x1) ** 2))), None


def analyze_candidates(
    dependent: TimeSeries,
    independents: Sequence[TimeSeries],
    params: Optional[AnalysisParams] = None,
    max_workers: Optional[int] = None,
) -> List[RegressionAnalysis]:
    """
    Analyze dependent against each independent concurrently.

    Results keep the order of independents. Candidates whose analysis raises
    RegressionAnalysisError are logged and omitted; configuration errors propagate.
    """
    analyzer = RegressionAnalyzer(params)
    analyses: List[RegressionAnalysis] = []
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = [pool.submit(analyzer.analyze, dependent, ind) for ind in independents]
        for ind, fut in zip(independents, futures):
            try:
                analyses.append(fut.result())
            except RegressionAnalysisError as e:
                logger.warning("Skipping independent %s: %s", ind.name, e)
    return analyses
