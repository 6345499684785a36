"""
Parameter objects and defaults for regression analysis and gap filling.

get_default_params() is the single source of defaults; from_env() layers
TSFILL_* environment overrides on top of them.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, List, Mapping, Optional, Tuple

from .timeseries import TimeSeriesConfigError

logger = logging.getLogger(__name__)

ALL_MONTHS: Tuple[int, ...] = tuple(range(1, 13))
DEFAULT_LE_ZERO_LOG_VALUE: float = 0.001
MIN_SAMPLE_SIZE_FLOOR: int = 3


class RegressionMethod(Enum):
    """Regression used to relate the dependent series to an independent series."""

    OLS = auto()  # ordinary least squares
    MOVE2 = auto()  # maintenance of variance extension, type 2


class NumberOfEquations(Enum):
    SINGLE = auto()  # one relationship for all months
    MONTHLY = auto()  # an independent relationship per calendar month


class Transformation(Enum):
    NONE = auto()
    LOG10 = auto()


class BestFitIndicator(Enum):
    """Metric used to choose among candidate relationships while filling."""

    SEP = auto()  # lowest standard error of prediction wins
    R = auto()  # highest correlation coefficient wins


@dataclass
class AnalysisParams:
    """
    Parameters for RegressionAnalyzer.analyze().

    Attributes:
        method: OLS or MOVE2.
        equations: SINGLE or MONTHLY.
        transformation: NONE or LOG10 (applied to both series before fitting).
        forced_intercept: None, or 0 to force the OLS fit through the origin.
            Ignored under LOG10.
        confidence_interval_percent: When set (e.g. 95), each equation's slope
            is tested against the two-tailed Student's t quantile.
        analysis_months: Months (1..12) included in the analysis; None means all.
        dependent_start / dependent_end: Dependent analysis period; None uses the
            dependent series period.
        independent_start / independent_end: Independent analysis period (MOVE2
            N2 samples); None uses the independent series period.
        le_zero_log_value: Positive value substituted for values <= 0 before log10.
        analyze_for_filling: True computes RMSE from (estimate - observed);
            False compares the series directly (Y1 - X1).
    """

    method: RegressionMethod = RegressionMethod.OLS
    equations: NumberOfEquations = NumberOfEquations.SINGLE
    transformation: Transformation = Transformation.NONE
    forced_intercept: Optional[float] = None
    confidence_interval_percent: Optional[float] = None
    analysis_months: Optional[List[int]] = None
    dependent_start: Optional[Any] = None
    dependent_end: Optional[Any] = None
    independent_start: Optional[Any] = None
    independent_end: Optional[Any] = None
    le_zero_log_value: float = DEFAULT_LE_ZERO_LOG_VALUE
    analyze_for_filling: bool = True

    @property
    def months(self) -> Tuple[int, ...]:
        if not self.analysis_months:
            return ALL_MONTHS
        return tuple(sorted(set(int(m) for m in self.analysis_months)))

    def validate(self) -> None:
        """
        Raises:
            TimeSeriesConfigError: for a non-zero forced intercept, months outside
                1..12, a confidence percent outside (0, 100), or a non-positive
                log substitute.
        """
        if self.forced_intercept is not None and float(self.forced_intercept) != 0.0:
            raise TimeSeriesConfigError(
                f"Only a forced intercept of 0 is supported (got {self.forced_intercept})"
            )
        for m in self.analysis_months or []:
            if not 1 <= int(m) <= 12:
                raise TimeSeriesConfigError(f"Analysis month {m} is not in range 1-12")
        if self.confidence_interval_percent is not None:
            ci = float(self.confidence_interval_percent)
            if not 0.0 < ci < 100.0:
                raise TimeSeriesConfigError(
                    f"Confidence interval percent must be between 0 and 100 (got {ci})"
                )
        if not self.le_zero_log_value > 0.0:
            raise TimeSeriesConfigError(
                f"Log substitute for values <= 0 must be positive (got {self.le_zero_log_value})"
            )


@dataclass
class FillParams:
    """
    Parameters for GapFiller.fill().

    Attributes:
        rank_by: SEP or R.
        fill_start / fill_end: Fill period; None uses the target series period.
        flag: None/"" for no flag, "auto", "i", or a literal flag string.
        description: Literal description suffix; None builds one per independent.
        exclude_zero: Skip independent values equal to zero.
        min_sample_size: Minimum N1 for a relationship to be used (at least 3).
        min_r: Minimum correlation coefficient, or None.
    """

    rank_by: BestFitIndicator = BestFitIndicator.SEP
    fill_start: Optional[Any] = None
    fill_end: Optional[Any] = None
    flag: Optional[str] = None
    description: Optional[str] = None
    exclude_zero: bool = False
    min_sample_size: int = MIN_SAMPLE_SIZE_FLOOR
    min_r: Optional[float] = None


def get_default_params() -> tuple[AnalysisParams, FillParams]:
    """Build default AnalysisParams and FillParams."""
    analysis = AnalysisParams(
        method=RegressionMethod.OLS,
        equations=NumberOfEquations.SINGLE,
        transformation=Transformation.NONE,
        forced_intercept=None,
        confidence_interval_percent=None,
        analysis_months=None,
        le_zero_log_value=DEFAULT_LE_ZERO_LOG_VALUE,
        analyze_for_filling=True,
    )
    fill = FillParams(
        rank_by=BestFitIndicator.SEP,
        fill_start=None,
        fill_end=None,
        flag=None,
        description=None,
        exclude_zero=False,
        min_sample_size=MIN_SAMPLE_SIZE_FLOOR,
        min_r=None,
    )
    return analysis, fill


def debug_enabled(environ: Optional[Mapping[str, str]] = None) -> bool:
    env = os.environ if environ is None else environ
    return env.get("TSFILL_DEBUG", "").strip() == "1"


def from_env(
    environ: Optional[Mapping[str, str]] = None,
) -> tuple[AnalysisParams, FillParams]:
    """
    Defaults with environment overrides applied:
    - TSFILL_LE_ZERO_LOG_VALUE  float substituted for values <= 0 before log10
    - TSFILL_MIN_SAMPLE_SIZE    int minimum N1 for a usable relationship

    Raises:
        TimeSeriesConfigError: if an override cannot be parsed.
    """
    env = os.environ if environ is None else environ
    analysis, fill = get_default_params()

    raw = env.get("TSFILL_LE_ZERO_LOG_VALUE")
    if raw:
        try:
            analysis.le_zero_log_value = float(raw)
        except ValueError as e:
            raise TimeSeriesConfigError(f"Invalid TSFILL_LE_ZERO_LOG_VALUE: {raw!r}") from e
        logger.debug("TSFILL_LE_ZERO_LOG_VALUE override: %s", analysis.le_zero_log_value)

    raw = env.get("TSFILL_MIN_SAMPLE_SIZE")
    if raw:
        try:
            fill.min_sample_size = int(raw)
        except ValueError as e:
            raise TimeSeriesConfigError(f"Invalid TSFILL_MIN_SAMPLE_SIZE: {raw!r}") from e
        logger.debug("TSFILL_MIN_SAMPLE_SIZE override: %s", fill.min_sample_size)

    return analysis, fill
