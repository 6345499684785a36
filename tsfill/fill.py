"""
Regression gap filling.

GapFiller.fill() walks the fill period of a target series in ascending date
order and, for each missing value, estimates it from the best of the
candidate RegressionAnalysis objects (lowest SEP or highest R). Values that no
candidate can estimate stay missing. Diagnostics accumulate in a FillResult.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import pandas as pd

from .config import BestFitIndicator, FillParams, Transformation
from .dates import format_date, month_abbreviation
from .regression import AnalyzedEquation, RegressionAnalysis
from .timeseries import Genesis, TimeSeries, TimeSeriesConfigError

logger = logging.getLogger(__name__)

# Converts a log10 standard error to natural-log units.
LN10: float = 2.3026
# Error messages logged per fill pass before the rest are only counted.
MAX_LOGGED_ERRORS: int = 100


class FillResult:
    """Container for fill results and diagnostics."""

    def __init__(self, label: Optional[str] = None) -> None:
        self.label: Optional[str] = label

        # Counters
        self.missing_count: int = 0
        self.filled_count: int = 0
        self.error_count: int = 0
        self.candidate_counts: List[int] = []
        self.cancelled: bool = False

        # Diagnostics
        self.filled_dates: List[pd.Timestamp] = []
        self.problems: List[str] = []
        self.warnings: List[str] = []
        self.events: List[str] = []
        self.metrics: dict[str, int | float | str] = {}
        self.skipped_reason: Optional[str] = None
        self.genesis: Genesis = Genesis()

        # Timing
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None
        self.elapsed_ms: Optional[float] = None

    def start(self) -> None:
        import time

        self.started_at = time.perf_counter()

    def stop(self) -> None:
        import time

        self.finished_at = time.perf_counter()
        if self.started_at is not None:
            self.elapsed_ms = (self.finished_at - self.started_at) * 1000.0

    def add_warning(self, message: str) -> None:
        """Add a warning message."""
        self.warnings.append(message)
        logger.warning(message)

    def add_event(self, message: str) -> None:
        """Add an info-level event message."""
        self.events.append(message)
        logger.info(message)

    def add_metric(self, name: str, value: int | float | str) -> None:
        self.metrics[name] = value

    def add_problem(self, date: pd.Timestamp, error: Exception) -> None:
        """Count a per-date failure; only the first MAX_LOGGED_ERRORS are logged."""
        self.error_count += 1
        message = f"Error filling value at {date}: {error}"
        self.problems.append(message)
        if self.error_count <= MAX_LOGGED_ERRORS:
            logger.warning(message)

    def set_skipped(self, reason: str, verbose: bool = False) -> None:
        self.skipped_reason = reason
        if verbose:
            self.add_event(f"Fill skipped: {reason}")

    def summarize(self) -> str:
        """Produce a concise summary string for diagnostics."""
        lbl = f"{self.label} " if self.label else ""
        parts = [f"{lbl}fill: {self.filled_count} of {self.missing_count} missing filled"]
        if self.candidate_counts:
            parts.append(f"per_candidate={self.candidate_counts}")
        if self.error_count:
            parts.append(f"errors={self.error_count}")
        if self.cancelled:
            parts.append("cancelled")
        if self.skipped_reason:
            parts.append(f"skipped={self.skipped_reason}")
        if self.elapsed_ms is not None:
            parts.append(f"elapsed_ms={self.elapsed_ms:.1f}")
        if self.metrics:
            parts.append(f"metrics={self.metrics}")
        return " | ".join(parts)


@dataclass(frozen=True)
class FillCandidate:
    """A qualified estimate for one date; rank is the 1-based candidate list position."""

    analysis: RegressionAnalysis
    rank: int
    equation: AnalyzedEquation
    x: float
    estimate: float
    score: float


def standard_error_of_prediction(
    equation: AnalyzedEquation, x: float, transformation: Transformation
) -> Optional[float]:
    """
    SEP of the estimate at (transformed) independent value x, expressed as a
    coefficient of variation in percent. Returns None when the SEP is not
    usable (non-finite, or SEP^2 - 1 > 10).
    """
    n1 = equation.n1
    var = equation.sd_x1**2
    try:
        sep = equation.prediction_see * math.sqrt(
            1.0 + 1.0 / n1 + (x - equation.mean_x1) ** 2 / (n1 * var)
        )
    except (ZeroDivisionError, ValueError):
        return None
    sep *= LN10
    if transformation is Transformation.NONE and sep != 0.0:
        if sep < 0.0 or not math.isfinite(sep):
            return None
        sep = math.log10(sep)
    if not math.isfinite(sep):
        return None
    sq = sep * sep
    if sq - 1.0 > 10.0 or math.exp(sq) - 1.0 < 0.0:
        return None
    return 100.0 * math.sqrt(math.exp(sq) - 1.0)


class GapFiller:
    """
    Fills missing values of a target series from regression analyses.

    Usage:
        result = GapFiller(params).fill(target, analyses)
    """

    def __init__(self, params: Optional[FillParams] = None) -> None:
        self.params = params if params is not None else FillParams()

    def fill(
        self,
        target: TimeSeries,
        candidates: Sequence[RegressionAnalysis],
        cancel_event: Optional[threading.Event] = None,
    ) -> FillResult:
        """
        Fill missing values of target in place.

        Args:
            target: Series to fill (usually the analyses' dependent series).
            candidates: Analyses to draw estimates from, in priority order.
            cancel_event: When set, the pass stops before the next date.

        Returns:
            FillResult with counts, diagnostics and the updated genesis.

        Raises:
            TimeSeriesConfigError: if the target period is unset or the fill
                period is inverted.
        """
        p = self.params
        result = FillResult(label=target.name)
        result.start()

        if target.date1 is None or target.date2 is None:
            raise TimeSeriesConfigError(f"Period of {target.name!r} has not been set")
        start = target.date1 if p.fill_start is None else target.normalize_date(p.fill_start)
        end = target.date2 if p.fill_end is None else target.normalize_date(p.fill_end)
        if end < start:
            raise TimeSeriesConfigError(f"Fill period end {end} is before start {start}")
        start = max(start, target.date1)
        end = min(end, target.date2)

        result.candidate_counts = [0] * len(candidates)
        if end < start:
            result.set_skipped("fill period is outside the target period", verbose=True)
            result.genesis = target.genesis
            result.stop()
            return result
        if not candidates:
            result.set_skipped("no candidate analyses", verbose=True)
            result.genesis = target.genesis
            result.stop()
            return result

        masks = [a.validity_mask(p.min_sample_size, p.min_r) for a in candidates]
        for analysis, mask in zip(candidates, masks):
            if not any(mask):
                result.add_warning(
                    f"No usable relationship with {analysis.independent.name}; "
                    "candidate will not contribute"
                )

        for date in target.dates(start, end):
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                result.add_event(f"Fill cancelled before {date}")
                break
            try:
                if not target.is_missing(target.get_value(date)):
                    continue
                result.missing_count += 1
                best = self._select(date, candidates, masks)
                if best is None:
                    logger.debug("No qualified candidate at %s; value stays missing", date)
                    continue
                target.set_value(date, best.estimate, self._flag_for(best, date.month))
                if target.is_missing(target.get_value(date)):
                    logger.debug("Estimate at %s was not stored; value stays missing", date)
                    continue
                result.candidate_counts[best.rank - 1] += 1
                result.filled_count += 1
                result.filled_dates.append(date)
                logger.debug(
                    "Filled %s with %s from %s (score=%s)",
                    date,
                    best.estimate,
                    best.analysis.independent.name,
                    best.score,
                )
            except Exception as e:
                result.add_problem(date, e)

        self._record_provenance(target, candidates, result, start, end)
        result.genesis = target.genesis
        result.add_metric("missing_count", result.missing_count)
        result.add_metric("filled_count", result.filled_count)
        result.add_metric("rank_by", p.rank_by.name)
        result.stop()
        result.add_event(result.summarize())
        return result

    def _select(
        self,
        date: pd.Timestamp,
        candidates: Sequence[RegressionAnalysis],
        masks: Sequence[Tuple[bool, ...]],
    ) -> Optional[FillCandidate]:
        """Best qualified candidate at date; ties go to the later candidate."""
        p = self.params
        month = date.month
        best: Optional[FillCandidate] = None
        for rank, (analysis, mask) in enumerate(zip(candidates, masks), start=1):
            independent = analysis.independent
            x = independent.get_value(date)
            if independent.is_missing(x):
                continue
            if p.exclude_zero and x == 0.0:
                continue
            if month not in analysis.analysis_months:
                continue
            if not mask[month - 1]:
                continue
            eq = analysis.equation_for_month(month)
            if not isinstance(eq, AnalyzedEquation):
                continue

            x_t = analysis.transform_x(x)
            estimate = eq.a + eq.b * x_t
            if analysis.transformation is Transformation.LOG10:
                estimate = 10.0**estimate

            if p.rank_by is BestFitIndicator.SEP:
                score = standard_error_of_prediction(eq, x_t, analysis.transformation)
                if score is None:
                    logger.debug("SEP unacceptably high for %s at %s", independent.name, date)
                    continue
                better = best is None or score <= best.score
            else:
                score = eq.r
                better = best is None or score >= best.score
            if better:
                best = FillCandidate(
                    analysis=analysis,
                    rank=rank,
                    equation=eq,
                    x=x,
                    estimate=float(estimate),
                    score=float(score),
                )
        return best

    def _flag_for(self, candidate: FillCandidate, month: int) -> Optional[str]:
        template = self.params.flag
        if not template:
            return None
        analysis = candidate.analysis
        if template.lower() == "auto":
            # every fill uses the best available relationship
            if analysis.single:
                return "1"
            return f"{month_abbreviation(month)}1"
        if template.lower() == "i":
            location = analysis.independent.identifier.location or analysis.independent.name
            if analysis.single:
                return location
            return f"{month_abbreviation(month)}{location}"
        return template

    def _record_provenance(
        self,
        target: TimeSeries,
        candidates: Sequence[RegressionAnalysis],
        result: FillResult,
        start: pd.Timestamp,
        end: pd.Timestamp,
    ) -> None:
        base = target.interval_base
        for analysis, count in zip(candidates, result.candidate_counts):
            if count == 0:
                continue
            target.add_to_genesis(
                f"Filled {count} missing values {format_date(start, base)} to "
                f"{format_date(end, base)} using analysis results:",
                *analysis.summary_lines(),
            )
            target.description = target.description + self.description_suffix(
                target, analysis
            )

    def description_suffix(self, target: TimeSeries, analysis: RegressionAnalysis) -> str:
        """Text appended to the target description for one contributing independent."""
        if self.params.description is not None:
            return self.params.description
        method = analysis.params.method.name
        month_str = "" if analysis.single else " monthly"
        months = analysis.params.analysis_months
        if months and len(months) == 1:
            month_str = f" {month_abbreviation(int(months[0]))}"
        independent = analysis.independent
        if analysis.transformation is Transformation.LOG10:
            key = independent.identifier.identifier_string()
            text = f", fill log {method}{month_str} using {key}"
        else:
            key = independent.identifier.alias_or_location() or independent.name
            text = f", fill {method}{month_str} using {key}"
        if key and key in target.description:
            return ""
        return text
