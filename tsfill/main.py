#!/usr/bin/env python3
"""
tsfill command line: analyze a target series against one or more independent
series and fill its missing values.

Inputs are simple `date,value` CSV tables. Each run writes into
output/<timestamp>/:
- filled-<hash>.csv       date,value,flag of the filled target
- statistics-<hash>.csv   one row per (independent, equation)
- report-<hash>.txt       human-readable summary and genesis
- manifest-<hash>.json    effective parameters, canonical hash and artifacts
"""

import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional, Sequence

import numpy as np
import pandas as pd

from .config import (
    AnalysisParams,
    BestFitIndicator,
    FillParams,
    NumberOfEquations,
    RegressionMethod,
    Transformation,
    debug_enabled,
    from_env,
    get_default_params,
)
from .fill import FillResult, GapFiller
from .regression import RegressionAnalysis, analyze_candidates, statistics_table
from .timeseries import (
    DEFAULT_MISSING,
    TimeSeries,
    TimeSeriesIdentifier,
    series_class_for,
)
from .utils import (
    build_effective_parameters,
    canonical_json_hash,
    ensure_run_dir,
    normalize_abs_posix,
    utc_timestamp_seconds,
    write_manifest,
    write_table_csv,
    write_text_report,
)

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def read_series_csv(
    path: str | Path, interval: str = "Month", missing: float = DEFAULT_MISSING
) -> TimeSeries:
    """
    Load a `date,value` CSV into a time series. Column names are matched
    case-insensitively; without them the first two columns are used. Empty
    cells become missing.

    Raises:
        FileNotFoundError: if the file does not exist.
        ValueError: if the table has fewer than two columns or no rows.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Input file not found: {p}")
    df = pd.read_csv(p)
    cols = {str(c).strip().lower(): c for c in df.columns}
    if "date" in cols and "value" in cols:
        date_col, value_col = cols["date"], cols["value"]
    elif len(df.columns) >= 2:
        date_col, value_col = df.columns[0], df.columns[1]
    else:
        raise ValueError(f"{p}: expected date and value columns")
    if df.empty:
        raise ValueError(f"{p}: no data rows")

    values = pd.to_numeric(df[value_col], errors="coerce").to_numpy(dtype=float)
    series = pd.Series(values, index=pd.to_datetime(df[date_col]))
    ident = TimeSeriesIdentifier(location=p.stem, interval=interval, alias=p.stem)
    cls = series_class_for(interval)
    ts = cls.from_series(series, identifier=ident, missing=missing)
    logger.info(
        "Loaded %s: %d values %s to %s", p.name, ts.data_size, ts.date1, ts.date2
    )
    return ts


def build_run_identity(
    target_path: str | Path,
    independent_paths: Sequence[str | Path],
    analysis: AnalysisParams,
    fill: FillParams,
) -> tuple[str, str, dict]:
    """
    Returns (short_hash, full_hash, effective_params)
    """
    effective_params = build_effective_parameters(analysis, fill)
    canonical_payload = {
        "target": normalize_abs_posix(target_path),
        "independents": [normalize_abs_posix(p) for p in independent_paths],
        "effective_parameters": effective_params,
    }
    short_hash, full_hash = canonical_json_hash(canonical_payload)
    return short_hash, full_hash, effective_params


def build_manifest_dict(
    target_path: str | Path,
    independent_paths: Sequence[str | Path],
    result: FillResult,
    effective_params: dict,
    hashes: tuple[str, str],
    artifact_paths: dict[str, str],
) -> dict:
    short_hash, full_hash = hashes
    return {
        "version": "1",
        "timestamp_utc": utc_timestamp_seconds(),
        "target_path": normalize_abs_posix(target_path),
        "independent_paths": [normalize_abs_posix(p) for p in independent_paths],
        "missing_count": result.missing_count,
        "filled_count": result.filled_count,
        "error_count": result.error_count,
        "effective_parameters": effective_params,
        "canonical_hash": full_hash,
        "canonical_hash_short": short_hash,
        "artifacts": artifact_paths,
    }


def assemble_text_report(
    target: TimeSeries,
    analyses: Sequence[RegressionAnalysis],
    result: FillResult,
) -> str:
    lines: List[str] = []
    lines.append(f"Target: {target.name}")
    lines.append(f"Description: {target.description}")
    lines.append(f"Period: {target.date1} to {target.date2}")
    lines.append("")
    lines.append("Regression analyses:")
    if not analyses:
        lines.append("  (none usable)")
    for analysis in analyses:
        for line in analysis.summary_lines():
            lines.append(f"  {line}")
        overall = analysis.overall_rmse()
        if overall is not None:
            lines.append(f"  Overall RMSE: {overall:.6g}")
        lines.append("")
    lines.append("Fill:")
    lines.append(f"  {result.summarize()}")
    for w in result.warnings:
        lines.append(f"  warning: {w}")
    lines.append("")
    lines.append("Genesis:")
    for g in target.genesis:
        lines.append(f"  {g}")
    return "\n".join(lines) + "\n"


def _orchestrate(
    target_path: str | Path,
    independent_paths: Sequence[str | Path],
    analysis_params: AnalysisParams,
    fill_params: FillParams,
    interval: str = "Month",
    max_workers: Optional[int] = None,
    output_base: str | Path = ".",
) -> Path:
    """
    Load inputs, analyze, fill, and write artifacts. Returns the run directory.
    Split from main() so the CLI stays thin and tests can call this directly.
    """
    analysis_params.validate()
    short_hash, full_hash, effective_params = build_run_identity(
        target_path, independent_paths, analysis_params, fill_params
    )

    target = read_series_csv(target_path, interval=interval)
    independents = [read_series_csv(p, interval=interval) for p in independent_paths]

    analyses = analyze_candidates(target, independents, analysis_params, max_workers)
    if not analyses:
        logger.warning("No independent series produced a usable analysis")
    result = GapFiller(fill_params).fill(target, analyses)

    run_dir = ensure_run_dir(output_base, prefix="output")
    filled_df = target.to_dataframe().reset_index(names="date")
    filled_df["value"] = np.where(
        target.missing_mask(filled_df["value"].to_numpy()), np.nan, filled_df["value"]
    )
    filled_path = write_table_csv(filled_df, run_dir, "filled", short_hash)
    stats_path = write_table_csv(statistics_table(analyses), run_dir, "statistics", short_hash)

    report = assemble_text_report(target, analyses, result)
    report_path = write_text_report(report, run_dir, short_hash)

    manifest = build_manifest_dict(
        target_path=target_path,
        independent_paths=independent_paths,
        result=result,
        effective_params=effective_params,
        hashes=(short_hash, full_hash),
        artifact_paths={
            "filled": filled_path.name,
            "statistics": stats_path.name,
            "report": report_path.name,
        },
    )
    write_manifest(run_dir / f"manifest-{short_hash}.json", manifest)

    print(report)
    return run_dir


def _parse_months(text: Optional[str]) -> Optional[List[int]]:
    if not text:
        return None
    try:
        return [int(s) for s in text.split(",") if s.strip()]
    except ValueError as e:
        raise ValueError(f"Invalid --analysis-months {text!r}; expected e.g. 1,2,3") from e


def _build_cli_parser():
    import argparse

    parser = argparse.ArgumentParser(
        prog="tsfill",
        description="Fill missing time series values by regression against independent series.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--print-defaults",
        action="store_true",
        help="Print default parameter values and exit.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Show full tracebacks for debugging (also TSFILL_DEBUG=1).",
    )

    g_in = parser.add_argument_group("Inputs")
    g_in.add_argument("--target", type=str, help="CSV (date,value) of the series to fill.")
    g_in.add_argument(
        "--independent",
        action="append",
        metavar="PATH",
        help="CSV (date,value) of an independent series. Repeatable; order sets priority.",
    )
    g_in.add_argument("--interval", type=str, default="Month", help="Data interval.")
    g_in.add_argument("--output-dir", type=str, default=".", help="Base directory for output/.")
    g_in.add_argument("--max-workers", type=int, help="Threads used to analyze candidates.")

    g_an = parser.add_argument_group("AnalysisParams")
    g_an.add_argument("--method", choices=[m.name for m in RegressionMethod], default="OLS")
    g_an.add_argument(
        "--equations", choices=[e.name for e in NumberOfEquations], default="SINGLE"
    )
    g_an.add_argument(
        "--transformation", choices=[t.name for t in Transformation], default="NONE"
    )
    g_an.add_argument("--intercept", type=float, help="Forced intercept (only 0 is allowed).")
    g_an.add_argument("--confidence", type=float, help="Confidence interval percent, e.g. 95.")
    g_an.add_argument("--analysis-months", type=str, help="Comma-separated months 1-12.")
    g_an.add_argument("--dependent-start", type=str)
    g_an.add_argument("--dependent-end", type=str)
    g_an.add_argument("--independent-start", type=str)
    g_an.add_argument("--independent-end", type=str)
    g_an.add_argument(
        "--le-zero-log-value", type=float, help="Substitute for values <= 0 before log10."
    )

    g_fill = parser.add_argument_group("FillParams")
    g_fill.add_argument("--rank-by", choices=[b.name for b in BestFitIndicator], default="SEP")
    g_fill.add_argument("--fill-start", type=str)
    g_fill.add_argument("--fill-end", type=str)
    g_fill.add_argument("--fill-flag", type=str, help='"auto", "i", or a literal flag.')
    g_fill.add_argument("--description", type=str, help="Literal description suffix.")
    g_fill.add_argument("--exclude-zero", action="store_true", help="Do not fill from zero values.")
    g_fill.add_argument("--min-sample-size", type=int)
    g_fill.add_argument("--min-r", type=float)
    return parser


def _args_to_params(args) -> tuple[AnalysisParams, FillParams]:
    analysis, fill = from_env()
    analysis.method = RegressionMethod[args.method]
    analysis.equations = NumberOfEquations[args.equations]
    analysis.transformation = Transformation[args.transformation]
    analysis.forced_intercept = args.intercept
    analysis.confidence_interval_percent = args.confidence
    analysis.analysis_months = _parse_months(args.analysis_months)
    analysis.dependent_start = args.dependent_start
    analysis.dependent_end = args.dependent_end
    analysis.independent_start = args.independent_start
    analysis.independent_end = args.independent_end
    if args.le_zero_log_value is not None:
        analysis.le_zero_log_value = args.le_zero_log_value

    fill.rank_by = BestFitIndicator[args.rank_by]
    fill.fill_start = args.fill_start
    fill.fill_end = args.fill_end
    fill.flag = args.fill_flag
    fill.description = args.description
    fill.exclude_zero = bool(args.exclude_zero)
    if args.min_sample_size is not None:
        fill.min_sample_size = args.min_sample_size
    fill.min_r = args.min_r
    return analysis, fill


def defaults_payload() -> dict[str, Any]:
    d_analysis, d_fill = get_default_params()
    return build_effective_parameters(d_analysis, d_fill)


def main(argv: Optional[Sequence[str]] = None) -> None:
    """
    CLI entry point. Parses arguments, builds parameter objects, then orchestrates.
    """
    argv = list(sys.argv[1:] if argv is None else argv)
    parser = _build_cli_parser()

    if "--print-defaults" in argv:
        print(json.dumps(defaults_payload(), indent=2))
        return

    args = parser.parse_args(argv)
    debug_mode = bool(args.debug or debug_enabled())
    if debug_mode:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        if not args.target:
            raise ValueError("--target is required")
        if not args.independent:
            raise ValueError("at least one --independent is required")
        params_analysis, params_fill = _args_to_params(args)
        _orchestrate(
            args.target,
            args.independent,
            params_analysis,
            params_fill,
            interval=args.interval,
            max_workers=args.max_workers,
            output_base=args.output_dir,
        )
    except (FileNotFoundError, ValueError, TypeError) as e:
        # Concise, user-facing errors for user-correctable problems.
        logger.info("User-facing error: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except Exception as e:
        logger.exception("Unhandled exception during execution")
        if debug_mode:
            import traceback

            traceback.print_exc()
        else:
            print(f"Unexpected error: {e}", file=sys.stderr)
            print(
                "Run with --debug or set TSFILL_DEBUG=1 to see the full traceback.",
                file=sys.stderr,
            )
        sys.exit(1)


if __name__ == "__main__":
    main()
