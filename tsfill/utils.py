from __future__ import annotations

import dataclasses
import datetime as _dt
import hashlib
import json
import logging
import math
import time
from enum import Enum
from pathlib import Path
from typing import Any, Dict

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


# -------------------------
# Path utilities
# -------------------------
def normalize_abs_posix(path: str | Path) -> str:
    """
    Absolute POSIX-style path string, so hashes do not depend on the platform
    or on how the path was typed.
    """
    return Path(path).resolve().as_posix()


# -------------------------
# Hashing utilities
# -------------------------
def canonical_json_dumps(payload: dict[str, Any]) -> str:
    """
    Deterministic JSON text for hashing: compact separators, sorted keys,
    non-ASCII kept as-is.
    """
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"), sort_keys=True)


def canonical_json_hash(payload: dict[str, Any]) -> tuple[str, str]:
    """
    Return (short_hash8, full_hash_hex) of the canonical JSON (UTF-8).
    """
    h = hashlib.sha256(canonical_json_dumps(payload).encode("utf-8")).hexdigest()
    return h[:8], h


# -------------------------
# Manifest helpers
# -------------------------
def _sanitize_for_json(obj: Any) -> Any:
    """
    Recursively convert parameter objects into JSON-serializable primitives.

    Conversions performed:
    - pathlib.Path -> normalized POSIX string
    - datetime / pandas.Timestamp -> ISO-8601 string
    - Enums -> member name
    - dataclasses -> dict of sanitized fields
    - numpy scalars/arrays -> Python numbers/lists
    - non-finite floats -> None (strict JSON has no NaN/Infinity)
    - dicts -> dicts with string keys; lists/tuples/sets -> lists
    """
    if obj is None or isinstance(obj, (bool, int, str)):
        return obj
    if isinstance(obj, float):
        return obj if math.isfinite(obj) else None

    if isinstance(obj, Path):
        return normalize_abs_posix(obj)

    # pandas.Timestamp is a datetime subclass
    if isinstance(obj, (_dt.datetime, _dt.date)):
        return obj.isoformat()

    if isinstance(obj, np.generic):
        return _sanitize_for_json(obj.item())
    if isinstance(obj, np.ndarray):
        return [_sanitize_for_json(x) for x in obj.tolist()]

    if isinstance(obj, Enum):
        return obj.name

    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {
            f.name: _sanitize_for_json(getattr(obj, f.name)) for f in dataclasses.fields(obj)
        }

    if isinstance(obj, dict):
        return {
            (k if isinstance(k, str) else str(k)): _sanitize_for_json(v) for k, v in obj.items()
        }

    if isinstance(obj, (list, tuple, set)):
        return [_sanitize_for_json(x) for x in obj]

    return str(obj)


def build_effective_parameters(analysis: Any, fill: Any) -> dict[str, Any]:
    """
    JSON-serializable mapping {"analysis": {...}, "fill": {...}} of the
    effective AnalysisParams and FillParams. Dataclass fields are introspected
    so newly added parameters are picked up automatically.
    """
    return {
        "analysis": _sanitize_for_json(analysis),
        "fill": _sanitize_for_json(fill),
    }


def write_manifest(path: str | Path, manifest: Dict[str, Any]) -> None:
    """
    Write manifest JSON (UTF-8, indent=2).
    """
    Path(path).write_text(
        json.dumps(_sanitize_for_json(manifest), ensure_ascii=False, indent=2),
        encoding="utf-8",
    )


def utc_timestamp_seconds() -> str:
    """
    ISO-8601 UTC timestamp with seconds precision and Z suffix.
    """
    now = _dt.datetime.now(_dt.timezone.utc).replace(tzinfo=None)
    return now.isoformat(timespec="seconds") + "Z"


# -------------------------
# Run directory and artifacts
# -------------------------
def ensure_run_dir(base: Path | str = ".", prefix: str = "output") -> Path:
    """
    Create and return `base`/`prefix`/<YYYYmmddTHHMMSS>.
    """
    run_ts = time.strftime("%Y%m%dT%H%M%S", time.localtime())
    run_dir = Path(base) / prefix / run_ts
    run_dir.mkdir(parents=True, exist_ok=True)
    logger.debug("Ensured run_dir=%s", str(run_dir))
    return run_dir


def write_text_report(report_text: str, run_dir: Path, short_hash: str) -> Path:
    """
    Write run_dir/report-<short_hash>.txt (UTF-8) and return its path.
    """
    target = Path(run_dir) / f"report-{short_hash}.txt"
    target.write_text(report_text, encoding="utf-8")
    logger.debug("Wrote textual report to %s", str(target))
    return target


def write_table_csv(df: pd.DataFrame, run_dir: Path, stem: str, short_hash: str) -> Path:
    """
    Write run_dir/<stem>-<short_hash>.csv and return its path.
    """
    target = Path(run_dir) / f"{stem}-{short_hash}.csv"
    df.to_csv(target, index=False)
    logger.debug("Wrote %s table to %s", stem, str(target))
    return target
