"""
Reproducibility locks for regime-detection runs.

Writes a run_manifest.json per run containing:
  - git commit hash, interpreter and platform
  - the RNG seed threaded through KMeans seeding and the bootstrap
  - observation-series lengths / checksums
  - full config snapshot
"""
from __future__ import annotations

import hashlib
import json
import platform
import subprocess
import sys
from dataclasses import asdict
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd


def _get_git_commit() -> str:
    """Return the current git commit hash, or 'unknown' if not in a repo."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True, text=True, timeout=5,
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (OSError, ValueError, RuntimeError, subprocess.SubprocessError):
        pass
    return "unknown"


def series_checksum(series: pd.Series) -> str:
    """Compute a checksum of a series' length and values."""
    h = hashlib.md5()
    values = np.ascontiguousarray(np.asarray(series, dtype=np.float64))
    h.update(f"len={len(values)}".encode())
    h.update(values.tobytes())
    return h.hexdigest()[:12]


def _safe_value(v: Any) -> Any:
    """Convert a config value into something json can serialise."""
    if isinstance(v, Path):
        return str(v)
    if isinstance(v, Enum):
        return v.value
    if isinstance(v, tuple):
        return [_safe_value(x) for x in v]
    if isinstance(v, (str, int, float, bool, list, dict, type(None))):
        return v
    return repr(v)


def config_snapshot() -> Dict[str, Any]:
    """Flatten the structured config singleton into ``section.key`` pairs."""
    from .config_structured import get_config

    snapshot: Dict[str, Any] = {}
    for section, values in asdict(get_config()).items():
        for key, value in values.items():
            snapshot[f"{section}.{key}"] = _safe_value(value)
    return snapshot


def build_run_manifest(
    run_type: str,
    config: Dict[str, Any],
    series: Optional[Dict[str, pd.Series]] = None,
    random_state: Optional[int] = None,
    extra: Optional[Dict[str, Any]] = None,
    script_name: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build a reproducibility manifest for a regime-detection run.

    Args:
        run_type: Type of run (e.g., "fit", "bootstrap").
        config: Full config dict to capture.
        series: Optional dict of name -> observation Series for lengths/checksums.
        random_state: Seed used for KMeans initialization and bootstrap draws.
        extra: Additional metadata to include (fit diagnostics, etc.).
        script_name: Name of the entry-point script (e.g. "run_regimes").
    """
    manifest: Dict[str, Any] = {
        "run_type": run_type,
        "script": script_name or run_type,
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        "git_commit": _get_git_commit(),
        "python_version": sys.version,
        "platform": platform.platform(),
        "random_state": random_state,
    }

    manifest["config"] = {k: _safe_value(v) for k, v in config.items()}

    if series:
        manifest["series"] = {
            name: {"length": int(len(s)), "checksum": series_checksum(s)}
            for name, s in series.items()
        }

    if extra:
        manifest["extra"] = extra

    return manifest


def write_run_manifest(
    manifest: Dict[str, Any],
    output_dir: Path,
    filename: Optional[str] = None,
) -> Path:
    """Write manifest to JSON file. Returns the output path.

    When *filename* is ``None`` (the default), a timestamped filename is
    generated so that successive runs never overwrite each other.
    """
    if filename is None:
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        filename = f"run_manifest_{ts}.json"
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / filename
    with open(path, "w") as f:
        json.dump(manifest, f, indent=2, default=str)
    return path


def verify_manifest(
    manifest_path: Path,
    config: Optional[Dict[str, Any]] = None,
    series: Optional[Dict[str, pd.Series]] = None,
) -> Dict[str, Any]:
    """Verify the current config and data match a stored manifest.

    Returns
    -------
    dict
        ``{config_match: bool, data_match: bool, mismatches: [...]}``.
    """
    manifest_path = Path(manifest_path)
    if not manifest_path.exists():
        return {
            "config_match": False,
            "data_match": False,
            "mismatches": [f"Manifest file not found: {manifest_path}"],
        }

    with open(manifest_path, "r") as f:
        stored = json.load(f)

    mismatches: List[str] = []

    # ── Config ──
    config_match = True
    if config is not None:
        stored_config = stored.get("config", {})
        current = {k: _safe_value(v) for k, v in config.items()}
        for key in sorted(set(stored_config) | set(current)):
            if stored_config.get(key) != current.get(key):
                config_match = False
                mismatches.append(
                    f"Config mismatch on '{key}': "
                    f"stored={stored_config.get(key)!r}, current={current.get(key)!r}"
                )

    # ── Data checksums ──
    data_match = True
    stored_series = stored.get("series", {})
    if series and stored_series:
        for name, s in series.items():
            if name not in stored_series:
                continue
            current_checksum = series_checksum(s)
            stored_checksum = stored_series[name].get("checksum", "")
            if current_checksum != stored_checksum:
                data_match = False
                mismatches.append(
                    f"Data checksum mismatch for '{name}': "
                    f"stored={stored_checksum}, current={current_checksum}"
                )

    return {
        "config_match": config_match,
        "data_match": data_match,
        "mismatches": mismatches,
    }
