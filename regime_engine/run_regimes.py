#!/usr/bin/env python3
"""
Detect market regimes in one column of a CSV file.

Usage:
    python3 -m regime_engine.run_regimes --input returns.csv --column BTC
    python3 -m regime_engine.run_regimes --input returns.csv --column BTC --mode smoothed
    python3 -m regime_engine.run_regimes --input returns.csv --column BTC --states 2 --bootstrap 50
    python3 -m regime_engine.run_regimes --input returns.csv --column BTC --output summary.json --manifest results/
    python3 -m regime_engine.run_regimes --input returns.csv --column BTC --plots charts/
"""
import argparse
import json
import logging
import sys
import time
from pathlib import Path

import pandas as pd

from .config import (
    LOG_LEVEL,
    LOG_STRUCTURED,
    REGIME_BOOTSTRAP_BLOCK_LENGTH,
    REGIME_DECODING_MODE,
    REGIME_ESTIMATOR,
    REGIME_HMM_MAX_ITER,
    REGIME_HMM_STATES,
    REGIME_HMM_TOL,
    REGIME_RANDOM_STATE,
    RESULTS_DIR,
    validate_config,
)
from .regime.detector import MarkovRegimeDetector
from .regime.errors import RegimeEngineError
from .regime.visualization import (
    plot_regime_posteriors,
    plot_regime_statistics,
    plot_regimes,
    plot_transition_matrix,
)
from .reproducibility import build_run_manifest, config_snapshot, write_run_manifest
from .utils.logging import configure_logging

logger = logging.getLogger(__name__)


def load_series(path: Path, column: str) -> pd.Series:
    """Read ``column`` from a CSV, using the first column as the index."""
    frame = pd.read_csv(path, index_col=0)
    if column not in frame.columns:
        raise KeyError(f"column {column!r} not found in {path}; available: {list(frame.columns)}")
    series = frame[column]
    if series.index.dtype == object:
        try:
            series.index = pd.to_datetime(series.index)
        except (ValueError, TypeError):
            pass
    return series.rename(column)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Markov-switching regime detection on a univariate series",
    )
    parser.add_argument("--input", type=Path, required=True, help="CSV file (first column is the index)")
    parser.add_argument("--column", type=str, required=True, help="Column holding the observations")
    parser.add_argument("--states", type=int, default=REGIME_HMM_STATES, help="Number of regimes")
    parser.add_argument(
        "--mode",
        choices=["viterbi", "smoothed"],
        default=REGIME_DECODING_MODE,
        help="Decoding mode",
    )
    parser.add_argument("--max-iter", type=int, default=REGIME_HMM_MAX_ITER, help="EM iteration limit")
    parser.add_argument("--tol", type=float, default=REGIME_HMM_TOL, help="EM log-likelihood tolerance")
    parser.add_argument(
        "--estimator",
        choices=["manual", "library", "auto"],
        default=REGIME_ESTIMATOR,
        help="EM backend: in-repo Baum-Welch, hmmlearn, or hmmlearn when installed",
    )
    parser.add_argument("--seed", type=int, default=REGIME_RANDOM_STATE, help="Random seed")
    parser.add_argument(
        "--bootstrap", type=int, default=0,
        help="Bootstrap replicates for posterior bands (0 disables)",
    )
    parser.add_argument(
        "--block-length", type=int, default=REGIME_BOOTSTRAP_BLOCK_LENGTH,
        help="Moving-block length for the bootstrap",
    )
    parser.add_argument("--output", type=Path, help="Write the summary as JSON")
    parser.add_argument("--plots", type=Path, help="Write interactive HTML charts into this directory")
    parser.add_argument(
        "--manifest", type=Path, nargs="?", const=RESULTS_DIR,
        help="Write a reproducibility manifest into this directory",
    )
    parser.add_argument("--log-level", type=str, default=LOG_LEVEL, help="Logging level")
    parser.add_argument("--plain-logs", action="store_true", help="Plain-text instead of JSON logs")
    return parser


def main(argv=None) -> int:
    """Fit the detector on one CSV column and print the regime summary."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, structured=LOG_STRUCTURED and not args.plain_logs)
    t0 = time.time()

    for issue in validate_config():
        level = logging.ERROR if issue["level"] == "ERROR" else logging.WARNING
        logger.log(level, "Config: %s", issue["message"])

    try:
        series = load_series(args.input, args.column)
    except (OSError, KeyError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    print(f"\n{'='*60}")
    print(f"REGIME DETECTION — {args.column} ({args.states} states, {args.mode})")
    print(f"{'='*60}")

    try:
        detector = MarkovRegimeDetector(
            n_states=args.states,
            max_iter=args.max_iter,
            tol=args.tol,
            decoding_mode=args.mode,
            estimator=args.estimator,
            random_state=args.seed,
            series_name=args.column,
        )
        model = detector.fit(series)
    except (RegimeEngineError, ImportError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    print(model.describe())
    summary = model.summary()
    payload = summary.to_dict()

    if args.bootstrap > 0:
        print(f"\n── Bootstrap posterior bands ({args.bootstrap} replicates) ──")
        try:
            bands = model.bootstrap_intervals(
                n_boot=args.bootstrap,
                block_length=args.block_length,
                random_state=args.seed,
            )
        except RegimeEngineError as e:
            print(f"  WARNING: bootstrap failed: {e}")
        else:
            width = bands.upper.iloc[-1] - bands.lower.iloc[-1]
            for name in model.names:
                print(
                    f"  {name:<12} last-step posterior in "
                    f"[{bands.lower.iloc[-1][name]:.3f}, {bands.upper.iloc[-1][name]:.3f}]"
                    f"  (width {width[name]:.3f})"
                )
            print(f"  {bands.n_successful} replicates used, {bands.n_failed} skipped")
            payload["bootstrap"] = {
                "n_successful": bands.n_successful,
                "n_failed": bands.n_failed,
                "alpha": bands.alpha,
                "last_lower": bands.lower.iloc[-1].to_dict(),
                "last_upper": bands.upper.iloc[-1].to_dict(),
            }

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        with open(args.output, "w") as f:
            json.dump(payload, f, indent=2, default=str)
        print(f"\n  Summary saved to {args.output}")

    if args.plots:
        args.plots.mkdir(parents=True, exist_ok=True)
        charts = {
            "regimes": plot_regimes(model),
            "posteriors": plot_regime_posteriors(model),
            "transitions": plot_transition_matrix(model),
            "statistics": plot_regime_statistics(model),
        }
        for name, chart in charts.items():
            (args.plots / f"{name}.html").write_text(chart["html"])
        print(f"  Charts saved to {args.plots}")

    if args.manifest:
        manifest = build_run_manifest(
            run_type="fit",
            config={**config_snapshot(), **{f"detector.{k}": v for k, v in detector.get_config().items()}},
            series={args.column: model.observations.as_series(args.column)},
            random_state=args.seed,
            extra={"estimation": model.estimation.to_dict(), "current_regime": summary.current_regime},
            script_name="run_regimes",
        )
        path = write_run_manifest(manifest, args.manifest)
        print(f"  Manifest saved to {path}")

    print(f"\n  Completed in {time.time() - t0:.1f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
