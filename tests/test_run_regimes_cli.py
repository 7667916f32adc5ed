"""End-to-end test of the run_regimes command-line entry point."""
from __future__ import annotations

import json

import numpy as np
import pandas as pd
import pytest


@pytest.fixture
def returns_csv(tmp_path, three_regime_series):
    frame = pd.DataFrame({
        "BTC": three_regime_series.to_numpy(),
        "noise": np.zeros(len(three_regime_series)),
    }, index=three_regime_series.index)
    frame.iloc[5, 0] = np.nan
    path = tmp_path / "returns.csv"
    frame.to_csv(path)
    return path


@pytest.mark.integration
class TestRunRegimesCLI:
    """CSV in, summary out."""

    def test_summary_json_and_manifest(self, tmp_path, returns_csv, capsys):
        from regime_engine.run_regimes import main

        out = tmp_path / "out" / "summary.json"
        manifest_dir = tmp_path / "manifests"
        code = main([
            "--input", str(returns_csv),
            "--column", "BTC",
            "--mode", "smoothed",
            "--output", str(out),
            "--manifest", str(manifest_dir),
            "--plain-logs",
            "--log-level", "WARNING",
        ])

        assert code == 0
        printed = capsys.readouterr().out
        assert "Bull" in printed and "Bear" in printed

        payload = json.loads(out.read_text())
        assert payload["current_regime"] == "Sideways"
        assert payload["mode"] == "smoothed"
        assert payload["convergence"]["backend"] == "manual"

        manifests = list(manifest_dir.glob("run_manifest_*.json"))
        assert len(manifests) == 1
        manifest = json.loads(manifests[0].read_text())
        assert manifest["script"] == "run_regimes"
        assert manifest["series"]["BTC"]["length"] == 299
        assert manifest["config"]["detector.n_states"] == 3

    def test_bootstrap_option(self, returns_csv, capsys):
        from regime_engine.run_regimes import main

        code = main([
            "--input", str(returns_csv), "--column", "BTC",
            "--bootstrap", "3", "--log-level", "ERROR",
        ])
        assert code == 0
        assert "replicates used" in capsys.readouterr().out

    def test_missing_column(self, returns_csv, capsys):
        from regime_engine.run_regimes import main

        code = main(["--input", str(returns_csv), "--column", "ETH", "--log-level", "ERROR"])
        assert code == 1
        assert "not found" in capsys.readouterr().err

    def test_too_short_series(self, tmp_path, capsys):
        from regime_engine.run_regimes import main

        path = tmp_path / "short.csv"
        pd.DataFrame({"x": np.arange(10, dtype=float)}).to_csv(path)
        code = main(["--input", str(path), "--column", "x", "--log-level", "ERROR"])
        assert code == 1
        assert "Insufficient" in capsys.readouterr().err

    def test_plots_option_writes_charts(self, tmp_path, returns_csv, capsys):
        from regime_engine.run_regimes import main

        charts = tmp_path / "charts"
        code = main([
            "--input", str(returns_csv), "--column", "BTC",
            "--plots", str(charts), "--log-level", "ERROR",
        ])
        assert code == 0
        written = sorted(p.name for p in charts.glob("*.html"))
        assert written == ["posteriors.html", "regimes.html", "statistics.html", "transitions.html"]
        assert "plotly" in (charts / "regimes.html").read_text().lower()
        assert "Charts saved" in capsys.readouterr().out
