"""Tests for run manifests: contents, persistence and verification.

Verifies:
  - The manifest contains run_type, timestamp_utc, git_commit, config, seed
  - Series lengths and checksums are recorded
  - write_run_manifest writes valid JSON
  - verify_manifest detects config and data mismatches
  - The CLI entry point wires the manifest helpers
"""
from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

PROJECT_ROOT = Path(__file__).parent.parent


@pytest.fixture
def series():
    return pd.Series(np.linspace(-1.0, 1.0, 50), name="returns")


@pytest.mark.unit
class TestBuildManifest:
    """Manifest construction."""

    def test_required_fields(self, series):
        from regime_engine.reproducibility import build_run_manifest

        manifest = build_run_manifest(
            run_type="fit",
            config={"regime.n_states": 3},
            series={"returns": series},
            random_state=42,
            script_name="run_regimes",
        )
        assert manifest["run_type"] == "fit"
        assert manifest["script"] == "run_regimes"
        assert manifest["random_state"] == 42
        assert manifest["config"] == {"regime.n_states": 3}
        assert {"timestamp_utc", "git_commit", "python_version", "platform"} <= set(manifest)
        assert manifest["series"]["returns"]["length"] == 50

    def test_checksum_sensitive_to_values(self, series):
        from regime_engine.reproducibility import series_checksum

        changed = series.copy()
        changed.iloc[10] += 1e-9
        assert series_checksum(series) == series_checksum(series.copy())
        assert series_checksum(series) != series_checksum(changed)

    def test_config_snapshot_flattens_sections(self):
        from regime_engine.reproducibility import config_snapshot

        snap = config_snapshot()
        assert snap["regime.n_states"] == 3
        assert snap["regime.decoding_mode"] == "viterbi"
        assert snap["regime.names_3"] == ["Bull", "Sideways", "Bear"]
        assert "bootstrap.block_length" in snap
        json.dumps(snap)


@pytest.mark.unit
class TestWriteAndVerify:
    """Persistence round trip and mismatch detection."""

    def test_written_manifest_verifies(self, tmp_path, series):
        from regime_engine.reproducibility import (
            build_run_manifest,
            config_snapshot,
            verify_manifest,
            write_run_manifest,
        )

        config = config_snapshot()
        manifest = build_run_manifest("fit", config, series={"returns": series})
        path = write_run_manifest(manifest, tmp_path, filename="m.json")

        assert path == tmp_path / "m.json"
        assert json.loads(path.read_text())["run_type"] == "fit"
        result = verify_manifest(path, config=config, series={"returns": series})
        assert result == {"config_match": True, "data_match": True, "mismatches": []}

    def test_timestamped_filename(self, tmp_path):
        from regime_engine.reproducibility import build_run_manifest, write_run_manifest

        path = write_run_manifest(build_run_manifest("fit", {}), tmp_path)
        assert path.name.startswith("run_manifest_")
        assert path.exists()

    def test_mismatches_reported(self, tmp_path, series):
        from regime_engine.reproducibility import (
            build_run_manifest,
            verify_manifest,
            write_run_manifest,
        )

        manifest = build_run_manifest("fit", {"regime.n_states": 3}, series={"returns": series})
        path = write_run_manifest(manifest, tmp_path, filename="m.json")

        result = verify_manifest(
            path,
            config={"regime.n_states": 2},
            series={"returns": series * 2},
        )
        assert not result["config_match"]
        assert not result["data_match"]
        assert len(result["mismatches"]) == 2

    def test_missing_manifest(self, tmp_path):
        from regime_engine.reproducibility import verify_manifest

        result = verify_manifest(tmp_path / "absent.json")
        assert not result["config_match"]
        assert "not found" in result["mismatches"][0]


@pytest.mark.unit
class TestEntryPointWiring:
    """The CLI imports the manifest helpers."""

    def test_run_regimes_imports_manifest_helpers(self):
        source = (PROJECT_ROOT / "regime_engine" / "run_regimes.py").read_text()
        assert "build_run_manifest" in source
        assert "write_run_manifest" in source
        assert "--manifest" in source
