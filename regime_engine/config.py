"""
Central configuration for the regime engine.

Flat-constant interface.  All values are derived from the structured
config singleton in ``config_structured.py`` so there is a single source
of truth.  Constructors throughout the package default their keyword
arguments to these constants.

Config Status Legend
====================
Each constant is annotated with one of the following statuses:

  ACTIVE      — Imported and used by running code.  Changing the value
                affects live behaviour.
  PLACEHOLDER — Defined for future use.  Safe to change without
                affecting current behaviour.

Search for ``# STATUS:`` to locate all annotations.
"""
from pathlib import Path
from typing import Dict, List

from .config_structured import MAX_HMM_STATES, get_config as _get_config

_cfg = _get_config()

# ── Paths ──────────────────────────────────────────────────────────────
ROOT_DIR = Path(__file__).parent                  # STATUS: ACTIVE — base path for all relative references
RESULTS_DIR = ROOT_DIR / "results"                # STATUS: ACTIVE — run_regimes.py default manifest directory

# ── Regime HMM ────────────────────────────────────────────────────────
REGIME_HMM_STATES = _cfg.regime.n_states           # STATUS: ACTIVE — regime/detector.py; number of hidden states
REGIME_HMM_MAX_ITER = _cfg.regime.max_iter         # STATUS: ACTIVE — regime/detector.py; EM iteration limit
REGIME_HMM_TOL = _cfg.regime.tolerance             # STATUS: ACTIVE — regime/estimators.py; |ΔLL| stopping tolerance
REGIME_DECODING_MODE = _cfg.regime.decoding_mode.value  # STATUS: ACTIVE — regime/detector.py; "viterbi" or "smoothed"
REGIME_TRANSITION_INIT = _cfg.regime.transition_init.value  # STATUS: ACTIVE — regime/initializer.py; "diagonal" or "uniform"
REGIME_HMM_PERSISTENCE = _cfg.regime.persistence   # STATUS: ACTIVE — regime/initializer.py; diagonal mass of the sticky prior
REGIME_VARIANCE_FLOOR = _cfg.regime.variance_floor  # STATUS: ACTIVE — regime/initializer.py, regime/estimators.py; σ² floor
REGIME_DENSITY_FLOOR = _cfg.regime.density_floor   # STATUS: ACTIVE — regime/hmm.py; emission density floor
REGIME_MIN_OBS_PER_STATE = _cfg.regime.min_obs_per_state  # STATUS: ACTIVE — regime/initializer.py; T must be >= this * K
REGIME_STARVATION_THRESHOLD = _cfg.regime.starvation_threshold  # STATUS: ACTIVE — regime/estimators.py; Σγ below this keeps previous params
REGIME_ESTIMATOR = _cfg.regime.estimator.value     # STATUS: ACTIVE — regime/detector.py; "manual", "library" (hmmlearn) or "auto"
REGIME_RANDOM_STATE = _cfg.regime.random_state     # STATUS: ACTIVE — regime/initializer.py KMeans seed, regime/analyzer.py bootstrap seed
REGIME_KMEANS_N_INIT = _cfg.regime.kmeans_n_init   # STATUS: ACTIVE — regime/initializer.py; KMeans restarts
REGIME_MAX_STATES = MAX_HMM_STATES                 # STATUS: ACTIVE — validate_config(); upper bound on n_states

REGIME_NAMES_3 = tuple(_cfg.regime.names_3)        # STATUS: ACTIVE — regime/hmm.py; K=3 names in descending-mean order

# ── Bootstrap Confidence Bands ────────────────────────────────────────
REGIME_BOOTSTRAP_N = _cfg.bootstrap.n_boot          # STATUS: ACTIVE — regime/analyzer.py; bootstrap replicates
REGIME_BOOTSTRAP_BLOCK_LENGTH = _cfg.bootstrap.block_length  # STATUS: ACTIVE — regime/analyzer.py; moving-block length
REGIME_BOOTSTRAP_ALPHA = _cfg.bootstrap.alpha       # STATUS: ACTIVE — regime/analyzer.py; two-sided band level

# ── Logging ───────────────────────────────────────────────────────────
LOG_LEVEL = _cfg.logging.level                     # STATUS: ACTIVE — run_regimes.py default log level
LOG_STRUCTURED = _cfg.logging.structured           # STATUS: ACTIVE — run_regimes.py; JSON lines vs plain text


# ── Config Validation ──────────────────────────────────────────────

def validate_config() -> List[Dict[str, str]]:
    """Check config for common misconfigurations.

    Returns a list of dicts: [{"level": "WARNING"|"ERROR", "message": str}].
    Called by ``run_regimes.py`` before fitting.
    """
    issues: List[Dict[str, str]] = []

    # 1. State count bounds
    if not 1 <= REGIME_HMM_STATES <= REGIME_MAX_STATES:
        issues.append({
            "level": "ERROR",
            "message": (
                f"REGIME_HMM_STATES={REGIME_HMM_STATES} is outside [1, {REGIME_MAX_STATES}]."
            ),
        })
    elif REGIME_HMM_STATES == 1:
        issues.append({
            "level": "WARNING",
            "message": "REGIME_HMM_STATES=1; every observation is assigned to one regime.",
        })

    # 2. Tolerance and iteration budget
    if REGIME_HMM_TOL <= 0:
        issues.append({
            "level": "ERROR",
            "message": f"REGIME_HMM_TOL={REGIME_HMM_TOL} must be positive.",
        })
    if REGIME_HMM_MAX_ITER < 1:
        issues.append({
            "level": "ERROR",
            "message": f"REGIME_HMM_MAX_ITER={REGIME_HMM_MAX_ITER} must be at least 1.",
        })
    elif REGIME_HMM_MAX_ITER < 20:
        issues.append({
            "level": "WARNING",
            "message": (
                f"REGIME_HMM_MAX_ITER={REGIME_HMM_MAX_ITER} is low; "
                "EM will often stop before the tolerance is met."
            ),
        })

    # 3. Persistence prior
    if not 0.0 < REGIME_HMM_PERSISTENCE < 1.0:
        issues.append({
            "level": "ERROR",
            "message": f"REGIME_HMM_PERSISTENCE={REGIME_HMM_PERSISTENCE} must be in (0, 1).",
        })
    elif REGIME_HMM_STATES > 1 and REGIME_HMM_PERSISTENCE < 1.0 / REGIME_HMM_STATES:
        issues.append({
            "level": "WARNING",
            "message": (
                f"REGIME_HMM_PERSISTENCE={REGIME_HMM_PERSISTENCE} is below 1/K; "
                "the diagonal prior then favours switching over persistence."
            ),
        })

    # 4. Floors
    if REGIME_VARIANCE_FLOOR <= 0:
        issues.append({
            "level": "ERROR",
            "message": f"REGIME_VARIANCE_FLOOR={REGIME_VARIANCE_FLOOR} must be positive.",
        })
    if not 0.0 < REGIME_DENSITY_FLOOR < 1e-10:
        issues.append({
            "level": "WARNING",
            "message": (
                f"REGIME_DENSITY_FLOOR={REGIME_DENSITY_FLOOR} is large enough to "
                "distort emission likelihoods."
            ),
        })

    # 5. Minimum length policy
    if REGIME_MIN_OBS_PER_STATE < 2:
        issues.append({
            "level": "ERROR",
            "message": (
                f"REGIME_MIN_OBS_PER_STATE={REGIME_MIN_OBS_PER_STATE} cannot seed "
                "per-state variances; use at least 2."
            ),
        })

    # 6. Regime names
    if len(set(REGIME_NAMES_3)) != 3:
        issues.append({
            "level": "ERROR",
            "message": f"REGIME_NAMES_3={REGIME_NAMES_3} must contain 3 distinct names.",
        })

    # 7. Bootstrap
    if REGIME_BOOTSTRAP_N < 2:
        issues.append({
            "level": "ERROR",
            "message": f"REGIME_BOOTSTRAP_N={REGIME_BOOTSTRAP_N} must be at least 2.",
        })
    if REGIME_BOOTSTRAP_BLOCK_LENGTH < 1:
        issues.append({
            "level": "ERROR",
            "message": (
                f"REGIME_BOOTSTRAP_BLOCK_LENGTH={REGIME_BOOTSTRAP_BLOCK_LENGTH} must be positive."
            ),
        })
    if not 0.0 < REGIME_BOOTSTRAP_ALPHA < 1.0:
        issues.append({
            "level": "ERROR",
            "message": f"REGIME_BOOTSTRAP_ALPHA={REGIME_BOOTSTRAP_ALPHA} must be in (0, 1).",
        })

    return issues
