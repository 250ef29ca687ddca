"""Engine configuration: decision thresholds, scoring weights, execution limits, paths."""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    raw = str(os.getenv(name, "") or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------
ROOT_DIR = Path(__file__).parent
OUTPUT_DIR = ROOT_DIR / os.getenv("OUTPUT_DIR", "outputs")
PLANS_DIR = OUTPUT_DIR / "plans"

# ---------------------------------------------------------------------------
# Plan contract (hard bounds)
# ---------------------------------------------------------------------------
DURATION_MIN = float(os.getenv("DURATION_MIN", "20"))
DURATION_MAX = float(os.getenv("DURATION_MAX", "35"))
MAX_VARIATIONS = int(os.getenv("MAX_VARIATIONS", "50"))

# Seed for every deterministic choice made at compile time (hook order, duration jitter).
PLAN_SEED = int(os.getenv("PLAN_SEED", "0"))

# Below this ratio of distinct hooks per variation the validator warns.
MIN_HOOK_COVERAGE_RATIO = float(os.getenv("MIN_HOOK_COVERAGE_RATIO", "0.5"))

# ---------------------------------------------------------------------------
# Decision pass: problem intake
# ---------------------------------------------------------------------------
PROBLEM_SEVERITY_FLOOR = float(os.getenv("PROBLEM_SEVERITY_FLOOR", "0.4"))
HIGH_SEVERITY = 0.7
MAX_PROBLEMS_PER_PASS = int(os.getenv("MAX_PROBLEMS_PER_PASS", "4"))
MIN_SEGMENTS_FOR_SCORING = int(os.getenv("MIN_SEGMENTS_FOR_SCORING", "2"))
HEALTHY_SEGMENT_ATTENTION = float(os.getenv("HEALTHY_SEGMENT_ATTENTION", "0.7"))

# ---------------------------------------------------------------------------
# Decision pass: scoring
#
# final_score = w_i*impact - w_r*risk - w_c*cost + w_t*confidence
# Weights differ per optimization goal; risk and cost always subtract.
# ---------------------------------------------------------------------------
IMPACT_EMPHASIS_SEVERITY = 0.5
IMPACT_EMPHASIS_WEIGHT = 1.5
AIDA_RISK_SURCHARGE = 0.15

GOAL_WEIGHTS: dict[str, dict[str, float]] = {
    # Retention: reward impact heavily, punish risk to healthy segments.
    "retention": {"impact": 1.2, "risk": 0.8, "cost": 0.3, "trust": 0.2},
    "ctr": {"impact": 1.0, "risk": 0.6, "cost": 0.4, "trust": 0.3},
    # Conversions: most conservative, trust evidence more.
    "conversions": {"impact": 0.9, "risk": 0.9, "cost": 0.5, "trust": 0.4},
}
DEFAULT_GOAL = os.getenv("DEFAULT_GOAL", "ctr")

# ---------------------------------------------------------------------------
# Decision pass: selection policy
# ---------------------------------------------------------------------------
IMPACT_FLOOR = float(os.getenv("IMPACT_FLOOR", "0.1"))
ACCEPTANCE_THRESHOLD = float(os.getenv("ACCEPTANCE_THRESHOLD", "0.1"))
RISK_CEILING_BY_TOLERANCE: dict[str, float] = {
    "low": 0.3,
    "medium": 0.5,
    "high": 0.8,
}
DEFAULT_RISK_TOLERANCE = os.getenv("DEFAULT_RISK_TOLERANCE", "medium")

# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------
EXECUTION_MAX_WORKERS = int(os.getenv("EXECUTION_MAX_WORKERS", "2"))
VARIATION_TIMEOUT_SECONDS = float(os.getenv("VARIATION_TIMEOUT_SECONDS", "300"))
RENDER_MAX_ATTEMPTS = int(os.getenv("RENDER_MAX_ATTEMPTS", "2"))
RENDER_RETRY_WAIT_MAX_SECONDS = float(os.getenv("RENDER_RETRY_WAIT_MAX_SECONDS", "4"))

DEFAULT_USER_TIER = os.getenv("DEFAULT_USER_TIER", "pro")
DEFAULT_RENDERING_MODE = os.getenv("DEFAULT_RENDERING_MODE", "auto")
PREFER_LOCAL_RENDER = _env_bool("PREFER_LOCAL_RENDER", default=True)

# Render backends
VPS_RENDER_URL = os.getenv("VPS_RENDER_URL", "")
VPS_RENDER_TOKEN = os.getenv("VPS_RENDER_TOKEN", "")
VPS_RENDER_HTTP_TIMEOUT_SECONDS = float(os.getenv("VPS_RENDER_HTTP_TIMEOUT_SECONDS", "240"))
FORCE_MOCK_RENDER = _env_bool("FORCE_MOCK_RENDER", default=False)

# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Ensure output dir exists
OUTPUT_DIR.mkdir(exist_ok=True)
