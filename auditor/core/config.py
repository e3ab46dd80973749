"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    HARD_CAP                  — Loop count at which a session is force-stopped (default: 25)
    COMPLETION_BANDS          — Step-function bands "maxLoop:score,..." (default: 10:95,15:90,20:85)
    COMPLETION_CRITERIA_FILE  — Optional YAML file overriding bands and hard cap
    STAGNATION_WINDOW         — Iterations inspected by the stagnation detector (default: 4)
    STAGNATION_THRESHOLD      — Average similarity above which a window is stagnant (default: 0.95)
    STAGNATION_START_LOOP     — First loop at which stagnation is checked (default: 10)
    JUDGE_EXECUTABLE          — Judge CLI binary (default: codex)
    JUDGE_BASE_TIMEOUT        — Judge timeout for trivial candidates, seconds (default: 30)
    JUDGE_MAX_TIMEOUT         — Upper bound on the judge timeout, seconds (default: 120)
    JUDGE_TIMEOUT_MULTIPLIER  — Timeout growth at complexity 100 (default: 1.5)
    SESSION_STATE_DIR         — Directory holding one JSON file per session (default: .audit-sessions)
    MAX_IMPROVEMENTS          — Cap on improvement entries in a reply (default: 10)
    MAX_CRITICAL_ISSUES       — Cap on critical issues in a reply (default: 5)
    LOG_DIR                   — Directory for daily log files, empty disables file logging (default: logs)
    LOG_LEVEL                 — Root log level name (default: INFO)

Completion Bands:
    The acceptance threshold is a decreasing step function of the loop index.
    Each band reads "loops below MAX_LOOP need at least SCORE". The last band
    keeps applying until the hard cap, where the session is force-stopped.
    Bands are configuration, not constants, so they can be tuned per deployment.

YAML criteria file format:
    hard_cap: 25
    bands:
      - {max_loop: 10, score: 95, reason: score_95_at_10}
      - {max_loop: 15, score: 90, reason: score_90_at_15}
      - {max_loop: 20, score: 85, reason: score_85_at_20}
"""
import os
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from auditor.core.errors import FileNotFoundAuditError, InvalidConfigValueError, MissingConfigError

load_dotenv()

HARD_CAP = int(os.getenv("HARD_CAP", 25))
COMPLETION_BANDS = os.getenv("COMPLETION_BANDS", "10:95,15:90,20:85")
COMPLETION_CRITERIA_FILE = os.getenv("COMPLETION_CRITERIA_FILE", "")

# Stagnation detection
STAGNATION_WINDOW = int(os.getenv("STAGNATION_WINDOW", 4))
STAGNATION_THRESHOLD = float(os.getenv("STAGNATION_THRESHOLD", 0.95))
STAGNATION_START_LOOP = int(os.getenv("STAGNATION_START_LOOP", 10))

# Judge subprocess
JUDGE_EXECUTABLE = os.getenv("JUDGE_EXECUTABLE", "codex")
JUDGE_BASE_TIMEOUT = float(os.getenv("JUDGE_BASE_TIMEOUT", 30))
JUDGE_MAX_TIMEOUT = float(os.getenv("JUDGE_MAX_TIMEOUT", 120))
JUDGE_TIMEOUT_MULTIPLIER = float(os.getenv("JUDGE_TIMEOUT_MULTIPLIER", 1.5))

# Session persistence
SESSION_STATE_DIR = os.getenv("SESSION_STATE_DIR", ".audit-sessions")

# Reply shaping
MAX_IMPROVEMENTS = int(os.getenv("MAX_IMPROVEMENTS", 10))
MAX_CRITICAL_ISSUES = int(os.getenv("MAX_CRITICAL_ISSUES", 5))

# Logging
LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


# ---------------------------------------------------------------------------
# Band parsing
# ---------------------------------------------------------------------------
def _default_reason(max_loop: int, score: int) -> str:
    return f"score_{score}_at_{max_loop}"


def parse_band_spec(spec: str) -> List[Dict[str, Any]]:
    """
    Parse a "maxLoop:score,..." string into band dicts.

    Parameters
    ----------
    spec : str
        Comma-separated ``max_loop:score`` pairs, e.g. ``"10:95,15:90,20:85"``.

    Returns
    -------
    list of dict
        ``{"max_loop", "score", "reason"}`` dicts in the order given.

    Raises
    ------
    InvalidConfigValueError
        If a pair is malformed.
    MissingConfigError
        If the string holds no pairs at all.
    """
    bands = []
    for chunk in spec.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            loop_text, score_text = chunk.split(":", 1)
            max_loop, score = int(loop_text), int(score_text)
        except ValueError:
            raise InvalidConfigValueError(
                "COMPLETION_BANDS", chunk, "max_loop:score pairs",
                component="core.config",
            )
        bands.append({"max_loop": max_loop, "score": score,
                      "reason": _default_reason(max_loop, score)})
    if not bands:
        raise MissingConfigError("COMPLETION_BANDS", component="core.config")
    return bands


def load_criteria_file(path: str) -> Dict[str, Any]:
    """Read the YAML criteria override file. Missing keys are left to the caller."""
    if not os.path.exists(path):
        raise FileNotFoundAuditError(
            f"Completion criteria file not found: {path}",
            context={"path": path},
            component="core.config",
        )
    with open(path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise InvalidConfigValueError(
            "COMPLETION_CRITERIA_FILE", type(data).__name__, "a YAML mapping",
            context={"path": path}, component="core.config",
        )
    return data


def completion_criteria_source(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Resolve raw completion criteria from the environment and optional YAML file.

    The YAML file, when configured, wins over COMPLETION_BANDS / HARD_CAP.
    """
    raw: Dict[str, Any] = {
        "hard_cap": HARD_CAP,
        "bands": parse_band_spec(COMPLETION_BANDS),
    }
    path = path if path is not None else COMPLETION_CRITERIA_FILE
    if path:
        raw.update(load_criteria_file(path))
    return raw
