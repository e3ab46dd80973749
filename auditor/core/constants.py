"""
Controller Constants
====================
Enumerated string values shared by every layer of the convergence controller.

Values are plain strings (not Enum members) so they serialise unchanged into
session files and HTTP responses.
"""

# ---------------------------------------------------------------------------
# Judge verdicts
# ---------------------------------------------------------------------------
VERDICT_PASS = "pass"
VERDICT_REVISE = "revise"
VERDICT_REJECT = "reject"

VERDICTS = frozenset({VERDICT_PASS, VERDICT_REVISE, VERDICT_REJECT})

# ---------------------------------------------------------------------------
# Audit scope
# ---------------------------------------------------------------------------
SCOPE_DIFF = "diff"
SCOPE_PATHS = "paths"
SCOPE_WORKSPACE = "workspace"

SCOPES = frozenset({SCOPE_DIFF, SCOPE_PATHS, SCOPE_WORKSPACE})

# ---------------------------------------------------------------------------
# Audit depth levels (ordered shallow → comprehensive)
# ---------------------------------------------------------------------------
DEPTH_SHALLOW = "shallow"
DEPTH_STANDARD = "standard"
DEPTH_DEEP = "deep"
DEPTH_COMPREHENSIVE = "comprehensive"

# ---------------------------------------------------------------------------
# Focus areas, listed in tie-break precedence order
# ---------------------------------------------------------------------------
FOCUS_TESTING = "testing"
FOCUS_SECURITY = "security"
FOCUS_PERFORMANCE = "performance"
FOCUS_MAINTAINABILITY = "maintainability"
FOCUS_DOCUMENTATION = "documentation"

FOCUS_AREA_PRECEDENCE = (
    FOCUS_TESTING,
    FOCUS_SECURITY,
    FOCUS_PERFORMANCE,
    FOCUS_MAINTAINABILITY,
    FOCUS_DOCUMENTATION,
)

# ---------------------------------------------------------------------------
# Termination categories
# ---------------------------------------------------------------------------
TERMINATION_TIMEOUT = "timeout"
TERMINATION_STAGNATION = "stagnation"
TERMINATION_FAILURE = "failure"
TERMINATION_MANUAL = "manual"

# ---------------------------------------------------------------------------
# Feedback priorities and categories
# ---------------------------------------------------------------------------
PRIORITY_CRITICAL = "critical"
PRIORITY_HIGH = "high"
PRIORITY_MEDIUM = "medium"
PRIORITY_LOW = "low"

# Lower rank sorts first
PRIORITY_RANK = {
    PRIORITY_CRITICAL: 0,
    PRIORITY_HIGH: 1,
    PRIORITY_MEDIUM: 2,
    PRIORITY_LOW: 3,
}

CATEGORY_SECURITY = "security"
CATEGORY_PERFORMANCE = "performance"
CATEGORY_STYLE = "style"
CATEGORY_OTHER = "other"

# ---------------------------------------------------------------------------
# Progress trends
# ---------------------------------------------------------------------------
TREND_IMPROVING = "IMPROVING"
TREND_DECLINING = "DECLINING"
TREND_FLAT = "FLAT"
TREND_STAGNANT = "STAGNANT"

# ---------------------------------------------------------------------------
# Supported languages for complexity analysis
# ---------------------------------------------------------------------------
DEFAULT_LANGUAGE = "typescript"
