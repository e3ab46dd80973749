"""
Completion Reasons
==================
Machine-readable codes explaining why an audit loop stopped or is continuing.

Stored on SessionState.completion_reason and returned in every
CompletionDecision so the host layer and dashboards can branch on them.
"""


# ---------------------------------------------------------------------------
# Completion Reason Constants
# ---------------------------------------------------------------------------
SCORE_95_AT_10 = "score_95_at_10"
SCORE_90_AT_15 = "score_90_at_15"
SCORE_85_AT_20 = "score_85_at_20"
MAX_LOOPS_REACHED = "max_loops_reached"
STAGNATION_DETECTED = "stagnation_detected"
IN_PROGRESS = "in_progress"
MANUAL_STOP = "manual_stop"

# Reasons that end a session (IN_PROGRESS is the only non-terminal code)
TERMINAL_REASONS = frozenset({
    SCORE_95_AT_10,
    SCORE_90_AT_15,
    SCORE_85_AT_20,
    MAX_LOOPS_REACHED,
    STAGNATION_DETECTED,
    MANUAL_STOP,
})


def is_terminal_reason(reason: str) -> bool:
    """
    Check whether a completion reason closes the session.

    Parameters
    ----------
    reason : str
        One of the completion reason constants.

    Returns
    -------
    bool
        True for every reason except IN_PROGRESS and unknown codes.
    """
    return reason in TERMINAL_REASONS
