"""
Finding Classification
======================
Maps free-text judge comments to a feedback category and priority.

Allowed Categories:
    security, performance, style, other

Priority Mapping:
    security → critical, performance → high, style → low, other → medium

Classification Strategy:
    1. KEYWORD TABLE FIRST — ordered substring lookup, first category wins
    2. NEVER dynamic inference or LLM

Critical detection is independent of category: a comment is critical when it
is a security finding or when it matches _CRITICAL_PATTERN.
"""
import re
from dataclasses import dataclass

from auditor.core.constants import (
    CATEGORY_SECURITY,
    CATEGORY_PERFORMANCE,
    CATEGORY_STYLE,
    CATEGORY_OTHER,
    PRIORITY_CRITICAL,
    PRIORITY_HIGH,
    PRIORITY_MEDIUM,
    PRIORITY_LOW,
)


# ---------------------------------------------------------------------------
# Classification Result
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class FindingClassification:
    """Immutable result of classifying one judge comment."""
    category: str
    priority: str
    is_critical: bool
    resolution: str = ""


# ---------------------------------------------------------------------------
# 1. Keyword Table (checked in order)
# ---------------------------------------------------------------------------
_KEYWORD_MAP: list[tuple[str, tuple[str, ...]]] = [
    (CATEGORY_SECURITY, (
        "security", "vulnerab", "injection", "xss", "csrf", "secret",
        "credential", "sanitiz", "unsafe eval", "path traversal",
    )),
    (CATEGORY_PERFORMANCE, (
        "performance", "optimiz", "slow", "inefficient", "o(n^2)", "quadratic",
        "memory usage", "allocation", "n+1",
    )),
    (CATEGORY_STYLE, (
        "style", "formatting", "convention", "lint", "naming", "whitespace",
        "indentation", "typo",
    )),
]

_CATEGORY_PRIORITY = {
    CATEGORY_SECURITY: PRIORITY_CRITICAL,
    CATEGORY_PERFORMANCE: PRIORITY_HIGH,
    CATEGORY_STYLE: PRIORITY_LOW,
    CATEGORY_OTHER: PRIORITY_MEDIUM,
}

# ---------------------------------------------------------------------------
# 2. Critical keyword pattern
# ---------------------------------------------------------------------------
_CRITICAL_KEYWORDS = (
    "critical", "blocker", "security", "vulnerability", "injection", "crash",
    "data loss", "corruption", "deadlock", "race condition", "infinite loop",
    "null pointer", "memory leak", "buffer overflow",
)
_CRITICAL_PATTERN = re.compile(
    r"\b(?:" + "|".join(re.escape(k) for k in _CRITICAL_KEYWORDS) + r")", re.I
)

# Resolution guidance keyed by the critical keyword that fired
_RESOLUTIONS = [
    (re.compile(r"injection|vulnerab|security|xss", re.I),
     "Implement proper input validation and security controls"),
    (re.compile(r"data loss|corruption", re.I),
     "Add proper data validation and backup mechanisms"),
    (re.compile(r"memory leak", re.I),
     "Ensure proper resource cleanup and disposal"),
    (re.compile(r"infinite loop", re.I),
     "Add proper loop termination conditions"),
    (re.compile(r"null pointer", re.I),
     "Add null checks and proper error handling"),
    (re.compile(r"race condition", re.I),
     "Implement proper synchronization mechanisms"),
    (re.compile(r"deadlock", re.I),
     "Review and redesign locking strategy"),
]
_DEFAULT_RESOLUTION = "Review and address the identified issue"

# "should X." / "consider X." → action text
_ACTION_PATTERN = re.compile(
    r"\b(should|need to|must|consider|try|use|add|remove|fix|implement)\s+(.+?)(?:\.|$)",
    re.I,
)


def categorize_comment(comment: str) -> str:
    """
    Assign a feedback category to a judge comment.

    Parameters
    ----------
    comment : str
        Free-text comment from an inline finding.

    Returns
    -------
    str
        "security", "performance", "style" or "other".
    """
    lowered = comment.lower()
    for category, keywords in _KEYWORD_MAP:
        if any(k in lowered for k in keywords):
            return category
    return CATEGORY_OTHER


def priority_for(category: str) -> str:
    return _CATEGORY_PRIORITY.get(category, PRIORITY_MEDIUM)


def is_critical_comment(comment: str) -> bool:
    return bool(_CRITICAL_PATTERN.search(comment))


def resolution_for(comment: str) -> str:
    for pattern, resolution in _RESOLUTIONS:
        if pattern.search(comment):
            return resolution
    return _DEFAULT_RESOLUTION


def extract_action(comment: str) -> str:
    """Turn a judge comment into an imperative action line."""
    match = _ACTION_PATTERN.search(comment)
    if match:
        return f"{match.group(1).lower()} {match.group(2).strip()}"
    text = comment.strip()
    suffix = "..." if len(text) > 100 else ""
    return f"Address the issue: {text[:100]}{suffix}"


def classify_finding(comment: str) -> FindingClassification:
    """
    Classify a judge comment into category, priority and criticality.

    Parameters
    ----------
    comment : str
        Free-text comment from an inline finding.

    Returns
    -------
    FindingClassification
    """
    category = categorize_comment(comment)
    critical = category == CATEGORY_SECURITY or is_critical_comment(comment)
    return FindingClassification(
        category=category,
        priority=priority_for(category),
        is_critical=critical,
        resolution=resolution_for(comment) if critical else "",
    )
