"""
Complexity-Depth Controller
===========================
Lexical complexity analysis of a candidate and the audit depth it warrants.

NO JUDGE CALLS HERE. Both operations are pure functions of their input:

    analyze(source_text, language) -> ComplexityProfile
    plan(profile)                  -> AuditDepthPlan

Metrics:
    lines_of_code    — non-blank lines not starting with //, /*, * or #
    function_count   — language-specific declaration patterns
    class_count      — language-specific class/interface patterns
    max_nesting      — running counter over ( [ { never below zero
    dependency_count — import / require patterns
    cyclomatic       — 1 + branching keywords (if, loops, case, catch, ternary)
    cognitive        — cyclomatic + 2 × max_nesting
    halstead         — volume / difficulty / effort from operator and operand counts

Overall score:
    Each metric is scaled into 0–100 with its own cap, then weighted:
    cyclomatic .25, cognitive .25, LOC .15, functions .10, classes .10,
    nesting .10, dependencies .05. The sum is rounded and clamped to 0–100.

Depth plan:
    ≤30 shallow, ≤60 standard, ≤80 deep, otherwise comprehensive.
    timeout = base × (1 + overall/100 × multiplier), capped at max.
    Focus areas: top three of five weighted priorities, descending, ties
    broken by testing > security > performance > maintainability > documentation.

Unknown languages use the typescript pattern set.
"""
import logging
import math
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from auditor.core import config
from auditor.core.constants import (
    DEFAULT_LANGUAGE,
    DEPTH_SHALLOW,
    DEPTH_STANDARD,
    DEPTH_DEEP,
    DEPTH_COMPREHENSIVE,
    FOCUS_AREA_PRECEDENCE,
    FOCUS_TESTING,
    FOCUS_SECURITY,
    FOCUS_PERFORMANCE,
    FOCUS_MAINTAINABILITY,
    FOCUS_DOCUMENTATION,
)
from auditor.models.complexity import AuditDepthPlan, ComplexityProfile, HalsteadMetrics

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Language pattern tables
# ---------------------------------------------------------------------------
_C_STYLE_BRANCHES = [
    re.compile(r"\bif\s*\("),
    re.compile(r"\bwhile\s*\("),
    re.compile(r"\bfor\s*\("),
    re.compile(r"\bcase\s+"),
    re.compile(r"\bcatch\s*\("),
    re.compile(r"\s\?\s"),
]

_FUNCTION_PATTERNS: Dict[str, List[re.Pattern]] = {
    "typescript": [
        re.compile(r"\bfunction\s+\w+"),
        re.compile(r"\w+\s*[:=]\s*(?:async\s*)?\([^)]*\)\s*(?::\s*[\w<>\[\]| ]+)?\s*=>"),
    ],
    "javascript": [
        re.compile(r"\bfunction\s+\w+"),
        re.compile(r"\w+\s*[:=]\s*function\b"),
        re.compile(r"\w+\s*=\s*(?:async\s*)?\([^)]*\)\s*=>"),
    ],
    "python": [
        re.compile(r"^\s*(?:async\s+)?def\s+\w+", re.M),
    ],
    "java": [
        re.compile(r"\b(?:public|private|protected)\s+(?:static\s+)?[\w<>\[\]]+\s+\w+\s*\("),
    ],
}

_CLASS_PATTERNS: Dict[str, List[re.Pattern]] = {
    "typescript": [re.compile(r"\bclass\s+\w+"), re.compile(r"\binterface\s+\w+")],
    "javascript": [re.compile(r"\bclass\s+\w+")],
    "python": [re.compile(r"^\s*class\s+\w+", re.M)],
    "java": [re.compile(r"\b(?:class|interface|enum)\s+\w+")],
}

_IMPORT_PATTERNS: Dict[str, List[re.Pattern]] = {
    "typescript": [re.compile(r"\bimport\s+.*?\bfrom\b"), re.compile(r"\bimport\s*\("), re.compile(r"\brequire\s*\(")],
    "javascript": [re.compile(r"\bimport\s+.*?\bfrom\b"), re.compile(r"\brequire\s*\(")],
    "python": [re.compile(r"^\s*import\s+\w+", re.M), re.compile(r"^\s*from\s+[\w.]+\s+import\b", re.M)],
    "java": [re.compile(r"^\s*import\s+[\w.*]+", re.M)],
}

_BRANCH_PATTERNS: Dict[str, List[re.Pattern]] = {
    "typescript": _C_STYLE_BRANCHES,
    "javascript": _C_STYLE_BRANCHES,
    "java": _C_STYLE_BRANCHES,
    "python": [
        re.compile(r"\bif\b"),
        re.compile(r"\belif\b"),
        re.compile(r"\bwhile\b"),
        re.compile(r"\bfor\b"),
        re.compile(r"\bexcept\b"),
        re.compile(r"\bcase\b"),
    ],
}

_KEYWORDS: Dict[str, frozenset] = {
    "typescript": frozenset({"if", "else", "for", "while", "function", "class", "interface",
                             "const", "let", "var", "return", "import", "from", "export"}),
    "javascript": frozenset({"if", "else", "for", "while", "function", "class",
                             "const", "let", "var", "return", "import", "from", "export"}),
    "python": frozenset({"if", "elif", "else", "for", "while", "def", "class", "import",
                         "from", "return", "try", "except", "with", "as", "in", "not", "and", "or"}),
    "java": frozenset({"if", "else", "for", "while", "class", "public", "private",
                       "protected", "static", "return", "import", "new"}),
}

# Longest first so "==" is not counted as two "="
_OPERATOR_PATTERN = re.compile(
    r"===|!==|==|!=|<=|>=|&&|\|\||\+\+|--|\+=|-=|\*=|/=|=>|[+\-*/%=<>!&|^~]"
)
_OPERAND_PATTERN = re.compile(r"\b\w+\b")

_COMMENT_PREFIXES = ("//", "/*", "*", "#")
_OPEN_BRACKETS = "([{"
_CLOSE_BRACKETS = ")]}"

# ---------------------------------------------------------------------------
# Overall-score scaling: metric → (multiplier, weight)
# ---------------------------------------------------------------------------
_SCALING = {
    "cyclomatic": (5.0, 0.25),
    "cognitive": (3.0, 0.25),
    "lines_of_code": (0.1, 0.15),
    "function_count": (10.0, 0.10),
    "class_count": (20.0, 0.10),
    "max_nesting": (10.0, 0.10),
    "dependency_count": (5.0, 0.05),
}

# Depth thresholds (inclusive upper bounds)
_DEPTH_THRESHOLDS = (
    (30, DEPTH_SHALLOW),
    (60, DEPTH_STANDARD),
    (80, DEPTH_DEEP),
)


@dataclass
class DepthSettings:
    """Timeout tuning for plan(); defaults come from the environment."""
    base_timeout: float = config.JUDGE_BASE_TIMEOUT
    timeout_multiplier: float = config.JUDGE_TIMEOUT_MULTIPLIER
    max_timeout: float = config.JUDGE_MAX_TIMEOUT


def _language_key(language: Optional[str], table: Dict[str, list]) -> str:
    key = (language or DEFAULT_LANGUAGE).lower()
    return key if key in table else DEFAULT_LANGUAGE


def _count(patterns: List[re.Pattern], text: str) -> int:
    return sum(len(p.findall(text)) for p in patterns)


def count_lines_of_code(text: str) -> int:
    count = 0
    for line in text.split("\n"):
        stripped = line.strip()
        if stripped and not stripped.startswith(_COMMENT_PREFIXES):
            count += 1
    return count


def max_nesting_depth(text: str) -> int:
    """Deepest bracket nesting reached; stray closers never go below zero."""
    depth = 0
    deepest = 0
    for ch in text:
        if ch in _OPEN_BRACKETS:
            depth += 1
            deepest = max(deepest, depth)
        elif ch in _CLOSE_BRACKETS:
            depth = max(0, depth - 1)
    return deepest


def halstead_metrics(text: str, language: str) -> HalsteadMetrics:
    operators = _OPERATOR_PATTERN.findall(text)
    keywords = _KEYWORDS[_language_key(language, _KEYWORDS)]
    operands = [w for w in _OPERAND_PATTERN.findall(text) if w.lower() not in keywords]

    n1, n2 = len(set(operators)), len(set(operands))
    total_operands = len(operands)
    vocabulary = n1 + n2
    length = len(operators) + total_operands

    volume = length * math.log2(vocabulary) if vocabulary > 1 else 0.0
    difficulty = (n1 / 2) * (total_operands / n2) if n2 else 0.0
    return HalsteadMetrics(
        volume=round(volume, 2),
        difficulty=round(difficulty, 2),
        effort=round(volume * difficulty, 2),
    )


def overall_complexity(profile: ComplexityProfile) -> int:
    """Weighted, capped blend of the profile's metrics, clamped to [0, 100]."""
    total = 0.0
    for name, (multiplier, weight) in _SCALING.items():
        scaled = min(100.0, getattr(profile, name) * multiplier)
        total += scaled * weight
    return int(max(0, min(100, round(total))))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def analyze(source_text: str, language: str = DEFAULT_LANGUAGE) -> ComplexityProfile:
    """
    Compute the complexity profile of a candidate.

    Parameters
    ----------
    source_text : str
        Candidate source code.
    language : str
        "python", "typescript", "javascript" or "java". Unknown values use
        the typescript patterns.

    Returns
    -------
    ComplexityProfile
        Metrics plus the derived 0–100 overall score.
    """
    text = source_text or ""
    nesting = max_nesting_depth(text)
    cyclomatic = 1 + _count(_BRANCH_PATTERNS[_language_key(language, _BRANCH_PATTERNS)], text)

    profile = ComplexityProfile(
        cyclomatic=cyclomatic,
        cognitive=cyclomatic + 2 * nesting,
        lines_of_code=count_lines_of_code(text),
        function_count=_count(_FUNCTION_PATTERNS[_language_key(language, _FUNCTION_PATTERNS)], text),
        class_count=_count(_CLASS_PATTERNS[_language_key(language, _CLASS_PATTERNS)], text),
        max_nesting=nesting,
        dependency_count=_count(_IMPORT_PATTERNS[_language_key(language, _IMPORT_PATTERNS)], text),
        halstead=halstead_metrics(text, language),
    )
    profile.overall = overall_complexity(profile)
    logger.debug(
        "Complexity: overall=%d cyclomatic=%d nesting=%d loc=%d",
        profile.overall, profile.cyclomatic, profile.max_nesting, profile.lines_of_code,
    )
    return profile


def depth_for(overall: int) -> str:
    for limit, depth in _DEPTH_THRESHOLDS:
        if overall <= limit:
            return depth
    return DEPTH_COMPREHENSIVE


def timeout_for(overall: int, settings: Optional[DepthSettings] = None) -> float:
    settings = settings or DepthSettings()
    raw = settings.base_timeout * (1 + (overall / 100) * settings.timeout_multiplier)
    return float(min(settings.max_timeout, round(raw)))


def focus_priorities(profile: ComplexityProfile) -> Dict[str, float]:
    return {
        FOCUS_TESTING: profile.overall * 1.5 + profile.cyclomatic * 1.0,
        FOCUS_SECURITY: profile.dependency_count * 3 + profile.overall * 0.3,
        FOCUS_PERFORMANCE: profile.max_nesting * 8 + profile.function_count * 2,
        FOCUS_MAINTAINABILITY: profile.cognitive * 1.2 + profile.lines_of_code * 0.05,
        FOCUS_DOCUMENTATION: profile.class_count * 8 + profile.function_count * 1.5,
    }


def rank_focus_areas(profile: ComplexityProfile, limit: int = 3) -> List[str]:
    """Top focus areas by priority, descending; ties keep precedence order."""
    priorities = focus_priorities(profile)
    ordered = sorted(
        FOCUS_AREA_PRECEDENCE,
        key=lambda area: (-priorities[area], FOCUS_AREA_PRECEDENCE.index(area)),
    )
    return ordered[:limit]


def _recommendations(profile: ComplexityProfile, depth: str) -> List[str]:
    recs = []
    if profile.cyclomatic > 10:
        recs.append("Consider breaking down complex functions to reduce cyclomatic complexity")
    if profile.cognitive > 15:
        recs.append("Simplify logic flow to reduce cognitive load")
    if profile.max_nesting > 4:
        recs.append("Reduce nesting depth through early returns or helper functions")
    if profile.function_count > 20:
        recs.append("Consider organizing functions into classes or modules")
    if profile.dependency_count > 15:
        recs.append("Review dependencies for potential consolidation")
    if depth == DEPTH_COMPREHENSIVE:
        recs.append("High complexity detected - comprehensive audit recommended")
    return recs


def plan(profile: ComplexityProfile, settings: Optional[DepthSettings] = None) -> AuditDepthPlan:
    """
    Map a complexity profile to an audit depth plan.

    Parameters
    ----------
    profile : ComplexityProfile
        Output of analyze().
    settings : DepthSettings, optional
        Timeout base / multiplier / cap. Environment defaults when omitted.

    Returns
    -------
    AuditDepthPlan
    """
    depth = depth_for(profile.overall)
    justification = (
        f"Audit depth set to '{depth}' based on overall complexity score of {profile.overall}. "
        f"Key factors: cyclomatic complexity ({profile.cyclomatic}), "
        f"cognitive complexity ({profile.cognitive}), "
        f"nesting depth ({profile.max_nesting})."
    )
    return AuditDepthPlan(
        depth=depth,
        timeout_seconds=timeout_for(profile.overall, settings),
        focus_areas=rank_focus_areas(profile),
        recommendations=_recommendations(profile, depth),
        justification=justification,
    )
