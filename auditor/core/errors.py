"""
Error Taxonomy
==============
Exception hierarchy for the audit convergence controller.

AuditorError is the root. Every raised error carries enough structure for the
controller to decide, without string matching, whether the enclosing session
can continue:

    category          — "config" | "judge" | "filesystem" | "session"
    severity          — "low" | "medium" | "high" | "critical"
    recoverable       — False aborts the request, True degrades to a fallback
    recovery_strategy — "retry" | "fallback" | "skip" | "abort" | "user_intervention"
    suggestions       — human-readable next actions
    context           — structured details (paths, session ids, timeouts ...)
    component         — dotted name of the subsystem that raised it

Foreign exceptions (OSError, ValueError, json errors ...) are coerced into the
taxonomy by classify_error(), which inspects the message for known substrings
and falls back to a non-recoverable filesystem error.
"""
import re
from typing import Any, Dict, List, Optional

# ---------------------------------------------------------------------------
# Categories / severities / strategies
# ---------------------------------------------------------------------------
CATEGORY_CONFIG = "config"
CATEGORY_JUDGE = "judge"
CATEGORY_FILESYSTEM = "filesystem"
CATEGORY_SESSION = "session"

SEVERITY_LOW = "low"
SEVERITY_MEDIUM = "medium"
SEVERITY_HIGH = "high"
SEVERITY_CRITICAL = "critical"

STRATEGY_RETRY = "retry"
STRATEGY_FALLBACK = "fallback"
STRATEGY_SKIP = "skip"
STRATEGY_ABORT = "abort"
STRATEGY_USER_INTERVENTION = "user_intervention"


class AuditorError(Exception):
    """Root exception for the entire project."""

    category = CATEGORY_FILESYSTEM
    severity = SEVERITY_HIGH
    recoverable = False
    recovery_strategy = STRATEGY_ABORT
    default_suggestions: List[str] = []

    def __init__(
        self,
        message: str,
        *,
        context: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
        component: str = "",
        severity: Optional[str] = None,
        recoverable: Optional[bool] = None,
        recovery_strategy: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})
        self.suggestions = list(suggestions or self.default_suggestions)
        self.component = component
        if severity is not None:
            self.severity = severity
        if recoverable is not None:
            self.recoverable = recoverable
        if recovery_strategy is not None:
            self.recovery_strategy = recovery_strategy

    def to_dict(self) -> Dict[str, Any]:
        """Serialisable view used in HTTP error bodies and session metadata."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "category": self.category,
            "severity": self.severity,
            "recoverable": self.recoverable,
            "recovery_strategy": self.recovery_strategy,
            "suggestions": list(self.suggestions),
            "context": dict(self.context),
            "component": self.component,
        }


# --- config ---


class ConfigurationError(AuditorError):
    """Invalid or missing session configuration. Falls back to defaults."""

    category = CATEGORY_CONFIG
    severity = SEVERITY_MEDIUM
    recoverable = True
    recovery_strategy = STRATEGY_FALLBACK
    default_suggestions = [
        "Check the gan-config block for JSON syntax errors",
        "Remove unknown or out-of-range fields to use defaults",
    ]


class InvalidConfigValueError(ConfigurationError):
    """A single configuration field holds an out-of-range or mistyped value."""

    def __init__(self, field: str, value: Any, expected: str, **kwargs):
        context = {"field": field, "value": value, "expected": expected}
        context.update(kwargs.pop("context", {}) or {})
        super().__init__(
            f"Invalid value for {field}: {value!r} (expected {expected})",
            context=context,
            **kwargs,
        )
        self.field = field


class MissingConfigError(ConfigurationError):
    """A required configuration field is absent."""

    def __init__(self, field: str, **kwargs):
        context = {"field": field}
        context.update(kwargs.pop("context", {}) or {})
        super().__init__(f"Missing required configuration: {field}", context=context, **kwargs)
        self.field = field


# --- judge ---


class JudgeError(AuditorError):
    """Judge subprocess failed. Degrades to a synthetic reject review."""

    category = CATEGORY_JUDGE
    severity = SEVERITY_HIGH
    recoverable = True
    recovery_strategy = STRATEGY_FALLBACK
    default_suggestions = [
        "Re-run the audit; the judge may have hit a transient failure",
        "Inspect the judge stderr captured in the error context",
    ]


class JudgeNotAvailableError(JudgeError):
    """The judge executable cannot be found. Nothing to fall back to."""

    severity = SEVERITY_CRITICAL
    recoverable = False
    recovery_strategy = STRATEGY_USER_INTERVENTION
    default_suggestions = [
        "Install the judge CLI and make sure it is on PATH",
        "Set JUDGE_EXECUTABLE to the absolute path of the judge binary",
    ]


class JudgeTimeoutError(JudgeError):
    """The judge exceeded the audit-depth timeout. Never retried."""

    severity = SEVERITY_MEDIUM
    default_suggestions = [
        "Reduce the candidate size or audit scope",
        "Raise JUDGE_MAX_TIMEOUT if complex candidates routinely time out",
    ]


class JudgeResponseError(JudgeError):
    """The judge produced output that could not be parsed into a review."""

    severity = SEVERITY_MEDIUM
    default_suggestions = [
        "Check that the judge supports --format json",
    ]


# --- filesystem ---


class FileSystemError(AuditorError):
    """Session read/write failure."""

    category = CATEGORY_FILESYSTEM
    severity = SEVERITY_MEDIUM
    recoverable = True
    recovery_strategy = STRATEGY_RETRY
    default_suggestions = [
        "Check that SESSION_STATE_DIR exists and is writable",
    ]


class FileNotFoundAuditError(FileSystemError):
    """A file the controller expected to read does not exist."""

    severity = SEVERITY_LOW
    recovery_strategy = STRATEGY_SKIP


class FileAccessError(FileSystemError):
    """Permission denied while reading or writing controller files."""

    severity = SEVERITY_MEDIUM
    recovery_strategy = STRATEGY_USER_INTERVENTION
    default_suggestions = [
        "Fix the permissions of SESSION_STATE_DIR",
    ]


# --- session ---


class SessionError(AuditorError):
    """Corrupted or missing session record. A fresh session is created."""

    category = CATEGORY_SESSION
    severity = SEVERITY_LOW
    recoverable = True
    recovery_strategy = STRATEGY_FALLBACK
    default_suggestions = [
        "The session will be recreated; previous history may be lost",
    ]


class SessionNotFoundError(SessionError):
    """No session record exists for the requested id."""


class SessionPersistenceError(SessionError):
    """Writing the session record failed; prior history is untouched."""

    severity = SEVERITY_MEDIUM
    recovery_strategy = STRATEGY_RETRY


class SessionCorruptionError(SessionError):
    """The stored session record failed integrity validation."""


class SessionClosedError(SessionError):
    """Mutation attempted on a session that is already complete."""

    recovery_strategy = STRATEGY_SKIP
    default_suggestions = [
        "Start a new session id to continue auditing",
    ]


# ---------------------------------------------------------------------------
# Classification of foreign exceptions
# ---------------------------------------------------------------------------
# Order matters: first match wins.
_CLASSIFICATION_RULES = [
    (re.compile(r"command not found|executable.*not found|spawn .*ENOENT|no such file or directory: '?codex", re.I),
     JudgeNotAvailableError),
    (re.compile(r"timed? ?out|timeout", re.I), JudgeTimeoutError),
    (re.compile(r"\bcodex\b|\bjudge\b", re.I), JudgeError),
    (re.compile(r"ENOENT|no such file", re.I), FileNotFoundAuditError),
    (re.compile(r"EACCES|EPERM|permission denied", re.I), FileAccessError),
    (re.compile(r"config|validation|json parse|expecting value", re.I), ConfigurationError),
    (re.compile(r"corrupt", re.I), SessionCorruptionError),
    (re.compile(r"session", re.I), SessionError),
]


def classify_error(exc: BaseException, component: str = "") -> AuditorError:
    """
    Coerce any exception into the AuditorError taxonomy.

    Parameters
    ----------
    exc : BaseException
        The exception to classify. AuditorError instances are returned as-is.
    component : str
        Subsystem name recorded on the resulting error.

    Returns
    -------
    AuditorError
        A typed error. Unrecognised messages become a non-recoverable,
        high-severity FileSystemError (the most conservative category).
    """
    if isinstance(exc, AuditorError):
        return exc

    message = str(exc) or type(exc).__name__
    context = {"original_type": type(exc).__name__}

    for pattern, error_cls in _CLASSIFICATION_RULES:
        if pattern.search(message):
            return error_cls(message, context=context, component=component)

    return FileSystemError(
        message,
        context=context,
        component=component,
        severity=SEVERITY_HIGH,
        recoverable=False,
        recovery_strategy=STRATEGY_ABORT,
        suggestions=["Inspect the logs; this error did not match any known category"],
    )
