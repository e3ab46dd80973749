"""
Inline Session Config Parser
============================
Extracts a session configuration block embedded in a submitted thought.

Supported block (first match wins):

    ```gan-config
    {"task": "...", "scope": "paths", "paths": ["src/"], "threshold": 90}
    ```

A ```json fence is accepted only when its object carries at least one config
key, so ordinary JSON in the candidate stays part of the code. Keys may be
snake_case or the camelCase names older clients send (maxCycles, applyFixes).

Parsing Strategy:
    1. json.loads on the block body
    2. Greedy fallback: the outermost {...} inside the body
    3. Give up → ConfigurationError (recoverable, caller keeps defaults)

Sanitisation never fails: every invalid field is replaced by its default and
reported as a warning so the session can still start.
"""
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from auditor.core.constants import SCOPES, SCOPE_PATHS, SCOPE_WORKSPACE
from auditor.core.errors import ConfigurationError
from auditor.models.session import SessionConfig

logger = logging.getLogger(__name__)

_CONFIG_BLOCK = re.compile(r"```(gan-config|json)\s*\n([\s\S]*?)\n```", re.I)
_GREEDY_OBJECT = re.compile(r"\{[\s\S]*\}")

_KEY_ALIASES = {
    "maxCycles": "max_cycles",
    "applyFixes": "apply_fixes",
}

# field → (min, max) for integer fields
_RANGES = {
    "threshold": (0, 100),
    "max_cycles": (1, 10),
    "candidates": (1, 5),
}


@dataclass
class ConfigParseResult:
    """Outcome of parsing and sanitising an inline config block."""
    config: SessionConfig
    found: bool = False
    used_fallback: bool = False
    warnings: List[str] = field(default_factory=list)


def _looks_like_config(body: str) -> bool:
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return False
    if not isinstance(data, dict):
        return False
    known = set(SessionConfig.model_fields) | set(_KEY_ALIASES)
    return bool(known.intersection(data))


def _find_config_block(thought: str) -> Optional[re.Match]:
    for match in _CONFIG_BLOCK.finditer(thought or ""):
        if match.group(1).lower() == "gan-config" or _looks_like_config(match.group(2)):
            return match
    return None


def extract_config_block(thought: str) -> Optional[str]:
    """Return the body of the first config fence, or None."""
    match = _find_config_block(thought)
    if match is None:
        return None
    body = match.group(2).strip()
    return body or None


def strip_config_block(thought: str) -> str:
    """Thought text with the config fence removed; other fences are kept."""
    if not thought:
        return ""
    match = _find_config_block(thought)
    if match is None:
        return thought.strip()
    return (thought[:match.start()] + thought[match.end():]).strip()


def parse_json_with_fallback(text: str) -> tuple[Dict[str, Any], bool]:
    """
    Parse a JSON object, falling back to the outermost {...} substring.

    Returns
    -------
    tuple
        (parsed dict, used_fallback)

    Raises
    ------
    ConfigurationError
        If neither strategy yields a JSON object.
    """
    try:
        data = json.loads(text)
        if isinstance(data, dict):
            return data, False
    except json.JSONDecodeError:
        pass

    match = _GREEDY_OBJECT.search(text)
    if match:
        try:
            data = json.loads(match.group(0))
            if isinstance(data, dict):
                return data, True
        except json.JSONDecodeError:
            pass

    raise ConfigurationError(
        "Failed to parse gan-config JSON",
        context={"raw_config": text[:500]},
        component="parser.inline_config",
    )


def sanitize_config(raw: Dict[str, Any], base: Optional[SessionConfig] = None) -> tuple[SessionConfig, List[str]]:
    """
    Validate raw config values field by field on top of a base config.

    Parameters
    ----------
    raw : dict
        Decoded inline config.
    base : SessionConfig, optional
        Values used for absent or invalid fields (defaults when omitted).

    Returns
    -------
    tuple
        (SessionConfig, list of warning strings)
    """
    base = base or SessionConfig()
    values = base.model_dump()
    warnings: List[str] = []
    data = {_KEY_ALIASES.get(k, k): v for k, v in raw.items()}

    task = data.get("task")
    if task is not None:
        if isinstance(task, str) and task.strip():
            values["task"] = task.strip()
        else:
            warnings.append("Task must be a non-empty string; keeping default")

    scope = data.get("scope")
    if scope is not None:
        if scope in SCOPES:
            values["scope"] = scope
        else:
            warnings.append("Scope must be one of: diff, paths, workspace")

    paths = data.get("paths")
    if paths is not None:
        if isinstance(paths, list) and all(isinstance(p, str) for p in paths):
            values["paths"] = [p.strip() for p in paths if p.strip()]
        else:
            warnings.append("Paths must be an array of non-empty strings")

    if values["scope"] == SCOPE_PATHS and not values["paths"]:
        warnings.append('Scope is "paths" but no paths provided, switching to "workspace" scope')
        values["scope"] = SCOPE_WORKSPACE

    for name, (low, high) in _RANGES.items():
        value = data.get(name)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not low <= value <= high:
            warnings.append(f"{name} must be a number between {low} and {high}")
            continue
        values[name] = int(value)

    judges = data.get("judges")
    if judges is not None:
        if isinstance(judges, list) and judges and all(isinstance(j, str) and j.strip() for j in judges):
            values["judges"] = [j.strip() for j in judges]
        else:
            warnings.append("Judges must be a non-empty array of strings")

    apply_fixes = data.get("apply_fixes")
    if apply_fixes is not None:
        if isinstance(apply_fixes, bool):
            values["apply_fixes"] = apply_fixes
        else:
            warnings.append("applyFixes must be a boolean")

    return SessionConfig(**values), warnings


def parse_inline_config(thought: str, base: Optional[SessionConfig] = None) -> ConfigParseResult:
    """
    Extract, parse and sanitise the inline config of a thought.

    Parse failures are logged and degrade to the base config; they never
    abort the submission.
    """
    body = extract_config_block(thought)
    if body is None:
        return ConfigParseResult(config=base or SessionConfig())

    try:
        raw, used_fallback = parse_json_with_fallback(body)
    except ConfigurationError as e:
        logger.warning("Inline config ignored: %s", e.message)
        return ConfigParseResult(config=base or SessionConfig(), found=True, warnings=[e.message])

    config, warnings = sanitize_config(raw, base)
    for w in warnings:
        logger.warning("Inline config: %s", w)
    return ConfigParseResult(config=config, found=True, used_fallback=used_fallback, warnings=warnings)
