"""
Judge Request Builder
=====================
Centralised construction of the JSON request sent to the judge subprocess.

Request shape (written to the judge's stdin):
    {
      "task":      session task description,
      "candidate": candidate text for this loop,
      "context":   {"loop", "depth", "focus_areas", "recommendations",
                    "scope", "paths", "context_id"},
      "rubric":    {"dimensions": [{"name", "weight", "description"}]},
      "budget":    {"maxCycles", "candidates", "threshold"}
    }

Rubric Rules:
    - Weights of the default rubric sum to 1.0
    - The judge scores every dimension 0–100; the controller never does
"""
import json
import logging
from typing import Any, Dict, Optional

from auditor.models.complexity import AuditDepthPlan
from auditor.models.session import SessionConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default rubric
# ---------------------------------------------------------------------------
DEFAULT_RUBRIC: Dict[str, Any] = {
    "dimensions": [
        {"name": "accuracy", "weight": 0.25, "description": "Correctness and functionality"},
        {"name": "completeness", "weight": 0.20, "description": "Feature completeness and coverage"},
        {"name": "clarity", "weight": 0.20, "description": "Code readability and maintainability"},
        {"name": "actionability", "weight": 0.20, "description": "Practical improvement suggestions"},
        {"name": "human_likeness", "weight": 0.15, "description": "Natural and idiomatic code style"},
    ],
}

DEFAULT_DIMENSION_NAMES = tuple(d["name"] for d in DEFAULT_RUBRIC["dimensions"])

JUDGE_ARGS = ("audit", "--format", "json", "--headless", "--stdin")


def build_context_pack(
    config: SessionConfig,
    loop: int,
    plan: Optional[AuditDepthPlan] = None,
    context_id: Optional[str] = None,
) -> Dict[str, Any]:
    context: Dict[str, Any] = {
        "loop": loop,
        "scope": config.scope,
        "paths": list(config.paths),
    }
    if plan is not None:
        context["depth"] = plan.depth
        context["focus_areas"] = list(plan.focus_areas)
        context["recommendations"] = list(plan.recommendations)
    if context_id:
        context["context_id"] = context_id
    return context


def build_judge_request(
    candidate: str,
    config: SessionConfig,
    loop: int,
    plan: Optional[AuditDepthPlan] = None,
    context_id: Optional[str] = None,
    rubric: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Serialise one judge request.

    Parameters
    ----------
    candidate : str
        Candidate text for this loop.
    config : SessionConfig
        Session config supplying task, scope and budget.
    loop : int
        Loop index being judged.
    plan : AuditDepthPlan, optional
        Depth plan whose focus areas are forwarded as context.
    context_id : str, optional
        Judge-side conversation id for continuity across loops.
    rubric : dict, optional
        Overrides DEFAULT_RUBRIC.

    Returns
    -------
    str
        JSON document for the judge's stdin.
    """
    payload = {
        "task": config.task,
        "candidate": candidate,
        "context": build_context_pack(config, loop, plan, context_id),
        "rubric": rubric or DEFAULT_RUBRIC,
        "budget": {
            "maxCycles": config.max_cycles,
            "candidates": config.candidates,
            "threshold": config.threshold,
        },
    }
    return json.dumps(payload, ensure_ascii=False)
