"""
Decision Models
===============
Pydantic models produced by the stagnation detector, the completion
evaluator and the termination analysis.

StagnationVerdict:
    is_stagnant             — True only for a full window above the threshold
    detected_at_loop        — loop index of the newest iteration in the window
    similarity_score        — mean consecutive-pair similarity (0–1)
    recommendation          — human guidance (reason text when not stagnant)
    patterns                — StagnationPatterns flags
    similarity_trend        — one similarity per consecutive pair, oldest first
    alternative_suggestions — rule-keyed suggestions, populated when stagnant

CompletionDecision:
    is_complete, reason (see utils.completion_reasons), message,
    next_iteration_expected

TerminationDecision:
    should_terminate, reason, failure_rate (0–100), critical_issues,
    final_assessment, category ("timeout" | "stagnation" | "failure" | "manual")
"""
from pydantic import BaseModel, Field
from typing import List

from auditor.core.constants import TERMINATION_FAILURE


class StagnationPatterns(BaseModel):
    stuck_on_same_issues: bool = False
    cosmetic_changes_only: bool = False
    reverting_changes: bool = False
    shows_confusion: bool = False

    def fired(self) -> List[str]:
        return [name for name, value in self.model_dump().items() if value]


class StagnationVerdict(BaseModel):
    is_stagnant: bool = False
    detected_at_loop: int = 0
    similarity_score: float = 0.0
    recommendation: str = ""
    patterns: StagnationPatterns = Field(default_factory=StagnationPatterns)
    similarity_trend: List[float] = []
    alternative_suggestions: List[str] = []


class CompletionDecision(BaseModel):
    is_complete: bool
    reason: str
    message: str = ""
    next_iteration_expected: bool = True


class TerminationDecision(BaseModel):
    should_terminate: bool = False
    reason: str = ""
    failure_rate: float = 0.0
    critical_issues: List[str] = []
    final_assessment: str = ""
    category: str = TERMINATION_FAILURE
