"""
Session Models
==============
Pydantic models for the durable record of one audit session.

SessionConfig (immutable per session unless explicitly edited):
    task         — what the judge is asked to audit
    scope        — "diff" | "paths" | "workspace"
    paths        — required iff scope == "paths"; "paths" without any
                   paths falls back to "workspace"
    threshold    — acceptance score handed to the judge budget (0–100)
    max_cycles   — judge-internal cycles per review (1–10)
    candidates   — candidates the judge may consider (1–5)
    judges       — judge identifiers, never empty
    apply_fixes  — whether the judge may write fixes

IterationRecord — one loop: loop index, candidate text, review, timestamp.
                  Append-only, never mutated after creation.

SessionState invariants:
    - current_loop == len(iterations)
    - is_complete  <=> completion_reason is set
    - a complete session only changes metadata / updated_at
"""
from datetime import datetime, timezone
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Any, Dict, List, Optional

from auditor.core.constants import SCOPES, SCOPE_DIFF, SCOPE_PATHS, SCOPE_WORKSPACE
from auditor.models.review import Review
from auditor.models.decisions import StagnationVerdict

DEFAULT_TASK = "Audit and improve the provided candidate"
DEFAULT_JUDGES = ["internal"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionConfig(BaseModel):
    task: str = DEFAULT_TASK
    scope: str = SCOPE_DIFF
    paths: List[str] = []
    threshold: int = Field(default=85, ge=0, le=100)
    max_cycles: int = Field(default=1, ge=1, le=10)
    candidates: int = Field(default=1, ge=1, le=5)
    judges: List[str] = Field(default_factory=lambda: list(DEFAULT_JUDGES))
    apply_fixes: bool = False

    @field_validator("scope")
    @classmethod
    def known_scope(cls, v):
        if v not in SCOPES:
            raise ValueError(f"scope must be one of {sorted(SCOPES)}")
        return v

    @field_validator("judges")
    @classmethod
    def non_empty_judges(cls, v):
        return v or list(DEFAULT_JUDGES)

    @model_validator(mode="after")
    def paths_scope_needs_paths(self):
        if self.scope == SCOPE_PATHS and not self.paths:
            self.scope = SCOPE_WORKSPACE
        return self


class IterationRecord(BaseModel):
    loop: int
    candidate: str
    review: Review
    timestamp: datetime = Field(default_factory=utc_now)


class SessionState(BaseModel):
    id: str
    context_id: Optional[str] = None        # judge-side conversation id
    config: SessionConfig = Field(default_factory=SessionConfig)
    iterations: List[IterationRecord] = []
    current_loop: int = 0
    is_complete: bool = False
    completion_reason: Optional[str] = None
    stagnation: Optional[StagnationVerdict] = None
    last_review: Optional[Review] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    metadata: Dict[str, Any] = {}

    def score_progression(self) -> List[float]:
        return [it.review.overall for it in self.iterations]

    def iteration_for_loop(self, loop: int) -> Optional[IterationRecord]:
        for record in self.iterations:
            if record.loop == loop:
                return record
        return None
