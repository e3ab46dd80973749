"""
Review Model
============
Pydantic models for one judge review of a candidate.

Fields:
    overall      — aggregate score 0–100 (clamped on construction)
    dimensions   — List[DimensionScore], named rubric sub-scores
    verdict      — "pass" | "revise" | "reject"
    summary      — free-text judge summary
    inline       — List[InlineFinding] (file path, line, comment)
    citations    — source references quoted by the judge
    iterations   — judge-internal cycles consumed producing this review
    judge_cards  — List[JudgeCard], one score card per judge model

Used by:
    - IterationRecord (one review per loop)
    - Stagnation Detector (finding locations, score deltas)
    - Response Builder (improvements, critical issues)
"""
from pydantic import BaseModel, field_validator
from typing import List

from auditor.core.constants import VERDICTS, VERDICT_REVISE


def _clamp_score(value) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(100.0, score))


class DimensionScore(BaseModel):
    name: str
    score: float = 0.0

    @field_validator("score", mode="before")
    @classmethod
    def clamp(cls, v):
        return _clamp_score(v)


class InlineFinding(BaseModel):
    path: str = ""
    line: int = 0
    comment: str = ""

    @property
    def location(self) -> str:
        return f"{self.path}:{self.line}"

    def is_actionable(self) -> bool:
        """A finding needs a path, a positive line and a non-blank comment."""
        return bool(self.path.strip()) and self.line > 0 and bool(self.comment.strip())


class JudgeCard(BaseModel):
    model: str
    score: float = 0.0
    notes: str = ""

    @field_validator("score", mode="before")
    @classmethod
    def clamp(cls, v):
        return _clamp_score(v)


class Review(BaseModel):
    overall: float = 0.0
    dimensions: List[DimensionScore] = []
    verdict: str = VERDICT_REVISE
    summary: str = ""
    inline: List[InlineFinding] = []
    citations: List[str] = []
    iterations: int = 1
    judge_cards: List[JudgeCard] = []

    @field_validator("overall", mode="before")
    @classmethod
    def clamp_overall(cls, v):
        return _clamp_score(v)

    @field_validator("verdict", mode="before")
    @classmethod
    def normalise_verdict(cls, v):
        verdict = str(v or "").strip().lower()
        return verdict if verdict in VERDICTS else VERDICT_REVISE
