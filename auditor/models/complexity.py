"""
Complexity Models
=================
ComplexityProfile — lexical metrics of one candidate plus a derived 0–100
                    overall score.
AuditDepthPlan    — how hard the judge should look at it: depth level,
                    timeout, top-3 focus areas, recommendations.
"""
from pydantic import BaseModel, Field
from typing import List


class HalsteadMetrics(BaseModel):
    volume: float = 0.0
    difficulty: float = 0.0
    effort: float = 0.0


class ComplexityProfile(BaseModel):
    cyclomatic: int = 1
    cognitive: int = 1
    lines_of_code: int = 0
    function_count: int = 0
    class_count: int = 0
    max_nesting: int = 0
    dependency_count: int = 0
    halstead: HalsteadMetrics = Field(default_factory=HalsteadMetrics)
    overall: int = Field(default=0, ge=0, le=100)


class AuditDepthPlan(BaseModel):
    depth: str
    timeout_seconds: float
    focus_areas: List[str] = []
    recommendations: List[str] = []
    justification: str = ""
