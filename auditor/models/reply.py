"""
Reply Models
============
Pydantic models returned to the host layer for every submitted thought.

StandardReply carries the fields every reply has (thought bookkeeping and the
raw review). EnhancedReply adds optional derived blocks; a block is None when
the input it is derived from was not available, and the API serialises with
exclude_none so absent blocks disappear from the wire.

Derived blocks:
    feedback          — improvements, critical issues, next steps, progress
    completion_status — evaluator reason, loop, score, threshold, progress
    loop_info         — loop counters and score progression
    termination_info  — why the loop stopped and what to do next
    session_metadata  — session identity, timestamps and config summary
"""
from datetime import datetime
from pydantic import BaseModel
from typing import Any, Dict, List, Optional

from auditor.models.review import Review


class Improvement(BaseModel):
    category: str
    priority: str
    description: str
    action: str
    path: str
    line: int


class CriticalIssue(BaseModel):
    description: str
    category: str
    path: str
    line: int
    resolution: str = ""


class NextStep(BaseModel):
    step: int
    action: str
    rationale: str = ""
    priority: str


class ProgressAssessment(BaseModel):
    trend: str
    factors: List[str] = []
    recommendations: List[str] = []


class Feedback(BaseModel):
    summary: str
    improvements: List[Improvement] = []
    critical_issues: List[CriticalIssue] = []
    next_steps: List[NextStep] = []
    progress: ProgressAssessment


class CompletionStatus(BaseModel):
    is_complete: bool
    reason: str
    current_loop: int
    score: Optional[float] = None
    threshold: int
    message: str = ""
    progress: float = 0.0           # 0.0–1.0, 1.0 once complete


class LoopInfo(BaseModel):
    current_loop: int
    hard_cap: int
    loops_remaining: int
    score_progression: List[float] = []
    average_improvement: float = 0.0
    stagnation_detected: bool = False


class TerminationInfo(BaseModel):
    reason: str
    category: str
    failure_rate: float = 0.0
    critical_issues: List[str] = []
    final_assessment: str = ""
    recommendations: List[str] = []


class SessionMetadata(BaseModel):
    session_id: str
    context_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    loop_count: int
    hard_cap: int
    loops_remaining: int
    score_progression: List[float] = []
    average_improvement: float = 0.0
    config: Dict[str, Any] = {}


class StandardReply(BaseModel):
    session_id: str
    thought_number: int = 1
    total_thoughts: int = 1
    next_thought_needed: bool = True
    thought_history_length: int = 0
    review: Optional[Review] = None
    error: Optional[Dict[str, Any]] = None


class EnhancedReply(StandardReply):
    feedback: Optional[Feedback] = None
    completion_status: Optional[CompletionStatus] = None
    loop_info: Optional[LoopInfo] = None
    termination_info: Optional[TerminationInfo] = None
    session_metadata: Optional[SessionMetadata] = None
