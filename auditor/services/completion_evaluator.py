"""
Completion Evaluator
====================
Decides after every iteration whether the audit loop is done.

    evaluate(current_score, current_loop, stagnation, criteria) -> CompletionDecision
    should_terminate(session, stagnation)                      -> TerminationDecision

Tiered acceptance:
    The required score is a decreasing step function of the loop index,
    read from a band table (defaults 10:95, 15:90, 20:85). Loops below a
    band's max_loop use that band; loops past the last band keep using the
    last band until the hard cap (default 25), where the session is
    force-accepted with MAX_LOOPS_REACHED.

Decision order (first match wins):
    1. stagnation flagged         → complete, STAGNATION_DETECTED, no next iteration
    2. score ≥ band threshold     → complete, the band's reason code
    3. loop ≥ hard cap            → complete, MAX_LOOPS_REACHED
    4. otherwise                  → not complete, IN_PROGRESS, gap message

Termination analysis (reported alongside the decision):
    failure rate     — % of iterations with verdict "reject"
    critical issues  — last 3 iterations: reject summaries plus inline comments
                       mentioning critical / security / error, deduped, max 10
    final assessment — multi-line summary, only produced when terminating
"""
import logging
from typing import List, Optional

from pydantic import BaseModel, field_validator, model_validator

from auditor.core import config
from auditor.core.constants import (
    VERDICT_REJECT,
    TERMINATION_TIMEOUT,
    TERMINATION_STAGNATION,
    TERMINATION_MANUAL,
    TERMINATION_FAILURE,
)
from auditor.core.errors import InvalidConfigValueError
from auditor.models.decisions import CompletionDecision, StagnationVerdict, TerminationDecision
from auditor.models.session import SessionState
from auditor.utils import completion_reasons as reasons

_RECENT_AUDITS = 3
_MAX_TERMINATION_ISSUES = 10
_ASSESSMENT_ISSUES = 5
_CRITICAL_MARKERS = ("critical", "security", "error")


# ---------------------------------------------------------------------------
# Criteria
# ---------------------------------------------------------------------------
class CompletionBand(BaseModel):
    max_loop: int           # band applies to loops strictly below this
    score: int
    reason: str = ""

    @field_validator("score")
    @classmethod
    def score_range(cls, v):
        if not 0 <= v <= 100:
            raise ValueError("band score must be within 0..100")
        return v

    @model_validator(mode="after")
    def default_reason(self):
        if not self.reason:
            self.reason = f"score_{self.score}_at_{self.max_loop}"
        return self


class CompletionCriteria(BaseModel):
    bands: List[CompletionBand]
    hard_cap: int = 25

    @model_validator(mode="after")
    def check_monotonic(self):
        if not self.bands:
            raise ValueError("at least one completion band is required")
        if self.hard_cap < 1:
            raise ValueError("hard_cap must be positive")
        for prev, curr in zip(self.bands, self.bands[1:]):
            if curr.max_loop <= prev.max_loop:
                raise ValueError("band max_loop values must increase")
            if curr.score > prev.score:
                raise ValueError("band scores must not increase with loop index")
        return self

    @classmethod
    def default(cls) -> "CompletionCriteria":
        return cls(
            bands=[
                CompletionBand(max_loop=10, score=95, reason=reasons.SCORE_95_AT_10),
                CompletionBand(max_loop=15, score=90, reason=reasons.SCORE_90_AT_15),
                CompletionBand(max_loop=20, score=85, reason=reasons.SCORE_85_AT_20),
            ],
            hard_cap=25,
        )

    @classmethod
    def from_config(cls, path: Optional[str] = None) -> "CompletionCriteria":
        """Build criteria from COMPLETION_BANDS / HARD_CAP / COMPLETION_CRITERIA_FILE."""
        raw = config.completion_criteria_source(path)
        try:
            return cls(**raw)
        except ValueError as e:
            raise InvalidConfigValueError(
                "completion_criteria", raw, "monotonic bands and a positive hard cap",
                context={"detail": str(e)}, component="services.completion_evaluator",
            )


def band_for(loop: int, criteria: CompletionCriteria) -> CompletionBand:
    """
    Band governing the given loop index.

    Pure function of the loop and the band table; loops beyond the last band
    stay in the last band.
    """
    for band in criteria.bands:
        if loop < band.max_loop:
            return band
    return criteria.bands[-1]


def threshold_for(loop: int, criteria: CompletionCriteria) -> int:
    return band_for(loop, criteria).score


class CompletionEvaluator:
    """
    Tiered completion evaluation plus termination analysis.

    Parameters
    ----------
    criteria : CompletionCriteria, optional
        Band table and hard cap. Loaded from configuration when omitted.
    logger : logging.Logger, optional
    """

    def __init__(self, criteria: Optional[CompletionCriteria] = None, logger: Optional[logging.Logger] = None):
        self.criteria = criteria or CompletionCriteria.from_config()
        self._logger = logger or logging.getLogger(__name__)

    @property
    def hard_cap(self) -> int:
        return self.criteria.hard_cap

    def evaluate(
        self,
        current_score: float,
        current_loop: int,
        stagnation: Optional[StagnationVerdict] = None,
        criteria: Optional[CompletionCriteria] = None,
    ) -> CompletionDecision:
        """
        Decide whether the loop is complete.

        Parameters
        ----------
        current_score : float
            Overall score of the latest review (0–100).
        current_loop : int
            Loop index of the latest iteration.
        stagnation : StagnationVerdict, optional
            Latest detector verdict. A stagnant verdict overrides everything.
        criteria : CompletionCriteria, optional
            Overrides the evaluator's criteria for this call.

        Returns
        -------
        CompletionDecision
        """
        criteria = criteria or self.criteria

        if stagnation is not None and stagnation.is_stagnant:
            return CompletionDecision(
                is_complete=True,
                reason=reasons.STAGNATION_DETECTED,
                message=f"Stagnation detected at loop {stagnation.detected_at_loop}. {stagnation.recommendation}",
                next_iteration_expected=False,
            )

        band = band_for(current_loop, criteria)
        if current_score >= band.score:
            self._logger.info(
                "Completion reached: score %.1f >= %d at loop %d (%s)",
                current_score, band.score, current_loop, band.reason,
            )
            return CompletionDecision(
                is_complete=True,
                reason=band.reason,
                message=f"Completion achieved: {current_score:g}% score meets {band.score}% threshold at loop {current_loop}",
                next_iteration_expected=False,
            )

        if current_loop >= criteria.hard_cap:
            self._logger.warning("Hard cap of %d loops reached with score %.1f", criteria.hard_cap, current_score)
            return CompletionDecision(
                is_complete=True,
                reason=reasons.MAX_LOOPS_REACHED,
                message=f"Maximum loops ({criteria.hard_cap}) reached. Terminating with current results.",
                next_iteration_expected=False,
            )

        return CompletionDecision(
            is_complete=False,
            reason=reasons.IN_PROGRESS,
            message=self._progress_message(current_score, current_loop, criteria),
            next_iteration_expected=True,
        )

    @staticmethod
    def _progress_message(score: float, loop: int, criteria: CompletionCriteria) -> str:
        band = band_for(loop, criteria)
        remaining = max(0, criteria.hard_cap - loop)
        message = (
            f"Score {score:g}% needs {band.score - score:g}% improvement to reach "
            f"{band.score}% threshold. {remaining} loops remaining."
        )
        later = [b for b in criteria.bands if b.max_loop > band.max_loop]
        if later and loop < band.max_loop:
            message += f" Threshold relaxes to {later[0].score}% at loop {band.max_loop}."
        return message

    # ------------------------------------------------------------------
    # Termination analysis
    # ------------------------------------------------------------------
    def should_terminate(
        self,
        session: SessionState,
        stagnation: Optional[StagnationVerdict] = None,
    ) -> TerminationDecision:
        """
        Analyse whether the session should stop and summarise its state.

        Parameters
        ----------
        session : SessionState
            Session including the latest iteration.
        stagnation : StagnationVerdict, optional
            Latest detector verdict; falls back to session.stagnation.

        Returns
        -------
        TerminationDecision
        """
        stagnation = stagnation if stagnation is not None else session.stagnation
        failure_rate = failure_rate_of(session)
        issues = critical_issues_of(session)
        stagnant = bool(stagnation and stagnation.is_stagnant)

        if session.current_loop >= self.hard_cap:
            reason = f"Maximum loops ({self.hard_cap}) reached without achieving completion criteria"
            category = TERMINATION_TIMEOUT
        elif stagnant:
            reason = f"Stagnation detected: {stagnation.recommendation}"
            category = TERMINATION_STAGNATION
        elif session.completion_reason == reasons.MANUAL_STOP:
            reason = "Session stopped manually"
            category = TERMINATION_MANUAL
        else:
            return TerminationDecision(
                should_terminate=False,
                reason="Completion criteria not yet met, continuing iterations",
                failure_rate=failure_rate,
                critical_issues=issues,
                category=TERMINATION_FAILURE,
            )

        return TerminationDecision(
            should_terminate=True,
            reason=reason,
            failure_rate=failure_rate,
            critical_issues=issues,
            final_assessment=final_assessment(session, failure_rate, issues, stagnation if stagnant else None),
            category=category,
        )


# ---------------------------------------------------------------------------
# Termination helpers
# ---------------------------------------------------------------------------
def failure_rate_of(session: SessionState) -> float:
    if not session.iterations:
        return 0.0
    rejected = sum(1 for it in session.iterations if it.review.verdict == VERDICT_REJECT)
    return rejected / len(session.iterations) * 100


def critical_issues_of(session: SessionState) -> List[str]:
    issues: List[str] = []
    for record in session.iterations[-_RECENT_AUDITS:]:
        if record.review.verdict == VERDICT_REJECT:
            issues.append(f"Loop {record.loop}: {record.review.summary}")
        for finding in record.review.inline:
            lowered = finding.comment.lower()
            if any(marker in lowered for marker in _CRITICAL_MARKERS):
                issues.append(f"{finding.path}:{finding.line} - {finding.comment}")
    # dict preserves first-seen order
    return list(dict.fromkeys(issues))[:_MAX_TERMINATION_ISSUES]


def final_assessment(
    session: SessionState,
    failure_rate: float,
    issues: List[str],
    stagnation: Optional[StagnationVerdict] = None,
) -> str:
    last = session.last_review
    score = f"{last.overall:g}" if last else "0"
    verdict = last.verdict if last else "unknown"

    lines = [
        f"Final Assessment after {session.current_loop} loops:",
        f"- Final Score: {score}%",
        f"- Final Verdict: {verdict}",
        f"- Failure Rate: {failure_rate:.1f}%",
    ]
    if issues:
        lines.append("")
        lines.append("Critical Issues Remaining:")
        for i, issue in enumerate(issues[:_ASSESSMENT_ISSUES], start=1):
            lines.append(f"{i}. {issue}")
        if len(issues) > _ASSESSMENT_ISSUES:
            lines.append(f"... and {len(issues) - _ASSESSMENT_ISSUES} more issues")
    lines.append("")
    if stagnation is not None:
        lines.append(f"Recommendation: {stagnation.recommendation}")
    else:
        lines.append("Recommendation: Consider manual review or alternative approach for remaining issues.")
    return "\n".join(lines)
