"""
Response Builder
================
Turns the controller's decisions into structured, prioritised feedback.

    build(standard_reply, review=None, completion=None, session=None,
          stagnation=None, termination=None) -> EnhancedReply

Every argument after the first is optional. A derived block is only built
when the inputs it is derived from were supplied; nothing is invented:

    review       → feedback (improvements, critical issues, next steps, progress)
    completion   → completion_status
    session      → loop_info, session_metadata
    termination  → termination_info

Improvements:
    one per actionable inline finding (path, line and comment all present),
    categorised by keyword (security / performance / style / other), ranked
    critical → high → medium → low, capped at max_improvements.

Next steps:
    stagnant → step 1 "Break out of stagnation pattern" (critical), then the
    detector's alternative suggestions; otherwise the top improvements, the
    termination's final assessment when present, then a verdict-driven step.
"""
import logging
from typing import List, Optional

from auditor.core import config
from auditor.core.constants import (
    PRIORITY_CRITICAL,
    PRIORITY_HIGH,
    PRIORITY_MEDIUM,
    PRIORITY_RANK,
    TERMINATION_FAILURE,
    TERMINATION_MANUAL,
    TERMINATION_STAGNATION,
    TERMINATION_TIMEOUT,
    TREND_DECLINING,
    TREND_FLAT,
    TREND_IMPROVING,
    TREND_STAGNANT,
    VERDICT_REJECT,
    VERDICT_REVISE,
)
from auditor.models.decisions import CompletionDecision, StagnationVerdict, TerminationDecision
from auditor.models.reply import (
    CompletionStatus,
    CriticalIssue,
    EnhancedReply,
    Feedback,
    Improvement,
    LoopInfo,
    NextStep,
    ProgressAssessment,
    SessionMetadata,
    StandardReply,
    TerminationInfo,
)
from auditor.models.review import Review
from auditor.models.session import SessionState
from auditor.parser.classification import classify_finding, extract_action
from auditor.services.completion_evaluator import CompletionCriteria, threshold_for

_MAX_IMPROVEMENT_STEPS = 3

_TREND_RECOMMENDATIONS = {
    TREND_IMPROVING: "Continue current approach with refinements",
    TREND_DECLINING: "Review recent changes and consider reverting problematic modifications",
    TREND_FLAT: "Focus on addressing different types of issues",
    TREND_STAGNANT: "Try alternative approaches to break stagnation",
}

_TREND_FACTORS = {
    TREND_IMPROVING: "Score improved since the previous iteration",
    TREND_DECLINING: "Score declined since the previous iteration",
    TREND_FLAT: "Score unchanged since the previous iteration",
    TREND_STAGNANT: "Stagnation detected in recent iterations",
}

# (minimum score, factor, recommendation), checked top-down
_SCORE_BANDS = [
    (90, "High audit score achieved", "Focus on final polish and edge cases"),
    (70, "Good progress with room for improvement", "Address remaining medium-priority issues"),
    (20, "Moderate progress but significant work needed", "Focus on high-priority issues first"),
    (0, "Low audit score indicates fundamental issues", "Consider redesigning approach or seeking guidance"),
]

_TERMINATION_RECOMMENDATIONS = {
    TERMINATION_STAGNATION: [
        "Try a completely different approach or implementation strategy",
        "Consider breaking the problem into smaller, more manageable pieces",
        "Seek additional context or requirements clarification",
    ],
    TERMINATION_TIMEOUT: [
        "Focus on the most critical issues identified in the final assessment",
        "Consider manual review of the remaining issues",
        "Use the current implementation as a foundation for future iterations",
    ],
    TERMINATION_FAILURE: [
        "Review the fundamental approach and requirements",
        "Consider starting with a simpler implementation",
        "Seek guidance on the specific technical challenges encountered",
    ],
    TERMINATION_MANUAL: [
        "Resume with a new session once the remaining issues are addressed",
    ],
}


def average_improvement(scores: List[float]) -> float:
    """Mean of consecutive score deltas; 0.0 with fewer than two scores."""
    if len(scores) < 2:
        return 0.0
    deltas = [b - a for a, b in zip(scores, scores[1:])]
    return round(sum(deltas) / len(deltas), 2)


def termination_category(termination: TerminationDecision) -> str:
    if termination.category == TERMINATION_MANUAL:
        return TERMINATION_MANUAL
    reason = termination.reason.lower()
    if "maximum" in reason or "cap" in reason:
        return TERMINATION_TIMEOUT
    if "stagnation" in reason:
        return TERMINATION_STAGNATION
    return TERMINATION_FAILURE


class ResponseBuilder:
    """
    Parameters
    ----------
    criteria : CompletionCriteria, optional
        Supplies the hard cap and band thresholds shown in the reply.
    max_improvements : int
        Cap on feedback.improvements.
    max_critical_issues : int
        Cap on feedback.critical_issues.
    logger : logging.Logger, optional
    """

    def __init__(
        self,
        criteria: Optional[CompletionCriteria] = None,
        max_improvements: int = config.MAX_IMPROVEMENTS,
        max_critical_issues: int = config.MAX_CRITICAL_ISSUES,
        logger: Optional[logging.Logger] = None,
    ):
        self.criteria = criteria or CompletionCriteria.from_config()
        self.max_improvements = max_improvements
        self.max_critical_issues = max_critical_issues
        self._logger = logger or logging.getLogger(__name__)

    def build(
        self,
        standard_reply: StandardReply,
        review: Optional[Review] = None,
        completion: Optional[CompletionDecision] = None,
        session: Optional[SessionState] = None,
        stagnation: Optional[StagnationVerdict] = None,
        termination: Optional[TerminationDecision] = None,
    ) -> EnhancedReply:
        reply = EnhancedReply(**standard_reply.model_dump())

        if review is not None:
            reply.feedback = self._feedback(review, session, stagnation, termination)
        if completion is not None:
            reply.completion_status = self._completion_status(completion, review, session, standard_reply)
        if session is not None:
            reply.loop_info = self._loop_info(session, stagnation)
            reply.session_metadata = self._session_metadata(session)
        if termination is not None:
            reply.termination_info = self._termination_info(termination)

        self._logger.debug(
            "Built reply for %s: blocks=%s",
            reply.session_id,
            [k for k in ("feedback", "completion_status", "loop_info", "termination_info", "session_metadata")
             if getattr(reply, k) is not None],
        )
        return reply

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------
    def extract_improvements(self, review: Review) -> List[Improvement]:
        improvements = []
        for finding in review.inline:
            if not finding.is_actionable():
                continue
            cls = classify_finding(finding.comment)
            improvements.append(Improvement(
                category=cls.category,
                priority=cls.priority,
                description=finding.comment,
                action=extract_action(finding.comment),
                path=finding.path,
                line=finding.line,
            ))
        # sorted() is stable, so judge order is kept within a priority
        improvements = sorted(improvements, key=lambda i: PRIORITY_RANK.get(i.priority, 99))
        return improvements[:self.max_improvements]

    def extract_critical_issues(self, review: Review) -> List[CriticalIssue]:
        issues = []
        for finding in review.inline:
            if not finding.is_actionable():
                continue
            cls = classify_finding(finding.comment)
            if cls.is_critical:
                issues.append(CriticalIssue(
                    description=finding.comment,
                    category=cls.category,
                    path=finding.path,
                    line=finding.line,
                    resolution=cls.resolution,
                ))
        return issues[:self.max_critical_issues]

    def _next_steps(
        self,
        review: Review,
        improvements: List[Improvement],
        stagnation: Optional[StagnationVerdict],
        termination: Optional[TerminationDecision],
    ) -> List[NextStep]:
        steps: List[NextStep] = []

        def add(action: str, rationale: str, priority: str) -> None:
            steps.append(NextStep(step=len(steps) + 1, action=action, rationale=rationale, priority=priority))

        if stagnation is not None and stagnation.is_stagnant:
            add("Break out of stagnation pattern", stagnation.recommendation, PRIORITY_CRITICAL)
            for suggestion in stagnation.alternative_suggestions:
                add(suggestion, "Alternative approach to overcome current obstacles", PRIORITY_HIGH)
            return steps

        for improvement in improvements[:_MAX_IMPROVEMENT_STEPS]:
            add(
                improvement.action,
                f"{improvement.category} issue at {improvement.path}:{improvement.line}: {improvement.description}",
                improvement.priority,
            )
        if termination is not None and termination.final_assessment:
            add("Review the final assessment before deciding how to continue",
                termination.final_assessment, PRIORITY_HIGH)
        if review.verdict == VERDICT_REVISE:
            add("Implement remaining improvements and resubmit",
                "Code needs revision to meet quality standards", PRIORITY_MEDIUM)
        elif review.verdict == VERDICT_REJECT:
            add("Redesign approach to address fundamental issues",
                "Current implementation has significant problems", PRIORITY_HIGH)
        return steps

    def assess_progress(
        self,
        review: Review,
        session: Optional[SessionState],
        stagnation: Optional[StagnationVerdict],
    ) -> ProgressAssessment:
        factors: List[str] = []
        recommendations: List[str] = []

        if stagnation is not None and stagnation.is_stagnant:
            trend = TREND_STAGNANT
        else:
            scores = session.score_progression() if session is not None else []
            if len(scores) < 2:
                trend = TREND_FLAT
                factors.append("Insufficient history to determine a trend")
            else:
                delta = scores[-1] - scores[-2]
                trend = TREND_IMPROVING if delta > 0 else TREND_DECLINING if delta < 0 else TREND_FLAT

        if not factors:
            factors.append(_TREND_FACTORS[trend])
        recommendations.append(_TREND_RECOMMENDATIONS[trend])

        for minimum, factor, recommendation in _SCORE_BANDS:
            if review.overall >= minimum:
                factors.append(factor)
                recommendations.append(recommendation)
                break

        return ProgressAssessment(trend=trend, factors=factors, recommendations=recommendations)

    def _feedback(
        self,
        review: Review,
        session: Optional[SessionState],
        stagnation: Optional[StagnationVerdict],
        termination: Optional[TerminationDecision],
    ) -> Feedback:
        improvements = self.extract_improvements(review)
        critical = self.extract_critical_issues(review)
        progress = self.assess_progress(review, session, stagnation)

        summary = f'Audit completed with {review.overall:g}% score and "{review.verdict}" verdict. '
        if critical:
            plural = "s" if len(critical) > 1 else ""
            summary += f"{len(critical)} critical issue{plural} identified that require immediate attention. "
        if improvements:
            plural = "s" if len(improvements) > 1 else ""
            summary += f"{len(improvements)} improvement suggestion{plural} provided. "
        summary += f"Progress trend: {progress.trend}. "
        if progress.recommendations:
            summary += f"Key recommendation: {progress.recommendations[0]}"

        return Feedback(
            summary=summary.strip(),
            improvements=improvements,
            critical_issues=critical,
            next_steps=self._next_steps(review, improvements, stagnation, termination),
            progress=progress,
        )

    # ------------------------------------------------------------------
    # Status blocks
    # ------------------------------------------------------------------
    def _completion_status(
        self,
        completion: CompletionDecision,
        review: Optional[Review],
        session: Optional[SessionState],
        standard_reply: StandardReply,
    ) -> CompletionStatus:
        loop = session.current_loop if session is not None else standard_reply.thought_number
        if review is not None:
            score = review.overall
        elif session is not None and session.last_review is not None:
            score = session.last_review.overall
        else:
            score = None

        hard_cap = self.criteria.hard_cap
        progress = 1.0 if completion.is_complete else min(1.0, loop / hard_cap)
        return CompletionStatus(
            is_complete=completion.is_complete,
            reason=completion.reason,
            current_loop=loop,
            score=score,
            threshold=threshold_for(loop, self.criteria),
            message=completion.message,
            progress=round(progress, 4),
        )

    def _loop_info(self, session: SessionState, stagnation: Optional[StagnationVerdict]) -> LoopInfo:
        scores = session.score_progression()
        verdict = stagnation if stagnation is not None else session.stagnation
        return LoopInfo(
            current_loop=session.current_loop,
            hard_cap=self.criteria.hard_cap,
            loops_remaining=max(0, self.criteria.hard_cap - session.current_loop),
            score_progression=scores,
            average_improvement=average_improvement(scores),
            stagnation_detected=bool(verdict and verdict.is_stagnant),
        )

    def _session_metadata(self, session: SessionState) -> SessionMetadata:
        scores = session.score_progression()
        return SessionMetadata(
            session_id=session.id,
            context_id=session.context_id,
            created_at=session.created_at,
            updated_at=session.updated_at,
            loop_count=session.current_loop,
            hard_cap=self.criteria.hard_cap,
            loops_remaining=max(0, self.criteria.hard_cap - session.current_loop),
            score_progression=scores,
            average_improvement=average_improvement(scores),
            config={
                "threshold": session.config.threshold,
                "max_cycles": session.config.max_cycles,
                "judges": list(session.config.judges),
                "scope": session.config.scope,
            },
        )

    def _termination_info(self, termination: TerminationDecision) -> TerminationInfo:
        category = termination_category(termination)
        return TerminationInfo(
            reason=termination.reason,
            category=category,
            failure_rate=round(termination.failure_rate, 2),
            critical_issues=list(termination.critical_issues),
            final_assessment=termination.final_assessment,
            recommendations=list(_TERMINATION_RECOMMENDATIONS[category]),
        )
