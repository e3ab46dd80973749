"""
Judge Agent
===========
Produces a Review for one candidate by driving the external judge.

Flow:
    build request → run judge process (bounded by the depth-plan timeout)
    → parse stdout → Review

Failure handling:
    Every failure is turned into a typed AuditorError and paired with a
    fallback Review (verdict "reject", score 50) instead of propagating raw:

        executable missing    → JudgeNotAvailableError (critical, non-recoverable)
        timeout               → JudgeTimeoutError      (not retried)
        non-zero exit         → JudgeError
        unparseable output    → JudgeResponseError
        anything else         → classify_error()

    The caller decides what a non-recoverable error means for the session.
    Cancellation is never converted; it propagates to the caller.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from auditor.core.constants import VERDICT_REJECT
from auditor.core.errors import (
    AuditorError,
    JudgeError,
    JudgeNotAvailableError,
    JudgeTimeoutError,
    classify_error,
)
from auditor.executor.judge_executor import run_judge_process
from auditor.llm.prompts import DEFAULT_DIMENSION_NAMES, build_judge_request
from auditor.models.complexity import AuditDepthPlan
from auditor.models.review import DimensionScore, JudgeCard, Review
from auditor.models.session import SessionConfig
from auditor.parser.review_parser import parse_judge_output

logger = logging.getLogger(__name__)

FALLBACK_SCORE = 50
FALLBACK_MODEL = "fallback"


@dataclass
class JudgeOutcome:
    """Review plus the error that forced a fallback, if any."""
    review: Review
    error: Optional[AuditorError] = None

    @property
    def is_fallback(self) -> bool:
        return self.error is not None


def build_fallback_review(error: AuditorError) -> Review:
    """
    Synthetic review used when the judge could not produce one.

    Parameters
    ----------
    error : AuditorError
        The classified failure; its message becomes the summary.

    Returns
    -------
    Review
        verdict "reject", overall 50, one "fallback" judge card.
    """
    return Review(
        overall=FALLBACK_SCORE,
        dimensions=[DimensionScore(name=n, score=FALLBACK_SCORE) for n in DEFAULT_DIMENSION_NAMES],
        verdict=VERDICT_REJECT,
        summary=f"Judge unavailable, fallback review used: {error.message}",
        inline=[],
        citations=[],
        iterations=1,
        judge_cards=[JudgeCard(model=FALLBACK_MODEL, score=FALLBACK_SCORE, notes=error.category)],
    )


class JudgeAgent:
    """
    Thin wrapper around the judge executor.

    Parameters
    ----------
    executable : str, optional
        Judge binary; JUDGE_EXECUTABLE when omitted.
    runner : coroutine function, optional
        Replaces run_judge_process (tests, alternative transports).
    """

    def __init__(self, executable: Optional[str] = None, runner=None):
        self.executable = executable
        self._run = runner or run_judge_process

    async def review(
        self,
        candidate: str,
        session_config: SessionConfig,
        loop: int,
        plan: AuditDepthPlan,
        context_id: Optional[str] = None,
    ) -> JudgeOutcome:
        request = build_judge_request(candidate, session_config, loop, plan, context_id)
        try:
            execution = await self._run(request, plan.timeout_seconds, executable=self.executable)
            if execution.not_found:
                raise JudgeNotAvailableError(
                    execution.error,
                    context={"executable": self.executable, "loop": loop},
                    component="agents.judge_agent",
                )
            if execution.timed_out:
                raise JudgeTimeoutError(
                    execution.error,
                    context={"timeout_seconds": plan.timeout_seconds, "loop": loop},
                    component="agents.judge_agent",
                )
            if execution.exit_code != 0:
                raise JudgeError(
                    execution.error or f"Judge exited with code {execution.exit_code}",
                    context={"exit_code": execution.exit_code, "stderr": execution.stderr[-500:], "loop": loop},
                    component="agents.judge_agent",
                )
            review = parse_judge_output(execution.stdout)
        except AuditorError as e:
            logger.error("Judge failed at loop %d [%s/%s]: %s", loop, e.category, e.severity, e.message)
            return JudgeOutcome(review=build_fallback_review(e), error=e)
        except Exception as e:
            error = classify_error(e, component="agents.judge_agent")
            logger.exception("Unexpected judge failure at loop %d, classified as %s", loop, error.category)
            return JudgeOutcome(review=build_fallback_review(error), error=error)

        logger.info("Judge review at loop %d: score=%.1f verdict=%s", loop, review.overall, review.verdict)
        return JudgeOutcome(review=review)
