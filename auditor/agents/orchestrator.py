"""
Convergence Controller
======================
Drives one audit iteration per submitted thought and decides whether the
loop goes on.

Per-thought flow:
    parse inline config → load/create session → plan audit depth
    → judge → stagnation check → append iteration (one write)
    → completion decision → mark complete (when the loop ends)
    → EnhancedReply

Guarantees:
    - submissions for the same session are serialised by a per-session
      asyncio.Lock; different sessions never wait on each other, and a
      lock is dropped once no submission holds or waits on it
    - log records written while a session is locked carry its session id
    - a thought whose loop is already recorded is answered from the stored
      state; the judge is not called again
    - cancelling the judge call leaves the session in progress with no new
      iteration and records last_judge_call = "cancelled"
    - recoverable judge failures are recorded as a fallback iteration
      (verdict "reject", score 50) and reported in reply.error
    - non-recoverable judge failures (judge missing) are raised to the caller
      and nothing is appended
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from auditor.agents.judge_agent import JudgeAgent
from auditor.core.constants import DEFAULT_LANGUAGE
from auditor.core.errors import SessionError
from auditor.models.decisions import CompletionDecision, StagnationVerdict, TerminationDecision
from auditor.models.reply import EnhancedReply, StandardReply
from auditor.models.review import Review
from auditor.models.session import IterationRecord, SessionState
from auditor.parser.inline_config import parse_inline_config, strip_config_block
from auditor.services import complexity_analyzer
from auditor.services.completion_evaluator import CompletionEvaluator
from auditor.services.response_builder import ResponseBuilder
from auditor.services.stagnation_detector import StagnationDetector
from auditor.state.session_manager import SessionManager
from auditor.utils import completion_reasons as reasons
from auditor.utils.logging_config import current_session


class ConvergenceController:
    """
    Wires the convergence components together behind submit().

    Parameters
    ----------
    session_manager : SessionManager, optional
    detector : StagnationDetector, optional
    evaluator : CompletionEvaluator, optional
    builder : ResponseBuilder, optional
        Shares the evaluator's criteria when omitted.
    judge : JudgeAgent, optional
    depth_settings : complexity_analyzer.DepthSettings, optional
        Timeout tuning for the audit depth plan.
    logger : logging.Logger, optional
    """

    def __init__(
        self,
        session_manager: Optional[SessionManager] = None,
        detector: Optional[StagnationDetector] = None,
        evaluator: Optional[CompletionEvaluator] = None,
        builder: Optional[ResponseBuilder] = None,
        judge: Optional[JudgeAgent] = None,
        depth_settings: Optional[complexity_analyzer.DepthSettings] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.sessions = session_manager or SessionManager()
        self.detector = detector or StagnationDetector()
        self.evaluator = evaluator or CompletionEvaluator()
        self.builder = builder or ResponseBuilder(criteria=self.evaluator.criteria)
        self.judge = judge or JudgeAgent()
        self.depth_settings = depth_settings or complexity_analyzer.DepthSettings()
        self._logger = logger or logging.getLogger(__name__)
        # session id → [lock, holders + waiters]
        self._locks: Dict[str, list] = {}

    @asynccontextmanager
    async def _session_lock(self, session_id: str) -> AsyncIterator[None]:
        entry = self._locks.setdefault(session_id, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                token = current_session.set(session_id)
                try:
                    yield
                finally:
                    current_session.reset(token)
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[session_id]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def submit(
        self,
        session_id: str,
        thought: str,
        thought_number: Optional[int] = None,
        total_thoughts: int = 1,
        language: str = DEFAULT_LANGUAGE,
        context_id: Optional[str] = None,
    ) -> EnhancedReply:
        """
        Judge one candidate and decide whether the audit loop continues.

        Parameters
        ----------
        session_id : str
            Session key; the session is created on first use.
        thought : str
            Candidate text, optionally carrying a gan-config block.
        thought_number : int, optional
            Loop index of this candidate. Defaults to the next loop. A loop
            that is already recorded is replayed without judging again.
        total_thoughts : int
            Host's estimate of the number of thoughts.
        language : str
            Language used for complexity analysis.
        context_id : str, optional
            Judge-side conversation id stored on a new session.

        Returns
        -------
        EnhancedReply

        Raises
        ------
        JudgeNotAvailableError
            The judge cannot be run at all.
        SessionError
            The loop index skips ahead of the session.
        """
        async with self._session_lock(session_id):
            return await self._submit(session_id, thought, thought_number, total_thoughts, language, context_id)

    async def get_session(self, session_id: str) -> Optional[SessionState]:
        return await asyncio.to_thread(self.sessions.load, session_id)

    async def stop(self, session_id: str) -> EnhancedReply:
        """Close a session manually and return its final reply."""
        async with self._session_lock(session_id):
            await asyncio.to_thread(self.sessions.mark_complete, session_id, reasons.MANUAL_STOP)
            state = await asyncio.to_thread(self.sessions.load, session_id)
            self._logger.info("Session %s stopped manually at loop %d", session_id, state.current_loop)
            return self._replay(state, state.current_loop, state.current_loop)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------
    async def _submit(
        self,
        session_id: str,
        thought: str,
        thought_number: Optional[int],
        total_thoughts: int,
        language: str,
        context_id: Optional[str],
    ) -> EnhancedReply:
        parsed = parse_inline_config(thought)
        state = await asyncio.to_thread(self.sessions.get_or_create, session_id, parsed.config, context_id)

        if parsed.found:
            if state.iterations or state.is_complete:
                self._logger.warning("Session %s: inline config ignored after the first iteration", session_id)
            else:
                state = await asyncio.to_thread(self.sessions.update_config, session_id, parsed.config)

        loop = thought_number if thought_number is not None else state.current_loop + 1

        if state.iteration_for_loop(loop) is not None:
            self._logger.info("Session %s: loop %d already recorded, replaying", session_id, loop)
            return self._replay(state, loop, total_thoughts)
        if state.is_complete:
            self._logger.info("Session %s is complete (%s); not judging loop %d",
                              session_id, state.completion_reason, loop)
            return self._replay(state, state.current_loop, total_thoughts)
        if loop != state.current_loop + 1:
            raise SessionError(
                f"Out-of-order loop {loop} for session {session_id}; expected {state.current_loop + 1}",
                context={"session_id": session_id, "loop": loop, "expected": state.current_loop + 1},
                component="agents.orchestrator",
                recoverable=False,
                recovery_strategy="skip",
            )

        candidate = strip_config_block(thought) or thought
        profile = complexity_analyzer.analyze(candidate, language)
        depth_plan = complexity_analyzer.plan(profile, self.depth_settings)
        self._logger.info(
            "Session %s loop %d: complexity %d → %s audit, timeout %.0fs, focus %s",
            session_id, loop, profile.overall, depth_plan.depth,
            depth_plan.timeout_seconds, depth_plan.focus_areas,
        )

        try:
            outcome = await self.judge.review(candidate, state.config, loop, depth_plan, state.context_id)
        except asyncio.CancelledError:
            self._logger.warning("Session %s loop %d: judge call cancelled", session_id, loop)
            await asyncio.to_thread(self.sessions.update_metadata, session_id, last_judge_call="cancelled")
            raise

        if outcome.error is not None and not outcome.error.recoverable:
            self._logger.error("Session %s loop %d: aborting, %s", session_id, loop, outcome.error.message)
            await asyncio.to_thread(
                self.sessions.update_metadata, session_id,
                last_judge_call="failed", last_error=outcome.error.to_dict(),
            )
            raise outcome.error

        review = outcome.review
        prospective = IterationRecord(loop=loop, candidate=candidate, review=review)
        stagnation = self.detector.detect(list(state.iterations) + [prospective])

        state = await asyncio.to_thread(self.sessions.append, session_id, candidate, review, loop, stagnation)

        decision = self.evaluator.evaluate(review.overall, state.current_loop, stagnation)
        termination = self.evaluator.should_terminate(state, stagnation)

        if decision.is_complete:
            state = await asyncio.to_thread(self.sessions.mark_complete, session_id, decision.reason)

        standard = StandardReply(
            session_id=session_id,
            thought_number=loop,
            total_thoughts=max(total_thoughts, loop),
            next_thought_needed=decision.next_iteration_expected,
            thought_history_length=len(state.iterations),
            review=review,
            error=outcome.error.to_dict() if outcome.is_fallback else None,
        )
        return self._build(standard, review, decision, state, stagnation, termination)

    def _build(
        self,
        standard: StandardReply,
        review: Optional[Review],
        decision: CompletionDecision,
        state: SessionState,
        stagnation: Optional[StagnationVerdict],
        termination: TerminationDecision,
    ) -> EnhancedReply:
        return self.builder.build(
            standard,
            review=review,
            completion=decision,
            session=state,
            stagnation=stagnation,
            termination=termination if termination.should_terminate else None,
        )

    def _replay(self, state: SessionState, loop: int, total_thoughts: int) -> EnhancedReply:
        """Rebuild the reply for a recorded loop from stored state only."""
        record = state.iteration_for_loop(loop)
        latest = record is not None and record.loop == state.current_loop
        stagnation = state.stagnation if latest else None

        if record is not None:
            decision = self.evaluator.evaluate(record.review.overall, record.loop, stagnation)
        else:
            decision = CompletionDecision(
                is_complete=state.is_complete,
                reason=state.completion_reason or reasons.IN_PROGRESS,
                message="No iterations recorded",
                next_iteration_expected=not state.is_complete,
            )
        if state.is_complete:
            decision.next_iteration_expected = False
            if state.completion_reason == reasons.MANUAL_STOP:
                decision.is_complete = True
                decision.reason = reasons.MANUAL_STOP
                decision.message = "Session stopped manually"

        standard = StandardReply(
            session_id=state.id,
            thought_number=loop,
            total_thoughts=max(total_thoughts, loop),
            next_thought_needed=decision.next_iteration_expected,
            thought_history_length=len(state.iterations),
            review=record.review if record is not None else None,
        )
        termination = self.evaluator.should_terminate(state, stagnation)
        return self._build(
            standard,
            record.review if record is not None else None,
            decision,
            state,
            stagnation,
            termination,
        )
