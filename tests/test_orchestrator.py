"""
Convergence Controller Tests
============================
Full submit() pipeline with the judge mocked and sessions kept in memory.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from auditor.agents.judge_agent import JudgeAgent, JudgeOutcome, build_fallback_review
from auditor.agents.orchestrator import ConvergenceController
from auditor.core.errors import (
    JudgeNotAvailableError,
    JudgeTimeoutError,
    SessionError,
    SessionNotFoundError,
)
from auditor.models.review import Review
from auditor.models.session import SessionConfig
from auditor.services.complexity_analyzer import DepthSettings
from auditor.services.completion_evaluator import CompletionBand, CompletionCriteria, CompletionEvaluator
from auditor.services.session_store import MemorySessionStore
from auditor.services.stagnation_detector import StagnationDetector
from auditor.state.session_manager import SessionManager
from auditor.utils import completion_reasons as reasons


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _outcome(score, verdict="revise"):
    return JudgeOutcome(review=Review(overall=score, verdict=verdict, summary=f"score {score}"))


def _make_judge(*outcomes, side_effect=None):
    judge = MagicMock(spec=JudgeAgent)
    if side_effect is not None:
        judge.review = AsyncMock(side_effect=side_effect)
    elif len(outcomes) == 1:
        judge.review = AsyncMock(return_value=outcomes[0])
    else:
        judge.review = AsyncMock(side_effect=list(outcomes))
    return judge


def _make_controller(judge, criteria=None, detector=None):
    return ConvergenceController(
        session_manager=SessionManager(store=MemorySessionStore()),
        detector=detector or StagnationDetector(window_size=4, threshold=0.95, start_loop=0),
        evaluator=CompletionEvaluator(criteria=criteria or CompletionCriteria.default()),
        judge=judge,
        depth_settings=DepthSettings(base_timeout=5, timeout_multiplier=1.0, max_timeout=10),
    )


def _submit(controller, thought="const total = items.length;", **kwargs):
    return asyncio.run(controller.submit("s1", thought, **kwargs))


# ===================================================================
# Happy path
# ===================================================================
class TestSubmit:

    def test_first_loop_in_progress(self):
        judge = _make_judge(_outcome(70))
        controller = _make_controller(judge)
        reply = _submit(controller)

        assert reply.thought_number == 1
        assert reply.next_thought_needed is True
        assert reply.thought_history_length == 1
        assert reply.completion_status.reason == reasons.IN_PROGRESS
        assert reply.loop_info.score_progression == [70]
        assert reply.termination_info is None
        assert reply.error is None
        judge.review.assert_awaited_once()

    def test_high_score_completes_session(self):
        controller = _make_controller(_make_judge(_outcome(96, "pass")))
        reply = _submit(controller)

        assert reply.next_thought_needed is False
        assert reply.completion_status.is_complete is True
        assert reply.completion_status.reason == reasons.SCORE_95_AT_10
        state = controller.sessions.load("s1")
        assert state.is_complete is True
        assert state.completion_reason == reasons.SCORE_95_AT_10

    def test_loops_advance_and_judge_gets_loop_index(self):
        judge = _make_judge(_outcome(60), _outcome(70), _outcome(80))
        controller = _make_controller(judge)

        async def run_test():
            for _ in range(3):
                reply = await controller.submit("s1", "const a = 1;")
            return reply

        reply = asyncio.run(run_test())
        assert reply.thought_number == 3
        assert reply.loop_info.score_progression == [60, 70, 80]
        assert [c.args[2] for c in judge.review.call_args_list] == [1, 2, 3]

    def test_inline_config_applied_and_stripped(self):
        judge = _make_judge(_outcome(70))
        controller = _make_controller(judge)
        _submit(controller, thought='```gan-config\n{"threshold": 70}\n```\nconst x = 1;')

        candidate, session_config, loop = judge.review.call_args.args[:3]
        assert candidate == "const x = 1;"
        assert session_config.threshold == 70
        assert controller.sessions.load("s1").config.threshold == 70

    def test_json_snippet_in_candidate_is_audited(self):
        judge = _make_judge(_outcome(70))
        controller = _make_controller(judge)
        thought = 'Update package manifest:\n```json\n{"name": "app", "version": "2.0.0"}\n```\nconst x = load();'
        _submit(controller, thought=thought)

        candidate, session_config = judge.review.call_args.args[:2]
        assert candidate == thought
        assert session_config == SessionConfig()
        assert controller.sessions.load("s1").config == SessionConfig()

    def test_hard_cap_stops_the_loop(self):
        criteria = CompletionCriteria(bands=[CompletionBand(max_loop=2, score=95)], hard_cap=3)
        controller = _make_controller(_make_judge(_outcome(60), _outcome(61), _outcome(62)), criteria=criteria)

        async def run_test():
            return [await controller.submit("s1", f"const v = {i};") for i in range(3)]

        replies = asyncio.run(run_test())
        assert [r.next_thought_needed for r in replies] == [True, True, False]
        assert replies[-1].completion_status.reason == reasons.MAX_LOOPS_REACHED
        assert replies[-1].termination_info.category == "timeout"


# ===================================================================
# Retries, replays and ordering
# ===================================================================
class TestReplay:

    def test_recorded_loop_is_replayed_without_judging(self):
        judge = _make_judge(_outcome(70))
        controller = _make_controller(judge)

        async def run_test():
            first = await controller.submit("s1", "const a = 1;", thought_number=1)
            again = await controller.submit("s1", "const a = 2;", thought_number=1)
            return first, again

        first, again = asyncio.run(run_test())
        assert judge.review.await_count == 1
        assert again.review.overall == first.review.overall == 70
        assert controller.sessions.load("s1").iterations[0].candidate == "const a = 1;"

    def test_complete_session_is_not_judged_again(self):
        judge = _make_judge(_outcome(97, "pass"))
        controller = _make_controller(judge)

        async def run_test():
            await controller.submit("s1", "const a = 1;")
            return await controller.submit("s1", "const a = 2;")

        reply = asyncio.run(run_test())
        assert judge.review.await_count == 1
        assert reply.thought_number == 1
        assert reply.next_thought_needed is False

    def test_skipping_ahead_is_rejected(self):
        judge = _make_judge(_outcome(70))
        controller = _make_controller(judge)
        with pytest.raises(SessionError) as exc_info:
            _submit(controller, thought_number=3)
        assert exc_info.value.context["expected"] == 1
        judge.review.assert_not_awaited()


# ===================================================================
# Judge failures
# ===================================================================
class TestJudgeFailures:

    def test_recoverable_failure_records_fallback(self):
        error = JudgeTimeoutError("Judge timed out after 5s")
        judge = _make_judge(JudgeOutcome(review=build_fallback_review(error), error=error))
        controller = _make_controller(judge)
        reply = _submit(controller)

        assert reply.error["type"] == "JudgeTimeoutError"
        assert reply.error["recoverable"] is True
        assert reply.review.verdict == "reject"
        assert reply.review.overall == 50
        assert reply.next_thought_needed is True
        assert controller.sessions.load("s1").current_loop == 1

    def test_missing_judge_aborts_without_appending(self):
        error = JudgeNotAvailableError("Judge executable not found: codex")
        judge = _make_judge(JudgeOutcome(review=build_fallback_review(error), error=error))
        controller = _make_controller(judge)

        with pytest.raises(JudgeNotAvailableError):
            _submit(controller)
        state = controller.sessions.load("s1")
        assert state.current_loop == 0
        assert state.metadata["last_judge_call"] == "failed"
        assert state.metadata["last_error"]["type"] == "JudgeNotAvailableError"

    def test_cancelled_judge_call_leaves_session_open(self):
        controller = _make_controller(_make_judge(side_effect=asyncio.CancelledError()))
        with pytest.raises(asyncio.CancelledError):
            _submit(controller)
        state = controller.sessions.load("s1")
        assert state.current_loop == 0
        assert state.is_complete is False
        assert state.metadata["last_judge_call"] == "cancelled"


# ===================================================================
# Stagnation
# ===================================================================
class TestStagnation:

    def test_stagnation_ends_session(self):
        detector = StagnationDetector(window_size=2, threshold=0.95, start_loop=0, similarity_fn=lambda a, b: 0.99)
        controller = _make_controller(_make_judge(_outcome(60), _outcome(62)), detector=detector)

        async def run_test():
            first = await controller.submit("s1", "const a = 1;")
            second = await controller.submit("s1", "const a = 1; ")
            return first, second

        first, second = asyncio.run(run_test())
        assert first.next_thought_needed is True
        assert second.next_thought_needed is False
        assert second.completion_status.is_complete is True
        assert second.completion_status.reason == reasons.STAGNATION_DETECTED
        assert second.loop_info.stagnation_detected is True
        assert second.termination_info.category == "stagnation"
        assert second.feedback.next_steps[0].action == "Break out of stagnation pattern"

        state = controller.sessions.load("s1")
        assert state.is_complete is True
        assert state.completion_reason == reasons.STAGNATION_DETECTED
        assert state.stagnation.is_stagnant is True


# ===================================================================
# Manual stop and session reads
# ===================================================================
class TestStop:

    def test_stop_closes_session(self):
        judge = _make_judge(_outcome(70))
        controller = _make_controller(judge)

        async def run_test():
            await controller.submit("s1", "const a = 1;")
            stopped = await controller.stop("s1")
            after = await controller.submit("s1", "const a = 2;")
            return stopped, after

        stopped, after = asyncio.run(run_test())
        assert stopped.completion_status.is_complete is True
        assert stopped.completion_status.reason == reasons.MANUAL_STOP
        assert stopped.next_thought_needed is False
        assert stopped.termination_info.category == "manual"
        assert after.thought_number == 1
        assert judge.review.await_count == 1

    def test_stop_unknown_session(self):
        controller = _make_controller(_make_judge(_outcome(70)))
        with pytest.raises(SessionNotFoundError):
            asyncio.run(controller.stop("missing"))

    def test_get_session(self):
        controller = _make_controller(_make_judge(_outcome(70)))
        _submit(controller)
        state = asyncio.run(controller.get_session("s1"))
        assert state.current_loop == 1
        assert asyncio.run(controller.get_session("other")) is None


# ===================================================================
# Concurrency
# ===================================================================
class TestConcurrency:

    def test_same_session_submissions_are_serialised(self):
        async def slow_review(*args, **kwargs):
            await asyncio.sleep(0.01)
            return _outcome(60 + args[2])

        judge = _make_judge(side_effect=slow_review)
        controller = _make_controller(judge)

        async def run_test():
            return await asyncio.gather(
                controller.submit("s1", "const a = 1;"),
                controller.submit("s1", "const a = 2;"),
            )

        replies = asyncio.run(run_test())
        assert sorted(r.thought_number for r in replies) == [1, 2]
        assert controller.sessions.load("s1").current_loop == 2
        assert controller._locks == {}

    def test_distinct_sessions_run_independently(self):
        judge = _make_judge(side_effect=lambda *a, **k: _outcome(70))
        controller = _make_controller(judge)

        async def run_test():
            return await asyncio.gather(*[controller.submit(f"s{i}", "const a = 1;") for i in range(4)])

        replies = asyncio.run(run_test())
        assert all(r.thought_number == 1 for r in replies)
        assert sorted(r.session_id for r in replies) == ["s0", "s1", "s2", "s3"]

    def test_finished_sessions_leave_no_locks_behind(self):
        judge = _make_judge(side_effect=lambda *a, **k: _outcome(97, "pass"))
        controller = _make_controller(judge)

        async def run_test():
            for i in range(5):
                await controller.submit(f"s{i}", "const a = 1;")
            await controller.stop("s0")

        asyncio.run(run_test())
        assert controller._locks == {}
        assert controller.sessions._locks == {}
