"""
Response Builder Tests
======================
Optional blocks, prioritised feedback, progress trends and termination info.
"""
import pytest

from auditor.models.decisions import CompletionDecision, StagnationVerdict, TerminationDecision
from auditor.models.reply import StandardReply
from auditor.models.review import InlineFinding, Review
from auditor.models.session import IterationRecord, SessionConfig, SessionState
from auditor.services.completion_evaluator import CompletionCriteria
from auditor.services.response_builder import (
    ResponseBuilder,
    average_improvement,
    termination_category,
)
from auditor.utils import completion_reasons as reasons


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
_SQL = InlineFinding(path="src/db.ts", line=12, comment="SQL injection: user input concatenated into query")
_STYLE = InlineFinding(path="src/ui.ts", line=3, comment="Naming does not follow convention")
_PERF = InlineFinding(path="src/report.ts", line=8, comment="Quadratic loop is slow")


def _make_review(score=72, verdict="revise", inline=None):
    return Review(overall=score, verdict=verdict, summary="judge summary", inline=inline or [])


def _make_session(scores, config=None):
    records = [
        IterationRecord(loop=i, candidate=f"v{i}", review=_make_review(s))
        for i, s in enumerate(scores, start=1)
    ]
    return SessionState(
        id="sess-1",
        context_id="ctx-1",
        config=config or SessionConfig(),
        iterations=records,
        current_loop=len(records),
        last_review=records[-1].review if records else None,
    )


def _standard(thought_number=1):
    return StandardReply(session_id="sess-1", thought_number=thought_number)


@pytest.fixture
def builder():
    return ResponseBuilder(criteria=CompletionCriteria.default())


# ===================================================================
# Optional blocks
# ===================================================================
class TestBlocks:

    def test_standard_only_has_no_derived_blocks(self, builder):
        reply = builder.build(_standard())
        assert reply.feedback is None
        assert reply.completion_status is None
        assert reply.loop_info is None
        assert reply.termination_info is None
        assert reply.session_metadata is None

    def test_review_only_builds_feedback(self, builder):
        reply = builder.build(_standard(), review=_make_review())
        assert reply.feedback is not None
        assert reply.loop_info is None
        assert reply.session_metadata is None

    def test_standard_fields_copied(self, builder):
        standard = StandardReply(session_id="sess-1", thought_number=3, total_thoughts=5,
                                 next_thought_needed=False, thought_history_length=3)
        reply = builder.build(standard)
        assert reply.thought_number == 3
        assert reply.total_thoughts == 5
        assert reply.next_thought_needed is False

    def test_absent_blocks_dropped_from_wire(self, builder):
        dumped = builder.build(_standard(), review=_make_review()).model_dump(exclude_none=True)
        assert "feedback" in dumped
        assert "termination_info" not in dumped


# ===================================================================
# Feedback
# ===================================================================
class TestFeedback:

    def test_sql_injection_scenario(self, builder):
        reply = builder.build(_standard(), review=_make_review(inline=[_STYLE, _PERF, _SQL]))
        feedback = reply.feedback

        assert [i.category for i in feedback.improvements] == ["security", "performance", "style"]
        assert [i.priority for i in feedback.improvements] == ["critical", "high", "low"]

        assert len(feedback.critical_issues) == 1
        issue = feedback.critical_issues[0]
        assert issue.category == "security"
        assert issue.path == "src/db.ts" and issue.line == 12
        assert issue.resolution == "Implement proper input validation and security controls"

        assert feedback.next_steps[0].priority == "critical"
        assert [s.step for s in feedback.next_steps] == [1, 2, 3, 4]
        assert feedback.next_steps[-1].action == "Implement remaining improvements and resubmit"

        assert feedback.summary.startswith('Audit completed with 72% score and "revise" verdict.')
        assert "1 critical issue identified" in feedback.summary
        assert "3 improvement suggestions provided" in feedback.summary

    def test_non_actionable_findings_ignored(self, builder):
        finding = InlineFinding(path="src/db.ts", line=0, comment="SQL injection somewhere")
        feedback = builder.build(_standard(), review=_make_review(inline=[finding])).feedback
        assert feedback.improvements == []
        assert feedback.critical_issues == []

    def test_caps(self):
        builder = ResponseBuilder(criteria=CompletionCriteria.default(), max_improvements=2, max_critical_issues=1)
        findings = [
            InlineFinding(path="src/a.ts", line=n, comment=f"XSS vulnerability {n}") for n in range(1, 5)
        ]
        feedback = builder.build(_standard(), review=_make_review(inline=findings)).feedback
        assert [i.line for i in feedback.improvements] == [1, 2]
        assert len(feedback.critical_issues) == 1

    def test_reject_verdict_step(self, builder):
        feedback = builder.build(_standard(), review=_make_review(score=30, verdict="reject")).feedback
        assert feedback.next_steps[-1].action == "Redesign approach to address fundamental issues"
        assert feedback.next_steps[-1].priority == "high"

    def test_pass_verdict_without_findings_has_no_steps(self, builder):
        feedback = builder.build(_standard(), review=_make_review(score=97, verdict="pass")).feedback
        assert feedback.next_steps == []

    def test_stagnation_next_steps(self, builder):
        verdict = StagnationVerdict(
            is_stagnant=True,
            detected_at_loop=6,
            recommendation="Stagnation detected. Change tack.",
            alternative_suggestions=["Try a different implementation strategy", "Break the problem up"],
        )
        feedback = builder.build(_standard(), review=_make_review(inline=[_SQL]), stagnation=verdict).feedback
        assert [s.action for s in feedback.next_steps] == [
            "Break out of stagnation pattern",
            "Try a different implementation strategy",
            "Break the problem up",
        ]
        assert [s.priority for s in feedback.next_steps] == ["critical", "high", "high"]
        assert feedback.next_steps[0].rationale == "Stagnation detected. Change tack."
        assert feedback.progress.trend == "STAGNANT"

    def test_final_assessment_step(self, builder):
        termination = TerminationDecision(
            should_terminate=True,
            reason="Maximum loops (25) reached without achieving completion criteria",
            final_assessment="Final Assessment after 25 loops:",
            category="timeout",
        )
        feedback = builder.build(_standard(), review=_make_review(), termination=termination).feedback
        actions = [s.action for s in feedback.next_steps]
        assert "Review the final assessment before deciding how to continue" in actions


# ===================================================================
# Progress
# ===================================================================
class TestProgress:

    @pytest.mark.parametrize("scores,trend", [
        ([60, 70], "IMPROVING"),
        ([70, 60], "DECLINING"),
        ([70, 70], "FLAT"),
    ])
    def test_trend_from_last_two_scores(self, builder, scores, trend):
        progress = builder.assess_progress(_make_review(scores[-1]), _make_session(scores), None)
        assert progress.trend == trend

    def test_single_iteration_is_flat(self, builder):
        progress = builder.assess_progress(_make_review(), _make_session([72]), None)
        assert progress.trend == "FLAT"
        assert progress.factors[0] == "Insufficient history to determine a trend"

    @pytest.mark.parametrize("score,factor", [
        (95, "High audit score achieved"),
        (75, "Good progress with room for improvement"),
        (40, "Moderate progress but significant work needed"),
        (10, "Low audit score indicates fundamental issues"),
    ])
    def test_score_band_factor(self, builder, score, factor):
        progress = builder.assess_progress(_make_review(score), None, None)
        assert progress.factors[-1] == factor


# ===================================================================
# Status blocks
# ===================================================================
class TestStatusBlocks:

    def test_completion_status_in_progress(self, builder):
        decision = CompletionDecision(is_complete=False, reason=reasons.IN_PROGRESS, message="keep going")
        reply = builder.build(_standard(5), review=_make_review(80), completion=decision,
                              session=_make_session([60, 65, 70, 75, 80]))
        status = reply.completion_status
        assert status.current_loop == 5
        assert status.score == 80
        assert status.threshold == 95
        assert status.progress == pytest.approx(0.2)

    def test_completion_status_complete(self, builder):
        decision = CompletionDecision(is_complete=True, reason=reasons.SCORE_90_AT_15, next_iteration_expected=False)
        status = builder.build(_standard(12), completion=decision, session=_make_session([91] * 12)).completion_status
        assert status.progress == 1.0
        assert status.threshold == 90
        assert status.score == 91

    def test_completion_status_without_session_or_review(self, builder):
        decision = CompletionDecision(is_complete=False, reason=reasons.IN_PROGRESS)
        status = builder.build(_standard(2), completion=decision).completion_status
        assert status.current_loop == 2
        assert status.score is None

    def test_loop_info_and_metadata(self, builder):
        session = _make_session([60, 70, 85], config=SessionConfig(threshold=90, judges=["a", "b"]))
        reply = builder.build(_standard(3), session=session)
        assert reply.loop_info.loops_remaining == 22
        assert reply.loop_info.average_improvement == 12.5
        assert reply.loop_info.stagnation_detected is False
        assert reply.session_metadata.context_id == "ctx-1"
        assert reply.session_metadata.config == {"threshold": 90, "max_cycles": 1, "judges": ["a", "b"], "scope": "diff"}

    def test_termination_info(self, builder):
        termination = TerminationDecision(
            should_terminate=True,
            reason="Stagnation detected: Stagnation detected. Change tack.",
            failure_rate=33.333,
            category="stagnation",
        )
        info = builder.build(_standard(), termination=termination).termination_info
        assert info.category == "stagnation"
        assert info.failure_rate == 33.33
        assert info.recommendations[0] == "Try a completely different approach or implementation strategy"


@pytest.mark.parametrize("reason,category,expected", [
    ("Maximum loops (25) reached without achieving completion criteria", "timeout", "timeout"),
    ("Stagnation detected: no change", "stagnation", "stagnation"),
    ("Session stopped manually", "manual", "manual"),
    ("High failure rate", "failure", "failure"),
])
def test_termination_category(reason, category, expected):
    assert termination_category(TerminationDecision(reason=reason, category=category)) == expected


def test_average_improvement():
    assert average_improvement([]) == 0.0
    assert average_improvement([50]) == 0.0
    assert average_improvement([50, 60, 55]) == 2.5
