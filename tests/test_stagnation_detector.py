"""
Stagnation Detector Tests
=========================
Window rules, threshold, pattern flags and suggestions.

Similarity is injected where exact values matter so the tests do not depend
on the text metric.
"""
import pytest

from auditor.core.errors import InvalidConfigValueError
from auditor.models.review import InlineFinding, Review
from auditor.models.session import IterationRecord
from auditor.services.stagnation_detector import StagnationDetector


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _make_records(candidates, scores=None, inline=None):
    scores = scores or [70.0] * len(candidates)
    return [
        IterationRecord(loop=i, candidate=c, review=Review(overall=s, inline=inline or []))
        for i, (c, s) in enumerate(zip(candidates, scores), start=1)
    ]


def _pairwise(table, default=0.5):
    """similarity_fn answering from a {(a, b): value} table, symmetric."""
    def fn(a, b):
        if (a, b) in table:
            return table[(a, b)]
        if (b, a) in table:
            return table[(b, a)]
        return 1.0 if a == b else default
    return fn


_SCENARIO = _pairwise({("v1", "v2"): 0.97, ("v2", "v3"): 0.98, ("v3", "v4"): 0.96})


# ===================================================================
# Stagnation verdict
# ===================================================================
class TestDetect:

    def test_high_similarity_full_window_is_stagnant(self):
        detector = StagnationDetector(window_size=4, threshold=0.95, start_loop=0, similarity_fn=_SCENARIO)
        verdict = detector.detect(_make_records(["v1", "v2", "v3", "v4"], [70, 72, 74, 76]))
        assert verdict.is_stagnant is True
        assert verdict.detected_at_loop == 4
        assert verdict.similarity_score == pytest.approx(0.97)
        assert verdict.similarity_trend == [0.97, 0.98, 0.96]
        assert verdict.recommendation.startswith("Stagnation detected.")
        assert verdict.alternative_suggestions

    def test_short_history_never_stagnant(self):
        detector = StagnationDetector(window_size=4, threshold=0.95, start_loop=0, similarity_fn=_SCENARIO)
        verdict = detector.detect(_make_records(["v1", "v2", "v3"]))
        assert verdict.is_stagnant is False
        assert verdict.recommendation == "Insufficient history: 3 of 4 iterations"

    def test_identical_candidates_below_window_not_stagnant(self):
        detector = StagnationDetector(window_size=4, threshold=0.95, start_loop=0)
        verdict = detector.detect(_make_records(["x = 1"] * 3))
        assert verdict.is_stagnant is False
        assert verdict.similarity_score == 1.0

    def test_average_at_threshold_is_not_stagnant(self):
        fn = _pairwise({("a", "b"): 0.95, ("b", "c"): 0.95})
        detector = StagnationDetector(window_size=3, threshold=0.95, start_loop=0, similarity_fn=fn)
        verdict = detector.detect(_make_records(["a", "b", "c"]))
        assert verdict.is_stagnant is False
        assert "does not exceed 0.95" in verdict.recommendation

    def test_start_loop_suppresses_checks(self):
        detector = StagnationDetector(window_size=4, threshold=0.95, start_loop=10, similarity_fn=_SCENARIO)
        verdict = detector.detect(_make_records(["v1", "v2", "v3", "v4"]))
        assert verdict.is_stagnant is False
        assert verdict.recommendation == "Stagnation checks begin at loop 10"

    def test_default_start_loop_is_ten(self):
        detector = StagnationDetector(window_size=4, threshold=0.95, similarity_fn=_SCENARIO)
        assert detector.start_loop == 10
        assert detector.detect(_make_records(["v1", "v2", "v3", "v4"])).is_stagnant is False

    def test_only_newest_window_is_used(self):
        fn = _pairwise({("v1", "v2"): 0.1, ("v2", "v3"): 0.1,
                        ("v3", "v4"): 0.99, ("v4", "v5"): 0.99, ("v5", "v6"): 0.99})
        detector = StagnationDetector(window_size=4, threshold=0.95, start_loop=0, similarity_fn=fn)
        verdict = detector.detect(_make_records(["v1", "v2", "v3", "v4", "v5", "v6"], [60, 62, 64, 66, 68, 70]))
        assert verdict.detected_at_loop == 6
        assert len(verdict.similarity_trend) == 3
        assert verdict.is_stagnant is True

    def test_empty_history(self):
        verdict = StagnationDetector(window_size=2).detect([])
        assert verdict.is_stagnant is False
        assert verdict.detected_at_loop == 0
        assert verdict.similarity_trend == []


# ===================================================================
# Construction
# ===================================================================
class TestConfiguration:

    @pytest.mark.parametrize("window", [1, 11])
    def test_window_out_of_range(self, window):
        with pytest.raises(InvalidConfigValueError):
            StagnationDetector(window_size=window)

    @pytest.mark.parametrize("threshold", [0.0, 1.5])
    def test_threshold_out_of_range(self, threshold):
        with pytest.raises(InvalidConfigValueError):
            StagnationDetector(threshold=threshold)


# ===================================================================
# Patterns and suggestions
# ===================================================================
class TestPatterns:

    def test_cosmetic_changes_only(self):
        detector = StagnationDetector(window_size=4, threshold=0.95, start_loop=0, similarity_fn=_SCENARIO)
        verdict = detector.detect(_make_records(["v1", "v2", "v3", "v4"], [80, 80.5, 81, 81]))
        assert verdict.patterns.cosmetic_changes_only is True
        assert "making only cosmetic changes" in verdict.recommendation
        assert "Focus on substantial structural changes rather than minor adjustments" in verdict.alternative_suggestions

    def test_stuck_on_same_issues(self):
        finding = InlineFinding(path="src/api.ts", line=40, comment="Missing input validation")
        detector = StagnationDetector(window_size=4, threshold=0.95, start_loop=0, similarity_fn=_SCENARIO)
        verdict = detector.detect(_make_records(["v1", "v2", "v3", "v4"], [60, 65, 70, 75], inline=[finding]))
        assert verdict.patterns.stuck_on_same_issues is True
        assert "stuck on the same issues" in verdict.recommendation

    def test_confusion_on_oscillating_scores(self):
        detector = StagnationDetector(window_size=4, threshold=0.95, start_loop=0, similarity_fn=_SCENARIO)
        verdict = detector.detect(_make_records(["v1", "v2", "v3", "v4"], [70, 80, 70, 80]))
        assert verdict.patterns.shows_confusion is True

    def test_reverting_changes(self):
        a = "function total(items) { return items.reduce((s, i) => s + i.price, 0); }"
        b = "class Cart { constructor() { this.lines = new Map(); } size() { return this.lines.size; } }"
        detector = StagnationDetector(window_size=3, threshold=0.95, start_loop=0)
        verdict = detector.detect(_make_records([a, b, a], [70, 60, 75]))
        assert verdict.patterns.reverting_changes is True
        assert verdict.is_stagnant is False

    def test_default_suggestions_without_patterns(self):
        detector = StagnationDetector(window_size=4, threshold=0.95, start_loop=0, similarity_fn=_SCENARIO)
        verdict = detector.detect(_make_records(["v1", "v2", "v3", "v4"], [60, 70, 80, 90]))
        assert verdict.is_stagnant is True
        assert verdict.patterns.fired() == []
        assert verdict.alternative_suggestions == [
            "Try a different implementation strategy",
            "Consider alternative libraries or frameworks",
            "Break the problem into smaller components",
        ]

    def test_revert_suggestion_names_best_snapshot(self):
        fn = _pairwise({("v1", "v2"): 0.96, ("v2", "v3"): 0.96, ("v1", "v3"): 0.99})
        detector = StagnationDetector(window_size=3, threshold=0.95, start_loop=0, similarity_fn=fn)
        verdict = detector.detect(_make_records(["v1", "v2", "v3"], [60, 85, 70]))
        assert verdict.is_stagnant is True
        assert verdict.patterns.reverting_changes is True
        assert verdict.alternative_suggestions[0].startswith("Revert to the best-scoring snapshot (loop 2, score 85)")
