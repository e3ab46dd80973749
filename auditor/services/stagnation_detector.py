"""
Stagnation Detector
===================
Decides whether the most recent iterations of a session have stopped making
progress.

    detect(iteration_window) -> StagnationVerdict

Algorithm:
    1. Keep the newest `window_size` IterationRecords.
    2. similarity_trend = similarity of each consecutive candidate pair.
    3. similarity_score = mean of the trend.
    4. is_stagnant = window is full AND similarity_score > threshold.
       A short session can never be stagnant, whatever its similarity.

Pattern flags (computed for every window, reported even when not stagnant):
    stuck_on_same_issues  — the same finding location is flagged in every review
    cosmetic_changes_only — every pair above _COSMETIC_SIMILARITY and the score
                            moved less than _COSMETIC_SCORE_DELTA points
    reverting_changes     — a snapshot is more similar to an earlier,
                            non-adjacent snapshot than to its predecessor
    shows_confusion       — the score changes direction at least twice

When stagnant, alternative_suggestions are drawn from a rule table keyed by
the fired patterns, and never left empty.
"""
import logging
from typing import Callable, List, Optional, Sequence

from auditor.core import config
from auditor.core.errors import InvalidConfigValueError
from auditor.models.decisions import StagnationPatterns, StagnationVerdict
from auditor.models.session import IterationRecord
from auditor.utils.finding_fingerprint import recurring_signatures
from auditor.utils.similarity import similarity

_COSMETIC_SIMILARITY = 0.9
_COSMETIC_SCORE_DELTA = 2.0
_MIN_WINDOW = 2
_MAX_WINDOW = 10

# pattern → suggestions, checked in this order
_SUGGESTION_RULES = [
    ("stuck_on_same_issues", [
        "Isolate the blocking issue and fix only that before touching anything else",
        "Break down the problem into smaller, more manageable pieces",
    ]),
    ("cosmetic_changes_only", [
        "Focus on substantial structural changes rather than minor adjustments",
        "Reconsider the overall architecture or design approach",
    ]),
    ("reverting_changes", [
        "Establish a clear direction and stick to it",
        "Document the reasoning behind each change to avoid reverting",
    ]),
    ("shows_confusion", [
        "Take a step back and reassess the requirements",
        "Simplify the solution and build up incrementally",
    ]),
]

_DEFAULT_SUGGESTIONS = [
    "Try a different implementation strategy",
    "Consider alternative libraries or frameworks",
    "Break the problem into smaller components",
]

_PATTERN_PHRASES = {
    "stuck_on_same_issues": "stuck on the same issues",
    "cosmetic_changes_only": "making only cosmetic changes",
    "reverting_changes": "reverting previous changes",
    "shows_confusion": "showing signs of confusion",
}


def _direction_changes(scores: List[float]) -> int:
    signs = []
    for prev, curr in zip(scores, scores[1:]):
        delta = curr - prev
        if delta:
            signs.append(1 if delta > 0 else -1)
    return sum(1 for a, b in zip(signs, signs[1:]) if a != b)


class StagnationDetector:
    """
    Window-based stagnation detector.

    Parameters
    ----------
    window_size : int
        Number of most recent iterations inspected (the window is "full" once
        this many are available).
    threshold : float
        Mean similarity that must be exceeded for a full window to be stagnant.
    start_loop : int
        Loops below this index are never checked.
    similarity_fn : callable
        (text_a, text_b) -> float in [0, 1]; defaults to utils.similarity.
    logger : logging.Logger, optional
    """

    def __init__(
        self,
        window_size: int = config.STAGNATION_WINDOW,
        threshold: float = config.STAGNATION_THRESHOLD,
        start_loop: int = config.STAGNATION_START_LOOP,
        similarity_fn: Callable[[str, str], float] = similarity,
        logger: Optional[logging.Logger] = None,
    ):
        if not _MIN_WINDOW <= window_size <= _MAX_WINDOW:
            raise InvalidConfigValueError(
                "STAGNATION_WINDOW", window_size, f"{_MIN_WINDOW}..{_MAX_WINDOW}",
                component="services.stagnation_detector",
            )
        if not 0.0 < threshold <= 1.0:
            raise InvalidConfigValueError(
                "STAGNATION_THRESHOLD", threshold, "0 < threshold <= 1",
                component="services.stagnation_detector",
            )
        self.window_size = window_size
        self.threshold = threshold
        self.start_loop = start_loop
        self._similarity = similarity_fn
        self._logger = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def window(self, iterations: Sequence[IterationRecord]) -> List[IterationRecord]:
        return list(iterations)[-self.window_size:]

    def detect(self, iteration_window: Sequence[IterationRecord]) -> StagnationVerdict:
        """
        Judge whether the given iterations show stagnation.

        Parameters
        ----------
        iteration_window : sequence of IterationRecord
            Recent iterations, oldest first. Only the newest window_size are used.

        Returns
        -------
        StagnationVerdict
        """
        records = self.window(iteration_window)
        current_loop = records[-1].loop if records else 0
        candidates = [r.candidate for r in records]
        scores = [r.review.overall for r in records]

        trend = [self._similarity(a, b) for a, b in zip(candidates, candidates[1:])]
        avg = sum(trend) / len(trend) if trend else 0.0
        patterns = self._classify_patterns(records, trend, scores)

        verdict = StagnationVerdict(
            is_stagnant=False,
            detected_at_loop=current_loop,
            similarity_score=round(avg, 4),
            patterns=patterns,
            similarity_trend=[round(s, 4) for s in trend],
        )

        if current_loop < self.start_loop:
            verdict.recommendation = f"Stagnation checks begin at loop {self.start_loop}"
            return verdict
        if len(records) < self.window_size:
            verdict.recommendation = (
                f"Insufficient history: {len(records)} of {self.window_size} iterations"
            )
            return verdict
        if avg <= self.threshold:
            verdict.recommendation = (
                f"Average similarity {avg:.3f} does not exceed {self.threshold:.2f}; progress continuing"
            )
            return verdict

        verdict.is_stagnant = True
        verdict.recommendation = self._recommendation(patterns)
        verdict.alternative_suggestions = self._suggestions(patterns, records)
        self._logger.warning(
            "Stagnation detected at loop %d (avg similarity %.3f, patterns=%s)",
            current_loop, avg, patterns.fired(),
        )
        return verdict

    # ------------------------------------------------------------------
    # Pattern classification
    # ------------------------------------------------------------------
    def _classify_patterns(
        self,
        records: List[IterationRecord],
        trend: List[float],
        scores: List[float],
    ) -> StagnationPatterns:
        if len(records) < 2:
            return StagnationPatterns()

        stuck = bool(recurring_signatures(r.review for r in records))
        cosmetic = (
            all(s > _COSMETIC_SIMILARITY for s in trend)
            and abs(scores[-1] - scores[0]) < _COSMETIC_SCORE_DELTA
        )
        return StagnationPatterns(
            stuck_on_same_issues=stuck,
            cosmetic_changes_only=cosmetic,
            reverting_changes=self._is_reverting(records, trend),
            shows_confusion=_direction_changes(scores) >= 2,
        )

    def _is_reverting(self, records: List[IterationRecord], trend: List[float]) -> bool:
        for i in range(2, len(records)):
            to_previous = trend[i - 1]
            for j in range(i - 1):
                if self._similarity(records[j].candidate, records[i].candidate) > to_previous:
                    return True
        return False

    # ------------------------------------------------------------------
    # Guidance
    # ------------------------------------------------------------------
    @staticmethod
    def _recommendation(patterns: StagnationPatterns) -> str:
        issues = [_PATTERN_PHRASES[name] for name in patterns.fired()]
        text = "Stagnation detected. "
        if issues:
            text += f"The system appears to be {', '.join(issues)}. "
        text += (
            "Consider terminating the session and trying a different approach, "
            "or provide additional context to help break out of the current pattern."
        )
        return text

    @staticmethod
    def _suggestions(patterns: StagnationPatterns, records: List[IterationRecord]) -> List[str]:
        fired = set(patterns.fired())
        suggestions: List[str] = []
        if "reverting_changes" in fired:
            best = max(records, key=lambda r: r.review.overall)
            suggestions.append(
                f"Revert to the best-scoring snapshot (loop {best.loop}, score {best.review.overall:g}) "
                f"and branch in a different direction"
            )
        for name, rule in _SUGGESTION_RULES:
            if name in fired:
                suggestions.extend(rule)
        return suggestions or list(_DEFAULT_SUGGESTIONS)
