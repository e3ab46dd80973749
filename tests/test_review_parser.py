"""
Judge Review Parser Tests
=========================
JSON, fenced, embedded and malformed judge output.
"""
import json

import pytest

from auditor.core.errors import JudgeResponseError
from auditor.llm.prompts import DEFAULT_DIMENSION_NAMES
from auditor.parser.review_parser import normalize_review, parse_judge_output


def _payload(**overrides):
    data = {
        "overall": 82,
        "dimensions": [{"name": "accuracy", "score": 90}, {"name": "clarity", "score": 75}],
        "verdict": "revise",
        "review": {
            "summary": "Solid, a few gaps.",
            "inline": [{"path": "src/a.ts", "line": 4, "comment": "Use const"}],
            "citations": ["src/a.ts:4"],
        },
        "iterations": 2,
        "judge_cards": [{"model": "gpt-judge", "score": 82, "notes": "ok"}],
    }
    data.update(overrides)
    return data


class TestParseJudgeOutput:

    def test_plain_json(self):
        review = parse_judge_output(json.dumps(_payload()))
        assert review.overall == 82
        assert review.verdict == "revise"
        assert review.summary == "Solid, a few gaps."
        assert review.inline[0].path == "src/a.ts"
        assert review.citations == ["src/a.ts:4"]
        assert review.iterations == 2
        assert review.judge_cards[0].model == "gpt-judge"

    def test_fenced_json(self):
        raw = "```json\n" + json.dumps(_payload(verdict="pass")) + "\n```"
        assert parse_judge_output(raw).verdict == "pass"

    def test_json_embedded_in_prose(self):
        raw = "Here is my review:\n" + json.dumps(_payload(overall=64)) + "\nThanks."
        assert parse_judge_output(raw).overall == 64

    def test_malformed_json_greedy_fields(self):
        raw = '{"overall": 77, "verdict": "reject", "summary": "Broken \\"auth\\"", "iterations": 3,'
        review = parse_judge_output(raw)
        assert review.overall == 77
        assert review.verdict == "reject"
        assert review.summary == 'Broken "auth"'
        assert review.iterations == 3

    def test_empty_output(self):
        with pytest.raises(JudgeResponseError):
            parse_judge_output("   ")

    def test_nothing_recognisable(self):
        with pytest.raises(JudgeResponseError) as exc_info:
            parse_judge_output("segmentation fault")
        assert exc_info.value.context["raw_excerpt"] == "segmentation fault"


class TestNormalizeReview:

    def test_scores_clamped_and_rounded(self):
        review = normalize_review(_payload(overall=140.6, dimensions=[{"name": "accuracy", "score": -5}]))
        assert review.overall == 100
        assert review.dimensions[0].score == 0

    def test_unknown_verdict_becomes_revise(self):
        assert normalize_review(_payload(verdict="maybe")).verdict == "revise"

    def test_missing_dimensions_filled_from_rubric(self):
        review = normalize_review({"overall": 60})
        assert [d.name for d in review.dimensions] == list(DEFAULT_DIMENSION_NAMES)
        assert all(d.score == 60 for d in review.dimensions)

    def test_missing_summary_and_cards(self):
        review = normalize_review({"overall": 60})
        assert review.summary == "Audit completed with limited feedback due to response parsing issues."
        assert review.judge_cards[0].model == "internal"
        assert review.iterations == 1

    def test_bad_inline_lines_become_zero(self):
        review = normalize_review(_payload(review={"inline": [{"path": "a", "line": "x", "comment": "c"}]}))
        assert review.inline[0].line == 0
        assert review.inline[0].is_actionable() is False
