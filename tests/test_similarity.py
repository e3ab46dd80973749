"""
Candidate Similarity Tests
==========================
Bounds and ordering of the blended similarity metric.
"""
from auditor.utils.similarity import (
    edit_similarity,
    similarity,
    structural_elements,
    structural_similarity,
    token_similarity,
)

_BASE = """\
import { db } from './db';

export function loadUser(id: string) {
  if (!id) {
    throw new Error('missing id');
  }
  return db.users.find(id);
}
"""


class TestSimilarity:

    def test_identical_text_is_one(self):
        assert similarity(_BASE, _BASE) == 1.0

    def test_whitespace_only_change_is_one(self):
        assert similarity(_BASE, _BASE.replace("  ", "    ")) == 1.0

    def test_one_empty_side_is_zero(self):
        assert similarity(_BASE, "") == 0.0
        assert similarity("", _BASE) == 0.0

    def test_small_edit_scores_higher_than_rewrite(self):
        small = _BASE.replace("missing id", "id is required")
        rewrite = "class Queue { push(x) { this.items.push(x); } }"
        assert similarity(_BASE, small) > similarity(_BASE, rewrite)

    def test_result_is_bounded(self):
        score = similarity(_BASE, "def other():\n    return 42\n")
        assert 0.0 <= score <= 1.0

    def test_long_inputs_are_sampled(self):
        long_a = "const a = 1;\n" * 2000
        long_b = long_a + "const b = 2;\n"
        assert 0.75 < similarity(long_a, long_b) < 1.0


class TestComponents:

    def test_token_similarity_is_jaccard(self):
        assert token_similarity("a b c", "a b d") == 0.5

    def test_token_similarity_empty(self):
        assert token_similarity("", "   ") == 0.0

    def test_edit_similarity_identical(self):
        assert edit_similarity("abc", "abc") == 1.0

    def test_structural_elements(self):
        elements = structural_elements("def add(a, b):\n    if a:\n        return a + b\n")
        assert elements["func:add"] == 1
        assert elements["control:if"] == 1

    def test_structural_similarity_without_structure(self):
        assert structural_similarity("x = 1", "y = 2") == 1.0
        assert structural_similarity("def f(): pass", "y = 2") == 0.0
