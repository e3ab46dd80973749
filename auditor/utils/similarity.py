"""
Candidate Similarity
====================
Normalised textual similarity between two candidate snapshots.

similarity(a, b) is a weighted blend of three measures, each in [0, 1]:

    0.4  edit ratio   — difflib.SequenceMatcher ratio over whitespace-normalised text
    0.4  token overlap — Jaccard index of lower-cased whitespace tokens
    0.2  structure    — Jaccard index of declared functions, classes, imports
                         and control keywords

Identical (or whitespace-identical) inputs score exactly 1.0; two empty inputs
score 1.0; one empty input scores 0.0. The blend is monotonic in sameness: a
change can only lower each component.

Long inputs are sampled (head, middle, tail) before the edit ratio so that
very large candidates do not make the detector quadratic.
"""
import re
from collections import Counter
from difflib import SequenceMatcher

_EDIT_WEIGHT = 0.4
_TOKEN_WEIGHT = 0.4
_STRUCTURE_WEIGHT = 0.2

_SAMPLE_LIMIT = 3000

_STRUCTURE_PATTERNS = (
    ("func", re.compile(r"\b(?:def|function|func|fn)\s+(\w+)")),
    ("var", re.compile(r"\b(?:const|let|var)\s+(\w+)")),
    ("class", re.compile(r"\bclass\s+(\w+)")),
    ("import", re.compile(r"\bimport\s+.*?from\s+['\"]([^'\"]+)['\"]")),
    ("import", re.compile(r"^\s*(?:from\s+([\w.]+)\s+import|import\s+([\w.]+))", re.M)),
    ("control", re.compile(r"\b(if|for|while|switch|try|catch|except|match)\b")),
)


def _normalize(text: str) -> str:
    return " ".join(text.split())


def _sample(text: str) -> str:
    if len(text) <= _SAMPLE_LIMIT:
        return text
    third = _SAMPLE_LIMIT // 3
    mid = len(text) // 2
    return text[:third] + text[mid - third // 2: mid + third // 2] + text[-third:]


def edit_similarity(a: str, b: str) -> float:
    return SequenceMatcher(None, _sample(a), _sample(b), autojunk=False).ratio()


def token_similarity(a: str, b: str) -> float:
    tokens_a = set(a.lower().split())
    tokens_b = set(b.lower().split())
    union = tokens_a | tokens_b
    if not union:
        return 0.0
    return len(tokens_a & tokens_b) / len(union)


def structural_elements(code: str) -> Counter:
    """Multiset of "kind:name" structural markers found in the code."""
    elements: Counter = Counter()
    for kind, pattern in _STRUCTURE_PATTERNS:
        for match in pattern.finditer(code):
            name = next((g for g in match.groups() if g), "")
            elements[f"{kind}:{name}"] += 1
    return elements


def structural_similarity(a: str, b: str) -> float:
    elems_a = structural_elements(a)
    elems_b = structural_elements(b)
    if not elems_a and not elems_b:
        return 1.0
    if not elems_a or not elems_b:
        return 0.0
    common = sum((elems_a & elems_b).values())
    total = sum((elems_a | elems_b).values())
    return common / total


def similarity(a: str, b: str) -> float:
    """
    Blend edit, token and structural similarity into one [0, 1] score.

    Parameters
    ----------
    a, b : str
        Candidate snapshots to compare.

    Returns
    -------
    float
        1.0 for identical text, 0.0 when exactly one side is empty.
    """
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0

    norm_a, norm_b = _normalize(a), _normalize(b)
    if norm_a == norm_b:
        return 1.0

    score = (
        _EDIT_WEIGHT * edit_similarity(norm_a, norm_b)
        + _TOKEN_WEIGHT * token_similarity(a, b)
        + _STRUCTURE_WEIGHT * structural_similarity(a, b)
    )
    return max(0.0, min(1.0, score))
