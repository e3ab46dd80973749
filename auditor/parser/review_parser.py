"""
Judge Review Parser
===================
Turns raw judge stdout into a validated Review.

Parsing Strategy:
    1. Strip markdown code fences, then json.loads
    2. The outermost {...} object when the JSON is wrapped in prose
    3. Greedy field extraction with regexes when the JSON is malformed
       (overall, verdict, dimensions, summary, iterations)
    4. Nothing recognisable → JudgeResponseError

Normalisation (applies to both paths):
    - scores clamped to 0–100
    - unknown verdict → "revise"
    - missing dimensions filled from the default rubric with the overall score
    - missing summary → a fixed "limited feedback" sentence
    - iterations at least 1
"""
import json
import logging
import re
from typing import Any, Dict, List

from auditor.core.errors import JudgeResponseError
from auditor.llm.prompts import DEFAULT_DIMENSION_NAMES
from auditor.models.review import DimensionScore, InlineFinding, JudgeCard, Review

logger = logging.getLogger(__name__)

_LIMITED_SUMMARY = "Audit completed with limited feedback due to response parsing issues."

_OVERALL_RE = re.compile(r'"overall"\s*:\s*(\d+(?:\.\d+)?)')
_VERDICT_RE = re.compile(r'"verdict"\s*:\s*"(pass|revise|reject)"')
_DIMENSIONS_RE = re.compile(r'"dimensions"\s*:\s*\[(.*?)\]', re.S)
_SUMMARY_RE = re.compile(r'"summary"\s*:\s*"((?:[^"\\]|\\.)*)"')
_ITERATIONS_RE = re.compile(r'"iterations"\s*:\s*(\d+)')
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def _strip_fences(raw: str) -> str:
    cleaned = raw.strip()
    if cleaned.startswith("```"):
        first_newline = cleaned.find("\n")
        if first_newline != -1:
            cleaned = cleaned[first_newline + 1:]
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3].rstrip()
    return cleaned


def _greedy_parse(text: str) -> Dict[str, Any]:
    """Pull individual fields out of malformed judge JSON."""
    result: Dict[str, Any] = {}

    match = _OVERALL_RE.search(text)
    if match:
        result["overall"] = float(match.group(1))

    match = _VERDICT_RE.search(text)
    if match:
        result["verdict"] = match.group(1)

    match = _DIMENSIONS_RE.search(text)
    if match:
        try:
            result["dimensions"] = json.loads(f"[{match.group(1)}]")
        except json.JSONDecodeError:
            result["dimensions"] = []

    match = _SUMMARY_RE.search(text)
    if match:
        try:
            summary = json.loads(f'"{match.group(1)}"')
        except json.JSONDecodeError:
            summary = match.group(1)
        result["review"] = {"summary": summary, "inline": [], "citations": []}

    match = _ITERATIONS_RE.search(text)
    if match:
        result["iterations"] = int(match.group(1))

    return result


def _dimensions(raw: Any, overall: float) -> List[DimensionScore]:
    valid = []
    if isinstance(raw, list):
        for d in raw:
            if isinstance(d, dict) and isinstance(d.get("name"), str) and isinstance(d.get("score"), (int, float)):
                valid.append(DimensionScore(name=d["name"], score=d["score"]))
    seen = {d.name for d in valid}
    valid.extend(DimensionScore(name=n, score=overall) for n in DEFAULT_DIMENSION_NAMES if n not in seen)
    return valid


def _findings(raw: Any) -> List[InlineFinding]:
    findings = []
    if not isinstance(raw, list):
        return findings
    for item in raw:
        if not isinstance(item, dict):
            continue
        try:
            line = int(item.get("line", 0) or 0)
        except (TypeError, ValueError):
            line = 0
        findings.append(InlineFinding(
            path=str(item.get("path", "") or ""),
            line=line,
            comment=str(item.get("comment", "") or ""),
        ))
    return findings


def _judge_cards(raw: Any, overall: float) -> List[JudgeCard]:
    cards = []
    if isinstance(raw, list):
        for c in raw:
            if isinstance(c, dict) and isinstance(c.get("model"), str):
                cards.append(JudgeCard(
                    model=c["model"],
                    score=c.get("score", overall),
                    notes=str(c.get("notes", "") or ""),
                ))
    return cards or [JudgeCard(model="internal", score=overall)]


def normalize_review(parsed: Dict[str, Any]) -> Review:
    """
    Build a Review from a decoded judge payload, filling every gap.

    Parameters
    ----------
    parsed : dict
        Decoded judge JSON (possibly partial).

    Returns
    -------
    Review
    """
    overall = parsed.get("overall")
    overall = float(overall) if isinstance(overall, (int, float)) and not isinstance(overall, bool) else 0.0
    overall = round(max(0.0, min(100.0, overall)))

    details = parsed.get("review")
    if not isinstance(details, dict):
        details = {}
    summary = details.get("summary")
    citations = details.get("citations")

    try:
        iterations = max(1, int(parsed.get("iterations") or 1))
    except (TypeError, ValueError):
        iterations = 1

    return Review(
        overall=overall,
        dimensions=_dimensions(parsed.get("dimensions"), overall),
        verdict=parsed.get("verdict"),
        summary=summary if isinstance(summary, str) else _LIMITED_SUMMARY,
        inline=_findings(details.get("inline")),
        citations=[str(c) for c in citations] if isinstance(citations, list) else [],
        iterations=iterations,
        judge_cards=_judge_cards(parsed.get("judge_cards"), overall),
    )


def parse_judge_output(raw: str) -> Review:
    """
    Parse judge stdout into a Review.

    Parameters
    ----------
    raw : str
        Raw stdout of the judge process.

    Returns
    -------
    Review

    Raises
    ------
    JudgeResponseError
        Empty output, or neither JSON nor greedy extraction found any field.
    """
    if not raw or not raw.strip():
        raise JudgeResponseError("Empty response from judge", component="parser.review_parser")

    cleaned = _strip_fences(raw)
    try:
        data = json.loads(cleaned)
        if isinstance(data, dict):
            return normalize_review(data)
    except json.JSONDecodeError:
        pass

    match = _OBJECT_RE.search(cleaned)
    if match:
        try:
            data = json.loads(match.group(0))
            if isinstance(data, dict):
                logger.info("Judge output wrapped in text; parsed embedded JSON object")
                return normalize_review(data)
        except json.JSONDecodeError:
            pass

    greedy = _greedy_parse(cleaned)
    if not greedy:
        raise JudgeResponseError(
            "Judge output is not valid JSON and contains no review fields",
            context={"raw_excerpt": cleaned[:500]},
            component="parser.review_parser",
        )

    logger.warning("Judge JSON malformed; recovered fields via greedy parse: %s", sorted(greedy))
    return normalize_review(greedy)
