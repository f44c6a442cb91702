"""Read a score and explanation out of a judge model's reply.

Judges are asked for a bare JSON object but regularly wrap it in prose,
fence it in markdown, use single quotes, or ignore the schema entirely.
Extraction therefore never fails; it walks three tiers and returns the
first usable result:

1. json:          the whole reply (or its fenced block) is the JSON object
2. embedded_json: a JSON object holding "score" and "explanation" sits
                  somewhere inside the reply
3. pattern:       regexes pull a number after "score" and an explanation
                  from a quoted value, an "explanation:" label, or the
                  reply itself

Scores are clamped to [0, 10]; a missing score is 0.
"""

from __future__ import annotations

import bisect
import json
import math
import re
from collections.abc import Iterator
from typing import Any

import structlog
from langchain_core.utils.json import parse_json_markdown

from src.schemas.test_case import (
    MAX_SCORE,
    MIN_SCORE,
    ExtractionStrategy,
    JudgmentResult,
)

logger = structlog.get_logger(__name__)

NO_EXPLANATION = "No explanation provided"
FALLBACK_EXPLANATION_LIMIT = 500
_ELLIPSIS = "..."

# "score: 7", "Score = 7.5", '"score": 9', "The score is 7", "a score of 8/10", "**Score:** 8"
_SCORE_RE = re.compile(
    r"""\bscore\b[*_"']*(?:\s*(?:[:=]|\bis\b|\bof\b|\bwas\b)[*_]*)*\s*["']?\s*(-?\d+(?:\.\d+)?)""",
    re.IGNORECASE,
)
_QUOTED_EXPLANATION_RE = re.compile(
    r"""["']explanation["']\s*:\s*(?:"((?:[^"\\]|\\.)*)"|'((?:[^'\\]|\\.)*)')"""
)
_LABELLED_EXPLANATION_RE = re.compile(
    r"explanation[*_]*\s*:[*_]*[ \t]*(.+?)\s*$",
    re.IGNORECASE | re.MULTILINE,
)
_SCORE_KEY = '"score"'
_EXPLANATION_KEY = '"explanation"'
MAX_EMBEDDED_CANDIDATES = 32


def clamp_score(score: float) -> float:
    if math.isnan(score):
        return MIN_SCORE
    return max(MIN_SCORE, min(MAX_SCORE, score))


def _validated(data: Any) -> tuple[float, str] | None:
    """Accept only {"score": <number>, "explanation": <string>}."""
    if not isinstance(data, dict):
        return None
    score = data.get("score")
    explanation = data.get("explanation")
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        return None
    if not isinstance(explanation, str):
        return None
    return float(score), explanation


# ---------------------------------------------------------------------------
# Tier 1: whole reply
# ---------------------------------------------------------------------------


def _from_whole_text(text: str) -> tuple[float, str] | None:
    try:
        data = parse_json_markdown(text, parser=json.loads)
    except (ValueError, RecursionError):
        return None
    return _validated(data)


# ---------------------------------------------------------------------------
# Tier 2: object embedded in prose
# ---------------------------------------------------------------------------


def _balanced_spans(text: str) -> list[tuple[int, int]]:
    """(start, end) of every balanced brace pair, in one pass.

    Quotes only open a string inside braces, so stray quotes in the
    surrounding prose do not hide an object.
    """
    spans = []
    stack: list[int] = []
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = bool(stack)
        elif ch == "{":
            stack.append(i)
        elif ch == "}" and stack:
            spans.append((stack.pop(), i))
    return spans


def _key_positions(text: str, key: str) -> list[int]:
    return [m.start() for m in re.finditer(re.escape(key), text)]


def _contains(positions: list[int], width: int, start: int, end: int) -> bool:
    """Whether a key occurrence lies wholly inside text[start:end + 1]."""
    i = bisect.bisect_left(positions, start)
    return i < len(positions) and positions[i] + width - 1 <= end


def _greedy_span(text: str) -> str | None:
    """First "{" through last "}" when both keys sit between them, in order."""
    start = text.find("{")
    if start < 0:
        return None
    score_at = text.find(_SCORE_KEY, start + 1)
    if score_at < 0:
        return None
    explanation_at = text.find(_EXPLANATION_KEY, score_at + len(_SCORE_KEY))
    if explanation_at < 0:
        return None
    end = text.rfind("}")
    if end < explanation_at + len(_EXPLANATION_KEY):
        return None
    return text[start : end + 1]


def _object_candidates(text: str) -> Iterator[str]:
    """Balanced objects naming both keys, smallest first, then the greedy span."""
    scores = _key_positions(text, _SCORE_KEY)
    explanations = _key_positions(text, _EXPLANATION_KEY)
    if scores and explanations:
        balanced = [
            (start, end)
            for start, end in _balanced_spans(text)
            if _contains(scores, len(_SCORE_KEY), start, end)
            and _contains(explanations, len(_EXPLANATION_KEY), start, end)
        ]
        balanced.sort(key=lambda span: span[1] - span[0])
        for start, end in balanced[:MAX_EMBEDDED_CANDIDATES]:
            yield text[start : end + 1]

    greedy = _greedy_span(text)
    if greedy:
        yield greedy


def _from_embedded_object(text: str) -> tuple[float, str] | None:
    for candidate in _object_candidates(text):
        try:
            data = json.loads(candidate, strict=False)
        except (ValueError, RecursionError):
            continue
        result = _validated(data)
        if result is not None:
            return result
    return None


# ---------------------------------------------------------------------------
# Tier 3: regex fallback
# ---------------------------------------------------------------------------


def _pattern_score(text: str) -> float:
    match = _SCORE_RE.search(text)
    if not match:
        return 0.0
    try:
        return float(match.group(1))
    except ValueError:
        return 0.0


def _unescape(raw: str) -> str:
    try:
        return json.loads(f'"{raw}"', strict=False)
    except ValueError:
        return raw


def _pattern_explanation(text: str) -> str:
    quoted = _QUOTED_EXPLANATION_RE.search(text)
    if quoted:
        if quoted.group(1) is not None:
            value = _unescape(quoted.group(1))
        else:
            value = quoted.group(2).replace("\\'", "'")
        if value.strip():
            return value.strip()

    labelled = _LABELLED_EXPLANATION_RE.search(text)
    if labelled and labelled.group(1).strip():
        return labelled.group(1).strip()

    remainder = _SCORE_RE.sub("", text).strip()
    if len(remainder) > FALLBACK_EXPLANATION_LIMIT:
        cut = FALLBACK_EXPLANATION_LIMIT - len(_ELLIPSIS)
        remainder = remainder[:cut] + _ELLIPSIS
    return remainder


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


def extract(raw_text: str | None, test_case_id: str | None = None) -> JudgmentResult:
    """Turn a judge reply into a JudgmentResult. Never raises."""
    text = (raw_text or "").strip()

    parsed = _from_whole_text(text)
    strategy = ExtractionStrategy.JSON
    if parsed is None:
        logger.debug("judgment_not_plain_json", test_case_id=test_case_id)
        parsed = _from_embedded_object(text)
        strategy = ExtractionStrategy.EMBEDDED_JSON

    if parsed is None:
        logger.debug("judgment_no_embedded_json", test_case_id=test_case_id)
        score = _pattern_score(text)
        explanation = _pattern_explanation(text)
        strategy = ExtractionStrategy.PATTERN
    else:
        score, explanation = parsed

    result = JudgmentResult(
        explanation=explanation if explanation.strip() else NO_EXPLANATION,
        score=clamp_score(score),
        strategy=strategy,
    )
    if strategy == ExtractionStrategy.PATTERN:
        logger.warning(
            "judgment_extracted_by_pattern",
            test_case_id=test_case_id,
            score=result.score,
        )
    else:
        logger.debug(
            "judgment_extracted",
            test_case_id=test_case_id,
            strategy=strategy.value,
            score=result.score,
        )
    return result
