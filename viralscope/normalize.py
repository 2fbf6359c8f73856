"""Turn free-text model output into an :class:`AnalysisResult`.

The models are asked to answer with a JSON object but nothing enforces it.
Parsing is a heuristic: the whole body is tried first, then the first
balanced ``{...}`` block, and when both fail a fixed degraded result is
returned instead of an error.
"""

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Optional

from .schemas import AnalysisResult

logger = logging.getLogger(__name__)

DEFAULT_SCORE = 50
DEFAULT_TONE = "Neutral"
NO_JSON_NOTICE = "Couldn't parse suggestions from the model output"
PARSE_FAILED_NOTICE = "Failed to analyze content properly"

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


@dataclass(frozen=True)
class ParseOutcome:
    result: AnalysisResult
    degraded: bool = False


def degraded_result(notice: str = NO_JSON_NOTICE) -> AnalysisResult:
    return AnalysisResult(
        virality_score=DEFAULT_SCORE,
        emotional_tone=DEFAULT_TONE,
        suggestions=[notice],
    )


def find_json_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` substring, ignoring braces in strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        # Unbalanced from this brace; try the next one.
        start = text.find("{", start + 1)
    return None


def _coerce_score(value: Any) -> int:
    if isinstance(value, bool):
        return DEFAULT_SCORE
    if isinstance(value, int):
        return max(0, min(100, value))
    if isinstance(value, str):
        match = re.search(r"-?\d+(?:\.\d+)?", value)
        if not match:
            return DEFAULT_SCORE
        value = match.group(0)
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return DEFAULT_SCORE
    if math.isnan(number):
        return DEFAULT_SCORE
    if math.isinf(number):
        return 100 if number > 0 else 0
    return int(round(number))


def _coerce_suggestions(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item).strip()]


def result_from_payload(payload: dict) -> AnalysisResult:
    score = payload.get("viralityScore", payload.get("virality_score", payload.get("score")))
    tone = payload.get("emotionalTone", payload.get("emotional_tone", payload.get("tone")))
    suggestions = _coerce_suggestions(payload.get("suggestions"))

    return AnalysisResult(
        virality_score=_coerce_score(score),
        emotional_tone=str(tone).strip() if tone and str(tone).strip() else DEFAULT_TONE,
        suggestions=suggestions or [NO_JSON_NOTICE],
    )


def parse_model_output(text: Optional[str]) -> ParseOutcome:
    body = _FENCE_RE.sub("", (text or "").strip())

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, ValueError):
        payload = None

    if not isinstance(payload, dict):
        candidate = find_json_object(body)
        if candidate is None:
            logger.warning("Model output contained no JSON object; using default result")
            return ParseOutcome(degraded_result(NO_JSON_NOTICE), degraded=True)
        try:
            payload = json.loads(candidate)
        except (json.JSONDecodeError, ValueError) as exc:
            logger.warning("Could not parse JSON from model output: %s", exc)
            return ParseOutcome(degraded_result(PARSE_FAILED_NOTICE), degraded=True)

    if not isinstance(payload, dict):
        return ParseOutcome(degraded_result(PARSE_FAILED_NOTICE), degraded=True)

    return ParseOutcome(result_from_payload(payload))
