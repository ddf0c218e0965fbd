"""Shape validation for gateway replies.

The gateway client only parses JSON; whether the object has the fields the
prompt asked for is checked here. Anything that fails raises
:class:`ReplyShapeError` and the caller falls back to rule-based scoring.
"""

from __future__ import annotations

import math
from typing import Any

from carebook.core.llm.client import parse_json_object
from carebook.domains.health.analysis.models import RISK_LEVELS, AnalysisResult, MatchScore

DEFAULT_CONFIDENCE = 0.5


class ReplyShapeError(ValueError):
    """A gateway reply parsed as JSON but does not have the expected shape."""


def _is_number(value: Any) -> bool:
    # bool is an int subclass but never a valid score
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _string_list(reply: dict[str, Any], key: str, *, required: bool) -> list[str]:
    if key not in reply or reply[key] is None:
        if required:
            raise ReplyShapeError(f"Reply is missing '{key}'")
        return []
    value = reply[key]
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ReplyShapeError(f"'{key}' must be a list of strings")
    return value


def parse_analysis_reply(content: str) -> AnalysisResult:
    """Validate an analysis reply and convert it to an AI-sourced result.

    Expected shape: ``{summary, insights[], recommendations[]?, riskLevel}``.

    Raises:
        GatewayResponseError: If the content is not a JSON object.
        ReplyShapeError: If a field is missing or has the wrong type.
    """
    reply = parse_json_object(content)

    summary = reply.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        raise ReplyShapeError("'summary' must be a non-empty string")

    risk_level = reply.get("riskLevel")
    if risk_level not in RISK_LEVELS:
        raise ReplyShapeError(f"'riskLevel' must be one of {', '.join(RISK_LEVELS)}")

    return AnalysisResult(
        summary=summary,
        insights=_string_list(reply, "insights", required=True),
        recommendations=_string_list(reply, "recommendations", required=False),
        risk_level=risk_level,
        analysis_source="ai",
    )


def parse_match_reply(reply: dict[str, Any]) -> MatchScore:
    """Validate a parsed match reply.

    ``score`` is clamped into [0, 100] and rounded; ``confidence`` is clamped
    into [0, 1] and defaults to 0.5.

    Raises:
        ReplyShapeError: If ``score`` is missing or not a number, or an
            optional field has the wrong type.
    """
    score = reply.get("score")
    if not _is_number(score):
        raise ReplyShapeError("'score' must be a number")

    confidence = reply.get("confidence", DEFAULT_CONFIDENCE)
    if confidence is None:
        confidence = DEFAULT_CONFIDENCE
    if not _is_number(confidence):
        raise ReplyShapeError("'confidence' must be a number")

    return MatchScore(
        score=int(min(100, max(0, round(score)))),
        reasons=_string_list(reply, "reasons", required=False),
        confidence=float(min(1.0, max(0.0, confidence))),
    )
