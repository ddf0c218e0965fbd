"""Reference range parsing and lab result classification.

Reference ranges are free text entered alongside a result. Three numeric
forms are understood:

* ``"lo-hi"``: inclusive range, e.g. ``"70-100"``
* ``"<n"``: strictly below, e.g. ``"< 200"``
* ``">n"``: strictly above, e.g. ``">40"``

Anything else is unknown. Results are read by their leading number, so
``"6.5%"`` and ``"150 mg/dL"`` are classified while ``"nan"``, ``"inf"`` and
``"positive"`` are not. Classification never guesses.
"""

from __future__ import annotations

import math
import re
from typing import Literal

ResultStatus = Literal["normal", "high", "low", "unknown"]

_NUMBER = r"(\d+(?:\.\d+)?)"
_RANGE_RE = re.compile(rf"^{_NUMBER}\s*-\s*{_NUMBER}$")
_LESS_THAN_RE = re.compile(rf"^<\s*{_NUMBER}$")
_GREATER_THAN_RE = re.compile(rf"^>\s*{_NUMBER}$")
# Signed decimal at the start of a result; trailing units are ignored
_LEADING_NUMBER_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


def _parse_result(result: str | None) -> float | None:
    if result is None:
        return None
    match = _LEADING_NUMBER_RE.match(result.strip())
    if match is None:
        return None
    value = float(match.group(0))
    # Exponents can still overflow to inf
    return value if math.isfinite(value) else None


def classify_result(result: str | None, reference_range: str | None) -> ResultStatus:
    """Classify a result against its reference range.

    Returns:
        "normal", "high" or "low" for a numeric result with a parseable
        range; "unknown" otherwise.
    """
    value = _parse_result(result)
    if value is None or not reference_range:
        return "unknown"
    text = reference_range.strip()

    match = _RANGE_RE.match(text)
    if match:
        low, high = float(match.group(1)), float(match.group(2))
        if value < low:
            return "low"
        if value > high:
            return "high"
        return "normal"

    match = _LESS_THAN_RE.match(text)
    if match:
        return "normal" if value < float(match.group(1)) else "high"

    match = _GREATER_THAN_RE.match(text)
    if match:
        return "normal" if value > float(match.group(1)) else "low"

    return "unknown"


def is_result_normal(result: str | None, reference_range: str | None) -> bool | None:
    """True/False for a classifiable result, None when it cannot be judged."""
    status = classify_result(result, reference_range)
    if status == "unknown":
        return None
    return status == "normal"
