"""System prompts for the gateway: analyst identity and JSON-only contracts."""

from __future__ import annotations

import json
from typing import Any

ANALYSIS_SYSTEM_PROMPT = """\
You are an expert in medical and health data analysis. Analyze the data you \
are given objectively and accurately.

Important: your analysis is reference information, not medical advice. \
Always encourage the user to consult a healthcare professional for any \
concrete medical decision.
"""

MATCHING_SYSTEM_PROMPT = """\
You are an expert in matching people with healthcare peer-support groups. \
Evaluate objectively how well a user fits a group.

Reply only with the JSON format you are asked for.
"""


def build_match_prompt(profile: dict[str, Any], criteria: dict[str, Any]) -> str:
    """Render the matching prompt for an anonymized profile and group criteria."""
    return f"""\
Compare the following user profile with the group criteria and rate how well they match.

## User profile (anonymized):
{json.dumps(profile, indent=2, ensure_ascii=False)}

## Group criteria:
{json.dumps(criteria, indent=2, ensure_ascii=False)}

## Output format (JSON only, no other text):
{{
  "score": number from 0 to 100,
  "reasons": ["matching reason 1", "matching reason 2", ...],
  "confidence": number from 0 to 1 (confidence in this rating)
}}
"""
