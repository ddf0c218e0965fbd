"""Health prompts: gateway analysis prompt and MCP prompt templates."""

from __future__ import annotations

from fastmcp import FastMCP

from carebook.core.privacy.policy import build_llm_data_context
from carebook.domains.health.analysis.snapshot import AnonymizedSnapshot

_NONE_RECORDED = "None recorded"


def _status_label(is_normal: bool | None) -> str:
    if is_normal is False:
        return " (outside reference range)"
    if is_normal is True:
        return " (normal)"
    return ""


def _section(lines: list[str], empty: str = _NONE_RECORDED) -> str:
    return "\n".join(lines) if lines else empty


def build_analysis_prompt(snapshot: AnonymizedSnapshot, window_days: int = 30) -> str:
    """Render the gateway analysis prompt for a snapshot.

    Only the privacy-policy context of the snapshot is rendered, so nothing
    outside the snapshot types can reach the prompt.
    """
    context = build_llm_data_context(snapshot)

    metrics = _section([
        f"- {m['dataType']}: {m['latestValue']} {m['unit'] or ''}".rstrip()
        + f" ({m['recordedAt'][:10]})"
        for m in context["healthMetrics"]
    ])
    tests = _section([
        f"- {t['testName']}: {t['result'] or 'N/A'}{_status_label(t['isNormal'])}"
        for t in context["recentTestResults"]
    ])
    medications = _section(
        [
            " ".join(p for p in ("-", m["name"], m["dosage"], m["frequency"]) if p)
            for m in context["activeMedications"]
        ],
        empty="None",
    )
    history = _section([
        f"- {h['recordType']}: {h['count']} records" for h in context["medicalHistory"]
    ])

    return f"""\
Analyze the following health data and provide an assessment of the user's health \
together with recommendations.

## Health metrics (last {window_days} days):
{metrics}

## Recent test results:
{tests}

## Active medications:
{medications}

## Medical history:
{history}

## Output format (JSON only, no other text):
{{
  "summary": "summary of overall health (at most 100 words)",
  "insights": ["insight 1", "insight 2", "insight 3"],
  "recommendations": ["recommendation 1", "recommendation 2"],
  "riskLevel": "low|medium|high|unknown"
}}

Important: avoid specific medical advice and encourage consulting a healthcare \
professional where appropriate.
"""


def register_health_prompts(mcp: FastMCP) -> None:
    """Register health domain MCP prompts."""

    @mcp.prompt()
    def health_review_prompt() -> str:
        """Prompt template for reviewing recent health records."""
        return """I'd like a review of my recent health records. Please:

1. Run a health analysis on my records from the last 30 days
2. Explain any test results outside their reference range
3. List my active medications and anything worth asking a pharmacist about
4. Save the resulting risk prediction

Please be clear that this is reference information, not medical advice."""

    @mcp.prompt()
    def find_support_group_prompt(focus: str = "staying consistent") -> str:
        """Prompt template for finding a peer-support group."""
        return f"""I'm looking for a peer-support group that helps with {focus}. Please:

1. Find the groups that match my health profile best
2. Explain why each of the top matches fits me
3. Ask me before joining any of them"""
