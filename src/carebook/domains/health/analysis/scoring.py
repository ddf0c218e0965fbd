"""Rule-based scorers used when the LLM gateway is unavailable.

Both scorers are pure functions of their inputs. The order of insights,
recommendations and reasons is fixed so results are reproducible.
"""

from __future__ import annotations

from datetime import datetime

from carebook.domains.health.analysis.models import AnalysisResult, MatchScore, RiskLevel
from carebook.domains.health.analysis.snapshot import (
    AnonymizedSnapshot,
    GroupCriteria,
    UserProfile,
)

# Abnormal test results needed for "high" risk
HIGH_RISK_ABNORMAL_TESTS = 3
# Active medications that trigger the pharmacist recommendation
POLYPHARMACY_THRESHOLD = 5

BASE_MATCH_SCORE = 50
NEARLY_FULL_RATIO = 0.8

_SUMMARY_BY_RISK: dict[str, str] = {
    "low": "Your overall health looks good.",
    "medium": "Some items need attention.",
    "high": "We recommend consulting a healthcare professional.",
}


# ---------------------------------------------------------------------------
# Health analysis
# ---------------------------------------------------------------------------

def assess_risk(snapshot: AnonymizedSnapshot) -> RiskLevel:
    """Risk from test results alone; metrics and medications do not move it."""
    if not snapshot.recent_test_results:
        return "unknown"
    abnormal = snapshot.abnormal_test_count
    if abnormal >= HIGH_RISK_ABNORMAL_TESTS:
        return "high"
    if abnormal > 0:
        return "medium"
    return "low"


def score_health(
    snapshot: AnonymizedSnapshot,
    generated_at: datetime | None = None,
) -> AnalysisResult:
    """Produce a rule-based health analysis for a snapshot."""
    insights: list[str] = []
    recommendations: list[str] = []

    metrics = snapshot.health_metrics
    if metrics:
        insights.append(f"{len(metrics)} health records were logged in the last 30 days.")
        insights.append(f"Recorded data types: {', '.join(snapshot.metric_types)}")
    else:
        insights.append("No health data was recorded in the last 30 days.")
        recommendations.append("We recommend recording your health data regularly.")

    abnormal = snapshot.abnormal_test_count
    if abnormal > 0:
        insights.append(f"{abnormal} test results are outside the reference range.")
        recommendations.append(
            "Please consult a healthcare professional about the results outside the reference range."
        )
    elif snapshot.recent_test_results:
        insights.append("All recent test results are within the reference range.")

    medication_count = len(snapshot.active_medications)
    if medication_count > 0:
        insights.append(f"You are currently taking {medication_count} medications.")
        if medication_count >= POLYPHARMACY_THRESHOLD:
            recommendations.append(
                "When taking several medications, we recommend consulting a pharmacist."
            )

    risk_level = assess_risk(snapshot)
    result = AnalysisResult(
        summary=_summarize(snapshot, risk_level),
        insights=insights,
        recommendations=recommendations,
        risk_level=risk_level,
        analysis_source="rule-based",
    )
    if generated_at is not None:
        result.generated_at = generated_at
    return result


def _summarize(snapshot: AnonymizedSnapshot, risk_level: str) -> str:
    parts: list[str] = []
    if snapshot.health_metrics or snapshot.recent_test_results:
        parts.append("Your health data analysis is complete.")
    if risk_level in _SUMMARY_BY_RISK:
        parts.append(_SUMMARY_BY_RISK[risk_level])
    return " ".join(parts) or "Your health data was analyzed."


def unavailable_result() -> AnalysisResult:
    """Neutral result returned when the analysis could not run at all."""
    return AnalysisResult(
        summary="An error occurred during the analysis.",
        insights=[],
        recommendations=["Please try again later."],
        risk_level="unknown",
        analysis_source="rule-based",
    )


# ---------------------------------------------------------------------------
# Group matching
# ---------------------------------------------------------------------------

def score_group_match(profile: UserProfile, criteria: GroupCriteria) -> MatchScore:
    """Score how well a user profile fits a group, 0-100."""
    score = BASE_MATCH_SCORE
    reasons: list[str] = []

    if criteria.group_type == "habit":
        if profile.recent_activity_level == "high":
            score += 20
            reasons.append("You record health data actively.")
        elif profile.recent_activity_level == "medium":
            score += 10
            reasons.append("You keep recording your health data.")

    if criteria.group_type == "support":
        if profile.medication_count > 0:
            score += 15
            reasons.append("You are taking medication.")
        if profile.has_test_results:
            score += 15
            reasons.append("You have test results on record.")

    if criteria.group_type == "community":
        score += 10
        reasons.append("Community groups are open to everyone.")

    if len(profile.health_data_types) >= 3:
        score += 10
        reasons.append("You record several kinds of health data.")

    if criteria.max_members and criteria.member_count >= criteria.max_members * NEARLY_FULL_RATIO:
        score -= 10
        reasons.append("The group is nearly full.")

    return MatchScore(score=clamp_score(score), reasons=reasons)


def clamp_score(score: float) -> int:
    return int(min(100, max(0, round(score))))
