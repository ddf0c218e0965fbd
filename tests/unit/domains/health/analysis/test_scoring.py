"""Tests for the rule-based health and group-match scorers."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from carebook.domains.health.analysis.scoring import (
    assess_risk,
    clamp_score,
    score_group_match,
    score_health,
    unavailable_result,
)
from carebook.domains.health.analysis.snapshot import (
    AnonymizedSnapshot,
    GroupCriteria,
    MedicationSnapshot,
    MetricSnapshot,
    TestResultSnapshot,
    UserProfile,
)


def _metric(data_type: str) -> MetricSnapshot:
    return MetricSnapshot(data_type, "1", None, "2026-02-20T00:00:00+00:00")


def _test(is_normal: bool | None) -> TestResultSnapshot:
    return TestResultSnapshot("Glucose", "150" if is_normal is False else "85",
                              "2026-02-20T00:00:00+00:00", is_normal)


def _meds(count: int) -> tuple[MedicationSnapshot, ...]:
    return tuple(MedicationSnapshot(f"med-{i}", None, None) for i in range(count))


# ---------------------------------------------------------------------------
# Health analysis
# ---------------------------------------------------------------------------

class TestRisk:
    def test_no_tests_is_unknown(self):
        assert assess_risk(AnonymizedSnapshot(health_metrics=(_metric("weight"),))) == "unknown"

    def test_all_normal_is_low(self):
        assert assess_risk(AnonymizedSnapshot(recent_test_results=(_test(True), _test(None)))) == "low"

    @pytest.mark.parametrize("abnormal,expected", [(1, "medium"), (2, "medium"), (3, "high"), (5, "high")])
    def test_abnormal_counts(self, abnormal, expected):
        tests = tuple(_test(False) for _ in range(abnormal)) + (_test(True),)
        assert assess_risk(AnonymizedSnapshot(recent_test_results=tests)) == expected

    def test_medications_do_not_move_risk(self):
        snapshot = AnonymizedSnapshot(active_medications=_meds(8))
        assert assess_risk(snapshot) == "unknown"


class TestScoreHealth:
    def test_empty_snapshot(self):
        result = score_health(AnonymizedSnapshot())
        assert result.risk_level == "unknown"
        assert result.analysis_source == "rule-based"
        assert result.insights == ["No health data was recorded in the last 30 days."]
        assert result.recommendations == ["We recommend recording your health data regularly."]
        assert result.summary == "Your health data was analyzed."

    def test_metrics_and_abnormal_tests(self):
        snapshot = AnonymizedSnapshot(
            health_metrics=(_metric("weight"), _metric("steps"), _metric("weight")),
            recent_test_results=(_test(False), _test(False), _test(False), _test(True)),
        )
        result = score_health(snapshot)
        assert result.risk_level == "high"
        assert result.insights == [
            "3 health records were logged in the last 30 days.",
            "Recorded data types: weight, steps",
            "3 test results are outside the reference range.",
        ]
        assert len(result.recommendations) == 1
        assert "healthcare professional" in result.recommendations[0]
        assert result.summary == (
            "Your health data analysis is complete. "
            "We recommend consulting a healthcare professional."
        )

    def test_all_normal_tests(self):
        result = score_health(AnonymizedSnapshot(recent_test_results=(_test(True),)))
        assert result.risk_level == "low"
        assert "All recent test results are within the reference range." in result.insights
        assert result.summary.endswith("Your overall health looks good.")

    def test_medium_summary(self):
        result = score_health(AnonymizedSnapshot(recent_test_results=(_test(False), _test(True))))
        assert result.risk_level == "medium"
        assert result.summary.endswith("Some items need attention.")

    def test_medication_insight_and_pharmacist(self):
        few = score_health(AnonymizedSnapshot(active_medications=_meds(2)))
        assert "You are currently taking 2 medications." in few.insights
        assert not any("pharmacist" in r for r in few.recommendations)

        many = score_health(AnonymizedSnapshot(active_medications=_meds(5)))
        assert "You are currently taking 5 medications." in many.insights
        assert any("pharmacist" in r for r in many.recommendations)

    def test_deterministic(self):
        snapshot = AnonymizedSnapshot(
            health_metrics=(_metric("sleep"),),
            recent_test_results=(_test(False),),
            active_medications=_meds(6),
        )
        at = datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert score_health(snapshot, generated_at=at) == score_health(snapshot, generated_at=at)

    def test_unavailable_result(self):
        result = unavailable_result()
        assert result.risk_level == "unknown"
        assert result.insights == []
        assert result.recommendations == ["Please try again later."]


# ---------------------------------------------------------------------------
# Group matching
# ---------------------------------------------------------------------------

def _profile(types=(), meds=0, tests=False, activity="low") -> UserProfile:
    return UserProfile(tuple(types), meds, tests, activity)


def _criteria(group_type="community", members=1, cap=None) -> GroupCriteria:
    return GroupCriteria(group_type, "Group", None, members, cap)


class TestScoreGroupMatch:
    def test_habit_high_activity(self):
        match = score_group_match(_profile(activity="high"), _criteria("habit"))
        assert match.score == 70
        assert match.reasons == ["You record health data actively."]

    def test_habit_medium_activity(self):
        assert score_group_match(_profile(activity="medium"), _criteria("habit")).score == 60

    def test_habit_low_activity_is_base(self):
        match = score_group_match(_profile(activity="low"), _criteria("habit"))
        assert match.score == 50
        assert match.reasons == []

    def test_support_medications_and_tests(self):
        match = score_group_match(_profile(meds=2, tests=True), _criteria("support"))
        assert match.score == 80
        assert match.reasons == ["You are taking medication.", "You have test results on record."]

    def test_community_and_many_types(self):
        match = score_group_match(
            _profile(types=("weight", "steps", "sleep")), _criteria("community")
        )
        assert match.score == 70
        assert match.reasons == [
            "Community groups are open to everyone.",
            "You record several kinds of health data.",
        ]

    def test_nearly_full_penalty(self):
        match = score_group_match(
            _profile(types=("weight", "steps", "sleep"), activity="high"),
            _criteria("habit", members=9, cap=10),
        )
        assert match.score == 70
        assert match.reasons[-1] == "The group is nearly full."

    def test_penalty_threshold_is_eighty_percent(self):
        below = score_group_match(_profile(), _criteria("habit", members=7, cap=10))
        at = score_group_match(_profile(), _criteria("habit", members=8, cap=10))
        assert below.score == 50
        assert at.score == 40

    def test_no_cap_no_penalty(self):
        assert score_group_match(_profile(), _criteria("habit", members=500)).score == 50

    def test_rule_based_has_no_confidence(self):
        assert score_group_match(_profile(), _criteria()).confidence is None


@pytest.mark.parametrize("raw,expected", [(-20, 0), (0, 0), (55.6, 56), (100, 100), (130, 100)])
def test_clamp_score(raw, expected):
    assert clamp_score(raw) == expected
