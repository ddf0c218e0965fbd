"""Tests for GroupMatchingService: ranking, per-group fallback and membership rules."""

from __future__ import annotations

import asyncio
import json

import pytest
from conftest import add_medication, add_metric, add_test, make_gateway, make_group

from carebook.core.llm.provider import ProviderResponse
from carebook.core.storage.repository import RepositoryError
from carebook.domains.health.analysis.aggregator import HealthAggregator
from carebook.domains.health.groups.service import GroupMatchingService, criteria_for

USER = "user-1"


def _run(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class ScriptedProvider:
    """Replies with the next scripted item; exceptions are raised."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.prompts: list[str] = []

    async def generate(self, system_message, user_message, max_tokens=1000, temperature=0.7):
        self.prompts.append(user_message)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return ProviderResponse(
            content=reply, input_tokens=0, output_tokens=0, model="scripted", latency_ms=0.0
        )


@pytest.fixture
def make_service(health_repository, group_repository, audit_logger, unconfigured_gateway):
    def _make(gateway=None, aggregator=None):
        return GroupMatchingService(
            aggregator or HealthAggregator(health_repository),
            group_repository,
            gateway or unconfigured_gateway,
            audit_logger,
        )
    return _make


def _scripted_gateway(replies):
    gateway, _ = make_gateway()
    provider = ScriptedProvider(replies)
    gateway.provider = provider
    return gateway, provider


def _last_event(audit_logger):
    return audit_logger.get_events(user_id=USER, limit=1)[0]


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

class TestFindMatchingGroups:
    def test_no_groups(self, make_service, audit_logger):
        assert _run(make_service().find_matching_groups(USER)) == []
        assert _last_event(audit_logger)["details"] == {"matched_groups": 0, "use_ai": False}

    def test_rule_based_ranking(self, make_service, health_repository, group_repository):
        for i in range(6):
            add_metric(health_repository, USER, "steps", age_days=i + 1)
        add_medication(health_repository, USER)
        add_test(health_repository, USER)
        make_group(group_repository, "Walkers", "habit", created_at="2026-01-01T00:00:00+00:00")
        make_group(group_repository, "Diabetes Support", "support",
                   created_at="2026-01-02T00:00:00+00:00")
        make_group(group_repository, "Neighbours", "community",
                   created_at="2026-01-03T00:00:00+00:00")

        matches = _run(make_service().find_matching_groups(USER))
        assert [(m.group.name, m.score) for m in matches] == [
            ("Diabetes Support", 80),
            ("Neighbours", 60),
            ("Walkers", 60),
        ]
        assert all(m.match_source == "rule-based" for m in matches)
        assert all(m.confidence is None for m in matches)

    def test_ties_keep_newest_first(self, make_service, group_repository):
        make_group(group_repository, "Older", "community", created_at="2026-01-01T00:00:00+00:00")
        make_group(group_repository, "Newer", "community", created_at="2026-02-01T00:00:00+00:00")
        matches = _run(make_service().find_matching_groups(USER))
        assert [m.group.name for m in matches] == ["Newer", "Older"]

    def test_limit(self, make_service, group_repository):
        for i in range(5):
            make_group(group_repository, f"Group {i}", "community")
        assert len(_run(make_service().find_matching_groups(USER, limit=3))) == 3

    def test_excludes_joined_and_private_groups(self, make_service, group_repository):
        make_group(group_repository, "Mine", "habit", created_by=USER)
        make_group(group_repository, "Hidden", "habit", is_public=False)
        make_group(group_repository, "Open", "habit")
        matches = _run(make_service().find_matching_groups(USER))
        assert [m.group.name for m in matches] == ["Open"]

    def test_nearly_full_group_scores_lower(self, make_service, group_repository):
        full_id = make_group(group_repository, "Small", "community", max_members=5,
                             created_at="2026-02-01T00:00:00+00:00")
        for i in range(3):
            group_repository.add_member(full_id, f"member-{i}")
        make_group(group_repository, "Large", "community",
                   created_at="2026-01-01T00:00:00+00:00")

        matches = _run(make_service().find_matching_groups(USER))
        assert [(m.group.name, m.score) for m in matches] == [("Large", 60), ("Small", 50)]
        assert matches[1].reasons[-1] == "The group is nearly full."


class TestGatewayMatching:
    def test_ai_scores(self, make_service, group_repository, audit_logger):
        make_group(group_repository, "A", "habit", created_at="2026-01-01T00:00:00+00:00")
        make_group(group_repository, "B", "habit", created_at="2026-01-02T00:00:00+00:00")
        gateway, provider = _scripted_gateway([
            json.dumps({"score": 40, "reasons": ["meh"], "confidence": 0.9}),
            json.dumps({"score": 90, "reasons": ["great fit"]}),
        ])

        matches = _run(make_service(gateway).find_matching_groups(USER))
        assert [(m.group.name, m.score, m.confidence) for m in matches] == [
            ("A", 90, 0.5),
            ("B", 40, 0.9),
        ]
        assert all(m.match_source == "ai" for m in matches)
        assert _last_event(audit_logger)["details"] == {"matched_groups": 2, "use_ai": True}

    def test_per_group_fallback(self, make_service, group_repository, audit_logger):
        make_group(group_repository, "A", "community", created_at="2026-01-01T00:00:00+00:00")
        make_group(group_repository, "B", "community", created_at="2026-01-02T00:00:00+00:00")
        make_group(group_repository, "C", "community", created_at="2026-01-03T00:00:00+00:00")
        gateway, _ = _scripted_gateway([
            json.dumps({"score": 95, "reasons": ["fits"], "confidence": 0.7}),
            "not json at all",
            ConnectionError("reset"),
        ])

        matches = _run(make_service(gateway).find_matching_groups(USER))
        by_name = {m.group.name: m for m in matches}
        assert by_name["C"].match_source == "ai"
        assert by_name["C"].score == 95
        assert by_name["B"].match_source == "rule-based"
        assert by_name["A"].match_source == "rule-based"
        assert by_name["B"].score == 60

        details = _last_event(audit_logger)["details"]
        assert details["fallback_reasons"] == {"invalid_reply": 1, "gateway_error": 1}

    def test_prompt_is_anonymized(self, make_service, group_repository, health_repository):
        add_metric(health_repository, USER, "weight")
        make_group(group_repository, "Walkers", "habit", created_by="owner-7")
        gateway, provider = _scripted_gateway([json.dumps({"score": 70})])

        _run(make_service(gateway).find_matching_groups(USER))
        prompt = provider.prompts[0]
        assert '"healthDataTypes"' in prompt
        assert '"groupType": "habit"' in prompt
        assert USER not in prompt
        assert "owner-7" not in prompt


class TestMatchingFailure:
    def test_profile_failure_returns_empty(self, make_service, group_repository, audit_logger):
        make_group(group_repository, "Walkers", "habit")

        class BrokenRepository:
            def get_metric_types(self, user_id):
                raise RepositoryError("no such table: health_metrics")

        service = make_service(aggregator=HealthAggregator(BrokenRepository()))
        assert _run(service.find_matching_groups(USER)) == []

        event = _last_event(audit_logger)
        assert event["success"] is False
        assert event["resource_type"] == "group"


def test_criteria_for(group_repository):
    group_id = make_group(group_repository, "Walkers", "habit", max_members=8)
    criteria = criteria_for(group_repository.get_group(group_id))
    assert criteria.group_type == "habit"
    assert criteria.member_count == 1
    assert criteria.max_members == 8


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------

class TestCreateGroup:
    def test_creates_with_owner(self, make_service, group_repository, audit_logger):
        result = make_service().create_group(USER, "  Night Owls ", "habit", max_members=4)
        assert result["success"] is True
        group = group_repository.get_group(result["group_id"])
        assert group.name == "Night Owls"
        assert group.member_count == 1
        assert group_repository.get_membership(group.id, USER).role == "owner"
        assert _last_event(audit_logger)["resource_id"] == group.id

    @pytest.mark.parametrize("name,group_type,max_members,message", [
        ("", "habit", None, "Group name is required"),
        ("Walkers", "club", None, "Invalid group type"),
        ("Walkers", "habit", 0, "max_members must be at least 1"),
    ])
    def test_validation(self, make_service, name, group_type, max_members, message):
        result = make_service().create_group(USER, name, group_type, max_members=max_members)
        assert result["success"] is False
        assert message in result["message"]


class TestJoinLeave:
    def test_join(self, make_service, group_repository, audit_logger):
        group_id = make_group(group_repository)
        result = make_service().join_group(USER, group_id)
        assert result == {"success": True, "message": "Joined the group"}
        assert group_repository.get_membership(group_id, USER).role == "member"
        event = _last_event(audit_logger)
        assert event["resource_type"] == "group_member"
        assert event["resource_id"] == group_id

    def test_join_missing_group(self, make_service):
        assert make_service().join_group(USER, "nope")["message"] == "Group not found"

    def test_join_twice(self, make_service, group_repository):
        group_id = make_group(group_repository)
        service = make_service()
        service.join_group(USER, group_id)
        assert service.join_group(USER, group_id)["message"] == "Already a member of this group"

    def test_join_full_group(self, make_service, group_repository):
        group_id = make_group(group_repository, max_members=2)
        group_repository.add_member(group_id, "someone-else")
        result = make_service().join_group(USER, group_id)
        assert result["success"] is False
        assert result["message"] == "This group has reached its member limit"
        assert group_repository.count_members(group_id) == 2

    def test_leave(self, make_service, group_repository):
        group_id = make_group(group_repository)
        service = make_service()
        service.join_group(USER, group_id)
        assert service.leave_group(USER, group_id) == {"success": True, "message": "Left the group"}
        assert group_repository.get_membership(group_id, USER) is None

    def test_leave_when_not_member(self, make_service, group_repository):
        group_id = make_group(group_repository)
        assert make_service().leave_group(USER, group_id)["message"] == "Not a member of this group"

    def test_owner_cannot_leave(self, make_service, group_repository):
        group_id = make_group(group_repository, created_by=USER)
        result = make_service().leave_group(USER, group_id)
        assert result["message"] == "The group owner cannot leave the group"
        assert group_repository.get_membership(group_id, USER) is not None

    def test_user_groups(self, make_service, group_repository):
        joined = make_group(group_repository, "Joined")
        make_group(group_repository, "Other")
        service = make_service()
        service.join_group(USER, joined)
        assert [g.name for g in service.get_user_groups(USER)] == ["Joined"]
