"""Peer-support group matching and membership."""

from __future__ import annotations

import logging
from typing import Any

from carebook.core.audit.logger import AuditLogger
from carebook.core.llm.client import GatewayClient, GatewayError, GatewayResponseError
from carebook.core.privacy.policy import build_llm_data_context
from carebook.core.storage.database import DatabaseError
from carebook.core.storage.group_repository import GroupRepository
from carebook.core.storage.models import GROUP_TYPES, GroupInfo
from carebook.core.storage.repository import RepositoryError
from carebook.domains.health.analysis.aggregator import (
    DEFAULT_WINDOW_DAYS,
    AggregationError,
    HealthAggregator,
)
from carebook.domains.health.analysis.models import (
    AIOutcome,
    Fallback,
    GroupMatchResult,
    MatchScore,
    Outcome,
)
from carebook.domains.health.analysis.replies import ReplyShapeError, parse_match_reply
from carebook.domains.health.analysis.scoring import score_group_match
from carebook.domains.health.analysis.snapshot import GroupCriteria, UserProfile

logger = logging.getLogger(__name__)

DEFAULT_MATCH_LIMIT = 10


def criteria_for(group: GroupInfo) -> GroupCriteria:
    """The parts of a group that matching may look at."""
    return GroupCriteria(
        group_type=group.group_type,
        name=group.name,
        description=group.description,
        member_count=group.member_count,
        max_members=group.max_members,
    )


class GroupMatchingService:
    """Ranks public groups for a user and manages memberships.

    Usage::

        service = GroupMatchingService(aggregator, group_repo, gateway, audit)
        matches = await service.find_matching_groups("user-1", limit=5)
        service.join_group("user-1", matches[0].group.id)
    """

    def __init__(
        self,
        aggregator: HealthAggregator,
        groups: GroupRepository,
        gateway: GatewayClient,
        audit: AuditLogger,
        window_days: int = DEFAULT_WINDOW_DAYS,
    ) -> None:
        self._aggregator = aggregator
        self._groups = groups
        self._gateway = gateway
        self._audit = audit
        self._window_days = window_days

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    async def find_matching_groups(
        self,
        user_id: str,
        limit: int = DEFAULT_MATCH_LIMIT,
    ) -> list[GroupMatchResult]:
        """Score every public group the user has not joined and return the best.

        Each group is scored by the gateway when it is configured, falling
        back to rule-based scoring for that group alone. Results are sorted
        by score, highest first; ties keep the newest-first group order.

        Returns:
            At most ``limit`` results, or an empty list if the records could
            not be read.
        """
        try:
            candidates = self._groups.list_available_groups(user_id)
            if not candidates:
                self._audit.log_success(
                    user_id, "read", "group", details={"matched_groups": 0, "use_ai": False}
                )
                return []
            profile = self._aggregator.build_profile(user_id, self._window_days)
        except (AggregationError, RepositoryError, DatabaseError) as exc:
            logger.error("Group matching failed while reading records: %s", exc)
            self._audit.log_failure(user_id, "read", "group", str(exc))
            return []

        results: list[GroupMatchResult] = []
        fallback_reasons: dict[str, int] = {}
        for group in candidates:
            outcome = await self._attempt_ai(profile, criteria_for(group))
            if isinstance(outcome, Fallback):
                fallback_reasons[outcome.reason] = fallback_reasons.get(outcome.reason, 0) + 1
            results.append(GroupMatchResult(
                group=group,
                score=outcome.value.score,
                reasons=outcome.value.reasons,
                match_source=outcome.source,
                confidence=outcome.value.confidence,
            ))

        results.sort(key=lambda r: r.score, reverse=True)
        top = results[:limit]

        details: dict[str, Any] = {
            "matched_groups": len(top),
            "use_ai": self._gateway.is_configured,
        }
        if fallback_reasons:
            details["fallback_reasons"] = fallback_reasons
        self._audit.log_success(user_id, "read", "group", details=details)
        logger.info("Matched %d of %d candidate groups", len(top), len(candidates))
        return top

    async def _attempt_ai(
        self,
        profile: UserProfile,
        criteria: GroupCriteria,
    ) -> Outcome[MatchScore]:
        if not self._gateway.is_configured:
            return Fallback(score_group_match(profile, criteria), reason="gateway_not_configured")

        try:
            reply = await self._gateway.request_match_score(
                build_llm_data_context(profile),
                build_llm_data_context(criteria),
            )
            if reply is None:
                return Fallback(score_group_match(profile, criteria), reason="empty_reply")
            score = parse_match_reply(reply)
        except (ReplyShapeError, GatewayResponseError) as exc:
            logger.warning("Match reply rejected, using rule-based scoring: %s", exc)
            return Fallback(score_group_match(profile, criteria), reason="invalid_reply")
        except GatewayError as exc:
            logger.warning("Gateway match scoring failed, using rule-based scoring: %s", exc)
            return Fallback(score_group_match(profile, criteria), reason="gateway_error")

        return AIOutcome(score)

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def create_group(
        self,
        user_id: str,
        name: str,
        group_type: str,
        description: str | None = None,
        is_public: bool = True,
        max_members: int | None = None,
    ) -> dict[str, Any]:
        """Create a group owned by ``user_id``.

        Returns:
            ``{success, message}`` plus ``group_id`` on success.
        """
        if not name.strip():
            return {"success": False, "message": "Group name is required"}
        if group_type not in GROUP_TYPES:
            return {
                "success": False,
                "message": f"Invalid group type. Must be one of: {', '.join(GROUP_TYPES)}",
            }
        if max_members is not None and max_members < 1:
            return {"success": False, "message": "max_members must be at least 1"}

        group = GroupInfo(
            id="",
            name=name.strip(),
            group_type=group_type,
            created_by=user_id,
            description=description or None,
            is_public=is_public,
            max_members=max_members,
        )
        try:
            group_id = self._groups.create_group(group)
        except (RepositoryError, DatabaseError) as exc:
            logger.error("Failed to create group: %s", exc)
            self._audit.log_failure(user_id, "create", "group", str(exc))
            return {"success": False, "message": "Could not create the group"}

        self._audit.log_success(user_id, "create", "group", group_id, {"group_type": group_type})
        return {"success": True, "message": "Group created", "group_id": group_id}

    def join_group(self, user_id: str, group_id: str) -> dict[str, Any]:
        """Join a group as a member.

        Returns:
            ``{success, message}``. Fails when the group does not exist, the
            user is already a member, or the member cap has been reached.
        """
        try:
            group = self._groups.get_group(group_id)
            if group is None:
                return {"success": False, "message": "Group not found"}
            if self._groups.get_membership(group_id, user_id) is not None:
                return {"success": False, "message": "Already a member of this group"}
            if group.max_members and group.member_count >= group.max_members:
                return {"success": False, "message": "This group has reached its member limit"}
            self._groups.add_member(group_id, user_id, role="member")
        except (RepositoryError, DatabaseError) as exc:
            logger.error("Failed to join group %s: %s", group_id, exc)
            self._audit.log_failure(user_id, "create", "group_member", str(exc), group_id)
            return {"success": False, "message": "Could not join the group"}

        self._audit.log_success(user_id, "create", "group_member", group_id)
        return {"success": True, "message": "Joined the group"}

    def leave_group(self, user_id: str, group_id: str) -> dict[str, Any]:
        """Leave a group.

        Returns:
            ``{success, message}``. Fails when the user is not a member or
            owns the group.
        """
        try:
            membership = self._groups.get_membership(group_id, user_id)
            if membership is None:
                return {"success": False, "message": "Not a member of this group"}
            if membership.role == "owner":
                return {"success": False, "message": "The group owner cannot leave the group"}
            self._groups.remove_member(group_id, user_id)
        except (RepositoryError, DatabaseError) as exc:
            logger.error("Failed to leave group %s: %s", group_id, exc)
            self._audit.log_failure(user_id, "delete", "group_member", str(exc), group_id)
            return {"success": False, "message": "Could not leave the group"}

        self._audit.log_success(user_id, "delete", "group_member", group_id)
        return {"success": True, "message": "Left the group"}

    def get_user_groups(self, user_id: str) -> list[GroupInfo]:
        """Groups the user belongs to, newest first (empty on store failure)."""
        try:
            groups = self._groups.list_user_groups(user_id)
        except (RepositoryError, DatabaseError) as exc:
            logger.error("Failed to list user groups: %s", exc)
            self._audit.log_failure(user_id, "read", "group", str(exc))
            return []
        self._audit.log_success(user_id, "read", "group", details={"count": len(groups)})
        return groups
