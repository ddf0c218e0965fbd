"""MCP tools for peer-support groups."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from carebook.domains.health.groups.service import GroupMatchingService

logger = logging.getLogger(__name__)

MAX_MATCH_LIMIT = 50


def register_group_tools(
    mcp: FastMCP,
    group_service: GroupMatchingService,
) -> None:
    """Register group matching and membership tools on the MCP server."""

    @mcp.tool
    async def find_matching_groups(
        ctx: Context,
        user_id: str,
        limit: int = 10,
    ) -> str:
        """Find public peer-support groups that fit your health profile.

        Only an anonymized profile (data types recorded, medication count,
        activity level) is used for matching. Groups you already belong to
        are not suggested.

        Args:
            user_id: Who to match.
            limit: Maximum groups to return (default: 10).
        """
        limit = max(1, min(limit, MAX_MATCH_LIMIT))
        matches = await group_service.find_matching_groups(user_id, limit=limit)
        return json.dumps({
            "status": "ok",
            "count": len(matches),
            "matches": [m.to_dict() for m in matches],
        }, indent=2)

    @mcp.tool
    async def create_group(
        ctx: Context,
        user_id: str,
        name: str,
        group_type: str,
        description: str = "",
        is_public: bool = True,
        max_members: int | None = None,
    ) -> str:
        """Create a peer-support group. You become its owner.

        Args:
            user_id: Creator and owner of the group.
            name: Group name.
            group_type: One of habit, support, community.
            description: What the group is about.
            is_public: Whether the group is offered in matching (default: true).
            max_members: Optional member cap.
        """
        outcome = group_service.create_group(
            user_id,
            name,
            group_type,
            description=description or None,
            is_public=is_public,
            max_members=max_members,
        )
        return json.dumps(outcome)

    @mcp.tool
    async def join_group(ctx: Context, user_id: str, group_id: str) -> str:
        """Join a group.

        Args:
            user_id: Who is joining.
            group_id: Group to join.
        """
        return json.dumps(group_service.join_group(user_id, group_id))

    @mcp.tool
    async def leave_group(ctx: Context, user_id: str, group_id: str) -> str:
        """Leave a group. Owners cannot leave their own group.

        Args:
            user_id: Who is leaving.
            group_id: Group to leave.
        """
        return json.dumps(group_service.leave_group(user_id, group_id))

    @mcp.tool
    async def my_groups(ctx: Context, user_id: str) -> str:
        """List the groups you belong to.

        Args:
            user_id: Whose groups to list.
        """
        groups = group_service.get_user_groups(user_id)
        return json.dumps({
            "status": "ok",
            "count": len(groups),
            "groups": [asdict(g) for g in groups],
        }, indent=2)
