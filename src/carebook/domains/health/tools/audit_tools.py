"""MCP tools for viewing the audit trail.

The audit trail records which operations ran on which resource types, and
whether analysis went through the LLM gateway or rule-based scoring. It
never contains record values, notes or names.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from carebook.core.audit.logger import AuditLogger

logger = logging.getLogger(__name__)


def register_audit_tools(
    mcp: FastMCP,
    audit_logger: AuditLogger,
) -> None:
    """Register audit trail tools on the MCP server."""

    @mcp.tool
    async def audit_summary(
        ctx: Context,
        user_id: str,
        days: int = 30,
    ) -> str:
        """View your recent data access events.

        Args:
            user_id: Whose events to show.
            days: Number of days to look back (default: 30).
        """
        since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()

        total_events = audit_logger.count_events(user_id=user_id, since=since)
        failures = audit_logger.count_failures(user_id=user_id, since=since)
        recent_events = audit_logger.get_events(user_id=user_id, since=since, limit=20)

        # Strip internal IDs for display
        display_events = []
        for event in recent_events:
            display_events.append({
                "timestamp": event.get("timestamp"),
                "action": event.get("action"),
                "resource_type": event.get("resource_type"),
                "success": event.get("success"),
                "details": event.get("details"),
                "error_message": event.get("error_message"),
            })

        return json.dumps({
            "status": "ok",
            "period_days": days,
            "total_events": total_events,
            "failed_events": failures,
            "recent_events": display_events,
            "note": (
                "This audit trail contains no health data. "
                "It tracks which operations ran and how analyses were produced."
            ),
        }, indent=2)
