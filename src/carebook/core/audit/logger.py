"""Audit logger: append-only record of every data operation.

Records who did what to which resource type, and whether it succeeded, in the
``audit_log`` SQLite table. Writing is fire-and-forget: a failure to record
is logged and swallowed so it never aborts the operation being audited.

``details`` must stay PHI-free: analysis source, provider name, counts.
Never record values, notes or names.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from carebook.core.storage.database import HealthDatabase

logger = logging.getLogger(__name__)

AuditAction = Literal["create", "read", "update", "delete", "export"]

AuditResourceType = Literal[
    "medication",
    "test_result",
    "medical_record",
    "health_data",
    "group",
    "group_member",
    "risk_prediction",
    "user",
]


# ---------------------------------------------------------------------------
# AuditEvent dataclass
# ---------------------------------------------------------------------------

@dataclass
class AuditEvent:
    """A single audit log entry."""

    user_id: str | None
    action: str                          # AuditAction
    resource_type: str                   # AuditResourceType
    resource_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    success: bool = True
    error_message: str | None = None


# ---------------------------------------------------------------------------
# AuditLogger
# ---------------------------------------------------------------------------

class AuditLogger:
    """Records audit events to the ``audit_log`` SQLite table.

    All writes are committed immediately so no audit entry is lost on crash.

    Usage::

        audit = AuditLogger(health_db)
        audit.log_success("user-1", "read", "health_data",
                          details={"analysis_type": "rule-based"})
        audit.log_failure("user-1", "read", "group", "store unavailable")
    """

    def __init__(self, database: HealthDatabase) -> None:
        self._db = database

    # ---------------------------------------------------------------
    # Write
    # ---------------------------------------------------------------

    def log_event(self, event: AuditEvent) -> str:
        """Insert an audit event and return its UUID.

        Returns:
            The generated event ID, or an empty string if the write failed.
        """
        event_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()

        try:
            details_json = (
                json.dumps(event.details, separators=(",", ":"), default=str)
                if event.details
                else None
            )
            conn = self._db.connection
            conn.execute(
                """INSERT INTO audit_log
                   (id, timestamp, user_id, action, resource_type, resource_id,
                    details_json, success, error_message)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    event_id,
                    now,
                    event.user_id,
                    event.action,
                    event.resource_type,
                    event.resource_id,
                    details_json,
                    1 if event.success else 0,
                    event.error_message,
                ),
            )
            conn.commit()
        except Exception:
            logger.exception("Failed to write audit event, event lost")
            return ""

        return event_id

    def record(
        self,
        user_id: str | None,
        action: AuditAction,
        resource_type: AuditResourceType,
        resource_id: str | None = None,
        details: dict[str, Any] | None = None,
        *,
        success: bool = True,
        error_message: str | None = None,
    ) -> str:
        """Record a data operation.

        Args:
            user_id: Acting user, or None for anonymous/system operations.
            action: 'create' | 'read' | 'update' | 'delete' | 'export'.
            resource_type: Kind of resource touched.
            resource_id: Specific resource, when there is one.
            details: Additional non-PHI metadata.
            success: Whether the operation succeeded.
            error_message: Failure description.

        Returns:
            The generated event ID, or an empty string if the write failed.
        """
        return self.log_event(AuditEvent(
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details or {},
            success=success,
            error_message=error_message,
        ))

    def log_success(
        self,
        user_id: str,
        action: AuditAction,
        resource_type: AuditResourceType,
        resource_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> str:
        return self.record(user_id, action, resource_type, resource_id, details)

    def log_failure(
        self,
        user_id: str | None,
        action: AuditAction,
        resource_type: AuditResourceType,
        error_message: str,
        resource_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> str:
        return self.record(
            user_id,
            action,
            resource_type,
            resource_id,
            details,
            success=False,
            error_message=error_message,
        )

    # ---------------------------------------------------------------
    # Read
    # ---------------------------------------------------------------

    def get_events(
        self,
        *,
        user_id: str | None = None,
        action: str | None = None,
        resource_type: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Query audit events with optional filters.

        Args:
            user_id: Filter by acting user.
            action: Filter by action type.
            resource_type: Filter by resource type.
            since: ISO 8601 timestamp lower bound.
            limit: Maximum events to return.

        Returns:
            List of event dicts, newest first, with ``details`` decoded.
        """
        conditions: list[str] = []
        params: list[Any] = []

        if user_id:
            conditions.append("user_id = ?")
            params.append(user_id)
        if action:
            conditions.append("action = ?")
            params.append(action)
        if resource_type:
            conditions.append("resource_type = ?")
            params.append(resource_type)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        query = f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC, rowid DESC LIMIT ?"
        params.append(limit)

        rows = self._db.connection.execute(query, params).fetchall()
        events = []
        for row in rows:
            event = dict(row)
            raw = event.pop("details_json", None)
            event["details"] = json.loads(raw) if raw else {}
            event["success"] = bool(event["success"])
            events.append(event)
        return events

    def count_events(self, *, user_id: str | None = None, since: str | None = None) -> int:
        """Count audit events, optionally for one user and/or since a timestamp."""
        conditions: list[str] = []
        params: list[Any] = []
        if user_id:
            conditions.append("user_id = ?")
            params.append(user_id)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)
        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        row = self._db.connection.execute(
            f"SELECT COUNT(*) FROM audit_log{where}", params
        ).fetchone()
        return row[0]

    def count_failures(self, *, user_id: str | None = None, since: str | None = None) -> int:
        """Count failed operations, optionally for one user and/or since a timestamp."""
        conditions = ["success = 0"]
        params: list[Any] = []
        if user_id:
            conditions.append("user_id = ?")
            params.append(user_id)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)
        row = self._db.connection.execute(
            f"SELECT COUNT(*) FROM audit_log WHERE {' AND '.join(conditions)}", params
        ).fetchone()
        return row[0]
