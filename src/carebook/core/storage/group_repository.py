"""Group repository: peer-support groups and their memberships."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from carebook.core.storage.database import HealthDatabase
from carebook.core.storage.models import GroupInfo, GroupMembership
from carebook.core.storage.repository import translate_errors

logger = logging.getLogger(__name__)


class GroupRepository:
    """CRUD repository for groups and group membership.

    Member counts are computed from ``group_members`` on every read, so a
    returned :class:`GroupInfo` reflects membership at query time.
    """

    def __init__(self, database: HealthDatabase) -> None:
        self._db = database

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def create_group(self, group: GroupInfo) -> str:
        """Insert a group and make its creator the owner.

        Returns:
            The group ID.
        """
        gid = group.id or str(uuid.uuid4())
        now = group.created_at or datetime.now(timezone.utc).isoformat()
        with translate_errors(self._db, "create_group"):
            conn = self._db.connection
            conn.execute(
                """INSERT INTO groups
                   (id, name, description, group_type, is_public, max_members,
                    created_by, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    gid,
                    group.name,
                    group.description,
                    group.group_type,
                    int(group.is_public),
                    group.max_members,
                    group.created_by,
                    now,
                ),
            )
            conn.execute(
                "INSERT INTO group_members (group_id, user_id, role, joined_at) VALUES (?, ?, 'owner', ?)",
                (gid, group.created_by, now),
            )
            conn.commit()
        logger.info("Created group %s (type=%s)", gid, group.group_type)
        return gid

    def get_group(self, group_id: str) -> GroupInfo | None:
        with translate_errors(self._db, "get_group"):
            row = self._db.connection.execute(
                f"{_GROUP_SELECT} WHERE g.id = ? GROUP BY g.id", (group_id,)
            ).fetchone()
        return _row_to_group(row) if row is not None else None

    def list_public_groups(self) -> list[GroupInfo]:
        """All public groups, newest first."""
        with translate_errors(self._db, "list_public_groups"):
            rows = self._db.connection.execute(
                f"{_GROUP_SELECT} WHERE g.is_public = 1 GROUP BY g.id "
                "ORDER BY g.created_at DESC"
            ).fetchall()
        return [_row_to_group(row) for row in rows]

    def list_available_groups(self, user_id: str) -> list[GroupInfo]:
        """Public groups the user has not joined, newest first."""
        with translate_errors(self._db, "list_available_groups"):
            rows = self._db.connection.execute(
                f"""{_GROUP_SELECT}
                    WHERE g.is_public = 1 AND g.id NOT IN
                        (SELECT group_id FROM group_members WHERE user_id = ?)
                    GROUP BY g.id ORDER BY g.created_at DESC""",
                (user_id,),
            ).fetchall()
        return [_row_to_group(row) for row in rows]

    def list_user_groups(self, user_id: str) -> list[GroupInfo]:
        """Groups the user belongs to, newest first."""
        with translate_errors(self._db, "list_user_groups"):
            rows = self._db.connection.execute(
                f"""{_GROUP_SELECT}
                    WHERE g.id IN (SELECT group_id FROM group_members WHERE user_id = ?)
                    GROUP BY g.id ORDER BY g.created_at DESC""",
                (user_id,),
            ).fetchall()
        return [_row_to_group(row) for row in rows]

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def get_membership(self, group_id: str, user_id: str) -> GroupMembership | None:
        with translate_errors(self._db, "get_membership"):
            row = self._db.connection.execute(
                "SELECT * FROM group_members WHERE group_id = ? AND user_id = ?",
                (group_id, user_id),
            ).fetchone()
        if row is None:
            return None
        return GroupMembership(
            group_id=row["group_id"],
            user_id=row["user_id"],
            role=row["role"],
            joined_at=row["joined_at"],
        )

    def count_members(self, group_id: str) -> int:
        with translate_errors(self._db, "count_members"):
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM group_members WHERE group_id = ?", (group_id,)
            ).fetchone()
        return row[0]

    def add_member(self, group_id: str, user_id: str, role: str = "member") -> None:
        with translate_errors(self._db, "add_member"):
            conn = self._db.connection
            conn.execute(
                "INSERT INTO group_members (group_id, user_id, role, joined_at) VALUES (?, ?, ?, ?)",
                (group_id, user_id, role, datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()
        logger.info("Added member to group %s (role=%s)", group_id, role)

    def remove_member(self, group_id: str, user_id: str) -> bool:
        with translate_errors(self._db, "remove_member"):
            conn = self._db.connection
            cursor = conn.execute(
                "DELETE FROM group_members WHERE group_id = ? AND user_id = ?",
                (group_id, user_id),
            )
            conn.commit()
        return cursor.rowcount > 0


_GROUP_SELECT = """
    SELECT g.*, COUNT(m.user_id) AS member_count
    FROM groups g LEFT JOIN group_members m ON m.group_id = g.id
"""


def _row_to_group(row: Any) -> GroupInfo:
    return GroupInfo(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        group_type=row["group_type"],
        is_public=bool(row["is_public"]),
        max_members=row["max_members"],
        member_count=row["member_count"],
        created_by=row["created_by"],
        created_at=row["created_at"],
    )
