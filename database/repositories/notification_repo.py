"""Notification repository."""

from typing import List, Optional

from database.connection import Database
from database.models import Notification, NotificationKind
from utils.timeutils import to_db, utcnow


class NotificationRepository:
    """Repository for user notifications."""

    def __init__(self, db: Database):
        self.db = db

    async def create(
        self,
        user_id: int,
        kind: NotificationKind,
        message: str,
        submission_id: Optional[int] = None,
        old_status: Optional[str] = None,
        new_status: Optional[str] = None,
    ) -> int:
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            """
            INSERT INTO notifications
                (user_id, submission_id, kind, old_status, new_status, message, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                user_id,
                submission_id,
                NotificationKind(kind).value,
                old_status,
                new_status,
                message,
                to_db(utcnow()),
            ),
        )
        return cursor.lastrowid

    async def get_by_id(self, notification_id: int) -> Optional[Notification]:
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "SELECT * FROM notifications WHERE id = ?",
            (notification_id,),
        )
        row = await cursor.fetchone()
        if row:
            return Notification.from_row(row)
        return None

    async def get_user_notifications(self, user_id: int, limit: int = 10) -> List[Notification]:
        """Get a user's notifications, newest first."""
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "SELECT * FROM notifications WHERE user_id = ? ORDER BY id DESC LIMIT ?",
            (user_id, limit),
        )
        rows = await cursor.fetchall()
        return [Notification.from_row(row) for row in rows]

    async def count_unread(self, user_id: int) -> int:
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "SELECT COUNT(*) FROM notifications WHERE user_id = ? AND is_read = 0",
            (user_id,),
        )
        row = await cursor.fetchone()
        return row[0]

    async def mark_read(self, notification_id: int, user_id: int) -> bool:
        """
        Mark one of the user's notifications read.

        Returns:
            True if the notification exists and belongs to user_id
        """
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "UPDATE notifications SET is_read = 1 WHERE id = ? AND user_id = ?",
            (notification_id, user_id),
        )
        return cursor.rowcount == 1
