"""Approved comment records used by the comment anti-abuse limit."""

from typing import List

from database.connection import Database
from utils.timeutils import to_db, utcnow


class CommentLimitRepository:
    """Repository for approved comments keyed by note URL and author nickname."""

    def __init__(self, db: Database):
        self.db = db

    async def record_approval(self, note_url: str, author_nickname: str, content: str, submission_id: int) -> None:
        """Record an approved comment. A submission is recorded at most once."""
        conn = await self.db.get_connection()
        await conn.execute(
            """
            INSERT OR IGNORE INTO comment_approvals
                (note_url, author_nickname, content, submission_id, approved_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (note_url, author_nickname, content, submission_id, to_db(utcnow())),
        )

    async def get_approved_contents(self, note_url: str, author_nickname: str) -> List[str]:
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            """
            SELECT content FROM comment_approvals
            WHERE note_url = ? AND author_nickname = ?
            ORDER BY id
            """,
            (note_url, author_nickname),
        )
        rows = await cursor.fetchall()
        return [row["content"] for row in rows]
