"""Repository for daily note survival check records."""

from typing import List, Optional

from database.connection import Database
from utils.timeutils import to_db, utcnow


class ContinuousCheckRepository:
    """Repository for continuous_checks rows (one per submission per day)."""

    def __init__(self, db: Database):
        self.db = db

    async def record(
        self,
        submission_id: int,
        check_day: int,
        check_date: str,
        note_exists: bool,
        transaction_id: Optional[int] = None,
    ) -> bool:
        """
        Record the outcome of one day's check.

        Returns:
            False if that day was already recorded
        """
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            """
            INSERT OR IGNORE INTO continuous_checks
                (submission_id, check_day, check_date, note_exists, transaction_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (submission_id, check_day, check_date, int(note_exists), transaction_id, to_db(utcnow())),
        )
        return cursor.rowcount == 1

    async def has_check_on(self, submission_id: int, check_date: str) -> bool:
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "SELECT 1 FROM continuous_checks WHERE submission_id = ? AND check_date = ?",
            (submission_id, check_date),
        )
        return await cursor.fetchone() is not None

    async def get_for_submission(self, submission_id: int) -> List[dict]:
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "SELECT * FROM continuous_checks WHERE submission_id = ? ORDER BY check_day",
            (submission_id,),
        )
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]
