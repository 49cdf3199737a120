"""Submission repository: submissions, their images and the review trail."""

import json
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from database.connection import Database
from database.models import (
    Decision,
    ReviewStage,
    Submission,
    SubmissionImage,
    SubmissionStatus,
    TaskType,
    TrailEntry,
)
from database.models.submission import REJECTED_STATUSES
from utils.timeutils import to_db, utcnow

METADATA_FIELDS = (
    "note_url",
    "note_title",
    "note_author",
    "comment_text",
    "customer_phone",
    "customer_wechat",
)


class SubmissionRepository:
    """Repository for submission operations."""

    def __init__(self, db: Database):
        self.db = db

    async def create(
        self,
        user_id: int,
        task_type: TaskType,
        images: Sequence[SubmissionImage],
        snapshot_price: int,
        snapshot_commission_1: int,
        snapshot_commission_2: int,
        pricing_version: int,
        device_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
    ) -> Submission:
        """Insert a pending submission with its images and the submit trail entry."""
        metadata = metadata or {}
        now = to_db(created_at or utcnow())

        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO submissions
                    (user_id, device_id, task_type, status,
                     note_url, note_title, note_author, comment_text, customer_phone, customer_wechat,
                     snapshot_price, snapshot_commission_1, snapshot_commission_2, pricing_version,
                     created_at, updated_at)
                VALUES (?, ?, ?, 'pending', ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    device_id,
                    TaskType(task_type).value,
                    *(metadata.get(name) for name in METADATA_FIELDS),
                    snapshot_price,
                    snapshot_commission_1,
                    snapshot_commission_2,
                    pricing_version,
                    now,
                    now,
                ),
            )
            submission_id = cursor.lastrowid

            for image in images:
                await conn.execute(
                    """
                    INSERT INTO submission_images (submission_id, position, image_url, content_hash)
                    VALUES (?, ?, ?, ?)
                    """,
                    (submission_id, image.position, image.image_url, image.content_hash),
                )

            await self.append_trail(
                submission_id,
                stage=ReviewStage.SUBMIT,
                actor_id=user_id,
                actor_role="part_time",
                decision=Decision.SUBMIT,
                from_status=None,
                to_status=SubmissionStatus.PENDING,
                created_at=created_at,
            )

        return await self.get_by_id(submission_id)

    async def get_by_id(self, submission_id: int, with_trail: bool = True) -> Optional[Submission]:
        """Get submission by ID, with images and (optionally) the trail."""
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "SELECT * FROM submissions WHERE id = ?",
            (submission_id,),
        )
        row = await cursor.fetchone()
        if not row:
            return None

        submission = Submission.from_row(row)
        submission.images = await self.get_images(submission_id)
        if with_trail:
            submission.trail = await self.get_trail(submission_id)
        return submission

    async def get_images(self, submission_id: int) -> List[SubmissionImage]:
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "SELECT * FROM submission_images WHERE submission_id = ? ORDER BY position",
            (submission_id,),
        )
        rows = await cursor.fetchall()
        return [SubmissionImage.from_row(row) for row in rows]

    async def get_trail(self, submission_id: int) -> List[TrailEntry]:
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "SELECT * FROM review_trail WHERE submission_id = ? ORDER BY id",
            (submission_id,),
        )
        rows = await cursor.fetchall()
        return [TrailEntry.from_row(row) for row in rows]

    async def append_trail(
        self,
        submission_id: int,
        stage: ReviewStage,
        actor_id: Optional[int],
        actor_role: str,
        decision: Decision,
        from_status: Optional[SubmissionStatus],
        to_status: SubmissionStatus,
        reason: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> int:
        """Append one immutable trail entry and return its id."""
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            """
            INSERT INTO review_trail
                (submission_id, stage, actor_id, actor_role, decision,
                 from_status, to_status, reason, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                submission_id,
                ReviewStage(stage).value,
                actor_id,
                getattr(actor_role, "value", actor_role),
                Decision(decision).value,
                SubmissionStatus(from_status).value if from_status else None,
                SubmissionStatus(to_status).value,
                reason,
                to_db(created_at or utcnow()),
            ),
        )
        return cursor.lastrowid

    async def compare_and_set_status(
        self,
        submission_id: int,
        expected: SubmissionStatus,
        new_status: SubmissionStatus,
        **fields: Any,
    ) -> bool:
        """
        Move a submission to new_status only if it is still in expected.

        Extra keyword fields are written in the same statement.

        Returns:
            True if the row changed
        """
        assignments = ["status = ?", "updated_at = ?"]
        params: List[Any] = [SubmissionStatus(new_status).value, to_db(utcnow())]
        for name, value in fields.items():
            assignments.append(f"{name} = ?")
            if isinstance(value, datetime):
                value = to_db(value)
            elif isinstance(value, (list, dict)):
                value = json.dumps(value)
            params.append(value)

        params.extend([submission_id, SubmissionStatus(expected).value])
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            f"UPDATE submissions SET {', '.join(assignments)} WHERE id = ? AND status = ?",
            tuple(params),
        )
        return cursor.rowcount == 1

    async def update_fields(self, submission_id: int, **fields: Any) -> None:
        """Update non-status columns (attempt counter, AI verdict, check progress)."""
        if not fields:
            return
        assignments = ["updated_at = ?"]
        params: List[Any] = [to_db(utcnow())]
        for name, value in fields.items():
            assignments.append(f"{name} = ?")
            if isinstance(value, datetime):
                value = to_db(value)
            elif isinstance(value, (list, dict)):
                value = json.dumps(value)
            elif hasattr(value, "value"):
                value = value.value
            params.append(value)
        params.append(submission_id)

        conn = await self.db.get_connection()
        await conn.execute(
            f"UPDATE submissions SET {', '.join(assignments)} WHERE id = ?",
            tuple(params),
        )

    async def find_duplicate(
        self,
        user_id: int,
        content_hashes: Iterable[str],
        since: datetime,
    ) -> Optional[Dict[str, Any]]:
        """
        Find a live submission of this owner that already used one of the hashes.

        Rejected submissions do not count.

        Returns:
            {"submission_id", "content_hash"} or None
        """
        hashes = list(content_hashes)
        if not hashes:
            return None
        rejected = [status.value for status in REJECTED_STATUSES]
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            f"""
            SELECT s.id AS submission_id, i.content_hash AS content_hash
            FROM submission_images i
            JOIN submissions s ON s.id = i.submission_id
            WHERE s.user_id = ?
              AND s.created_at >= ?
              AND s.status NOT IN ({", ".join("?" for _ in rejected)})
              AND i.content_hash IN ({", ".join("?" for _ in hashes)})
            ORDER BY s.id
            LIMIT 1
            """,
            (user_id, to_db(since), *rejected, *hashes),
        )
        row = await cursor.fetchone()
        if row:
            return {"submission_id": row["submission_id"], "content_hash": row["content_hash"]}
        return None

    async def get_by_statuses(self, statuses: Iterable[SubmissionStatus]) -> List[Submission]:
        """Get submissions (without trail) in any of the given statuses."""
        values = [SubmissionStatus(status).value for status in statuses]
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            f"SELECT * FROM submissions WHERE status IN ({', '.join('?' for _ in values)}) ORDER BY id",
            tuple(values),
        )
        rows = await cursor.fetchall()
        return [Submission.from_row(row) for row in rows]

    async def get_user_submissions(
        self,
        user_id: int,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Submission]:
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            """
            SELECT * FROM submissions
            WHERE user_id = ?
            ORDER BY id DESC
            LIMIT ? OFFSET ?
            """,
            (user_id, limit, offset),
        )
        rows = await cursor.fetchall()
        return [Submission.from_row(row) for row in rows]

    async def get_mentor_queue(
        self,
        mentor_id: Optional[int],
        limit: int = 20,
        offset: int = 0,
    ) -> List[Submission]:
        """
        Get submissions awaiting a mentor, oldest first.

        With a mentor_id, only owners assigned to that mentor or to nobody.
        """
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            """
            SELECT s.* FROM submissions s
            JOIN users u ON u.id = s.user_id
            WHERE s.status = 'mentor_review'
              AND (? IS NULL OR u.mentor_id IS NULL OR u.mentor_id = ?)
            ORDER BY s.id
            LIMIT ? OFFSET ?
            """,
            (mentor_id, mentor_id, limit, offset),
        )
        rows = await cursor.fetchall()
        return [Submission.from_row(row) for row in rows]

    async def get_active_continuous_checks(self) -> List[Submission]:
        """Get settled notes whose daily survival check is still running."""
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            """
            SELECT * FROM submissions
            WHERE task_type = 'note'
              AND continuous_check_status = 'active'
              AND status IN ('completed', 'paid')
            ORDER BY id
            """
        )
        rows = await cursor.fetchall()
        return [Submission.from_row(row) for row in rows]
