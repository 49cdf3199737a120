"""Notifications about review progress."""

import logging
from typing import Any, Dict, Optional

from config.constants import NOTIFICATION_PAGE_SIZE
from core.exceptions import NotFound
from database.connection import Database
from database.models import NotificationKind, Submission, SubmissionStatus
from database.repositories import NotificationRepository, UserRepository

logger = logging.getLogger(__name__)

S = SubmissionStatus

REJECTED_STATUSES = frozenset({S.REJECTED, S.MENTOR_REJECTED, S.MANAGER_REJECTED})


def status_change_message(
    submission: Submission,
    new_status: SubmissionStatus,
    reason: Optional[str] = None,
) -> str:
    """Build the message shown to the owner for a status change."""
    subject = f"Your {submission.task_type.value} submission #{submission.id}"
    if new_status in REJECTED_STATUSES:
        return f"{subject} was rejected: {reason}" if reason else f"{subject} was rejected"
    if new_status == S.COMPLETED:
        return f"{subject} was approved; payment is being processed"
    if new_status == S.PAID:
        return f"{subject} has been paid"
    return f"{subject} is now {new_status.value.replace('_', ' ')}"


class NotificationService:
    """Writes and reads review notifications."""

    def __init__(self, db: Database):
        self.db = db
        self.notification_repo = NotificationRepository(db)
        self.user_repo = UserRepository(db)

    async def notify_status_change(
        self,
        submission: Submission,
        old_status: SubmissionStatus,
        new_status: SubmissionStatus,
        reason: Optional[str] = None,
    ) -> int:
        """Notify the owner of a transition. Runs inside the caller's unit."""
        return await self.notification_repo.create(
            user_id=submission.user_id,
            kind=NotificationKind.REVIEW_STATUS,
            message=status_change_message(submission, new_status, reason),
            submission_id=submission.id,
            old_status=old_status.value,
            new_status=new_status.value,
        )

    async def notify_mentor_of_rejection(
        self,
        submission: Submission,
        rejected_by: str,
        reason: Optional[str] = None,
    ) -> Optional[int]:
        """
        Tell the owner's mentor that a manager rejected work they passed.

        Returns:
            The notification id, or None when the owner has no mentor
        """
        owner = await self.user_repo.get_by_id(submission.user_id)
        if not owner or owner.mentor_id is None:
            return None

        message = (
            f"{rejected_by} rejected {owner.display_name}'s {submission.task_type.value} "
            f"submission #{submission.id}"
        )
        if reason:
            message = f"{message}: {reason}"
        notification_id = await self.notification_repo.create(
            user_id=owner.mentor_id,
            kind=NotificationKind.MENTOR_ACTION_REQUIRED,
            message=message,
            submission_id=submission.id,
            new_status=S.MANAGER_REJECTED.value,
        )
        logger.info(f"Notified mentor {owner.mentor_id} of rejected submission {submission.id}")
        return notification_id

    async def list_for_user(self, user_id: int, limit: int = NOTIFICATION_PAGE_SIZE) -> Dict[str, Any]:
        """
        Get a user's newest notifications.

        Returns:
            {"notifications": [...], "unread_count": int}
        """
        async with self.db.reading():
            notifications = await self.notification_repo.get_user_notifications(user_id, limit)
            unread = await self.notification_repo.count_unread(user_id)
        return {
            "notifications": [notification.to_dict() for notification in notifications],
            "unread_count": unread,
        }

    async def mark_read(self, notification_id: int, user_id: int) -> None:
        """
        Raises:
            NotFound: no such notification for this user
        """
        async with self.db.transaction():
            if not await self.notification_repo.mark_read(notification_id, user_id):
                raise NotFound(f"Notification {notification_id} not found")
