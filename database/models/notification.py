"""User notification model."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from utils.timeutils import from_db


class NotificationKind(str, Enum):
    REVIEW_STATUS = "review_status"
    MENTOR_ACTION_REQUIRED = "mentor_action_required"


@dataclass
class Notification:
    """Notification data model."""

    id: int
    user_id: int
    submission_id: Optional[int]
    kind: NotificationKind
    old_status: Optional[str]
    new_status: Optional[str]
    message: str
    is_read: bool
    created_at: datetime

    @classmethod
    def from_row(cls, row) -> "Notification":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            submission_id=row["submission_id"],
            kind=NotificationKind(row["kind"]),
            old_status=row["old_status"],
            new_status=row["new_status"],
            message=row["message"],
            is_read=bool(row["is_read"]),
            created_at=from_db(row["created_at"]),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "submission_id": self.submission_id,
            "kind": self.kind.value,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "message": self.message,
            "is_read": self.is_read,
            "created_at": self.created_at.isoformat(),
        }
