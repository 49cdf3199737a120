"""User model."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from utils.timeutils import from_db


class Role(str, Enum):
    PART_TIME = "part_time"
    MENTOR = "mentor"
    MANAGER = "manager"
    FINANCE = "finance"
    HR = "hr"
    BOSS = "boss"
    SYSTEM = "system"


@dataclass
class User:
    """User data model."""

    id: int
    openid: Optional[str]
    username: Optional[str]
    nickname: Optional[str]
    phone: Optional[str]
    role: Role
    referrer_id: Optional[int]
    is_deleted: bool
    created_at: datetime
    updated_at: datetime
    mentor_id: Optional[int] = None
    mentor_assigned_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "User":
        """Create User from database row."""
        return cls(
            id=row["id"],
            openid=row["openid"],
            username=row["username"],
            nickname=row["nickname"],
            phone=row["phone"],
            role=Role(row["role"]),
            referrer_id=row["referrer_id"],
            is_deleted=bool(row["is_deleted"]),
            created_at=from_db(row["created_at"]),
            updated_at=from_db(row["updated_at"]),
            mentor_id=row["mentor_id"],
            mentor_assigned_at=from_db(row["mentor_assigned_at"]),
        )

    @property
    def display_name(self) -> str:
        """Get display name for the user."""
        return self.nickname or self.username or f"User {self.id}"

    @property
    def is_staff(self) -> bool:
        return self.role not in (Role.PART_TIME, Role.SYSTEM)
