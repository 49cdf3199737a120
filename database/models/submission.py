"""Submission, image and review trail models."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from utils.timeutils import from_db


class TaskType(str, Enum):
    LEAD = "lead"
    NOTE = "note"
    COMMENT = "comment"


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    AI_REVIEWING = "ai_reviewing"
    AI_APPROVED = "ai_approved"
    AI_REJECTED = "ai_rejected"
    MENTOR_REVIEW = "mentor_review"
    MENTOR_APPROVED = "mentor_approved"
    MENTOR_REJECTED = "mentor_rejected"
    MANAGER_REVIEW = "manager_review"
    MANAGER_APPROVED = "manager_approved"
    MANAGER_REJECTED = "manager_rejected"
    COMPLETED = "completed"
    PAID = "paid"
    REJECTED = "rejected"


TERMINAL_STATUSES = frozenset({
    SubmissionStatus.MENTOR_REJECTED,
    SubmissionStatus.MANAGER_REJECTED,
    SubmissionStatus.REJECTED,
    SubmissionStatus.PAID,
})

REJECTED_STATUSES = frozenset({
    SubmissionStatus.MENTOR_REJECTED,
    SubmissionStatus.MANAGER_REJECTED,
    SubmissionStatus.REJECTED,
})

# Statuses still owned by the automated reviewer
AI_STAGE_STATUSES = frozenset({
    SubmissionStatus.PENDING,
    SubmissionStatus.AI_REVIEWING,
    SubmissionStatus.AI_REJECTED,
})

SETTLED_STATUSES = frozenset({
    SubmissionStatus.COMPLETED,
    SubmissionStatus.PAID,
})


class ReviewStage(str, Enum):
    SUBMIT = "submit"
    AI = "ai"
    MENTOR = "mentor"
    MANAGER = "manager"
    FINANCE = "finance"
    CONTINUOUS_CHECK = "continuous_check"


class Decision(str, Enum):
    SUBMIT = "submit"
    AI_START = "ai_start"
    AI_PASS = "ai_pass"
    AI_FAIL = "ai_fail"
    AI_ERROR = "ai_error"
    AI_REJECT = "ai_reject"
    ESCALATE = "escalate"
    MENTOR_PASS = "mentor_pass"
    MENTOR_REJECT = "mentor_reject"
    MANAGER_APPROVE = "manager_approve"
    MANAGER_REJECT = "manager_reject"
    FINANCE_PROCESS = "finance_process"
    PAY = "pay"
    DAILY_CHECK_PASSED = "daily_check_passed"
    NOTE_DELETED = "note_deleted"


@dataclass
class SubmissionImage:
    """One (image URL, content hash) pair of a submission."""

    position: int
    image_url: str
    content_hash: str

    @classmethod
    def from_row(cls, row) -> "SubmissionImage":
        return cls(
            position=row["position"],
            image_url=row["image_url"],
            content_hash=row["content_hash"],
        )


@dataclass
class TrailEntry:
    """Immutable review trail record."""

    id: int
    submission_id: int
    stage: ReviewStage
    actor_id: Optional[int]
    actor_role: str
    decision: Decision
    from_status: Optional[str]
    to_status: str
    reason: Optional[str]
    created_at: datetime

    @classmethod
    def from_row(cls, row) -> "TrailEntry":
        return cls(
            id=row["id"],
            submission_id=row["submission_id"],
            stage=ReviewStage(row["stage"]),
            actor_id=row["actor_id"],
            actor_role=row["actor_role"],
            decision=Decision(row["decision"]),
            from_status=row["from_status"],
            to_status=row["to_status"],
            reason=row["reason"],
            created_at=from_db(row["created_at"]),
        )

    def to_dict(self) -> dict:
        return {
            "stage": self.stage.value,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "decision": self.decision.value,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "reason": self.reason,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class Submission:
    """Submission data model."""

    id: int
    user_id: int
    device_id: Optional[str]
    task_type: TaskType
    status: SubmissionStatus
    note_url: Optional[str]
    note_title: Optional[str]
    note_author: Optional[str]
    comment_text: Optional[str]
    customer_phone: Optional[str]
    customer_wechat: Optional[str]
    snapshot_price: int
    snapshot_commission_1: int
    snapshot_commission_2: int
    pricing_version: int
    attempt_count: int
    ai_confidence: Optional[float]
    ai_reasons: List[str]
    continuous_check_status: Optional[str]
    continuous_check_days: int
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime]
    paid_at: Optional[datetime]
    images: List[SubmissionImage] = field(default_factory=list)
    trail: List[TrailEntry] = field(default_factory=list)

    @classmethod
    def from_row(cls, row) -> "Submission":
        """Create Submission from database row."""
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            device_id=row["device_id"],
            task_type=TaskType(row["task_type"]),
            status=SubmissionStatus(row["status"]),
            note_url=row["note_url"],
            note_title=row["note_title"],
            note_author=row["note_author"],
            comment_text=row["comment_text"],
            customer_phone=row["customer_phone"],
            customer_wechat=row["customer_wechat"],
            snapshot_price=row["snapshot_price"],
            snapshot_commission_1=row["snapshot_commission_1"],
            snapshot_commission_2=row["snapshot_commission_2"],
            pricing_version=row["pricing_version"],
            attempt_count=row["attempt_count"],
            ai_confidence=row["ai_confidence"],
            ai_reasons=json.loads(row["ai_reasons"]) if row["ai_reasons"] else [],
            continuous_check_status=row["continuous_check_status"],
            continuous_check_days=row["continuous_check_days"],
            created_at=from_db(row["created_at"]),
            updated_at=from_db(row["updated_at"]),
            completed_at=from_db(row["completed_at"]),
            paid_at=from_db(row["paid_at"]),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_settled(self) -> bool:
        """True once commissions have been credited."""
        return self.status in SETTLED_STATUSES

    @property
    def content_hashes(self) -> List[str]:
        return [image.content_hash for image in self.images]

    def to_dict(self, include_trail: bool = True) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "device_id": self.device_id,
            "task_type": self.task_type.value,
            "status": self.status.value,
            "note_url": self.note_url,
            "note_title": self.note_title,
            "note_author": self.note_author,
            "comment_text": self.comment_text,
            "customer_phone": self.customer_phone,
            "customer_wechat": self.customer_wechat,
            "snapshot": {
                "price": self.snapshot_price,
                "commission_1": self.snapshot_commission_1,
                "commission_2": self.snapshot_commission_2,
                "pricing_version": self.pricing_version,
            },
            "attempt_count": self.attempt_count,
            "ai_confidence": self.ai_confidence,
            "ai_reasons": self.ai_reasons,
            "images": [
                {"image_url": image.image_url, "content_hash": image.content_hash}
                for image in self.images
            ],
            "continuous_check_status": self.continuous_check_status,
            "continuous_check_days": self.continuous_check_days,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
        }
        if include_trail:
            data["trail"] = [entry.to_dict() for entry in self.trail]
        return data
