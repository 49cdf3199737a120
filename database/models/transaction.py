"""Ledger transaction model."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from utils.timeutils import from_db


class TransactionType(str, Enum):
    TASK_REWARD = "task_reward"
    REFERRAL_TIER1 = "referral_tier1"
    REFERRAL_TIER2 = "referral_tier2"
    CONTINUOUS_CHECK = "continuous_check"
    POINT_EXCHANGE = "point_exchange"
    WITHDRAWAL = "withdrawal"

    @property
    def is_credit(self) -> bool:
        """Credits add to accrued; debits add to paid-out when recorded."""
        return self not in (TransactionType.POINT_EXCHANGE, TransactionType.WITHDRAWAL)


class TransactionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


@dataclass
class Transaction:
    """Ledger entry data model."""

    id: int
    user_id: int
    submission_id: Optional[int]
    type: TransactionType
    amount: int
    status: TransactionStatus
    idempotency_key: Optional[str]
    description: Optional[str]
    created_at: datetime
    paid_at: Optional[datetime]
    paid_by: Optional[int]
    settled_amount: int = 0

    @classmethod
    def from_row(cls, row) -> "Transaction":
        """Create Transaction from database row."""
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            submission_id=row["submission_id"],
            type=TransactionType(row["type"]),
            amount=row["amount"],
            status=TransactionStatus(row["status"]),
            idempotency_key=row["idempotency_key"],
            description=row["description"],
            created_at=from_db(row["created_at"]),
            paid_at=from_db(row["paid_at"]),
            paid_by=row["paid_by"],
            settled_amount=row["settled_amount"],
        )

    @property
    def is_pending(self) -> bool:
        return self.status == TransactionStatus.PENDING

    @property
    def payable_amount(self) -> int:
        """Part of a credit not yet settled by an exchange or withdrawal."""
        return self.amount - self.settled_amount

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "submission_id": self.submission_id,
            "type": self.type.value,
            "amount": self.amount,
            "settled_amount": self.settled_amount,
            "status": self.status.value,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
        }
