"""Wallet model."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from utils.timeutils import from_db


@dataclass
class Wallet:
    """Per-user point totals. balance is always accrued_total - paid_out_total."""

    user_id: int
    accrued_total: int
    paid_out_total: int
    balance: int
    updated_at: Optional[datetime]

    @classmethod
    def from_row(cls, row) -> "Wallet":
        """Create Wallet from database row."""
        return cls(
            user_id=row["user_id"],
            accrued_total=row["accrued_total"],
            paid_out_total=row["paid_out_total"],
            balance=row["balance"],
            updated_at=from_db(row["updated_at"]),
        )

    @classmethod
    def empty(cls, user_id: int) -> "Wallet":
        return cls(user_id=user_id, accrued_total=0, paid_out_total=0, balance=0, updated_at=None)

    @property
    def is_consistent(self) -> bool:
        return self.balance == self.accrued_total - self.paid_out_total

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "accrued_total": self.accrued_total,
            "paid_out_total": self.paid_out_total,
            "balance": self.balance,
        }
