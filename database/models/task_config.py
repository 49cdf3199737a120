"""Task pricing configuration model."""

from dataclasses import dataclass
from datetime import datetime

from utils.timeutils import from_db


@dataclass
class TaskConfig:
    """One version of the price and commission rates for a task type."""

    id: int
    type_key: str
    name: str
    price: int
    commission_1: int
    commission_2: int
    version: int
    is_active: bool
    created_at: datetime

    @classmethod
    def from_row(cls, row) -> "TaskConfig":
        """Create TaskConfig from database row."""
        return cls(
            id=row["id"],
            type_key=row["type_key"],
            name=row["name"],
            price=row["price"],
            commission_1=row["commission_1"],
            commission_2=row["commission_2"],
            version=row["version"],
            is_active=bool(row["is_active"]),
            created_at=from_db(row["created_at"]),
        )

    def to_dict(self) -> dict:
        return {
            "type_key": self.type_key,
            "name": self.name,
            "price": self.price,
            "commission_1": self.commission_1,
            "commission_2": self.commission_2,
            "version": self.version,
        }


@dataclass
class ExchangeRate:
    """Versioned points-per-currency-unit rate."""

    version: int
    points_per_unit: int
    created_at: datetime

    @classmethod
    def from_row(cls, row) -> "ExchangeRate":
        return cls(
            version=row["version"],
            points_per_unit=row["points_per_unit"],
            created_at=from_db(row["created_at"]),
        )
