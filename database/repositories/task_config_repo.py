"""Versioned pricing configuration repository."""

from typing import List, Optional

from database.connection import Database
from database.models import ExchangeRate, TaskConfig
from utils.timeutils import to_db, utcnow


class TaskConfigRepository:
    """
    Repository for task pricing and the point exchange rate.

    Rows are never edited in place. A price change inserts the next
    version and deactivates the previous one, so submissions keep pointing
    at the exact rates they were snapshotted with.
    """

    def __init__(self, db: Database):
        self.db = db

    async def get_active(self, type_key: str) -> Optional[TaskConfig]:
        """Get the active config for a task type."""
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            """
            SELECT * FROM task_configs
            WHERE type_key = ? AND is_active = 1
            ORDER BY version DESC
            LIMIT 1
            """,
            (type_key,),
        )
        row = await cursor.fetchone()
        if row:
            return TaskConfig.from_row(row)
        return None

    async def get_version(self, type_key: str, version: int) -> Optional[TaskConfig]:
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "SELECT * FROM task_configs WHERE type_key = ? AND version = ?",
            (type_key, version),
        )
        row = await cursor.fetchone()
        if row:
            return TaskConfig.from_row(row)
        return None

    async def get_all_active(self) -> List[TaskConfig]:
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "SELECT * FROM task_configs WHERE is_active = 1 ORDER BY type_key"
        )
        rows = await cursor.fetchall()
        return [TaskConfig.from_row(row) for row in rows]

    async def get_history(self, type_key: str) -> List[TaskConfig]:
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "SELECT * FROM task_configs WHERE type_key = ? ORDER BY version",
            (type_key,),
        )
        rows = await cursor.fetchall()
        return [TaskConfig.from_row(row) for row in rows]

    async def create_version(
        self,
        type_key: str,
        name: str,
        price: int,
        commission_1: int,
        commission_2: int,
    ) -> TaskConfig:
        """Insert the next version for a task type and make it the active one."""
        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                "SELECT COALESCE(MAX(version), 0) FROM task_configs WHERE type_key = ?",
                (type_key,),
            )
            row = await cursor.fetchone()
            version = row[0] + 1

            await conn.execute(
                "UPDATE task_configs SET is_active = 0 WHERE type_key = ?",
                (type_key,),
            )
            await conn.execute(
                """
                INSERT INTO task_configs
                    (type_key, name, price, commission_1, commission_2, version, is_active, created_at)
                VALUES (?, ?, ?, ?, ?, ?, 1, ?)
                """,
                (type_key, name, price, commission_1, commission_2, version, to_db(utcnow())),
            )

        return await self.get_version(type_key, version)

    async def get_exchange_rate(self) -> Optional[ExchangeRate]:
        """Get the latest exchange rate version."""
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "SELECT * FROM exchange_rates ORDER BY version DESC LIMIT 1"
        )
        row = await cursor.fetchone()
        if row:
            return ExchangeRate.from_row(row)
        return None

    async def create_exchange_rate(self, points_per_unit: int) -> ExchangeRate:
        async with self.db.transaction() as conn:
            cursor = await conn.execute("SELECT COALESCE(MAX(version), 0) FROM exchange_rates")
            row = await cursor.fetchone()
            version = row[0] + 1
            await conn.execute(
                "INSERT INTO exchange_rates (version, points_per_unit, created_at) VALUES (?, ?, ?)",
                (version, points_per_unit, to_db(utcnow())),
            )

        return await self.get_exchange_rate()
