"""Wallet repository for database operations."""

from typing import List, Optional

from database.connection import Database
from database.models import Wallet
from utils.timeutils import to_db, utcnow


class WalletRepository:
    """
    Repository for wallet totals.

    The mutating methods must run inside Database.transaction() so the
    totals move together with the transaction rows that justify them.
    balance is never written directly; each update recomputes it from the
    accrued and paid-out totals in the same statement.
    """

    def __init__(self, db: Database):
        self.db = db

    def _require_transaction(self) -> None:
        if not self.db.in_transaction:
            raise RuntimeError("Wallet mutations must run inside a database transaction")

    async def get_by_user_id(self, user_id: int) -> Optional[Wallet]:
        """Get wallet by user ID."""
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "SELECT * FROM wallets WHERE user_id = ?",
            (user_id,),
        )
        row = await cursor.fetchone()
        if row:
            return Wallet.from_row(row)
        return None

    async def ensure(self, user_id: int) -> Wallet:
        """Get the wallet, creating an empty one if the user has none."""
        conn = await self.db.get_connection()
        await conn.execute(
            "INSERT OR IGNORE INTO wallets (user_id, updated_at) VALUES (?, ?)",
            (user_id, to_db(utcnow())),
        )
        return await self.get_by_user_id(user_id)

    async def add_accrued(self, user_id: int, amount: int) -> None:
        """Increase accrued total (and with it the balance)."""
        self._require_transaction()
        await self.ensure(user_id)
        conn = await self.db.get_connection()
        await conn.execute(
            """
            UPDATE wallets
            SET accrued_total = accrued_total + ?,
                balance = accrued_total + ? - paid_out_total,
                updated_at = ?
            WHERE user_id = ?
            """,
            (amount, amount, to_db(utcnow()), user_id),
        )

    async def add_paid_out(self, user_id: int, amount: int) -> None:
        """Increase paid-out total (and with it lower the balance)."""
        self._require_transaction()
        await self.ensure(user_id)
        conn = await self.db.get_connection()
        await conn.execute(
            """
            UPDATE wallets
            SET paid_out_total = paid_out_total + ?,
                balance = accrued_total - (paid_out_total + ?),
                updated_at = ?
            WHERE user_id = ?
            """,
            (amount, amount, to_db(utcnow()), user_id),
        )

    async def get_all(self) -> List[Wallet]:
        conn = await self.db.get_connection()
        cursor = await conn.execute("SELECT * FROM wallets ORDER BY user_id")
        rows = await cursor.fetchall()
        return [Wallet.from_row(row) for row in rows]
