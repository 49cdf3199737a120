"""Transaction log repository."""

from typing import Dict, List, Optional

from config.constants import SQL_IN_BATCH_SIZE
from database.connection import Database
from database.models import Transaction, TransactionStatus, TransactionType
from utils.timeutils import to_db, utcnow

CREDIT_TYPES = tuple(t.value for t in TransactionType if t.is_credit)
DEBIT_TYPES = tuple(t.value for t in TransactionType if not t.is_credit)


def _placeholders(values) -> str:
    return ", ".join("?" for _ in values)


class TransactionRepository:
    """Repository for the append-only transaction log."""

    def __init__(self, db: Database):
        self.db = db

    async def create(
        self,
        user_id: int,
        type: TransactionType,
        amount: int,
        submission_id: Optional[int] = None,
        idempotency_key: Optional[str] = None,
        description: Optional[str] = None,
        status: TransactionStatus = TransactionStatus.PENDING,
        paid_by: Optional[int] = None,
    ) -> Transaction:
        """Append a transaction row."""
        now = to_db(utcnow())
        paid_at = now if status == TransactionStatus.PAID else None
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            """
            INSERT INTO transactions
                (user_id, submission_id, type, amount, status, idempotency_key,
                 description, created_at, paid_at, paid_by)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                user_id,
                submission_id,
                TransactionType(type).value,
                amount,
                TransactionStatus(status).value,
                idempotency_key,
                description,
                now,
                paid_at,
                paid_by,
            ),
        )
        return await self.get_by_id(cursor.lastrowid)

    async def get_by_id(self, transaction_id: int) -> Optional[Transaction]:
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "SELECT * FROM transactions WHERE id = ?",
            (transaction_id,),
        )
        row = await cursor.fetchone()
        if row:
            return Transaction.from_row(row)
        return None

    async def get_by_ids(self, transaction_ids: List[int]) -> List[Transaction]:
        """Get transactions by id, querying in batches of SQL_IN_BATCH_SIZE."""
        ids = list(transaction_ids)
        conn = await self.db.get_connection()
        transactions: List[Transaction] = []
        for start in range(0, len(ids), SQL_IN_BATCH_SIZE):
            batch = ids[start:start + SQL_IN_BATCH_SIZE]
            cursor = await conn.execute(
                f"SELECT * FROM transactions WHERE id IN ({_placeholders(batch)})",
                tuple(batch),
            )
            rows = await cursor.fetchall()
            transactions.extend(Transaction.from_row(row) for row in rows)
        return sorted(transactions, key=lambda txn: txn.id)

    async def get_by_idempotency_key(self, key: str) -> Optional[Transaction]:
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "SELECT * FROM transactions WHERE idempotency_key = ?",
            (key,),
        )
        row = await cursor.fetchone()
        if row:
            return Transaction.from_row(row)
        return None

    async def get_by_submission(self, submission_id: int) -> List[Transaction]:
        """Get all transactions generated by a submission."""
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "SELECT * FROM transactions WHERE submission_id = ? ORDER BY id",
            (submission_id,),
        )
        rows = await cursor.fetchall()
        return [Transaction.from_row(row) for row in rows]

    async def get_user_transactions(
        self,
        user_id: int,
        limit: int = 50,
        offset: int = 0,
        type: Optional[TransactionType] = None,
    ) -> List[Transaction]:
        """Get a user's transaction history, newest first."""
        conn = await self.db.get_connection()
        if type is not None:
            cursor = await conn.execute(
                """
                SELECT * FROM transactions
                WHERE user_id = ? AND type = ?
                ORDER BY id DESC
                LIMIT ? OFFSET ?
                """,
                (user_id, TransactionType(type).value, limit, offset),
            )
        else:
            cursor = await conn.execute(
                """
                SELECT * FROM transactions
                WHERE user_id = ?
                ORDER BY id DESC
                LIMIT ? OFFSET ?
                """,
                (user_id, limit, offset),
            )
        rows = await cursor.fetchall()
        return [Transaction.from_row(row) for row in rows]

    async def mark_paid(self, transaction_id: int, paid_by: Optional[int]) -> bool:
        """
        Move a pending transaction to paid.

        Returns:
            True if this call changed the row, False if it was already paid
        """
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            """
            UPDATE transactions
            SET status = 'paid',
                paid_at = ?,
                paid_by = ?
            WHERE id = ? AND status = 'pending'
            """,
            (to_db(utcnow()), paid_by, transaction_id),
        )
        return cursor.rowcount == 1

    async def get_pending_for_user(self, user_id: int) -> List[Transaction]:
        """Get a user's pending credits, oldest first."""
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "SELECT * FROM transactions WHERE user_id = ? AND status = 'pending' ORDER BY id",
            (user_id,),
        )
        rows = await cursor.fetchall()
        return [Transaction.from_row(row) for row in rows]

    async def settle(self, transaction_id: int, points: int, paid_by: Optional[int]) -> bool:
        """
        Settle part or all of a pending credit.

        A credit whose settled amount reaches its amount becomes paid in the
        same statement.

        Returns:
            True if the credit is now fully settled and paid
        """
        conn = await self.db.get_connection()
        await conn.execute(
            """
            UPDATE transactions
            SET settled_amount = settled_amount + ?,
                status = CASE WHEN settled_amount + ? = amount THEN 'paid' ELSE status END,
                paid_at = CASE WHEN settled_amount + ? = amount THEN ? ELSE paid_at END,
                paid_by = CASE WHEN settled_amount + ? = amount THEN ? ELSE paid_by END
            WHERE id = ? AND status = 'pending'
            """,
            (points, points, points, to_db(utcnow()), points, paid_by, transaction_id),
        )
        txn = await self.get_by_id(transaction_id)
        return txn is not None and not txn.is_pending

    async def get_pending(self) -> List[Transaction]:
        """Get every pending transaction, oldest first."""
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "SELECT * FROM transactions WHERE status = 'pending' ORDER BY user_id, id"
        )
        rows = await cursor.fetchall()
        return [Transaction.from_row(row) for row in rows]

    async def count_pending_for_submission(self, submission_id: int) -> int:
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "SELECT COUNT(*) FROM transactions WHERE submission_id = ? AND status = 'pending'",
            (submission_id,),
        )
        row = await cursor.fetchone()
        return row[0]

    async def get_totals(self, user_id: int) -> Dict[str, int]:
        """
        Sum a user's transactions for reconciliation.

        Returns:
            {"credits_pending", "credits_paid", "debits", "settled_pending", "settled_total"}
        """
        conn = await self.db.get_connection()
        credit_in = _placeholders(CREDIT_TYPES)
        cursor = await conn.execute(
            f"""
            SELECT
                COALESCE(SUM(CASE WHEN type IN ({credit_in}) AND status = 'pending'
                                  THEN amount END), 0) AS credits_pending,
                COALESCE(SUM(CASE WHEN type IN ({credit_in}) AND status = 'paid'
                                  THEN amount END), 0) AS credits_paid,
                COALESCE(SUM(CASE WHEN type IN ({_placeholders(DEBIT_TYPES)})
                                  THEN amount END), 0) AS debits,
                COALESCE(SUM(CASE WHEN status = 'pending'
                                  THEN settled_amount END), 0) AS settled_pending,
                COALESCE(SUM(settled_amount), 0) AS settled_total
            FROM transactions
            WHERE user_id = ?
            """,
            CREDIT_TYPES + CREDIT_TYPES + DEBIT_TYPES + (user_id,),
        )
        row = await cursor.fetchone()
        return {
            "credits_pending": row["credits_pending"],
            "credits_paid": row["credits_paid"],
            "debits": row["debits"],
            "settled_pending": row["settled_pending"],
            "settled_total": row["settled_total"],
        }

    async def get_finance_stats(self) -> Dict[str, int]:
        """
        Totals across all users for the finance dashboard.

        Cash paid out is the unsettled part of paid credits plus withdrawals;
        point exchanges are reported separately.
        """
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            f"""
            SELECT
                COALESCE(SUM(CASE WHEN t.type IN ({_placeholders(CREDIT_TYPES)}) AND t.status = 'paid'
                                  THEN t.amount - t.settled_amount END), 0) AS credits_paid_out,
                COALESCE(SUM(CASE WHEN t.type = ? THEN t.amount END), 0) AS withdrawn,
                COALESCE(SUM(CASE WHEN t.type = ? THEN t.amount END), 0) AS points_exchanged,
                COALESCE(SUM(CASE WHEN t.status = 'pending' AND u.is_deleted = 0
                                  THEN t.amount - t.settled_amount END), 0) AS pending_total,
                COUNT(DISTINCT CASE WHEN t.status = 'pending' AND u.is_deleted = 0
                                    THEN t.user_id END) AS pending_users
            FROM transactions t
            JOIN users u ON u.id = t.user_id
            """,
            CREDIT_TYPES + (TransactionType.WITHDRAWAL.value, TransactionType.POINT_EXCHANGE.value),
        )
        row = await cursor.fetchone()
        return {
            "total_paid": row["credits_paid_out"] + row["withdrawn"],
            "points_exchanged": row["points_exchanged"],
            "pending_total": row["pending_total"],
            "pending_users": row["pending_users"],
        }
