"""Tests for schema migrations, legacy vocabulary rewrite and store-level guards."""

import aiosqlite
import pytest

from database.connection import Database
from database.migrations import (
    MIGRATIONS,
    get_schema_version,
    normalize_decision,
    normalize_role,
    normalize_status,
    normalize_task_type,
    run_migrations,
)
from services.ledger_service import LedgerService


class TestMigrations:
    """Test suite for the versioned migrations."""

    @pytest.mark.asyncio
    async def test_schema_at_latest_version(self, temp_db: Database):
        conn = await temp_db.get_connection()
        assert await get_schema_version(conn) == MIGRATIONS[-1][0]

    @pytest.mark.asyncio
    async def test_rerun_is_noop(self, temp_db: Database):
        assert await run_migrations(temp_db) == MIGRATIONS[-1][0]
        assert await temp_db.fetchval("SELECT COUNT(*) FROM exchange_rates") == 1

    @pytest.mark.asyncio
    async def test_seeds_default_pricing(self, temp_db: Database):
        rows = await temp_db.fetchall(
            "SELECT type_key, price, commission_1, commission_2, version FROM task_configs ORDER BY type_key"
        )
        pricing = {row["type_key"]: (row["price"], row["commission_1"], row["commission_2"]) for row in rows}

        assert pricing == {
            "comment": (300, 30, 15),
            "lead": (1000, 100, 50),
            "note": (800, 80, 40),
        }
        assert all(row["version"] == 1 for row in rows)

    @pytest.mark.asyncio
    async def test_legacy_vocabulary_rewritten(self, temp_db: Database):
        """Test rows written with the old vocabulary are rewritten by migration 2."""
        conn = await temp_db.get_connection()
        async with temp_db.transaction():
            cursor = await conn.execute(
                "INSERT INTO users (username, role, created_at, updated_at) VALUES ('old', 'sales', 't', 't')"
            )
            user_id = cursor.lastrowid
            await conn.execute(
                "INSERT INTO users (username, role, created_at, updated_at) VALUES ('cs1', 'cs', 't', 't')"
            )
            cursor = await conn.execute(
                """
                INSERT INTO submissions
                    (user_id, task_type, status, snapshot_price, pricing_version, created_at, updated_at)
                VALUES (?, 'customer_resource', 'cs_review', 1000, 1, 't', 't')
                """,
                (user_id,),
            )
            submission_id = cursor.lastrowid
            await conn.execute(
                """
                INSERT INTO review_trail
                    (submission_id, stage, actor_role, decision, from_status, to_status, created_at)
                VALUES (?, 'mentor', 'cs', 'cs_pass', 'ai_approved', 'cs_approved', 't')
                """,
                (submission_id,),
            )
            await conn.execute("PRAGMA user_version = 1")

        assert await run_migrations(temp_db) == MIGRATIONS[-1][0]

        submission = await temp_db.fetchone("SELECT status, task_type FROM submissions WHERE id = ?", submission_id)
        assert submission["status"] == "manager_review"
        assert submission["task_type"] == "lead"

        roles = await temp_db.fetchall("SELECT role FROM users WHERE username IN ('old', 'cs1') ORDER BY username")
        assert [row["role"] for row in roles] == ["mentor", "hr"]

        entry = await temp_db.fetchone("SELECT * FROM review_trail WHERE submission_id = ?", submission_id)
        assert entry["decision"] == "mentor_pass"
        assert entry["actor_role"] == "mentor"
        assert entry["to_status"] == "manager_review"

    @pytest.mark.asyncio
    async def test_trail_guard_restored_after_rewrite(self, temp_db: Database):
        async with temp_db.transaction():
            await temp_db.execute("PRAGMA user_version = 1")
        await run_migrations(temp_db)

        triggers = await temp_db.fetchall("SELECT name FROM sqlite_master WHERE type = 'trigger'")
        assert "review_trail_no_update" in {row["name"] for row in triggers}

    @pytest.mark.asyncio
    async def test_earlier_debits_settle_pending_credits(self, temp_db: Database):
        """Test a wallet that exchanged points before credits tracked settlement."""
        async with temp_db.transaction() as conn:
            cursor = await conn.execute(
                "INSERT INTO users (username, role, created_at, updated_at) VALUES ('x', 'part_time', 't', 't')"
            )
            user_id = cursor.lastrowid
            await conn.execute(
                "INSERT INTO wallets (user_id, accrued_total, paid_out_total, balance, updated_at) "
                "VALUES (?, 400, 300, 100, 't')",
                (user_id,),
            )
            for amount, txn_type, status in (
                (100, "task_reward", "pending"),
                (300, "task_reward", "pending"),
                (300, "point_exchange", "paid"),
            ):
                await conn.execute(
                    "INSERT INTO transactions (user_id, type, amount, status, created_at) VALUES (?, ?, ?, ?, 't')",
                    (user_id, txn_type, amount, status),
                )
            await conn.execute("PRAGMA user_version = 3")

        assert await run_migrations(temp_db) == MIGRATIONS[-1][0]

        rows = await temp_db.fetchall(
            "SELECT amount, settled_amount, status FROM transactions WHERE user_id = ? AND type = 'task_reward' ORDER BY id",
            user_id,
        )
        assert [(r["amount"], r["settled_amount"], r["status"]) for r in rows] == [
            (100, 100, "paid"),
            (300, 200, "pending"),
        ]
        assert (await LedgerService(temp_db).reconcile(user_id)).ok


class TestStoreGuards:
    """The store itself refuses to rewrite history."""

    async def _trail_row(self, temp_db: Database) -> int:
        async with temp_db.transaction() as conn:
            cursor = await conn.execute(
                "INSERT INTO users (username, role, created_at, updated_at) VALUES ('u', 'part_time', 't', 't')"
            )
            user_id = cursor.lastrowid
            cursor = await conn.execute(
                """
                INSERT INTO submissions
                    (user_id, task_type, status, snapshot_price, pricing_version, created_at, updated_at)
                VALUES (?, 'note', 'pending', 800, 1, 't', 't')
                """,
                (user_id,),
            )
            submission_id = cursor.lastrowid
            cursor = await conn.execute(
                """
                INSERT INTO review_trail (submission_id, stage, actor_role, decision, to_status, created_at)
                VALUES (?, 'submit', 'part_time', 'submit', 'pending', 't')
                """,
                (submission_id,),
            )
            return cursor.lastrowid

    @pytest.mark.asyncio
    async def test_trail_update_aborts(self, temp_db: Database):
        entry_id = await self._trail_row(temp_db)
        with pytest.raises(aiosqlite.IntegrityError):
            async with temp_db.transaction() as conn:
                await conn.execute("UPDATE review_trail SET reason = 'edited' WHERE id = ?", (entry_id,))

    @pytest.mark.asyncio
    async def test_trail_delete_aborts(self, temp_db: Database):
        entry_id = await self._trail_row(temp_db)
        with pytest.raises(aiosqlite.IntegrityError):
            async with temp_db.transaction() as conn:
                await conn.execute("DELETE FROM review_trail WHERE id = ?", (entry_id,))

    @pytest.mark.asyncio
    async def test_wallet_balance_invariant_enforced(self, temp_db: Database):
        async with temp_db.transaction() as conn:
            cursor = await conn.execute(
                "INSERT INTO users (username, role, created_at, updated_at) VALUES ('w', 'part_time', 't', 't')"
            )
            user_id = cursor.lastrowid

        with pytest.raises(aiosqlite.IntegrityError):
            async with temp_db.transaction() as conn:
                await conn.execute(
                    "INSERT INTO wallets (user_id, accrued_total, paid_out_total, balance, updated_at) "
                    "VALUES (?, 100, 0, 90, 't')",
                    (user_id,),
                )

        with pytest.raises(aiosqlite.IntegrityError):
            async with temp_db.transaction() as conn:
                await conn.execute(
                    "INSERT INTO wallets (user_id, accrued_total, paid_out_total, balance, updated_at) "
                    "VALUES (?, 100, 150, -50, 't')",
                    (user_id,),
                )


class TestNormalizers:
    def test_status(self):
        assert normalize_status("cs_review") == "manager_review"
        assert normalize_status("approved") == "manager_approved"
        assert normalize_status("paid") == "paid"

    def test_role(self):
        assert normalize_role("user") == "part_time"
        assert normalize_role("sales") == "hr"
        assert normalize_role("cs") == "mentor"
        assert normalize_role("boss") == "boss"

    def test_decision(self):
        assert normalize_decision("cs_pass") == "mentor_pass"
        assert normalize_decision("cs_reject") == "mentor_reject"

    def test_task_type(self):
        assert normalize_task_type("customer_resource") == "lead"
        assert normalize_task_type("note") == "note"
