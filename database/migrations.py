"""Versioned schema migrations tracked with PRAGMA user_version."""

import logging
from typing import Awaitable, Callable, List, Optional, Tuple

from config.constants import DEFAULT_TASK_PRICING
from config.settings import settings
from utils.timeutils import to_db, utcnow

logger = logging.getLogger(__name__)

# Legacy vocabulary -> canonical vocabulary
LEGACY_STATUS_MAP = {
    "cs_review": "manager_review",
    "cs_approved": "manager_review",
    "approved": "manager_approved",
    "finance_processing": "manager_approved",
}

LEGACY_ROLE_MAP = {
    "user": "part_time",
    "sales": "hr",
    "cs": "mentor",
}

LEGACY_DECISION_MAP = {
    "cs_pass": "mentor_pass",
    "cs_reject": "mentor_reject",
    "ai_auto_approved": "ai_pass",
}

LEGACY_TASK_TYPE_MAP = {
    "customer_resource": "lead",
}


def normalize_status(value: str) -> str:
    """Map a legacy submission status to the canonical name."""
    return LEGACY_STATUS_MAP.get(value, value)


def normalize_role(value: str) -> str:
    """Map a legacy role name to the canonical name."""
    return LEGACY_ROLE_MAP.get(value, value)


def normalize_decision(value: str) -> str:
    """Map a legacy review action to the canonical decision."""
    return LEGACY_DECISION_MAP.get(value, value)


def normalize_task_type(value: str) -> str:
    return LEGACY_TASK_TYPE_MAP.get(value, value)


async def _create_schema(conn) -> None:
    """Create tables, indexes and immutability triggers."""
    await conn.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            openid TEXT UNIQUE,
            username TEXT,
            nickname TEXT,
            phone TEXT,
            role TEXT NOT NULL DEFAULT 'part_time',
            referrer_id INTEGER REFERENCES users(id),
            is_deleted INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)

    await conn.execute("""
        CREATE TABLE IF NOT EXISTS wallets (
            user_id INTEGER PRIMARY KEY REFERENCES users(id),
            accrued_total INTEGER NOT NULL DEFAULT 0,
            paid_out_total INTEGER NOT NULL DEFAULT 0,
            balance INTEGER NOT NULL DEFAULT 0,
            updated_at TEXT NOT NULL,
            CHECK (balance = accrued_total - paid_out_total),
            CHECK (balance >= 0)
        )
    """)

    await conn.execute("""
        CREATE TABLE IF NOT EXISTS task_configs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            type_key TEXT NOT NULL,
            name TEXT NOT NULL,
            price INTEGER NOT NULL CHECK (price >= 0),
            commission_1 INTEGER NOT NULL DEFAULT 0 CHECK (commission_1 >= 0),
            commission_2 INTEGER NOT NULL DEFAULT 0 CHECK (commission_2 >= 0),
            version INTEGER NOT NULL,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            UNIQUE (type_key, version)
        )
    """)

    await conn.execute("""
        CREATE TABLE IF NOT EXISTS exchange_rates (
            version INTEGER PRIMARY KEY,
            points_per_unit INTEGER NOT NULL CHECK (points_per_unit > 0),
            created_at TEXT NOT NULL
        )
    """)

    await conn.execute("""
        CREATE TABLE IF NOT EXISTS submissions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL REFERENCES users(id),
            device_id TEXT,
            task_type TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            note_url TEXT,
            note_title TEXT,
            note_author TEXT,
            comment_text TEXT,
            customer_phone TEXT,
            customer_wechat TEXT,
            snapshot_price INTEGER NOT NULL,
            snapshot_commission_1 INTEGER NOT NULL DEFAULT 0,
            snapshot_commission_2 INTEGER NOT NULL DEFAULT 0,
            pricing_version INTEGER NOT NULL,
            attempt_count INTEGER NOT NULL DEFAULT 0,
            ai_confidence REAL,
            ai_reasons TEXT,
            continuous_check_status TEXT,
            continuous_check_days INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            completed_at TEXT,
            paid_at TEXT
        )
    """)

    await conn.execute("""
        CREATE TABLE IF NOT EXISTS submission_images (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            submission_id INTEGER NOT NULL REFERENCES submissions(id),
            position INTEGER NOT NULL,
            image_url TEXT NOT NULL,
            content_hash TEXT NOT NULL,
            UNIQUE (submission_id, position)
        )
    """)

    await conn.execute("""
        CREATE TABLE IF NOT EXISTS review_trail (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            submission_id INTEGER NOT NULL REFERENCES submissions(id),
            stage TEXT NOT NULL,
            actor_id INTEGER,
            actor_role TEXT NOT NULL,
            decision TEXT NOT NULL,
            from_status TEXT,
            to_status TEXT NOT NULL,
            reason TEXT,
            created_at TEXT NOT NULL
        )
    """)

    await conn.execute("""
        CREATE TABLE IF NOT EXISTS transactions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL REFERENCES users(id),
            submission_id INTEGER REFERENCES submissions(id),
            type TEXT NOT NULL,
            amount INTEGER NOT NULL CHECK (amount > 0),
            status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'paid')),
            idempotency_key TEXT UNIQUE,
            description TEXT,
            created_at TEXT NOT NULL,
            paid_at TEXT,
            paid_by INTEGER
        )
    """)

    await conn.execute("""
        CREATE TABLE IF NOT EXISTS continuous_checks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            submission_id INTEGER NOT NULL REFERENCES submissions(id),
            check_day INTEGER NOT NULL,
            check_date TEXT NOT NULL,
            note_exists INTEGER NOT NULL,
            transaction_id INTEGER REFERENCES transactions(id),
            created_at TEXT NOT NULL,
            UNIQUE (submission_id, check_day)
        )
    """)

    # Review trail rows are immutable
    await conn.execute("""
        CREATE TRIGGER IF NOT EXISTS review_trail_no_update
        BEFORE UPDATE ON review_trail
        BEGIN
            SELECT RAISE(ABORT, 'review trail is append-only');
        END
    """)
    await conn.execute("""
        CREATE TRIGGER IF NOT EXISTS review_trail_no_delete
        BEFORE DELETE ON review_trail
        BEGIN
            SELECT RAISE(ABORT, 'review trail is append-only');
        END
    """)

    # Transactions are never deleted; only pending -> paid is allowed
    await conn.execute("""
        CREATE TRIGGER IF NOT EXISTS transactions_no_delete
        BEFORE DELETE ON transactions
        BEGIN
            SELECT RAISE(ABORT, 'transactions are append-only');
        END
    """)
    await conn.execute("""
        CREATE TRIGGER IF NOT EXISTS transactions_settled_only
        BEFORE UPDATE ON transactions
        WHEN OLD.status = 'paid'
            OR NEW.amount != OLD.amount
            OR NEW.user_id != OLD.user_id
            OR NEW.type != OLD.type
        BEGIN
            SELECT RAISE(ABORT, 'only pending transactions can be marked paid');
        END
    """)

    await conn.execute("CREATE INDEX IF NOT EXISTS idx_users_referrer_id ON users(referrer_id)")
    await conn.execute("CREATE INDEX IF NOT EXISTS idx_submissions_user_id ON submissions(user_id)")
    await conn.execute("CREATE INDEX IF NOT EXISTS idx_submissions_status ON submissions(status)")
    await conn.execute("CREATE INDEX IF NOT EXISTS idx_submission_images_hash ON submission_images(content_hash)")
    await conn.execute("CREATE INDEX IF NOT EXISTS idx_review_trail_submission ON review_trail(submission_id)")
    await conn.execute("CREATE INDEX IF NOT EXISTS idx_transactions_user_id ON transactions(user_id)")
    await conn.execute("CREATE INDEX IF NOT EXISTS idx_transactions_status ON transactions(status)")
    await conn.execute("CREATE INDEX IF NOT EXISTS idx_transactions_submission ON transactions(submission_id)")


async def _normalize_legacy_vocabulary(conn) -> None:
    """Rewrite statuses, roles, review decisions and task types to canonical names."""
    for legacy, canonical in LEGACY_STATUS_MAP.items():
        await conn.execute("UPDATE submissions SET status = ? WHERE status = ?", (canonical, legacy))
    for legacy, canonical in LEGACY_ROLE_MAP.items():
        await conn.execute("UPDATE users SET role = ? WHERE role = ?", (canonical, legacy))
    for legacy, canonical in LEGACY_TASK_TYPE_MAP.items():
        await conn.execute("UPDATE submissions SET task_type = ? WHERE task_type = ?", (canonical, legacy))
        await conn.execute("UPDATE task_configs SET type_key = ? WHERE type_key = ?", (canonical, legacy))

    # The trail is append-only; lift the guard for the one-time rewrite
    await conn.execute("DROP TRIGGER IF EXISTS review_trail_no_update")
    for legacy, canonical in LEGACY_DECISION_MAP.items():
        await conn.execute("UPDATE review_trail SET decision = ? WHERE decision = ?", (canonical, legacy))
    for legacy, canonical in LEGACY_ROLE_MAP.items():
        await conn.execute("UPDATE review_trail SET actor_role = ? WHERE actor_role = ?", (canonical, legacy))
    for legacy, canonical in LEGACY_STATUS_MAP.items():
        await conn.execute("UPDATE review_trail SET from_status = ? WHERE from_status = ?", (canonical, legacy))
        await conn.execute("UPDATE review_trail SET to_status = ? WHERE to_status = ?", (canonical, legacy))
    await conn.execute("""
        CREATE TRIGGER IF NOT EXISTS review_trail_no_update
        BEFORE UPDATE ON review_trail
        BEGIN
            SELECT RAISE(ABORT, 'review trail is append-only');
        END
    """)


async def _seed_configuration(conn) -> None:
    """Insert version 1 of the task pricing table and the exchange rate."""
    now = to_db(utcnow())
    for type_key, pricing in DEFAULT_TASK_PRICING.items():
        await conn.execute(
            """
            INSERT OR IGNORE INTO task_configs
                (type_key, name, price, commission_1, commission_2, version, is_active, created_at)
            VALUES (?, ?, ?, ?, ?, 1, 1, ?)
            """,
            (
                type_key,
                pricing["name"],
                pricing["price"],
                pricing["commission_1"],
                pricing["commission_2"],
                now,
            ),
        )
    await conn.execute(
        "INSERT OR IGNORE INTO exchange_rates (version, points_per_unit, created_at) VALUES (1, ?, ?)",
        (settings.points_per_unit, now),
    )


async def _has_column(conn, table: str, column: str) -> bool:
    cursor = await conn.execute(f"PRAGMA table_info({table})")
    rows = await cursor.fetchall()
    return any(row["name"] == column for row in rows)


async def _settle_credits_against_debits(conn) -> None:
    """
    Apply recorded debits to pending credits, oldest first.

    Wallets written before settled amounts existed can hold pending credits
    larger than their balance; after this every pending credit is payable.
    """
    cursor = await conn.execute(
        """
        SELECT w.user_id, w.balance, COALESCE(SUM(t.amount - t.settled_amount), 0) AS owed
        FROM wallets w
        JOIN transactions t ON t.user_id = w.user_id AND t.status = 'pending'
        GROUP BY w.user_id, w.balance
        """
    )
    now = to_db(utcnow())
    for wallet in await cursor.fetchall():
        excess = wallet["owed"] - wallet["balance"]
        if excess <= 0:
            continue
        credits = await conn.execute(
            "SELECT id, amount, settled_amount FROM transactions "
            "WHERE user_id = ? AND status = 'pending' ORDER BY id",
            (wallet["user_id"],),
        )
        for credit in await credits.fetchall():
            if excess <= 0:
                break
            take = min(excess, credit["amount"] - credit["settled_amount"])
            if take == credit["amount"] - credit["settled_amount"]:
                await conn.execute(
                    "UPDATE transactions SET settled_amount = amount, status = 'paid', paid_at = ? WHERE id = ?",
                    (now, credit["id"]),
                )
            else:
                await conn.execute(
                    "UPDATE transactions SET settled_amount = settled_amount + ? WHERE id = ?",
                    (take, credit["id"]),
                )
            excess -= take
        logger.info(f"Settled pending credits of user {wallet['user_id']} against earlier debits")


async def _add_settlement_and_review_tables(conn) -> None:
    """Settled credit amounts, mentor assignment, notifications and comment approvals."""
    if not await _has_column(conn, "transactions", "settled_amount"):
        await conn.execute(
            "ALTER TABLE transactions ADD COLUMN settled_amount INTEGER NOT NULL DEFAULT 0"
        )
    if not await _has_column(conn, "users", "mentor_id"):
        await conn.execute("ALTER TABLE users ADD COLUMN mentor_id INTEGER REFERENCES users(id)")
        await conn.execute("ALTER TABLE users ADD COLUMN mentor_assigned_at TEXT")

    # settled_amount only grows and never passes the amount
    await conn.execute("""
        CREATE TRIGGER IF NOT EXISTS transactions_settled_amount_bounds
        BEFORE UPDATE OF settled_amount ON transactions
        WHEN NEW.settled_amount < OLD.settled_amount OR NEW.settled_amount > NEW.amount
        BEGIN
            SELECT RAISE(ABORT, 'settled amount out of bounds');
        END
    """)

    await conn.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL REFERENCES users(id),
            submission_id INTEGER REFERENCES submissions(id),
            kind TEXT NOT NULL,
            old_status TEXT,
            new_status TEXT,
            message TEXT NOT NULL,
            is_read INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        )
    """)

    await conn.execute("""
        CREATE TABLE IF NOT EXISTS comment_approvals (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            note_url TEXT NOT NULL,
            author_nickname TEXT NOT NULL,
            content TEXT NOT NULL,
            submission_id INTEGER NOT NULL UNIQUE REFERENCES submissions(id),
            approved_at TEXT NOT NULL
        )
    """)

    await conn.execute("CREATE INDEX IF NOT EXISTS idx_users_mentor_id ON users(mentor_id)")
    await conn.execute("CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id, is_read)")
    await conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_comment_approvals_target ON comment_approvals(note_url, author_nickname)"
    )

    await _settle_credits_against_debits(conn)


Migration = Tuple[int, str, Callable[..., Awaitable[None]]]

MIGRATIONS: List[Migration] = [
    (1, "create base schema", _create_schema),
    (2, "normalize legacy vocabulary", _normalize_legacy_vocabulary),
    (3, "seed pricing and exchange rate", _seed_configuration),
    (4, "settled credits, mentors, notifications and comment limits", _add_settlement_and_review_tables),
]


async def get_schema_version(conn) -> int:
    cursor = await conn.execute("PRAGMA user_version")
    row = await cursor.fetchone()
    return row[0]


async def run_migrations(db, target: Optional[int] = None) -> int:
    """
    Apply pending migrations in order.

    Each migration runs in its own transaction together with the
    user_version bump, so a failed step leaves the previous version intact.

    Returns:
        The schema version after migrating
    """
    conn = await db.get_connection()
    current = await get_schema_version(conn)

    for version, description, apply in MIGRATIONS:
        if version <= current or (target is not None and version > target):
            continue
        async with db.transaction() as tx:
            await apply(tx)
            # PRAGMA does not accept bound parameters
            await tx.execute(f"PRAGMA user_version = {int(version)}")
        logger.info(f"Applied migration {version}: {description}")
        current = version

    return current
