"""SQLite database connection and unit-of-work handling using aiosqlite."""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import aiosqlite

logger = logging.getLogger(__name__)


class Database:
    """
    Async SQLite database manager.

    A single connection is shared by the whole process. Every unit of work
    (a transaction, or a consistent read) holds the database lock, so state
    transitions and ledger mutations are serialized and no reader observes a
    half-applied unit.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._owner: Optional[asyncio.Task] = None
        self._in_transaction = False

    async def get_connection(self) -> aiosqlite.Connection:
        """Get the shared connection."""
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    async def close(self) -> None:
        """Close the connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def initialize(self) -> None:
        """Open the connection and bring the schema up to date."""
        from database.migrations import run_migrations

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        # isolation_level=None: transactions are opened explicitly by transaction()
        self._conn = await aiosqlite.connect(self.db_path, isolation_level=None)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA foreign_keys = ON")
        await self._conn.execute("PRAGMA busy_timeout = 5000")
        logger.info(f"Database connection opened: {self.db_path}")

        version = await run_migrations(self)
        logger.info(f"Database schema at version {version}")

    @property
    def in_transaction(self) -> bool:
        """True when the calling task is inside transaction()."""
        return self._in_transaction and self._owns_lock()

    def _owns_lock(self) -> bool:
        current = asyncio.current_task()
        return current is not None and self._owner is current

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Run a block as one atomic unit.

        Nested use from the task that already holds the unit joins it; any
        exception rolls back the whole outermost unit.
        """
        conn = await self.get_connection()

        if self._owns_lock():
            if self._in_transaction:
                yield conn
                return
            raise RuntimeError("Cannot open a transaction inside a read-only unit")

        async with self._lock:
            self._owner = asyncio.current_task()
            self._in_transaction = True
            try:
                await conn.execute("BEGIN IMMEDIATE")
                try:
                    yield conn
                except BaseException:
                    await conn.rollback()
                    raise
                else:
                    await conn.commit()
            finally:
                self._in_transaction = False
                self._owner = None

    @asynccontextmanager
    async def reading(self) -> AsyncIterator[aiosqlite.Connection]:
        """Hold the lock for a consistent multi-statement read."""
        conn = await self.get_connection()

        if self._owns_lock():
            yield conn
            return

        async with self._lock:
            self._owner = asyncio.current_task()
            try:
                yield conn
            finally:
                self._owner = None

    async def execute(self, query: str, *args):
        """Execute a single statement and return the cursor."""
        conn = await self.get_connection()
        return await conn.execute(query, args)

    async def fetchone(self, query: str, *args):
        """Fetch a single row."""
        conn = await self.get_connection()
        cursor = await conn.execute(query, args)
        return await cursor.fetchone()

    async def fetchall(self, query: str, *args):
        """Fetch all rows."""
        conn = await self.get_connection()
        cursor = await conn.execute(query, args)
        return await cursor.fetchall()

    async def fetchval(self, query: str, *args):
        """Fetch the first column of the first row."""
        row = await self.fetchone(query, *args)
        return row[0] if row else None
