"""User repository for database operations."""

from typing import List, Optional

from database.connection import Database
from database.models import Role, User
from utils.timeutils import to_db, utcnow


class UserRepository:
    """Repository for user operations."""

    def __init__(self, db: Database):
        self.db = db

    async def create(
        self,
        openid: Optional[str] = None,
        username: Optional[str] = None,
        nickname: Optional[str] = None,
        phone: Optional[str] = None,
        role: Role = Role.PART_TIME,
    ) -> User:
        """Create a new user together with an empty wallet."""
        now = to_db(utcnow())
        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO users (openid, username, nickname, phone, role, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (openid, username, nickname, phone, Role(role).value, now, now),
            )
            user_id = cursor.lastrowid
            await conn.execute(
                "INSERT INTO wallets (user_id, updated_at) VALUES (?, ?)",
                (user_id, now),
            )

        return await self.get_by_id(user_id)

    async def get_by_id(self, user_id: int) -> Optional[User]:
        """Get user by ID."""
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "SELECT * FROM users WHERE id = ?",
            (user_id,),
        )
        row = await cursor.fetchone()
        if row:
            return User.from_row(row)
        return None

    async def get_by_openid(self, openid: str) -> Optional[User]:
        """Get user by mini-program openid."""
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "SELECT * FROM users WHERE openid = ?",
            (openid,),
        )
        row = await cursor.fetchone()
        if row:
            return User.from_row(row)
        return None

    async def set_referrer(self, user_id: int, referrer_id: int) -> bool:
        """
        Attach a referrer to a user that has none yet.

        Returns:
            True if the pointer was written, False if one already existed
        """
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            """
            UPDATE users
            SET referrer_id = ?,
                updated_at = ?
            WHERE id = ? AND referrer_id IS NULL
            """,
            (referrer_id, to_db(utcnow()), user_id),
        )
        return cursor.rowcount == 1

    async def update_role(self, user_id: int, role: Role) -> None:
        """Change a user's role."""
        conn = await self.db.get_connection()
        await conn.execute(
            "UPDATE users SET role = ?, updated_at = ? WHERE id = ?",
            (Role(role).value, to_db(utcnow()), user_id),
        )

    async def soft_delete(self, user_id: int) -> None:
        """Mark user as deleted. Deleted users receive no commissions."""
        conn = await self.db.get_connection()
        await conn.execute(
            "UPDATE users SET is_deleted = 1, updated_at = ? WHERE id = ?",
            (to_db(utcnow()), user_id),
        )

    async def get_ancestor_ids(self, user_id: int, limit: int = 1000) -> List[int]:
        """
        Walk the referral pointers upward from a user.

        Stops at the first user without a referrer, or after limit hops.
        The returned list excludes user_id itself.
        """
        ancestors: List[int] = []
        seen = {user_id}
        current_id = user_id

        conn = await self.db.get_connection()
        for _ in range(limit):
            cursor = await conn.execute(
                "SELECT referrer_id FROM users WHERE id = ?",
                (current_id,),
            )
            row = await cursor.fetchone()
            if not row or row["referrer_id"] is None:
                break
            current_id = row["referrer_id"]
            ancestors.append(current_id)
            if current_id in seen:
                break
            seen.add(current_id)

        return ancestors

    async def get_referral_chain(self, user_id: int, depth: int = 2) -> List[User]:
        """
        Get the referrers of a user, nearest first.

        The chain ends early at a missing or deleted referrer.
        """
        chain: List[User] = []
        user = await self.get_by_id(user_id)
        if not user:
            return chain

        current = user
        for _ in range(depth):
            if current.referrer_id is None:
                break
            referrer = await self.get_by_id(current.referrer_id)
            if not referrer or referrer.is_deleted:
                break
            chain.append(referrer)
            current = referrer

        return chain

    async def count_direct_referrals(self, user_id: int) -> int:
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "SELECT COUNT(*) FROM users WHERE referrer_id = ? AND is_deleted = 0",
            (user_id,),
        )
        row = await cursor.fetchone()
        return row[0]

    async def count_second_level_referrals(self, user_id: int) -> int:
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            """
            SELECT COUNT(*) FROM users child
            JOIN users parent ON child.referrer_id = parent.id
            WHERE parent.referrer_id = ? AND child.is_deleted = 0
            """,
            (user_id,),
        )
        row = await cursor.fetchone()
        return row[0]

    async def count_by_role(self, role: Role) -> int:
        """Count non-deleted users with a role."""
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "SELECT COUNT(*) FROM users WHERE role = ? AND is_deleted = 0",
            (Role(role).value,),
        )
        row = await cursor.fetchone()
        return row[0]

    async def assign_mentor(self, user_id: int, mentor_id: int) -> bool:
        """
        Attach a mentor to a user that has none yet.

        Returns:
            True if the assignment was written, False if one already existed
        """
        now = to_db(utcnow())
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            """
            UPDATE users
            SET mentor_id = ?,
                mentor_assigned_at = ?,
                updated_at = ?
            WHERE id = ? AND mentor_id IS NULL
            """,
            (mentor_id, now, now, user_id),
        )
        return cursor.rowcount == 1

    async def get_mentees(self, mentor_id: int) -> List[User]:
        """Get the users assigned to a mentor."""
        conn = await self.db.get_connection()
        cursor = await conn.execute(
            "SELECT * FROM users WHERE mentor_id = ? AND is_deleted = 0 ORDER BY id",
            (mentor_id,),
        )
        rows = await cursor.fetchall()
        return [User.from_row(row) for row in rows]
