"""Referral service for managing the two-level referral tree."""

import logging
from typing import Any, Dict, List

from config.constants import MAX_REFERRAL_DEPTH
from core.exceptions import NotFound, ReferralCycleDetected, ReferrerAlreadyAssigned
from database.connection import Database
from database.models import User
from database.repositories import UserRepository

logger = logging.getLogger(__name__)


class ReferralService:
    """Service for referral pointer assignment and lookups."""

    def __init__(self, db: Database):
        self.db = db
        self.user_repo = UserRepository(db)

    async def set_referrer(self, user_id: int, referrer_id: int) -> User:
        """
        Attach a referrer to a user.

        The pointer can be set once. The check and the write run in one
        unit so two concurrent assignments cannot build a cycle together.

        Raises:
            NotFound: either user does not exist or is deleted
            ReferralCycleDetected: referrer is the user or one of its descendants
            ReferrerAlreadyAssigned: user already has a referrer
        """
        async with self.db.transaction():
            user = await self.user_repo.get_by_id(user_id)
            if not user or user.is_deleted:
                raise NotFound(f"User {user_id} not found")

            referrer = await self.user_repo.get_by_id(referrer_id)
            if not referrer or referrer.is_deleted:
                raise NotFound(f"Referrer {referrer_id} not found")

            if referrer_id == user_id:
                logger.warning(f"User {user_id} attempted self-referral")
                raise ReferralCycleDetected(user_id, referrer_id)

            if user.referrer_id is not None:
                raise ReferrerAlreadyAssigned(
                    f"User {user_id} already has referrer {user.referrer_id}"
                )

            # Walking up from the referrer must never reach the user
            ancestors = await self.user_repo.get_ancestor_ids(referrer_id)
            if user_id in ancestors:
                logger.warning(f"Rejected referral {user_id} -> {referrer_id}: cycle")
                raise ReferralCycleDetected(user_id, referrer_id)

            if not await self.user_repo.set_referrer(user_id, referrer_id):
                raise ReferrerAlreadyAssigned(f"User {user_id} already has a referrer")

        logger.info(f"User {user_id} linked to referrer {referrer_id}")
        return await self.user_repo.get_by_id(user_id)

    async def get_commission_chain(self, user_id: int) -> List[int]:
        """Get the ids of the ancestors that earn commission, nearest first."""
        chain = await self.user_repo.get_referral_chain(user_id, depth=MAX_REFERRAL_DEPTH)
        return [referrer.id for referrer in chain]

    async def get_referral_stats(self, user_id: int) -> Dict[str, Any]:
        """
        Get user's referral statistics.

        Returns:
            {
                "user_id": 7,
                "referrer_id": 3,
                "direct_referrals": 5,
                "second_level_referrals": 12,
            }
        """
        async with self.db.reading():
            user = await self.user_repo.get_by_id(user_id)
            if not user:
                raise NotFound(f"User {user_id} not found")
            direct = await self.user_repo.count_direct_referrals(user_id)
            second = await self.user_repo.count_second_level_referrals(user_id)

        return {
            "user_id": user_id,
            "referrer_id": user.referrer_id,
            "direct_referrals": direct,
            "second_level_referrals": second,
        }
