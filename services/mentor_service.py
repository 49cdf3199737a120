"""Mentor assignment of part-time users."""

import logging
from typing import List

from core.exceptions import InvalidRequest, MentorAlreadyAssigned, NotFound, PermissionDenied
from database.connection import Database
from database.models import Role, User
from database.repositories import UserRepository
from services.state_machine import Actor

logger = logging.getLogger(__name__)

ASSIGNING_ROLES = (Role.MANAGER, Role.BOSS)


def may_review_owner(actor: Actor, owner: User) -> bool:
    """
    True if the actor may review this owner's work at mentor level.

    A mentor reviews the users assigned to them and users nobody mentors;
    other roles are not limited by assignment.
    """
    if actor.role != Role.MENTOR:
        return True
    return owner.mentor_id is None or owner.mentor_id == actor.user_id


class MentorService:
    """Service for assigning mentors."""

    def __init__(self, db: Database):
        self.db = db
        self.user_repo = UserRepository(db)

    async def assign_mentor(self, user_id: int, mentor_id: int, actor: Actor) -> User:
        """
        Assign a mentor to a part-time user that has none.

        Raises:
            PermissionDenied: actor is not a manager or boss
            NotFound: user does not exist
            InvalidRequest: user is not part-time, or mentor_id is not a mentor
            MentorAlreadyAssigned: the user already has a mentor
        """
        if actor.role not in ASSIGNING_ROLES:
            raise PermissionDenied(f"Role {actor.role.value} cannot assign mentors")

        async with self.db.transaction():
            user = await self.user_repo.get_by_id(user_id)
            if not user or user.is_deleted:
                raise NotFound(f"User {user_id} not found")
            if user.role != Role.PART_TIME:
                raise InvalidRequest(f"User {user_id} is not a part-time user")

            mentor = await self.user_repo.get_by_id(mentor_id)
            if not mentor or mentor.is_deleted or mentor.role != Role.MENTOR:
                raise InvalidRequest(f"User {mentor_id} is not a mentor")

            if not await self.user_repo.assign_mentor(user_id, mentor_id):
                raise MentorAlreadyAssigned(f"User {user_id} already has mentor {user.mentor_id}")

            user = await self.user_repo.get_by_id(user_id)

        logger.info(f"Assigned mentor {mentor_id} to user {user_id} by {actor.label}")
        return user

    async def get_mentees(self, mentor_id: int) -> List[User]:
        async with self.db.reading():
            return await self.user_repo.get_mentees(mentor_id)
