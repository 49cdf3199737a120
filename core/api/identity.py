"""Caller identity resolved from gateway headers."""

from typing import Optional

from aiohttp import web

from core.exceptions import PermissionDenied
from database.models import Role
from services.state_machine import Actor

USER_HEADER = "X-User-Id"
ROLE_HEADER = "X-User-Role"

STAFF_ROLES = frozenset({Role.MENTOR, Role.MANAGER, Role.FINANCE, Role.HR, Role.BOSS})


class HeaderIdentityProvider:
    """
    Trusts the user id and role set by the authenticating gateway.

    The system role is internal and never accepted from a request.
    """

    def __init__(self, user_header: str = USER_HEADER, role_header: str = ROLE_HEADER):
        self.user_header = user_header
        self.role_header = role_header

    def resolve(self, request: web.Request) -> Actor:
        raw_id: Optional[str] = request.headers.get(self.user_header)
        raw_role: Optional[str] = request.headers.get(self.role_header)
        if not raw_id or not raw_role:
            raise PermissionDenied("Missing identity headers")

        try:
            user_id = int(raw_id)
        except ValueError:
            raise PermissionDenied(f"Invalid {self.user_header} header")

        try:
            role = Role(raw_role.strip().lower())
        except ValueError:
            raise PermissionDenied(f"Unknown role {raw_role!r}")
        if role == Role.SYSTEM:
            raise PermissionDenied("The system role cannot be used by callers")

        return Actor(user_id=user_id, role=role)


def is_staff(actor: Actor) -> bool:
    return actor.role in STAFF_ROLES


def require_self_or_staff(actor: Actor, user_id: int) -> None:
    """Allow a user to see their own data and staff to see anyone's."""
    if actor.user_id != user_id and not is_staff(actor):
        raise PermissionDenied(f"User {actor.user_id} cannot access user {user_id}")


def require_role(actor: Actor, *roles: Role) -> None:
    if actor.role not in roles:
        allowed = ", ".join(role.value for role in roles)
        raise PermissionDenied(f"Role {actor.role.value} is not one of: {allowed}")
