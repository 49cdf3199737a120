"""Review state machine: legal transitions, role capabilities and the trail."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional, Tuple

from core.exceptions import InvalidStateTransition, NotFound, PermissionDenied
from database.connection import Database
from database.models import (
    Decision,
    ReviewStage,
    Role,
    Submission,
    SubmissionStatus,
    TERMINAL_STATUSES,
)
from database.repositories import SubmissionRepository
from services.notification_service import NotificationService

logger = logging.getLogger(__name__)

S = SubmissionStatus

LEGAL_TRANSITIONS: Dict[SubmissionStatus, FrozenSet[SubmissionStatus]] = {
    S.PENDING: frozenset({S.AI_REVIEWING}),
    S.AI_REVIEWING: frozenset({S.AI_APPROVED, S.AI_REJECTED, S.REJECTED}),
    S.AI_APPROVED: frozenset({S.MENTOR_REVIEW}),
    S.AI_REJECTED: frozenset({S.AI_REVIEWING, S.REJECTED}),
    S.MENTOR_REVIEW: frozenset({S.MENTOR_APPROVED, S.MENTOR_REJECTED}),
    S.MENTOR_APPROVED: frozenset({S.MANAGER_REVIEW}),
    S.MANAGER_REVIEW: frozenset({S.MANAGER_APPROVED, S.MANAGER_REJECTED}),
    S.MANAGER_APPROVED: frozenset({S.COMPLETED}),
    S.COMPLETED: frozenset({S.PAID}),
}

_MENTOR_CAPS = {
    S.MENTOR_REVIEW: frozenset({S.MENTOR_APPROVED, S.MENTOR_REJECTED}),
}
_MANAGER_CAPS = {
    S.MANAGER_REVIEW: frozenset({S.MANAGER_APPROVED, S.MANAGER_REJECTED}),
}
_FINANCE_CAPS = {
    S.MANAGER_APPROVED: frozenset({S.COMPLETED}),
    S.COMPLETED: frozenset({S.PAID}),
}
_SYSTEM_CAPS = {
    S.PENDING: frozenset({S.AI_REVIEWING}),
    S.AI_REVIEWING: frozenset({S.AI_APPROVED, S.AI_REJECTED, S.REJECTED}),
    S.AI_APPROVED: frozenset({S.MENTOR_REVIEW}),
    S.AI_REJECTED: frozenset({S.AI_REVIEWING, S.REJECTED}),
    S.MENTOR_APPROVED: frozenset({S.MANAGER_REVIEW}),
    S.MANAGER_APPROVED: frozenset({S.COMPLETED}),
    S.COMPLETED: frozenset({S.PAID}),
}


def _capabilities(role: Role, *tables: Dict) -> Dict[Tuple[Role, SubmissionStatus], FrozenSet[SubmissionStatus]]:
    merged: Dict[Tuple[Role, SubmissionStatus], FrozenSet[SubmissionStatus]] = {}
    for table in tables:
        for status, targets in table.items():
            merged[(role, status)] = merged.get((role, status), frozenset()) | targets
    return merged


# (role, current status) -> statuses that role may move the submission to
CAPABILITIES: Dict[Tuple[Role, SubmissionStatus], FrozenSet[SubmissionStatus]] = {
    **_capabilities(Role.MENTOR, _MENTOR_CAPS),
    **_capabilities(Role.MANAGER, _MANAGER_CAPS),
    **_capabilities(Role.FINANCE, _FINANCE_CAPS),
    **_capabilities(Role.BOSS, _MENTOR_CAPS, _MANAGER_CAPS, _FINANCE_CAPS),
    **_capabilities(Role.SYSTEM, _SYSTEM_CAPS),
}

DECISION_STAGES: Dict[Decision, ReviewStage] = {
    Decision.AI_START: ReviewStage.AI,
    Decision.AI_PASS: ReviewStage.AI,
    Decision.AI_FAIL: ReviewStage.AI,
    Decision.AI_ERROR: ReviewStage.AI,
    Decision.AI_REJECT: ReviewStage.AI,
    Decision.MENTOR_PASS: ReviewStage.MENTOR,
    Decision.MENTOR_REJECT: ReviewStage.MENTOR,
    Decision.MANAGER_APPROVE: ReviewStage.MANAGER,
    Decision.MANAGER_REJECT: ReviewStage.MANAGER,
    Decision.FINANCE_PROCESS: ReviewStage.FINANCE,
    Decision.PAY: ReviewStage.FINANCE,
}


@dataclass(frozen=True)
class Actor:
    """Identity performing a transition."""

    user_id: Optional[int]
    role: Role

    @property
    def label(self) -> str:
        if self.user_id is None:
            return self.role.value
        return f"{self.role.value}:{self.user_id}"


SYSTEM_ACTOR = Actor(user_id=None, role=Role.SYSTEM)


def is_legal(current: SubmissionStatus, target: SubmissionStatus) -> bool:
    """True if the transition exists in the lifecycle graph."""
    return target in LEGAL_TRANSITIONS.get(current, frozenset())


def can_perform(role: Role, current: SubmissionStatus, target: SubmissionStatus) -> bool:
    """True if the role is allowed to make this transition."""
    return target in CAPABILITIES.get((role, current), frozenset())


def check_transition(
    submission_id: Optional[int],
    current: SubmissionStatus,
    target: SubmissionStatus,
    actor: Actor,
) -> None:
    """
    Validate a transition without applying it.

    Raises:
        InvalidStateTransition: current is terminal or target is not a successor
        PermissionDenied: the actor's role may not make this move
    """
    if current in TERMINAL_STATUSES:
        raise InvalidStateTransition(
            submission_id,
            current.value,
            target.value,
            f"Submission {submission_id} is already final ({current.value})",
        )
    if not is_legal(current, target):
        raise InvalidStateTransition(submission_id, current.value, target.value)
    if not can_perform(actor.role, current, target):
        raise PermissionDenied(
            f"Role {actor.role.value} cannot move submission {submission_id} "
            f"from {current.value} to {target.value}"
        )


class ReviewStateMachine:
    """Applies validated transitions and records them in the review trail."""

    def __init__(self, db: Database):
        self.db = db
        self.submission_repo = SubmissionRepository(db)
        self.notifications = NotificationService(db)

    async def load(self, submission_id: int) -> Submission:
        submission = await self.submission_repo.get_by_id(submission_id, with_trail=False)
        if not submission:
            raise NotFound(f"Submission {submission_id} not found")
        return submission

    async def transition(
        self,
        submission_id: int,
        target: SubmissionStatus,
        actor: Actor,
        decision: Decision,
        reason: Optional[str] = None,
        stage: Optional[ReviewStage] = None,
        **fields: Any,
    ) -> SubmissionStatus:
        """
        Move a submission to target, append one trail entry and notify the owner.

        Must be called inside Database.transaction(); the caller's unit
        also carries any ledger side effects of the move.

        Args:
            submission_id: Submission to move
            target: Next status
            actor: Who is acting
            decision: Recorded trail decision
            reason: Optional free-text reason
            stage: Trail stage, derived from decision when omitted
            **fields: Extra submission columns written with the status

        Returns:
            The status the submission had before the move
        """
        if not self.db.in_transaction:
            raise RuntimeError("State transitions must run inside a database transaction")

        submission = await self.load(submission_id)
        current = submission.status
        check_transition(submission_id, current, target, actor)

        changed = await self.submission_repo.compare_and_set_status(
            submission_id, current, target, **fields
        )
        if not changed:
            # Row changed outside a unit
            raise InvalidStateTransition(submission_id, current.value, target.value)

        await self.submission_repo.append_trail(
            submission_id,
            stage=stage or DECISION_STAGES.get(decision, ReviewStage.AI),
            actor_id=actor.user_id,
            actor_role=actor.role.value,
            decision=decision,
            from_status=current,
            to_status=target,
            reason=reason,
        )
        await self.notifications.notify_status_change(submission, current, target, reason)

        logger.info(
            f"Submission {submission_id}: {current.value} -> {target.value} "
            f"by {actor.label} ({decision.value})"
        )
        return current
