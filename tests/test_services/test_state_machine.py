"""Tests for the review state machine and capability table."""

import pytest

from conftest import NOTE_METADATA, make_images
from core.exceptions import InvalidStateTransition, NotFound, PermissionDenied
from database.connection import Database
from database.models import Decision, Role, SubmissionStatus as S
from services.review_service import ReviewService
from services.state_machine import (
    SYSTEM_ACTOR,
    Actor,
    ReviewStateMachine,
    can_perform,
    check_transition,
    is_legal,
)


class TestTransitionTables:
    """Pure checks of the lifecycle graph and role capabilities."""

    def test_legal_graph(self):
        assert is_legal(S.PENDING, S.AI_REVIEWING)
        assert is_legal(S.AI_REJECTED, S.AI_REVIEWING)
        assert is_legal(S.MANAGER_APPROVED, S.COMPLETED)
        assert not is_legal(S.PENDING, S.COMPLETED)
        assert not is_legal(S.MENTOR_REVIEW, S.MANAGER_APPROVED)
        assert not is_legal(S.PAID, S.COMPLETED)

    def test_role_capabilities(self):
        assert can_perform(Role.MENTOR, S.MENTOR_REVIEW, S.MENTOR_APPROVED)
        assert not can_perform(Role.MENTOR, S.MANAGER_REVIEW, S.MANAGER_APPROVED)
        assert can_perform(Role.MANAGER, S.MANAGER_REVIEW, S.MANAGER_REJECTED)
        assert can_perform(Role.FINANCE, S.COMPLETED, S.PAID)
        assert not can_perform(Role.HR, S.COMPLETED, S.PAID)
        assert not can_perform(Role.PART_TIME, S.PENDING, S.AI_REVIEWING)

    def test_boss_holds_every_human_capability(self):
        assert can_perform(Role.BOSS, S.MENTOR_REVIEW, S.MENTOR_APPROVED)
        assert can_perform(Role.BOSS, S.MANAGER_REVIEW, S.MANAGER_APPROVED)
        assert can_perform(Role.BOSS, S.MANAGER_APPROVED, S.COMPLETED)
        assert not can_perform(Role.BOSS, S.PENDING, S.AI_REVIEWING)

    def test_illegal_move_is_invalid_whoever_asks(self):
        boss = Actor(user_id=1, role=Role.BOSS)
        with pytest.raises(InvalidStateTransition):
            check_transition(1, S.MENTOR_REVIEW, S.COMPLETED, boss)

    def test_legal_move_by_wrong_role_is_denied(self):
        mentor = Actor(user_id=1, role=Role.MENTOR)
        with pytest.raises(PermissionDenied):
            check_transition(1, S.MANAGER_REVIEW, S.MANAGER_APPROVED, mentor)

    def test_terminal_status_is_final(self):
        with pytest.raises(InvalidStateTransition) as exc_info:
            check_transition(7, S.PAID, S.COMPLETED, SYSTEM_ACTOR)
        assert "already final" in exc_info.value.message

    def test_actor_label(self):
        assert SYSTEM_ACTOR.label == "system"
        assert Actor(user_id=5, role=Role.MENTOR).label == "mentor:5"


class TestReviewStateMachine:
    """Transitions applied against the database."""

    @pytest.fixture
    async def submission(self, review_service: ReviewService, make_user):
        owner = await make_user()
        return await review_service.submit(owner.id, "note", make_images(2), NOTE_METADATA)

    @pytest.mark.asyncio
    async def test_transition_records_trail(self, temp_db: Database, submission):
        machine = ReviewStateMachine(temp_db)

        async with temp_db.transaction():
            previous = await machine.transition(
                submission.id, S.AI_REVIEWING, SYSTEM_ACTOR, Decision.AI_START, reason="attempt 1 of 2"
            )

        assert previous == S.PENDING
        loaded = await machine.submission_repo.get_by_id(submission.id)
        assert loaded.status == S.AI_REVIEWING
        last = loaded.trail[-1]
        assert (last.from_status, last.to_status) == ("pending", "ai_reviewing")
        assert last.actor_role == "system"
        assert last.stage.value == "ai"

    @pytest.mark.asyncio
    async def test_transition_requires_unit(self, temp_db: Database, submission):
        machine = ReviewStateMachine(temp_db)
        with pytest.raises(RuntimeError):
            await machine.transition(submission.id, S.AI_REVIEWING, SYSTEM_ACTOR, Decision.AI_START)

    @pytest.mark.asyncio
    async def test_rejected_transition_changes_nothing(self, temp_db: Database, submission):
        machine = ReviewStateMachine(temp_db)

        with pytest.raises(InvalidStateTransition):
            async with temp_db.transaction():
                await machine.transition(submission.id, S.COMPLETED, SYSTEM_ACTOR, Decision.FINANCE_PROCESS)

        loaded = await machine.submission_repo.get_by_id(submission.id)
        assert loaded.status == S.PENDING
        assert len(loaded.trail) == 1

    @pytest.mark.asyncio
    async def test_unknown_submission(self, temp_db: Database):
        machine = ReviewStateMachine(temp_db)
        with pytest.raises(NotFound):
            async with temp_db.transaction():
                await machine.transition(999, S.AI_REVIEWING, SYSTEM_ACTOR, Decision.AI_START)
