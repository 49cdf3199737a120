"""Tests for the automated review orchestrator."""

import asyncio
from datetime import timedelta
from typing import List, Optional
from unittest.mock import MagicMock

import pytest

from config.constants import MAX_ATTEMPTS_EXCEEDED, REVIEW_UNAVAILABLE
from conftest import NOTE_METADATA, make_images
from core.classifier.base import ClassificationResult, SubmissionContent
from core.exceptions import ClassifierUnavailable
from database.connection import Database
from database.models import Decision, SubmissionStatus as S
from database.repositories import UserRepository
from services.review_orchestrator import ReviewOrchestrator, retry_deadline, retry_wait
from services.review_service import ReviewService


class FakeClassifier:
    """Returns queued verdicts; an exception in the queue is raised instead."""

    def __init__(self, verdicts: List):
        self.verdicts = list(verdicts)
        self.calls: List[SubmissionContent] = []

    async def classify(self, content: SubmissionContent) -> ClassificationResult:
        self.calls.append(content)
        verdict = self.verdicts.pop(0)
        if isinstance(verdict, Exception):
            raise verdict
        return verdict

    async def close(self) -> None:
        pass


class SlowClassifier:
    async def classify(self, content: SubmissionContent) -> ClassificationResult:
        await asyncio.sleep(5)
        return ClassificationResult(passed=True, confidence=1.0)

    async def close(self) -> None:
        pass


class StoreWritingClassifier:
    """Writes to the shared database while judging, then passes."""

    def __init__(self, db: Database, user_id: int):
        self.db = db
        self.user_id = user_id

    async def classify(self, content: SubmissionContent) -> ClassificationResult:
        async with self.db.transaction():
            await self.db.execute(
                "UPDATE users SET nickname = ? WHERE id = ?",
                f"checked {content.submission_id}",
                self.user_id,
            )
        return PASS

    async def close(self) -> None:
        pass


PASS = ClassificationResult(passed=True, confidence=0.92, reasons=["matches task"])
FAIL = ClassificationResult(passed=False, confidence=0.2, reasons=["screenshot unreadable"])


def make_orchestrator(
    db: Database,
    classifier,
    clock,
    max_attempts: int = 3,
    timeout: Optional[float] = None,
    job_manager=None,
) -> ReviewOrchestrator:
    return ReviewOrchestrator(
        db,
        classifier,
        job_manager=job_manager,
        clock=clock,
        max_attempts=max_attempts,
        base_delay=1.0,
        pass_confidence=0.7,
        timeout=timeout or 5.0,
    )


@pytest.fixture
async def submission(review_service: ReviewService, make_user):
    owner = await make_user()
    return await review_service.submit(owner.id, "note", make_images(2, "ai"), NOTE_METADATA)


class TestRetrySchedule:
    """Delay policy helpers."""

    def test_deadline_grows_with_attempts(self, clock):
        created = clock()
        deadlines = [retry_deadline(created, attempt, 2.0) for attempt in (1, 2, 3)]
        assert deadlines == [created + timedelta(seconds=s) for s in (2, 4, 6)]

    def test_wait_never_negative(self, clock):
        created = clock()
        assert retry_wait(created, 2, 1.0, now=created) == 2.0
        assert retry_wait(created, 2, 1.0, now=created + timedelta(seconds=1.5)) == 0.5
        assert retry_wait(created, 2, 1.0, now=created + timedelta(seconds=10)) == 0.0

    def test_wait_shrinks_as_time_passes(self, clock):
        created = clock()
        waits = [retry_wait(created, 3, 1.0, now=created + timedelta(seconds=s)) for s in range(5)]
        assert waits == sorted(waits, reverse=True)


class TestRunCheck:
    """One automated attempt at a time."""

    @pytest.mark.asyncio
    async def test_pass_hands_to_mentor(self, temp_db: Database, submission, clock):
        classifier = FakeClassifier([PASS])
        orchestrator = make_orchestrator(temp_db, classifier, clock)

        status = await orchestrator.run_check(submission.id)

        assert status == S.MENTOR_REVIEW
        stored = await orchestrator.submission_repo.get_by_id(submission.id)
        assert stored.ai_confidence == pytest.approx(0.92)
        assert stored.ai_reasons == ["matches task"]
        assert stored.attempt_count == 1
        assert [e.decision for e in stored.trail] == [
            Decision.SUBMIT, Decision.AI_START, Decision.AI_PASS, Decision.ESCALATE,
        ]
        assert classifier.calls[0].note_url == NOTE_METADATA["note_url"]
        assert len(classifier.calls[0].image_urls) == 2

    @pytest.mark.asyncio
    async def test_three_failures_reject(self, temp_db: Database, submission, clock):
        orchestrator = make_orchestrator(temp_db, FakeClassifier([FAIL, FAIL, FAIL]), clock)

        status = await orchestrator.run_check(submission.id)

        assert status == S.AI_REJECTED
        assert orchestrator.scheduled[submission.id] == submission.created_at + timedelta(seconds=2)

        clock.advance(2)
        assert await orchestrator.run_check(submission.id) == S.AI_REJECTED
        clock.advance(1)
        assert await orchestrator.run_check(submission.id) == S.REJECTED

        stored = await orchestrator.submission_repo.get_by_id(submission.id)
        assert stored.attempt_count == 3
        assert stored.trail[-1].reason == MAX_ATTEMPTS_EXCEEDED
        assert submission.id not in orchestrator.scheduled

    @pytest.mark.asyncio
    async def test_low_confidence_pass_is_a_failure(self, temp_db: Database, submission, clock):
        verdict = ClassificationResult(passed=True, confidence=0.5)
        orchestrator = make_orchestrator(temp_db, FakeClassifier([verdict]), clock)

        assert await orchestrator.run_check(submission.id) == S.AI_REJECTED

    @pytest.mark.asyncio
    async def test_fail_then_pass(self, temp_db: Database, submission, clock):
        orchestrator = make_orchestrator(temp_db, FakeClassifier([FAIL, PASS]), clock)

        await orchestrator.run_check(submission.id)
        assert await orchestrator.run_check(submission.id) == S.MENTOR_REVIEW

    @pytest.mark.asyncio
    async def test_timeout_on_last_attempt(self, temp_db: Database, submission, clock):
        orchestrator = make_orchestrator(temp_db, SlowClassifier(), clock, max_attempts=1, timeout=0.05)

        assert await orchestrator.run_check(submission.id) == S.REJECTED

        stored = await orchestrator.submission_repo.get_by_id(submission.id)
        assert stored.trail[-1].reason == REVIEW_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_error_consumes_attempt_and_retries(self, temp_db: Database, submission, clock):
        classifier = FakeClassifier([ClassifierUnavailable("upstream 502"), RuntimeError("boom")])
        orchestrator = make_orchestrator(temp_db, classifier, clock, max_attempts=2)

        assert await orchestrator.run_check(submission.id) == S.AI_REVIEWING
        stored = await orchestrator.submission_repo.get_by_id(submission.id)
        assert stored.trail[-1].decision == Decision.AI_ERROR
        assert stored.trail[-1].reason == "upstream 502"
        assert submission.id in orchestrator.scheduled

        assert await orchestrator.run_check(submission.id) == S.REJECTED
        stored = await orchestrator.submission_repo.get_by_id(submission.id)
        assert stored.attempt_count == 2
        assert stored.trail[-1].reason == REVIEW_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_finished_submission_is_left_alone(self, temp_db: Database, submission, clock):
        classifier = FakeClassifier([PASS])
        orchestrator = make_orchestrator(temp_db, classifier, clock)
        await orchestrator.run_check(submission.id)

        assert await orchestrator.run_check(submission.id) == S.MENTOR_REVIEW
        assert len(classifier.calls) == 1

    @pytest.mark.asyncio
    async def test_unknown_submission(self, temp_db: Database, clock):
        orchestrator = make_orchestrator(temp_db, FakeClassifier([]), clock)
        assert await orchestrator.run_check(999) is None

    @pytest.mark.asyncio
    async def test_exhausted_without_verdict(self, temp_db: Database, submission, clock):
        async with temp_db.transaction():
            await temp_db.execute(
                "UPDATE submissions SET status = 'ai_reviewing', attempt_count = 3 WHERE id = ?",
                submission.id,
            )
        classifier = FakeClassifier([])
        orchestrator = make_orchestrator(temp_db, classifier, clock)

        assert await orchestrator.run_check(submission.id) == S.REJECTED
        assert classifier.calls == []

    @pytest.mark.asyncio
    async def test_classifier_may_write_to_database(self, temp_db: Database, submission, clock):
        orchestrator = make_orchestrator(temp_db, StoreWritingClassifier(temp_db, submission.user_id), clock)

        status = await asyncio.wait_for(orchestrator.run_check(submission.id), 1)

        assert status == S.MENTOR_REVIEW
        owner = await UserRepository(temp_db).get_by_id(submission.user_id)
        assert owner.nickname == f"checked {submission.id}"

    @pytest.mark.asyncio
    async def test_concurrent_checks_with_writing_classifier(
        self, temp_db: Database, review_service: ReviewService, submission, clock
    ):
        other = await review_service.submit(
            submission.user_id, "note", make_images(1, "other"), NOTE_METADATA
        )
        orchestrator = make_orchestrator(temp_db, StoreWritingClassifier(temp_db, submission.user_id), clock)

        statuses = await asyncio.wait_for(
            asyncio.gather(orchestrator.run_check(submission.id), orchestrator.run_check(other.id)),
            1,
        )

        assert statuses == [S.MENTOR_REVIEW, S.MENTOR_REVIEW]


class TestScheduling:
    """Scheduling and restart recovery."""

    @pytest.mark.asyncio
    async def test_on_submitted_schedules_job(self, temp_db: Database, submission, clock):
        job_manager = MagicMock()
        orchestrator = make_orchestrator(temp_db, FakeClassifier([]), clock, job_manager=job_manager)

        await orchestrator.on_submitted(submission)

        job_manager.schedule_once.assert_called_once()
        kwargs = job_manager.schedule_once.call_args.kwargs
        assert kwargs["job_id"] == f"ai_review_{submission.id}"
        assert kwargs["run_at"] == submission.created_at + timedelta(seconds=1)
        assert kwargs["args"] == [submission.id]

    @pytest.mark.asyncio
    async def test_recover_reschedules_ai_stage(self, temp_db: Database, review_service, make_user, clock):
        owner = await make_user()
        waiting = await review_service.submit(owner.id, "note", make_images(1, "w"), NOTE_METADATA)
        failed = await review_service.submit(owner.id, "note", make_images(1, "f"), NOTE_METADATA)
        done = await review_service.submit(owner.id, "note", make_images(1, "d"), NOTE_METADATA)

        orchestrator = make_orchestrator(temp_db, FakeClassifier([FAIL, PASS]), clock)
        await orchestrator.run_check(failed.id)
        await orchestrator.run_check(done.id)
        orchestrator.scheduled.clear()

        clock.advance(30)
        recovered = await orchestrator.recover()

        assert recovered == 2
        assert set(orchestrator.scheduled) == {waiting.id, failed.id}
        # Deadlines already passed, so both run now
        assert orchestrator.scheduled[failed.id] == clock()
