"""Automated review orchestration: classifier calls, retries and recovery."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional, Set

from config.constants import AI_MAX_REASONS, MAX_ATTEMPTS_EXCEEDED, REVIEW_UNAVAILABLE
from config.settings import settings
from core.classifier.base import Classifier, ClassificationResult, SubmissionContent
from core.exceptions import ClassifierUnavailable
from database.connection import Database
from database.models import (
    AI_STAGE_STATUSES,
    Decision,
    ReviewStage,
    Submission,
    SubmissionStatus,
)
from database.repositories import SubmissionRepository
from jobs.scheduler import JobManager
from services.state_machine import SYSTEM_ACTOR, ReviewStateMachine
from utils.timeutils import add_seconds, seconds_until, utcnow

logger = logging.getLogger(__name__)

S = SubmissionStatus


def retry_deadline(created_at: datetime, attempt_number: int, base_delay: float) -> datetime:
    """Deadline of an attempt, measured from the submission's creation."""
    return add_seconds(created_at, attempt_number * base_delay)


def retry_wait(created_at: datetime, attempt_number: int, base_delay: float, now: datetime) -> float:
    """
    Seconds to wait before running an attempt.

    Zero once the attempt's deadline has passed, so repeated polling never
    stretches the total wait beyond attempt_number * base_delay.
    """
    return seconds_until(retry_deadline(created_at, attempt_number, base_delay), now)


@dataclass
class _Claim:
    submission: Submission
    attempt: int


class ReviewOrchestrator:
    """
    Drives submissions through the automated review stage.

    A check claims the submission in a short unit, calls the classifier
    with no lock held, then commits the verdict in a second unit. A pass
    hands the submission to mentor review; a failure is retried on the
    delay schedule until attempts run out.
    """

    def __init__(
        self,
        db: Database,
        classifier: Classifier,
        job_manager: Optional[JobManager] = None,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        pass_confidence: Optional[float] = None,
        timeout: Optional[float] = None,
    ):
        self.db = db
        self.classifier = classifier
        self.job_manager = job_manager
        self.clock = clock
        self.max_attempts = max_attempts or settings.ai_max_attempts
        self.base_delay = settings.ai_base_delay_seconds if base_delay is None else base_delay
        self.pass_confidence = (
            settings.ai_pass_confidence if pass_confidence is None else pass_confidence
        )
        self.timeout = timeout or settings.classifier_timeout
        self.submission_repo = SubmissionRepository(db)
        self.state_machine = ReviewStateMachine(db)
        self.scheduled: Dict[int, datetime] = {}
        self._in_flight: Set[int] = set()

    # Scheduling

    async def on_submitted(self, submission: Submission) -> None:
        """Schedule the first automated check of a new submission."""
        self.schedule(submission.id, submission.created_at, attempt_number=1)

    def schedule(self, submission_id: int, created_at: datetime, attempt_number: int) -> datetime:
        """Schedule attempt_number for a submission at its deadline."""
        now = self.clock()
        wait = retry_wait(created_at, attempt_number, self.base_delay, now)
        run_at = add_seconds(now, wait)
        self.scheduled[submission_id] = run_at

        if self.job_manager:
            self.job_manager.schedule_once(
                self.run_check,
                run_at=run_at,
                job_id=f"ai_review_{submission_id}",
                name=f"Automated review of submission {submission_id}",
                args=[submission_id],
            )

        logger.info(
            f"Submission {submission_id}: attempt {attempt_number} scheduled in {wait:.1f}s"
        )
        return run_at

    async def recover(self) -> int:
        """
        Reschedule every submission still in the automated stage.

        Run at start-up so nothing is left waiting after a restart.

        Returns:
            Number of submissions rescheduled
        """
        async with self.db.reading():
            submissions = await self.submission_repo.get_by_statuses(AI_STAGE_STATUSES)

        for submission in submissions:
            if submission.id in self._in_flight:
                continue
            self.schedule(submission.id, submission.created_at, submission.attempt_count + 1)

        if submissions:
            logger.info(f"Recovered {len(submissions)} submissions awaiting automated review")
        return len(submissions)

    # Checking

    async def run_check(self, submission_id: int) -> Optional[SubmissionStatus]:
        """
        Run one automated review attempt.

        Returns:
            Status after the attempt, or None if the submission was already
            being checked in this process
        """
        if submission_id in self._in_flight:
            logger.debug(f"Submission {submission_id} already being checked")
            return None

        self._in_flight.add(submission_id)
        self.scheduled.pop(submission_id, None)
        try:
            claim = await self._claim(submission_id)
            if claim is None or isinstance(claim, SubmissionStatus):
                return claim

            content = SubmissionContent.from_submission(claim.submission)
            result: Optional[ClassificationResult] = None
            error: Optional[str] = None
            try:
                result = await asyncio.wait_for(self.classifier.classify(content), self.timeout)
            except asyncio.TimeoutError:
                error = f"classifier timed out after {self.timeout}s"
            except ClassifierUnavailable as e:
                error = e.message
            except Exception as e:
                logger.error(f"Classifier crashed on submission {submission_id}: {e}", exc_info=True)
                error = f"classifier error: {e}"

            return await self._commit(claim, result, error)
        finally:
            self._in_flight.discard(submission_id)

    async def _claim(self, submission_id: int):
        """Reserve the next attempt. Returns a _Claim, or the current status if there is nothing to do."""
        async with self.db.transaction():
            submission = await self.submission_repo.get_by_id(submission_id, with_trail=False)
            if not submission:
                logger.warning(f"Submission {submission_id} not found for automated review")
                return None

            status = submission.status
            if status not in AI_STAGE_STATUSES:
                return status

            # Attempts used up without a stored verdict, e.g. a restart mid-attempt
            if submission.attempt_count >= self.max_attempts and status != S.PENDING:
                return await self._finalize_exhausted(submission)

            attempt = submission.attempt_count + 1
            if status in (S.PENDING, S.AI_REJECTED):
                await self.state_machine.transition(
                    submission_id,
                    S.AI_REVIEWING,
                    SYSTEM_ACTOR,
                    Decision.AI_START,
                    reason=f"attempt {attempt} of {self.max_attempts}",
                    attempt_count=attempt,
                )
            else:
                await self.submission_repo.update_fields(submission_id, attempt_count=attempt)
                await self.submission_repo.append_trail(
                    submission_id,
                    stage=ReviewStage.AI,
                    actor_id=None,
                    actor_role=SYSTEM_ACTOR.role.value,
                    decision=Decision.AI_START,
                    from_status=status,
                    to_status=status,
                    reason=f"attempt {attempt} of {self.max_attempts}",
                )

            submission.attempt_count = attempt
            return _Claim(submission=submission, attempt=attempt)

    async def _finalize_exhausted(self, submission: Submission) -> SubmissionStatus:
        reason = MAX_ATTEMPTS_EXCEEDED if submission.status == S.AI_REJECTED else REVIEW_UNAVAILABLE
        await self.state_machine.transition(
            submission.id, S.REJECTED, SYSTEM_ACTOR, Decision.AI_REJECT, reason=reason
        )
        return S.REJECTED

    async def _commit(
        self,
        claim: _Claim,
        result: Optional[ClassificationResult],
        error: Optional[str],
    ) -> SubmissionStatus:
        """Record the verdict of an attempt and decide what happens next."""
        submission_id = claim.submission.id
        retry = False

        async with self.db.transaction():
            current = await self.submission_repo.get_by_id(submission_id, with_trail=False)
            if current.status != S.AI_REVIEWING or current.attempt_count != claim.attempt:
                logger.warning(
                    f"Submission {submission_id} moved on during attempt {claim.attempt}; verdict dropped"
                )
                return current.status

            exhausted = claim.attempt >= self.max_attempts

            if result is None:
                if exhausted:
                    await self.state_machine.transition(
                        submission_id,
                        S.REJECTED,
                        SYSTEM_ACTOR,
                        Decision.AI_REJECT,
                        reason=REVIEW_UNAVAILABLE,
                    )
                    status = S.REJECTED
                else:
                    await self.submission_repo.append_trail(
                        submission_id,
                        stage=ReviewStage.AI,
                        actor_id=None,
                        actor_role=SYSTEM_ACTOR.role.value,
                        decision=Decision.AI_ERROR,
                        from_status=S.AI_REVIEWING,
                        to_status=S.AI_REVIEWING,
                        reason=error,
                    )
                    status = S.AI_REVIEWING
                    retry = True

            elif result.accepts(self.pass_confidence):
                verdict = {
                    "ai_confidence": result.confidence,
                    "ai_reasons": result.reasons[:AI_MAX_REASONS],
                }
                await self.state_machine.transition(
                    submission_id,
                    S.AI_APPROVED,
                    SYSTEM_ACTOR,
                    Decision.AI_PASS,
                    reason=f"confidence {result.confidence:.2f}",
                    **verdict,
                )
                await self.state_machine.transition(
                    submission_id,
                    S.MENTOR_REVIEW,
                    SYSTEM_ACTOR,
                    Decision.ESCALATE,
                    reason="Awaiting mentor review",
                )
                status = S.MENTOR_REVIEW

            else:
                reasons = "; ".join(result.reasons) or (
                    f"confidence {result.confidence:.2f} below {self.pass_confidence:.2f}"
                )
                await self.state_machine.transition(
                    submission_id,
                    S.AI_REJECTED,
                    SYSTEM_ACTOR,
                    Decision.AI_FAIL,
                    reason=reasons,
                    ai_confidence=result.confidence,
                    ai_reasons=result.reasons[:AI_MAX_REASONS],
                )
                if exhausted:
                    await self.state_machine.transition(
                        submission_id,
                        S.REJECTED,
                        SYSTEM_ACTOR,
                        Decision.AI_REJECT,
                        reason=MAX_ATTEMPTS_EXCEEDED,
                    )
                    status = S.REJECTED
                else:
                    status = S.AI_REJECTED
                    retry = True

        if retry:
            self.schedule(submission_id, claim.submission.created_at, claim.attempt + 1)

        logger.info(f"Submission {submission_id} attempt {claim.attempt}: {status.value}")
        return status
