"""Daily survival check for settled notes."""

import logging
from typing import Callable, Dict, Optional, Protocol

import httpx

from config.settings import settings
from database.connection import Database
from database.models import Decision, ReviewStage, Submission, TransactionType
from database.repositories import ContinuousCheckRepository, SubmissionRepository
from services.ledger_service import LedgerService
from services.state_machine import SYSTEM_ACTOR
from utils.timeutils import business_date, utcnow

logger = logging.getLogger(__name__)

DELETED_MARKERS = ("笔记不存在", "当前笔记暂时无法浏览", "note not found")


class NoteChecker(Protocol):
    async def exists(self, note_url: str) -> bool:
        ...


class HttpNoteChecker:
    """Checks whether a note page is still published."""

    def __init__(self, timeout: float = 15.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def exists(self, note_url: str) -> bool:
        """
        Fetch the note page.

        Returns:
            False for 404/410 or a "note removed" page

        Raises:
            httpx.HTTPError: the page could not be fetched at all
        """
        client = await self._get_client()
        response = await client.get(note_url)
        if response.status_code in (404, 410):
            return False
        response.raise_for_status()
        return not any(marker in response.text for marker in DELETED_MARKERS)


class ContinuousCheckService:
    """
    Rewards notes that stay published after settlement.

    Once a day each active note is checked. A surviving note earns the
    configured daily reward; a deleted note stops being checked; checking
    ends after the configured number of days.
    """

    def __init__(
        self,
        db: Database,
        checker: NoteChecker,
        clock: Callable = utcnow,
        reward: Optional[int] = None,
        max_days: Optional[int] = None,
    ):
        self.db = db
        self.checker = checker
        self.clock = clock
        self.reward = settings.continuous_check_reward if reward is None else reward
        self.max_days = settings.continuous_check_days if max_days is None else max_days
        self.submission_repo = SubmissionRepository(db)
        self.check_repo = ContinuousCheckRepository(db)
        self.ledger = LedgerService(db)

    async def run_daily_checks(self) -> Dict[str, int]:
        """
        Check every active note once for today.

        Returns:
            Counts: {"checked", "rewarded", "deleted", "expired", "errors"}
        """
        summary = {"checked": 0, "rewarded": 0, "deleted": 0, "expired": 0, "errors": 0}

        async with self.db.reading():
            submissions = await self.submission_repo.get_active_continuous_checks()

        for submission in submissions:
            try:
                outcome = await self.check_submission(submission)
            except httpx.HTTPError as e:
                logger.warning(f"Note check for submission {submission.id} failed: {e}")
                summary["errors"] += 1
                continue
            if outcome:
                summary["checked"] += 1
                summary[outcome] += 1

        logger.info(f"Daily note check finished: {summary}")
        return summary

    async def check_submission(self, submission: Submission) -> Optional[str]:
        """
        Run today's check for one note.

        Returns:
            "rewarded", "deleted", "expired", or None if already checked today
        """
        now = self.clock()
        today = business_date(now)

        if submission.continuous_check_days >= self.max_days:
            async with self.db.transaction():
                await self.submission_repo.update_fields(
                    submission.id, continuous_check_status="expired"
                )
            logger.info(f"Submission {submission.id}: continuous check finished after {self.max_days} days")
            return "expired"

        async with self.db.reading():
            if await self.check_repo.has_check_on(submission.id, today):
                return None

        # Check without holding the database lock
        exists = await self.checker.exists(submission.note_url)

        async with self.db.transaction():
            current = await self.submission_repo.get_by_id(submission.id, with_trail=False)
            if current.continuous_check_status != "active":
                return None
            if await self.check_repo.has_check_on(submission.id, today):
                return None
            day = current.continuous_check_days + 1

            transaction_id = None
            if exists and self.reward > 0:
                transaction_id = await self.ledger.credit(
                    user_id=submission.user_id,
                    amount=self.reward,
                    type=TransactionType.CONTINUOUS_CHECK,
                    source_submission_id=submission.id,
                    idempotency_key=f"check:{submission.id}:day{day}",
                    description=f"Note still published on day {day}",
                )

            await self.check_repo.record(submission.id, day, today, exists, transaction_id)
            await self.submission_repo.append_trail(
                submission.id,
                stage=ReviewStage.CONTINUOUS_CHECK,
                actor_id=None,
                actor_role=SYSTEM_ACTOR.role.value,
                decision=Decision.DAILY_CHECK_PASSED if exists else Decision.NOTE_DELETED,
                from_status=current.status,
                to_status=current.status,
                reason=f"day {day}: reward {self.reward}" if exists else f"day {day}: note deleted",
            )

            if exists:
                status = "finished" if day >= self.max_days else "active"
                await self.submission_repo.update_fields(
                    submission.id,
                    continuous_check_days=day,
                    continuous_check_status=status,
                )
            else:
                await self.submission_repo.update_fields(
                    submission.id,
                    continuous_check_days=day,
                    continuous_check_status="deleted",
                )

        if exists:
            logger.info(f"Submission {submission.id}: note alive on day {day}, rewarded {self.reward}")
            return "rewarded"

        logger.info(f"Submission {submission.id}: note deleted on day {day}, checks stopped")
        return "deleted"
