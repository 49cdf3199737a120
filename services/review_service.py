"""Review service: submission intake, human review decisions and settlement."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from config.constants import MAX_BATCH_SIZE
from config.settings import settings
from core.exceptions import (
    CommentLimitExceeded,
    DuplicateSubmission,
    InvalidRequest,
    InvalidSubmission,
    NotFound,
    PermissionDenied,
    ReviewLedgerError,
)
from database.connection import Database
from database.models import (
    Decision,
    ReviewStage,
    Role,
    Submission,
    SubmissionImage,
    SubmissionStatus,
    TaskType,
    Transaction,
)
from database.repositories import (
    CommentLimitRepository,
    SubmissionRepository,
    TransactionRepository,
    UserRepository,
)
from services.commission_calculator import PricingSnapshot, calculate_credits
from services.ledger_service import LedgerService
from services.mentor_service import may_review_owner
from services.notification_service import NotificationService
from services.pricing_service import PricingService
from services.referral_service import ReferralService
from services.state_machine import SYSTEM_ACTOR, Actor, ReviewStateMachine, can_perform
from utils.formatters import format_short_hash
from utils.timeutils import utcnow
from utils.ttl_cache import TTLCache
from utils.validators import (
    clean_author_name,
    normalize_content_hash,
    normalize_note_url,
    validate_phone,
    validate_url,
)

logger = logging.getLogger(__name__)

S = SubmissionStatus


@dataclass
class ReviewOutcome:
    """Result of a manager approval or finance processing call."""

    submission: Submission
    transactions: List[Transaction] = field(default_factory=list)
    replayed: bool = False


class ReviewService:
    """Service for everything a person does to a submission."""

    def __init__(
        self,
        db: Database,
        pricing_service: Optional[PricingService] = None,
        request_cache: Optional[TTLCache] = None,
        clock: Callable[[], datetime] = utcnow,
        settle_on_manager_approval: Optional[bool] = None,
        dedup_window_days: Optional[int] = None,
    ):
        self.db = db
        self.submission_repo = SubmissionRepository(db)
        self.transaction_repo = TransactionRepository(db)
        self.user_repo = UserRepository(db)
        self.comment_limit_repo = CommentLimitRepository(db)
        self.state_machine = ReviewStateMachine(db)
        self.ledger = LedgerService(db)
        self.referral_service = ReferralService(db)
        self.notifications = NotificationService(db)
        self.pricing_service = pricing_service or PricingService(db)
        self.request_cache = request_cache or TTLCache(default_ttl=settings.cache_ttl_seconds)
        self.clock = clock
        self.settle_on_manager_approval = (
            settings.settle_on_manager_approval
            if settle_on_manager_approval is None
            else settle_on_manager_approval
        )
        self.dedup_window_days = (
            settings.dedup_window_days if dedup_window_days is None else dedup_window_days
        )
        self._submission_callback: Optional[Callable[[Submission], Awaitable[Any]]] = None

    def set_submission_callback(self, callback: Callable[[Submission], Awaitable[Any]]) -> None:
        """
        Set the coroutine called after each new submission is stored.

        Args:
            callback: Async function receiving the created Submission
        """
        self._submission_callback = callback

    # Intake

    def _validate_images(self, images: Sequence[Dict[str, str]]) -> List[SubmissionImage]:
        if not images:
            raise InvalidSubmission("At least one image is required")
        if len(images) > settings.max_images_per_submission:
            raise InvalidSubmission(
                f"At most {settings.max_images_per_submission} images per submission"
            )

        validated: List[SubmissionImage] = []
        seen = set()
        for position, image in enumerate(images):
            url = (image.get("image_url") or "").strip()
            if not validate_url(url):
                raise InvalidSubmission(f"Image {position + 1} has an invalid URL")
            digest = normalize_content_hash(image.get("content_hash") or "")
            if digest is None:
                raise InvalidSubmission(f"Image {position + 1} has an invalid content hash")
            if digest in seen:
                raise InvalidSubmission(f"Image {position + 1} repeats another image")
            seen.add(digest)
            validated.append(SubmissionImage(position=position, image_url=url, content_hash=digest))
        return validated

    def _validate_metadata(self, task_type: TaskType, metadata: Dict[str, Any]) -> Dict[str, Any]:
        cleaned = {key: (value.strip() if isinstance(value, str) else value) for key, value in metadata.items()}

        if task_type == TaskType.NOTE:
            if not validate_url(cleaned.get("note_url") or ""):
                raise InvalidSubmission("A note submission needs a valid note_url")
        elif task_type == TaskType.COMMENT:
            if not cleaned.get("comment_text"):
                raise InvalidSubmission("A comment submission needs comment_text")
        elif task_type == TaskType.LEAD:
            phone = cleaned.get("customer_phone")
            wechat = cleaned.get("customer_wechat")
            if not phone and not wechat:
                raise InvalidSubmission("A lead needs customer_phone or customer_wechat")
            if phone and not validate_phone(phone):
                raise InvalidSubmission("customer_phone is not a valid mobile number")
        return cleaned

    @staticmethod
    def _comment_key(note_url: Optional[str], note_author: Optional[str]) -> Optional[Tuple[str, str]]:
        if not note_url or not note_author:
            return None
        author = clean_author_name(note_author)
        if not author:
            return None
        return normalize_note_url(note_url), author

    async def _check_comment_limit(self, cleaned: Dict[str, Any]) -> None:
        """Refuse a comment over the per-note, per-author approval limit. Caller holds the unit."""
        key = self._comment_key(cleaned.get("note_url"), cleaned.get("note_author"))
        if key is None:
            return

        approved = await self.comment_limit_repo.get_approved_contents(*key)
        if len(approved) >= settings.comment_limit_per_author:
            raise CommentLimitExceeded(
                f"{key[1]} already has {len(approved)} approved comments on this note"
            )
        text = cleaned["comment_text"].casefold()
        if any(content.casefold() == text for content in approved):
            raise CommentLimitExceeded("This comment repeats an approved comment on this note")

    async def submit(
        self,
        owner_id: int,
        task_type: str,
        images: Sequence[Dict[str, str]],
        metadata: Optional[Dict[str, Any]] = None,
        device_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> Submission:
        """
        Create a pending submission with a frozen pricing snapshot.

        A repeated request_id from the same owner returns the submission
        the first request created.

        Raises:
            InvalidSubmission: malformed payload
            DuplicateSubmission: a content hash is already in use by this owner
            CommentLimitExceeded: the note author already has enough approved comments
            NotFound: owner does not exist
        """
        cache_key = ("submit", owner_id, request_id) if request_id else None
        if cache_key:
            previous_id = self.request_cache.get(cache_key)
            if previous_id is not None:
                logger.info(f"Replayed submit request {request_id} -> submission {previous_id}")
                return await self.get_submission(previous_id)

        try:
            task_type = TaskType(task_type)
        except ValueError:
            raise InvalidSubmission(f"Unknown task type {task_type!r}")

        validated_images = self._validate_images(images)
        cleaned = self._validate_metadata(task_type, metadata or {})
        snapshot = await self.pricing_service.get_snapshot(task_type)
        now = self.clock()

        async with self.db.transaction():
            owner = await self.user_repo.get_by_id(owner_id)
            if not owner or owner.is_deleted:
                raise NotFound(f"User {owner_id} not found")

            duplicate = await self.submission_repo.find_duplicate(
                owner_id,
                [image.content_hash for image in validated_images],
                since=now - timedelta(days=self.dedup_window_days),
            )
            if duplicate:
                logger.info(
                    f"Duplicate content {format_short_hash(duplicate['content_hash'])} "
                    f"from user {owner_id} (submission {duplicate['submission_id']})"
                )
                raise DuplicateSubmission(duplicate["content_hash"], duplicate["submission_id"])

            if task_type == TaskType.COMMENT:
                await self._check_comment_limit(cleaned)

            submission = await self.submission_repo.create(
                user_id=owner_id,
                task_type=task_type,
                images=validated_images,
                snapshot_price=snapshot.price,
                snapshot_commission_1=snapshot.commission_1,
                snapshot_commission_2=snapshot.commission_2,
                pricing_version=snapshot.version,
                device_id=device_id,
                metadata=cleaned,
                created_at=now,
            )

        if cache_key:
            self.request_cache.set(cache_key, submission.id)

        logger.info(
            f"Submission {submission.id} created by user {owner_id} "
            f"({task_type.value}, {len(validated_images)} images, price {snapshot.price})"
        )

        if self._submission_callback:
            await self._submission_callback(submission)
        return submission

    async def get_submission(self, submission_id: int) -> Submission:
        """Get a submission with its images and full review trail."""
        async with self.db.reading():
            submission = await self.submission_repo.get_by_id(submission_id)
        if not submission:
            raise NotFound(f"Submission {submission_id} not found")
        return submission

    async def list_user_submissions(self, user_id: int, limit: int = 20, offset: int = 0) -> List[Submission]:
        async with self.db.reading():
            return await self.submission_repo.get_user_submissions(user_id, limit, offset)

    # Human review

    async def mentor_review(
        self,
        submission_id: int,
        actor: Actor,
        approve: bool,
        comment: Optional[str] = None,
        corrected_type: Optional[str] = None,
    ) -> Submission:
        """
        Apply a mentor decision.

        On approval the submission is handed straight to manager review. A
        mentor may correct the task type; the pricing snapshot is then
        re-taken for the corrected type.

        Raises:
            InvalidStateTransition: the submission is not awaiting a mentor
            PermissionDenied: actor cannot review at mentor level, or the
                owner is assigned to another mentor
            InvalidSubmission: corrected_type is not a task type
        """
        if not can_perform(actor.role, S.MENTOR_REVIEW, S.MENTOR_APPROVED):
            raise PermissionDenied(f"Role {actor.role.value} cannot perform mentor review")

        new_snapshot: Optional[PricingSnapshot] = None
        if approve and corrected_type:
            try:
                corrected = TaskType(corrected_type)
            except ValueError:
                raise InvalidSubmission(f"Unknown task type {corrected_type!r}")
            new_snapshot = await self.pricing_service.get_snapshot(corrected)

        async with self.db.transaction():
            submission = await self.state_machine.load(submission_id)
            owner = await self.user_repo.get_by_id(submission.user_id)
            if owner and not may_review_owner(actor, owner):
                raise PermissionDenied(
                    f"Submission {submission_id} belongs to a user assigned to another mentor"
                )

            if not approve:
                await self.state_machine.transition(
                    submission_id,
                    S.MENTOR_REJECTED,
                    actor,
                    Decision.MENTOR_REJECT,
                    reason=comment or "Rejected at mentor review",
                )
            else:
                fields: Dict[str, Any] = {}
                reason = comment
                if new_snapshot is not None:
                    if submission.task_type.value != corrected_type:
                        fields = {
                            "task_type": corrected_type,
                            "snapshot_price": new_snapshot.price,
                            "snapshot_commission_1": new_snapshot.commission_1,
                            "snapshot_commission_2": new_snapshot.commission_2,
                            "pricing_version": new_snapshot.version,
                        }
                        correction = f"type corrected {submission.task_type.value} -> {corrected_type}"
                        reason = f"{comment}; {correction}" if comment else correction

                await self.state_machine.transition(
                    submission_id,
                    S.MENTOR_APPROVED,
                    actor,
                    Decision.MENTOR_PASS,
                    reason=reason,
                    **fields,
                )
                await self.state_machine.transition(
                    submission_id,
                    S.MANAGER_REVIEW,
                    SYSTEM_ACTOR,
                    Decision.ESCALATE,
                    reason="Awaiting manager review",
                    stage=ReviewStage.MENTOR,
                )

        return await self.get_submission(submission_id)

    async def manager_review(
        self,
        submission_id: int,
        actor: Actor,
        approve: bool,
        comment: Optional[str] = None,
    ) -> ReviewOutcome:
        """
        Apply a manager decision.

        Approval is the only point commissions are produced. Approving a
        submission that is already approved or settled changes nothing and
        returns the transactions the first approval created.

        Raises:
            InvalidStateTransition: the submission is not awaiting a manager
            PermissionDenied: actor cannot review at manager level
        """
        if not can_perform(actor.role, S.MANAGER_REVIEW, S.MANAGER_APPROVED):
            raise PermissionDenied(f"Role {actor.role.value} cannot perform manager review")

        async with self.db.transaction():
            submission = await self.state_machine.load(submission_id)

            if approve and submission.status in (S.MANAGER_APPROVED, S.COMPLETED, S.PAID):
                return await self._replay(submission)

            if not approve:
                await self.state_machine.transition(
                    submission_id,
                    S.MANAGER_REJECTED,
                    actor,
                    Decision.MANAGER_REJECT,
                    reason=comment or "Rejected at manager review",
                )
                await self.notifications.notify_mentor_of_rejection(submission, actor.label, comment)
                transactions: List[Transaction] = []
            else:
                await self.state_machine.transition(
                    submission_id,
                    S.MANAGER_APPROVED,
                    actor,
                    Decision.MANAGER_APPROVE,
                    reason=comment,
                )
                if submission.task_type == TaskType.COMMENT:
                    key = self._comment_key(submission.note_url, submission.note_author)
                    if key is not None:
                        await self.comment_limit_repo.record_approval(
                            *key, submission.comment_text, submission.id
                        )
                transactions = []
                if self.settle_on_manager_approval:
                    transactions = await self._settle(submission_id, SYSTEM_ACTOR)

            submission = await self.submission_repo.get_by_id(submission_id)

        return ReviewOutcome(submission=submission, transactions=transactions)

    async def batch_manager_review(
        self,
        submission_ids: Sequence[int],
        actor: Actor,
        approve: bool,
        comment: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Apply one manager decision to many submissions.

        Each submission is reviewed in its own unit, so one failure does not
        undo the others.

        Returns:
            {"succeeded": [ids], "failed": {id: error code}}
        """
        if not can_perform(actor.role, S.MANAGER_REVIEW, S.MANAGER_APPROVED):
            raise PermissionDenied(f"Role {actor.role.value} cannot perform manager review")
        if not approve and not (comment or "").strip():
            raise InvalidRequest("A batch rejection needs a comment")

        unique_ids = list(dict.fromkeys(submission_ids))
        if not unique_ids:
            raise InvalidRequest("submission_ids must not be empty")
        if len(unique_ids) > MAX_BATCH_SIZE:
            raise InvalidRequest(f"At most {MAX_BATCH_SIZE} submissions per batch")

        succeeded: List[int] = []
        failed: Dict[int, str] = {}
        for submission_id in unique_ids:
            try:
                await self.manager_review(submission_id, actor, approve, comment)
            except ReviewLedgerError as e:
                logger.warning(f"Batch manager review skipped submission {submission_id}: {e}")
                failed[submission_id] = e.code
            else:
                succeeded.append(submission_id)

        logger.info(
            f"Batch manager {'approval' if approve else 'rejection'} by {actor.label}: "
            f"{len(succeeded)} succeeded, {len(failed)} failed"
        )
        return {"succeeded": succeeded, "failed": failed}

    async def list_mentor_queue(self, actor: Actor, limit: int = 20, offset: int = 0) -> List[Submission]:
        """Submissions awaiting a mentor that this actor may review."""
        if not can_perform(actor.role, S.MENTOR_REVIEW, S.MENTOR_APPROVED):
            raise PermissionDenied(f"Role {actor.role.value} cannot perform mentor review")
        mentor_id = actor.user_id if actor.role == Role.MENTOR else None
        async with self.db.reading():
            return await self.submission_repo.get_mentor_queue(mentor_id, limit, offset)

    async def finance_process(self, submission_id: int, actor: Actor) -> ReviewOutcome:
        """
        Settle a manager-approved submission.

        Processing a submission that is already settled returns its
        existing transactions.

        Raises:
            InvalidStateTransition: the submission has not been approved by a manager
            PermissionDenied: actor cannot settle submissions
        """
        async with self.db.transaction():
            submission = await self.state_machine.load(submission_id)
            if submission.is_settled:
                return await self._replay(submission)

            transactions = await self._settle(submission_id, actor)
            submission = await self.submission_repo.get_by_id(submission_id)

        return ReviewOutcome(submission=submission, transactions=transactions)

    async def _replay(self, submission: Submission) -> ReviewOutcome:
        logger.info(f"Submission {submission.id} already {submission.status.value}; returning prior result")
        transactions = await self.transaction_repo.get_by_submission(submission.id)
        full = await self.submission_repo.get_by_id(submission.id)
        return ReviewOutcome(submission=full, transactions=transactions, replayed=True)

    async def _settle(self, submission_id: int, actor: Actor) -> List[Transaction]:
        """Move manager_approved -> completed and credit commissions. Caller holds the unit."""
        submission = await self.state_machine.load(submission_id)
        chain = await self.referral_service.get_commission_chain(submission.user_id)
        snapshot = PricingSnapshot(
            price=submission.snapshot_price,
            commission_1=submission.snapshot_commission_1,
            commission_2=submission.snapshot_commission_2,
            version=submission.pricing_version,
        )
        credits = calculate_credits(submission_id, submission.user_id, snapshot, chain)

        fields: Dict[str, Any] = {"completed_at": self.clock()}
        if submission.task_type == TaskType.NOTE and settings.continuous_check_enabled:
            fields["continuous_check_status"] = "active"

        await self.state_machine.transition(
            submission_id,
            S.COMPLETED,
            actor,
            Decision.FINANCE_PROCESS,
            reason=f"{len(credits)} credits issued",
            **fields,
        )
        transactions = await self.ledger.apply_credits(submission_id, credits)

        logger.info(
            f"Settled submission {submission_id}: "
            + ", ".join(f"{t.type.value}={t.amount}->user {t.user_id}" for t in transactions)
        )
        return transactions
