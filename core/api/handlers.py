"""HTTP handlers for submissions, reviews, payouts and wallets."""

import json
import logging
from typing import Any, Dict, Optional, Tuple

from aiohttp import web

from config.constants import DEFAULT_PAGE_SIZE, MAX_BATCH_SIZE, MAX_PAGE_SIZE
from core.api.identity import HeaderIdentityProvider, require_role, require_self_or_staff
from core.exceptions import InvalidRequest, PermissionDenied
from database.models import Role, SubmissionStatus, TaskType, TransactionType
from services.ledger_service import LedgerService
from services.mentor_service import MentorService
from services.notification_service import NotificationService
from services.pricing_service import PricingService
from services.referral_service import ReferralService
from services.review_service import ReviewOutcome, ReviewService
from services.state_machine import can_perform

logger = logging.getLogger(__name__)

FINANCE_ROLES = (Role.FINANCE, Role.BOSS)
FINANCE_STATS_ROLES = (Role.FINANCE, Role.MANAGER, Role.BOSS)
PRICING_ROLES = (Role.MANAGER, Role.BOSS)
REFERRAL_ADMIN_ROLES = (Role.HR, Role.BOSS)


def ok(data: Any, status: int = 200) -> web.Response:
    return web.json_response({"success": True, "data": data}, status=status)


async def read_json(request: web.Request) -> Dict[str, Any]:
    """Parse the body as a JSON object. An empty body is an empty object."""
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise InvalidRequest("Request body is not valid JSON")
    if not isinstance(body, dict):
        raise InvalidRequest("Request body must be a JSON object")
    return body


def path_int(request: web.Request, name: str) -> int:
    try:
        return int(request.match_info[name])
    except (KeyError, ValueError):
        raise InvalidRequest(f"Path parameter {name} must be an integer")


def page_params(request: web.Request) -> Tuple[int, int]:
    """Read limit and offset from the query string, capping the page size."""
    try:
        limit = int(request.query.get("limit", DEFAULT_PAGE_SIZE))
        offset = int(request.query.get("offset", 0))
    except ValueError:
        raise InvalidRequest("limit and offset must be integers")
    if limit < 1 or offset < 0:
        raise InvalidRequest("limit must be positive and offset not negative")
    return min(limit, MAX_PAGE_SIZE), offset


def body_int(body: Dict[str, Any], name: str) -> int:
    value = body.get(name)
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidRequest(f"{name} must be an integer")
    return value


def body_bool(body: Dict[str, Any], name: str) -> bool:
    value = body.get(name)
    if not isinstance(value, bool):
        raise InvalidRequest(f"{name} must be true or false")
    return value


def outcome_to_dict(outcome: ReviewOutcome) -> Dict[str, Any]:
    return {
        "submission": outcome.submission.to_dict(),
        "transactions": [txn.to_dict() for txn in outcome.transactions],
        "replayed": outcome.replayed,
    }


class ApiHandlers:
    """Request handlers bound to the service layer."""

    def __init__(
        self,
        review_service: ReviewService,
        ledger_service: LedgerService,
        referral_service: ReferralService,
        pricing_service: PricingService,
        identity: Optional[HeaderIdentityProvider] = None,
        mentor_service: Optional[MentorService] = None,
        notification_service: Optional[NotificationService] = None,
    ):
        self.review_service = review_service
        self.ledger_service = ledger_service
        self.referral_service = referral_service
        self.pricing_service = pricing_service
        self.identity = identity or HeaderIdentityProvider()
        self.mentor_service = mentor_service or MentorService(review_service.db)
        self.notification_service = notification_service or review_service.notifications

    # Submissions

    async def create_submission(self, request: web.Request) -> web.Response:
        """
        POST /api/submissions

        Body:
            {"task_type": "note", "images": [{"image_url", "content_hash"}],
             "metadata": {...}, "device_id": "...", "request_id": "..."}
        """
        actor = self.identity.resolve(request)
        body = await read_json(request)

        images = body.get("images")
        if not isinstance(images, list) or not all(isinstance(image, dict) for image in images):
            raise InvalidRequest("images must be a list of objects")
        metadata = body.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise InvalidRequest("metadata must be an object")

        submission = await self.review_service.submit(
            owner_id=actor.user_id,
            task_type=body.get("task_type") or "",
            images=images,
            metadata=metadata,
            device_id=body.get("device_id"),
            request_id=body.get("request_id") or request.headers.get("X-Request-Id"),
        )
        return ok(submission.to_dict(), status=201)

    async def get_submission(self, request: web.Request) -> web.Response:
        actor = self.identity.resolve(request)
        submission = await self.review_service.get_submission(path_int(request, "id"))
        require_self_or_staff(actor, submission.user_id)
        return ok(submission.to_dict())

    async def list_user_submissions(self, request: web.Request) -> web.Response:
        actor = self.identity.resolve(request)
        user_id = path_int(request, "id")
        require_self_or_staff(actor, user_id)
        limit, offset = page_params(request)
        submissions = await self.review_service.list_user_submissions(user_id, limit, offset)
        return ok([submission.to_dict(include_trail=False) for submission in submissions])

    # Reviews

    async def mentor_review(self, request: web.Request) -> web.Response:
        actor = self.identity.resolve(request)
        body = await read_json(request)
        submission = await self.review_service.mentor_review(
            path_int(request, "id"),
            actor,
            approve=body_bool(body, "approve"),
            comment=body.get("comment"),
            corrected_type=body.get("corrected_type"),
        )
        return ok(submission.to_dict())

    async def manager_review(self, request: web.Request) -> web.Response:
        actor = self.identity.resolve(request)
        body = await read_json(request)
        outcome = await self.review_service.manager_review(
            path_int(request, "id"),
            actor,
            approve=body_bool(body, "approve"),
            comment=body.get("comment"),
        )
        return ok(outcome_to_dict(outcome))

    async def batch_manager_review(self, request: web.Request) -> web.Response:
        """
        PUT /api/reviews/batch-manager-review

        Body:
            {"submission_ids": [1, 2], "approve": true, "comment": "..."}
        """
        actor = self.identity.resolve(request)
        body = await read_json(request)
        ids = body.get("submission_ids")
        if not isinstance(ids, list) or not all(
            isinstance(submission_id, int) and not isinstance(submission_id, bool) for submission_id in ids
        ):
            raise InvalidRequest("submission_ids must be a list of integers")

        result = await self.review_service.batch_manager_review(
            ids,
            actor,
            approve=body_bool(body, "approve"),
            comment=body.get("comment"),
        )
        return ok({
            "succeeded": result["succeeded"],
            "failed": {str(submission_id): code for submission_id, code in result["failed"].items()},
        })

    async def mentor_queue(self, request: web.Request) -> web.Response:
        actor = self.identity.resolve(request)
        limit, offset = page_params(request)
        submissions = await self.review_service.list_mentor_queue(actor, limit, offset)
        return ok([submission.to_dict(include_trail=False) for submission in submissions])

    async def finance_process(self, request: web.Request) -> web.Response:
        actor = self.identity.resolve(request)
        outcome = await self.review_service.finance_process(path_int(request, "id"), actor)
        return ok(outcome_to_dict(outcome))

    # Finance

    async def pay(self, request: web.Request) -> web.Response:
        """
        POST /api/finance/pay

        Body:
            {"transaction_ids": [1, 2, 3]}
        """
        actor = self.identity.resolve(request)
        if not can_perform(actor.role, SubmissionStatus.COMPLETED, SubmissionStatus.PAID):
            raise PermissionDenied(f"Role {actor.role.value} cannot pay out")

        body = await read_json(request)
        ids = body.get("transaction_ids")
        if not isinstance(ids, list) or not all(
            isinstance(txn_id, int) and not isinstance(txn_id, bool) for txn_id in ids
        ):
            raise InvalidRequest("transaction_ids must be a list of integers")
        if len(ids) > MAX_BATCH_SIZE:
            raise InvalidRequest(f"At most {MAX_BATCH_SIZE} transactions per payout")

        paid = await self.ledger_service.mark_paid(ids, actor)
        return ok({"paid_count": paid})

    async def list_pending(self, request: web.Request) -> web.Response:
        actor = self.identity.resolve(request)
        require_role(actor, *FINANCE_ROLES)
        return ok(await self.ledger_service.list_pending_by_user())

    async def finance_stats(self, request: web.Request) -> web.Response:
        actor = self.identity.resolve(request)
        require_role(actor, *FINANCE_STATS_ROLES)
        return ok(await self.ledger_service.get_finance_stats())

    async def withdraw(self, request: web.Request) -> web.Response:
        actor = self.identity.resolve(request)
        require_role(actor, *FINANCE_ROLES)
        body = await read_json(request)
        txn = await self.ledger_service.withdraw(
            path_int(request, "id"),
            body_int(body, "points"),
            actor,
            note=body.get("note"),
        )
        return ok(txn.to_dict(), status=201)

    # Wallets

    async def get_wallet(self, request: web.Request) -> web.Response:
        actor = self.identity.resolve(request)
        user_id = path_int(request, "id")
        require_self_or_staff(actor, user_id)
        wallet = await self.ledger_service.get_wallet(user_id)
        return ok(wallet.to_dict())

    async def get_transactions(self, request: web.Request) -> web.Response:
        actor = self.identity.resolve(request)
        user_id = path_int(request, "id")
        require_self_or_staff(actor, user_id)
        limit, offset = page_params(request)
        txn_type = request.query.get("type")
        try:
            type_filter = TransactionType(txn_type) if txn_type else None
        except ValueError:
            raise InvalidRequest(f"Unknown transaction type {txn_type!r}")
        transactions = await self.ledger_service.get_transactions(user_id, limit, offset, type_filter)
        return ok([txn.to_dict() for txn in transactions])

    async def exchange_points(self, request: web.Request) -> web.Response:
        actor = self.identity.resolve(request)
        user_id = path_int(request, "id")
        if actor.user_id != user_id:
            raise PermissionDenied("Points can only be exchanged by their owner")

        body = await read_json(request)
        result = await self.ledger_service.exchange_points(user_id, body_int(body, "points"))
        return ok({
            "points": result.points,
            "amount": str(result.amount),
            "new_balance": result.new_balance,
            "rate_version": result.rate_version,
            "transaction_id": result.transaction_id,
        })

    # Referrals

    async def set_referrer(self, request: web.Request) -> web.Response:
        actor = self.identity.resolve(request)
        user_id = path_int(request, "id")
        if actor.user_id != user_id:
            require_role(actor, *REFERRAL_ADMIN_ROLES)

        body = await read_json(request)
        user = await self.referral_service.set_referrer(user_id, body_int(body, "referrer_id"))
        return ok({"user_id": user.id, "referrer_id": user.referrer_id})

    async def get_referral_stats(self, request: web.Request) -> web.Response:
        actor = self.identity.resolve(request)
        user_id = path_int(request, "id")
        require_self_or_staff(actor, user_id)
        return ok(await self.referral_service.get_referral_stats(user_id))

    # Mentors

    async def assign_mentor(self, request: web.Request) -> web.Response:
        actor = self.identity.resolve(request)
        body = await read_json(request)
        user = await self.mentor_service.assign_mentor(
            path_int(request, "id"), body_int(body, "mentor_id"), actor
        )
        return ok({"user_id": user.id, "mentor_id": user.mentor_id})

    # Notifications

    async def list_notifications(self, request: web.Request) -> web.Response:
        actor = self.identity.resolve(request)
        limit, _ = page_params(request)
        return ok(await self.notification_service.list_for_user(actor.user_id, limit))

    async def mark_notification_read(self, request: web.Request) -> web.Response:
        actor = self.identity.resolve(request)
        await self.notification_service.mark_read(path_int(request, "id"), actor.user_id)
        return ok({"id": path_int(request, "id"), "is_read": True})

    # Pricing

    async def list_pricing(self, request: web.Request) -> web.Response:
        self.identity.resolve(request)
        configs = await self.pricing_service.list_active()
        rate = await self.pricing_service.get_exchange_rate()
        return ok({
            "tasks": [config.to_dict() for config in configs],
            "points_per_unit": rate.points_per_unit,
            "exchange_rate_version": rate.version,
        })

    async def update_pricing(self, request: web.Request) -> web.Response:
        actor = self.identity.resolve(request)
        require_role(actor, *PRICING_ROLES)

        try:
            task_type = TaskType(request.match_info["task_type"])
        except ValueError:
            raise InvalidRequest(f"Unknown task type {request.match_info['task_type']!r}")

        body = await read_json(request)
        config = await self.pricing_service.update_pricing(
            task_type,
            price=body_int(body, "price"),
            commission_1=body_int(body, "commission_1"),
            commission_2=body_int(body, "commission_2"),
            name=body.get("name"),
        )
        logger.info(f"Pricing for {task_type.value} updated by {actor.label}")
        return ok(config.to_dict())

    async def update_exchange_rate(self, request: web.Request) -> web.Response:
        actor = self.identity.resolve(request)
        require_role(actor, *PRICING_ROLES)
        body = await read_json(request)
        rate = await self.pricing_service.update_exchange_rate(body_int(body, "points_per_unit"))
        return ok({"version": rate.version, "points_per_unit": rate.points_per_unit})

    async def health(self, request: web.Request) -> web.Response:
        return web.Response(text="OK")

