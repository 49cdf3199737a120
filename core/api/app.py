"""aiohttp application exposing the review and ledger services."""

import logging
from typing import Awaitable, Callable, Optional

from aiohttp import web

from core.api.handlers import ApiHandlers
from core.api.identity import HeaderIdentityProvider
from core.exceptions import ReviewLedgerError
from services.ledger_service import LedgerService
from services.mentor_service import MentorService
from services.notification_service import NotificationService
from services.pricing_service import PricingService
from services.referral_service import ReferralService
from services.review_service import ReviewService

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def error_body(code: str, message: str) -> dict:
    return {"success": False, "code": code, "message": message}


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Render service errors as JSON with their HTTP status."""
    try:
        return await handler(request)
    except ReviewLedgerError as e:
        if e.http_status >= 500:
            logger.warning(f"{request.method} {request.path} failed: {e.message}")
        else:
            logger.info(f"{request.method} {request.path} rejected: {e.code}: {e.message}")
        return web.json_response(error_body(e.code, e.message), status=e.http_status)
    except web.HTTPException:
        raise
    except Exception as e:
        logger.error(f"Unhandled error on {request.method} {request.path}: {e}", exc_info=True)
        return web.json_response(error_body("internal_error", "Internal error"), status=500)


def create_app(
    review_service: ReviewService,
    ledger_service: LedgerService,
    referral_service: ReferralService,
    pricing_service: PricingService,
    identity: Optional[HeaderIdentityProvider] = None,
    mentor_service: Optional[MentorService] = None,
    notification_service: Optional[NotificationService] = None,
) -> web.Application:
    """
    Create the aiohttp application.

    Returns:
        aiohttp Application with every route registered
    """
    handlers = ApiHandlers(
        review_service=review_service,
        ledger_service=ledger_service,
        referral_service=referral_service,
        pricing_service=pricing_service,
        identity=identity,
        mentor_service=mentor_service,
        notification_service=notification_service,
    )

    app = web.Application(middlewares=[error_middleware])
    router = app.router

    router.add_post("/api/submissions", handlers.create_submission)
    router.add_get("/api/submissions/{id}", handlers.get_submission)
    router.add_put("/api/submissions/{id}/mentor-review", handlers.mentor_review)
    router.add_put("/api/submissions/{id}/manager-review", handlers.manager_review)
    router.add_put("/api/submissions/{id}/finance-process", handlers.finance_process)
    router.add_put("/api/reviews/batch-manager-review", handlers.batch_manager_review)
    router.add_get("/api/reviews/mentor-queue", handlers.mentor_queue)

    router.add_post("/api/finance/pay", handlers.pay)
    router.add_get("/api/finance/pending", handlers.list_pending)
    router.add_get("/api/finance/stats", handlers.finance_stats)

    router.add_get("/api/users/{id}/wallet", handlers.get_wallet)
    router.add_get("/api/users/{id}/transactions", handlers.get_transactions)
    router.add_get("/api/users/{id}/submissions", handlers.list_user_submissions)
    router.add_post("/api/users/{id}/exchange-points", handlers.exchange_points)
    router.add_post("/api/users/{id}/withdrawals", handlers.withdraw)
    router.add_post("/api/users/{id}/referrer", handlers.set_referrer)
    router.add_get("/api/users/{id}/referrals", handlers.get_referral_stats)
    router.add_put("/api/users/{id}/mentor", handlers.assign_mentor)

    router.add_get("/api/notifications", handlers.list_notifications)
    router.add_put("/api/notifications/{id}/read", handlers.mark_notification_read)

    router.add_get("/api/pricing", handlers.list_pricing)
    router.add_put("/api/pricing/exchange-rate", handlers.update_exchange_rate)
    router.add_put("/api/pricing/{task_type}", handlers.update_pricing)

    router.add_get("/health", handlers.health)
    return app
