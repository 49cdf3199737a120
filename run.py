#!/usr/bin/env python3
"""Entry point for the task review and commission ledger service."""

import asyncio
import logging

from aiohttp import web
from dotenv import load_dotenv

# Load environment variables before importing settings
load_dotenv()

from config.settings import settings
from core.api import create_app
from core.classifier import create_classifier
from database.connection import Database
from jobs.scheduler import JobManager
from services import (
    ContinuousCheckService,
    HttpNoteChecker,
    LedgerService,
    MentorService,
    PricingService,
    ReferralService,
    ReviewOrchestrator,
    ReviewService,
)
from utils.ttl_cache import TTLCache


# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)
logger = logging.getLogger(__name__)


async def main():
    """Initialize and run the service."""
    logger.info("Starting review ledger service...")

    # Initialize database
    db = Database(str(settings.db_path))
    await db.initialize()
    logger.info("Database initialized")

    cache = TTLCache(default_ttl=settings.cache_ttl_seconds)
    pricing_service = PricingService(db, cache)
    review_service = ReviewService(db, pricing_service=pricing_service, request_cache=cache)
    ledger_service = LedgerService(db)
    referral_service = ReferralService(db)
    mentor_service = MentorService(db)

    job_manager = JobManager()
    classifier = create_classifier()
    orchestrator = ReviewOrchestrator(db, classifier, job_manager=job_manager)
    review_service.set_submission_callback(orchestrator.on_submitted)

    note_checker = HttpNoteChecker()
    check_service = ContinuousCheckService(db, note_checker)

    async def sweep_cache():
        removed = cache.sweep()
        if removed:
            logger.debug(f"Evicted {removed} expired cache entries")

    job_manager.add_interval_job(
        sweep_cache,
        job_id="cache_sweep",
        name="Cache eviction sweep",
        seconds=settings.cache_sweep_interval_seconds,
    )
    job_manager.add_interval_job(
        orchestrator.recover,
        job_id="ai_review_recovery",
        name="Stalled review recovery",
        minutes=settings.ai_recovery_interval_minutes,
    )
    if settings.continuous_check_enabled:
        job_manager.add_daily_job(
            check_service.run_daily_checks,
            job_id="continuous_note_check",
            name="Daily note check",
            hour=settings.continuous_check_hour,
        )

    job_manager.start()
    recovered = await orchestrator.recover()
    logger.info(f"Rescheduled {recovered} submissions awaiting automated review")

    app = create_app(
        review_service,
        ledger_service,
        referral_service,
        pricing_service,
        mentor_service=mentor_service,
        notification_service=review_service.notifications,
    )
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, settings.api_host, settings.api_port)
    await site.start()
    logger.info(f"API listening on {settings.api_host}:{settings.api_port}. Press Ctrl+C to stop.")

    # Keep running until interrupted
    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        job_manager.stop()
        await runner.cleanup()
        await classifier.close()
        await note_checker.close()
        await db.close()
        logger.info("Shutdown complete")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Service stopped by user")
    except Exception as e:
        logger.error(f"Service crashed: {e}")
        raise
