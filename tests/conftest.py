"""Shared pytest fixtures for the review ledger tests.

Uses real temporary SQLite databases; the classifier and note checker are
replaced by in-process fakes.
"""

import hashlib
import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from database.connection import Database
from database.models import Decision, Role, SubmissionStatus as S, User
from database.repositories import (
    ContinuousCheckRepository,
    SubmissionRepository,
    TaskConfigRepository,
    TransactionRepository,
    UserRepository,
    WalletRepository,
)
from services.ledger_service import LedgerService
from services.pricing_service import PricingService
from services.referral_service import ReferralService
from services.review_service import ReviewService
from services.state_machine import SYSTEM_ACTOR, Actor, ReviewStateMachine
from utils.ttl_cache import TTLCache


class FakeClock:
    """Controllable clock for time-dependent code."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 3, 1, 2, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def make_images(count: int = 1, seed: str = "img") -> List[Dict[str, str]]:
    """Build image refs with distinct md5 content hashes."""
    return [
        {
            "image_url": f"https://blob.example.com/{seed}/{i}.jpg",
            "content_hash": hashlib.md5(f"{seed}-{i}".encode()).hexdigest(),
        }
        for i in range(count)
    ]


NOTE_METADATA = {"note_url": "https://notes.example.com/n/123", "note_title": "Spring skincare"}
COMMENT_METADATA = {"comment_text": "Great product, works well"}
LEAD_METADATA = {"customer_phone": "13812345678"}


@pytest_asyncio.fixture
async def temp_db():
    """Create a temporary SQLite database for testing.

    Yields a real Database instance with all migrations applied.
    Database is cleaned up after test completes.
    """
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    db = Database(db_path)
    try:
        await db.initialize()
        yield db
    finally:
        await db.close()
        if os.path.exists(db_path):
            os.unlink(db_path)


@pytest_asyncio.fixture
async def user_repo(temp_db: Database) -> UserRepository:
    return UserRepository(temp_db)


@pytest_asyncio.fixture
async def wallet_repo(temp_db: Database) -> WalletRepository:
    return WalletRepository(temp_db)


@pytest_asyncio.fixture
async def transaction_repo(temp_db: Database) -> TransactionRepository:
    return TransactionRepository(temp_db)


@pytest_asyncio.fixture
async def submission_repo(temp_db: Database) -> SubmissionRepository:
    return SubmissionRepository(temp_db)


@pytest_asyncio.fixture
async def config_repo(temp_db: Database) -> TaskConfigRepository:
    return TaskConfigRepository(temp_db)


@pytest_asyncio.fixture
async def check_repo(temp_db: Database) -> ContinuousCheckRepository:
    return ContinuousCheckRepository(temp_db)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def ledger(temp_db: Database) -> LedgerService:
    return LedgerService(temp_db)


@pytest_asyncio.fixture
async def referral_service(temp_db: Database) -> ReferralService:
    return ReferralService(temp_db)


@pytest_asyncio.fixture
async def pricing_service(temp_db: Database, clock: FakeClock) -> PricingService:
    return PricingService(temp_db, TTLCache(default_ttl=300, clock=clock))


@pytest_asyncio.fixture
async def review_service(temp_db: Database, pricing_service: PricingService, clock: FakeClock) -> ReviewService:
    return ReviewService(
        temp_db,
        pricing_service=pricing_service,
        request_cache=TTLCache(default_ttl=300, clock=clock),
        clock=clock,
        settle_on_manager_approval=True,
        dedup_window_days=30,
    )


@pytest_asyncio.fixture
async def staff(user_repo: UserRepository) -> Dict[str, Actor]:
    """One actor per staff role."""
    actors = {}
    for role in (Role.MENTOR, Role.MANAGER, Role.FINANCE, Role.HR, Role.BOSS):
        user = await user_repo.create(username=f"{role.value}_1", role=role)
        actors[role.value] = Actor(user_id=user.id, role=role)
    return actors


@pytest_asyncio.fixture
async def make_user(user_repo: UserRepository, referral_service: ReferralService):
    """Factory creating part-time users, optionally under a referrer."""
    counter = {"n": 0}

    async def factory(referrer: Optional[User] = None, role: Role = Role.PART_TIME) -> User:
        counter["n"] += 1
        user = await user_repo.create(username=f"user_{counter['n']}", role=role)
        if referrer is not None:
            user = await referral_service.set_referrer(user.id, referrer.id)
        return user

    return factory


async def drive_to_mentor_review(temp_db: Database, submission_id: int) -> None:
    """Walk a pending submission through a passing automated review."""
    machine = ReviewStateMachine(temp_db)
    steps = [
        (S.AI_REVIEWING, Decision.AI_START),
        (S.AI_APPROVED, Decision.AI_PASS),
        (S.MENTOR_REVIEW, Decision.ESCALATE),
    ]
    async with temp_db.transaction():
        for target, decision in steps:
            await machine.transition(submission_id, target, SYSTEM_ACTOR, decision)
