from .commission_calculator import CreditInstruction, PricingSnapshot, calculate_credits
from .continuous_check_service import ContinuousCheckService, HttpNoteChecker
from .ledger_service import ExchangeResult, LedgerService, ReconciliationReport
from .mentor_service import MentorService
from .notification_service import NotificationService
from .pricing_service import PricingService
from .referral_service import ReferralService
from .review_orchestrator import ReviewOrchestrator
from .review_service import ReviewOutcome, ReviewService
from .state_machine import SYSTEM_ACTOR, Actor, ReviewStateMachine

__all__ = [
    "CreditInstruction",
    "PricingSnapshot",
    "calculate_credits",
    "ContinuousCheckService",
    "HttpNoteChecker",
    "ExchangeResult",
    "LedgerService",
    "ReconciliationReport",
    "MentorService",
    "NotificationService",
    "PricingService",
    "ReferralService",
    "ReviewOrchestrator",
    "ReviewOutcome",
    "ReviewService",
    "SYSTEM_ACTOR",
    "Actor",
    "ReviewStateMachine",
]
