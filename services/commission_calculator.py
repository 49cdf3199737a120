"""Commission calculation for settled submissions."""

from dataclasses import dataclass
from typing import List, Optional, Sequence

from database.models import TransactionType


@dataclass(frozen=True)
class PricingSnapshot:
    """Rates captured on a submission when it was created."""

    price: int
    commission_1: int
    commission_2: int
    version: int = 0


@dataclass(frozen=True)
class CreditInstruction:
    """One credit the ledger should apply."""

    beneficiary_id: int
    amount: int
    type: TransactionType
    reason: str


TIER_TYPES = (TransactionType.REFERRAL_TIER1, TransactionType.REFERRAL_TIER2)


def calculate_credits(
    submission_id: int,
    owner_id: int,
    snapshot: PricingSnapshot,
    referral_chain: Sequence[Optional[int]],
) -> List[CreditInstruction]:
    """
    Compute the credits produced by settling one submission.

    Args:
        submission_id: The settled submission
        owner_id: The submitter
        snapshot: Price and tier rates frozen on the submission
        referral_chain: Ancestor user ids, nearest first. None marks a
            missing or deleted ancestor and ends the chain.

    Returns:
        Base reward first, then tier-1 and tier-2 commissions where an
        ancestor exists and the snapshot rate is positive.
    """
    credits: List[CreditInstruction] = []

    if snapshot.price > 0:
        credits.append(CreditInstruction(
            beneficiary_id=owner_id,
            amount=snapshot.price,
            type=TransactionType.TASK_REWARD,
            reason=f"Task reward for submission #{submission_id}",
        ))

    rates = (snapshot.commission_1, snapshot.commission_2)
    for tier, (txn_type, rate) in enumerate(zip(TIER_TYPES, rates), start=1):
        if tier > len(referral_chain):
            break
        ancestor_id = referral_chain[tier - 1]
        if ancestor_id is None:
            break
        if rate <= 0:
            continue
        credits.append(CreditInstruction(
            beneficiary_id=ancestor_id,
            amount=rate,
            type=txn_type,
            reason=f"Tier-{tier} commission from user {owner_id} submission #{submission_id}",
        ))

    return credits


def settlement_key(submission_id: int, credit: CreditInstruction) -> str:
    """Stable key that makes a settlement credit unique in the log."""
    return f"sub:{submission_id}:{credit.type.value}:{credit.beneficiary_id}"
