"""Wallet ledger: credits, payouts, point exchange and reconciliation."""

import logging
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal
from typing import Any, Dict, Iterable, List, Optional

from core.exceptions import InsufficientPoints, InvalidAmount, NotFound
from database.connection import Database
from database.models import (
    Decision,
    ReviewStage,
    Role,
    SubmissionStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
    Wallet,
)
from database.repositories import (
    SubmissionRepository,
    TaskConfigRepository,
    TransactionRepository,
    UserRepository,
    WalletRepository,
)
from services.commission_calculator import CreditInstruction, settlement_key
from services.state_machine import SYSTEM_ACTOR, Actor, ReviewStateMachine, can_perform
from utils.formatters import format_currency, format_points
from utils.timeutils import utcnow
from utils.validators import validate_amount

logger = logging.getLogger(__name__)


@dataclass
class ExchangeResult:
    """Result of converting points to currency."""

    points: int
    amount: Decimal
    new_balance: int
    rate_version: int
    transaction_id: int


@dataclass
class ReconciliationReport:
    """Wallet totals checked against the transaction log."""

    user_id: int
    accrued_total: int
    paid_out_total: int
    balance: int
    credits_pending: int
    credits_paid: int
    debits: int
    settled_pending: int = 0
    problems: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.problems


class LedgerService:
    """
    Service for every mutation of wallet totals.

    Each public operation is one atomic unit: the transaction rows and the
    wallet totals they justify are written together or not at all.
    """

    def __init__(self, db: Database):
        self.db = db
        self.wallet_repo = WalletRepository(db)
        self.transaction_repo = TransactionRepository(db)
        self.user_repo = UserRepository(db)
        self.submission_repo = SubmissionRepository(db)
        self.config_repo = TaskConfigRepository(db)
        self.state_machine = ReviewStateMachine(db)

    async def credit(
        self,
        user_id: int,
        amount: int,
        type: TransactionType,
        source_submission_id: Optional[int] = None,
        idempotency_key: Optional[str] = None,
        description: Optional[str] = None,
    ) -> int:
        """
        Record a pending credit and raise the user's accrued total.

        A credit whose idempotency key is already in the log is not applied
        again; the existing transaction id is returned instead.

        Raises:
            InvalidAmount: amount is not a positive integer
        """
        checked = validate_amount(amount)
        if checked is None:
            raise InvalidAmount(amount)
        amount = checked
        if not TransactionType(type).is_credit:
            raise ValueError(f"{type} is not a credit type")

        async with self.db.transaction():
            if idempotency_key:
                existing = await self.transaction_repo.get_by_idempotency_key(idempotency_key)
                if existing:
                    logger.info(f"Credit {idempotency_key} already recorded as #{existing.id}")
                    return existing.id

            txn = await self.transaction_repo.create(
                user_id=user_id,
                type=type,
                amount=amount,
                submission_id=source_submission_id,
                idempotency_key=idempotency_key,
                description=description,
            )
            await self.wallet_repo.add_accrued(user_id, amount)

        logger.info(f"Credited {format_points(amount)} to user {user_id} ({TransactionType(type).value}, txn {txn.id})")
        return txn.id

    async def apply_credits(
        self,
        submission_id: int,
        credits: Iterable[CreditInstruction],
    ) -> List[Transaction]:
        """Apply settlement credits for a submission, each keyed for replay detection."""
        transactions: List[Transaction] = []
        async with self.db.transaction():
            for instruction in credits:
                txn_id = await self.credit(
                    user_id=instruction.beneficiary_id,
                    amount=instruction.amount,
                    type=instruction.type,
                    source_submission_id=submission_id,
                    idempotency_key=settlement_key(submission_id, instruction),
                    description=instruction.reason,
                )
                transactions.append(await self.transaction_repo.get_by_id(txn_id))
        return transactions

    async def mark_paid(
        self,
        transaction_ids: Iterable[int],
        actor: Optional[Actor] = None,
    ) -> int:
        """
        Mark pending credits as paid out.

        Already-paid and unknown ids are skipped, so overlapping or repeated
        calls are safe. Only the part of a credit not already settled by an
        exchange or withdrawal is added to paid-out. When every transaction
        of a completed submission has been paid, the submission moves to paid
        in the same unit.

        Returns:
            Number of transactions newly marked paid
        """
        actor = actor or SYSTEM_ACTOR
        ids = sorted(set(int(txn_id) for txn_id in transaction_ids))
        paid_count = 0
        touched_submissions = set()

        async with self.db.transaction():
            for txn in await self.transaction_repo.get_by_ids(ids):
                if not txn.is_pending or not txn.type.is_credit:
                    continue

                if await self.transaction_repo.mark_paid(txn.id, actor.user_id):
                    if txn.payable_amount:
                        await self.wallet_repo.add_paid_out(txn.user_id, txn.payable_amount)
                    paid_count += 1
                    if txn.submission_id is not None:
                        touched_submissions.add(txn.submission_id)

            for submission_id in sorted(touched_submissions):
                await self._close_paid_submission(submission_id, actor)

        skipped = len(ids) - paid_count
        logger.info(f"Marked {paid_count} transactions paid by {actor.label} ({skipped} skipped)")
        return paid_count

    async def _close_paid_submission(self, submission_id: int, actor: Actor) -> None:
        submission = await self.submission_repo.get_by_id(submission_id, with_trail=False)
        if not submission or submission.status != SubmissionStatus.COMPLETED:
            return
        if await self.transaction_repo.count_pending_for_submission(submission_id):
            return

        payer = actor if can_perform(actor.role, submission.status, SubmissionStatus.PAID) else SYSTEM_ACTOR
        await self.state_machine.transition(
            submission_id,
            SubmissionStatus.PAID,
            payer,
            Decision.PAY,
            reason="All transactions paid",
            stage=ReviewStage.FINANCE,
            paid_at=utcnow(),
        )

    async def _debit(
        self,
        user_id: int,
        points: int,
        type: TransactionType,
        description: str,
        actor: Optional[Actor] = None,
    ) -> Transaction:
        """
        Record a settled debit and settle pending credits with it, oldest first.

        The balance always equals the unsettled part of the pending credits,
        so a debit within the balance is fully covered. Caller holds the unit.
        """
        if await self.user_repo.get_by_id(user_id) is None:
            raise NotFound(f"User {user_id} not found")

        wallet = await self.wallet_repo.ensure(user_id)
        if points > wallet.balance:
            raise InsufficientPoints(user_id, points, wallet.balance)

        actor_id = actor.user_id if actor else None
        txn = await self.transaction_repo.create(
            user_id=user_id,
            type=type,
            amount=points,
            description=description,
            status=TransactionStatus.PAID,
            paid_by=actor_id,
        )
        await self.wallet_repo.add_paid_out(user_id, points)

        remaining = points
        closed_submissions = set()
        for credit in await self.transaction_repo.get_pending_for_user(user_id):
            if remaining <= 0:
                break
            take = min(remaining, credit.payable_amount)
            if take <= 0:
                continue
            fully_paid = await self.transaction_repo.settle(credit.id, take, actor_id)
            remaining -= take
            if fully_paid and credit.submission_id is not None:
                closed_submissions.add(credit.submission_id)

        if remaining:
            logger.warning(f"Debit {txn.id} of user {user_id} left {remaining} points without a pending credit")

        for submission_id in sorted(closed_submissions):
            await self._close_paid_submission(submission_id, actor or SYSTEM_ACTOR)
        return txn

    async def exchange_points(self, user_id: int, points: int) -> ExchangeResult:
        """
        Convert part of the balance to currency at the current exchange rate.

        Raises:
            InvalidAmount: points is not a positive integer
            InsufficientPoints: points exceeds the withdrawable balance
        """
        checked = validate_amount(points)
        if checked is None:
            raise InvalidAmount(points)
        points = checked

        async with self.db.transaction():
            rate = await self.config_repo.get_exchange_rate()
            if rate is None:
                raise NotFound("No exchange rate configured")

            amount = (Decimal(points) / Decimal(rate.points_per_unit)).quantize(
                Decimal("0.01"), rounding=ROUND_DOWN
            )
            txn = await self._debit(
                user_id,
                points,
                TransactionType.POINT_EXCHANGE,
                f"Exchanged {points} points for {amount} at {rate.points_per_unit} points/unit (v{rate.version})",
            )
            wallet = await self.wallet_repo.get_by_user_id(user_id)

        logger.info(
            f"User {user_id} exchanged {format_points(points)} for "
            f"{format_currency(points, rate.points_per_unit)}"
        )
        return ExchangeResult(
            points=points,
            amount=amount,
            new_balance=wallet.balance,
            rate_version=rate.version,
            transaction_id=txn.id,
        )

    async def withdraw(self, user_id: int, points: int, actor: Actor, note: Optional[str] = None) -> Transaction:
        """
        Record a manual cash withdrawal handled outside the system.

        Raises:
            InvalidAmount: points is not a positive integer
            InsufficientPoints: points exceeds the withdrawable balance
        """
        checked = validate_amount(points)
        if checked is None:
            raise InvalidAmount(points)
        points = checked

        async with self.db.transaction():
            txn = await self._debit(
                user_id,
                points,
                TransactionType.WITHDRAWAL,
                note or f"Withdrawal recorded by {actor.label}",
                actor=actor,
            )

        logger.info(f"Recorded withdrawal of {format_points(points)} for user {user_id} by {actor.label}")
        return txn

    async def get_wallet(self, user_id: int) -> Wallet:
        """Get a user's wallet totals."""
        async with self.db.reading():
            if await self.user_repo.get_by_id(user_id) is None:
                raise NotFound(f"User {user_id} not found")
            wallet = await self.wallet_repo.get_by_user_id(user_id)
        return wallet or Wallet.empty(user_id)

    async def get_transactions(
        self,
        user_id: int,
        limit: int = 50,
        offset: int = 0,
        type: Optional[TransactionType] = None,
    ) -> List[Transaction]:
        async with self.db.reading():
            return await self.transaction_repo.get_user_transactions(user_id, limit, offset, type)

    async def list_pending_by_user(self) -> List[Dict[str, Any]]:
        """
        Summarize pending transactions per beneficiary for finance.

        pending_total is what is still owed: points already settled by an
        exchange or withdrawal are not counted.

        Returns:
            [{"user_id", "pending_total", "count", "transaction_ids"}, ...]
        """
        async with self.db.reading():
            pending = await self.transaction_repo.get_pending()

        grouped: Dict[int, Dict[str, Any]] = {}
        for txn in pending:
            entry = grouped.setdefault(
                txn.user_id,
                {"user_id": txn.user_id, "pending_total": 0, "count": 0, "transaction_ids": []},
            )
            entry["pending_total"] += txn.payable_amount
            entry["count"] += 1
            entry["transaction_ids"].append(txn.id)

        return sorted(grouped.values(), key=lambda item: item["pending_total"], reverse=True)

    async def reconcile(self, user_id: int) -> ReconciliationReport:
        """
        Check a wallet against its transaction log.

        accrued must equal all credits (pending + paid), paid-out must equal
        paid credits plus the settled part of pending credits, every debited
        point must have settled a credit, and balance must equal
        accrued - paid-out.
        """
        async with self.db.reading():
            wallet = await self.wallet_repo.get_by_user_id(user_id) or Wallet.empty(user_id)
            totals = await self.transaction_repo.get_totals(user_id)

        report = ReconciliationReport(
            user_id=user_id,
            accrued_total=wallet.accrued_total,
            paid_out_total=wallet.paid_out_total,
            balance=wallet.balance,
            credits_pending=totals["credits_pending"],
            credits_paid=totals["credits_paid"],
            debits=totals["debits"],
            settled_pending=totals["settled_pending"],
        )

        if wallet.accrued_total != totals["credits_pending"] + totals["credits_paid"]:
            report.problems.append("accrued total does not match credit transactions")
        if wallet.paid_out_total != totals["credits_paid"] + totals["settled_pending"]:
            report.problems.append("paid-out total does not match paid and settled credits")
        if totals["debits"] != totals["settled_total"]:
            report.problems.append("debits do not match settled credit amounts")
        if not wallet.is_consistent:
            report.problems.append("balance is not accrued minus paid-out")

        if not report.ok:
            logger.error(f"Wallet of user {user_id} failed reconciliation: {report.problems}")
        return report

    async def get_finance_stats(self) -> Dict[str, int]:
        """Payout totals across all users for finance."""
        async with self.db.reading():
            stats = await self.transaction_repo.get_finance_stats()
            stats["part_time_users"] = await self.user_repo.count_by_role(Role.PART_TIME)
        return stats
