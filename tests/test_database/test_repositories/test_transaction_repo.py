"""Tests for TransactionRepository and the append-only transaction log."""

import aiosqlite
import pytest

from database.connection import Database
from database.models import TransactionStatus, TransactionType
from database.repositories.transaction_repo import TransactionRepository
from database.repositories.user_repo import UserRepository


class TestTransactionRepository:
    """Test suite for TransactionRepository."""

    @pytest.fixture
    async def user(self, user_repo: UserRepository):
        return await user_repo.create(username="earner")

    @pytest.mark.asyncio
    async def test_create_pending_credit(self, transaction_repo: TransactionRepository, user):
        txn = await transaction_repo.create(user.id, TransactionType.TASK_REWARD, 500, idempotency_key="k1")

        assert txn.status == TransactionStatus.PENDING
        assert txn.paid_at is None
        assert (await transaction_repo.get_by_idempotency_key("k1")).id == txn.id

    @pytest.mark.asyncio
    async def test_idempotency_key_unique(self, transaction_repo: TransactionRepository, user):
        await transaction_repo.create(user.id, TransactionType.TASK_REWARD, 500, idempotency_key="same")
        with pytest.raises(aiosqlite.IntegrityError):
            await transaction_repo.create(user.id, TransactionType.TASK_REWARD, 500, idempotency_key="same")

    @pytest.mark.asyncio
    async def test_mark_paid_once(self, transaction_repo: TransactionRepository, user):
        txn = await transaction_repo.create(user.id, TransactionType.TASK_REWARD, 500)

        assert await transaction_repo.mark_paid(txn.id, paid_by=None) is True
        assert await transaction_repo.mark_paid(txn.id, paid_by=None) is False

        paid = await transaction_repo.get_by_id(txn.id)
        assert paid.status == TransactionStatus.PAID
        assert paid.paid_at is not None

    @pytest.mark.asyncio
    async def test_paid_transaction_is_frozen(self, temp_db: Database, transaction_repo: TransactionRepository, user):
        txn = await transaction_repo.create(user.id, TransactionType.TASK_REWARD, 500)
        await transaction_repo.mark_paid(txn.id, paid_by=None)

        with pytest.raises(aiosqlite.IntegrityError):
            await temp_db.execute("UPDATE transactions SET status = 'pending' WHERE id = ?", txn.id)
        with pytest.raises(aiosqlite.IntegrityError):
            await temp_db.execute("DELETE FROM transactions WHERE id = ?", txn.id)

    @pytest.mark.asyncio
    async def test_amount_cannot_change(self, temp_db: Database, transaction_repo: TransactionRepository, user):
        txn = await transaction_repo.create(user.id, TransactionType.TASK_REWARD, 500)
        with pytest.raises(aiosqlite.IntegrityError):
            await temp_db.execute("UPDATE transactions SET amount = 1 WHERE id = ?", txn.id)

    @pytest.mark.asyncio
    async def test_totals(self, transaction_repo: TransactionRepository, user):
        paid = await transaction_repo.create(user.id, TransactionType.TASK_REWARD, 500)
        await transaction_repo.create(user.id, TransactionType.REFERRAL_TIER1, 50)
        await transaction_repo.mark_paid(paid.id, paid_by=None)
        await transaction_repo.create(
            user.id, TransactionType.POINT_EXCHANGE, 200, status=TransactionStatus.PAID
        )

        totals = await transaction_repo.get_totals(user.id)
        assert totals == {
            "credits_pending": 50,
            "credits_paid": 500,
            "debits": 200,
            "settled_pending": 0,
            "settled_total": 0,
        }

    @pytest.mark.asyncio
    async def test_history_filter_and_pending(self, transaction_repo: TransactionRepository, user):
        await transaction_repo.create(user.id, TransactionType.TASK_REWARD, 500)
        await transaction_repo.create(user.id, TransactionType.CONTINUOUS_CHECK, 30)

        rewards = await transaction_repo.get_user_transactions(user.id, type=TransactionType.CONTINUOUS_CHECK)
        assert [t.amount for t in rewards] == [30]
        assert len(await transaction_repo.get_pending()) == 2
        assert await transaction_repo.get_by_ids([]) == []

    @pytest.mark.asyncio
    async def test_settle_in_parts(self, transaction_repo: TransactionRepository, user):
        credit = await transaction_repo.create(user.id, TransactionType.TASK_REWARD, 500)

        assert await transaction_repo.settle(credit.id, 200, paid_by=None) is False
        partly = await transaction_repo.get_by_id(credit.id)
        assert (partly.settled_amount, partly.payable_amount, partly.status) == (200, 300, TransactionStatus.PENDING)

        assert await transaction_repo.settle(credit.id, 300, paid_by=None) is True
        settled = await transaction_repo.get_by_id(credit.id)
        assert settled.status == TransactionStatus.PAID
        assert settled.payable_amount == 0
        assert settled.paid_at is not None

    @pytest.mark.asyncio
    async def test_settle_beyond_amount_aborts(self, transaction_repo: TransactionRepository, user):
        credit = await transaction_repo.create(user.id, TransactionType.TASK_REWARD, 100)
        with pytest.raises(aiosqlite.IntegrityError):
            await transaction_repo.settle(credit.id, 150, paid_by=None)

    @pytest.mark.asyncio
    async def test_get_by_ids_in_chunks(self, transaction_repo: TransactionRepository, user):
        created = [await transaction_repo.create(user.id, TransactionType.TASK_REWARD, 10) for _ in range(3)]
        wanted = [created[2].id, created[0].id] + list(range(10_000, 11_200))

        found = await transaction_repo.get_by_ids(wanted)

        assert [t.id for t in found] == [created[0].id, created[2].id]
