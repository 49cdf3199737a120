"""Tests for PricingService."""

import pytest

from core.exceptions import InvalidAmount
from database.models import TaskType
from services.pricing_service import PricingService


class TestPricingService:
    """Test suite for versioned pricing."""

    @pytest.mark.asyncio
    async def test_snapshot_from_active_config(self, pricing_service: PricingService):
        snapshot = await pricing_service.get_snapshot(TaskType.LEAD)

        assert (snapshot.price, snapshot.commission_1, snapshot.commission_2) == (1000, 100, 50)
        assert snapshot.version == 1

    @pytest.mark.asyncio
    async def test_update_invalidates_cache(self, pricing_service: PricingService):
        await pricing_service.get_active_config(TaskType.NOTE)

        config = await pricing_service.update_pricing(TaskType.NOTE, 900, 90, 45)

        assert config.version == 2
        assert config.name == "Note post"
        assert (await pricing_service.get_active_config(TaskType.NOTE)).price == 900

    @pytest.mark.asyncio
    async def test_taken_snapshot_is_unaffected(self, pricing_service: PricingService):
        before = await pricing_service.get_snapshot(TaskType.COMMENT)

        await pricing_service.update_pricing(TaskType.COMMENT, 500, 50, 25)

        assert before.price == 300
        assert (await pricing_service.get_snapshot(TaskType.COMMENT)).price == 500

    @pytest.mark.asyncio
    async def test_active_config_is_cached(self, pricing_service: PricingService):
        first = await pricing_service.get_active_config(TaskType.NOTE)
        # Written behind the service's back, so the cached row is still served
        await pricing_service.config_repo.create_version("note", "Note post", 1, 1, 1)

        assert (await pricing_service.get_active_config(TaskType.NOTE)) is first

    @pytest.mark.asyncio
    @pytest.mark.parametrize("price,tier1,tier2", [(-1, 0, 0), (100, -5, 0), (100, 10, True)])
    async def test_rejects_bad_rates(self, pricing_service: PricingService, price, tier1, tier2):
        with pytest.raises(InvalidAmount):
            await pricing_service.update_pricing(TaskType.NOTE, price, tier1, tier2)

    @pytest.mark.asyncio
    async def test_list_active(self, pricing_service: PricingService):
        configs = await pricing_service.list_active()
        assert {c.type_key for c in configs} == {"lead", "note", "comment"}

    @pytest.mark.asyncio
    async def test_exchange_rate_versions(self, pricing_service: PricingService):
        assert (await pricing_service.get_exchange_rate()).points_per_unit == 100

        rate = await pricing_service.update_exchange_rate(50)

        assert rate.version == 2
        assert (await pricing_service.get_exchange_rate()).points_per_unit == 50
        with pytest.raises(InvalidAmount):
            await pricing_service.update_exchange_rate(0)
