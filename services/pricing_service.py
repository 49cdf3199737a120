"""Pricing service: versioned task prices and the point exchange rate."""

import logging
from typing import List, Optional

from core.exceptions import InvalidAmount, NotFound
from database.connection import Database
from database.models import ExchangeRate, TaskConfig, TaskType
from database.repositories import TaskConfigRepository
from services.commission_calculator import PricingSnapshot
from utils.ttl_cache import TTLCache

logger = logging.getLogger(__name__)


class PricingService:
    """Service for reading and versioning price tables."""

    def __init__(self, db: Database, cache: Optional[TTLCache] = None):
        self.db = db
        self.config_repo = TaskConfigRepository(db)
        self.cache = cache or TTLCache()

    async def get_active_config(self, task_type: TaskType) -> TaskConfig:
        """
        Get the active price config for a task type (cached).

        Raises:
            NotFound: no active config exists for the type
        """
        type_key = TaskType(task_type).value

        async def load() -> Optional[TaskConfig]:
            async with self.db.reading():
                return await self.config_repo.get_active(type_key)

        config = await self.cache.get_or_create(("task_config", type_key), load)
        if config is None:
            raise NotFound(f"No active pricing for task type {type_key}")
        return config

    async def get_snapshot(self, task_type: TaskType) -> PricingSnapshot:
        """Freeze the current rates for a new submission."""
        config = await self.get_active_config(task_type)
        return PricingSnapshot(
            price=config.price,
            commission_1=config.commission_1,
            commission_2=config.commission_2,
            version=config.version,
        )

    async def list_active(self) -> List[TaskConfig]:
        async with self.db.reading():
            return await self.config_repo.get_all_active()

    async def update_pricing(
        self,
        task_type: TaskType,
        price: int,
        commission_1: int,
        commission_2: int,
        name: Optional[str] = None,
    ) -> TaskConfig:
        """
        Publish a new pricing version for a task type.

        Existing submissions keep the snapshot they were created with.
        """
        for value in (price, commission_1, commission_2):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise InvalidAmount(value)

        type_key = TaskType(task_type).value
        async with self.db.transaction():
            current = await self.config_repo.get_active(type_key)
            config = await self.config_repo.create_version(
                type_key=type_key,
                name=name or (current.name if current else type_key),
                price=price,
                commission_1=commission_1,
                commission_2=commission_2,
            )
        self.cache.invalidate(("task_config", type_key))

        logger.info(
            f"Pricing for {type_key} is now v{config.version}: "
            f"price={price}, tier1={commission_1}, tier2={commission_2}"
        )
        return config

    async def get_exchange_rate(self) -> ExchangeRate:
        async with self.db.reading():
            rate = await self.config_repo.get_exchange_rate()
        if rate is None:
            raise NotFound("No exchange rate configured")
        return rate

    async def update_exchange_rate(self, points_per_unit: int) -> ExchangeRate:
        """Publish a new points-per-currency-unit rate."""
        if isinstance(points_per_unit, bool) or not isinstance(points_per_unit, int) or points_per_unit <= 0:
            raise InvalidAmount(points_per_unit)
        async with self.db.transaction():
            rate = await self.config_repo.create_exchange_rate(points_per_unit)
        logger.info(f"Exchange rate is now v{rate.version}: {points_per_unit} points per unit")
        return rate
