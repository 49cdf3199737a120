"""Tests for TaskConfigRepository: versioned pricing and exchange rates."""

import pytest

from database.repositories.task_config_repo import TaskConfigRepository


class TestTaskConfigRepository:
    """Test suite for TaskConfigRepository."""

    @pytest.mark.asyncio
    async def test_active_defaults(self, config_repo: TaskConfigRepository):
        note = await config_repo.get_active("note")

        assert note.price == 800
        assert note.version == 1
        assert note.is_active

    @pytest.mark.asyncio
    async def test_create_version_supersedes(self, config_repo: TaskConfigRepository):
        created = await config_repo.create_version("note", "Note post", 900, 90, 45)

        assert created.version == 2
        active = await config_repo.get_active("note")
        assert active.price == 900

        history = await config_repo.get_history("note")
        assert [(c.version, c.is_active) for c in history] == [(1, False), (2, True)]
        # Old versions stay readable for existing snapshots
        assert (await config_repo.get_version("note", 1)).price == 800

    @pytest.mark.asyncio
    async def test_get_all_active(self, config_repo: TaskConfigRepository):
        configs = await config_repo.get_all_active()
        assert [c.type_key for c in configs] == ["comment", "lead", "note"]

    @pytest.mark.asyncio
    async def test_exchange_rate_versions(self, config_repo: TaskConfigRepository):
        initial = await config_repo.get_exchange_rate()
        assert (initial.version, initial.points_per_unit) == (1, 100)

        updated = await config_repo.create_exchange_rate(200)
        assert (updated.version, updated.points_per_unit) == (2, 200)
        assert (await config_repo.get_exchange_rate()).version == 2
