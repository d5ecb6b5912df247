"""Tests for the background job scheduler."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from closedloop.config import settings
from closedloop.core.enums import CycleOutcome, TriggerSource
from closedloop.services import scheduler as scheduler_module
from closedloop.services.scheduler import (
    get_scheduler,
    run_autosense,
    run_autotune,
    run_periodic_loop,
    scheduler_lifespan,
    start_scheduler,
    stop_scheduler,
)


@pytest.fixture(autouse=True)
async def clean_scheduler():
    yield
    stop_scheduler()


class TestStartScheduler:
    @pytest.mark.asyncio
    async def test_registers_jobs(self, manager):
        scheduler = start_scheduler(manager)

        assert get_scheduler() is scheduler
        assert scheduler.running
        job_ids = {job.id for job in scheduler.get_jobs()}
        assert job_ids == {"loop", "autosense", "autotune"}

        loop_job = scheduler.get_job("loop")
        assert loop_job.args == (manager,)
        assert loop_job.max_instances == 1

    @pytest.mark.asyncio
    async def test_disabled_jobs_not_registered(self, manager):
        with (
            patch.object(settings, "autosense_enabled", False),
            patch.object(settings, "autotune_enabled", False),
        ):
            scheduler = start_scheduler(manager)

        assert [job.id for job in scheduler.get_jobs()] == ["loop"]

    @pytest.mark.asyncio
    async def test_second_start_returns_running_scheduler(self, manager):
        first = start_scheduler(manager)
        second = start_scheduler(manager)

        assert first is second

    @pytest.mark.asyncio
    async def test_stop_clears_scheduler(self, manager):
        start_scheduler(manager)
        stop_scheduler()

        assert get_scheduler() is None
        assert scheduler_module.scheduler is None

    @pytest.mark.asyncio
    async def test_lifespan(self, manager):
        async with scheduler_lifespan(manager):
            assert get_scheduler() is not None

        assert get_scheduler() is None


class TestJobs:
    @pytest.mark.asyncio
    async def test_periodic_loop_runs_cycle(self, manager, driver):
        await run_periodic_loop(manager)

        result = manager.coordinator.last_result
        assert result.trigger == TriggerSource.periodic
        assert result.outcome == CycleOutcome.completed
        assert driver.commands() == ["temp_basal", "bolus"]

    @pytest.mark.asyncio
    async def test_periodic_loop_swallows_unexpected_errors(self):
        manager = MagicMock()
        manager.fetch_and_loop = AsyncMock(side_effect=RuntimeError("boom"))

        await run_periodic_loop(manager)

        manager.fetch_and_loop.assert_awaited_once_with(TriggerSource.periodic)

    @pytest.mark.asyncio
    async def test_maintenance_jobs(self, manager, engine):
        await run_autosense(manager)
        await run_autotune(manager)

        assert engine.autosense_runs == 1
        assert engine.autotune_runs == 1
