# backend/modules/loyalty/tests/test_expiration_tasks.py

import pytest

from modules.loyalty.services import LoyaltyEngine
from modules.loyalty.tasks import PointsExpirationScheduler


@pytest.fixture
def engine(memory_store, loyalty_settings, clock):
    return LoyaltyEngine(memory_store, settings=loyalty_settings, clock=clock)


@pytest.fixture
def scheduler(engine, loyalty_settings):
    return PointsExpirationScheduler(engine_factory=lambda: engine, settings=loyalty_settings)


class TestPointsExpirationScheduler:
    def test_run_once_sweeps_expired_points(self, scheduler, engine, clock):
        engine.points.earn_points("user-1", 100, "Dinner")
        engine.points.earn_points("user-2", 50, "Lunch")
        clock.advance(days=400)

        result = scheduler.run_once()

        assert result.users_expired == 2
        assert result.points_expired == 150
        assert engine.get_balance("user-1") == 0

    @pytest.mark.asyncio
    async def test_scheduled_task_runs_sweep(self, scheduler, engine, clock):
        engine.points.earn_points("user-1", 100, "Dinner")
        clock.advance(days=400)

        await scheduler._expiration_task()

        assert engine.get_balance("user-1") == 0

    @pytest.mark.asyncio
    async def test_scheduled_task_logs_and_survives_errors(self, loyalty_settings):
        def broken_factory():
            raise RuntimeError("database unavailable")

        scheduler = PointsExpirationScheduler(engine_factory=broken_factory, settings=loyalty_settings)

        # Must not raise into the scheduler loop
        await scheduler._expiration_task()

    def test_status_before_start(self, scheduler):
        status = scheduler.get_job_status()

        assert status["scheduler_running"] is False
        assert status["next_run_time"] is None

    def test_stop_without_start_is_noop(self, scheduler):
        scheduler.stop()
        assert scheduler.is_running is False
