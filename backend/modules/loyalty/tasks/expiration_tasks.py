# backend/modules/loyalty/tasks/expiration_tasks.py

"""
Scheduled points expiration.

Runs the expiration sweep on a fixed interval using APScheduler.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import LoyaltySettings, get_loyalty_settings
from ..services.loyalty_engine import LoyaltyEngine, get_loyalty_engine

logger = logging.getLogger(__name__)


class PointsExpirationScheduler:
    """Manages the periodic expiration sweep"""

    def __init__(
        self,
        engine_factory: Callable[[], LoyaltyEngine] = get_loyalty_engine,
        settings: Optional[LoyaltySettings] = None,
    ):
        self.scheduler = AsyncIOScheduler()
        self.engine_factory = engine_factory
        self.settings = settings or get_loyalty_settings()
        self.expiration_job_id = "loyalty_points_expiration"
        self.is_running = False

    def start(self):
        """Start the scheduler with the expiration job"""
        if self.is_running:
            logger.warning("Points expiration scheduler already running")
            return

        try:
            interval = self.settings.EXPIRATION_INTERVAL_MINUTES
            self.scheduler.add_job(
                func=self._expiration_task,
                trigger=IntervalTrigger(minutes=interval),
                id=self.expiration_job_id,
                name=f"Points Expiration (every {interval} minutes)",
                replace_existing=True,
                max_instances=1,  # A sweep must not overlap the previous one
                coalesce=True,
            )
            self.scheduler.start()
            self.is_running = True

            logger.info("Points expiration scheduler started successfully")

        except Exception as e:
            logger.critical(f"Failed to start points expiration scheduler: {e}", exc_info=True)
            raise

    def stop(self):
        """Stop the scheduler"""
        if not self.is_running:
            return

        try:
            self.scheduler.shutdown(wait=True)
            self.is_running = False
            logger.info("Points expiration scheduler stopped")
        except RuntimeError as e:
            logger.warning(f"Scheduler already stopped: {e}")

    async def _expiration_task(self):
        """Run one sweep off the event loop; the ledger store is synchronous"""
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(None, self.run_once)
        except Exception as e:
            logger.error(f"Points expiration task failed: {e}", exc_info=True)
            return

        if result.failed_user_ids:
            logger.warning(
                f"Points expiration skipped {len(result.failed_user_ids)} user(s) after errors"
            )

    def run_once(self):
        """Run a single sweep synchronously and return its result"""
        engine = self.engine_factory()
        result = engine.run_expiration_sweep(batch_size=self.settings.EXPIRATION_BATCH_SIZE)
        logger.info(
            f"Points expiration sweep: {result.users_expired} user(s), "
            f"{result.points_expired} point(s) expired, {result.users_scanned} scanned"
        )
        return result

    def get_job_status(self) -> Dict[str, Any]:
        job = self.scheduler.get_job(self.expiration_job_id)
        return {
            "scheduler_running": self.is_running,
            "job_id": self.expiration_job_id,
            "next_run_time": job.next_run_time.isoformat() if job and job.next_run_time else None,
        }


# Global scheduler instance
points_expiration_scheduler = PointsExpirationScheduler()


# FastAPI startup/shutdown events
async def start_expiration_scheduler():
    """Start the expiration scheduler on application startup"""
    try:
        points_expiration_scheduler.start()
    except Exception as e:
        # Startup continues without scheduled expiration
        logger.error(f"Failed to start points expiration scheduler: {e}", exc_info=True)


async def stop_expiration_scheduler():
    """Stop the expiration scheduler on application shutdown"""
    points_expiration_scheduler.stop()
