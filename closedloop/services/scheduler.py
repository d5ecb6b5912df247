"""Background job scheduler.

APScheduler jobs that trigger the periodic loop and the engine's
maintenance runs (autosense, autotune).
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from closedloop.config import settings
from closedloop.core.enums import TriggerSource
from closedloop.logging_config import get_logger
from closedloop.services.aps_manager import APSManager

logger = get_logger(__name__)

# Global scheduler instance
scheduler: AsyncIOScheduler | None = None


async def run_periodic_loop(manager: APSManager) -> None:
    """Run one loop cycle on the periodic cadence.

    The coordinator never raises for loop failures; anything reaching
    here is unexpected and is logged so the next run still happens.
    """
    try:
        result = await manager.fetch_and_loop(TriggerSource.periodic)
        logger.debug(
            "Periodic loop finished",
            cycle_id=result.cycle_id,
            outcome=result.outcome.value,
        )
    except Exception as e:
        logger.error("Unexpected error in periodic loop", error=str(e))


async def run_autosense(manager: APSManager) -> None:
    logger.info("Starting scheduled autosense")
    await manager.autosense()


async def run_autotune(manager: APSManager) -> None:
    logger.info("Starting scheduled autotune")
    await manager.autotune()


def start_scheduler(manager: APSManager) -> AsyncIOScheduler:
    """Start the background job scheduler.

    Args:
        manager: Loop manager the jobs run against

    Returns:
        The started scheduler instance
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already running")
        return scheduler

    scheduler = AsyncIOScheduler()

    if settings.loop_enabled:
        scheduler.add_job(
            run_periodic_loop,
            trigger=IntervalTrigger(minutes=settings.loop_interval_minutes),
            args=[manager],
            id="loop",
            name="Periodic Loop",
            replace_existing=True,
            max_instances=1,
        )
        logger.info(
            "Scheduled periodic loop job",
            interval_minutes=settings.loop_interval_minutes,
        )

    if settings.autosense_enabled:
        scheduler.add_job(
            run_autosense,
            trigger=IntervalTrigger(minutes=settings.autosense_interval_minutes),
            args=[manager],
            id="autosense",
            name="Autosense",
            replace_existing=True,
            max_instances=1,
        )
        logger.info(
            "Scheduled autosense job",
            interval_minutes=settings.autosense_interval_minutes,
        )

    if settings.autotune_enabled:
        scheduler.add_job(
            run_autotune,
            trigger=CronTrigger(hour=settings.autotune_hour, minute=0),
            args=[manager],
            id="autotune",
            name="Autotune",
            replace_existing=True,
            max_instances=1,
        )
        logger.info("Scheduled autotune job", hour=settings.autotune_hour)

    scheduler.start()
    logger.info("Background scheduler started")

    return scheduler


def stop_scheduler() -> None:
    """Stop the background job scheduler."""
    global scheduler

    if scheduler is not None:
        scheduler.shutdown(wait=False)
        scheduler = None
        logger.info("Background scheduler stopped")


def get_scheduler() -> AsyncIOScheduler | None:
    return scheduler


@asynccontextmanager
async def scheduler_lifespan(manager: APSManager) -> AsyncGenerator[None, None]:
    """Start the scheduler for the duration of the block."""
    start_scheduler(manager)
    try:
        yield
    finally:
        stop_scheduler()
