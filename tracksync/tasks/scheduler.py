"""Background task scheduler for periodic tracker syncs."""

import asyncio
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from tracksync.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: AsyncIOScheduler | None = None


async def sync_all_job(engine: SyncEngine, timeout_minutes: int) -> None:
    """Background job to sync every tracker within a deadline."""
    logger.info("Scheduled sync triggered")
    try:
        async with asyncio.timeout(timeout_minutes * 60):
            report = await engine.sync_all()
        logger.info(f"Scheduled sync completed: {report.positions_fetched} positions")
    except TimeoutError:
        logger.error(f"Scheduled sync exceeded {timeout_minutes} minute deadline")
    except Exception as e:
        logger.error(f"Scheduled sync failed: {e}", exc_info=True)


def setup_scheduler(
    engine: SyncEngine,
    crontab: str,
    timeout_minutes: int = 30,
) -> AsyncIOScheduler:
    """Set up and start the background task scheduler."""
    global scheduler

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        sync_all_job,
        trigger=CronTrigger.from_crontab(crontab),
        args=[engine, timeout_minutes],
        id="sync_all_trackers",
        name="Sync all trackers from Weenect",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    logger.info(f"Scheduler started with schedule '{crontab}'")

    return scheduler


def shutdown_scheduler() -> None:
    """Shut down the scheduler gracefully."""
    global scheduler

    if scheduler:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler shut down")
        scheduler = None
