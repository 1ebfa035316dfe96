"""APScheduler job definitions."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from catalog_engine.config import settings
from catalog_engine.context import EngineContext
from catalog_engine.worker.job_watchdog import sync_watchdog_check

logger = logging.getLogger(__name__)

WATCHDOG_INTERVAL_MINUTES = 10


def setup_scheduler(context: EngineContext) -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    Scheduling overview:
    - Price monitoring every settings.monitoring_interval_minutes when enabled
    - Sync job watchdog every 10 minutes

    Returns:
        Configured scheduler instance
    """
    scheduler = AsyncIOScheduler()
    monitoring_interval = max(1, int(settings.monitoring_interval_minutes))

    if settings.monitoring_enabled:
        scheduler.add_job(
            context.monitor.run_monitoring,
            IntervalTrigger(minutes=monitoring_interval),
            id="price_monitoring",
            name="Check product margins against price rules",
            max_instances=1,  # Prevent overlapping runs
            coalesce=True,
            misfire_grace_time=600,
            replace_existing=True,
        )

    scheduler.add_job(
        sync_watchdog_check,
        IntervalTrigger(minutes=WATCHDOG_INTERVAL_MINUTES),
        args=[context.sync_engine],
        id="sync_watchdog",
        name="Report stale sync jobs",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    logger.info(
        "Scheduler configured: %s, sync watchdog every %d minutes",
        f"price monitoring every {monitoring_interval} minutes"
        if settings.monitoring_enabled
        else "price monitoring disabled",
        WATCHDOG_INTERVAL_MINUTES,
    )
    return scheduler
