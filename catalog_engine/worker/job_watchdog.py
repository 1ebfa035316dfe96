"""Watchdog task that reports sync jobs stuck in `running`."""

import logging
from datetime import timedelta
from typing import Optional

from catalog_engine import metrics
from catalog_engine.config import settings
from catalog_engine.sync.engine import SyncJobEngine

logger = logging.getLogger(__name__)


async def sync_watchdog_check(
    engine: SyncJobEngine,
    stale_minutes: Optional[int] = None,
    reason_prefix: str = "Watchdog",
) -> int:
    """
    Detect running jobs older than the stale threshold.

    Jobs have no lease, so a worker that died mid-run leaves its job in
    `running` forever. The watchdog only reports them; it does not move
    them to `error` because a slow but live worker may still finish.

    Returns:
        Number of stale jobs found
    """
    stale_minutes = stale_minutes or settings.sync_job_stale_minutes
    try:
        stale = await engine.find_stale_jobs(timedelta(minutes=stale_minutes))
    except Exception as e:
        logger.error(f"{reason_prefix}: sync job check failed: {e}", exc_info=True)
        return 0

    metrics.update_stale_jobs(len(stale))
    for job in stale:
        logger.warning(
            f"{reason_prefix}: sync job {job.id} ({job.operation} {job.entity_type}) "
            f"running since {job.started_at.isoformat()} (> {stale_minutes} min)"
        )
    if not stale:
        logger.debug(f"{reason_prefix}: no stale sync jobs")
    return len(stale)
