"""Periodic tracking cycle."""

import datetime
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from treninfo.config import settings

logger = logging.getLogger(__name__)

JOB_ID = "tracking_cycle"


def create_scheduler(tracker, interval_seconds: int | None = None) -> AsyncIOScheduler:
    """Scheduler polling every tracked train; the first cycle runs at startup."""
    interval = interval_seconds or settings.tracking_poll_seconds
    scheduler = AsyncIOScheduler()

    # A cycle still running when the next is due makes that one skip.
    scheduler.add_job(
        tracker.run_tracking_cycle,
        "interval",
        seconds=interval,
        id=JOB_ID,
        name="Refresh tracked trains",
        max_instances=1,
        coalesce=True,
        next_run_time=datetime.datetime.now(),
    )

    logger.debug("Tracking cycle scheduled every %ds", interval)
    return scheduler
