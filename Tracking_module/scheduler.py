"""
Scheduler setup for background tasks.
Uses APScheduler to run the geolocation backfill periodically.
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import settings
from .geo_backfill import run_backfill_job

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = None


def start_scheduler(interval_minutes: int = None):
    """
    Start the background scheduler.
    Does nothing when the backfill interval is 0 (the default).
    """
    global scheduler

    if interval_minutes is None:
        interval_minutes = settings.GEO_BACKFILL_INTERVAL_MINUTES
    if interval_minutes <= 0:
        logger.info("Geo backfill scheduling disabled (GEO_BACKFILL_INTERVAL_MINUTES=0)")
        return None

    if scheduler is not None:
        logger.warning("Scheduler is already running")
        return scheduler

    scheduler = BackgroundScheduler()
    scheduler.add_job(
        run_backfill_job,
        trigger=IntervalTrigger(minutes=interval_minutes),
        id="geo_backfill",
        name="Re-resolve Unknown event locations",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info(f"Background scheduler started. Geo backfill scheduled every {interval_minutes} minutes.")

    return scheduler


def shutdown_scheduler():
    global scheduler

    if scheduler is not None:
        scheduler.shutdown()
        scheduler = None
        logger.info("Background scheduler stopped.")
