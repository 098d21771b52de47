"""
Background scheduler for periodic tasks.

This module manages background jobs that run on a schedule:
- Token cleanup: runs once at start, then every 6 hours (production only)

The job is idempotent, so the same function also backs the
``portal-cleanup-tokens`` console script for external cron triggering.
"""

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from competition_portal.core.config import settings
from competition_portal.core.database import SessionLocal, utcnow
from competition_portal.services.token_service import token_service
import logging

logger = logging.getLogger(__name__)

CLEANUP_JOB_ID = "cleanup_tokens"

scheduler = BackgroundScheduler(timezone="UTC")


def cleanup_tokens_job():
    """
    Background job purging expired and aged used tokens.

    A failed cycle is logged and swallowed; the next run fires on schedule.
    """
    db = SessionLocal()
    try:
        logger.info("Starting scheduled token cleanup...")
        result = token_service.perform_full_cleanup(db)
        logger.info(f"Scheduled token cleanup completed: {result}")
        return result
    except Exception as e:
        logger.error(f"Scheduled token cleanup failed: {str(e)}")
        db.rollback()
        return None
    finally:
        db.close()


def start_scheduler():
    """
    Start the background scheduler.

    Called from the app lifespan. A second call while running is a no-op.
    """
    if scheduler.running:
        logger.info("Cleanup scheduler already running")
        return

    scheduler.add_job(
        cleanup_tokens_job,
        trigger=IntervalTrigger(hours=settings.TOKEN_CLEANUP_INTERVAL_HOURS),
        id=CLEANUP_JOB_ID,
        name="Cleanup expired and used tokens",
        replace_existing=True,
        # First run immediately, then every interval
        next_run_time=utcnow(),
    )

    scheduler.start()
    logger.info(
        f"Background scheduler started. Token cleanup scheduled every "
        f"{settings.TOKEN_CLEANUP_INTERVAL_HOURS} hours."
    )


def stop_scheduler():
    """
    Stop the background scheduler.

    Called when the app shuts down.
    """
    if scheduler.running:
        scheduler.remove_all_jobs()
        scheduler.shutdown(wait=False)
        logger.info("Background scheduler stopped.")


def get_scheduler_status() -> dict:
    job = scheduler.get_job(CLEANUP_JOB_ID) if scheduler.running else None
    next_run = job.next_run_time.isoformat() if job and job.next_run_time else None
    return {"running": scheduler.running, "next_run_time": next_run}


def main():
    """Console entry point: run one cleanup cycle and exit (cron friendly)."""
    logging.basicConfig(level=settings.LOG_LEVEL)
    result = cleanup_tokens_job()
    if result is None:
        raise SystemExit(1)
