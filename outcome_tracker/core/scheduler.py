"""APScheduler configuration for recurring jobs."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from outcome_tracker.core.config import settings
from outcome_tracker.core.database import SessionLocal
from outcome_tracker.services.batch import reconcile_stale_batches

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: AsyncIOScheduler | None = None


def get_db_session() -> Session:
    """Get a database session for scheduler jobs."""
    return SessionLocal()


def reconcile_batches_job():
    """
    Finalize batches whose counters are full but never got marked complete,
    e.g. after a restart between the last file and its supervisor.
    """
    db = get_db_session()
    try:
        count = reconcile_stale_batches(db)
        db.commit()
        if count:
            logger.info(f"Reconciled {count} stale batches")
    except Exception as e:
        logger.exception(f"Error reconciling batches: {e}")
        db.rollback()
    finally:
        db.close()


def init_scheduler() -> AsyncIOScheduler:
    """Initialize and configure the scheduler."""
    global scheduler

    scheduler = AsyncIOScheduler(
        timezone=settings.SCHEDULER_TIMEZONE,
        job_defaults={
            "coalesce": True,  # Combine missed runs
            "max_instances": 1,
            "misfire_grace_time": 300,
        }
    )

    scheduler.add_job(
        reconcile_batches_job,
        trigger=IntervalTrigger(minutes=settings.BATCH_RECONCILE_MINUTES),
        id="reconcile_stale_batches",
        name="Reconcile stale batches",
        replace_existing=True,
    )

    logger.info(f"Scheduler initialized with batch reconcile job (every {settings.BATCH_RECONCILE_MINUTES} min)")
    return scheduler


def start_scheduler():
    """Start the scheduler."""
    global scheduler
    if scheduler is None:
        scheduler = init_scheduler()

    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started")


def stop_scheduler():
    """Stop the scheduler gracefully."""
    global scheduler
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Scheduler stopped")
