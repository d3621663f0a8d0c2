"""
APScheduler service for background ticket email retries.

Uses APScheduler 3.x with SQLAlchemyJobStore so the retry job survives
restarts alongside the ticket data.
"""

import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.triggers.interval import IntervalTrigger

from boxoffice.config import get_settings
from boxoffice.services.email import retry_unsent_ticket_emails

logger = logging.getLogger(__name__)

EMAIL_RETRY_JOB_ID = "retry_unsent_ticket_emails"

# Module-level scheduler instance (singleton)
_scheduler = None


def get_scheduler():
    """Return the global scheduler instance."""
    if _scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")
    return _scheduler


def init_scheduler():
    """
    Initialize and start the APScheduler.
    Called once during FastAPI startup.
    """
    global _scheduler
    if _scheduler is not None:
        return

    settings = get_settings()
    db_url = settings.database_url
    if db_url.startswith("postgres://"):
        db_url = db_url.replace("postgres://", "postgresql://", 1)

    jobstores = {
        "default": SQLAlchemyJobStore(url=db_url)
    }

    _scheduler = BackgroundScheduler(
        jobstores=jobstores,
        job_defaults={
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 600,
        },
        timezone="UTC",
    )
    _scheduler.start()
    schedule_email_retries()
    logger.info("APScheduler started with SQLAlchemy job store")


def shutdown_scheduler():
    """Gracefully shut down the scheduler."""
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("APScheduler shut down")


def schedule_email_retries():
    """Register (or replace) the periodic unsent-email sweep."""
    settings = get_settings()
    scheduler = get_scheduler()
    scheduler.add_job(
        retry_unsent_ticket_emails,
        trigger=IntervalTrigger(minutes=settings.email_retry_interval_minutes),
        id=EMAIL_RETRY_JOB_ID,
        replace_existing=True,
    )
    logger.info(
        "Unsent ticket emails will be retried every %d minutes",
        settings.email_retry_interval_minutes,
    )
