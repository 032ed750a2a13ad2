"""
Background task scheduler for periodic jobs.
Uses APScheduler to expire quotes whose validity date has passed and to
remind participants of visits coming up.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.config import settings
from core.database import session_scope
from services.quote_service import QuoteService
from services.scheduling_service import SchedulingService

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()


async def expire_overdue_quotes_job():
    """
    Background job marking sent quotes past their validity date as expired.
    Runs every WORKFLOW_QUOTE_EXPIRY_INTERVAL_MINUTES via APScheduler.
    """
    logger.debug("Running overdue quote expiry...")

    try:
        async with session_scope() as db:
            count = await QuoteService.expire_overdue_quotes(db)

        if count > 0:
            logger.info(f"Quote expiry completed: {count} quotes expired")
        else:
            logger.debug("Quote expiry: no overdue quotes found")

    except Exception as e:
        logger.error(f"Scheduled quote expiry job failed: {str(e)}", exc_info=True)


async def send_visit_reminders_job():
    """
    Background job notifying the parties of scheduled visits starting within
    WORKFLOW_REMINDER_LOOKAHEAD_HOURS. Each visit is reminded once.
    """
    logger.debug("Running visit reminders...")

    try:
        async with session_scope() as db:
            count = await SchedulingService.send_visit_reminders(db)

        if count > 0:
            logger.info(f"Visit reminders sent for {count} interventions")

    except Exception as e:
        logger.error(f"Scheduled visit reminder job failed: {str(e)}", exc_info=True)


def start_scheduler() -> None:
    """Start the background scheduler with all jobs."""
    if not settings.workflow.enable_scheduler:
        logger.info("APScheduler disabled (WORKFLOW_ENABLE_SCHEDULER=false)")
        return

    logger.info("Starting APScheduler for background tasks...")

    scheduler.add_job(
        expire_overdue_quotes_job,
        trigger=IntervalTrigger(minutes=settings.workflow.quote_expiry_interval_minutes),
        id="expire_overdue_quotes",
        replace_existing=True,
        max_instances=1,
        name="Overdue Quote Expiry",
    )

    scheduler.add_job(
        send_visit_reminders_job,
        trigger=IntervalTrigger(minutes=settings.workflow.reminder_interval_minutes),
        id="send_visit_reminders",
        replace_existing=True,
        max_instances=1,
        name="Visit Reminders",
    )

    scheduler.start()
    logger.info(
        f"APScheduler started with jobs: "
        f"quote expiry ({settings.workflow.quote_expiry_interval_minutes}m), "
        f"visit reminders ({settings.workflow.reminder_interval_minutes}m)"
    )


def shutdown_scheduler() -> None:
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("APScheduler shut down successfully")
