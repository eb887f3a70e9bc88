"""
Background job scheduler running inside the API process.

Jobs are registered on startup when ``SCHEDULER_ENABLED`` is set and are
removed again on shutdown.
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from milkcart.config import settings
from milkcart.jobs.payment_jobs import expire_payment_sessions
from milkcart.jobs.subscription_jobs import expire_finished_subscriptions

logger = logging.getLogger(__name__)

PAYMENT_EXPIRY_JOB_ID = "expire_payment_sessions"
SUBSCRIPTION_EXPIRY_JOB_ID = "expire_finished_subscriptions"

scheduler = AsyncIOScheduler(
    jobstores={"default": MemoryJobStore()},
    executors={"default": AsyncIOExecutor()},
    job_defaults={
        "coalesce": True,
        "max_instances": 1,
        "misfire_grace_time": 60,
    },
    timezone=settings.TIMEZONE,
)


async def sweep_expired_payment_sessions():
    try:
        cancelled = await expire_payment_sessions()
    except Exception as e:
        logger.error(f"Payment session sweep failed: {e}")
        return
    if cancelled:
        logger.info(f"Cancelled {cancelled} expired payment sessions")


async def sweep_finished_subscriptions():
    try:
        expired = await expire_finished_subscriptions()
    except Exception as e:
        logger.error(f"Subscription expiry sweep failed: {e}")
        return
    if expired:
        logger.info(f"Expired {expired} finished subscriptions")


def start_scheduler():
    if not settings.SCHEDULER_ENABLED:
        logger.info("Background job scheduler disabled")
        return
    if scheduler.running:
        return

    scheduler.add_job(
        sweep_expired_payment_sessions,
        "interval",
        minutes=settings.PAYMENT_EXPIRY_SWEEP_MINUTES,
        id=PAYMENT_EXPIRY_JOB_ID,
        name="Expire Payment Sessions",
        replace_existing=True,
    )
    scheduler.add_job(
        sweep_finished_subscriptions,
        "cron",
        hour=settings.SUBSCRIPTION_EXPIRY_HOUR,
        minute=5,
        id=SUBSCRIPTION_EXPIRY_JOB_ID,
        name="Expire Finished Subscriptions",
        replace_existing=True,
    )
    scheduler.start()
    for job in scheduler.get_jobs():
        logger.info(f"Scheduled {job.name}, next run at {job.next_run_time}")


def shutdown_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status() -> list[dict]:
    """Summary of the registered jobs for the health endpoint."""
    return [
        {
            "id": job.id,
            "name": job.name,
            "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
        }
        for job in scheduler.get_jobs()
    ]
