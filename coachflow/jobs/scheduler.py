"""
APScheduler configuration for background scheduling jobs.

- Retry queue: re-attempts calendar bookings for sessions left in
  pending_scheduling, on a fixed interval
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from coachflow.config import settings

logger = logging.getLogger(__name__)

# Job stores
jobstores = {
    'default': MemoryJobStore()
}

# Executors
executors = {
    'default': AsyncIOExecutor(),
}

# Job defaults
job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 60,
}

scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.CALENDAR_TIMEZONE
)


def start_scheduler():
    """Start the background job scheduler."""
    if not scheduler.running:
        from coachflow.jobs.scheduling_jobs import process_retry_queue

        scheduler.add_job(
            process_retry_queue,
            'interval',
            minutes=settings.RETRY_QUEUE_INTERVAL_MINUTES,
            id='process_retry_queue',
            name='Process Scheduling Retry Queue',
            replace_existing=True,
        )

        scheduler.start()
        logger.info("Background job scheduler started")

        for job in scheduler.get_jobs():
            logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")
