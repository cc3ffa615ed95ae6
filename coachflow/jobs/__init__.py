"""
Background Jobs Module

Handles scheduled tasks for:
- Scheduling retry queue (calendar booking retries and escalation)
"""

from coachflow.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler
from coachflow.jobs.scheduling_jobs import process_retry_queue

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "process_retry_queue",
]
