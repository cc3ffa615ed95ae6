"""
Scheduling background jobs.
"""

import logging
from typing import Dict, Any

from coachflow.config import settings
from coachflow.database import get_db_session
from coachflow.services.session_service import SessionService

logger = logging.getLogger(__name__)


async def process_retry_queue(limit: int = settings.RETRY_QUEUE_BATCH_SIZE) -> Dict[str, Any]:
    """Retry calendar bookings that are due; one transaction per run."""
    try:
        async with get_db_session() as db:
            summary = await SessionService(db).process_due_retries(limit)
        logger.info(
            f"Retry queue run: {summary['processed']} processed, "
            f"{summary['succeeded']} booked, {summary['failed']} failed"
        )
        return summary
    except Exception as e:
        logger.error(f"Retry queue run failed: {e}")
        return {"processed": 0, "succeeded": 0, "failed": 0, "skipped": 0, "error": str(e)}
