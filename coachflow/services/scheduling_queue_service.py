"""
Scheduling retry queue and manual scheduling queue.

Retry: a session whose calendar booking failed is retried with back-off
(attempt 1 immediately, then +1h, +6h, +24h by default). The retry state
lives on the session row (scheduling_attempts, next_retry_at) and is
drained by a periodic job. Past the last attempt the session is escalated.

Manual queue: sessions that need a human. One open item per session.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List, Tuple
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from coachflow.config import settings
from coachflow.models.scheduling import SchedulingQueue, QueueStatus
from coachflow.models.session import ScheduledSession, SessionStatus
from coachflow.services.audit_service import AuditService
from coachflow.services.notification_service import NotificationService, NotificationTemplate

logger = logging.getLogger(__name__)


class QueueError(Exception):
    """Manual queue errors."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ManualQueueService:
    """Human-in-the-loop scheduling queue."""

    def __init__(self, db: AsyncSession, notifier: Optional[NotificationService] = None):
        self.db = db
        self.notifier = notifier or NotificationService(admin_email=settings.ADMIN_EMAIL)
        self.audit = AuditService(db)

    async def escalate(
        self,
        reason: str,
        session: Optional[ScheduledSession] = None,
        enrollment_id: Optional[UUID] = None,
        coach_id: Optional[UUID] = None,
        child_name: Optional[str] = None,
    ) -> SchedulingQueue:
        """Add a queue item; returns the existing open item for the session if any."""
        if session is not None:
            result = await self.db.execute(
                select(SchedulingQueue).where(
                    SchedulingQueue.session_id == session.id,
                    SchedulingQueue.status.in_([QueueStatus.PENDING.value, QueueStatus.IN_PROGRESS.value]),
                )
            )
            existing = result.scalars().first()
            if existing is not None:
                logger.info(f"Session {session.id} already in manual queue ({existing.id})")
                return existing

        item = SchedulingQueue(
            session_id=session.id if session else None,
            enrollment_id=session.enrollment_id if session else enrollment_id,
            child_id=session.child_id if session else None,
            coach_id=session.coach_id if session else coach_id,
            session_type=session.session_type if session else None,
            week_number=session.week_number if session else None,
            reason=reason,
            attempts_made=session.scheduling_attempts if session else 0,
            status=QueueStatus.PENDING.value,
        )
        self.db.add(item)
        await self.db.flush()

        logger.info(f"Escalated session {item.session_id} to manual queue ({item.id}): {reason}")
        await self.notifier.notify_admin(
            NotificationTemplate.SESSION_MANUAL_NEEDED,
            {
                "session_id": str(item.session_id) if item.session_id else "-",
                "child_name": child_name or "Unknown",
                "failure_reason": reason,
            },
        )
        return item

    async def resolve(self, queue_id: UUID, notes: str, resolved_by: str) -> SchedulingQueue:
        item = await self.db.get(SchedulingQueue, queue_id)
        if item is None:
            raise QueueError("Queue item not found", {"queue_id": str(queue_id)})
        if item.status == QueueStatus.RESOLVED.value:
            return item

        item.status = QueueStatus.RESOLVED.value
        item.resolution_notes = notes
        item.resolved_by = resolved_by
        item.resolved_at = datetime.now(timezone.utc)
        await self.db.flush()

        await self.audit.log(
            action="QUEUE_RESOLVED",
            entity_type="SCHEDULING_QUEUE",
            entity_id=item.id,
            actor=resolved_by,
            new_values={"notes": notes},
        )
        logger.info(f"Queue item {queue_id} resolved by {resolved_by}")
        return item

    async def get_queue(
        self,
        status: Optional[str] = None,
        enrollment_id: Optional[UUID] = None,
        coach_id: Optional[UUID] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[SchedulingQueue], int]:
        query = select(SchedulingQueue)
        if status:
            query = query.where(SchedulingQueue.status == status)
        if enrollment_id:
            query = query.where(SchedulingQueue.enrollment_id == enrollment_id)
        if coach_id:
            query = query.where(SchedulingQueue.coach_id == coach_id)
        if date_from:
            query = query.where(SchedulingQueue.created_at >= date_from)
        if date_to:
            query = query.where(SchedulingQueue.created_at <= date_to)

        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
        result = await self.db.execute(
            query.order_by(SchedulingQueue.created_at.desc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all()), total


class RetryQueueService:
    """Back-off bookkeeping for failed calendar bookings."""

    def __init__(
        self,
        db: AsyncSession,
        manual_queue: Optional[ManualQueueService] = None,
        max_attempts: int = settings.SCHEDULING_MAX_RETRY_ATTEMPTS,
        delays_hours: Optional[List[int]] = None,
    ):
        self.db = db
        self.manual_queue = manual_queue or ManualQueueService(db)
        self.max_attempts = max_attempts
        self.delays_hours = delays_hours or list(settings.SCHEDULING_RETRY_DELAYS_HOURS)

    async def enqueue(self, session: ScheduledSession, reason: str) -> Dict[str, Any]:
        """
        Record a failed attempt and plan the next one.

        Returns {"action": "retried", "next_retry_at": ...} or
        {"action": "escalated", "queue_id": ...}.
        """
        attempt = (session.scheduling_attempts or 0) + 1
        session.scheduling_attempts = attempt
        session.last_scheduling_error = reason

        if attempt > self.max_attempts:
            session.next_retry_at = None
            await self.db.flush()
            item = await self.manual_queue.escalate(
                f"Auto-scheduling failed after {self.max_attempts} attempts: {reason}",
                session=session,
            )
            logger.warning(f"Session {session.id}: max attempts exceeded, escalated")
            return {"action": "escalated", "queue_id": str(item.id)}

        delay_hours = self.delays_hours[min(attempt - 1, len(self.delays_hours) - 1)]
        session.next_retry_at = datetime.now(timezone.utc) + timedelta(hours=delay_hours)
        await self.db.flush()

        logger.info(f"Session {session.id}: attempt {attempt}/{self.max_attempts}, retry in {delay_hours}h")
        return {"action": "retried", "next_retry_at": session.next_retry_at.isoformat()}

    async def due_sessions(self, limit: int = settings.RETRY_QUEUE_BATCH_SIZE) -> List[ScheduledSession]:
        now = datetime.now(timezone.utc)
        result = await self.db.execute(
            select(ScheduledSession)
            .where(
                ScheduledSession.status == SessionStatus.PENDING_SCHEDULING.value,
                ScheduledSession.next_retry_at.is_not(None),
                ScheduledSession.next_retry_at <= now,
            )
            .order_by(ScheduledSession.next_retry_at)
            .limit(limit)
        )
        return list(result.scalars().all())
