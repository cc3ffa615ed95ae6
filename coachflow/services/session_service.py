"""
Session Manager

Single entry point for session mutations:
- schedule: insert row, book calendar + meeting link, recording bot, notify
- reschedule / cancel
- coach reassignment (single session and bulk)
- calendar retry for sessions left in pending_scheduling

Calendar, bot and notification failures never roll back the session row.
A failed booking leaves the session in pending_scheduling and hands it to
the retry queue.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Dict, Any, List, Tuple
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coachflow.config import settings
from coachflow.models.coach import Coach
from coachflow.models.enrollment import Enrollment
from coachflow.models.scheduling import CoachReassignmentLog
from coachflow.models.session import ScheduledSession, SessionStatus, MOVABLE_STATUSES
from coachflow.services.audit_service import AuditService
from coachflow.services.calendar_service import CalendarAdapter, get_calendar_adapter
from coachflow.services.notification_service import NotificationService, NotificationTemplate
from coachflow.services.recording_bot_service import RecordingBotAdapter, get_recording_bot_adapter
from coachflow.services.schedule_plans import SessionRequest, DEFAULT_SESSION_TIME
from coachflow.services.scheduling_queue_service import RetryQueueService, ManualQueueService

logger = logging.getLogger(__name__)

# Statuses that hold a coach's time
BLOCKING_STATUSES = MOVABLE_STATUSES + [SessionStatus.IN_PROGRESS.value]


class SessionError(Exception):
    """Custom exception for session errors."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ResourceNotFound(SessionError):
    pass


class SessionNotFound(ResourceNotFound):
    pass


class InvalidSessionState(SessionError):
    pass


class SlotUnavailable(SessionError):
    pass


@dataclass
class BookingResult:
    session: ScheduledSession
    booked: bool
    error: Optional[str] = None


def session_to_dict(session: ScheduledSession) -> Dict[str, Any]:
    """JSON-safe summary of a session."""
    return {
        "id": str(session.id),
        "enrollment_id": str(session.enrollment_id),
        "coach_id": str(session.coach_id) if session.coach_id else None,
        "session_number": session.session_number,
        "week_number": session.week_number,
        "session_type": session.session_type,
        "title": session.session_title,
        "scheduled_date": session.scheduled_date.isoformat(),
        "scheduled_time": session.scheduled_time.strftime("%H:%M"),
        "status": session.status,
        "meet_link": session.meet_link,
        "google_event_id": session.google_event_id,
    }


def _overlaps(start_a: time, minutes_a: int, start_b: time, minutes_b: int) -> bool:
    day = date.min
    a0 = datetime.combine(day, start_a)
    b0 = datetime.combine(day, start_b)
    return a0 < b0 + timedelta(minutes=minutes_b) and b0 < a0 + timedelta(minutes=minutes_a)


class SessionService:
    """Scheduled session operations."""

    def __init__(
        self,
        db: AsyncSession,
        calendar: Optional[CalendarAdapter] = None,
        bot: Optional[RecordingBotAdapter] = None,
        notifier: Optional[NotificationService] = None,
        retry_queue: Optional[RetryQueueService] = None,
    ):
        self.db = db
        self.calendar = calendar or get_calendar_adapter()
        self.bot = bot or get_recording_bot_adapter()
        self.notifier = notifier or NotificationService(admin_email=settings.ADMIN_EMAIL)
        self.manual_queue = ManualQueueService(db, self.notifier)
        self.retry_queue = retry_queue or RetryQueueService(db, self.manual_queue)
        self.audit = AuditService(db)
        self.tz = ZoneInfo(settings.CALENDAR_TIMEZONE)

    # ==================== Lookups ====================

    async def get_session(self, session_id: UUID) -> ScheduledSession:
        session = await self.db.get(ScheduledSession, session_id)
        if session is None:
            raise SessionNotFound("Session not found", {"session_id": str(session_id)})
        return session

    async def _context(self, session: ScheduledSession) -> Tuple[Optional[Enrollment], Optional[Coach]]:
        enrollment = await self.db.get(Enrollment, session.enrollment_id)
        coach = await self.db.get(Coach, session.coach_id) if session.coach_id else None
        return enrollment, coach

    def _start(self, on_date: date, at: time) -> datetime:
        return datetime.combine(on_date, at).replace(tzinfo=self.tz)

    async def coach_sessions_on(
        self,
        coach_id: UUID,
        on_date: date,
        exclude_session_id: Optional[UUID] = None,
    ) -> List[ScheduledSession]:
        query = select(ScheduledSession).where(
            ScheduledSession.coach_id == coach_id,
            ScheduledSession.scheduled_date == on_date,
            ScheduledSession.status.in_(BLOCKING_STATUSES),
        )
        if exclude_session_id:
            query = query.where(ScheduledSession.id != exclude_session_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def find_free_time(
        self,
        coach_id: UUID,
        on_date: date,
        candidates: List[time],
        duration_minutes: int,
        exclude_session_id: Optional[UUID] = None,
    ) -> Optional[time]:
        """First candidate start time that does not overlap the coach's sessions."""
        booked = await self.coach_sessions_on(coach_id, on_date, exclude_session_id)
        for candidate in candidates:
            if not any(
                _overlaps(candidate, duration_minutes, other.scheduled_time, other.duration_minutes or 45)
                for other in booked
            ):
                return candidate
        return None

    # ==================== Schedule ====================

    async def schedule_session(
        self,
        enrollment: Enrollment,
        coach: Coach,
        request: SessionRequest,
        actor: str = "system",
    ) -> BookingResult:
        """
        Create one session and book it.

        The row is always persisted. With no free slot on the requested date
        it is parked in pending_scheduling and escalated for manual handling.
        """
        slot = await self.find_free_time(
            coach.id, request.scheduled_date, request.preferred_times, request.duration_minutes
        )

        session = ScheduledSession(
            enrollment_id=enrollment.id,
            child_id=enrollment.child_id,
            coach_id=coach.id,
            session_number=request.session_number,
            week_number=request.week_number,
            session_type=request.session_type,
            session_title=request.title,
            is_diagnostic=request.is_diagnostic,
            scheduled_date=request.scheduled_date,
            scheduled_time=slot or DEFAULT_SESSION_TIME,
            duration_minutes=request.duration_minutes,
            status=SessionStatus.PENDING.value if slot else SessionStatus.PENDING_SCHEDULING.value,
        )
        self.db.add(session)
        await self.db.flush()

        await self.audit.log(
            action="SESSION_CREATED",
            entity_type="SESSION",
            entity_id=session.id,
            actor=actor,
            new_values=session_to_dict(session),
        )

        if slot is None:
            error = "No slot found, needs manual scheduling"
            session.last_scheduling_error = error
            await self.manual_queue.escalate(error, session=session, child_name=enrollment.child_name)
            logger.warning(f"Session {session.session_number} for enrollment {enrollment.id}: {error}")
            return BookingResult(session=session, booked=False, error=error)

        error = await self._book(session, enrollment, coach)
        return BookingResult(session=session, booked=error is None, error=error)

    async def _book(self, session: ScheduledSession, enrollment: Enrollment, coach: Coach) -> Optional[str]:
        """Create the calendar event; returns the error on failure."""
        start = self._start(session.scheduled_date, session.scheduled_time)
        result = await self.calendar.create_event(
            title=f"{session.session_title or 'Coaching session'} - {enrollment.child_name}",
            description=f"Session {session.session_number} (week {session.week_number}) "
                        f"with coach {coach.name}",
            start=start,
            end=start + timedelta(minutes=session.duration_minutes or 45),
            attendees=[enrollment.parent_email, coach.email],
            organizer_email=settings.CALENDAR_ORGANIZER_EMAIL,
        )

        if not result.success:
            error = result.error or "Calendar booking failed"
            session.status = SessionStatus.PENDING_SCHEDULING.value
            await self.db.flush()
            await self.retry_queue.enqueue(session, error)
            logger.warning(f"Calendar booking failed for session {session.id}: {error}")
            return error

        session.google_event_id = result.event_id
        session.meet_link = result.meeting_link
        session.status = SessionStatus.SCHEDULED.value
        session.next_retry_at = None
        session.last_scheduling_error = None
        await self.db.flush()

        await self._schedule_bot(session)
        await self.notifier.notify_parent(
            NotificationTemplate.SESSION_SCHEDULED,
            enrollment.parent_phone,
            enrollment.parent_email,
            self._variables(session, enrollment),
        )
        return None

    async def _schedule_bot(self, session: ScheduledSession) -> None:
        if not session.meet_link:
            return
        bot = await self.bot.schedule(
            session.id, session.meet_link, self._start(session.scheduled_date, session.scheduled_time)
        )
        if bot.success:
            session.recall_bot_id = bot.bot_id
            await self.db.flush()
        else:
            logger.info(f"No recording bot for session {session.id}: {bot.error}")

    async def _cancel_bot(self, session: ScheduledSession) -> None:
        if not session.recall_bot_id:
            return
        if not await self.bot.cancel(session.recall_bot_id):
            logger.warning(f"Could not cancel bot {session.recall_bot_id} for session {session.id}")
        session.recall_bot_id = None

    def _variables(self, session: ScheduledSession, enrollment: Enrollment, **extra) -> Dict[str, Any]:
        variables = {
            "parent_name": enrollment.parent_name or "Parent",
            "child_name": enrollment.child_name,
            "session_title": session.session_title or "Coaching session",
            "date": session.scheduled_date.strftime("%d %b %Y"),
            "time": session.scheduled_time.strftime("%I:%M %p"),
            "meet_link": session.meet_link or "link to follow",
        }
        variables.update(extra)
        return variables

    # ==================== Retry ====================

    async def retry_scheduling(self, session: ScheduledSession) -> Dict[str, Any]:
        """Re-attempt the calendar booking of a pending_scheduling session."""
        if session.status != SessionStatus.PENDING_SCHEDULING.value:
            session.next_retry_at = None
            await self.db.flush()
            return {"session_id": str(session.id), "skipped": True, "status": session.status}

        enrollment, coach = await self._context(session)
        if enrollment is None or coach is None:
            item = await self.manual_queue.escalate("Session has no enrollment or coach", session=session)
            session.next_retry_at = None
            await self.db.flush()
            return {"session_id": str(session.id), "success": False, "queue_id": str(item.id)}

        error = await self._book(session, enrollment, coach)
        return {"session_id": str(session.id), "success": error is None, "error": error}

    async def process_due_retries(self, limit: int = settings.RETRY_QUEUE_BATCH_SIZE) -> Dict[str, Any]:
        sessions = await self.retry_queue.due_sessions(limit)
        summary = {"processed": 0, "succeeded": 0, "failed": 0, "skipped": 0}
        for session in sessions:
            outcome = await self.retry_scheduling(session)
            summary["processed"] += 1
            if outcome.get("skipped"):
                summary["skipped"] += 1
            elif outcome.get("success"):
                summary["succeeded"] += 1
            else:
                summary["failed"] += 1
        if sessions:
            logger.info(f"Retry queue: {summary}")
        return summary

    # ==================== Reschedule / Cancel ====================

    async def reschedule_session(
        self,
        session_id: UUID,
        new_date: date,
        new_time: time,
        reason: str = "Rescheduled",
        rescheduled_by: str = "system",
        notify: bool = True,
    ) -> Dict[str, Any]:
        session = await self.get_session(session_id)
        if session.status in (SessionStatus.COMPLETED.value, SessionStatus.CANCELLED.value):
            raise InvalidSessionState(f"Cannot reschedule {session.status} session")

        if session.coach_id:
            free = await self.find_free_time(
                session.coach_id, new_date, [new_time], session.duration_minutes or 45,
                exclude_session_id=session.id,
            )
            if free is None:
                raise SlotUnavailable(
                    "Coach already has a session at that time",
                    {"date": new_date.isoformat(), "time": new_time.strftime("%H:%M")},
                )

        enrollment, coach = await self._context(session)
        old = {"date": session.scheduled_date.isoformat(), "time": session.scheduled_time.strftime("%H:%M")}
        session.scheduled_date = new_date
        session.scheduled_time = new_time
        session.reschedule_count = (session.reschedule_count or 0) + 1

        calendar_updated = False
        if session.google_event_id:
            start = self._start(new_date, new_time)
            result = await self.calendar.update_event(
                session.google_event_id,
                {"start": start, "end": start + timedelta(minutes=session.duration_minutes or 45)},
            )
            calendar_updated = result.success
            if result.success and result.meeting_link:
                session.meet_link = result.meeting_link
            if not result.success:
                logger.error(f"Calendar reschedule failed for session {session.id}: {result.error}")
            session.status = SessionStatus.RESCHEDULED.value
        await self.db.flush()

        await self._cancel_bot(session)
        if session.google_event_id:
            await self._schedule_bot(session)
        elif enrollment is not None and coach is not None:
            # Never booked: try now at the new time
            session.status = SessionStatus.PENDING_SCHEDULING.value
            calendar_updated = await self._book(session, enrollment, coach) is None

        await self.audit.log(
            action="SESSION_RESCHEDULED",
            entity_type="SESSION",
            entity_id=session.id,
            actor=rescheduled_by,
            old_values=old,
            new_values={
                "date": new_date.isoformat(),
                "time": new_time.strftime("%H:%M"),
                "reason": reason,
                "calendar_updated": calendar_updated,
            },
        )

        if notify and enrollment is not None:
            await self.notifier.notify_parent(
                NotificationTemplate.SESSION_RESCHEDULED,
                enrollment.parent_phone,
                enrollment.parent_email,
                self._variables(session, enrollment, reason=reason),
            )

        logger.info(f"Session {session.id} rescheduled {old['date']} -> {new_date}")
        return {
            "success": True,
            "session": session_to_dict(session),
            "calendar_updated": calendar_updated,
        }

    async def cancel_session(
        self,
        session_id: UUID,
        reason: str = "Cancelled",
        cancelled_by: str = "system",
        notify: bool = True,
    ) -> Dict[str, Any]:
        session = await self.get_session(session_id)
        if session.status == SessionStatus.COMPLETED.value:
            raise InvalidSessionState("Cannot cancel completed session")
        if session.status == SessionStatus.CANCELLED.value:
            return {"success": True, "session_id": str(session.id), "already_cancelled": True}

        if session.google_event_id:
            result = await self.calendar.cancel_event(session.google_event_id)
            if not result.success:
                logger.error(f"Calendar cancel failed for session {session.id}: {result.error}")
        await self._cancel_bot(session)

        old_status = session.status
        session.status = SessionStatus.CANCELLED.value
        session.cancelled_at = datetime.now(timezone.utc)
        session.next_retry_at = None
        session.notes = f"Cancelled by {cancelled_by}: {reason}"
        await self.db.flush()

        await self.audit.log(
            action="SESSION_CANCELLED",
            entity_type="SESSION",
            entity_id=session.id,
            actor=cancelled_by,
            old_values={"status": old_status},
            new_values={"status": session.status, "reason": reason},
        )

        enrollment = await self.db.get(Enrollment, session.enrollment_id)
        if notify and enrollment is not None:
            await self.notifier.notify_parent(
                NotificationTemplate.SESSION_CANCELLED,
                enrollment.parent_phone,
                enrollment.parent_email,
                self._variables(session, enrollment, reason=reason),
            )

        logger.info(f"Session {session.id} cancelled by {cancelled_by}")
        return {"success": True, "session_id": str(session.id), "already_cancelled": False}

    # ==================== Reassignment ====================

    async def _get_active_coach(self, coach_id: UUID) -> Coach:
        coach = await self.db.get(Coach, coach_id)
        if coach is None or not coach.is_active:
            raise ResourceNotFound("New coach not found", {"coach_id": str(coach_id)})
        return coach

    async def reassign_coach(
        self,
        session_id: UUID,
        new_coach_id: UUID,
        reason: str,
        is_temporary: bool = False,
        expected_end_date: Optional[date] = None,
        write_log: bool = True,
        notify: bool = True,
    ) -> Dict[str, Any]:
        session = await self.get_session(session_id)
        if session.status not in MOVABLE_STATUSES:
            raise InvalidSessionState(f"Cannot reassign {session.status} session")

        new_coach = await self._get_active_coach(new_coach_id)
        original_coach_id = session.coach_id
        enrollment = await self.db.get(Enrollment, session.enrollment_id)

        session.coach_id = new_coach.id
        await self.db.flush()

        if session.google_event_id:
            result = await self.calendar.update_event(
                session.google_event_id,
                {"attendees": [enrollment.parent_email if enrollment else None, new_coach.email]},
            )
            if not result.success:
                logger.error(f"Calendar attendee update failed for session {session.id}: {result.error}")

        if write_log:
            self.db.add(CoachReassignmentLog(
                enrollment_id=session.enrollment_id,
                original_coach_id=original_coach_id,
                new_coach_id=new_coach.id,
                reason=reason,
                is_temporary=is_temporary,
                start_date=date.today(),
                expected_end_date=expected_end_date,
                session_ids=[str(session.id)],
                sessions_moved=1,
            ))
            await self.db.flush()

        await self.audit.log(
            action="COACH_REASSIGNED",
            entity_type="SESSION",
            entity_id=session.id,
            old_values={"coach_id": str(original_coach_id) if original_coach_id else None},
            new_values={"coach_id": str(new_coach.id), "reason": reason, "is_temporary": is_temporary},
        )

        if notify and enrollment is not None:
            await self.notifier.notify_parent(
                NotificationTemplate.COACH_REASSIGNED,
                enrollment.parent_phone,
                enrollment.parent_email,
                self._variables(session, enrollment, coach_name=new_coach.name, reason=reason),
            )

        return {"success": True, "session_id": str(session.id), "new_coach_id": str(new_coach.id)}

    async def bulk_reassign(
        self,
        old_coach_id: UUID,
        new_coach_id: UUID,
        reason: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        is_temporary: bool = False,
        enrollment_id: Optional[UUID] = None,
    ) -> Dict[str, Any]:
        """
        Move a coach's upcoming sessions to another coach.

        One CoachReassignmentLog per enrollment. A permanent move also
        re-points the enrollment itself.
        """
        new_coach = await self._get_active_coach(new_coach_id)

        query = select(ScheduledSession).where(
            ScheduledSession.coach_id == old_coach_id,
            ScheduledSession.status.in_(MOVABLE_STATUSES),
            ScheduledSession.scheduled_date >= (start_date or date.today()),
        )
        if end_date:
            query = query.where(ScheduledSession.scheduled_date <= end_date)
        if enrollment_id:
            query = query.where(ScheduledSession.enrollment_id == enrollment_id)
        result = await self.db.execute(
            query.order_by(ScheduledSession.scheduled_date, ScheduledSession.scheduled_time)
        )
        sessions = list(result.scalars().all())

        by_enrollment: "OrderedDict[UUID, List[ScheduledSession]]" = OrderedDict()
        for session in sessions:
            by_enrollment.setdefault(session.enrollment_id, []).append(session)

        errors: List[str] = []
        moved = 0
        log_ids: List[str] = []
        for enr_id, enr_sessions in by_enrollment.items():
            moved_ids = []
            for session in enr_sessions:
                try:
                    await self.reassign_coach(
                        session.id, new_coach.id, reason,
                        is_temporary=is_temporary, expected_end_date=end_date,
                        write_log=False, notify=False,
                    )
                    moved_ids.append(str(session.id))
                except SessionError as e:
                    errors.append(f"Session {session.id}: {e.message}")
            moved += len(moved_ids)

            log = CoachReassignmentLog(
                enrollment_id=enr_id,
                original_coach_id=old_coach_id,
                new_coach_id=new_coach.id,
                reason=reason,
                is_temporary=is_temporary,
                start_date=start_date or date.today(),
                expected_end_date=end_date if is_temporary else None,
                session_ids=moved_ids,
                sessions_moved=len(moved_ids),
            )
            self.db.add(log)

            enrollment = await self.db.get(Enrollment, enr_id)
            if enrollment is not None:
                if not is_temporary:
                    enrollment.coach_id = new_coach.id
                await self.notifier.notify_parent(
                    NotificationTemplate.COACH_REASSIGNED,
                    enrollment.parent_phone,
                    enrollment.parent_email,
                    {
                        "parent_name": enrollment.parent_name or "Parent",
                        "child_name": enrollment.child_name,
                        "coach_name": new_coach.name,
                        "reason": reason,
                    },
                )
            await self.db.flush()
            log_ids.append(str(log.id))

        await self.audit.log(
            action="BULK_COACH_REASSIGNED",
            entity_type="COACH",
            entity_id=old_coach_id,
            new_values={
                "new_coach_id": str(new_coach.id),
                "reason": reason,
                "sessions_reassigned": moved,
                "is_temporary": is_temporary,
                "errors": len(errors),
            },
        )

        logger.info(f"Moved {moved} sessions from coach {old_coach_id} to {new_coach.id}")
        return {
            "success": not errors,
            "sessions_reassigned": moved,
            "enrollments_affected": len(by_enrollment),
            "log_ids": log_ids,
            "errors": errors,
        }
