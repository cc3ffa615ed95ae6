"""
Enrollment lifecycle.

- activate: assign a coach, create the session schedule, calculate revenue
- pause / resume / delayed start
- no-show tracking: at-risk after consecutive misses, auto-pause after
  too many misses in total
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Dict, Any, List
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coachflow.config import settings
from coachflow.models.coach import Coach
from coachflow.models.enrollment import Enrollment, EnrollmentStatus
from coachflow.models.scheduling import AdminAlert
from coachflow.models.session import ScheduledSession, SessionStatus, MOVABLE_STATUSES
from coachflow.services.audit_service import AuditService
from coachflow.services.coach_assignment_service import CoachAssignmentService
from coachflow.services.enrollment_scheduler_service import EnrollmentSchedulerService
from coachflow.services.notification_service import NotificationTemplate
from coachflow.services.revenue_service import RevenueService, EnrollmentNotFound, build_breakdown
from coachflow.services.session_service import SessionService, SessionError

logger = logging.getLogger(__name__)


class EnrollmentError(Exception):
    """Custom exception for enrollment lifecycle errors."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class EnrollmentService:
    def __init__(
        self,
        db: AsyncSession,
        session_service: Optional[SessionService] = None,
        at_risk_threshold: int = settings.NO_SHOW_AT_RISK_THRESHOLD,
        auto_pause_threshold: int = settings.NO_SHOW_AUTO_PAUSE_THRESHOLD,
    ):
        self.db = db
        self.sessions = session_service or SessionService(db)
        self.scheduler = EnrollmentSchedulerService(db, self.sessions)
        self.assignment = CoachAssignmentService(db)
        self.revenue = RevenueService(db)
        self.audit = AuditService(db)
        self.at_risk_threshold = at_risk_threshold
        self.auto_pause_threshold = auto_pause_threshold

    async def get_enrollment(self, enrollment_id: UUID) -> Enrollment:
        enrollment = await self.db.get(Enrollment, enrollment_id)
        if enrollment is None:
            raise EnrollmentNotFound("Enrollment not found", {"enrollment_id": str(enrollment_id)})
        return enrollment

    # ==================== Activation ====================

    async def activate(self, enrollment_id: UUID, actor: str = "system") -> Dict[str, Any]:
        """
        Full onboarding chain for a paid enrollment.

        Raises NoCoachAvailable before anything is written when no coach
        has capacity, and revenue validation errors before any session is
        booked.
        """
        enrollment = await self.get_enrollment(enrollment_id)

        coach = None
        if enrollment.coach_id:
            coach = await self.db.get(Coach, enrollment.coach_id)
        if coach is None:
            coach = await self.assignment.select_coach()
            enrollment.coach_id = coach.id
            await self.db.flush()

        if enrollment.status == EnrollmentStatus.PENDING_START.value:
            enrollment.status = EnrollmentStatus.ACTIVE.value

        # Revenue input is checked before any calendar booking
        revenue = await self.revenue.get_revenue(enrollment.id)
        if revenue is None:
            await self.revenue.check_request(
                enrollment,
                coaching_coach_id=coach.id,
                lead_source=enrollment.lead_source,
                lead_source_coach_id=enrollment.lead_source_coach_id,
            )

        schedule = await self.scheduler.schedule_enrollment_sessions(enrollment.id, actor=actor)
        await self.assignment.confirm_assignment(coach, enrollment)

        if revenue is None:
            breakdown = await self.revenue.calculate(
                enrollment_id=enrollment.id,
                coaching_coach_id=coach.id,
                child_id=enrollment.child_id,
                lead_source=enrollment.lead_source,
                lead_source_coach_id=enrollment.lead_source_coach_id,
                actor=actor,
            )
        else:
            await self.db.refresh(revenue, ["payouts"])
            breakdown = build_breakdown(revenue, list(revenue.payouts))

        await self.audit.log(
            action="ENROLLMENT_ACTIVATED",
            entity_type="ENROLLMENT",
            entity_id=enrollment.id,
            actor=actor,
            new_values={"coach_id": str(coach.id), "sessions_created": schedule["sessions_created"]},
        )
        logger.info(f"Enrollment {enrollment.id} activated with coach {coach.id}")
        return {
            "enrollment_id": enrollment.id,
            "coach_id": coach.id,
            "status": enrollment.status,
            "schedule": schedule,
            "revenue": breakdown,
        }

    async def schedule_sessions(self, enrollment_id: UUID, actor: str = "system") -> Dict[str, Any]:
        """Create (or complete) the session schedule of an enrollment with a coach."""
        enrollment = await self.get_enrollment(enrollment_id)
        if enrollment.coach_id is None:
            coach = await self.assignment.select_coach()
            enrollment.coach_id = coach.id
            await self.db.flush()
            result = await self.scheduler.schedule_enrollment_sessions(enrollment.id, actor=actor)
            await self.assignment.confirm_assignment(coach, enrollment)
            return result
        return await self.scheduler.schedule_enrollment_sessions(enrollment.id, actor=actor)

    async def activate_delayed_start(self, enrollment_id: UUID, actor: str = "system") -> Dict[str, Any]:
        enrollment = await self.get_enrollment(enrollment_id)
        if enrollment.status == EnrollmentStatus.PENDING_START.value:
            enrollment.status = EnrollmentStatus.ACTIVE.value
            if enrollment.program_start is None or enrollment.program_start < date.today():
                enrollment.program_start = date.today()
            await self.db.flush()
            logger.info(f"Delayed start activated for enrollment {enrollment.id}")
        return await self.schedule_sessions(enrollment.id, actor=actor)

    # ==================== Pause / Resume ====================

    async def _upcoming_sessions(self, enrollment_id: UUID, since: date) -> List[ScheduledSession]:
        result = await self.db.execute(
            select(ScheduledSession)
            .where(
                ScheduledSession.enrollment_id == enrollment_id,
                ScheduledSession.scheduled_date >= since,
                ScheduledSession.status.in_(MOVABLE_STATUSES),
            )
            .order_by(ScheduledSession.scheduled_date.desc())
        )
        return list(result.scalars().all())

    async def pause(
        self,
        enrollment_id: UUID,
        reason: str = "Paused",
        pause_start: Optional[date] = None,
        pause_end: Optional[date] = None,
        actor: str = "system",
    ) -> Dict[str, Any]:
        """
        Pause the enrollment. With an explicit window, sessions inside it are
        cancelled; otherwise they stay and are shifted on resume.
        """
        enrollment = await self.get_enrollment(enrollment_id)
        if enrollment.status in (EnrollmentStatus.COMPLETED.value, EnrollmentStatus.CANCELLED.value):
            raise EnrollmentError(f"Cannot pause {enrollment.status} enrollment")

        enrollment.status = EnrollmentStatus.PAUSED.value
        enrollment.paused_at = enrollment.paused_at or datetime.now(timezone.utc)
        enrollment.pause_reason = reason
        await self.db.flush()

        cancelled = 0
        errors: List[str] = []
        if pause_start and pause_end:
            for session in await self._upcoming_sessions(enrollment.id, pause_start):
                if session.scheduled_date > pause_end:
                    continue
                try:
                    await self.sessions.cancel_session(session.id, "Enrollment paused", actor)
                    cancelled += 1
                except SessionError as e:
                    errors.append(f"Session {session.id}: {e.message}")

        await self.audit.log(
            action="ENROLLMENT_PAUSED",
            entity_type="ENROLLMENT",
            entity_id=enrollment.id,
            actor=actor,
            new_values={"reason": reason, "sessions_cancelled": cancelled},
        )
        await self.sessions.notifier.notify_parent(
            NotificationTemplate.ENROLLMENT_PAUSED,
            enrollment.parent_phone,
            enrollment.parent_email,
            {"parent_name": enrollment.parent_name or "Parent", "child_name": enrollment.child_name, "reason": reason},
        )
        return {"success": not errors, "sessions_cancelled": cancelled, "errors": errors}

    async def resume(self, enrollment_id: UUID, actor: str = "system") -> Dict[str, Any]:
        """Reactivate, push remaining sessions out by the paused time, fill gaps."""
        enrollment = await self.get_enrollment(enrollment_id)
        if enrollment.status != EnrollmentStatus.PAUSED.value:
            raise EnrollmentError(f"Cannot resume {enrollment.status} enrollment")

        paused_at = enrollment.paused_at or datetime.now(timezone.utc)
        if paused_at.tzinfo is None:
            paused_at = paused_at.replace(tzinfo=timezone.utc)
        shift_days = (datetime.now(timezone.utc).date() - paused_at.date()).days

        shifted = 0
        errors: List[str] = []
        if shift_days > 0:
            # Latest first so moved sessions never land on a not-yet-moved one
            for session in await self._upcoming_sessions(enrollment.id, paused_at.date()):
                try:
                    await self.sessions.reschedule_session(
                        session.id,
                        session.scheduled_date + timedelta(days=shift_days),
                        session.scheduled_time,
                        reason="Program resumed",
                        rescheduled_by=actor,
                    )
                    shifted += 1
                except SessionError as e:
                    errors.append(f"Session {session.id}: {e.message}")
            if enrollment.program_end:
                enrollment.program_end = enrollment.program_end + timedelta(days=shift_days)

        enrollment.status = EnrollmentStatus.ACTIVE.value
        enrollment.paused_at = None
        enrollment.pause_reason = None
        await self.db.flush()

        schedule = await self.schedule_sessions(enrollment.id, actor=actor)
        errors.extend(schedule["errors"])

        await self.audit.log(
            action="ENROLLMENT_RESUMED",
            entity_type="ENROLLMENT",
            entity_id=enrollment.id,
            actor=actor,
            new_values={"shift_days": shift_days, "sessions_shifted": shifted},
        )
        return {
            "success": True,
            "shift_days": shift_days,
            "sessions_shifted": shifted,
            "sessions_created": schedule["sessions_created"],
            "errors": errors,
        }

    # ==================== No-shows ====================

    async def record_no_show(self, session_id: UUID, actor: str = "system") -> Dict[str, Any]:
        session = await self.sessions.get_session(session_id)
        if session.status in (SessionStatus.COMPLETED.value, SessionStatus.CANCELLED.value):
            raise SessionError(f"Cannot mark {session.status} session as no-show")

        already_counted = session.status == SessionStatus.NO_SHOW.value
        session.status = SessionStatus.NO_SHOW.value
        await self.db.flush()

        enrollment = await self.db.get(Enrollment, session.enrollment_id)
        if enrollment is None or enrollment.status != EnrollmentStatus.ACTIVE.value:
            return {"session_id": str(session.id), "message": "No active enrollment found"}

        if not already_counted:
            enrollment.consecutive_no_shows = (enrollment.consecutive_no_shows or 0) + 1
            enrollment.total_no_shows = (enrollment.total_no_shows or 0) + 1

        at_risk = enrollment.consecutive_no_shows >= self.at_risk_threshold
        if at_risk and not enrollment.is_at_risk:
            enrollment.is_at_risk = True
            await self.sessions.notifier.notify_admin(
                NotificationTemplate.ENROLLMENT_AT_RISK,
                {"child_name": enrollment.child_name, "consecutive_no_shows": enrollment.consecutive_no_shows},
            )

        auto_paused = False
        if enrollment.total_no_shows >= self.auto_pause_threshold:
            enrollment.status = EnrollmentStatus.PAUSED.value
            enrollment.paused_at = datetime.now(timezone.utc)
            enrollment.pause_reason = "auto_noshow"
            enrollment.is_at_risk = True
            auto_paused = True
            self.db.add(AdminAlert(
                alert_type="enrollment_auto_paused",
                severity="high",
                title=f"Enrollment auto-paused: {enrollment.total_no_shows} no-shows",
                message=f"Enrollment {enrollment.id} auto-paused due to "
                        f"{enrollment.total_no_shows} total no-shows",
                enrollment_id=enrollment.id,
                coach_id=enrollment.coach_id,
                metadata_json={
                    "child_id": str(enrollment.child_id),
                    "total_no_shows": enrollment.total_no_shows,
                    "consecutive_no_shows": enrollment.consecutive_no_shows,
                },
            ))
            logger.warning(f"Enrollment {enrollment.id} auto-paused after {enrollment.total_no_shows} no-shows")
        await self.db.flush()

        await self.audit.log(
            action="SESSION_NO_SHOW",
            entity_type="SESSION",
            entity_id=session.id,
            actor=actor,
            new_values={
                "consecutive_no_shows": enrollment.consecutive_no_shows,
                "total_no_shows": enrollment.total_no_shows,
                "auto_paused": auto_paused,
            },
        )
        return {
            "session_id": str(session.id),
            "consecutive_no_shows": enrollment.consecutive_no_shows,
            "total_no_shows": enrollment.total_no_shows,
            "at_risk": at_risk,
            "auto_paused": auto_paused,
        }

    async def reset_no_show_streak(self, enrollment_id: UUID) -> None:
        enrollment = await self.db.get(Enrollment, enrollment_id)
        if enrollment is not None and enrollment.consecutive_no_shows:
            enrollment.consecutive_no_shows = 0
            await self.db.flush()
