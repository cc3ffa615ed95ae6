"""
Coach Availability Handler

Reacts to a coach's absence based on its length:
- up to BACKUP_COACH_THRESHOLD_DAYS: reschedule sessions to after the return
- up to REASSIGN_THRESHOLD_DAYS: hand sessions to a backup coach temporarily
- longer: reassign the affected enrollments permanently

Also handles the coach coming back and the coach leaving the platform.
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Dict, Any, List
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coachflow.config import settings
from coachflow.models.coach import Coach, CoachAvailabilityStatus
from coachflow.models.enrollment import Enrollment, EnrollmentStatus
from coachflow.models.scheduling import CoachAvailability, CoachReassignmentLog
from coachflow.models.session import ScheduledSession, MOVABLE_STATUSES
from coachflow.services.audit_service import AuditService
from coachflow.services.coach_assignment_service import CoachAssignmentService
from coachflow.services.session_service import SessionService, SessionError, ResourceNotFound

logger = logging.getLogger(__name__)


class CoachAvailabilityService:
    def __init__(
        self,
        db: AsyncSession,
        session_service: Optional[SessionService] = None,
        backup_threshold_days: int = settings.BACKUP_COACH_THRESHOLD_DAYS,
        reassign_threshold_days: int = settings.REASSIGN_THRESHOLD_DAYS,
    ):
        self.db = db
        self.sessions = session_service or SessionService(db)
        self.assignment = CoachAssignmentService(db)
        self.audit = AuditService(db)
        self.backup_threshold_days = backup_threshold_days
        self.reassign_threshold_days = reassign_threshold_days

    async def _get_coach(self, coach_id: UUID) -> Coach:
        coach = await self.db.get(Coach, coach_id)
        if coach is None:
            raise ResourceNotFound("Coach not found", {"coach_id": str(coach_id)})
        return coach

    async def _affected_sessions(self, coach_id: UUID, start: date, end: date) -> List[ScheduledSession]:
        result = await self.db.execute(
            select(ScheduledSession)
            .where(
                ScheduledSession.coach_id == coach_id,
                ScheduledSession.scheduled_date >= start,
                ScheduledSession.scheduled_date <= end,
                ScheduledSession.status.in_(MOVABLE_STATUSES),
            )
            .order_by(ScheduledSession.scheduled_date, ScheduledSession.scheduled_time)
        )
        return list(result.scalars().all())

    async def _escalate_all(self, sessions: List[ScheduledSession], reason: str) -> None:
        for session in sessions:
            await self.sessions.manual_queue.escalate(reason, session=session)

    async def process_unavailability(
        self,
        coach_id: UUID,
        start_date: date,
        end_date: date,
        reason: str = "Unavailable",
    ) -> Dict[str, Any]:
        """
        Returns:
            {success, action, sessions_affected, errors}
            action: rescheduled | backup_assigned | permanently_reassigned | escalated
        """
        if end_date < start_date:
            raise SessionError("endDate must not be before startDate")

        coach = await self._get_coach(coach_id)
        duration_days = (end_date - start_date).days
        sessions = await self._affected_sessions(coach.id, start_date, end_date)

        record = CoachAvailability(
            coach_id=coach.id,
            start_date=start_date,
            end_date=end_date,
            reason=reason,
            sessions_affected=len(sessions),
        )
        self.db.add(record)
        if start_date <= date.today() <= end_date:
            coach.availability_status = CoachAvailabilityStatus.UNAVAILABLE.value
        await self.db.flush()

        logger.info(
            f"Coach {coach.id} unavailable {start_date}..{end_date} ({duration_days}d), "
            f"{len(sessions)} sessions affected"
        )

        errors: List[str] = []
        if not sessions:
            action, moved = "rescheduled", 0

        elif duration_days <= self.backup_threshold_days:
            action, moved = "rescheduled", 0
            return_date = end_date + timedelta(days=1)
            for index, session in enumerate(sessions):
                try:
                    await self.sessions.reschedule_session(
                        session.id,
                        return_date + timedelta(days=index),
                        session.scheduled_time,
                        reason=f"Coach unavailable: {reason}",
                    )
                    moved += 1
                except SessionError as e:
                    errors.append(f"Session {session.id}: {e.message}")

        else:
            temporary = duration_days <= self.reassign_threshold_days
            backup = await self.assignment.find_backup_coach(coach.id)
            if backup is None:
                message = "No backup coach available" if temporary else "No replacement coach available"
                await self._escalate_all(sessions, f"{message}. Original coach unavailable: {reason}")
                action, moved = "escalated", 0
                errors.append(message)
            elif temporary:
                outcome = await self.sessions.bulk_reassign(
                    coach.id, backup.id, f"Temp backup: {reason}",
                    start_date=start_date, end_date=end_date, is_temporary=True,
                )
                action, moved = "backup_assigned", outcome["sessions_reassigned"]
                errors.extend(outcome["errors"])
            else:
                action, moved = "permanently_reassigned", 0
                for enrollment_id in dict.fromkeys(s.enrollment_id for s in sessions):
                    outcome = await self.sessions.bulk_reassign(
                        coach.id, backup.id, f"Permanent reassignment: {reason}",
                        start_date=start_date, enrollment_id=enrollment_id,
                    )
                    moved += outcome["sessions_reassigned"]
                    errors.extend(outcome["errors"])
                await self.assignment.refresh_load(coach)
                await self.assignment.refresh_load(backup)

        record.resolution = action
        await self.db.flush()

        await self.audit.log(
            action="COACH_UNAVAILABLE",
            entity_type="COACH",
            entity_id=coach.id,
            new_values={
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "duration_days": duration_days,
                "action": action,
                "sessions_affected": moved,
            },
        )
        return {"success": not errors, "action": action, "sessions_affected": moved, "errors": errors}

    async def process_coach_return(self, coach_id: UUID) -> Dict[str, Any]:
        """Hand temporarily reassigned sessions back and close open absences."""
        coach = await self._get_coach(coach_id)
        errors: List[str] = []
        transferred = 0

        result = await self.db.execute(
            select(CoachReassignmentLog).where(
                CoachReassignmentLog.original_coach_id == coach.id,
                CoachReassignmentLog.is_temporary == True,
                CoachReassignmentLog.actual_end_date.is_(None),
            )
        )
        for log in result.scalars().all():
            if log.enrollment_id is not None:
                outcome = await self.sessions.bulk_reassign(
                    log.new_coach_id, coach.id, "Coach returned from leave",
                    enrollment_id=log.enrollment_id,
                )
                transferred += outcome["sessions_reassigned"]
                errors.extend(outcome["errors"])
            log.actual_end_date = date.today()

        absences = await self.db.execute(
            select(CoachAvailability).where(
                CoachAvailability.coach_id == coach.id,
                CoachAvailability.is_active == True,
            )
        )
        for absence in absences.scalars().all():
            absence.is_active = False
            absence.ended_at = datetime.now(timezone.utc)

        coach.availability_status = CoachAvailabilityStatus.AVAILABLE.value
        await self.db.flush()

        await self.audit.log(
            action="COACH_RETURNED",
            entity_type="COACH",
            entity_id=coach.id,
            new_values={"sessions_transferred_back": transferred},
        )
        logger.info(f"Coach {coach.id} returned: {transferred} sessions transferred back")
        return {"success": not errors, "sessions_transferred_back": transferred, "errors": errors}

    async def process_coach_exit(self, coach_id: UUID, reason: str = "Coach exit") -> Dict[str, Any]:
        """Reassign every open enrollment and deactivate the coach."""
        coach = await self._get_coach(coach_id)
        errors: List[str] = []
        reassigned = 0

        result = await self.db.execute(
            select(Enrollment).where(
                Enrollment.coach_id == coach.id,
                Enrollment.status.in_([EnrollmentStatus.ACTIVE.value, EnrollmentStatus.PENDING_START.value]),
            )
        )
        enrollments = list(result.scalars().all())

        coach.is_active = False
        coach.availability_status = CoachAvailabilityStatus.EXITED.value
        coach.exit_date = date.today()
        await self.db.flush()

        if enrollments:
            replacement = await self.assignment.find_backup_coach(coach.id)
            if replacement is None:
                for enrollment in enrollments:
                    await self.sessions.manual_queue.escalate(
                        f"No replacement coach available. Coach exited: {reason}",
                        enrollment_id=enrollment.id,
                        coach_id=coach.id,
                        child_name=enrollment.child_name,
                    )
                errors.append("No replacement coach available")
            else:
                for enrollment in enrollments:
                    outcome = await self.sessions.bulk_reassign(
                        coach.id, replacement.id, f"Coach exit: {reason}", enrollment_id=enrollment.id,
                    )
                    # Enrollments without upcoming sessions still move
                    enrollment.coach_id = replacement.id
                    reassigned += 1
                    errors.extend(outcome["errors"])
                await self.db.flush()
                await self.assignment.refresh_load(replacement)

        await self.assignment.refresh_load(coach)
        await self.audit.log(
            action="COACH_EXITED",
            entity_type="COACH",
            entity_id=coach.id,
            new_values={"enrollments_reassigned": reassigned, "reason": reason},
        )
        logger.info(f"Coach {coach.id} exited: {reassigned} enrollments reassigned")
        return {"success": not errors, "enrollments_reassigned": reassigned, "errors": errors}
