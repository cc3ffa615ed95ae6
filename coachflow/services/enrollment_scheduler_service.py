"""
Enrollment Scheduler

Expands an enrollment's plan into dated sessions and books each one through
the session manager. Sessions are created one at a time: a booking failure
for one session is reported and the rest carry on. Re-running for the same
enrollment skips session numbers that already have a live session.
"""
import logging
from datetime import date, timedelta
from typing import Optional, Dict, Any, List
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coachflow.models.coach import Coach
from coachflow.models.enrollment import Enrollment
from coachflow.models.session import ScheduledSession, SessionStatus, SessionType
from coachflow.services.schedule_plans import (
    CurriculumEntry,
    SessionRequest,
    plan_curriculum,
    expand_curriculum,
)
from coachflow.services.session_service import SessionService, session_to_dict

logger = logging.getLogger(__name__)

# Days after the planned date searched for a free slot, within the same week
SLOT_SEARCH_DAYS = 6


class EnrollmentSchedulingError(Exception):
    """Custom exception for enrollment scheduling errors."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class EnrollmentSchedulerService:
    def __init__(self, db: AsyncSession, session_service: Optional[SessionService] = None):
        self.db = db
        self.sessions = session_service or SessionService(db)

    async def _live_session_numbers(self, enrollment_id: UUID) -> set:
        result = await self.db.execute(
            select(ScheduledSession.session_number).where(
                ScheduledSession.enrollment_id == enrollment_id,
                ScheduledSession.status != SessionStatus.CANCELLED.value,
            )
        )
        return set(result.scalars().all())

    async def _place(self, coach: Coach, request: SessionRequest) -> SessionRequest:
        """Move the request to the first day of its week where the coach is free."""
        for offset in range(SLOT_SEARCH_DAYS + 1):
            candidate = request.scheduled_date + timedelta(days=offset)
            if await self.sessions.find_free_time(
                coach.id, candidate, request.preferred_times, request.duration_minutes
            ):
                request.scheduled_date = candidate
                return request
        return request

    @staticmethod
    def _label(request: SessionRequest) -> str:
        kind = "Coaching" if request.session_type == SessionType.COACHING.value else "Check-in"
        return f"{kind} session {request.session_number} (week {request.week_number})"

    async def schedule_enrollment_sessions(
        self,
        enrollment_id: UUID,
        curriculum: Optional[List[CurriculumEntry]] = None,
        actor: str = "system",
    ) -> Dict[str, Any]:
        """
        Create every session of the enrollment's plan.

        Returns:
            {success, sessions_created, sessions, manual_required, errors}
        """
        enrollment = await self.db.get(Enrollment, enrollment_id)
        if enrollment is None:
            raise EnrollmentSchedulingError("Enrollment not found", {"enrollment_id": str(enrollment_id)})
        if enrollment.coach_id is None:
            raise EnrollmentSchedulingError("Enrollment has no coach assigned", {"enrollment_id": str(enrollment_id)})

        coach = await self.db.get(Coach, enrollment.coach_id)
        if coach is None:
            raise EnrollmentSchedulingError("Assigned coach not found", {"coach_id": str(enrollment.coach_id)})

        if enrollment.program_start is None:
            enrollment.program_start = date.today()

        entries = curriculum or plan_curriculum(enrollment.plan_slug, enrollment.preferred_time_bucket or "any")
        requests = expand_curriculum(entries, enrollment.program_start)
        existing = await self._live_session_numbers(enrollment.id)

        created: List[Dict[str, Any]] = []
        errors: List[str] = []
        manual_required = 0

        for request in requests:
            if request.session_number in existing:
                logger.debug(f"Enrollment {enrollment.id}: session {request.session_number} exists, skipping")
                continue

            request = await self._place(coach, request)
            outcome = await self.sessions.schedule_session(enrollment, coach, request, actor=actor)
            created.append(session_to_dict(outcome.session))

            if not outcome.booked:
                errors.append(f"{self._label(request)}: {outcome.error}")
                if outcome.session.next_retry_at is None:
                    manual_required += 1

        enrollment.schedule_confirmed = True
        enrollment.sessions_scheduled = len(existing) + len(created)
        if requests:
            enrollment.program_end = max(r.scheduled_date for r in requests)
        await self.db.flush()

        logger.info(
            f"Enrollment {enrollment.id}: created {len(created)} sessions, "
            f"{len(errors)} errors, {manual_required} need manual scheduling"
        )
        return {
            "success": True,
            "sessions_created": len(created),
            "sessions": created,
            "manual_required": manual_required,
            "errors": errors,
        }
