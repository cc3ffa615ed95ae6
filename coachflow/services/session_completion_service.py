"""
Session completion: structured coach feedback, learning events and
embedding generation for later recall.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from coachflow.models.coach import Coach
from coachflow.models.enrollment import Enrollment, EnrollmentStatus
from coachflow.models.learning_event import LearningEvent, LearningEventType
from coachflow.models.session import ScheduledSession, SessionStatus
from coachflow.services.audit_service import AuditService
from coachflow.services.coach_assignment_service import CoachAssignmentService
from coachflow.services.embedding_service import EmbeddingClient, EmbeddingError
from coachflow.services.session_service import SessionError, SessionNotFound

logger = logging.getLogger(__name__)

FOCUS_AREAS = ["phonics", "fluency", "comprehension", "vocabulary", "grammar", "writing", "other"]
PROGRESS_RATINGS = ["declined", "no_change", "improved", "significant_improvement", "breakthrough"]
ENGAGEMENT_LEVELS = ["low", "medium", "high"]


class CompletionValidationError(SessionError):
    pass


class SessionAlreadyCompleted(SessionError):
    pass


class NotSessionCoach(SessionError):
    pass


@dataclass
class CompletionForm:
    focus_area: str
    progress_rating: str
    engagement_level: str = "medium"
    skills_worked_on: List[str] = field(default_factory=list)
    coach_notes: Optional[str] = None
    breakthrough_moment: Optional[str] = None
    concerns: Optional[str] = None
    homework_assigned: bool = False
    homework_description: Optional[str] = None

    def validate(self) -> None:
        if self.focus_area not in FOCUS_AREAS:
            raise CompletionValidationError(
                f"Invalid focus_area: {self.focus_area}", {"allowed": FOCUS_AREAS}
            )
        if self.progress_rating not in PROGRESS_RATINGS:
            raise CompletionValidationError(
                f"Invalid progress_rating: {self.progress_rating}", {"allowed": PROGRESS_RATINGS}
            )
        if self.engagement_level not in ENGAGEMENT_LEVELS:
            raise CompletionValidationError(
                f"Invalid engagement_level: {self.engagement_level}", {"allowed": ENGAGEMENT_LEVELS}
            )
        if self.homework_assigned and not self.homework_description:
            raise CompletionValidationError("homework_description is required when homework is assigned")


def embedding_text(session: ScheduledSession, form: CompletionForm) -> str:
    parts = [
        f"Coaching session #{session.session_number}",
        f"Focus: {form.focus_area.replace('_', ' ')}",
    ]
    if form.skills_worked_on:
        parts.append(f"Skills: {', '.join(form.skills_worked_on)}")
    parts.append(f"Progress: {form.progress_rating.replace('_', ' ')}")
    parts.append(f"Engagement: {form.engagement_level}")
    if form.breakthrough_moment:
        parts.append(f"Breakthrough: {form.breakthrough_moment}")
    if form.concerns:
        parts.append(f"Concerns: {form.concerns}")
    if form.homework_assigned and form.homework_description:
        parts.append(f"Homework: {form.homework_description}")
    if form.coach_notes:
        parts.append(f"Notes: {form.coach_notes}")
    return "\n".join(parts).strip()


class SessionCompletionService:
    def __init__(self, db: AsyncSession, embeddings: Optional[EmbeddingClient] = None):
        self.db = db
        self.embeddings = embeddings or EmbeddingClient()
        self.audit = AuditService(db)

    async def complete(
        self,
        session_id: UUID,
        form: CompletionForm,
        coach_id: Optional[UUID] = None,
        actor: str = "system",
    ) -> Dict[str, Any]:
        """
        Mark a session completed with the coach's feedback.

        Args:
            coach_id: When given, the session must belong to this coach.
        """
        form.validate()

        session = await self.db.get(ScheduledSession, session_id)
        if session is None:
            raise SessionNotFound("Session not found", {"session_id": str(session_id)})
        if session.status == SessionStatus.COMPLETED.value:
            raise SessionAlreadyCompleted("Session already completed")
        if session.status == SessionStatus.CANCELLED.value:
            raise SessionError("Cannot complete cancelled session")
        if coach_id is not None and session.coach_id != coach_id:
            raise NotSessionCoach("Session belongs to another coach")

        now = datetime.now(timezone.utc)
        session.status = SessionStatus.COMPLETED.value
        session.completed_at = now
        session.next_retry_at = None
        session.focus_area = form.focus_area
        session.progress_rating = form.progress_rating
        session.engagement_level = form.engagement_level
        session.skills_worked_on = form.skills_worked_on
        session.coach_notes = form.coach_notes
        session.breakthrough_moment = form.breakthrough_moment
        session.concerns = form.concerns
        session.homework_assigned = form.homework_assigned
        session.homework_description = form.homework_description

        event_data = {
            "session_id": str(session.id),
            "session_number": session.session_number,
            "session_type": session.session_type,
            "focus_area": form.focus_area,
            "progress_rating": form.progress_rating,
            "engagement_level": form.engagement_level,
            "skills_worked_on": form.skills_worked_on,
            "homework_assigned": form.homework_assigned,
            "coach_notes": form.coach_notes or "",
            "breakthrough_moment": form.breakthrough_moment or "",
            "completed_at": now.isoformat(),
        }
        content = embedding_text(session, form)
        events = [LearningEvent(
            child_id=session.child_id,
            coach_id=session.coach_id,
            session_id=session.id,
            event_type=LearningEventType.SESSION.value,
            event_data=event_data,
            content_for_embedding=content,
        )]
        if form.progress_rating == "breakthrough" or form.breakthrough_moment:
            events.append(LearningEvent(
                child_id=session.child_id,
                coach_id=session.coach_id,
                session_id=session.id,
                event_type=LearningEventType.MILESTONE.value,
                event_data={"session_id": str(session.id), "breakthrough_moment": form.breakthrough_moment or ""},
                content_for_embedding=f"Milestone: {form.breakthrough_moment or 'breakthrough'}",
            ))
        if form.homework_assigned:
            events.append(LearningEvent(
                child_id=session.child_id,
                coach_id=session.coach_id,
                session_id=session.id,
                event_type=LearningEventType.HOMEWORK.value,
                event_data={"session_id": str(session.id), "description": form.homework_description},
                content_for_embedding=f"Homework: {form.homework_description}",
            ))
        self.db.add_all(events)
        await self.db.flush()

        enrollment = await self.db.get(Enrollment, session.enrollment_id)
        program_completed = False
        if enrollment is not None:
            enrollment.consecutive_no_shows = 0
            program_completed = await self._maybe_complete_program(enrollment)

        await self.audit.log(
            action="SESSION_COMPLETED",
            entity_type="SESSION",
            entity_id=session.id,
            actor=actor,
            new_values={"focus_area": form.focus_area, "progress_rating": form.progress_rating},
        )

        embedded = await self._embed(events[0])
        logger.info(f"Session {session.id} completed ({form.focus_area}, {form.progress_rating})")
        return {
            "session_id": str(session.id),
            "status": session.status,
            "learning_events": len(events),
            "embedding_generated": embedded,
            "program_completed": program_completed,
        }

    async def _maybe_complete_program(self, enrollment: Enrollment) -> bool:
        result = await self.db.execute(
            select(func.count(ScheduledSession.id)).where(
                ScheduledSession.enrollment_id == enrollment.id,
                ScheduledSession.status.not_in([SessionStatus.COMPLETED.value, SessionStatus.CANCELLED.value]),
            )
        )
        if (result.scalar() or 0) > 0 or enrollment.status != EnrollmentStatus.ACTIVE.value:
            return False

        enrollment.status = EnrollmentStatus.COMPLETED.value
        await self.db.flush()
        if enrollment.coach_id:
            coach = await self.db.get(Coach, enrollment.coach_id)
            if coach is not None:
                await CoachAssignmentService(self.db).refresh_load(coach)
        logger.info(f"Enrollment {enrollment.id} completed all sessions")
        return True

    async def _embed(self, event: LearningEvent) -> bool:
        if not self.embeddings.enabled or not event.content_for_embedding:
            return False
        try:
            event.embedding = await self.embeddings.generate(event.content_for_embedding)
        except EmbeddingError as e:
            logger.error(f"Embedding generation failed for learning event {event.id}: {e.message}")
            return False
        await self.db.flush()
        return True
