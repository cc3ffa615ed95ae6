import uuid
from datetime import datetime, timezone, date, time
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Date, Time, Text, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coachflow.database import Base
from coachflow.db_types import UUIDType, JSONType

if TYPE_CHECKING:
    from coachflow.models.enrollment import Enrollment


class SessionType(str, Enum):
    """Kind of scheduled session."""
    COACHING = "coaching"
    PARENT_CHECKIN = "parent_checkin"
    REMEDIAL = "remedial"


class SessionStatus(str, Enum):
    """Scheduled session status."""
    PENDING = "pending"
    PENDING_SCHEDULING = "pending_scheduling"  # Calendar booking failed, awaiting retry/manual
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    COACH_NO_SHOW = "coach_no_show"
    PARTIAL = "partial"
    BOT_ERROR = "bot_error"
    RESCHEDULED = "rescheduled"


# Statuses a session can still be moved/reassigned from
MOVABLE_STATUSES = [
    SessionStatus.PENDING.value,
    SessionStatus.PENDING_SCHEDULING.value,
    SessionStatus.SCHEDULED.value,
    SessionStatus.RESCHEDULED.value,
]


class ScheduledSession(Base):
    """One calendar occurrence tied to an enrollment. Never hard-deleted."""
    __tablename__ = "scheduled_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    enrollment_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("enrollments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    child_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    coach_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("coaches.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Curriculum position
    session_number: Mapped[int] = mapped_column(Integer, nullable=False)
    week_number: Mapped[int] = mapped_column(Integer, nullable=False)
    session_type: Mapped[str] = mapped_column(
        String(20),
        default=SessionType.COACHING.value,
        comment="coaching, parent_checkin, remedial"
    )
    session_title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_diagnostic: Mapped[bool] = mapped_column(Boolean, default=False)

    # When
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    scheduled_time: Mapped[time] = mapped_column(Time, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=45)

    status: Mapped[str] = mapped_column(String(30), default=SessionStatus.PENDING.value, index=True)

    # External resources
    google_event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    meet_link: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    recall_bot_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Retry bookkeeping
    scheduling_attempts: Mapped[int] = mapped_column(Integer, default=0)
    next_retry_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_scheduling_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    reschedule_count: Mapped[int] = mapped_column(Integer, default=0)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Completion data
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    focus_area: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    progress_rating: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    engagement_level: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    skills_worked_on: Mapped[Optional[List[str]]] = mapped_column(JSONType, nullable=True)
    coach_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    breakthrough_moment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    concerns: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    homework_assigned: Mapped[bool] = mapped_column(Boolean, default=False)
    homework_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    enrollment: Mapped["Enrollment"] = relationship("Enrollment")

    __table_args__ = (
        # At most one live session per curriculum slot
        Index(
            "uq_scheduled_sessions_enrollment_number_live",
            "enrollment_id", "session_number",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
        Index("idx_scheduled_sessions_coach_date", "coach_id", "scheduled_date"),
        Index("idx_scheduled_sessions_retry", "status", "next_retry_at"),
    )

    def __repr__(self) -> str:
        return f"<ScheduledSession(#{self.session_number}, {self.scheduled_date}, '{self.status}')>"
