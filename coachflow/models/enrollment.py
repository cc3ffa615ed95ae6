import uuid
from datetime import datetime, timezone, date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Date, Text, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from coachflow.database import Base
from coachflow.db_types import UUIDType, MoneyType

if TYPE_CHECKING:
    from coachflow.models.coach import Coach


class LeadSource(str, Enum):
    """Who generated the enrollment."""
    YESTORYD = "yestoryd"
    COACH = "coach"
    REFERRAL = "referral"
    PARENT = "parent"


class EnrollmentStatus(str, Enum):
    """Enrollment lifecycle status."""
    PENDING_START = "pending_start"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Enrollment(Base):
    """Program purchase by a parent for a child."""
    __tablename__ = "enrollments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    # Child/parent (owned by the CRM side, referenced by id only)
    child_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False, index=True)
    child_name: Mapped[str] = mapped_column(String(200), nullable=False)
    parent_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    parent_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    parent_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Program
    plan_slug: Mapped[str] = mapped_column(String(50), default="full")
    total_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    program_start: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    program_end: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    preferred_time_bucket: Mapped[str] = mapped_column(
        String(20),
        default="any",
        comment="morning, afternoon, evening, any"
    )

    # Attribution
    lead_source: Mapped[str] = mapped_column(
        String(20),
        default=LeadSource.YESTORYD.value,
        comment="yestoryd, coach, referral, parent"
    )
    lead_source_coach_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("coaches.id", ondelete="SET NULL"),
        nullable=True
    )

    # Assigned coaching coach
    coach_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("coaches.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=EnrollmentStatus.PENDING_START.value,
        index=True,
        comment="pending_start, active, paused, completed, cancelled"
    )

    # Scheduling bookkeeping
    schedule_confirmed: Mapped[bool] = mapped_column(Boolean, default=False)
    sessions_scheduled: Mapped[int] = mapped_column(Integer, default=0)

    # No-show tracking
    consecutive_no_shows: Mapped[int] = mapped_column(Integer, default=0)
    total_no_shows: Mapped[int] = mapped_column(Integer, default=0)
    is_at_risk: Mapped[bool] = mapped_column(Boolean, default=False)

    # Pause tracking
    paused_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    pause_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Set when EnrollmentRevenue is written; total_amount is frozen afterwards
    revenue_locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    coach: Mapped[Optional["Coach"]] = relationship("Coach", foreign_keys=[coach_id])
    lead_source_coach: Mapped[Optional["Coach"]] = relationship("Coach", foreign_keys=[lead_source_coach_id])

    __table_args__ = (
        Index("idx_enrollments_coach_status", "coach_id", "status"),
    )

    @validates("total_amount")
    def _freeze_amount(self, key, value):
        if self.revenue_locked_at is not None and self.total_amount is not None \
                and Decimal(str(value)) != Decimal(str(self.total_amount)):
            raise ValueError("total_amount cannot change after revenue is calculated")
        return value

    def __repr__(self) -> str:
        return f"<Enrollment(child='{self.child_name}', status='{self.status}')>"
