"""Revenue split models.

- RevenueSplitConfig: percentages, TDS rate/threshold, payout day
- EnrollmentRevenue: one immutable row per enrollment
- CoachPayout: staggered monthly payouts (coach_cost / lead_bonus)
"""
import uuid
from datetime import datetime, timezone, date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Date, Text, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coachflow.database import Base
from coachflow.db_types import UUIDType, JSONType, MoneyType, PercentType

if TYPE_CHECKING:
    from coachflow.models.enrollment import Enrollment


class PayoutType(str, Enum):
    """Payout line type."""
    COACH_COST = "coach_cost"
    LEAD_BONUS = "lead_bonus"


class PayoutStatus(str, Enum):
    """Payout status."""
    SCHEDULED = "scheduled"
    PAID = "paid"
    FAILED = "failed"


class RevenueSplitConfig(Base):
    """
    Revenue split configuration.

    The active config is the one with the latest effective_from that is not
    in the future; rows are never edited, a change is a new row.
    """
    __tablename__ = "revenue_split_config"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    lead_cost_percent: Mapped[Decimal] = mapped_column(PercentType, nullable=False)
    coach_cost_percent: Mapped[Decimal] = mapped_column(PercentType, nullable=False)
    platform_fee_percent: Mapped[Decimal] = mapped_column(PercentType, nullable=False)

    tds_rate_percent: Mapped[Decimal] = mapped_column(PercentType, default=Decimal("10"))
    tds_threshold_annual: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("30000"))
    payout_day_of_month: Mapped[int] = mapped_column(Integer, default=7)

    effective_from: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        index=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )


class EnrollmentRevenue(Base):
    """Computed revenue split for one enrollment. Append-only."""
    __tablename__ = "enrollment_revenue"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    enrollment_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("enrollments.id", ondelete="RESTRICT"),
        nullable=False
    )
    child_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    coaching_coach_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("coaches.id", ondelete="RESTRICT"),
        nullable=False
    )
    lead_source: Mapped[str] = mapped_column(String(20), nullable=False)
    lead_source_coach_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("coaches.id", ondelete="RESTRICT"),
        nullable=True
    )

    # Split
    total_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    lead_cost_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    coach_cost_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    platform_fee_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    # TDS on coach cost
    tds_applicable: Mapped[bool] = mapped_column(Boolean, default=False)
    tds_rate_applied: Mapped[Optional[Decimal]] = mapped_column(PercentType, nullable=True)
    tds_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))

    # TDS on lead bonus (referring coach, checked independently)
    lead_bonus_tds_applicable: Mapped[bool] = mapped_column(Boolean, default=False)
    lead_bonus_tds_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))

    # Net per party
    net_to_coach: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    net_to_lead_source: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    net_retained_by_platform: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    financial_year: Mapped[str] = mapped_column(String(10), nullable=False, comment="e.g. 2025-26")
    config_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)
    config_snapshot: Mapped[dict] = mapped_column(JSONType, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="calculated")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    payouts: Mapped[List["CoachPayout"]] = relationship(
        "CoachPayout",
        back_populates="enrollment_revenue",
        order_by="CoachPayout.payout_month",
    )
    enrollment: Mapped["Enrollment"] = relationship("Enrollment")

    __table_args__ = (
        # One revenue computation per enrollment
        UniqueConstraint("enrollment_id", name="uq_enrollment_revenue_enrollment"),
    )


class CoachPayout(Base):
    """One monthly payout line for a coach."""
    __tablename__ = "coach_payouts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    enrollment_revenue_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("enrollment_revenue.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    coach_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("coaches.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    child_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    child_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    payout_month: Mapped[int] = mapped_column(Integer, nullable=False)
    payout_type: Mapped[str] = mapped_column(String(20), nullable=False, comment="coach_cost, lead_bonus")

    gross_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    tds_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    net_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    financial_year: Mapped[str] = mapped_column(String(10), nullable=False)
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=PayoutStatus.SCHEDULED.value)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    enrollment_revenue: Mapped["EnrollmentRevenue"] = relationship(
        "EnrollmentRevenue",
        back_populates="payouts"
    )

    __table_args__ = (
        UniqueConstraint(
            "enrollment_revenue_id", "payout_month", "payout_type",
            name="uq_coach_payouts_revenue_month_type"
        ),
        Index("idx_coach_payouts_coach_fy", "coach_id", "financial_year"),
    )
