"""Coach model.

`current_students` and `tds_cumulative_fy` are projections: they are
recomputed from enrollments and the payout ledger rather than incremented
in place (see CoachAssignmentService.refresh_load and
PayoutLedgerService.refresh_fy_earnings).
"""
import uuid
from datetime import datetime, timezone, date
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, Integer, Date, Index
from sqlalchemy.orm import Mapped, mapped_column

from coachflow.database import Base
from coachflow.db_types import UUIDType, MoneyType


class CoachAvailabilityStatus(str, Enum):
    """Coach availability status."""
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    EXITED = "exited"


class Coach(Base):
    """Reading coach who takes enrollments and earns payouts."""
    __tablename__ = "coaches"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    pan_number: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    availability_status: Mapped[str] = mapped_column(
        String(20),
        default=CoachAvailabilityStatus.AVAILABLE.value,
        comment="available, unavailable, exited"
    )

    # Assignment capacity
    max_capacity: Mapped[int] = mapped_column(Integer, default=15)
    current_students: Mapped[int] = mapped_column(Integer, default=0)

    # TDS tracking (financial year)
    fy_opening_earnings: Mapped[Decimal] = mapped_column(
        MoneyType,
        default=Decimal("0"),
        comment="Earnings for the current FY recorded outside the payout ledger"
    )
    tds_cumulative_fy: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    tds_financial_year: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    exit_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("idx_coaches_active_load", "is_active", "current_students"),
    )

    def __repr__(self) -> str:
        return f"<Coach(name='{self.name}', students={self.current_students}/{self.max_capacity})>"
