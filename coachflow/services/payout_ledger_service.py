"""
Payout Ledger Writer

Persists an EnrollmentRevenue row and its CoachPayout lines in the caller's
transaction, and derives per-coach financial-year earnings from the ledger.

The unique constraint on enrollment_revenue.enrollment_id turns a
concurrent duplicate calculation into an IntegrityError, which is reported
as AlreadyCalculated. Any failure writing payout lines is a
PayoutLedgerError; both inserts share a savepoint so no revenue row is left
without its payouts.
"""
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coachflow.models.coach import Coach
from coachflow.models.revenue import EnrollmentRevenue, CoachPayout, PayoutType, PayoutStatus

logger = logging.getLogger(__name__)


class PayoutLedgerError(Exception):
    """Payout rows could not be written; needs operator remediation."""
    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


@dataclass
class PayoutLine:
    """One monthly payout to be written."""
    coach_id: UUID
    payout_type: PayoutType
    month: int
    gross_amount: Decimal
    tds_amount: Decimal
    net_amount: Decimal
    scheduled_date: date


class PayoutLedgerService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def write(
        self,
        revenue: EnrollmentRevenue,
        lines: List[PayoutLine],
        child_name: Optional[str] = None,
    ) -> List[CoachPayout]:
        """
        Insert the revenue row, then all payout rows, inside a savepoint.

        A failure rolls back only the savepoint; whatever the caller wrote
        earlier in the transaction (the activation's sessions) survives.
        """
        # Imported here to avoid a circular import with revenue_service
        from coachflow.services.revenue_service import AlreadyCalculated

        stage = "revenue"
        payouts: List[CoachPayout] = []
        try:
            async with self.db.begin_nested():
                self.db.add(revenue)
                await self.db.flush()

                stage = "payouts"
                payouts = [
                    CoachPayout(
                        enrollment_revenue_id=revenue.id,
                        coach_id=line.coach_id,
                        child_id=revenue.child_id,
                        child_name=child_name,
                        payout_month=line.month,
                        payout_type=line.payout_type.value,
                        gross_amount=line.gross_amount,
                        tds_amount=line.tds_amount,
                        net_amount=line.net_amount,
                        financial_year=revenue.financial_year,
                        scheduled_date=line.scheduled_date,
                        status=PayoutStatus.SCHEDULED.value,
                    )
                    for line in lines
                ]
                self.db.add_all(payouts)
                await self.db.flush()
        except IntegrityError as e:
            if stage == "revenue":
                logger.warning(f"Duplicate revenue insert for enrollment {revenue.enrollment_id}: {e.orig}")
                raise AlreadyCalculated(
                    "Revenue already calculated for this enrollment",
                    {"enrollment_id": str(revenue.enrollment_id)},
                )
            logger.error(f"Payout insert failed for enrollment {revenue.enrollment_id}: {e.orig}")
            raise PayoutLedgerError(
                "Failed to write payout schedule",
                {"enrollment_id": str(revenue.enrollment_id), "lines": len(lines)},
            )

        logger.info(f"Wrote {len(payouts)} payouts for enrollment revenue {revenue.id}")
        return payouts

    async def fy_earnings(self, coach: Coach, financial_year: str) -> Decimal:
        """Opening earnings for the year plus everything in the ledger for it."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(CoachPayout.gross_amount), 0)).where(
                CoachPayout.coach_id == coach.id,
                CoachPayout.financial_year == financial_year,
            )
        )
        ledger_total = Decimal(str(result.scalar() or 0))

        opening = Decimal("0")
        if coach.tds_financial_year in (None, financial_year):
            opening = Decimal(coach.fy_opening_earnings or 0)
        return opening + ledger_total

    async def refresh_fy_earnings(self, coach: Coach, financial_year: str) -> Decimal:
        """Recompute the coach's cumulative FY earnings projection."""
        if coach.tds_financial_year not in (None, financial_year):
            # New financial year: opening balance belonged to the old one
            coach.fy_opening_earnings = Decimal("0")
        total = await self.fy_earnings(coach, financial_year)
        coach.tds_cumulative_fy = total
        coach.tds_financial_year = financial_year
        return total

    async def list_for_coach(
        self,
        coach_id: UUID,
        status: Optional[str] = None,
        financial_year: Optional[str] = None,
    ) -> List[CoachPayout]:
        query = select(CoachPayout).where(CoachPayout.coach_id == coach_id)
        if status:
            query = query.where(CoachPayout.status == status)
        if financial_year:
            query = query.where(CoachPayout.financial_year == financial_year)
        result = await self.db.execute(query.order_by(CoachPayout.scheduled_date))
        return list(result.scalars().all())
