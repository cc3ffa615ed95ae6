"""
Enrollment Revenue Split Service

Computes how an enrollment's amount is shared between the lead source,
the coaching coach and the platform:

- Split: lead_cost / coach_cost by configured percent, platform fee absorbs
  the rounding remainder
- TDS: withheld on the full coach cost once the coach's financial-year
  earnings cross the annual threshold (strictly greater than)
- Lead bonus: paid to the referring coach for coach-sourced enrollments,
  with its own TDS check against that coach's earnings
- Payouts: staggered over 3 months, the last month takes the remainder so
  monthly amounts always reconcile to the total
- Idempotency: one revenue row per enrollment; a second calculation fails
  with AlreadyCalculated and writes nothing

All amounts are whole rupees, rounded half-up.
"""
import calendar
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Dict, Any, List, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coachflow.models.coach import Coach
from coachflow.models.enrollment import Enrollment, LeadSource
from coachflow.models.revenue import RevenueSplitConfig, EnrollmentRevenue, CoachPayout, PayoutType
from coachflow.services.audit_service import AuditService
from coachflow.services.payout_ledger_service import PayoutLedgerService, PayoutLine

logger = logging.getLogger(__name__)


PAYOUT_MONTHS = 3
WHOLE_RUPEE = Decimal("1")

DEFAULT_SPLIT_CONFIG = {
    "lead_cost_percent": Decimal("20"),
    "coach_cost_percent": Decimal("50"),
    "platform_fee_percent": Decimal("30"),
    "tds_rate_percent": Decimal("10"),
    "tds_threshold_annual": Decimal("30000"),
    "payout_day_of_month": 7,
}


class RevenueError(Exception):
    """Base exception for revenue calculation errors."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class RevenueValidationError(RevenueError):
    """Malformed or out-of-range input."""


class AlreadyCalculated(RevenueError):
    """Revenue for this enrollment has already been recorded."""


class CoachNotFound(RevenueError):
    """Coaching or referring coach does not exist."""


class EnrollmentNotFound(RevenueError):
    """Enrollment does not exist."""


# ==================== Pure calculation helpers ====================

def round_rupees(value: Decimal) -> Decimal:
    """Round to whole rupees, half away from zero."""
    return Decimal(value).quantize(WHOLE_RUPEE, rounding=ROUND_HALF_UP)


def financial_year_for(on: date) -> str:
    """Indian financial year label (April-March), e.g. 2025-26."""
    start_year = on.year if on.month >= 4 else on.year - 1
    return f"{start_year}-{(start_year + 1) % 100:02d}"


@dataclass
class SplitConfig:
    """Revenue split parameters in effect for one calculation."""
    lead_cost_percent: Decimal
    coach_cost_percent: Decimal
    platform_fee_percent: Decimal
    tds_rate_percent: Decimal
    tds_threshold_annual: Decimal
    payout_day_of_month: int = 7
    config_id: Optional[UUID] = None
    effective_from: Optional[datetime] = None

    @classmethod
    def default(cls) -> "SplitConfig":
        return cls(**DEFAULT_SPLIT_CONFIG)

    @classmethod
    def from_model(cls, row: RevenueSplitConfig) -> "SplitConfig":
        return cls(
            lead_cost_percent=Decimal(row.lead_cost_percent),
            coach_cost_percent=Decimal(row.coach_cost_percent),
            platform_fee_percent=Decimal(row.platform_fee_percent),
            tds_rate_percent=Decimal(row.tds_rate_percent),
            tds_threshold_annual=Decimal(row.tds_threshold_annual),
            payout_day_of_month=row.payout_day_of_month or 7,
            config_id=row.id,
            effective_from=row.effective_from,
        )

    def validate(self) -> None:
        percents = [self.lead_cost_percent, self.coach_cost_percent, self.platform_fee_percent]
        if any(p < 0 or p > 100 for p in percents):
            raise RevenueValidationError("Split percentages must be between 0 and 100")
        if sum(percents) != Decimal("100"):
            raise RevenueValidationError(
                "Split percentages must add up to 100",
                {"total": str(sum(percents))},
            )
        if self.tds_rate_percent < 0 or self.tds_rate_percent > 100:
            raise RevenueValidationError("TDS rate must be between 0 and 100")
        if not 1 <= self.payout_day_of_month <= 31:
            raise RevenueValidationError("Payout day must be between 1 and 31")

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe copy stored with each revenue row."""
        return {
            "config_id": str(self.config_id) if self.config_id else None,
            "lead_cost_percent": str(self.lead_cost_percent),
            "coach_cost_percent": str(self.coach_cost_percent),
            "platform_fee_percent": str(self.platform_fee_percent),
            "tds_rate_percent": str(self.tds_rate_percent),
            "tds_threshold_annual": str(self.tds_threshold_annual),
            "payout_day_of_month": self.payout_day_of_month,
            "effective_from": self.effective_from.isoformat() if self.effective_from else None,
        }


@dataclass
class SplitAmounts:
    total: Decimal
    lead_cost: Decimal
    coach_cost: Decimal
    platform_fee: Decimal


def calculate_split(total_amount: Decimal, config: SplitConfig) -> SplitAmounts:
    """Split a total; the platform fee absorbs every rounding remainder."""
    total = Decimal(total_amount)
    lead_cost = round_rupees(total * config.lead_cost_percent / 100)
    coach_cost = round_rupees(total * config.coach_cost_percent / 100)
    return SplitAmounts(
        total=total,
        lead_cost=lead_cost,
        coach_cost=coach_cost,
        platform_fee=total - lead_cost - coach_cost,
    )


@dataclass
class TDSDecision:
    applicable: bool
    rate: Optional[Decimal]
    amount: Decimal
    cumulative_before: Decimal
    cumulative_after: Decimal


def evaluate_tds(cumulative: Decimal, amount: Decimal, config: SplitConfig) -> TDSDecision:
    """TDS applies on the whole amount once cumulative + amount exceeds the threshold."""
    cumulative = Decimal(cumulative)
    after = cumulative + amount
    applicable = after > config.tds_threshold_annual
    return TDSDecision(
        applicable=applicable,
        rate=config.tds_rate_percent if applicable else None,
        amount=round_rupees(amount * config.tds_rate_percent / 100) if applicable else Decimal("0"),
        cumulative_before=cumulative,
        cumulative_after=after,
    )


def stagger_amount(amount: Decimal, months: int = PAYOUT_MONTHS) -> List[Decimal]:
    """Equal monthly parts; the final month takes whatever is left."""
    amount = Decimal(amount)
    monthly = round_rupees(amount / months)
    return [monthly] * (months - 1) + [amount - monthly * (months - 1)]


def payout_dates(from_date: date, payout_day: int, months: int = PAYOUT_MONTHS) -> List[date]:
    """The payout day in each of the `months` calendar months after `from_date`."""
    dates = []
    for offset in range(1, months + 1):
        month_index = from_date.month - 1 + offset
        year = from_date.year + month_index // 12
        month = month_index % 12 + 1
        day = min(payout_day, calendar.monthrange(year, month)[1])
        dates.append(date(year, month, day))
    return dates


def build_payout_lines(
    coach_id: UUID,
    payout_type: PayoutType,
    gross_total: Decimal,
    tds_total: Decimal,
    dates: List[date],
) -> List[PayoutLine]:
    gross_parts = stagger_amount(gross_total, len(dates))
    tds_parts = stagger_amount(tds_total, len(dates))
    return [
        PayoutLine(
            coach_id=coach_id,
            payout_type=payout_type,
            month=index + 1,
            gross_amount=gross,
            tds_amount=tds,
            net_amount=gross - tds,
            scheduled_date=scheduled_date,
        )
        for index, (gross, tds, scheduled_date) in enumerate(zip(gross_parts, tds_parts, dates))
    ]


@dataclass
class RevenueCalculation:
    """Everything computed for one enrollment before it is persisted."""
    split: SplitAmounts
    coach_tds: TDSDecision
    lead_tds: Optional[TDSDecision]
    net_to_coach: Decimal
    net_to_lead_source: Decimal
    net_retained_by_platform: Decimal
    payout_lines: List[PayoutLine] = field(default_factory=list)


# ==================== Service ====================

class RevenueService:
    """
    Revenue split calculator and payout ledger entry point.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = PayoutLedgerService(db)
        self.audit = AuditService(db)

    # ---------- Config ----------

    async def get_active_config(self, at: Optional[datetime] = None) -> SplitConfig:
        """Latest config whose effective_from is not in the future."""
        at = at or datetime.now(timezone.utc)
        result = await self.db.execute(
            select(RevenueSplitConfig)
            .where(RevenueSplitConfig.effective_from <= at)
            .order_by(RevenueSplitConfig.effective_from.desc(), RevenueSplitConfig.created_at.desc())
            .limit(1)
        )
        row = result.scalar_one_or_none()
        if row is None:
            logger.info("No revenue split config found, using defaults")
            return SplitConfig.default()
        return SplitConfig.from_model(row)

    async def create_config(
        self,
        lead_cost_percent: Decimal,
        coach_cost_percent: Decimal,
        platform_fee_percent: Decimal,
        tds_rate_percent: Decimal = DEFAULT_SPLIT_CONFIG["tds_rate_percent"],
        tds_threshold_annual: Decimal = DEFAULT_SPLIT_CONFIG["tds_threshold_annual"],
        payout_day_of_month: int = 7,
        effective_from: Optional[datetime] = None,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> RevenueSplitConfig:
        config = SplitConfig(
            lead_cost_percent=lead_cost_percent,
            coach_cost_percent=coach_cost_percent,
            platform_fee_percent=platform_fee_percent,
            tds_rate_percent=tds_rate_percent,
            tds_threshold_annual=tds_threshold_annual,
            payout_day_of_month=payout_day_of_month,
        )
        config.validate()

        row = RevenueSplitConfig(
            lead_cost_percent=lead_cost_percent,
            coach_cost_percent=coach_cost_percent,
            platform_fee_percent=platform_fee_percent,
            tds_rate_percent=tds_rate_percent,
            tds_threshold_annual=tds_threshold_annual,
            payout_day_of_month=payout_day_of_month,
            effective_from=effective_from or datetime.now(timezone.utc),
            notes=notes,
            created_by=created_by,
        )
        self.db.add(row)
        await self.db.flush()

        await self.audit.log(
            action="REVENUE_CONFIG_CREATED",
            entity_type="REVENUE_CONFIG",
            entity_id=row.id,
            actor=created_by,
            new_values=config.snapshot(),
        )
        logger.info(
            f"Revenue config {row.id} created: {lead_cost_percent}/{coach_cost_percent}/"
            f"{platform_fee_percent}, effective {row.effective_from}"
        )
        return row

    # ---------- Calculation ----------

    def compute(
        self,
        total_amount: Decimal,
        lead_source: str,
        coaching_coach_id: UUID,
        coach_cumulative: Decimal,
        config: SplitConfig,
        as_of: date,
        lead_source_coach_id: Optional[UUID] = None,
        lead_coach_cumulative: Optional[Decimal] = None,
    ) -> RevenueCalculation:
        """Pure part of the calculation: no reads, no writes."""
        split = calculate_split(total_amount, config)
        coach_tds = evaluate_tds(coach_cumulative, split.coach_cost, config)

        coach_sourced = lead_source == LeadSource.COACH.value
        lead_tds = None
        if coach_sourced:
            lead_tds = evaluate_tds(lead_coach_cumulative or Decimal("0"), split.lead_cost, config)

        dates = payout_dates(as_of, config.payout_day_of_month)
        lines = build_payout_lines(
            coaching_coach_id, PayoutType.COACH_COST, split.coach_cost, coach_tds.amount, dates
        )
        if coach_sourced:
            lines += build_payout_lines(
                lead_source_coach_id, PayoutType.LEAD_BONUS, split.lead_cost, lead_tds.amount, dates
            )

        return RevenueCalculation(
            split=split,
            coach_tds=coach_tds,
            lead_tds=lead_tds,
            net_to_coach=split.coach_cost - coach_tds.amount,
            net_to_lead_source=split.lead_cost if coach_sourced else Decimal("0"),
            net_retained_by_platform=(
                split.platform_fee + coach_tds.amount + (Decimal("0") if coach_sourced else split.lead_cost)
            ),
            payout_lines=lines,
        )

    def _validate_request(
        self,
        total_amount: Decimal,
        lead_source: str,
        lead_source_coach_id: Optional[UUID],
    ) -> None:
        if total_amount is None or Decimal(total_amount) <= 0:
            raise RevenueValidationError("total_amount must be greater than 0")
        if Decimal(total_amount) != round_rupees(Decimal(total_amount)):
            raise RevenueValidationError("total_amount must be in whole rupees")
        if lead_source not in {s.value for s in LeadSource}:
            raise RevenueValidationError(f"Invalid lead_source: {lead_source}")
        if lead_source == LeadSource.COACH.value and not lead_source_coach_id:
            raise RevenueValidationError("lead_source_coach_id is required when lead_source is 'coach'")

    async def _get_coach(self, coach_id: UUID, role: str) -> Coach:
        coach = await self.db.get(Coach, coach_id)
        if coach is None:
            raise CoachNotFound(f"{role} coach not found", {"coach_id": str(coach_id)})
        return coach

    async def check_request(
        self,
        enrollment: Enrollment,
        coaching_coach_id: UUID,
        lead_source: str,
        total_amount: Optional[Decimal] = None,
        lead_source_coach_id: Optional[UUID] = None,
    ) -> Tuple[Decimal, Coach, Optional[Coach], SplitConfig]:
        """
        Every check `calculate` makes before writing anything.

        Callers that have other side effects to perform (calendar bookings
        during activation) run this first so a bad request fails early.

        Returns:
            (total_amount, coaching coach, lead source coach or None, config)
        """
        if total_amount is None:
            total_amount = enrollment.total_amount
        total_amount = Decimal(total_amount)
        self._validate_request(total_amount, lead_source, lead_source_coach_id)
        if Decimal(enrollment.total_amount) != total_amount:
            raise RevenueValidationError(
                "total_amount does not match the enrollment amount",
                {"enrollment_amount": str(enrollment.total_amount), "total_amount": str(total_amount)},
            )

        existing = await self.get_revenue(enrollment.id)
        if existing is not None:
            raise AlreadyCalculated(
                "Revenue already calculated for this enrollment",
                {"enrollment_revenue_id": str(existing.id)},
            )

        coach = await self._get_coach(coaching_coach_id, "Coaching")
        lead_coach = None
        if lead_source == LeadSource.COACH.value:
            lead_coach = await self._get_coach(lead_source_coach_id, "Lead source")

        config = await self.get_active_config()
        config.validate()
        return total_amount, coach, lead_coach, config

    async def get_revenue(self, enrollment_id: UUID) -> Optional[EnrollmentRevenue]:
        result = await self.db.execute(
            select(EnrollmentRevenue).where(EnrollmentRevenue.enrollment_id == enrollment_id)
        )
        return result.scalar_one_or_none()

    async def calculate(
        self,
        enrollment_id: UUID,
        coaching_coach_id: UUID,
        child_id: UUID,
        lead_source: str,
        total_amount: Optional[Decimal] = None,
        lead_source_coach_id: Optional[UUID] = None,
        child_name: Optional[str] = None,
        as_of: Optional[date] = None,
        actor: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Calculate, persist and return the revenue breakdown for an enrollment.

        Raises:
            AlreadyCalculated: revenue exists for this enrollment
            EnrollmentNotFound / CoachNotFound: unknown ids
            RevenueValidationError: bad amount, lead source or config
            PayoutLedgerError: payout rows could not be written
        """
        enrollment = await self.db.get(Enrollment, enrollment_id)
        if enrollment is None:
            raise EnrollmentNotFound("Enrollment not found", {"enrollment_id": str(enrollment_id)})

        total_amount, coach, lead_coach, config = await self.check_request(
            enrollment, coaching_coach_id, lead_source, total_amount, lead_source_coach_id
        )

        as_of = as_of or date.today()
        financial_year = financial_year_for(as_of)

        coach_cumulative = await self.ledger.fy_earnings(coach, financial_year)
        lead_cumulative = None
        if lead_coach is not None:
            lead_cumulative = await self.ledger.fy_earnings(lead_coach, financial_year)
            if lead_coach.id == coach.id:
                # Same person: this enrollment's coach cost counts towards their year too
                lead_cumulative += calculate_split(total_amount, config).coach_cost

        calc = self.compute(
            total_amount=total_amount,
            lead_source=lead_source,
            coaching_coach_id=coach.id,
            coach_cumulative=coach_cumulative,
            config=config,
            as_of=as_of,
            lead_source_coach_id=lead_coach.id if lead_coach else None,
            lead_coach_cumulative=lead_cumulative,
        )

        revenue = EnrollmentRevenue(
            enrollment_id=enrollment_id,
            child_id=child_id,
            coaching_coach_id=coach.id,
            lead_source=lead_source,
            lead_source_coach_id=lead_coach.id if lead_coach else None,
            total_amount=calc.split.total,
            lead_cost_amount=calc.split.lead_cost,
            coach_cost_amount=calc.split.coach_cost,
            platform_fee_amount=calc.split.platform_fee,
            tds_applicable=calc.coach_tds.applicable,
            tds_rate_applied=calc.coach_tds.rate,
            tds_amount=calc.coach_tds.amount,
            lead_bonus_tds_applicable=bool(calc.lead_tds and calc.lead_tds.applicable),
            lead_bonus_tds_amount=calc.lead_tds.amount if calc.lead_tds else Decimal("0"),
            net_to_coach=calc.net_to_coach,
            net_to_lead_source=calc.net_to_lead_source,
            net_retained_by_platform=calc.net_retained_by_platform,
            financial_year=financial_year,
            config_id=config.config_id,
            config_snapshot=config.snapshot(),
        )

        payouts = await self.ledger.write(
            revenue,
            calc.payout_lines,
            child_name=child_name or enrollment.child_name,
        )

        await self.ledger.refresh_fy_earnings(coach, financial_year)
        if lead_coach is not None and lead_coach.id != coach.id:
            await self.ledger.refresh_fy_earnings(lead_coach, financial_year)

        enrollment.revenue_locked_at = datetime.now(timezone.utc)

        await self.audit.log(
            action="REVENUE_CALCULATED",
            entity_type="ENROLLMENT",
            entity_id=enrollment_id,
            actor=actor,
            new_values={
                "enrollment_revenue_id": str(revenue.id),
                "total_amount": str(calc.split.total),
                "coach_cost": str(calc.split.coach_cost),
                "tds_amount": str(calc.coach_tds.amount),
            },
        )
        logger.info(
            f"Revenue calculated for enrollment {enrollment_id}: total={calc.split.total} "
            f"lead={calc.split.lead_cost} coach={calc.split.coach_cost} "
            f"platform={calc.split.platform_fee} tds={calc.coach_tds.amount}"
        )

        return build_breakdown(revenue, payouts)


def build_breakdown(revenue: EnrollmentRevenue, payouts: List[CoachPayout]) -> Dict[str, Any]:
    """Response shape shared by the calculate and read endpoints."""
    snapshot = revenue.config_snapshot or {}
    coach_sourced = revenue.lead_source == LeadSource.COACH.value

    by_month: Dict[int, Dict[str, Any]] = {}
    for payout in sorted(payouts, key=lambda p: (p.payout_month, p.payout_type)):
        entry = by_month.setdefault(payout.payout_month, {
            "month": payout.payout_month,
            "date": payout.scheduled_date,
            "coach_cost": Decimal("0"),
            "coach_cost_tds": Decimal("0"),
            "lead_bonus": Decimal("0"),
            "lead_bonus_tds": Decimal("0"),
        })
        if payout.payout_type == PayoutType.COACH_COST.value:
            entry["coach_cost"] = Decimal(payout.net_amount)
            entry["coach_cost_tds"] = Decimal(payout.tds_amount)
        else:
            entry["lead_bonus"] = Decimal(payout.net_amount)
            entry["lead_bonus_tds"] = Decimal(payout.tds_amount)

    return {
        "enrollment_revenue_id": revenue.id,
        "enrollment_id": revenue.enrollment_id,
        "breakdown": {
            "total_amount": Decimal(revenue.total_amount),
            "lead_cost": {
                "amount": Decimal(revenue.lead_cost_amount),
                "percent": Decimal(snapshot.get("lead_cost_percent", "0")),
                "recipient": "Coach (Lead Bonus)" if coach_sourced else "Platform",
                "tds": Decimal(revenue.lead_bonus_tds_amount),
                "tds_applicable": revenue.lead_bonus_tds_applicable,
            },
            "coach_cost": {
                "amount": Decimal(revenue.coach_cost_amount),
                "percent": Decimal(snapshot.get("coach_cost_percent", "0")),
                "gross": Decimal(revenue.coach_cost_amount),
                "tds": Decimal(revenue.tds_amount),
                "net": Decimal(revenue.net_to_coach),
                "tds_applicable": revenue.tds_applicable,
            },
            "platform_fee": {
                "amount": Decimal(revenue.platform_fee_amount),
                "percent": Decimal(snapshot.get("platform_fee_percent", "0")),
            },
            "net_to_coach": Decimal(revenue.net_to_coach),
            "net_to_lead_source": Decimal(revenue.net_to_lead_source),
            "net_retained_by_platform": Decimal(revenue.net_retained_by_platform),
        },
        "financial_year": revenue.financial_year,
        "payouts_scheduled": [by_month[month] for month in sorted(by_month)],
    }
