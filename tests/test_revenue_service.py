"""Revenue calculation against the database: persistence, idempotency, TDS, config."""
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from coachflow.models.revenue import EnrollmentRevenue, CoachPayout, RevenueSplitConfig
from coachflow.models.session import ScheduledSession
from coachflow.services import revenue_service
from coachflow.services.payout_ledger_service import PayoutLedgerError
from coachflow.services.revenue_service import (
    RevenueService,
    AlreadyCalculated,
    CoachNotFound,
    EnrollmentNotFound,
    RevenueValidationError,
)

AS_OF = date(2025, 6, 10)


async def count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar()


async def calculate(db, enrollment, coach, **kwargs):
    return await RevenueService(db).calculate(
        enrollment_id=enrollment.id,
        coaching_coach_id=coach.id,
        child_id=enrollment.child_id,
        lead_source=kwargs.pop("lead_source", "yestoryd"),
        as_of=kwargs.pop("as_of", AS_OF),
        **kwargs,
    )


async def test_calculate_persists_revenue_and_payouts(db, make_coach, make_enrollment):
    coach = await make_coach()
    enrollment = await make_enrollment(coach)

    result = await calculate(db, enrollment, coach)

    breakdown = result["breakdown"]
    assert breakdown["total_amount"] == Decimal("5999")
    assert breakdown["lead_cost"]["amount"] == Decimal("1200")
    assert breakdown["lead_cost"]["recipient"] == "Platform"
    assert breakdown["coach_cost"]["net"] == Decimal("3000")
    assert breakdown["platform_fee"]["amount"] == Decimal("1799")
    assert result["financial_year"] == "2025-26"

    months = result["payouts_scheduled"]
    assert [m["month"] for m in months] == [1, 2, 3]
    assert [m["date"] for m in months] == [date(2025, 7, 7), date(2025, 8, 7), date(2025, 9, 7)]
    assert all(m["coach_cost"] == Decimal("1000") for m in months)

    assert await count(db, EnrollmentRevenue) == 1
    assert await count(db, CoachPayout) == 3
    assert enrollment.revenue_locked_at is not None
    assert coach.tds_cumulative_fy == Decimal("3000")
    assert coach.tds_financial_year == "2025-26"


async def test_second_calculation_is_rejected_without_writes(db, make_coach, make_enrollment):
    coach = await make_coach()
    enrollment = await make_enrollment(coach)
    await calculate(db, enrollment, coach)

    with pytest.raises(AlreadyCalculated):
        await calculate(db, enrollment, coach)

    assert await count(db, EnrollmentRevenue) == 1
    assert await count(db, CoachPayout) == 3


async def test_concurrent_duplicate_becomes_already_calculated(
    db, monkeypatch, make_coach, make_enrollment, make_session
):
    coach = await make_coach()
    enrollment = await make_enrollment(coach)
    await make_session(enrollment)
    await calculate(db, enrollment, coach)

    # Another request wrote the row after this one's existence check
    async def not_found_yet(self, enrollment_id):
        return None

    monkeypatch.setattr(RevenueService, "get_revenue", not_found_yet)

    with pytest.raises(AlreadyCalculated):
        await calculate(db, enrollment, coach)

    assert await count(db, EnrollmentRevenue) == 1
    assert await count(db, CoachPayout) == 3
    assert await count(db, ScheduledSession) == 1


async def test_payout_insert_failure_leaves_no_revenue_row(
    db, monkeypatch, make_coach, make_enrollment, make_session
):
    coach = await make_coach()
    enrollment = await make_enrollment(coach)
    await make_session(enrollment)
    original = revenue_service.build_payout_lines

    def duplicated_lines(*args, **kwargs):
        lines = original(*args, **kwargs)
        return lines + lines

    monkeypatch.setattr(revenue_service, "build_payout_lines", duplicated_lines)

    with pytest.raises(PayoutLedgerError):
        await calculate(db, enrollment, coach)

    assert await count(db, EnrollmentRevenue) == 0
    assert await count(db, CoachPayout) == 0
    assert await count(db, ScheduledSession) == 1


async def test_unknown_coach(db, make_coach, make_enrollment):
    coach = await make_coach()
    enrollment = await make_enrollment(coach)

    with pytest.raises(CoachNotFound):
        await RevenueService(db).calculate(
            enrollment_id=enrollment.id,
            coaching_coach_id=uuid.uuid4(),
            child_id=enrollment.child_id,
            lead_source="yestoryd",
            as_of=AS_OF,
        )
    assert await count(db, EnrollmentRevenue) == 0


async def test_unknown_enrollment(db, make_coach):
    coach = await make_coach()

    with pytest.raises(EnrollmentNotFound):
        await RevenueService(db).calculate(
            enrollment_id=uuid.uuid4(),
            coaching_coach_id=coach.id,
            child_id=uuid.uuid4(),
            lead_source="yestoryd",
        )


async def test_coach_lead_requires_referring_coach(db, make_coach, make_enrollment):
    coach = await make_coach()
    enrollment = await make_enrollment(coach)

    with pytest.raises(RevenueValidationError):
        await calculate(db, enrollment, coach, lead_source="coach")


async def test_amount_must_match_enrollment(db, make_coach, make_enrollment):
    coach = await make_coach()
    enrollment = await make_enrollment(coach)

    with pytest.raises(RevenueValidationError):
        await calculate(db, enrollment, coach, total_amount=Decimal("4999"))


async def test_tds_once_fy_earnings_cross_threshold(db, make_coach, make_enrollment):
    coach = await make_coach(fy_opening_earnings=Decimal("28000"))
    enrollment = await make_enrollment(coach)

    result = await calculate(db, enrollment, coach)

    coach_cost = result["breakdown"]["coach_cost"]
    assert coach_cost["tds_applicable"] is True
    assert coach_cost["tds"] == Decimal("300")
    assert coach_cost["net"] == Decimal("2700")
    assert result["breakdown"]["net_retained_by_platform"] == Decimal("3299")
    assert [m["coach_cost"] for m in result["payouts_scheduled"]] == [Decimal("900")] * 3
    assert coach.tds_cumulative_fy == Decimal("31000")


async def test_earnings_accumulate_across_enrollments(db, make_coach, make_enrollment):
    coach = await make_coach(fy_opening_earnings=Decimal("25000"))
    first = await make_enrollment(coach)
    second = await make_enrollment(coach, child_name="Diya")

    one = await calculate(db, first, coach)
    two = await calculate(db, second, coach)

    assert one["breakdown"]["coach_cost"]["tds_applicable"] is False
    assert two["breakdown"]["coach_cost"]["tds_applicable"] is True


async def test_coach_sourced_lead_bonus(db, make_coach, make_enrollment):
    coach = await make_coach()
    referrer = await make_coach("Referrer")
    enrollment = await make_enrollment(coach, lead_source="coach")

    result = await calculate(db, enrollment, coach, lead_source="coach", lead_source_coach_id=referrer.id)

    assert result["breakdown"]["lead_cost"]["recipient"] == "Coach (Lead Bonus)"
    assert result["breakdown"]["net_to_lead_source"] == Decimal("1200")
    assert all(m["lead_bonus"] == Decimal("400") for m in result["payouts_scheduled"])
    assert await count(db, CoachPayout) == 6

    payouts = (await db.execute(
        select(CoachPayout).where(CoachPayout.coach_id == referrer.id)
    )).scalars().all()
    assert {p.payout_type for p in payouts} == {"lead_bonus"}
    assert referrer.tds_cumulative_fy == Decimal("1200")


async def test_lead_bonus_taxed_against_referrer_earnings(db, make_coach, make_enrollment):
    coach = await make_coach()
    referrer = await make_coach("Referrer", fy_opening_earnings=Decimal("29000"))
    enrollment = await make_enrollment(coach, lead_source="coach")

    result = await calculate(db, enrollment, coach, lead_source="coach", lead_source_coach_id=referrer.id)

    lead = result["breakdown"]["lead_cost"]
    assert lead["tds_applicable"] is True
    assert lead["tds"] == Decimal("120")
    assert result["breakdown"]["coach_cost"]["tds_applicable"] is False
    assert [m["lead_bonus"] for m in result["payouts_scheduled"]] == [Decimal("360")] * 3
    assert [m["lead_bonus_tds"] for m in result["payouts_scheduled"]] == [Decimal("40")] * 3
    assert referrer.tds_cumulative_fy == Decimal("30200")


async def test_active_config_is_latest_effective(db, make_coach, make_enrollment):
    service = RevenueService(db)
    now = datetime.now(timezone.utc)
    await service.create_config(Decimal("20"), Decimal("40"), Decimal("40"), effective_from=now - timedelta(days=10))
    await service.create_config(Decimal("10"), Decimal("60"), Decimal("30"), effective_from=now - timedelta(days=1))
    await service.create_config(Decimal("30"), Decimal("30"), Decimal("40"), effective_from=now + timedelta(days=5))

    active = await service.get_active_config()

    assert active.coach_cost_percent == Decimal("60")
    assert await count(db, RevenueSplitConfig) == 3

    coach = await make_coach()
    enrollment = await make_enrollment(coach)
    result = await calculate(db, enrollment, coach)
    assert result["breakdown"]["coach_cost"]["amount"] == Decimal("3599")
    assert result["breakdown"]["coach_cost"]["percent"] == Decimal("60")


async def test_defaults_without_config(db):
    active = await RevenueService(db).get_active_config()

    assert active.config_id is None
    assert active.lead_cost_percent == Decimal("20")
    assert active.coach_cost_percent == Decimal("50")


async def test_invalid_config_rejected(db):
    with pytest.raises(RevenueValidationError):
        await RevenueService(db).create_config(Decimal("50"), Decimal("50"), Decimal("10"))
