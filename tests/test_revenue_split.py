"""Pure revenue split helpers: rounding, split, TDS, staggering, payout dates."""
import uuid
from datetime import date
from decimal import Decimal

import pytest

from coachflow.models.revenue import PayoutType
from coachflow.services.revenue_service import (
    RevenueService,
    RevenueValidationError,
    SplitConfig,
    calculate_split,
    evaluate_tds,
    financial_year_for,
    payout_dates,
    round_rupees,
    stagger_amount,
)


def config(lead="20", coach="50", platform="30", **kwargs) -> SplitConfig:
    return SplitConfig(
        lead_cost_percent=Decimal(lead),
        coach_cost_percent=Decimal(coach),
        platform_fee_percent=Decimal(platform),
        tds_rate_percent=Decimal(kwargs.get("tds_rate", "10")),
        tds_threshold_annual=Decimal(kwargs.get("threshold", "30000")),
        payout_day_of_month=kwargs.get("payout_day", 7),
    )


class TestRounding:
    def test_half_rounds_up(self):
        assert round_rupees(Decimal("2999.5")) == Decimal("3000")
        assert round_rupees(Decimal("1199.4")) == Decimal("1199")

    def test_financial_year_boundary(self):
        assert financial_year_for(date(2025, 3, 31)) == "2024-25"
        assert financial_year_for(date(2025, 4, 1)) == "2025-26"
        assert financial_year_for(date(2099, 12, 1)) == "2099-00"


class TestSplit:
    def test_default_split_of_5999(self):
        split = calculate_split(Decimal("5999"), config())

        assert split.lead_cost == Decimal("1200")
        assert split.coach_cost == Decimal("3000")
        assert split.platform_fee == Decimal("1799")

    def test_platform_fee_absorbs_remainder(self):
        split = calculate_split(Decimal("5999"), config(lead="20", coach="37", platform="43"))

        assert split.coach_cost == Decimal("2220")
        assert split.lead_cost + split.coach_cost + split.platform_fee == Decimal("5999")

    @pytest.mark.parametrize("total", ["1", "999", "4999", "5999", "12345"])
    def test_parts_always_sum_to_total(self, total):
        split = calculate_split(Decimal(total), config(lead="33", coach="33", platform="34"))
        assert split.lead_cost + split.coach_cost + split.platform_fee == Decimal(total)

    def test_config_must_sum_to_hundred(self):
        with pytest.raises(RevenueValidationError):
            config(lead="20", coach="50", platform="20").validate()

    def test_config_rejects_bad_payout_day(self):
        with pytest.raises(RevenueValidationError):
            config(payout_day=0).validate()


class TestTDS:
    def test_reaching_threshold_exactly_is_exempt(self):
        decision = evaluate_tds(Decimal("27000"), Decimal("3000"), config())

        assert decision.applicable is False
        assert decision.amount == Decimal("0")
        assert decision.rate is None
        assert decision.cumulative_after == Decimal("30000")

    def test_crossing_threshold_taxes_whole_amount(self):
        decision = evaluate_tds(Decimal("27001"), Decimal("3000"), config())

        assert decision.applicable is True
        assert decision.amount == Decimal("300")
        assert decision.rate == Decimal("10")

    @pytest.mark.parametrize(
        "amount,applicable",
        [(Decimal("1"), False), (Decimal("2"), True)],
    )
    def test_one_rupee_either_side_of_threshold(self, amount, applicable):
        decision = evaluate_tds(Decimal("29999"), amount, config())

        assert decision.applicable is applicable
        assert decision.cumulative_after == Decimal("29999") + amount


class TestStagger:
    def test_even_amount(self):
        assert stagger_amount(Decimal("3000")) == [Decimal("1000")] * 3

    def test_last_month_takes_remainder(self):
        parts = stagger_amount(Decimal("1000"))

        assert parts == [Decimal("333"), Decimal("333"), Decimal("334")]
        assert sum(parts) == Decimal("1000")

    def test_zero_amount(self):
        assert stagger_amount(Decimal("0")) == [Decimal("0")] * 3


class TestPayoutDates:
    def test_next_three_months(self):
        assert payout_dates(date(2025, 1, 31), 7) == [
            date(2025, 2, 7),
            date(2025, 3, 7),
            date(2025, 4, 7),
        ]

    def test_clamped_to_month_end(self):
        assert payout_dates(date(2025, 1, 15), 31) == [
            date(2025, 2, 28),
            date(2025, 3, 31),
            date(2025, 4, 30),
        ]

    def test_rolls_over_year_end(self):
        assert payout_dates(date(2025, 11, 20), 7) == [
            date(2025, 12, 7),
            date(2026, 1, 7),
            date(2026, 2, 7),
        ]


class TestCompute:
    def test_platform_sourced_lead_cost_is_retained(self):
        calc = RevenueService(db=None).compute(
            total_amount=Decimal("5999"),
            lead_source="yestoryd",
            coaching_coach_id=uuid.uuid4(),
            coach_cumulative=Decimal("0"),
            config=config(),
            as_of=date(2025, 6, 1),
        )

        assert calc.net_to_coach == Decimal("3000")
        assert calc.net_to_lead_source == Decimal("0")
        assert calc.net_retained_by_platform == Decimal("2999")
        assert len(calc.payout_lines) == 3
        assert {line.payout_type for line in calc.payout_lines} == {PayoutType.COACH_COST}

    def test_coach_sourced_adds_lead_bonus_lines(self):
        coach_id, lead_coach_id = uuid.uuid4(), uuid.uuid4()
        calc = RevenueService(db=None).compute(
            total_amount=Decimal("5999"),
            lead_source="coach",
            coaching_coach_id=coach_id,
            coach_cumulative=Decimal("29000"),
            config=config(),
            as_of=date(2025, 6, 1),
            lead_source_coach_id=lead_coach_id,
            lead_coach_cumulative=Decimal("0"),
        )

        assert calc.coach_tds.amount == Decimal("300")
        assert calc.lead_tds.applicable is False
        assert calc.net_to_coach == Decimal("2700")
        assert calc.net_to_lead_source == Decimal("1200")
        assert calc.net_retained_by_platform == Decimal("2099")
        bonus = [line for line in calc.payout_lines if line.payout_type == PayoutType.LEAD_BONUS]
        assert [line.coach_id for line in bonus] == [lead_coach_id] * 3
        assert sum(line.gross_amount for line in bonus) == Decimal("1200")

    def test_monthly_lines_reconcile_with_net(self):
        calc = RevenueService(db=None).compute(
            total_amount=Decimal("4999"),
            lead_source="yestoryd",
            coaching_coach_id=uuid.uuid4(),
            coach_cumulative=Decimal("40000"),
            config=config(),
            as_of=date(2025, 6, 1),
        )

        assert sum(line.net_amount for line in calc.payout_lines) == calc.net_to_coach
        assert sum(line.tds_amount for line in calc.payout_lines) == calc.coach_tds.amount
