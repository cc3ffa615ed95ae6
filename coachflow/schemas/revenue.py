"""Pydantic schemas for enrollment revenue and split configuration."""
from datetime import datetime, date
from typing import Optional, List
from decimal import Decimal
from uuid import UUID
from pydantic import BaseModel, Field, model_validator

from coachflow.models.enrollment import LeadSource
from coachflow.schemas.base import BaseResponseSchema, BaseCreateSchema


# ==================== Calculation ====================

class RevenueCalculateRequest(BaseCreateSchema):
    """Body of the revenue calculation call; the enrollment id is in the path."""
    total_amount: Optional[Decimal] = Field(None, gt=0, description="Defaults to the enrollment amount")
    lead_source: LeadSource
    lead_source_coach_id: Optional[UUID] = None
    coaching_coach_id: UUID
    child_id: UUID
    child_name: Optional[str] = None

    @model_validator(mode="after")
    def _lead_coach_required(self):
        if self.lead_source == LeadSource.COACH and self.lead_source_coach_id is None:
            raise ValueError("lead_source_coach_id is required when lead_source is 'coach'")
        return self


class LeadCostBlock(BaseModel):
    amount: Decimal
    percent: Decimal
    recipient: str
    tds: Decimal
    tds_applicable: bool


class CoachCostBlock(BaseModel):
    amount: Decimal
    percent: Decimal
    gross: Decimal
    tds: Decimal
    net: Decimal
    tds_applicable: bool


class PlatformFeeBlock(BaseModel):
    amount: Decimal
    percent: Decimal


class RevenueBreakdown(BaseModel):
    total_amount: Decimal
    lead_cost: LeadCostBlock
    coach_cost: CoachCostBlock
    platform_fee: PlatformFeeBlock
    net_to_coach: Decimal
    net_to_lead_source: Decimal
    net_retained_by_platform: Decimal


class PayoutMonth(BaseModel):
    month: int
    date: date
    coach_cost: Decimal
    coach_cost_tds: Decimal
    lead_bonus: Decimal
    lead_bonus_tds: Decimal


class RevenueResponse(BaseResponseSchema):
    enrollment_revenue_id: UUID
    enrollment_id: UUID
    breakdown: RevenueBreakdown
    financial_year: str
    payouts_scheduled: List[PayoutMonth]


# ==================== Config ====================

class RevenueConfigCreate(BaseCreateSchema):
    lead_cost_percent: Decimal = Field(..., ge=0, le=100)
    coach_cost_percent: Decimal = Field(..., ge=0, le=100)
    platform_fee_percent: Decimal = Field(..., ge=0, le=100)
    tds_rate_percent: Decimal = Field(Decimal("10"), ge=0, le=100)
    tds_threshold_annual: Decimal = Field(Decimal("30000"), ge=0)
    payout_day_of_month: int = Field(7, ge=1, le=31)
    effective_from: Optional[datetime] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _sums_to_hundred(self):
        total = self.lead_cost_percent + self.coach_cost_percent + self.platform_fee_percent
        if total != Decimal("100"):
            raise ValueError(f"Percentages must sum to 100, got {total}")
        return self


class RevenueConfigResponse(BaseModel):
    config_id: Optional[UUID] = None
    lead_cost_percent: Decimal
    coach_cost_percent: Decimal
    platform_fee_percent: Decimal
    tds_rate_percent: Decimal
    tds_threshold_annual: Decimal
    payout_day_of_month: int
    effective_from: Optional[datetime] = None
    is_default: bool = False


# ==================== Payouts ====================

class CoachPayoutResponse(BaseResponseSchema):
    id: UUID
    enrollment_revenue_id: UUID
    coach_id: UUID
    child_name: Optional[str] = None
    payout_month: int
    payout_type: str
    gross_amount: Decimal
    tds_amount: Decimal
    net_amount: Decimal
    financial_year: str
    scheduled_date: date
    status: str
