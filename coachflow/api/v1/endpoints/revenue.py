"""API endpoints for enrollment revenue splits and split configuration."""
from uuid import UUID
import logging

from fastapi import APIRouter, HTTPException, status

from coachflow.api.deps import DB, AdminCaller, InternalOrAdmin
from coachflow.schemas.revenue import (
    RevenueCalculateRequest,
    RevenueResponse,
    RevenueConfigCreate,
    RevenueConfigResponse,
)
from coachflow.services.payout_ledger_service import PayoutLedgerError
from coachflow.services.revenue_service import (
    RevenueService,
    RevenueValidationError,
    AlreadyCalculated,
    CoachNotFound,
    EnrollmentNotFound,
    build_breakdown,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ==================== Enrollment Revenue ====================

@router.post(
    "/enrollments/{enrollment_id}/revenue",
    response_model=RevenueResponse,
    status_code=status.HTTP_201_CREATED,
)
async def calculate_enrollment_revenue(
    enrollment_id: UUID,
    request: RevenueCalculateRequest,
    db: DB,
    caller: InternalOrAdmin,
):
    """
    Calculate and persist the revenue split for a paid enrollment.

    Writes the revenue row and the staggered coach payouts in one transaction.
    A second call for the same enrollment returns 409 and writes nothing.
    """
    try:
        service = RevenueService(db)
        return await service.calculate(
            enrollment_id=enrollment_id,
            coaching_coach_id=request.coaching_coach_id,
            child_id=request.child_id,
            lead_source=request.lead_source.value,
            total_amount=request.total_amount,
            lead_source_coach_id=request.lead_source_coach_id,
            child_name=request.child_name,
            actor=caller.actor,
        )
    except AlreadyCalculated as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    except (EnrollmentNotFound, CoachNotFound) as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except RevenueValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except PayoutLedgerError as e:
        logger.error(f"Payout ledger write failed for enrollment {enrollment_id}: {e.message}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)


@router.get("/enrollments/{enrollment_id}/revenue", response_model=RevenueResponse)
async def get_enrollment_revenue(
    enrollment_id: UUID,
    db: DB,
    caller: InternalOrAdmin,
):
    """Stored revenue breakdown and payout schedule of an enrollment."""
    service = RevenueService(db)
    revenue = await service.get_revenue(enrollment_id)
    if revenue is None:
        raise HTTPException(status_code=404, detail="Revenue not calculated for this enrollment")

    await db.refresh(revenue, ["payouts"])
    return build_breakdown(revenue, list(revenue.payouts))


# ==================== Split Config ====================

@router.get("/revenue-config", response_model=RevenueConfigResponse)
async def get_revenue_config(db: DB, caller: AdminCaller):
    """Split configuration currently in effect (defaults when none is stored)."""
    config = await RevenueService(db).get_active_config()
    return RevenueConfigResponse(
        config_id=config.config_id,
        lead_cost_percent=config.lead_cost_percent,
        coach_cost_percent=config.coach_cost_percent,
        platform_fee_percent=config.platform_fee_percent,
        tds_rate_percent=config.tds_rate_percent,
        tds_threshold_annual=config.tds_threshold_annual,
        payout_day_of_month=config.payout_day_of_month,
        effective_from=config.effective_from,
        is_default=config.config_id is None,
    )


@router.post(
    "/revenue-config",
    response_model=RevenueConfigResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_revenue_config(
    request: RevenueConfigCreate,
    db: DB,
    caller: AdminCaller,
):
    """
    Add a new split configuration.

    Earlier rows are kept; calculations pick the latest one whose
    effective_from has passed.
    """
    try:
        row = await RevenueService(db).create_config(
            lead_cost_percent=request.lead_cost_percent,
            coach_cost_percent=request.coach_cost_percent,
            platform_fee_percent=request.platform_fee_percent,
            tds_rate_percent=request.tds_rate_percent,
            tds_threshold_annual=request.tds_threshold_annual,
            payout_day_of_month=request.payout_day_of_month,
            effective_from=request.effective_from,
            notes=request.notes,
            created_by=caller.actor,
        )
    except RevenueValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)

    return RevenueConfigResponse(
        config_id=row.id,
        lead_cost_percent=row.lead_cost_percent,
        coach_cost_percent=row.coach_cost_percent,
        platform_fee_percent=row.platform_fee_percent,
        tds_rate_percent=row.tds_rate_percent,
        tds_threshold_annual=row.tds_threshold_annual,
        payout_day_of_month=row.payout_day_of_month,
        effective_from=row.effective_from,
    )
