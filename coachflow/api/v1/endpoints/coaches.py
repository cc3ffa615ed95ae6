"""API endpoints for coach payouts."""
from typing import Optional, List
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query

from coachflow.api.deps import DB, AdminCaller
from coachflow.models.coach import Coach
from coachflow.schemas.revenue import CoachPayoutResponse
from coachflow.services.payout_ledger_service import PayoutLedgerService

router = APIRouter()


@router.get("/{coach_id}/payouts", response_model=List[CoachPayoutResponse])
async def list_coach_payouts(
    coach_id: UUID,
    db: DB,
    caller: AdminCaller,
    status: Optional[str] = Query(None, description="scheduled, paid, ..."),
    financial_year: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}$"),
):
    """Payout ledger of a coach, oldest scheduled date first."""
    if await db.get(Coach, coach_id) is None:
        raise HTTPException(status_code=404, detail="Coach not found")

    return await PayoutLedgerService(db).list_for_coach(
        coach_id, status=status, financial_year=financial_year
    )
