"""API endpoints for enrollment activation."""
from uuid import UUID
import logging

from fastapi import APIRouter, HTTPException, status

from coachflow.api.deps import DB, InternalOrAdmin
from coachflow.schemas.enrollment import ActivationResponse
from coachflow.services.coach_assignment_service import NoCoachAvailable
from coachflow.services.enrollment_service import EnrollmentService, EnrollmentError
from coachflow.services.payout_ledger_service import PayoutLedgerError
from coachflow.services.revenue_service import (
    AlreadyCalculated,
    RevenueValidationError,
    CoachNotFound,
    EnrollmentNotFound,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/{enrollment_id}/activate", response_model=ActivationResponse)
async def activate_enrollment(
    enrollment_id: UUID,
    db: DB,
    caller: InternalOrAdmin,
):
    """
    Onboard a paid enrollment: assign a coach, schedule the program's
    sessions and calculate the revenue split.

    Sessions that could not be booked are reported in `schedule.errors`
    and left for the retry queue or manual scheduling; they do not fail
    the activation.
    """
    try:
        return await EnrollmentService(db).activate(enrollment_id, actor=caller.actor)
    except (EnrollmentNotFound, CoachNotFound) as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except (NoCoachAvailable, AlreadyCalculated) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    except (RevenueValidationError, EnrollmentError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except PayoutLedgerError as e:
        logger.error(f"Activation of {enrollment_id} failed writing payouts: {e.message}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)
