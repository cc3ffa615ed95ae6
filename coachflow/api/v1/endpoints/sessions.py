"""API endpoints for coaching session completion."""
from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from coachflow.api.deps import DB, InternalOrAdmin
from coachflow.schemas.session import SessionCompleteRequest, SessionCompleteResponse
from coachflow.services.session_completion_service import (
    SessionCompletionService,
    CompletionForm,
    CompletionValidationError,
    SessionAlreadyCompleted,
    NotSessionCoach,
)
from coachflow.services.session_service import SessionError, SessionNotFound

router = APIRouter()


@router.post("/{session_id}/complete", response_model=SessionCompleteResponse)
async def complete_session(
    session_id: UUID,
    request: SessionCompleteRequest,
    db: DB,
    caller: InternalOrAdmin,
):
    """Record the coach's structured feedback and mark the session completed."""
    form = CompletionForm(**request.model_dump(exclude={"coach_id"}))
    try:
        return await SessionCompletionService(db).complete(
            session_id,
            form,
            coach_id=request.coach_id,
            actor=caller.actor,
        )
    except SessionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except SessionAlreadyCompleted as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    except NotSessionCoach as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.message)
    except (CompletionValidationError, SessionError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
