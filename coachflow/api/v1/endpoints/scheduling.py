"""API endpoints for the scheduling orchestrator, manual queue and retry queue."""
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from coachflow.api.deps import DB, AdminCaller, InternalOrAdmin
from coachflow.models.scheduling import QueueStatus
from coachflow.schemas.scheduling import (
    DispatchRequest,
    DispatchResponse,
    QueueItemResponse,
    QueueListResponse,
    ResolveRequest,
    RetryRunResponse,
)
from coachflow.services.scheduling_orchestrator import SchedulingOrchestrator, validate_event
from coachflow.services.scheduling_queue_service import ManualQueueService, QueueError
from coachflow.services.session_service import SessionService

router = APIRouter()


# ==================== Orchestrator ====================

@router.post("/dispatch", response_model=DispatchResponse)
async def dispatch_event(
    request: DispatchRequest,
    db: DB,
    caller: InternalOrAdmin,
):
    """
    Route a scheduling event to its handler.

    Unknown events and missing payload fields are rejected with 400. A
    repeat of the same event and payload inside the idempotency window
    returns the first result without running the handler again.
    """
    error = validate_event(request.event, request.payload)
    if error:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error)

    return await SchedulingOrchestrator(db).dispatch(request.event, request.payload)


# ==================== Manual Queue ====================

@router.get("/queue", response_model=QueueListResponse)
async def list_queue(
    db: DB,
    caller: AdminCaller,
    queue_status: Optional[QueueStatus] = Query(QueueStatus.PENDING, alias="status"),
    enrollment_id: Optional[UUID] = None,
    coach_id: Optional[UUID] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Items waiting for a human to schedule them, newest first."""
    items, total = await ManualQueueService(db).get_queue(
        status=queue_status.value if queue_status else None,
        enrollment_id=enrollment_id,
        coach_id=coach_id,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return QueueListResponse(
        items=[QueueItemResponse.model_validate(item) for item in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("/queue/{queue_id}/resolve", response_model=QueueItemResponse)
async def resolve_queue_item(
    queue_id: UUID,
    request: ResolveRequest,
    db: DB,
    caller: AdminCaller,
):
    try:
        item = await ManualQueueService(db).resolve(queue_id, request.notes, resolved_by=caller.actor)
    except QueueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return QueueItemResponse.model_validate(item)


# ==================== Retry Queue ====================

@router.post("/retry-queue/process", response_model=RetryRunResponse)
async def process_retry_queue(
    db: DB,
    caller: InternalOrAdmin,
    limit: int = Query(50, ge=1, le=500),
):
    """Cron entry point: retry calendar booking for sessions that are due."""
    return await SessionService(db).process_due_retries(limit=limit)
