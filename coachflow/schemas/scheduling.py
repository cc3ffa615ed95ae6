"""Pydantic schemas for the scheduling orchestrator and manual queue."""
from datetime import datetime
from typing import Optional, List, Any, Dict
from uuid import UUID
from pydantic import BaseModel, Field

from coachflow.schemas.base import BaseResponseSchema, BaseCreateSchema


# ==================== Dispatch ====================

class DispatchRequest(BaseCreateSchema):
    """
    An orchestrator event.

    Payload keys are camelCase as sent by the webhook and admin callers,
    e.g. {"enrollmentId": "...", "requestId": "..."}.
    """
    event: str = Field(..., min_length=1, max_length=100)
    payload: Dict[str, Any] = Field(default_factory=dict)


class DispatchResponse(BaseModel):
    success: bool
    event: str
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


# ==================== Manual Queue ====================

class QueueItemResponse(BaseResponseSchema):
    id: UUID
    session_id: Optional[UUID] = None
    enrollment_id: Optional[UUID] = None
    child_id: Optional[UUID] = None
    coach_id: Optional[UUID] = None
    session_type: Optional[str] = None
    week_number: Optional[int] = None
    reason: str
    attempts_made: int = 0
    status: str
    resolution_notes: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime


class QueueListResponse(BaseModel):
    items: List[QueueItemResponse]
    total: int
    limit: int
    offset: int


class ResolveRequest(BaseCreateSchema):
    notes: str = Field(..., min_length=1)


# ==================== Retry Queue ====================

class RetryRunResponse(BaseModel):
    processed: int
    succeeded: int
    failed: int
    skipped: int
