"""Enrollment activation schemas."""
from typing import Optional, List, Any, Dict
from uuid import UUID
from pydantic import BaseModel

from coachflow.schemas.revenue import RevenueResponse


class ScheduleSummary(BaseModel):
    success: bool
    sessions_created: int
    manual_required: int
    sessions: List[Dict[str, Any]] = []
    errors: List[str] = []


class ActivationResponse(BaseModel):
    enrollment_id: UUID
    coach_id: UUID
    status: str
    schedule: ScheduleSummary
    revenue: Optional[RevenueResponse] = None
