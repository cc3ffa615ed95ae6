"""Session completion schemas."""
from typing import Optional, List
from uuid import UUID
from pydantic import BaseModel, Field

from coachflow.schemas.base import BaseCreateSchema


class SessionCompleteRequest(BaseCreateSchema):
    focus_area: str
    progress_rating: str
    engagement_level: str = "medium"
    skills_worked_on: List[str] = Field(default_factory=list)
    coach_notes: Optional[str] = Field(None, max_length=5000)
    breakthrough_moment: Optional[str] = None
    concerns: Optional[str] = None
    homework_assigned: bool = False
    homework_description: Optional[str] = None
    coach_id: Optional[UUID] = Field(None, description="Completing coach; must own the session when given")


class SessionCompleteResponse(BaseModel):
    session_id: UUID
    status: str
    learning_events: int
    embedding_generated: bool
    program_completed: bool
