import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from coachflow.database import Base
from coachflow.db_types import UUIDType, JSONType


class LearningEventType(str, Enum):
    """Kinds of learning events captured for a child."""
    SESSION = "session"
    MILESTONE = "milestone"
    HOMEWORK = "homework"


class LearningEvent(Base):
    """
    Structured record of something that happened in a child's learning.

    `content_for_embedding` is the text sent to the embedding service;
    `embedding` is filled in once that call succeeds.
    """
    __tablename__ = "learning_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    child_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False, index=True)
    coach_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("coaches.id", ondelete="SET NULL"),
        nullable=True
    )
    session_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("scheduled_sessions.id", ondelete="SET NULL"),
        nullable=True
    )
    event_type: Mapped[str] = mapped_column(String(30), nullable=False)
    event_data: Mapped[dict] = mapped_column(JSONType, nullable=False)
    content_for_embedding: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    embedding: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("idx_learning_events_child_type", "child_id", "event_type"),
    )
