from typing import Optional, Dict, Any, List
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coachflow.models.audit_log import AuditLog


class AuditService:
    """
    Audit service for scheduling and revenue mutations.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[uuid.UUID] = None,
        actor: Optional[str] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> AuditLog:
        """
        Create an audit log entry.

        Args:
            action: The action performed (SESSION_CANCELLED, REVENUE_CALCULATED, ...)
            entity_type: Type of entity (SESSION, ENROLLMENT, COACH, ...)
            entity_id: ID of the affected entity
            actor: Who performed the action
            old_values: Previous values (for updates)
            new_values: New values (for creates/updates)
            description: Human-readable description
            request_id: Correlation id of the originating request

        Returns:
            The created AuditLog entry
        """
        audit_log = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor=actor or "system",
            old_values=old_values,
            new_values=new_values,
            description=description,
            request_id=request_id,
        )
        self.db.add(audit_log)
        await self.db.flush()
        return audit_log

    async def get_entity_history(self, entity_type: str, entity_id: uuid.UUID) -> List[AuditLog]:
        """All audit entries for one entity, oldest first."""
        result = await self.db.execute(
            select(AuditLog)
            .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.created_at)
        )
        return list(result.scalars().all())
