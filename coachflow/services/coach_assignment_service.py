"""
Coach Assignment Service

Picks the coaching coach for a new enrollment using load balancing:
- Only active, available coaches below their capacity qualify
- Least-loaded coach first (ties: name, then id)

The load counter (current_students) is derived from enrollments and is
refreshed only after the enrollment's sessions exist.
"""
import logging
from typing import Optional, Dict, List
from uuid import UUID

from sqlalchemy import select, and_, func
from sqlalchemy.ext.asyncio import AsyncSession

from coachflow.models.coach import Coach, CoachAvailabilityStatus
from coachflow.models.enrollment import Enrollment, EnrollmentStatus

logger = logging.getLogger(__name__)

# Enrollments that occupy a coach slot
LOAD_STATUSES = [EnrollmentStatus.ACTIVE.value, EnrollmentStatus.PENDING_START.value]


class CoachAssignmentError(Exception):
    """Custom exception for coach assignment errors."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NoCoachAvailable(CoachAssignmentError):
    pass


class CoachAssignmentService:
    """Load-balanced coach selection."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_available_coaches(self, exclude_ids: Optional[List[UUID]] = None) -> List[Coach]:
        """Active coaches with spare capacity, least loaded first."""
        query = select(Coach).where(
            and_(
                Coach.is_active == True,
                Coach.availability_status == CoachAvailabilityStatus.AVAILABLE.value,
                Coach.current_students < Coach.max_capacity,
            )
        )
        if exclude_ids:
            query = query.where(Coach.id.not_in(exclude_ids))

        result = await self.db.execute(
            query.order_by(Coach.current_students, Coach.name, Coach.id)
        )
        return list(result.scalars().all())

    async def select_coach(self, exclude_ids: Optional[List[UUID]] = None) -> Coach:
        coaches = await self.get_available_coaches(exclude_ids)
        if not coaches:
            logger.warning("No coach with spare capacity")
            raise NoCoachAvailable("No coach available for assignment")

        coach = coaches[0]
        logger.info(f"Selected coach {coach.name} ({coach.current_students}/{coach.max_capacity})")
        return coach

    async def count_active_enrollments(self, coach_id: UUID) -> int:
        result = await self.db.execute(
            select(func.count(Enrollment.id)).where(
                Enrollment.coach_id == coach_id,
                Enrollment.status.in_(LOAD_STATUSES),
            )
        )
        return result.scalar() or 0

    async def refresh_load(self, coach: Coach) -> int:
        """Recompute current_students from the coach's open enrollments."""
        coach.current_students = await self.count_active_enrollments(coach.id)
        await self.db.flush()
        return coach.current_students

    async def confirm_assignment(self, coach: Coach, enrollment: Enrollment) -> Coach:
        """Bind the coach to the enrollment and refresh the load counter."""
        enrollment.coach_id = coach.id
        await self.db.flush()
        await self.refresh_load(coach)
        logger.info(f"Coach {coach.id} confirmed for enrollment {enrollment.id}")
        return coach

    async def find_backup_coach(self, exclude_coach_id: UUID) -> Optional[Coach]:
        """Least-busy other coach by active enrollment count."""
        coaches = await self.get_available_coaches(exclude_ids=[exclude_coach_id])
        if not coaches:
            return None

        loads = []
        for coach in coaches:
            loads.append((await self.count_active_enrollments(coach.id), coach.name, str(coach.id), coach))
        loads.sort(key=lambda item: item[:3])
        return loads[0][3]
