# Models module - importing registers every table on Base.metadata
from coachflow.models.coach import Coach, CoachAvailabilityStatus
from coachflow.models.enrollment import Enrollment, EnrollmentStatus, LeadSource
from coachflow.models.session import ScheduledSession, SessionStatus, SessionType, MOVABLE_STATUSES
from coachflow.models.revenue import (
    RevenueSplitConfig,
    EnrollmentRevenue,
    CoachPayout,
    PayoutType,
    PayoutStatus,
)
from coachflow.models.scheduling import (
    CoachAvailability,
    CoachReassignmentLog,
    SchedulingQueue,
    AdminAlert,
    QueueStatus,
)
from coachflow.models.learning_event import LearningEvent, LearningEventType
from coachflow.models.audit_log import AuditLog

__all__ = [
    "Coach",
    "CoachAvailabilityStatus",
    "Enrollment",
    "EnrollmentStatus",
    "LeadSource",
    "ScheduledSession",
    "SessionStatus",
    "SessionType",
    "MOVABLE_STATUSES",
    "RevenueSplitConfig",
    "EnrollmentRevenue",
    "CoachPayout",
    "PayoutType",
    "PayoutStatus",
    "CoachAvailability",
    "CoachReassignmentLog",
    "SchedulingQueue",
    "AdminAlert",
    "QueueStatus",
    "LearningEvent",
    "LearningEventType",
    "AuditLog",
]
