# Services module
from coachflow.services.audit_service import AuditService
from coachflow.services.cache_service import CacheService, get_cache
from coachflow.services.coach_assignment_service import CoachAssignmentService
from coachflow.services.revenue_service import RevenueService
from coachflow.services.payout_ledger_service import PayoutLedgerService

# Scheduling Services
from coachflow.services.session_service import SessionService
from coachflow.services.enrollment_scheduler_service import EnrollmentSchedulerService
from coachflow.services.enrollment_service import EnrollmentService
from coachflow.services.coach_availability_service import CoachAvailabilityService
from coachflow.services.scheduling_queue_service import RetryQueueService, ManualQueueService
from coachflow.services.session_completion_service import SessionCompletionService
from coachflow.services.scheduling_orchestrator import SchedulingOrchestrator

__all__ = [
    "AuditService",
    "CacheService",
    "get_cache",
    "CoachAssignmentService",
    "RevenueService",
    "PayoutLedgerService",
    # Scheduling
    "SessionService",
    "EnrollmentSchedulerService",
    "EnrollmentService",
    "CoachAvailabilityService",
    "RetryQueueService",
    "ManualQueueService",
    "SessionCompletionService",
    "SchedulingOrchestrator",
]
