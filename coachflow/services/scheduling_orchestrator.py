"""
Scheduling Event Orchestrator

Single dispatch entry point for scheduling events coming from webhooks,
admin actions and cron. Each event is validated, deduplicated within a
short window and routed to its handler.

Result shape: {"success": bool, "event": str, "data"?: dict, "error"?: str}
"""
import logging
import time as clock
from datetime import date, time
from typing import Optional, Dict, Any, Callable, Awaitable
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from coachflow.config import settings
from coachflow.services.cache_service import CacheService, get_cache

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]

# event -> (required payload fields, message when any is missing)
EVENT_REQUIREMENTS: Dict[str, tuple] = {
    "enrollment.created": (["enrollmentId"], "enrollmentId required"),
    "enrollment.schedule_sessions": (["enrollmentId"], "enrollmentId required"),
    "enrollment.delayed_start_activated": (["enrollmentId"], "enrollmentId required"),
    "enrollment.paused": (["enrollmentId"], "enrollmentId required"),
    "enrollment.resumed": (["enrollmentId"], "enrollmentId required"),
    "coach.unavailable": (["coachId", "startDate", "endDate"], "coachId, startDate, endDate required"),
    "coach.available": (["coachId"], "coachId required"),
    "coach.return": (["coachId"], "coachId required"),
    "coach.exit": (["coachId"], "coachId required"),
    "session.reschedule": (["sessionId", "newDate", "newTime"], None),
    "session.cancel": (["sessionId"], "sessionId required"),
    "session.completed": (["sessionId"], "sessionId required"),
    "session.no_show": (["sessionId"], "sessionId required"),
}

SUPPORTED_EVENTS = list(EVENT_REQUIREMENTS)


def validate_event(event: str, payload: Dict[str, Any]) -> Optional[str]:
    """Error message for an unknown event or missing fields, else None."""
    if event not in EVENT_REQUIREMENTS:
        return f"Unknown event: {event}"
    required, message = EVENT_REQUIREMENTS[event]
    missing = [name for name in required if not payload.get(name)]
    if not missing:
        return None
    return message or f"Missing required fields: {', '.join(missing)}"


def fingerprint(payload: Dict[str, Any]) -> str:
    """Stable hash of the payload; requestId does not take part."""
    return CacheService.hash_params({k: v for k, v in payload.items() if k != "requestId"})


def _uuid(value: Any) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


def _date(value: Any) -> date:
    return value if isinstance(value, date) else date.fromisoformat(str(value))


def _time(value: Any) -> time:
    return value if isinstance(value, time) else time.fromisoformat(str(value))


class SchedulingOrchestrator:
    """
    Routes scheduling events to the services that handle them.

    Args:
        db: Request or job database session
        cache: Idempotency store (defaults to the shared cache)
        handlers: Optional overrides per event, mainly for tests
        window_seconds: Deduplication window
    """

    def __init__(
        self,
        db: Optional[AsyncSession] = None,
        cache: Optional[CacheService] = None,
        handlers: Optional[Dict[str, Handler]] = None,
        window_seconds: int = settings.IDEMPOTENCY_WINDOW_SECONDS,
    ):
        self.db = db
        self.cache = cache or get_cache()
        self.window_seconds = window_seconds
        self.handlers: Dict[str, Handler] = self._default_handlers() if db is not None else {}
        if handlers:
            self.handlers.update(handlers)

    async def dispatch(self, event: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload = dict(payload or {})
        request_id = payload.get("requestId") or str(uuid4())

        error = validate_event(event, payload)
        if error:
            logger.warning(f"[{request_id}] Rejected {event}: {error}")
            return {"success": False, "event": event, "error": error}

        key = f"{event}:{fingerprint(payload)}"
        check = await self.cache.check_idempotency(key)
        if check.is_duplicate:
            logger.info(f"[{request_id}] Duplicate {event} within window, returning cached result")
            return check.cached_result

        handler = self.handlers.get(event)
        if handler is None:
            return {"success": False, "event": event, "error": f"Unknown event: {event}"}

        started = clock.monotonic()
        logger.info(f"[{request_id}] Dispatching {event}")
        try:
            data = await handler(payload)
        except Exception as e:
            logger.exception(f"[{request_id}] {event} failed: {e}")
            if self.db is not None:
                await self.db.rollback()
            return {"success": False, "event": event, "error": getattr(e, "message", None) or str(e)}

        result: Dict[str, Any] = {"success": True, "event": event, "data": data}
        if isinstance(data, dict) and data.get("success") is False:
            result["success"] = False
            result["error"] = "; ".join(data.get("errors") or []) or "Handler reported failure"

        if result["success"]:
            # Only a committed result may short-circuit a retry
            if self.db is not None:
                await self.db.commit()
            await self.cache.set_idempotency(key, result, self.window_seconds)

        logger.info(
            f"[{request_id}] {event} done: success={result['success']} "
            f"in {(clock.monotonic() - started) * 1000:.0f}ms"
        )
        return result

    # ==================== Handlers ====================

    def _default_handlers(self) -> Dict[str, Handler]:
        # Imported here so the orchestrator can be built without a database for tests
        from coachflow.services.coach_availability_service import CoachAvailabilityService
        from coachflow.services.enrollment_service import EnrollmentService
        from coachflow.services.session_service import SessionService

        sessions = SessionService(self.db)
        enrollments = EnrollmentService(self.db, session_service=sessions)
        availability = CoachAvailabilityService(self.db, session_service=sessions)

        async def schedule(payload):
            return await enrollments.schedule_sessions(_uuid(payload["enrollmentId"]))

        async def delayed_start(payload):
            return await enrollments.activate_delayed_start(_uuid(payload["enrollmentId"]))

        async def paused(payload):
            return await enrollments.pause(
                _uuid(payload["enrollmentId"]),
                reason=payload.get("reason") or "Paused",
                pause_start=_date(payload["pauseStartDate"]) if payload.get("pauseStartDate") else None,
                pause_end=_date(payload["pauseEndDate"]) if payload.get("pauseEndDate") else None,
            )

        async def resumed(payload):
            return await enrollments.resume(_uuid(payload["enrollmentId"]))

        async def unavailable(payload):
            return await availability.process_unavailability(
                _uuid(payload["coachId"]),
                _date(payload["startDate"]),
                _date(payload["endDate"]),
                payload.get("reason") or "Unavailable",
            )

        async def coach_return(payload):
            return await availability.process_coach_return(_uuid(payload["coachId"]))

        async def coach_exit(payload):
            return await availability.process_coach_exit(
                _uuid(payload["coachId"]), reason=payload.get("reason") or "Coach exit"
            )

        async def reschedule(payload):
            return await sessions.reschedule_session(
                _uuid(payload["sessionId"]),
                _date(payload["newDate"]),
                _time(payload["newTime"]),
                reason=payload.get("reason") or "Rescheduled",
                rescheduled_by=payload.get("rescheduledBy") or "system",
            )

        async def cancel(payload):
            return await sessions.cancel_session(
                _uuid(payload["sessionId"]),
                reason=payload.get("reason") or "Cancelled",
                cancelled_by=payload.get("cancelledBy") or "system",
            )

        async def completed(payload):
            session = await sessions.get_session(_uuid(payload["sessionId"]))
            await enrollments.reset_no_show_streak(session.enrollment_id)
            return {"session_id": str(session.id)}

        async def no_show(payload):
            return await enrollments.record_no_show(_uuid(payload["sessionId"]))

        return {
            "enrollment.created": schedule,
            "enrollment.schedule_sessions": schedule,
            "enrollment.delayed_start_activated": delayed_start,
            "enrollment.paused": paused,
            "enrollment.resumed": resumed,
            "coach.unavailable": unavailable,
            "coach.available": coach_return,
            "coach.return": coach_return,
            "coach.exit": coach_exit,
            "session.reschedule": reschedule,
            "session.cancel": cancel,
            "session.completed": completed,
            "session.no_show": no_show,
        }
