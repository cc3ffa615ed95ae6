"""Orchestrator validation, routing and idempotent replay."""
from unittest.mock import AsyncMock

import pytest

from coachflow.services.scheduling_orchestrator import (
    SchedulingOrchestrator,
    SUPPORTED_EVENTS,
    fingerprint,
    validate_event,
)


@pytest.mark.parametrize(
    "event,payload,message",
    [
        ("enrollment.created", {}, "enrollmentId required"),
        ("coach.unavailable", {"coachId": "c1"}, "coachId, startDate, endDate required"),
        ("session.cancel", {}, "sessionId required"),
        ("session.reschedule", {"sessionId": "s1"}, "Missing required fields: newDate, newTime"),
        ("payment.captured", {}, "Unknown event: payment.captured"),
    ],
)
def test_validation_messages(event, payload, message):
    assert validate_event(event, payload) == message


def test_thirteen_supported_events():
    assert len(SUPPORTED_EVENTS) == 13
    assert "coach.return" in SUPPORTED_EVENTS


def test_fingerprint_ignores_request_id_and_key_order():
    a = fingerprint({"sessionId": "s1", "reason": "sick", "requestId": "r-1"})
    b = fingerprint({"reason": "sick", "sessionId": "s1", "requestId": "r-2"})
    c = fingerprint({"sessionId": "s1", "reason": "travel"})

    assert a == b
    assert a != c


async def test_unknown_event_is_not_dispatched(cache):
    handler = AsyncMock()
    orchestrator = SchedulingOrchestrator(cache=cache, handlers={"session.cancel": handler})

    result = await orchestrator.dispatch("payment.captured", {"sessionId": "s1"})

    assert result == {"success": False, "event": "payment.captured", "error": "Unknown event: payment.captured"}
    handler.assert_not_called()


async def test_duplicate_within_window_returns_cached_result(cache):
    handler = AsyncMock(return_value={"success": True, "session_id": "s1"})
    orchestrator = SchedulingOrchestrator(cache=cache, handlers={"session.cancel": handler})

    first = await orchestrator.dispatch("session.cancel", {"sessionId": "s1", "requestId": "a"})
    second = await orchestrator.dispatch("session.cancel", {"sessionId": "s1", "requestId": "b"})

    assert first["success"] is True
    assert second == first
    assert handler.await_count == 1


async def test_different_payloads_are_not_deduplicated(cache):
    handler = AsyncMock(return_value={"success": True})
    orchestrator = SchedulingOrchestrator(cache=cache, handlers={"session.cancel": handler})

    await orchestrator.dispatch("session.cancel", {"sessionId": "s1"})
    await orchestrator.dispatch("session.cancel", {"sessionId": "s2"})

    assert handler.await_count == 2


async def test_failures_are_not_cached(cache):
    handler = AsyncMock(side_effect=[RuntimeError("calendar down"), {"success": True}])
    orchestrator = SchedulingOrchestrator(cache=cache, handlers={"session.cancel": handler})

    failed = await orchestrator.dispatch("session.cancel", {"sessionId": "s1"})
    retried = await orchestrator.dispatch("session.cancel", {"sessionId": "s1"})

    assert failed == {"success": False, "event": "session.cancel", "error": "calendar down"}
    assert retried["success"] is True
    assert handler.await_count == 2


async def test_handler_reported_failure_joins_errors(cache):
    handler = AsyncMock(return_value={"success": False, "errors": ["Session a: x", "Session b: y"]})
    orchestrator = SchedulingOrchestrator(cache=cache, handlers={"coach.exit": handler})

    result = await orchestrator.dispatch("coach.exit", {"coachId": "c1"})

    assert result["success"] is False
    assert result["error"] == "Session a: x; Session b: y"
    assert result["data"]["errors"] == ["Session a: x", "Session b: y"]


async def test_handler_receives_payload(cache):
    handler = AsyncMock(return_value={"success": True})
    orchestrator = SchedulingOrchestrator(cache=cache, handlers={"coach.unavailable": handler})
    payload = {"coachId": "c1", "startDate": "2031-03-03", "endDate": "2031-03-05"}

    await orchestrator.dispatch("coach.unavailable", payload)

    handler.assert_awaited_once_with(payload)


async def test_default_handlers_cancel_session(db, cache, make_coach, make_enrollment, make_session):
    coach = await make_coach()
    enrollment = await make_enrollment(coach)
    session = await make_session(enrollment)
    orchestrator = SchedulingOrchestrator(db, cache=cache)

    result = await orchestrator.dispatch(
        "session.cancel", {"sessionId": str(session.id), "reason": "Sick", "cancelledBy": "parent"}
    )

    assert result["success"] is True
    assert result["data"]["already_cancelled"] is False
    assert session.status == "cancelled"
    assert session.notes == "Cancelled by parent: Sick"


async def test_default_handler_error_becomes_failure_result(db, cache):
    orchestrator = SchedulingOrchestrator(db, cache=cache)

    result = await orchestrator.dispatch("session.cancel", {"sessionId": "6d1f7a52-0b7e-4c1e-9a55-3c6f0f2b9a10"})

    assert result == {"success": False, "event": "session.cancel", "error": "Session not found"}


async def test_missing_session_id_rejected_by_dispatch(cache):
    handler = AsyncMock()
    orchestrator = SchedulingOrchestrator(cache=cache, handlers={"session.cancel": handler})

    result = await orchestrator.dispatch("session.cancel", {"requestId": "x"})

    assert result == {"success": False, "event": "session.cancel", "error": "sessionId required"}
    handler.assert_not_called()


async def test_result_not_cached_when_commit_fails(cache):
    handler = AsyncMock(return_value={"success": True})
    orchestrator = SchedulingOrchestrator(cache=cache, handlers={"session.cancel": handler})
    orchestrator.db = AsyncMock()
    orchestrator.db.commit.side_effect = RuntimeError("connection lost")

    with pytest.raises(RuntimeError):
        await orchestrator.dispatch("session.cancel", {"sessionId": "s1"})

    orchestrator.db.commit.side_effect = None
    await orchestrator.dispatch("session.cancel", {"sessionId": "s1"})

    assert handler.await_count == 2
    orchestrator.db.commit.assert_awaited()
