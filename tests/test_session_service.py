"""Session manager: cancel, reschedule, reassignment and calendar retry."""
import uuid
from datetime import datetime, time, timedelta, timezone

import pytest
from sqlalchemy import select

from coachflow.models.scheduling import CoachReassignmentLog, SchedulingQueue
from coachflow.services.audit_service import AuditService
from coachflow.services.scheduling_queue_service import ManualQueueService, RetryQueueService
from coachflow.services.session_service import (
    InvalidSessionState,
    ResourceNotFound,
    SessionNotFound,
    SlotUnavailable,
)

from tests.conftest import PROGRAM_START


# ==================== Cancel ====================

async def test_cancel_session(session_service, calendar, make_coach, make_enrollment, make_session):
    coach = await make_coach()
    enrollment = await make_enrollment(coach)
    session = await make_session(enrollment, google_event_id="evt-x")

    result = await session_service.cancel_session(session.id, reason="Sick", cancelled_by="parent")

    assert result["already_cancelled"] is False
    assert session.status == "cancelled"
    assert session.notes == "Cancelled by parent: Sick"
    assert session.cancelled_at is not None
    assert calendar.cancelled == ["evt-x"]


async def test_cancel_twice_is_noop(session_service, calendar, make_coach, make_enrollment, make_session):
    coach = await make_coach()
    session = await make_session(await make_enrollment(coach), google_event_id="evt-x")

    await session_service.cancel_session(session.id)
    again = await session_service.cancel_session(session.id)

    assert again["already_cancelled"] is True
    assert calendar.cancelled == ["evt-x"]


async def test_cannot_cancel_completed(session_service, make_coach, make_enrollment, make_session):
    coach = await make_coach()
    session = await make_session(await make_enrollment(coach), status="completed")

    with pytest.raises(InvalidSessionState):
        await session_service.cancel_session(session.id)


async def test_cancel_unknown_session(session_service):
    with pytest.raises(SessionNotFound):
        await session_service.cancel_session(uuid.uuid4())


# ==================== Reschedule ====================

async def test_reschedule_updates_calendar(session_service, calendar, make_coach, make_enrollment, make_session):
    coach = await make_coach()
    session = await make_session(await make_enrollment(coach), google_event_id="evt-x")
    new_date = PROGRAM_START + timedelta(days=2)

    result = await session_service.reschedule_session(session.id, new_date, time(17, 0), reason="Exams")

    assert result["calendar_updated"] is True
    assert session.scheduled_date == new_date
    assert session.scheduled_time == time(17, 0)
    assert session.status == "rescheduled"
    assert session.reschedule_count == 1
    assert calendar.updated[0][0] == "evt-x"


async def test_reschedule_into_busy_slot(session_service, make_coach, make_enrollment, make_session):
    coach = await make_coach()
    enrollment = await make_enrollment(coach)
    await make_session(enrollment, number=1, scheduled_time=time(10, 0))
    second = await make_session(enrollment, number=2, scheduled_time=time(12, 0))

    with pytest.raises(SlotUnavailable):
        await session_service.reschedule_session(second.id, PROGRAM_START, time(10, 30))

    assert second.scheduled_time == time(12, 0)


async def test_reschedule_books_unbooked_session(session_service, calendar, make_coach, make_enrollment, make_session):
    coach = await make_coach()
    session = await make_session(await make_enrollment(coach), status="pending_scheduling")

    result = await session_service.reschedule_session(session.id, PROGRAM_START, time(18, 0))

    assert result["calendar_updated"] is True
    assert session.status == "scheduled"
    assert session.meet_link == "https://meet.google.com/evt-1"
    assert calendar.create_calls == 1


async def test_cannot_reschedule_cancelled(session_service, make_coach, make_enrollment, make_session):
    coach = await make_coach()
    session = await make_session(await make_enrollment(coach), status="cancelled")

    with pytest.raises(InvalidSessionState):
        await session_service.reschedule_session(session.id, PROGRAM_START, time(9, 0))


# ==================== Reassignment ====================

async def test_reassign_single_session(db, session_service, make_coach, make_enrollment, make_session):
    old, new = await make_coach(), await make_coach()
    session = await make_session(await make_enrollment(old))

    await session_service.reassign_coach(session.id, new.id, "Coach request")

    assert session.coach_id == new.id
    logs = (await db.execute(select(CoachReassignmentLog))).scalars().all()
    assert len(logs) == 1
    assert logs[0].original_coach_id == old.id
    assert logs[0].sessions_moved == 1


async def test_reassign_to_inactive_coach(session_service, make_coach, make_enrollment, make_session):
    old = await make_coach()
    inactive = await make_coach(is_active=False)
    session = await make_session(await make_enrollment(old))

    with pytest.raises(ResourceNotFound):
        await session_service.reassign_coach(session.id, inactive.id, "Coach request")


async def test_bulk_reassign_permanent(db, session_service, make_coach, make_enrollment, make_session):
    old, new = await make_coach(), await make_coach()
    first = await make_enrollment(old, child_name="Aarav")
    second = await make_enrollment(old, child_name="Diya")
    await make_session(first, number=1)
    await make_session(first, number=2, scheduled_time=time(11, 0))
    await make_session(first, number=3, status="completed")
    await make_session(second, number=1, scheduled_time=time(12, 0))

    result = await session_service.bulk_reassign(old.id, new.id, "Coach exit")

    assert result["success"] is True
    assert result["sessions_reassigned"] == 3
    assert result["enrollments_affected"] == 2
    assert first.coach_id == new.id
    assert second.coach_id == new.id
    logs = (await db.execute(select(CoachReassignmentLog))).scalars().all()
    assert sorted(log.sessions_moved for log in logs) == [1, 2]
    assert all(not log.is_temporary for log in logs)


async def test_bulk_reassign_temporary_keeps_enrollment_coach(
    db, session_service, make_coach, make_enrollment, make_session
):
    old, backup = await make_coach(), await make_coach()
    enrollment = await make_enrollment(old)
    inside = await make_session(enrollment, number=1)
    outside = await make_session(enrollment, number=2, scheduled_date=PROGRAM_START + timedelta(days=30))

    result = await session_service.bulk_reassign(
        old.id, backup.id, "Leave",
        start_date=PROGRAM_START, end_date=PROGRAM_START + timedelta(days=10), is_temporary=True,
    )

    assert result["sessions_reassigned"] == 1
    assert inside.coach_id == backup.id
    assert outside.coach_id == old.id
    assert enrollment.coach_id == old.id
    log = (await db.execute(select(CoachReassignmentLog))).scalars().one()
    assert log.is_temporary is True
    assert log.expected_end_date == PROGRAM_START + timedelta(days=10)


# ==================== Retry queue ====================

async def test_retry_backoff_then_escalation(db, notifier, make_coach, make_enrollment, make_session):
    coach = await make_coach()
    session = await make_session(await make_enrollment(coach), status="pending_scheduling")
    retry = RetryQueueService(db, ManualQueueService(db, notifier))

    first = await retry.enqueue(session, "Calendar API error 503")
    assert first["action"] == "retried"
    assert session.next_retry_at <= datetime.now(timezone.utc)

    second = await retry.enqueue(session, "Calendar API error 503")
    assert second["action"] == "retried"
    assert session.next_retry_at > datetime.now(timezone.utc) + timedelta(minutes=55)

    await retry.enqueue(session, "Calendar API error 503")
    await retry.enqueue(session, "Calendar API error 503")
    assert session.scheduling_attempts == 4

    escalated = await retry.enqueue(session, "Calendar API error 503")
    assert escalated["action"] == "escalated"
    assert session.next_retry_at is None

    item = (await db.execute(select(SchedulingQueue))).scalars().one()
    assert item.reason == "Auto-scheduling failed after 4 attempts: Calendar API error 503"
    assert item.attempts_made == 5


async def test_manual_queue_keeps_one_open_item_per_session(db, notifier, make_coach, make_enrollment, make_session):
    coach = await make_coach()
    session = await make_session(await make_enrollment(coach), status="pending_scheduling")
    queue = ManualQueueService(db, notifier)

    first = await queue.escalate("No slot", session=session)
    second = await queue.escalate("Still no slot", session=session)

    assert first.id == second.id
    resolved = await queue.resolve(first.id, "Booked by phone", "ops@example.com")
    assert resolved.status == "resolved"
    items, total = await queue.get_queue(status="resolved")
    assert total == 1
    assert items[0].resolution_notes == "Booked by phone"


async def test_process_due_retries(session_service, calendar, make_coach, make_enrollment, make_session):
    coach = await make_coach()
    enrollment = await make_enrollment(coach)
    due = await make_session(
        enrollment, number=1, status="pending_scheduling",
        next_retry_at=datetime.now(timezone.utc) - timedelta(minutes=5),
    )
    later = await make_session(
        enrollment, number=2, status="pending_scheduling", scheduled_time=time(12, 0),
        next_retry_at=datetime.now(timezone.utc) + timedelta(hours=6),
    )

    summary = await session_service.process_due_retries()

    assert summary == {"processed": 1, "succeeded": 1, "failed": 0, "skipped": 0}
    assert due.status == "scheduled"
    assert due.next_retry_at is None
    assert later.status == "pending_scheduling"
    assert calendar.create_calls == 1


async def test_cancel_is_audited(db, session_service, make_coach, make_enrollment, make_session):
    session = await make_session(await make_enrollment(await make_coach()))
    await session_service.cancel_session(session.id, reason="Holiday", cancelled_by="admin:ops")

    history = await AuditService(db).get_entity_history("SESSION", session.id)

    assert [entry.action for entry in history] == ["SESSION_CANCELLED"]
    assert history[0].actor == "admin:ops"
    assert history[0].old_values == {"status": "scheduled"}
