"""Coach absence handling by duration, return from leave and exit."""
from datetime import date, time, timedelta

import pytest
from sqlalchemy import select

from coachflow.models.scheduling import CoachAvailability, CoachReassignmentLog, SchedulingQueue
from coachflow.services.coach_availability_service import CoachAvailabilityService
from coachflow.services.session_service import SessionError

from tests.conftest import PROGRAM_START


@pytest.fixture
def availability(db, session_service):
    return CoachAvailabilityService(db, session_service=session_service)


async def two_sessions(make_enrollment, make_session, coach):
    enrollment = await make_enrollment(coach)
    first = await make_session(enrollment, number=1, scheduled_time=time(10, 0))
    second = await make_session(enrollment, number=2, scheduled_date=PROGRAM_START + timedelta(days=2))
    return enrollment, first, second


async def test_short_absence_reschedules_after_return(
    db, availability, make_coach, make_enrollment, make_session
):
    coach = await make_coach()
    await make_coach("Backup")
    _, first, second = await two_sessions(make_enrollment, make_session, coach)
    end = PROGRAM_START + timedelta(days=3)

    result = await availability.process_unavailability(coach.id, PROGRAM_START, end, "Family emergency")

    assert result["action"] == "rescheduled"
    assert result["sessions_affected"] == 2
    assert first.scheduled_date == end + timedelta(days=1)
    assert second.scheduled_date == end + timedelta(days=2)
    assert first.coach_id == coach.id
    assert (await db.execute(select(CoachReassignmentLog))).scalars().all() == []
    record = (await db.execute(select(CoachAvailability))).scalars().one()
    assert record.resolution == "rescheduled"
    assert record.sessions_affected == 2


async def test_medium_absence_uses_backup_temporarily(
    db, availability, make_coach, make_enrollment, make_session
):
    coach = await make_coach()
    backup = await make_coach("Backup")
    enrollment, first, second = await two_sessions(make_enrollment, make_session, coach)

    result = await availability.process_unavailability(
        coach.id, PROGRAM_START, PROGRAM_START + timedelta(days=14), "Medical leave"
    )

    assert result["action"] == "backup_assigned"
    assert result["sessions_affected"] == 2
    assert first.coach_id == backup.id
    assert second.coach_id == backup.id
    assert enrollment.coach_id == coach.id
    log = (await db.execute(select(CoachReassignmentLog))).scalars().one()
    assert log.is_temporary is True
    assert log.reason == "Temp backup: Medical leave"


async def test_long_absence_reassigns_permanently(
    db, availability, make_coach, make_enrollment, make_session
):
    coach = await make_coach()
    backup = await make_coach("Backup")
    enrollment, first, _ = await two_sessions(make_enrollment, make_session, coach)

    result = await availability.process_unavailability(
        coach.id, PROGRAM_START, PROGRAM_START + timedelta(days=30), "Sabbatical"
    )

    assert result["action"] == "permanently_reassigned"
    assert result["sessions_affected"] == 2
    assert enrollment.coach_id == backup.id
    assert first.coach_id == backup.id
    assert backup.current_students == 1
    assert coach.current_students == 0


async def test_no_backup_escalates(db, availability, make_coach, make_enrollment, make_session):
    coach = await make_coach()
    await two_sessions(make_enrollment, make_session, coach)

    result = await availability.process_unavailability(
        coach.id, PROGRAM_START, PROGRAM_START + timedelta(days=10), "Leave"
    )

    assert result["action"] == "escalated"
    assert result["success"] is False
    queue = (await db.execute(select(SchedulingQueue))).scalars().all()
    assert len(queue) == 2
    assert queue[0].reason == "No backup coach available. Original coach unavailable: Leave"


async def test_end_before_start_rejected(availability, make_coach):
    coach = await make_coach()

    with pytest.raises(SessionError):
        await availability.process_unavailability(coach.id, PROGRAM_START, PROGRAM_START - timedelta(days=1))


async def test_coach_return_takes_sessions_back(
    db, availability, make_coach, make_enrollment, make_session
):
    coach = await make_coach()
    backup = await make_coach("Backup")
    _, first, second = await two_sessions(make_enrollment, make_session, coach)
    await availability.process_unavailability(coach.id, PROGRAM_START, PROGRAM_START + timedelta(days=14))

    result = await availability.process_coach_return(coach.id)

    assert result["sessions_transferred_back"] == 2
    assert first.coach_id == coach.id
    assert second.coach_id == coach.id
    assert coach.availability_status == "available"
    temporary = (await db.execute(
        select(CoachReassignmentLog).where(CoachReassignmentLog.is_temporary == True)
    )).scalars().one()
    assert temporary.actual_end_date == date.today()
    record = (await db.execute(select(CoachAvailability))).scalars().one()
    assert record.is_active is False


async def test_coach_exit_moves_enrollments(db, availability, make_coach, make_enrollment, make_session):
    coach = await make_coach()
    replacement = await make_coach("Replacement")
    with_sessions, first, _ = await two_sessions(make_enrollment, make_session, coach)
    without_sessions = await make_enrollment(coach, child_name="Kabir")

    result = await availability.process_coach_exit(coach.id, "Moved abroad")

    assert result["enrollments_reassigned"] == 2
    assert with_sessions.coach_id == replacement.id
    assert without_sessions.coach_id == replacement.id
    assert first.coach_id == replacement.id
    assert coach.is_active is False
    assert coach.availability_status == "exited"
    assert replacement.current_students == 2
