"""Load-balanced coach selection."""
import pytest

from coachflow.services.coach_assignment_service import CoachAssignmentService, NoCoachAvailable


async def test_least_loaded_coach_wins(db, make_coach):
    await make_coach("Meera", current_students=4)
    await make_coach("Rohan", current_students=1)
    await make_coach("Anita", current_students=1)

    coach = await CoachAssignmentService(db).select_coach()

    assert coach.name == "Anita"


async def test_skips_full_inactive_and_unavailable(db, make_coach):
    await make_coach("Full", current_students=15, max_capacity=15)
    await make_coach("Inactive", is_active=False)
    await make_coach("Away", availability_status="unavailable")
    ready = await make_coach("Ready", current_students=9)

    coach = await CoachAssignmentService(db).select_coach()

    assert coach.id == ready.id


async def test_no_coach_available(db, make_coach):
    await make_coach("Full", current_students=2, max_capacity=2)

    with pytest.raises(NoCoachAvailable):
        await CoachAssignmentService(db).select_coach()


async def test_refresh_load_counts_open_enrollments(db, make_coach, make_enrollment):
    coach = await make_coach(current_students=7)
    await make_enrollment(coach)
    await make_enrollment(coach, status="pending_start")
    await make_enrollment(coach, status="completed")

    load = await CoachAssignmentService(db).refresh_load(coach)

    assert load == 2
    assert coach.current_students == 2


async def test_backup_coach_by_enrollment_count(db, make_coach, make_enrollment):
    away = await make_coach("Away")
    busy = await make_coach("Busy")
    quiet = await make_coach("Quiet")
    for _ in range(3):
        await make_enrollment(busy)
    await make_enrollment(quiet)

    backup = await CoachAssignmentService(db).find_backup_coach(away.id)

    assert backup.id == quiet.id


async def test_no_backup_coach(db, make_coach):
    only = await make_coach("Only")

    assert await CoachAssignmentService(db).find_backup_coach(only.id) is None
