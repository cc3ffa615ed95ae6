"""Background retry-queue job."""
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from coachflow.config import Settings
from coachflow.jobs import scheduling_jobs
from coachflow.models.session import ScheduledSession


def use_session_factory(monkeypatch, session_factory):
    @asynccontextmanager
    async def fake_db_session():
        async with session_factory() as session:
            yield session
            await session.commit()

    monkeypatch.setattr(scheduling_jobs, "get_db_session", fake_db_session)


async def test_job_books_due_sessions(monkeypatch, session_factory, db, make_coach, make_enrollment, make_session):
    use_session_factory(monkeypatch, session_factory)
    session = await make_session(
        await make_enrollment(await make_coach()),
        status="pending_scheduling",
        next_retry_at=datetime.now(timezone.utc) - timedelta(minutes=1),
    )
    await db.commit()

    summary = await scheduling_jobs.process_retry_queue()

    assert summary["processed"] == 1
    assert summary["succeeded"] == 1
    db.expire_all()
    row = (await db.execute(select(ScheduledSession).where(ScheduledSession.id == session.id))).scalar_one()
    assert row.status == "scheduled"


async def test_job_reports_failure(monkeypatch):
    @asynccontextmanager
    async def broken_db_session():
        raise RuntimeError("database unavailable")
        yield

    monkeypatch.setattr(scheduling_jobs, "get_db_session", broken_db_session)

    summary = await scheduling_jobs.process_retry_queue()

    assert summary["processed"] == 0
    assert summary["error"] == "database unavailable"


def test_in_process_scheduler_is_off_by_default():
    assert Settings.model_fields["SCHEDULER_ENABLED"].default is False
