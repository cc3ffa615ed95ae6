"""
Shared fixtures: in-memory SQLite database, fake calendar, factories.

Environment overrides are applied before coachflow.config is imported so
the settings singleton never points at a real database or starts the
background scheduler.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("INTERNAL_API_KEY", "test-internal-key")
os.environ.setdefault("GOOGLE_CALENDAR_ENABLED", "false")
os.environ.setdefault("EMBEDDING_API_URL", "")

import uuid
from datetime import date, time
from decimal import Decimal
from typing import Dict, Any, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from coachflow import models  # noqa: F401
from coachflow.database import Base, custom_json_dumps
from coachflow.models.coach import Coach
from coachflow.models.enrollment import Enrollment, EnrollmentStatus
from coachflow.models.session import ScheduledSession, SessionStatus, SessionType
from coachflow.services.cache_service import CacheService, InMemoryCache
from coachflow.services.calendar_service import CalendarAdapter, CalendarEventResult
from coachflow.services.notification_service import NotificationService
from coachflow.services.recording_bot_service import NullRecordingBotAdapter
from coachflow.services.session_service import SessionService


# A Monday well in the future so every session is "upcoming"
PROGRAM_START = date(2031, 3, 3)


class FakeCalendar(CalendarAdapter):
    """Records calls; `fail_on` lists 1-based create_event call numbers that fail."""

    def __init__(self, fail_on: Optional[List[int]] = None, fail_all: bool = False):
        self.fail_on = set(fail_on or [])
        self.fail_all = fail_all
        self.create_calls = 0
        self.created: List[Dict[str, Any]] = []
        self.updated: List[tuple] = []
        self.cancelled: List[str] = []

    async def create_event(self, title, description, start, end, attendees, organizer_email=None):
        self.create_calls += 1
        if self.fail_all or self.create_calls in self.fail_on:
            return CalendarEventResult(success=False, error="Calendar API error 503")
        event_id = f"evt-{self.create_calls}"
        self.created.append({"event_id": event_id, "title": title, "start": start, "attendees": attendees})
        return CalendarEventResult(
            success=True,
            event_id=event_id,
            meeting_link=f"https://meet.google.com/{event_id}",
        )

    async def update_event(self, event_id, changes):
        self.updated.append((event_id, changes))
        return CalendarEventResult(success=True, event_id=event_id)

    async def cancel_event(self, event_id):
        self.cancelled.append(event_id)
        return CalendarEventResult(success=True, event_id=event_id)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        json_serializer=custom_json_dumps,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def notifier():
    return NotificationService(admin_email="ops@example.com")


@pytest.fixture
def session_service(db, calendar, notifier):
    return SessionService(db, calendar=calendar, bot=NullRecordingBotAdapter(), notifier=notifier)


@pytest.fixture
def cache():
    return CacheService(InMemoryCache(), namespace="test")


# ==================== Factories ====================

@pytest.fixture
def make_coach(db):
    counter = {"n": 0}

    async def _make(name: Optional[str] = None, **kwargs) -> Coach:
        counter["n"] += 1
        n = counter["n"]
        coach = Coach(
            name=name or f"Coach {n:02d}",
            email=kwargs.pop("email", f"coach{n}@example.com"),
            is_active=kwargs.pop("is_active", True),
            availability_status=kwargs.pop("availability_status", "available"),
            max_capacity=kwargs.pop("max_capacity", 15),
            current_students=kwargs.pop("current_students", 0),
            fy_opening_earnings=kwargs.pop("fy_opening_earnings", Decimal("0")),
            tds_cumulative_fy=Decimal("0"),
            **kwargs,
        )
        db.add(coach)
        await db.flush()
        return coach

    return _make


@pytest.fixture
def make_enrollment(db):
    async def _make(coach: Optional[Coach] = None, **kwargs) -> Enrollment:
        enrollment = Enrollment(
            child_id=kwargs.pop("child_id", uuid.uuid4()),
            child_name=kwargs.pop("child_name", "Aarav"),
            parent_name=kwargs.pop("parent_name", "Priya"),
            parent_email=kwargs.pop("parent_email", "parent@example.com"),
            parent_phone=kwargs.pop("parent_phone", "+919800000000"),
            plan_slug=kwargs.pop("plan_slug", "full"),
            total_amount=kwargs.pop("total_amount", Decimal("5999")),
            program_start=kwargs.pop("program_start", PROGRAM_START),
            preferred_time_bucket=kwargs.pop("preferred_time_bucket", "any"),
            lead_source=kwargs.pop("lead_source", "yestoryd"),
            coach_id=coach.id if coach else None,
            status=kwargs.pop("status", EnrollmentStatus.ACTIVE.value),
            consecutive_no_shows=0,
            total_no_shows=0,
            is_at_risk=False,
            **kwargs,
        )
        db.add(enrollment)
        await db.flush()
        return enrollment

    return _make


@pytest.fixture
def make_session(db):
    async def _make(enrollment: Enrollment, number: int = 1, **kwargs) -> ScheduledSession:
        session = ScheduledSession(
            enrollment_id=enrollment.id,
            child_id=enrollment.child_id,
            coach_id=kwargs.pop("coach_id", enrollment.coach_id),
            session_number=number,
            week_number=kwargs.pop("week_number", number),
            session_type=kwargs.pop("session_type", SessionType.COACHING.value),
            session_title=kwargs.pop("session_title", f"Coaching {number}"),
            scheduled_date=kwargs.pop("scheduled_date", PROGRAM_START),
            scheduled_time=kwargs.pop("scheduled_time", time(10, 0)),
            duration_minutes=kwargs.pop("duration_minutes", 45),
            status=kwargs.pop("status", SessionStatus.SCHEDULED.value),
            scheduling_attempts=kwargs.pop("scheduling_attempts", 0),
            reschedule_count=0,
            **kwargs,
        )
        db.add(session)
        await db.flush()
        return session

    return _make
