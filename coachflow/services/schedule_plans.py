"""
Curriculum plans and the pure schedule expansion.

A plan is a fixed table of week offsets for coaching sessions and parent
check-ins. Week offsets are business parameters: sessions are interleaved
exactly as the table says, never spread evenly.
"""
from dataclasses import dataclass
from datetime import date, time, timedelta
from typing import Dict, List, Optional

from coachflow.models.session import SessionType


SESSION_DURATION_MINUTES = 45

PLAN_SCHEDULES: Dict[str, Dict[str, List[int]]] = {
    "starter": {"coaching": [1, 2], "checkin": [4]},
    "continuation": {"coaching": [1, 2, 5, 6], "checkin": [4, 8]},
    "full": {"coaching": [1, 2, 5, 6, 9, 10], "checkin": [4, 8, 12]},
}

# Hour ranges are inclusive of the first hour, exclusive of the last
TIME_BUCKETS: Dict[str, range] = {
    "morning": range(6, 12),
    "afternoon": range(12, 17),
    "evening": range(17, 21),
}
DEFAULT_SESSION_TIME = time(10, 0)

SESSION_TITLES = {
    SessionType.COACHING.value: [
        "Initial Assessment & Goals",
        "Foundation Building",
        "Skill Development",
        "Practice & Reinforcement",
        "Advanced Techniques",
        "Confidence Building",
        "Mastery Building",
        "Final Skills Assessment",
        "Review & Consolidation",
        "Program Completion",
    ],
    SessionType.PARENT_CHECKIN.value: [
        "Progress Review",
        "Mid-Program Review",
        "Progress Assessment",
        "Final Review & Next Steps",
    ],
    SessionType.REMEDIAL.value: [
        "Targeted Practice Session",
        "Skill Reinforcement",
        "Extra Support Session",
    ],
}


class UnknownPlan(ValueError):
    pass


@dataclass
class CurriculumEntry:
    week: int
    session_type: str
    duration_minutes: int = SESSION_DURATION_MINUTES
    time_bucket: str = "any"


@dataclass
class SessionRequest:
    """One session to book, with absolute date and candidate start times."""
    session_number: int
    week_number: int
    session_type: str
    title: str
    scheduled_date: date
    preferred_times: List[time]
    duration_minutes: int
    is_diagnostic: bool = False


def session_title(session_type: str, index: int) -> str:
    titles = SESSION_TITLES.get(session_type) or []
    if not titles:
        return f"Session {index + 1}"
    return titles[index % len(titles)]


def bucket_times(bucket: str) -> List[time]:
    """Candidate start times for a bucket; `any` tries every bucket."""
    if bucket in TIME_BUCKETS:
        return [time(hour, 0) for hour in TIME_BUCKETS[bucket]]
    return [DEFAULT_SESSION_TIME] + [
        time(hour, 0)
        for hours in TIME_BUCKETS.values()
        for hour in hours
        if hour != DEFAULT_SESSION_TIME.hour
    ]


def plan_curriculum(plan_slug: str, time_bucket: str = "any") -> List[CurriculumEntry]:
    """Curriculum entries for a plan, ordered by week, coaching first."""
    plan = PLAN_SCHEDULES.get(plan_slug)
    if plan is None:
        raise UnknownPlan(f"Unknown plan: {plan_slug}")

    entries = [
        CurriculumEntry(week=week, session_type=SessionType.COACHING.value, time_bucket=time_bucket)
        for week in plan["coaching"]
    ] + [
        CurriculumEntry(week=week, session_type=SessionType.PARENT_CHECKIN.value, time_bucket=time_bucket)
        for week in plan["checkin"]
    ]
    entries.sort(key=lambda e: (e.week, 0 if e.session_type == SessionType.COACHING.value else 1))
    return entries


def expand_curriculum(
    curriculum: List[CurriculumEntry],
    program_start: date,
    title_prefix: Optional[Dict[str, str]] = None,
) -> List[SessionRequest]:
    """
    Turn curriculum entries into dated session requests.

    Date = program_start + (week - 1) weeks. Requests are numbered from 1
    in week order (coaching before check-in in the same week) and the first
    coaching session is the diagnostic one.
    """
    prefix = title_prefix or {
        SessionType.COACHING.value: "Coaching",
        SessionType.PARENT_CHECKIN.value: "Parent Check-in",
        SessionType.REMEDIAL.value: "Skill Booster",
    }
    ordered = sorted(
        curriculum,
        key=lambda e: (e.week, 0 if e.session_type == SessionType.COACHING.value else 1),
    )

    requests: List[SessionRequest] = []
    per_type_index: Dict[str, int] = {}
    diagnostic_assigned = False
    for number, entry in enumerate(ordered, start=1):
        type_index = per_type_index.get(entry.session_type, 0)
        per_type_index[entry.session_type] = type_index + 1

        is_diagnostic = not diagnostic_assigned and entry.session_type == SessionType.COACHING.value
        diagnostic_assigned = diagnostic_assigned or is_diagnostic

        requests.append(SessionRequest(
            session_number=number,
            week_number=entry.week,
            session_type=entry.session_type,
            title=f"{prefix.get(entry.session_type, 'Session')} {type_index + 1}: "
                  f"{session_title(entry.session_type, type_index)}",
            scheduled_date=program_start + timedelta(weeks=entry.week - 1),
            preferred_times=bucket_times(entry.time_bucket),
            duration_minutes=entry.duration_minutes,
            is_diagnostic=is_diagnostic,
        ))
    return requests
