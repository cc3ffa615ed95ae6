"""Session completion: feedback validation, learning events and embeddings."""
import httpx
import pytest
from sqlalchemy import select

from coachflow.models.learning_event import LearningEvent
from coachflow.services.embedding_service import EmbeddingClient, EmbeddingError
from coachflow.services.session_completion_service import (
    CompletionForm,
    CompletionValidationError,
    NotSessionCoach,
    SessionAlreadyCompleted,
    SessionCompletionService,
    embedding_text,
)


class FakeEmbeddings:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.texts = []

    @property
    def enabled(self) -> bool:
        return True

    async def generate(self, text):
        self.texts.append(text)
        if self.fail:
            raise EmbeddingError("Embedding API error 500")
        return [0.1, 0.2, 0.3]


def form(**overrides) -> CompletionForm:
    values = {
        "focus_area": "phonics",
        "progress_rating": "improved",
        "engagement_level": "high",
        "skills_worked_on": ["blends", "digraphs"],
        "coach_notes": "Good focus",
    }
    values.update(overrides)
    return CompletionForm(**values)


async def test_complete_writes_session_event_and_embedding(db, make_coach, make_enrollment, make_session):
    coach = await make_coach()
    enrollment = await make_enrollment(coach)
    session = await make_session(enrollment)
    await make_session(enrollment, number=2)
    embeddings = FakeEmbeddings()

    result = await SessionCompletionService(db, embeddings).complete(session.id, form(), coach_id=coach.id)

    assert result["learning_events"] == 1
    assert result["embedding_generated"] is True
    assert result["program_completed"] is False
    assert session.status == "completed"
    assert session.skills_worked_on == ["blends", "digraphs"]
    event = (await db.execute(select(LearningEvent))).scalars().one()
    assert event.event_type == "session"
    assert event.embedding == [0.1, 0.2, 0.3]
    assert embeddings.texts[0].startswith("Coaching session #1\nFocus: phonics")


async def test_breakthrough_and_homework_add_events(db, make_coach, make_enrollment, make_session):
    coach = await make_coach()
    session = await make_session(await make_enrollment(coach))

    result = await SessionCompletionService(db, FakeEmbeddings()).complete(
        session.id,
        form(
            progress_rating="breakthrough",
            breakthrough_moment="Read a full page alone",
            homework_assigned=True,
            homework_description="Read two pages daily",
        ),
    )

    assert result["learning_events"] == 3
    types = sorted(e.event_type for e in (await db.execute(select(LearningEvent))).scalars().all())
    assert types == ["homework", "milestone", "session"]


async def test_last_session_completes_program(db, make_coach, make_enrollment, make_session):
    coach = await make_coach(current_students=1)
    enrollment = await make_enrollment(coach)
    session = await make_session(enrollment)
    await make_session(enrollment, number=2, status="cancelled")

    result = await SessionCompletionService(db, FakeEmbeddings()).complete(session.id, form())

    assert result["program_completed"] is True
    assert enrollment.status == "completed"
    assert coach.current_students == 0


async def test_embedding_failure_does_not_block_completion(db, make_coach, make_enrollment, make_session):
    session = await make_session(await make_enrollment(await make_coach()))

    result = await SessionCompletionService(db, FakeEmbeddings(fail=True)).complete(session.id, form())

    assert result["embedding_generated"] is False
    assert session.status == "completed"


def embedding_client(status_code: int, content: bytes) -> EmbeddingClient:
    transport = httpx.MockTransport(lambda request: httpx.Response(status_code, content=content))
    return EmbeddingClient(api_url="https://embed.example.com/v1", api_key="k", transport=transport)


async def test_garbled_embedding_response_does_not_block_completion(db, make_coach, make_enrollment, make_session):
    session = await make_session(await make_enrollment(await make_coach()))
    client = embedding_client(200, b"<html>gateway</html>")

    result = await SessionCompletionService(db, client).complete(session.id, form())

    assert result["embedding_generated"] is False
    assert session.status == "completed"


@pytest.mark.parametrize(
    "content",
    [b"<html>gateway</html>", b"[1, 2, 3]", b"{\"data\": []}", b"{\"data\": \"oops\"}", b"{\"embedding\": null}"],
)
async def test_embedding_client_rejects_malformed_bodies(content):
    with pytest.raises(EmbeddingError):
        await embedding_client(200, content).generate("Focus: phonics")


async def test_embedding_client_reads_both_response_shapes():
    assert await embedding_client(200, b"{\"embedding\": [0.5, 0.25]}").generate("x") == [0.5, 0.25]
    assert await embedding_client(200, b"{\"data\": [{\"embedding\": [1.0]}]}").generate("x") == [1.0]



async def test_already_completed(db, make_coach, make_enrollment, make_session):
    session = await make_session(await make_enrollment(await make_coach()), status="completed")

    with pytest.raises(SessionAlreadyCompleted):
        await SessionCompletionService(db, FakeEmbeddings()).complete(session.id, form())


async def test_other_coach_cannot_complete(db, make_coach, make_enrollment, make_session):
    session = await make_session(await make_enrollment(await make_coach()))
    stranger = await make_coach("Stranger")

    with pytest.raises(NotSessionCoach):
        await SessionCompletionService(db, FakeEmbeddings()).complete(session.id, form(), coach_id=stranger.id)


@pytest.mark.parametrize(
    "overrides",
    [
        {"focus_area": "singing"},
        {"progress_rating": "great"},
        {"engagement_level": "extreme"},
        {"homework_assigned": True},
    ],
)
def test_form_validation(overrides):
    with pytest.raises(CompletionValidationError):
        form(**overrides).validate()


def test_embedding_text_skips_empty_parts():
    class Row:
        session_number = 4

    text = embedding_text(Row(), form(coach_notes=None, skills_worked_on=[]))

    assert text == "Coaching session #4\nFocus: phonics\nProgress: improved\nEngagement: high"
