"""
Companion and learning session service tests with an in-memory voice provider.
"""
import pytest

from tutorhub.core.errors import (
    ConflictError,
    LimitExceededError,
    NotFoundError,
    PermissionError,
)
from tutorhub.features.companions.service import CompanionService
from tutorhub.features.sessions.service import LearningSessionService
from tutorhub.models.companion import CompanionCreate, CompanionUpdate
from tutorhub.models.learning_session import SessionStatus
from tutorhub.tests.mocks import FakeVoiceProvider


@pytest.fixture
def voice():
    return FakeVoiceProvider()


@pytest.fixture
def companion_service(session_factory, limits, voice):
    return CompanionService(session_factory, limits, voice=voice)


@pytest.fixture
def session_service(session_factory, companion_service, limits, usage_counter, voice):
    return LearningSessionService(session_factory, companion_service, limits, usage_counter, voice=voice)


@pytest.fixture
def student(make_user, user_service):
    make_user("u1", name="Sam Student")
    return user_service.get_by_id("u1")


def _create(service, author_id="u1", **overrides):
    data = {"name": "Neura", "subject": "Science", "topic": "Neural networks"}
    data.update(overrides)
    return service.create(author_id, CompanionCreate(**data))


def test_create_provisions_assistant(companion_service, voice):
    companion = _create(companion_service)
    assert companion.subject == "science"
    assert companion.voice_assistant_id == "asst_1"
    assert "Neural networks" in voice.assistants["asst_1"]["instructions"]


def test_create_without_assistant_when_provider_fails(session_factory, limits):
    service = CompanionService(session_factory, limits, voice=FakeVoiceProvider(fail_assistant=True))
    companion = _create(service)
    assert companion.voice_assistant_id is None


def test_free_user_blocked_at_fourth_companion(companion_service):
    for i in range(3):
        _create(companion_service, name=f"Tutor {i}")
    with pytest.raises(LimitExceededError) as exc_info:
        _create(companion_service, name="One too many")
    err = exc_info.value
    assert err.status_code == 402
    assert err.details["upgrade_prompt"]["required_tier"] == "BASIC"


def test_private_companion_hidden_from_others(companion_service):
    companion = _create(companion_service, is_public=False)
    assert companion_service.get(companion.id, viewer_id="u1").id == companion.id
    with pytest.raises(NotFoundError):
        companion_service.get(companion.id, viewer_id="u2")


def test_list_public_filters(companion_service):
    _create(companion_service, name="Algebra Ace", subject="Maths", topic="Equations")
    _create(companion_service, name="Hidden", subject="Maths", topic="Equations", is_public=False)
    _create(companion_service, author_id="u2", name="Bio Buddy", subject="Science", topic="Cells")

    maths = companion_service.list_public(subject="MATHS")
    assert [c.name for c in maths] == ["Algebra Ace"]
    assert [c.name for c in companion_service.list_public(topic="buddy")] == ["Bio Buddy"]
    assert len(companion_service.list_public(page=2, limit=1)) == 1


def test_update_and_delete_are_author_only(companion_service):
    companion = _create(companion_service)
    with pytest.raises(PermissionError):
        companion_service.update(companion.id, "u2", CompanionUpdate(name="Mine now"))
    updated = companion_service.update(companion.id, "u1", CompanionUpdate(topic="Transformers"))
    assert updated.topic == "Transformers"
    assert updated.name == "Neura"

    with pytest.raises(PermissionError):
        companion_service.delete(companion.id, "u2")
    companion_service.delete(companion.id, "u1")
    with pytest.raises(NotFoundError):
        companion_service.get(companion.id, viewer_id="u1")


def test_companion_stats(companion_service):
    _create(companion_service)
    _create(companion_service, author_id="u2")
    stats = companion_service.stats("u1")
    assert stats.total_companions == 2
    assert stats.user_companions == 1


def test_start_places_call_and_activates(session_service, companion_service, student, voice):
    companion = _create(companion_service)
    started = session_service.start(student, companion.id)
    assert started.status == SessionStatus.ACTIVE
    assert started.voice_call_id == "call_1"
    assert voice.calls["call_1"].raw["variables"]["studentName"] == "Sam Student"


def test_start_stays_pending_without_assistant(session_factory, limits, usage_counter, student):
    companions = CompanionService(session_factory, limits)
    sessions = LearningSessionService(session_factory, companions, limits, usage_counter)
    companion = _create(companions)
    assert sessions.start(student, companion.id).status == SessionStatus.PENDING


def test_complete_uses_call_transcript_and_duration(session_service, companion_service, student, voice):
    companion = _create(companion_service)
    started = session_service.start(student, companion.id)
    voice.finish_call(started.voice_call_id, minutes=12, transcript="Hello there")

    done = session_service.complete(started.id, student.id, feedback="Great", rating=5)
    assert done.status == SessionStatus.COMPLETED
    assert done.duration_minutes == 12
    assert done.transcript == "Hello there"
    assert done.rating == 5

    with pytest.raises(ConflictError):
        session_service.complete(started.id, student.id)


def test_session_owner_only(session_service, companion_service, student):
    companion = _create(companion_service)
    started = session_service.start(student, companion.id)
    with pytest.raises(PermissionError):
        session_service.get(started.id, "someone-else")


def test_free_user_blocked_after_ten_sessions(session_service, companion_service, student):
    companion = _create(companion_service)
    for _ in range(10):
        session_service.start(student, companion.id)
    with pytest.raises(LimitExceededError) as exc_info:
        session_service.start(student, companion.id)
    assert "monthly session limit of 10" in exc_info.value.message


def test_learning_stats(session_service, companion_service, student, voice):
    companion = _create(companion_service)
    first = session_service.start(student, companion.id)
    session_service.start(student, companion.id)
    voice.finish_call(first.voice_call_id, minutes=20, transcript="...")
    session_service.complete(first.id, student.id, rating=4)

    stats = session_service.stats(student.id)
    assert stats.total_sessions == 2
    assert stats.completed_sessions == 1
    assert stats.total_minutes == 20
    assert stats.average_rating == 4.0
    assert stats.sessions_this_month == 2
