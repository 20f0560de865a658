"""Shared fixtures for the mastery progression tests."""

import pytest

from math_tutor.config import settings
from math_tutor.models import Exercise, SessionExercise, SessionPlan, Subtopic
from math_tutor.state import RecordStore, record_store, session_registry


class FakeClock:
    """Manually advanced stand-in for time.monotonic."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    """Fresh record store seeded with one subtopic and a few exercises."""
    s = RecordStore()
    s.insert("subtopics", Subtopic(id="sub-quad", name="Quadratic equations", topic_name="Algebra"))
    s.insert("subtopics", Subtopic(id="sub-exp", name="Exponential equations", topic_name="Algebra"))
    s.insert("exercises", Exercise(id="ex-e", subtopic_id="sub-quad", difficulty="easy", correct_answer="4"))
    s.insert("exercises", Exercise(id="ex-m", subtopic_id="sub-quad", difficulty="medium", correct_answer="12", explanation="3 * 4 = 12"))
    s.insert("exercises", Exercise(id="ex-h", subtopic_id="sub-quad", difficulty="hard", correct_answer="x = 3, -3", explanation="x^2 = 9"))
    s.insert("exercises", Exercise(id="ex-other", subtopic_id="sub-exp", difficulty="medium", correct_answer="3"))
    return s


def make_plan(difficulty="medium", count=4, total_minutes=30) -> SessionPlan:
    return SessionPlan(
        id="plan-1",
        total_minutes=total_minutes,
        exercises=[
            SessionExercise(id=f"se-{i}", subtopic_id="sub-quad", subtopic_name="Quadratic equations", difficulty=difficulty)
            for i in range(count)
        ],
        plan_rationale="Warm up, then push.",
        estimated_exercise_count=count,
    )


@pytest.fixture
def plan():
    return make_plan()


@pytest.fixture
def clean_app_state(monkeypatch):
    """Reset the process-wide store and registry and disable the content oracle."""
    record_store.clear()
    session_registry.clear()
    monkeypatch.setattr(settings, "gemini_api_key", None)
    yield
    record_store.clear()
    session_registry.clear()


@pytest.fixture
def plan_factory():
    return make_plan
