"""Unit tests for session planning through the content oracle."""

import json

import pytest
from google.api_core import exceptions as google_exceptions

from math_tutor.config import settings
from math_tutor.models import Subtopic, SubtopicProgress
from math_tutor.services import gemini_client
from math_tutor.services.gemini_client import GeminiSessionPlanner, OracleUnavailable, estimated_exercise_count


class FakeResponse:
    def __init__(self, text):
        self.text = text


class FakeModel:
    """Stands in for genai.GenerativeModel; returns or raises a canned outcome."""

    outcome = None

    def __init__(self, model_name, generation_config=None):
        self.model_name = model_name

    def generate_content(self, prompt):
        if isinstance(FakeModel.outcome, Exception):
            raise FakeModel.outcome
        return FakeResponse(FakeModel.outcome)


class PaymentRequired(google_exceptions.ClientError):
    code = 402


@pytest.fixture
def subtopics():
    return [
        Subtopic(id="sub-quad", name="Quadratic equations", topic_name="Algebra"),
        Subtopic(id="sub-exp", name="Exponential equations", topic_name="Algebra"),
    ]


@pytest.fixture
def progress():
    return [SubtopicProgress(user_id="u1", subtopic_id="sub-quad", exercises_completed=6, exercises_correct=5, mastery_percentage=83)]


@pytest.fixture
def planner(monkeypatch):
    """Planner wired to the fake model with an API key configured."""
    planner = GeminiSessionPlanner()
    monkeypatch.setattr(settings, "gemini_api_key", "test-key")
    monkeypatch.setattr(gemini_client.genai, "GenerativeModel", FakeModel)
    return planner


class TestExerciseCount:
    """Tests for sizing a plan from its duration."""

    def test_four_minutes_per_exercise(self):
        """A thirty-minute session plans seven exercises."""
        assert estimated_exercise_count(30) == 7

    def test_minimum(self):
        """Short sessions still get three exercises."""
        assert estimated_exercise_count(5) == 3


class TestFallbackPlan:
    """Tests for the locally generated plan."""

    def test_no_api_key_uses_fallback(self, monkeypatch, subtopics, progress):
        """Without a key the oracle is never called."""
        monkeypatch.setattr(settings, "gemini_api_key", None)
        plan = GeminiSessionPlanner().plan_session(12, subtopics, progress)
        assert len(plan.exercises) == 3
        assert plan.exercises[0].subtopic_id == "sub-exp"
        assert [e.difficulty for e in plan.exercises] == ["easy", "medium", "hard"]

    def test_selected_subtopics_only(self, monkeypatch, subtopics):
        """A subtopic selection restricts the plan."""
        monkeypatch.setattr(settings, "gemini_api_key", None)
        plan = GeminiSessionPlanner().plan_session(20, subtopics, [], selected_subtopic_ids=["sub-quad"])
        assert {e.subtopic_id for e in plan.exercises} == {"sub-quad"}


class TestOraclePlan:
    """Tests for plans returned by the model."""

    def test_parses_model_plan(self, planner, subtopics, progress):
        """Valid exercises come through; unknown subtopics are dropped."""
        FakeModel.outcome = "```json\n" + json.dumps({
            "exercises": [
                {"subtopicId": "sub-exp", "difficulty": "medium", "reason": "untouched", "estimatedMinutes": 5},
                {"subtopicId": "nope", "subtopicName": "Trigonometry", "difficulty": "hard"},
                {"subtopicName": "quadratic", "difficulty": "legendary"},
            ],
            "focusAreas": ["Exponential equations"],
            "planRationale": "Cover the gaps first.",
        }) + "\n```"
        plan = planner.plan_session(12, subtopics, progress)
        assert [e.subtopic_id for e in plan.exercises] == ["sub-exp", "sub-quad"]
        assert plan.exercises[1].difficulty == "easy"
        assert plan.exercises[0].estimated_minutes == 5
        assert plan.plan_rationale == "Cover the gaps first."
        assert plan.estimated_exercise_count == 2

    def test_rate_limited_falls_back(self, planner, subtopics, progress):
        """A 429 from the provider degrades to the local plan."""
        FakeModel.outcome = google_exceptions.TooManyRequests("slow down")
        plan = planner.plan_session(12, subtopics, progress)
        assert plan.plan_rationale.startswith("Starting with your weakest areas")

    def test_unparseable_falls_back(self, planner, subtopics, progress):
        """Garbage output degrades to the local plan."""
        FakeModel.outcome = "I cannot help with that."
        plan = planner.plan_session(12, subtopics, progress)
        assert len(plan.exercises) == 3

    @pytest.mark.parametrize("error,reason", [
        (google_exceptions.TooManyRequests("slow down"), "rate_limited"),
        (PaymentRequired("no credits"), "quota_exhausted"),
        (google_exceptions.InternalServerError("boom"), "call_failed"),
    ])
    def test_call_errors_classified(self, planner, error, reason):
        """Provider status codes map onto degradation reasons."""
        FakeModel.outcome = error
        with pytest.raises(OracleUnavailable) as info:
            planner._call_model("prompt")
        assert info.value.reason == reason
