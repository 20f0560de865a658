import os
import json
import uuid
from typing import List, Dict, Any
import logging
import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from time import perf_counter
from ..config import settings
from ..models import SessionExercise, SessionPlan, Subtopic, SubtopicProgress
from .prompt_builder import PromptBuilder

logger = logging.getLogger("math_tutor")

WEAK_MASTERY_THRESHOLD = 70
MINUTES_PER_EXERCISE = 4
MIN_EXERCISES = 3

class OracleUnavailable(Exception):
    """The content oracle could not produce a usable answer."""

    def __init__(self, reason: str, status: int | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.status = status

def estimated_exercise_count(duration_minutes: int) -> int:
    return max(MIN_EXERCISES, duration_minutes // MINUTES_PER_EXERCISE)

class GeminiSessionPlanner:
    """Asks the content oracle for a session plan and falls back to a local plan on any failure."""

    def __init__(self) -> None:
        if settings.gemini_api_key:
            genai.configure(api_key=settings.gemini_api_key)
        self.model_name = settings.gemini_model
        self.generation_config = {
            "temperature": 0.4,
            "top_p": 0.9,
            "response_mime_type": "application/json",
        }
        self.prompt_builder = PromptBuilder()

    def _load_prompt_template(self) -> str:
        path = os.path.join(os.path.dirname(os.path.dirname(__file__)), "prompts", "session_plan.txt")
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    def _build_prompt(self, duration_minutes: int, exercise_count: int, subtopics: List[Subtopic], progress: List[SubtopicProgress], mistake_subtopic_ids: List[str], selected_subtopic_ids: List[str]) -> str:
        by_id = {s.id: s for s in subtopics}
        practiced = {p.subtopic_id for p in progress}
        weak = sorted(
            (p for p in progress if p.mastery_percentage < WEAK_MASTERY_THRESHOLD and p.exercises_completed > 0 and p.subtopic_id in by_id),
            key=lambda p: p.mastery_percentage,
        )
        mastery = {p.subtopic_id: p.mastery_percentage for p in progress}
        relevant = [s for s in subtopics if not selected_subtopic_ids or s.id in selected_subtopic_ids]
        return self.prompt_builder.build(
            self._load_prompt_template(),
            duration_minutes=duration_minutes,
            exercise_count=exercise_count,
            weak_subtopics=[{"name": by_id[p.subtopic_id].name, "mastery": p.mastery_percentage} for p in weak[:5]],
            recent_mistakes=[by_id[sid].name for sid in mistake_subtopic_ids[:5] if sid in by_id],
            untouched_subtopics=[s.name for s in subtopics if s.id not in practiced][:5],
            available_subtopics=[{"id": s.id, "name": s.name, "topic": s.topic_name, "mastery": mastery.get(s.id, 0)} for s in relevant[:30]],
            focus_areas=[by_id[sid].name for sid in selected_subtopic_ids if sid in by_id],
        )

    def _strip_code_fences(self, text: str) -> str:
        t = text.strip()
        if t.startswith("```"):
            parts = t.split("\n", 1)
            if len(parts) == 2:
                t = parts[1]
            if t.endswith("```"):
                t = t[:-3]
        if t.startswith("json\n"):
            t = t[5:]
        return t.strip()

    def _try_slice_to_object(self, text: str) -> Dict[str, Any] | None:
        first = text.find("{")
        last = text.rfind("}")
        if first == -1 or last <= first:
            return None
        try:
            obj = json.loads(text[first:last+1])
        except json.JSONDecodeError:
            return None
        return obj if isinstance(obj, dict) else None

    def _call_model(self, prompt: str) -> str:
        try:
            model = genai.GenerativeModel(self.model_name, generation_config=self.generation_config)
            t0 = perf_counter()
            response = model.generate_content(prompt)
            latency_ms = int((perf_counter() - t0) * 1000)
        except google_exceptions.GoogleAPICallError as e:
            status = int(e.code) if e.code is not None else None
            if status == 429:
                raise OracleUnavailable("rate_limited", status) from e
            if status == 402:
                raise OracleUnavailable("quota_exhausted", status) from e
            raise OracleUnavailable("call_failed", status) from e
        raw_text = (response.text or "").strip()
        logger.debug({"event": "gemini_response", "preview": raw_text[:200], "latency_ms": latency_ms})
        return raw_text

    def _parse_exercises(self, payload: Dict[str, Any], subtopics: List[Subtopic], count: int) -> List[SessionExercise]:
        by_id = {s.id: s for s in subtopics}
        exercises: List[SessionExercise] = []
        for item in payload.get("exercises") or []:
            if not isinstance(item, dict):
                continue
            subtopic = by_id.get(item.get("subtopicId") or "")
            if subtopic is None:
                wanted = (item.get("subtopicName") or "").strip().lower()
                subtopic = next((s for s in subtopics if wanted and wanted in s.name.lower()), None)
            if subtopic is None:
                continue
            difficulty = item.get("difficulty")
            if difficulty not in ("easy", "medium", "hard"):
                difficulty = "easy"
            minutes = item.get("estimatedMinutes")
            exercises.append(SessionExercise(
                id=str(uuid.uuid4()),
                subtopic_id=subtopic.id,
                subtopic_name=subtopic.name,
                topic_name=subtopic.topic_name or item.get("topicName") or "",
                difficulty=difficulty,
                reason=str(item.get("reason") or ""),
                estimated_minutes=minutes if isinstance(minutes, int) and 1 <= minutes <= 15 else MINUTES_PER_EXERCISE,
            ))
        return exercises[:count]

    def plan_session(self, duration_minutes: int, subtopics: List[Subtopic], progress: List[SubtopicProgress], mistake_subtopic_ids: List[str] | None = None, selected_subtopic_ids: List[str] | None = None) -> SessionPlan:
        count = estimated_exercise_count(duration_minutes)
        selected = selected_subtopic_ids or []
        if not settings.gemini_api_key:
            logger.warning({"event": "gemini_no_api_key", "message": "Using fallback session plan"})
            return self._fallback_plan(duration_minutes, subtopics, progress, selected)
        prompt = self._build_prompt(duration_minutes, count, subtopics, progress, mistake_subtopic_ids or [], selected)
        try:
            logger.debug({"event": "gemini_request", "model": self.model_name, "exercise_count": count})
            cleaned = self._strip_code_fences(self._call_model(prompt))
            try:
                payload = json.loads(cleaned)
            except json.JSONDecodeError:
                payload = self._try_slice_to_object(cleaned)
            if not isinstance(payload, dict):
                raise OracleUnavailable("payload_unparseable")
            relevant = [s for s in subtopics if not selected or s.id in selected] or subtopics
            exercises = self._parse_exercises(payload, relevant, count)
            if not exercises:
                raise OracleUnavailable("payload_empty")
        except OracleUnavailable as e:
            logger.warning({"event": "gemini_plan_degraded", "reason": e.reason, "status": e.status})
            return self._fallback_plan(duration_minutes, subtopics, progress, selected)
        except Exception:
            logger.exception("gemini_parse_or_call_failed")
            return self._fallback_plan(duration_minutes, subtopics, progress, selected)
        focus = payload.get("focusAreas")
        return SessionPlan(
            id=str(uuid.uuid4()),
            total_minutes=duration_minutes,
            exercises=exercises,
            focus_areas=[str(f) for f in focus] if isinstance(focus, list) else [],
            plan_rationale=payload.get("planRationale") or "Personalized plan based on your progress",
            estimated_exercise_count=len(exercises),
        )

    def _fallback_plan(self, duration_minutes: int, subtopics: List[Subtopic], progress: List[SubtopicProgress], selected_subtopic_ids: List[str]) -> SessionPlan:
        """Weakest subtopics first, difficulty ramping easy -> medium -> hard across the plan."""
        count = estimated_exercise_count(duration_minutes)
        relevant = [s for s in subtopics if not selected_subtopic_ids or s.id in selected_subtopic_ids] or subtopics
        mastery = {p.subtopic_id: p.mastery_percentage for p in progress}
        ordered = sorted(relevant, key=lambda s: mastery.get(s.id, 0))
        exercises: List[SessionExercise] = []
        if ordered:
            for i in range(count):
                subtopic = ordered[i % len(ordered)]
                difficulty = "easy" if i < count / 3 else "medium" if i < 2 * count / 3 else "hard"
                exercises.append(SessionExercise(
                    id=str(uuid.uuid4()),
                    subtopic_id=subtopic.id,
                    subtopic_name=subtopic.name,
                    topic_name=subtopic.topic_name,
                    difficulty=difficulty,
                    reason=f"{mastery.get(subtopic.id, 0)}% mastery so far",
                    estimated_minutes=MINUTES_PER_EXERCISE,
                ))
        logger.debug({"event": "fallback_plan_generated", "count": len(exercises)})
        return SessionPlan(
            id=str(uuid.uuid4()),
            total_minutes=duration_minutes,
            exercises=exercises,
            focus_areas=[s.name for s in ordered[:2]],
            plan_rationale="Starting with your weakest areas and building up difficulty gradually.",
            estimated_exercise_count=len(exercises),
        )
