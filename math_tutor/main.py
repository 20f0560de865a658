from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
from time import perf_counter
from typing import List
from .state import PersistenceError, record_store, session_registry
from .models import (
	ActiveSession,
	CheckAnswerRequest,
	CheckAnswerResponse,
	CompleteExerciseRequest,
	CompleteExerciseResponse,
	DifficultyState,
	PerformanceInsight,
	PlanSessionRequest,
	ProactiveTip,
	ReadinessAssessment,
	ReadinessRequest,
	SessionExercise,
	SessionPlan,
	SessionSummary,
	StartSessionRequest,
	StartSessionResponse,
	StartingDifficultyResponse,
)
from .services.adaptive_engine import TIER_ENTRY_SUB_LEVEL, calibrated_feedback, check_mastery, describe_progression, recommend_difficulty, starting_difficulty
from .services.answer_checker import AnswerChecker, ExerciseNotFound, fold_outcome, success_rates
from .services.gemini_client import GeminiSessionPlanner
from .services.readiness import assess_readiness
from .services.session_monitor import SessionError, SessionManager
from .config import settings

logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger("math_tutor")

app = FastAPI(default_response_class=ORJSONResponse)

app.add_middleware(
	CORSMiddleware,
	allow_origins=["*"],
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

checker = AnswerChecker(record_store)
planner = GeminiSessionPlanner()

@app.on_event("startup")
def on_startup() -> None:
	logger.info({
		"event": "api_startup",
		"model": settings.gemini_model,
		"oracle_enabled": bool(settings.gemini_api_key),
		"attempt_lookback": settings.attempt_lookback,
	})

@app.middleware("http")
async def timing_middleware(request: Request, call_next):
	start = perf_counter()
	response = await call_next(request)
	duration_ms = int((perf_counter() - start) * 1000)
	logger.debug({
		"event": "request_timing",
		"method": request.method,
		"path": request.url.path,
		"status_code": response.status_code,
		"duration_ms": duration_ms,
	})
	return response

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
	return ORJSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
	errors = exc.errors()
	first = errors[0] if errors else {}
	field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
	message = f"{field}: {first.get('msg', 'invalid request')}" if field else first.get("msg", "invalid request")
	logger.debug({"event": "request_rejected", "path": request.url.path, "errors": len(errors)})
	return ORJSONResponse(status_code=400, content={"error": message})

@app.post("/check-exercise-answer", response_model=CheckAnswerResponse)
def check_exercise_answer(payload: CheckAnswerRequest):
	if not payload.exercise_id or not payload.user_id:
		raise HTTPException(status_code=400, detail="exerciseId and userId are required")
	try:
		evaluation = checker.evaluate(
			payload.exercise_id,
			payload.user_id,
			payload.user_answer,
			hints_used=payload.hints_used,
			time_spent_seconds=payload.time_spent_seconds,
		)
	except ExerciseNotFound:
		logger.debug({"event": "exercise_not_found", "exercise_id": payload.exercise_id})
		raise HTTPException(status_code=404, detail="Exercise not found")
	except PersistenceError:
		logger.exception("attempt_insert_failed")
		raise HTTPException(status_code=500, detail="Failed to save attempt")

	exercise = evaluation.exercise
	current = DifficultyState(tier=exercise.difficulty, sub_level=payload.current_sub_level or TIER_ENTRY_SUB_LEVEL)
	window = checker.compute_window(
		payload.user_id,
		exercise.subtopic_id,
		exercise.difficulty,
		settings.attempt_lookback,
		exclude_attempt_id=evaluation.attempt.id,
	)
	folded = fold_outcome(window, evaluation.is_correct, exercise.difficulty)
	# streak from earlier attempts, tier accuracy including this one
	recommendation = recommend_difficulty(evaluation.is_correct, window, current, folded.tiers)
	progression_message, advice = describe_progression(recommendation, current, folded.tiers)
	tier_stats = folded.tiers[exercise.difficulty]
	logger.debug({
		"event": "difficulty_recommended",
		"exercise_id": exercise.id,
		"is_correct": evaluation.is_correct,
		"current": str(current),
		"suggested": str(recommendation.state),
		"reason": recommendation.reason,
		"consecutive_correct": folded.consecutive_correct,
		"consecutive_wrong": folded.consecutive_wrong,
	})
	return CheckAnswerResponse(
		is_correct=evaluation.is_correct,
		correct_answer=evaluation.correct_answer,
		explanation=evaluation.explanation,
		feedback=calibrated_feedback(evaluation.is_correct, exercise.difficulty, folded.consecutive_correct),
		suggested_difficulty=recommendation.state.tier,
		suggested_sub_level=recommendation.state.sub_level,
		consecutive_correct=folded.consecutive_correct,
		consecutive_wrong=folded.consecutive_wrong,
		performance_insight=PerformanceInsight(
			current_difficulty=exercise.difficulty,
			success_rates=success_rates(folded),
			progression_message=progression_message,
			recommendation=advice,
		),
		mastery=check_mastery(exercise.difficulty, folded.consecutive_correct, tier_stats.total, tier_stats.correct),
	)

@app.get("/api/subtopics/{subtopic_id}/starting-difficulty", response_model=StartingDifficultyResponse)
def get_starting_difficulty(subtopic_id: str, user_id: str):
	state = starting_difficulty(checker.get_progress(user_id, subtopic_id), checker.recent_subtopic_outcomes(user_id, subtopic_id))
	return StartingDifficultyResponse(difficulty=state.tier, sub_level=state.sub_level)

@app.post("/api/session/plan", response_model=SessionPlan)
def plan_session(payload: PlanSessionRequest):
	subtopics = record_store.select("subtopics")
	progress = record_store.select("user_subtopic_progress", where=lambda p: p.user_id == payload.user_id)
	mistake_subtopic_ids: List[str] = []
	for attempt in record_store.select("exercise_attempts", where=lambda a: a.user_id == payload.user_id and not a.is_correct, newest_first=True, limit=10):
		exercise = record_store.get("exercises", attempt.exercise_id)
		if exercise is not None and exercise.subtopic_id not in mistake_subtopic_ids:
			mistake_subtopic_ids.append(exercise.subtopic_id)
	plan = planner.plan_session(
		duration_minutes=payload.duration_minutes or settings.default_session_minutes,
		subtopics=subtopics,
		progress=progress,
		mistake_subtopic_ids=mistake_subtopic_ids,
		selected_subtopic_ids=payload.selected_subtopic_ids,
	)
	logger.debug({"event": "session_planned", "user_id": payload.user_id, "plan_id": plan.id, "exercises": len(plan.exercises)})
	return plan

def _find_summary(session_id: str) -> SessionSummary | None:
	rows = record_store.select("session_summaries", where=lambda s: s.session_id == session_id, newest_first=True, limit=1)
	return rows[0] if rows else None

def _get_manager(session_id: str) -> SessionManager:
	"""Live manager for ``session_id`` with its countdown caught up.

	A session that runs out of time here is dropped from the registry; its
	summary stays in the record store for ``/end``.
	"""
	if not session_registry.has_session(session_id):
		if _find_summary(session_id) is not None:
			raise HTTPException(status_code=409, detail="session_ended")
		raise HTTPException(status_code=404, detail="session_not_found")
	manager = session_registry.get(session_id)
	manager.sync_clock()
	if manager.session is None:
		session_registry.remove(session_id)
		logger.debug({"event": "session_retired", "session_id": session_id})
		raise HTTPException(status_code=409, detail="session_ended")
	return manager

@app.post("/api/session/start", response_model=StartSessionResponse)
def start_session(payload: StartSessionRequest):
	manager = SessionManager(store=record_store)
	try:
		session = manager.start_session(payload.plan)
	except SessionError as e:
		raise HTTPException(status_code=409, detail=str(e))
	session_registry.register(session.id, manager)
	return StartSessionResponse(session_id=session.id, session=session)

@app.get("/api/session/{session_id}", response_model=ActiveSession)
def get_session(session_id: str):
	return _get_manager(session_id).session

@app.get("/api/session/{session_id}/exercise", response_model=SessionExercise | None)
def get_adapted_exercise(session_id: str):
	return _get_manager(session_id).get_adapted_exercise()

@app.post("/api/session/{session_id}/complete", response_model=CompleteExerciseResponse)
def complete_exercise(session_id: str, payload: CompleteExerciseRequest):
	manager = _get_manager(session_id)
	result = manager.mark_exercise_complete(payload.was_correct, payload.hints_used)
	if result is None:
		raise HTTPException(status_code=409, detail="session_not_running")
	return CompleteExerciseResponse(adaptation=result, session=manager.session)

@app.post("/api/session/{session_id}/pause", response_model=ActiveSession)
def pause_session(session_id: str):
	manager = _get_manager(session_id)
	if not manager.pause_session():
		raise HTTPException(status_code=409, detail="session_not_running")
	return manager.session

@app.post("/api/session/{session_id}/resume", response_model=ActiveSession)
def resume_session(session_id: str):
	manager = _get_manager(session_id)
	if not manager.resume_session():
		raise HTTPException(status_code=409, detail="session_not_paused")
	return manager.session

@app.post("/api/session/{session_id}/skip", response_model=ActiveSession)
def skip_exercise(session_id: str):
	manager = _get_manager(session_id)
	manager.skip_exercise()
	return manager.session

@app.get("/api/session/{session_id}/tip", response_model=ProactiveTip | None)
def get_proactive_tip(session_id: str):
	return _get_manager(session_id).get_proactive_tip()

@app.post("/api/session/{session_id}/end", response_model=SessionSummary)
def end_session(session_id: str):
	summary = None
	if session_registry.has_session(session_id):
		manager = session_registry.get(session_id)
		manager.sync_clock()
		summary = manager.end_session() or manager.last_summary
		session_registry.remove(session_id)
	summary = summary or _find_summary(session_id)
	if summary is None:
		raise HTTPException(status_code=404, detail="session_not_found")
	return summary

@app.post("/api/readiness", response_model=ReadinessAssessment)
def readiness(payload: ReadinessRequest):
	return assess_readiness(payload.correct_count, payload.total_count, payload.performance_by_difficulty)
