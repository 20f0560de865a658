from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Dict, List, Literal, Optional

Difficulty = Literal["easy", "medium", "hard"]
TipType = Literal["encouragement", "guidance", "celebration", "tip"]
MessageType = Literal["greeting", "tip", "encouragement", "guidance", "celebration", "adaptation"]
SessionStatus = Literal["running", "paused", "ended"]

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

# Records held by the record store

class Exercise(BaseModel):
    id: str
    subtopic_id: str
    difficulty: Difficulty
    correct_answer: str
    explanation: Optional[str] = None
    question: str = ""

class Attempt(BaseModel):
    id: Optional[str] = None
    exercise_id: str
    user_id: str
    user_answer: Optional[str] = None
    is_correct: bool
    hints_used: int = 0
    time_spent_seconds: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)

class Subtopic(BaseModel):
    id: str
    name: str
    topic_name: str = ""

class SubtopicProgress(BaseModel):
    id: Optional[str] = None
    user_id: str
    subtopic_id: str
    exercises_completed: int = 0
    exercises_correct: int = 0
    hints_used: int = 0
    mastery_percentage: int = 0

# Mastery progression

class DifficultyState(BaseModel):
    model_config = ConfigDict(frozen=True)

    tier: Difficulty
    sub_level: int = Field(default=2, ge=1, le=3)

    def __str__(self) -> str:
        return f"{self.tier}/{self.sub_level}"

class TierStats(CamelModel):
    correct: int = 0
    total: int = 0

    @property
    def rate(self) -> float:
        return self.correct / self.total if self.total else 0.0

class PerformanceWindow(BaseModel):
    current_difficulty: Difficulty
    tiers: Dict[str, TierStats]
    consecutive_correct: int = 0
    consecutive_wrong: int = 0

class Evaluation(BaseModel):
    is_correct: bool
    correct_answer: str
    explanation: Optional[str] = None
    attempt: Attempt
    exercise: Exercise

class CheckAnswerRequest(CamelModel):
    exercise_id: Optional[str] = None
    user_id: Optional[str] = None
    user_answer: Optional[str] = Field(default=None, max_length=1000)
    hints_used: Optional[int] = Field(default=0, ge=0)
    time_spent_seconds: Optional[int] = Field(default=None, ge=0, le=86400)
    current_sub_level: Optional[int] = Field(default=None, ge=1, le=3)

class PerformanceInsight(CamelModel):
    current_difficulty: Difficulty
    success_rates: Dict[str, int]
    progression_message: str
    recommendation: str

class MasteryCheck(CamelModel):
    is_mastered: bool
    progress: int
    progress_type: Literal["streak", "accuracy"]
    message: str

class CheckAnswerResponse(CamelModel):
    is_correct: bool
    correct_answer: str
    explanation: Optional[str] = None
    feedback: str
    suggested_difficulty: Difficulty
    suggested_sub_level: int
    consecutive_correct: int
    consecutive_wrong: int
    performance_insight: PerformanceInsight
    mastery: MasteryCheck

class StartingDifficultyResponse(CamelModel):
    difficulty: Difficulty
    sub_level: int

# Sessions

class SessionExercise(CamelModel):
    id: Optional[str] = None
    subtopic_id: str
    subtopic_name: str
    topic_name: str = ""
    difficulty: Difficulty
    reason: str = ""
    estimated_minutes: int = 4
    completed: bool = False
    was_correct: Optional[bool] = None
    hints_used: Optional[int] = None
    attempted_difficulty: Optional[Difficulty] = None

class SessionPlan(CamelModel):
    id: str
    total_minutes: int
    exercises: List[SessionExercise]
    focus_areas: List[str] = []
    plan_rationale: str = "Personalized plan based on your progress"
    estimated_exercise_count: int = 0

class PerformanceSnapshot(CamelModel):
    recent_accuracy: float = 0.0
    consecutive_correct: int = 0
    consecutive_wrong: int = 0
    current_difficulty: Difficulty = "easy"
    adaptations_made: int = 0

class SessionMessage(CamelModel):
    id: str
    role: Literal["tutor", "user", "system"] = "tutor"
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    type: Optional[MessageType] = None

class ActiveSession(CamelModel):
    id: str
    plan: SessionPlan
    started_at: datetime = Field(default_factory=utcnow)
    total_minutes: int
    time_remaining: int
    status: SessionStatus = "running"
    current_exercise_index: int = 0
    exercises_completed: int = 0
    exercises_correct: int = 0
    hints_used_total: int = 0
    messages: List[SessionMessage] = []
    performance: PerformanceSnapshot
    difficulty_history: List[Difficulty] = []

class AdaptationResult(CamelModel):
    should_adjust_difficulty: bool = False
    new_difficulty: Optional[Difficulty] = None
    tutor_tip: Optional[str] = None
    tip_type: Optional[TipType] = None

class ProactiveTip(CamelModel):
    tip: str
    type: TipType

ReadinessLevelName = Literal["not-ready", "almost-ready", "ready"]

class ReadinessAssessment(CamelModel):
    level: ReadinessLevelName
    description: str
    specific_feedback: str
    percentage: int
    strong_areas: List[str] = []
    weak_areas: List[str] = []

class SessionSummary(CamelModel):
    id: Optional[str] = None
    session_id: str
    accuracy: int
    exercises_completed: int
    exercises_correct: int
    hints_used: int
    duration_minutes: int
    xp_earned: int
    difficulty_progression: str
    adaptations_made: int
    readiness: ReadinessAssessment
    ended_reason: Literal["ended", "time_expired"] = "ended"

class PlanSessionRequest(CamelModel):
    user_id: str
    duration_minutes: Optional[int] = Field(default=None, ge=5, le=120)
    selected_subtopic_ids: List[str] = []

class StartSessionRequest(CamelModel):
    plan: SessionPlan

class StartSessionResponse(CamelModel):
    session_id: str
    session: ActiveSession

class CompleteExerciseRequest(CamelModel):
    was_correct: bool
    hints_used: int = Field(default=0, ge=0, le=100)

class CompleteExerciseResponse(CamelModel):
    adaptation: AdaptationResult
    session: ActiveSession

class ReadinessRequest(CamelModel):
    correct_count: int = Field(ge=0)
    total_count: int = Field(ge=0)
    performance_by_difficulty: Dict[Difficulty, TierStats] = {}
