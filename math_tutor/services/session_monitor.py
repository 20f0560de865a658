import asyncio
import logging
import random
import time
import uuid
from enum import Enum
from typing import Callable, Dict, List, Optional, Set
from ..config import settings
from ..models import (
	ActiveSession,
	AdaptationResult,
	Difficulty,
	MessageType,
	PerformanceSnapshot,
	ProactiveTip,
	SessionExercise,
	SessionMessage,
	SessionPlan,
	SessionSummary,
	TierStats,
	TipType,
)
from ..state import PersistenceError, RecordStore
from .adaptive_engine import TIERS, shift_tier
from .readiness import assess_readiness

logger = logging.getLogger("math_tutor")

class TipCategory(str, Enum):
	STRUGGLING = "struggling"
	EXCELLING = "excelling"
	COMEBACK = "comeback"
	IMPROVING = "improving"
	CELEBRATION = "celebration"
	GENERAL = "general"

TIP_TYPES: Dict[TipCategory, TipType] = {
	TipCategory.STRUGGLING: "guidance",
	TipCategory.EXCELLING: "celebration",
	TipCategory.COMEBACK: "encouragement",
	TipCategory.IMPROVING: "encouragement",
	TipCategory.CELEBRATION: "celebration",
	TipCategory.GENERAL: "tip",
}

TUTOR_TIPS: Dict[TipCategory, List[str]] = {
	TipCategory.STRUGGLING: [
		"Take your time! Understanding is more important than speed.",
		"Would you like me to show you the step-by-step solution?",
		"Let's try a simpler version of this problem first.",
		"Don't worry about mistakes - they help you learn!",
		"Try reading the hint - it might give you a fresh perspective.",
	],
	TipCategory.IMPROVING: [
		"Nice progress! You're getting the hang of this.",
		"Good work! Try to explain your reasoning out loud.",
		"You're building momentum - keep it up!",
		"I can see you're improving with each problem.",
	],
	TipCategory.EXCELLING: [
		"Excellent! Ready for a tougher challenge?",
		"You're mastering this! Let's increase the difficulty.",
		"Impressive accuracy! Time to level up.",
		"You've got this down - let's push further!",
	],
	TipCategory.COMEBACK: [
		"Great job bouncing back!",
		"That's the persistence I like to see!",
		"You figured it out - well done!",
	],
	TipCategory.CELEBRATION: [
		"Time's up! Great work today. Let's wrap up this session.",
		"That's time! You put in real effort today.",
	],
	TipCategory.GENERAL: [
		"Remember to check your work before submitting.",
		"Drawing a diagram often helps visualize the problem.",
		"Try breaking this into smaller steps.",
		"What formula or theorem applies here?",
	],
}

LOW_TIME_UPPER_SECONDS = 300
LOW_TIME_LOWER_SECONDS = 60
HALFWAY_PERCENT = 50
ALMOST_DONE_PERCENT = 90

XP_REWARDS: Dict[str, int] = {"easy": 5, "medium": 10, "hard": 20}

class SessionError(Exception):
	pass

class TipThrottle:
	"""Shared cooldown for tutor messages. Difficulty changes never go through it."""

	def __init__(self, clock: Callable[[], float]) -> None:
		self.clock = clock
		self.last_tip_at: Optional[float] = None

	def ready(self, cooldown: float) -> bool:
		return self.last_tip_at is None or self.clock() - self.last_tip_at >= cooldown

	def mark(self) -> None:
		self.last_tip_at = self.clock()

	def reset(self) -> None:
		self.last_tip_at = None

class SessionManager:
	"""Owns at most one live practice session and adapts it as exercises complete.

	Lifecycle is running -> paused -> running ... -> ended. The countdown only moves
	while running; ``tick`` is the one-second callback, ``sync_clock`` catches up
	from the injected clock when no callback is driving it.
	"""

	def __init__(self, store: RecordStore | None = None, clock: Callable[[], float] = time.monotonic, rng: random.Random | None = None, tip_cooldown: float | None = None, proactive_cooldown: float | None = None, filler_probability: float | None = None) -> None:
		self.store = store
		self.clock = clock
		self.rng = rng or random.Random()
		self.tip_cooldown = settings.tip_cooldown_seconds if tip_cooldown is None else tip_cooldown
		self.proactive_cooldown = settings.proactive_tip_cooldown_seconds if proactive_cooldown is None else proactive_cooldown
		self.filler_probability = settings.filler_tip_probability if filler_probability is None else filler_probability
		self.throttle = TipThrottle(clock)
		self.session: Optional[ActiveSession] = None
		self.last_summary: Optional[SessionSummary] = None
		self._last_tick_at: Optional[float] = None
		self._milestones_fired: Set[str] = set()

	@property
	def is_running(self) -> bool:
		return self.session is not None and self.session.status == "running"

	@property
	def current_exercise(self) -> Optional[SessionExercise]:
		if self.session is None:
			return None
		exercises = self.session.plan.exercises
		idx = self.session.current_exercise_index
		return exercises[idx] if idx < len(exercises) else None

	def start_session(self, plan: SessionPlan) -> ActiveSession:
		if self.session is not None:
			raise SessionError("session_already_active")
		difficulty: Difficulty = plan.exercises[0].difficulty if plan.exercises else "easy"
		self.session = ActiveSession(
			id=str(uuid.uuid4()),
			plan=plan.model_copy(deep=True),
			total_minutes=plan.total_minutes,
			time_remaining=plan.total_minutes * 60,
			performance=PerformanceSnapshot(current_difficulty=difficulty),
			difficulty_history=[difficulty],
		)
		self.last_summary = None
		self.throttle.reset()
		self._milestones_fired = set()
		self._last_tick_at = self.clock()
		self.add_tutor_message(
			f"Let's get started! I've planned {len(plan.exercises)} exercises for our {plan.total_minutes}-minute session. {plan.plan_rationale}",
			"greeting",
		)
		logger.debug({"event": "session_started", "session_id": self.session.id, "exercises": len(plan.exercises), "difficulty": difficulty})
		return self.session

	def pause_session(self) -> bool:
		if not self.is_running:
			return False
		self.sync_clock()
		if self.session is None:
			return False
		self.session.status = "paused"
		logger.debug({"event": "session_paused", "session_id": self.session.id, "time_remaining": self.session.time_remaining})
		return True

	def resume_session(self) -> bool:
		if self.session is None or self.session.status != "paused":
			return False
		self.session.status = "running"
		self._last_tick_at = self.clock()
		logger.debug({"event": "session_resumed", "session_id": self.session.id})
		return True

	def tick(self, seconds: int = 1) -> int:
		if not self.is_running:
			return self.session.time_remaining if self.session else 0
		self.session.time_remaining = max(0, self.session.time_remaining - seconds)
		if self.session.time_remaining == 0:
			self.add_tutor_message(self.rng.choice(TUTOR_TIPS[TipCategory.CELEBRATION]), TIP_TYPES[TipCategory.CELEBRATION])
			self.end_session(reason="time_expired")
			return 0
		return self.session.time_remaining

	def sync_clock(self) -> int:
		if not self.is_running:
			return self.session.time_remaining if self.session else 0
		now = self.clock()
		if self._last_tick_at is None:
			self._last_tick_at = now
		elapsed = int(now - self._last_tick_at)
		if elapsed < 1:
			return self.session.time_remaining
		self._last_tick_at += elapsed
		return self.tick(elapsed)

	async def run_countdown(self, interval: float = 1.0) -> None:
		while self.session is not None:
			await asyncio.sleep(interval)
			if self.is_running:
				self.tick()

	def add_tutor_message(self, content: str, message_type: MessageType | None = None) -> None:
		if self.session is None:
			return
		self.session.messages.append(SessionMessage(id=str(uuid.uuid4()), content=content, type=message_type))

	def mark_exercise_complete(self, was_correct: bool, hints_used: int = 0) -> Optional[AdaptationResult]:
		if not self.is_running:
			return None
		session = self.session
		perf = session.performance
		exercise = self.current_exercise
		if exercise is not None and not exercise.completed:
			session.plan.exercises[session.current_exercise_index] = exercise.model_copy(update={
				"completed": True,
				"was_correct": was_correct,
				"hints_used": hints_used,
				"attempted_difficulty": perf.current_difficulty,
			})

		session.exercises_completed += 1
		session.exercises_correct += 1 if was_correct else 0
		session.hints_used_total += hints_used
		if was_correct:
			perf.consecutive_correct += 1
			perf.consecutive_wrong = 0
		else:
			perf.consecutive_wrong += 1
			perf.consecutive_correct = 0
		perf.recent_accuracy = round(session.exercises_correct / session.exercises_completed * 100, 1)
		if session.current_exercise_index + 1 < len(session.plan.exercises):
			session.current_exercise_index += 1

		result = self.evaluate_adaptation()
		if result.should_adjust_difficulty and result.new_difficulty is not None:
			previous = perf.current_difficulty
			perf.current_difficulty = result.new_difficulty
			perf.adaptations_made += 1
			# streaks are counted at the live difficulty only
			perf.consecutive_correct = 0
			perf.consecutive_wrong = 0
			session.difficulty_history.append(result.new_difficulty)
			self.add_tutor_message(f"Adjusting difficulty from {previous} to {result.new_difficulty}.", "adaptation")
		if result.tutor_tip:
			self.add_tutor_message(result.tutor_tip, result.tip_type)
		logger.debug({
			"event": "exercise_completed",
			"session_id": session.id,
			"was_correct": was_correct,
			"hints_used": hints_used,
			"accuracy": perf.recent_accuracy,
			"difficulty": perf.current_difficulty,
			"tip_type": result.tip_type,
		})
		return result

	def evaluate_adaptation(self) -> AdaptationResult:
		"""Apply the first matching rule: struggling, excelling, comeback, improving."""
		session = self.session
		perf = session.performance
		total = session.exercises_completed
		accuracy = perf.recent_accuracy if total else 50.0
		current = perf.current_difficulty

		category: Optional[TipCategory] = None
		new_difficulty: Optional[Difficulty] = None
		if perf.consecutive_wrong >= 2 or (total >= 3 and accuracy < 40 and perf.consecutive_wrong >= 1):
			category = TipCategory.STRUGGLING
			new_difficulty = shift_tier(current, "decrease")
		elif perf.consecutive_correct >= 3 and accuracy >= 80:
			category = TipCategory.EXCELLING
			new_difficulty = shift_tier(current, "increase")
		elif perf.consecutive_correct == 1 and total > 3 and accuracy < 60:
			category = TipCategory.COMEBACK
		elif perf.consecutive_correct >= 2:
			category = TipCategory.IMPROVING

		result = AdaptationResult()
		if new_difficulty is not None:
			result.should_adjust_difficulty = new_difficulty != current
			result.new_difficulty = new_difficulty
		if category is not None and self.throttle.ready(self.tip_cooldown):
			result.tutor_tip = self.rng.choice(TUTOR_TIPS[category])
			result.tip_type = TIP_TYPES[category]
			self.throttle.mark()
		return result

	def get_proactive_tip(self) -> Optional[ProactiveTip]:
		"""At most one time- or progress-based tip, by priority: low time, milestone, filler."""
		if not self.is_running or not self.throttle.ready(self.proactive_cooldown):
			return None
		session = self.session
		planned = len(session.plan.exercises)
		progress = session.exercises_completed / planned * 100 if planned else 0.0

		tip: Optional[ProactiveTip] = None
		if LOW_TIME_LOWER_SECONDS < session.time_remaining < LOW_TIME_UPPER_SECONDS and "low_time" not in self._milestones_fired:
			self._milestones_fired.add("low_time")
			tip = ProactiveTip(tip="5 minutes left! Let's finish strong with one more exercise.", type="encouragement")
		elif progress >= ALMOST_DONE_PERCENT and "almost_done" not in self._milestones_fired:
			self._milestones_fired.update({"halfway", "almost_done"})
			tip = ProactiveTip(tip="Almost done! Just a few more to go.", type="encouragement")
		elif progress >= HALFWAY_PERCENT and "halfway" not in self._milestones_fired:
			self._milestones_fired.add("halfway")
			tip = ProactiveTip(tip="Halfway there! You're doing great.", type="encouragement")
		elif self.rng.random() < self.filler_probability:
			tip = ProactiveTip(tip=self.rng.choice(TUTOR_TIPS[TipCategory.GENERAL]), type=TIP_TYPES[TipCategory.GENERAL])

		if tip is not None:
			self.throttle.mark()
			self.add_tutor_message(tip.tip, tip.type)
		return tip

	def skip_exercise(self) -> bool:
		if self.session is None or self.session.current_exercise_index + 1 >= len(self.session.plan.exercises):
			return False
		self.session.current_exercise_index += 1
		return True

	def get_adapted_exercise(self) -> Optional[SessionExercise]:
		"""The next planned exercise, retargeted to the session's live difficulty."""
		exercise = self.current_exercise
		if exercise is None or exercise.completed:
			return None
		return exercise.model_copy(update={"difficulty": self.session.performance.current_difficulty})

	def end_session(self, reason: str = "ended") -> Optional[SessionSummary]:
		if self.session is None:
			return None
		session = self.session
		by_tier = {tier: TierStats() for tier in TIERS}
		for exercise in session.plan.exercises:
			if not exercise.completed:
				continue
			stats = by_tier[exercise.attempted_difficulty or exercise.difficulty]
			stats.total += 1
			stats.correct += 1 if exercise.was_correct else 0
		readiness = assess_readiness(session.exercises_correct, session.exercises_completed, by_tier)

		progression: List[str] = []
		for tier in session.difficulty_history:
			if not progression or progression[-1] != tier:
				progression.append(tier)
		elapsed_seconds = session.total_minutes * 60 - session.time_remaining
		summary = SessionSummary(
			session_id=session.id,
			accuracy=round(session.exercises_correct / session.exercises_completed * 100) if session.exercises_completed else 0,
			exercises_completed=session.exercises_completed,
			exercises_correct=session.exercises_correct,
			hints_used=session.hints_used_total,
			duration_minutes=round(elapsed_seconds / 60),
			xp_earned=sum(XP_REWARDS[tier] * stats.correct for tier, stats in by_tier.items()),
			difficulty_progression=" → ".join(progression),
			adaptations_made=session.performance.adaptations_made,
			readiness=readiness,
			ended_reason="time_expired" if reason == "time_expired" else "ended",
		)
		if self.store is not None:
			try:
				summary = self.store.insert("session_summaries", summary)
			except PersistenceError:
				logger.exception("session_summary_persist_failed")

		session.status = "ended"
		self.session = None
		self.last_summary = summary
		self._last_tick_at = None
		self.throttle.reset()
		logger.debug({"event": "session_ended", "session_id": session.id, "reason": summary.ended_reason, "accuracy": summary.accuracy, "readiness": readiness.level})
		return summary
