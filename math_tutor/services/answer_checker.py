import logging
import re
from typing import Dict, List, Optional
from ..models import Attempt, Difficulty, Evaluation, Exercise, PerformanceWindow, SubtopicProgress, TierStats
from ..state import PersistenceError, RecordStore
from .adaptive_engine import TIERS

logger = logging.getLogger("math_tutor")

_WHITESPACE = re.compile(r"\s+")

class ExerciseNotFound(Exception):
    def __init__(self, exercise_id: str) -> None:
        super().__init__(f"exercise_not_found:{exercise_id}")
        self.exercise_id = exercise_id

def normalize(answer: str | None) -> str:
    """Canonical form used for answer comparison.

    Case, whitespace and commas are dropped; the plus-minus glyph becomes ``+-``
    and the unicode minus becomes ``-``.
    """
    text = (answer or "").lower()
    text = _WHITESPACE.sub("", text)
    text = text.replace(",", "").replace("±", "+-").replace("−", "-")
    return text

def answers_match(user_answer: str | None, correct_answer: str) -> bool:
    if not user_answer or not user_answer.strip():
        return False
    return normalize(user_answer) == normalize(correct_answer)

def compute_streaks(outcomes: List[bool]) -> tuple[int, int]:
    """Leading correct/wrong run lengths of a newest-first outcome list."""
    consecutive_correct = 0
    for outcome in outcomes:
        if not outcome:
            break
        consecutive_correct += 1
    consecutive_wrong = 0
    for outcome in outcomes:
        if outcome:
            break
        consecutive_wrong += 1
    return consecutive_correct, consecutive_wrong

def fold_outcome(window: PerformanceWindow, is_correct: bool, difficulty: Difficulty) -> PerformanceWindow:
    """Window as it stands once the just-submitted attempt is counted."""
    tiers = {tier: stats.model_copy() for tier, stats in window.tiers.items()}
    stats = tiers.setdefault(difficulty, TierStats())
    stats.total += 1
    stats.correct += 1 if is_correct else 0
    consecutive_correct, consecutive_wrong = window.consecutive_correct, window.consecutive_wrong
    if difficulty == window.current_difficulty:
        if is_correct:
            consecutive_correct, consecutive_wrong = consecutive_correct + 1, 0
        else:
            consecutive_correct, consecutive_wrong = 0, consecutive_wrong + 1
    return PerformanceWindow(
        current_difficulty=window.current_difficulty,
        tiers=tiers,
        consecutive_correct=consecutive_correct,
        consecutive_wrong=consecutive_wrong,
    )

def success_rates(window: PerformanceWindow) -> Dict[str, int]:
    return {tier: round(window.tiers[tier].rate * 100) for tier in TIERS}

class AnswerChecker:
    """Grades submissions, records attempts and aggregates recent performance."""

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def get_exercise(self, exercise_id: str) -> Exercise:
        exercise = self.store.get("exercises", exercise_id)
        if exercise is None:
            raise ExerciseNotFound(exercise_id)
        return exercise

    def evaluate(self, exercise_id: str, user_id: str, user_answer: str | None, hints_used: int | None = 0, time_spent_seconds: int | None = None) -> Evaluation:
        """Grade one submission and record it.

        The correct answer only leaves this method once the attempt is stored;
        a failed insert raises ``PersistenceError`` and nothing is revealed.
        """
        exercise = self.get_exercise(exercise_id)
        is_correct = answers_match(user_answer, exercise.correct_answer)
        attempt = Attempt(
            exercise_id=exercise_id,
            user_id=user_id,
            user_answer=user_answer or None,
            is_correct=is_correct,
            hints_used=hints_used or 0,
            time_spent_seconds=time_spent_seconds or None,
        )
        attempt = self.store.insert("exercise_attempts", attempt)
        logger.debug({"event": "answer_checked", "exercise_id": exercise_id, "user_id": user_id, "is_correct": is_correct, "attempt_id": attempt.id})
        self._update_subtopic_progress(user_id, exercise.subtopic_id, is_correct, attempt.hints_used)
        return Evaluation(
            is_correct=is_correct,
            correct_answer=exercise.correct_answer,
            explanation=exercise.explanation,
            attempt=attempt,
            exercise=exercise,
        )

    def recent_attempts(self, user_id: str, subtopic_id: str, limit: int, exclude_attempt_id: str | None = None) -> List[tuple[Attempt, Exercise]]:
        joined: List[tuple[Attempt, Exercise]] = []
        for attempt in self.store.select("exercise_attempts", where=lambda a: a.user_id == user_id, newest_first=True):
            if attempt.id == exclude_attempt_id:
                continue
            exercise = self.store.get("exercises", attempt.exercise_id)
            if exercise is None or exercise.subtopic_id != subtopic_id:
                continue
            joined.append((attempt, exercise))
            if len(joined) >= limit:
                break
        return joined

    def recent_subtopic_outcomes(self, user_id: str, subtopic_id: str, limit: int = 10) -> List[bool]:
        """Outcomes in ``subtopic_id`` among the user's ``limit`` most recent attempts overall."""
        outcomes: List[bool] = []
        for attempt in self.store.select("exercise_attempts", where=lambda a: a.user_id == user_id, newest_first=True, limit=limit):
            exercise = self.store.get("exercises", attempt.exercise_id)
            if exercise is not None and exercise.subtopic_id == subtopic_id:
                outcomes.append(attempt.is_correct)
        return outcomes

    def compute_window(self, user_id: str, subtopic_id: str, current_difficulty: Difficulty, lookback_limit: int, exclude_attempt_id: str | None = None) -> PerformanceWindow:
        history = self.recent_attempts(user_id, subtopic_id, lookback_limit, exclude_attempt_id)
        tiers = {tier: TierStats() for tier in TIERS}
        for attempt, exercise in history:
            stats = tiers[exercise.difficulty]
            stats.total += 1
            if attempt.is_correct:
                stats.correct += 1
        at_current = [attempt.is_correct for attempt, exercise in history if exercise.difficulty == current_difficulty]
        consecutive_correct, consecutive_wrong = compute_streaks(at_current)
        return PerformanceWindow(
            current_difficulty=current_difficulty,
            tiers=tiers,
            consecutive_correct=consecutive_correct,
            consecutive_wrong=consecutive_wrong,
        )

    def get_progress(self, user_id: str, subtopic_id: str) -> Optional[SubtopicProgress]:
        rows = self.store.select("user_subtopic_progress", where=lambda p: p.user_id == user_id and p.subtopic_id == subtopic_id, limit=1)
        return rows[0] if rows else None

    def _update_subtopic_progress(self, user_id: str, subtopic_id: str, is_correct: bool, hints_used: int) -> None:
        try:
            existing = self.get_progress(user_id, subtopic_id)
            if existing is None:
                self.store.insert("user_subtopic_progress", SubtopicProgress(
                    user_id=user_id,
                    subtopic_id=subtopic_id,
                    exercises_completed=1,
                    exercises_correct=1 if is_correct else 0,
                    hints_used=hints_used,
                    mastery_percentage=100 if is_correct else 0,
                ))
                return
            completed = existing.exercises_completed + 1
            correct = existing.exercises_correct + (1 if is_correct else 0)
            self.store.update(
                "user_subtopic_progress",
                existing.id,
                exercises_completed=completed,
                exercises_correct=correct,
                hints_used=existing.hints_used + hints_used,
                mastery_percentage=round(correct / completed * 100),
            )
        except PersistenceError:
            logger.exception("subtopic_progress_update_failed")
