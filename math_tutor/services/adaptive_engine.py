"""Difficulty progression rules.

Difficulty is a (tier, sub-level) pair ordered easy/1 < easy/2 < ... < hard/3.
Everything here is a pure function of its inputs so it can be exercised without a store.
"""
import math
import random
from typing import Dict, List, Literal, Optional, Sequence
from pydantic import BaseModel
from ..models import Difficulty, DifficultyState, MasteryCheck, PerformanceWindow, SubtopicProgress, TierStats

TIERS: List[Difficulty] = ["easy", "medium", "hard"]
SUB_LEVELS = 3
TIER_ENTRY_SUB_LEVEL = 2

STREAK_TO_STEP = 2
ADVANCE_RATE = 0.85
ADVANCE_MIN_ATTEMPTS = 5
REGRESS_RATE = 0.30
REGRESS_MIN_ATTEMPTS = 4

MASTERY_THRESHOLDS = {
    "easy": {"required_streak": 3, "required_accuracy": 75, "min_attempts": 5},
    "medium": {"required_streak": 3, "required_accuracy": 75, "min_attempts": 5},
    "hard": {"required_streak": 4, "required_accuracy": 80, "min_attempts": 7},
}

Reason = Literal["streak_up", "streak_down", "mastery_up", "mastery_down", "hold"]

class Recommendation(BaseModel):
    state: DifficultyState
    reason: Reason

def rank(state: DifficultyState) -> int:
    return TIERS.index(state.tier) * SUB_LEVELS + state.sub_level - 1

def from_rank(value: int) -> DifficultyState:
    value = max(0, min(value, len(TIERS) * SUB_LEVELS - 1))
    return DifficultyState(tier=TIERS[value // SUB_LEVELS], sub_level=value % SUB_LEVELS + 1)

def step_up(state: DifficultyState) -> DifficultyState:
    return from_rank(rank(state) + 1)

def step_down(state: DifficultyState) -> DifficultyState:
    return from_rank(rank(state) - 1)

def tier_up(state: DifficultyState) -> Optional[DifficultyState]:
    idx = TIERS.index(state.tier)
    if idx == len(TIERS) - 1:
        return None
    return DifficultyState(tier=TIERS[idx + 1], sub_level=TIER_ENTRY_SUB_LEVEL)

def tier_down(state: DifficultyState) -> Optional[DifficultyState]:
    idx = TIERS.index(state.tier)
    if idx == 0:
        return None
    return DifficultyState(tier=TIERS[idx - 1], sub_level=TIER_ENTRY_SUB_LEVEL)

def shift_tier(tier: Difficulty, direction: str) -> Difficulty:
    idx = TIERS.index(tier)
    if direction == "increase" and idx < len(TIERS) - 1:
        return TIERS[idx + 1]
    if direction == "decrease" and idx > 0:
        return TIERS[idx - 1]
    return tier

def recommend_difficulty(is_correct: bool, window: PerformanceWindow, current: DifficultyState, success_rates: Dict[str, TierStats]) -> Recommendation:
    """Combine the streak signal and the current tier's aggregate accuracy.

    The streak moves one sub-level; the aggregate moves a whole tier and, when it
    fires, replaces whatever the streak decided.
    """
    state = current
    reason: Reason = "hold"
    if is_correct and window.consecutive_correct >= STREAK_TO_STEP:
        state, reason = step_up(current), "streak_up"
    elif not is_correct and window.consecutive_wrong >= STREAK_TO_STEP:
        state, reason = step_down(current), "streak_down"

    stats = success_rates.get(current.tier)
    if stats is not None:
        if stats.total >= ADVANCE_MIN_ATTEMPTS and stats.rate >= ADVANCE_RATE:
            override = tier_up(current)
            if override is not None:
                state, reason = override, "mastery_up"
        elif stats.total >= REGRESS_MIN_ATTEMPTS and stats.rate < REGRESS_RATE:
            override = tier_down(current)
            if override is not None:
                state, reason = override, "mastery_down"

    if state == current:
        reason = "hold"
    return Recommendation(state=state, reason=reason)

def describe_progression(recommendation: Recommendation, current: DifficultyState, success_rates: Dict[str, TierStats]) -> tuple[str, str]:
    state = recommendation.state
    stats = success_rates.get(current.tier) or TierStats()
    rate = round(stats.rate * 100)
    if recommendation.reason == "streak_up":
        message = f"Two in a row! Moving up to {state.tier} level {state.sub_level}."
    elif recommendation.reason == "mastery_up":
        message = f"{rate}% accuracy on {current.tier} problems. Jumping to {state.tier}."
    elif recommendation.reason == "streak_down":
        message = f"Let's step back to {state.tier} level {state.sub_level} and rebuild."
    elif recommendation.reason == "mastery_down":
        message = f"{current.tier.capitalize()} problems are a stretch right now. Switching to {state.tier} for a while."
    else:
        message = f"Staying at {state.tier} level {state.sub_level}."

    if stats.total == 0:
        advice = "Keep going so we can learn where you are."
    elif stats.rate >= ADVANCE_RATE:
        advice = "You're consistent at this level. Try explaining each step as you go."
    elif stats.rate < REGRESS_RATE:
        advice = "Review the theory and use hints before answering."
    elif stats.rate < 0.6:
        advice = "Slow down and check each step before submitting."
    else:
        advice = "Good progress. A couple more correct answers in a row will move you up."
    return message, advice

def starting_difficulty(progress: SubtopicProgress | None, recent_attempts: Sequence[bool]) -> DifficultyState:
    """Pick an entry point for a subtopic from stored mastery, then from recent attempts."""
    if progress is not None and progress.exercises_completed >= 5:
        if progress.mastery_percentage >= 80:
            return DifficultyState(tier="hard", sub_level=2)
        if progress.mastery_percentage >= 50:
            return DifficultyState(tier="medium", sub_level=2)
        if progress.mastery_percentage >= 30:
            return DifficultyState(tier="easy", sub_level=3)
    if len(recent_attempts) >= 3:
        correct_rate = sum(1 for r in recent_attempts if r) / len(recent_attempts)
        if correct_rate >= 0.8:
            return DifficultyState(tier="medium", sub_level=2)
        if correct_rate < 0.3:
            return DifficultyState(tier="easy", sub_level=1)
    return DifficultyState(tier="easy", sub_level=2)

def check_mastery(tier: Difficulty, consecutive_correct: int, total_attempts: int, correct_attempts: int) -> MasteryCheck:
    threshold = MASTERY_THRESHOLDS[tier]
    accuracy = correct_attempts / total_attempts * 100 if total_attempts else 0.0
    if consecutive_correct >= threshold["required_streak"]:
        return MasteryCheck(is_mastered=True, progress=100, progress_type="streak", message=f"{threshold['required_streak']} correct in a row! Level up!")
    if total_attempts >= threshold["min_attempts"] and accuracy >= threshold["required_accuracy"]:
        return MasteryCheck(is_mastered=True, progress=100, progress_type="accuracy", message=f"{round(accuracy)}% accuracy achieved! Level up!")

    streak_progress = consecutive_correct / threshold["required_streak"] * 100
    if total_attempts >= threshold["min_attempts"]:
        accuracy_progress = accuracy / threshold["required_accuracy"] * 100
    else:
        # building up attempts earns half credit
        accuracy_progress = total_attempts / threshold["min_attempts"] * 50
    if streak_progress > accuracy_progress:
        message = f"{threshold['required_streak'] - consecutive_correct} more correct in a row to advance"
    elif total_attempts < threshold["min_attempts"]:
        message = f"{threshold['min_attempts'] - total_attempts} more attempts needed"
    else:
        needed = math.ceil(threshold["required_accuracy"] * total_attempts / 100) - correct_attempts
        message = f"Need {needed} more correct for {threshold['required_accuracy']}% accuracy"
    return MasteryCheck(
        is_mastered=False,
        progress=int(min(max(streak_progress, accuracy_progress), 99)),
        progress_type="streak" if streak_progress >= accuracy_progress else "accuracy",
        message=message,
    )

INCORRECT_FEEDBACK = [
    "Let's work through this together.",
    "Good attempt! Let's see where to adjust.",
    "Almost there! Let's review the approach.",
]

def calibrated_feedback(is_correct: bool, tier: Difficulty, consecutive_correct: int, rng: random.Random | None = None) -> str:
    if not is_correct:
        return (rng or random).choice(INCORRECT_FEEDBACK)
    if tier == "easy":
        return "Nice streak!" if consecutive_correct >= 3 else "Correct!"
    if tier == "medium":
        return "Excellent work!" if consecutive_correct >= 3 else "Nice work!"
    return "Outstanding! That was challenging!" if consecutive_correct >= 2 else "Excellent! That was a tough one!"
