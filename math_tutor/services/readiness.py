from typing import Dict, Mapping
from pydantic import BaseModel
from ..models import ReadinessAssessment, ReadinessLevelName, TierStats

STRENGTH_THRESHOLD = 70

class ReadinessLevel(BaseModel):
    level: ReadinessLevelName
    description: str
    feedback_template: str
    threshold: int

# ascending by threshold; the last one reached wins
READINESS_LEVELS = [
    ReadinessLevel(
        level="not-ready",
        description="Not ready for the exam yet",
        feedback_template="You need more practice with the fundamentals. Focus on: {weak_areas}. Make sure the core rules feel comfortable before attempting harder problems.",
        threshold=0,
    ),
    ReadinessLevel(
        level="almost-ready",
        description="Almost ready, focus on specific areas",
        feedback_template="You're making good progress! You handle {strong_areas} well, but need more work on: {weak_areas}.",
        threshold=60,
    ),
    ReadinessLevel(
        level="ready",
        description="Ready for exam-level problems",
        feedback_template="Excellent work! You demonstrate solid understanding. You can confidently handle {strong_areas}. You're ready for the exam!",
        threshold=80,
    ),
]

AREA_NAMES: Dict[str, str] = {
    "easy": "foundational problems",
    "medium": "multi-step problems",
    "hard": "advanced problems",
}

def assess_readiness(correct_count: int, total_count: int, performance_by_difficulty: Mapping[str, TierStats], area_names: Mapping[str, str] | None = None) -> ReadinessAssessment:
    names = area_names or AREA_NAMES
    percentage = correct_count / total_count * 100 if total_count > 0 else 0.0

    selected = READINESS_LEVELS[0]
    for level in READINESS_LEVELS:
        if percentage >= level.threshold:
            selected = level

    strong_areas = []
    weak_areas = []
    for tier, stats in performance_by_difficulty.items():
        tier_percent = stats.correct / stats.total * 100 if stats.total > 0 else 0.0
        name = names.get(tier, tier)
        if tier_percent >= STRENGTH_THRESHOLD:
            strong_areas.append(name)
        elif stats.total > 0:
            weak_areas.append(name)

    feedback = selected.feedback_template.format(
        strong_areas=", ".join(strong_areas) if strong_areas else "fundamental concepts",
        weak_areas=", ".join(weak_areas) if weak_areas else "advanced techniques",
    )
    return ReadinessAssessment(
        level=selected.level,
        description=selected.description,
        specific_feedback=feedback,
        percentage=round(percentage),
        strong_areas=strong_areas,
        weak_areas=weak_areas,
    )
