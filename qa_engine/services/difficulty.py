"""
Difficulty Scorer - Rates a question 1-10 from contextual signals.

Pure and deterministic: no I/O, no side effects.
"""

from qa_engine.models.api import DifficultyTier
from qa_engine.models.domain import AIContext, DifficultyResult

CODE_REGULATED_CATEGORIES = frozenset({"electrical", "plumbing", "hvac", "roofing", "concrete"})

BASE_SCORE = 1
MIN_SCORE = 1
MAX_SCORE = 10
MAX_SAFETY_POINTS = 3
FREE_PHOTOS = 2
MAX_PHOTO_POINTS = 2
DETAILED_QUESTION_CHARS = 200
DEFAULT_HIGH_VALUE_CENTS = 50000


def tier_for_score(score: int) -> DifficultyTier:
    """Map a 1-10 score to its tier."""
    if score <= 3:
        return DifficultyTier.STANDARD
    if score <= 6:
        return DifficultyTier.COMPLEX
    return DifficultyTier.SPECIALIST


def is_code_regulated(category: str) -> bool:
    return category in CODE_REGULATED_CATEGORIES


def score_difficulty(
    ai_context: AIContext | None,
    category: str,
    question_text: str,
    photo_count: int = 0,
    high_value_project_cents: int = DEFAULT_HIGH_VALUE_CENTS,
) -> DifficultyResult:
    """
    Score a question's difficulty.

    Additive from a base of 1:
    - +3 professional recommended
    - +1 per safety warning (max 3)
    - +1 per photo beyond the first two (max 2)
    - +1 code-regulated category
    - +2 advanced / +1 intermediate skill level
    - +1 question text longer than 200 characters
    - +1 estimated project cost above the high-value threshold

    The total is clamped to [1, 10].
    """
    score = BASE_SCORE
    factors: list[str] = []

    if ai_context is not None:
        if ai_context.pro_required:
            score += 3
            factors.append("Professional recommended")

        warnings = len(ai_context.safety_warnings)
        if warnings > 0:
            score += min(warnings, MAX_SAFETY_POINTS)
            plural = "s" if warnings > 1 else ""
            factors.append(f"{warnings} safety consideration{plural}")

    if photo_count > FREE_PHOTOS:
        score += min(photo_count - FREE_PHOTOS, MAX_PHOTO_POINTS)
        factors.append(f"{photo_count} photos attached")

    if is_code_regulated(category):
        score += 1
        factors.append(f"Code-regulated trade ({category})")

    if ai_context is not None and ai_context.skill_level:
        skill = ai_context.skill_level.strip().lower()
        if skill == "advanced":
            score += 2
            factors.append("Advanced skill level")
        elif skill == "intermediate":
            score += 1
            factors.append("Intermediate skill level")

    if len(question_text) > DETAILED_QUESTION_CHARS:
        score += 1
        factors.append("Detailed question")

    if (
        ai_context is not None
        and ai_context.estimated_cost_cents is not None
        and ai_context.estimated_cost_cents > high_value_project_cents
    ):
        score += 1
        factors.append("High-value project")

    score = max(MIN_SCORE, min(MAX_SCORE, score))
    return DifficultyResult(score=score, tier=tier_for_score(score), factors=tuple(factors))
