"""
Reputation Engine - Weighted 0-100 expert score and level.
"""

from collections.abc import Callable
from datetime import datetime
from uuid import UUID

from structlog import get_logger

from qa_engine.db.models import utc_now
from qa_engine.db.store import QuestionStore
from qa_engine.models.domain import ReputationMetrics, ReputationScore

logger = get_logger(__name__)

WEIGHT_RATING = 0.30
WEIGHT_ACCEPTANCE = 0.20
WEIGHT_RESPONSE_TIME = 0.15
WEIGHT_TIER_UPGRADE = 0.15
WEIGHT_CORRECTIONS = 0.10
WEIGHT_GRADUATIONS = 0.10

NEUTRAL_SCORE = 50.0
MAX_VOLUME_BONUS = 5.0

LEVEL_THRESHOLDS = (("platinum", 85.0), ("gold", 65.0), ("silver", 40.0), ("bronze", 0.0))


def expert_level(score: float) -> str:
    for level, threshold in LEVEL_THRESHOLDS:
        if score >= threshold:
            return level
    return "bronze"


def response_time_score(avg_minutes: float | None) -> float:
    if avg_minutes is None:
        return NEUTRAL_SCORE
    if avg_minutes <= 15:
        return 100.0
    if avg_minutes <= 30:
        return 80.0
    if avg_minutes <= 60:
        return 60.0
    if avg_minutes <= 120:
        return 40.0
    return 20.0


def calculate_reputation(m: ReputationMetrics) -> ReputationScore:
    """Composite score: weighted components plus a small volume bonus, capped at 100."""
    rating = (m.avg_rating - 1) / 4 * 100 if m.avg_rating is not None else NEUTRAL_SCORE
    rating = max(0.0, min(100.0, rating))
    acceptance = (
        m.total_accepted / m.total_answered * 100 if m.total_answered > 0 else NEUTRAL_SCORE
    )
    tier_upgrade = (
        m.tier_upgrade_count / m.tier_eligible_count * 100
        if m.tier_eligible_count > 0
        else NEUTRAL_SCORE
    )
    corrections = min(100.0, m.correction_count * 20.0)
    graduations = min(100.0, m.graduation_count * 25.0)

    composite = (
        rating * WEIGHT_RATING
        + acceptance * WEIGHT_ACCEPTANCE
        + response_time_score(m.avg_response_minutes) * WEIGHT_RESPONSE_TIME
        + min(100.0, tier_upgrade) * WEIGHT_TIER_UPGRADE
        + corrections * WEIGHT_CORRECTIONS
        + graduations * WEIGHT_GRADUATIONS
    )
    volume_bonus = min(MAX_VOLUME_BONUS, m.total_answered * 0.5)
    score = round(min(100.0, composite + volume_bonus), 2)
    return ReputationScore(score=score, level=expert_level(score))


class ReputationEngine:
    """Recomputes and persists an expert's reputation."""

    def __init__(self, store: QuestionStore, clock: Callable[[], datetime] = utc_now) -> None:
        self.store = store
        self.clock = clock

    async def recalculate(self, expert_id: UUID) -> ReputationScore:
        metrics = await self.store.expert_reputation_metrics(expert_id)
        result = calculate_reputation(metrics)
        await self.store.update_expert(
            expert_id,
            reputation_score=result.score,
            reputation_level=result.level,
            reputation_updated_at=self.clock(),
        )
        await self.store.commit()
        logger.info(
            "reputation_recalculated",
            expert_id=str(expert_id),
            score=result.score,
            level=result.level,
        )
        return result
