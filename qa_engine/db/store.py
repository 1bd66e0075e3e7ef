"""
Question Store - Data access for the Q&A transaction engine.

Every status change goes through update_question_if, a compare-and-swap
conditioned on the expected prior status. A False return means another
actor moved the row first and the caller must not act on it.
"""

from collections.abc import Collection, Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction

from qa_engine.db.models import (
    ExpertProfile,
    ExpertSpecialty,
    Notification,
    QAActivityLog,
    QAMessage,
    QAQuestion,
    QATierPayment,
    utc_now,
)
from qa_engine.models.api import (
    ANSWERED_STATUSES,
    ActivityEventType,
    ParticipantRole,
    QuestionStatus,
)
from qa_engine.models.domain import ReputationMetrics


class QuestionStore:
    """Async repository over the qa_* tables."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize store with database session."""
        self.session = session

    # ------------------------------------------------------------------
    # Questions
    # ------------------------------------------------------------------

    async def get_question(self, question_id: UUID) -> QAQuestion | None:
        """Fetch a question by id, bypassing the identity map cache."""
        stmt = (
            select(QAQuestion)
            .where(QAQuestion.id == question_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def add_question(self, question: QAQuestion) -> None:
        """Insert a new question."""
        self.session.add(question)
        await self.session.flush()

    async def update_question_if(
        self,
        question_id: UUID,
        expected_statuses: Collection[QuestionStatus],
        expected_tier: int | None = None,
        **values: Any,
    ) -> bool:
        """
        Conditionally update a question.

        Returns True only if the row was still in one of expected_statuses
        (and at expected_tier, when given).
        """
        stmt = (
            update(QAQuestion)
            .where(QAQuestion.id == question_id)
            .where(QAQuestion.status.in_(list(expected_statuses)))
        )
        if expected_tier is not None:
            stmt = stmt.where(QAQuestion.current_tier == expected_tier)
        stmt = stmt.values(**values, updated_at=utc_now()).execution_options(
            synchronize_session=False
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def update_question(self, question_id: UUID, **values: Any) -> None:
        """Unconditional bookkeeping update (refund ids, transfer ids)."""
        stmt = (
            update(QAQuestion)
            .where(QAQuestion.id == question_id)
            .values(**values, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)

    async def count_questions_by_asker(self, user_id: str) -> int:
        """Number of questions ever submitted by a user."""
        stmt = select(func.count(QAQuestion.id)).where(QAQuestion.diyer_user_id == user_id)
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def find_second_opinion(self, parent_question_id: UUID) -> QAQuestion | None:
        """The live second opinion for a parent, if any. Cancelled children don't count."""
        stmt = (
            select(QAQuestion)
            .where(QAQuestion.parent_question_id == parent_question_id)
            .where(QAQuestion.status != QuestionStatus.CANCELLED)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def select_expired_claim_ids(self, now: datetime) -> list[UUID]:
        """Ids of claimed questions whose claim window has passed."""
        stmt = (
            select(QAQuestion.id)
            .where(QAQuestion.status == QuestionStatus.CLAIMED)
            .where(QAQuestion.claim_expires_at < now)
            .order_by(QAQuestion.claim_expires_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def select_auto_accept_ids(self, cutoff: datetime) -> list[UUID]:
        """Ids of answered questions whose answer is older than cutoff."""
        stmt = (
            select(QAQuestion.id)
            .where(QAQuestion.status == QuestionStatus.ANSWERED)
            .where(QAQuestion.answered_at < cutoff)
            .order_by(QAQuestion.answered_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_settled_for_pair(
        self, diyer_user_id: str, expert_id: UUID, since: datetime
    ) -> Sequence[QAQuestion]:
        """Accepted questions between one asker and one expert since a point in time."""
        stmt = (
            select(QAQuestion)
            .where(QAQuestion.diyer_user_id == diyer_user_id)
            .where(QAQuestion.expert_id == expert_id)
            .where(QAQuestion.status == QuestionStatus.ACCEPTED)
            .where(QAQuestion.resolved_at >= since)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    # ------------------------------------------------------------------
    # Experts
    # ------------------------------------------------------------------

    async def get_expert_profile(self, expert_id: UUID) -> ExpertProfile | None:
        """Fetch an expert profile by id."""
        result = await self.session.execute(
            select(ExpertProfile).where(ExpertProfile.id == expert_id)
        )
        return result.scalar_one_or_none()

    async def get_expert_by_user(self, user_id: str) -> ExpertProfile | None:
        """Fetch the expert profile owned by a user, if any."""
        result = await self.session.execute(
            select(ExpertProfile).where(ExpertProfile.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def matching_expert_user_ids(
        self, category: str, exclude_user_ids: Collection[str] = ()
    ) -> list[str]:
        """User ids of active, available experts with a matching specialty."""
        stmt = (
            select(ExpertProfile.user_id)
            .join(ExpertSpecialty, ExpertSpecialty.expert_id == ExpertProfile.id)
            .where(ExpertSpecialty.category == category)
            .where(ExpertProfile.is_active.is_(True))
            .where(ExpertProfile.is_available.is_(True))
        )
        if exclude_user_ids:
            stmt = stmt.where(ExpertProfile.user_id.not_in(list(exclude_user_ids)))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def expert_reputation_metrics(self, expert_id: UUID) -> ReputationMetrics:
        """Aggregate the raw inputs of an expert's reputation score."""
        expert = await self.get_expert_profile(expert_id)

        answered = await self.session.execute(
            select(func.count(QAQuestion.id))
            .where(QAQuestion.expert_id == expert_id)
            .where(QAQuestion.status.in_(list(ANSWERED_STATUSES)))
        )
        accepted = await self.session.execute(
            select(func.count(QAQuestion.id))
            .where(QAQuestion.expert_id == expert_id)
            .where(QAQuestion.status == QuestionStatus.ACCEPTED)
        )
        response = await self.session.execute(
            select(
                func.avg(
                    func.extract("epoch", QAQuestion.answered_at - QAQuestion.claimed_at) / 60
                )
            )
            .where(QAQuestion.expert_id == expert_id)
            .where(QAQuestion.answered_at.isnot(None))
            .where(QAQuestion.claimed_at.isnot(None))
        )
        upgrades = await self.session.execute(
            select(func.count(QAQuestion.id))
            .where(QAQuestion.expert_id == expert_id)
            .where(QAQuestion.current_tier > 1)
        )
        eligible = await self.session.execute(
            select(func.count(QAQuestion.id))
            .where(QAQuestion.expert_id == expert_id)
            .where(QAQuestion.is_threaded.is_(True))
        )

        avg_response = response.scalar_one()
        return ReputationMetrics(
            avg_rating=float(expert.avg_rating) if expert and expert.avg_rating is not None else None,
            total_answered=int(answered.scalar_one()),
            total_accepted=int(accepted.scalar_one()),
            avg_response_minutes=float(avg_response) if avg_response is not None else None,
            tier_upgrade_count=int(upgrades.scalar_one()),
            tier_eligible_count=int(eligible.scalar_one()),
            correction_count=expert.correction_count if expert else 0,
            graduation_count=expert.graduation_count if expert else 0,
        )

    async def update_expert(self, expert_id: UUID, **values: Any) -> None:
        """Update expert profile columns."""
        await self.session.execute(
            update(ExpertProfile)
            .where(ExpertProfile.id == expert_id)
            .values(**values, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )

    # ------------------------------------------------------------------
    # Tier payments
    # ------------------------------------------------------------------

    async def list_tier_payments(self, question_id: UUID) -> Sequence[QATierPayment]:
        """Every tier upsell recorded for a question, oldest first."""
        result = await self.session.execute(
            select(QATierPayment)
            .where(QATierPayment.question_id == question_id)
            .order_by(QATierPayment.tier)
        )
        return result.scalars().all()

    async def add_tier_payment(self, payment: QATierPayment) -> None:
        """Append a tier payment record."""
        self.session.add(payment)
        await self.session.flush()

    # ------------------------------------------------------------------
    # Messages and activity
    # ------------------------------------------------------------------

    async def add_message(self, message: QAMessage) -> None:
        """Persist a sanitized message."""
        self.session.add(message)
        await self.session.flush()

    async def count_messages(
        self,
        question_id: UUID,
        sender_role: ParticipantRole | None = None,
        since: datetime | None = None,
    ) -> int:
        """Count messages on a question, optionally by role and time window."""
        stmt = select(func.count(QAMessage.id)).where(QAMessage.question_id == question_id)
        if sender_role is not None:
            stmt = stmt.where(QAMessage.sender_role == sender_role)
        if since is not None:
            stmt = stmt.where(QAMessage.created_at >= since)
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def add_activity(self, entry: QAActivityLog) -> None:
        """Append an activity log entry."""
        self.session.add(entry)
        await self.session.flush()

    async def count_activity(
        self, user_id: str, event_type: ActivityEventType, since: datetime
    ) -> int:
        """Count a user's activity entries of one type since a point in time."""
        stmt = (
            select(func.count(QAActivityLog.id))
            .where(QAActivityLog.user_id == user_id)
            .where(QAActivityLog.event_type == event_type)
            .where(QAActivityLog.created_at >= since)
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def add_notification(self, notification: Notification) -> None:
        """Persist a notification row."""
        self.session.add(notification)
        await self.session.flush()

    # ------------------------------------------------------------------
    # Transaction control
    # ------------------------------------------------------------------

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()

    def savepoint(self) -> AsyncSessionTransaction:
        """Nested transaction; a failure inside rolls back only the block."""
        return self.session.begin_nested()
