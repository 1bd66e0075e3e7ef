"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from qa_engine.models.api import (
    ActivityEventType,
    DifficultyTier,
    ParticipantRole,
    PayoutStatus,
    PricingMode,
    QuestionMode,
    QuestionStatus,
    Severity,
    SubscriptionTier,
)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _enum_column(enum_cls: type, name: str, length: int = 20) -> SQLEnum:
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=length,
        values_callable=lambda x: [e.value for e in x],
    )


class ExpertProfile(Base):
    """
    ORM model for expert_profiles table.

    One row per expert; user_id links to the upstream identity.
    """

    __tablename__ = "expert_profiles"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Payouts
    payout_account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    subscription_tier: Mapped[SubscriptionTier] = mapped_column(
        _enum_column(SubscriptionTier, "subscription_tier"),
        nullable=False,
        default=SubscriptionTier.FREE,
    )

    # Availability
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Reputation
    avg_rating: Mapped[float | None] = mapped_column(Numeric(3, 2), nullable=True)
    reputation_score: Mapped[float] = mapped_column(Numeric(5, 2), nullable=False, default=0)
    reputation_level: Mapped[str] = mapped_column(String(20), nullable=False, default="bronze")
    correction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    graduation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reputation_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "reputation_score >= 0 AND reputation_score <= 100",
            name="ck_expert_reputation_range",
        ),
        Index("idx_expert_profiles_available", "is_active", "is_available"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<ExpertProfile(id={self.id}, user_id={self.user_id})>"


class ExpertSpecialty(Base):
    """ORM model for expert_specialties table."""

    __tablename__ = "expert_specialties"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    expert_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("expert_profiles.id"), nullable=False, index=True
    )
    category: Mapped[str] = mapped_column(String(50), nullable=False)

    __table_args__ = (
        UniqueConstraint("expert_id", "category", name="uq_expert_specialty"),
        Index("idx_expert_specialties_category", "category"),
    )


class QAQuestion(Base):
    """
    ORM model for qa_questions table.

    The central transactional entity. Rows are never deleted; terminal
    statuses are permanent audit records.
    """

    __tablename__ = "qa_questions"

    # Primary Key
    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Participants
    diyer_user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    expert_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("expert_profiles.id"), nullable=True
    )
    target_expert_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("expert_profiles.id"), nullable=True
    )

    # Content
    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    photo_count: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)

    # AI context (pricing/difficulty input only)
    ai_project_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_safety_warnings: Mapped[list[str]] = mapped_column(
        ARRAY(String), nullable=False, default=list
    )
    ai_pro_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ai_skill_level: Mapped[str | None] = mapped_column(String(50), nullable=True)
    ai_estimated_cost_cents: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    # Pricing
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    platform_fee_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expert_payout_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    difficulty_score: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=1)
    price_tier: Mapped[DifficultyTier] = mapped_column(
        _enum_column(DifficultyTier, "difficulty_tier"),
        nullable=False,
        default=DifficultyTier.STANDARD,
    )
    current_tier: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=1)
    pricing_mode: Mapped[PricingMode] = mapped_column(
        _enum_column(PricingMode, "pricing_mode", length=10),
        nullable=False,
        default=PricingMode.DYNAMIC,
    )

    # Lifecycle
    status: Mapped[QuestionStatus] = mapped_column(
        _enum_column(QuestionStatus, "question_status"),
        nullable=False,
        default=QuestionStatus.OPEN,
    )
    question_mode: Mapped[QuestionMode] = mapped_column(
        _enum_column(QuestionMode, "question_mode", length=10),
        nullable=False,
        default=QuestionMode.POOL,
    )
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    claim_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    answer_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    answered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_threaded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolve_proposed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    resolve_proposed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    marked_not_helpful: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    not_helpful_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Money
    payout_status: Mapped[PayoutStatus] = mapped_column(
        _enum_column(PayoutStatus, "payout_status"),
        nullable=False,
        default=PayoutStatus.PENDING,
    )
    payment_method_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    credit_applied_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refund_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payout_transfer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payout_released_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Second opinion linkage
    parent_question_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("qa_questions.id"), nullable=True
    )
    is_second_opinion: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "expert_payout_cents + platform_fee_cents = price_cents",
            name="ck_qa_price_split",
        ),
        CheckConstraint("price_cents >= 0", name="ck_qa_price_non_negative"),
        CheckConstraint("credit_applied_cents >= 0", name="ck_qa_credit_non_negative"),
        CheckConstraint("current_tier BETWEEN 1 AND 3", name="ck_qa_current_tier"),
        CheckConstraint("difficulty_score BETWEEN 1 AND 10", name="ck_qa_difficulty_score"),
        CheckConstraint(
            "expert_id IS NOT NULL OR status IN "
            "('open', 'pending_payment', 'expired', 'cancelled')",
            name="ck_qa_expert_assigned",
        ),
        Index("idx_qa_questions_status", "status"),
        Index("idx_qa_questions_diyer", "diyer_user_id"),
        Index("idx_qa_questions_expert", "expert_id"),
        Index(
            "idx_qa_questions_claim_expiry",
            "claim_expires_at",
            postgresql_where=(status == QuestionStatus.CLAIMED.value),
        ),
        Index(
            "idx_qa_questions_answered",
            "answered_at",
            postgresql_where=(status == QuestionStatus.ANSWERED.value),
        ),
        Index(
            "idx_qa_questions_parent",
            "parent_question_id",
            postgresql_where=(parent_question_id.isnot(None)),
        ),
        # At most one live second opinion per parent
        Index(
            "uq_qa_questions_open_second_opinion",
            "parent_question_id",
            unique=True,
            postgresql_where=text(
                "parent_question_id IS NOT NULL AND status <> 'cancelled'"
            ),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<QAQuestion(id={self.id}, status={self.status}, price={self.price_cents})>"


class QAMessage(Base):
    """ORM model for qa_messages table. Content is stored sanitized."""

    __tablename__ = "qa_messages"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    question_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("qa_questions.id"), nullable=False
    )
    sender_user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    sender_role: Mapped[ParticipantRole] = mapped_column(
        _enum_column(ParticipantRole, "participant_role", length=10), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    was_flagged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("idx_qa_messages_question_created", "question_id", "created_at"),
    )


class QATierPayment(Base):
    """ORM model for qa_tier_payments table. Append-only."""

    __tablename__ = "qa_tier_payments"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    question_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("qa_questions.id"), nullable=False, index=True
    )
    tier: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_intent_id: Mapped[str] = mapped_column(String(255), nullable=False)
    charged_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("tier BETWEEN 2 AND 3", name="ck_tier_payment_tier"),
        CheckConstraint("amount_cents > 0", name="ck_tier_payment_amount_positive"),
        UniqueConstraint("question_id", "tier", name="uq_tier_payment_question_tier"),
    )


class UserCredit(Base):
    """ORM model for user_credits table. Mutated only by the credit ledger."""

    __tablename__ = "user_credits"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    balance_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("balance_cents >= 0", name="ck_user_credit_non_negative"),
    )


class CreditTransaction(Base):
    """ORM model for credit_transactions table. Append-only audit log."""

    __tablename__ = "credit_transactions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reason: Mapped[str] = mapped_column(String(100), nullable=False)
    qa_question_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("qa_questions.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount_cents <> 0", name="ck_credit_transaction_non_zero"),
    )


class QAActivityLog(Base):
    """ORM model for qa_activity_log table. Append-only fraud/abuse signals."""

    __tablename__ = "qa_activity_log"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    question_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("qa_questions.id"), nullable=True
    )
    event_type: Mapped[ActivityEventType] = mapped_column(
        _enum_column(ActivityEventType, "activity_event_type", length=30), nullable=False
    )
    severity: Mapped[Severity] = mapped_column(
        _enum_column(Severity, "activity_severity", length=10), nullable=False
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    original_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("idx_qa_activity_user_type_created", "user_id", "event_type", "created_at"),
    )


class Notification(Base):
    """ORM model for notifications table."""

    __tablename__ = "notifications"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    notification_type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    link: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("idx_notifications_user_created", "user_id", "created_at"),
    )
