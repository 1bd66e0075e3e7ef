"""
API Models - Enumerations and Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class QuestionStatus(str, Enum):
    """Lifecycle status of a question."""

    PENDING_PAYMENT = "pending_payment"
    OPEN = "open"
    CLAIMED = "claimed"
    ANSWERED = "answered"
    IN_CONVERSATION = "in_conversation"
    RESOLVE_PROPOSED = "resolve_proposed"
    ACCEPTED = "accepted"
    DISPUTED = "disputed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class QuestionMode(str, Enum):
    """Pool questions are open to any matching expert; direct ones target one expert."""

    POOL = "pool"
    DIRECT = "direct"


class PayoutStatus(str, Enum):
    """Money state of a question."""

    PENDING = "pending"
    FREE = "free"
    RELEASED = "released"
    REFUNDED = "refunded"


class ParticipantRole(str, Enum):
    """Role of a caller relative to one question."""

    DIYER = "diyer"
    EXPERT = "expert"


class ResolveAction(str, Enum):
    """Resolution actions exposed to participants."""

    PROPOSE_RESOLVE = "propose_resolve"
    ACCEPT = "accept"
    CONTINUE = "continue"
    NOT_HELPFUL = "not_helpful"


class DifficultyTier(str, Enum):
    """Difficulty tier derived from the 1-10 score."""

    STANDARD = "standard"
    COMPLEX = "complex"
    SPECIALIST = "specialist"


class PricingMode(str, Enum):
    """Which pricing strategy produced a quote."""

    FLAT = "flat"
    DYNAMIC = "dynamic"


class SubscriptionTier(str, Enum):
    """Expert subscription tier (drives the platform fee discount)."""

    FREE = "free"
    PRO = "pro"
    PREMIUM = "premium"


class Severity(str, Enum):
    """Activity log severity."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ActivityEventType(str, Enum):
    """Activity log event types."""

    SANITIZATION_TRIGGER = "sanitization_trigger"
    RAPID_MESSAGES = "rapid_messages"
    SHORT_CONVERSATION = "short_conversation"
    SUSPICIOUS_PATTERN = "suspicious_pattern"


class SanitizationFlagType(str, Enum):
    """Kinds of contact information the sanitizer removes."""

    SPELLED_NUMBER = "spelled_number"
    CONTACT_PHRASE = "contact_phrase"
    URL = "url"
    PHONE = "phone"
    EMAIL = "email"
    SOCIAL_HANDLE = "social_handle"


class NotificationType(str, Enum):
    """Notification types sent to participants."""

    QUESTION_POSTED = "qa_question_posted"
    QUESTION_CLAIMED = "qa_question_claimed"
    ANSWER_RECEIVED = "qa_answer_received"
    MESSAGE_RECEIVED = "qa_message_received"
    RESOLVE_PROPOSED = "qa_resolve_proposed"
    ANSWER_ACCEPTED = "qa_answer_accepted"
    CONTINUE_REQUESTED = "qa_continue_requested"
    NOT_HELPFUL = "qa_not_helpful"
    TIER_UPGRADED = "qa_tier_upgraded"
    CLAIM_EXPIRED = "qa_claim_expired"
    QUESTION_CANCELLED = "qa_question_cancelled"


# Status groups used by the state machine and the sweeps
TERMINAL_STATUSES = frozenset(
    {
        QuestionStatus.ACCEPTED,
        QuestionStatus.DISPUTED,
        QuestionStatus.EXPIRED,
        QuestionStatus.CANCELLED,
    }
)
ACTIVE_CONVERSATION_STATUSES = frozenset(
    {
        QuestionStatus.CLAIMED,
        QuestionStatus.ANSWERED,
        QuestionStatus.IN_CONVERSATION,
        QuestionStatus.RESOLVE_PROPOSED,
    }
)
# An answer must exist before more conversation can be bought
TIER_UPGRADE_STATUSES = frozenset(
    {
        QuestionStatus.ANSWERED,
        QuestionStatus.IN_CONVERSATION,
        QuestionStatus.RESOLVE_PROPOSED,
    }
)
ANSWERED_STATUSES = frozenset(
    {
        QuestionStatus.ANSWERED,
        QuestionStatus.IN_CONVERSATION,
        QuestionStatus.RESOLVE_PROPOSED,
        QuestionStatus.ACCEPTED,
    }
)

SPECIALTIES = (
    "electrical",
    "plumbing",
    "hvac",
    "carpentry",
    "flooring",
    "roofing",
    "concrete",
    "drywall",
    "painting",
    "tile",
    "landscaping",
    "general_contracting",
    "other",
)


# ============================================================================
# Question Submission Models
# ============================================================================


class AIContextModel(BaseModel):
    """Structured AI report context attached to a question."""

    project_summary: str | None = Field(None, max_length=2000)
    safety_warnings: list[str] = Field(default_factory=list, max_length=20)
    pro_required: bool = False
    skill_level: str | None = Field(None, max_length=50)
    estimated_cost_cents: int | None = Field(None, ge=0)


class SubmitQuestionRequest(BaseModel):
    """POST /v1/qa/questions request body."""

    question_text: str = Field(..., min_length=10, max_length=5000)
    category: str = Field(..., min_length=1, max_length=50)
    ai_context: AIContextModel | None = None
    photo_count: int = Field(0, ge=0, le=10)
    target_expert_id: UUID | None = None
    payment_method_id: str | None = Field(None, max_length=255)
    stripe_customer_id: str | None = Field(None, max_length=255)

    @field_validator("category")
    @classmethod
    def validate_category(cls, v: str) -> str:
        """Category must be a known specialty."""
        if v not in SPECIALTIES:
            raise ValueError(f"Unknown category: {v}")
        return v


class PriceQuoteResponse(BaseModel):
    """Price quote shown before submission."""

    price_cents: int
    platform_fee_cents: int
    expert_payout_cents: int
    pricing_mode: PricingMode
    tier: DifficultyTier | None = None
    tier_label: str | None = None
    difficulty_score: int | None = None
    factors: list[str] = Field(default_factory=list)
    effective_hourly_rate_cents: int


class SubmitQuestionResponse(BaseModel):
    """POST /v1/qa/questions response."""

    id: UUID
    status: QuestionStatus
    is_free: bool
    price_cents: int
    question_mode: QuestionMode
    difficulty_score: int
    price_tier: DifficultyTier


class AttachPaymentMethodRequest(BaseModel):
    """POST /v1/qa/questions/{id}/payment-method request body."""

    payment_method_id: str = Field(..., min_length=1, max_length=255)
    stripe_customer_id: str = Field(..., min_length=1, max_length=255)


# ============================================================================
# Claim / Answer / Resolve Models
# ============================================================================


class ClaimResponse(BaseModel):
    """POST /v1/qa/questions/{id}/claim response."""

    question_id: UUID
    status: QuestionStatus
    claim_expires_at: datetime
    charged_cents: int
    credit_applied_cents: int
    payment_intent_id: str | None = None


class AnswerRequest(BaseModel):
    """POST /v1/qa/questions/{id}/answer request body."""

    answer_text: str = Field(..., min_length=1, max_length=10000)


class ResolveRequest(BaseModel):
    """POST /v1/qa/questions/{id}/resolve request body."""

    action: ResolveAction


class TransitionResponse(BaseModel):
    """Result of a state transition."""

    question_id: UUID
    status: QuestionStatus


class QuestionSummaryResponse(BaseModel):
    """GET /v1/qa/questions/{id} response."""

    id: UUID
    status: QuestionStatus
    question_mode: QuestionMode
    category: str
    price_cents: int
    expert_payout_cents: int
    current_tier: int
    payout_status: PayoutStatus
    difficulty_score: int
    price_tier: DifficultyTier
    claim_expires_at: datetime | None = None
    answered_at: datetime | None = None
    resolved_at: datetime | None = None


# ============================================================================
# Conversation Models
# ============================================================================


class SendMessageRequest(BaseModel):
    """POST /v1/qa/questions/{id}/messages request body."""

    content: str = Field(..., min_length=1, max_length=5000)


class MessageResponse(BaseModel):
    """A persisted, sanitized message."""

    id: UUID
    question_id: UUID
    sender_role: ParticipantRole
    content: str
    was_flagged: bool
    created_at: datetime


class TierGatePayload(BaseModel):
    """Blocked tier gate details returned with HTTP 402."""

    current_tier: int
    next_tier: int
    upgrade_cost_cents: int
    upgrade_description: str
    diyer_message_count: int


class TierUpgradeRequiredResponse(BaseModel):
    """HTTP 402 body when the next asker message needs an upgrade."""

    error: str = "tier_upgrade_required"
    tier_gate: TierGatePayload


class TierUpgradeRequest(BaseModel):
    """POST /v1/qa/questions/{id}/tier-upgrade request body."""

    target_tier: int = Field(..., ge=2, le=3)
    pending_content: str | None = Field(None, min_length=1, max_length=5000)


class TierUpgradeResponse(BaseModel):
    """POST /v1/qa/questions/{id}/tier-upgrade response."""

    question_id: UUID
    current_tier: int
    charged_cents: int
    payment_intent_id: str
    message: MessageResponse | None = None
    # Set when the pending message was gated again after the upgrade
    tier_gate: TierGatePayload | None = None


class SecondOpinionResponse(BaseModel):
    """POST /v1/qa/questions/{id}/second-opinion response."""

    second_opinion_id: UUID
    price_cents: int
    charged_cents: int
    credit_applied_cents: int
    payment_intent_id: str | None = None


# ============================================================================
# Sweep / Health Models
# ============================================================================


class SweepResponse(BaseModel):
    """POST /v1/qa/cron/expire-claims response."""

    released: int
    refunded: int
    expired: int
    auto_accepted: int
    failed: int


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: datetime
