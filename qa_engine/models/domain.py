"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from qa_engine.models.api import (
    ActivityEventType,
    DifficultyTier,
    NotificationType,
    ParticipantRole,
    PricingMode,
    QuestionMode,
    QuestionStatus,
    SanitizationFlagType,
    Severity,
)


# ============================================================================
# Configuration Values (injected into services)
# ============================================================================


@dataclass(frozen=True)
class MarketplaceConfig:
    """Business constants for pricing, claims and tiers."""

    claim_expiry_hours: int = 2
    auto_accept_hours: int = 24
    platform_fee_rate: float = 0.18
    standard_price_cents: int = 1500
    complex_price_cents: int = 2500
    specialist_price_cents: int = 4500
    high_value_project_cents: int = 50000
    legacy_general_cents: int = 500
    legacy_code_specific_cents: int = 800
    legacy_platform_fee_rate: float = 0.20
    pro_platform_fee_rate: float = 0.15
    premium_platform_fee_rate: float = 0.12
    tier2_message_threshold: int = 3
    tier3_message_threshold: int = 6
    tier2_additional_cents: int = 1000
    tier3_additional_cents: int = 2000
    second_opinion_price_cents: int = 1500

    def __post_init__(self) -> None:
        """Validate config constraints."""
        if self.claim_expiry_hours <= 0:
            raise ValueError(f"claim_expiry_hours must be positive: {self.claim_expiry_hours}")
        if self.auto_accept_hours <= 0:
            raise ValueError(f"auto_accept_hours must be positive: {self.auto_accept_hours}")
        if self.tier3_message_threshold <= self.tier2_message_threshold:
            raise ValueError("tier3_message_threshold must exceed tier2_message_threshold")


@dataclass(frozen=True)
class FeatureFlags:
    """Global feature switches and their percentage rollouts."""

    dynamic_pricing: bool = False
    dynamic_pricing_rollout: int = 0
    progressive_payments: bool = False
    progressive_payments_rollout: int = 0

    def __post_init__(self) -> None:
        """Validate rollout percentages."""
        for pct in (self.dynamic_pricing_rollout, self.progressive_payments_rollout):
            if not 0 <= pct <= 100:
                raise ValueError(f"Rollout percentage must be 0-100: {pct}")


# ============================================================================
# Pricing and Difficulty
# ============================================================================


@dataclass(frozen=True)
class AIContext:
    """Structured AI report context used as a difficulty input."""

    project_summary: str | None = None
    safety_warnings: tuple[str, ...] = ()
    pro_required: bool = False
    skill_level: str | None = None
    estimated_cost_cents: int | None = None


@dataclass(frozen=True)
class DifficultyResult:
    """Difficulty score, tier and the factors that produced it."""

    score: int
    tier: DifficultyTier
    factors: tuple[str, ...]

    def __post_init__(self) -> None:
        """Validate score range."""
        if not 1 <= self.score <= 10:
            raise ValueError(f"Difficulty score out of range: {self.score}")


@dataclass(frozen=True)
class PriceSplit:
    """Price, platform fee and expert payout, always computed together."""

    price_cents: int
    platform_fee_cents: int
    expert_payout_cents: int
    fee_rate: float

    def __post_init__(self) -> None:
        """Validate the split invariant."""
        if self.price_cents < 0:
            raise ValueError(f"Price cannot be negative: {self.price_cents}")
        if self.platform_fee_cents < 0 or self.expert_payout_cents < 0:
            raise ValueError("Fee and payout cannot be negative")
        if self.platform_fee_cents + self.expert_payout_cents != self.price_cents:
            raise ValueError(
                f"Fee {self.platform_fee_cents} + payout {self.expert_payout_cents} "
                f"!= price {self.price_cents}"
            )


@dataclass(frozen=True)
class PricingResult:
    """A priced question: the split plus how it was derived."""

    split: PriceSplit
    mode: PricingMode
    difficulty: DifficultyResult
    tier_label: str | None = None

    @property
    def price_cents(self) -> int:
        return self.split.price_cents

    @property
    def platform_fee_cents(self) -> int:
        return self.split.platform_fee_cents

    @property
    def expert_payout_cents(self) -> int:
        return self.split.expert_payout_cents


# ============================================================================
# Credits
# ============================================================================


@dataclass(frozen=True)
class CreditApplication:
    """Outcome of applying prepaid credit against a charge."""

    effective_charge_cents: int
    credit_applied_cents: int
    balance_after_cents: int

    def __post_init__(self) -> None:
        """Validate credit constraints."""
        if self.effective_charge_cents < 0:
            raise ValueError(f"Effective charge cannot be negative: {self.effective_charge_cents}")
        if self.credit_applied_cents < 0:
            raise ValueError(f"Applied credit cannot be negative: {self.credit_applied_cents}")
        if self.balance_after_cents < 0:
            raise ValueError(f"Balance cannot be negative: {self.balance_after_cents}")


# ============================================================================
# Sanitizer and Fraud
# ============================================================================


@dataclass(frozen=True)
class SanitizationFlag:
    """One redacted occurrence."""

    flag_type: SanitizationFlagType
    matched: str


@dataclass(frozen=True)
class SanitizationResult:
    """Redacted text plus everything that was removed."""

    sanitized: str
    flags: tuple[SanitizationFlag, ...]

    @property
    def was_flagged(self) -> bool:
        return bool(self.flags)


@dataclass(frozen=True)
class FraudSignal:
    """A heuristic hit destined for the activity log."""

    event_type: ActivityEventType
    severity: Severity
    description: str
    user_id: str | None = None
    question_id: UUID | None = None


# ============================================================================
# Tier Gate
# ============================================================================


@dataclass(frozen=True)
class TierDefinition:
    """A priced conversation tier."""

    tier: int
    label: str
    additional_cents: int


@dataclass(frozen=True)
class TierGateResult:
    """Whether the next asker message requires an upsell payment."""

    blocked: bool
    current_tier: int
    diyer_message_count: int
    next_tier: int | None = None
    upgrade_cost_cents: int | None = None
    upgrade_description: str | None = None

    def __post_init__(self) -> None:
        """Blocked results must carry the upgrade payload."""
        if self.blocked and (
            self.next_tier is None
            or self.upgrade_cost_cents is None
            or self.upgrade_description is None
        ):
            raise ValueError("Blocked tier gate result requires next tier, cost and description")


# ============================================================================
# Side Effects and Transition Results
# ============================================================================


@dataclass(frozen=True)
class Notify:
    """Fire-and-forget notification job."""

    user_id: str
    notification_type: NotificationType
    title: str
    body: str
    link: str | None = None


@dataclass(frozen=True)
class RecalculateReputation:
    """Fire-and-forget reputation recalculation job."""

    expert_id: UUID


SideEffect = Notify | RecalculateReputation


@dataclass(frozen=True)
class TransitionPlan:
    """Pure decision for a resolution action, before anything is written."""

    target_status: QuestionStatus
    expected_statuses: frozenset[QuestionStatus]
    release_payout: bool = False
    refund_all: bool = False
    clear_proposal: bool = False


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a state transition plus the effects it scheduled."""

    question_id: UUID
    previous_status: QuestionStatus
    new_status: QuestionStatus
    effects: tuple[SideEffect, ...] = ()


@dataclass(frozen=True)
class ClaimResult:
    """Outcome of a successful claim."""

    question_id: UUID
    status: QuestionStatus
    claim_expires_at: datetime
    charged_cents: int
    credit_applied_cents: int
    payment_intent_id: str | None
    effects: tuple[SideEffect, ...] = ()


@dataclass
class SweepResult:
    """Per-row outcome counts of a background sweep."""

    released: int = 0
    refunded: int = 0
    expired: int = 0
    auto_accepted: int = 0
    failed: int = 0
    effects: list[SideEffect] = field(default_factory=list)


# ============================================================================
# Conversation
# ============================================================================


@dataclass(frozen=True)
class MessageData:
    """A persisted, sanitized message."""

    message_id: UUID
    question_id: UUID
    sender_user_id: str
    sender_role: ParticipantRole
    content: str
    was_flagged: bool
    created_at: datetime


@dataclass(frozen=True)
class SendMessageResult:
    """Either the stored message or the blocking tier gate."""

    message: MessageData | None
    tier_gate: TierGateResult | None = None
    effects: tuple[SideEffect, ...] = ()

    @property
    def upgrade_required(self) -> bool:
        return self.tier_gate is not None and self.tier_gate.blocked


@dataclass(frozen=True)
class TierUpgradeResult:
    """Outcome of a paid tier upgrade."""

    question_id: UUID
    current_tier: int
    charged_cents: int
    payment_intent_id: str
    split: PriceSplit
    message: SendMessageResult | None = None
    effects: tuple[SideEffect, ...] = ()


# ============================================================================
# Submission
# ============================================================================


@dataclass(frozen=True)
class QuestionSubmission:
    """Intent to post a question."""

    user_id: str
    question_text: str
    category: str
    ai_context: AIContext | None = None
    photo_count: int = 0
    target_expert_id: UUID | None = None
    payment_method_id: str | None = None
    stripe_customer_id: str | None = None

    def __post_init__(self) -> None:
        """Validate submission constraints."""
        if not self.user_id:
            raise ValueError("user_id cannot be empty")
        if self.photo_count < 0:
            raise ValueError(f"photo_count cannot be negative: {self.photo_count}")


@dataclass(frozen=True)
class SubmissionResult:
    """A newly stored question."""

    question_id: UUID
    status: QuestionStatus
    question_mode: QuestionMode
    is_free: bool
    pricing: PricingResult
    effects: tuple[SideEffect, ...] = ()


@dataclass(frozen=True)
class SecondOpinionResult:
    """A paid child question linked to its parent."""

    question_id: UUID
    parent_question_id: UUID
    price_cents: int
    charged_cents: int
    credit_applied_cents: int
    payment_intent_id: str | None
    effects: tuple[SideEffect, ...] = ()


# ============================================================================
# Reputation
# ============================================================================


@dataclass(frozen=True)
class ReputationMetrics:
    """Raw per-expert inputs to the reputation score."""

    avg_rating: float | None
    total_answered: int
    total_accepted: int
    avg_response_minutes: float | None
    tier_upgrade_count: int
    tier_eligible_count: int
    correction_count: int
    graduation_count: int


@dataclass(frozen=True)
class ReputationScore:
    """Weighted 0-100 score and its level."""

    score: float
    level: str

    def __post_init__(self) -> None:
        """Validate score range."""
        if not 0 <= self.score <= 100:
            raise ValueError(f"Reputation score out of range: {self.score}")
