"""
Conversation Service - Threaded messages and paid tier upgrades.

A message runs Tier Gate -> Sanitizer -> persist -> Fraud Detector. A
blocked gate is a structured result, not an error.
"""

from collections.abc import Callable
from datetime import datetime
from uuid import UUID

from structlog import get_logger

from qa_engine.db.models import QAMessage, QAQuestion, QATierPayment, utc_now
from qa_engine.db.store import QuestionStore
from qa_engine.exceptions import (
    AuthorizationError,
    PaymentMethodMissingError,
    PaymentProviderError,
    PreconditionViolationError,
    QuestionNotFoundError,
    ValidationError,
)
from qa_engine.models.api import (
    ACTIVE_CONVERSATION_STATUSES,
    TIER_UPGRADE_STATUSES,
    NotificationType,
    ParticipantRole,
    QuestionStatus,
    SubscriptionTier,
)
from qa_engine.models.domain import (
    MarketplaceConfig,
    MessageData,
    Notify,
    SendMessageResult,
    TierUpgradeResult,
)
from qa_engine.observability.metrics import metrics
from qa_engine.services.fraud import FraudSignalDetector
from qa_engine.services.notifications import preview, question_link
from qa_engine.services.payment_provider import (
    ChargeRequest,
    PaymentProvider,
    RefundRequest,
    refund_idempotency_key,
    tier_charge_idempotency_key,
)
from qa_engine.services.pricing import apply_subscription_fee_rate
from qa_engine.services.resolution import derive_role
from qa_engine.services.sanitizer import sanitize
from qa_engine.services.tier_gate import TierGate

logger = get_logger(__name__)

MAX_MESSAGE_CHARS = 5000

# First message moves these to in_conversation
_THREAD_START_STATUSES = frozenset({QuestionStatus.CLAIMED, QuestionStatus.ANSWERED})


def validate_content(content: str | None) -> str:
    """Trimmed message body, or ValidationError."""
    text = (content or "").strip()
    if not text:
        raise ValidationError("Message content cannot be empty")
    if len(text) > MAX_MESSAGE_CHARS:
        raise ValidationError(f"Message exceeds {MAX_MESSAGE_CHARS} characters")
    return text


class ConversationService:
    """Message pipeline and tier upsells for claimed questions."""

    def __init__(
        self,
        store: QuestionStore,
        tier_gate: TierGate,
        fraud: FraudSignalDetector,
        provider: PaymentProvider,
        config: MarketplaceConfig,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.tier_gate = tier_gate
        self.fraud = fraud
        self.provider = provider
        self.config = config
        self.clock = clock

    async def _participant(
        self, question_id: UUID, caller_user_id: str
    ) -> tuple[QAQuestion, ParticipantRole]:
        question = await self.store.get_question(question_id)
        if question is None:
            raise QuestionNotFoundError(question_id)
        expert = await self.store.get_expert_by_user(caller_user_id)
        role = derive_role(question, caller_user_id, expert.id if expert else None)
        if role is None:
            raise AuthorizationError("Caller is not a participant in this question")
        return question, role

    async def send_message(
        self, question_id: UUID, caller_user_id: str, content: str
    ) -> SendMessageResult:
        """
        Send one threaded message.

        Returns:
            SendMessageResult carrying either the stored message or the
            blocking tier gate result

        Raises:
            ValidationError: Empty or oversized content
            AuthorizationError: Caller is not a participant
            PreconditionViolationError: Conversation is not active
        """
        text = validate_content(content)
        question, role = await self._participant(question_id, caller_user_id)
        if question.status not in ACTIVE_CONVERSATION_STATUSES:
            raise PreconditionViolationError(question_id, "send_message", question.status)

        if role == ParticipantRole.DIYER:
            count = await self.store.count_messages(question_id, sender_role=ParticipantRole.DIYER)
            gate = self.tier_gate.check(
                role, question.current_tier, count, question.price_cents, question.diyer_user_id
            )
            if gate.blocked:
                metrics.tier_gate_blocks_total.labels(next_tier=str(gate.next_tier)).inc()
                logger.info(
                    "tier_gate_blocked",
                    question_id=str(question_id),
                    current_tier=gate.current_tier,
                    next_tier=gate.next_tier,
                    diyer_message_count=gate.diyer_message_count,
                )
                return SendMessageResult(message=None, tier_gate=gate)

        result = sanitize(text)
        now = self.clock()
        message = QAMessage(
            question_id=question_id,
            sender_user_id=caller_user_id,
            sender_role=role,
            content=result.sanitized,
            was_flagged=result.was_flagged,
            created_at=now,
        )
        await self.store.add_message(message)

        if result.was_flagged:
            await self.fraud.record_sanitization(caller_user_id, question_id, result, text)
            logger.warning(
                "message_sanitized",
                question_id=str(question_id),
                user_id=caller_user_id,
                flags=len(result.flags),
            )

        if question.status in _THREAD_START_STATUSES:
            # Lost races are fine: someone else already moved the thread on
            await self.store.update_question_if(
                question_id,
                _THREAD_START_STATUSES,
                status=QuestionStatus.IN_CONVERSATION,
                is_threaded=True,
            )
        await self.store.commit()

        await self.fraud.run_checks(
            question_id,
            caller_user_id,
            diyer_user_id=question.diyer_user_id,
            expert_id=question.expert_id,
        )

        logger.info(
            "message_sent",
            question_id=str(question_id),
            sender_role=role.value,
            was_flagged=result.was_flagged,
        )

        effects: tuple[Notify, ...] = ()
        recipient = await self._other_party(question, role)
        if recipient is not None:
            effects = (
                Notify(
                    user_id=recipient,
                    notification_type=NotificationType.MESSAGE_RECEIVED,
                    title="New message",
                    body=preview(result.sanitized),
                    link=question_link(question_id),
                ),
            )

        return SendMessageResult(
            message=MessageData(
                message_id=message.id,
                question_id=question_id,
                sender_user_id=caller_user_id,
                sender_role=role,
                content=result.sanitized,
                was_flagged=result.was_flagged,
                created_at=now,
            ),
            effects=effects,
        )

    async def _other_party(self, question: QAQuestion, role: ParticipantRole) -> str | None:
        if role == ParticipantRole.EXPERT:
            return question.diyer_user_id
        if question.expert_id is None:
            return None
        expert = await self.store.get_expert_profile(question.expert_id)
        return expert.user_id if expert else None

    async def upgrade_tier(
        self,
        question_id: UUID,
        caller_user_id: str,
        target_tier: int,
        pending_content: str | None = None,
    ) -> TierUpgradeResult:
        """
        Charge for a higher conversation tier and advance the question.

        The charge is keyed on (question, target tier) so a retried request
        does not double-charge. If the tier moved underneath us the charge is
        refunded and PreconditionViolationError raised.
        """
        if pending_content is not None:
            validate_content(pending_content)

        question, role = await self._participant(question_id, caller_user_id)
        if role != ParticipantRole.DIYER:
            raise AuthorizationError("Only the asker can upgrade the conversation tier")
        if question.status not in TIER_UPGRADE_STATUSES:
            raise PreconditionViolationError(question_id, "upgrade_tier", question.status)

        current_tier = question.current_tier
        cost = self.tier_gate.upgrade_cost(current_tier, target_tier)
        if not (question.payment_method_id and question.stripe_customer_id):
            raise PaymentMethodMissingError(question_id)

        try:
            payment_intent_id = await self.provider.charge(
                ChargeRequest(
                    amount_cents=cost,
                    customer_id=question.stripe_customer_id,
                    payment_method_id=question.payment_method_id,
                    question_id=question_id,
                    purpose="qa_tier_upgrade",
                    idempotency_key=tier_charge_idempotency_key(question_id, target_tier),
                )
            )
        except PaymentProviderError:
            metrics.record_transition("upgrade_tier", "payment_failed")
            raise

        subscription = SubscriptionTier.FREE
        expert_user_id: str | None = None
        if question.expert_id is not None:
            expert = await self.store.get_expert_profile(question.expert_id)
            if expert is not None:
                subscription = expert.subscription_tier
                expert_user_id = expert.user_id

        split = apply_subscription_fee_rate(
            self.config, question.price_cents + cost, subscription
        )
        advanced = await self.store.update_question_if(
            question_id,
            TIER_UPGRADE_STATUSES,
            expected_tier=current_tier,
            current_tier=target_tier,
            price_cents=split.price_cents,
            platform_fee_cents=split.platform_fee_cents,
            expert_payout_cents=split.expert_payout_cents,
        )
        if not advanced:
            await self.store.rollback()
            await self._refund_orphaned_charge(question_id, payment_intent_id)
            metrics.record_transition("upgrade_tier", "precondition_failed")
            current = await self.store.get_question(question_id)
            raise PreconditionViolationError(
                question_id, "upgrade_tier", current.status if current else None
            )

        await self.store.add_tier_payment(
            QATierPayment(
                question_id=question_id,
                tier=target_tier,
                amount_cents=cost,
                payment_intent_id=payment_intent_id,
                charged_at=self.clock(),
            )
        )
        await self.store.commit()
        metrics.record_transition("upgrade_tier", "success")
        logger.info(
            "tier_upgraded",
            question_id=str(question_id),
            from_tier=current_tier,
            to_tier=target_tier,
            charged_cents=cost,
            payment_intent_id=payment_intent_id,
        )

        effects: tuple[Notify, ...] = ()
        if expert_user_id is not None:
            extra = split.expert_payout_cents - question.expert_payout_cents
            effects = (
                Notify(
                    user_id=expert_user_id,
                    notification_type=NotificationType.TIER_UPGRADED,
                    title="Conversation upgraded",
                    body=f"The asker upgraded to tier {target_tier}. "
                    f"You'll earn an extra ${extra / 100:.2f}.",
                    link=question_link(question_id),
                ),
            )

        message = None
        if pending_content is not None:
            # Gate is evaluated again against the new tier
            message = await self.send_message(question_id, caller_user_id, pending_content)

        return TierUpgradeResult(
            question_id=question_id,
            current_tier=target_tier,
            charged_cents=cost,
            payment_intent_id=payment_intent_id,
            split=split,
            message=message,
            effects=effects,
        )

    async def _refund_orphaned_charge(self, question_id: UUID, payment_intent_id: str) -> None:
        try:
            await self.provider.refund(
                RefundRequest(
                    payment_intent_id=payment_intent_id,
                    question_id=question_id,
                    reason="tier_upgrade_conflict",
                    idempotency_key=refund_idempotency_key(payment_intent_id),
                )
            )
        except PaymentProviderError as e:
            logger.error(
                "tier_upgrade_refund_failed",
                question_id=str(question_id),
                payment_intent_id=payment_intent_id,
                error=e.message,
            )
