"""
Claim Lifecycle Manager - open -> claimed -> (answered | expired).

Every mutation is a compare-and-swap on the expected prior status, so the
sweeps may run from several processes at once and alongside live claims:
a row that another actor already moved is skipped, never processed twice.
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import UUID

from structlog import get_logger

from qa_engine.db.models import QAQuestion, utc_now
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
    NotificationType,
    PayoutStatus,
    QuestionMode,
    QuestionStatus,
    SubscriptionTier,
)
from qa_engine.models.domain import (
    ClaimResult,
    MarketplaceConfig,
    Notify,
    RecalculateReputation,
    SideEffect,
    SweepResult,
    TransitionResult,
)
from qa_engine.observability.metrics import metrics
from qa_engine.observability.tracing import trace_operation
from qa_engine.services.credit_ledger import CreditLedger
from qa_engine.services.notifications import (
    matching_expert_notifications,
    preview,
    question_link,
)
from qa_engine.services.payment_provider import (
    ChargeRequest,
    PaymentProvider,
    charge_idempotency_key,
)
from qa_engine.services.payouts import (
    REFUND_REASON_CANCELLED,
    REFUND_REASON_CLAIM_EXPIRED,
    PayoutService,
    has_charge,
)
from qa_engine.services.pricing import (
    apply_subscription_fee_rate,
    listed_fee_rate,
    split_price,
)
from qa_engine.services.sanitizer import sanitize

logger = get_logger(__name__)

MAX_ANSWER_CHARS = 10000

CANCELLABLE_STATUSES = frozenset(
    {QuestionStatus.PENDING_PAYMENT, QuestionStatus.OPEN, QuestionStatus.CLAIMED}
)

# Fields cleared whenever a claim is abandoned
_CLEARED_CLAIM = {
    "expert_id": None,
    "claimed_at": None,
    "claim_expires_at": None,
    "payment_intent_id": None,
    "credit_applied_cents": 0,
    "refund_id": None,
    "refunded_at": None,
}


def needs_charge(question: QAQuestion) -> bool:
    """A paid question with no live payment or applied credit yet."""
    return (
        question.price_cents > 0
        and question.payout_status != PayoutStatus.FREE
        and question.payment_intent_id is None
        and question.credit_applied_cents == 0
    )


class ClaimLifecycleManager:
    """Claims, answers, cancellations and the background sweeps."""

    def __init__(
        self,
        store: QuestionStore,
        ledger: CreditLedger,
        provider: PaymentProvider,
        payouts: PayoutService,
        config: MarketplaceConfig,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.provider = provider
        self.payouts = payouts
        self.config = config
        self.clock = clock

    async def _get(self, question_id: UUID) -> QAQuestion:
        question = await self.store.get_question(question_id)
        if question is None:
            raise QuestionNotFoundError(question_id)
        return question

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    async def claim(self, question_id: UUID, caller_user_id: str) -> ClaimResult:
        """
        Atomically move open -> claimed and charge the credit-reduced price.

        Credits are deducted and committed before the charge. A failed charge
        re-credits the asker, re-lists the question and raises
        PaymentProviderError.
        """
        expert = await self.store.get_expert_by_user(caller_user_id)
        if expert is None:
            raise AuthorizationError("Only experts can claim questions")

        question = await self._get(question_id)
        if question.diyer_user_id == caller_user_id:
            raise AuthorizationError("Cannot claim your own question")
        if question.status != QuestionStatus.OPEN:
            metrics.record_transition("claim", "precondition_failed")
            raise PreconditionViolationError(question_id, "claim", question.status)
        if (
            question.question_mode == QuestionMode.DIRECT
            and question.target_expert_id != expert.id
        ):
            raise AuthorizationError("Question is directed to another expert")

        charge_required = needs_charge(question)
        if charge_required and not (question.payment_method_id and question.stripe_customer_id):
            raise PaymentMethodMissingError(question_id)

        now = self.clock()
        expires_at = now + timedelta(hours=self.config.claim_expiry_hours)
        if expert.subscription_tier == SubscriptionTier.FREE:
            fee_cents, payout_cents = question.platform_fee_cents, question.expert_payout_cents
        else:
            split = apply_subscription_fee_rate(
                self.config, question.price_cents, expert.subscription_tier
            )
            fee_cents, payout_cents = split.platform_fee_cents, split.expert_payout_cents

        claimed = await self.store.update_question_if(
            question_id,
            {QuestionStatus.OPEN},
            status=QuestionStatus.CLAIMED,
            expert_id=expert.id,
            claimed_at=now,
            claim_expires_at=expires_at,
            platform_fee_cents=fee_cents,
            expert_payout_cents=payout_cents,
        )
        if not claimed:
            await self.store.rollback()
            metrics.record_transition("claim", "precondition_failed")
            current = await self.store.get_question(question_id)
            raise PreconditionViolationError(
                question_id, "claim", current.status if current else None
            )
        await self.store.commit()

        charged_cents = 0
        credit_applied = 0
        payment_intent_id = question.payment_intent_id
        if charge_required:
            credit = await self.ledger.apply_credits(
                question.diyer_user_id, question_id, question.price_cents
            )
            credit_applied = credit.credit_applied_cents
            if credit.effective_charge_cents > 0:
                try:
                    payment_intent_id = await self.provider.charge(
                        ChargeRequest(
                            amount_cents=credit.effective_charge_cents,
                            customer_id=question.stripe_customer_id,  # type: ignore[arg-type]
                            payment_method_id=question.payment_method_id,  # type: ignore[arg-type]
                            question_id=question_id,
                            purpose="qa_claim",
                            idempotency_key=charge_idempotency_key(question_id, now),
                        )
                    )
                except PaymentProviderError:
                    await self._revert_claim(question, expert.id, credit_applied)
                    metrics.record_transition("claim", "payment_failed")
                    raise
                charged_cents = credit.effective_charge_cents

            await self.store.update_question(
                question_id,
                payment_intent_id=payment_intent_id,
                credit_applied_cents=credit_applied,
            )
            await self.store.commit()

        metrics.record_transition("claim", "success")
        logger.info(
            "question_claimed",
            question_id=str(question_id),
            expert_id=str(expert.id),
            charged_cents=charged_cents,
            credit_applied_cents=credit_applied,
            claim_expires_at=expires_at.isoformat(),
        )

        return ClaimResult(
            question_id=question_id,
            status=QuestionStatus.CLAIMED,
            claim_expires_at=expires_at,
            charged_cents=charged_cents,
            credit_applied_cents=credit_applied,
            payment_intent_id=payment_intent_id,
            effects=(
                Notify(
                    user_id=question.diyer_user_id,
                    notification_type=NotificationType.QUESTION_CLAIMED,
                    title="Question claimed",
                    body="An expert has claimed your question",
                    link=question_link(question_id),
                ),
            ),
        )

    async def _revert_claim(self, question: QAQuestion, expert_id: UUID, credit_applied: int) -> None:
        """Compensate a claim whose charge failed."""
        if credit_applied > 0:
            try:
                await self.ledger.restore_credits(
                    question.diyer_user_id, question.id, credit_applied
                )
            except Exception as e:
                logger.error(
                    "credit_restore_failed",
                    question_id=str(question.id),
                    user_id=question.diyer_user_id,
                    amount_cents=credit_applied,
                    error=str(e),
                )
        reverted = await self.store.update_question_if(
            question.id,
            {QuestionStatus.CLAIMED},
            status=QuestionStatus.OPEN,
            platform_fee_cents=question.platform_fee_cents,
            expert_payout_cents=question.expert_payout_cents,
            **_CLEARED_CLAIM,
        )
        await self.store.commit()
        logger.warning(
            "claim_reverted_after_charge_failure",
            question_id=str(question.id),
            expert_id=str(expert_id),
            reverted=reverted,
        )

    # ------------------------------------------------------------------
    # Answer / cancel
    # ------------------------------------------------------------------

    async def answer(
        self, question_id: UUID, caller_user_id: str, answer_text: str
    ) -> TransitionResult:
        """claimed -> answered, by the assigned expert only."""
        text = (answer_text or "").strip()
        if not text:
            raise ValidationError("answer_text cannot be empty")
        if len(text) > MAX_ANSWER_CHARS:
            raise ValidationError(f"answer_text exceeds {MAX_ANSWER_CHARS} characters")

        question = await self._get(question_id)
        expert = await self.store.get_expert_by_user(caller_user_id)
        if expert is None or question.expert_id != expert.id:
            raise AuthorizationError("Only the assigned expert can answer")
        if question.status != QuestionStatus.CLAIMED:
            raise PreconditionViolationError(question_id, "answer", question.status)

        now = self.clock()
        if question.claim_expires_at is not None and question.claim_expires_at < now:
            raise PreconditionViolationError(question_id, "answer", question.status)

        answered = await self.store.update_question_if(
            question_id,
            {QuestionStatus.CLAIMED},
            status=QuestionStatus.ANSWERED,
            answer_text=sanitize(text).sanitized,
            answered_at=now,
        )
        if not answered:
            await self.store.rollback()
            metrics.record_transition("answer", "precondition_failed")
            current = await self.store.get_question(question_id)
            raise PreconditionViolationError(
                question_id, "answer", current.status if current else None
            )
        await self.store.commit()
        metrics.record_transition("answer", "success")
        logger.info("question_answered", question_id=str(question_id), expert_id=str(expert.id))

        return TransitionResult(
            question_id=question_id,
            previous_status=QuestionStatus.CLAIMED,
            new_status=QuestionStatus.ANSWERED,
            effects=(
                Notify(
                    user_id=question.diyer_user_id,
                    notification_type=NotificationType.ANSWER_RECEIVED,
                    title="Your question was answered",
                    body=preview(text),
                    link=question_link(question_id),
                ),
            ),
        )

    async def cancel(self, question_id: UUID, caller_user_id: str) -> TransitionResult:
        """Asker withdraws a question that has not been answered yet."""
        question = await self._get(question_id)
        if question.diyer_user_id != caller_user_id:
            raise AuthorizationError("Only the asker can cancel a question")
        if question.status not in CANCELLABLE_STATUSES:
            raise PreconditionViolationError(question_id, "cancel", question.status)

        charged = has_charge(question) or question.credit_applied_cents > 0
        values: dict[str, object] = {"status": QuestionStatus.CANCELLED, "resolved_at": self.clock()}
        if charged:
            values["payout_status"] = PayoutStatus.REFUNDED

        cancelled = await self.store.update_question_if(
            question_id, {question.status}, **values
        )
        if not cancelled:
            await self.store.rollback()
            current = await self.store.get_question(question_id)
            raise PreconditionViolationError(
                question_id, "cancel", current.status if current else None
            )
        await self.store.commit()

        if charged:
            await self.payouts.refund_question(question, REFUND_REASON_CANCELLED)

        effects: list[SideEffect] = []
        if question.status == QuestionStatus.CLAIMED and question.expert_id is not None:
            expert = await self.store.get_expert_profile(question.expert_id)
            if expert is not None:
                effects.append(
                    Notify(
                        user_id=expert.user_id,
                        notification_type=NotificationType.QUESTION_CANCELLED,
                        title="Question cancelled",
                        body="The asker cancelled a question you had claimed",
                        link=question_link(question_id),
                    )
                )

        metrics.record_transition("cancel", "success")
        logger.info("question_cancelled", question_id=str(question_id), refunded=charged)
        return TransitionResult(
            question_id=question_id,
            previous_status=question.status,
            new_status=QuestionStatus.CANCELLED,
            effects=tuple(effects),
        )

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    async def release_expired_claims(self) -> SweepResult:
        """
        Reclaim abandoned claims.

        Pool questions go back to open and are re-announced to matching
        experts; direct questions expire. Any charge is refunded.
        """
        result = SweepResult()
        now = self.clock()

        with trace_operation("release_expired_claims"):
            for question_id in await self.store.select_expired_claim_ids(now):
                try:
                    question = await self.store.get_question(question_id)
                    if question is None or question.status != QuestionStatus.CLAIMED:
                        continue
                    await self._release_one(question, result)
                except Exception as e:
                    result.failed += 1
                    logger.error(
                        "claim_release_failed",
                        question_id=str(question_id),
                        error=str(e),
                    )
                    try:
                        await self.store.rollback()
                    except Exception as rollback_error:
                        logger.error("sweep_rollback_failed", error=str(rollback_error))

        logger.info(
            "expired_claims_released",
            released=result.released,
            refunded=result.refunded,
            expired=result.expired,
            failed=result.failed,
        )
        return result

    async def _release_one(self, question: QAQuestion, result: SweepResult) -> None:
        charged = has_charge(question) or question.credit_applied_cents > 0
        direct = question.question_mode == QuestionMode.DIRECT

        if direct:
            values: dict[str, object] = {
                "status": QuestionStatus.EXPIRED,
                "resolved_at": self.clock(),
                **_CLEARED_CLAIM,
            }
            if charged:
                values["payout_status"] = PayoutStatus.REFUNDED
        else:
            # Back to the listed split; a subscriber discount belonged to the lapsed claim
            split = split_price(
                question.price_cents, listed_fee_rate(self.config, question.pricing_mode)
            )
            values = {
                "status": QuestionStatus.OPEN,
                "platform_fee_cents": split.platform_fee_cents,
                "expert_payout_cents": split.expert_payout_cents,
                **_CLEARED_CLAIM,
            }

        moved = await self.store.update_question_if(
            question.id, {QuestionStatus.CLAIMED}, **values
        )
        if not moved:
            logger.debug("claim_release_skipped", question_id=str(question.id))
            return
        await self.store.commit()

        if charged:
            # A reopened row must stay refundable for the next claim's charge
            outcome = await self.payouts.refund_question(
                question, REFUND_REASON_CLAIM_EXPIRED, record_refund=direct
            )
            result.refunded += outcome.refunded
            if outcome.failed:
                logger.error(
                    "claim_refund_needs_reconciliation",
                    question_id=str(question.id),
                    failed=outcome.failed,
                )

        link = question_link(question.id)
        if direct:
            result.expired += 1
            result.effects.append(
                Notify(
                    user_id=question.diyer_user_id,
                    notification_type=NotificationType.CLAIM_EXPIRED,
                    title="Question expired",
                    body="The expert didn't respond in time. You were not charged.",
                    link=link,
                )
            )
        else:
            result.released += 1
            result.effects.extend(
                await matching_expert_notifications(
                    self.store,
                    question.category,
                    {question.diyer_user_id},
                    NotificationType.QUESTION_POSTED,
                    "Question available again",
                    preview(question.question_text),
                    link,
                )
            )

    async def auto_accept_answered(self) -> SweepResult:
        """Accept answers nobody objected to within the auto-accept window."""
        result = SweepResult()
        cutoff = self.clock() - timedelta(hours=self.config.auto_accept_hours)

        with trace_operation("auto_accept_answered"):
            for question_id in await self.store.select_auto_accept_ids(cutoff):
                try:
                    question = await self.store.get_question(question_id)
                    if question is None or question.status != QuestionStatus.ANSWERED:
                        continue
                    if await self._auto_accept_one(question, result):
                        result.auto_accepted += 1
                except Exception as e:
                    result.failed += 1
                    logger.error(
                        "auto_accept_failed",
                        question_id=str(question_id),
                        error=str(e),
                    )
                    try:
                        await self.store.rollback()
                    except Exception as rollback_error:
                        logger.error("sweep_rollback_failed", error=str(rollback_error))

        logger.info("auto_accept_completed", auto_accepted=result.auto_accepted, failed=result.failed)
        return result

    async def check_auto_accept(self, question_id: UUID) -> bool:
        """Synchronous single-question auto-accept used on read paths."""
        question = await self.store.get_question(question_id)
        if (
            question is None
            or question.status != QuestionStatus.ANSWERED
            or question.answered_at is None
        ):
            return False
        deadline = question.answered_at + timedelta(hours=self.config.auto_accept_hours)
        if self.clock() < deadline:
            return False
        return await self._auto_accept_one(question, SweepResult())

    async def _auto_accept_one(self, question: QAQuestion, result: SweepResult) -> bool:
        values: dict[str, object] = {
            "status": QuestionStatus.ACCEPTED,
            "resolved_at": self.clock(),
        }
        if question.payout_status != PayoutStatus.FREE:
            values["payout_status"] = PayoutStatus.RELEASED

        accepted = await self.store.update_question_if(
            question.id, {QuestionStatus.ANSWERED}, **values
        )
        if not accepted:
            return False
        await self.store.commit()

        await self.payouts.release_payout(question)
        metrics.record_transition("auto_accept", "success")
        logger.info("question_auto_accepted", question_id=str(question.id))

        if question.expert_id is not None:
            result.effects.append(RecalculateReputation(expert_id=question.expert_id))
            expert = await self.store.get_expert_profile(question.expert_id)
            if expert is not None:
                result.effects.append(
                    Notify(
                        user_id=expert.user_id,
                        notification_type=NotificationType.ANSWER_ACCEPTED,
                        title="Answer accepted",
                        body="Your answer was accepted!",
                        link=question_link(question.id),
                    )
                )
        return True

    async def run_sweeps(self) -> SweepResult:
        """Both sweeps, merged into one result."""
        released = await self.release_expired_claims()
        accepted = await self.auto_accept_answered()
        merged = SweepResult(
            released=released.released,
            refunded=released.refunded,
            expired=released.expired,
            auto_accepted=accepted.auto_accepted,
            failed=released.failed + accepted.failed,
            effects=released.effects + accepted.effects,
        )
        metrics.record_sweep(
            merged.released, merged.refunded, merged.expired, merged.auto_accepted, merged.failed
        )
        return merged
