"""
Payout Service - Money movement attached to state transitions.

Called only after the status compare-and-swap has succeeded. Failures are
logged for out-of-band reconciliation and never undo the transition.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from structlog import get_logger

from qa_engine.db.models import QAQuestion, utc_now
from qa_engine.db.store import QuestionStore
from qa_engine.exceptions import PaymentProviderError
from qa_engine.models.api import PayoutStatus
from qa_engine.observability.metrics import metrics
from qa_engine.services.credit_ledger import REASON_REFUNDED, CreditLedger
from qa_engine.services.payment_provider import (
    PaymentProvider,
    RefundRequest,
    TransferRequest,
    refund_idempotency_key,
    transfer_group,
)

logger = get_logger(__name__)

REFUND_REASON_NOT_HELPFUL = "not_helpful"
REFUND_REASON_TIER = "not_helpful_tier_refund"
REFUND_REASON_CLAIM_EXPIRED = "claim_expired"
REFUND_REASON_CANCELLED = "cancelled"


@dataclass(frozen=True)
class RefundOutcome:
    """How many refund calls succeeded and failed."""

    refunded: int
    failed: int
    base_refund_id: str | None = None


def has_charge(question: QAQuestion) -> bool:
    """A real payment exists for the base price."""
    return question.payment_intent_id is not None and question.payout_status != PayoutStatus.FREE


class PayoutService:
    """Releases payouts and issues refunds."""

    def __init__(
        self,
        store: QuestionStore,
        provider: PaymentProvider,
        ledger: CreditLedger,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.provider = provider
        self.ledger = ledger
        self.clock = clock

    async def release_payout(self, question: QAQuestion) -> str | None:
        """
        Transfer the expert payout for an accepted question.

        Returns the transfer id, or None when nothing was transferred.
        """
        if question.payout_status == PayoutStatus.FREE or question.expert_payout_cents <= 0:
            return None
        if question.expert_id is None:
            logger.error("payout_missing_expert", question_id=str(question.id))
            return None

        expert = await self.store.get_expert_profile(question.expert_id)
        if expert is None or not expert.payout_account_id:
            logger.error(
                "payout_account_missing",
                question_id=str(question.id),
                expert_id=str(question.expert_id),
                amount_cents=question.expert_payout_cents,
            )
            return None

        try:
            transfer_id = await self.provider.transfer(
                TransferRequest(
                    amount_cents=question.expert_payout_cents,
                    destination_account_id=expert.payout_account_id,
                    question_id=question.id,
                    transfer_group=transfer_group(question.id),
                    idempotency_key=f"qa-transfer-{question.id}",
                )
            )
        except PaymentProviderError as e:
            logger.error(
                "payout_transfer_failed",
                question_id=str(question.id),
                expert_id=str(question.expert_id),
                amount_cents=question.expert_payout_cents,
                error=e.message,
            )
            metrics.record_error("PaymentProviderError", "release_payout")
            return None

        await self.store.update_question(
            question.id,
            payout_transfer_id=transfer_id,
            payout_released_at=self.clock(),
        )
        await self.store.commit()
        logger.info(
            "payout_released",
            question_id=str(question.id),
            transfer_id=transfer_id,
            amount_cents=question.expert_payout_cents,
        )
        return transfer_id

    async def refund_question(
        self,
        question: QAQuestion,
        reason: str,
        include_tiers: bool = False,
        record_refund: bool = True,
    ) -> RefundOutcome:
        """
        Refund the base charge and optionally every tier payment.

        Each refund is an independent call so one failure does not block the
        others. Applied credit is returned to the asker's balance. With
        record_refund False the refund id is not written back, for rows that
        were already reopened and may be charged again.
        """
        refunded = 0
        failed = 0
        base_refund_id: str | None = None

        if has_charge(question) and question.refund_id is None:
            base_refund_id = await self._refund_one(
                question, question.payment_intent_id, reason  # type: ignore[arg-type]
            )
            if base_refund_id is None:
                failed += 1
            else:
                refunded += 1
                if record_refund:
                    await self.store.update_question(
                        question.id, refund_id=base_refund_id, refunded_at=self.clock()
                    )

        if include_tiers:
            for payment in await self.store.list_tier_payments(question.id):
                refund_id = await self._refund_one(
                    question, payment.payment_intent_id, REFUND_REASON_TIER
                )
                if refund_id is None:
                    failed += 1
                else:
                    refunded += 1

        if question.credit_applied_cents > 0 and question.payout_status != PayoutStatus.FREE:
            try:
                await self.ledger.restore_credits(
                    question.diyer_user_id,
                    question.id,
                    question.credit_applied_cents,
                    reason=REASON_REFUNDED,
                )
            except Exception as e:
                failed += 1
                logger.error(
                    "credit_restore_failed",
                    question_id=str(question.id),
                    user_id=question.diyer_user_id,
                    amount_cents=question.credit_applied_cents,
                    error=str(e),
                )

        await self.store.commit()
        return RefundOutcome(refunded=refunded, failed=failed, base_refund_id=base_refund_id)

    async def _refund_one(
        self, question: QAQuestion, payment_intent_id: str, reason: str
    ) -> str | None:
        try:
            refund_id = await self.provider.refund(
                RefundRequest(
                    payment_intent_id=payment_intent_id,
                    question_id=question.id,
                    reason=reason,
                    idempotency_key=refund_idempotency_key(payment_intent_id),
                )
            )
        except PaymentProviderError as e:
            logger.error(
                "refund_failed",
                question_id=str(question.id),
                payment_intent_id=payment_intent_id,
                reason=reason,
                error=e.message,
            )
            metrics.record_error("PaymentProviderError", "refund")
            return None

        logger.info(
            "refund_issued",
            question_id=str(question.id),
            payment_intent_id=payment_intent_id,
            refund_id=refund_id,
            reason=reason,
        )
        return refund_id
