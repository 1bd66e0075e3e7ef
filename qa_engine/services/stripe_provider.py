"""
Stripe Payment Provider Implementation.

NO DICTIONARIES - All data uses strongly typed models.
"""

from uuid import uuid4

import stripe
from structlog import get_logger

from qa_engine.exceptions import PaymentProviderError
from qa_engine.observability.metrics import metrics
from qa_engine.services.payment_provider import (
    ChargeRequest,
    RefundRequest,
    TransferRequest,
)

logger = get_logger(__name__)


class StripeProvider:
    """
    Stripe payment provider implementation.

    Implements the PaymentProvider protocol for Stripe. In test mode no
    Stripe call is made and fake ids are returned.
    """

    def __init__(self, api_key: str, currency: str = "usd", test_mode: bool = False) -> None:
        """
        Initialize Stripe provider.

        Args:
            api_key: Stripe secret API key
            currency: ISO currency for every charge and transfer
            test_mode: return fake ids instead of calling Stripe
        """
        self.api_key = api_key
        self.currency = currency.lower()
        self.test_mode = test_mode
        stripe.api_key = api_key

    async def charge(self, request: ChargeRequest) -> str:
        """
        Charge a saved payment method off-session.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        if self.test_mode:
            metrics.record_payment("charge", True, request.amount_cents)
            return f"pi_test_{uuid4().hex[:8]}"

        try:
            logger.info(
                "creating_stripe_charge",
                question_id=str(request.question_id),
                amount_cents=request.amount_cents,
                purpose=request.purpose,
                idempotency_key=request.idempotency_key,
            )

            payment_intent = stripe.PaymentIntent.create(
                amount=request.amount_cents,
                currency=self.currency,
                customer=request.customer_id,
                payment_method=request.payment_method_id,
                off_session=True,
                confirm=True,
                metadata={
                    "qa_question_id": str(request.question_id),
                    "type": request.purpose,
                },
                idempotency_key=request.idempotency_key,
            )

            logger.info(
                "stripe_charge_created",
                payment_intent_id=payment_intent.id,
                status=payment_intent.status,
            )
            metrics.record_payment("charge", True, request.amount_cents)

            payment_intent_id: str = payment_intent.id
            return payment_intent_id

        except stripe.StripeError as exc:
            logger.error(
                "stripe_charge_failed",
                question_id=str(request.question_id),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            metrics.record_payment("charge", False)
            raise PaymentProviderError(f"Stripe charge failed: {exc}") from exc

    async def refund(self, request: RefundRequest) -> str:
        """
        Issue a full refund on a PaymentIntent.

        Raises:
            PaymentProviderError: If refund fails
        """
        if self.test_mode:
            metrics.record_payment("refund", True)
            return f"re_test_{uuid4().hex[:8]}"

        try:
            logger.info(
                "creating_stripe_refund",
                payment_intent_id=request.payment_intent_id,
                reason=request.reason,
            )

            refund = stripe.Refund.create(
                payment_intent=request.payment_intent_id,
                metadata={
                    "qa_question_id": str(request.question_id),
                    "reason": request.reason,
                },
                idempotency_key=request.idempotency_key,
            )

            logger.info(
                "stripe_refund_created",
                refund_id=refund.id,
                status=refund.status,
                amount_cents=refund.amount,
            )
            metrics.record_payment("refund", True, refund.amount)

            refund_id: str = refund.id
            return refund_id

        except stripe.StripeError as exc:
            logger.error(
                "stripe_refund_failed",
                payment_intent_id=request.payment_intent_id,
                error=str(exc),
            )
            metrics.record_payment("refund", False)
            raise PaymentProviderError(f"Stripe refund failed: {exc}") from exc

    async def transfer(self, request: TransferRequest) -> str:
        """
        Transfer an expert payout to their connected account.

        Raises:
            PaymentProviderError: If transfer fails
        """
        if self.test_mode:
            metrics.record_payment("transfer", True, request.amount_cents)
            return f"tr_test_{uuid4().hex}"

        try:
            logger.info(
                "creating_stripe_transfer",
                question_id=str(request.question_id),
                amount_cents=request.amount_cents,
                transfer_group=request.transfer_group,
            )

            transfer = stripe.Transfer.create(
                amount=request.amount_cents,
                currency=self.currency,
                destination=request.destination_account_id,
                transfer_group=request.transfer_group,
                metadata={
                    "qa_question_id": str(request.question_id),
                    "type": "qa_payout",
                },
                idempotency_key=request.idempotency_key,
            )

            logger.info("stripe_transfer_created", transfer_id=transfer.id)
            metrics.record_payment("transfer", True, request.amount_cents)

            transfer_id: str = transfer.id
            return transfer_id

        except stripe.StripeError as exc:
            logger.error(
                "stripe_transfer_failed",
                question_id=str(request.question_id),
                error=str(exc),
            )
            metrics.record_payment("transfer", False)
            raise PaymentProviderError(f"Stripe transfer failed: {exc}") from exc
