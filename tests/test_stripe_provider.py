"""
Tests for StripeProvider.

Stripe API calls are patched; no network traffic.
"""

from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest
import stripe

from qa_engine.exceptions import PaymentProviderError
from qa_engine.services.payment_provider import (
    ChargeRequest,
    RefundRequest,
    TransferRequest,
    charge_idempotency_key,
    refund_idempotency_key,
    second_opinion_idempotency_key,
    tier_charge_idempotency_key,
    transfer_group,
)
from qa_engine.services.stripe_provider import StripeProvider
from tests.fakes import NOW


def charge_request(amount_cents: int = 1500) -> ChargeRequest:
    question_id = uuid4()
    return ChargeRequest(
        amount_cents=amount_cents,
        customer_id="cus_1",
        payment_method_id="pm_1",
        question_id=question_id,
        purpose="qa_question",
        idempotency_key=charge_idempotency_key(question_id, NOW),
    )


class TestTestMode:
    """Fake ids without calling Stripe."""

    async def test_charge_returns_fake_id(self):
        provider = StripeProvider(api_key="sk_test_x", test_mode=True)
        with patch("stripe.PaymentIntent.create") as create:
            intent_id = await provider.charge(charge_request())
        assert intent_id.startswith("pi_test_")
        create.assert_not_called()

    async def test_refund_and_transfer_fake_ids(self):
        provider = StripeProvider(api_key="sk_test_x", test_mode=True)
        question_id = uuid4()
        refund_id = await provider.refund(
            RefundRequest("pi_1", question_id, "not_helpful", refund_idempotency_key("pi_1"))
        )
        transfer_id = await provider.transfer(
            TransferRequest(1230, "acct_1", question_id, transfer_group(question_id), "k")
        )
        assert refund_id.startswith("re_test_")
        assert transfer_id.startswith("tr_test_")


class TestLiveMode:
    """Stripe SDK calls and error wrapping."""

    async def test_charge_calls_payment_intent(self):
        provider = StripeProvider(api_key="sk_test_x", currency="USD")
        request = charge_request()
        with patch("stripe.PaymentIntent.create") as create:
            create.return_value = MagicMock(id="pi_live_1", status="succeeded")
            intent_id = await provider.charge(request)

        assert intent_id == "pi_live_1"
        kwargs = create.call_args.kwargs
        assert kwargs["amount"] == 1500
        assert kwargs["currency"] == "usd"
        assert kwargs["off_session"] is True
        assert kwargs["confirm"] is True
        assert kwargs["idempotency_key"] == request.idempotency_key
        assert kwargs["metadata"]["qa_question_id"] == str(request.question_id)

    async def test_charge_error_wrapped(self):
        provider = StripeProvider(api_key="sk_test_x")
        with patch("stripe.PaymentIntent.create", side_effect=stripe.StripeError("card declined")):
            with pytest.raises(PaymentProviderError, match="Stripe charge failed"):
                await provider.charge(charge_request())

    async def test_refund_error_wrapped(self):
        provider = StripeProvider(api_key="sk_test_x")
        with patch("stripe.Refund.create", side_effect=stripe.StripeError("no such intent")):
            with pytest.raises(PaymentProviderError, match="Stripe refund failed"):
                await provider.refund(RefundRequest("pi_1", uuid4(), "cancelled", "k"))

    async def test_transfer_uses_group(self):
        provider = StripeProvider(api_key="sk_test_x")
        question_id = uuid4()
        with patch("stripe.Transfer.create") as create:
            create.return_value = MagicMock(id="tr_live_1")
            transfer_id = await provider.transfer(
                TransferRequest(
                    1230, "acct_1", question_id, transfer_group(question_id), "qa-transfer-x"
                )
            )

        assert transfer_id == "tr_live_1"
        assert create.call_args.kwargs["transfer_group"] == f"qa_{question_id}"
        assert create.call_args.kwargs["destination"] == "acct_1"


class TestRequests:
    """Request validation and idempotency keys."""

    def test_charge_must_be_positive(self):
        with pytest.raises(ValueError):
            charge_request(amount_cents=0)

    def test_transfer_must_be_positive(self):
        with pytest.raises(ValueError):
            TransferRequest(0, "acct_1", uuid4(), "g", "k")

    def test_keys_are_stable_per_question(self):
        question_id = uuid4()
        assert charge_idempotency_key(question_id, NOW) == charge_idempotency_key(question_id, NOW)
        assert charge_idempotency_key(question_id, None).endswith("-0")
        assert tier_charge_idempotency_key(question_id, 2) == f"qa-tier-{question_id}-2"
        assert second_opinion_idempotency_key(question_id) == f"qa-second-opinion-{question_id}"
