"""
Tests for PayoutService.
"""

from uuid import uuid4

from qa_engine.db.models import ExpertProfile, QATierPayment
from qa_engine.models.api import PayoutStatus, QuestionStatus
from qa_engine.services.credit_ledger import REASON_REFUNDED
from qa_engine.services.payouts import (
    REFUND_REASON_NOT_HELPFUL,
    REFUND_REASON_TIER,
    PayoutService,
    has_charge,
)
from tests.fakes import (
    NOW,
    FakeCreditLedger,
    FakePaymentProvider,
    FakeQuestionStore,
    make_expert,
    make_question,
)


class TestReleasePayout:
    """Expert transfers on acceptance."""

    async def test_transfers_payout(
        self,
        store: FakeQuestionStore,
        provider: FakePaymentProvider,
        payouts: PayoutService,
        expert: ExpertProfile,
    ):
        question = store.seed_question(
            make_question(
                status=QuestionStatus.ACCEPTED, expert_id=expert.id, payment_intent_id="pi_1"
            )
        )

        transfer_id = await payouts.release_payout(question)

        assert transfer_id == "tr_1"
        request = provider.transfers[0]
        assert request.amount_cents == 1230
        assert request.destination_account_id == "acct_expert1"
        assert request.transfer_group == f"qa_{question.id}"
        assert request.idempotency_key == f"qa-transfer-{question.id}"
        row = store.row(question.id)
        assert row["payout_transfer_id"] == "tr_1"
        assert row["payout_released_at"] == NOW

    async def test_free_question_not_transferred(
        self, provider: FakePaymentProvider, payouts: PayoutService, expert: ExpertProfile
    ):
        question = make_question(
            price_cents=0,
            platform_fee_cents=0,
            expert_payout_cents=0,
            payout_status=PayoutStatus.FREE,
            expert_id=expert.id,
        )
        assert await payouts.release_payout(question) is None
        assert provider.transfers == []

    async def test_missing_payout_account(
        self, store: FakeQuestionStore, provider: FakePaymentProvider, payouts: PayoutService
    ):
        expert = store.seed_expert(make_expert("expert-9", payout_account_id=None))
        question = make_question(status=QuestionStatus.ACCEPTED, expert_id=expert.id)

        assert await payouts.release_payout(question) is None
        assert provider.transfers == []

    async def test_transfer_failure_logged_not_raised(
        self,
        store: FakeQuestionStore,
        provider: FakePaymentProvider,
        payouts: PayoutService,
        expert: ExpertProfile,
    ):
        question = store.seed_question(
            make_question(status=QuestionStatus.ACCEPTED, expert_id=expert.id)
        )
        provider.fail_transfer = True

        assert await payouts.release_payout(question) is None
        assert store.row(question.id)["payout_transfer_id"] is None


class TestRefundQuestion:
    """Refunds of base charges, tier payments and credit."""

    async def test_refunds_base_charge(
        self, store: FakeQuestionStore, provider: FakePaymentProvider, payouts: PayoutService
    ):
        question = store.seed_question(make_question(payment_intent_id="pi_base"))

        outcome = await payouts.refund_question(question, REFUND_REASON_NOT_HELPFUL)

        assert outcome.refunded == 1
        assert outcome.failed == 0
        assert outcome.base_refund_id == "re_1"
        assert provider.refunds[0].idempotency_key == "qa-refund-pi_base"
        assert store.row(question.id)["refund_id"] == "re_1"

    async def test_unrecorded_refund_leaves_row_untouched(
        self, store: FakeQuestionStore, provider: FakePaymentProvider, payouts: PayoutService
    ):
        """A reopened row is refunded without a refund id written back onto it."""
        question = make_question(payment_intent_id="pi_base")
        store.seed_question(make_question(id=question.id))

        outcome = await payouts.refund_question(
            question, REFUND_REASON_NOT_HELPFUL, record_refund=False
        )

        assert outcome.base_refund_id == "re_1"
        assert provider.refunds[0].payment_intent_id == "pi_base"
        assert store.row(question.id)["refund_id"] is None
        assert store.row(question.id)["refunded_at"] is None

    async def test_already_refunded_is_skipped(
        self, store: FakeQuestionStore, provider: FakePaymentProvider, payouts: PayoutService
    ):
        question = store.seed_question(make_question(payment_intent_id="pi_base", refund_id="re_old"))

        outcome = await payouts.refund_question(question, REFUND_REASON_NOT_HELPFUL)

        assert outcome.refunded == 0
        assert provider.refunds == []

    async def test_tier_payments_refunded_independently(
        self, store: FakeQuestionStore, provider: FakePaymentProvider, payouts: PayoutService
    ):
        question = store.seed_question(make_question(payment_intent_id="pi_base", current_tier=3))
        for tier, intent in ((2, "pi_t2"), (3, "pi_t3")):
            store.tier_payments.append(
                QATierPayment(
                    id=uuid4(),
                    question_id=question.id,
                    tier=tier,
                    amount_cents=1000 * (tier - 1),
                    payment_intent_id=intent,
                    charged_at=NOW,
                )
            )

        outcome = await payouts.refund_question(
            question, REFUND_REASON_NOT_HELPFUL, include_tiers=True
        )

        assert outcome.refunded == 3
        assert [r.payment_intent_id for r in provider.refunds] == ["pi_base", "pi_t2", "pi_t3"]
        assert provider.refunds[1].reason == REFUND_REASON_TIER

    async def test_refund_failure_counted(
        self, store: FakeQuestionStore, provider: FakePaymentProvider, payouts: PayoutService
    ):
        question = store.seed_question(make_question(payment_intent_id="pi_base"))
        provider.fail_refund = True

        outcome = await payouts.refund_question(question, REFUND_REASON_NOT_HELPFUL)

        assert outcome.failed == 1
        assert store.row(question.id)["refund_id"] is None

    async def test_applied_credit_restored(
        self, store: FakeQuestionStore, ledger: FakeCreditLedger, payouts: PayoutService
    ):
        question = store.seed_question(
            make_question(payment_intent_id="pi_base", credit_applied_cents=500)
        )

        await payouts.refund_question(question, REFUND_REASON_NOT_HELPFUL)

        assert ledger.balances["diyer-1"] == 500
        assert ledger.transactions[-1][2] == REASON_REFUNDED

    async def test_fully_credited_question_restores_credit_only(
        self,
        store: FakeQuestionStore,
        provider: FakePaymentProvider,
        ledger: FakeCreditLedger,
        payouts: PayoutService,
    ):
        question = store.seed_question(make_question(credit_applied_cents=1500))

        outcome = await payouts.refund_question(question, REFUND_REASON_NOT_HELPFUL)

        assert provider.refunds == []
        assert outcome.refunded == 0
        assert ledger.balances["diyer-1"] == 1500

    async def test_free_question_refunds_nothing(
        self, provider: FakePaymentProvider, ledger: FakeCreditLedger, payouts: PayoutService
    ):
        question = make_question(
            price_cents=0,
            platform_fee_cents=0,
            expert_payout_cents=0,
            payout_status=PayoutStatus.FREE,
        )

        outcome = await payouts.refund_question(question, REFUND_REASON_NOT_HELPFUL)

        assert outcome.refunded == 0
        assert provider.refunds == []
        assert ledger.balances == {}


class TestHasCharge:
    def test_has_charge(self):
        assert has_charge(make_question(payment_intent_id="pi_1"))
        assert not has_charge(make_question())
        assert not has_charge(
            make_question(payment_intent_id="pi_1", payout_status=PayoutStatus.FREE)
        )
