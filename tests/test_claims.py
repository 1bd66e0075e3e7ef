"""
Tests for ClaimLifecycleManager.

Claims, answers, cancellation and the expiry / auto-accept sweeps, run
against the in-memory store so compare-and-swap races are real.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from qa_engine.db.models import ExpertProfile
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
    PricingMode,
    QuestionMode,
    QuestionStatus,
)
from qa_engine.models.domain import Notify, RecalculateReputation
from qa_engine.services.claims import ClaimLifecycleManager, needs_charge
from qa_engine.services.payouts import PayoutService
from tests.fakes import (
    NOW,
    FakeCreditLedger,
    FakePaymentProvider,
    FakeQuestionStore,
    make_expert,
    make_question,
)


def claimed_question(expert: ExpertProfile, **overrides):
    """A question claimed an hour ago and charged."""
    values = {
        "status": QuestionStatus.CLAIMED,
        "expert_id": expert.id,
        "claimed_at": NOW - timedelta(hours=1),
        "claim_expires_at": NOW + timedelta(hours=1),
        "payment_intent_id": "pi_claim",
    }
    values.update(overrides)
    return make_question(**values)


class TestNeedsCharge:
    def test_paid_uncharged(self):
        assert needs_charge(make_question())

    def test_already_charged(self):
        assert not needs_charge(make_question(payment_intent_id="pi_1"))

    def test_credit_covered(self):
        assert not needs_charge(make_question(credit_applied_cents=1500))

    def test_free(self):
        assert not needs_charge(make_question(price_cents=0, payout_status=PayoutStatus.FREE))


# ============================================================================
# Claim
# ============================================================================


class TestClaim:
    """open -> claimed plus the charge."""

    async def test_claim_charges_full_price(
        self,
        store: FakeQuestionStore,
        provider: FakePaymentProvider,
        claims: ClaimLifecycleManager,
        expert: ExpertProfile,
    ):
        """A free-tier expert claims a pool question and the asker is charged."""
        question = store.seed_question(make_question())

        result = await claims.claim(question.id, "expert-1")

        assert result.status == QuestionStatus.CLAIMED
        assert result.charged_cents == 1500
        assert result.payment_intent_id == "pi_1"
        assert result.claim_expires_at == NOW + timedelta(hours=2)

        row = store.row(question.id)
        assert row["status"] == QuestionStatus.CLAIMED
        assert row["expert_id"] == expert.id
        assert row["payment_intent_id"] == "pi_1"
        assert row["expert_payout_cents"] == 1230

        charge = provider.charges[0]
        assert charge.amount_cents == 1500
        assert charge.customer_id == "cus_diyer1"
        assert charge.payment_method_id == "pm_card_visa"

        assert result.effects == (
            Notify(
                user_id="diyer-1",
                notification_type=NotificationType.QUESTION_CLAIMED,
                title="Question claimed",
                body="An expert has claimed your question",
                link=f"/marketplace/qa/{question.id}",
            ),
        )

    async def test_claim_applies_credit_first(
        self,
        store: FakeQuestionStore,
        ledger: FakeCreditLedger,
        provider: FakePaymentProvider,
        claims: ClaimLifecycleManager,
        expert: ExpertProfile,
    ):
        """Credit reduces the charge; both are recorded on the question."""
        ledger.balances["diyer-1"] = 500
        question = store.seed_question(make_question())

        result = await claims.claim(question.id, "expert-1")

        assert result.credit_applied_cents == 500
        assert result.charged_cents == 1000
        assert provider.charges[0].amount_cents == 1000
        assert store.row(question.id)["credit_applied_cents"] == 500
        assert ledger.balances["diyer-1"] == 0

    async def test_claim_fully_covered_by_credit(
        self,
        store: FakeQuestionStore,
        ledger: FakeCreditLedger,
        provider: FakePaymentProvider,
        claims: ClaimLifecycleManager,
        expert: ExpertProfile,
    ):
        ledger.balances["diyer-1"] = 5000
        question = store.seed_question(make_question())

        result = await claims.claim(question.id, "expert-1")

        assert result.charged_cents == 0
        assert result.payment_intent_id is None
        assert provider.charges == []
        assert store.row(question.id)["credit_applied_cents"] == 1500

    async def test_free_question_not_charged(
        self,
        store: FakeQuestionStore,
        provider: FakePaymentProvider,
        claims: ClaimLifecycleManager,
        expert: ExpertProfile,
    ):
        question = store.seed_question(
            make_question(
                price_cents=0,
                platform_fee_cents=0,
                expert_payout_cents=0,
                payout_status=PayoutStatus.FREE,
                payment_method_id=None,
                stripe_customer_id=None,
            )
        )

        result = await claims.claim(question.id, "expert-1")

        assert result.charged_cents == 0
        assert provider.charges == []

    async def test_pro_expert_gets_discounted_fee(
        self,
        store: FakeQuestionStore,
        claims: ClaimLifecycleManager,
        other_expert: ExpertProfile,
    ):
        """A pro subscriber's claim re-splits the price at 15%."""
        question = store.seed_question(make_question())

        await claims.claim(question.id, "expert-2")

        row = store.row(question.id)
        assert row["platform_fee_cents"] == 225
        assert row["expert_payout_cents"] == 1275

    async def test_non_expert_cannot_claim(
        self, store: FakeQuestionStore, claims: ClaimLifecycleManager
    ):
        question = store.seed_question(make_question())
        with pytest.raises(AuthorizationError):
            await claims.claim(question.id, "random-user")

    async def test_cannot_claim_own_question(
        self, store: FakeQuestionStore, claims: ClaimLifecycleManager, expert: ExpertProfile
    ):
        question = store.seed_question(make_question(diyer_user_id="expert-1"))
        with pytest.raises(AuthorizationError, match="own question"):
            await claims.claim(question.id, "expert-1")

    async def test_unknown_question(self, claims: ClaimLifecycleManager, expert: ExpertProfile):
        with pytest.raises(QuestionNotFoundError):
            await claims.claim(make_question().id, "expert-1")

    async def test_claimed_question_rejected(
        self,
        store: FakeQuestionStore,
        claims: ClaimLifecycleManager,
        expert: ExpertProfile,
        other_expert: ExpertProfile,
    ):
        question = store.seed_question(claimed_question(other_expert))
        with pytest.raises(PreconditionViolationError) as exc_info:
            await claims.claim(question.id, "expert-1")
        assert exc_info.value.current_status == QuestionStatus.CLAIMED

    async def test_direct_question_only_for_target(
        self,
        store: FakeQuestionStore,
        claims: ClaimLifecycleManager,
        expert: ExpertProfile,
        other_expert: ExpertProfile,
    ):
        question = store.seed_question(
            make_question(question_mode=QuestionMode.DIRECT, target_expert_id=other_expert.id)
        )
        with pytest.raises(AuthorizationError):
            await claims.claim(question.id, "expert-1")

        result = await claims.claim(question.id, "expert-2")
        assert result.status == QuestionStatus.CLAIMED

    async def test_missing_payment_method(
        self, store: FakeQuestionStore, claims: ClaimLifecycleManager, expert: ExpertProfile
    ):
        """Nothing changes when a paid question has no saved card."""
        question = store.seed_question(make_question(payment_method_id=None))

        with pytest.raises(PaymentMethodMissingError):
            await claims.claim(question.id, "expert-1")
        assert store.row(question.id)["status"] == QuestionStatus.OPEN

    async def test_charge_failure_reverts_claim(
        self,
        store: FakeQuestionStore,
        ledger: FakeCreditLedger,
        provider: FakePaymentProvider,
        claims: ClaimLifecycleManager,
        expert: ExpertProfile,
    ):
        """A declined card re-lists the question and returns applied credit."""
        ledger.balances["diyer-1"] = 300
        provider.fail_charge = True
        question = store.seed_question(make_question())

        with pytest.raises(PaymentProviderError):
            await claims.claim(question.id, "expert-1")

        row = store.row(question.id)
        assert row["status"] == QuestionStatus.OPEN
        assert row["expert_id"] is None
        assert row["claimed_at"] is None
        assert row["credit_applied_cents"] == 0
        assert row["expert_payout_cents"] == 1230
        assert ledger.balances["diyer-1"] == 300

    async def test_concurrent_claims_single_winner(
        self,
        store: FakeQuestionStore,
        provider: FakePaymentProvider,
        claims: ClaimLifecycleManager,
        expert: ExpertProfile,
        other_expert: ExpertProfile,
    ):
        """Two experts racing for one question: one claim, one charge."""
        question = store.seed_question(make_question())

        results = await asyncio.gather(
            claims.claim(question.id, "expert-1"),
            claims.claim(question.id, "expert-2"),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, PreconditionViolationError)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert len(provider.charges) == 1


# ============================================================================
# Answer and Cancel
# ============================================================================


class TestAnswer:
    """claimed -> answered."""

    async def test_answer(
        self, store: FakeQuestionStore, claims: ClaimLifecycleManager, expert: ExpertProfile
    ):
        question = store.seed_question(claimed_question(expert))

        result = await claims.answer(question.id, "expert-1", "  Shut off the breaker first.  ")

        assert result.new_status == QuestionStatus.ANSWERED
        row = store.row(question.id)
        assert row["answer_text"] == "Shut off the breaker first."
        assert row["answered_at"] == NOW
        assert result.effects[0].notification_type == NotificationType.ANSWER_RECEIVED

    async def test_answer_is_sanitized(
        self, store: FakeQuestionStore, claims: ClaimLifecycleManager, expert: ExpertProfile
    ):
        question = store.seed_question(claimed_question(expert))
        await claims.answer(question.id, "expert-1", "Email me at pro@example.com for help")
        assert "pro@example.com" not in store.row(question.id)["answer_text"]

    async def test_empty_answer(self, claims: ClaimLifecycleManager):
        with pytest.raises(ValidationError):
            await claims.answer(make_question().id, "expert-1", "   ")

    async def test_overlong_answer(self, claims: ClaimLifecycleManager):
        with pytest.raises(ValidationError):
            await claims.answer(make_question().id, "expert-1", "x" * 10001)

    async def test_only_assigned_expert(
        self,
        store: FakeQuestionStore,
        claims: ClaimLifecycleManager,
        expert: ExpertProfile,
        other_expert: ExpertProfile,
    ):
        question = store.seed_question(claimed_question(expert))
        with pytest.raises(AuthorizationError):
            await claims.answer(question.id, "expert-2", "My answer")

    async def test_expired_claim_cannot_answer(
        self, store: FakeQuestionStore, claims: ClaimLifecycleManager, expert: ExpertProfile
    ):
        question = store.seed_question(
            claimed_question(expert, claim_expires_at=NOW - timedelta(minutes=1))
        )
        with pytest.raises(PreconditionViolationError):
            await claims.answer(question.id, "expert-1", "Late answer")

    async def test_already_answered(
        self, store: FakeQuestionStore, claims: ClaimLifecycleManager, expert: ExpertProfile
    ):
        question = store.seed_question(
            claimed_question(expert, status=QuestionStatus.ANSWERED, answered_at=NOW)
        )
        with pytest.raises(PreconditionViolationError):
            await claims.answer(question.id, "expert-1", "Second answer")


class TestCancel:
    """Asker withdrawal."""

    async def test_cancel_open_question(
        self, store: FakeQuestionStore, provider: FakePaymentProvider, claims: ClaimLifecycleManager
    ):
        question = store.seed_question(make_question())

        result = await claims.cancel(question.id, "diyer-1")

        assert result.new_status == QuestionStatus.CANCELLED
        assert result.effects == ()
        assert provider.refunds == []
        assert store.row(question.id)["payout_status"] == PayoutStatus.PENDING

    async def test_cancel_claimed_refunds_and_notifies(
        self,
        store: FakeQuestionStore,
        provider: FakePaymentProvider,
        claims: ClaimLifecycleManager,
        expert: ExpertProfile,
    ):
        question = store.seed_question(claimed_question(expert))

        result = await claims.cancel(question.id, "diyer-1")

        assert provider.refunds[0].payment_intent_id == "pi_claim"
        assert store.row(question.id)["payout_status"] == PayoutStatus.REFUNDED
        assert result.effects[0].user_id == "expert-1"
        assert result.effects[0].notification_type == NotificationType.QUESTION_CANCELLED

    async def test_cancel_pending_payment(
        self, store: FakeQuestionStore, claims: ClaimLifecycleManager
    ):
        question = store.seed_question(make_question(status=QuestionStatus.PENDING_PAYMENT))
        result = await claims.cancel(question.id, "diyer-1")
        assert result.previous_status == QuestionStatus.PENDING_PAYMENT

    async def test_answered_cannot_cancel(
        self, store: FakeQuestionStore, claims: ClaimLifecycleManager, expert: ExpertProfile
    ):
        question = store.seed_question(claimed_question(expert, status=QuestionStatus.ANSWERED))
        with pytest.raises(PreconditionViolationError):
            await claims.cancel(question.id, "diyer-1")

    async def test_only_asker_can_cancel(
        self, store: FakeQuestionStore, claims: ClaimLifecycleManager
    ):
        question = store.seed_question(make_question())
        with pytest.raises(AuthorizationError):
            await claims.cancel(question.id, "someone-else")


# ============================================================================
# Sweeps
# ============================================================================


class TestReleaseExpiredClaims:
    """Expiry sweep."""

    async def test_pool_claim_reopened_and_refunded(
        self,
        store: FakeQuestionStore,
        provider: FakePaymentProvider,
        claims: ClaimLifecycleManager,
        expert: ExpertProfile,
        other_expert: ExpertProfile,
    ):
        question = store.seed_question(
            claimed_question(expert, claim_expires_at=NOW - timedelta(minutes=1))
        )

        result = await claims.release_expired_claims()

        assert result.released == 1
        assert result.refunded == 1
        row = store.row(question.id)
        assert row["status"] == QuestionStatus.OPEN
        assert row["expert_id"] is None
        assert row["payment_intent_id"] is None
        assert provider.refunds[0].payment_intent_id == "pi_claim"
        notified = {e.user_id for e in result.effects}
        assert notified == {"expert-1", "expert-2"}
        assert all(e.notification_type == NotificationType.QUESTION_POSTED for e in result.effects)

    async def test_direct_claim_expires(
        self,
        store: FakeQuestionStore,
        claims: ClaimLifecycleManager,
        expert: ExpertProfile,
    ):
        question = store.seed_question(
            claimed_question(
                expert,
                question_mode=QuestionMode.DIRECT,
                target_expert_id=expert.id,
                claim_expires_at=NOW - timedelta(minutes=1),
            )
        )

        result = await claims.release_expired_claims()

        assert result.expired == 1
        row = store.row(question.id)
        assert row["status"] == QuestionStatus.EXPIRED
        assert row["payout_status"] == PayoutStatus.REFUNDED
        assert result.effects[0].user_id == "diyer-1"
        assert result.effects[0].notification_type == NotificationType.CLAIM_EXPIRED

    async def test_live_claims_untouched(
        self, store: FakeQuestionStore, claims: ClaimLifecycleManager, expert: ExpertProfile
    ):
        question = store.seed_question(claimed_question(expert))

        result = await claims.release_expired_claims()

        assert result.released == 0
        assert store.row(question.id)["status"] == QuestionStatus.CLAIMED

    async def test_row_moved_by_another_actor_is_skipped(
        self,
        store: FakeQuestionStore,
        provider: FakePaymentProvider,
        claims: ClaimLifecycleManager,
        expert: ExpertProfile,
    ):
        """A stale candidate whose status already changed is not refunded."""
        stale = claimed_question(expert, claim_expires_at=NOW - timedelta(minutes=1))
        store.seed_question(stale)
        store.row(stale.id)["status"] = QuestionStatus.ANSWERED
        store.select_expired_claim_ids = AsyncMock(return_value=[stale.id])

        result = await claims.release_expired_claims()

        assert result.released == 0
        assert provider.refunds == []
        assert store.row(stale.id)["status"] == QuestionStatus.ANSWERED

    async def test_lost_race_does_not_stop_later_rows(
        self,
        store: FakeQuestionStore,
        provider: FakePaymentProvider,
        claims: ClaimLifecycleManager,
        expert: ExpertProfile,
    ):
        """The first row is answered between read and update; the second is still released."""
        store.expire_on_rollback = True
        raced = store.seed_question(
            claimed_question(expert, claim_expires_at=NOW - timedelta(minutes=2))
        )
        later = store.seed_question(
            claimed_question(expert, claim_expires_at=NOW - timedelta(minutes=1))
        )
        real_update = store.update_question_if

        async def racing_update(question_id, expected_statuses, expected_tier=None, **values):
            if question_id == raced.id:
                store.row(raced.id)["status"] = QuestionStatus.ANSWERED
            return await real_update(question_id, expected_statuses, expected_tier, **values)

        store.update_question_if = racing_update  # type: ignore[method-assign]

        result = await claims.release_expired_claims()

        assert result.failed == 0
        assert result.released == 1
        assert store.row(raced.id)["status"] == QuestionStatus.ANSWERED
        assert store.row(later.id)["status"] == QuestionStatus.OPEN
        assert len(provider.refunds) == 1

    async def test_overlapping_sweeps_refund_once(
        self,
        store: FakeQuestionStore,
        provider: FakePaymentProvider,
        claims: ClaimLifecycleManager,
        expert: ExpertProfile,
    ):
        store.seed_question(claimed_question(expert, claim_expires_at=NOW - timedelta(minutes=1)))

        first, second = await asyncio.gather(
            claims.release_expired_claims(), claims.release_expired_claims()
        )

        assert first.released + second.released == 1
        assert len(provider.refunds) == 1

    async def test_one_failing_row_does_not_stop_the_sweep(
        self,
        store: FakeQuestionStore,
        ledger: FakeCreditLedger,
        provider: FakePaymentProvider,
        expert: ExpertProfile,
        config,
        clock,
    ):
        """The rollback after a failed row expires loaded rows; later rows are re-read."""
        store.expire_on_rollback = True
        bad = store.seed_question(
            claimed_question(expert, claim_expires_at=NOW - timedelta(minutes=2))
        )
        good = store.seed_question(
            claimed_question(expert, claim_expires_at=NOW - timedelta(minutes=1))
        )
        payouts = PayoutService(store, provider, ledger, clock)
        real_refund = payouts.refund_question

        async def flaky_refund(question, reason, include_tiers=False, record_refund=True):
            if question.id == bad.id:
                raise RuntimeError("connection reset")
            return await real_refund(question, reason, include_tiers, record_refund)

        payouts.refund_question = flaky_refund  # type: ignore[method-assign]
        manager = ClaimLifecycleManager(store, ledger, provider, payouts, config, clock)

        result = await manager.release_expired_claims()

        assert result.failed == 1
        assert result.released == 1
        assert store.row(good.id)["status"] == QuestionStatus.OPEN
        assert store.rollbacks == 1
        assert len(provider.refunds) == 1

    async def test_each_claim_cycle_refunded(
        self,
        store: FakeQuestionStore,
        provider: FakePaymentProvider,
        claims: ClaimLifecycleManager,
        clock,
        expert: ExpertProfile,
    ):
        """A reopened question keeps no refund id, so the next lapsed charge is refunded too."""
        question = store.seed_question(make_question())

        await claims.claim(question.id, "expert-1")
        clock.advance(hours=2, minutes=1)
        await claims.release_expired_claims()
        row = store.row(question.id)
        assert row["status"] == QuestionStatus.OPEN
        assert row["refund_id"] is None

        await claims.claim(question.id, "expert-1")
        clock.advance(hours=2, minutes=1)
        result = await claims.release_expired_claims()

        assert result.refunded == 1
        assert [r.payment_intent_id for r in provider.refunds] == ["pi_1", "pi_2"]

    async def test_flat_question_reopens_at_legacy_split(
        self,
        store: FakeQuestionStore,
        claims: ClaimLifecycleManager,
        clock,
        other_expert: ExpertProfile,
    ):
        """A pro subscriber's rate lapses with the claim; flat questions go back to 20%."""
        question = store.seed_question(
            make_question(
                pricing_mode=PricingMode.FLAT,
                price_cents=800,
                platform_fee_cents=160,
                expert_payout_cents=640,
            )
        )
        await claims.claim(question.id, "expert-2")
        assert store.row(question.id)["platform_fee_cents"] == 120

        clock.advance(hours=2, minutes=1)
        await claims.release_expired_claims()

        row = store.row(question.id)
        assert (row["platform_fee_cents"], row["expert_payout_cents"]) == (160, 640)

    async def test_stale_refund_id_cleared_on_reopen(
        self,
        store: FakeQuestionStore,
        provider: FakePaymentProvider,
        claims: ClaimLifecycleManager,
        expert: ExpertProfile,
    ):
        question = store.seed_question(
            claimed_question(
                expert,
                claim_expires_at=NOW - timedelta(minutes=1),
                refund_id="re_old",
                refunded_at=NOW - timedelta(days=1),
            )
        )

        await claims.release_expired_claims()

        row = store.row(question.id)
        assert row["refund_id"] is None
        assert row["refunded_at"] is None


class TestAutoAccept:
    """Auto-accept sweep."""

    async def test_stale_answer_accepted(
        self,
        store: FakeQuestionStore,
        provider: FakePaymentProvider,
        claims: ClaimLifecycleManager,
        expert: ExpertProfile,
    ):
        question = store.seed_question(
            claimed_question(
                expert, status=QuestionStatus.ANSWERED, answered_at=NOW - timedelta(hours=25)
            )
        )

        result = await claims.auto_accept_answered()

        assert result.auto_accepted == 1
        row = store.row(question.id)
        assert row["status"] == QuestionStatus.ACCEPTED
        assert row["payout_status"] == PayoutStatus.RELEASED
        assert provider.transfers[0].amount_cents == 1230
        assert RecalculateReputation(expert_id=expert.id) in result.effects

    async def test_recent_answer_left_alone(
        self, store: FakeQuestionStore, claims: ClaimLifecycleManager, expert: ExpertProfile
    ):
        store.seed_question(
            claimed_question(
                expert, status=QuestionStatus.ANSWERED, answered_at=NOW - timedelta(hours=23)
            )
        )
        assert (await claims.auto_accept_answered()).auto_accepted == 0

    async def test_free_question_keeps_free_status(
        self,
        store: FakeQuestionStore,
        provider: FakePaymentProvider,
        claims: ClaimLifecycleManager,
        expert: ExpertProfile,
    ):
        question = store.seed_question(
            claimed_question(
                expert,
                status=QuestionStatus.ANSWERED,
                answered_at=NOW - timedelta(hours=30),
                price_cents=0,
                platform_fee_cents=0,
                expert_payout_cents=0,
                payout_status=PayoutStatus.FREE,
                payment_intent_id=None,
            )
        )

        await claims.auto_accept_answered()

        assert store.row(question.id)["payout_status"] == PayoutStatus.FREE
        assert provider.transfers == []

    async def test_check_auto_accept_on_read(
        self, store: FakeQuestionStore, claims: ClaimLifecycleManager, expert: ExpertProfile
    ):
        due = store.seed_question(
            claimed_question(
                expert, status=QuestionStatus.ANSWERED, answered_at=NOW - timedelta(hours=24)
            )
        )
        not_due = store.seed_question(
            claimed_question(
                expert, status=QuestionStatus.ANSWERED, answered_at=NOW - timedelta(hours=1)
            )
        )

        assert await claims.check_auto_accept(due.id) is True
        assert await claims.check_auto_accept(not_due.id) is False
        assert await claims.check_auto_accept(make_question().id) is False

    async def test_failing_row_rolled_back_and_sweep_continues(
        self,
        store: FakeQuestionStore,
        ledger: FakeCreditLedger,
        provider: FakePaymentProvider,
        expert: ExpertProfile,
        config,
        clock,
    ):
        store.expire_on_rollback = True
        bad = store.seed_question(
            claimed_question(
                expert, status=QuestionStatus.ANSWERED, answered_at=NOW - timedelta(hours=30)
            )
        )
        good = store.seed_question(
            claimed_question(
                expert, status=QuestionStatus.ANSWERED, answered_at=NOW - timedelta(hours=26)
            )
        )
        payouts = PayoutService(store, provider, ledger, clock)
        real_release = payouts.release_payout

        async def flaky_release(question):
            if question.id == bad.id:
                raise RuntimeError("connection reset")
            return await real_release(question)

        payouts.release_payout = flaky_release  # type: ignore[method-assign]
        manager = ClaimLifecycleManager(store, ledger, provider, payouts, config, clock)

        result = await manager.auto_accept_answered()

        assert result.failed == 1
        assert result.auto_accepted == 1
        assert store.row(good.id)["status"] == QuestionStatus.ACCEPTED
        assert len(provider.transfers) == 1

    async def test_row_already_accepted_is_skipped(
        self,
        store: FakeQuestionStore,
        provider: FakePaymentProvider,
        claims: ClaimLifecycleManager,
        expert: ExpertProfile,
    ):
        question = store.seed_question(
            claimed_question(
                expert, status=QuestionStatus.ANSWERED, answered_at=NOW - timedelta(hours=30)
            )
        )
        store.select_auto_accept_ids = AsyncMock(return_value=[question.id])
        store.row(question.id)["status"] = QuestionStatus.ACCEPTED

        result = await claims.auto_accept_answered()

        assert result.auto_accepted == 0
        assert result.failed == 0
        assert provider.transfers == []


class TestRunSweeps:
    async def test_merged_counts(
        self, store: FakeQuestionStore, claims: ClaimLifecycleManager, expert: ExpertProfile
    ):
        store.seed_question(claimed_question(expert, claim_expires_at=NOW - timedelta(minutes=5)))
        store.seed_question(
            claimed_question(
                expert, status=QuestionStatus.ANSWERED, answered_at=NOW - timedelta(days=2)
            )
        )

        result = await claims.run_sweeps()

        assert result.released == 1
        assert result.auto_accepted == 1
        assert result.failed == 0

    async def test_inactive_experts_not_reannounced(
        self, store: FakeQuestionStore, claims: ClaimLifecycleManager
    ):
        owner = store.seed_expert(make_expert("expert-3", is_active=False), ("electrical",))
        store.seed_question(claimed_question(owner, claim_expires_at=NOW - timedelta(minutes=5)))

        result = await claims.run_sweeps()

        assert result.released == 1
        assert result.effects == []
