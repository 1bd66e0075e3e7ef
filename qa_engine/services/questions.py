"""
Question Service - Submission, payment method attachment and second opinions.

NO DICTIONARIES - Inputs arrive as QuestionSubmission intents and results
leave as typed dataclasses.
"""

from collections.abc import Callable
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
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
    ANSWERED_STATUSES,
    SPECIALTIES,
    NotificationType,
    PayoutStatus,
    PricingMode,
    QuestionMode,
    QuestionStatus,
)
from qa_engine.models.domain import (
    AIContext,
    MarketplaceConfig,
    Notify,
    PricingResult,
    QuestionSubmission,
    SecondOpinionResult,
    SideEffect,
    SubmissionResult,
)
from qa_engine.observability.metrics import metrics
from qa_engine.services.credit_ledger import CreditLedger
from qa_engine.services.notifications import (
    matching_expert_notifications,
    preview,
    question_link,
)
from qa_engine.services.payment_provider import (
    ChargeRequest,
    PaymentProvider,
    second_opinion_idempotency_key,
)
from qa_engine.services.pricing import PricingEngine, listed_fee_rate, split_price

logger = get_logger(__name__)

MIN_QUESTION_CHARS = 10
MAX_QUESTION_CHARS = 5000
MAX_PHOTOS = 10


def validate_submission(submission: QuestionSubmission) -> str:
    """Trimmed question text, or ValidationError."""
    text = submission.question_text.strip()
    if len(text) < MIN_QUESTION_CHARS:
        raise ValidationError(f"question_text must be at least {MIN_QUESTION_CHARS} characters")
    if len(text) > MAX_QUESTION_CHARS:
        raise ValidationError(f"question_text exceeds {MAX_QUESTION_CHARS} characters")
    if submission.category not in SPECIALTIES:
        raise ValidationError(f"Unknown category: {submission.category}")
    if submission.photo_count > MAX_PHOTOS:
        raise ValidationError(f"photo_count exceeds {MAX_PHOTOS}")
    return text


def free_pricing(paid: PricingResult) -> PricingResult:
    """A zero-priced result that keeps the difficulty assessment."""
    return PricingResult(
        split=split_price(0, paid.split.fee_rate),
        mode=paid.mode,
        difficulty=paid.difficulty,
        tier_label=paid.tier_label,
    )


class QuestionService:
    """Creates questions and their paid follow-ons."""

    def __init__(
        self,
        store: QuestionStore,
        ledger: CreditLedger,
        provider: PaymentProvider,
        pricing: PricingEngine,
        config: MarketplaceConfig,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.provider = provider
        self.pricing = pricing
        self.config = config
        self.clock = clock

    def quote(
        self,
        user_id: str | None,
        category: str,
        question_text: str,
        ai_context: AIContext | None = None,
        photo_count: int = 0,
    ) -> PricingResult:
        """Price a question without storing anything."""
        if category not in SPECIALTIES:
            raise ValidationError(f"Unknown category: {category}")
        return self.pricing.quote(user_id, category, question_text, ai_context, photo_count)

    async def submit_question(self, submission: QuestionSubmission) -> SubmissionResult:
        """
        Store a new question.

        The asker's first question is free. A paid question without a saved
        payment method waits in pending_payment until one is attached.
        """
        text = validate_submission(submission)

        mode = QuestionMode.POOL
        target_user_id: str | None = None
        if submission.target_expert_id is not None:
            target = await self.store.get_expert_profile(submission.target_expert_id)
            if target is None or not target.is_active:
                raise ValidationError("Target expert not found or inactive")
            if target.user_id == submission.user_id:
                raise ValidationError("Cannot direct a question to yourself")
            mode = QuestionMode.DIRECT
            target_user_id = target.user_id

        pricing = self.pricing.quote(
            submission.user_id,
            submission.category,
            text,
            submission.ai_context,
            submission.photo_count,
        )
        is_free = await self.store.count_questions_by_asker(submission.user_id) == 0
        if is_free:
            pricing = free_pricing(pricing)

        has_payment_method = bool(submission.payment_method_id and submission.stripe_customer_id)
        status = (
            QuestionStatus.OPEN
            if is_free or has_payment_method
            else QuestionStatus.PENDING_PAYMENT
        )

        ai = submission.ai_context
        now = self.clock()
        question = QAQuestion(
            id=uuid4(),
            diyer_user_id=submission.user_id,
            target_expert_id=submission.target_expert_id,
            question_text=text,
            category=submission.category,
            photo_count=submission.photo_count,
            ai_project_summary=ai.project_summary if ai else None,
            ai_safety_warnings=list(ai.safety_warnings) if ai else [],
            ai_pro_required=ai.pro_required if ai else False,
            ai_skill_level=ai.skill_level if ai else None,
            ai_estimated_cost_cents=ai.estimated_cost_cents if ai else None,
            price_cents=pricing.price_cents,
            platform_fee_cents=pricing.platform_fee_cents,
            expert_payout_cents=pricing.expert_payout_cents,
            difficulty_score=pricing.difficulty.score,
            price_tier=pricing.difficulty.tier,
            current_tier=1,
            pricing_mode=pricing.mode,
            status=status,
            question_mode=mode,
            payout_status=PayoutStatus.FREE if is_free else PayoutStatus.PENDING,
            payment_method_id=submission.payment_method_id,
            stripe_customer_id=submission.stripe_customer_id,
            credit_applied_cents=0,
            is_threaded=False,
            marked_not_helpful=False,
            is_second_opinion=False,
            created_at=now,
            updated_at=now,
        )
        await self.store.add_question(question)
        await self.store.commit()

        metrics.questions_submitted_total.labels(
            pricing_mode=pricing.mode.value, is_free=str(is_free)
        ).inc()
        logger.info(
            "question_submitted",
            question_id=str(question.id),
            user_id=submission.user_id,
            category=submission.category,
            status=status.value,
            mode=mode.value,
            is_free=is_free,
            price_cents=pricing.price_cents,
            difficulty_score=pricing.difficulty.score,
        )

        effects: list[SideEffect] = []
        if status == QuestionStatus.OPEN:
            effects = await self._announce(question, target_user_id)

        return SubmissionResult(
            question_id=question.id,
            status=status,
            question_mode=mode,
            is_free=is_free,
            pricing=pricing,
            effects=tuple(effects),
        )

    async def _announce(self, question: QAQuestion, target_user_id: str | None) -> list[SideEffect]:
        link = question_link(question.id)
        body = preview(question.question_text)
        if target_user_id is not None:
            return [
                Notify(
                    user_id=target_user_id,
                    notification_type=NotificationType.QUESTION_POSTED,
                    title="A question was sent to you",
                    body=body,
                    link=link,
                )
            ]
        return list(
            await matching_expert_notifications(
                self.store,
                question.category,
                {question.diyer_user_id},
                NotificationType.QUESTION_POSTED,
                "New question in your specialty",
                body,
                link,
            )
        )

    async def get_for_participant(self, question_id: UUID, caller_user_id: str) -> QAQuestion:
        """
        Read a question as the asker, its expert, or any expert while open.
        """
        question = await self.store.get_question(question_id)
        if question is None:
            raise QuestionNotFoundError(question_id)
        if question.diyer_user_id == caller_user_id:
            return question
        expert = await self.store.get_expert_by_user(caller_user_id)
        if expert is not None and (
            question.expert_id == expert.id or question.status == QuestionStatus.OPEN
        ):
            return question
        raise AuthorizationError("Caller is not a participant in this question")

    async def attach_payment_method(
        self,
        question_id: UUID,
        caller_user_id: str,
        payment_method_id: str,
        stripe_customer_id: str,
    ) -> tuple[QuestionStatus, tuple[SideEffect, ...]]:
        """
        Save the asker's payment method on a question.

        A pending_payment question becomes open and is announced.
        """
        if not payment_method_id or not stripe_customer_id:
            raise ValidationError("payment_method_id and stripe_customer_id are required")

        question = await self.store.get_question(question_id)
        if question is None:
            raise QuestionNotFoundError(question_id)
        if question.diyer_user_id != caller_user_id:
            raise AuthorizationError("Only the asker can attach a payment method")
        if question.status not in (QuestionStatus.PENDING_PAYMENT, QuestionStatus.OPEN):
            raise PreconditionViolationError(
                question_id, "attach_payment_method", question.status
            )

        was_pending = question.status == QuestionStatus.PENDING_PAYMENT
        values: dict[str, object] = {
            "payment_method_id": payment_method_id,
            "stripe_customer_id": stripe_customer_id,
        }
        if was_pending:
            values["status"] = QuestionStatus.OPEN

        updated = await self.store.update_question_if(question_id, {question.status}, **values)
        if not updated:
            await self.store.rollback()
            current = await self.store.get_question(question_id)
            raise PreconditionViolationError(
                question_id, "attach_payment_method", current.status if current else None
            )
        await self.store.commit()
        logger.info(
            "payment_method_attached",
            question_id=str(question_id),
            opened=was_pending,
        )

        effects: list[SideEffect] = []
        if was_pending:
            target_user_id = None
            if question.target_expert_id is not None:
                target = await self.store.get_expert_profile(question.target_expert_id)
                target_user_id = target.user_id if target else None
            effects = await self._announce(question, target_user_id)
        return QuestionStatus.OPEN, tuple(effects)

    async def request_second_opinion(
        self, parent_question_id: UUID, caller_user_id: str
    ) -> SecondOpinionResult:
        """
        Create a paid child question answered by a different expert.

        Credits are applied and committed first; a failed charge re-credits
        the asker, cancels the child and raises PaymentProviderError.
        """
        parent = await self.store.get_question(parent_question_id)
        if parent is None:
            raise QuestionNotFoundError(parent_question_id)
        if parent.diyer_user_id != caller_user_id:
            raise AuthorizationError("Only the asker can request a second opinion")
        if parent.status not in ANSWERED_STATUSES:
            raise PreconditionViolationError(
                parent_question_id, "request_second_opinion", parent.status
            )
        if await self.store.find_second_opinion(parent_question_id) is not None:
            raise PreconditionViolationError(
                parent_question_id, "request_second_opinion", parent.status
            )

        price_cents = self.config.second_opinion_price_cents
        if price_cents > 0 and not (parent.payment_method_id and parent.stripe_customer_id):
            raise PaymentMethodMissingError(parent_question_id)

        split = split_price(price_cents, listed_fee_rate(self.config, PricingMode.DYNAMIC))
        now = self.clock()
        child = QAQuestion(
            id=uuid4(),
            diyer_user_id=parent.diyer_user_id,
            target_expert_id=None,
            question_text=parent.question_text,
            category=parent.category,
            photo_count=parent.photo_count,
            ai_project_summary=parent.ai_project_summary,
            ai_safety_warnings=list(parent.ai_safety_warnings or []),
            ai_pro_required=parent.ai_pro_required,
            ai_skill_level=parent.ai_skill_level,
            ai_estimated_cost_cents=parent.ai_estimated_cost_cents,
            price_cents=split.price_cents,
            platform_fee_cents=split.platform_fee_cents,
            expert_payout_cents=split.expert_payout_cents,
            difficulty_score=parent.difficulty_score,
            price_tier=parent.price_tier,
            current_tier=1,
            pricing_mode=PricingMode.DYNAMIC,
            status=QuestionStatus.PENDING_PAYMENT,
            question_mode=QuestionMode.POOL,
            payout_status=PayoutStatus.PENDING,
            payment_method_id=parent.payment_method_id,
            stripe_customer_id=parent.stripe_customer_id,
            credit_applied_cents=0,
            is_threaded=False,
            marked_not_helpful=False,
            parent_question_id=parent_question_id,
            is_second_opinion=True,
            created_at=now,
            updated_at=now,
        )
        parent_status = parent.status
        try:
            await self.store.add_question(child)
        except IntegrityError:
            # A concurrent request inserted the live child first
            await self.store.rollback()
            raise PreconditionViolationError(
                parent_question_id, "request_second_opinion", parent_status
            ) from None
        await self.store.commit()

        credit = await self.ledger.apply_credits(caller_user_id, child.id, price_cents)
        payment_intent_id: str | None = None
        if credit.effective_charge_cents > 0:
            try:
                payment_intent_id = await self.provider.charge(
                    ChargeRequest(
                        amount_cents=credit.effective_charge_cents,
                        customer_id=parent.stripe_customer_id,  # type: ignore[arg-type]
                        payment_method_id=parent.payment_method_id,  # type: ignore[arg-type]
                        question_id=child.id,
                        purpose="qa_second_opinion",
                        idempotency_key=second_opinion_idempotency_key(child.id),
                    )
                )
            except PaymentProviderError:
                await self._abandon_child(child, caller_user_id, credit.credit_applied_cents)
                metrics.record_transition("second_opinion", "payment_failed")
                raise

        # Only a paid child becomes claimable
        await self.store.update_question_if(
            child.id,
            {QuestionStatus.PENDING_PAYMENT},
            status=QuestionStatus.OPEN,
            payment_intent_id=payment_intent_id,
            credit_applied_cents=credit.credit_applied_cents,
        )
        await self.store.commit()
        metrics.record_transition("second_opinion", "success")
        logger.info(
            "second_opinion_requested",
            question_id=str(child.id),
            parent_question_id=str(parent_question_id),
            charged_cents=credit.effective_charge_cents,
            credit_applied_cents=credit.credit_applied_cents,
        )

        exclude = {caller_user_id}
        if parent.expert_id is not None:
            parent_expert = await self.store.get_expert_profile(parent.expert_id)
            if parent_expert is not None:
                exclude.add(parent_expert.user_id)
        effects = await matching_expert_notifications(
            self.store,
            child.category,
            exclude,
            NotificationType.QUESTION_POSTED,
            "Second opinion requested",
            preview(child.question_text),
            question_link(child.id),
        )

        return SecondOpinionResult(
            question_id=child.id,
            parent_question_id=parent_question_id,
            price_cents=price_cents,
            charged_cents=credit.effective_charge_cents,
            credit_applied_cents=credit.credit_applied_cents,
            payment_intent_id=payment_intent_id,
            effects=tuple(effects),
        )

    async def _abandon_child(self, child: QAQuestion, user_id: str, credit_applied: int) -> None:
        if credit_applied > 0:
            try:
                await self.ledger.restore_credits(user_id, child.id, credit_applied)
            except Exception as e:
                logger.error(
                    "credit_restore_failed",
                    question_id=str(child.id),
                    user_id=user_id,
                    amount_cents=credit_applied,
                    error=str(e),
                )
        await self.store.update_question_if(
            child.id,
            {QuestionStatus.PENDING_PAYMENT},
            status=QuestionStatus.CANCELLED,
            resolved_at=self.clock(),
        )
        await self.store.commit()
        logger.warning("second_opinion_abandoned", question_id=str(child.id))
