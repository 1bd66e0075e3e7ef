"""
API Routes - FastAPI endpoints for the Q&A marketplace.

NO DICTIONARIES - All requests/responses use Pydantic models.

Thin layer: identity comes from the X-User-ID header, the services do the
work, and scheduled side effects run after the response body is built.
"""

from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from qa_engine.api.dependencies import (
    MarketplaceServices,
    get_caller_user_id,
    get_services,
    require_cron_secret,
)
from qa_engine.db.session import get_db
from qa_engine.exceptions import (
    AuthorizationError,
    DataIntegrityError,
    MarketplaceError,
    PaymentMethodMissingError,
    PaymentProviderError,
    PreconditionViolationError,
    QuestionNotFoundError,
    ValidationError,
)
from qa_engine.models.api import (
    AnswerRequest,
    AttachPaymentMethodRequest,
    ClaimResponse,
    HealthResponse,
    MessageResponse,
    PriceQuoteResponse,
    QuestionSummaryResponse,
    ResolveRequest,
    SecondOpinionResponse,
    SendMessageRequest,
    SubmitQuestionRequest,
    SubmitQuestionResponse,
    SweepResponse,
    TierGatePayload,
    TierUpgradeRequest,
    TierUpgradeRequiredResponse,
    TierUpgradeResponse,
    TransitionResponse,
)
from qa_engine.models.domain import (
    AIContext,
    MessageData,
    QuestionSubmission,
    SendMessageResult,
    TierGateResult,
)
from qa_engine.observability.logging import log_context
from qa_engine.observability.metrics import metrics
from qa_engine.services.pricing import effective_hourly_rate_cents

logger = get_logger(__name__)

router = APIRouter()


def to_http_error(exc: MarketplaceError) -> HTTPException:
    """Translate a marketplace error into its HTTP response."""
    if isinstance(exc, QuestionNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Question not found")
    if isinstance(exc, PreconditionViolationError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Cannot perform this action in the current state",
            headers={
                "X-Current-Status": exc.current_status.value if exc.current_status else "unknown"
            },
        )
    if isinstance(exc, AuthorizationError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.reason)
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    if isinstance(exc, PaymentMethodMissingError):
        return HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail="A saved payment method is required",
        )
    if isinstance(exc, PaymentProviderError):
        return HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail="Payment could not be processed",
        )
    if isinstance(exc, DataIntegrityError):
        logger.error("data_integrity_error", error=exc.message)
    metrics.record_error(type(exc).__name__, "api")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal error",
    )


def _message_response(message: MessageData) -> MessageResponse:
    return MessageResponse(
        id=message.message_id,
        question_id=message.question_id,
        sender_role=message.sender_role,
        content=message.content,
        was_flagged=message.was_flagged,
        created_at=message.created_at,
    )


def _gate_payload(gate: TierGateResult) -> TierGatePayload:
    return TierGatePayload(
        current_tier=gate.current_tier,
        next_tier=gate.next_tier,  # type: ignore[arg-type]
        upgrade_cost_cents=gate.upgrade_cost_cents,  # type: ignore[arg-type]
        upgrade_description=gate.upgrade_description,  # type: ignore[arg-type]
        diyer_message_count=gate.diyer_message_count,
    )


def _upgrade_required(gate: TierGateResult) -> JSONResponse:
    body = TierUpgradeRequiredResponse(tier_gate=_gate_payload(gate))
    return JSONResponse(
        status_code=status.HTTP_402_PAYMENT_REQUIRED,
        content=body.model_dump(mode="json"),
    )


# =============================================================================
# Pricing and Submission
# =============================================================================


@router.get("/v1/qa/price", response_model=PriceQuoteResponse)
async def quote_price(
    category: str = Query(..., min_length=1, max_length=50),
    question_text: str = Query("", max_length=5000),
    photo_count: int = Query(0, ge=0, le=10),
    caller: str = Depends(get_caller_user_id),
    services: MarketplaceServices = Depends(get_services),
) -> PriceQuoteResponse:
    """
    Price quote for a prospective question.

    The strategy depends on the caller's feature rollout bucket.
    """
    try:
        result = services.questions.quote(caller, category, question_text, None, photo_count)
    except MarketplaceError as exc:
        raise to_http_error(exc) from exc

    return PriceQuoteResponse(
        price_cents=result.price_cents,
        platform_fee_cents=result.platform_fee_cents,
        expert_payout_cents=result.expert_payout_cents,
        pricing_mode=result.mode,
        tier=result.difficulty.tier,
        tier_label=result.tier_label,
        difficulty_score=result.difficulty.score,
        factors=list(result.difficulty.factors),
        effective_hourly_rate_cents=effective_hourly_rate_cents(result),
    )


@router.post(
    "/v1/qa/questions",
    response_model=SubmitQuestionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_question(
    request: SubmitQuestionRequest,
    caller: str = Depends(get_caller_user_id),
    services: MarketplaceServices = Depends(get_services),
) -> SubmitQuestionResponse:
    """Submit a question to the pool or directly to one expert."""
    ai = request.ai_context
    submission = QuestionSubmission(
        user_id=caller,
        question_text=request.question_text,
        category=request.category,
        ai_context=(
            AIContext(
                project_summary=ai.project_summary,
                safety_warnings=tuple(ai.safety_warnings),
                pro_required=ai.pro_required,
                skill_level=ai.skill_level,
                estimated_cost_cents=ai.estimated_cost_cents,
            )
            if ai is not None
            else None
        ),
        photo_count=request.photo_count,
        target_expert_id=request.target_expert_id,
        payment_method_id=request.payment_method_id,
        stripe_customer_id=request.stripe_customer_id,
    )

    try:
        result = await services.questions.submit_question(submission)
    except MarketplaceError as exc:
        raise to_http_error(exc) from exc

    await services.effects.run(result.effects)
    return SubmitQuestionResponse(
        id=result.question_id,
        status=result.status,
        is_free=result.is_free,
        price_cents=result.pricing.price_cents,
        question_mode=result.question_mode,
        difficulty_score=result.pricing.difficulty.score,
        price_tier=result.pricing.difficulty.tier,
    )


@router.get("/v1/qa/questions/{question_id}", response_model=QuestionSummaryResponse)
async def get_question(
    question_id: UUID,
    caller: str = Depends(get_caller_user_id),
    services: MarketplaceServices = Depends(get_services),
) -> QuestionSummaryResponse:
    """Read a question, applying a due auto-accept first."""
    try:
        await services.claims.check_auto_accept(question_id)
        question = await services.questions.get_for_participant(question_id, caller)
    except MarketplaceError as exc:
        raise to_http_error(exc) from exc

    return QuestionSummaryResponse(
        id=question.id,
        status=question.status,
        question_mode=question.question_mode,
        category=question.category,
        price_cents=question.price_cents,
        expert_payout_cents=question.expert_payout_cents,
        current_tier=question.current_tier,
        payout_status=question.payout_status,
        difficulty_score=question.difficulty_score,
        price_tier=question.price_tier,
        claim_expires_at=question.claim_expires_at,
        answered_at=question.answered_at,
        resolved_at=question.resolved_at,
    )


@router.post("/v1/qa/questions/{question_id}/payment-method", response_model=TransitionResponse)
async def attach_payment_method(
    question_id: UUID,
    request: AttachPaymentMethodRequest,
    caller: str = Depends(get_caller_user_id),
    services: MarketplaceServices = Depends(get_services),
) -> TransitionResponse:
    """Attach a saved payment method; opens a pending_payment question."""
    try:
        new_status, effects = await services.questions.attach_payment_method(
            question_id, caller, request.payment_method_id, request.stripe_customer_id
        )
    except MarketplaceError as exc:
        raise to_http_error(exc) from exc

    await services.effects.run(effects)
    return TransitionResponse(question_id=question_id, status=new_status)


# =============================================================================
# Claim Lifecycle
# =============================================================================


@router.post("/v1/qa/questions/{question_id}/claim", response_model=ClaimResponse)
async def claim_question(
    question_id: UUID,
    caller: str = Depends(get_caller_user_id),
    services: MarketplaceServices = Depends(get_services),
) -> ClaimResponse:
    """Claim an open question and charge the asker."""
    try:
        result = await services.claims.claim(question_id, caller)
    except MarketplaceError as exc:
        raise to_http_error(exc) from exc

    await services.effects.run(result.effects)
    return ClaimResponse(
        question_id=result.question_id,
        status=result.status,
        claim_expires_at=result.claim_expires_at,
        charged_cents=result.charged_cents,
        credit_applied_cents=result.credit_applied_cents,
        payment_intent_id=result.payment_intent_id,
    )


@router.post("/v1/qa/questions/{question_id}/answer", response_model=TransitionResponse)
async def answer_question(
    question_id: UUID,
    request: AnswerRequest,
    caller: str = Depends(get_caller_user_id),
    services: MarketplaceServices = Depends(get_services),
) -> TransitionResponse:
    """Submit the claiming expert's answer."""
    try:
        result = await services.claims.answer(question_id, caller, request.answer_text)
    except MarketplaceError as exc:
        raise to_http_error(exc) from exc

    await services.effects.run(result.effects)
    return TransitionResponse(question_id=result.question_id, status=result.new_status)


@router.post("/v1/qa/questions/{question_id}/cancel", response_model=TransitionResponse)
async def cancel_question(
    question_id: UUID,
    caller: str = Depends(get_caller_user_id),
    services: MarketplaceServices = Depends(get_services),
) -> TransitionResponse:
    """Withdraw an unanswered question."""
    try:
        result = await services.claims.cancel(question_id, caller)
    except MarketplaceError as exc:
        raise to_http_error(exc) from exc

    await services.effects.run(result.effects)
    return TransitionResponse(question_id=result.question_id, status=result.new_status)


@router.post("/v1/qa/questions/{question_id}/resolve", response_model=TransitionResponse)
async def resolve_question(
    question_id: UUID,
    request: ResolveRequest,
    caller: str = Depends(get_caller_user_id),
    services: MarketplaceServices = Depends(get_services),
) -> TransitionResponse:
    """
    Apply a resolution action.

    Payment failures during accept or not_helpful never fail the request;
    they are logged for reconciliation.
    """
    try:
        result = await services.resolution.apply(question_id, caller, request.action)
    except MarketplaceError as exc:
        raise to_http_error(exc) from exc

    await services.effects.run(result.effects)
    return TransitionResponse(question_id=result.question_id, status=result.new_status)


# =============================================================================
# Conversation
# =============================================================================


@router.post(
    "/v1/qa/questions/{question_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    responses={402: {"model": TierUpgradeRequiredResponse}},
)
async def send_message(
    question_id: UUID,
    request: SendMessageRequest,
    caller: str = Depends(get_caller_user_id),
    services: MarketplaceServices = Depends(get_services),
) -> MessageResponse | JSONResponse:
    """Send a threaded message; 402 with the tier gate payload when blocked."""
    try:
        result: SendMessageResult = await services.conversations.send_message(
            question_id, caller, request.content
        )
    except MarketplaceError as exc:
        raise to_http_error(exc) from exc

    if result.upgrade_required:
        return _upgrade_required(result.tier_gate)  # type: ignore[arg-type]

    await services.effects.run(result.effects)
    return _message_response(result.message)  # type: ignore[arg-type]


@router.post("/v1/qa/questions/{question_id}/tier-upgrade", response_model=TierUpgradeResponse)
async def upgrade_tier(
    question_id: UUID,
    request: TierUpgradeRequest,
    caller: str = Depends(get_caller_user_id),
    services: MarketplaceServices = Depends(get_services),
) -> TierUpgradeResponse:
    """Pay for a higher tier, optionally delivering the message that hit the gate."""
    try:
        result = await services.conversations.upgrade_tier(
            question_id, caller, request.target_tier, request.pending_content
        )
    except MarketplaceError as exc:
        raise to_http_error(exc) from exc

    effects = list(result.effects)
    message = None
    gate = None
    if result.message is not None:
        effects.extend(result.message.effects)
        if result.message.message is not None:
            message = _message_response(result.message.message)
        elif result.message.upgrade_required:
            gate = _gate_payload(result.message.tier_gate)  # type: ignore[arg-type]
    await services.effects.run(effects)

    return TierUpgradeResponse(
        question_id=result.question_id,
        current_tier=result.current_tier,
        charged_cents=result.charged_cents,
        payment_intent_id=result.payment_intent_id,
        message=message,
        tier_gate=gate,
    )


@router.post(
    "/v1/qa/questions/{question_id}/second-opinion",
    response_model=SecondOpinionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_second_opinion(
    question_id: UUID,
    caller: str = Depends(get_caller_user_id),
    services: MarketplaceServices = Depends(get_services),
) -> SecondOpinionResponse:
    """Open a paid second-opinion question for a different expert."""
    try:
        result = await services.questions.request_second_opinion(question_id, caller)
    except MarketplaceError as exc:
        raise to_http_error(exc) from exc

    await services.effects.run(result.effects)
    return SecondOpinionResponse(
        second_opinion_id=result.question_id,
        price_cents=result.price_cents,
        charged_cents=result.charged_cents,
        credit_applied_cents=result.credit_applied_cents,
        payment_intent_id=result.payment_intent_id,
    )


# =============================================================================
# Scheduler and Health
# =============================================================================


@router.post(
    "/v1/qa/cron/expire-claims",
    response_model=SweepResponse,
    dependencies=[Depends(require_cron_secret)],
)
async def expire_claims(
    services: MarketplaceServices = Depends(get_services),
) -> SweepResponse:
    """
    Run the claim-expiry and auto-accept sweeps.

    Safe to call from overlapping scheduler ticks.
    """
    with log_context(sweep="expire_claims"):
        result = await services.claims.run_sweeps()
        failed_effects = await services.effects.run(result.effects)
        logger.info(
            "sweeps_completed",
            released=result.released,
            refunded=result.refunded,
            expired=result.expired,
            auto_accepted=result.auto_accepted,
            failed=result.failed,
            failed_effects=failed_effects,
        )
    return SweepResponse(
        released=result.released,
        refunded=result.refunded,
        expired=result.expired,
        auto_accepted=result.auto_accepted,
        failed=result.failed,
    )


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
        return HealthResponse(
            status="healthy",
            database="connected",
            timestamp=datetime.now(UTC),
        )
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc
