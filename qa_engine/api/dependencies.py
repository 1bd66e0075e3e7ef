"""
FastAPI Dependencies - Caller identity, cron auth and service wiring.

NO DICTIONARIES - All dependencies return typed objects.

Authentication happens upstream: the gateway forwards the verified user id
in the X-User-ID header. Roles are never taken from the request; services
derive them per question.
"""

import secrets
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from qa_engine.config import settings
from qa_engine.db.session import get_db
from qa_engine.db.store import QuestionStore
from qa_engine.services.claims import ClaimLifecycleManager
from qa_engine.services.credit_ledger import CreditLedger
from qa_engine.services.effects import EffectRunner
from qa_engine.services.fraud import FraudSignalDetector
from qa_engine.services.messaging import ConversationService
from qa_engine.services.notifications import DatabaseNotifier
from qa_engine.services.payment_provider import PaymentProvider
from qa_engine.services.payouts import PayoutService
from qa_engine.services.pricing import PricingEngine
from qa_engine.services.questions import QuestionService
from qa_engine.services.reputation import ReputationEngine
from qa_engine.services.resolution import ResolutionService
from qa_engine.services.stripe_provider import StripeProvider
from qa_engine.services.tier_gate import TierGate

logger = get_logger(__name__)

# Bearer scheme for the scheduler calling the sweep endpoint
bearer_scheme = HTTPBearer(auto_error=False)

_payment_provider: PaymentProvider | None = None


async def get_caller_user_id(
    x_user_id: str | None = Header(None, alias="X-User-ID"),
) -> str:
    """
    Caller identity forwarded by the upstream auth layer.

    Raises:
        HTTPException 401 if the header is missing or blank
    """
    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-ID header required",
        )
    return x_user_id.strip()


async def require_cron_secret(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> None:
    """
    Authorize the scheduler.

    Raises:
        HTTPException 503 if no cron secret is configured, 401 on mismatch
    """
    if not settings.cron_secret:
        logger.error("cron_secret_not_configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cron endpoint not configured",
        )
    if credentials is None or not secrets.compare_digest(
        credentials.credentials, settings.cron_secret
    ):
        logger.warning("cron_auth_failed")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid cron secret",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_payment_provider() -> PaymentProvider:
    """Process-wide Stripe provider built from settings."""
    global _payment_provider
    if _payment_provider is None:
        _payment_provider = StripeProvider(
            api_key=settings.stripe_api_key,
            currency=settings.currency,
            test_mode=settings.payments_test_mode,
        )
    return _payment_provider


@dataclass
class MarketplaceServices:
    """Every service for one request, sharing one session."""

    store: QuestionStore
    questions: QuestionService
    claims: ClaimLifecycleManager
    resolution: ResolutionService
    conversations: ConversationService
    effects: EffectRunner


def build_services(
    session: AsyncSession, provider: PaymentProvider
) -> MarketplaceServices:
    """Wire services together with config and flags injected from settings."""
    config = settings.marketplace_config()
    flags = settings.feature_flags()

    store = QuestionStore(session)
    ledger = CreditLedger(session)
    payouts = PayoutService(store, provider, ledger)
    fraud = FraudSignalDetector(store)

    return MarketplaceServices(
        store=store,
        questions=QuestionService(store, ledger, provider, PricingEngine(config, flags), config),
        claims=ClaimLifecycleManager(store, ledger, provider, payouts, config),
        resolution=ResolutionService(store, payouts, fraud),
        conversations=ConversationService(
            store, TierGate(config, flags), fraud, provider, config
        ),
        effects=EffectRunner(DatabaseNotifier(store), ReputationEngine(store)),
    )


async def get_services(
    db: AsyncSession = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> MarketplaceServices:
    """FastAPI dependency for the request's service bundle."""
    return build_services(db, provider)
