"""
Effect Runner - Executes best-effort side effects after a transition.

Each effect is attempted once. A failure is logged and counted, never
raised back into the transition that scheduled it.
"""

from collections.abc import Iterable

from structlog import get_logger

from qa_engine.models.domain import Notify, RecalculateReputation, SideEffect
from qa_engine.observability.metrics import metrics
from qa_engine.services.notifications import Notifier
from qa_engine.services.reputation import ReputationEngine

logger = get_logger(__name__)


class EffectRunner:
    """Runs Notify and RecalculateReputation jobs."""

    def __init__(self, notifier: Notifier, reputation: ReputationEngine | None = None) -> None:
        self.notifier = notifier
        self.reputation = reputation

    async def run(self, effects: Iterable[SideEffect]) -> int:
        """Run every effect; returns how many failed."""
        failed = 0
        for effect in effects:
            try:
                await self._run_one(effect)
            except Exception as e:
                failed += 1
                logger.warning(
                    "side_effect_failed",
                    effect=type(effect).__name__,
                    error=str(e),
                )
                metrics.record_error(type(e).__name__, f"effect_{type(effect).__name__}")
        return failed

    async def _run_one(self, effect: SideEffect) -> None:
        if isinstance(effect, Notify):
            await self.notifier.notify(
                effect.user_id,
                effect.notification_type,
                effect.title,
                effect.body,
                effect.link,
            )
        elif isinstance(effect, RecalculateReputation):
            if self.reputation is None:
                logger.debug("reputation_engine_not_configured", expert_id=str(effect.expert_id))
                return
            await self.reputation.recalculate(effect.expert_id)
        else:
            raise TypeError(f"Unknown side effect: {effect!r}")
