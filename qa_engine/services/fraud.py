"""
Fraud Signal Detector - Heuristics over message and question history.

Each heuristic is a pure evaluator plus a query. The detector runs them
independently: one failing heuristic is logged and skipped, never allowed
to stop the others or the activity log writes.
"""

from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from uuid import UUID

from structlog import get_logger

from qa_engine.db.models import QAActivityLog, utc_now
from qa_engine.db.store import QuestionStore
from qa_engine.models.api import ActivityEventType, QuestionStatus, Severity
from qa_engine.models.domain import FraudSignal, SanitizationResult
from qa_engine.observability.metrics import metrics

logger = get_logger(__name__)

RAPID_WINDOW = timedelta(minutes=5)
RAPID_MEDIUM_THRESHOLD = 10
RAPID_HIGH_THRESHOLD = 20

QUICK_RESOLVE_WINDOW = timedelta(minutes=5)
SHORT_CONVERSATION_MAX_MESSAGES = 3

SANITIZATION_WINDOW = timedelta(hours=24)
SANITIZATION_MEDIUM_THRESHOLD = 3
SANITIZATION_HIGH_THRESHOLD = 6

PAIR_WINDOW = timedelta(days=30)
PAIR_THRESHOLD = 2

SETTLED_STATUSES = frozenset({QuestionStatus.ACCEPTED})


# ============================================================================
# Pure evaluators
# ============================================================================


def evaluate_rapid_messages(message_count: int, question_id: UUID) -> FraudSignal | None:
    """>10 messages in the trailing window is medium, >20 is high."""
    if message_count <= RAPID_MEDIUM_THRESHOLD:
        return None
    return FraudSignal(
        event_type=ActivityEventType.RAPID_MESSAGES,
        severity=Severity.HIGH if message_count > RAPID_HIGH_THRESHOLD else Severity.MEDIUM,
        description=f"{message_count} messages in 5 minutes on question {question_id}",
        question_id=question_id,
    )


def is_quick_resolve(claimed_at: datetime | None, resolved_at: datetime | None) -> bool:
    """Settled within five minutes of the claim."""
    if claimed_at is None or resolved_at is None:
        return False
    return resolved_at - claimed_at <= QUICK_RESOLVE_WINDOW


def evaluate_short_conversation(
    status: QuestionStatus,
    claimed_at: datetime | None,
    resolved_at: datetime | None,
    message_count: int,
    question_id: UUID,
) -> FraudSignal | None:
    """A settled question resolved quickly with very few messages."""
    if status not in SETTLED_STATUSES or not is_quick_resolve(claimed_at, resolved_at):
        return None
    if message_count > SHORT_CONVERSATION_MAX_MESSAGES:
        return None
    minutes = (resolved_at - claimed_at).total_seconds() / 60  # type: ignore[operator]
    return FraudSignal(
        event_type=ActivityEventType.SHORT_CONVERSATION,
        severity=Severity.MEDIUM,
        description=f"Resolved in {minutes:.1f} min with {message_count} messages",
        question_id=question_id,
    )


def evaluate_repeated_sanitization(trigger_count: int, user_id: str) -> FraudSignal | None:
    """>3 sanitizer triggers in 24h is medium, >6 is high."""
    if trigger_count <= SANITIZATION_MEDIUM_THRESHOLD:
        return None
    return FraudSignal(
        event_type=ActivityEventType.SUSPICIOUS_PATTERN,
        severity=(
            Severity.HIGH if trigger_count > SANITIZATION_HIGH_THRESHOLD else Severity.MEDIUM
        ),
        description=f"{trigger_count} sanitization triggers in 24h from user {user_id}",
        user_id=user_id,
    )


def evaluate_repeated_short_pairs(quick_resolve_count: int) -> FraudSignal | None:
    """More than two quick resolves between one pair in 30 days is high."""
    if quick_resolve_count <= PAIR_THRESHOLD:
        return None
    return FraudSignal(
        event_type=ActivityEventType.SUSPICIOUS_PATTERN,
        severity=Severity.HIGH,
        description=(
            f"{quick_resolve_count} quick-resolved conversations between "
            "same asker-expert pair in 30 days"
        ),
    )


def sanitization_severity(flag_count: int) -> Severity:
    if flag_count >= 3:
        return Severity.HIGH
    if flag_count == 2:
        return Severity.MEDIUM
    return Severity.LOW


# ============================================================================
# Detector
# ============================================================================


class FraudSignalDetector:
    """Runs every heuristic for a triggering event and logs the signals."""

    def __init__(
        self,
        store: QuestionStore,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.clock = clock

    async def check_rapid_messages(self, question_id: UUID) -> FraudSignal | None:
        since = self.clock() - RAPID_WINDOW
        count = await self.store.count_messages(question_id, since=since)
        return evaluate_rapid_messages(count, question_id)

    async def check_short_conversation(self, question_id: UUID) -> FraudSignal | None:
        question = await self.store.get_question(question_id)
        if question is None:
            return None
        if question.status not in SETTLED_STATUSES or not is_quick_resolve(
            question.claimed_at, question.resolved_at
        ):
            return None
        count = await self.store.count_messages(question_id)
        return evaluate_short_conversation(
            question.status, question.claimed_at, question.resolved_at, count, question_id
        )

    async def check_repeated_sanitization(self, user_id: str) -> FraudSignal | None:
        since = self.clock() - SANITIZATION_WINDOW
        count = await self.store.count_activity(
            user_id, ActivityEventType.SANITIZATION_TRIGGER, since
        )
        return evaluate_repeated_sanitization(count, user_id)

    async def check_repeated_short_pairs(
        self, diyer_user_id: str, expert_id: UUID
    ) -> FraudSignal | None:
        since = self.clock() - PAIR_WINDOW
        settled = await self.store.list_settled_for_pair(diyer_user_id, expert_id, since)
        quick = sum(1 for q in settled if is_quick_resolve(q.claimed_at, q.resolved_at))
        return evaluate_repeated_short_pairs(quick)

    async def run_checks(
        self,
        question_id: UUID,
        user_id: str,
        diyer_user_id: str | None = None,
        expert_id: UUID | None = None,
    ) -> list[FraudSignal]:
        """
        Run all heuristics for one event and append each signal to the log.

        Each check and each write runs in its own savepoint, so one failure
        leaves the session usable for the rest; the signals are committed at
        the end. Never raises: failures are logged.
        """
        checks: list[tuple[str, Callable[[], Awaitable[FraudSignal | None]]]] = [
            ("rapid_messages", lambda: self.check_rapid_messages(question_id)),
            ("short_conversation", lambda: self.check_short_conversation(question_id)),
            ("repeated_sanitization", lambda: self.check_repeated_sanitization(user_id)),
        ]
        if diyer_user_id is not None and expert_id is not None:
            checks.append(
                (
                    "repeated_short_pairs",
                    lambda: self.check_repeated_short_pairs(diyer_user_id, expert_id),
                )
            )

        signals: list[FraudSignal] = []
        for name, check in checks:
            try:
                async with self.store.savepoint():
                    signal = await check()
            except Exception as e:
                logger.error(
                    "fraud_check_failed",
                    check=name,
                    question_id=str(question_id),
                    error=str(e),
                )
                metrics.record_error(type(e).__name__, f"fraud_{name}")
                continue
            if signal is not None:
                signals.append(signal)

        for signal in signals:
            try:
                async with self.store.savepoint():
                    await self.store.add_activity(
                        QAActivityLog(
                            user_id=user_id,
                            question_id=question_id,
                            event_type=signal.event_type,
                            severity=signal.severity,
                            description=signal.description,
                        )
                    )
            except Exception as e:
                logger.error(
                    "fraud_signal_log_failed",
                    question_id=str(question_id),
                    signal=signal.event_type.value,
                    error=str(e),
                )
                continue
            metrics.fraud_signals_total.labels(
                signal=signal.event_type.value, severity=signal.severity.value
            ).inc()
            logger.warning(
                "fraud_signal_detected",
                question_id=str(question_id),
                user_id=user_id,
                signal=signal.event_type.value,
                severity=signal.severity.value,
                description=signal.description,
            )

        if signals:
            try:
                await self.store.commit()
            except Exception as e:
                logger.error(
                    "fraud_signal_commit_failed",
                    question_id=str(question_id),
                    signals=len(signals),
                    error=str(e),
                )

        return signals

    async def record_sanitization(
        self,
        user_id: str,
        question_id: UUID,
        result: SanitizationResult,
        original_content: str,
    ) -> None:
        """Append a sanitization_trigger entry for a flagged message."""
        if not result.was_flagged:
            return
        flag_types = sorted({flag.flag_type.value for flag in result.flags})
        await self.store.add_activity(
            QAActivityLog(
                user_id=user_id,
                question_id=question_id,
                event_type=ActivityEventType.SANITIZATION_TRIGGER,
                severity=sanitization_severity(len(result.flags)),
                description=f"Contact info removed from message: {', '.join(flag_types)}",
                original_content=original_content,
            )
        )
        for flag in result.flags:
            metrics.sanitizer_flags_total.labels(flag_type=flag.flag_type.value).inc()
