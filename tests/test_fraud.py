"""
Tests for the fraud signal detector.
"""

from datetime import timedelta
from unittest.mock import AsyncMock

from qa_engine.db.models import QAActivityLog, QAMessage
from qa_engine.models.api import (
    ActivityEventType,
    ParticipantRole,
    QuestionStatus,
    SanitizationFlagType,
    Severity,
)
from qa_engine.models.domain import SanitizationFlag, SanitizationResult
from qa_engine.services.fraud import (
    FraudSignalDetector,
    evaluate_rapid_messages,
    evaluate_repeated_sanitization,
    evaluate_repeated_short_pairs,
    evaluate_short_conversation,
    is_quick_resolve,
    sanitization_severity,
)
from tests.fakes import NOW, FakeClock, FakeQuestionStore, make_question


def add_messages(store: FakeQuestionStore, question_id, count: int, at=NOW) -> None:
    for _ in range(count):
        store.messages.append(
            QAMessage(
                question_id=question_id,
                sender_user_id="diyer-1",
                sender_role=ParticipantRole.DIYER,
                content="hello",
                was_flagged=False,
                created_at=at,
            )
        )


class TestEvaluators:
    """Pure heuristic thresholds."""

    def test_rapid_messages_thresholds(self):
        question_id = make_question().id
        assert evaluate_rapid_messages(10, question_id) is None
        assert evaluate_rapid_messages(11, question_id).severity == Severity.MEDIUM
        assert evaluate_rapid_messages(20, question_id).severity == Severity.MEDIUM
        assert evaluate_rapid_messages(21, question_id).severity == Severity.HIGH

    def test_quick_resolve_window(self):
        assert is_quick_resolve(NOW, NOW + timedelta(minutes=5))
        assert not is_quick_resolve(NOW, NOW + timedelta(minutes=5, seconds=1))
        assert not is_quick_resolve(None, NOW)

    def test_short_conversation(self):
        question_id = make_question().id
        resolved = NOW + timedelta(minutes=2)
        signal = evaluate_short_conversation(QuestionStatus.ACCEPTED, NOW, resolved, 3, question_id)
        assert signal is not None
        assert signal.severity == Severity.MEDIUM
        assert signal.event_type == ActivityEventType.SHORT_CONVERSATION

    def test_short_conversation_needs_few_messages(self):
        question_id = make_question().id
        resolved = NOW + timedelta(minutes=2)
        assert evaluate_short_conversation(QuestionStatus.ACCEPTED, NOW, resolved, 4, question_id) is None

    def test_short_conversation_needs_settled_status(self):
        question_id = make_question().id
        resolved = NOW + timedelta(minutes=2)
        assert evaluate_short_conversation(QuestionStatus.DISPUTED, NOW, resolved, 1, question_id) is None

    def test_repeated_sanitization_thresholds(self):
        assert evaluate_repeated_sanitization(3, "u") is None
        assert evaluate_repeated_sanitization(4, "u").severity == Severity.MEDIUM
        assert evaluate_repeated_sanitization(7, "u").severity == Severity.HIGH

    def test_repeated_pairs_threshold(self):
        assert evaluate_repeated_short_pairs(2) is None
        assert evaluate_repeated_short_pairs(3).severity == Severity.HIGH

    def test_sanitization_severity(self):
        assert sanitization_severity(1) == Severity.LOW
        assert sanitization_severity(2) == Severity.MEDIUM
        assert sanitization_severity(5) == Severity.HIGH


class TestDetector:
    """Heuristics over the store."""

    async def test_rapid_messages_logged(self, store: FakeQuestionStore, fraud: FraudSignalDetector):
        """Eleven messages in the window produce one logged signal."""
        question = store.seed_question(make_question(status=QuestionStatus.IN_CONVERSATION))
        add_messages(store, question.id, 11)

        signals = await fraud.run_checks(question.id, "diyer-1")

        assert [s.event_type for s in signals] == [ActivityEventType.RAPID_MESSAGES]
        assert len(store.activity) == 1
        assert store.activity[0].severity == Severity.MEDIUM
        assert store.commits == 1

    async def test_old_messages_ignored(self, store: FakeQuestionStore, fraud: FraudSignalDetector):
        """Messages outside the five minute window are not counted."""
        question = store.seed_question(make_question(status=QuestionStatus.IN_CONVERSATION))
        add_messages(store, question.id, 15, at=NOW - timedelta(minutes=10))

        assert await fraud.run_checks(question.id, "diyer-1") == []
        assert store.commits == 0

    async def test_short_conversation_detected(
        self, store: FakeQuestionStore, fraud: FraudSignalDetector
    ):
        question = store.seed_question(
            make_question(
                status=QuestionStatus.ACCEPTED,
                claimed_at=NOW - timedelta(minutes=3),
                resolved_at=NOW,
            )
        )
        add_messages(store, question.id, 2)

        signal = await fraud.check_short_conversation(question.id)

        assert signal is not None
        assert signal.event_type == ActivityEventType.SHORT_CONVERSATION

    async def test_repeated_sanitization(self, store: FakeQuestionStore, fraud: FraudSignalDetector):
        for _ in range(4):
            store.activity.append(
                QAActivityLog(
                    user_id="diyer-1",
                    event_type=ActivityEventType.SANITIZATION_TRIGGER,
                    severity=Severity.LOW,
                    description="x",
                    created_at=NOW - timedelta(hours=1),
                )
            )

        signal = await fraud.check_repeated_sanitization("diyer-1")

        assert signal is not None
        assert signal.severity == Severity.MEDIUM

    async def test_repeated_short_pairs(
        self, store: FakeQuestionStore, fraud: FraudSignalDetector, expert
    ):
        for days in (1, 2, 3):
            store.seed_question(
                make_question(
                    status=QuestionStatus.ACCEPTED,
                    expert_id=expert.id,
                    claimed_at=NOW - timedelta(days=days, minutes=2),
                    resolved_at=NOW - timedelta(days=days),
                )
            )

        signal = await fraud.check_repeated_short_pairs("diyer-1", expert.id)

        assert signal is not None
        assert signal.severity == Severity.HIGH

    async def test_failing_check_does_not_stop_others(self, store: FakeQuestionStore):
        """One heuristic raising is logged and the rest still run."""
        question = store.seed_question(make_question(status=QuestionStatus.IN_CONVERSATION))
        add_messages(store, question.id, 25)
        detector = FraudSignalDetector(store, FakeClock())
        detector.check_short_conversation = AsyncMock(side_effect=RuntimeError("db down"))

        signals = await detector.run_checks(question.id, "diyer-1")

        assert [s.severity for s in signals] == [Severity.HIGH]
        # Three checks and one write, each in its own savepoint; only the failure rolled back
        assert store.savepoints == 4
        assert store.savepoint_rollbacks == 1
        assert len(store.activity) == 1
        assert store.commits == 1

    async def test_activity_write_failure_swallowed(self, store: FakeQuestionStore):
        """run_checks never raises even when the log write fails."""
        question = store.seed_question(make_question(status=QuestionStatus.IN_CONVERSATION))
        add_messages(store, question.id, 12)
        store.add_activity = AsyncMock(side_effect=RuntimeError("write failed"))

        signals = await FraudSignalDetector(store, FakeClock()).run_checks(question.id, "diyer-1")

        assert len(signals) == 1

    async def test_commit_failure_swallowed(self, store: FakeQuestionStore):
        """Signals are committed by run_checks itself; a failed commit is only logged."""
        question = store.seed_question(make_question(status=QuestionStatus.IN_CONVERSATION))
        add_messages(store, question.id, 12)
        store.commit = AsyncMock(side_effect=RuntimeError("connection reset"))

        signals = await FraudSignalDetector(store, FakeClock()).run_checks(question.id, "diyer-1")

        assert len(signals) == 1
        store.commit.assert_awaited_once()


class TestRecordSanitization:
    async def test_flagged_message_logged(self, store: FakeQuestionStore, fraud: FraudSignalDetector):
        question_id = make_question().id
        result = SanitizationResult(
            sanitized="[email removed]",
            flags=(SanitizationFlag(SanitizationFlagType.EMAIL, "a@b.co"),),
        )

        await fraud.record_sanitization("diyer-1", question_id, result, "a@b.co")

        entry = store.activity[0]
        assert entry.event_type == ActivityEventType.SANITIZATION_TRIGGER
        assert entry.severity == Severity.LOW
        assert entry.original_content == "a@b.co"
        assert "email" in entry.description

    async def test_clean_message_not_logged(
        self, store: FakeQuestionStore, fraud: FraudSignalDetector
    ):
        result = SanitizationResult(sanitized="fine", flags=())
        await fraud.record_sanitization("diyer-1", make_question().id, result, "fine")
        assert store.activity == []
