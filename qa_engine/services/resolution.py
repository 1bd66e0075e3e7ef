"""
Resolution State Machine - propose_resolve, accept, continue, not_helpful.

The transition table is pure (plan_transition). ResolutionService writes the
planned status with a compare-and-swap, then moves money. Money failures are
logged for reconciliation and never undo the status change.
"""

from collections.abc import Callable
from datetime import datetime
from uuid import UUID

from structlog import get_logger

from qa_engine.db.models import QAQuestion, utc_now
from qa_engine.db.store import QuestionStore
from qa_engine.exceptions import (
    AuthorizationError,
    PreconditionViolationError,
    QuestionNotFoundError,
)
from qa_engine.models.api import (
    NotificationType,
    ParticipantRole,
    PayoutStatus,
    QuestionStatus,
    ResolveAction,
)
from qa_engine.models.domain import (
    Notify,
    RecalculateReputation,
    SideEffect,
    TransitionPlan,
    TransitionResult,
)
from qa_engine.observability.metrics import metrics
from qa_engine.observability.tracing import trace_operation
from qa_engine.services.fraud import FraudSignalDetector
from qa_engine.services.notifications import question_link
from qa_engine.services.payouts import REFUND_REASON_NOT_HELPFUL, PayoutService

logger = get_logger(__name__)


_ACTION_RULES: dict[ResolveAction, tuple[ParticipantRole, frozenset[QuestionStatus], QuestionStatus]] = {
    ResolveAction.PROPOSE_RESOLVE: (
        ParticipantRole.EXPERT,
        frozenset(
            {QuestionStatus.CLAIMED, QuestionStatus.ANSWERED, QuestionStatus.IN_CONVERSATION}
        ),
        QuestionStatus.RESOLVE_PROPOSED,
    ),
    ResolveAction.ACCEPT: (
        ParticipantRole.DIYER,
        frozenset(
            {
                QuestionStatus.ANSWERED,
                QuestionStatus.IN_CONVERSATION,
                QuestionStatus.RESOLVE_PROPOSED,
            }
        ),
        QuestionStatus.ACCEPTED,
    ),
    ResolveAction.CONTINUE: (
        ParticipantRole.DIYER,
        frozenset({QuestionStatus.RESOLVE_PROPOSED}),
        QuestionStatus.IN_CONVERSATION,
    ),
    # Any post-claim, non-terminal status
    ResolveAction.NOT_HELPFUL: (
        ParticipantRole.DIYER,
        frozenset(
            {
                QuestionStatus.CLAIMED,
                QuestionStatus.ANSWERED,
                QuestionStatus.IN_CONVERSATION,
                QuestionStatus.RESOLVE_PROPOSED,
            }
        ),
        QuestionStatus.DISPUTED,
    ),
}


def derive_role(
    question: QAQuestion, caller_user_id: str, caller_expert_id: UUID | None
) -> ParticipantRole | None:
    """
    Compute the caller's role on one question from identity alone.

    The asker check wins if a user somehow owns both sides.
    """
    if question.diyer_user_id == caller_user_id:
        return ParticipantRole.DIYER
    if caller_expert_id is not None and question.expert_id == caller_expert_id:
        return ParticipantRole.EXPERT
    return None


def plan_transition(
    question_id: UUID,
    action: ResolveAction,
    role: ParticipantRole | None,
    status: QuestionStatus,
) -> TransitionPlan:
    """
    Decide the transition for an action, or raise.

    Raises:
        AuthorizationError: Caller is not a participant or has the wrong role
        PreconditionViolationError: Status does not allow the action
    """
    required_role, allowed, target = _ACTION_RULES[action]
    if role is None:
        raise AuthorizationError("Caller is not a participant in this question")
    if role != required_role:
        raise AuthorizationError(f"Only the {required_role.value} can {action.value}")
    if status not in allowed:
        raise PreconditionViolationError(question_id, action.value, status)

    return TransitionPlan(
        target_status=target,
        expected_statuses=allowed,
        release_payout=action == ResolveAction.ACCEPT,
        refund_all=action == ResolveAction.NOT_HELPFUL,
        clear_proposal=action == ResolveAction.CONTINUE,
    )


class ResolutionService:
    """Applies resolution actions to questions."""

    def __init__(
        self,
        store: QuestionStore,
        payouts: PayoutService,
        fraud: FraudSignalDetector | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.payouts = payouts
        self.fraud = fraud
        self.clock = clock

    async def apply(
        self, question_id: UUID, caller_user_id: str, action: ResolveAction
    ) -> TransitionResult:
        """
        Run one resolution action for a caller.

        Returns:
            TransitionResult with the new status and scheduled effects

        Raises:
            QuestionNotFoundError: Unknown question
            AuthorizationError: Caller may not perform the action
            PreconditionViolationError: Status changed or never allowed it
        """
        question = await self.store.get_question(question_id)
        if question is None:
            raise QuestionNotFoundError(question_id)

        expert = await self.store.get_expert_by_user(caller_user_id)
        role = derive_role(question, caller_user_id, expert.id if expert else None)

        try:
            plan = plan_transition(question_id, action, role, question.status)
        except PreconditionViolationError:
            metrics.record_transition(action.value, "precondition_failed")
            raise
        except AuthorizationError:
            metrics.record_transition(action.value, "unauthorized")
            raise

        previous_status = question.status
        with trace_operation(f"resolution_{action.value}", question_id=str(question_id)):
            values = self._status_values(plan, question, caller_user_id)
            changed = await self.store.update_question_if(
                question_id, plan.expected_statuses, **values
            )
            if not changed:
                await self.store.rollback()
                metrics.record_transition(action.value, "precondition_failed")
                current = await self.store.get_question(question_id)
                logger.info(
                    "transition_lost_race",
                    question_id=str(question_id),
                    action=action.value,
                    current_status=current.status.value if current else None,
                )
                raise PreconditionViolationError(
                    question_id, action.value, current.status if current else None
                )
            await self.store.commit()

            if plan.release_payout:
                await self.payouts.release_payout(question)
            if plan.refund_all:
                outcome = await self.payouts.refund_question(
                    question, REFUND_REASON_NOT_HELPFUL, include_tiers=True
                )
                if outcome.failed:
                    logger.error(
                        "not_helpful_refunds_incomplete",
                        question_id=str(question_id),
                        refunded=outcome.refunded,
                        failed=outcome.failed,
                    )

        metrics.record_transition(action.value, "success")
        logger.info(
            "question_transitioned",
            question_id=str(question_id),
            action=action.value,
            previous_status=previous_status.value,
            new_status=plan.target_status.value,
        )

        if action == ResolveAction.ACCEPT and self.fraud is not None:
            await self.fraud.run_checks(
                question_id,
                caller_user_id,
                diyer_user_id=question.diyer_user_id,
                expert_id=question.expert_id,
            )

        return TransitionResult(
            question_id=question_id,
            previous_status=previous_status,
            new_status=plan.target_status,
            effects=await self._effects(action, question),
        )

    def _status_values(
        self, plan: TransitionPlan, question: QAQuestion, caller_user_id: str
    ) -> dict[str, object]:
        now = self.clock()
        values: dict[str, object] = {"status": plan.target_status}

        if plan.target_status == QuestionStatus.RESOLVE_PROPOSED:
            values["resolve_proposed_at"] = now
            values["resolve_proposed_by"] = caller_user_id
        elif plan.clear_proposal:
            values["resolve_proposed_at"] = None
            values["resolve_proposed_by"] = None
        elif plan.release_payout:
            values["resolved_at"] = now
            if question.payout_status != PayoutStatus.FREE:
                values["payout_status"] = PayoutStatus.RELEASED
        elif plan.refund_all:
            values["resolved_at"] = now
            values["marked_not_helpful"] = True
            values["not_helpful_at"] = now
            values["payout_status"] = PayoutStatus.REFUNDED

        return values

    async def _effects(self, action: ResolveAction, question: QAQuestion) -> tuple[SideEffect, ...]:
        link = question_link(question.id)

        if action == ResolveAction.PROPOSE_RESOLVE:
            return (
                Notify(
                    user_id=question.diyer_user_id,
                    notification_type=NotificationType.RESOLVE_PROPOSED,
                    title="Resolution proposed",
                    body="Expert proposes to resolve your question",
                    link=link,
                ),
            )

        if question.expert_id is None:
            return ()
        expert = await self.store.get_expert_profile(question.expert_id)
        expert_user_id = expert.user_id if expert else None
        effects: list[SideEffect] = []

        if action == ResolveAction.ACCEPT:
            effects.append(RecalculateReputation(expert_id=question.expert_id))
            if expert_user_id:
                effects.append(
                    Notify(
                        user_id=expert_user_id,
                        notification_type=NotificationType.ANSWER_ACCEPTED,
                        title="Answer accepted",
                        body="Your answer was accepted!",
                        link=link,
                    )
                )
        elif action == ResolveAction.CONTINUE and expert_user_id:
            effects.append(
                Notify(
                    user_id=expert_user_id,
                    notification_type=NotificationType.CONTINUE_REQUESTED,
                    title="Conversation continued",
                    body="The asker has more questions",
                    link=link,
                )
            )
        elif action == ResolveAction.NOT_HELPFUL and expert_user_id:
            effects.append(
                Notify(
                    user_id=expert_user_id,
                    notification_type=NotificationType.NOT_HELPFUL,
                    title="Answer marked not helpful",
                    body="The asker marked your answer as not helpful. The charge was refunded.",
                    link=link,
                )
            )
        return tuple(effects)
