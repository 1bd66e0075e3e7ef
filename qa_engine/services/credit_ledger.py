"""
Credit Ledger - Applies prepaid credit against a charge.

The deduction is committed before any external charge is attempted. If the
charge then fails the caller must call restore_credits, which re-credits
the balance with a compensating transaction.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from qa_engine.db.models import CreditTransaction, UserCredit, utc_now
from qa_engine.exceptions import DataIntegrityError, ValidationError
from qa_engine.models.domain import CreditApplication

logger = get_logger(__name__)

REASON_APPLIED = "qa_credit_applied"
REASON_RESTORED = "qa_charge_failed_restore"
REASON_REFUNDED = "qa_refund_restore"


class CreditLedger:
    """Per-user credit balance plus append-only transaction log."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize ledger with database session."""
        self.session = session

    async def get_balance(self, user_id: str) -> int:
        """Current balance in cents (0 when the user has no ledger row)."""
        result = await self.session.execute(
            select(UserCredit.balance_cents).where(UserCredit.user_id == user_id)
        )
        balance = result.scalar_one_or_none()
        return int(balance) if balance is not None else 0

    async def apply_credits(
        self, user_id: str, question_id: UUID, price_cents: int
    ) -> CreditApplication:
        """
        Deduct min(balance, price) from the user's balance.

        Returns the remaining effective charge and the applied amount. The
        deduction and its transaction record are committed before returning.
        """
        if price_cents < 0:
            raise ValidationError(f"price_cents cannot be negative: {price_cents}")

        credit = await self._lock_credit_for_update(user_id)
        if credit is None or credit.balance_cents <= 0 or price_cents == 0:
            return CreditApplication(
                effective_charge_cents=price_cents,
                credit_applied_cents=0,
                balance_after_cents=credit.balance_cents if credit is not None else 0,
            )

        applied = min(credit.balance_cents, price_cents)
        balance_before = credit.balance_cents
        credit.balance_cents = balance_before - applied
        credit.updated_at = utc_now()

        if credit.balance_cents < 0:
            raise DataIntegrityError(
                f"Credit balance for {user_id} would go negative: {credit.balance_cents}"
            )

        self.session.add(
            CreditTransaction(
                user_id=user_id,
                amount_cents=-applied,
                reason=REASON_APPLIED,
                qa_question_id=question_id,
            )
        )
        await self.session.flush()
        await self.session.commit()

        logger.info(
            "credits_applied",
            user_id=user_id,
            question_id=str(question_id),
            applied_cents=applied,
            balance_before=balance_before,
            balance_after=credit.balance_cents,
        )

        return CreditApplication(
            effective_charge_cents=price_cents - applied,
            credit_applied_cents=applied,
            balance_after_cents=credit.balance_cents,
        )

    async def restore_credits(
        self,
        user_id: str,
        question_id: UUID,
        amount_cents: int,
        reason: str = REASON_RESTORED,
    ) -> int:
        """Re-credit a previously applied amount. Returns the new balance."""
        if amount_cents <= 0:
            return await self.get_balance(user_id)

        credit = await self._lock_credit_for_update(user_id)
        if credit is None:
            credit = UserCredit(user_id=user_id, balance_cents=0)
            self.session.add(credit)

        credit.balance_cents = (credit.balance_cents or 0) + amount_cents
        credit.updated_at = utc_now()
        self.session.add(
            CreditTransaction(
                user_id=user_id,
                amount_cents=amount_cents,
                reason=reason,
                qa_question_id=question_id,
            )
        )
        await self.session.flush()
        await self.session.commit()

        logger.info(
            "credits_restored",
            user_id=user_id,
            question_id=str(question_id),
            amount_cents=amount_cents,
            reason=reason,
            balance_after=credit.balance_cents,
        )
        return credit.balance_cents

    async def _lock_credit_for_update(self, user_id: str) -> UserCredit | None:
        """Lock the user's credit row for the rest of the transaction."""
        stmt = select(UserCredit).where(UserCredit.user_id == user_id).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
