"""
Payment Provider Protocol - Provider-agnostic interface.

NO DICTIONARIES - All data uses strongly typed models.

Callers derive idempotency keys and transfer groups from the question id so
a retried request or an overlapping sweep maps to one logical payment.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol
from uuid import UUID


def charge_idempotency_key(question_id: UUID, claimed_at: datetime | None) -> str:
    """One charge per claim of a question."""
    stamp = int(claimed_at.timestamp()) if claimed_at is not None else 0
    return f"qa-charge-{question_id}-{stamp}"


def tier_charge_idempotency_key(question_id: UUID, target_tier: int) -> str:
    return f"qa-tier-{question_id}-{target_tier}"


def second_opinion_idempotency_key(question_id: UUID) -> str:
    return f"qa-second-opinion-{question_id}"


def refund_idempotency_key(payment_intent_id: str) -> str:
    return f"qa-refund-{payment_intent_id}"


def transfer_group(question_id: UUID) -> str:
    return f"qa_{question_id}"


@dataclass(frozen=True)
class ChargeRequest:
    """Off-session charge of a saved payment method."""

    amount_cents: int
    customer_id: str
    payment_method_id: str
    question_id: UUID
    purpose: str
    idempotency_key: str

    def __post_init__(self) -> None:
        """Validate charge constraints."""
        if self.amount_cents <= 0:
            raise ValueError(f"Charge amount must be positive: {self.amount_cents}")


@dataclass(frozen=True)
class RefundRequest:
    """Full refund of a payment intent."""

    payment_intent_id: str
    question_id: UUID
    reason: str
    idempotency_key: str


@dataclass(frozen=True)
class TransferRequest:
    """Payout transfer to an expert's connected account."""

    amount_cents: int
    destination_account_id: str
    question_id: UUID
    transfer_group: str
    idempotency_key: str

    def __post_init__(self) -> None:
        """Validate transfer constraints."""
        if self.amount_cents <= 0:
            raise ValueError(f"Transfer amount must be positive: {self.amount_cents}")


class PaymentProvider(Protocol):
    """
    Payment provider protocol.

    Every method raises PaymentProviderError on failure.
    """

    async def charge(self, request: ChargeRequest) -> str:
        """Charge a saved payment method. Returns the payment intent id."""
        ...

    async def refund(self, request: RefundRequest) -> str:
        """Refund a payment intent. Returns the refund id."""
        ...

    async def transfer(self, request: TransferRequest) -> str:
        """Transfer funds to an expert. Returns the transfer id."""
        ...
