"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from uuid import UUID

from qa_engine.models.api import QuestionStatus


class MarketplaceError(Exception):
    """Base exception for all marketplace errors."""

    pass


class QuestionNotFoundError(MarketplaceError):
    """Raised when a question doesn't exist."""

    def __init__(self, question_id: UUID) -> None:
        self.question_id = question_id
        super().__init__(f"Question not found: {question_id}")


class PreconditionViolationError(MarketplaceError):
    """Raised when a question's status no longer allows the requested action.

    Callers must re-fetch; these are never retried automatically.
    """

    def __init__(
        self,
        question_id: UUID,
        action: str,
        current_status: QuestionStatus | None = None,
    ) -> None:
        self.question_id = question_id
        self.action = action
        self.current_status = current_status
        status = current_status.value if current_status is not None else "unknown"
        super().__init__(
            f"Cannot {action} question {question_id} in its current state ({status})"
        )


class AuthorizationError(MarketplaceError):
    """Raised when the caller is not an allowed participant for an action."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Authorization failed: {reason}")


class ValidationError(MarketplaceError):
    """Raised for malformed input, always before any state mutation."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Validation failed: {message}")


class PaymentProviderError(MarketplaceError):
    """Raised when payment provider operation fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Payment provider error: {message}")


class PaymentMethodMissingError(MarketplaceError):
    """Raised when a non-zero charge has no saved payment method."""

    def __init__(self, question_id: UUID) -> None:
        self.question_id = question_id
        super().__init__(f"No saved payment method for question {question_id}")


class DataIntegrityError(MarketplaceError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")
