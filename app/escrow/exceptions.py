"""
Escrow-specific exceptions.

Every exception here derives from the core hierarchy so the API layer can
render it with the right status code.

Exception Hierarchy:
    PaymentValidationError (ValidationError, 400)
    └── NotPayoutEligibleError - Payee has no payout-enabled account
    WebhookSignatureError (ValidationError, 400) - Webhook verification failed
    WebhookHandlerError (500) - Handler failed after the event was recorded
    PaymentNotFoundError (NotFoundError, 404)
    PayoutAccountNotFoundError (NotFoundError, 404)
    PaymentPermissionError (PermissionDeniedError, 403) - Caller not a party
    StateConflictError (ConflictError, 409) - Invalid (status, escrow) pair
    GatewayError (ExternalServiceError, 502)
    ├── GatewayRetryableError - Safe to retry later, state left untouched
    │   ├── GatewayRateLimitError
    │   ├── GatewayUnavailableError
    │   └── GatewayTimeoutError
    └── GatewayTerminalError - Do not retry, payment moves to failed
        ├── CardDeclinedError
        ├── InsufficientFundsError
        ├── InvalidAccountError
        ├── InvalidRequestError
        └── NotCapturableError - Intent is not in requires_capture

Usage:
    from escrow.exceptions import GatewayError, StateConflictError

    try:
        ledger.release(payment_id, caller_id=None)
    except GatewayError as e:
        if e.is_retryable:
            ...  # next scheduler tick retries
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentValidationError(ValidationError):
    """Raised for invalid payment input (amount, currency, parties, delays)."""

    default_error_code: str = "PAYMENT_VALIDATION_ERROR"


class NotPayoutEligibleError(PaymentValidationError):
    """
    Raised when the payee can't receive funds.

    The payee must have a payout account with onboarding complete and
    payouts enabled before a payment can be created for them.
    """

    default_error_code: str = "NOT_PAYOUT_ELIGIBLE"


class PaymentNotFoundError(NotFoundError):
    default_error_code: str = "PAYMENT_NOT_FOUND"


class PayoutAccountNotFoundError(NotFoundError):
    """Raised when the user has not created a payout account yet."""

    default_error_code: str = "PAYOUT_ACCOUNT_NOT_FOUND"


class PaymentPermissionError(PermissionDeniedError):
    """Raised when the caller is not allowed to act on the payment."""

    default_error_code: str = "NOT_PAYMENT_PARTY"


class StateConflictError(ConflictError):
    """
    Raised when an operation is invalid for the payment's current state.

    Wraps django-fsm's TransitionNotAllowed and the ledger's own
    precondition checks. ``details`` carries the current status and
    escrow status plus the attempted operation.

    Example:
        raise StateConflictError(
            "Cannot refund payment with escrow status 'released'",
            details={"status": "completed", "escrow_status": "released", "operation": "refund"},
        )
    """

    default_error_code: str = "STATE_CONFLICT"


class WebhookSignatureError(ValidationError):
    """Raised when a webhook payload fails signature verification."""

    default_error_code: str = "INVALID_WEBHOOK_SIGNATURE"


class WebhookHandlerError(BaseApplicationError):
    """
    Raised by the reconciler when a handler failed after the event row was
    marked FAILED. The original exception is chained as __cause__.
    """

    default_error_code: str = "WEBHOOK_HANDLER_FAILED"


# =============================================================================
# Gateway Exceptions
# =============================================================================


class GatewayError(ExternalServiceError):
    """
    Base exception for payment processor failures.

    Attributes:
        stripe_code: Stripe's error code, if any
        decline_code: Card decline code, if any
        is_retryable: Whether a later retry may succeed

    Retryable errors leave the payment untouched so a later explicit or
    scheduled call can retry. Terminal errors move the payment to failed.
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if stripe_code:
            details["stripe_code"] = stripe_code
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(message, error_code=error_code, details=details)
        self.stripe_code = stripe_code
        self.decline_code = decline_code


class GatewayRetryableError(GatewayError):
    default_error_code: str = "GATEWAY_RETRYABLE_ERROR"
    is_retryable: bool = True
    status_code: int = 503


class GatewayTerminalError(GatewayError):
    default_error_code: str = "GATEWAY_TERMINAL_ERROR"
    is_retryable: bool = False


# -----------------------------------------------------------------------------
# Retryable
# -----------------------------------------------------------------------------


class GatewayRateLimitError(GatewayRetryableError):
    """Stripe rate limited the request. Back off before retrying."""

    default_error_code: str = "GATEWAY_RATE_LIMITED"


class GatewayUnavailableError(GatewayRetryableError):
    """Stripe could not be reached or returned a server error."""

    default_error_code: str = "GATEWAY_UNAVAILABLE"


class GatewayTimeoutError(GatewayRetryableError):
    """
    The request timed out.

    The operation may or may not have completed on Stripe's side. Retries
    reuse the same idempotency key, so a completed call is not repeated.
    """

    default_error_code: str = "GATEWAY_TIMEOUT"


# -----------------------------------------------------------------------------
# Terminal
# -----------------------------------------------------------------------------


class CardDeclinedError(GatewayTerminalError):
    """Card was declined by the issuing bank. ``decline_code`` holds the reason."""

    default_error_code: str = "CARD_DECLINED"


class InsufficientFundsError(GatewayTerminalError):
    default_error_code: str = "INSUFFICIENT_FUNDS"


class InvalidAccountError(GatewayTerminalError):
    """Connected account is missing, restricted or can't receive transfers."""

    default_error_code: str = "INVALID_ACCOUNT"


class InvalidRequestError(GatewayTerminalError):
    """Invalid parameters or credentials. Indicates a bug or misconfiguration."""

    default_error_code: str = "INVALID_REQUEST"


class NotCapturableError(GatewayTerminalError):
    """
    Raised instead of calling capture when the intent is not capturable.

    Attributes:
        intent: The retrieved PaymentIntentResult, so callers can tell an
            intent that was already captured (status "succeeded") from one
            that can no longer be captured at all.
    """

    default_error_code: str = "NOT_CAPTURABLE"

    def __init__(self, message: str, intent=None, details: dict[str, Any] | None = None):
        details = details or {}
        if intent is not None:
            details.setdefault("intent_status", intent.status)
        super().__init__(message, details=details)
        self.intent = intent

    @property
    def intent_status(self) -> str | None:
        return self.intent.status if self.intent is not None else None


__all__ = [
    # Payment domain
    "PaymentValidationError",
    "NotPayoutEligibleError",
    "PaymentNotFoundError",
    "PayoutAccountNotFoundError",
    "PaymentPermissionError",
    "StateConflictError",
    "WebhookSignatureError",
    "WebhookHandlerError",
    # Gateway
    "GatewayError",
    "GatewayRetryableError",
    "GatewayTerminalError",
    "GatewayRateLimitError",
    "GatewayUnavailableError",
    "GatewayTimeoutError",
    "CardDeclinedError",
    "InsufficientFundsError",
    "InvalidAccountError",
    "InvalidRequestError",
    "NotCapturableError",
]
