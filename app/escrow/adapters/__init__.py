"""
Payment processor adapters for the escrow app.

All Stripe calls go through StripeAdapter so timeouts, idempotency keys,
logging and error translation are handled in one place.

Usage:
    from escrow.adapters import get_stripe_adapter

    adapter = get_stripe_adapter()
    intent = adapter.retrieve_payment_intent("pi_123")
"""

from functools import lru_cache

from escrow.adapters.stripe_adapter import (
    AccountLinkResult,
    AccountResult,
    CreatePaymentIntentParams,
    IdempotencyKeyGenerator,
    PaymentIntentResult,
    RefundResult,
    StripeAdapter,
    TransferResult,
)


@lru_cache(maxsize=1)
def get_stripe_adapter() -> StripeAdapter:
    """Return the process-wide adapter, configured from settings on first use."""
    return StripeAdapter.from_settings()


__all__ = [
    "AccountLinkResult",
    "AccountResult",
    "CreatePaymentIntentParams",
    "IdempotencyKeyGenerator",
    "PaymentIntentResult",
    "RefundResult",
    "StripeAdapter",
    "TransferResult",
    "get_stripe_adapter",
]
