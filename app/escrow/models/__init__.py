"""
Escrow models.

Models:
    Payment: One escrowed payment and its state machine
    PaymentEvent: Append-only audit log of payment transitions
    ProcessedWebhookEvent: Stripe webhook dedupe and audit record
    PayoutAccount: A payee's Stripe Connect account
"""

from escrow.models.payment import Payment
from escrow.models.payment_event import PaymentEvent
from escrow.models.payout_account import PayoutAccount
from escrow.models.webhook_event import ProcessedWebhookEvent

__all__ = [
    "Payment",
    "PaymentEvent",
    "PayoutAccount",
    "ProcessedWebhookEvent",
]
