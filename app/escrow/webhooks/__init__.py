"""
Stripe webhook processing for escrow payments.

Flow: signature check → ProcessedWebhookEvent claim → parse_event →
dispatch_event → ledger transition → event marked completed or failed.
"""

from escrow.webhooks.events import WebhookEvent, parse_event
from escrow.webhooks.handlers import dispatch_event, register_handler
from escrow.webhooks.reconciler import WebhookReconciler

__all__ = [
    "WebhookEvent",
    "WebhookReconciler",
    "dispatch_event",
    "parse_event",
    "register_handler",
]
