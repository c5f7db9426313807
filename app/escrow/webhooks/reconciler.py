"""
Webhook reconciler: verify, claim, dispatch, record.

Processing is synchronous in the request. A claimed event always ends in
COMPLETED or FAILED unless the process dies mid-handling, in which case
the row stays PROCESSING and is reported by
escrow.tasks.report_stuck_webhook_events.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.services import BaseService

from escrow.exceptions import WebhookHandlerError, WebhookSignatureError
from escrow.models import ProcessedWebhookEvent
from escrow.webhooks.events import parse_event
from escrow.webhooks.handlers import dispatch_event

if TYPE_CHECKING:
    from escrow.adapters import StripeAdapter
    from escrow.services import EscrowLedger


class WebhookReconciler(BaseService):
    """
    Applies Stripe webhook deliveries to the ledger exactly once per event id.

    Args:
        gateway: StripeAdapter used for signature verification
        ledger: EscrowLedger that performs every payment transition
    """

    def __init__(self, gateway: StripeAdapter, ledger: EscrowLedger):
        self.gateway = gateway
        self.ledger = ledger

    def handle(self, payload: bytes, signature: str) -> ProcessedWebhookEvent | None:
        """
        Process one delivery.

        Returns:
            The ProcessedWebhookEvent row, or None for a duplicate delivery.

        Raises:
            WebhookSignatureError: Signature or payload invalid (nothing recorded)
            WebhookHandlerError: Handler raised after the row was marked FAILED
            Exception: Claiming or recording the event failed (nothing durable)
        """
        event_data = self.gateway.verify_webhook_signature(payload, signature)
        return self.process(event_data)

    def process(self, event_data: dict) -> ProcessedWebhookEvent | None:
        """Claim and dispatch an already verified event."""
        logger = self.get_logger()
        event_id = event_data.get("id")
        event_type = event_data.get("type")
        if not event_id or not event_type:
            raise WebhookSignatureError("Webhook event is missing id or type")

        record, claimed = ProcessedWebhookEvent.claim(event_id, event_type, event_data)
        if not claimed:
            logger.info(
                "Duplicate webhook event, already claimed",
                extra={"event_id": event_id, "event_type": event_type},
            )
            return None

        logger.info(
            f"Processing Stripe webhook: {event_type}",
            extra={"event_id": event_id, "event_type": event_type},
        )

        event = parse_event(event_data)
        try:
            result = dispatch_event(event, self.ledger)
        except Exception as e:
            logger.error(
                f"Webhook handler raised {type(e).__name__}",
                extra={"event_id": event_id, "event_type": event_type},
                exc_info=True,
            )
            record.mark_failed(f"{type(e).__name__}: {e}")
            raise WebhookHandlerError(
                f"Handler for {event_type} failed: {e}",
                details={"event_id": event_id, "event_type": event_type},
            ) from e

        if result.success:
            record.mark_completed()
        else:
            logger.error(
                "Webhook handler reported failure",
                extra={
                    "event_id": event_id,
                    "event_type": event_type,
                    "error": result.error,
                    "error_code": result.error_code,
                },
            )
            record.mark_failed(f"[{result.error_code}] {result.error}")
        return record
