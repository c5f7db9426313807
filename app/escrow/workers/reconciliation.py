"""
Pending-payment reconciliation.

Catches webhooks that never arrived: pending payments older than
ESCROW_RECONCILE_AFTER_MINUTES are compared with their PaymentIntent.

    requires_capture → payment moves to processing
    canceled         → payment is cancelled
    anything else    → left alone
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from escrow.models import Payment
from escrow.state_machines import PaymentEventSource
from escrow.workers._sweep import run_sweep

logger = logging.getLogger(__name__)


def reconcile_payment(ledger, payment_id) -> str:
    """
    Reconcile one pending payment against Stripe.

    Returns:
        "processing", "cancelled" or the untouched intent status
    """
    payment = ledger.get_payment(payment_id)
    intent = ledger.gateway.retrieve_payment_intent(payment.external_intent_id)

    if intent.status == "requires_capture":
        ledger.mark_processing(
            payment.id,
            source=PaymentEventSource.RECONCILER,
            metadata={"intent_status": intent.status},
        )
        return "processing"

    if intent.status == "canceled":
        ledger.cancel(payment.id, source=PaymentEventSource.RECONCILER, reason="intent canceled on Stripe")
        return "cancelled"

    if intent.status == "succeeded":
        logger.warning(
            "Pending payment has a captured intent",
            extra={"payment_id": str(payment.id), "intent_id": intent.id},
        )
    return intent.status


def run_reconciliation(ledger, now=None, batch_size: int | None = None) -> dict:
    now = now or timezone.now()
    batch_size = batch_size or settings.ESCROW_SWEEP_BATCH_SIZE
    created_before = now - timedelta(minutes=settings.ESCROW_RECONCILE_AFTER_MINUTES)

    payment_ids = list(
        Payment.objects.stuck_pending(created_before)
        .order_by("created_at")
        .values_list("id", flat=True)[:batch_size]
    )
    logger.info("Starting pending-payment reconciliation", extra={"pending_count": len(payment_ids)})

    outcomes: dict[str, int] = {}

    def reconcile(payment_id):
        outcome = reconcile_payment(ledger, payment_id)
        outcomes[outcome] = outcomes.get(outcome, 0) + 1

    result = run_sweep("reconciliation", payment_ids, reconcile)
    result["outcomes"] = outcomes
    return result


@shared_task
def reconcile_pending_payments() -> dict:
    """Periodic task: reconcile old pending payments."""
    from escrow.services import get_ledger

    return run_reconciliation(get_ledger())
