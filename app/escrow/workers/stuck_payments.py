"""
Stuck-payment sweep.

Cancels payments that stayed pending longer than ESCROW_STUCK_PAYMENT_HOURS:
the payer never attached a payment method. EscrowLedger.cancel checks the
intent first and refuses to void one the payer has authorized.
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


def run_stuck_payment_sweep(ledger, now=None, batch_size: int | None = None) -> dict:
    now = now or timezone.now()
    batch_size = batch_size or settings.ESCROW_SWEEP_BATCH_SIZE
    created_before = now - timedelta(hours=settings.ESCROW_STUCK_PAYMENT_HOURS)

    payment_ids = list(
        Payment.objects.stuck_pending(created_before)
        .order_by("created_at")
        .values_list("id", flat=True)[:batch_size]
    )
    logger.info("Starting stuck-payment sweep", extra={"stuck_count": len(payment_ids)})

    return run_sweep(
        "stuck_payments",
        payment_ids,
        lambda payment_id: ledger.cancel(
            payment_id,
            source=PaymentEventSource.SWEEPER,
            reason="payment method never attached",
        ),
    )


@shared_task
def cancel_stuck_payments() -> dict:
    """Periodic task: run the stuck-payment sweep."""
    from escrow.services import get_ledger

    return run_stuck_payment_sweep(get_ledger())
