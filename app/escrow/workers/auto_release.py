"""
Auto-release scheduler sweep.

Releases held payments whose auto_release_at has passed. Registered in
celery-beat twice (every minute plus a 5 minute backup); overlapping runs
are safe because EscrowLedger.release is a no-op on a payment that is
already released and the selection excludes completed payments.

Usage:
    from escrow.workers.auto_release import process_auto_releases

    process_auto_releases.delay()
"""

from __future__ import annotations

import logging

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from escrow.models import Payment
from escrow.state_machines import PaymentEventSource
from escrow.workers._sweep import run_sweep

logger = logging.getLogger(__name__)


def run_auto_release_sweep(ledger, now=None, batch_size: int | None = None) -> dict:
    """
    Release every payment due for auto-release, oldest deadline first.

    Args:
        ledger: EscrowLedger to release through
        now: Reference time (default: timezone.now())
        batch_size: Max payments per run (default: ESCROW_SWEEP_BATCH_SIZE)
    """
    now = now or timezone.now()
    batch_size = batch_size or settings.ESCROW_SWEEP_BATCH_SIZE

    payment_ids = list(
        Payment.objects.due_for_auto_release(now)
        .order_by("auto_release_at")
        .values_list("id", flat=True)[:batch_size]
    )
    logger.info("Starting auto-release sweep", extra={"due_count": len(payment_ids)})

    return run_sweep(
        "auto_release",
        payment_ids,
        lambda payment_id: ledger.release(payment_id, caller_id=None, source=PaymentEventSource.SCHEDULER),
    )


@shared_task
def process_auto_releases() -> dict:
    """Periodic task: run the auto-release sweep."""
    from escrow.services import get_ledger

    return run_auto_release_sweep(get_ledger())
