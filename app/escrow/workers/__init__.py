"""
Scheduled sweeps for escrow payments.

Each module holds a stateless sweep function that takes the ledger
explicitly, plus a thin Celery task that celery-beat runs:
- auto_release: process_auto_releases
- stuck_payments: cancel_stuck_payments
- reconciliation: reconcile_pending_payments
"""

from escrow.workers.auto_release import process_auto_releases, run_auto_release_sweep
from escrow.workers.reconciliation import reconcile_pending_payments, run_reconciliation
from escrow.workers.stuck_payments import cancel_stuck_payments, run_stuck_payment_sweep

__all__ = [
    "cancel_stuck_payments",
    "process_auto_releases",
    "reconcile_pending_payments",
    "run_auto_release_sweep",
    "run_reconciliation",
    "run_stuck_payment_sweep",
]
