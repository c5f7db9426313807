"""
Per-user payment statistics.
"""

from __future__ import annotations

from django.db.models import Count, Q, Sum

from core.services import BaseService

from escrow.models import Payment
from escrow.state_machines import EscrowStatus, PaymentStatus


class PaymentStatsService(BaseService):
    """Aggregates over the payments a user is a party to."""

    @classmethod
    def get_stats(cls, user_id) -> dict[str, int]:
        """
        Return totals for one user, in minor units where money is involved.

        total_paid: gross amount of completed payments made as payer
        total_received: net amount of completed payments received as payee
        pending_payments / completed_payments: counts across both roles
        escrow_held / escrow_released: gross amounts across both roles
        """
        completed = Q(status=PaymentStatus.COMPLETED)
        aggregates = Payment.objects.for_party(user_id).aggregate(
            total_paid=Sum("amount", filter=completed & Q(payer_id=user_id)),
            total_received=Sum("net_amount", filter=completed & Q(payee_id=user_id)),
            pending_payments=Count("id", filter=Q(status=PaymentStatus.PENDING)),
            completed_payments=Count("id", filter=completed),
            escrow_held=Sum("amount", filter=Q(escrow_status=EscrowStatus.HELD)),
            escrow_released=Sum("amount", filter=Q(escrow_status=EscrowStatus.RELEASED)),
        )
        return {key: value or 0 for key, value in aggregates.items()}
