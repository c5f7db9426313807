"""
PaymentEvent model: append-only audit log of payment transitions.

Written by the ledger in the same transaction as the Payment update it
describes. Rows are never updated or deleted.
"""

from __future__ import annotations

from django.db import models

from core.models import BaseModel

from escrow.state_machines import (
    EscrowStatus,
    PaymentEventSource,
    PaymentEventType,
    PaymentStatus,
)


class PaymentEvent(BaseModel):
    """
    Immutable record of one payment state change.

    Fields:
        payment: Payment the event belongs to
        event_type: What happened
        source: Which component triggered it
        actor_id: User who triggered it (null for system actors)
        from_status / to_status: Status before and after
        from_escrow_status / to_escrow_status: Escrow status before and after
        metadata: Extra context (Stripe ids, webhook event id, reason)
    """

    payment = models.ForeignKey(
        "escrow.Payment",
        on_delete=models.PROTECT,
        related_name="events",
        help_text="Payment this event belongs to",
    )

    event_type = models.CharField(
        max_length=20,
        choices=PaymentEventType.choices,
        help_text="Type of transition recorded",
    )

    source = models.CharField(
        max_length=20,
        choices=PaymentEventSource.choices,
        help_text="Component that triggered the transition",
    )

    actor_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        help_text="User that triggered the transition (null for system actors)",
    )

    from_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        blank=True,
        default="",
        help_text="Payment status before the transition (blank on creation)",
    )

    to_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        help_text="Payment status after the transition",
    )

    from_escrow_status = models.CharField(
        max_length=20,
        choices=EscrowStatus.choices,
        blank=True,
        default="",
        help_text="Escrow status before the transition (blank on creation)",
    )

    to_escrow_status = models.CharField(
        max_length=20,
        choices=EscrowStatus.choices,
        help_text="Escrow status after the transition",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Additional context (Stripe ids, webhook event id, reason)",
    )

    class Meta:
        ordering = ["created_at", "id"]
        verbose_name = "Payment Event"
        verbose_name_plural = "Payment Events"
        indexes = [
            models.Index(fields=["payment", "created_at"], name="escrow_evt_payment_idx"),
            models.Index(fields=["event_type", "created_at"], name="escrow_evt_type_created_idx"),
        ]

    def __str__(self) -> str:
        return f"PaymentEvent({self.payment_id}, {self.event_type}, {self.from_status}->{self.to_status})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("PaymentEvent rows are append-only and can't be modified")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("PaymentEvent rows are append-only and can't be deleted")
