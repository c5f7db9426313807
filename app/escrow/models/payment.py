"""
Payment model: one escrowed funds movement for one contract/milestone.

The Payment carries two state axes:
    status:         pending → processing → completed (and failed, refunded,
                    cancelled, disputed)
    escrow_status:  held → released | refunded | cancelled

Both axes are FSM fields guarded by django-fsm's ConcurrentTransitionMixin:
every save() of a loaded instance only updates the row if (status,
escrow_status) still equal the values read from the database, so two
processes racing on the same payment converge to one winner and the loser
gets ConcurrentTransition.

Only escrow.services.ledger.EscrowLedger calls the transition methods.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django_fsm import ConcurrentTransitionMixin, FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from escrow.state_machines import (
    EscrowStatus,
    PaymentStatus,
    PaymentType,
    TERMINAL_ESCROW_STATUSES,
)

EXTERNAL_REFERENCE_FIELDS = (
    "external_intent_id",
    "external_charge_id",
    "external_transfer_id",
    "external_refund_id",
)


def escrow_is_held(instance: Payment) -> bool:
    """Transition condition: funds have not left escrow yet."""
    return instance.escrow_status == EscrowStatus.HELD


class PaymentQuerySet(models.QuerySet):
    def for_party(self, user_id):
        return self.filter(Q(payer_id=user_id) | Q(payee_id=user_id))

    def held(self):
        return self.filter(escrow_status=EscrowStatus.HELD)

    def due_for_auto_release(self, now):
        return self.filter(
            auto_release=True,
            escrow_status=EscrowStatus.HELD,
            status=PaymentStatus.PROCESSING,
            auto_release_at__lte=now,
        )

    def stuck_pending(self, created_before):
        return self.filter(
            status=PaymentStatus.PENDING,
            escrow_status=EscrowStatus.HELD,
            created_at__lt=created_before,
        )


class Payment(ConcurrentTransitionMixin, UUIDPrimaryKeyMixin, BaseModel):
    """
    One escrowed payment from a payer to a payee.

    Fields:
        contract_id / milestone_id: Work item being paid for (milestone is
            null for hourly and bonus payments)
        payer / payee: The two parties
        amount: Gross amount in minor units (cents)
        platform_fee_percentage: Fee percentage applied at creation
        platform_fee / net_amount: Split of amount, always summing to it
        external_*_id: Stripe references, each written at most once
        status / escrow_status: The two state axes (see module docstring)
        auto_release / auto_release_at: Scheduler release deadline
        last_webhook_*: Last processor event applied to this payment
        version: Incremented on every save

    Invariants:
        - amount == platform_fee + net_amount (database check constraint)
        - once escrow_status leaves HELD no transition is allowed
    """

    # =========================================================================
    # Identity
    # =========================================================================

    contract_id = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Contract this payment belongs to",
    )

    milestone_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        db_index=True,
        help_text="Milestone being paid (null for hourly and bonus payments)",
    )

    payment_type = models.CharField(
        max_length=20,
        choices=PaymentType.choices,
        default=PaymentType.MILESTONE,
        help_text="Kind of work this payment covers",
    )

    description = models.CharField(
        max_length=500,
        blank=True,
        default="",
        help_text="Optional free-text description shown to both parties",
    )

    # =========================================================================
    # Parties
    # =========================================================================

    payer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="escrow_payments_made",
        help_text="User funding the escrow",
    )

    payee = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="escrow_payments_received",
        help_text="User receiving the funds on release",
    )

    # =========================================================================
    # Money (minor units)
    # =========================================================================

    amount = models.PositiveBigIntegerField(
        help_text="Gross amount charged to the payer, in cents",
    )

    platform_fee_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        help_text="Platform fee percentage applied when the payment was created",
    )

    platform_fee = models.PositiveBigIntegerField(
        help_text="Platform fee in cents, collected as the application fee",
    )

    net_amount = models.PositiveBigIntegerField(
        help_text="Amount released to the payee in cents (amount - platform_fee)",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    # =========================================================================
    # External References (write-once)
    # =========================================================================

    external_intent_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe PaymentIntent ID (pi_xxx)",
    )

    external_charge_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Stripe Charge ID (ch_xxx), set on capture",
    )

    external_transfer_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Stripe Transfer ID (tr_xxx) of the destination transfer",
    )

    external_refund_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Stripe Refund ID (re_xxx), set on refund",
    )

    # =========================================================================
    # State
    # =========================================================================

    status = FSMField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
        protected=True,
        db_index=True,
        help_text="Payment lifecycle status",
    )

    escrow_status = FSMField(
        max_length=20,
        choices=EscrowStatus.choices,
        default=EscrowStatus.HELD,
        db_index=True,
        help_text="Where the funds are; everything but held is terminal",
    )

    failure_reason = models.TextField(
        blank=True,
        default="",
        help_text="Why the payment failed, from the processor or the gateway error",
    )

    # =========================================================================
    # Timing
    # =========================================================================

    paid_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the payer's funds were authorized",
    )

    released_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the funds were captured and released to the payee",
    )

    refunded_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the funds were refunded to the payer",
    )

    cancelled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the payment was cancelled",
    )

    # =========================================================================
    # Auto-Release
    # =========================================================================

    auto_release = models.BooleanField(
        default=False,
        help_text="Release automatically once auto_release_at has passed",
    )

    auto_release_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Deadline after which the scheduler releases the funds",
    )

    # =========================================================================
    # Reconciliation Bookkeeping
    # =========================================================================

    last_webhook_event_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Last Stripe event ID applied to this payment",
    )

    last_webhook_type = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        help_text="Type of the last Stripe event applied",
    )

    last_webhook_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the last Stripe event was applied",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON metadata",
    )

    version = models.PositiveIntegerField(
        default=1,
        help_text="Incremented on each save",
    )

    objects = PaymentQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment"
        verbose_name_plural = "Payments"
        indexes = [
            models.Index(fields=["payer", "status"], name="escrow_pay_payer_status_idx"),
            models.Index(fields=["payee", "status"], name="escrow_pay_payee_status_idx"),
            models.Index(
                fields=["status", "escrow_status", "created_at"],
                name="escrow_pay_state_created_idx",
            ),
            models.Index(
                fields=["auto_release", "escrow_status", "auto_release_at"],
                name="escrow_pay_auto_release_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name="escrow_payment_amount_positive",
            ),
            models.CheckConstraint(
                condition=Q(amount=F("platform_fee") + F("net_amount")),
                name="escrow_payment_amount_split",
            ),
            models.CheckConstraint(
                condition=~Q(payer=F("payee")),
                name="escrow_payment_distinct_parties",
            ),
        ]

    def __str__(self) -> str:
        return f"Payment({self.id}, {self.status}/{self.escrow_status}, {self.amount} {self.currency})"

    def save(self, *args, **kwargs):
        """
        Save with version auto-increment.

        Updates go through ConcurrentTransitionMixin, so the UPDATE also
        filters on the (status, escrow_status) read from the database.
        """
        if not self._state.adding:
            # No F() or refresh here: reloading deferred FSM fields recurses.
            self.version += 1
            update_fields = kwargs.get("update_fields")
            if update_fields is not None:
                kwargs["update_fields"] = set(update_fields) | {"version", "updated_at"}
        super().save(*args, **kwargs)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def is_escrow_terminal(self) -> bool:
        return self.escrow_status in TERMINAL_ESCROW_STATUSES

    def is_party(self, user_id) -> bool:
        return user_id in (self.payer_id, self.payee_id)

    def set_external_reference(self, field_name: str, value: str | None) -> bool:
        """
        Write an external reference if it is still empty.

        Returns True if the field changed. Writing the same value again is
        a no-op; writing a different value raises ValueError.
        """
        if field_name not in EXTERNAL_REFERENCE_FIELDS:
            raise ValueError(f"{field_name} is not an external reference field")
        if not value:
            return False
        current = getattr(self, field_name)
        if current == value:
            return False
        if current:
            raise ValueError(
                f"{field_name} is already set to {current}, refusing to overwrite with {value}"
            )
        setattr(self, field_name, value)
        return True

    # =========================================================================
    # State Transitions (django-fsm)
    # =========================================================================

    @transition(
        field=status,
        source=PaymentStatus.PENDING,
        target=PaymentStatus.PROCESSING,
        conditions=[escrow_is_held],
    )
    def mark_processing(self, paid_at) -> None:
        """Payer's funds are authorized and waiting in escrow."""
        self.paid_at = paid_at

    @transition(
        field=status,
        source=PaymentStatus.PROCESSING,
        target=PaymentStatus.COMPLETED,
        conditions=[escrow_is_held],
    )
    def release(self, released_at, charge_id: str | None = None) -> None:
        """Funds were captured; escrow is released to the payee."""
        self.set_external_reference("external_charge_id", charge_id)
        self.escrow_status = EscrowStatus.RELEASED
        self.released_at = released_at

    @transition(
        field=status,
        source=[PaymentStatus.PROCESSING, PaymentStatus.DISPUTED, PaymentStatus.FAILED],
        target=PaymentStatus.REFUNDED,
        conditions=[escrow_is_held],
    )
    def refund(self, refunded_at, refund_id: str | None = None) -> None:
        """Funds were returned to the payer."""
        self.set_external_reference("external_refund_id", refund_id)
        self.escrow_status = EscrowStatus.REFUNDED
        self.refunded_at = refunded_at

    @transition(
        field=status,
        source=PaymentStatus.PENDING,
        target=PaymentStatus.CANCELLED,
        conditions=[escrow_is_held],
    )
    def cancel(self, cancelled_at) -> None:
        """The intent was cancelled before any funds were authorized."""
        self.escrow_status = EscrowStatus.CANCELLED
        self.cancelled_at = cancelled_at

    @transition(
        field=status,
        source=[PaymentStatus.PENDING, PaymentStatus.PROCESSING],
        target=PaymentStatus.FAILED,
        conditions=[escrow_is_held],
    )
    def fail(self, reason: str = "") -> None:
        """Processor or gateway failure; escrow stays held for refund."""
        self.failure_reason = reason

    @transition(
        field=status,
        source=[PaymentStatus.PENDING, PaymentStatus.PROCESSING, PaymentStatus.FAILED],
        target=PaymentStatus.DISPUTED,
        conditions=[escrow_is_held],
    )
    def mark_disputed(self) -> None:
        """Handed off to dispute resolution; escrow stays held."""
