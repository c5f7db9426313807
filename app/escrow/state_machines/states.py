"""
State enums for escrow models.

These are Django TextChoices for database storage and admin integration.
Payment carries two independent axes that are constrained together by the
transitions declared on the model.

Payment status:
    pending → processing (confirm, or webhook authorization/succeeded)
    pending → cancelled (stuck-payment sweep, reconciliation)
    pending/processing → failed (webhook failed, terminal gateway error)
    processing → completed (release; escrow held → released)
    processing/disputed/failed → refunded (refund; escrow held → refunded)
    pending/processing/failed → disputed (dispute hand-off; escrow stays held)

Escrow status:
    held → released | refunded | cancelled (all three are terminal)
"""

from django.db import models


class PaymentStatus(models.TextChoices):
    """
    Lifecycle status of a Payment.

    Terminal states: COMPLETED, REFUNDED, CANCELLED
    FAILED and DISPUTED keep funds held and can still be refunded.
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    REFUNDED = "refunded", "Refunded"
    CANCELLED = "cancelled", "Cancelled"
    DISPUTED = "disputed", "Disputed"


class EscrowStatus(models.TextChoices):
    """Where the funds of a Payment are. Everything but HELD is terminal."""

    HELD = "held", "Held"
    RELEASED = "released", "Released"
    REFUNDED = "refunded", "Refunded"
    CANCELLED = "cancelled", "Cancelled"


TERMINAL_ESCROW_STATUSES = frozenset(
    {EscrowStatus.RELEASED, EscrowStatus.REFUNDED, EscrowStatus.CANCELLED}
)
ACTIVE_ESCROW_STATUSES = frozenset({EscrowStatus.HELD})


class PaymentType(models.TextChoices):
    MILESTONE = "milestone", "Milestone"
    HOURLY = "hourly", "Hourly"
    BONUS = "bonus", "Bonus"


class PaymentEventType(models.TextChoices):
    """Kinds of entries in the append-only payment audit log."""

    CREATED = "created", "Created"
    CONFIRMED = "confirmed", "Confirmed"
    RELEASED = "released", "Released"
    REFUNDED = "refunded", "Refunded"
    CANCELLED = "cancelled", "Cancelled"
    FAILED = "failed", "Failed"
    DISPUTED = "disputed", "Disputed"


class PaymentEventSource(models.TextChoices):
    """Which component triggered a payment transition."""

    API = "api", "API"
    WEBHOOK = "webhook", "Webhook"
    SCHEDULER = "scheduler", "Auto-Release Scheduler"
    SWEEPER = "sweeper", "Stuck-Payment Sweeper"
    RECONCILER = "reconciler", "Pending Reconciliation"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status of a claimed webhook event.

    PROCESSING rows that never complete are reported for operator
    attention and are never replayed automatically.
    """

    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class OnboardingStatus(models.TextChoices):
    """
    Stripe Connect onboarding status of a payout account.

    Only COMPLETE accounts with payouts enabled are payout eligible.
    """

    NOT_STARTED = "not_started", "Not Started"
    PENDING = "pending", "Pending"
    INCOMPLETE = "incomplete", "Incomplete"
    COMPLETE = "complete", "Complete"
    REJECTED = "rejected", "Rejected"


__all__ = [
    "ACTIVE_ESCROW_STATUSES",
    "TERMINAL_ESCROW_STATUSES",
    "EscrowStatus",
    "OnboardingStatus",
    "PaymentEventSource",
    "PaymentEventType",
    "PaymentStatus",
    "PaymentType",
    "WebhookEventStatus",
]
