"""
ProcessedWebhookEvent model: dedupe and audit record for Stripe events.

The unique event_id is the claim. The first delivery inserts the row in
PROCESSING; any later delivery of the same event hits the unique
constraint and is acknowledged without touching payments again.

Usage:
    from escrow.models import ProcessedWebhookEvent

    event, claimed = ProcessedWebhookEvent.claim(
        event_id="evt_123", event_type="payment_intent.succeeded", payload=data
    )
    if not claimed:
        return HttpResponse("Duplicate", status=200)
"""

from __future__ import annotations

from django.db import IntegrityError, models, transaction
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from escrow.state_machines import WebhookEventStatus


class ProcessedWebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    One claimed Stripe webhook event.

    Processing Flow:
        1. Signature verified by the endpoint
        2. claim() inserts the row in PROCESSING (duplicates stop here)
        3. Event dispatched to its handler
        4. Row marked COMPLETED, or FAILED with error_message

    A row left in PROCESSING means the process died mid-handling. Those
    are reported for operator attention and never replayed automatically.

    Fields:
        event_id: Stripe Event ID (evt_xxx)
        event_type: Stripe event type
        payload: Full event JSON, kept for audit
        status: Processing status
        started_at / completed_at: Processing window
        error_message: Failure details if processing failed
    """

    # ==========================================================================
    # Event Identification
    # ==========================================================================

    event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Event ID (evt_xxx)",
    )

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Stripe event type (e.g., payment_intent.succeeded)",
    )

    payload = models.JSONField(
        default=dict,
        blank=True,
        help_text="Full event payload from Stripe",
    )

    # ==========================================================================
    # Processing State
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PROCESSING,
        db_index=True,
        help_text="Processing status of this event",
    )

    started_at = models.DateTimeField(
        default=timezone.now,
        help_text="When this event was claimed for processing",
    )

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When processing finished (successfully or not)",
    )

    error_message = models.TextField(
        blank=True,
        default="",
        help_text="Error details if processing failed",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Processed Webhook Event"
        verbose_name_plural = "Processed Webhook Events"
        indexes = [
            models.Index(fields=["status", "created_at"], name="escrow_whk_status_created_idx"),
            models.Index(fields=["status", "started_at"], name="escrow_whk_status_started_idx"),
        ]

    def __str__(self) -> str:
        return f"ProcessedWebhookEvent({self.event_id}, {self.event_type}, {self.status})"

    @classmethod
    def claim(
        cls, event_id: str, event_type: str, payload: dict | None = None
    ) -> tuple[ProcessedWebhookEvent | None, bool]:
        """
        Atomically claim an event for processing.

        Returns:
            (event, True) when this call inserted the row,
            (None, False) when the event was already claimed.
        """
        try:
            with transaction.atomic():
                event = cls.objects.create(
                    event_id=event_id,
                    event_type=event_type,
                    payload=payload or {},
                    status=WebhookEventStatus.PROCESSING,
                    started_at=timezone.now(),
                )
        except IntegrityError:
            return None, False
        return event, True

    def mark_completed(self) -> None:
        """Mark as completed and save."""
        self.status = WebhookEventStatus.COMPLETED
        self.completed_at = timezone.now()
        self.error_message = ""
        self.save(update_fields=["status", "completed_at", "error_message", "updated_at"])

    def mark_failed(self, error_message: str) -> None:
        """Mark as failed with the error and save."""
        self.status = WebhookEventStatus.FAILED
        self.completed_at = timezone.now()
        self.error_message = error_message[:5000]
        self.save(update_fields=["status", "completed_at", "error_message", "updated_at"])

    def get_object_id(self) -> str | None:
        """Return the id of the Stripe object the event is about."""
        try:
            return self.payload["data"]["object"]["id"]
        except (KeyError, TypeError):
            return None
