"""
Celery tasks for the escrow app.

This module provides:
- Party notifications after terminal and dispute transitions
- Pruning of completed webhook events
- Reporting of webhook events stuck in processing
- A weekly payment summary

The sweep tasks live in escrow.workers and are imported here so Celery
autodiscovery registers them.

Usage:
    from escrow.tasks import notify_payment_event

    notify_payment_event.delay(str(payment.id), "released")
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail
from django.db.models import Count, Sum
from django.utils import timezone

from escrow.models import Payment, ProcessedWebhookEvent
from escrow.state_machines import PaymentEventType, PaymentStatus, WebhookEventStatus
from escrow.workers import (  # noqa: F401
    cancel_stuck_payments,
    process_auto_releases,
    reconcile_pending_payments,
)

logger = logging.getLogger(__name__)


NOTIFICATION_SUBJECTS = {
    PaymentEventType.RELEASED: "Escrow payment released",
    PaymentEventType.REFUNDED: "Escrow payment refunded",
    PaymentEventType.CANCELLED: "Escrow payment cancelled",
    PaymentEventType.FAILED: "Escrow payment failed",
    PaymentEventType.DISPUTED: "Escrow payment disputed",
}


# =============================================================================
# Notifications
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
)
def notify_payment_event(self, payment_id: str, event_type: str) -> dict:
    """
    Email both parties about a payment transition.

    Queued by the ledger with transaction.on_commit, so a failure here
    never affects the payment. Errors are retried by Celery.
    """
    payment = Payment.objects.select_related("payer", "payee").filter(pk=payment_id).first()
    if payment is None:
        logger.warning("Notification for unknown payment", extra={"payment_id": payment_id})
        return {"status": "not_found", "payment_id": payment_id}

    recipients = [email for email in (payment.payer.email, payment.payee.email) if email]
    if not recipients:
        return {"status": "no_recipients", "payment_id": payment_id}

    amount = f"{payment.amount / 100:.2f} {payment.currency.upper()}"
    subject = NOTIFICATION_SUBJECTS.get(event_type, "Escrow payment updated")
    message = (
        f"Payment {payment.id} for contract {payment.contract_id} ({amount}) "
        f"is now {payment.status}."
    )
    if payment.failure_reason and event_type == PaymentEventType.FAILED:
        message += f"\n\nReason: {payment.failure_reason}"

    send_mail(
        subject=subject,
        message=message,
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=recipients,
    )

    logger.info(
        "Payment notification sent",
        extra={"payment_id": payment_id, "event_type": event_type, "recipient_count": len(recipients)},
    )
    return {"status": "sent", "payment_id": payment_id}


# =============================================================================
# Webhook Maintenance
# =============================================================================


@shared_task
def cleanup_processed_webhooks(days: int | None = None) -> dict:
    """
    Delete completed webhook events older than the retention window.

    Failed and processing rows are kept for operator follow-up.

    Args:
        days: Retention in days (default: WEBHOOK_EVENT_RETENTION_DAYS)
    """
    days = days if days is not None else settings.WEBHOOK_EVENT_RETENTION_DAYS
    cutoff = timezone.now() - timedelta(days=days)

    deleted_count, _ = ProcessedWebhookEvent.objects.filter(
        status=WebhookEventStatus.COMPLETED,
        completed_at__lt=cutoff,
    ).delete()

    if deleted_count > 0:
        logger.info(
            f"Deleted {deleted_count} old webhook events",
            extra={"deleted_count": deleted_count, "cutoff_date": cutoff.isoformat()},
        )

    return {"deleted_count": deleted_count}


@shared_task
def report_stuck_webhook_events() -> dict:
    """
    Log webhook events stuck in processing.

    These mean a process died mid-handling. They are never replayed
    automatically; an operator checks the payment and the Stripe event.
    """
    threshold = timezone.now() - timedelta(minutes=settings.WEBHOOK_STUCK_AFTER_MINUTES)
    stuck = ProcessedWebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSING,
        started_at__lt=threshold,
    ).order_by("started_at")

    stuck_ids = []
    for event in stuck:
        stuck_ids.append(event.event_id)
        logger.error(
            "Webhook event stuck in processing",
            extra={
                "event_id": event.event_id,
                "event_type": event.event_type,
                "object_id": event.get_object_id(),
                "stuck_since": event.started_at.isoformat(),
            },
        )

    return {"stuck_count": len(stuck_ids), "event_ids": stuck_ids}


# =============================================================================
# Reporting
# =============================================================================


@shared_task
def report_weekly_payment_summary() -> dict:
    """Log per-status counts and totals for payments created in the last 7 days."""
    now = timezone.now()
    since = now - timedelta(days=7)

    rows = (
        Payment.objects.filter(created_at__gte=since)
        .values("status")
        .annotate(count=Count("id"), total=Sum("amount"))
        .order_by("status")
    )
    by_status = {row["status"]: {"count": row["count"], "total": row["total"] or 0} for row in rows}

    stale_before = now - timedelta(hours=settings.ESCROW_STUCK_PAYMENT_HOURS)
    stale_count = Payment.objects.filter(
        status__in=[PaymentStatus.PENDING, PaymentStatus.PROCESSING],
        created_at__lt=stale_before,
    ).count()

    summary = {
        "since": since.isoformat(),
        "by_status": by_status,
        "stale_open_payments": stale_count,
    }
    logger.info("Weekly escrow payment summary", extra=summary)
    return summary
