"""
Webhook endpoint for Stripe.

The view answers 400 only when the signature can't be verified. Every
verified event that was recorded is answered with 200, including events
whose handler failed, so Stripe does not redeliver something already
recorded. Errors before the row is durable propagate as a 500.

Usage:
    # In urls.py
    from escrow.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe-webhook"),
    ]
"""

from __future__ import annotations

import logging
from functools import lru_cache

from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from escrow.adapters import get_stripe_adapter
from escrow.exceptions import WebhookHandlerError, WebhookSignatureError
from escrow.services import get_ledger
from escrow.webhooks.reconciler import WebhookReconciler

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_webhook_reconciler() -> WebhookReconciler:
    return WebhookReconciler(gateway=get_stripe_adapter(), ledger=get_ledger())


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive a Stripe webhook delivery.

    Returns:
        HttpResponse with status:
        - 200: Event recorded (processed, failed or duplicate)
        - 400: Missing or invalid signature
        - 500: Event could not be recorded (Stripe redelivers)

    Example Stripe-Signature header:
        t=1614556800,v1=xxx,v0=yyy
    """
    signature = request.headers.get("Stripe-Signature", "")

    try:
        record = get_webhook_reconciler().handle(request.body, signature)
    except WebhookSignatureError as e:
        logger.warning(
            "Webhook signature verification failed",
            extra={"error": e.message},
        )
        return HttpResponse("Invalid signature", status=400)
    except WebhookHandlerError:
        # Row is already FAILED; anything else propagates as a 500 so Stripe redelivers
        return HttpResponse("Recorded", status=200)

    if record is None:
        return HttpResponse("Already processed", status=200)
    return HttpResponse("Accepted", status=200)
