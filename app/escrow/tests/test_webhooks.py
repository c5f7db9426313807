"""
Tests for Stripe webhook processing.

Tests cover:
- parse_event mapping of Stripe payloads to typed events
- Reconciler idempotency (one claim per event id)
- Handler outcomes recorded on ProcessedWebhookEvent
- Webhook view status codes
"""

import json
from unittest.mock import MagicMock, patch

import pytest
from django.db import OperationalError
from django.test import RequestFactory

from escrow.exceptions import StateConflictError, WebhookHandlerError, WebhookSignatureError
from escrow.models import Payment, PayoutAccount, ProcessedWebhookEvent
from escrow.state_machines import (
    EscrowStatus,
    OnboardingStatus,
    PaymentEventSource,
    PaymentStatus,
    WebhookEventStatus,
)
from escrow.webhooks import WebhookReconciler, parse_event
from escrow.webhooks.events import (
    AccountUpdated,
    ChargeRefunded,
    DisputeCreated,
    PaymentIntentFailed,
    PaymentIntentSucceeded,
    UnknownEvent,
)
from escrow.webhooks.views import stripe_webhook


def stripe_event(event_type: str, obj: dict, event_id: str = "evt_test123") -> dict:
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


@pytest.fixture
def reconciler(gateway, ledger):
    return WebhookReconciler(gateway=gateway, ledger=ledger)


# =============================================================================
# parse_event
# =============================================================================


class TestParseEvent:
    @pytest.mark.parametrize(
        "event_type",
        ["payment_intent.succeeded", "payment_intent.amount_capturable_updated"],
    )
    def test_intent_authorized(self, event_type):
        event = parse_event(
            stripe_event(
                event_type,
                {"id": "pi_1", "status": "requires_capture", "latest_charge": {"id": "ch_1"}},
            )
        )

        assert isinstance(event, PaymentIntentSucceeded)
        assert event.intent_id == "pi_1"
        assert event.intent_status == "requires_capture"
        assert event.charge_id == "ch_1"

    def test_intent_failed_message(self):
        event = parse_event(
            stripe_event(
                "payment_intent.payment_failed",
                {"id": "pi_1", "last_payment_error": {"code": "card_declined", "message": "Your card was declined."}},
            )
        )

        assert isinstance(event, PaymentIntentFailed)
        assert event.failure_code == "card_declined"
        assert event.failure_message == "Your card was declined."

    def test_intent_failed_default_message(self):
        event = parse_event(stripe_event("payment_intent.payment_failed", {"id": "pi_1"}))

        assert event.failure_message == "Payment failed"

    def test_charge_refunded(self):
        event = parse_event(
            stripe_event(
                "charge.refunded",
                {
                    "id": "ch_1",
                    "payment_intent": "pi_1",
                    "amount_refunded": 10000,
                    "refunded": True,
                    "refunds": {"data": [{"id": "re_1"}]},
                },
            )
        )

        assert isinstance(event, ChargeRefunded)
        assert (event.charge_id, event.intent_id, event.refund_id) == ("ch_1", "pi_1", "re_1")
        assert event.fully_refunded is True

    def test_dispute_created(self):
        event = parse_event(
            stripe_event(
                "charge.dispute.created",
                {"id": "dp_1", "charge": "ch_1", "payment_intent": "pi_1", "reason": "fraudulent"},
            )
        )

        assert isinstance(event, DisputeCreated)
        assert event.dispute_id == "dp_1"
        assert event.reason == "fraudulent"

    def test_account_updated(self):
        event = parse_event(stripe_event("account.updated", {"id": "acct_1", "charges_enabled": True}))

        assert isinstance(event, AccountUpdated)
        assert event.account["charges_enabled"] is True

    def test_unhandled_type(self):
        event = parse_event(stripe_event("invoice.paid", {"id": "in_1"}))

        assert isinstance(event, UnknownEvent)
        assert event.object_id == "in_1"

    def test_malformed_payload_does_not_raise(self):
        event = parse_event({"id": "evt_1", "type": "charge.refunded"})

        assert isinstance(event, ChargeRefunded)
        assert event.charge_id == ""
        assert event.refund_id is None


# =============================================================================
# Reconciler
# =============================================================================


@pytest.mark.django_db
class TestWebhookReconciler:
    def test_authorization_moves_payment_to_processing(self, reconciler, pending_payment):
        record = reconciler.process(
            stripe_event(
                "payment_intent.amount_capturable_updated",
                {"id": pending_payment.external_intent_id, "status": "requires_capture"},
            )
        )

        payment = Payment.objects.get(pk=pending_payment.pk)
        assert payment.status == PaymentStatus.PROCESSING
        assert payment.last_webhook_event_id == "evt_test123"
        assert payment.events.get().source == PaymentEventSource.WEBHOOK
        assert record.status == WebhookEventStatus.COMPLETED

    def test_duplicate_delivery_is_ignored(self, reconciler, pending_payment):
        data = stripe_event("payment_intent.succeeded", {"id": pending_payment.external_intent_id})
        reconciler.process(data)

        assert reconciler.process(data) is None
        assert ProcessedWebhookEvent.objects.filter(event_id="evt_test123").count() == 1
        assert Payment.objects.get(pk=pending_payment.pk).events.count() == 1

    def test_unknown_intent_is_recorded_without_changes(self, reconciler, pending_payment):
        record = reconciler.process(stripe_event("payment_intent.succeeded", {"id": "pi_unknown"}))

        assert record.status == WebhookEventStatus.COMPLETED
        assert Payment.objects.get(pk=pending_payment.pk).status == PaymentStatus.PENDING

    def test_missing_intent_id_marks_failed(self, reconciler):
        record = reconciler.process(stripe_event("payment_intent.succeeded", {}))

        assert record.status == WebhookEventStatus.FAILED
        assert record.error_message.startswith("[INVALID_WEBHOOK_PAYLOAD]")

    def test_payment_failed(self, reconciler, processing_payment):
        reconciler.process(
            stripe_event(
                "payment_intent.payment_failed",
                {"id": processing_payment.external_intent_id, "last_payment_error": {"message": "Declined"}},
            )
        )

        payment = Payment.objects.get(pk=processing_payment.pk)
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_reason == "Declined"

    def test_stale_failure_for_settled_payment_ignored(self, reconciler, completed_payment):
        record = reconciler.process(
            stripe_event("payment_intent.payment_failed", {"id": completed_payment.external_intent_id})
        )

        assert record.status == WebhookEventStatus.COMPLETED
        assert Payment.objects.get(pk=completed_payment.pk).status == PaymentStatus.COMPLETED

    def test_full_refund(self, reconciler, processing_payment):
        reconciler.process(
            stripe_event(
                "charge.refunded",
                {
                    "id": "ch_1",
                    "payment_intent": processing_payment.external_intent_id,
                    "refunded": True,
                    "amount_refunded": processing_payment.amount,
                    "refunds": {"data": [{"id": "re_dash"}]},
                },
            )
        )

        payment = Payment.objects.get(pk=processing_payment.pk)
        assert payment.escrow_status == EscrowStatus.REFUNDED
        assert payment.external_refund_id == "re_dash"

    def test_partial_refund_leaves_state(self, reconciler, processing_payment):
        record = reconciler.process(
            stripe_event(
                "charge.refunded",
                {
                    "id": "ch_1",
                    "payment_intent": processing_payment.external_intent_id,
                    "refunded": False,
                    "amount_refunded": 100,
                },
            )
        )

        assert record.status == WebhookEventStatus.COMPLETED
        assert Payment.objects.get(pk=processing_payment.pk).escrow_status == EscrowStatus.HELD

    def test_dispute_resolved_by_charge(self, reconciler, processing_payment):
        Payment.objects.filter(pk=processing_payment.pk).update(external_charge_id="ch_disputed")

        reconciler.process(stripe_event("charge.dispute.created", {"id": "dp_1", "charge": "ch_disputed"}))

        assert Payment.objects.get(pk=processing_payment.pk).status == PaymentStatus.DISPUTED

    def test_dispute_on_released_payment_recorded_as_failed(self, reconciler, completed_payment):
        data = stripe_event("charge.dispute.created", {"id": "dp_1", "charge": completed_payment.external_charge_id})

        with pytest.raises(WebhookHandlerError) as exc_info:
            reconciler.process(data)

        assert isinstance(exc_info.value.__cause__, StateConflictError)

        record = ProcessedWebhookEvent.objects.get(event_id="evt_test123")
        assert record.status == WebhookEventStatus.FAILED
        assert record.error_message.startswith("StateConflictError")
        assert Payment.objects.get(pk=completed_payment.pk).escrow_status == EscrowStatus.RELEASED

    def test_account_updated(self, reconciler, payee_account):
        reconciler.process(
            stripe_event(
                "account.updated",
                {
                    "id": payee_account.stripe_account_id,
                    "details_submitted": True,
                    "charges_enabled": False,
                    "payouts_enabled": False,
                },
            )
        )

        account = PayoutAccount.objects.get(pk=payee_account.pk)
        assert account.onboarding_status == OnboardingStatus.INCOMPLETE
        assert account.payouts_enabled is False

    def test_unhandled_event_completed(self, reconciler):
        record = reconciler.process(stripe_event("invoice.paid", {"id": "in_1"}))

        assert record.status == WebhookEventStatus.COMPLETED

    def test_missing_event_id_rejected(self, reconciler):
        with pytest.raises(WebhookSignatureError):
            reconciler.process({"type": "invoice.paid"})

        assert ProcessedWebhookEvent.objects.count() == 0

    def test_handle_verifies_signature(self, reconciler, gateway):
        gateway.verify_webhook_signature.return_value = stripe_event("invoice.paid", {"id": "in_1"})

        record = reconciler.handle(b"{}", "t=1,v1=abc")

        gateway.verify_webhook_signature.assert_called_once_with(b"{}", "t=1,v1=abc")
        assert record.event_id == "evt_test123"


# =============================================================================
# Webhook View
# =============================================================================


@pytest.fixture
def rf():
    return RequestFactory()


def make_webhook_request(rf, payload: dict, signature: str = "t=1,v1=abc"):
    return rf.post(
        "/api/v1/payments/webhooks/stripe/",
        data=json.dumps(payload),
        content_type="application/json",
        HTTP_STRIPE_SIGNATURE=signature,
    )


class TestStripeWebhookView:
    @pytest.fixture
    def mock_reconciler(self):
        reconciler = MagicMock(spec=WebhookReconciler)
        with patch("escrow.webhooks.views.get_webhook_reconciler", return_value=reconciler):
            yield reconciler

    def test_invalid_signature_returns_400(self, rf, mock_reconciler):
        mock_reconciler.handle.side_effect = WebhookSignatureError("Invalid signature")

        response = stripe_webhook(make_webhook_request(rf, {"id": "evt_1"}, signature="bad"))

        assert response.status_code == 400
        assert b"Invalid signature" in response.content

    def test_processed_event_returns_200(self, rf, mock_reconciler):
        mock_reconciler.handle.return_value = MagicMock(spec=ProcessedWebhookEvent)

        response = stripe_webhook(make_webhook_request(rf, {"id": "evt_1"}))

        assert response.status_code == 200
        assert response.content == b"Accepted"
        body, signature = mock_reconciler.handle.call_args.args
        assert json.loads(body) == {"id": "evt_1"}
        assert signature == "t=1,v1=abc"

    def test_duplicate_returns_200(self, rf, mock_reconciler):
        mock_reconciler.handle.return_value = None

        response = stripe_webhook(make_webhook_request(rf, {"id": "evt_1"}))

        assert response.status_code == 200
        assert response.content == b"Already processed"

    def test_handler_failure_still_returns_200(self, rf, mock_reconciler):
        mock_reconciler.handle.side_effect = WebhookHandlerError("Handler for charge.dispute.created failed")

        response = stripe_webhook(make_webhook_request(rf, {"id": "evt_1"}))

        assert response.status_code == 200
        assert response.content == b"Recorded"

    def test_get_not_allowed(self, rf, mock_reconciler):
        response = stripe_webhook(rf.get("/api/v1/payments/webhooks/stripe/"))

        assert response.status_code == 405
        mock_reconciler.handle.assert_not_called()

    def test_unexpected_error_is_not_acknowledged(self, rf, mock_reconciler):
        mock_reconciler.handle.side_effect = OperationalError("db down")

        with pytest.raises(OperationalError):
            stripe_webhook(make_webhook_request(rf, {"id": "evt_1"}))


@pytest.mark.django_db
class TestStripeWebhookViewRecording:
    @pytest.fixture(autouse=True)
    def use_reconciler(self, reconciler):
        with patch("escrow.webhooks.views.get_webhook_reconciler", return_value=reconciler):
            yield

    def test_claim_failure_propagates_so_stripe_redelivers(self, rf, gateway):
        gateway.verify_webhook_signature.return_value = stripe_event("invoice.paid", {"id": "in_1"})

        with patch.object(ProcessedWebhookEvent.objects, "create", side_effect=OperationalError("db down")):
            with pytest.raises(OperationalError):
                stripe_webhook(make_webhook_request(rf, {"id": "evt_test123"}))

        assert ProcessedWebhookEvent.objects.count() == 0

    def test_handler_failure_recorded_then_acknowledged(self, rf, gateway, completed_payment):
        gateway.verify_webhook_signature.return_value = stripe_event(
            "charge.dispute.created", {"id": "dp_1", "charge": completed_payment.external_charge_id}
        )

        response = stripe_webhook(make_webhook_request(rf, {"id": "evt_test123"}))

        assert response.status_code == 200
        assert response.content == b"Recorded"
        assert ProcessedWebhookEvent.objects.get(event_id="evt_test123").status == WebhookEventStatus.FAILED

    def test_failure_to_record_handler_error_propagates(self, rf, gateway, completed_payment):
        gateway.verify_webhook_signature.return_value = stripe_event(
            "charge.dispute.created", {"id": "dp_1", "charge": completed_payment.external_charge_id}
        )

        with patch.object(ProcessedWebhookEvent, "mark_failed", side_effect=OperationalError("db down")):
            with pytest.raises(OperationalError):
                stripe_webhook(make_webhook_request(rf, {"id": "evt_test123"}))

        assert ProcessedWebhookEvent.objects.get(event_id="evt_test123").status == WebhookEventStatus.PROCESSING
