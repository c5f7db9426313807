"""
Tests for the escrow sweeps.

Tests cover:
- Auto-release of due payments and idempotent re-runs
- Per-payment failure isolation
- Stuck-payment cancellation
- Pending-payment reconciliation outcomes
- Celery task wrappers
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from django.utils import timezone

from escrow.exceptions import GatewayUnavailableError, NotCapturableError
from escrow.models import Payment
from escrow.state_machines import EscrowStatus, PaymentEventSource, PaymentEventType, PaymentStatus
from escrow.tests.factories import PaymentFactory
from escrow.workers import (
    cancel_stuck_payments,
    process_auto_releases,
    reconcile_pending_payments,
    run_auto_release_sweep,
    run_reconciliation,
    run_stuck_payment_sweep,
)


def age_payment(payment, hours):
    Payment.objects.filter(pk=payment.pk).update(created_at=timezone.now() - timedelta(hours=hours))


# =============================================================================
# Auto-release
# =============================================================================


@pytest.mark.django_db
class TestAutoReleaseSweep:
    @pytest.fixture
    def due_payment(self, payer, payee):
        return PaymentFactory(
            payer=payer,
            payee=payee,
            status=PaymentStatus.PROCESSING,
            auto_release=True,
            auto_release_at=timezone.now() - timedelta(minutes=5),
        )

    def test_releases_due_payment(self, ledger, gateway, due_payment):
        result = run_auto_release_sweep(ledger)

        assert result == {"processed": 1, "errors": []}
        payment = Payment.objects.get(pk=due_payment.pk)
        assert payment.escrow_status == EscrowStatus.RELEASED
        event = payment.events.get(event_type=PaymentEventType.RELEASED)
        assert event.source == PaymentEventSource.SCHEDULER
        assert event.actor_id is None

    def test_second_run_is_noop(self, ledger, gateway, due_payment):
        run_auto_release_sweep(ledger)
        result = run_auto_release_sweep(ledger)

        assert result["processed"] == 0
        assert gateway.capture_payment_intent.call_count == 1

    def test_overlapping_sweeps_release_once(self, ledger, gateway, intent_result, due_payment):
        captured = intent_result(id=due_payment.external_intent_id, status="succeeded", latest_charge="ch_once")
        calls = []
        overlapping = []

        def capture(intent_id, **kwargs):
            calls.append(intent_id)
            if len(calls) == 1:
                # A second run selects the same payment while this capture is in flight
                overlapping.append(run_auto_release_sweep(ledger))
                return captured
            raise NotCapturableError("already captured", intent=captured)

        gateway.capture_payment_intent.side_effect = capture

        first = run_auto_release_sweep(ledger)

        assert first == {"processed": 1, "errors": []}
        assert overlapping == [{"processed": 1, "errors": []}]
        payment = Payment.objects.get(pk=due_payment.pk)
        assert (payment.status, payment.escrow_status) == (PaymentStatus.COMPLETED, EscrowStatus.RELEASED)
        assert payment.external_charge_id == "ch_once"
        assert payment.events.filter(event_type=PaymentEventType.RELEASED).count() == 1
        assert calls == [due_payment.external_intent_id] * 2

    def test_not_yet_due_left_alone(self, ledger, gateway, payer, payee):
        PaymentFactory(
            payer=payer,
            payee=payee,
            status=PaymentStatus.PROCESSING,
            auto_release=True,
            auto_release_at=timezone.now() + timedelta(days=1),
        )

        result = run_auto_release_sweep(ledger)

        assert result["processed"] == 0
        gateway.capture_payment_intent.assert_not_called()

    def test_one_failure_does_not_stop_the_batch(self, ledger, gateway, intent_result, payer, payee):
        now = timezone.now()
        failing = PaymentFactory(
            payer=payer,
            payee=payee,
            status=PaymentStatus.PROCESSING,
            auto_release=True,
            auto_release_at=now - timedelta(hours=2),
        )
        succeeding = PaymentFactory(
            payer=payer,
            payee=payee,
            status=PaymentStatus.PROCESSING,
            auto_release=True,
            auto_release_at=now - timedelta(hours=1),
        )

        def capture(intent_id, **kwargs):
            if intent_id == failing.external_intent_id:
                raise GatewayUnavailableError("Stripe down")
            return intent_result(id=intent_id, status="succeeded", latest_charge="ch_ok")

        gateway.capture_payment_intent.side_effect = capture

        result = run_auto_release_sweep(ledger, now=now)

        assert result["processed"] == 1
        assert result["errors"] == [
            {
                "payment_id": str(failing.id),
                "error_code": "GATEWAY_UNAVAILABLE",
                "error": "Stripe down",
            }
        ]
        assert Payment.objects.get(pk=failing.pk).status == PaymentStatus.PROCESSING
        assert Payment.objects.get(pk=succeeding.pk).status == PaymentStatus.COMPLETED

    def test_batch_size_limits_run(self, ledger, gateway, payer, payee):
        for _ in range(3):
            PaymentFactory(
                payer=payer,
                payee=payee,
                status=PaymentStatus.PROCESSING,
                auto_release=True,
                auto_release_at=timezone.now() - timedelta(minutes=1),
            )

        result = run_auto_release_sweep(ledger, batch_size=2)

        assert result["processed"] == 2

    def test_task_uses_shared_ledger(self, ledger, due_payment):
        with patch("escrow.services.get_ledger", return_value=ledger):
            result = process_auto_releases()

        assert result["processed"] == 1


# =============================================================================
# Stuck Payments
# =============================================================================


@pytest.mark.django_db
class TestStuckPaymentSweep:
    @pytest.fixture(autouse=True)
    def stuck_hours(self, settings):
        settings.ESCROW_STUCK_PAYMENT_HOURS = 24

    def test_cancels_abandoned_payment(self, ledger, gateway, intent_result, pending_payment):
        age_payment(pending_payment, hours=30)
        gateway.retrieve_payment_intent.return_value = intent_result(status="requires_payment_method")

        result = run_stuck_payment_sweep(ledger)

        assert result == {"processed": 1, "errors": []}
        payment = Payment.objects.get(pk=pending_payment.pk)
        assert payment.status == PaymentStatus.CANCELLED
        assert payment.events.get().source == PaymentEventSource.SWEEPER

    def test_recent_payment_left_alone(self, ledger, gateway, pending_payment):
        age_payment(pending_payment, hours=2)

        result = run_stuck_payment_sweep(ledger)

        assert result["processed"] == 0
        gateway.retrieve_payment_intent.assert_not_called()

    def test_authorized_intent_reported_not_cancelled(self, ledger, gateway, pending_payment):
        age_payment(pending_payment, hours=30)

        result = run_stuck_payment_sweep(ledger)

        assert result["processed"] == 0
        assert result["errors"][0]["error_code"] == "STATE_CONFLICT"
        assert Payment.objects.get(pk=pending_payment.pk).status == PaymentStatus.PENDING
        gateway.cancel_payment_intent.assert_not_called()

    def test_task(self, ledger, gateway, intent_result, pending_payment):
        age_payment(pending_payment, hours=30)
        gateway.retrieve_payment_intent.return_value = intent_result(status="requires_payment_method")

        with patch("escrow.services.get_ledger", return_value=ledger):
            result = cancel_stuck_payments()

        assert result["processed"] == 1


# =============================================================================
# Reconciliation
# =============================================================================


@pytest.mark.django_db
class TestReconciliation:
    @pytest.fixture(autouse=True)
    def reconcile_after(self, settings):
        settings.ESCROW_RECONCILE_AFTER_MINUTES = 30

    def test_authorized_intent_moves_to_processing(self, ledger, gateway, pending_payment):
        age_payment(pending_payment, hours=1)

        result = run_reconciliation(ledger)

        assert result["outcomes"] == {"processing": 1}
        payment = Payment.objects.get(pk=pending_payment.pk)
        assert payment.status == PaymentStatus.PROCESSING
        assert payment.events.get().source == PaymentEventSource.RECONCILER

    def test_cancelled_intent_cancels_payment(self, ledger, gateway, intent_result, pending_payment):
        age_payment(pending_payment, hours=1)
        gateway.retrieve_payment_intent.return_value = intent_result(status="canceled")

        result = run_reconciliation(ledger)

        assert result["outcomes"] == {"cancelled": 1}
        assert Payment.objects.get(pk=pending_payment.pk).status == PaymentStatus.CANCELLED
        gateway.cancel_payment_intent.assert_not_called()

    def test_unpaid_intent_left_pending(self, ledger, gateway, intent_result, pending_payment):
        age_payment(pending_payment, hours=1)
        gateway.retrieve_payment_intent.return_value = intent_result(status="requires_payment_method")

        result = run_reconciliation(ledger)

        assert result["outcomes"] == {"requires_payment_method": 1}
        assert Payment.objects.get(pk=pending_payment.pk).status == PaymentStatus.PENDING

    def test_gateway_error_collected(self, ledger, gateway, pending_payment):
        age_payment(pending_payment, hours=1)
        gateway.retrieve_payment_intent.side_effect = GatewayUnavailableError("Stripe down")

        result = run_reconciliation(ledger)

        assert result["processed"] == 0
        assert result["outcomes"] == {}
        assert result["errors"][0]["error_code"] == "GATEWAY_UNAVAILABLE"

    def test_task(self, ledger, pending_payment):
        age_payment(pending_payment, hours=1)

        with patch("escrow.services.get_ledger", return_value=ledger):
            result = reconcile_pending_payments()

        assert result["outcomes"] == {"processing": 1}
