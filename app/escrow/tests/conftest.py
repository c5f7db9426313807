"""
Pytest fixtures for escrow tests.

The ledger under test is built around a MagicMock gateway shaped like
StripeAdapter, so no test talks to Stripe. Payment fixtures start in
a given lifecycle state via the factory.

Usage:
    def test_release(ledger, gateway, processing_payment, intent_result):
        gateway.capture_payment_intent.return_value = intent_result(status="succeeded")
        payment = ledger.release(processing_payment.id, caller_id=processing_payment.payer_id)
"""

from unittest.mock import MagicMock

import pytest

from escrow.adapters import AccountResult, PaymentIntentResult, RefundResult, StripeAdapter
from escrow.services import EscrowLedger, PayoutAccountService
from escrow.state_machines import EscrowStatus, PaymentStatus
from escrow.tests.factories import PaymentFactory, PayoutAccountFactory, UserFactory


# =============================================================================
# Gateway Fixtures
# =============================================================================


@pytest.fixture
def intent_result():
    """Build a PaymentIntentResult."""

    def _create(
        id: str = "pi_test123",
        status: str = "requires_payment_method",
        amount_cents: int = 10000,
        latest_charge: str | None = None,
        client_secret: str | None = "pi_test123_secret_abc",
    ) -> PaymentIntentResult:
        return PaymentIntentResult(
            id=id,
            status=status,
            amount_cents=amount_cents,
            currency="usd",
            amount_capturable=amount_cents if status == "requires_capture" else 0,
            latest_charge=latest_charge,
            client_secret=client_secret,
        )

    return _create


@pytest.fixture
def gateway(intent_result):
    """
    Mock StripeAdapter with successful defaults.

    capture returns a succeeded intent with charge ch_test123; retrieve
    returns an authorized (requires_capture) intent.
    """
    mock = MagicMock(spec=StripeAdapter)
    mock.create_payment_intent.return_value = intent_result()
    mock.retrieve_payment_intent.return_value = intent_result(status="requires_capture")
    mock.capture_payment_intent.return_value = intent_result(
        status="succeeded", latest_charge="ch_test123"
    )
    mock.cancel_payment_intent.return_value = intent_result(status="canceled")
    mock.create_refund.return_value = RefundResult(
        id="re_test123",
        amount_cents=10000,
        currency="usd",
        status="succeeded",
        payment_intent_id="pi_test123",
    )
    mock.create_connected_account.return_value = AccountResult(id="acct_new123")
    return mock


@pytest.fixture
def payout_service(gateway):
    return PayoutAccountService(gateway)


@pytest.fixture
def ledger(gateway, payout_service):
    return EscrowLedger(gateway, payout_service)


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def payer(db):
    return UserFactory()


@pytest.fixture
def payee(db):
    return UserFactory()


@pytest.fixture
def other_user(db):
    return UserFactory()


@pytest.fixture
def payee_account(db, payee):
    """Payout-eligible account for the payee."""
    return PayoutAccountFactory(user=payee)


# =============================================================================
# Payment State Fixtures
# =============================================================================


@pytest.fixture
def pending_payment(db, payer, payee):
    return PaymentFactory(payer=payer, payee=payee)


@pytest.fixture
def processing_payment(db, payer, payee):
    return PaymentFactory(payer=payer, payee=payee, status=PaymentStatus.PROCESSING)


@pytest.fixture
def completed_payment(db, payer, payee):
    return PaymentFactory(
        payer=payer,
        payee=payee,
        status=PaymentStatus.COMPLETED,
        escrow_status=EscrowStatus.RELEASED,
        external_charge_id="ch_done",
    )


@pytest.fixture
def disputed_payment(db, payer, payee):
    return PaymentFactory(payer=payer, payee=payee, status=PaymentStatus.DISPUTED)
