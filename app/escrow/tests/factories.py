"""
Factory Boy factories for escrow test data.

Usage:
    from escrow.tests.factories import PaymentFactory, PayoutAccountFactory

    # Pending payment of $100 with a 5% fee
    payment = PaymentFactory()

    # Payment in a specific state
    payment = PaymentFactory(status=PaymentStatus.PROCESSING)
    payment = PaymentFactory(
        status=PaymentStatus.COMPLETED,
        escrow_status=EscrowStatus.RELEASED,
    )
"""

import uuid
from decimal import Decimal

import factory
from django.contrib.auth import get_user_model
from django.utils import timezone

from escrow.models import Payment, PayoutAccount, ProcessedWebhookEvent
from escrow.state_machines import (
    EscrowStatus,
    OnboardingStatus,
    PaymentStatus,
    PaymentType,
    WebhookEventStatus,
)


class UserFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = get_user_model()
        skip_postgeneration_save = True

    username = factory.Sequence(lambda n: f"user{n}")
    email = factory.Sequence(lambda n: f"user{n}@example.com")
    password = factory.PostGenerationMethodCall("set_password", "testpass123")
    is_active = True


class PayoutAccountFactory(factory.django.DjangoModelFactory):
    """
    Factory for PayoutAccount instances.

    Default creates a payout-eligible account (COMPLETE, payouts enabled).

    Example:
        PayoutAccountFactory(
            onboarding_status=OnboardingStatus.PENDING,
            payouts_enabled=False,
        )
    """

    class Meta:
        model = PayoutAccount

    user = factory.SubFactory(UserFactory)
    stripe_account_id = factory.Sequence(lambda n: f"acct_test_{n}_{uuid.uuid4().hex[:8]}")
    onboarding_status = OnboardingStatus.COMPLETE
    payouts_enabled = True
    charges_enabled = True
    details_submitted = True


class PaymentFactory(factory.django.DjangoModelFactory):
    """
    Factory for Payment instances.

    Default creates a pending, held $100 USD milestone payment with a 5%
    platform fee. Pass ``status`` / ``escrow_status`` to start elsewhere in
    the lifecycle; the factory sets the matching timestamps.
    """

    class Meta:
        model = Payment

    contract_id = factory.Sequence(lambda n: f"ctr_{n}")
    milestone_id = factory.Sequence(lambda n: f"ms_{n}")
    payment_type = PaymentType.MILESTONE
    payer = factory.SubFactory(UserFactory)
    payee = factory.SubFactory(UserFactory)
    amount = 10000
    platform_fee_percentage = Decimal("5.00")
    platform_fee = factory.LazyAttribute(lambda o: o.amount * 5 // 100)
    net_amount = factory.LazyAttribute(lambda o: o.amount - o.platform_fee)
    currency = "usd"
    external_intent_id = factory.Sequence(lambda n: f"pi_test_{n}_{uuid.uuid4().hex[:8]}")
    status = PaymentStatus.PENDING
    escrow_status = EscrowStatus.HELD
    paid_at = factory.LazyAttribute(
        lambda o: timezone.now() if o.status != PaymentStatus.PENDING else None
    )
    released_at = factory.LazyAttribute(
        lambda o: timezone.now() if o.escrow_status == EscrowStatus.RELEASED else None
    )
    metadata = factory.LazyFunction(dict)


class ProcessedWebhookEventFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = ProcessedWebhookEvent

    event_id = factory.Sequence(lambda n: f"evt_test_{n}")
    event_type = "payment_intent.succeeded"
    payload = factory.LazyAttribute(
        lambda o: {"id": o.event_id, "type": o.event_type, "data": {"object": {"id": "pi_x"}}}
    )
    status = WebhookEventStatus.COMPLETED
    started_at = factory.LazyFunction(timezone.now)
    completed_at = factory.LazyFunction(timezone.now)
