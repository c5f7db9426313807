"""
Escrow app for milestone payments.

This app handles:
- Payment creation with a manual-capture Stripe PaymentIntent
- Holding funds in escrow until release, refund, cancellation or dispute
- Reconciling Stripe webhook deliveries against local payment state
- Scheduled auto-release, stuck-payment cancellation and reconciliation
- Payee payout account onboarding (Stripe Connect Express)

Related modules:
    - escrow.services.ledger: the only writer of Payment state
    - escrow.adapters.stripe_adapter: the Stripe SDK wrapper
    - escrow.webhooks: signature check, dedupe and dispatch
    - escrow.workers: stateless sweep functions run by Celery beat

Usage:
    from escrow.services import get_ledger

    result = get_ledger().create_payment(
        payer=request.user,
        payee_id=payee.id,
        contract_id=contract_id,
        amount=10000,
    )
    client_secret = result.client_secret
"""
