"""
Escrow services.

The ledger and the payout account service are built once per process
around the shared Stripe adapter. Tests construct EscrowLedger directly
with a mock gateway instead.

Usage:
    from escrow.services import get_ledger

    payment = get_ledger().release(payment_id, caller_id=request.user.id)
"""

from functools import lru_cache

from escrow.adapters import get_stripe_adapter
from escrow.services.ledger import CreatePaymentResult, EscrowLedger, calculate_fee
from escrow.services.payout_accounts import PayoutAccountService, derive_onboarding_status
from escrow.services.stats import PaymentStatsService


@lru_cache(maxsize=1)
def get_payout_account_service() -> PayoutAccountService:
    return PayoutAccountService(gateway=get_stripe_adapter())


@lru_cache(maxsize=1)
def get_ledger() -> EscrowLedger:
    return EscrowLedger(gateway=get_stripe_adapter(), accounts=get_payout_account_service())


__all__ = [
    "CreatePaymentResult",
    "EscrowLedger",
    "PaymentStatsService",
    "PayoutAccountService",
    "calculate_fee",
    "derive_onboarding_status",
    "get_ledger",
    "get_payout_account_service",
]
