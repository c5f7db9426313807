"""
Payee account service: Stripe Connect onboarding and payout eligibility.

The ledger consults this service before creating a payment; it never owns
PayoutAccount rows. Webhooks for account.updated and capability.updated
are routed here by the reconciler.

Usage:
    from escrow.services import get_payout_account_service

    accounts = get_payout_account_service()
    account = accounts.create_account(request.user)
    link = accounts.create_onboarding_link(request.user)
    # redirect the user to link.url
"""

from __future__ import annotations

from typing import Any

from django.conf import settings
from django.db import IntegrityError

from core.services import BaseService, ServiceResult

from escrow.adapters import (
    AccountLinkResult,
    AccountResult,
    IdempotencyKeyGenerator,
    StripeAdapter,
)
from escrow.exceptions import PayoutAccountNotFoundError
from escrow.models import PayoutAccount
from escrow.state_machines import OnboardingStatus

ONBOARDING_REFRESH_PATH = "/payouts/onboarding/refresh"
ONBOARDING_RETURN_PATH = "/payouts/onboarding/complete"


def derive_onboarding_status(result: AccountResult) -> str:
    """
    Map Stripe account flags to an onboarding status.

    disabled_reason wins over everything else; an account with details
    submitted and charges enabled is complete.
    """
    if result.disabled_reason:
        return OnboardingStatus.REJECTED
    if result.details_submitted and result.charges_enabled:
        return OnboardingStatus.COMPLETE
    if result.details_submitted:
        return OnboardingStatus.INCOMPLETE
    return OnboardingStatus.PENDING


class PayoutAccountService(BaseService):
    """
    Tracks payout-account onboarding and eligibility for payees.

    Args:
        gateway: StripeAdapter used for Connect account calls
    """

    def __init__(self, gateway: StripeAdapter):
        self.gateway = gateway

    # =========================================================================
    # Eligibility (used by the ledger)
    # =========================================================================

    def is_payout_eligible(self, payee_id) -> bool:
        return self.get_destination_account(payee_id) is not None

    def get_destination_account(self, payee_id) -> str | None:
        """Return the payee's Stripe account id if it can receive funds, else None."""
        account = PayoutAccount.objects.filter(user_id=payee_id).first()
        if account is None or not account.is_payout_eligible:
            return None
        return account.stripe_account_id

    # =========================================================================
    # Onboarding
    # =========================================================================

    def get_account(self, user) -> PayoutAccount:
        try:
            return PayoutAccount.objects.get(user=user)
        except PayoutAccount.DoesNotExist as e:
            raise PayoutAccountNotFoundError(
                "No payout account for this user",
                details={"user_id": str(user.pk)},
            ) from e

    def create_account(self, user) -> PayoutAccount:
        """
        Create the user's Express account, or return the existing one.

        The idempotency key is derived from the user id, so two concurrent
        calls get the same Stripe account and the unique user constraint
        keeps a single local row.
        """
        existing = PayoutAccount.objects.filter(user=user).first()
        if existing is not None:
            return existing

        result = self.gateway.create_connected_account(
            email=user.email,
            idempotency_key=IdempotencyKeyGenerator.generate("create_account", user.pk),
            metadata={"user_id": str(user.pk)},
        )

        try:
            with self.atomic():
                account = PayoutAccount.objects.create(
                    user=user,
                    stripe_account_id=result.id,
                    onboarding_status=OnboardingStatus.PENDING,
                    charges_enabled=result.charges_enabled,
                    payouts_enabled=result.payouts_enabled,
                    details_submitted=result.details_submitted,
                    disabled_reason=result.disabled_reason or "",
                )
        except IntegrityError:
            self.get_logger().info(
                "Payout account created concurrently, using existing row",
                extra={"user_id": str(user.pk), "stripe_account_id": result.id},
            )
            return PayoutAccount.objects.get(user=user)

        self.get_logger().info(
            "Payout account created",
            extra={"user_id": str(user.pk), "stripe_account_id": result.id},
        )
        return account

    def create_onboarding_link(self, user) -> AccountLinkResult:
        account = self.create_account(user)
        base_url = settings.FRONTEND_URL.rstrip("/")
        return self.gateway.create_account_link(
            account_id=account.stripe_account_id,
            refresh_url=f"{base_url}{ONBOARDING_REFRESH_PATH}",
            return_url=f"{base_url}{ONBOARDING_RETURN_PATH}",
        )

    def refresh_status(self, user) -> PayoutAccount:
        """Pull the account's current flags from Stripe."""
        account = self.get_account(user)
        result = self.gateway.retrieve_account(account.stripe_account_id)
        return self._apply_result(account, result)

    # =========================================================================
    # Webhook updates
    # =========================================================================

    def apply_account_update(self, account_data: dict[str, Any]) -> ServiceResult[PayoutAccount]:
        """Apply an account.updated payload to the matching PayoutAccount."""
        result = StripeAdapter.to_account_result(account_data)
        account = PayoutAccount.objects.filter(stripe_account_id=result.id).first()
        if account is None:
            self.get_logger().warning(
                "account.updated for unknown payout account",
                extra={"stripe_account_id": result.id},
            )
            return ServiceResult.failure(
                f"Unknown payout account {result.id}",
                error_code="PAYOUT_ACCOUNT_NOT_FOUND",
            )
        return ServiceResult.success(self._apply_result(account, result))

    def apply_capability_update(
        self, capability_data: dict[str, Any]
    ) -> ServiceResult[PayoutAccount]:
        """
        Apply a capability.updated payload.

        Only the transfers capability matters for payouts: active enables
        payouts and completes onboarding, anything else disables payouts.
        """
        account_id = capability_data.get("account")
        account = PayoutAccount.objects.filter(stripe_account_id=account_id).first()
        if account is None:
            self.get_logger().warning(
                "capability.updated for unknown payout account",
                extra={"stripe_account_id": account_id},
            )
            return ServiceResult.failure(
                f"Unknown payout account {account_id}",
                error_code="PAYOUT_ACCOUNT_NOT_FOUND",
            )

        if capability_data.get("id") != "transfers":
            return ServiceResult.success(account)

        active = capability_data.get("status") == "active"
        account.payouts_enabled = active
        update_fields = ["payouts_enabled"]
        if active:
            account.onboarding_status = OnboardingStatus.COMPLETE
            update_fields.append("onboarding_status")
        account.save(update_fields=update_fields)

        self.get_logger().info(
            "Payout account capability updated",
            extra={
                "stripe_account_id": account_id,
                "capability": "transfers",
                "capability_status": capability_data.get("status"),
            },
        )
        return ServiceResult.success(account)

    def _apply_result(self, account: PayoutAccount, result: AccountResult) -> PayoutAccount:
        previous_status = account.onboarding_status
        account.onboarding_status = derive_onboarding_status(result)
        account.charges_enabled = result.charges_enabled
        account.payouts_enabled = result.payouts_enabled
        account.details_submitted = result.details_submitted
        account.disabled_reason = result.disabled_reason or ""
        account.save(
            update_fields=[
                "onboarding_status",
                "charges_enabled",
                "payouts_enabled",
                "details_submitted",
                "disabled_reason",
            ]
        )

        if previous_status != account.onboarding_status:
            self.get_logger().info(
                "Payout account onboarding status changed",
                extra={
                    "stripe_account_id": account.stripe_account_id,
                    "from_status": previous_status,
                    "to_status": account.onboarding_status,
                },
            )
        return account
