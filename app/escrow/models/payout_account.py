"""
PayoutAccount model: a payee's Stripe Connect account.

The ledger only reads this model (through the payee account service) to
decide whether a payee can receive funds and where to send them.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import F

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from escrow.state_machines import OnboardingStatus


class PayoutAccount(UUIDPrimaryKeyMixin, BaseModel):
    """
    Stripe Express connected account owned by one user.

    Fields:
        user: Owner of the account
        stripe_account_id: Stripe Account ID (acct_xxx)
        onboarding_status: Current onboarding status
        payouts_enabled / charges_enabled / details_submitted: Mirrors of
            the Stripe account flags
        disabled_reason: Stripe requirements.disabled_reason, if any
        version: Incremented on each save

    Lifecycle:
        1. Account created on Stripe (NOT_STARTED → PENDING)
        2. User completes the hosted onboarding flow
        3. account.updated / capability.updated webhooks move the status
           to INCOMPLETE, COMPLETE or REJECTED
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payout_account",
        help_text="User this payout account belongs to",
    )

    stripe_account_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Account ID (acct_xxx)",
    )

    onboarding_status = models.CharField(
        max_length=20,
        choices=OnboardingStatus.choices,
        default=OnboardingStatus.NOT_STARTED,
        db_index=True,
        help_text="Current Stripe Connect onboarding status",
    )

    payouts_enabled = models.BooleanField(
        default=False,
        help_text="Whether Stripe has enabled payouts for this account",
    )

    charges_enabled = models.BooleanField(
        default=False,
        help_text="Whether Stripe has enabled charges for this account",
    )

    details_submitted = models.BooleanField(
        default=False,
        help_text="Whether the user finished submitting onboarding details",
    )

    disabled_reason = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe requirements.disabled_reason, blank when enabled",
    )

    version = models.PositiveIntegerField(
        default=1,
        help_text="Incremented on each save",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payout Account"
        verbose_name_plural = "Payout Accounts"

    def __str__(self) -> str:
        return f"PayoutAccount({self.stripe_account_id}, {self.onboarding_status})"

    def save(self, *args, **kwargs):
        is_update = not self._state.adding
        if is_update:
            self.version = F("version") + 1
            update_fields = kwargs.get("update_fields")
            if update_fields is not None:
                kwargs["update_fields"] = set(update_fields) | {"version", "updated_at"}
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    @property
    def is_payout_eligible(self) -> bool:
        """True when onboarding is complete and Stripe has enabled payouts."""
        return self.onboarding_status == OnboardingStatus.COMPLETE and self.payouts_enabled
