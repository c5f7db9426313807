"""
DRF serializers for the escrow app.

Output serializers are read-only ModelSerializers; request serializers
validate input before it reaches EscrowLedger, which repeats the business
checks (amount, parties, delay bounds) itself.

Related files:
    - models/: Payment, PaymentEvent, PayoutAccount
    - views.py: PaymentViewSet
"""

from __future__ import annotations

from django.conf import settings
from django.contrib.auth import get_user_model
from rest_framework import serializers

from escrow.models import Payment, PaymentEvent, PayoutAccount
from escrow.state_machines import EscrowStatus, PaymentStatus, PaymentType

User = get_user_model()


# =============================================================================
# Payment
# =============================================================================


class PaymentSerializer(serializers.ModelSerializer):
    """Payment as seen by either party."""

    payer_id = serializers.CharField(read_only=True)
    payee_id = serializers.CharField(read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id",
            "contract_id",
            "milestone_id",
            "payment_type",
            "description",
            "payer_id",
            "payee_id",
            "amount",
            "platform_fee_percentage",
            "platform_fee",
            "net_amount",
            "currency",
            "status",
            "escrow_status",
            "failure_reason",
            "external_intent_id",
            "auto_release",
            "auto_release_at",
            "paid_at",
            "released_at",
            "refunded_at",
            "cancelled_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class PaymentCreateSerializer(serializers.Serializer):
    """
    Request body for create-payment. The authenticated user is the payer.

    Fields:
        payee_id: User receiving the funds
        contract_id / milestone_id: Work item being paid for
        amount: Gross amount in minor units (cents)
        currency: ISO 4217 code (default: ESCROW_DEFAULT_CURRENCY)
        auto_release / auto_release_days: Scheduler release after N days
    """

    payee_id = serializers.PrimaryKeyRelatedField(queryset=User.objects.all())
    contract_id = serializers.CharField(max_length=64)
    milestone_id = serializers.CharField(max_length=64, required=False, allow_null=True, allow_blank=True)
    payment_type = serializers.ChoiceField(choices=PaymentType.choices, default=PaymentType.MILESTONE)
    description = serializers.CharField(max_length=500, required=False, allow_blank=True, default="")
    amount = serializers.IntegerField(min_value=1)
    currency = serializers.RegexField(r"^[A-Za-z]{3}$", required=False)
    auto_release = serializers.BooleanField(default=False)
    auto_release_days = serializers.IntegerField(min_value=1, required=False)

    def validate_auto_release_days(self, value: int) -> int:
        if value > settings.ESCROW_MAX_AUTO_RELEASE_DAYS:
            raise serializers.ValidationError(
                f"Must be at most {settings.ESCROW_MAX_AUTO_RELEASE_DAYS} days."
            )
        return value

    def validate(self, attrs):
        request = self.context.get("request")
        if request is not None and attrs["payee_id"].pk == request.user.pk:
            raise serializers.ValidationError({"payee_id": "You can't pay yourself."})
        if attrs.get("auto_release_days") and not attrs.get("auto_release"):
            raise serializers.ValidationError(
                {"auto_release_days": "Only valid together with auto_release."}
            )
        return attrs


class PaymentCreateResponseSerializer(serializers.Serializer):
    payment = PaymentSerializer()
    client_secret = serializers.CharField(allow_null=True)


class PaymentConfirmSerializer(serializers.Serializer):
    external_intent_id = serializers.CharField(max_length=255)


class PaymentRefundSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=500, required=False, allow_blank=True, default="")


class PaymentListFilterSerializer(serializers.Serializer):
    """Query parameters for list-payments."""

    status = serializers.ChoiceField(choices=PaymentStatus.choices, required=False)
    escrow_status = serializers.ChoiceField(choices=EscrowStatus.choices, required=False)
    role = serializers.ChoiceField(choices=["payer", "payee"], required=False)


class PaymentEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = PaymentEvent
        fields = [
            "id",
            "event_type",
            "source",
            "actor_id",
            "from_status",
            "to_status",
            "from_escrow_status",
            "to_escrow_status",
            "metadata",
            "created_at",
        ]
        read_only_fields = fields


class PaymentStatsSerializer(serializers.Serializer):
    total_paid = serializers.IntegerField()
    total_received = serializers.IntegerField()
    pending_payments = serializers.IntegerField()
    completed_payments = serializers.IntegerField()
    escrow_held = serializers.IntegerField()
    escrow_released = serializers.IntegerField()


class SweepResultSerializer(serializers.Serializer):
    processed = serializers.IntegerField()
    errors = serializers.ListField(child=serializers.DictField())


# =============================================================================
# Payout Account
# =============================================================================


class PayoutAccountSerializer(serializers.ModelSerializer):
    is_payout_eligible = serializers.BooleanField(read_only=True)

    class Meta:
        model = PayoutAccount
        fields = [
            "id",
            "stripe_account_id",
            "onboarding_status",
            "payouts_enabled",
            "charges_enabled",
            "details_submitted",
            "disabled_reason",
            "is_payout_eligible",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class OnboardingLinkSerializer(serializers.Serializer):
    url = serializers.URLField()
    expires_at = serializers.IntegerField()
