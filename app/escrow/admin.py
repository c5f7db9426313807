"""
Escrow admin configuration.

Everything is read-only: payments change state only through the ledger,
audit events are append-only, and webhook rows are the dedupe record.
"""

from django.contrib import admin

from escrow.models import Payment, PaymentEvent, PayoutAccount, ProcessedWebhookEvent

__all__ = [
    "PaymentAdmin",
    "PaymentEventAdmin",
    "PayoutAccountAdmin",
    "ProcessedWebhookEventAdmin",
]


class ReadOnlyAdmin(admin.ModelAdmin):
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class PaymentEventInline(admin.TabularInline):
    model = PaymentEvent
    extra = 0
    can_delete = False
    fields = [
        "created_at",
        "event_type",
        "source",
        "actor_id",
        "from_status",
        "to_status",
        "from_escrow_status",
        "to_escrow_status",
    ]
    readonly_fields = fields
    ordering = ["created_at"]

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Payment)
class PaymentAdmin(ReadOnlyAdmin):
    """
    Admin view of escrow payments.

    Shows both state axes, the money split and the Stripe references.
    """

    list_display = [
        "id",
        "contract_id",
        "payer",
        "payee",
        "amount",
        "currency",
        "status",
        "escrow_status",
        "auto_release_at",
        "created_at",
    ]
    list_filter = ["status", "escrow_status", "payment_type", "auto_release", "currency"]
    search_fields = [
        "id",
        "contract_id",
        "milestone_id",
        "external_intent_id",
        "external_charge_id",
        "payer__email",
        "payee__email",
    ]
    ordering = ["-created_at"]
    inlines = [PaymentEventInline]

    fieldsets = (
        (None, {"fields": ("id", "contract_id", "milestone_id", "payment_type", "description")}),
        ("Parties", {"fields": ("payer", "payee")}),
        (
            "Money",
            {"fields": ("amount", "platform_fee_percentage", "platform_fee", "net_amount", "currency")},
        ),
        ("State", {"fields": ("status", "escrow_status", "failure_reason")}),
        (
            "Stripe",
            {
                "fields": (
                    "external_intent_id",
                    "external_charge_id",
                    "external_transfer_id",
                    "external_refund_id",
                ),
            },
        ),
        (
            "Timing",
            {
                "fields": (
                    "created_at",
                    "paid_at",
                    "released_at",
                    "refunded_at",
                    "cancelled_at",
                    "auto_release",
                    "auto_release_at",
                ),
            },
        ),
        (
            "Reconciliation",
            {
                "fields": ("last_webhook_event_id", "last_webhook_type", "last_webhook_at", "metadata", "version"),
                "classes": ("collapse",),
            },
        ),
    )


@admin.register(PaymentEvent)
class PaymentEventAdmin(ReadOnlyAdmin):
    list_display = ["id", "payment", "event_type", "source", "from_status", "to_status", "created_at"]
    list_filter = ["event_type", "source"]
    search_fields = ["payment__id", "actor_id"]
    ordering = ["-created_at"]


@admin.register(ProcessedWebhookEvent)
class ProcessedWebhookEventAdmin(ReadOnlyAdmin):
    """Webhook events, mainly for FAILED and stuck PROCESSING rows."""

    list_display = ["event_id", "event_type", "status", "started_at", "completed_at"]
    list_filter = ["status", "event_type"]
    search_fields = ["event_id", "event_type"]
    ordering = ["-created_at"]


@admin.register(PayoutAccount)
class PayoutAccountAdmin(ReadOnlyAdmin):
    list_display = [
        "id",
        "user",
        "stripe_account_id",
        "onboarding_status",
        "payouts_enabled",
        "charges_enabled",
        "created_at",
    ]
    list_filter = ["onboarding_status", "payouts_enabled", "charges_enabled"]
    search_fields = ["id", "stripe_account_id", "user__email"]
    ordering = ["-created_at"]
