import uuid

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Payment",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "contract_id",
                    models.CharField(
                        db_index=True,
                        help_text="Contract this payment belongs to",
                        max_length=64,
                    ),
                ),
                (
                    "milestone_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Milestone being paid (null for hourly and bonus payments)",
                        max_length=64,
                        null=True,
                    ),
                ),
                (
                    "payment_type",
                    models.CharField(
                        choices=[
                            ("milestone", "Milestone"),
                            ("hourly", "Hourly"),
                            ("bonus", "Bonus"),
                        ],
                        default="milestone",
                        help_text="Kind of work this payment covers",
                        max_length=20,
                    ),
                ),
                (
                    "description",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Optional free-text description shown to both parties",
                        max_length=500,
                    ),
                ),
                (
                    "amount",
                    models.PositiveBigIntegerField(
                        help_text="Gross amount charged to the payer, in cents"
                    ),
                ),
                (
                    "platform_fee_percentage",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Platform fee percentage applied when the payment was created",
                        max_digits=5,
                    ),
                ),
                (
                    "platform_fee",
                    models.PositiveBigIntegerField(
                        help_text="Platform fee in cents, collected as the application fee"
                    ),
                ),
                (
                    "net_amount",
                    models.PositiveBigIntegerField(
                        help_text="Amount released to the payee in cents (amount - platform_fee)"
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="usd",
                        help_text="ISO 4217 currency code (lowercase)",
                        max_length=3,
                    ),
                ),
                (
                    "external_intent_id",
                    models.CharField(
                        help_text="Stripe PaymentIntent ID (pi_xxx)",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "external_charge_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Stripe Charge ID (ch_xxx), set on capture",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "external_transfer_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe Transfer ID (tr_xxx) of the destination transfer",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "external_refund_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe Refund ID (re_xxx), set on refund",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("refunded", "Refunded"),
                            ("cancelled", "Cancelled"),
                            ("disputed", "Disputed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Payment lifecycle status",
                        max_length=20,
                        protected=True,
                    ),
                ),
                (
                    "escrow_status",
                    django_fsm.FSMField(
                        choices=[
                            ("held", "Held"),
                            ("released", "Released"),
                            ("refunded", "Refunded"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="held",
                        help_text="Where the funds are; everything but held is terminal",
                        max_length=20,
                    ),
                ),
                (
                    "failure_reason",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Why the payment failed, from the processor or the gateway error",
                    ),
                ),
                (
                    "paid_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the payer's funds were authorized",
                        null=True,
                    ),
                ),
                (
                    "released_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the funds were captured and released to the payee",
                        null=True,
                    ),
                ),
                (
                    "refunded_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the funds were refunded to the payer",
                        null=True,
                    ),
                ),
                (
                    "cancelled_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the payment was cancelled",
                        null=True,
                    ),
                ),
                (
                    "auto_release",
                    models.BooleanField(
                        default=False,
                        help_text="Release automatically once auto_release_at has passed",
                    ),
                ),
                (
                    "auto_release_at",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="Deadline after which the scheduler releases the funds",
                        null=True,
                    ),
                ),
                (
                    "last_webhook_event_id",
                    models.CharField(
                        blank=True,
                        help_text="Last Stripe event ID applied to this payment",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "last_webhook_type",
                    models.CharField(
                        blank=True,
                        help_text="Type of the last Stripe event applied",
                        max_length=100,
                        null=True,
                    ),
                ),
                (
                    "last_webhook_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the last Stripe event was applied",
                        null=True,
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True, default=dict, help_text="Arbitrary JSON metadata"
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1, help_text="Incremented on each save"
                    ),
                ),
                (
                    "payee",
                    models.ForeignKey(
                        help_text="User receiving the funds on release",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="escrow_payments_received",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "payer",
                    models.ForeignKey(
                        help_text="User funding the escrow",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="escrow_payments_made",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment",
                "verbose_name_plural": "Payments",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["payer", "status"], name="escrow_pay_payer_status_idx"
                    ),
                    models.Index(
                        fields=["payee", "status"], name="escrow_pay_payee_status_idx"
                    ),
                    models.Index(
                        fields=["status", "escrow_status", "created_at"],
                        name="escrow_pay_state_created_idx",
                    ),
                    models.Index(
                        fields=["auto_release", "escrow_status", "auto_release_at"],
                        name="escrow_pay_auto_release_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(amount__gt=0),
                        name="escrow_payment_amount_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            amount=models.F("platform_fee") + models.F("net_amount")
                        ),
                        name="escrow_payment_amount_split",
                    ),
                    models.CheckConstraint(
                        condition=~models.Q(payer=models.F("payee")),
                        name="escrow_payment_distinct_parties",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentEvent",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        choices=[
                            ("created", "Created"),
                            ("confirmed", "Confirmed"),
                            ("released", "Released"),
                            ("refunded", "Refunded"),
                            ("cancelled", "Cancelled"),
                            ("failed", "Failed"),
                            ("disputed", "Disputed"),
                        ],
                        help_text="Type of transition recorded",
                        max_length=20,
                    ),
                ),
                (
                    "source",
                    models.CharField(
                        choices=[
                            ("api", "API"),
                            ("webhook", "Webhook"),
                            ("scheduler", "Auto-Release Scheduler"),
                            ("sweeper", "Stuck-Payment Sweeper"),
                            ("reconciler", "Pending Reconciliation"),
                        ],
                        help_text="Component that triggered the transition",
                        max_length=20,
                    ),
                ),
                (
                    "actor_id",
                    models.CharField(
                        blank=True,
                        help_text="User that triggered the transition (null for system actors)",
                        max_length=64,
                        null=True,
                    ),
                ),
                (
                    "from_status",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("refunded", "Refunded"),
                            ("cancelled", "Cancelled"),
                            ("disputed", "Disputed"),
                        ],
                        default="",
                        help_text="Payment status before the transition (blank on creation)",
                        max_length=20,
                    ),
                ),
                (
                    "to_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("refunded", "Refunded"),
                            ("cancelled", "Cancelled"),
                            ("disputed", "Disputed"),
                        ],
                        help_text="Payment status after the transition",
                        max_length=20,
                    ),
                ),
                (
                    "from_escrow_status",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("held", "Held"),
                            ("released", "Released"),
                            ("refunded", "Refunded"),
                            ("cancelled", "Cancelled"),
                        ],
                        default="",
                        help_text="Escrow status before the transition (blank on creation)",
                        max_length=20,
                    ),
                ),
                (
                    "to_escrow_status",
                    models.CharField(
                        choices=[
                            ("held", "Held"),
                            ("released", "Released"),
                            ("refunded", "Refunded"),
                            ("cancelled", "Cancelled"),
                        ],
                        help_text="Escrow status after the transition",
                        max_length=20,
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Additional context (Stripe ids, webhook event id, reason)",
                    ),
                ),
                (
                    "payment",
                    models.ForeignKey(
                        help_text="Payment this event belongs to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="events",
                        to="escrow.payment",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment Event",
                "verbose_name_plural": "Payment Events",
                "ordering": ["created_at", "id"],
                "indexes": [
                    models.Index(
                        fields=["payment", "created_at"],
                        name="escrow_evt_payment_idx",
                    ),
                    models.Index(
                        fields=["event_type", "created_at"],
                        name="escrow_evt_type_created_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ProcessedWebhookEvent",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "event_id",
                    models.CharField(
                        help_text="Stripe Event ID (evt_xxx)",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        db_index=True,
                        help_text="Stripe event type (e.g., payment_intent.succeeded)",
                        max_length=100,
                    ),
                ),
                (
                    "payload",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Full event payload from Stripe",
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="processing",
                        help_text="Processing status of this event",
                        max_length=20,
                    ),
                ),
                (
                    "started_at",
                    models.DateTimeField(
                        default=django.utils.timezone.now,
                        help_text="When this event was claimed for processing",
                    ),
                ),
                (
                    "completed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When processing finished (successfully or not)",
                        null=True,
                    ),
                ),
                (
                    "error_message",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Error details if processing failed",
                    ),
                ),
            ],
            options={
                "verbose_name": "Processed Webhook Event",
                "verbose_name_plural": "Processed Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "created_at"],
                        name="escrow_whk_status_created_idx",
                    ),
                    models.Index(
                        fields=["status", "started_at"],
                        name="escrow_whk_status_started_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PayoutAccount",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "stripe_account_id",
                    models.CharField(
                        help_text="Stripe Account ID (acct_xxx)",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "onboarding_status",
                    models.CharField(
                        choices=[
                            ("not_started", "Not Started"),
                            ("pending", "Pending"),
                            ("incomplete", "Incomplete"),
                            ("complete", "Complete"),
                            ("rejected", "Rejected"),
                        ],
                        db_index=True,
                        default="not_started",
                        help_text="Current Stripe Connect onboarding status",
                        max_length=20,
                    ),
                ),
                (
                    "payouts_enabled",
                    models.BooleanField(
                        default=False,
                        help_text="Whether Stripe has enabled payouts for this account",
                    ),
                ),
                (
                    "charges_enabled",
                    models.BooleanField(
                        default=False,
                        help_text="Whether Stripe has enabled charges for this account",
                    ),
                ),
                (
                    "details_submitted",
                    models.BooleanField(
                        default=False,
                        help_text="Whether the user finished submitting onboarding details",
                    ),
                ),
                (
                    "disabled_reason",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Stripe requirements.disabled_reason, blank when enabled",
                        max_length=255,
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1, help_text="Incremented on each save"
                    ),
                ),
                (
                    "user",
                    models.OneToOneField(
                        help_text="User this payout account belongs to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payout_account",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Payout Account",
                "verbose_name_plural": "Payout Accounts",
                "ordering": ["-created_at"],
            },
        ),
    ]
