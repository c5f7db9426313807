"""
Escrow ledger: the only component that changes a Payment's state.

Every transition is a django-fsm transition on the Payment model, saved
through ConcurrentTransitionMixin. The UPDATE only matches when the row
still has the (status, escrow_status) pair read at load time, so racing
callers (explicit release vs. scheduler, webhook vs. confirm) converge:
one write wins, the other sees ConcurrentTransition, re-reads the row and
either finds the outcome it wanted (no-op) or reports a conflict.

No database transaction or lock is held across a Stripe call. Each
transition and its PaymentEvent audit row are written in one atomic block
after the gateway call returns.

Usage:
    from escrow.services import get_ledger

    ledger = get_ledger()
    result = ledger.create_payment(
        payer_id=client.id,
        payee_id=freelancer.id,
        contract_id="ctr_123",
        milestone_id="ms_1",
        amount=10000,
    )
    # hand result.client_secret to the payer's browser

    ledger.confirm_payment(result.payment.id, result.payment.external_intent_id, client.id)
    ledger.release(result.payment.id, caller_id=client.id)
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone
from django_fsm import ConcurrentTransition, TransitionNotAllowed

from core.services import BaseService

from escrow.adapters import CreatePaymentIntentParams, IdempotencyKeyGenerator
from escrow.exceptions import (
    GatewayError,
    GatewayRetryableError,
    GatewayTerminalError,
    NotCapturableError,
    NotPayoutEligibleError,
    PaymentNotFoundError,
    PaymentPermissionError,
    PaymentValidationError,
    StateConflictError,
)
from escrow.models import Payment, PaymentEvent
from escrow.state_machines import (
    EscrowStatus,
    PaymentEventSource,
    PaymentEventType,
    PaymentStatus,
    PaymentType,
)

if TYPE_CHECKING:
    from escrow.adapters import PaymentIntentResult, StripeAdapter
    from escrow.services.payout_accounts import PayoutAccountService


# Intent statuses meaning "authorization not finished yet": a release
# attempt is retried later instead of failing the payment.
PRE_CAPTURE_INTENT_STATUSES = frozenset({"requires_action", "requires_confirmation", "processing"})

# Intent statuses where the payer never finished paying and cancel is safe.
CANCELLABLE_INTENT_STATUSES = frozenset(
    {"requires_payment_method", "requires_confirmation", "requires_action"}
)


def calculate_fee(amount: int, fee_percent: Decimal) -> tuple[int, int]:
    """
    Split ``amount`` into (platform_fee, net_amount) in integer minor units.

    The fee is rounded half-up to a whole cent and the net amount is the
    remainder, so the two always add up to ``amount``.

    Example:
        calculate_fee(10000, Decimal("5"))  # (500, 9500)
        calculate_fee(999, Decimal("2.5"))  # (25, 974)
    """
    fee = int((Decimal(amount) * fee_percent / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return fee, amount - fee


@dataclass
class CreatePaymentResult:
    """
    Result of create_payment.

    Attributes:
        payment: The persisted Payment (pending, held)
        client_secret: PaymentIntent client secret for the payer's browser
    """

    payment: Payment
    client_secret: str | None


class EscrowLedger(BaseService):
    """
    Owns the Payment state machine.

    Args:
        gateway: StripeAdapter instance, built once per process
        accounts: Payee account service consulted for payout eligibility

    Operations that take a ``caller_id`` check it against the payment's
    parties. ``caller_id=None`` means a system actor (scheduler, sweeper,
    webhook) and skips the check.
    """

    def __init__(self, gateway: StripeAdapter, accounts: PayoutAccountService):
        self.gateway = gateway
        self.accounts = accounts

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_payment(self, payment_id) -> Payment:
        try:
            return Payment.objects.get(pk=payment_id)
        except (Payment.DoesNotExist, DjangoValidationError, ValueError, TypeError) as e:
            raise PaymentNotFoundError(
                f"Payment {payment_id} not found",
                details={"payment_id": str(payment_id)},
            ) from e

    def get_payment_for_party(self, payment_id, caller_id) -> Payment:
        """Return the payment if the caller is a party, else PaymentNotFoundError."""
        payment = self.get_payment(payment_id)
        if not payment.is_party(caller_id):
            raise PaymentNotFoundError(
                f"Payment {payment_id} not found",
                details={"payment_id": str(payment_id)},
            )
        return payment

    def find_by_intent(self, intent_id: str) -> Payment | None:
        if not intent_id:
            return None
        return Payment.objects.filter(external_intent_id=intent_id).first()

    def find_by_charge(self, charge_id: str) -> Payment | None:
        if not charge_id:
            return None
        return Payment.objects.filter(external_charge_id=charge_id).first()

    # =========================================================================
    # Create
    # =========================================================================

    def create_payment(
        self,
        payer_id,
        payee_id,
        contract_id: str,
        amount: int,
        milestone_id: str | None = None,
        currency: str | None = None,
        payment_type: str = PaymentType.MILESTONE,
        description: str = "",
        auto_release: bool = False,
        auto_release_after: timedelta | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> CreatePaymentResult:
        """
        Create a manual-capture intent and persist a pending, held Payment.

        The intent is created first with a pre-generated payment id in its
        metadata. If persisting the Payment then fails, the intent is
        cancelled so no intent is left without a record.

        Raises:
            PaymentValidationError: Bad amount, parties or auto-release delay
            NotPayoutEligibleError: Payee has no payout-enabled account
            GatewayError: Intent creation failed
        """
        logger = self.get_logger()

        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise PaymentValidationError(
                "Amount must be a positive integer in minor units",
                details={"amount": amount},
            )
        if str(payer_id) == str(payee_id):
            raise PaymentValidationError("Payer and payee must be different users")

        currency = (currency or settings.ESCROW_DEFAULT_CURRENCY).lower()
        fee_percent = Decimal(str(settings.PLATFORM_FEE_PERCENT))
        platform_fee, net_amount = calculate_fee(amount, fee_percent)
        if net_amount <= 0:
            raise PaymentValidationError(
                "Amount is too small to cover the platform fee",
                details={"amount": amount, "platform_fee": platform_fee},
            )

        auto_release_at = self._auto_release_deadline(auto_release, auto_release_after)

        destination = self.accounts.get_destination_account(payee_id)
        if destination is None:
            raise NotPayoutEligibleError(
                "Payee can't receive payouts yet",
                details={"payee_id": str(payee_id)},
            )

        payment_id = uuid.uuid4()
        intent = self.gateway.create_payment_intent(
            CreatePaymentIntentParams(
                amount_cents=amount,
                currency=currency,
                destination_account=destination,
                application_fee_cents=platform_fee,
                idempotency_key=IdempotencyKeyGenerator.generate("create_intent", payment_id),
                metadata={
                    "payment_id": str(payment_id),
                    "contract_id": str(contract_id),
                    "milestone_id": str(milestone_id or ""),
                    "payer_id": str(payer_id),
                    "payee_id": str(payee_id),
                },
                description=description or None,
            )
        )

        try:
            with self.atomic():
                payment = Payment.objects.create(
                    id=payment_id,
                    contract_id=contract_id,
                    milestone_id=milestone_id,
                    payment_type=payment_type,
                    description=description,
                    payer_id=payer_id,
                    payee_id=payee_id,
                    amount=amount,
                    platform_fee_percentage=fee_percent,
                    platform_fee=platform_fee,
                    net_amount=net_amount,
                    currency=currency,
                    external_intent_id=intent.id,
                    auto_release=auto_release,
                    auto_release_at=auto_release_at,
                    metadata=metadata or {},
                )
                self._record_event(
                    payment,
                    PaymentEventType.CREATED,
                    PaymentEventSource.API,
                    actor_id=payer_id,
                    from_status="",
                    from_escrow_status="",
                    metadata={"external_intent_id": intent.id},
                )
        except Exception:
            logger.error(
                "Failed to persist payment, cancelling orphaned intent",
                extra={"payment_id": str(payment_id), "intent_id": intent.id},
                exc_info=True,
            )
            self._cancel_orphaned_intent(payment_id, intent.id)
            raise

        logger.info(
            "Payment created",
            extra={
                "payment_id": str(payment.id),
                "intent_id": intent.id,
                "amount": amount,
                "platform_fee": platform_fee,
                "net_amount": net_amount,
                "currency": currency,
            },
        )
        return CreatePaymentResult(payment=payment, client_secret=intent.client_secret)

    def _auto_release_deadline(self, auto_release: bool, auto_release_after: timedelta | None):
        if not auto_release:
            return None
        if auto_release_after is None:
            auto_release_after = timedelta(days=settings.ESCROW_DEFAULT_AUTO_RELEASE_DAYS)
        max_delay = timedelta(days=settings.ESCROW_MAX_AUTO_RELEASE_DAYS)
        if auto_release_after <= timedelta(0) or auto_release_after > max_delay:
            raise PaymentValidationError(
                f"Auto-release delay must be between 0 and {settings.ESCROW_MAX_AUTO_RELEASE_DAYS} days",
                details={"auto_release_after_seconds": auto_release_after.total_seconds()},
            )
        return timezone.now() + auto_release_after

    def _cancel_orphaned_intent(self, payment_id, intent_id: str) -> None:
        try:
            self.gateway.cancel_payment_intent(
                intent_id,
                idempotency_key=IdempotencyKeyGenerator.generate("cancel_orphan", payment_id),
            )
        except GatewayError:
            self.get_logger().critical(
                "Could not cancel orphaned PaymentIntent",
                extra={"payment_id": str(payment_id), "intent_id": intent_id},
                exc_info=True,
            )

    # =========================================================================
    # Confirm
    # =========================================================================

    def confirm_payment(self, payment_id, external_intent_id: str, caller_id) -> Payment:
        """
        Payer reports the intent as confirmed: pending → processing.

        Idempotent: a payment the webhook already moved to processing or
        completed is returned unchanged.
        """
        payment = self.get_payment(payment_id)
        self._require_payer(payment, caller_id, "confirm")

        if external_intent_id != payment.external_intent_id:
            raise PaymentValidationError(
                "Intent id does not match this payment",
                details={"payment_id": str(payment.id)},
            )

        return self._advance_to_processing(
            payment,
            PaymentEventSource.API,
            actor_id=caller_id,
            operation="confirm",
        )

    def mark_processing(self, payment_id, source: str = PaymentEventSource.WEBHOOK, metadata=None) -> Payment:
        """Processor reports the funds as authorized: pending → processing."""
        payment = self.get_payment(payment_id)
        return self._advance_to_processing(payment, source, metadata=metadata, operation="mark_processing")

    def _advance_to_processing(
        self, payment: Payment, source: str, actor_id=None, metadata=None, operation=""
    ) -> Payment:
        if payment.status in (PaymentStatus.PROCESSING, PaymentStatus.COMPLETED):
            self.get_logger().info(
                "Payment already past pending, nothing to do",
                extra={"payment_id": str(payment.id), "status": payment.status, "operation": operation},
            )
            return payment
        if payment.status != PaymentStatus.PENDING:
            raise self._conflict(payment, operation)

        try:
            return self._apply(
                payment,
                "mark_processing",
                PaymentEventType.CONFIRMED,
                source,
                actor_id=actor_id,
                metadata=metadata,
                paid_at=timezone.now(),
            )
        except ConcurrentTransition:
            current = self._reload(payment)
            if current.status in (PaymentStatus.PROCESSING, PaymentStatus.COMPLETED):
                self.get_logger().info(
                    "Concurrent confirm already applied",
                    extra={"payment_id": str(payment.id), "operation": operation},
                )
                return current
            raise self._conflict(current, operation) from None

    # =========================================================================
    # Release
    # =========================================================================

    def release(self, payment_id, caller_id=None, source: str | None = None) -> Payment:
        """
        Capture ``net_amount`` and release escrow to the payee.

        Valid only from (processing, held). A payment already (completed,
        released) is returned unchanged, so explicit and scheduled releases
        can race safely.

        Gateway outcomes:
            - retryable error: state untouched, error re-raised
            - intent already captured (succeeded): settled locally as released
            - intent still authorizing: state untouched, NotCapturableError
              re-raised for a later retry
            - any other terminal error: payment moves to failed, error re-raised

        Raises:
            PaymentPermissionError: Caller is not the payer
            StateConflictError: Payment is not (processing, held)
            GatewayError: See above
        """
        logger = self.get_logger()
        payment = self.get_payment(payment_id)
        if caller_id is not None:
            self._require_payer(payment, caller_id, "release")
        source = source or (PaymentEventSource.API if caller_id is not None else PaymentEventSource.SCHEDULER)

        if payment.status == PaymentStatus.COMPLETED and payment.escrow_status == EscrowStatus.RELEASED:
            logger.info("Payment already released", extra={"payment_id": str(payment.id)})
            return payment
        if not (payment.status == PaymentStatus.PROCESSING and payment.escrow_status == EscrowStatus.HELD):
            raise self._conflict(payment, "release")

        try:
            intent = self.gateway.capture_payment_intent(
                payment.external_intent_id,
                idempotency_key=IdempotencyKeyGenerator.generate("capture", payment.id),
                amount_to_capture=payment.net_amount,
            )
        except NotCapturableError as e:
            if e.intent_status == "succeeded":
                logger.warning(
                    "Intent already captured, settling release locally",
                    extra={"payment_id": str(payment.id), "intent_id": payment.external_intent_id},
                )
                intent = e.intent
            elif e.intent_status in PRE_CAPTURE_INTENT_STATUSES:
                logger.warning(
                    "Intent not capturable yet, leaving payment untouched",
                    extra={"payment_id": str(payment.id), "intent_status": e.intent_status},
                )
                raise
            else:
                self._fail_after_gateway_error(payment, e, source)
                raise
        except GatewayRetryableError as e:
            logger.warning(
                "Retryable gateway error on capture, leaving payment untouched",
                extra={"payment_id": str(payment.id), "error": str(e)},
            )
            raise
        except GatewayTerminalError as e:
            self._fail_after_gateway_error(payment, e, source)
            raise

        try:
            payment = self._apply(
                payment,
                "release",
                PaymentEventType.RELEASED,
                source,
                actor_id=caller_id,
                metadata={"intent_id": intent.id, "charge_id": intent.latest_charge, "captured": payment.net_amount},
                released_at=timezone.now(),
                charge_id=intent.latest_charge,
            )
        except ConcurrentTransition:
            current = self._reload(payment)
            if current.escrow_status == EscrowStatus.RELEASED:
                logger.info(
                    "Concurrent release already settled",
                    extra={"payment_id": str(payment.id)},
                )
                return current
            logger.critical(
                "Funds captured but payment state diverged",
                extra={
                    "payment_id": str(payment.id),
                    "intent_id": payment.external_intent_id,
                    "status": current.status,
                    "escrow_status": current.escrow_status,
                },
            )
            raise self._conflict(current, "release") from None

        logger.info(
            "Payment released",
            extra={"payment_id": str(payment.id), "net_amount": payment.net_amount, "source": source},
        )
        self._notify(payment, PaymentEventType.RELEASED)
        return payment

    # =========================================================================
    # Refund
    # =========================================================================

    def refund(self, payment_id, caller_id, reason: str = "") -> Payment:
        """
        Refund the full amount to the payer while funds are still held.

        Raises:
            PaymentPermissionError: Caller is not the payer
            StateConflictError: Escrow already released, refunded or cancelled,
                or the payment is still pending (cancel it instead)
            GatewayError: Refund failed; terminal errors also fail the payment
        """
        logger = self.get_logger()
        payment = self.get_payment(payment_id)
        self._require_payer(payment, caller_id, "refund")

        if payment.escrow_status != EscrowStatus.HELD:
            raise self._conflict(payment, "refund")
        if payment.status not in (PaymentStatus.PROCESSING, PaymentStatus.DISPUTED, PaymentStatus.FAILED):
            raise self._conflict(
                payment,
                "refund",
                message="Only authorized payments can be refunded; cancel a pending payment instead",
            )

        try:
            refund = self.gateway.create_refund(
                payment.external_intent_id,
                idempotency_key=IdempotencyKeyGenerator.generate("refund", payment.id),
                reason="requested_by_customer",
                metadata={"payment_id": str(payment.id), "reason": reason[:500]},
            )
        except GatewayRetryableError as e:
            logger.warning(
                "Retryable gateway error on refund, leaving payment untouched",
                extra={"payment_id": str(payment.id), "error": str(e)},
            )
            raise
        except GatewayTerminalError as e:
            self._fail_after_gateway_error(payment, e, PaymentEventSource.API)
            raise

        try:
            payment = self._apply(
                payment,
                "refund",
                PaymentEventType.REFUNDED,
                PaymentEventSource.API,
                actor_id=caller_id,
                metadata={"refund_id": refund.id, "reason": reason},
                refunded_at=timezone.now(),
                refund_id=refund.id,
            )
        except ConcurrentTransition:
            current = self._reload(payment)
            if current.escrow_status == EscrowStatus.REFUNDED:
                return current
            logger.critical(
                "Refund issued but payment state diverged",
                extra={
                    "payment_id": str(payment.id),
                    "refund_id": refund.id,
                    "status": current.status,
                    "escrow_status": current.escrow_status,
                },
            )
            raise self._conflict(current, "refund") from None

        logger.info(
            "Payment refunded",
            extra={"payment_id": str(payment.id), "refund_id": refund.id, "amount": payment.amount},
        )
        self._notify(payment, PaymentEventType.REFUNDED)
        return payment

    def record_processor_refund(
        self, payment_id, refund_id: str | None = None, metadata=None
    ) -> Payment:
        """
        Apply a refund initiated on the processor side (charge.refunded).

        Payments whose escrow is already terminal are left alone.
        """
        payment = self.get_payment(payment_id)
        if payment.is_escrow_terminal:
            level = logging.INFO if payment.escrow_status == EscrowStatus.REFUNDED else logging.WARNING
            self.get_logger().log(
                level,
                "Refund reported for payment with terminal escrow, skipping",
                extra={"payment_id": str(payment.id), "escrow_status": payment.escrow_status},
            )
            return payment

        try:
            payment = self._apply(
                payment,
                "refund",
                PaymentEventType.REFUNDED,
                PaymentEventSource.WEBHOOK,
                metadata=metadata,
                refunded_at=timezone.now(),
                refund_id=refund_id,
            )
        except ConcurrentTransition:
            current = self._reload(payment)
            if current.escrow_status == EscrowStatus.REFUNDED:
                return current
            raise self._conflict(current, "record_processor_refund") from None

        self._notify(payment, PaymentEventType.REFUNDED)
        return payment

    # =========================================================================
    # Dispute, cancel, fail
    # =========================================================================

    def mark_disputed(self, payment_id, source: str = PaymentEventSource.WEBHOOK, metadata=None) -> Payment:
        """Hand the payment off to dispute resolution. Escrow stays held."""
        payment = self.get_payment(payment_id)
        if payment.status == PaymentStatus.DISPUTED:
            return payment
        if payment.is_escrow_terminal:
            raise self._conflict(payment, "mark_disputed")

        try:
            payment = self._apply(payment, "mark_disputed", PaymentEventType.DISPUTED, source, metadata=metadata)
        except ConcurrentTransition:
            current = self._reload(payment)
            if current.status == PaymentStatus.DISPUTED:
                return current
            raise self._conflict(current, "mark_disputed") from None

        self.get_logger().warning(
            "Payment disputed",
            extra={"payment_id": str(payment.id), "source": source},
        )
        self._notify(payment, PaymentEventType.DISPUTED)
        return payment

    def cancel(self, payment_id, source: str = PaymentEventSource.SWEEPER, reason: str = "") -> Payment:
        """
        Cancel a pending payment and its intent.

        The intent is checked first: if the payer authorized the funds in
        the meantime the payment is not cancelled (StateConflictError) and
        reconciliation moves it to processing instead.
        """
        logger = self.get_logger()
        payment = self.get_payment(payment_id)
        if payment.status == PaymentStatus.CANCELLED:
            return payment
        if not (payment.status == PaymentStatus.PENDING and payment.escrow_status == EscrowStatus.HELD):
            raise self._conflict(payment, "cancel")

        intent = self.gateway.retrieve_payment_intent(payment.external_intent_id)
        if intent.status != "canceled":
            if intent.status not in CANCELLABLE_INTENT_STATUSES:
                raise self._conflict(
                    payment,
                    "cancel",
                    message=f"Intent is '{intent.status}', refusing to cancel",
                )
            self.gateway.cancel_payment_intent(
                payment.external_intent_id,
                idempotency_key=IdempotencyKeyGenerator.generate("cancel", payment.id),
            )

        try:
            payment = self._apply(
                payment,
                "cancel",
                PaymentEventType.CANCELLED,
                source,
                metadata={"reason": reason} if reason else None,
                cancelled_at=timezone.now(),
            )
        except ConcurrentTransition:
            current = self._reload(payment)
            if current.status == PaymentStatus.CANCELLED:
                return current
            logger.critical(
                "Intent cancelled but payment state diverged",
                extra={"payment_id": str(payment.id), "status": current.status},
            )
            raise self._conflict(current, "cancel") from None

        logger.info("Payment cancelled", extra={"payment_id": str(payment.id), "source": source})
        self._notify(payment, PaymentEventType.CANCELLED)
        return payment

    def fail(self, payment_id, reason: str = "", source: str = PaymentEventSource.WEBHOOK, metadata=None) -> Payment:
        """Move a pending or processing payment to failed. Escrow stays held."""
        payment = self.get_payment(payment_id)
        if payment.status == PaymentStatus.FAILED:
            return payment
        try:
            payment = self._apply(
                payment,
                "fail",
                PaymentEventType.FAILED,
                source,
                metadata={**(metadata or {}), "reason": reason},
                reason=reason,
            )
        except ConcurrentTransition:
            current = self._reload(payment)
            if current.status == PaymentStatus.FAILED:
                return current
            raise self._conflict(current, "fail") from None

        self.get_logger().warning(
            "Payment failed",
            extra={"payment_id": str(payment.id), "reason": reason, "source": source},
        )
        self._notify(payment, PaymentEventType.FAILED)
        return payment

    def _fail_after_gateway_error(self, payment: Payment, error: GatewayError, source: str) -> None:
        """Record a terminal gateway error on the payment, if it can still fail."""
        self.get_logger().error(
            "Terminal gateway error",
            extra={
                "payment_id": str(payment.id),
                "error_code": error.error_code,
                "error": error.message,
            },
        )
        try:
            self._apply(
                payment,
                "fail",
                PaymentEventType.FAILED,
                source,
                metadata={"error_code": error.error_code, "reason": error.message},
                reason=error.message,
            )
        except (StateConflictError, ConcurrentTransition):
            self.get_logger().warning(
                "Could not mark payment failed after gateway error",
                extra={"payment_id": str(payment.id), "status": payment.status},
            )
            return
        self._notify(payment, PaymentEventType.FAILED)

    # =========================================================================
    # Webhook bookkeeping
    # =========================================================================

    def note_webhook(self, payment_id, event_id: str, event_type: str) -> None:
        """Record the last processor event seen for a payment. Touches no state fields."""
        now = timezone.now()
        Payment.objects.filter(pk=payment_id).update(
            last_webhook_event_id=event_id,
            last_webhook_type=event_type,
            last_webhook_at=now,
            updated_at=now,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _apply(
        self,
        payment: Payment,
        transition_name: str,
        event_type: str,
        source: str,
        actor_id=None,
        metadata: dict[str, Any] | None = None,
        **kwargs,
    ) -> Payment:
        """
        Run one FSM transition and write its audit row atomically.

        Raises:
            StateConflictError: Transition not allowed from the loaded state
            ConcurrentTransition: Row changed since it was loaded
        """
        from_status = payment.status
        from_escrow_status = payment.escrow_status

        with self.atomic():
            try:
                getattr(payment, transition_name)(**kwargs)
            except TransitionNotAllowed as e:
                raise self._conflict(payment, transition_name) from e
            payment.save()
            self._record_event(
                payment,
                event_type,
                source,
                actor_id=actor_id,
                from_status=from_status,
                from_escrow_status=from_escrow_status,
                metadata=metadata,
            )
        return payment

    def _record_event(
        self,
        payment: Payment,
        event_type: str,
        source: str,
        actor_id=None,
        from_status: str = "",
        from_escrow_status: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> PaymentEvent:
        return PaymentEvent.objects.create(
            payment=payment,
            event_type=event_type,
            source=source,
            actor_id=str(actor_id) if actor_id is not None else None,
            from_status=from_status,
            to_status=payment.status,
            from_escrow_status=from_escrow_status,
            to_escrow_status=payment.escrow_status,
            metadata=metadata or {},
        )

    @staticmethod
    def _reload(payment: Payment) -> Payment:
        return Payment.objects.get(pk=payment.pk)

    @staticmethod
    def _require_payer(payment: Payment, caller_id, operation: str) -> None:
        if caller_id is None or str(caller_id) != str(payment.payer_id):
            raise PaymentPermissionError(
                f"Only the payer can {operation} this payment",
                details={"payment_id": str(payment.id), "operation": operation},
            )

    @staticmethod
    def _conflict(payment: Payment, operation: str, message: str | None = None) -> StateConflictError:
        return StateConflictError(
            message
            or f"Cannot {operation} payment in state ({payment.status}, {payment.escrow_status})",
            details={
                "payment_id": str(payment.id),
                "status": payment.status,
                "escrow_status": payment.escrow_status,
                "operation": operation,
            },
        )

    def _notify(self, payment: Payment, event_type: str) -> None:
        """Queue the party notification once the transition has committed."""
        from escrow.tasks import notify_payment_event

        payment_id = str(payment.id)

        def enqueue():
            try:
                notify_payment_event.delay(payment_id, event_type)
            except Exception:
                self.get_logger().error(
                    "Failed to enqueue payment notification",
                    extra={"payment_id": payment_id, "event_type": event_type},
                    exc_info=True,
                )

        transaction.on_commit(enqueue)
