"""
Webhook event handlers.

Handlers are registered per event class and receive the typed event plus
the ledger. They never write Payment fields themselves: every state
change goes through an EscrowLedger operation.

Handler contract:
    - return ServiceResult.success(...) when the event was applied or
      deliberately ignored (unknown payment, stale event)
    - return ServiceResult.failure(...) for malformed payloads
    - let ledger exceptions (StateConflictError, ...) propagate; the
      reconciler records them on the ProcessedWebhookEvent row

Usage:
    @register_handler(PaymentIntentSucceeded)
    def handle_intent_succeeded(event, ledger) -> ServiceResult:
        ...
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from core.services import ServiceResult

from escrow.state_machines import PaymentEventSource
from escrow.webhooks.events import (
    AccountUpdated,
    CapabilityUpdated,
    ChargeRefunded,
    DisputeCreated,
    PaymentIntentFailed,
    PaymentIntentSucceeded,
    UnknownEvent,
)

if TYPE_CHECKING:
    from escrow.models import Payment
    from escrow.services import EscrowLedger
    from escrow.webhooks.events import WebhookEvent


logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


EVENT_HANDLERS: dict[type, Callable[..., ServiceResult]] = {}


def register_handler(event_class: type) -> Callable:
    """
    Decorator to register the handler for one event class.

    Args:
        event_class: A dataclass from escrow.webhooks.events
    """

    def decorator(func: Callable[..., ServiceResult]) -> Callable:
        EVENT_HANDLERS[event_class] = func
        logger.debug(f"Registered webhook handler for {event_class.__name__}")
        return func

    return decorator


def dispatch_event(event: WebhookEvent, ledger: EscrowLedger) -> ServiceResult:
    """Run the handler registered for the event's class."""
    handler = EVENT_HANDLERS.get(type(event))
    if handler is None:
        logger.info(
            f"No handler registered for {type(event).__name__}",
            extra={"event_id": event.event_id, "event_type": event.event_type},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {event.event_type} to handler",
        extra={"event_id": event.event_id},
    )
    return handler(event, ledger)


def _invalid_payload(event: WebhookEvent, field_name: str) -> ServiceResult:
    logger.error(
        f"{event.event_type}: missing {field_name}",
        extra={"event_id": event.event_id},
    )
    return ServiceResult.failure(
        f"Could not extract {field_name} from webhook",
        error_code="INVALID_WEBHOOK_PAYLOAD",
    )


def _unknown_payment(event: WebhookEvent, **references) -> ServiceResult:
    logger.warning(
        f"{event.event_type}: no payment for this event, ignoring",
        extra={"event_id": event.event_id, **references},
    )
    return ServiceResult.success(None)


def _note(ledger: EscrowLedger, payment: Payment, event: WebhookEvent) -> None:
    ledger.note_webhook(payment.id, event.event_id, event.event_type)


# =============================================================================
# Payment Intent Handlers
# =============================================================================


@register_handler(PaymentIntentSucceeded)
def handle_intent_succeeded(event: PaymentIntentSucceeded, ledger: EscrowLedger) -> ServiceResult:
    """Funds authorized: move a pending payment to processing."""
    if not event.intent_id:
        return _invalid_payload(event, "payment_intent id")

    payment = ledger.find_by_intent(event.intent_id)
    if payment is None:
        return _unknown_payment(event, intent_id=event.intent_id)

    _note(ledger, payment, event)
    payment = ledger.mark_processing(
        payment.id,
        source=PaymentEventSource.WEBHOOK,
        metadata={"event_id": event.event_id, "intent_status": event.intent_status},
    )
    return ServiceResult.success(payment)


@register_handler(PaymentIntentFailed)
def handle_intent_failed(event: PaymentIntentFailed, ledger: EscrowLedger) -> ServiceResult:
    """
    Payment attempt failed: move the payment to failed.

    A failure reported after escrow already settled is stale (delivered
    out of order) and ignored.
    """
    if not event.intent_id:
        return _invalid_payload(event, "payment_intent id")

    payment = ledger.find_by_intent(event.intent_id)
    if payment is None:
        return _unknown_payment(event, intent_id=event.intent_id)

    _note(ledger, payment, event)
    if payment.is_escrow_terminal:
        logger.warning(
            "payment_failed for settled payment, ignoring",
            extra={"event_id": event.event_id, "payment_id": str(payment.id)},
        )
        return ServiceResult.success(payment)

    payment = ledger.fail(
        payment.id,
        reason=event.failure_message,
        source=PaymentEventSource.WEBHOOK,
        metadata={"event_id": event.event_id, "failure_code": event.failure_code},
    )
    return ServiceResult.success(payment)


# =============================================================================
# Charge Handlers
# =============================================================================


@register_handler(ChargeRefunded)
def handle_charge_refunded(event: ChargeRefunded, ledger: EscrowLedger) -> ServiceResult:
    """Refund made on the Stripe side: move the payment to refunded."""
    if not event.charge_id and not event.intent_id:
        return _invalid_payload(event, "charge id")

    payment = ledger.find_by_intent(event.intent_id) or ledger.find_by_charge(event.charge_id)
    if payment is None:
        return _unknown_payment(event, intent_id=event.intent_id, charge_id=event.charge_id)

    _note(ledger, payment, event)
    if not event.fully_refunded:
        logger.warning(
            "Partial refund reported, escrow state unchanged",
            extra={
                "event_id": event.event_id,
                "payment_id": str(payment.id),
                "amount_refunded": event.amount_refunded,
            },
        )
        return ServiceResult.success(payment)

    payment = ledger.record_processor_refund(
        payment.id,
        refund_id=event.refund_id,
        metadata={"event_id": event.event_id, "charge_id": event.charge_id},
    )
    return ServiceResult.success(payment)


@register_handler(DisputeCreated)
def handle_dispute_created(event: DisputeCreated, ledger: EscrowLedger) -> ServiceResult:
    """Dispute opened: hand the payment off. Resolved by intent, then by charge."""
    if not event.charge_id and not event.intent_id:
        return _invalid_payload(event, "charge id")

    payment = ledger.find_by_intent(event.intent_id) or ledger.find_by_charge(event.charge_id)
    if payment is None:
        return _unknown_payment(event, intent_id=event.intent_id, charge_id=event.charge_id)

    _note(ledger, payment, event)
    payment = ledger.mark_disputed(
        payment.id,
        source=PaymentEventSource.WEBHOOK,
        metadata={
            "event_id": event.event_id,
            "dispute_id": event.dispute_id,
            "reason": event.reason,
        },
    )
    return ServiceResult.success(payment)


# =============================================================================
# Connect Account Handlers
# =============================================================================


@register_handler(AccountUpdated)
def handle_account_updated(event: AccountUpdated, ledger: EscrowLedger) -> ServiceResult:
    if not event.object_id:
        return _invalid_payload(event, "account id")
    return ledger.accounts.apply_account_update(event.account)


@register_handler(CapabilityUpdated)
def handle_capability_updated(event: CapabilityUpdated, ledger: EscrowLedger) -> ServiceResult:
    if not event.capability.get("account"):
        return _invalid_payload(event, "account id")
    return ledger.accounts.apply_capability_update(event.capability)


@register_handler(UnknownEvent)
def handle_unknown(event: UnknownEvent, ledger: EscrowLedger) -> ServiceResult:
    logger.info(
        f"Ignoring unhandled event type {event.event_type}",
        extra={"event_id": event.event_id},
    )
    return ServiceResult.success(None)
