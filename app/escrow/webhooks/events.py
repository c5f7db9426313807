"""
Typed Stripe webhook events.

parse_event() turns a verified event dict into one of a closed set of
frozen dataclasses. Event types the escrow app does not act on become
UnknownEvent, which is still recorded for audit.

Usage:
    event = parse_event(event_data)
    if isinstance(event, PaymentIntentSucceeded):
        ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class BaseEvent:
    """
    Fields shared by every event.

    Attributes:
        event_id: Stripe Event ID (evt_xxx)
        event_type: Stripe event type string
        object_id: ID of the object in data.object
    """

    event_id: str
    event_type: str
    object_id: str = ""


@dataclass(frozen=True)
class PaymentIntentSucceeded(BaseEvent):
    """
    Funds authorized for a manual-capture intent.

    Sent as payment_intent.amount_capturable_updated when the payer
    confirms, and as payment_intent.succeeded once captured.
    """

    intent_id: str = ""
    intent_status: str = ""
    charge_id: str | None = None


@dataclass(frozen=True)
class PaymentIntentFailed(BaseEvent):
    intent_id: str = ""
    failure_code: str | None = None
    failure_message: str = ""


@dataclass(frozen=True)
class ChargeRefunded(BaseEvent):
    """
    A charge was refunded on Stripe.

    ``fully_refunded`` is False for partial refunds, which the escrow
    ledger does not model.
    """

    charge_id: str = ""
    intent_id: str = ""
    refund_id: str | None = None
    amount_refunded: int = 0
    fully_refunded: bool = False


@dataclass(frozen=True)
class DisputeCreated(BaseEvent):
    dispute_id: str = ""
    charge_id: str = ""
    intent_id: str = ""
    reason: str = ""


@dataclass(frozen=True)
class AccountUpdated(BaseEvent):
    account: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CapabilityUpdated(BaseEvent):
    capability: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UnknownEvent(BaseEvent):
    pass


WebhookEvent = Union[
    PaymentIntentSucceeded,
    PaymentIntentFailed,
    ChargeRefunded,
    DisputeCreated,
    AccountUpdated,
    CapabilityUpdated,
    UnknownEvent,
]


def _id_of(value: Any) -> str:
    """Return the id of an expandable field, which may be a string or an object."""
    if isinstance(value, dict):
        return value.get("id") or ""
    return value or ""


def _parse_intent_succeeded(base: dict[str, Any], obj: dict[str, Any]) -> PaymentIntentSucceeded:
    return PaymentIntentSucceeded(
        **base,
        intent_id=obj.get("id") or "",
        intent_status=obj.get("status") or "",
        charge_id=_id_of(obj.get("latest_charge")) or None,
    )


def _parse_intent_failed(base: dict[str, Any], obj: dict[str, Any]) -> PaymentIntentFailed:
    error = obj.get("last_payment_error") or {}
    return PaymentIntentFailed(
        **base,
        intent_id=obj.get("id") or "",
        failure_code=error.get("decline_code") or error.get("code"),
        failure_message=error.get("message") or "Payment failed",
    )


def _parse_charge_refunded(base: dict[str, Any], obj: dict[str, Any]) -> ChargeRefunded:
    refunds = (obj.get("refunds") or {}).get("data") or []
    return ChargeRefunded(
        **base,
        charge_id=obj.get("id") or "",
        intent_id=_id_of(obj.get("payment_intent")),
        refund_id=refunds[0].get("id") if refunds else None,
        amount_refunded=obj.get("amount_refunded") or 0,
        fully_refunded=bool(obj.get("refunded")),
    )


def _parse_dispute_created(base: dict[str, Any], obj: dict[str, Any]) -> DisputeCreated:
    return DisputeCreated(
        **base,
        dispute_id=obj.get("id") or "",
        charge_id=_id_of(obj.get("charge")),
        intent_id=_id_of(obj.get("payment_intent")),
        reason=obj.get("reason") or "",
    )


def _parse_account_updated(base: dict[str, Any], obj: dict[str, Any]) -> AccountUpdated:
    return AccountUpdated(**base, account=obj)


def _parse_capability_updated(base: dict[str, Any], obj: dict[str, Any]) -> CapabilityUpdated:
    return CapabilityUpdated(**base, capability=obj)


EVENT_PARSERS = {
    "payment_intent.succeeded": _parse_intent_succeeded,
    "payment_intent.amount_capturable_updated": _parse_intent_succeeded,
    "payment_intent.payment_failed": _parse_intent_failed,
    "charge.refunded": _parse_charge_refunded,
    "charge.dispute.created": _parse_dispute_created,
    "account.updated": _parse_account_updated,
    "capability.updated": _parse_capability_updated,
}


def parse_event(event_data: dict[str, Any]) -> WebhookEvent:
    """
    Build a typed event from a verified Stripe event dict.

    Never raises on unexpected shapes: missing fields come back empty and
    the handler decides whether that is an error.
    """
    event_type = event_data.get("type") or ""
    obj = (event_data.get("data") or {}).get("object") or {}
    base = {
        "event_id": event_data.get("id") or "",
        "event_type": event_type,
        "object_id": obj.get("id") or "",
    }

    parser = EVENT_PARSERS.get(event_type)
    if parser is None:
        return UnknownEvent(**base)
    return parser(base, obj)
