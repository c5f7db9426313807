"""
State enums for escrow models.

Import from here rather than from the states module directly.
"""

from escrow.state_machines.states import (
    ACTIVE_ESCROW_STATUSES,
    TERMINAL_ESCROW_STATUSES,
    EscrowStatus,
    OnboardingStatus,
    PaymentEventSource,
    PaymentEventType,
    PaymentStatus,
    PaymentType,
    WebhookEventStatus,
)

__all__ = [
    "ACTIVE_ESCROW_STATUSES",
    "TERMINAL_ESCROW_STATUSES",
    "EscrowStatus",
    "OnboardingStatus",
    "PaymentEventSource",
    "PaymentEventType",
    "PaymentStatus",
    "PaymentType",
    "WebhookEventStatus",
]
