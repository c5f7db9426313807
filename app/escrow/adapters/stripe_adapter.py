"""
Stripe API adapter for escrow operations.

This module provides the StripeAdapter class, the only place the escrow
app talks to the Stripe SDK. Every call goes through one code path that
adds timing logs and translates SDK exceptions into escrow.exceptions,
split into retryable and terminal gateway errors.

The adapter is built once per process (see escrow.adapters.get_stripe_adapter)
and handed to the ledger, the webhook reconciler and the sweeps, so tests
can pass a mock instead.

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Webhook signing secret
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- STRIPE_MAX_RETRIES: SDK network retries (default: 3)

Usage:
    adapter = StripeAdapter.from_settings()

    intent = adapter.create_payment_intent(
        CreatePaymentIntentParams(
            amount_cents=10000,
            currency="usd",
            destination_account="acct_123",
            application_fee_cents=500,
            idempotency_key=IdempotencyKeyGenerator.generate("create_intent", payment_id),
        )
    )

    # Raises NotCapturableError unless the intent is in requires_capture
    adapter.capture_payment_intent(intent.id, amount_to_capture=9500, idempotency_key=...)
"""

from __future__ import annotations

import hashlib
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import stripe
from django.conf import settings

from escrow.exceptions import (
    CardDeclinedError,
    GatewayError,
    GatewayRateLimitError,
    GatewayTimeoutError,
    GatewayUnavailableError,
    InsufficientFundsError,
    InvalidAccountError,
    InvalidRequestError,
    NotCapturableError,
    WebhookSignatureError,
)

if TYPE_CHECKING:
    from collections.abc import Callable

CAPTURABLE_STATUS = "requires_capture"


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CreatePaymentIntentParams:
    """
    Parameters for creating an escrow PaymentIntent.

    The intent always uses manual capture: funds are authorized now and
    captured on release. The destination transfer and application fee
    make Stripe route the captured funds to the payee and keep the fee.

    Attributes:
        amount_cents: Gross amount in smallest currency unit
        currency: ISO 4217 currency code
        destination_account: Payee's connected account (acct_xxx)
        application_fee_cents: Platform fee kept on capture
        idempotency_key: Unique key for idempotent creation
        metadata: Key-value pairs attached to the intent
        description: Optional statement description
    """

    amount_cents: int
    currency: str
    destination_account: str
    application_fee_cents: int
    idempotency_key: str
    metadata: dict[str, str] = field(default_factory=dict)
    description: str | None = None

    def __post_init__(self) -> None:
        if self.amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        if self.application_fee_cents < 0:
            raise ValueError("application_fee_cents can't be negative")
        if self.application_fee_cents >= self.amount_cents:
            raise ValueError("application_fee_cents must be less than amount_cents")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if not self.currency:
            raise ValueError("currency is required")
        if not self.destination_account:
            raise ValueError("destination_account is required")


@dataclass
class PaymentIntentResult:
    """
    Result from Stripe PaymentIntent operations.

    Attributes:
        id: PaymentIntent ID (pi_xxx)
        status: Current status (requires_payment_method, requires_capture, ...)
        amount_cents: Amount in cents
        amount_capturable: Authorized amount still capturable
        amount_received: Amount captured so far
        currency: Currency code
        client_secret: Secret for client-side confirmation
        latest_charge: Charge ID of the latest charge, if any
        metadata: Attached metadata
        raw_response: Full Stripe response dict
    """

    id: str
    status: str
    amount_cents: int
    currency: str
    amount_capturable: int = 0
    amount_received: int = 0
    client_secret: str | None = None
    latest_charge: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def is_capturable(self) -> bool:
        return self.status == CAPTURABLE_STATUS

    @property
    def captured(self) -> bool:
        return self.amount_received > 0


@dataclass
class TransferResult:
    id: str
    amount_cents: int
    currency: str
    destination_account: str
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class RefundResult:
    """
    Result from Stripe Refund operations.

    Attributes:
        id: Refund ID (re_xxx)
        amount_cents: Refunded amount in cents
        currency: Currency code
        status: Refund status (succeeded, pending, failed)
        payment_intent_id: Original PaymentIntent ID
    """

    id: str
    amount_cents: int
    currency: str
    status: str
    payment_intent_id: str
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class AccountResult:
    """
    Result from Stripe Connect account operations.

    Attributes:
        id: Account ID (acct_xxx)
        charges_enabled / payouts_enabled / details_submitted: Account flags
        disabled_reason: requirements.disabled_reason, if any
        currently_due: requirements.currently_due field list
    """

    id: str
    charges_enabled: bool = False
    payouts_enabled: bool = False
    details_submitted: bool = False
    disabled_reason: str | None = None
    currently_due: list[str] = field(default_factory=list)
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class AccountLinkResult:
    url: str
    expires_at: int


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for Stripe API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    Keys are deterministic: the same operation on the same payment always
    produces the same key, so a retried or concurrent call is collapsed by
    Stripe into the first one.

    Example:
        key = IdempotencyKeyGenerator.generate("capture", payment.id)
        # "capture:550e8400-e29b-41d4-a716-446655440000:1:a1b2c3d4"
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
    ) -> str:
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]

        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Adapter for Stripe API operations used by the escrow app.

    Holds the API key and webhook secret on the instance and passes the
    key explicitly with every request. All methods block on network I/O
    and raise GatewayError subclasses on failure.

    Usage:
        adapter = StripeAdapter(api_key="sk_test_...", webhook_secret="whsec_...")
        intent = adapter.retrieve_payment_intent("pi_123")
    """

    def __init__(
        self,
        api_key: str,
        webhook_secret: str = "",
        timeout: int = 10,
        max_retries: int = 3,
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.timeout = timeout
        self.max_retries = max_retries
        self._configure_http_client()

    @classmethod
    def from_settings(cls) -> StripeAdapter:
        return cls(
            api_key=settings.STRIPE_SECRET_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            timeout=getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10),
            max_retries=getattr(settings, "STRIPE_MAX_RETRIES", 3),
        )

    def _configure_http_client(self) -> None:
        """Set the SDK's network timeout and retry count."""
        stripe.default_http_client = stripe.RequestsClient(timeout=self.timeout)
        stripe.max_network_retries = self.max_retries

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    def _call(
        self,
        operation: str,
        log_context: dict[str, Any],
        func: Callable[[], Any],
        level: int = logging.INFO,
    ) -> Any:
        """Run one SDK call with timing logs and error translation."""
        logger = self.get_logger()
        log_context = {"operation": operation, **log_context}

        start_time = time.time()
        logger.log(level, "Starting Stripe operation", extra=log_context)

        try:
            response = func()
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self._handle_stripe_error(e, log_context, duration_ms)
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.log(
            level,
            "Stripe operation completed",
            extra={
                **log_context,
                "stripe_object_id": getattr(response, "id", None),
                "duration_ms": duration_ms,
            },
        )
        return response

    # =========================================================================
    # PaymentIntents
    # =========================================================================

    def create_payment_intent(self, params: CreatePaymentIntentParams) -> PaymentIntentResult:
        """
        Create a manual-capture PaymentIntent routed to the payee's account.

        Raises:
            InvalidAccountError: Destination account can't receive transfers
            InvalidRequestError: Invalid parameters
            GatewayRetryableError: Stripe unreachable, rate limited or timed out
        """
        intent = self._call(
            "create_payment_intent",
            {
                "amount_cents": params.amount_cents,
                "currency": params.currency,
                "destination_account": params.destination_account,
                "application_fee_cents": params.application_fee_cents,
                "idempotency_key": params.idempotency_key,
            },
            lambda: stripe.PaymentIntent.create(
                amount=params.amount_cents,
                currency=params.currency,
                capture_method="manual",
                payment_method_types=["card"],
                application_fee_amount=params.application_fee_cents,
                transfer_data={"destination": params.destination_account},
                metadata=params.metadata,
                description=params.description,
                idempotency_key=params.idempotency_key,
                api_key=self.api_key,
            ),
        )
        return self._to_intent_result(intent)

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntentResult:
        intent = self._call(
            "retrieve_payment_intent",
            {"payment_intent_id": payment_intent_id},
            lambda: stripe.PaymentIntent.retrieve(payment_intent_id, api_key=self.api_key),
            level=logging.DEBUG,
        )
        return self._to_intent_result(intent)

    def capture_payment_intent(
        self,
        payment_intent_id: str,
        idempotency_key: str,
        amount_to_capture: int | None = None,
    ) -> PaymentIntentResult:
        """
        Capture an authorized PaymentIntent.

        Retrieves the intent first and refuses to call capture unless it is
        in requires_capture, so a stale or re-entrant caller never issues a
        second capture.

        Raises:
            NotCapturableError: Intent is not in requires_capture. The
                retrieved intent is attached as ``error.intent``.
            GatewayError: Retrieval or capture failed
        """
        current = self.retrieve_payment_intent(payment_intent_id)
        if not current.is_capturable:
            self.get_logger().warning(
                "PaymentIntent not capturable",
                extra={
                    "payment_intent_id": payment_intent_id,
                    "intent_status": current.status,
                },
            )
            raise NotCapturableError(
                f"PaymentIntent {payment_intent_id} is '{current.status}', not capturable",
                intent=current,
            )

        capture_params: dict[str, Any] = {}
        if amount_to_capture is not None:
            capture_params["amount_to_capture"] = amount_to_capture

        intent = self._call(
            "capture_payment_intent",
            {
                "payment_intent_id": payment_intent_id,
                "amount_to_capture": amount_to_capture,
                "idempotency_key": idempotency_key,
            },
            lambda: stripe.PaymentIntent.capture(
                payment_intent_id,
                idempotency_key=idempotency_key,
                api_key=self.api_key,
                **capture_params,
            ),
        )
        return self._to_intent_result(intent)

    def cancel_payment_intent(
        self,
        payment_intent_id: str,
        idempotency_key: str | None = None,
        reason: str = "abandoned",
    ) -> PaymentIntentResult:
        """
        Cancel a PaymentIntent, voiding any authorization it holds.

        Stripe rejects cancelling an intent that already succeeded or was
        already canceled with InvalidRequestError.
        """
        options: dict[str, Any] = {"api_key": self.api_key}
        if idempotency_key:
            options["idempotency_key"] = idempotency_key

        intent = self._call(
            "cancel_payment_intent",
            {"payment_intent_id": payment_intent_id, "reason": reason},
            lambda: stripe.PaymentIntent.cancel(
                payment_intent_id,
                cancellation_reason=reason,
                **options,
            ),
        )
        return self._to_intent_result(intent)

    # =========================================================================
    # Refunds and Transfers
    # =========================================================================

    def create_refund(
        self,
        payment_intent_id: str,
        idempotency_key: str,
        amount_cents: int | None = None,
        reason: str | None = "requested_by_customer",
        metadata: dict[str, str] | None = None,
    ) -> RefundResult:
        """
        Refund a PaymentIntent. ``amount_cents=None`` refunds the full amount.

        Raises:
            InvalidRequestError: Refund not possible for this intent
        """
        refund_params: dict[str, Any] = {
            "payment_intent": payment_intent_id,
            "metadata": metadata or {},
        }
        if amount_cents is not None:
            refund_params["amount"] = amount_cents
        if reason:
            refund_params["reason"] = reason

        refund = self._call(
            "create_refund",
            {
                "payment_intent_id": payment_intent_id,
                "amount_cents": amount_cents,
                "idempotency_key": idempotency_key,
            },
            lambda: stripe.Refund.create(
                idempotency_key=idempotency_key,
                api_key=self.api_key,
                **refund_params,
            ),
        )
        return RefundResult(
            id=refund.id,
            amount_cents=refund.amount,
            currency=refund.currency,
            status=refund.status,
            payment_intent_id=refund.payment_intent,
            metadata=dict(refund.metadata or {}),
            raw_response=refund.to_dict(),
        )

    def create_transfer(
        self,
        amount_cents: int,
        destination_account: str,
        idempotency_key: str,
        currency: str = "usd",
        metadata: dict[str, str] | None = None,
        source_transaction: str | None = None,
    ) -> TransferResult:
        """
        Transfer funds to a connected account.

        Escrow payments don't need this on release: the destination
        transfer on the intent moves the funds when they are captured.
        """
        transfer_params: dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency,
            "destination": destination_account,
            "metadata": metadata or {},
        }
        if source_transaction:
            transfer_params["source_transaction"] = source_transaction

        transfer = self._call(
            "create_transfer",
            {
                "amount_cents": amount_cents,
                "destination_account": destination_account,
                "idempotency_key": idempotency_key,
            },
            lambda: stripe.Transfer.create(
                idempotency_key=idempotency_key,
                api_key=self.api_key,
                **transfer_params,
            ),
        )
        return TransferResult(
            id=transfer.id,
            amount_cents=transfer.amount,
            currency=transfer.currency,
            destination_account=transfer.destination,
            metadata=dict(transfer.metadata or {}),
            raw_response=transfer.to_dict(),
        )

    # =========================================================================
    # Connect Accounts
    # =========================================================================

    def create_connected_account(
        self,
        email: str,
        idempotency_key: str,
        country: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> AccountResult:
        """Create an Express account that can take card payments and receive transfers."""
        account_params: dict[str, Any] = {
            "type": "express",
            "email": email,
            "capabilities": {
                "card_payments": {"requested": True},
                "transfers": {"requested": True},
            },
            "metadata": metadata or {},
        }
        if country:
            account_params["country"] = country

        account = self._call(
            "create_connected_account",
            {"idempotency_key": idempotency_key},
            lambda: stripe.Account.create(
                idempotency_key=idempotency_key,
                api_key=self.api_key,
                **account_params,
            ),
        )
        return self.to_account_result(account)

    def retrieve_account(self, account_id: str) -> AccountResult:
        account = self._call(
            "retrieve_account",
            {"account_id": account_id},
            lambda: stripe.Account.retrieve(account_id, api_key=self.api_key),
            level=logging.DEBUG,
        )
        return self.to_account_result(account)

    def create_account_link(
        self,
        account_id: str,
        refresh_url: str,
        return_url: str,
    ) -> AccountLinkResult:
        """Create a hosted onboarding link for a connected account."""
        link = self._call(
            "create_account_link",
            {"account_id": account_id},
            lambda: stripe.AccountLink.create(
                account=account_id,
                refresh_url=refresh_url,
                return_url=return_url,
                type="account_onboarding",
                api_key=self.api_key,
            ),
        )
        return AccountLinkResult(url=link.url, expires_at=link.expires_at)

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def verify_webhook_signature(self, payload: bytes, signature: str) -> dict[str, Any]:
        """
        Verify and parse a Stripe webhook event.

        Raises:
            WebhookSignatureError: Signature missing, invalid or payload unparseable
        """
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header")
        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature,
                self.webhook_secret,
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(
                "Invalid webhook signature",
                details={"error": str(e)},
            ) from e
        except ValueError as e:
            raise WebhookSignatureError(
                "Invalid webhook payload",
                details={"error": str(e)},
            ) from e
        return event.to_dict()

    # =========================================================================
    # Conversions
    # =========================================================================

    @staticmethod
    def _to_intent_result(intent) -> PaymentIntentResult:
        latest_charge = getattr(intent, "latest_charge", None)
        if latest_charge is not None and not isinstance(latest_charge, str):
            latest_charge = latest_charge.id
        return PaymentIntentResult(
            id=intent.id,
            status=intent.status,
            amount_cents=intent.amount,
            currency=intent.currency,
            amount_capturable=getattr(intent, "amount_capturable", 0) or 0,
            amount_received=getattr(intent, "amount_received", 0) or 0,
            client_secret=getattr(intent, "client_secret", None),
            latest_charge=latest_charge,
            metadata=dict(intent.metadata or {}),
            raw_response=intent.to_dict(),
        )

    @staticmethod
    def to_account_result(account) -> AccountResult:
        """Build an AccountResult from an SDK object or a webhook dict."""
        data = account if isinstance(account, dict) else account.to_dict()
        requirements = data.get("requirements") or {}
        return AccountResult(
            id=data["id"],
            charges_enabled=bool(data.get("charges_enabled")),
            payouts_enabled=bool(data.get("payouts_enabled")),
            details_submitted=bool(data.get("details_submitted")),
            disabled_reason=requirements.get("disabled_reason"),
            currently_due=list(requirements.get("currently_due") or []),
            raw_response=data,
        )

    # =========================================================================
    # Error Handling
    # =========================================================================

    def _handle_stripe_error(
        self,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe SDK exceptions to gateway errors.

        Raises:
            CardDeclinedError / InsufficientFundsError: Card errors
            InvalidAccountError / InvalidRequestError: Invalid requests
            GatewayRateLimitError: Rate limited
            GatewayTimeoutError: Request timed out
            GatewayUnavailableError: Connection or server errors
        """
        logger = self.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, GatewayError):
            raise error

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None) or getattr(
                error.error, "decline_code", None
            )
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": decline_code},
            )
            if decline_code == "insufficient_funds":
                raise InsufficientFundsError(
                    str(error.user_message or error),
                    stripe_code=error.code,
                    decline_code=decline_code,
                ) from error
            raise CardDeclinedError(
                str(error.user_message or error),
                stripe_code=error.code,
                decline_code=decline_code,
            ) from error

        if isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )
            if "account" in str(error).lower():
                raise InvalidAccountError(str(error), stripe_code=error.code) from error
            raise InvalidRequestError(str(error), stripe_code=error.code) from error

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise GatewayRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                stripe_code="rate_limit",
            ) from error

        if isinstance(error, stripe.APIConnectionError):
            message = str(error).lower()
            if "timed out" in message or "timeout" in message:
                logger.warning("Stripe request timed out", extra=log_context)
                raise GatewayTimeoutError(
                    "Stripe request timed out. Please retry.",
                    stripe_code="timeout",
                ) from error
            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            raise GatewayUnavailableError(
                "Could not connect to Stripe. Please retry.",
                stripe_code="api_connection_error",
            ) from error

        if isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise InvalidRequestError(
                "Stripe authentication failed",
                stripe_code="authentication_error",
            ) from error

        if isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            raise GatewayUnavailableError(
                "Stripe service error. Please retry.",
                stripe_code="api_error",
            ) from error

        logger.error(
            f"Unexpected error from Stripe: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
        raise GatewayUnavailableError(
            f"Unexpected Stripe error: {error}",
            stripe_code="unknown_error",
        ) from error
