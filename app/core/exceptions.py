"""
Base exception classes for application-wide error handling.

Every domain error raised by a service derives from BaseApplicationError,
which gives the API layer a single shape to render:

    {"error": "...", "error_code": "...", "details": {...}}

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Bad input or a failed business precondition (400)
    ├── PermissionDeniedError - Caller may not perform the operation (403)
    ├── NotFoundError - Resource not found (404)
    ├── ConflictError - Operation invalid for the current state (409)
    └── ExternalServiceError - Third-party service failures (502)

Usage:
    from core.exceptions import ConflictError

    raise ConflictError(
        "Cannot refund a released payment",
        error_code="STATE_CONFLICT",
        details={"status": "completed", "escrow_status": "released"},
    )

Note:
    DRF renders these through core.exception_handler, which uses each
    class's ``status_code``. Serializer and authentication errors keep
    DRF's own handling.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (ids, current state, etc.)
        status_code: HTTP status used when rendered by the API layer
    """

    default_error_code: str = "APPLICATION_ERROR"
    status_code: int = 500

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Example:
            {
                "error": "Payment not found",
                "error_code": "PAYMENT_NOT_FOUND",
                "details": {"payment_id": "..."}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation or a business precondition fails.

    Use for service-layer checks such as a non-positive amount or a payee
    without a payout-enabled account. Field-level request validation stays
    in DRF serializers.
    """

    default_error_code: str = "VALIDATION_ERROR"
    status_code: int = 400


class NotFoundError(BaseApplicationError):
    """Raised when a single resource expected to exist is missing."""

    default_error_code: str = "NOT_FOUND"
    status_code: int = 404


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when the caller lacks permission for an operation.

    Authentication failures (missing or invalid token) are DRF's
    AuthenticationFailed; this is for authorization only.
    """

    default_error_code: str = "PERMISSION_DENIED"
    status_code: int = 403


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current resource state.

    Use for:
    - Invalid state transitions
    - Concurrent modification conflicts
    - Duplicate entries
    """

    default_error_code: str = "CONFLICT"
    status_code: int = 409


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external service call fails.

    Log the original error for debugging but don't expose provider
    internals to clients.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
    status_code: int = 502
