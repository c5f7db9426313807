"""
Service layer helpers shared by every app.

This module provides two building blocks:
- ServiceResult: Result wrapper for expected, non-exceptional failures
- BaseService: Base class with logging and transaction helpers

Service Layer Philosophy:
    Views handle HTTP concerns, models hold data and state machines,
    services orchestrate business operations and external calls.

Pattern Comparison:
    - ServiceResult: expected failures a caller branches on
      (malformed webhook payload, ineligible payee during routing)
    - Exceptions: failures that abort the operation
      (state conflicts, permission errors, gateway errors)

Usage:
    from core.services import BaseService, ServiceResult

    class PayoutAccountService(BaseService):
        @classmethod
        def refresh(cls, user) -> ServiceResult[PayoutAccount]:
            account = PayoutAccount.objects.filter(user=user).first()
            if account is None:
                return ServiceResult.failure(
                    "No payout account", error_code="PAYOUT_ACCOUNT_NOT_FOUND"
                )
            with cls.atomic():
                account.save()
            return ServiceResult.success(account)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code for client handling
        errors: Field-level errors for validation failures

    Usage:
        result = dispatch_event(event)
        if not result.success:
            logger.error(f"Handler failed: {result.error} ({result.error_code})")
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        """Create a successful result carrying ``data``."""
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code for client handling
            errors: Field-level errors (for validation failures)
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
        )

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Provides:
    - A logger named after the concrete service class
    - Explicit transaction boundaries

    Usage:
        class EscrowLedger(BaseService):
            def cancel(self, payment_id):
                with self.atomic():
                    ...
                self.get_logger().info("Payment cancelled", extra={...})
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Return a logger named ``<module>.<ClassName>``."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        Thin wrapper around django.db.transaction.atomic() that makes
        transaction boundaries explicit in service code. Nested calls
        create savepoints.
        """
        with transaction.atomic():
            yield

