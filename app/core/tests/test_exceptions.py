"""
Tests for the core exception hierarchy and its DRF rendering.
"""

import pytest
from rest_framework import exceptions as drf_exceptions
from rest_framework import status

from core.exception_handler import application_exception_handler
from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from core.services import ServiceResult


class TestBaseApplicationError:
    def test_defaults(self):
        error = NotFoundError("Payment not found")

        assert error.error_code == "NOT_FOUND"
        assert error.details == {}
        assert str(error) == "[NOT_FOUND] Payment not found"

    def test_to_dict_includes_details_when_present(self):
        error = ConflictError("Cannot refund", error_code="STATE_CONFLICT", details={"status": "completed"})

        assert error.to_dict() == {
            "error": "Cannot refund",
            "error_code": "STATE_CONFLICT",
            "details": {"status": "completed"},
        }

    def test_to_dict_omits_empty_details(self):
        assert "details" not in ValidationError("Bad amount").to_dict()

    @pytest.mark.parametrize(
        "error_class,expected",
        [
            (BaseApplicationError, 500),
            (ValidationError, 400),
            (PermissionDeniedError, 403),
            (NotFoundError, 404),
            (ConflictError, 409),
            (ExternalServiceError, 502),
        ],
    )
    def test_status_codes(self, error_class, expected):
        assert error_class.status_code == expected


class TestApplicationExceptionHandler:
    def test_renders_application_error(self):
        response = application_exception_handler(
            ConflictError("Cannot release", details={"escrow_status": "refunded"}),
            {"view": None},
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error"] == "Cannot release"
        assert response.data["details"] == {"escrow_status": "refunded"}

    def test_falls_back_to_drf(self):
        response = application_exception_handler(drf_exceptions.NotAuthenticated(), {"view": None})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_unknown_exception_not_handled(self):
        assert application_exception_handler(RuntimeError("boom"), {"view": None}) is None


class TestServiceResult:
    def test_success(self):
        result = ServiceResult.success({"id": 1})

        assert result.success is True
        assert bool(result) is True
        assert result.data == {"id": 1}

    def test_failure(self):
        result = ServiceResult.failure("Unknown account", error_code="PAYOUT_ACCOUNT_NOT_FOUND")

        assert result.success is False
        assert bool(result) is False
        assert result.error_code == "PAYOUT_ACCOUNT_NOT_FOUND"
