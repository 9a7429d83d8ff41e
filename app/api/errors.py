"""Shared API error types and helpers."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from fastapi import HTTPException


class ApiErrorCode(StrEnum):
    """Machine-readable API error codes."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    AUTH_RATE_LIMITED = "AUTH_RATE_LIMITED"
    REQUEST_TOO_LARGE = "REQUEST_TOO_LARGE"
    PAYMENT_PROVIDER_ERROR = "PAYMENT_PROVIDER_ERROR"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


class ApiError(HTTPException):
    """HTTP exception carrying stable API error envelope."""

    def __init__(
        self, *, status_code: int, error_code: ApiErrorCode, message: str
    ) -> None:
        """Build an HTTP exception with standard detail structure."""
        super().__init__(
            status_code=status_code,
            detail={"error_code": str(error_code), "message": message},
        )
        self.error_code = error_code
        self.message = message


class BadRequestError(ApiError):
    """Malformed input, weak password or expired one-time token."""

    def __init__(self, message: str = "Bad request") -> None:
        super().__init__(
            status_code=400, error_code=ApiErrorCode.BAD_REQUEST, message=message
        )


class UnauthorizedError(ApiError):
    """Bad credentials or an untrusted access/refresh token."""

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(
            status_code=401, error_code=ApiErrorCode.UNAUTHORIZED, message=message
        )


class NotFoundError(ApiError):
    """Resource absent, or not owned by the caller."""

    def __init__(self, message: str = "Resource not found") -> None:
        super().__init__(
            status_code=404, error_code=ApiErrorCode.NOT_FOUND, message=message
        )


class ConflictError(ApiError):
    """Resource already exists."""

    def __init__(self, message: str = "Resource already exists") -> None:
        super().__init__(
            status_code=409, error_code=ApiErrorCode.CONFLICT, message=message
        )


class RateLimitedError(ApiError):
    def __init__(self, message: str = "Too many requests") -> None:
        super().__init__(
            status_code=429, error_code=ApiErrorCode.AUTH_RATE_LIMITED, message=message
        )


class PaymentProviderError(ApiError):
    """Upstream payment provider failed or returned an unusable response."""

    def __init__(self, message: str = "Payment provider error") -> None:
        super().__init__(
            status_code=502,
            error_code=ApiErrorCode.PAYMENT_PROVIDER_ERROR,
            message=message,
        )


def to_error_payload(detail: Any, status_code: int) -> dict[str, Any]:
    """Normalize HTTP exception detail into stable error payload."""
    if isinstance(detail, dict):
        error_code = str(detail.get("error_code") or f"HTTP_{status_code}")
        message = str(detail.get("message") or detail.get("detail") or "HTTP error")
        return {"success": False, "error_code": error_code, "message": message}
    return {
        "success": False,
        "error_code": f"HTTP_{status_code}",
        "message": str(detail or "HTTP error"),
    }
