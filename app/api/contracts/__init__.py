"""Public API response contracts."""

from app.api.contracts.models import (
    ApiErrorResponse,
    AuthSessionResponse,
    AuthUserData,
    CheckoutData,
    CheckoutResponse,
    CheckoutStatusData,
    CheckoutStatusResponse,
    HealthResponse,
    MessageResponse,
    RegisterData,
    RegisterResponse,
    RevokedSessionData,
    RevokeSessionResponse,
    SessionsData,
    SessionsResponse,
    UserResponse,
)

__all__ = [
    "ApiErrorResponse",
    "AuthSessionResponse",
    "AuthUserData",
    "CheckoutData",
    "CheckoutResponse",
    "CheckoutStatusData",
    "CheckoutStatusResponse",
    "HealthResponse",
    "MessageResponse",
    "RegisterData",
    "RegisterResponse",
    "RevokedSessionData",
    "RevokeSessionResponse",
    "SessionsData",
    "SessionsResponse",
    "UserResponse",
]
