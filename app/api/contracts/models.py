"""Pydantic API response models used in OpenAPI contracts."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from app.auth.models import SafeUser, SessionView


class ApiErrorResponse(BaseModel):
    """Stable error envelope for API responses."""

    success: Literal[False] = False
    error_code: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error message")


class HealthResponse(BaseModel):
    """Health check response payload."""

    status: Literal["ok"]


class MessageResponse(BaseModel):
    """Success envelope without payload."""

    success: Literal[True] = True
    message: str
    data: None = None


class AuthUserData(BaseModel):
    user: SafeUser
    expires_in: int


class RegisterData(AuthUserData):
    email_verification_sent: bool = True


class AuthSessionResponse(BaseModel):
    """Login/refresh response; tokens travel only as cookies."""

    success: Literal[True] = True
    message: str
    data: AuthUserData


class RegisterResponse(BaseModel):
    success: Literal[True] = True
    message: str
    data: RegisterData


class UserResponse(BaseModel):
    """Single user payload."""

    success: Literal[True] = True
    message: str
    data: SafeUser


class SessionsData(BaseModel):
    sessions: list[SessionView]


class SessionsResponse(BaseModel):
    """Active device listing."""

    success: Literal[True] = True
    message: str
    data: SessionsData


class RevokedSessionData(BaseModel):
    session_id: str


class RevokeSessionResponse(BaseModel):
    success: Literal[True] = True
    message: str
    data: RevokedSessionData


class CheckoutData(BaseModel):
    checkout_url: str
    reference_number: str
    success_url: str


class CheckoutResponse(BaseModel):
    """Created checkout payload."""

    success: Literal[True] = True
    message: str
    data: CheckoutData


class CheckoutStatusData(BaseModel):
    reference_number: str
    status: str
    is_premium: bool


class CheckoutStatusResponse(BaseModel):
    success: Literal[True] = True
    message: str
    data: CheckoutStatusData
