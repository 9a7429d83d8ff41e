"""Pydantic models for authentication domain."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field


class UserRole(StrEnum):
    """Account role carried in access token claims."""

    USER = "USER"
    ADMIN = "ADMIN"


class User(BaseModel):
    """Persisted user record. Never returned to callers as-is."""

    id: str
    email: str
    password_hash: str
    role: UserRole = UserRole.USER
    email_verified: bool = False
    email_verification_token: str | None = None
    email_verification_expires_at: int | None = None
    password_reset_token: str | None = None
    password_reset_expires_at: int | None = None
    is_premium: bool = False
    premium_expiry: int | None = None
    created_at: int = 0
    updated_at: int = 0

    def to_safe(self) -> "SafeUser":
        """Project the record onto its caller-visible fields."""
        return SafeUser(
            id=self.id,
            email=self.email,
            role=self.role,
            email_verified=self.email_verified,
            is_premium=self.is_premium,
            premium_expiry=self.premium_expiry,
            created_at=self.created_at,
        )


class SafeUser(BaseModel):
    """User view with credentials and one-time tokens stripped."""

    id: str
    email: str
    role: UserRole
    email_verified: bool
    is_premium: bool
    premium_expiry: int | None = None
    created_at: int = 0


class Session(BaseModel):
    """Server-side refresh token grant bound to one user and device."""

    id: str
    user_id: str
    refresh_token: str
    expires_at: int
    created_at: int
    last_used_at: int
    user_agent: str = ""
    ip_address: str = ""


class SessionView(BaseModel):
    """Active-device listing entry; the refresh token is never exposed."""

    id: str
    user_agent: str
    ip_address: str
    created_at: int
    last_used_at: int
    expires_at: int
    is_current: bool = False


class AccessClaims(BaseModel):
    """Identity carried by a verified access token."""

    user_id: str
    email: str
    role: UserRole
    issued_at: int = 0
    expires_at: int = 0


class AuthResult(BaseModel):
    """Outcome of register/login/refresh: user plus token pair."""

    user: SafeUser
    access_token: str
    refresh_token: str
    expires_in: int
    session_id: str


class RegisterRequest(BaseModel):
    """Registration request payload."""

    email: str = Field(min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(min_length=1, max_length=128)


class LoginRequest(BaseModel):
    """Login request payload."""

    email: str = Field(min_length=3, max_length=254)
    password: str = Field(min_length=1, max_length=128)


class ForgotPasswordRequest(BaseModel):
    email: str = Field(min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1)
    password: str = Field(min_length=1, max_length=128)


class VerifyEmailRequest(BaseModel):
    token: str = Field(min_length=1)


class ChangePasswordRequest(BaseModel):
    """Change-password request payload."""

    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=1, max_length=128)
    confirm_password: str = Field(min_length=1, max_length=128)
