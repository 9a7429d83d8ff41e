"""Authentication service for register, login, refresh and account recovery."""

from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Callable, Protocol

from app.api.errors import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    UnauthorizedError,
)
from app.auth.models import AuthResult, SafeUser, Session, User, UserRole
from app.auth.repository import AuthRepository, DuplicateEmailError
from app.auth.sessions import SessionManager
from app.auth.tokens import TokenCodec
from app.core.config import AuthConfig
from app.core.security import generate_opaque_token, hash_password, verify_password

LOGGER = logging.getLogger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"
MIN_PASSWORD_LENGTH = 8


class EmailOutbox(Protocol):
    def send_verification(self, email: str, token: str) -> None: ...

    def send_password_reset(self, email: str, token: str) -> None: ...


def validate_password_strength(password: str) -> None:
    """Require 8+ characters with upper, lower and a digit."""
    if len(password) < MIN_PASSWORD_LENGTH:
        raise BadRequestError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )
    if not (
        re.search(r"[A-Z]", password)
        and re.search(r"[a-z]", password)
        and re.search(r"[0-9]", password)
    ):
        raise BadRequestError(
            "Password must contain at least one uppercase letter, "
            "one lowercase letter, and one number"
        )


class AuthService:
    """Orchestrates credential checks, sessions and access tokens."""

    def __init__(
        self,
        *,
        repo: AuthRepository,
        sessions: SessionManager,
        codec: TokenCodec,
        emails: EmailOutbox,
        config: AuthConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._repo = repo
        self._sessions = sessions
        self._codec = codec
        self._emails = emails
        self._config = config
        self._clock = clock
        # Unknown-email logins verify against this so they cost as much as a wrong password.
        self._dummy_hash = self._hash(uuid.uuid4().hex)

    def _now(self) -> int:
        return int(self._clock())

    def _hash(self, password: str) -> str:
        return hash_password(password, self._config.password_hash_iterations)

    def _issue(self, user: User, session: Session) -> AuthResult:
        return AuthResult(
            user=user.to_safe(),
            access_token=self._codec.issue_access_token(user),
            refresh_token=session.refresh_token,
            expires_in=self._codec.access_token_ttl_seconds,
            session_id=session.id,
        )

    def _send_verification(self, user: User, token: str) -> None:
        try:
            self._emails.send_verification(user.email, token)
        except Exception:
            LOGGER.exception("verification_email_failed", extra={"user_id": user.id})

    def bootstrap_admin_user(self) -> None:
        """Create the configured admin account if the email is still free.

        An existing account is left untouched, whatever its role.
        """
        email = self._config.admin_email.strip().lower()
        if not email or not self._config.admin_password:
            return
        existing = self._repo.get_user_by_email(email)
        if existing is not None:
            LOGGER.info("admin_bootstrap_skipped", extra={"user_id": existing.id})
            return
        self.create_admin_user(email, self._config.admin_password)

    def create_admin_user(self, email: str, password: str) -> bool:
        """Create a verified admin, or promote an existing account. True if created.

        Promotion requires a verified email and the account's own password.
        """
        normalized_email = email.strip().lower()
        existing = self._repo.get_user_by_email(normalized_email)
        if existing is not None:
            if existing.role == UserRole.ADMIN:
                return False
            if not existing.email_verified or not verify_password(
                password, existing.password_hash
            ):
                LOGGER.warning("admin_promotion_refused", extra={"user_id": existing.id})
                raise ConflictError(
                    "Account exists; promotion requires a verified email and its password"
                )
            self._repo.update_user(existing.id, role=UserRole.ADMIN.value)
            LOGGER.info("admin_promoted", extra={"user_id": existing.id})
            return False
        validate_password_strength(password)
        now = self._now()
        user = self._repo.create_user(
            User(
                id=uuid.uuid4().hex,
                email=normalized_email,
                password_hash=self._hash(password),
                role=UserRole.ADMIN,
                email_verified=True,
                created_at=now,
                updated_at=now,
            )
        )
        LOGGER.info("admin_created", extra={"user_id": user.id})
        return True

    def register(
        self,
        email: str,
        password: str,
        user_agent: str = "",
        ip_address: str = "",
    ) -> AuthResult:
        """Create an unverified account and sign it in."""
        validate_password_strength(password)
        normalized_email = email.strip().lower()
        if self._repo.get_user_by_email(normalized_email) is not None:
            raise ConflictError("Email already registered")

        now = self._now()
        verification_token = generate_opaque_token()
        try:
            user = self._repo.create_user(
                User(
                    id=uuid.uuid4().hex,
                    email=normalized_email,
                    password_hash=self._hash(password),
                    email_verified=False,
                    email_verification_token=verification_token,
                    email_verification_expires_at=now
                    + self._config.email_verification_ttl_seconds,
                    created_at=now,
                    updated_at=now,
                )
            )
        except DuplicateEmailError as exc:
            raise ConflictError("Email already registered") from exc

        session = self._sessions.create_session(
            user.id, user_agent=user_agent, ip_address=ip_address
        )
        LOGGER.info("user_registered", extra={"user_id": user.id})
        self._send_verification(user, verification_token)
        return self._issue(user, session)

    def login(
        self,
        email: str,
        password: str,
        user_agent: str = "",
        ip_address: str = "",
    ) -> AuthResult:
        """Check credentials; unknown email and wrong password are indistinguishable."""
        user = self._repo.get_user_by_email(email.strip().lower())
        if user is None:
            verify_password(password, self._dummy_hash)
            raise UnauthorizedError(INVALID_CREDENTIALS_MESSAGE)
        if not verify_password(password, user.password_hash):
            raise UnauthorizedError(INVALID_CREDENTIALS_MESSAGE)

        session = self._sessions.create_session(
            user.id, user_agent=user_agent, ip_address=ip_address
        )
        LOGGER.info("user_logged_in", extra={"user_id": user.id, "session_id": session.id})
        return self._issue(user, session)

    def refresh_access_token(
        self,
        refresh_token: str,
        user_agent: str = "",
        ip_address: str = "",
    ) -> AuthResult:
        """Rotate the refresh token and mint an access token from current user state."""
        session = self._sessions.rotate(
            refresh_token, user_agent=user_agent or None, ip_address=ip_address or None
        )
        user = self._repo.get_user_by_id(session.user_id)
        if user is None:
            self._sessions.revoke(session.refresh_token)
            raise UnauthorizedError("Invalid or expired refresh token")
        return self._issue(user, session)

    def signout(self, refresh_token: str | None) -> None:
        """Revoke the session if it still exists; always succeeds."""
        if not refresh_token:
            return
        try:
            self._sessions.revoke(refresh_token)
        except Exception:
            LOGGER.exception("signout_revoke_failed")

    def signout_all_devices(self, user_id: str) -> int:
        return self._sessions.revoke_all_for_user(user_id)

    def request_password_reset(self, email: str) -> None:
        """Start a reset if the account exists. Callers see no difference either way."""
        user = self._repo.get_user_by_email(email.strip().lower())
        if user is None:
            LOGGER.info("password_reset_unknown_email")
            return
        token = generate_opaque_token()
        self._repo.update_user(
            user.id,
            password_reset_token=token,
            password_reset_expires_at=self._now() + self._config.password_reset_ttl_seconds,
        )
        try:
            self._emails.send_password_reset(user.email, token)
        except Exception:
            LOGGER.exception("password_reset_email_failed", extra={"user_id": user.id})
        LOGGER.info("password_reset_requested", extra={"user_id": user.id})

    def reset_password(self, token: str, new_password: str) -> None:
        """Set a new password from a reset token and log out every device."""
        user = self._repo.get_user_by_reset_token(token) if token else None
        if (
            user is None
            or user.password_reset_expires_at is None
            or user.password_reset_expires_at <= self._now()
        ):
            raise BadRequestError("Invalid or expired reset token")
        validate_password_strength(new_password)
        revoked = self._repo.reset_password(
            user.id, self._hash(new_password), reset_token=token, now=self._now()
        )
        if revoked is None:
            raise BadRequestError("Invalid or expired reset token")
        LOGGER.info(
            "password_reset_completed sessions_revoked=%s", revoked, extra={"user_id": user.id}
        )

    def change_password(
        self, user_id: str, current_password: str, new_password: str
    ) -> None:
        """Replace the password of a signed-in user and revoke all sessions."""
        user = self._repo.get_user_by_id(user_id)
        if user is None:
            raise UnauthorizedError("User not found")
        if not verify_password(current_password, user.password_hash):
            raise UnauthorizedError("Current password is incorrect")
        validate_password_strength(new_password)
        self._repo.change_password(user.id, self._hash(new_password))
        LOGGER.info("password_changed", extra={"user_id": user.id})

    def verify_email(self, token: str) -> SafeUser:
        user = self._repo.get_user_by_verification_token(token) if token else None
        if user is None:
            raise BadRequestError("Invalid verification token")
        if user.email_verified:
            raise BadRequestError("Email already verified")
        now = self._now()
        if (
            user.email_verification_expires_at is None
            or user.email_verification_expires_at <= now
        ):
            raise BadRequestError("Verification token has expired")
        if not self._repo.mark_email_verified(user.id, token, now):
            raise BadRequestError("Invalid verification token")
        LOGGER.info("email_verified", extra={"user_id": user.id})
        return user.model_copy(
            update={
                "email_verified": True,
                "email_verification_token": None,
                "email_verification_expires_at": None,
            }
        ).to_safe()

    def resend_verification_email(self, user_id: str) -> None:
        """Issue a new verification token. Callers must wrap this in a rate limit."""
        user = self._repo.get_user_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        if user.email_verified:
            raise BadRequestError("Email already verified")
        token = generate_opaque_token()
        self._repo.update_user(
            user.id,
            email_verification_token=token,
            email_verification_expires_at=self._now()
            + self._config.email_verification_ttl_seconds,
        )
        self._send_verification(user, token)

    def get_current_user(self, user_id: str) -> SafeUser:
        user = self._repo.get_user_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user.to_safe()

    def get_sessions(self, user_id: str) -> list[Session]:
        return self._sessions.list_active_for_user(user_id)

    def revoke_session(self, session_id: str, user_id: str) -> None:
        self._sessions.revoke_by_id(session_id, user_id)
