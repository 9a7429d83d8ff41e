"""Refresh-token session lifecycle: create, rotate, revoke, list."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable

from app.api.errors import NotFoundError, UnauthorizedError
from app.auth.models import Session
from app.auth.repository import AuthRepository
from app.core.security import generate_opaque_token

LOGGER = logging.getLogger(__name__)

INVALID_REFRESH_MESSAGE = "Invalid or expired refresh token"


class SessionManager:
    """Owns every mutation of session rows."""

    def __init__(
        self,
        repo: AuthRepository,
        *,
        refresh_token_ttl_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._repo = repo
        self._ttl = refresh_token_ttl_seconds
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    def create_session(
        self,
        user_id: str,
        refresh_token: str | None = None,
        ttl_seconds: int | None = None,
        user_agent: str = "",
        ip_address: str = "",
    ) -> Session:
        """Insert a new session row with a fresh random refresh token."""
        now = self._now()
        session = Session(
            id=uuid.uuid4().hex,
            user_id=user_id,
            refresh_token=refresh_token or generate_opaque_token(),
            expires_at=now + (self._ttl if ttl_seconds is None else ttl_seconds),
            created_at=now,
            last_used_at=now,
            user_agent=(user_agent or "")[:512],
            ip_address=(ip_address or "")[:64],
        )
        self._repo.create_session(session)
        LOGGER.info("session_created", extra={"user_id": user_id, "session_id": session.id})
        return session

    def rotate(
        self,
        old_refresh_token: str,
        *,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> Session:
        """Replace ``old_refresh_token`` with a new value on the same session.

        Raises ``UnauthorizedError`` for unknown, expired or concurrently
        rotated tokens. Expired rows are deleted on sight.
        """
        if not old_refresh_token:
            raise UnauthorizedError(INVALID_REFRESH_MESSAGE)
        now = self._now()
        current = self._repo.get_session_by_token(old_refresh_token)
        if current is None:
            LOGGER.warning("refresh_token_unknown")
            raise UnauthorizedError(INVALID_REFRESH_MESSAGE)
        if current.expires_at <= now:
            self._repo.delete_session_by_token(old_refresh_token)
            LOGGER.info(
                "session_expired_purged",
                extra={"user_id": current.user_id, "session_id": current.id},
            )
            raise UnauthorizedError(INVALID_REFRESH_MESSAGE)

        rotated = self._repo.rotate_session_token(
            old_refresh_token,
            generate_opaque_token(),
            now=now,
            expires_at=now + self._ttl,
            user_agent=user_agent[:512] if user_agent else None,
            ip_address=ip_address[:64] if ip_address else None,
        )
        if rotated is None:
            LOGGER.warning(
                "refresh_token_replay_suspected",
                extra={"user_id": current.user_id, "session_id": current.id},
            )
            raise UnauthorizedError(INVALID_REFRESH_MESSAGE)
        LOGGER.info(
            "session_rotated", extra={"user_id": rotated.user_id, "session_id": rotated.id}
        )
        return rotated

    def revoke(self, refresh_token: str) -> bool:
        """Delete the session holding ``refresh_token``; missing is not an error."""
        if not refresh_token:
            return False
        return self._repo.delete_session_by_token(refresh_token)

    def revoke_by_id(self, session_id: str, owner_user_id: str) -> None:
        """Delete one session of ``owner_user_id``.

        A session owned by someone else is reported exactly like a missing one.
        """
        if not self._repo.delete_session_by_id_for_user(session_id, owner_user_id):
            raise NotFoundError("Session not found")
        LOGGER.info(
            "session_revoked", extra={"user_id": owner_user_id, "session_id": session_id}
        )

    def revoke_all_for_user(self, user_id: str) -> int:
        count = self._repo.delete_sessions_for_user(user_id)
        LOGGER.info("sessions_revoked_all", extra={"user_id": user_id})
        return count

    def list_active_for_user(self, user_id: str) -> list[Session]:
        """Return only sessions that have not yet expired, newest first."""
        return self._repo.list_active_sessions_for_user(user_id, self._now())

    def purge_expired(self) -> int:
        return self._repo.delete_expired_sessions(self._now())
