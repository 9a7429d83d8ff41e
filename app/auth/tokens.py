"""Access token issuance and verification."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable

from app.api.errors import UnauthorizedError
from app.auth.models import AccessClaims, User
from app.core.config import AuthConfig
from app.core.security import TokenError, decode_token, encode_token

LOGGER = logging.getLogger(__name__)

INVALID_TOKEN_MESSAGE = "Invalid or expired token"


class TokenCodec:
    """Stateless signer/verifier for short-lived access tokens."""

    def __init__(self, config: AuthConfig, clock: Callable[[], float] = time.time) -> None:
        self._config = config
        self._clock = clock

    @property
    def access_token_ttl_seconds(self) -> int:
        return self._config.access_token_ttl_seconds

    def issue_access_token(self, user: User, ttl_seconds: int | None = None) -> str:
        """Sign ``{userId, email, role}`` plus issued/expiry claims."""
        now_ts = int(self._clock())
        ttl = self._config.access_token_ttl_seconds if ttl_seconds is None else ttl_seconds
        payload = {
            "iss": self._config.issuer,
            "sub": user.id,
            "email": user.email,
            "role": str(user.role),
            "type": "access",
            "iat": now_ts,
            "exp": now_ts + ttl,
            "jti": uuid.uuid4().hex,
        }
        return encode_token(payload, self._config.secret_key, self._config.algorithm)

    def verify_access_token(self, token: str) -> AccessClaims:
        """Return embedded claims or raise ``UnauthorizedError``.

        Every failure cause yields the same error message.
        """
        try:
            payload = decode_token(
                token,
                self._config.secret_key,
                self._config.algorithm,
                now=int(self._clock()),
            )
        except TokenError as exc:
            LOGGER.debug("access_token_rejected: %s", exc)
            raise UnauthorizedError(INVALID_TOKEN_MESSAGE) from exc

        if payload.get("iss") != self._config.issuer or payload.get("type") != "access":
            raise UnauthorizedError(INVALID_TOKEN_MESSAGE)
        try:
            return AccessClaims(
                user_id=str(payload["sub"]),
                email=str(payload["email"]),
                role=payload["role"],
                issued_at=int(payload.get("iat") or 0),
                expires_at=int(payload["exp"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise UnauthorizedError(INVALID_TOKEN_MESSAGE) from exc
