"""Request gate: resolve the caller identity from cookie or bearer header."""

from __future__ import annotations

from typing import Callable

from fastapi import Depends, Request

from app.api.errors import UnauthorizedError
from app.auth.models import AccessClaims, UserRole
from app.auth.tokens import TokenCodec

AUTH_STATE_ATTR = "auth_user"
AUTH_REQUIRED_MESSAGE = "Authentication required"


def _extract_bearer_token(authorization: str) -> str:
    """Extract bearer token from authorization header value."""
    parts = (authorization or "").strip().split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return ""
    return parts[1].strip()


def extract_token(request: Request, cookie_name: str) -> str:
    """Return the access token: cookie first, then bearer header, never merged."""
    cookie_token = (request.cookies.get(cookie_name) or "").strip()
    if cookie_token:
        return cookie_token
    return _extract_bearer_token(request.headers.get("authorization", ""))


def authenticate(request: Request, codec: TokenCodec, cookie_name: str) -> AccessClaims:
    """Verify the request's access token and return the identity it carries.

    Missing and invalid tokens raise the same ``UnauthorizedError`` so the
    client never learns why verification failed.
    """
    token = extract_token(request, cookie_name)
    if not token:
        raise UnauthorizedError(AUTH_REQUIRED_MESSAGE)
    try:
        return codec.verify_access_token(token)
    except UnauthorizedError as exc:
        raise UnauthorizedError(AUTH_REQUIRED_MESSAGE) from exc


def get_auth_user(request: Request) -> AccessClaims:
    """Return the identity attached by ``RequestGate``.

    Raises ``RuntimeError`` when the handler was wired without the gate.
    """
    identity = getattr(request.state, AUTH_STATE_ATTR, None)
    if not isinstance(identity, AccessClaims):
        raise RuntimeError("get_auth_user called on a request that was not gated")
    return identity


class RequestGate:
    """FastAPI dependency that rejects unauthenticated requests with 401."""

    def __init__(self, codec: TokenCodec, cookie_name: str) -> None:
        self._codec = codec
        self._cookie_name = cookie_name

    def __call__(self, request: Request) -> AccessClaims:
        identity = authenticate(request, self._codec, self._cookie_name)
        setattr(request.state, AUTH_STATE_ATTR, identity)
        return identity

    def require_role(self, *roles: UserRole) -> Callable[..., AccessClaims]:
        """Build a dependency that also checks the caller's role."""
        allowed = set(roles)

        def dependency(identity: AccessClaims = Depends(self)) -> AccessClaims:
            if identity.role not in allowed:
                raise UnauthorizedError("Insufficient permissions")
            return identity

        return dependency
