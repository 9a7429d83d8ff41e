from __future__ import annotations

from typing import Any

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from app.api.errors import UnauthorizedError
from app.auth.gate import RequestGate, authenticate, extract_token, get_auth_user
from app.auth.models import AccessClaims, User, UserRole
from app.auth.tokens import TokenCodec
from app.core.config import AuthConfig

COOKIE = "auth_token"
CODEC = TokenCodec(
    AuthConfig(
        secret_key="gate-secret",
        access_token_ttl_seconds=900,
        refresh_token_ttl_seconds=3600,
        issuer="test",
    )
)
USER = User(id="u1", email="user@example.com", password_hash="x")
ADMIN = User(id="a1", email="admin@example.com", password_hash="x", role=UserRole.ADMIN)


def _request(headers: list[tuple[bytes, bytes]] | None = None) -> Request:
    scope: dict[str, Any] = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "query_string": b"",
        "headers": headers or [],
        "client": ("127.0.0.1", 1234),
    }
    return Request(scope)


def _client() -> TestClient:
    app = FastAPI()
    gate = RequestGate(CODEC, COOKIE)

    @app.get("/me")
    def me(request: Request, identity: AccessClaims = Depends(gate)) -> dict[str, str]:
        assert get_auth_user(request) == identity
        return {"user_id": identity.user_id}

    @app.get("/admin")
    def admin(identity: AccessClaims = Depends(gate.require_role(UserRole.ADMIN))) -> dict[str, str]:
        return {"user_id": identity.user_id}

    return TestClient(app)


def test_extract_token_prefers_cookie_over_bearer() -> None:
    request = _request(
        [(b"cookie", b"auth_token=from-cookie"), (b"authorization", b"Bearer from-header")]
    )

    assert extract_token(request, COOKIE) == "from-cookie"


def test_extract_token_falls_back_to_bearer_header() -> None:
    assert extract_token(_request([(b"authorization", b"bearer abc")]), COOKIE) == "abc"
    assert extract_token(_request([(b"authorization", b"Basic abc")]), COOKIE) == ""
    assert extract_token(_request(), COOKIE) == ""


def test_authenticate_rejects_missing_and_invalid_tokens_alike() -> None:
    with pytest.raises(UnauthorizedError) as missing:
        authenticate(_request(), CODEC, COOKIE)
    with pytest.raises(UnauthorizedError) as invalid:
        authenticate(_request([(b"authorization", b"Bearer nope")]), CODEC, COOKIE)

    assert missing.value.detail == invalid.value.detail


def test_get_auth_user_on_ungated_request_is_a_programming_error() -> None:
    with pytest.raises(RuntimeError):
        get_auth_user(_request())


def test_gate_accepts_cookie_token() -> None:
    token = CODEC.issue_access_token(USER)

    response = _client().get("/me", headers={"Cookie": f"{COOKIE}={token}"})

    assert response.status_code == 200
    assert response.json() == {"user_id": "u1"}


def test_gate_accepts_bearer_token_without_cookie() -> None:
    token = CODEC.issue_access_token(USER)

    response = _client().get("/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200


def test_gate_does_not_fall_back_to_header_when_cookie_is_invalid() -> None:
    token = CODEC.issue_access_token(USER)

    response = _client().get(
        "/me",
        headers={"Cookie": f"{COOKIE}=garbage", "Authorization": f"Bearer {token}"},
    )

    assert response.status_code == 401


def test_gate_rejects_request_without_token() -> None:
    response = _client().get("/me")

    assert response.status_code == 401


def test_require_role_checks_claims() -> None:
    client = _client()

    denied = client.get("/admin", headers={"Authorization": f"Bearer {CODEC.issue_access_token(USER)}"})
    allowed = client.get("/admin", headers={"Authorization": f"Bearer {CODEC.issue_access_token(ADMIN)}"})

    assert denied.status_code == 401
    assert allowed.status_code == 200
