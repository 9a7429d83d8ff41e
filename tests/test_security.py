from __future__ import annotations

import base64
import json

import pytest

from app.core.security import (
    TokenError,
    decode_token,
    encode_token,
    generate_opaque_token,
    hash_password,
    verify_password,
)

SECRET = "unit-secret"
NOW = 1_700_000_000


def _b64(data: dict[str, object]) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def test_hash_password_is_salted_and_verifies() -> None:
    first = hash_password("Secret123", iterations=1_000)
    second = hash_password("Secret123", iterations=1_000)

    assert first != second
    assert first.startswith("pbkdf2_sha256$1000$")
    assert verify_password("Secret123", first)
    assert verify_password("Secret123", second)
    assert not verify_password("secret123", first)


@pytest.mark.parametrize(
    "stored",
    ["", "plain-text", "bcrypt$10$abc$def", "pbkdf2_sha256$zero$abc$def", "pbkdf2_sha256$0$abc$def"],
)
def test_verify_password_returns_false_for_malformed_hash(stored: str) -> None:
    assert verify_password("Secret123", stored) is False


def test_generate_opaque_token_is_random_and_url_safe() -> None:
    tokens = {generate_opaque_token() for _ in range(50)}

    assert len(tokens) == 50
    assert all(len(token) >= 64 for token in tokens)
    assert all("." not in token and "/" not in token and "+" not in token for token in tokens)


def test_encode_decode_token_roundtrip() -> None:
    token = encode_token({"sub": "u1", "exp": NOW + 60}, SECRET)

    payload = decode_token(token, SECRET, now=NOW)

    assert payload["sub"] == "u1"


def test_decode_token_rejects_expired_token() -> None:
    token = encode_token({"sub": "u1", "exp": NOW}, SECRET)

    with pytest.raises(TokenError):
        decode_token(token, SECRET, now=NOW)


def test_decode_token_requires_expiry() -> None:
    token = encode_token({"sub": "u1"}, SECRET)

    with pytest.raises(TokenError, match="expiry"):
        decode_token(token, SECRET, now=NOW)


def test_decode_token_rejects_wrong_secret() -> None:
    token = encode_token({"sub": "u1", "exp": NOW + 60}, SECRET)

    with pytest.raises(TokenError, match="signature"):
        decode_token(token, "another-secret", now=NOW)


def test_decode_token_rejects_tampered_payload() -> None:
    token = encode_token({"sub": "u1", "role": "USER", "exp": NOW + 60}, SECRET)
    header, _payload, signature = token.split(".")
    forged = f"{header}.{_b64({'sub': 'u1', 'role': 'ADMIN', 'exp': NOW + 60})}.{signature}"

    with pytest.raises(TokenError):
        decode_token(forged, SECRET, now=NOW)


def test_decode_token_rejects_alg_none() -> None:
    unsigned = f"{_b64({'alg': 'none', 'typ': 'JWT'})}.{_b64({'sub': 'u1', 'exp': NOW + 60})}."

    with pytest.raises(TokenError):
        decode_token(unsigned, SECRET, now=NOW)


def test_decode_token_rejects_other_declared_algorithm_even_with_valid_hmac() -> None:
    token = encode_token({"sub": "u1", "exp": NOW + 60}, SECRET)
    _header, payload, signature = token.split(".")
    relabelled = f"{_b64({'alg': 'HS512', 'typ': 'JWT'})}.{payload}.{signature}"

    with pytest.raises(TokenError, match="algorithm"):
        decode_token(relabelled, SECRET, now=NOW)


@pytest.mark.parametrize("token", ["", "abc", "a.b", "a..c", "!!.@@.##"])
def test_decode_token_rejects_malformed_input(token: str) -> None:
    with pytest.raises(TokenError):
        decode_token(token, SECRET, now=NOW)
