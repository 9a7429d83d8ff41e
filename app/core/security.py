"""Security primitives for password hashing and token signing."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import os
import secrets
import time
from typing import Any

DEFAULT_HASH_ITERATIONS = 310_000

_SUPPORTED_ALGORITHMS = {"HS256": hashlib.sha256}


class TokenError(ValueError):
    """Raised when a signed token cannot be trusted."""


def _b64url_encode(raw: bytes) -> str:
    """Return URL-safe base64 string without padding."""
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def _b64url_decode(value: str) -> bytes:
    """Decode URL-safe base64 string with optional missing padding."""
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode((value + padding).encode("utf-8"))


def hash_password(password: str, iterations: int = DEFAULT_HASH_ITERATIONS) -> str:
    """Hash password using PBKDF2-HMAC-SHA256 with random salt."""
    salt = os.urandom(16)
    derived = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return f"pbkdf2_sha256${iterations}${_b64url_encode(salt)}${_b64url_encode(derived)}"


def verify_password(password: str, stored_hash: str) -> bool:
    """Verify password against a stored PBKDF2 hash."""
    try:
        algo, rounds_raw, salt_b64, digest_b64 = stored_hash.split("$", 3)
        if algo != "pbkdf2_sha256":
            return False
        rounds = int(rounds_raw)
        if rounds <= 0:
            return False
        salt = _b64url_decode(salt_b64)
        expected = _b64url_decode(digest_b64)
    except (AttributeError, ValueError, binascii.Error):
        return False

    derived = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return hmac.compare_digest(derived, expected)


def generate_opaque_token(num_bytes: int = 48) -> str:
    """Return a high-entropy URL-safe random token with no embedded claims."""
    return secrets.token_urlsafe(num_bytes)


def _sign(signing_input: bytes, secret_key: str, algorithm: str) -> bytes:
    digest = _SUPPORTED_ALGORITHMS[algorithm]
    return hmac.new(secret_key.encode("utf-8"), signing_input, digest).digest()


def encode_token(payload: dict[str, Any], secret_key: str, algorithm: str = "HS256") -> str:
    """Create compact signed token using JWT 3-part structure."""
    if algorithm not in _SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported signing algorithm: {algorithm}")
    header = {"alg": algorithm, "typ": "JWT"}
    header_part = _b64url_encode(json.dumps(header, separators=(",", ":")).encode("utf-8"))
    payload_part = _b64url_encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    signing_input = f"{header_part}.{payload_part}".encode("utf-8")
    signature_part = _b64url_encode(_sign(signing_input, secret_key, algorithm))
    return f"{header_part}.{payload_part}.{signature_part}"


def decode_token(
    token: str,
    secret_key: str,
    algorithm: str = "HS256",
    *,
    now: int | None = None,
) -> dict[str, Any]:
    """Decode and verify compact signed token, raising ``TokenError`` on failure.

    Only ``algorithm`` is accepted: the header is checked before the signature,
    so ``none`` or any other declared algorithm is rejected outright.
    """
    if algorithm not in _SUPPORTED_ALGORITHMS:
        raise TokenError("Unsupported signing algorithm")
    if not isinstance(token, str) or token.count(".") != 2:
        raise TokenError("Malformed token")
    header_part, payload_part, signature_part = token.split(".")
    if not header_part or not payload_part or not signature_part:
        raise TokenError("Malformed token")

    try:
        header = json.loads(_b64url_decode(header_part).decode("utf-8"))
        got_sig = _b64url_decode(signature_part)
    except (ValueError, binascii.Error) as exc:
        raise TokenError("Malformed token") from exc
    if not isinstance(header, dict) or header.get("alg") != algorithm:
        raise TokenError("Unexpected token algorithm")

    signing_input = f"{header_part}.{payload_part}".encode("utf-8")
    expected_sig = _sign(signing_input, secret_key, algorithm)
    if not hmac.compare_digest(expected_sig, got_sig):
        raise TokenError("Invalid token signature")

    try:
        payload = json.loads(_b64url_decode(payload_part).decode("utf-8"))
    except (ValueError, binascii.Error) as exc:
        raise TokenError("Invalid token payload") from exc
    if not isinstance(payload, dict):
        raise TokenError("Invalid token payload")

    exp = payload.get("exp")
    if not isinstance(exp, int) or isinstance(exp, bool):
        raise TokenError("Token has no expiry")
    current = int(time.time()) if now is None else now
    if exp <= current:
        raise TokenError("Token expired")

    return payload
