"""HMAC-SHA256 webhook signature verification."""

from __future__ import annotations

import hashlib
import hmac

HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


def compute_signature(raw_payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the exact received bytes."""
    return hmac.new(secret.encode("utf-8"), raw_payload, hashlib.sha256).hexdigest()


def verify_signature(raw_payload: bytes, provided_signature: str, secret: str) -> bool:
    """Constant-time check of a hex signature. Never raises."""
    if not secret or not provided_signature:
        return False
    candidate = provided_signature.strip()
    if len(candidate) != hashlib.sha256().digest_size * 2 or not set(candidate) <= HEX_DIGITS:
        return False
    expected = compute_signature(raw_payload, secret)
    return hmac.compare_digest(expected, candidate.lower())


def parse_signature_header(header: str) -> dict[str, str]:
    """Parse ``t=<ts>,te=<test sig>,li=<live sig>`` into a dict."""
    parts: dict[str, str] = {}
    for item in (header or "").split(","):
        key, sep, value = item.partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    return parts


def verify_paymongo_signature(
    raw_payload: bytes,
    header: str,
    secret: str,
    *,
    live: bool = False,
    now: float | None = None,
    tolerance_seconds: int = 0,
) -> bool:
    """Verify a PayMongo ``Paymongo-Signature`` header.

    The provider signs ``"<timestamp>.<raw body>"`` and sends the test-mode
    digest as ``te`` and the live-mode digest as ``li``. With ``now`` and a
    positive ``tolerance_seconds``, deliveries whose timestamp is further
    than that from ``now`` are rejected.
    """
    parts = parse_signature_header(header)
    timestamp = parts.get("t", "")
    if not timestamp.isdigit():
        return False
    if now is not None and tolerance_seconds > 0:
        if abs(int(now) - int(timestamp)) > tolerance_seconds:
            return False
    provided = parts.get("li" if live else "te", "")
    signed_payload = timestamp.encode("utf-8") + b"." + raw_payload
    return verify_signature(signed_payload, provided, secret)
