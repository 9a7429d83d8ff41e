from __future__ import annotations

import pytest

from app.payments.signature import (
    compute_signature,
    parse_signature_header,
    verify_paymongo_signature,
    verify_signature,
)

SECRET = "whsk_unit"
PAYLOAD = b'{"data":{"id":"evt_1","attributes":{"type":"payment.paid"}}}'


def test_verify_signature_accepts_matching_digest() -> None:
    signature = compute_signature(PAYLOAD, SECRET)

    assert len(signature) == 64
    assert verify_signature(PAYLOAD, signature, SECRET)
    assert verify_signature(PAYLOAD, signature.upper(), SECRET)


def test_single_byte_change_in_payload_fails_verification() -> None:
    signature = compute_signature(PAYLOAD, SECRET)

    for index in range(len(PAYLOAD)):
        mutated = bytearray(PAYLOAD)
        mutated[index] ^= 0x01
        assert not verify_signature(bytes(mutated), signature, SECRET)


def test_single_character_change_in_signature_fails_verification() -> None:
    signature = compute_signature(PAYLOAD, SECRET)
    flipped = ("0" if signature[0] != "0" else "1") + signature[1:]

    assert not verify_signature(PAYLOAD, flipped, SECRET)


@pytest.mark.parametrize(
    ("signature", "secret"),
    [("", SECRET), ("zz" * 32, SECRET), ("abc", SECRET), (compute_signature(PAYLOAD, SECRET), "")],
)
def test_verify_signature_never_raises_on_bad_input(signature: str, secret: str) -> None:
    assert verify_signature(PAYLOAD, signature, secret) is False


def test_parse_signature_header_splits_pairs() -> None:
    assert parse_signature_header("t=1, te=abc,li=") == {"t": "1", "te": "abc", "li": ""}
    assert parse_signature_header("") == {}


def test_verify_paymongo_signature_signs_timestamp_and_body() -> None:
    test_sig = compute_signature(b"1700000000." + PAYLOAD, SECRET)
    header = f"t=1700000000,te={test_sig},li="

    assert verify_paymongo_signature(PAYLOAD, header, SECRET, live=False)
    assert not verify_paymongo_signature(PAYLOAD, header, SECRET, live=True)
    assert not verify_paymongo_signature(PAYLOAD, f"te={test_sig}", SECRET)
    assert not verify_paymongo_signature(
        PAYLOAD, header.replace("1700000000", "1700000001", 1), SECRET
    )


def test_verify_paymongo_signature_enforces_timestamp_tolerance() -> None:
    test_sig = compute_signature(b"1700000000." + PAYLOAD, SECRET)
    header = f"t=1700000000,te={test_sig},li="

    assert verify_paymongo_signature(
        PAYLOAD, header, SECRET, now=1_700_000_300, tolerance_seconds=300
    )
    assert not verify_paymongo_signature(
        PAYLOAD, header, SECRET, now=1_700_000_301, tolerance_seconds=300
    )
    assert not verify_paymongo_signature(
        PAYLOAD, header.replace("t=1700000000", "t=abc"), SECRET, now=1_700_000_000
    )
