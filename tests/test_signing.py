from __future__ import annotations

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from app.chain.signing import parse_expiry, recover_signer, verify_order_signature
from app.errors import InvalidInputError


ACCOUNT = Account.create()
MESSAGE = f"PlaceOrder:{'ab' * 32}:1_100:YES:0.620000:1800000300"


def _signature(message: str = MESSAGE, account=ACCOUNT) -> bytes:
    return bytes(Account.sign_message(encode_defunct(text=message), private_key=account.key).signature)


def test_recover_signer_accepts_prefixed_and_bare_hex():
    raw = _signature()

    assert recover_signer(MESSAGE, "0x" + raw.hex()) == ACCOUNT.address
    assert recover_signer(MESSAGE, raw.hex()) == ACCOUNT.address


def test_recover_signer_normalizes_zero_based_v():
    raw = bytearray(_signature())
    raw[64] -= 27

    assert recover_signer(MESSAGE, raw.hex()) == ACCOUNT.address


@pytest.mark.parametrize("signature", ["0x1234", "not-hex", ""])
def test_malformed_signatures_are_invalid(signature):
    with pytest.raises(InvalidInputError, match="invalid signature hex"):
        recover_signer(MESSAGE, signature)


def test_parse_expiry():
    assert parse_expiry(MESSAGE) == 1_800_000_300
    with pytest.raises(InvalidInputError):
        parse_expiry("PlaceOrder:only:three")
    with pytest.raises(InvalidInputError):
        parse_expiry("PlaceOrder:a:b:c:d:soon")


def test_verify_accepts_wallet_in_any_case():
    verify_order_signature(ACCOUNT.address.lower(), MESSAGE, _signature().hex(), now=1_800_000_300)


def test_verify_rejects_expired_message():
    with pytest.raises(InvalidInputError, match="expired"):
        verify_order_signature(ACCOUNT.address, MESSAGE, _signature().hex(), now=1_800_000_301)


def test_verify_rejects_tampered_message():
    tampered = MESSAGE.replace("0.620000", "0.990000")

    with pytest.raises(InvalidInputError, match="does not match"):
        verify_order_signature(ACCOUNT.address, tampered, _signature().hex(), now=0)


def test_verify_requires_all_parts():
    with pytest.raises(InvalidInputError):
        verify_order_signature("", MESSAGE, _signature().hex())
