"""EIP-191 personal-sign checks for order placement messages."""

from __future__ import annotations

import time

from eth_account import Account
from eth_account.messages import encode_defunct

from app.errors import InvalidInputError


SIGNATURE_LENGTH = 65
MIN_MESSAGE_PARTS = 6


def _signature_bytes(signature_hex: str) -> bytes:
    value = (signature_hex or "").strip()
    if value[:2].lower() == "0x":
        value = value[2:]
    try:
        raw = bytes.fromhex(value)
    except ValueError as exc:
        raise InvalidInputError("invalid signature hex") from exc
    if len(raw) < SIGNATURE_LENGTH:
        raise InvalidInputError("invalid signature hex")

    signature = bytearray(raw[:SIGNATURE_LENGTH])
    if signature[64] in (0, 1):
        signature[64] += 27
    return bytes(signature)


def recover_signer(message: str, signature_hex: str) -> str:
    signature = _signature_bytes(signature_hex)
    try:
        return Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as exc:
        raise InvalidInputError(f"signature recovery failed: {exc}") from exc


def parse_expiry(message: str) -> int:
    """``PlaceOrder:cid:event:option:odds:expires`` carries its expiry last."""

    parts = message.split(":")
    if len(parts) < MIN_MESSAGE_PARTS:
        raise InvalidInputError("message_to_sign is malformed")
    try:
        return int(parts[-1])
    except ValueError as exc:
        raise InvalidInputError("message_to_sign expiry is not a timestamp") from exc


def verify_order_signature(
    expected_wallet: str,
    message: str,
    signature_hex: str,
    *,
    now: float | None = None,
) -> None:
    if not expected_wallet or not message or not signature_hex:
        raise InvalidInputError("user wallet, message_to_sign and signature are required")

    recovered = recover_signer(message, signature_hex)
    if recovered.lower() != expected_wallet.lower():
        raise InvalidInputError(f"signer {recovered} does not match deposit wallet {expected_wallet}")

    expires_at = parse_expiry(message)
    current = time.time() if now is None else now
    if int(current) > expires_at:
        raise InvalidInputError("message_to_sign has expired")


__all__ = ["parse_expiry", "recover_signer", "verify_order_signature"]
