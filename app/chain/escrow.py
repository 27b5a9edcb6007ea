"""Escrow ``releaseFunds`` calls made with the executor key."""

from __future__ import annotations

import string
import time
from collections.abc import Callable
from decimal import Decimal

from eth_account import Account
from loguru import logger
from web3 import Web3
from web3.exceptions import TransactionNotFound

from app.errors import InvalidInputError, UpstreamChainError


USDC_DECIMALS = 6
RELEASE_GAS_LIMIT = 150_000
RECEIPT_POLL_ATTEMPTS = 30
RECEIPT_POLL_INTERVAL = 2.0

ESCROW_ABI = [
    {
        "name": "releaseFunds",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "betId", "type": "bytes32"},
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [],
    }
]


def usdc_units(amount: float) -> int:
    if amount <= 0:
        return 0
    return int(Decimal(str(amount)) * (10**USDC_DECIMALS))


def bet_id_bytes(bet_id_hex: str) -> bytes:
    """The bet id must be the full bytes32 used when the funds were locked."""

    value = (bet_id_hex or "").strip()
    if value[:2].lower() == "0x":
        value = value[2:]
    if any(char not in string.hexdigits for char in value):
        raise InvalidInputError("contract_order_id must be hex")
    if len(value) != 64:
        raise InvalidInputError(
            f"contract_order_id must be 64 hex characters to match the locked bet id, got {len(value)}"
        )
    return bytes.fromhex(value)


def release_funds(
    *,
    rpc_url: str,
    escrow_address: str,
    executor_key: str,
    bet_id_hex: str,
    to_address: str,
    amount_units: int,
    web3: Web3 | None = None,
    poll_attempts: int = RECEIPT_POLL_ATTEMPTS,
    poll_interval: float = RECEIPT_POLL_INTERVAL,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """Send ``releaseFunds(betId, to, amount)`` and wait for a successful receipt."""

    if not rpc_url or not escrow_address or not executor_key:
        raise InvalidInputError("rpc_url, escrow_address and executor key are required")
    if amount_units <= 0:
        raise InvalidInputError("amount must be greater than 0")
    bet_id = bet_id_bytes(bet_id_hex)

    w3 = web3 or Web3(Web3.HTTPProvider(rpc_url))
    executor = Account.from_key(executor_key)
    escrow = w3.eth.contract(address=Web3.to_checksum_address(escrow_address), abi=ESCROW_ABI)

    try:
        tx = escrow.functions.releaseFunds(
            bet_id, Web3.to_checksum_address(to_address), amount_units
        ).build_transaction(
            {
                "from": executor.address,
                "gas": RELEASE_GAS_LIMIT,
                "gasPrice": w3.eth.gas_price,
                "nonce": w3.eth.get_transaction_count(executor.address, "pending"),
                "chainId": w3.eth.chain_id,
            }
        )
        signed = executor.sign_transaction(tx)
        tx_hash = Web3.to_hex(w3.eth.send_raw_transaction(signed.raw_transaction))
    except Exception as exc:
        raise UpstreamChainError(f"releaseFunds submission failed: {exc}") from exc

    logger.info("Sent releaseFunds for bet {} in tx {}", bet_id.hex(), tx_hash)
    for _ in range(poll_attempts):
        try:
            receipt = w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            sleep(poll_interval)
            continue
        if receipt["status"] != 1:
            raise UpstreamChainError(
                "releaseFunds reverted; check the bet id is the full 64-hex value, "
                f"the executor holds EXECUTOR_ROLE, and the funds are still locked (tx {tx_hash})"
            )
        return tx_hash

    raise UpstreamChainError(f"timed out waiting for releaseFunds receipt, check tx {tx_hash}")


__all__ = ["ESCROW_ABI", "bet_id_bytes", "release_funds", "usdc_units"]
