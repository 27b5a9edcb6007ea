"""Poll escrow and settlement contract logs and hand decoded events to the order flow."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from loguru import logger
from web3 import Web3

from app.core.config import ChainConfig
from app.domain import DepositEvent


USDC_SCALE = 10**6
DEFAULT_POLL_INTERVAL = 5.0

TOPIC_FUNDS_LOCKED = Web3.to_hex(Web3.keccak(text="FundsLocked(bytes32,address,uint256)"))
TOPIC_SETTLED = Web3.to_hex(Web3.keccak(text="Settled(bytes32,uint256,uint256)"))


@dataclass(slots=True)
class SettlementNotice:
    order_uuid: str
    tx_hash: str
    payout: float
    fee: float


class ChainEventHandler(Protocol):
    def on_deposit_success(self, deposit: DepositEvent) -> None:
        ...

    def on_settlement_completed(
        self,
        order_uuid: str,
        tx_hash: str,
        settlement_amount: float,
        manage_fee: float,
        gas_fee: float,
    ) -> None:
        ...


def _as_bytes(value: Any) -> bytes:
    if isinstance(value, str):
        return bytes.fromhex(value[2:] if value[:2].lower() == "0x" else value)
    return bytes(value)


def _as_hex(value: Any) -> str:
    return "0x" + _as_bytes(value).hex()


def decode_funds_locked(log: Mapping[str, Any]) -> DepositEvent:
    topics = log.get("topics") or []
    if len(topics) < 2:
        raise ValueError("FundsLocked log is missing the betId topic")
    data = _as_bytes(log.get("data") or b"")
    if len(data) < 64:
        raise ValueError("FundsLocked data too short")

    wallet = Web3.to_checksum_address("0x" + data[12:32].hex())
    amount = int.from_bytes(data[32:64], "big") / USDC_SCALE
    return DepositEvent(
        contract_order_id=_as_bytes(topics[1]).hex(),
        user_wallet=wallet,
        amount=amount,
        currency="USDC",
        tx_hash=_as_hex(log["transactionHash"]),
        block_number=int(log.get("blockNumber") or 0),
    )


def decode_settled(log: Mapping[str, Any]) -> SettlementNotice:
    topics = log.get("topics") or []
    if len(topics) < 2:
        raise ValueError("Settled log is missing the betId topic")
    data = _as_bytes(log.get("data") or b"")
    if len(data) < 64:
        raise ValueError("Settled data too short")

    return SettlementNotice(
        order_uuid=_as_bytes(topics[1]).hex(),
        tx_hash=_as_hex(log["transactionHash"]),
        payout=int.from_bytes(data[0:32], "big") / USDC_SCALE,
        fee=int.from_bytes(data[32:64], "big") / USDC_SCALE,
    )


def dispatch_log(
    log: Mapping[str, Any],
    handler: ChainEventHandler,
    *,
    escrow_address: str,
    settlement_address: str,
) -> str | None:
    """Route one log by (address, topic0); returns the event name handled, if any."""

    topics = log.get("topics") or []
    if not topics:
        return None
    address = str(log.get("address") or "").lower()
    topic0 = _as_hex(topics[0]).lower()

    if address == escrow_address.lower() and topic0 == TOPIC_FUNDS_LOCKED:
        handler.on_deposit_success(decode_funds_locked(log))
        return "FundsLocked"
    if address == settlement_address.lower() and topic0 == TOPIC_SETTLED:
        notice = decode_settled(log)
        handler.on_settlement_completed(notice.order_uuid, notice.tx_hash, notice.payout, notice.fee, 0.0)
        return "Settled"
    return None


class ContractListener:
    """Background thread that polls ``eth_getLogs`` over advancing block ranges."""

    def __init__(
        self,
        config: ChainConfig,
        handler: ChainEventHandler,
        *,
        web3: Web3 | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        start_block: int | None = None,
    ) -> None:
        self.config = config
        self.handler = handler
        self.poll_interval = poll_interval
        self._web3 = web3
        self._next_block = start_block
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def endpoint(self) -> str | None:
        """HTTP(S) JSON-RPC endpoint; a websocket URL is mapped to its http form for polling."""

        if self.config.rpc_url:
            return self.config.rpc_url
        ws_url = self.config.ws_url or ""
        if ws_url.startswith("wss://"):
            return "https://" + ws_url[len("wss://"):]
        if ws_url.startswith("ws://"):
            return "http://" + ws_url[len("ws://"):]
        return ws_url or None

    @property
    def configured(self) -> bool:
        return bool(self.endpoint and self.config.escrow_address and self.config.settlement_address)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="chain-listener", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _connect(self) -> Web3:
        if self._web3 is not None:
            return self._web3
        return Web3(Web3.HTTPProvider(self.endpoint or ""))

    def run(self) -> None:
        if not self.configured:
            logger.warning("Chain listener idle: endpoint, escrow_address or settlement_address not configured")
            self._stop.wait()
            return

        escrow = Web3.to_checksum_address(self.config.escrow_address)
        settlement = Web3.to_checksum_address(self.config.settlement_address)
        logger.info("Chain listener watching escrow {} and settlement {}", escrow, settlement)
        try:
            w3 = self._connect()
            if self._next_block is None:
                self._next_block = w3.eth.block_number
            while not self._stop.is_set():
                self.poll_once(w3, escrow, settlement)
                self._stop.wait(self.poll_interval)
        except Exception as exc:
            logger.error("Chain listener stopped: {}", exc)

    def poll_once(self, w3: Web3, escrow: str, settlement: str) -> int:
        latest = w3.eth.block_number
        if self._next_block is None:
            self._next_block = latest
        if latest < self._next_block:
            return 0

        logs = w3.eth.get_logs(
            {
                "fromBlock": self._next_block,
                "toBlock": latest,
                "address": [escrow, settlement],
                "topics": [[TOPIC_FUNDS_LOCKED, TOPIC_SETTLED]],
            }
        )
        handled = 0
        for log in logs:
            try:
                if dispatch_log(log, self.handler, escrow_address=escrow, settlement_address=settlement):
                    handled += 1
            except Exception as exc:
                logger.exception("Failed to handle chain log {}: {}", log.get("transactionHash"), exc)
        self._next_block = latest + 1
        return handled


__all__ = [
    "ChainEventHandler",
    "ContractListener",
    "SettlementNotice",
    "TOPIC_FUNDS_LOCKED",
    "TOPIC_SETTLED",
    "decode_funds_locked",
    "decode_settled",
    "dispatch_log",
]
