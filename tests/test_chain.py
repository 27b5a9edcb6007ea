from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from eth_account import Account
from web3.exceptions import TransactionNotFound

from app.chain.escrow import bet_id_bytes, release_funds, usdc_units
from app.chain.listener import (
    TOPIC_FUNDS_LOCKED,
    TOPIC_SETTLED,
    ContractListener,
    decode_funds_locked,
    decode_settled,
    dispatch_log,
)
from app.core.config import ChainConfig
from app.errors import InvalidInputError, UpstreamChainError


ESCROW = "0x" + "22" * 20
SETTLEMENT = "0x" + "33" * 20
WALLET = "0x" + "ab" * 20
BET_ID = "cd" * 32
EXECUTOR_KEY = "0x" + "11" * 32


def _word(value: int) -> bytes:
    return value.to_bytes(32, "big")


def _funds_locked_log(*, address: str = ESCROW, amount_units: int = 25_500_000) -> dict:
    return {
        "address": address,
        "topics": [bytes.fromhex(TOPIC_FUNDS_LOCKED[2:]), bytes.fromhex(BET_ID)],
        "data": bytes(12) + bytes.fromhex(WALLET[2:]) + _word(amount_units),
        "transactionHash": bytes.fromhex("01" * 32),
        "blockNumber": 42,
    }


def _settled_log() -> dict:
    return {
        "address": SETTLEMENT,
        "topics": [TOPIC_SETTLED, "0x" + BET_ID],
        "data": "0x" + (_word(40_000_000) + _word(400_000)).hex(),
        "transactionHash": "0x" + "02" * 32,
        "blockNumber": 43,
    }


def test_decode_funds_locked():
    deposit = decode_funds_locked(_funds_locked_log())

    assert deposit.contract_order_id == BET_ID
    assert deposit.user_wallet.lower() == WALLET
    assert deposit.amount == pytest.approx(25.5)
    assert deposit.currency == "USDC"
    assert deposit.tx_hash == "0x" + "01" * 32
    assert deposit.block_number == 42


def test_decode_funds_locked_rejects_short_data():
    log = _funds_locked_log()
    log["data"] = bytes(40)

    with pytest.raises(ValueError):
        decode_funds_locked(log)


def test_decode_settled_accepts_hex_strings():
    notice = decode_settled(_settled_log())

    assert notice.order_uuid == BET_ID
    assert (notice.payout, notice.fee) == (40.0, 0.4)
    assert notice.tx_hash == "0x" + "02" * 32


def test_dispatch_routes_by_address_and_topic():
    handler = MagicMock()

    assert (
        dispatch_log(_funds_locked_log(), handler, escrow_address=ESCROW.upper(), settlement_address=SETTLEMENT)
        == "FundsLocked"
    )
    assert dispatch_log(_settled_log(), handler, escrow_address=ESCROW, settlement_address=SETTLEMENT) == "Settled"
    assert dispatch_log(
        _funds_locked_log(address=SETTLEMENT), handler, escrow_address=ESCROW, settlement_address=SETTLEMENT
    ) is None

    handler.on_deposit_success.assert_called_once()
    handler.on_settlement_completed.assert_called_once_with(BET_ID, "0x" + "02" * 32, 40.0, 0.4, 0.0)


def test_poll_once_handles_logs_and_advances():
    handler = MagicMock()
    w3 = MagicMock()
    w3.eth.block_number = 10
    broken = _funds_locked_log()
    broken["data"] = b""
    w3.eth.get_logs.return_value = [_funds_locked_log(), broken, _settled_log()]
    listener = ContractListener(ChainConfig(rpc_url="http://rpc.test"), handler, web3=w3, start_block=5)

    assert listener.poll_once(w3, ESCROW, SETTLEMENT) == 2

    params = w3.eth.get_logs.call_args.args[0]
    assert (params["fromBlock"], params["toBlock"]) == (5, 10)
    assert params["topics"] == [[TOPIC_FUNDS_LOCKED, TOPIC_SETTLED]]

    w3.eth.get_logs.reset_mock()
    assert listener.poll_once(w3, ESCROW, SETTLEMENT) == 0
    w3.eth.get_logs.assert_not_called()


def test_unconfigured_listener_idles_until_stopped():
    listener = ContractListener(ChainConfig(), MagicMock())

    assert not listener.configured
    listener.start()
    listener.stop(timeout=2.0)


@pytest.mark.parametrize(
    "config, expected",
    [
        (ChainConfig(rpc_url="https://rpc.test", ws_url="wss://ws.test"), "https://rpc.test"),
        (ChainConfig(ws_url="wss://node.test/v3/key"), "https://node.test/v3/key"),
        (ChainConfig(ws_url="ws://127.0.0.1:8546"), "http://127.0.0.1:8546"),
        (ChainConfig(), None),
    ],
)
def test_listener_polls_over_http(config, expected):
    listener = ContractListener(config, MagicMock())

    assert listener.endpoint == expected
    if expected:
        assert listener._connect().provider.endpoint_uri == expected


def test_usdc_units_and_bet_id():
    assert usdc_units(12.5) == 12_500_000
    assert usdc_units(0.1) == 100_000
    assert usdc_units(0) == 0
    assert bet_id_bytes("0x" + BET_ID) == bytes.fromhex(BET_ID)
    with pytest.raises(InvalidInputError):
        bet_id_bytes("cd" * 16)
    with pytest.raises(InvalidInputError):
        bet_id_bytes("zz" * 32)


def _web3_mock():
    w3 = MagicMock()
    w3.eth.gas_price = 30_000_000_000
    w3.eth.get_transaction_count.return_value = 3
    w3.eth.chain_id = 137
    w3.eth.contract.return_value.functions.releaseFunds.return_value.build_transaction.return_value = {
        "to": "0x" + "22" * 20,
        "data": "0x",
        "value": 0,
        "gas": 150_000,
        "gasPrice": 30_000_000_000,
        "nonce": 3,
        "chainId": 137,
    }
    w3.eth.send_raw_transaction.return_value = bytes.fromhex("ee" * 32)
    return w3


def _release(w3, **overrides):
    options = {
        "rpc_url": "http://rpc.test",
        "escrow_address": ESCROW,
        "executor_key": EXECUTOR_KEY,
        "bet_id_hex": BET_ID,
        "to_address": WALLET,
        "amount_units": 25_000_000,
        "web3": w3,
        "poll_attempts": 3,
        "sleep": MagicMock(),
    }
    options.update(overrides)
    return release_funds(**options)


def test_release_funds_waits_for_successful_receipt():
    w3 = _web3_mock()
    w3.eth.get_transaction_receipt.side_effect = [TransactionNotFound("pending"), {"status": 1}]
    sleep = MagicMock()

    tx_hash = _release(w3, sleep=sleep)

    assert tx_hash == "0x" + "ee" * 32
    bet_id, to_address, amount = w3.eth.contract.return_value.functions.releaseFunds.call_args.args
    assert bet_id == bytes.fromhex(BET_ID)
    assert to_address.lower() == WALLET
    assert amount == 25_000_000
    build_params = w3.eth.contract.return_value.functions.releaseFunds.return_value.build_transaction.call_args.args[0]
    assert build_params["from"] == Account.from_key(EXECUTOR_KEY).address
    assert build_params["nonce"] == 3
    w3.eth.get_transaction_count.assert_called_once_with(build_params["from"], "pending")
    sleep.assert_called_once()


def test_release_funds_reverted_receipt():
    w3 = _web3_mock()
    w3.eth.get_transaction_receipt.return_value = {"status": 0}

    with pytest.raises(UpstreamChainError, match="reverted"):
        _release(w3)


def test_release_funds_times_out():
    w3 = _web3_mock()
    w3.eth.get_transaction_receipt.side_effect = TransactionNotFound("pending")

    with pytest.raises(UpstreamChainError, match="timed out"):
        _release(w3)


def test_release_funds_wraps_submission_errors():
    w3 = _web3_mock()
    w3.eth.send_raw_transaction.side_effect = ValueError("nonce too low")

    with pytest.raises(UpstreamChainError, match="nonce too low"):
        _release(w3)


def test_release_funds_validates_inputs():
    with pytest.raises(InvalidInputError):
        _release(_web3_mock(), amount_units=0)
    with pytest.raises(InvalidInputError):
        _release(_web3_mock(), bet_id_hex="abc")
