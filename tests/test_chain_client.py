"""Tests for the chain gateway against a scripted web3 stand-in."""

from decimal import Decimal
from types import SimpleNamespace

import pytest
from web3.exceptions import TransactionNotFound

from flowpay.config import get_settings
from flowpay.data.chain_client import ChainError, ChainGateway

TOKEN = "0x" + "22" * 20
WALLET = "0x" + "11" * 20
CONTRACT = "0x" + "55" * 20
TX_HASH = b"\xab" * 32


class _Call:
    def __init__(self, value):
        self.value = value

    def call(self):
        return self.value


class FakeEth:
    def __init__(self):
        self.balance_raw = 250_500_000
        self.decimals = 6
        self.decimals_calls = 0
        self.gas_price = 7_000_000_000
        self.receipt = {
            "status": 1,
            "transactionHash": TX_HASH,
            "gasUsed": 52_000,
            "effectiveGasPrice": 6_000_000_000,
            "blockNumber": 4242,
        }
        self.sent: list[bytes] = []
        self.executed_ids: list[int] = []
        self.receipts: dict[str, dict] = {}

    def contract(self, address, abi):
        eth = self

        def _decimals():
            eth.decimals_calls += 1
            return _Call(eth.decimals)

        def _execute_intent(intent_id):
            eth.executed_ids.append(intent_id)
            return SimpleNamespace(
                build_transaction=lambda params: {
                    "to": address,
                    "value": 0,
                    "gas": 120_000,
                    "gasPrice": 1_000_000_000,
                    "data": "0x",
                    **params,
                }
            )

        functions = SimpleNamespace(
            balanceOf=lambda owner: _Call(eth.balance_raw),
            decimals=_decimals,
            executeIntent=_execute_intent,
        )
        return SimpleNamespace(functions=functions)

    def get_transaction_count(self, address, block):
        return 3

    def send_raw_transaction(self, raw):
        self.sent.append(raw)
        return TX_HASH

    def wait_for_transaction_receipt(self, tx_hash, timeout):
        return self.receipt

    def get_transaction_receipt(self, tx_hash):
        if tx_hash not in self.receipts:
            raise TransactionNotFound(f"Transaction {tx_hash} not found")
        return self.receipts[tx_hash]


@pytest.fixture
def eth():
    return FakeEth()


@pytest.fixture
def gateway(eth):
    return ChainGateway(w3=SimpleNamespace(eth=eth))


@pytest.fixture
def signing_gateway(monkeypatch, eth):
    monkeypatch.setenv("FLOWPAY_EXECUTION_PRIVATE_KEY", "0x" + "4f" * 32)
    monkeypatch.setenv("FLOWPAY_INTENT_CONTRACT_ADDRESS", CONTRACT)
    get_settings.cache_clear()
    return ChainGateway(w3=SimpleNamespace(eth=eth))


def test_token_balance_is_scaled_by_decimals(gateway, eth):
    assert gateway.get_token_balance(TOKEN, WALLET) == Decimal("250.5")
    gateway.get_token_balance(TOKEN, WALLET)
    assert eth.decimals_calls == 1


def test_token_balance_error_is_wrapped(gateway, eth, monkeypatch):
    def _fail(address, abi):
        raise OSError("rpc down")

    monkeypatch.setattr(eth, "contract", _fail)

    with pytest.raises(ChainError, match="rpc down"):
        gateway.get_token_balance(TOKEN, WALLET)


def test_gas_price(gateway):
    assert gateway.get_gas_price() == 7_000_000_000


def test_execute_without_on_chain_id(signing_gateway):
    with pytest.raises(ChainError, match="no on-chain reference"):
        signing_gateway.execute_intent(None)


def test_execute_without_configuration(gateway):
    with pytest.raises(ChainError, match="not configured"):
        gateway.execute_intent(7)


def test_execute_intent_success(signing_gateway, eth):
    receipt = signing_gateway.execute_intent(7)

    assert eth.executed_ids == [7]
    assert len(eth.sent) == 1
    assert receipt.tx_hash == "0x" + "ab" * 32
    assert receipt.gas_used == 52_000
    assert receipt.gas_price == 6_000_000_000
    assert receipt.block_number == 4242


def test_execute_intent_revert(signing_gateway, eth):
    eth.receipt = {**eth.receipt, "status": 0}

    with pytest.raises(ChainError, match="reverted"):
        signing_gateway.execute_intent(7)


def test_execute_intent_send_error(signing_gateway, eth, monkeypatch):
    def _fail(raw):
        raise ValueError("nonce too low")

    monkeypatch.setattr(eth, "send_raw_transaction", _fail)

    with pytest.raises(ChainError, match="nonce too low"):
        signing_gateway.execute_intent(7)


def test_receipt_lookup(gateway, eth):
    eth.receipts["0xfeed"] = {
        "status": 1,
        "transactionHash": b"\xfe\xed",
        "gasUsed": 21_000,
        "blockNumber": 10,
    }

    receipt = gateway.get_transaction_receipt("0xfeed")

    assert receipt.tx_hash == "0xfeed"
    assert receipt.gas_price == 0
    assert gateway.get_transaction_receipt("0xmissing") is None
