"""Pytest fixtures and configuration."""

import time
from datetime import datetime
from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy.orm import sessionmaker

from flowpay.data.chain_client import ChainError
from flowpay.data.models import PayoutResult, TxReceipt
from flowpay.data.storage import Base, build_engine
from flowpay.execution.intents import IntentCreate, Owner
from flowpay.execution.store import IntentStore

NOW = datetime(2025, 3, 10, 12, 0, 0)
WALLET = "0x" + "11" * 20
TOKEN_ADDRESS = "0x" + "22" * 20
RECIPIENT = "0x" + "33" * 20


@pytest.fixture(autouse=True)
def _set_required_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure required env vars exist for Settings in tests."""
    monkeypatch.setenv("FLOWPAY_RPC_URL", "http://rpc.local")
    monkeypatch.setenv("FLOWPAY_DB_URL", "sqlite:///:memory:")
    for key in (
        "FLOWPAY_EXECUTION_PRIVATE_KEY",
        "FLOWPAY_INTENT_CONTRACT_ADDRESS",
        "FLOWPAY_PAYOUT_API_KEY",
        "FLOWPAY_PAYOUT_API_URL",
        "FLOWPAY_TELEGRAM_BOT_TOKEN",
    ):
        monkeypatch.delenv(key, raising=False)

    # Clear cached settings between tests
    from flowpay.config.settings import get_settings

    get_settings.cache_clear()


@pytest.fixture
def session_factory() -> sessionmaker:
    """In-memory database shared by every session of one test."""
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False)

    yield factory

    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory: sessionmaker) -> IntentStore:
    return IntentStore(session_factory)


@pytest.fixture
def owner(store: IntentStore) -> Owner:
    return store.add_user(WALLET, telegram_chat_id="4242")


@pytest.fixture
def make_intent(store: IntentStore, owner: Owner):
    """Create a stored intent due at NOW; keyword arguments override defaults."""

    def _make(**overrides: Any):
        fields: dict[str, Any] = {
            "name": "Rent",
            "recipient": RECIPIENT,
            "amount": Decimal("100"),
            "token": "USDC",
            "token_address": TOKEN_ADDRESS,
            "frequency": "DAILY",
            "safety_buffer": Decimal("50"),
            "on_chain_id": 7,
            "start_at": NOW,
        }
        fields.update(overrides)
        return store.create_intent(owner.id, IntentCreate.model_validate(fields), now=NOW)

    return _make


class FakeChain:
    """Synchronous chain backend with scripted responses."""

    def __init__(
        self,
        balance: Decimal = Decimal("200"),
        gas_price: int = 5_000_000_000,
        receipt: TxReceipt | None = None,
    ) -> None:
        self.balance = balance
        self.gas_price = gas_price
        self.receipt = receipt or TxReceipt(
            tx_hash="0x" + "ab" * 32, gas_used=21000, gas_price=gas_price, block_number=123
        )
        self.balance_error: Exception | None = None
        self.gas_error: Exception | None = None
        self.execute_error: Exception | None = None
        self.execute_delay: float = 0.0
        self.balance_calls: list[tuple[str, str]] = []
        self.gas_calls = 0
        self.executed: list[int | None] = []

    def get_token_balance(self, token_address: str, wallet_address: str) -> Decimal:
        self.balance_calls.append((token_address, wallet_address))
        if self.balance_error:
            raise self.balance_error
        return self.balance

    def get_gas_price(self) -> int:
        self.gas_calls += 1
        if self.gas_error:
            raise self.gas_error
        return self.gas_price

    def execute_intent(self, on_chain_id: int | None) -> TxReceipt:
        self.executed.append(on_chain_id)
        if on_chain_id is None:
            raise ChainError("Intent has no on-chain reference id")
        if self.execute_delay:
            time.sleep(self.execute_delay)
        if self.execute_error:
            raise self.execute_error
        return self.receipt


class FakePayout:
    """Async payout backend returning a scripted result."""

    def __init__(self, result: PayoutResult | None = None) -> None:
        self.result = result or PayoutResult(
            success=True, payout_id="po_123", provider_status="processing"
        )
        self.calls: list[dict[str, Any]] = []

    async def payout(self, phone, country, amount_usd, user_id, intent_id) -> PayoutResult:
        self.calls.append(
            {
                "phone": phone,
                "country": country,
                "amount_usd": amount_usd,
                "user_id": user_id,
                "intent_id": intent_id,
            }
        )
        return self.result


class RecordingNotifier:
    """Notification sink that remembers every call."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def notify(self, user_id, type, title, message, data=None) -> None:
        self.sent.append(
            {"user_id": user_id, "type": type, "title": title, "message": message, "data": data}
        )


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def payout() -> FakePayout:
    return FakePayout()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def executor(store, chain, payout, notifier):
    from flowpay.config import get_settings
    from flowpay.execution.executor import IntentExecutor
    from flowpay.services.health import HealthStatus

    return IntentExecutor(
        store=store,
        chain=chain,
        payout=payout,
        notifier=notifier,
        settings=get_settings(),
        clock=lambda: NOW,
        health=HealthStatus(),
    )
