"""Collaborator interfaces consumed by the intent executor."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any, Protocol

from flowpay.data.models import PayoutResult, TxReceipt


class NotificationType(str, Enum):
    EXECUTION_SUCCESS = "EXECUTION_SUCCESS"
    EXECUTION_DELAYED = "EXECUTION_DELAYED"
    EXECUTION_FAILED = "EXECUTION_FAILED"
    INTENT_CREATED = "INTENT_CREATED"


class ChainBackend(Protocol):
    """Synchronous ledger access. Every method raises `ChainError` on failure."""

    def get_token_balance(self, token_address: str, wallet_address: str) -> Decimal:
        """Token balance of a wallet, in whole-token units."""

    def get_gas_price(self) -> int:
        """Current gas price in wei."""

    def execute_intent(self, on_chain_id: int | None) -> TxReceipt:
        """Execute a mirrored intent on the ledger contract and wait for the receipt."""


class PayoutBackend(Protocol):
    """Off-ramp payout provider. Failures come back as results, never raised."""

    async def payout(
        self,
        phone: str,
        country: str,
        amount_usd: Decimal,
        user_id: str,
        intent_id: str,
    ) -> PayoutResult:
        """Send a mobile-money payout."""


class NotificationSink(Protocol):
    """Receives user-facing execution outcomes."""

    async def notify(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        """Deliver one notification to a user."""
