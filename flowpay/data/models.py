"""Pydantic models for gateway responses."""

from typing import Any

from pydantic import BaseModel, Field


class TxReceipt(BaseModel):
    """Mined transaction receipt, reduced to what execution records need."""

    tx_hash: str
    gas_used: int
    gas_price: int  # wei (effective gas price)
    block_number: int


class PayoutResult(BaseModel):
    """Outcome of a payout request.

    Provider and transport errors are reported here rather than raised.
    """

    success: bool
    payout_id: str | None = None
    provider_status: str | None = None
    error: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def failed(cls, error: str, raw: dict[str, Any] | None = None) -> "PayoutResult":
        return cls(success=False, error=error, raw=raw or {})
