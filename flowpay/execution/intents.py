"""Payment intent domain: statuses, snapshots and execution records."""

import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from flowpay.data.models import PayoutResult, TxReceipt

HHMM_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def format_amount(value: Decimal) -> str:
    """Plain decimal text without trailing zeros (100.000 -> "100")."""
    return format(value.normalize(), "f")


class Frequency(str, Enum):
    """How often an intent pays out."""

    ONCE = "ONCE"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class IntentStatus(str, Enum):
    """Intent status values."""

    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class ExecutionStatus(str, Enum):
    """Outcome of one evaluation of an intent."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    DELAYED = "DELAYED"


class OffRampDetails(BaseModel):
    """Mobile-money destination of an off-ramp intent."""

    phone_number: str = Field(min_length=4)
    country: str = Field(min_length=2)


@dataclass
class Intent:
    """Snapshot of a stored intent, joined with its owner's wallet."""

    id: str
    owner_id: str
    owner_wallet: str
    amount: Decimal
    token: str
    token_address: str
    frequency: Frequency
    safety_buffer: Decimal = Decimal("0")
    recipient: str | None = None
    name: str | None = None
    description: str | None = None
    max_gas_price: int | None = None  # wei
    time_window_start: str | None = None  # "HH:MM", inclusive
    time_window_end: str | None = None  # "HH:MM", exclusive
    is_off_ramp: bool = False
    off_ramp: OffRampDetails | None = None
    status: IntentStatus = IntentStatus.ACTIVE
    next_execution: datetime | None = None
    last_execution: datetime | None = None
    execution_count: int = 0
    failure_count: int = 0
    on_chain_id: int | None = None
    created_at: datetime | None = None

    @property
    def display_name(self) -> str:
        return self.name or f"{self.token} Payment"

    @property
    def required_balance(self) -> Decimal:
        return self.amount + self.safety_buffer

    @property
    def has_time_window(self) -> bool:
        return bool(self.time_window_start and self.time_window_end)

    def is_due(self, now: datetime) -> bool:
        """Selected by a tick at `now`. A null next execution is never due."""
        return (
            self.status == IntentStatus.ACTIVE
            and self.next_execution is not None
            and self.next_execution <= now
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.display_name,
            "recipient": self.recipient,
            "amount": format_amount(self.amount),
            "token": self.token,
            "token_address": self.token_address,
            "frequency": self.frequency.value,
            "safety_buffer": format_amount(self.safety_buffer),
            "max_gas_price": str(self.max_gas_price) if self.max_gas_price is not None else None,
            "time_window": (
                [self.time_window_start, self.time_window_end] if self.has_time_window else None
            ),
            "is_off_ramp": self.is_off_ramp,
            "off_ramp": self.off_ramp.model_dump() if self.off_ramp else None,
            "status": self.status.value,
            "next_execution": self.next_execution.isoformat() if self.next_execution else None,
            "last_execution": self.last_execution.isoformat() if self.last_execution else None,
            "execution_count": self.execution_count,
            "failure_count": self.failure_count,
            "on_chain_id": self.on_chain_id,
        }


@dataclass(frozen=True)
class ExecutionRecord:
    """Immutable audit record of one evaluation outcome."""

    intent_id: str
    status: ExecutionStatus
    amount: Decimal
    executed_at: datetime
    tx_hash: str | None = None
    gas_used: int | None = None
    gas_price: int | None = None
    block_number: int | None = None
    payout_id: str | None = None
    provider_status: str | None = None
    error_message: str | None = None
    delay_reason: str | None = None
    id: str | None = None

    @classmethod
    def onchain_success(cls, intent: Intent, receipt: TxReceipt, at: datetime) -> "ExecutionRecord":
        return cls(
            intent_id=intent.id,
            status=ExecutionStatus.SUCCESS,
            amount=intent.amount,
            executed_at=at,
            tx_hash=receipt.tx_hash,
            gas_used=receipt.gas_used,
            gas_price=receipt.gas_price,
            block_number=receipt.block_number,
        )

    @classmethod
    def offramp_success(cls, intent: Intent, result: PayoutResult, at: datetime) -> "ExecutionRecord":
        return cls(
            intent_id=intent.id,
            status=ExecutionStatus.SUCCESS,
            amount=intent.amount,
            executed_at=at,
            payout_id=result.payout_id,
            provider_status=result.provider_status,
        )

    @classmethod
    def failed(cls, intent: Intent, error: str, at: datetime) -> "ExecutionRecord":
        return cls(
            intent_id=intent.id,
            status=ExecutionStatus.FAILED,
            amount=intent.amount,
            executed_at=at,
            error_message=error,
        )

    @classmethod
    def delayed(cls, intent: Intent, reason: str, at: datetime) -> "ExecutionRecord":
        return cls(
            intent_id=intent.id,
            status=ExecutionStatus.DELAYED,
            amount=intent.amount,
            executed_at=at,
            delay_reason=reason,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "intent_id": self.intent_id,
            "status": self.status.value,
            "amount": format_amount(self.amount),
            "executed_at": self.executed_at.isoformat(),
            "tx_hash": self.tx_hash,
            "gas_used": self.gas_used,
            "gas_price": self.gas_price,
            "block_number": self.block_number,
            "payout_id": self.payout_id,
            "provider_status": self.provider_status,
            "error_message": self.error_message,
            "delay_reason": self.delay_reason,
        }


@dataclass(frozen=True)
class IntentUpdate:
    """Summary-field changes applied together with one execution record."""

    status: IntentStatus | None = None
    reschedule: bool = False
    next_execution: datetime | None = None
    last_execution: datetime | None = None
    execution_count_delta: int = 0
    failure_count_delta: int = 0
    reset_failure_count: bool = False


@dataclass(frozen=True)
class Owner:
    id: str
    wallet_address: str
    telegram_chat_id: str | None = None


class IntentCreate(BaseModel):
    """Validated definition of a new intent."""

    name: str | None = None
    description: str | None = None
    recipient: str | None = None
    amount: Decimal = Field(gt=0)
    token: str = Field(min_length=1)
    token_address: str = Field(min_length=1)
    frequency: Frequency
    safety_buffer: Decimal = Field(default=Decimal("0"), ge=0)
    max_gas_price: int | None = Field(default=None, gt=0)
    time_window_start: str | None = None
    time_window_end: str | None = None
    is_off_ramp: bool = False
    off_ramp_details: OffRampDetails | None = None
    on_chain_id: int | None = Field(default=None, ge=0)
    start_at: datetime | None = None

    @field_validator("time_window_start", "time_window_end")
    @classmethod
    def validate_hhmm(cls, v: str | None) -> str | None:
        """Validate zero-padded 24h "HH:MM"."""
        if v is not None and not HHMM_RE.match(v):
            raise ValueError(f"Time must be HH:MM (24h), got {v!r}")
        return v

    @model_validator(mode="after")
    def validate_paths(self) -> "IntentCreate":
        """Exactly one execution path, with the details that path needs."""
        if (self.time_window_start is None) != (self.time_window_end is None):
            raise ValueError("Time window needs both start and end")
        if self.time_window_start is not None and self.time_window_start == self.time_window_end:
            raise ValueError("Time window start and end must differ")
        if self.is_off_ramp and self.off_ramp_details is None:
            raise ValueError("Off-ramp intents need off_ramp_details (phone_number, country)")
        if not self.is_off_ramp and not self.recipient:
            raise ValueError("On-chain intents need a recipient")
        return self


class IntentPatch(BaseModel):
    """Partial user edit of an intent. Unset fields are left unchanged."""

    name: str | None = None
    description: str | None = None
    recipient: str | None = None
    amount: Decimal | None = None
    token: str | None = None
    token_address: str | None = None
    frequency: Frequency | None = None
    safety_buffer: Decimal | None = None
    max_gas_price: int | None = None
    time_window_start: str | None = None
    time_window_end: str | None = None
    is_off_ramp: bool | None = None
    off_ramp_details: OffRampDetails | None = None
    on_chain_id: int | None = None
