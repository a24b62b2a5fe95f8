"""Application settings using pydantic-settings."""

from functools import lru_cache
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration with environment variable overrides."""

    model_config = SettingsConfigDict(
        env_prefix="FLOWPAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    db_url: str = Field(default="sqlite:///./flowpay.db", description="Database connection URL")

    # Chain Configuration
    # Required (fail-fast enforced by env_loader + Settings instantiation)
    rpc_url: str = Field(..., description="JSON-RPC endpoint of the ledger holding intent funds")
    chain_id: int = Field(default=25, description="Chain ID used when signing transactions (Cronos=25)")
    intent_contract_address: str | None = Field(
        default=None, description="Address of the on-chain intent contract"
    )
    execution_private_key: str | None = Field(
        default=None, description="Private key of the execution wallet (NEVER commit or print)"
    )
    rpc_timeout_seconds: float = Field(default=20.0, description="Per-request JSON-RPC timeout")
    receipt_timeout_seconds: float = Field(
        default=120.0, description="Max wait for a submitted transaction to be mined"
    )
    rpc_calls_per_second: float = Field(
        default=10.0, description="Sustained JSON-RPC call rate across all intents"
    )

    # Off-ramp payout provider
    payout_api_url: str | None = Field(
        default=None, description="Payout provider API base URL (e.g. https://api.chimoney.io/v0.2)"
    )
    payout_api_key: str | None = Field(
        default=None, description="Payout provider API key (NEVER commit or print)"
    )
    payout_timeout_seconds: float = Field(default=30.0, description="Payout HTTP request timeout")
    payout_reference_prefix: str = Field(
        default="FlowPay", description="Prefix of the provider-side payout reference"
    )

    # Execution engine
    tick_interval_seconds: int = Field(default=60, description="Seconds between due-intent scans")
    max_concurrent_executions: int = Field(
        default=8, description="Max intents processed concurrently within one tick"
    )
    delay_backoff_seconds: int = Field(
        default=300, description="Retry delay after a constraint blocks execution (seconds)"
    )
    gateway_timeout_seconds: float = Field(
        default=180.0,
        description="Upper bound on any single gateway call; a timeout counts as a failure",
    )
    store_write_attempts: int = Field(
        default=5, description="Attempts to record an execution outcome before alerting"
    )
    kill_switch_on_errors: int = Field(
        default=5, description="Stop the scheduler after N consecutive tick errors"
    )
    timezone: str = Field(
        default="UTC", description="IANA time zone used to evaluate execution time windows"
    )

    # Notifications
    telegram_notifications_enabled: bool = Field(
        default=True, description="Also deliver notifications to linked Telegram chats"
    )
    telegram_bot_token: str | None = Field(
        default=None, description="Telegram bot token (NEVER commit or print)"
    )
    telegram_api_url: str = Field(
        default="https://api.telegram.org", description="Telegram Bot API base URL"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )
    log_format: Literal["json", "console"] = Field(
        default="json", description="Log output format"
    )

    @field_validator(
        "tick_interval_seconds",
        "max_concurrent_executions",
        "delay_backoff_seconds",
        "store_write_attempts",
        "kill_switch_on_errors",
    )
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Validate counters and intervals are positive."""
        if v < 1:
            raise ValueError(f"Value must be at least 1, got {v}")
        return v

    @field_validator(
        "rpc_timeout_seconds",
        "receipt_timeout_seconds",
        "rpc_calls_per_second",
        "payout_timeout_seconds",
        "gateway_timeout_seconds",
    )
    @classmethod
    def validate_positive_float(cls, v: float) -> float:
        """Validate timeouts and rates are positive."""
        if v <= 0:
            raise ValueError(f"Value must be positive, got {v}")
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate the time zone name resolves."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown time zone: {v}") from e
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def onchain_execution_enabled(self) -> bool:
        return bool(self.execution_private_key and self.intent_contract_address)

    @property
    def payout_enabled(self) -> bool:
        return bool(self.payout_api_key and self.payout_api_url)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
