"""Tests for settings validation and environment loading."""

import os
from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError

from flowpay.config import get_settings, load_env_or_exit


def test_defaults():
    settings = get_settings()

    assert settings.rpc_url == "http://rpc.local"
    assert settings.delay_backoff_seconds == 300
    assert settings.max_concurrent_executions == 8
    assert settings.tzinfo == ZoneInfo("UTC")
    assert not settings.onchain_execution_enabled
    assert not settings.payout_enabled


@pytest.mark.parametrize(
    "key,value",
    [
        ("FLOWPAY_TICK_INTERVAL_SECONDS", "0"),
        ("FLOWPAY_DELAY_BACKOFF_SECONDS", "-5"),
        ("FLOWPAY_STORE_WRITE_ATTEMPTS", "0"),
        ("FLOWPAY_GATEWAY_TIMEOUT_SECONDS", "0"),
        ("FLOWPAY_TIMEZONE", "Mars/Olympus_Mons"),
        ("FLOWPAY_LOG_LEVEL", "TRACE"),
    ],
)
def test_invalid_values_are_rejected(monkeypatch, key, value):
    monkeypatch.setenv(key, value)
    get_settings.cache_clear()

    with pytest.raises(ValidationError):
        get_settings()


def test_backend_flags(monkeypatch):
    monkeypatch.setenv("FLOWPAY_PAYOUT_API_URL", "https://payout.test")
    monkeypatch.setenv("FLOWPAY_PAYOUT_API_KEY", "key")
    get_settings.cache_clear()

    assert get_settings().payout_enabled


def test_env_loader_requires_rpc_url(monkeypatch, tmp_path, capsys):
    monkeypatch.delenv("FLOWPAY_RPC_URL")

    with pytest.raises(SystemExit) as exc:
        load_env_or_exit(env_path=str(tmp_path / ".env"), env_example_path=str(tmp_path / ".env.example"))

    assert exc.value.code == 2
    assert "FLOWPAY_RPC_URL" in capsys.readouterr().err


def test_env_loader_reads_env_file(monkeypatch, tmp_path):
    monkeypatch.delenv("FLOWPAY_RPC_URL")
    env_file = tmp_path / ".env"
    env_file.write_text("FLOWPAY_RPC_URL=http://from-file\n")

    status = load_env_or_exit(env_path=str(env_file))

    assert status.loaded
    assert os.environ["FLOWPAY_RPC_URL"] == "http://from-file"


def test_env_loader_rejects_partial_credentials(monkeypatch, tmp_path, capsys):
    monkeypatch.setenv("FLOWPAY_EXECUTION_PRIVATE_KEY", "0x" + "4f" * 32)

    with pytest.raises(SystemExit) as exc:
        load_env_or_exit(env_path=str(tmp_path / ".env"))

    assert exc.value.code == 2
    assert "FLOWPAY_INTENT_CONTRACT_ADDRESS" in capsys.readouterr().err


def test_env_loader_warns_without_backend(tmp_path, capsys):
    status = load_env_or_exit(env_path=str(tmp_path / ".env"))

    assert not status.loaded
    assert "No execution backend configured" in capsys.readouterr().err
