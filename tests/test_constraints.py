"""Tests for the pre-execution constraint evaluator."""

from datetime import datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from flowpay.execution.constraints import (
    GAS_ABOVE_LIMIT,
    INSUFFICIENT_BALANCE,
    OUTSIDE_TIME_WINDOW,
    PROCEED,
    DecisionAction,
    evaluate,
    in_time_window,
)
from flowpay.execution.intents import Frequency, Intent

NOON = datetime(2025, 3, 10, 12, 0)


def _intent(**overrides) -> Intent:
    fields = dict(
        id="intent-1",
        owner_id="user-1",
        owner_wallet="0x" + "11" * 20,
        amount=Decimal("100"),
        token="USDC",
        token_address="0x" + "22" * 20,
        frequency=Frequency.DAILY,
        safety_buffer=Decimal("50"),
        recipient="0x" + "33" * 20,
    )
    fields.update(overrides)
    return Intent(**fields)


def test_insufficient_balance_delays():
    decision = evaluate(_intent(), Decimal("120"), None, NOON)

    assert decision.action == DecisionAction.DELAY
    assert decision.reason == INSUFFICIENT_BALANCE == "Insufficient balance"


def test_balance_equal_to_required_proceeds():
    assert evaluate(_intent(), Decimal("150"), None, NOON) == PROCEED


def test_balance_check_wins_over_gas_and_window():
    intent = _intent(max_gas_price=1, time_window_start="01:00", time_window_end="02:00")

    decision = evaluate(intent, Decimal("10"), 10**12, NOON)

    assert decision.reason == INSUFFICIENT_BALANCE


def test_gas_above_limit_delays():
    intent = _intent(max_gas_price=5_000_000_000)

    decision = evaluate(intent, Decimal("1000"), 5_000_000_001, NOON)

    assert decision.reason == GAS_ABOVE_LIMIT == "Gas price above limit"


def test_gas_at_limit_proceeds():
    intent = _intent(max_gas_price=5_000_000_000)

    assert evaluate(intent, Decimal("1000"), 5_000_000_000, NOON).proceed


def test_gas_ignored_without_ceiling():
    assert evaluate(_intent(), Decimal("1000"), 10**15, NOON).proceed


def test_gas_check_wins_over_window():
    intent = _intent(max_gas_price=1, time_window_start="01:00", time_window_end="02:00")

    assert evaluate(intent, Decimal("1000"), 2, NOON).reason == GAS_ABOVE_LIMIT


def test_outside_time_window_delays():
    intent = _intent(time_window_start="09:00", time_window_end="11:00")

    decision = evaluate(intent, Decimal("1000"), None, NOON)

    assert decision.reason == OUTSIDE_TIME_WINDOW == "Outside execution time window"


def test_window_end_is_exclusive():
    intent = _intent(time_window_start="09:00", time_window_end="12:00")

    assert evaluate(intent, Decimal("1000"), None, NOON).reason == OUTSIDE_TIME_WINDOW
    assert evaluate(intent, Decimal("1000"), None, datetime(2025, 3, 10, 9, 0)).proceed
    assert evaluate(intent, Decimal("1000"), None, datetime(2025, 3, 10, 11, 59)).proceed


def test_window_uses_configured_timezone():
    # 12:00 UTC is 08:00 in New York during daylight saving time.
    intent = _intent(time_window_start="08:00", time_window_end="09:00")

    assert evaluate(intent, Decimal("1000"), None, NOON, tz=ZoneInfo("America/New_York")).proceed
    assert not evaluate(intent, Decimal("1000"), None, NOON).proceed


def test_half_open_window_is_ignored():
    intent = _intent(time_window_start="01:00", time_window_end=None)

    assert evaluate(intent, Decimal("1000"), None, NOON).proceed


@pytest.mark.parametrize(
    "hhmm,expected",
    [("22:00", True), ("23:59", True), ("00:00", True), ("05:59", True), ("06:00", False), ("12:00", False)],
)
def test_window_wrapping_midnight(hhmm, expected):
    assert in_time_window(hhmm, "22:00", "06:00") is expected
