"""Tests for next-execution arithmetic."""

from datetime import datetime, timedelta

import pytest

from flowpay.execution.intents import Frequency
from flowpay.execution.schedule import add_months, first_execution, next_execution_after

T = datetime(2025, 3, 10, 12, 30)


def test_daily_is_24_hours_later():
    assert next_execution_after(Frequency.DAILY, T) == T + timedelta(hours=24)


def test_weekly_is_seven_days_later():
    assert next_execution_after(Frequency.WEEKLY, T) == datetime(2025, 3, 17, 12, 30)


def test_once_has_no_next_execution():
    assert next_execution_after(Frequency.ONCE, T) is None


def test_monthly_uses_calendar_months():
    assert next_execution_after(Frequency.MONTHLY, T) == datetime(2025, 4, 10, 12, 30)
    assert next_execution_after(Frequency.MONTHLY, datetime(2025, 1, 31, 9, 0)) == datetime(2025, 2, 28, 9, 0)
    assert next_execution_after(Frequency.MONTHLY, datetime(2024, 1, 31)) == datetime(2024, 2, 29)
    assert next_execution_after(Frequency.MONTHLY, datetime(2025, 12, 15)) == datetime(2026, 1, 15)


def test_yearly_uses_calendar_years():
    assert next_execution_after(Frequency.YEARLY, T) == datetime(2026, 3, 10, 12, 30)
    assert next_execution_after(Frequency.YEARLY, datetime(2024, 2, 29)) == datetime(2025, 2, 28)


def test_unknown_frequency_is_rejected():
    with pytest.raises(ValueError):
        next_execution_after("HOURLY", T)


def test_add_months_across_years():
    assert add_months(datetime(2025, 11, 30), 3) == datetime(2026, 2, 28)


def test_first_execution_once_is_immediate():
    assert first_execution(Frequency.ONCE, T) == T


def test_first_execution_recurring_after_one_period():
    assert first_execution(Frequency.WEEKLY, T) == T + timedelta(days=7)


def test_first_execution_honours_start_at():
    later = T + timedelta(hours=3)
    assert first_execution(Frequency.MONTHLY, T, start_at=later) == later
    # A start in the past is due now, never before creation.
    assert first_execution(Frequency.MONTHLY, T, start_at=T - timedelta(days=1)) == T
