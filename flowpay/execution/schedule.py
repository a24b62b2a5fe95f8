"""Next-execution arithmetic.

Months and years are calendar units: Jan 31 + 1 month is Feb 28/29, and
Feb 29 + 1 year is Feb 28.
"""

import calendar
from datetime import datetime, timedelta

from flowpay.execution.intents import Frequency


def add_months(when: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the target month's length."""
    month_index = when.month - 1 + months
    year = when.year + month_index // 12
    month = month_index % 12 + 1
    day = min(when.day, calendar.monthrange(year, month)[1])
    return when.replace(year=year, month=month, day=day)


def next_execution_after(frequency: Frequency, now: datetime) -> datetime | None:
    """One frequency unit after `now`; None for ONCE (no further runs).

    Raises:
        ValueError: For a frequency outside the enum.
    """
    frequency = Frequency(frequency)
    if frequency is Frequency.ONCE:
        return None
    if frequency is Frequency.DAILY:
        return now + timedelta(days=1)
    if frequency is Frequency.WEEKLY:
        return now + timedelta(days=7)
    if frequency is Frequency.MONTHLY:
        return add_months(now, 1)
    if frequency is Frequency.YEARLY:
        return add_months(now, 12)
    raise ValueError(f"Unsupported frequency: {frequency}")


def first_execution(
    frequency: Frequency, now: datetime, start_at: datetime | None = None
) -> datetime:
    """First due time of a newly created intent.

    An explicit `start_at` wins. A ONCE intent is due immediately; recurring
    intents first run one period after creation.
    """
    if start_at is not None:
        return max(start_at, now)
    nxt = next_execution_after(frequency, now)
    return now if nxt is None else nxt
