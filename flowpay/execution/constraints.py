"""Pure pre-execution constraint checks.

Checks run in a fixed order and the first failing one wins:
balance, then gas price, then time-of-day window.
"""

from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from decimal import Decimal
from enum import Enum

from flowpay.execution.intents import Intent
from flowpay.utils.clock import local_hhmm

INSUFFICIENT_BALANCE = "Insufficient balance"
GAS_ABOVE_LIMIT = "Gas price above limit"
OUTSIDE_TIME_WINDOW = "Outside execution time window"


class DecisionAction(str, Enum):
    PROCEED = "PROCEED"
    DELAY = "DELAY"


@dataclass(frozen=True)
class Decision:
    """Evaluator verdict. `reason` is set only for DELAY."""

    action: DecisionAction
    reason: str | None = None

    @property
    def proceed(self) -> bool:
        return self.action is DecisionAction.PROCEED

    @classmethod
    def delay(cls, reason: str) -> "Decision":
        return cls(action=DecisionAction.DELAY, reason=reason)


PROCEED = Decision(action=DecisionAction.PROCEED)


def in_time_window(hhmm: str, start: str, end: str) -> bool:
    """True when `hhmm` falls in [start, end). A window with start > end wraps midnight."""
    if start <= end:
        return start <= hhmm < end
    return hhmm >= start or hhmm < end


def evaluate(
    intent: Intent,
    balance: Decimal,
    gas_price: int | None,
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> Decision:
    """Decide whether `intent` may execute right now.

    Args:
        intent: Intent snapshot.
        balance: Owner's live token balance, in whole-token units.
        gas_price: Live gas price in wei. Only consulted when the intent sets a ceiling.
        now: Current instant (naive UTC).
        tz: Zone the time window is expressed in.

    Returns:
        PROCEED, or a DELAY decision naming the first failing constraint.
    """
    if balance < intent.required_balance:
        return Decision.delay(INSUFFICIENT_BALANCE)

    if intent.max_gas_price is not None and gas_price is not None:
        if gas_price > intent.max_gas_price:
            return Decision.delay(GAS_ABOVE_LIMIT)

    if intent.has_time_window:
        if not in_time_window(
            local_hhmm(now, tz), intent.time_window_start, intent.time_window_end
        ):
            return Decision.delay(OUTSIDE_TIME_WINDOW)

    return PROCEED
