"""Execution layer - intents, constraints, store and the executor."""

from flowpay.execution.constraints import Decision, evaluate
from flowpay.execution.errors import (
    ExecutionError,
    FlowPayError,
    IntentValidationError,
    OutcomeNotRecordedError,
)
from flowpay.execution.intents import (
    ExecutionRecord,
    ExecutionStatus,
    Frequency,
    Intent,
    IntentCreate,
    IntentPatch,
    IntentStatus,
)
from flowpay.execution.store import IntentStore

__all__ = [
    "Decision",
    "evaluate",
    "FlowPayError",
    "ExecutionError",
    "IntentValidationError",
    "OutcomeNotRecordedError",
    "ExecutionRecord",
    "ExecutionStatus",
    "Frequency",
    "Intent",
    "IntentCreate",
    "IntentPatch",
    "IntentStatus",
    "IntentStore",
]
