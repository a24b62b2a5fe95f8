"""Execution error taxonomy."""


class FlowPayError(Exception):
    """Base class for application errors."""


class IntentValidationError(FlowPayError):
    """An intent definition violates a data-model invariant."""


class ExecutionError(FlowPayError):
    """A gateway failed while dispatching an intent.

    The message is user-visible: it is stored on the FAILED execution record
    and sent in the failure notification.
    """


class OutcomeNotRecordedError(FlowPayError):
    """An execution outcome could not be written after all retries."""

    def __init__(self, intent_id: str, outcome: str, detail: str) -> None:
        super().__init__(f"{outcome} outcome for intent {intent_id} not recorded: {detail}")
        self.intent_id = intent_id
        self.outcome = outcome
