"""FlowPay - scheduled execution of recurring payment intents."""

__version__ = "0.1.0"
