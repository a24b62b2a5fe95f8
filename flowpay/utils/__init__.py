"""Utilities - logging setup, clock helpers and rate limiting."""

from flowpay.utils.logging import setup_logging
from flowpay.utils.rate_limiter import CircuitBreaker, RateLimiter
from flowpay.utils.clock import local_hhmm, utcnow

__all__ = [
    "setup_logging",
    "RateLimiter",
    "CircuitBreaker",
    "utcnow",
    "local_hhmm",
]
