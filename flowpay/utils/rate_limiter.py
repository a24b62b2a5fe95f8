"""Throttling and failure isolation for gateway calls.

`RateLimiter` caps the JSON-RPC call rate shared by all concurrently
processed intents. `CircuitBreaker` stops payout requests for a while after
the provider keeps failing.
"""

import asyncio
import logging
import time

logger = logging.getLogger(__name__)


class RateLimiter:
    """Token bucket shared by every pipeline of one executor."""

    def __init__(
        self,
        calls_per_second: float = 10.0,
        burst_size: int | None = None,
        name: str = "default",
    ) -> None:
        """Initialize rate limiter.

        Args:
            calls_per_second: Sustained call rate.
            burst_size: Calls allowed back to back (defaults to 2x rate).
            name: Name for logging.
        """
        self.rate = calls_per_second
        self.burst_size = burst_size or max(1, int(calls_per_second * 2))
        self.name = name
        self.tokens = float(self.burst_size)
        self.total_calls = 0
        self.throttled_calls = 0
        self._updated_at = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        self.tokens = min(self.burst_size, self.tokens + (now - self._updated_at) * self.rate)
        self._updated_at = now

    async def acquire(self) -> float:
        """Take one token, sleeping until one is available.

        Returns:
            Seconds waited.
        """
        async with self._lock:
            self._refill()
            self.total_calls += 1
            if self.tokens >= 1:
                self.tokens -= 1
                return 0.0

            wait = (1 - self.tokens) / self.rate
            self.throttled_calls += 1
            logger.debug(
                f"Rate limiter '{self.name}' waiting {wait:.3f}s",
                extra={"limiter": self.name, "wait_seconds": wait},
            )
            await asyncio.sleep(wait)
            self._refill()
            self.tokens -= 1
            return wait


class CircuitBreaker:
    """Opens after `failure_threshold` consecutive failures.

    While open, `is_open` is True until `reset_timeout` seconds have passed
    since the last failure; then one trial request is let through and its
    result closes or re-opens the breaker.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        name: str = "default",
    ) -> None:
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.name = name
        self.failures = 0
        self._opened = False
        self._last_failure: float | None = None

    @property
    def is_open(self) -> bool:
        if not self._opened:
            return False
        if self._last_failure is not None and time.monotonic() - self._last_failure >= self.reset_timeout:
            logger.info(f"Circuit breaker '{self.name}' letting a trial request through")
            return False
        return True

    def record_success(self) -> None:
        if self._opened:
            logger.info(f"Circuit breaker '{self.name}' closed")
        self.failures = 0
        self._opened = False

    def record_failure(self) -> None:
        self.failures += 1
        self._last_failure = time.monotonic()
        if self.failures >= self.failure_threshold and not self._opened:
            self._opened = True
            logger.warning(
                f"Circuit breaker '{self.name}' opened after {self.failures} failures",
                extra={"breaker": self.name, "failures": self.failures},
            )
