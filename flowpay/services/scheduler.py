"""Periodic execution loop."""

import asyncio
import time
from typing import Any

import structlog

from flowpay.config import get_settings
from flowpay.execution.executor import IntentExecutor
from flowpay.services.health import get_health_status

logger = structlog.get_logger(__name__)


class ExecutionScheduler:
    """Starts one executor tick every `tick_interval_seconds`.

    Ticks run as background tasks so a slow intent never holds back the next
    tick; the executor's in-flight set skips intents that are still running.
    """

    def __init__(self, executor: IntentExecutor) -> None:
        self.executor = executor
        self.settings = get_settings()
        self.health = get_health_status()
        self.interval = float(self.settings.tick_interval_seconds)
        self.is_running = False
        self.consecutive_errors = 0
        self.last_summary: dict[str, Any] | None = None
        self._wakeup: asyncio.Event | None = None
        self._pending: set[asyncio.Task] = set()

    @property
    def pending_ticks(self) -> int:
        return len(self._pending)

    async def run(self, max_ticks: int | None = None) -> None:
        """Start ticks until stopped, the kill switch trips, or `max_ticks` started.

        Ticks still running when the loop ends are awaited before returning.
        """
        self.is_running = True
        self._wakeup = asyncio.Event()
        self._pending = set()
        ticks = 0
        logger.info(
            "execution_loop_started",
            interval_seconds=self.interval,
            max_concurrent=self.settings.max_concurrent_executions,
        )

        while self.is_running:
            tick_start = time.monotonic()
            task = asyncio.create_task(self._run_tick())
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            elapsed = time.monotonic() - tick_start
            await self._sleep(max(0.0, self.interval - elapsed))

        if self._pending:
            logger.info("execution_loop_draining", pending=len(self._pending))
            await asyncio.gather(*self._pending)

        self.is_running = False
        logger.info("execution_loop_stopped", ticks=ticks)

    async def _run_tick(self) -> None:
        tick_start = time.monotonic()
        try:
            summary = await self.executor.tick()
        except Exception as e:
            logger.error("tick_failed", error=str(e), exc_info=True)
            self.health.mark_unhealthy(str(e))
            self.consecutive_errors += 1
            if self.consecutive_errors >= self.settings.kill_switch_on_errors:
                logger.error(
                    "kill_switch_triggered",
                    consecutive_errors=self.consecutive_errors,
                    threshold=self.settings.kill_switch_on_errors,
                )
                self.stop()
            return

        duration = time.monotonic() - tick_start
        self.last_summary = summary
        self.health.update_tick(duration, summary)
        self.health.mark_healthy()
        self.consecutive_errors = 0
        logger.info(
            "tick_completed",
            tick_id=summary["tick_id"],
            duration=round(duration, 3),
            due=summary["due"],
            skipped_in_flight=summary.get("skipped_in_flight", 0),
            outcomes=summary["outcomes"],
        )

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def stop(self) -> None:
        """Stop starting new ticks; running ticks are allowed to finish."""
        logger.info("execution_loop_stopping")
        self.is_running = False
        if self._wakeup is not None:
            self._wakeup.set()
