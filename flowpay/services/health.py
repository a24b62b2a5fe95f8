"""Process health: tick timing and unrecorded-outcome alerts."""

import logging
from datetime import datetime
from typing import Any

from flowpay.utils.clock import utcnow

logger = logging.getLogger(__name__)


class HealthStatus:
    """Health of the execution loop."""

    def __init__(self) -> None:
        self.started_at = utcnow()
        self.last_tick_at: datetime | None = None
        self.last_tick_duration: float = 0.0
        self.last_tick_summary: dict[str, Any] | None = None
        self.total_ticks = 0
        self.is_healthy = True
        self.error_message: str | None = None

    def update_tick(self, duration: float, summary: dict[str, Any] | None = None) -> None:
        """Record a completed tick.

        Args:
            duration: Tick duration in seconds.
            summary: Tick summary returned by the executor.
        """
        self.last_tick_at = utcnow()
        self.last_tick_duration = duration
        self.last_tick_summary = summary
        self.total_ticks += 1

    def mark_unhealthy(self, error: str) -> None:
        self.is_healthy = False
        self.error_message = error
        logger.error(f"Health check failed: {error}")

    def mark_healthy(self) -> None:
        """Clear a previous failure.

        An unhealthy flag raised for an unrecorded outcome sticks until the
        process restarts; a successful tick does not clear it.
        """
        if self.error_message and self.error_message.startswith("Unrecorded"):
            return
        self.is_healthy = True
        self.error_message = None

    def to_dict(self) -> dict[str, Any]:
        uptime = (utcnow() - self.started_at).total_seconds()

        return {
            "is_healthy": self.is_healthy,
            "started_at": self.started_at.isoformat(),
            "uptime_seconds": uptime,
            "last_tick_at": self.last_tick_at.isoformat() if self.last_tick_at else None,
            "last_tick_duration": self.last_tick_duration,
            "last_tick": self.last_tick_summary,
            "total_ticks": self.total_ticks,
            "error_message": self.error_message,
        }


_health_status = HealthStatus()


def get_health_status() -> HealthStatus:
    """Get global health status instance."""
    return _health_status
