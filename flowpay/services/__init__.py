"""Services layer - notifications, health and the execution loop."""

from flowpay.services.health import HealthStatus, get_health_status
from flowpay.services.notifier import NotificationService

__all__ = [
    "HealthStatus",
    "get_health_status",
    "NotificationService",
]
