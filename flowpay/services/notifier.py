"""User notifications: in-app rows plus optional Telegram delivery."""

import html
import logging
from typing import Any

import httpx
from sqlalchemy.orm import sessionmaker

from flowpay.config import get_settings
from flowpay.data.storage import NotificationDB, UserDB
from flowpay.execution.gateways import NotificationType
from flowpay.execution.intents import Intent, format_amount

logger = logging.getLogger(__name__)

ICONS = {
    NotificationType.EXECUTION_SUCCESS: "✅",
    NotificationType.EXECUTION_DELAYED: "⚠️",
    NotificationType.EXECUTION_FAILED: "❌",
}
DEFAULT_ICON = "ℹ️"


def format_telegram_message(type: NotificationType, title: str, message: str) -> str:
    """HTML message body for the Telegram Bot API."""
    icon = ICONS.get(NotificationType(type), DEFAULT_ICON)
    return f"{icon} <b>{html.escape(title)}</b>\n\n{html.escape(message)}"


def intent_created_message(intent: Intent) -> tuple[str, str, dict[str, Any]]:
    """Title, message and data of the INTENT_CREATED notification."""
    return (
        "Intent Created",
        f'New payment intent "{intent.display_name}" created successfully. '
        f"Amount: {format_amount(intent.amount)} {intent.token}, Frequency: {intent.frequency.value}",
        {
            "intent_id": intent.id,
            "amount": format_amount(intent.amount),
            "token": intent.token,
            "frequency": intent.frequency.value,
        },
    )


class NotificationService:
    """Persists notifications and forwards them to linked Telegram chats."""

    def __init__(
        self,
        session_factory: sessionmaker,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize notification service.

        Args:
            session_factory: SQLAlchemy session factory.
            http_client: Client used for Telegram calls. Created on demand if omitted.
        """
        settings = get_settings()
        self.session_factory = session_factory
        self.bot_token = settings.telegram_bot_token
        self.api_url = settings.telegram_api_url.rstrip("/")
        self.telegram_enabled = bool(self.bot_token) and settings.telegram_notifications_enabled
        self._client = http_client
        self._owns_client = http_client is None

        if self.telegram_enabled:
            logger.info("Telegram notifications enabled")
        else:
            logger.info("Telegram notifications disabled (no bot token)")

    async def notify(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> str:
        """Store an in-app notification and send it to Telegram if linked.

        Returns:
            Notification id.
        """
        type = NotificationType(type)
        with self.session_factory() as session, session.begin():
            row = NotificationDB(
                user_id=user_id,
                type=type.value,
                title=title,
                message=message,
                data=data or {},
            )
            session.add(row)
            session.flush()
            notification_id = row.id
            user = session.get(UserDB, user_id)
            chat_id = user.telegram_chat_id if user else None

        if self.telegram_enabled and chat_id:
            await self._send_telegram(chat_id, format_telegram_message(type, title, message))
        return notification_id

    async def _send_telegram(self, chat_id: str, text: str) -> bool:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=10.0)
        try:
            response = await self._client.post(
                f"{self.api_url}/bot{self.bot_token}/sendMessage",
                json={"chat_id": chat_id, "text": text, "parse_mode": "HTML"},
            )
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            # Request URL carries the bot token.
            status = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
            logger.error(
                f"Failed to send Telegram notification: {e.__class__.__name__}",
                extra={"chat_id": chat_id, "status_code": status},
            )
            return False

    def list_notifications(self, user_id: str, limit: int = 20) -> list[dict[str, Any]]:
        """Newest notifications of a user."""
        with self.session_factory() as session:
            rows = (
                session.query(NotificationDB)
                .filter(NotificationDB.user_id == user_id)
                .order_by(NotificationDB.created_at.desc())
                .limit(limit)
                .all()
            )
            return [
                {
                    "id": r.id,
                    "type": r.type,
                    "title": r.title,
                    "message": r.message,
                    "data": r.data,
                    "read": r.read,
                    "created_at": r.created_at.isoformat(),
                }
                for r in rows
            ]

    def unread_count(self, user_id: str) -> int:
        with self.session_factory() as session:
            return (
                session.query(NotificationDB)
                .filter(NotificationDB.user_id == user_id, NotificationDB.read.is_(False))
                .count()
            )

    def mark_read(self, notification_id: str) -> bool:
        with self.session_factory() as session, session.begin():
            row = session.get(NotificationDB, notification_id)
            if row is None:
                return False
            row.read = True
            return True

    def mark_all_read(self, user_id: str) -> int:
        """Mark every unread notification of a user as read; returns how many changed."""
        with self.session_factory() as session, session.begin():
            return (
                session.query(NotificationDB)
                .filter(NotificationDB.user_id == user_id, NotificationDB.read.is_(False))
                .update({NotificationDB.read: True}, synchronize_session=False)
            )

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
