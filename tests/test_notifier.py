"""Tests for the notification service."""

import asyncio
import json

import httpx
import pytest

from flowpay.config import get_settings
from flowpay.execution.gateways import NotificationType
from flowpay.services.notifier import (
    NotificationService,
    format_telegram_message,
    intent_created_message,
)


@pytest.fixture
def telegram_env(monkeypatch):
    monkeypatch.setenv("FLOWPAY_TELEGRAM_BOT_TOKEN", "123:secret")
    monkeypatch.setenv("FLOWPAY_TELEGRAM_API_URL", "https://telegram.test")
    get_settings.cache_clear()


def _service(session_factory, handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return NotificationService(session_factory, http_client=client), client


def _notify(service, client, *args, **kwargs):
    async def _go():
        try:
            return await service.notify(*args, **kwargs)
        finally:
            await client.aclose()

    return asyncio.run(_go())


def test_notification_is_persisted_without_telegram(session_factory, owner):
    service = NotificationService(session_factory)

    notification_id = asyncio.run(
        service.notify(
            owner.id,
            NotificationType.EXECUTION_DELAYED,
            "Payment Delayed",
            "Rent: Insufficient balance",
            {"intent_id": "i-1"},
        )
    )

    assert not service.telegram_enabled
    [row] = service.list_notifications(owner.id)
    assert row["id"] == notification_id
    assert row["type"] == "EXECUTION_DELAYED"
    assert row["data"] == {"intent_id": "i-1"}
    assert row["read"] is False


def test_telegram_delivery_to_linked_chat(telegram_env, session_factory, owner):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    service, client = _service(session_factory, handler)
    _notify(service, client, owner.id, NotificationType.EXECUTION_SUCCESS, "Payment Sent", "Rent: 100 USDC")

    [request] = seen
    assert str(request.url) == "https://telegram.test/bot123:secret/sendMessage"
    body = json.loads(request.content)
    assert body["chat_id"] == "4242"
    assert body["parse_mode"] == "HTML"
    assert "<b>Payment Sent</b>" in body["text"]


def test_no_telegram_without_linked_chat(telegram_env, store, session_factory):
    user = store.add_user("0x" + "66" * 20)

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("Telegram must not be called")

    service, client = _service(session_factory, handler)
    _notify(service, client, user.id, NotificationType.INTENT_CREATED, "Intent Created", "ok")

    assert len(service.list_notifications(user.id)) == 1


def test_telegram_disabled_by_flag(monkeypatch, telegram_env, session_factory, owner):
    monkeypatch.setenv("FLOWPAY_TELEGRAM_NOTIFICATIONS_ENABLED", "false")
    get_settings.cache_clear()

    service = NotificationService(session_factory)

    assert not service.telegram_enabled


def test_telegram_errors_do_not_raise(telegram_env, session_factory, owner):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"ok": False, "description": "bot was blocked"})

    service, client = _service(session_factory, handler)
    notification_id = _notify(
        service, client, owner.id, NotificationType.EXECUTION_FAILED, "Payment Failed", "Rent: boom"
    )

    assert notification_id
    assert service.unread_count(owner.id) == 1


def test_read_tracking(session_factory, owner):
    service = NotificationService(session_factory)
    for i in range(3):
        asyncio.run(service.notify(owner.id, NotificationType.INTENT_CREATED, f"n{i}", "msg"))
    first = service.list_notifications(owner.id)[0]["id"]

    assert service.unread_count(owner.id) == 3
    assert service.mark_read(first)
    assert not service.mark_read("missing")
    assert service.unread_count(owner.id) == 2
    assert service.mark_all_read(owner.id) == 2
    assert service.unread_count(owner.id) == 0
    assert len(service.list_notifications(owner.id, limit=2)) == 2


def test_format_telegram_message_escapes_html():
    text = format_telegram_message(NotificationType.EXECUTION_FAILED, "Payment <Failed>", "a & b")

    assert text.startswith("❌ <b>Payment &lt;Failed&gt;</b>")
    assert text.endswith("a &amp; b")


def test_intent_created_message(make_intent):
    intent = make_intent(frequency="WEEKLY")

    title, message, data = intent_created_message(intent)

    assert title == "Intent Created"
    assert message == (
        'New payment intent "Rent" created successfully. Amount: 100 USDC, Frequency: WEEKLY'
    )
    assert data == {"intent_id": intent.id, "amount": "100", "token": "USDC", "frequency": "WEEKLY"}
