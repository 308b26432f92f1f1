"""Tests for the event bus, alert engine and audit subscriber.

Covers:
- Global and typed subscribers; failing handlers don't break dispatch
- Queue worker drains on stop
- Alert rules: message formatting, conditions, send function
- Alert webhook POST
- Audit rows written from events; DB failures swallowed
"""

from __future__ import annotations

import json
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from pydantic import ValidationError

from quotepay.events import bus
from quotepay.events.alerts import AlertEngine, AlertRule, post_to_webhook
from quotepay.events.audit import audit_on_event
from quotepay.models.audit import AuditLog
from quotepay.schemas.events import EventType, SystemEvent

QUOTE_ID = uuid.UUID("0b7f3c1e-2a8e-4a4e-9d61-7d1e5d1c9a10")


@pytest.fixture(autouse=True)
def _clean_bus():
    bus.clear_subscribers()
    yield
    bus.clear_subscribers()


# ── Bus ──────────────────────────────────────────────────────────────


class TestBus:
    @pytest.mark.asyncio()
    async def test_global_and_typed_subscribers(self):
        everything = AsyncMock()
        emails_only = AsyncMock()
        bus.subscribe(everything)
        bus.subscribe(emails_only, event_types=[EventType.EMAIL_FAILED])

        await bus.dispatch(SystemEvent(event_type=EventType.EMAIL_SENT, quote_id=QUOTE_ID))
        await bus.dispatch(SystemEvent(event_type=EventType.EMAIL_FAILED, quote_id=QUOTE_ID))

        assert everything.await_count == 2
        emails_only.assert_awaited_once()
        assert emails_only.await_args.args[0].event_type == EventType.EMAIL_FAILED

    @pytest.mark.asyncio()
    async def test_failing_handler_isolated(self):
        broken = AsyncMock(side_effect=RuntimeError("boom"))
        healthy = AsyncMock()
        bus.subscribe(broken)
        bus.subscribe(healthy)

        await bus.dispatch(SystemEvent(event_type=EventType.SYSTEM_ERROR))

        healthy.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_unsubscribe(self):
        handler = AsyncMock()
        bus.subscribe(handler, event_types=[EventType.EMAIL_SENT])
        bus.unsubscribe(handler)

        await bus.dispatch(SystemEvent(event_type=EventType.EMAIL_SENT))

        handler.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_queue_drained_on_stop(self):
        received: list[SystemEvent] = []

        async def handler(event: SystemEvent) -> None:
            received.append(event)

        bus.subscribe(handler)
        await bus.start_event_system()
        for event_type in (EventType.QUOTE_SEND_REQUESTED, EventType.EMAIL_SENT, EventType.QUOTE_STATUS_CHANGED):
            await bus.emit(SystemEvent(event_type=event_type, quote_id=QUOTE_ID))
        await bus.stop_event_system()

        assert [e.event_type for e in received] == [
            EventType.QUOTE_SEND_REQUESTED,
            EventType.EMAIL_SENT,
            EventType.QUOTE_STATUS_CHANGED,
        ]

    def test_events_are_frozen(self):
        event = SystemEvent(event_type=EventType.EMAIL_SENT)
        with pytest.raises(ValidationError):
            event.quote_id = QUOTE_ID


# ── Alerts ───────────────────────────────────────────────────────────


class TestAlertEngine:
    @pytest.mark.asyncio()
    async def test_email_failure_alert(self):
        send = AsyncMock()
        engine = AlertEngine()
        engine.set_send_fn(send)

        await engine.on_event(
            SystemEvent(
                event_type=EventType.EMAIL_FAILED,
                quote_id=QUOTE_ID,
                data={"attempted_providers": ["resend", "sendgrid"], "error": "resend: timeout"},
            )
        )

        level, message = send.await_args.args
        assert level == "critical"
        assert str(QUOTE_ID) in message
        assert "resend: timeout" in message

    @pytest.mark.asyncio()
    async def test_refund_only_when_applied(self):
        send = AsyncMock()
        engine = AlertEngine()
        engine.set_send_fn(send)

        await engine.on_event(
            SystemEvent(
                event_type=EventType.PAYMENT_REFUNDED,
                quote_id=QUOTE_ID,
                data={"charge_id": "ch_1", "applied": False},
            )
        )
        send.assert_not_awaited()

        await engine.on_event(
            SystemEvent(
                event_type=EventType.PAYMENT_REFUNDED,
                quote_id=QUOTE_ID,
                data={"charge_id": "ch_1", "applied": True},
            )
        )
        assert "ch_1" in send.await_args.args[1]

    @pytest.mark.asyncio()
    async def test_missing_template_keys(self):
        send = AsyncMock()
        engine = AlertEngine()
        engine.set_send_fn(send)

        await engine.on_event(SystemEvent(event_type=EventType.WEBHOOK_SIGNATURE_INVALID, data={}))

        assert "Webhook signature invalid" in send.await_args.args[1]

    @pytest.mark.asyncio()
    async def test_send_failure_swallowed(self):
        engine = AlertEngine()
        engine.set_send_fn(AsyncMock(side_effect=httpx.ConnectError("down")))

        await engine.on_event(SystemEvent(event_type=EventType.SYSTEM_ERROR, data={"error": "x"}))

    @pytest.mark.asyncio()
    async def test_custom_rules_and_watched_types(self):
        rule = AlertRule(
            name="Big checkout",
            event_types=[EventType.CHECKOUT_SESSION_CREATED],
            condition=lambda e: e.data.get("amount_cents", 0) > 100_000,
            template="Large checkout {amount_cents}",
            level="info",
        )
        send = AsyncMock()
        engine = AlertEngine(rules=[rule])
        engine.set_send_fn(send)

        assert engine.watched_types == [EventType.CHECKOUT_SESSION_CREATED]
        await engine.on_event(SystemEvent(event_type=EventType.CHECKOUT_SESSION_CREATED, data={"amount_cents": 500}))
        send.assert_not_awaited()
        await engine.on_event(
            SystemEvent(event_type=EventType.CHECKOUT_SESSION_CREATED, data={"amount_cents": 156000})
        )
        send.assert_awaited_once_with("info", "Large checkout 156000")

    def test_default_rules_cover_critical_failures(self):
        watched = set(AlertEngine().watched_types)
        assert {
            EventType.WEBHOOK_SIGNATURE_INVALID,
            EventType.CHECKOUT_FAILED,
            EventType.EMAIL_FAILED,
        } <= watched

    @pytest.mark.asyncio()
    async def test_post_to_webhook(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["body"] = json.loads(request.content)
            return httpx.Response(204)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await post_to_webhook(client, "https://hooks.example/alerts", "critical", "Email failed")

        assert captured["body"] == {"level": "critical", "text": "Email failed"}


# ── Audit ────────────────────────────────────────────────────────────


def _make_factory(db: MagicMock) -> MagicMock:
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=db)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return factory


class TestAudit:
    @pytest.mark.asyncio()
    async def test_persists_event(self):
        db = MagicMock()
        db.commit = AsyncMock()
        event = SystemEvent(
            event_type=EventType.QUOTE_STATUS_CHANGED,
            quote_id=QUOTE_ID,
            actor_id="gateway",
            actor_role="gateway",
            data={"to": "PAID", "session": uuid.UUID(int=1)},
        )

        with patch("quotepay.events.audit.async_session_factory", _make_factory(db)):
            await audit_on_event(event)

        row = db.add.call_args.args[0]
        assert isinstance(row, AuditLog)
        assert row.event_type == "quote.status_changed"
        assert row.quote_id == QUOTE_ID
        assert row.data == {"to": "PAID", "session": str(uuid.UUID(int=1))}
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_db_failure_swallowed(self):
        db = MagicMock()
        db.commit = AsyncMock(side_effect=OSError("connection reset"))

        with patch("quotepay.events.audit.async_session_factory", _make_factory(db)):
            await audit_on_event(SystemEvent(event_type=EventType.EMAIL_SENT))
