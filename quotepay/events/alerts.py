"""Alert engine — evaluates events against rules and raises operator alerts.

Every matching alert is logged. Delivery beyond the log is delegated to
whatever send function is injected via ``set_send_fn()``; at startup that is
``post_to_webhook`` bound to the configured alert webhook URL.

Never raises — failures are logged but never propagate to the event system.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any

import httpx

from quotepay.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

SendFn = Callable[[str, str], Coroutine[Any, Any, None]]

_LEVELS = {"info": logging.INFO, "warning": logging.WARNING, "critical": logging.ERROR}


@dataclass(frozen=True)
class AlertRule:
    """A single alert rule that maps event conditions to notifications."""

    name: str
    event_types: list[EventType]
    condition: Callable[[SystemEvent], bool]
    template: str  # format string using event.data keys
    level: str  # "info", "warning", "critical"


ALERT_RULES: list[AlertRule] = [
    AlertRule(
        name="Webhook signature invalid",
        event_types=[EventType.WEBHOOK_SIGNATURE_INVALID],
        condition=lambda _: True,
        template="Webhook signature verification failed: {error}",
        level="critical",
    ),
    AlertRule(
        name="Checkout session failed",
        event_types=[EventType.CHECKOUT_FAILED],
        condition=lambda _: True,
        template="Payment gateway failure for quote {quote_id} ({mode}): {error}",
        level="critical",
    ),
    AlertRule(
        name="Email delivery failed",
        event_types=[EventType.EMAIL_FAILED],
        condition=lambda _: True,
        template="Quote {quote_id} email not delivered (tried {attempted_providers}): {error}",
        level="critical",
    ),
    AlertRule(
        name="PDF generation failed",
        event_types=[EventType.DOCUMENT_PDF_FAILED],
        condition=lambda _: True,
        template="PDF generation failed for quote {quote_number}: {error}",
        level="warning",
    ),
    AlertRule(
        name="Unresolvable webhook",
        event_types=[EventType.WEBHOOK_UNRESOLVABLE],
        condition=lambda _: True,
        template="Webhook {event_id} ({type}) could not be matched to a quote",
        level="warning",
    ),
    AlertRule(
        name="Refund received",
        event_types=[EventType.PAYMENT_REFUNDED],
        condition=lambda e: bool(e.data.get("applied")),
        template="Quote {quote_id} refunded (charge {charge_id})",
        level="info",
    ),
    AlertRule(
        name="System error",
        event_types=[EventType.SYSTEM_ERROR],
        condition=lambda _: True,
        template="System error in {source_module}: {error}",
        level="critical",
    ),
]


class AlertEngine:
    """Evaluates events against alert rules and pushes matching alerts."""

    def __init__(self, rules: list[AlertRule] | None = None) -> None:
        self._rules = ALERT_RULES if rules is None else rules
        self._send_fn: SendFn | None = None

    @property
    def watched_types(self) -> list[EventType]:
        """Event types this engine cares about — for targeted subscription."""
        types: set[EventType] = set()
        for rule in self._rules:
            types.update(rule.event_types)
        return sorted(types, key=lambda t: t.value)

    def set_send_fn(self, fn: SendFn | None) -> None:
        self._send_fn = fn

    async def on_event(self, event: SystemEvent) -> None:
        """Evaluate event against all rules and push matching alerts."""
        for rule in self._rules:
            if event.event_type not in rule.event_types:
                continue
            try:
                if not rule.condition(event):
                    continue
            except Exception:
                logger.exception("Alert rule condition failed: %s", rule.name)
                continue

            ctx: dict[str, Any] = {**event.data}
            if event.quote_id is not None:
                ctx.setdefault("quote_id", str(event.quote_id))
            if event.source_module is not None:
                ctx.setdefault("source_module", event.source_module)

            try:
                message = rule.template.format(**ctx)
            except KeyError:
                message = f"{rule.name} (partial data: {ctx})"

            logger.log(_LEVELS.get(rule.level, logging.WARNING), "ALERT [%s] %s", rule.name, message)
            await self._push_alert(rule.level, message)

    async def _push_alert(self, level: str, message: str) -> None:
        if self._send_fn is None:
            return
        try:
            await self._send_fn(level, message)
        except Exception:
            logger.exception("Failed to push alert: %s", message)


async def post_to_webhook(client: httpx.AsyncClient, url: str, level: str, message: str) -> None:
    """POST one alert as JSON to a chat/incident webhook."""
    resp = await client.post(url, json={"level": level, "text": message})
    resp.raise_for_status()
