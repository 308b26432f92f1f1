"""Webhook reconciler — turns gateway callbacks into quote state.

Deliveries can arrive late, twice, or out of order. Correctness rests on the
store's compare-and-set transitions; the Redis event-id marker only saves
repeated work, so Redis being down never blocks processing.

Correlation always uses the metadata written at session creation
(``quoteId``, ``mode``), never ``Quote.payment_session_id``, which may have
moved on to a newer link.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from quotepay.errors import InvalidSignature, UnresolvableEvent
from quotepay.events.bus import emit
from quotepay.models.enums import PaymentMode
from quotepay.payments.gateway import CheckoutGateway
from quotepay.quotes.store import QuoteStore
from quotepay.schemas.events import EventType, SystemEvent
from quotepay.schemas.quotes import ReconcileOutcome

logger = logging.getLogger(__name__)

_DEDUP_PREFIX = "webhook:processed:"

Handler = Callable[[dict[str, Any], ReconcileOutcome], Awaitable[None]]


class WebhookReconciler:
    """Verifies, de-duplicates and applies gateway events."""

    def __init__(
        self,
        store: QuoteStore,
        gateway: CheckoutGateway,
        redis: aioredis.Redis | None = None,
        *,
        dedup_ttl: int = 86400 * 7,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._redis = redis
        self._dedup_ttl = dedup_ttl
        self._handlers: dict[str, Handler] = {
            "checkout.session.completed": self._on_checkout_completed,
            "checkout.session.async_payment_succeeded": self._on_checkout_completed,
            "checkout.session.expired": self._on_checkout_expired,
            "charge.refunded": self._on_charge_refunded,
        }

    @property
    def handled_types(self) -> list[str]:
        return sorted(self._handlers)

    async def handle_gateway_event(
        self, raw_payload: bytes, signature_header: str | None
    ) -> ReconcileOutcome:
        """Verify and apply one webhook delivery.

        Never raises for bad input: invalid signatures and unresolvable
        events are logged, alerted and reported in the outcome.
        """
        try:
            event = self._gateway.verify_event(raw_payload, signature_header)
        except InvalidSignature as e:
            logger.error("Rejected webhook: %s", e.message)
            await emit(
                SystemEvent(
                    event_type=EventType.WEBHOOK_SIGNATURE_INVALID,
                    actor_role="gateway",
                    data={"error": e.message, "payload_bytes": len(raw_payload)},
                    source_module=__name__,
                )
            )
            return ReconcileOutcome(detail="invalid signature")

        event_id = event.get("id")
        event_type = event.get("type")
        outcome = ReconcileOutcome(event_id=event_id, event_type=event_type)
        logger.info("Webhook received: %s (%s)", event_type, event_id)
        await emit(
            SystemEvent(
                event_type=EventType.WEBHOOK_RECEIVED,
                actor_role="gateway",
                data={"event_id": event_id, "type": event_type},
                source_module=__name__,
            )
        )

        if event_id and await self._already_processed(event_id):
            logger.info("Duplicate webhook %s ignored", event_id)
            await emit(
                SystemEvent(
                    event_type=EventType.WEBHOOK_DUPLICATE,
                    actor_role="gateway",
                    data={"event_id": event_id, "type": event_type},
                    source_module=__name__,
                )
            )
            outcome.duplicate = True
            outcome.detail = "duplicate"
            return outcome

        handler = self._handlers.get(event_type or "")
        if handler is None:
            logger.info("Ignoring unhandled webhook type %s", event_type)
            await emit(
                SystemEvent(
                    event_type=EventType.WEBHOOK_IGNORED,
                    actor_role="gateway",
                    data={"event_id": event_id, "type": event_type},
                    source_module=__name__,
                )
            )
            outcome.detail = "ignored"
            return outcome

        obj = (event.get("data") or {}).get("object") or {}
        try:
            await handler(obj, outcome)
        except UnresolvableEvent as e:
            logger.warning("Unresolvable webhook %s (%s): %s", event_id, event_type, e.message)
            await emit(
                SystemEvent(
                    event_type=EventType.WEBHOOK_UNRESOLVABLE,
                    actor_role="gateway",
                    data={"event_id": event_id, "type": event_type, "error": e.message},
                    source_module=__name__,
                )
            )
            outcome.detail = e.message

        outcome.handled = True
        if event_id:
            await self._mark_processed(event_id)
        return outcome

    # ── Event handlers ───────────────────────────────────────────────

    async def _on_checkout_completed(self, session: dict[str, Any], outcome: ReconcileOutcome) -> None:
        session_id = session.get("id") or ""
        if session.get("payment_status") != "paid":
            # Async payment methods complete later via async_payment_succeeded
            logger.info("Checkout %s completed but not paid yet (%s)", session_id, session.get("payment_status"))
            outcome.detail = "awaiting payment"
            return

        metadata = session.get("metadata") or {}
        quote_id = _parse_quote_id(metadata, session_id)
        mode = _parse_mode(metadata, session_id)
        outcome.quote_id = str(quote_id)

        applied = await self._store.apply_payment(quote_id, mode, session_id)
        await self._store.mark_checkout_session_completed(session_id)
        if not applied:
            await self._ensure_quote_exists(quote_id, session_id)
            logger.info("Payment for quote %s (%s) already reflected", quote_id, mode.value)

        outcome.applied = applied
        await emit(
            SystemEvent(
                event_type=EventType.PAYMENT_COMPLETED,
                quote_id=quote_id,
                actor_id="gateway",
                actor_role="gateway",
                data={
                    "session_id": session_id,
                    "mode": mode.value,
                    "amount_total": session.get("amount_total"),
                    "applied": applied,
                },
                source_module=__name__,
            )
        )

    async def _on_checkout_expired(self, session: dict[str, Any], outcome: ReconcileOutcome) -> None:
        session_id = session.get("id") or ""
        expired = await self._store.mark_checkout_session_expired(session_id)
        quote_ref = (session.get("metadata") or {}).get("quoteId")
        outcome.quote_id = quote_ref
        outcome.applied = expired
        logger.info("Checkout session %s expired (quote=%s)", session_id, quote_ref)
        await emit(
            SystemEvent(
                event_type=EventType.PAYMENT_SESSION_EXPIRED,
                actor_role="gateway",
                data={"session_id": session_id, "quote_ref": quote_ref, "applied": expired},
                source_module=__name__,
            )
        )

    async def _on_charge_refunded(self, charge: dict[str, Any], outcome: ReconcileOutcome) -> None:
        charge_id = charge.get("id") or ""
        quote_id = _parse_quote_id(charge.get("metadata") or {}, charge_id)
        outcome.quote_id = str(quote_id)

        applied = await self._store.mark_refunded(quote_id, charge_id)
        if not applied:
            await self._ensure_quote_exists(quote_id, charge_id)
            logger.info("Refund for quote %s already reflected", quote_id)

        outcome.applied = applied
        await emit(
            SystemEvent(
                event_type=EventType.PAYMENT_REFUNDED,
                quote_id=quote_id,
                actor_id="gateway",
                actor_role="gateway",
                data={
                    "charge_id": charge_id,
                    "amount_refunded": charge.get("amount_refunded"),
                    "applied": applied,
                },
                source_module=__name__,
            )
        )

    async def _ensure_quote_exists(self, quote_id: uuid.UUID, ref: str) -> None:
        if await self._store.get_quote(quote_id) is None:
            raise UnresolvableEvent(f"{ref} references unknown quote {quote_id}")

    # ── Duplicate suppression ────────────────────────────────────────

    async def _already_processed(self, event_id: str) -> bool:
        if self._redis is None:
            return False
        try:
            return bool(await self._redis.exists(_DEDUP_PREFIX + event_id))
        except RedisError as e:
            logger.warning("Webhook dedup check failed for %s: %s", event_id, e)
            return False

    async def _mark_processed(self, event_id: str) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.set(_DEDUP_PREFIX + event_id, "1", nx=True, ex=self._dedup_ttl)
        except RedisError as e:
            logger.warning("Could not mark webhook %s processed: %s", event_id, e)


def _parse_quote_id(metadata: dict[str, Any], ref: str) -> uuid.UUID:
    raw = metadata.get("quoteId")
    if not raw:
        raise UnresolvableEvent(f"{ref} has no quoteId metadata")
    try:
        return uuid.UUID(str(raw))
    except ValueError:
        raise UnresolvableEvent(f"{ref} has malformed quoteId {raw!r}") from None


def _parse_mode(metadata: dict[str, Any], ref: str) -> PaymentMode:
    raw = metadata.get("mode") or metadata.get("paymentMode")
    try:
        return PaymentMode(raw)
    except ValueError:
        raise UnresolvableEvent(f"{ref} has invalid payment mode {raw!r}") from None
