"""In-process event bus for pipeline events.

Stores, the send pipeline and the webhook reconciler publish SystemEvents;
the audit subscriber and the alert engine consume them. Publishing goes
through a queue drained by one worker task, so a slow audit write never
holds up a checkout or an email send.

    from quotepay.events.bus import emit

    await emit(SystemEvent(event_type=EventType.EMAIL_SENT, quote_id=quote.id))

Subscribers are registered during startup (see ``quotepay.main``).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import defaultdict
from collections.abc import Callable, Coroutine, Iterable
from typing import Any

from quotepay.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]


def _handler_name(handler: EventHandler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


class EventBus:
    """Queue-backed pub/sub. Handler failures are logged and isolated."""

    def __init__(self) -> None:
        # None key holds handlers that receive every event type
        self._routes: defaultdict[EventType | None, list[EventHandler]] = defaultdict(list)
        self._queue: asyncio.Queue[SystemEvent] | None = None
        self._worker: asyncio.Task[None] | None = None

    # ── Subscriptions ────────────────────────────────────────────────

    def subscribe(self, handler: EventHandler, event_types: Iterable[EventType] | None = None) -> None:
        keys: list[EventType | None] = [None] if event_types is None else list(event_types)
        for key in keys:
            self._routes[key].append(handler)
        logger.info(
            "Subscribed %s to %s",
            _handler_name(handler),
            "all events" if event_types is None else [k.value for k in keys if k is not None],
        )

    def unsubscribe(self, handler: EventHandler) -> None:
        for handlers in self._routes.values():
            while handler in handlers:
                handlers.remove(handler)

    def clear_subscribers(self) -> None:
        self._routes.clear()

    def handlers_for(self, event_type: EventType) -> list[EventHandler]:
        return [*self._routes.get(None, ()), *self._routes.get(event_type, ())]

    # ── Publishing ───────────────────────────────────────────────────

    async def emit(self, event: SystemEvent) -> None:
        """Queue *event* for the worker, starting the worker on first use."""
        if self._queue is None:
            self._queue = asyncio.Queue()
        self._ensure_worker()
        await self._queue.put(event)
        logger.debug("Queued %s (quote=%s)", event.event_type.value, event.quote_id)

    async def dispatch(self, event: SystemEvent) -> None:
        """Run every matching handler now and wait for all of them, bypassing the queue."""
        handlers = self.handlers_for(event.event_type)
        if not handlers:
            return
        outcomes = await asyncio.gather(*(h(event) for h in handlers), return_exceptions=True)
        for handler, outcome in zip(handlers, outcomes, strict=True):
            if isinstance(outcome, Exception):
                logger.error(
                    "Subscriber %s failed on %s: %s",
                    _handler_name(handler),
                    event.event_type.value,
                    outcome,
                    exc_info=outcome,
                )

    # ── Worker ───────────────────────────────────────────────────────

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain(), name="quotepay-event-worker")

    async def _drain(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            event = await queue.get()
            try:
                await self.dispatch(event)
            except Exception:
                logger.exception("Event worker failed on %s", event.event_type.value)
            finally:
                queue.task_done()

    async def start(self) -> None:
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
        self._worker = None
        self._queue = asyncio.Queue()
        self._ensure_worker()
        logger.info(
            "Event bus started (%d global, %d typed subscribers)",
            len(self._routes.get(None, ())),
            sum(len(v) for k, v in self._routes.items() if k is not None),
        )

    async def stop(self) -> None:
        """Wait for queued events to be handled, then cancel the worker."""
        if self._queue is not None:
            await self._queue.join()
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
        self._worker = None
        self._queue = None
        logger.info("Event bus stopped")


# ── Module-level bus ─────────────────────────────────────────────────

_bus = EventBus()

subscribe = _bus.subscribe
unsubscribe = _bus.unsubscribe
clear_subscribers = _bus.clear_subscribers
emit = _bus.emit
dispatch = _bus.dispatch
start_event_system = _bus.start
stop_event_system = _bus.stop
