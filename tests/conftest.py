"""Shared fixtures: event capture, quote builders, mocked store and policy."""

from __future__ import annotations

import uuid
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from quotepay.policy import PolicyStore, QuotePolicy
from quotepay.quotes.store import QuoteStore
from quotepay.schemas.events import EventType

# Modules that publish SystemEvents through a module-level ``emit`` import
_EMITTERS = (
    "quotepay.quotes.store",
    "quotepay.quotes.pipeline",
    "quotepay.payments.checkout",
    "quotepay.payments.webhooks",
    "quotepay.payments.router",
    "quotepay.documents.composer",
    "quotepay.delivery.dispatcher",
)


class EmittedEvents(list):
    """Every SystemEvent published during a test, in order."""

    def types(self) -> list[EventType]:
        return [e.event_type for e in self]

    def of(self, event_type: EventType) -> list:
        return [e for e in self if e.event_type == event_type]


@pytest.fixture(autouse=True)
def emitted():
    """Capture events instead of queueing them on the real bus."""
    events = EmittedEvents()

    async def _capture(event):
        events.append(event)

    patchers = [patch(f"{module}.emit", new=AsyncMock(side_effect=_capture)) for module in _EMITTERS]
    for p in patchers:
        p.start()
    yield events
    for p in patchers:
        p.stop()


# ── Quote builders ───────────────────────────────────────────────────


def make_item(description: str, quantity: str | int, unit_price: str | int) -> SimpleNamespace:
    qty = Decimal(str(quantity))
    price = Decimal(str(unit_price))
    return SimpleNamespace(
        description=description,
        quantity=qty,
        unit_price=price,
        total=(qty * price).quantize(Decimal("0.01")),
    )


def make_inquiry(**overrides) -> SimpleNamespace:
    fields = {
        "name": "Dana Whitfield",
        "email": "dana@example.com",
        "phone": "(559) 555-0100",
        "service_type": "CATERING",
        "event_date": None,
        "event_location": "Woodward Park, Fresno",
        "guest_count": 80,
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


def make_quote(**overrides) -> SimpleNamespace:
    """Quote-shaped object with the catering example items (subtotal 1300)."""
    fields = {
        "id": uuid.uuid4(),
        "quote_number": "Q-2026-A1B2C3",
        "status": "DRAFT",
        "inquiry": make_inquiry(),
        "items": [
            make_item("Appetizer platter", 2, "150.00"),
            make_item("Buffet dinner service", 1, "800.00"),
            make_item("Dessert station", 1, "200.00"),
        ],
        "tax_pct": Decimal("0"),
        "gratuity_pct": Decimal("0.2"),
        "deposit_pct": None,
        "total_override": None,
        "valid_until": None,
        "terms": None,
        "notes": None,
        "created_at": None,
        "payment_session_id": None,
        "payment_mode": None,
        "checkout_url": None,
        "sent_at": None,
        "deposit_paid_at": None,
        "paid_at": None,
        "refunded_at": None,
        "canceled_at": None,
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


@pytest.fixture()
def quote() -> SimpleNamespace:
    return make_quote()


@pytest.fixture()
def store() -> MagicMock:
    """QuoteStore double; async methods are AsyncMocks via the spec."""
    mock = MagicMock(spec=QuoteStore)
    mock.find_open_checkout_session.return_value = None
    mock.mark_sent.return_value = True
    mock.apply_payment.return_value = True
    mock.mark_refunded.return_value = True
    mock.mark_checkout_session_completed.return_value = True
    mock.mark_checkout_session_expired.return_value = True
    return mock


@pytest.fixture()
def policy() -> MagicMock:
    mock = MagicMock(spec=PolicyStore)
    mock.get.return_value = QuotePolicy(
        cc_by_service_type={"CATERING": ["catering@kockys.com"]},
        default_cc=["events@kockys.com"],
    )
    return mock


@pytest.fixture()
def quote_factory():
    return make_quote


@pytest.fixture()
def item_factory():
    return make_item
