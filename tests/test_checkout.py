"""Tests for the checkout session issuer.

Covers:
- Back-to-back calls return the same session (stored open session reused)
- Gateway request: amount, idempotency key, metadata, redirect URLs
- Email override as payer
- Preconditions: bad mode, missing email, non-positive amount, settled quote
- Gateway failure: event emitted, nothing recorded
"""

from __future__ import annotations

from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from quotepay.errors import (
    InvalidAmount,
    InvalidMode,
    InvalidTransition,
    MissingRecipient,
    PaymentGatewayError,
)
from quotepay.models.enums import PaymentMode
from quotepay.payments.checkout import CheckoutSessionIssuer, idempotency_key, parse_mode
from quotepay.payments.gateway import GatewaySession
from quotepay.schemas.events import EventType

# ── Helpers ──────────────────────────────────────────────────────────


def _make_gateway(session_id: str = "cs_test_123") -> MagicMock:
    gateway = MagicMock()
    gateway.create_checkout_session = AsyncMock(
        return_value=GatewaySession(
            id=session_id,
            url=f"https://checkout.stripe.com/c/pay/{session_id}",
            expires_at=datetime(2026, 10, 19, tzinfo=UTC),
        )
    )
    return gateway


def _make_issuer(store, gateway, policy) -> CheckoutSessionIssuer:
    return CheckoutSessionIssuer(
        store,
        gateway,
        policy,
        base_url="https://staging.kockys.com/",
        success_path="/quotes/success?quoteId={quote_id}&session_id={{CHECKOUT_SESSION_ID}}",
        cancel_path="/quotes/cancel?quoteId={quote_id}",
        currency="usd",
        business_name="Kocky's Bar & Grill",
    )


def _remembering_store(store):
    """Make the store double remember recorded sessions like the real table."""
    sessions: list[SimpleNamespace] = []

    async def _record(**kwargs):
        sessions.append(SimpleNamespace(**kwargs))

    async def _find(quote_id, mode, amount_cents, now=None):
        for s in reversed(sessions):
            if s.quote_id == quote_id and s.mode == mode and s.amount_cents == amount_cents:
                return s
        return None

    store.record_checkout_session.side_effect = _record
    store.find_open_checkout_session.side_effect = _find
    return sessions


# ── Idempotency ──────────────────────────────────────────────────────


class TestIdempotency:
    def test_key_includes_amount(self, quote):
        key = idempotency_key(quote.id, PaymentMode.DEPOSIT, 31200)
        assert key == f"quote:{quote.id}:deposit:31200"
        assert key != idempotency_key(quote.id, PaymentMode.DEPOSIT, 31300)

    @pytest.mark.asyncio()
    async def test_back_to_back_calls_return_same_session(self, store, policy, quote):
        gateway = _make_gateway()
        store.require_quote.return_value = quote
        _remembering_store(store)
        issuer = _make_issuer(store, gateway, policy)

        first = await issuer.create_checkout_session(quote.id, "deposit")
        second = await issuer.create_checkout_session(quote.id, "deposit")

        assert first.session_id == second.session_id == "cs_test_123"
        assert first.reused is False
        assert second.reused is True
        gateway.create_checkout_session.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_other_mode_gets_new_session(self, store, policy, quote):
        gateway = _make_gateway()
        store.require_quote.return_value = quote
        _remembering_store(store)
        issuer = _make_issuer(store, gateway, policy)

        await issuer.create_checkout_session(quote.id, "deposit")
        await issuer.create_checkout_session(quote.id, "full")

        assert gateway.create_checkout_session.await_count == 2
        keys = [c.args[0].idempotency_key for c in gateway.create_checkout_session.await_args_list]
        assert keys == [f"quote:{quote.id}:deposit:31200", f"quote:{quote.id}:full:156000"]

    @pytest.mark.asyncio()
    async def test_reuse_reattaches_link(self, store, policy, quote, emitted):
        store.find_open_checkout_session.return_value = SimpleNamespace(
            session_id="cs_open", url="https://checkout.stripe.com/c/pay/cs_open"
        )
        gateway = _make_gateway()
        issuer = _make_issuer(store, gateway, policy)

        result = await issuer.create_checkout_session(quote.id, PaymentMode.DEPOSIT, quote=quote)

        assert result.session_id == "cs_open"
        assert result.amount_cents == 31200
        gateway.create_checkout_session.assert_not_awaited()
        store.attach_payment_session.assert_awaited_once_with(
            quote.id, "cs_open", PaymentMode.DEPOSIT, "https://checkout.stripe.com/c/pay/cs_open"
        )
        assert emitted.types() == [EventType.CHECKOUT_SESSION_REUSED]


# ── Gateway request ──────────────────────────────────────────────────


class TestGatewayRequest:
    @pytest.mark.asyncio()
    async def test_deposit_request(self, store, policy, quote, emitted):
        gateway = _make_gateway()
        issuer = _make_issuer(store, gateway, policy)

        result = await issuer.create_checkout_session(quote.id, "deposit", quote=quote)

        request = gateway.create_checkout_session.await_args.args[0]
        assert request.amount_cents == 31200
        assert request.currency == "usd"
        assert request.customer_email == "dana@example.com"
        assert request.client_reference_id == str(quote.id)
        assert request.product_name == "Kocky's Bar & Grill Quote Q-2026-A1B2C3"
        assert request.description == "Deposit for quote Q-2026-A1B2C3"
        assert request.metadata == {
            "quoteId": str(quote.id),
            "mode": "deposit",
            "quoteNumber": "Q-2026-A1B2C3",
            "customerEmail": "dana@example.com",
        }
        assert request.success_url == (
            f"https://staging.kockys.com/quotes/success?quoteId={quote.id}"
            "&session_id={CHECKOUT_SESSION_ID}"
        )
        assert request.cancel_url == f"https://staging.kockys.com/quotes/cancel?quoteId={quote.id}"

        assert result.session_id == "cs_test_123"
        assert result.mode == PaymentMode.DEPOSIT
        assert emitted.types() == [EventType.CHECKOUT_SESSION_CREATED]

    @pytest.mark.asyncio()
    async def test_session_recorded_and_attached(self, store, policy, quote):
        gateway = _make_gateway()
        issuer = _make_issuer(store, gateway, policy)

        await issuer.create_checkout_session(quote.id, "full", quote=quote)

        recorded = store.record_checkout_session.await_args.kwargs
        assert recorded["session_id"] == "cs_test_123"
        assert recorded["amount_cents"] == 156000
        assert recorded["mode"] == PaymentMode.FULL
        assert recorded["idempotency_key"] == f"quote:{quote.id}:full:156000"
        store.attach_payment_session.assert_awaited_once_with(
            quote.id, "cs_test_123", PaymentMode.FULL, "https://checkout.stripe.com/c/pay/cs_test_123"
        )

    @pytest.mark.asyncio()
    async def test_email_override(self, store, policy, quote):
        gateway = _make_gateway()
        issuer = _make_issuer(store, gateway, policy)

        await issuer.create_checkout_session(
            quote.id, "deposit", customer_email="planner@example.com", quote=quote
        )

        request = gateway.create_checkout_session.await_args.args[0]
        assert request.customer_email == "planner@example.com"
        assert request.metadata["customerEmail"] == "planner@example.com"

    @pytest.mark.asyncio()
    async def test_loads_quote_when_not_given(self, store, policy, quote):
        store.require_quote.return_value = quote
        issuer = _make_issuer(store, _make_gateway(), policy)

        await issuer.create_checkout_session(quote.id, "deposit")

        store.require_quote.assert_awaited_once_with(quote.id)

    @pytest.mark.asyncio()
    async def test_deposit_paid_quote_charges_balance(self, store, policy, quote_factory):
        q = quote_factory(status="DEPOSIT_PAID")
        gateway = _make_gateway()
        issuer = _make_issuer(store, gateway, policy)

        result = await issuer.create_checkout_session(q.id, "full", quote=q)

        assert result.amount_cents == 124800
        request = gateway.create_checkout_session.await_args.args[0]
        assert request.amount_cents == 124800
        assert request.description == "Balance for quote Q-2026-A1B2C3"
        assert request.idempotency_key == f"quote:{q.id}:full:124800"
        assert request.metadata["mode"] == "full"

    @pytest.mark.asyncio()
    async def test_deposit_paid_quote_refuses_second_deposit(self, store, policy, quote_factory):
        q = quote_factory(status="DEPOSIT_PAID")
        gateway = _make_gateway()
        issuer = _make_issuer(store, gateway, policy)

        with pytest.raises(InvalidTransition):
            await issuer.create_checkout_session(q.id, "deposit", quote=q)

        gateway.create_checkout_session.assert_not_awaited()
        store.record_checkout_session.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_retry_after_timeout_sends_identical_request(self, store, policy, quote):
        gateway = _make_gateway()
        gateway.create_checkout_session.side_effect = [
            PaymentGatewayError("Payment gateway timed out", code="timeout"),
            GatewaySession(id="cs_test_123", url="https://checkout.stripe.com/c/pay/cs_test_123"),
        ]
        issuer = _make_issuer(store, gateway, policy)

        with pytest.raises(PaymentGatewayError):
            await issuer.create_checkout_session(quote.id, "deposit", quote=quote)
        result = await issuer.create_checkout_session(quote.id, "deposit", quote=quote)

        first, second = (c.args[0] for c in gateway.create_checkout_session.await_args_list)
        assert first == second
        assert result.session_id == "cs_test_123"
        assert store.record_checkout_session.await_args.kwargs["expires_at"] is None


# ── Preconditions ────────────────────────────────────────────────────


class TestPreconditions:
    def test_parse_mode(self):
        assert parse_mode("full") == PaymentMode.FULL
        with pytest.raises(InvalidMode):
            parse_mode("installments")

    @pytest.mark.asyncio()
    async def test_invalid_mode(self, store, policy, quote):
        issuer = _make_issuer(store, _make_gateway(), policy)
        with pytest.raises(InvalidMode):
            await issuer.create_checkout_session(quote.id, "partial", quote=quote)

    @pytest.mark.asyncio()
    async def test_missing_email(self, store, policy, quote_factory):
        q = quote_factory(inquiry=SimpleNamespace(name="Walk-in", email=None, service_type=None))
        gateway = _make_gateway()
        issuer = _make_issuer(store, gateway, policy)

        with pytest.raises(MissingRecipient):
            await issuer.create_checkout_session(q.id, "deposit", quote=q)
        gateway.create_checkout_session.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_no_inquiry_but_override(self, store, policy, quote_factory):
        q = quote_factory(inquiry=None)
        issuer = _make_issuer(store, _make_gateway(), policy)

        result = await issuer.create_checkout_session(
            q.id, "deposit", customer_email="dana@example.com", quote=q
        )
        assert result.session_id == "cs_test_123"

    @pytest.mark.asyncio()
    async def test_zero_amount(self, store, policy, quote_factory):
        q = quote_factory(items=[])
        gateway = _make_gateway()
        issuer = _make_issuer(store, gateway, policy)

        with pytest.raises(InvalidAmount) as exc_info:
            await issuer.create_checkout_session(q.id, "deposit", quote=q)
        assert exc_info.value.amount_cents == 0
        gateway.create_checkout_session.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_zero_deposit_pct(self, store, policy, quote_factory):
        q = quote_factory(deposit_pct=0)
        issuer = _make_issuer(store, _make_gateway(), policy)

        with pytest.raises(InvalidAmount):
            await issuer.create_checkout_session(q.id, "deposit", quote=q)

    @pytest.mark.asyncio()
    @pytest.mark.parametrize("status", ["PAID", "REFUNDED", "CANCELED"])
    async def test_settled_quote_refused(self, store, policy, quote_factory, status):
        q = quote_factory(status=status)
        gateway = _make_gateway()
        issuer = _make_issuer(store, gateway, policy)

        with pytest.raises(InvalidTransition):
            await issuer.create_checkout_session(q.id, "full", quote=q)
        gateway.create_checkout_session.assert_not_awaited()


# ── Gateway failure ──────────────────────────────────────────────────


class TestGatewayFailure:
    @pytest.mark.asyncio()
    async def test_error_propagates_and_nothing_recorded(self, store, policy, quote, emitted):
        gateway = _make_gateway()
        gateway.create_checkout_session.side_effect = PaymentGatewayError("card_error", code="api_error")
        issuer = _make_issuer(store, gateway, policy)

        with pytest.raises(PaymentGatewayError):
            await issuer.create_checkout_session(quote.id, "deposit", quote=quote)

        store.record_checkout_session.assert_not_awaited()
        store.attach_payment_session.assert_not_awaited()
        failed = emitted.of(EventType.CHECKOUT_FAILED)
        assert len(failed) == 1
        assert failed[0].data["code"] == "api_error"
        assert failed[0].data["amount_cents"] == 31200
