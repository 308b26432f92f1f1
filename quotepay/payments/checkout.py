"""Checkout session issuer — turns a quote into a payable link.

Repeated calls for the same quote, mode and amount return the same session:
a stored open session is reused before the gateway is called, and the
gateway request itself carries a deterministic idempotency key.
"""

from __future__ import annotations

import logging
import uuid

from quotepay.calculators.totals import compute_quote_totals
from quotepay.errors import (
    InvalidAmount,
    InvalidMode,
    InvalidTransition,
    MissingRecipient,
    PaymentGatewayError,
)
from quotepay.events.bus import emit
from quotepay.models.enums import PaymentMode, QuoteStatus
from quotepay.models.quote import Quote
from quotepay.payments.gateway import CheckoutGateway, GatewaySessionRequest
from quotepay.policy import PolicyStore
from quotepay.quotes.states import NOT_PAYABLE
from quotepay.quotes.store import QuoteStore
from quotepay.schemas.events import EventType, SystemEvent
from quotepay.schemas.quotes import CheckoutSessionResult, ComputedTotals

logger = logging.getLogger(__name__)


def idempotency_key(quote_id: uuid.UUID | str, mode: PaymentMode, amount_cents: int) -> str:
    """Deterministic gateway key; the amount keeps an edited quote from colliding."""
    return f"quote:{quote_id}:{mode.value}:{amount_cents}"


def parse_mode(mode: PaymentMode | str) -> PaymentMode:
    try:
        return PaymentMode(mode)
    except ValueError:
        raise InvalidMode(str(mode)) from None


class CheckoutSessionIssuer:
    """Creates (or reuses) the gateway checkout session for a quote."""

    def __init__(
        self,
        store: QuoteStore,
        gateway: CheckoutGateway,
        policy: PolicyStore,
        *,
        base_url: str,
        success_path: str,
        cancel_path: str,
        currency: str = "usd",
        business_name: str = "",
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._policy = policy
        self._base_url = base_url.rstrip("/")
        self._success_path = success_path
        self._cancel_path = cancel_path
        self._currency = currency
        self._business_name = business_name

    async def create_checkout_session(
        self,
        quote_id: uuid.UUID,
        mode: PaymentMode | str,
        *,
        customer_email: str | None = None,
        totals: ComputedTotals | None = None,
        quote: Quote | None = None,
    ) -> CheckoutSessionResult:
        """Issue a payable link for *quote_id* in *mode*.

        Args:
            customer_email: Overrides the inquiry's email as the payer.
            totals: Pre-computed totals, so the pipeline charges exactly what
                it renders. Computed from the stored quote when omitted.
            quote: Already-loaded quote, to avoid a second read.

        Raises:
            PreconditionError: bad mode, unknown quote, no email, settled
                quote, or a non-positive amount.
            PaymentGatewayError: the gateway call failed.
        """
        mode = parse_mode(mode)
        if quote is None:
            quote = await self._store.require_quote(quote_id)

        status = QuoteStatus(quote.status)
        if status in NOT_PAYABLE:
            raise InvalidTransition(quote_id, quote.status, "take a new payment")
        deposit_paid = status == QuoteStatus.DEPOSIT_PAID
        if deposit_paid and mode == PaymentMode.DEPOSIT:
            raise InvalidTransition(quote_id, quote.status, "take a second deposit")

        email = customer_email or (quote.inquiry.email if quote.inquiry else None)
        if not email:
            raise MissingRecipient(quote_id)

        if totals is None:
            totals = compute_quote_totals(quote, self._policy.get())
        # Full payment after a deposit charges only the balance
        amount_cents = totals.amount_cents(mode, deposit_paid=deposit_paid)
        if amount_cents <= 0:
            raise InvalidAmount(amount_cents, mode.value)

        existing = await self._store.find_open_checkout_session(quote_id, mode, amount_cents)
        if existing is not None:
            logger.info("Reusing open checkout session %s for quote %s", existing.session_id, quote_id)
            await self._store.attach_payment_session(quote_id, existing.session_id, mode, existing.url)
            await emit(
                SystemEvent(
                    event_type=EventType.CHECKOUT_SESSION_REUSED,
                    quote_id=quote_id,
                    data={"session_id": existing.session_id, "mode": mode.value, "amount_cents": amount_cents},
                    source_module=__name__,
                )
            )
            return CheckoutSessionResult(
                session_id=existing.session_id,
                url=existing.url,
                amount_cents=amount_cents,
                mode=mode,
                reused=True,
            )

        key = idempotency_key(quote_id, mode, amount_cents)
        request = self._build_request(quote, mode, amount_cents, email, key, balance=deposit_paid)
        try:
            session = await self._gateway.create_checkout_session(request)
        except PaymentGatewayError as e:
            await emit(
                SystemEvent(
                    event_type=EventType.CHECKOUT_FAILED,
                    quote_id=quote_id,
                    data={"mode": mode.value, "amount_cents": amount_cents, "error": e.message, "code": e.code},
                    source_module=__name__,
                )
            )
            raise

        # Persist before returning so the link survives a later pipeline failure
        await self._store.record_checkout_session(
            quote_id=quote_id,
            session_id=session.id,
            mode=mode,
            amount_cents=amount_cents,
            customer_email=email,
            url=session.url,
            idempotency_key=key,
            expires_at=session.expires_at,
        )
        await self._store.attach_payment_session(quote_id, session.id, mode, session.url)

        await emit(
            SystemEvent(
                event_type=EventType.CHECKOUT_SESSION_CREATED,
                quote_id=quote_id,
                data={"session_id": session.id, "mode": mode.value, "amount_cents": amount_cents},
                source_module=__name__,
            )
        )
        return CheckoutSessionResult(
            session_id=session.id,
            url=session.url,
            amount_cents=amount_cents,
            mode=mode,
        )

    def _build_request(
        self,
        quote: Quote,
        mode: PaymentMode,
        amount_cents: int,
        email: str,
        key: str,
        *,
        balance: bool = False,
    ) -> GatewaySessionRequest:
        """Gateway parameters; identical for every call that shares *key*."""
        quote_id = str(quote.id)
        title = f"{self._business_name} Quote {quote.quote_number}".strip()
        if mode == PaymentMode.DEPOSIT:
            description = f"Deposit for quote {quote.quote_number}"
        elif balance:
            description = f"Balance for quote {quote.quote_number}"
        else:
            description = f"Payment for quote {quote.quote_number}"
        return GatewaySessionRequest(
            amount_cents=amount_cents,
            currency=self._currency,
            product_name=title,
            description=description,
            customer_email=email,
            client_reference_id=quote_id,
            success_url=self._base_url + self._success_path.format(quote_id=quote_id),
            cancel_url=self._base_url + self._cancel_path.format(quote_id=quote_id),
            idempotency_key=key,
            metadata={
                "quoteId": quote_id,
                "mode": mode.value,
                "quoteNumber": quote.quote_number,
                "customerEmail": email,
            },
        )
