"""Send pipeline — totals → checkout link → document → email.

Each stage hands the next a typed contract. One ComputedTotals instance is
used for both the charge amount and every rendered surface. When a stage
fails, the raised error carries the stage name and whatever the earlier
stages produced (the checkout link survives a delivery failure).
"""

from __future__ import annotations

import uuid

import structlog

from quotepay.calculators.totals import compute_quote_totals
from quotepay.delivery.dispatcher import DeliveryDispatcher
from quotepay.documents.composer import DocumentComposer
from quotepay.errors import InvalidTransition, QuotePayError
from quotepay.events.bus import emit
from quotepay.models.enums import PaymentMode, QuoteStatus
from quotepay.payments.checkout import CheckoutSessionIssuer, parse_mode
from quotepay.policy import PolicyStore
from quotepay.quotes.states import TERMINAL
from quotepay.quotes.store import QuoteStore
from quotepay.schemas.events import EventType, SystemEvent
from quotepay.schemas.quotes import CheckoutSessionResult, SendQuoteResult

logger = structlog.get_logger(__name__)


class QuoteSendPipeline:
    """Orchestrates one operator "send quote" action."""

    def __init__(
        self,
        store: QuoteStore,
        policy: PolicyStore,
        issuer: CheckoutSessionIssuer,
        composer: DocumentComposer,
        dispatcher: DeliveryDispatcher,
    ) -> None:
        self._store = store
        self._policy = policy
        self._issuer = issuer
        self._composer = composer
        self._dispatcher = dispatcher

    async def send_quote(
        self,
        quote_id: uuid.UUID,
        mode: PaymentMode | str = PaymentMode.DEPOSIT,
        *,
        email: str | None = None,
        actor_id: str | None = None,
    ) -> SendQuoteResult:
        """Price, link, render and email one quote.

        Raises:
            QuotePayError: with ``step`` set and ``context`` holding the
                checkout link when one was already created.
        """
        mode = parse_mode(mode)
        with structlog.contextvars.bound_contextvars(quote_id=str(quote_id), mode=mode.value):
            return await self._send(quote_id, mode, email=email, actor_id=actor_id)

    async def _send(
        self,
        quote_id: uuid.UUID,
        mode: PaymentMode,
        *,
        email: str | None,
        actor_id: str | None,
    ) -> SendQuoteResult:
        quote = await self._store.require_quote(quote_id)
        if QuoteStatus(quote.status) in TERMINAL:
            raise InvalidTransition(quote_id, quote.status, "be sent")

        await emit(
            SystemEvent(
                event_type=EventType.QUOTE_SEND_REQUESTED,
                quote_id=quote_id,
                actor_id=actor_id,
                actor_role="operator",
                data={"mode": mode.value, "email_override": email is not None},
                source_module=__name__,
            )
        )

        checkout: CheckoutSessionResult | None = None
        try:
            try:
                totals = compute_quote_totals(quote, self._policy.get())
            except ValueError as e:
                raise QuotePayError(f"Cannot compute totals: {e}", step="totals") from e

            checkout = await self._issuer.create_checkout_session(
                quote_id, mode, customer_email=email, totals=totals, quote=quote
            )
            document = await self._composer.compose(
                quote, totals, checkout.url, mode, deposit_paid=quote.status == QuoteStatus.DEPOSIT_PAID
            )
            delivery = await self._dispatcher.send_quote_email(
                quote, document, recipient=email, actor_id=actor_id
            )
        except QuotePayError as e:
            if checkout is not None:
                e.context.update(checkout_url=checkout.url, session_id=checkout.session_id)
            logger.error("quote_send_failed", step=e.step, error=e.message, **e.context)
            await emit(
                SystemEvent(
                    event_type=EventType.QUOTE_SEND_FAILED,
                    quote_id=quote_id,
                    actor_id=actor_id,
                    data={"step": e.step, "error": e.message, **e.context},
                    source_module=__name__,
                )
            )
            raise

        refreshed = await self._store.get_quote(quote_id)
        status = refreshed.status if refreshed is not None else quote.status
        logger.info(
            "quote_sent",
            quote_number=quote.quote_number,
            session_id=checkout.session_id,
            provider=delivery.provider,
            pdf_generated=document.pdf_generated,
            status=status,
        )
        return SendQuoteResult(
            quote_id=str(quote_id),
            checkout=checkout,
            pdf_generated=document.pdf_generated,
            delivery=delivery,
            status=status,
        )
