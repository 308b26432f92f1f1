"""Payment endpoints — standalone checkout link and the gateway webhook."""
# ruff: noqa: B008

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from quotepay.errors import QuotePayError, http_status_for
from quotepay.events.bus import emit
from quotepay.schemas.api import CheckoutSessionRequest, CheckoutSessionResponse
from quotepay.schemas.events import EventType, SystemEvent
from quotepay.services import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/checkout-session", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    body: CheckoutSessionRequest,
    services: Services = Depends(get_services),
) -> CheckoutSessionResponse:
    """Issue (or reuse) a payable link without sending the quote."""
    try:
        result = await services.issuer.create_checkout_session(body.quote_id, body.mode)
    except QuotePayError as e:
        raise HTTPException(status_code=http_status_for(e), detail=e.message) from e
    return CheckoutSessionResponse(
        session_id=result.session_id,
        url=result.url,
        amount_cents=result.amount_cents,
        reused=result.reused,
    )


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    services: Services = Depends(get_services),
) -> dict[str, bool]:
    """Stripe webhook receiver. Always acknowledges with 200.

    Bad signatures and unmatched events are logged and alerted by the
    reconciler; unexpected failures are logged and alerted here so the
    delivery can be replayed from the Stripe dashboard.
    """
    payload = await request.body()
    try:
        outcome = await services.reconciler.handle_gateway_event(payload, stripe_signature)
    except Exception as e:
        logger.exception("Webhook processing failed")
        await emit(
            SystemEvent(
                event_type=EventType.SYSTEM_ERROR,
                actor_role="gateway",
                data={"error": str(e), "stage": "webhook"},
                source_module=__name__,
            )
        )
        return {"received": True}

    logger.debug("Webhook outcome: %s", outcome.model_dump())
    return {"received": True}
