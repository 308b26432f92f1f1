"""Operator endpoints for quotes — send, cancel, totals, payment status."""
# ruff: noqa: B008

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from quotepay.calculators.totals import compute_quote_totals
from quotepay.documents.composer import build_display_rows
from quotepay.errors import QuotePayError, http_status_for
from quotepay.models.enums import PaymentMode, QuoteStatus
from quotepay.schemas.api import (
    CancelQuoteResponse,
    PaymentStatusResponse,
    SendQuoteRequest,
    SendQuoteResponse,
    TotalsResponse,
)
from quotepay.services import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/quotes", tags=["quotes"])


@router.post("/{quote_id}/send", response_model=SendQuoteResponse, response_model_by_alias=True)
async def send_quote(
    quote_id: uuid.UUID,
    body: SendQuoteRequest,
    services: Services = Depends(get_services),
) -> JSONResponse:
    """Create the payment link, render the quote and email it."""
    try:
        result = await services.pipeline.send_quote(quote_id, body.mode, email=body.email)
    except QuotePayError as e:
        response = SendQuoteResponse(
            success=False,
            message=e.message,
            step=e.step,
            checkout_url=e.context.get("checkout_url"),
            session_id=e.context.get("session_id"),
            email_sent=False,
            attempted_providers=getattr(e, "attempted", None),
        )
        return JSONResponse(
            status_code=http_status_for(e),
            content=response.model_dump(by_alias=True, exclude_none=True),
        )

    response = SendQuoteResponse(
        success=True,
        checkout_url=result.checkout.url,
        session_id=result.checkout.session_id,
        email_sent=result.delivery.delivered,
        pdf_generated=result.pdf_generated,
        provider=result.delivery.provider,
        status=result.status,
    )
    return JSONResponse(content=response.model_dump(by_alias=True, exclude_none=True))


@router.post("/{quote_id}/cancel", response_model=CancelQuoteResponse)
async def cancel_quote(
    quote_id: uuid.UUID,
    services: Services = Depends(get_services),
) -> CancelQuoteResponse:
    try:
        changed = await services.store.cancel(quote_id)
    except QuotePayError as e:
        raise HTTPException(status_code=http_status_for(e), detail=e.message) from e
    return CancelQuoteResponse(quote_id=quote_id, status="CANCELED", changed=changed)


@router.get("/{quote_id}/totals", response_model=TotalsResponse)
async def quote_totals(
    quote_id: uuid.UUID,
    mode: PaymentMode = PaymentMode.DEPOSIT,
    services: Services = Depends(get_services),
) -> TotalsResponse:
    """Totals exactly as the PDF and email bodies render them."""
    quote = await services.store.get_quote(quote_id)
    if quote is None:
        raise HTTPException(status_code=404, detail=f"Quote not found: {quote_id}")
    try:
        totals = compute_quote_totals(quote, services.policy.get())
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return TotalsResponse(
        quote_id=quote.id,
        quote_number=quote.quote_number,
        rows=[
            row.model_dump()
            for row in build_display_rows(totals, mode, deposit_paid=quote.status == QuoteStatus.DEPOSIT_PAID)
        ],
        **totals.model_dump(),
    )


@router.get("/{quote_id}/payment-status", response_model=PaymentStatusResponse)
async def payment_status(
    quote_id: uuid.UUID,
    services: Services = Depends(get_services),
) -> PaymentStatusResponse:
    quote = await services.store.get_quote(quote_id)
    if quote is None:
        raise HTTPException(status_code=404, detail=f"Quote not found: {quote_id}")
    return PaymentStatusResponse(
        quote_id=quote.id,
        status=quote.status,
        payment_mode=quote.payment_mode,
        payment_session_id=quote.payment_session_id,
        checkout_url=quote.checkout_url,
        sent_at=quote.sent_at,
        deposit_paid_at=quote.deposit_paid_at,
        paid_at=quote.paid_at,
        refunded_at=quote.refunded_at,
        canceled_at=quote.canceled_at,
    )
