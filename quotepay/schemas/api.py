"""Request and response bodies for the HTTP surface (camelCase on the wire)."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from quotepay.models.enums import PaymentMode


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SendQuoteRequest(CamelModel):
    mode: PaymentMode = PaymentMode.DEPOSIT
    email: str | None = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class SendQuoteResponse(CamelModel):
    success: bool
    checkout_url: str | None = None
    session_id: str | None = None
    email_sent: bool = False
    pdf_generated: bool = False
    provider: str | None = None
    status: str | None = None
    message: str | None = None
    step: str | None = None
    attempted_providers: list[str] | None = None


class CheckoutSessionRequest(CamelModel):
    quote_id: uuid.UUID
    mode: PaymentMode = PaymentMode.DEPOSIT


class CheckoutSessionResponse(CamelModel):
    session_id: str
    url: str
    amount_cents: int
    reused: bool = False


class TotalsResponse(CamelModel):
    quote_id: uuid.UUID
    quote_number: str
    subtotal: Decimal
    tax: Decimal
    gratuity: Decimal
    total: Decimal
    deposit_amount: Decimal
    tax_pct: Decimal
    gratuity_pct: Decimal
    deposit_pct: Decimal
    rows: list[dict[str, str | bool]] = Field(default_factory=list)


class PaymentStatusResponse(CamelModel):
    quote_id: uuid.UUID
    status: str
    payment_mode: str | None = None
    payment_session_id: str | None = None
    checkout_url: str | None = None
    sent_at: datetime | None = None
    deposit_paid_at: datetime | None = None
    paid_at: datetime | None = None
    refunded_at: datetime | None = None
    canceled_at: datetime | None = None


class CancelQuoteResponse(CamelModel):
    quote_id: uuid.UUID
    status: str
    changed: bool
