"""Pydantic contracts passed between pipeline stages.

One typed model per stage boundary: totals → checkout → compose → deliver.
Models are validated on construction and carry no business logic beyond
trivial projections.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from quotepay.models.enums import PaymentMode


class ItemInput(BaseModel):
    """A line item as supplied by an operator, before totals are derived."""

    description: str = Field(min_length=1, max_length=500)
    quantity: Decimal = Field(gt=0)
    unit_price: Decimal = Field(ge=0)

    @field_validator("quantity", "unit_price")
    @classmethod
    def round_to_stored_scale(cls, v: Decimal) -> Decimal:
        """Items are stored with two decimals; line totals derive from the stored values."""
        return v.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    @field_validator("quantity")
    @classmethod
    def quantity_still_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            msg = "quantity rounds to zero at two decimals"
            raise ValueError(msg)
        return v


class ComputedTotals(BaseModel):
    """Totals for one quote. Every display surface renders this same instance."""

    model_config = ConfigDict(frozen=True)

    subtotal: Decimal
    tax: Decimal
    gratuity: Decimal
    total: Decimal
    deposit_amount: Decimal

    tax_pct: Decimal
    gratuity_pct: Decimal
    deposit_pct: Decimal

    @property
    def balance_due(self) -> Decimal:
        """What remains once the deposit has been paid."""
        return self.total - self.deposit_amount

    def amount_for(self, mode: PaymentMode, *, deposit_paid: bool = False) -> Decimal:
        if mode == PaymentMode.DEPOSIT:
            return self.deposit_amount
        return self.balance_due if deposit_paid else self.total

    def amount_cents(self, mode: PaymentMode, *, deposit_paid: bool = False) -> int:
        """Smallest-currency-unit amount charged for *mode*."""
        return int(self.amount_for(mode, deposit_paid=deposit_paid) * 100)


class DisplayRow(BaseModel):
    """One rendered totals row, shared by the PDF, HTML and text renderers."""

    model_config = ConfigDict(frozen=True)

    key: str  # subtotal, tax, gratuity, total, deposit
    label: str
    value: str
    emphasis: bool = False


class CheckoutSessionResult(BaseModel):
    session_id: str
    url: str
    amount_cents: int = Field(gt=0)
    mode: PaymentMode
    reused: bool = False


class ComposedDocument(BaseModel):
    """Rendered quote: email bodies plus an optional PDF attachment."""

    subject: str
    html_body: str
    text_body: str
    pdf_bytes: bytes | None = None
    pdf_filename: str
    pdf_generated: bool = False

    @property
    def pdf_size_bytes(self) -> int:
        return len(self.pdf_bytes) if self.pdf_bytes else 0


class DeliveryResult(BaseModel):
    delivered: bool
    provider: str | None = None
    attempted_providers: list[str] = Field(default_factory=list)
    recipient: str
    cc: list[str] = Field(default_factory=list)
    status_changed: bool = False


class SendQuoteResult(BaseModel):
    """Outcome of the full send pipeline for one quote."""

    quote_id: str
    checkout: CheckoutSessionResult
    pdf_generated: bool
    delivery: DeliveryResult
    status: str


class ReconcileOutcome(BaseModel):
    """What the webhook reconciler did with one gateway event."""

    event_id: str | None = None
    event_type: str | None = None
    handled: bool = False
    duplicate: bool = False
    applied: bool = False
    quote_id: str | None = None
    detail: str | None = None
