"""Quote and QuoteItem models — the priced proposal and its line items.

All financial amounts use Numeric(12,2) / Decimal — never float.
Percentages are stored as fractions (0.2000 = 20%).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from quotepay.models.base import Base, TimestampMixin
from quotepay.models.enums import QuoteStatus

if TYPE_CHECKING:
    from quotepay.models.checkout import CheckoutSession
    from quotepay.models.inquiry import Inquiry


class Quote(TimestampMixin, Base):
    """A priced service proposal tied to one CRM inquiry."""

    __tablename__ = "quotes"
    __table_args__ = (CheckConstraint("total_override IS NULL OR total_override >= 0", name="override_non_negative"),)

    quote_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    inquiry_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("inquiries.id"), nullable=False, index=True
    )
    created_by: Mapped[str | None] = mapped_column(String(100), comment="Operator id")

    # Policy; NULL falls back to the configured quote policy
    deposit_pct: Mapped[Decimal | None] = mapped_column(Numeric(5, 4))
    tax_pct: Mapped[Decimal | None] = mapped_column(Numeric(5, 4))
    gratuity_pct: Mapped[Decimal | None] = mapped_column(Numeric(5, 4))

    # Items are canonical; subtotal is a cached projection rewritten on item mutation
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_override: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2), comment="Explicit subtotal (>= 0) that wins over the item sum"
    )

    valid_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    terms: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20), default=QuoteStatus.DRAFT.value, nullable=False, index=True
    )
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    deposit_paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Payment linkage (written by the checkout issuer, never touches status)
    payment_session_id: Mapped[str | None] = mapped_column(String(255), index=True)
    payment_mode: Mapped[str | None] = mapped_column(String(20))
    checkout_url: Mapped[str | None] = mapped_column(Text)

    # Audit of the last payment-state transition
    payment_reference: Mapped[str | None] = mapped_column(
        String(255), comment="Gateway session id that moved the quote into DEPOSIT_PAID/PAID"
    )
    refund_charge_id: Mapped[str | None] = mapped_column(String(255))

    # Relationships
    inquiry: Mapped[Inquiry] = relationship("Inquiry", back_populates="quotes", lazy="joined")
    items: Mapped[list[QuoteItem]] = relationship(
        "QuoteItem",
        back_populates="quote",
        order_by="QuoteItem.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    checkout_sessions: Mapped[list[CheckoutSession]] = relationship(
        "CheckoutSession", back_populates="quote"
    )

    def __repr__(self) -> str:
        return f"<Quote number={self.quote_number} status={self.status}>"


class QuoteItem(TimestampMixin, Base):
    """One priced line. ``total`` always equals round(quantity * unit_price, 2)."""

    __tablename__ = "quote_items"

    quote_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("quotes.id"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    quote: Mapped[Quote] = relationship("Quote", back_populates="items")

    def __repr__(self) -> str:
        return f"<QuoteItem {self.description!r} qty={self.quantity} total={self.total}>"
