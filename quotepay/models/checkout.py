"""CheckoutSession model — local record of a gateway-issued payment session.

Referenced (not owned) by Quote. At most one open, unexpired row exists per
(quote_id, mode, amount_cents); the idempotency key is what the gateway saw.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from quotepay.models.base import Base, TimestampMixin
from quotepay.models.enums import CheckoutSessionStatus

if TYPE_CHECKING:
    from quotepay.models.quote import Quote


class CheckoutSession(TimestampMixin, Base):
    """A payable link issued for one quote in one payment mode."""

    __tablename__ = "checkout_sessions"
    __table_args__ = (Index("ix_checkout_sessions_lookup", "quote_id", "mode", "amount_cents", "status"),)

    session_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    quote_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("quotes.id"), nullable=False, index=True
    )
    mode: Mapped[str] = mapped_column(String(20), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(
        String(20), default=CheckoutSessionStatus.OPEN.value, nullable=False
    )

    quote: Mapped[Quote] = relationship("Quote", back_populates="checkout_sessions")

    def __repr__(self) -> str:
        return f"<CheckoutSession {self.session_id} mode={self.mode} status={self.status}>"
