"""Inquiry model — CRM intake record a quote is priced for.

Owned by the CRM collaborator; this service only reads it.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from quotepay.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from quotepay.models.quote import Quote


class Inquiry(TimestampMixin, Base):
    """A customer request for catering, bar, food-truck or private-event service."""

    __tablename__ = "inquiries"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(30))
    service_type: Mapped[str | None] = mapped_column(String(50), index=True)

    # Event context printed on the quote
    event_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    event_location: Mapped[str | None] = mapped_column(String(500))
    guest_count: Mapped[int | None] = mapped_column(Integer)

    quotes: Mapped[list[Quote]] = relationship("Quote", back_populates="inquiry")

    def __repr__(self) -> str:
        return f"<Inquiry id={self.id} service_type={self.service_type}>"
