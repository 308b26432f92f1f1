"""EmailAttempt model — append-only record of every quote send action.

One row per send action, whether it succeeded or not. Never updated.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from quotepay.models.base import Base, TimestampMixin


class EmailAttempt(TimestampMixin, Base):
    """Delivery audit row for one send action."""

    __tablename__ = "email_attempts"

    quote_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("quotes.id"), nullable=False, index=True
    )
    recipient: Mapped[str] = mapped_column(String(255), nullable=False)
    cc: Mapped[list[str] | None] = mapped_column(JSONB)

    # Provider that actually delivered (None when every provider failed)
    provider: Mapped[str | None] = mapped_column(String(50))
    attempted_providers: Mapped[list[str] | None] = mapped_column(JSONB)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error: Mapped[str | None] = mapped_column(Text)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSONB)

    pdf_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    pdf_size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<EmailAttempt quote={self.quote_id} provider={self.provider} success={self.success}>"
