"""AuditLog model — immutable audit trail for every pipeline event.

Every send, checkout, webhook and state transition emits a SystemEvent
which is persisted here. This table is append-only — no updates or deletes.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from quotepay.models.base import Base, TimestampMixin


class AuditLog(TimestampMixin, Base):
    """Immutable audit trail entry."""

    __tablename__ = "audit_log"

    # Event classification
    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Context (all nullable; webhook events may not resolve to a quote)
    quote_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), index=True)
    actor_id: Mapped[str | None] = mapped_column(String(100), comment="Operator id, 'gateway', or 'system'")
    actor_role: Mapped[str | None] = mapped_column(String(50), comment="operator, gateway, system")

    # Event data
    data: Mapped[dict[str, Any] | None] = mapped_column(JSONB)

    def __repr__(self) -> str:
        return f"<AuditLog event={self.event_type} quote={self.quote_id}>"
