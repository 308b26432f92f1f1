"""SystemEvent schema — the event type that flows through the pipeline.

Every state transition, gateway call, webhook and send action emits a
SystemEvent. Subscribers (audit logger, alert engine) consume these
events asynchronously.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All event types emitted by the system."""

    # Quote lifecycle
    QUOTE_STATUS_CHANGED = "quote.status_changed"
    QUOTE_SEND_REQUESTED = "quote.send_requested"
    QUOTE_SEND_FAILED = "quote.send_failed"

    # Checkout
    CHECKOUT_SESSION_CREATED = "checkout.session_created"
    CHECKOUT_SESSION_REUSED = "checkout.session_reused"
    CHECKOUT_FAILED = "checkout.failed"

    # Payments (reconciled from webhooks)
    PAYMENT_COMPLETED = "payment.completed"
    PAYMENT_REFUNDED = "payment.refunded"
    PAYMENT_SESSION_EXPIRED = "payment.session_expired"

    # Webhooks
    WEBHOOK_RECEIVED = "webhook.received"
    WEBHOOK_SIGNATURE_INVALID = "webhook.signature_invalid"
    WEBHOOK_DUPLICATE = "webhook.duplicate"
    WEBHOOK_IGNORED = "webhook.ignored"
    WEBHOOK_UNRESOLVABLE = "webhook.unresolvable"

    # Documents
    DOCUMENT_COMPOSED = "document.composed"
    DOCUMENT_PDF_FAILED = "document.pdf_failed"

    # Email delivery
    EMAIL_SENT = "email.sent"
    EMAIL_FAILED = "email.failed"

    # System
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_SHUTDOWN = "system.shutdown"
    SYSTEM_ERROR = "system.error"


class SystemEvent(BaseModel):
    """Core event that flows through the quote-to-payment pipeline.

    Immutable once created. Consumed by:
    - audit_on_event → writes to audit_log table
    - AlertEngine → checks rules and posts alerts
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Context (optional; webhooks may not resolve to a quote)
    quote_id: uuid.UUID | None = None
    actor_id: str | None = None
    actor_role: str | None = None

    # Flexible payload
    data: dict[str, Any] = Field(default_factory=dict)

    source_module: str | None = Field(default=None, description="Module that emitted this event")

    model_config = {"frozen": True}
