"""Exception taxonomy for the quote-to-payment pipeline.

PreconditionError  — caller mistake or missing data, never retried.
PaymentGatewayError — checkout session could not be created; the pipeline halts
                      before composing/sending, and a full re-run is safe.
DocumentComposeError — PDF rendering failed; recovered inside the composer.
DeliveryFailed — every email provider failed; the payment link already exists.
WebhookProcessingError — bad signature or unresolvable correlation; logged and
                         acknowledged, never surfaced to the gateway.
"""

from __future__ import annotations

import uuid
from typing import Any


class QuotePayError(Exception):
    """Base class for all pipeline errors.

    ``step`` names the pipeline stage that failed so API responses can tell
    operators exactly where a send stopped. ``context`` carries what the
    pipeline had already produced (e.g. the checkout link) when it failed.
    """

    step: str = "unknown"

    def __init__(self, message: str, *, step: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = {}
        if step is not None:
            self.step = step


# ── Preconditions ────────────────────────────────────────────────────


class PreconditionError(QuotePayError):
    """Input or stored data does not allow the operation."""

    step = "precondition"


class QuoteNotFound(PreconditionError):
    def __init__(self, quote_id: uuid.UUID | str) -> None:
        super().__init__(f"Quote not found: {quote_id}")
        self.quote_id = quote_id


class MissingRecipient(PreconditionError):
    def __init__(self, quote_id: uuid.UUID | str) -> None:
        super().__init__(f"Quote {quote_id} has no customer email")
        self.quote_id = quote_id


class InvalidAmount(PreconditionError):
    def __init__(self, amount_cents: int, mode: str) -> None:
        super().__init__(f"Invalid payment amount for {mode} mode: {amount_cents} cents")
        self.amount_cents = amount_cents
        self.mode = mode


class InvalidMode(PreconditionError):
    def __init__(self, mode: str) -> None:
        super().__init__(f"Invalid payment mode: {mode!r} (expected 'deposit' or 'full')")
        self.mode = mode


class InvalidTransition(PreconditionError):
    """The quote is in a state that does not allow the requested action."""

    def __init__(self, quote_id: uuid.UUID | str, current: str, action: str) -> None:
        super().__init__(f"Quote {quote_id} in status {current} cannot {action}")
        self.quote_id = quote_id
        self.current = current
        self.action = action


# ── External systems ─────────────────────────────────────────────────


class PaymentGatewayError(QuotePayError):
    """Checkout session creation failed (unreachable, rejected, timed out)."""

    step = "checkout"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class DocumentComposeError(QuotePayError):
    step = "compose"


class DeliveryFailed(QuotePayError):
    """All configured email providers failed for one send action."""

    step = "deliver"

    def __init__(self, message: str, attempted: list[str], errors: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.attempted = attempted
        self.errors = errors or {}


# ── Webhooks ─────────────────────────────────────────────────────────


class WebhookProcessingError(QuotePayError):
    step = "webhook"


class InvalidSignature(WebhookProcessingError):
    pass


class UnresolvableEvent(WebhookProcessingError):
    """Event metadata does not point at a known quote."""

    def __init__(self, message: str, event_id: str | None = None) -> None:
        super().__init__(message)
        self.event_id = event_id


# ── HTTP mapping ─────────────────────────────────────────────────────


def http_status_for(error: QuotePayError) -> int:
    """Status code the HTTP surface answers with for *error*."""
    if isinstance(error, QuoteNotFound):
        return 404
    if isinstance(error, InvalidTransition):
        return 409
    if isinstance(error, PreconditionError):
        return 400
    if isinstance(error, (PaymentGatewayError, DeliveryFailed)):
        return 502
    if error.step == "totals":
        return 422
    return 500
