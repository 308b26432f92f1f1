"""Payment gateway adapter — Stripe Checkout behind a small interface.

The Stripe SDK is synchronous; calls run in a worker thread under a bounded
``asyncio.wait_for`` timeout. No internal retries: a failed call surfaces as
PaymentGatewayError and the operator re-runs, relying on the idempotency key.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

import stripe

from quotepay.errors import InvalidSignature, PaymentGatewayError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewaySessionRequest:
    """Everything the gateway needs to issue one payable link."""

    amount_cents: int
    currency: str
    product_name: str
    description: str
    customer_email: str
    client_reference_id: str
    success_url: str
    cancel_url: str
    idempotency_key: str
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class GatewaySession:
    id: str
    url: str
    expires_at: datetime | None = None


class CheckoutGateway(Protocol):
    """What the issuer and the webhook reconciler need from a gateway."""

    async def create_checkout_session(self, request: GatewaySessionRequest) -> GatewaySession: ...

    def verify_event(self, payload: bytes, signature_header: str | None) -> dict[str, Any]: ...


class StripeGateway:
    """Stripe Checkout implementation of CheckoutGateway."""

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        *,
        api_version: str | None = None,
        timeout: float = 20.0,
        webhook_tolerance: int = 300,
    ) -> None:
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self._api_version = api_version
        self._timeout = timeout
        self._webhook_tolerance = webhook_tolerance

    async def create_checkout_session(self, request: GatewaySessionRequest) -> GatewaySession:
        """Create a Checkout Session for a single line item.

        Raises:
            PaymentGatewayError: unreachable, rejected, or timed out.
        """
        if not self._secret_key:
            raise PaymentGatewayError("Stripe secret key is not configured", code="not_configured")

        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": request.currency,
                        "product_data": {
                            "name": request.product_name,
                            "description": request.description,
                        },
                        "unit_amount": request.amount_cents,
                    },
                    "quantity": 1,
                }
            ],
            "customer_email": request.customer_email,
            "client_reference_id": request.client_reference_id,
            "success_url": request.success_url,
            "cancel_url": request.cancel_url,
            "metadata": request.metadata,
            # Copied onto the charge so refunds can be correlated back to the quote
            "payment_intent_data": {"metadata": request.metadata},
        }

        def _create() -> stripe.checkout.Session:
            return stripe.checkout.Session.create(
                api_key=self._secret_key,
                stripe_version=self._api_version,
                idempotency_key=request.idempotency_key,
                **params,
            )

        logger.info(
            "Creating Stripe checkout session (amount=%d %s, key=%s)",
            request.amount_cents,
            request.currency,
            request.idempotency_key,
        )
        try:
            session = await asyncio.wait_for(asyncio.to_thread(_create), timeout=self._timeout)
        except TimeoutError as e:
            logger.error("Stripe checkout timed out after %.1fs", self._timeout)
            raise PaymentGatewayError(
                f"Payment gateway timed out after {self._timeout:.0f}s", code="timeout"
            ) from e
        except stripe.StripeError as e:
            code = getattr(e, "code", None) or type(e).__name__
            logger.error("Stripe checkout failed: %s (%s)", e.user_message or str(e), code)
            raise PaymentGatewayError(f"Payment gateway error: {e.user_message or e}", code=code) from e

        if not session.url:
            raise PaymentGatewayError(f"Stripe session {session.id} has no URL", code="no_url")

        expires_at = (
            datetime.fromtimestamp(session.expires_at, tz=UTC)
            if getattr(session, "expires_at", None)
            else None
        )
        logger.info("Stripe checkout session created: %s", session.id)
        return GatewaySession(id=session.id, url=session.url, expires_at=expires_at)

    def verify_event(self, payload: bytes, signature_header: str | None) -> dict[str, Any]:
        """Verify the ``Stripe-Signature`` header and return the decoded event.

        Raises:
            InvalidSignature: missing header, bad signature, stale timestamp,
                or a body that is not valid JSON.
        """
        if not signature_header:
            raise InvalidSignature("Missing Stripe-Signature header")
        if not self._webhook_secret:
            raise InvalidSignature("Webhook signing secret is not configured")

        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body, signature_header, self._webhook_secret, self._webhook_tolerance
            )
            event = json.loads(body)
        except stripe.SignatureVerificationError as e:
            raise InvalidSignature(f"Invalid webhook signature: {e}") from e
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise InvalidSignature(f"Malformed webhook payload: {e}") from e

        if not isinstance(event, dict) or "type" not in event:
            raise InvalidSignature("Webhook payload is not a Stripe event")
        return event
