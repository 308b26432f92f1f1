"""Delivery dispatcher — sends a composed quote through the provider chain.

Providers are tried in order until one accepts the message. Every send
action appends exactly one EmailAttempt row, and only a confirmed send moves
the quote from DRAFT to SENT.
"""

from __future__ import annotations

import logging

from quotepay.config import EmailSettings
from quotepay.delivery.providers import EmailAttachment, EmailMessage, EmailProvider, ProviderError
from quotepay.errors import DeliveryFailed, MissingRecipient
from quotepay.events.bus import emit
from quotepay.models.quote import Quote
from quotepay.policy import PolicyStore
from quotepay.quotes.store import QuoteStore
from quotepay.schemas.events import EventType, SystemEvent
from quotepay.schemas.quotes import ComposedDocument, DeliveryResult

logger = logging.getLogger(__name__)


def route_cc(recipient: str, candidates: list[str]) -> list[str]:
    """Drop blanks, duplicates and the recipient itself, keeping order."""
    seen = {recipient.strip().lower()}
    routed: list[str] = []
    for address in candidates:
        address = address.strip()
        key = address.lower()
        if not address or key in seen:
            continue
        seen.add(key)
        routed.append(address)
    return routed


class DeliveryDispatcher:
    """Email delivery with ordered provider fallback."""

    def __init__(
        self,
        store: QuoteStore,
        providers: list[EmailProvider],
        policy: PolicyStore,
        email: EmailSettings,
    ) -> None:
        self._store = store
        self._providers = providers
        self._policy = policy
        self._email = email

    @property
    def provider_names(self) -> list[str]:
        return [p.name for p in self._providers]

    async def send_quote_email(
        self,
        quote: Quote,
        document: ComposedDocument,
        *,
        recipient: str | None = None,
        cc_list: list[str] | None = None,
        actor_id: str | None = None,
    ) -> DeliveryResult:
        """Send the quote email and record the attempt.

        Args:
            recipient: Operator override; defaults to the inquiry's email.
            cc_list: Explicit CC list; defaults to the policy's list for the
                inquiry's service type.

        Raises:
            MissingRecipient: no recipient could be determined.
            DeliveryFailed: every provider tried failed.
        """
        to = recipient or (quote.inquiry.email if quote.inquiry else None)
        if not to:
            raise MissingRecipient(quote.id)

        if cc_list is None:
            service_type = quote.inquiry.service_type if quote.inquiry else None
            cc_list = self._policy.get().cc_for(service_type)
        cc = route_cc(to, cc_list)

        message = EmailMessage(
            to=to,
            subject=document.subject,
            html=document.html_body,
            text=document.text_body,
            from_address=self._email.email_from_address,
            from_name=self._email.email_from_name,
            reply_to=self._email.email_reply_to or None,
            cc=cc,
            attachments=(
                [EmailAttachment(document.pdf_filename, document.pdf_bytes)]
                if document.pdf_generated and document.pdf_bytes
                else []
            ),
        )

        attempted: list[str] = []
        errors: dict[str, str] = {}
        delivered_by: str | None = None
        message_id: str | None = None

        for provider in self._providers:
            attempted.append(provider.name)
            try:
                message_id = await provider.send(message)
            except ProviderError as e:
                errors[provider.name] = e.message
                if not e.retryable:
                    logger.error("Email rejected by %s, not falling back: %s", provider.name, e.message)
                    break
                logger.warning("Email via %s failed, trying next provider: %s", provider.name, e.message)
                continue
            delivered_by = provider.name
            break

        error_text = "; ".join(f"{name}: {err}" for name, err in errors.items()) or None
        if not self._providers:
            error_text = "No email providers configured"

        await self._store.record_email_attempt(
            quote_id=quote.id,
            recipient=to,
            cc=cc,
            provider=delivered_by,
            attempted_providers=attempted,
            success=delivered_by is not None,
            error=error_text,
            details={"message_id": message_id} if message_id else None,
            pdf_generated=document.pdf_generated,
            pdf_size_bytes=document.pdf_size_bytes,
        )

        if delivered_by is None:
            await emit(
                SystemEvent(
                    event_type=EventType.EMAIL_FAILED,
                    quote_id=quote.id,
                    actor_id=actor_id,
                    data={"recipient": to, "attempted_providers": attempted, "error": error_text},
                    source_module=__name__,
                )
            )
            raise DeliveryFailed(
                f"Email delivery failed ({error_text})", attempted=attempted, errors=errors
            )

        status_changed = await self._store.mark_sent(quote.id, actor_id=actor_id)
        logger.info(
            "Quote %s emailed to %s via %s (cc=%d, pdf=%s)",
            quote.quote_number,
            to,
            delivered_by,
            len(cc),
            document.pdf_generated,
        )
        await emit(
            SystemEvent(
                event_type=EventType.EMAIL_SENT,
                quote_id=quote.id,
                actor_id=actor_id,
                data={
                    "recipient": to,
                    "cc": cc,
                    "provider": delivered_by,
                    "attempted_providers": attempted,
                    "pdf_generated": document.pdf_generated,
                },
                source_module=__name__,
            )
        )
        return DeliveryResult(
            delivered=True,
            provider=delivered_by,
            attempted_providers=attempted,
            recipient=to,
            cc=cc,
            status_changed=status_changed,
        )
