"""Transactional email providers behind one interface.

Each provider sends a single message with a bounded timeout and no
internal retry. Failures are classified so the dispatcher knows whether
the next provider is worth trying: auth, connection, timeout, rate-limit
and 5xx problems are ``retryable``; a payload or recipient rejection is not,
because any other provider would reject it too.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from typing import Protocol

import httpx
from python_http_client.exceptions import HTTPError as SendGridHTTPError
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import (
    Attachment,
    Cc,
    Disposition,
    FileContent,
    FileName,
    FileType,
    From,
    Mail,
    ReplyTo,
)

from quotepay.config import EmailSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailAttachment:
    filename: str
    content: bytes
    mime_type: str = "application/pdf"


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str
    from_address: str
    from_name: str
    reply_to: str | None = None
    cc: list[str] = field(default_factory=list)
    attachments: list[EmailAttachment] = field(default_factory=list)


class ProviderError(Exception):
    """One provider failed to send one message."""

    def __init__(self, provider: str, message: str, *, retryable: bool, status_code: int | None = None) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message
        self.retryable = retryable
        self.status_code = status_code


def is_retryable_status(status_code: int) -> bool:
    """Auth, rate-limit and server errors justify trying another provider."""
    return status_code in (401, 403, 408, 429) or status_code >= 500


class EmailProvider(Protocol):
    name: str

    async def send(self, message: EmailMessage) -> str | None:
        """Send *message*; return the provider message id if one is given.

        Raises:
            ProviderError: with ``retryable`` set per the classification above.
        """
        ...


# ── Resend (HTTP API via httpx) ──────────────────────────────────────


class ResendProvider:
    """Resend ``POST /emails``."""

    name = "resend"

    def __init__(
        self,
        api_key: str,
        client: httpx.AsyncClient,
        *,
        base_url: str = "https://api.resend.com",
        timeout: float = 20.0,
    ) -> None:
        self._api_key = api_key
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._timeout = httpx.Timeout(timeout, connect=5.0)

    async def send(self, message: EmailMessage) -> str | None:
        payload: dict = {
            "from": f"{message.from_name} <{message.from_address}>",
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }
        if message.cc:
            payload["cc"] = message.cc
        if message.reply_to:
            payload["reply_to"] = message.reply_to
        if message.attachments:
            payload["attachments"] = [
                {"filename": a.filename, "content": base64.b64encode(a.content).decode("ascii")}
                for a in message.attachments
            ]

        try:
            response = await self._client.post(
                f"{self._base_url}/emails",
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=self._timeout,
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise ProviderError(self.name, "timeout", retryable=True) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ProviderError(
                self.name,
                f"HTTP {status}: {e.response.text[:200]}",
                retryable=is_retryable_status(status),
                status_code=status,
            ) from e
        except httpx.TransportError as e:
            raise ProviderError(self.name, f"connection error: {e}", retryable=True) from e

        body = response.json() if response.content else {}
        return body.get("id") if isinstance(body, dict) else None


# ── SendGrid (official SDK) ──────────────────────────────────────────


class SendGridProvider:
    """SendGrid v3 mail send. The SDK is synchronous, so it runs in a thread."""

    name = "sendgrid"

    def __init__(self, api_key: str, *, timeout: float = 20.0) -> None:
        self._client = SendGridAPIClient(api_key)
        self._timeout = timeout

    def _build_mail(self, message: EmailMessage) -> Mail:
        mail = Mail(
            from_email=From(message.from_address, message.from_name),
            to_emails=message.to,
            subject=message.subject,
            plain_text_content=message.text,
            html_content=message.html,
        )
        for address in message.cc:
            mail.add_cc(Cc(address))
        if message.reply_to:
            mail.reply_to = ReplyTo(message.reply_to)
        for a in message.attachments:
            mail.add_attachment(
                Attachment(
                    FileContent(base64.b64encode(a.content).decode("ascii")),
                    FileName(a.filename),
                    FileType(a.mime_type),
                    Disposition("attachment"),
                )
            )
        return mail

    async def send(self, message: EmailMessage) -> str | None:
        mail = self._build_mail(message)
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(self._client.send, mail), timeout=self._timeout
            )
        except TimeoutError as e:
            raise ProviderError(self.name, "timeout", retryable=True) from e
        except SendGridHTTPError as e:
            status = e.status_code
            raise ProviderError(
                self.name,
                f"HTTP {status}: {str(e.body)[:200]}",
                retryable=is_retryable_status(status),
                status_code=status,
            ) from e
        except OSError as e:
            raise ProviderError(self.name, f"connection error: {e}", retryable=True) from e

        headers = getattr(response, "headers", None) or {}
        return headers.get("X-Message-Id")


def build_providers(email: EmailSettings, client: httpx.AsyncClient) -> list[EmailProvider]:
    """Providers in configured order, skipping any without credentials."""
    providers: list[EmailProvider] = []
    for name in email.provider_order:
        if name == "resend":
            if not email.resend_api_key:
                logger.warning("Resend listed in EMAIL_PROVIDERS but RESEND_API_KEY is not set")
                continue
            providers.append(
                ResendProvider(
                    email.resend_api_key,
                    client,
                    base_url=email.resend_api_url,
                    timeout=email.email_timeout,
                )
            )
        elif name == "sendgrid":
            if not email.sendgrid_api_key:
                logger.warning("SendGrid listed in EMAIL_PROVIDERS but SENDGRID_API_KEY is not set")
                continue
            providers.append(SendGridProvider(email.sendgrid_api_key, timeout=email.email_timeout))
        else:
            logger.warning("Unknown email provider %r ignored", name)
    logger.info("Email providers configured: %s", [p.name for p in providers])
    return providers
