"""Document composer — renders a quote as PDF, HTML email and text email.

Totals are turned into one list of DisplayRows and every renderer prints
that list, so the three formats cannot disagree. A PDF failure never stops
the email: the composer returns ``pdf_generated=False`` and no attachment.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

from quotepay.config import BrandingSettings
from quotepay.documents.formatters import (
    format_currency,
    format_date,
    format_percentage,
    format_quantity,
    format_service_type,
)
from quotepay.documents.pdf import render_quote_pdf
from quotepay.errors import DocumentComposeError
from quotepay.events.bus import emit
from quotepay.models.base import utcnow
from quotepay.models.enums import PaymentMode
from quotepay.models.quote import Quote
from quotepay.schemas.events import EventType, SystemEvent
from quotepay.schemas.quotes import ComposedDocument, ComputedTotals, DisplayRow

logger = logging.getLogger(__name__)

_template_dir = Path(__file__).parent / "templates"


def build_display_rows(
    totals: ComputedTotals, mode: PaymentMode, *, deposit_paid: bool = False
) -> list[DisplayRow]:
    """Rows shown under the item table, in order.

    Zero tax, gratuity and deposit rows are left out rather than shown as
    $0.00. The deposit row only appears for deposit-mode links.
    A full-payment link on a quote whose deposit is already paid shows the
    paid deposit and the remaining balance instead.
    """
    rows = [DisplayRow(key="subtotal", label="Subtotal:", value=format_currency(totals.subtotal))]
    if totals.tax > 0:
        rows.append(DisplayRow(key="tax", label="Tax:", value=format_currency(totals.tax)))
    if totals.gratuity > 0:
        rows.append(
            DisplayRow(key="gratuity", label="Gratuity:", value=format_currency(totals.gratuity))
        )
    rows.append(
        DisplayRow(key="total", label="Total:", value=format_currency(totals.total), emphasis=True)
    )
    if mode == PaymentMode.DEPOSIT and totals.deposit_amount > 0:
        rows.append(
            DisplayRow(
                key="deposit",
                label=f"Deposit Due ({format_percentage(totals.deposit_pct)}):",
                value=format_currency(totals.deposit_amount),
                emphasis=True,
            )
        )
    elif mode == PaymentMode.FULL and deposit_paid and totals.deposit_amount > 0:
        rows.append(
            DisplayRow(key="deposit_paid", label="Deposit Paid:", value=format_currency(totals.deposit_amount))
        )
        rows.append(
            DisplayRow(
                key="balance",
                label="Balance Due:",
                value=format_currency(totals.balance_due),
                emphasis=True,
            )
        )
    return rows


@dataclass
class ItemLine:
    description: str
    quantity: str
    unit_price: str
    total: str


@dataclass
class QuoteDocumentContext:
    """Everything a renderer needs, already formatted."""

    quote_number: str
    customer_name: str
    customer_email: str | None
    service_type: str | None
    event_date: str | None
    event_location: str | None
    guest_count: int | None
    issued_on: str
    valid_until: str | None
    items: list[ItemLine]
    rows: list[DisplayRow]
    mode: str
    amount_due: str
    checkout_url: str
    terms: str
    notes: str | None
    message: str
    branding: BrandingSettings


class DocumentComposer:
    """Builds the ComposedDocument for one send action."""

    def __init__(self, branding: BrandingSettings, *, pdf_timeout: float = 30.0) -> None:
        self._branding = branding
        self._pdf_timeout = pdf_timeout
        self._env = Environment(
            loader=FileSystemLoader(str(_template_dir)),
            autoescape=select_autoescape(["html"]),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def build_context(
        self,
        quote: Quote,
        totals: ComputedTotals,
        checkout_url: str,
        mode: PaymentMode,
        *,
        deposit_paid: bool = False,
        issued_on: datetime | None = None,
    ) -> QuoteDocumentContext:
        inquiry = quote.inquiry
        return QuoteDocumentContext(
            quote_number=quote.quote_number,
            customer_name=inquiry.name if inquiry else "Customer",
            customer_email=inquiry.email if inquiry else None,
            service_type=format_service_type(inquiry.service_type) if inquiry and inquiry.service_type else None,
            event_date=format_date(inquiry.event_date) if inquiry and inquiry.event_date else None,
            event_location=inquiry.event_location if inquiry else None,
            guest_count=inquiry.guest_count if inquiry else None,
            issued_on=format_date(issued_on or quote.created_at or utcnow()),
            valid_until=format_date(quote.valid_until) if quote.valid_until else None,
            items=[
                ItemLine(
                    description=item.description,
                    quantity=format_quantity(item.quantity),
                    unit_price=format_currency(item.unit_price),
                    total=format_currency(item.total),
                )
                for item in quote.items
            ],
            rows=build_display_rows(totals, mode, deposit_paid=deposit_paid),
            mode=mode.value,
            amount_due=format_currency(totals.amount_for(mode, deposit_paid=deposit_paid)),
            checkout_url=checkout_url,
            terms=quote.terms or self._branding.default_terms,
            notes=quote.notes,
            message=self._branding.default_message,
            branding=self._branding,
        )

    async def compose(
        self,
        quote: Quote,
        totals: ComputedTotals,
        checkout_url: str,
        mode: PaymentMode,
        *,
        deposit_paid: bool = False,
    ) -> ComposedDocument:
        """Render subject, HTML, text and (best effort) the PDF attachment."""
        ctx = self.build_context(quote, totals, checkout_url, mode, deposit_paid=deposit_paid)
        subject = f"Your Quote {quote.quote_number} from {self._branding.business_name}"
        html_body = self._env.get_template("quote_email.html").render(ctx=ctx, subject=subject)
        text_body = self._env.get_template("quote_email.txt").render(ctx=ctx, subject=subject)

        pdf_bytes: bytes | None = None
        try:
            pdf_bytes = await self._render_pdf(ctx)
        except DocumentComposeError as e:
            logger.error("PDF generation failed for quote %s: %s", quote.quote_number, e.message)
            await emit(
                SystemEvent(
                    event_type=EventType.DOCUMENT_PDF_FAILED,
                    quote_id=quote.id,
                    data={"quote_number": quote.quote_number, "error": e.message},
                    source_module=__name__,
                )
            )

        document = ComposedDocument(
            subject=subject,
            html_body=html_body,
            text_body=text_body,
            pdf_bytes=pdf_bytes,
            pdf_filename=f"quote-{quote.quote_number}.pdf",
            pdf_generated=pdf_bytes is not None,
        )
        logger.info(
            "Composed quote %s (pdf=%s, %d bytes)",
            quote.quote_number,
            document.pdf_generated,
            document.pdf_size_bytes,
        )
        await emit(
            SystemEvent(
                event_type=EventType.DOCUMENT_COMPOSED,
                quote_id=quote.id,
                data={
                    "quote_number": quote.quote_number,
                    "mode": mode.value,
                    "pdf_generated": document.pdf_generated,
                    "pdf_size_bytes": document.pdf_size_bytes,
                },
                source_module=__name__,
            )
        )
        return document

    async def _render_pdf(self, ctx: QuoteDocumentContext) -> bytes:
        try:
            pdf = await asyncio.wait_for(
                asyncio.to_thread(render_quote_pdf, ctx), timeout=self._pdf_timeout
            )
        except TimeoutError as e:
            raise DocumentComposeError(f"PDF rendering timed out after {self._pdf_timeout:.0f}s") from e
        except DocumentComposeError:
            raise
        except Exception as e:
            raise DocumentComposeError(f"PDF rendering failed: {e}") from e
        if not pdf:
            raise DocumentComposeError("PDF renderer returned no data")
        return pdf
