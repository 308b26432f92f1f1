"""Quote PDF rendering with reportlab platypus.

Synchronous and CPU-bound; the composer runs it in a worker thread.
"""

from __future__ import annotations

import io
from typing import TYPE_CHECKING
from xml.sax.saxutils import escape

from reportlab.lib.colors import HexColor, white
from reportlab.lib.enums import TA_RIGHT
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

if TYPE_CHECKING:
    from quotepay.documents.composer import QuoteDocumentContext

BRAND = HexColor("#8B1E1E")
DARK = HexColor("#222222")
MUTED = HexColor("#666666")
RULE = HexColor("#DDDDDD")
ZEBRA = HexColor("#F7F3EE")

_styles = getSampleStyleSheet()

style_business = ParagraphStyle(
    "Business", parent=_styles["Title"], fontSize=20, leading=24, textColor=BRAND, alignment=0
)
style_small = ParagraphStyle("Small", parent=_styles["Normal"], fontSize=9, leading=12, textColor=MUTED)
style_small_right = ParagraphStyle("SmallRight", parent=style_small, alignment=TA_RIGHT)
style_heading = ParagraphStyle(
    "Heading", parent=_styles["Heading2"], fontSize=12, leading=15, textColor=BRAND, spaceBefore=10
)
style_body = ParagraphStyle("Body", parent=_styles["Normal"], fontSize=10, leading=14, textColor=DARK)
style_cell = ParagraphStyle("Cell", parent=style_body, fontSize=9.5, leading=12)
style_cell_right = ParagraphStyle("CellRight", parent=style_cell, alignment=TA_RIGHT)
style_header_cell = ParagraphStyle("HeaderCell", parent=style_cell, textColor=white, fontName="Helvetica-Bold")
style_header_cell_right = ParagraphStyle("HeaderCellRight", parent=style_header_cell, alignment=TA_RIGHT)


def _p(text: str | None, style: ParagraphStyle) -> Paragraph:
    return Paragraph(escape(text or ""), style)


def render_quote_pdf(ctx: QuoteDocumentContext) -> bytes:
    """Render the quote document and return the PDF bytes."""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        leftMargin=0.75 * inch,
        rightMargin=0.75 * inch,
        topMargin=0.6 * inch,
        bottomMargin=0.6 * inch,
        title=f"Quote {ctx.quote_number}",
        author=ctx.branding.business_name,
    )
    width = doc.width
    story: list = []

    # Header: business on the left, quote meta on the right
    brand = ctx.branding
    meta = [f"Quote No: {ctx.quote_number}", f"Date: {ctx.issued_on}"]
    if ctx.valid_until:
        meta.append(f"Valid Until: {ctx.valid_until}")
    header = Table(
        [
            [
                [
                    _p(brand.business_name, style_business),
                    _p(brand.business_address, style_small),
                    _p(f"{brand.business_phone} | {brand.business_email}", style_small),
                ],
                [_p(line, style_small_right) for line in meta],
            ]
        ],
        colWidths=[width * 0.6, width * 0.4],
    )
    header.setStyle(
        TableStyle(
            [
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("LINEBELOW", (0, 0), (-1, 0), 1.5, BRAND),
                ("BOTTOMPADDING", (0, 0), (-1, 0), 10),
            ]
        )
    )
    story.append(header)
    story.append(Spacer(1, 12))

    # Customer and event
    story.append(_p("Prepared For", style_heading))
    story.append(_p(ctx.customer_name, style_body))
    if ctx.customer_email:
        story.append(_p(ctx.customer_email, style_small))
    event_lines = []
    if ctx.service_type:
        event_lines.append(f"Service: {ctx.service_type}")
    if ctx.event_date:
        event_lines.append(f"Event Date: {ctx.event_date}")
    if ctx.event_location:
        event_lines.append(f"Location: {ctx.event_location}")
    if ctx.guest_count:
        event_lines.append(f"Guests: {ctx.guest_count}")
    if event_lines:
        story.append(_p("Event Details", style_heading))
        for line in event_lines:
            story.append(_p(line, style_body))

    # Items
    story.append(_p("Quote Details", style_heading))
    data = [
        [
            _p("Description", style_header_cell),
            _p("Qty", style_header_cell_right),
            _p("Unit Price", style_header_cell_right),
            _p("Total", style_header_cell_right),
        ]
    ]
    for item in ctx.items:
        data.append(
            [
                _p(item.description, style_cell),
                _p(item.quantity, style_cell_right),
                _p(item.unit_price, style_cell_right),
                _p(item.total, style_cell_right),
            ]
        )
    items_table = Table(
        data,
        colWidths=[width * 0.52, width * 0.12, width * 0.18, width * 0.18],
        repeatRows=1,
    )
    item_style = [
        ("BACKGROUND", (0, 0), (-1, 0), BRAND),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("LINEBELOW", (0, 1), (-1, -1), 0.5, RULE),
        ("TOPPADDING", (0, 0), (-1, -1), 5),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
    ]
    for row in range(2, len(data), 2):
        item_style.append(("BACKGROUND", (0, row), (-1, row), ZEBRA))
    items_table.setStyle(TableStyle(item_style))
    story.append(items_table)
    story.append(Spacer(1, 8))

    # Totals: the same rows the email bodies print
    totals_data = [[_p(r.label, style_cell_right), _p(r.value, style_cell_right)] for r in ctx.rows]
    totals_table = Table(totals_data, colWidths=[width * 0.75, width * 0.25])
    totals_style = [("TOPPADDING", (0, 0), (-1, -1), 3), ("BOTTOMPADDING", (0, 0), (-1, -1), 3)]
    for idx, row in enumerate(ctx.rows):
        if row.emphasis:
            totals_style.append(("FONTNAME", (0, idx), (-1, idx), "Helvetica-Bold"))
            totals_style.append(("LINEABOVE", (0, idx), (-1, idx), 0.75, DARK))
    totals_table.setStyle(TableStyle(totals_style))
    story.append(totals_table)

    # Payment
    story.append(_p("Payment", style_heading))
    label = "Deposit due" if ctx.mode == "deposit" else "Amount due"
    story.append(_p(f"{label}: {ctx.amount_due}", style_body))
    href = escape(ctx.checkout_url, {'"': "&quot;"})
    story.append(
        Paragraph(
            f'Pay securely online: <link href="{href}" color="#8B1E1E">'
            f"{escape(ctx.checkout_url)}</link>",
            style_small,
        )
    )

    if ctx.notes:
        story.append(_p("Notes", style_heading))
        story.append(_p(ctx.notes, style_body))

    story.append(_p("Terms", style_heading))
    story.append(_p(ctx.terms, style_small))

    doc.build(story)
    return buffer.getvalue()
