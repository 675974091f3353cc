"""Receipt rendering to HTML and PDF.

Both renderers are pure functions of ReceiptData. The PDF is built with
ReportLab in invariant mode so identical input yields identical bytes.
"""

from __future__ import annotations

import asyncio
import base64
import html
from io import BytesIO

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from convention_fulfillment.delivery.errors import DeliveryError, ErrorType
from convention_fulfillment.services.receipt_service import ReceiptData

BRAND_COLOR = colors.HexColor("#16A34A")
HEADER_TITLE = "GOSA 2025 Convention"
HEADER_MOTTO = "For Light and Truth"


def _pdf_text(value: str) -> str:
    # Base-14 fonts have no Naira glyph
    return html.escape(value.replace("₦", "NGN "))


def _summary_rows(data: ReceiptData) -> list[tuple[str, str]]:
    op = data.operation_details
    user = data.user_details
    return [
        ("Name", user.name),
        ("Email", user.email),
        ("Phone", user.phone),
        ("Registration ID", user.registration_id),
        ("Service", op.description),
        ("Amount", f"₦{op.amount:,}"),
        ("Payment Reference", op.payment_reference),
        ("Date", f"{op.date:%B %d, %Y %H:%M} UTC"),
        ("Status", op.status.capitalize()),
    ]


def render_html(data: ReceiptData) -> str:
    """Printable HTML receipt."""
    rows = "\n".join(
        f"      <tr><th>{html.escape(label)}</th><td>{html.escape(value)}</td></tr>"
        for label, value in _summary_rows(data)
    )
    details = "\n".join(
        f"      <li>{html.escape(part)}</li>"
        for part in data.operation_details.additional_info.split(" | ")
        if part
    )
    qr = (
        f'    <img class="qr" src="{data.qr_image}" alt="Check-in QR code" width="160">\n'
        if data.qr_image
        else ""
    )
    title = html.escape(data.operation_details.description)

    return (
        "<!DOCTYPE html>\n"
        '<html lang="en">\n'
        "<head>\n"
        '  <meta charset="utf-8">\n'
        f"  <title>{title} - Receipt</title>\n"
        "  <style>\n"
        "    body { font-family: Helvetica, Arial, sans-serif; color: #111827; margin: 32px; }\n"
        "    h1 { color: #16A34A; margin-bottom: 0; }\n"
        "    table { border-collapse: collapse; width: 100%; margin-top: 16px; }\n"
        "    th { text-align: left; width: 35%; color: #4B5563; }\n"
        "    th, td { padding: 6px 8px; border-bottom: 1px solid #E5E7EB; }\n"
        "    .qr { display: block; margin: 24px auto; }\n"
        "  </style>\n"
        "</head>\n"
        "<body>\n"
        f"  <h1>{HEADER_TITLE}</h1>\n"
        f"  <p><em>{HEADER_MOTTO}</em></p>\n"
        f"  <h2>{title}</h2>\n"
        "  <table>\n"
        f"{rows}\n"
        "  </table>\n"
        "  <h3>Details</h3>\n"
        "  <ul>\n"
        f"{details}\n"
        "  </ul>\n"
        f"{qr}"
        "  <p>Present the QR code when required and keep this receipt for your records.</p>\n"
        "</body>\n"
        "</html>\n"
    )


def render_pdf(data: ReceiptData) -> bytes:
    """A4 PDF receipt with summary table, details and QR code."""
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=18 * mm,
        rightMargin=18 * mm,
        topMargin=18 * mm,
        bottomMargin=18 * mm,
        title=f"{data.operation_details.description} Receipt",
        author=HEADER_TITLE,
        invariant=True,
    )

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle("ReceiptTitle", parent=styles["Title"], textColor=BRAND_COLOR)
    body = styles["BodyText"]

    story: list = [
        Paragraph(HEADER_TITLE, title_style),
        Paragraph(f"<i>{HEADER_MOTTO}</i>", styles["Normal"]),
        Spacer(1, 6 * mm),
        Paragraph(_pdf_text(data.operation_details.description), styles["Heading2"]),
    ]

    table = Table(
        [
            [Paragraph(_pdf_text(label), body), Paragraph(_pdf_text(value), body)]
            for label, value in _summary_rows(data)
        ],
        colWidths=[50 * mm, 120 * mm],
    )
    table.setStyle(
        TableStyle(
            [
                ("TEXTCOLOR", (0, 0), (0, -1), colors.HexColor("#4B5563")),
                ("LINEBELOW", (0, 0), (-1, -1), 0.25, colors.HexColor("#E5E7EB")),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ]
        )
    )
    story.extend([table, Spacer(1, 6 * mm), Paragraph("Details", styles["Heading3"])])
    for part in data.operation_details.additional_info.split(" | "):
        if part:
            story.append(Paragraph(f"• {_pdf_text(part)}", body))

    if data.qr_image and "," in data.qr_image:
        png = base64.b64decode(data.qr_image.split(",", 1)[1])
        story.extend([Spacer(1, 8 * mm), Image(BytesIO(png), width=45 * mm, height=45 * mm)])

    story.extend(
        [
            Spacer(1, 8 * mm),
            Paragraph(
                "Present the QR code when required and keep this receipt for your records.",
                styles["Italic"],
            ),
        ]
    )

    doc.build(story)
    return buffer.getvalue()


async def render_pdf_async(data: ReceiptData) -> bytes:
    """Render off the event loop; failures surface as retryable DeliveryError."""
    try:
        return await asyncio.to_thread(render_pdf, data)
    except Exception as exc:
        raise DeliveryError(
            ErrorType.PDF_GENERATION_FAILED, f"PDF generation failed: {exc}"
        ) from exc
