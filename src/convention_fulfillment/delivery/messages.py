"""WhatsApp message text for receipt delivery."""

from __future__ import annotations

from convention_fulfillment.services.receipt_service import ReceiptData
from convention_fulfillment.services.service_kinds import naira

HEADER = "🎉 *GOSA 2025 Convention*\n*For Light and Truth*"
SUPPORT_LINE = "🔗 *Need help?* Contact support@gosa.org"
SIGNATURE = "*GOSA 2025 Convention Team*"

SERVICE_TITLES = {
    "convention": "Convention Registration",
    "dinner": "Dinner Reservation",
    "accommodation": "Accommodation Booking",
    "brochure": "Brochure Order",
    "goodwill": "Goodwill Message & Donation",
    "donation": "Donation",
}

# (heading, extra detail lines)
_DETAILS = {
    "convention": ("✅ *Registration Details:*", ["Convention Dates: Dec 26-29, 2025"]),
    "dinner": (
        "🍽️ *Dinner Details:*",
        ["Date: December 28, 2025 at 7:00 PM", "Venue: Grand Ballroom"],
    ),
    "accommodation": (
        "🏨 *Accommodation Details:*",
        ["Check-in: Dec 25, 2025 (3:00 PM)", "Check-out: Dec 30, 2025 (11:00 AM)"],
    ),
    "brochure": ("📚 *Brochure Order:*", ["Status: Processing"]),
    "goodwill": ("💝 *Goodwill Message:*", ["Status: Under Review"]),
    "donation": ("🙏 *Donation Receipt:*", []),
}

_INSTRUCTIONS = {
    "convention": (
        "📋 *Next Steps:*",
        [
            "Present QR code at convention entrance",
            "Arrive early for check-in (8:00-10:00 AM)",
            "Bring valid ID for verification",
        ],
    ),
    "dinner": (
        "🎭 *Dinner Instructions:*",
        [
            "Dress code: Formal/Black Tie",
            "Arrive by 6:30 PM for cocktails",
            "Present QR code at venue entrance",
        ],
    ),
    "accommodation": (
        "🗝️ *Check-in Instructions:*",
        [
            "Present this confirmation at hotel reception",
            "Bring valid ID for check-in",
            "Early check-in available upon request",
        ],
    ),
    "brochure": (
        "📦 *Delivery Information:*",
        [
            "You'll be notified when ready for pickup",
            "Present QR code for collection",
            "Digital copies available immediately",
        ],
    ),
    "goodwill": (
        "📝 *Message Review:*",
        [
            "Your message is under review",
            "Approved messages may be featured",
            "Thank you for your generous contribution",
        ],
    ),
    "donation": (
        "🧾 *Tax Information:*",
        [
            "Keep this receipt for tax purposes",
            "Donation is tax-deductible where applicable",
            "Thank you for supporting GOSA",
        ],
    ),
}


def service_title(kind: str) -> str:
    return SERVICE_TITLES.get(kind, kind.capitalize())


def _bullets(lines: list[str]) -> str:
    return "\n".join(f"• {line}" for line in lines)


def _block(heading: str, lines: list[str]) -> str:
    return f"{heading}\n{_bullets(lines)}"


def _greeting(data: ReceiptData) -> str:
    title = service_title(data.operation_details.type)
    return f"Dear {data.user_details.name},\n\nYour {title} has been confirmed!"


def details_block(data: ReceiptData) -> str:
    op = data.operation_details
    heading, extra = _DETAILS.get(op.type, ("💳 *Payment Details:*", []))
    amount_label = "Donation" if op.type == "goodwill" else "Amount"
    lines = [f"{amount_label}: {naira(op.amount)}", f"Reference: {op.payment_reference}"]
    return _block(heading, lines + extra)


def instructions_block(kind: str) -> str:
    heading, lines = _INSTRUCTIONS.get(
        kind,
        (
            "📄 *General Instructions:*",
            ["Keep this document safe", "Contact support if you need assistance"],
        ),
    )
    return _block(heading, lines)


def document_caption(data: ReceiptData) -> str:
    """Caption sent with the PDF document."""
    footer = _block(
        "📱 *Important:*",
        [
            "Save this PDF to your device",
            "Present the QR code when required",
            "Keep this document for your records",
        ],
    )
    return "\n\n".join(
        [
            HEADER,
            f"{_greeting(data)} 📄",
            details_block(data),
            instructions_block(data.operation_details.type),
            footer,
            SUPPORT_LINE,
            SIGNATURE,
        ]
    )


def probe_text(data: ReceiptData) -> str:
    """Short text sent first to check the channel before the document."""
    title = service_title(data.operation_details.type)
    return (
        f"{HEADER}\n\nDear {data.user_details.name}, your {title} payment "
        f"({data.operation_details.payment_reference}) is confirmed. "
        "Your confirmation document follows shortly."
    )


def fallback_text(data: ReceiptData, download_url: str) -> str:
    """Text carrying a download link when the document send gave up."""
    op = data.operation_details
    return "\n\n".join(
        [
            HEADER,
            _greeting(data),
            f"📄 *Download your confirmation document:*\n{download_url}",
            _block(
                "💳 *Payment Details:*",
                [
                    f"Amount: {naira(op.amount)}",
                    f"Reference: {op.payment_reference}",
                    "Status: Confirmed ✅",
                ],
            ),
            _block(
                "📱 *Important Instructions:*",
                [
                    "Click the link above to download your PDF",
                    "Save the document to your device",
                    "Present the QR code when required",
                    "Keep this document for your records",
                ],
            ),
            SUPPORT_LINE,
            SIGNATURE,
        ]
    )


def admin_failure_text(
    data: ReceiptData,
    error: str,
    download_url: str | None,
    attempts: int,
) -> str:
    """Alert for an operator when every delivery route failed."""
    user = data.user_details
    op = data.operation_details
    sections = [
        "🚨 *CRITICAL PDF DELIVERY FAILURE*",
        _block(
            "*User Details:*",
            [f"Name: {user.name}", f"Email: {user.email}", f"Phone: {user.phone}"],
        ),
        _block(
            "*Transaction Details:*",
            [
                f"Type: {op.type}",
                f"Amount: {naira(op.amount)}",
                f"Reference: {op.payment_reference}",
                f"Date: {op.date.isoformat()}",
            ],
        ),
        _block("*Error Details:*", [f"Message: {error}", f"Previous Attempts: {attempts}"]),
        "*Action Required:*\n"
        "Manual intervention needed to ensure user receives confirmation document.",
    ]
    if download_url:
        sections.append(f"*PDF Download Link:*\n{download_url}")
    return "\n\n".join(sections)

