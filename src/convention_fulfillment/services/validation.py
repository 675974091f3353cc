"""Booking request validation and pricing, one validator per service kind.

Validators fail fast in a fixed order: required fields, then scalar ranges
and formats, then per-item detail checks. Item checks collect every
problem into one error list instead of stopping at the first.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Any

from convention_fulfillment.services import pricing
from convention_fulfillment.services.references import (
    generate_confirmation_code,
    generate_receipt_number,
)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
INTEGER_PATTERN = re.compile(r"^-?[0-9]+$")

MAX_GUESTS = 10
MAX_NAME_LENGTH = 100
MAX_DIETARY_LENGTH = 500
MAX_SPECIAL_REQUESTS_LENGTH = 1000
MAX_STAY_NIGHTS = 30
MAX_ADVANCE_BOOKING = timedelta(days=365)
MAX_BROCHURE_QUANTITY = 50
GOODWILL_MESSAGE_MIN = 10
GOODWILL_MESSAGE_MAX = 500


class BookingValidationError(Exception):
    """Client-caused booking error. Message is safe to return verbatim."""

    def __init__(self, message: str, errors: list[str] | None = None):
        self.message = message
        self.errors = errors or []
        super().__init__(message)


@dataclass(frozen=True)
class ValidatedBooking:
    """Normalized, priced booking ready to be persisted."""

    email: str
    full_name: str
    phone_number: str
    amount: int
    # One QR seat per entry, holding the display name for that seat
    holders: list[str]
    record_fields: dict[str, Any] = field(default_factory=dict)


def _missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _require(body: dict[str, Any], fields: list[str], message: str) -> None:
    if any(_missing(body.get(name)) for name in fields):
        raise BookingValidationError(message)


def _as_int(value: Any) -> int | None:
    """Integers, integral floats and digit strings; everything else is None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and INTEGER_PATTERN.match(value.strip()):
        return int(value.strip())
    return None


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _is_email(value: str) -> bool:
    return EMAIL_PATTERN.match(value.strip()) is not None


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _contact(body: dict[str, Any]) -> tuple[str, str, str]:
    email = str(body["email"]).strip().lower()
    if not _is_email(email):
        raise BookingValidationError("Invalid email format")
    return email, str(body["fullName"]).strip(), str(body["phoneNumber"]).strip()


def _check_special_requests(body: dict[str, Any]) -> str | None:
    requests = _text(body.get("specialRequests"))
    if requests and len(requests) > MAX_SPECIAL_REQUESTS_LENGTH:
        raise BookingValidationError(
            f"Special requests must be less than {MAX_SPECIAL_REQUESTS_LENGTH} characters"
        )
    return requests


def _guest_count(body: dict[str, Any]) -> int:
    count = _as_int(body.get("numberOfGuests"))
    if count is None or not 1 <= count <= MAX_GUESTS:
        raise BookingValidationError(f"Number of guests must be between 1 and {MAX_GUESTS}")
    return count


def _item_list(body: dict[str, Any], key: str, expected: int, message: str) -> list[Any]:
    items = body.get(key)
    if not isinstance(items, list) or len(items) != expected:
        raise BookingValidationError(message)
    return items


def validate_guest_details(guests: list[Any]) -> tuple[list[dict[str, Any]], list[str]]:
    """Check every guest and return (normalized guests, all errors)."""
    normalized: list[dict[str, Any]] = []
    errors: list[str] = []

    for index, guest in enumerate(guests, start=1):
        if not isinstance(guest, dict):
            errors.append(f"Guest {index}: Name is required")
            continue

        name = _text(guest.get("name"))
        if not name:
            errors.append(f"Guest {index}: Name is required")
        elif len(name) > MAX_NAME_LENGTH:
            errors.append(f"Guest {index}: Name must be less than {MAX_NAME_LENGTH} characters")

        email = _text(guest.get("email"))
        if email and not _is_email(email):
            errors.append(f"Guest {index}: Invalid email format")

        dietary = _text(guest.get("dietaryRequirements"))
        if dietary and len(dietary) > MAX_DIETARY_LENGTH:
            errors.append(
                f"Guest {index}: Dietary requirements are too long "
                f"(max {MAX_DIETARY_LENGTH} characters)"
            )

        normalized.append(
            {
                "name": name,
                "email": email,
                "phone": _text(guest.get("phone")),
                "dietaryRequirements": dietary,
            }
        )

    return normalized, errors


def validate_recipient_details(
    recipients: list[Any],
) -> tuple[list[dict[str, Any]], list[str]]:
    """Check every brochure recipient and return (normalized, all errors)."""
    normalized: list[dict[str, Any]] = []
    errors: list[str] = []

    for index, recipient in enumerate(recipients, start=1):
        if not isinstance(recipient, dict):
            errors.append(f"Recipient {index}: Name is required")
            continue

        name = _text(recipient.get("name"))
        if not name:
            errors.append(f"Recipient {index}: Name is required")
        elif len(name) > MAX_NAME_LENGTH:
            errors.append(
                f"Recipient {index}: Name must be less than {MAX_NAME_LENGTH} characters"
            )

        email = _text(recipient.get("email"))
        if email and not _is_email(email):
            errors.append(f"Recipient {index}: Invalid email format")

        normalized.append({"name": name, "email": email, "phone": _text(recipient.get("phone"))})

    return normalized, errors


def parse_iso_datetime(value: Any) -> datetime:
    """Parse an ISO date or datetime; naive values are taken as UTC."""
    if not isinstance(value, str):
        raise ValueError("not a string")
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


# =============================================================================
# Per-kind validators
# =============================================================================


def validate_dinner(body: dict[str, Any], now: datetime) -> ValidatedBooking:
    _require(
        body,
        ["email", "fullName", "phoneNumber", "numberOfGuests", "guestDetails"],
        "Please provide all required fields: email, fullName, phoneNumber, "
        "numberOfGuests, and guestDetails",
    )
    email, full_name, phone = _contact(body)
    guests = _guest_count(body)
    raw_guests = _item_list(
        body,
        "guestDetails",
        guests,
        "Number of guest details must match numberOfGuests",
    )
    guest_details, errors = validate_guest_details(raw_guests)
    if errors:
        raise BookingValidationError("Guest details validation failed", errors)
    special_requests = _check_special_requests(body)

    return ValidatedBooking(
        email=email,
        full_name=full_name,
        phone_number=phone,
        amount=pricing.dinner_total(guests),
        holders=[guest["name"] for guest in guest_details],
        record_fields={
            "number_of_guests": guests,
            "guest_details": guest_details,
            "special_requests": special_requests,
        },
    )


def validate_accommodation(body: dict[str, Any], now: datetime) -> ValidatedBooking:
    _require(
        body,
        [
            "email",
            "fullName",
            "phoneNumber",
            "accommodationType",
            "checkInDate",
            "checkOutDate",
            "numberOfGuests",
            "guestDetails",
        ],
        "Please provide all required fields: email, fullName, phoneNumber, "
        "accommodationType, checkInDate, checkOutDate, numberOfGuests, and guestDetails",
    )
    email, full_name, phone = _contact(body)

    accommodation_type = str(body["accommodationType"]).strip().lower()
    if accommodation_type not in pricing.ACCOMMODATION_RATES:
        raise BookingValidationError(
            "Invalid accommodation type. Must be 'standard', 'premium', or 'luxury'"
        )

    try:
        check_in = parse_iso_datetime(body["checkInDate"])
        check_out = parse_iso_datetime(body["checkOutDate"])
    except ValueError:
        raise BookingValidationError(
            "Invalid date format. Please provide valid ISO date strings"
        )

    start_of_today = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)
    if check_in < start_of_today:
        raise BookingValidationError("Check-in date cannot be in the past")
    if check_out <= check_in:
        raise BookingValidationError("Check-out date must be after check-in date")
    if check_in > now + MAX_ADVANCE_BOOKING:
        raise BookingValidationError("Check-in date cannot be more than 1 year in advance")
    if pricing.count_nights(check_in, check_out) > MAX_STAY_NIGHTS:
        raise BookingValidationError(f"Maximum stay is {MAX_STAY_NIGHTS} nights")

    guests = _guest_count(body)
    raw_guests = _item_list(
        body,
        "guestDetails",
        guests,
        "Number of guest details must match numberOfGuests",
    )
    guest_details, errors = validate_guest_details(raw_guests)
    if errors:
        raise BookingValidationError("Guest details validation failed", errors)
    special_requests = _check_special_requests(body)

    quote = pricing.accommodation_quote(accommodation_type, check_in, check_out, guests)
    return ValidatedBooking(
        email=email,
        full_name=full_name,
        phone_number=phone,
        amount=quote.total,
        holders=[full_name],
        record_fields={
            "accommodation_type": accommodation_type,
            "check_in_date": check_in,
            "check_out_date": check_out,
            "nights": quote.nights,
            "number_of_guests": guests,
            "guest_details": guest_details,
            "special_requests": special_requests,
            "confirmation_code": generate_confirmation_code(int(now.timestamp() * 1000)),
        },
    )


def validate_brochure(body: dict[str, Any], now: datetime) -> ValidatedBooking:
    _require(
        body,
        ["email", "fullName", "phoneNumber", "quantity", "brochureType", "recipientDetails"],
        "Please provide all required fields: email, fullName, phoneNumber, quantity, "
        "brochureType, and recipientDetails",
    )
    email, full_name, phone = _contact(body)

    brochure_type = str(body["brochureType"]).strip().lower()
    if brochure_type not in pricing.BROCHURE_PRICES:
        raise BookingValidationError("Invalid brochure type. Must be 'digital' or 'physical'")

    quantity = _as_int(body.get("quantity"))
    if quantity is None or not 1 <= quantity <= MAX_BROCHURE_QUANTITY:
        raise BookingValidationError(
            f"Quantity must be between 1 and {MAX_BROCHURE_QUANTITY}"
        )

    raw_recipients = _item_list(
        body,
        "recipientDetails",
        quantity,
        "Number of recipient details must match quantity",
    )
    recipients, errors = validate_recipient_details(raw_recipients)
    if errors:
        raise BookingValidationError("Recipient details validation failed", errors)

    return ValidatedBooking(
        email=email,
        full_name=full_name,
        phone_number=phone,
        amount=pricing.brochure_total(brochure_type, quantity),
        holders=[full_name],
        record_fields={
            "brochure_type": brochure_type,
            "quantity": quantity,
            "recipient_details": recipients,
        },
    )


def validate_convention(body: dict[str, Any], now: datetime) -> ValidatedBooking:
    _require(
        body,
        ["email", "fullName", "phoneNumber", "amount", "quantity"],
        "Please provide email, fullName, phoneNumber, quantity and amount",
    )
    email, full_name, phone = _contact(body)

    quantity = _as_int(body.get("quantity"))
    if quantity is None or quantity < 1:
        raise BookingValidationError("Quantity must be at least 1")
    amount = _as_int(body.get("amount"))
    if amount is None or amount <= 0:
        raise BookingValidationError("Amount must be a positive whole number")

    raw_persons = body.get("persons") or []
    if not isinstance(raw_persons, list):
        raise BookingValidationError("persons must be a list")
    persons: list[dict[str, Any]] = []
    errors: list[str] = []
    for index, person in enumerate(raw_persons, start=1):
        name = _text(person.get("name")) if isinstance(person, dict) else None
        if not name:
            errors.append(f"Person {index}: Name is required")
            continue
        persons.append(
            {
                "name": name,
                "email": _text(person.get("email")),
                "phoneNumber": _text(person.get("phoneNumber")),
            }
        )
    if errors:
        raise BookingValidationError("Person details validation failed", errors)

    return ValidatedBooking(
        email=email,
        full_name=full_name,
        phone_number=phone,
        amount=amount,
        holders=[full_name] + [person["name"] for person in persons],
        record_fields={"quantity": quantity, "persons": persons},
    )


def validate_goodwill(body: dict[str, Any], now: datetime) -> ValidatedBooking:
    _require(
        body,
        ["email", "fullName", "phoneNumber", "message", "donationAmount", "anonymous"],
        "Please provide all required fields: email, fullName, phoneNumber, message, "
        "donationAmount, and anonymous",
    )
    email, full_name, phone = _contact(body)

    message = str(body["message"]).strip()
    message_errors: list[str] = []
    if len(message) < GOODWILL_MESSAGE_MIN:
        message_errors.append(
            f"Message must be at least {GOODWILL_MESSAGE_MIN} characters long"
        )
    if len(message) > GOODWILL_MESSAGE_MAX:
        message_errors.append(f"Message cannot exceed {GOODWILL_MESSAGE_MAX} characters")
    if message_errors:
        raise BookingValidationError("Message validation failed", message_errors)

    amount = _as_int(body.get("donationAmount"))
    if amount is None or amount < pricing.MIN_GOODWILL_DONATION:
        raise BookingValidationError(
            "Donation amount validation failed",
            [f"Minimum donation amount is {pricing.MIN_GOODWILL_DONATION}"],
        )

    anonymous = _as_bool(body["anonymous"])
    attribution = _text(body.get("attributionName"))
    if attribution and len(attribution) > MAX_NAME_LENGTH:
        raise BookingValidationError(
            f"Attribution name cannot exceed {MAX_NAME_LENGTH} characters"
        )

    return ValidatedBooking(
        email=email,
        full_name=full_name,
        phone_number=phone,
        amount=amount,
        holders=[attribution or full_name],
        record_fields={
            "message": message,
            "attribution_name": attribution,
            "anonymous": anonymous,
        },
    )


def validate_donation(body: dict[str, Any], now: datetime) -> ValidatedBooking:
    _require(
        body,
        ["email", "fullName", "phoneNumber", "amount", "anonymous"],
        "Please provide all required fields: email, fullName, phoneNumber, amount, "
        "and anonymous",
    )
    email, full_name, phone = _contact(body)

    amount = _as_int(body.get("amount"))
    if amount is None or amount < pricing.MIN_DONATION:
        raise BookingValidationError(f"Minimum donation amount is {pricing.MIN_DONATION}")

    anonymous = _as_bool(body["anonymous"])
    donor_name = _text(body.get("donorName"))
    donor_email = _text(body.get("donorEmail"))
    if not anonymous and not donor_name:
        raise BookingValidationError("Donor name is required for non-anonymous donations")
    if donor_email and not _is_email(donor_email):
        raise BookingValidationError("Invalid donor email format")

    return ValidatedBooking(
        email=email,
        full_name=full_name,
        phone_number=phone,
        amount=amount,
        holders=[donor_name or full_name],
        record_fields={
            "donor_name": donor_name,
            "donor_email": donor_email,
            "donor_phone": _text(body.get("donorPhone")),
            "anonymous": anonymous,
            "on_behalf_of": _text(body.get("onBehalfOf")),
            "receipt_number": generate_receipt_number(now),
        },
    )
