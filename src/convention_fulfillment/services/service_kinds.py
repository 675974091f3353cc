"""Service kind table.

Each bookable kind maps to its record model, reference prefix, validator,
QR lifetime and receipt wording. Code elsewhere dispatches through this
table instead of branching on the kind name, so a new kind is one more
entry here.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable

from convention_fulfillment.models import (
    AccommodationBooking,
    BrochureOrder,
    ConventionRegistration,
    DinnerReservation,
    Donation,
    GoodwillMessage,
    as_utc,
)
from convention_fulfillment.services import validation
from convention_fulfillment.services.validation import ValidatedBooking

EVENT_NAME = "GOSA 2025"


class ServiceKind(str, Enum):
    """Bookable service kinds, in receipt lookup order."""

    CONVENTION = "convention"
    DINNER = "dinner"
    ACCOMMODATION = "accommodation"
    BROCHURE = "brochure"
    GOODWILL = "goodwill"
    DONATION = "donation"


class UnknownServiceKindError(LookupError):
    """Raised for a kind name that has no table entry."""

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"Unknown service type: {kind}")


def naira(amount: int) -> str:
    return f"₦{amount:,}"


def _convention_info(record: Any) -> str:
    info = [
        f"Registration ID: {record.id}",
        f"Amount: {naira(record.amount)}",
        f"Quantity: {record.quantity} person(s)",
    ]
    if record.persons:
        info.append(f"Additional Persons: {len(record.persons)}")
    return " | ".join(info)


def _dinner_info(record: Any) -> str:
    info = [
        f"Guests: {record.number_of_guests}",
        f"Total Amount: {naira(record.amount)}",
    ]
    names = [guest.get("name") for guest in record.guest_details if guest.get("name")]
    if names:
        info.append(f"Guest Names: {', '.join(names)}")
    dietary = [
        guest["dietaryRequirements"]
        for guest in record.guest_details
        if guest.get("dietaryRequirements")
    ]
    if dietary:
        info.append(f"Dietary Requirements: {', '.join(dietary)}")
    if record.special_requests:
        info.append(f"Special Requests: {record.special_requests}")
    return " | ".join(info)


def _accommodation_info(record: Any) -> str:
    info = [
        f"Type: {record.accommodation_type.capitalize()}",
        f"Check-in: {as_utc(record.check_in_date):%B %d, %Y}",
        f"Check-out: {as_utc(record.check_out_date):%B %d, %Y}",
        f"Nights: {record.nights}",
        f"Guests: {record.number_of_guests}",
        f"Confirmation Code: {record.confirmation_code}",
    ]
    if record.special_requests:
        info.append(f"Special Requests: {record.special_requests}")
    return " | ".join(info)


def _brochure_info(record: Any) -> str:
    info = [
        f"Type: {record.brochure_type.capitalize()}",
        f"Quantity: {record.quantity}",
        f"Total Amount: {naira(record.amount)}",
    ]
    names = [r.get("name") for r in record.recipient_details if r.get("name")]
    if names:
        info.append(f"Recipients: {', '.join(names)}")
    return " | ".join(info)


def _goodwill_info(record: Any) -> str:
    info = [
        f"Donation: {naira(record.amount)}",
        f"Status: {'Approved' if record.approved else 'Pending Approval'}",
        f"Anonymous: {'Yes' if record.anonymous else 'No'}",
    ]
    if record.attribution_name and not record.anonymous:
        info.append(f"Attribution: {record.attribution_name}")
    if record.message:
        message = record.message
        if len(message) > 100:
            message = message[:100] + "..."
        info.append(f'Message: "{message}"')
    return " | ".join(info)


def _donation_info(record: Any) -> str:
    info = [
        f"Amount: {naira(record.amount)}",
        f"Receipt: {record.receipt_number}",
        f"Anonymous: {'Yes' if record.anonymous else 'No'}",
    ]
    if record.on_behalf_of:
        info.append(f"On Behalf Of: {record.on_behalf_of}")
    if record.donor_name and not record.anonymous:
        info.append(f"Donor: {record.donor_name}")
    return " | ".join(info)


def _accommodation_qr_expiry(record: Any) -> datetime | None:
    return as_utc(record.check_out_date)


@dataclass(frozen=True)
class ServiceKindSpec:
    """Everything the pipeline needs to know about one service kind."""

    kind: ServiceKind
    model: type
    prefix: str
    title: str
    description: str
    qr_lifetime: timedelta
    validator: Callable[[dict[str, Any], datetime], ValidatedBooking]
    additional_info: Callable[[Any], str]
    # Explicit QR expiry derived from the record, used when in the future
    qr_expiry: Callable[[Any], datetime | None] | None = None
    requires_availability: bool = False

    @property
    def name(self) -> str:
        return self.kind.value


SERVICE_KINDS: dict[ServiceKind, ServiceKindSpec] = {
    ServiceKind.CONVENTION: ServiceKindSpec(
        kind=ServiceKind.CONVENTION,
        model=ConventionRegistration,
        prefix="CONV",
        title="Convention Registration",
        description=f"{EVENT_NAME} Convention Registration",
        qr_lifetime=timedelta(days=365),
        validator=validation.validate_convention,
        additional_info=_convention_info,
    ),
    ServiceKind.DINNER: ServiceKindSpec(
        kind=ServiceKind.DINNER,
        model=DinnerReservation,
        prefix="DINNER",
        title="Dinner Reservation",
        description=f"{EVENT_NAME} Convention Dinner Reservation",
        qr_lifetime=timedelta(days=30),
        validator=validation.validate_dinner,
        additional_info=_dinner_info,
    ),
    ServiceKind.ACCOMMODATION: ServiceKindSpec(
        kind=ServiceKind.ACCOMMODATION,
        model=AccommodationBooking,
        prefix="ACCOM",
        title="Accommodation Booking",
        description=f"{EVENT_NAME} Convention Accommodation Booking",
        qr_lifetime=timedelta(days=90),
        validator=validation.validate_accommodation,
        additional_info=_accommodation_info,
        qr_expiry=_accommodation_qr_expiry,
        requires_availability=True,
    ),
    ServiceKind.BROCHURE: ServiceKindSpec(
        kind=ServiceKind.BROCHURE,
        model=BrochureOrder,
        prefix="BROCH",
        title="Brochure Order",
        description=f"{EVENT_NAME} Convention Brochure Order",
        qr_lifetime=timedelta(days=90),
        validator=validation.validate_brochure,
        additional_info=_brochure_info,
    ),
    ServiceKind.GOODWILL: ServiceKindSpec(
        kind=ServiceKind.GOODWILL,
        model=GoodwillMessage,
        prefix="GOODWILL",
        title="Goodwill Message & Donation",
        description=f"{EVENT_NAME} Convention Goodwill Message & Donation",
        qr_lifetime=timedelta(days=365),
        validator=validation.validate_goodwill,
        additional_info=_goodwill_info,
    ),
    ServiceKind.DONATION: ServiceKindSpec(
        kind=ServiceKind.DONATION,
        model=Donation,
        prefix="DONATION",
        title="Donation",
        description=f"{EVENT_NAME} Convention Donation",
        qr_lifetime=timedelta(days=365),
        validator=validation.validate_donation,
        additional_info=_donation_info,
    ),
}


def get_kind_spec(kind: str | ServiceKind) -> ServiceKindSpec:
    """Look up a kind by name; raises UnknownServiceKindError."""
    try:
        return SERVICE_KINDS[ServiceKind(kind)]
    except ValueError:
        raise UnknownServiceKindError(str(kind))


def kind_names() -> list[str]:
    return [kind.value for kind in SERVICE_KINDS]
