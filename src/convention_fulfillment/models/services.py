"""Service record models, one table per bookable service kind.

Every table shares the same fulfillment columns (payment reference, amount,
status, QR codes, check-in bookkeeping). The payment reference is the only
join key used by the webhook, the QR service and the receipt pipeline.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Union
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from convention_fulfillment.models.base import Base, TimestampMixin


class ServiceRecordMixin(TimestampMixin):
    """Columns common to every service record."""

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("app_user.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    payment_reference: Mapped[str] = mapped_column(
        String(128), nullable=False, unique=True, index=True
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Display name per seat, fixed at booking time
    seat_holders: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    # One entry per seat: {"seat", "holder", "code", "image", "issuedAt", "validUntil"}
    qr_codes: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    delivery_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Owned by the check-in desk; never written by fulfillment code
    checked_in: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    checked_in_at: Mapped[datetime | None] = mapped_column(nullable=True)
    checked_out_at: Mapped[datetime | None] = mapped_column(nullable=True)
    collected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    collected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    check_in_history: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )

    @property
    def confirmed(self) -> bool:
        """True once the webhook has confirmed payment."""
        return self.status == "confirmed"


class ConventionRegistration(Base, ServiceRecordMixin):
    """Convention attendance, optionally covering additional persons."""

    __tablename__ = "convention_registration"

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    persons: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="convention_registration_quantity_check"),
    )


class DinnerReservation(Base, ServiceRecordMixin):
    """Convention dinner reservation for one or more guests."""

    __tablename__ = "dinner_reservation"

    number_of_guests: Mapped[int] = mapped_column(Integer, nullable=False)
    guest_details: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    special_requests: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "number_of_guests BETWEEN 1 AND 10",
            name="dinner_reservation_guests_check",
        ),
    )


class AccommodationBooking(Base, ServiceRecordMixin):
    """Hotel room booking for a date range."""

    __tablename__ = "accommodation_booking"

    accommodation_type: Mapped[str] = mapped_column(String(16), nullable=False)
    check_in_date: Mapped[datetime] = mapped_column(nullable=False)
    check_out_date: Mapped[datetime] = mapped_column(nullable=False)
    nights: Mapped[int] = mapped_column(Integer, nullable=False)
    number_of_guests: Mapped[int] = mapped_column(Integer, nullable=False)
    guest_details: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    special_requests: Mapped[str | None] = mapped_column(Text, nullable=True)
    confirmation_code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)

    __table_args__ = (
        CheckConstraint(
            "accommodation_type IN ('standard', 'premium', 'luxury')",
            name="accommodation_booking_type_check",
        ),
        CheckConstraint(
            "check_out_date > check_in_date",
            name="accommodation_booking_dates_check",
        ),
    )


class BrochureOrder(Base, ServiceRecordMixin):
    """Convention brochure order, digital or printed."""

    __tablename__ = "brochure_order"

    brochure_type: Mapped[str] = mapped_column(String(16), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    recipient_details: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "brochure_type IN ('digital', 'physical')",
            name="brochure_order_type_check",
        ),
        CheckConstraint("quantity BETWEEN 1 AND 50", name="brochure_order_quantity_check"),
    )


class GoodwillMessage(Base, ServiceRecordMixin):
    """Goodwill message accompanied by a donation. Published after approval."""

    __tablename__ = "goodwill_message"

    message: Mapped[str] = mapped_column(Text, nullable=False)
    attribution_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    anonymous: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class Donation(Base, ServiceRecordMixin):
    """Plain donation with an issued receipt number."""

    __tablename__ = "donation"

    donor_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    donor_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    donor_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    anonymous: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    on_behalf_of: Mapped[str | None] = mapped_column(String(200), nullable=True)
    receipt_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)


ServiceRecord = Union[
    ConventionRegistration,
    DinnerReservation,
    AccommodationBooking,
    BrochureOrder,
    GoodwillMessage,
    Donation,
]
