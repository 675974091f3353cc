"""SQLAlchemy ORM models."""

from convention_fulfillment.models.base import Base, TimestampMixin, as_utc, utcnow
from convention_fulfillment.models.qr import QRCodeHistory
from convention_fulfillment.models.services import (
    AccommodationBooking,
    BrochureOrder,
    ConventionRegistration,
    DinnerReservation,
    Donation,
    GoodwillMessage,
    ServiceRecord,
    ServiceRecordMixin,
)
from convention_fulfillment.models.user import User

__all__ = [
    "AccommodationBooking",
    "Base",
    "BrochureOrder",
    "ConventionRegistration",
    "DinnerReservation",
    "Donation",
    "GoodwillMessage",
    "QRCodeHistory",
    "ServiceRecord",
    "ServiceRecordMixin",
    "TimestampMixin",
    "User",
    "as_utc",
    "utcnow",
]
