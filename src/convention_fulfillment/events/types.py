"""Events raised while bookings move from checkout to delivered receipt.

Each event is a frozen dataclass carrying `EventMetadata`, whose correlation
id is the payment reference. They feed logs and metrics only; the service
record row stays the source of truth for a booking.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, ClassVar
from uuid import UUID, uuid4


class EventCategory(str, Enum):
    """Which part of fulfillment raised the event."""

    BOOKING = "booking"
    PAYMENT = "payment"
    QR = "qr"
    DELIVERY = "delivery"
    DOWNLOAD = "download"


@dataclass(frozen=True)
class EventMetadata:
    """When an event happened and which booking it belongs to."""

    event_id: UUID
    timestamp: datetime
    correlation_id: str  # payment reference, or a fresh uuid
    actor_id: str | None
    actor_type: str  # system, webhook or admin
    source_service: str
    version: int = 1

    @classmethod
    def create(
        cls,
        correlation_id: str | None = None,
        actor_id: str | None = None,
        actor_type: str = "system",
        source_service: str = "fulfillment",
    ) -> EventMetadata:
        return cls(
            event_id=uuid4(),
            timestamp=datetime.now(timezone.utc),
            correlation_id=correlation_id or str(uuid4()),
            actor_id=actor_id,
            actor_type=actor_type,
            source_service=source_service,
        )


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    return value


@dataclass(frozen=True)
class DomainEvent:
    """Something that happened to a booking, a code or a receipt.

    Subclasses set `category` and add their payload fields. The class name
    doubles as the event type that subscribers filter on.
    """

    category: ClassVar[EventCategory]

    metadata: EventMetadata

    @property
    def event_type(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        return {
            **_jsonable(asdict(self)),
            "event_type": self.event_type,
            "category": self.category.value,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


# Booking Events


@dataclass(frozen=True)
class BookingCreated(DomainEvent):
    """A pending service record was written and a checkout link issued."""

    service_kind: str
    payment_reference: str
    user_id: UUID
    amount: int
    seats: int

    category: ClassVar[EventCategory] = EventCategory.BOOKING


@dataclass(frozen=True)
class BookingValidationFailed(DomainEvent):
    """A booking request was rejected before anything was persisted."""

    service_kind: str
    message: str
    error_count: int

    category: ClassVar[EventCategory] = EventCategory.BOOKING


# Payment Events


@dataclass(frozen=True)
class PaymentInitializationFailed(DomainEvent):
    """The gateway did not return a checkout link. The record was marked failed."""

    service_kind: str
    payment_reference: str
    reason: str

    category: ClassVar[EventCategory] = EventCategory.PAYMENT


@dataclass(frozen=True)
class PaymentConfirmed(DomainEvent):
    """Webhook confirmed payment; the record moved to confirmed."""

    service_kind: str
    payment_reference: str
    amount: int
    already_confirmed: bool

    category: ClassVar[EventCategory] = EventCategory.PAYMENT


@dataclass(frozen=True)
class PaymentFailed(DomainEvent):
    """Gateway reported the charge as failed."""

    service_kind: str
    payment_reference: str
    reason: str

    category: ClassVar[EventCategory] = EventCategory.PAYMENT


@dataclass(frozen=True)
class WebhookReferenceNotFound(DomainEvent):
    """A webhook referenced no known service record. Acknowledged anyway."""

    payment_reference: str
    gateway_event: str

    category: ClassVar[EventCategory] = EventCategory.PAYMENT


# QR Events


@dataclass(frozen=True)
class QRCodesIssued(DomainEvent):
    """QR codes were issued for every seat of a confirmed record."""

    service_kind: str
    payment_reference: str
    count: int
    valid_until: datetime

    category: ClassVar[EventCategory] = EventCategory.QR


@dataclass(frozen=True)
class QRCodeRegenerated(DomainEvent):
    """An admin replaced a QR code. Audit row id is carried for lookup."""

    service_kind: str
    payment_reference: str
    history_id: UUID
    regenerated_by: str
    reason: str | None

    category: ClassVar[EventCategory] = EventCategory.QR


# Delivery Events


@dataclass(frozen=True)
class ReceiptDelivered(DomainEvent):
    """Receipt reached the payer, as a document or via the fallback link."""

    service_kind: str
    payment_reference: str
    message_id: str | None
    fallback_used: bool
    retry_attempts: int
    duration_ms: int

    category: ClassVar[EventCategory] = EventCategory.DELIVERY


@dataclass(frozen=True)
class ReceiptDeliveryFailed(DomainEvent):
    """Every delivery path failed. Confirmation stands regardless."""

    service_kind: str
    payment_reference: str
    error_type: str
    error: str
    pdf_generated: bool
    retry_attempts: int

    category: ClassVar[EventCategory] = EventCategory.DELIVERY


# Download Events


@dataclass(frozen=True)
class DownloadServed(DomainEvent):
    """A receipt was rendered and returned to a client."""

    payment_reference: str
    client_ip: str
    output_format: str
    secure: bool
    duration_ms: int
    size_bytes: int

    category: ClassVar[EventCategory] = EventCategory.DOWNLOAD


@dataclass(frozen=True)
class DownloadRejected(DomainEvent):
    """A download request was refused.

    reason is one of: validation, rate_limit, token, not_found,
    not_confirmed, generation, internal.
    """

    payment_reference: str | None
    client_ip: str
    reason: str
    status_code: int
    detail: str

    category: ClassVar[EventCategory] = EventCategory.DOWNLOAD
