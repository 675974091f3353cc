"""Fulfillment domain events package."""

from convention_fulfillment.events.emitter import EventEmitter, log_event
from convention_fulfillment.events.types import (
    # Base
    DomainEvent,
    EventCategory,
    EventMetadata,
    # Booking Events
    BookingCreated,
    BookingValidationFailed,
    # Payment Events
    PaymentConfirmed,
    PaymentFailed,
    PaymentInitializationFailed,
    WebhookReferenceNotFound,
    # QR Events
    QRCodeRegenerated,
    QRCodesIssued,
    # Delivery Events
    ReceiptDelivered,
    ReceiptDeliveryFailed,
    # Download Events
    DownloadRejected,
    DownloadServed,
)

__all__ = [
    "BookingCreated",
    "BookingValidationFailed",
    "DomainEvent",
    "DownloadRejected",
    "DownloadServed",
    "EventCategory",
    "EventEmitter",
    "EventMetadata",
    "PaymentConfirmed",
    "PaymentFailed",
    "PaymentInitializationFailed",
    "QRCodeRegenerated",
    "QRCodesIssued",
    "ReceiptDelivered",
    "ReceiptDeliveryFailed",
    "WebhookReferenceNotFound",
    "log_event",
]
