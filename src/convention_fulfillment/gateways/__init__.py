"""External gateway adapters: payments and WhatsApp messaging."""

from convention_fulfillment.gateways.base import (
    InitializeResult,
    MessageResult,
    MessagingProvider,
    PaymentGateway,
    PaymentGatewayError,
    VerifyResult,
)
from convention_fulfillment.gateways.paystack import PaystackGateway, compute_signature
from convention_fulfillment.gateways.paystack_stub import StubPaymentGateway
from convention_fulfillment.gateways.wasender import WASenderClient, validate_phone_number
from convention_fulfillment.gateways.wasender_stub import SentMessage, StubMessagingProvider

__all__ = [
    "InitializeResult",
    "MessageResult",
    "MessagingProvider",
    "PaymentGateway",
    "PaymentGatewayError",
    "PaystackGateway",
    "SentMessage",
    "StubMessagingProvider",
    "StubPaymentGateway",
    "VerifyResult",
    "WASenderClient",
    "compute_signature",
    "validate_phone_number",
]
