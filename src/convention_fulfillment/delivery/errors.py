"""Delivery error taxonomy shared by the messaging client and retry policy."""

from __future__ import annotations

from enum import Enum


class ErrorType(str, Enum):
    """Classified failure causes for fulfillment side effects."""

    PDF_GENERATION_FAILED = "PDF_GENERATION_FAILED"
    WHATSAPP_DELIVERY_FAILED = "WHATSAPP_DELIVERY_FAILED"
    FALLBACK_DELIVERY_FAILED = "FALLBACK_DELIVERY_FAILED"
    DATA_VALIDATION_FAILED = "DATA_VALIDATION_FAILED"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INVALID_PHONE_NUMBER = "INVALID_PHONE_NUMBER"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    UNKNOWN = "UNKNOWN"


# Worth another attempt; anything else is terminal
RETRYABLE_ERROR_TYPES = frozenset(
    {
        ErrorType.PDF_GENERATION_FAILED,
        ErrorType.WHATSAPP_DELIVERY_FAILED,
        ErrorType.FALLBACK_DELIVERY_FAILED,
        ErrorType.NETWORK_ERROR,
        ErrorType.TIMEOUT,
        ErrorType.RATE_LIMIT_EXCEEDED,
    }
)


class DeliveryError(Exception):
    """A classified failure from rendering or messaging."""

    def __init__(
        self,
        error_type: ErrorType,
        message: str,
        status_code: int | None = None,
        retryable: bool | None = None,
    ):
        self.error_type = error_type
        self.message = message
        self.status_code = status_code
        if retryable is None:
            retryable = error_type in RETRYABLE_ERROR_TYPES
            if status_code is not None and 400 <= status_code < 500 and status_code != 429:
                retryable = False
        self.retryable = retryable
        super().__init__(message)
