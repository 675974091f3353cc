"""Protocols and result types for external gateways.

The orchestrator and delivery pipeline depend only on these protocols.
Concrete adapters (Paystack, WASender) and in-memory stubs implement them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol


class PaymentGatewayError(Exception):
    """Gateway unreachable or returned an unusable response."""


@dataclass(frozen=True)
class InitializeResult:
    """Result of starting a hosted checkout."""

    reference: str | None
    authorization_url: str | None
    access_code: str | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return bool(self.reference and self.authorization_url)


@dataclass(frozen=True)
class VerifyResult:
    """Result of querying a transaction."""

    reference: str
    status: str  # success/failed/abandoned/pending
    amount: int  # Major currency unit
    paid_at: datetime | None = None
    message: str = ""
    raw: dict[str, Any] = field(default_factory=dict)


class PaymentGateway(Protocol):
    """Protocol for payment gateway adapters."""

    provider_name: str

    async def initialize(
        self,
        *,
        amount: int,
        email: str,
        reference: str,
        callback_url: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> InitializeResult:
        """Start a checkout for `amount` (major unit) under our `reference`.

        Raises:
            PaymentGatewayError: transport failure or non-2xx response.
        """
        ...

    async def verify(self, reference: str) -> VerifyResult:
        """Look up the current status of a transaction."""
        ...

    def verify_signature(self, body: bytes, signature: str | None) -> bool:
        """Check a webhook body against its signature header."""
        ...


@dataclass(frozen=True)
class MessageResult:
    """Result of a successful message send."""

    message_id: str | None
    status: str = "sent"
    raw: dict[str, Any] = field(default_factory=dict)


class MessagingProvider(Protocol):
    """Protocol for WhatsApp messaging adapters.

    Failures are raised as DeliveryError with a classified ErrorType so the
    retry policy can tell transient problems from terminal ones.
    """

    provider_name: str

    async def send_text(self, *, to: str, text: str) -> MessageResult:
        ...

    async def send_document(
        self,
        *,
        to: str,
        text: str,
        document_url: str,
        file_name: str,
    ) -> MessageResult:
        ...
