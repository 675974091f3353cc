"""In-memory payment gateway for local development and testing."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from convention_fulfillment.gateways.base import (
    InitializeResult,
    PaymentGatewayError,
    VerifyResult,
)
from convention_fulfillment.gateways.paystack import compute_signature


class StubPaymentGateway:
    """Stub gateway that hands out fake checkout links.

    Webhook signatures use the same HMAC scheme as Paystack, so tests can
    sign bodies with `sign()` and exercise the real verification path.
    """

    provider_name = "paystack_stub"

    def __init__(
        self,
        secret_key: str = "stub-secret",
        fail_initialize: bool = False,
        raise_on_initialize: bool = False,
    ):
        self.secret_key = secret_key
        self.fail_initialize = fail_initialize
        self.raise_on_initialize = raise_on_initialize
        self.initialized: dict[str, dict[str, Any]] = {}
        self.statuses: dict[str, str] = {}

    async def initialize(
        self,
        *,
        amount: int,
        email: str,
        reference: str,
        callback_url: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> InitializeResult:
        if self.raise_on_initialize:
            raise PaymentGatewayError("stub gateway unavailable")
        if self.fail_initialize:
            return InitializeResult(reference=None, authorization_url=None, message="declined")

        access_code = uuid.uuid4().hex[:12]
        self.initialized[reference] = {
            "amount": amount,
            "email": email,
            "callback_url": callback_url,
            "metadata": metadata or {},
        }
        self.statuses.setdefault(reference, "pending")
        return InitializeResult(
            reference=reference,
            authorization_url=f"https://checkout.stub.local/{access_code}",
            access_code=access_code,
        )

    async def verify(self, reference: str) -> VerifyResult:
        if reference not in self.initialized:
            raise PaymentGatewayError(f"Transaction reference not found: {reference}")
        status = self.statuses.get(reference, "pending")
        return VerifyResult(
            reference=reference,
            status=status,
            amount=self.initialized[reference]["amount"],
            paid_at=datetime.now(timezone.utc) if status == "success" else None,
        )

    def mark_paid(self, reference: str) -> None:
        self.statuses[reference] = "success"

    def sign(self, body: bytes) -> str:
        return compute_signature(self.secret_key, body)

    def verify_signature(self, body: bytes, signature: str | None) -> bool:
        return bool(signature) and signature == self.sign(body)
