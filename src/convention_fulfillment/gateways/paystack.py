"""Paystack payment gateway adapter."""

from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import datetime
from typing import Any

import httpx

from convention_fulfillment.gateways.base import (
    InitializeResult,
    PaymentGatewayError,
    VerifyResult,
)

logger = logging.getLogger(__name__)

# Paystack amounts are in kobo
MINOR_UNITS = 100


def compute_signature(secret_key: str, body: bytes) -> str:
    """Hex HMAC-SHA512 of a webhook body, as sent in x-paystack-signature."""
    return hmac.new(secret_key.encode("utf-8"), body, hashlib.sha512).hexdigest()


class PaystackGateway:
    """Hosted checkout through the Paystack transactions API."""

    provider_name = "paystack"

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._secret_key = secret_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._secret_key}",
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            async with self._client() as client:
                resp = await client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.HTTPError as exc:
            raise PaymentGatewayError(f"Paystack request failed: {exc}") from exc

        if resp.status_code >= 400:
            raise PaymentGatewayError(
                f"Paystack {path} failed ({resp.status_code}): {resp.text}"
            )

        body = resp.json()
        if not body.get("status"):
            raise PaymentGatewayError(f"Paystack {path} failed: {body.get('message')}")
        return body.get("data") or {}

    async def initialize(
        self,
        *,
        amount: int,
        email: str,
        reference: str,
        callback_url: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> InitializeResult:
        payload: dict[str, Any] = {
            "email": email,
            "amount": amount * MINOR_UNITS,
            "reference": reference,
            "metadata": metadata or {},
        }
        if callback_url:
            payload["callback_url"] = callback_url

        data = await self._request("POST", "/transaction/initialize", json=payload)
        logger.info("Paystack checkout initialized for %s", reference)
        return InitializeResult(
            reference=data.get("reference"),
            authorization_url=data.get("authorization_url"),
            access_code=data.get("access_code"),
        )

    async def verify(self, reference: str) -> VerifyResult:
        data = await self._request("GET", f"/transaction/verify/{reference}")
        paid_at = data.get("paid_at") or data.get("paidAt")
        return VerifyResult(
            reference=data.get("reference", reference),
            status=data.get("status", "unknown"),
            amount=int(data.get("amount", 0)) // MINOR_UNITS,
            paid_at=datetime.fromisoformat(paid_at.replace("Z", "+00:00")) if paid_at else None,
            message=data.get("gateway_response", ""),
            raw=data,
        )

    def verify_signature(self, body: bytes, signature: str | None) -> bool:
        if not signature or not self._secret_key:
            return False
        return hmac.compare_digest(compute_signature(self._secret_key, body), signature)
