"""WASender WhatsApp messaging adapter."""

from __future__ import annotations

import logging
import re
from typing import Any
from urllib.parse import urlparse

import httpx

from convention_fulfillment.delivery.errors import DeliveryError, ErrorType
from convention_fulfillment.gateways.base import MessageResult

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{1,14}$")


def normalize_whatsapp_number(phone_number: str) -> str:
    """Strip formatting characters; keep a leading '+' when present."""
    cleaned = re.sub(r"[\s\-().]", "", phone_number or "")
    return cleaned


def validate_phone_number(phone_number: str) -> str:
    """Return the normalized number or raise a terminal DeliveryError."""
    cleaned = normalize_whatsapp_number(phone_number)
    if not PHONE_PATTERN.match(cleaned):
        raise DeliveryError(
            ErrorType.INVALID_PHONE_NUMBER,
            f"Invalid phone number format: {phone_number}",
        )
    return cleaned


class WASenderClient:
    """Sends WhatsApp text and document messages through WASender."""

    provider_name = "wasender"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://wasenderapi.com/api",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def _post(self, payload: dict[str, Any]) -> MessageResult:
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                resp = await client.post(
                    "/send-message",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.TimeoutException as exc:
            raise DeliveryError(ErrorType.TIMEOUT, f"WASender request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise DeliveryError(
                ErrorType.NETWORK_ERROR,
                f"Network error - Unable to connect to WASender API: {exc}",
            ) from exc

        return self._parse(resp)

    def _parse(self, resp: httpx.Response) -> MessageResult:
        try:
            body = resp.json()
        except ValueError:
            body = {}

        if resp.status_code in (200, 201):
            data = body.get("data") if isinstance(body.get("data"), dict) else body
            message_id = data.get("msgId") or data.get("messageId") or data.get("id")
            return MessageResult(
                message_id=str(message_id) if message_id is not None else None,
                status=data.get("status", "sent"),
                raw=body,
            )

        detail = body.get("message") or body.get("error") or resp.text
        if resp.status_code == 401:
            raise DeliveryError(
                ErrorType.AUTHENTICATION_FAILED,
                "Authentication failed - Invalid API key",
                status_code=401,
            )
        if resp.status_code == 429:
            raise DeliveryError(
                ErrorType.RATE_LIMIT_EXCEEDED,
                "Rate limit exceeded - Please try again later",
                status_code=429,
            )
        if resp.status_code == 400:
            raise DeliveryError(
                ErrorType.DATA_VALIDATION_FAILED,
                detail or "Bad request - Invalid message data",
                status_code=400,
            )
        if resp.status_code >= 500:
            raise DeliveryError(
                ErrorType.NETWORK_ERROR,
                f"WASender server error ({resp.status_code}): {detail}",
                status_code=resp.status_code,
            )
        raise DeliveryError(
            ErrorType.WHATSAPP_DELIVERY_FAILED,
            f"Unexpected response from WASender API ({resp.status_code}): {detail}",
            status_code=resp.status_code,
        )

    async def send_text(self, *, to: str, text: str) -> MessageResult:
        number = validate_phone_number(to)
        result = await self._post({"to": number, "text": text})
        logger.info("WhatsApp text sent to %s (id=%s)", number, result.message_id)
        return result

    async def send_document(
        self,
        *,
        to: str,
        text: str,
        document_url: str,
        file_name: str,
    ) -> MessageResult:
        number = validate_phone_number(to)
        parsed = urlparse(document_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise DeliveryError(ErrorType.DATA_VALIDATION_FAILED, "Invalid document URL format")

        result = await self._post(
            {
                "to": number,
                "text": text or "Please find your document attached.",
                "documentUrl": document_url,
                "fileName": file_name,
                "type": "document",
            }
        )
        logger.info(
            "WhatsApp document %s sent to %s (id=%s)", file_name, number, result.message_id
        )
        return result
