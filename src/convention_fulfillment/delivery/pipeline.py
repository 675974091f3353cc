"""Receipt delivery over WhatsApp.

Stages, each under its own retry policy:

1. probe: a short text confirming the channel is reachable
2. render: generate the PDF
3. document: send the PDF link as a WhatsApp document
4. fallback: if the document stage gives up, a text carrying the link
5. admin: if the fallback also fails, alert an operator

A failed probe skips everything after it. Delivery never raises; the
outcome is reported in a DeliveryResult and through domain events.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from convention_fulfillment.delivery import messages
from convention_fulfillment.delivery.errors import DeliveryError, ErrorType
from convention_fulfillment.delivery.renderer import render_pdf_async
from convention_fulfillment.delivery.retry import (
    FALLBACK_POLICY,
    PDF_GENERATION_POLICY,
    WHATSAPP_POLICY,
    RetryPolicy,
    classify_error,
    execute_with_retry,
)
from convention_fulfillment.events import (
    EventEmitter,
    EventMetadata,
    ReceiptDelivered,
    ReceiptDeliveryFailed,
)
from convention_fulfillment.gateways.base import MessagingProvider
from convention_fulfillment.gateways.wasender import validate_phone_number
from convention_fulfillment.security.download_tokens import SecureDownloadService
from convention_fulfillment.services.receipt_service import ReceiptData

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    success: bool = False
    pdf_generated: bool = False
    whatsapp_sent: bool = False
    error: str | None = None
    fallback_used: bool = False
    message_id: str | None = None
    retry_attempts: int = 0
    error_type: ErrorType | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "pdfGenerated": self.pdf_generated,
            "whatsappSent": self.whatsapp_sent,
            "error": self.error,
            "fallbackUsed": self.fallback_used,
            "messageId": self.message_id,
            "retryAttempts": self.retry_attempts,
            "errorType": self.error_type.value if self.error_type else None,
        }


@dataclass(frozen=True)
class DeliveryPolicies:
    probe: RetryPolicy = WHATSAPP_POLICY
    render: RetryPolicy = PDF_GENERATION_POLICY
    document: RetryPolicy = WHATSAPP_POLICY
    fallback: RetryPolicy = FALLBACK_POLICY


def _attempts(error: BaseException, policy: RetryPolicy) -> int:
    return getattr(error, "attempts", policy.max_attempts)


class ReceiptDeliveryPipeline:
    """Generates a receipt PDF and delivers it to the booker over WhatsApp."""

    def __init__(
        self,
        messenger: MessagingProvider,
        downloads: SecureDownloadService,
        public_base_url: str,
        *,
        emitter: EventEmitter | None = None,
        admin_phone_number: str | None = None,
        policies: DeliveryPolicies | None = None,
        renderer: Callable[[ReceiptData], Awaitable[bytes]] = render_pdf_async,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.messenger = messenger
        self.downloads = downloads
        self.public_base_url = public_base_url
        self.emitter = emitter
        self.admin_phone_number = admin_phone_number
        self.policies = policies or DeliveryPolicies()
        self._renderer = renderer
        self._sleep = sleep

    def _emit(self, event: Any) -> None:
        if self.emitter is not None:
            self.emitter.emit(event)

    async def deliver(self, data: ReceiptData) -> DeliveryResult:
        started = time.monotonic()
        ref = data.operation_details.payment_reference
        result = DeliveryResult()

        try:
            phone = validate_phone_number(data.user_details.phone)
        except DeliveryError as exc:
            return self._failed(data, result, exc, exc.error_type)

        # 1. probe
        try:
            probe = await execute_with_retry(
                lambda: self.messenger.send_text(to=phone, text=messages.probe_text(data)),
                self.policies.probe,
                operation_name=f"probe message for {ref}",
                failure_type=ErrorType.WHATSAPP_DELIVERY_FAILED,
                sleep=self._sleep,
            )
            result.retry_attempts += probe.attempts - 1
        except DeliveryError as exc:
            result.retry_attempts += _attempts(exc, self.policies.probe) - 1
            return self._failed(data, result, exc, exc.error_type)

        # 2. render
        try:
            rendered = await execute_with_retry(
                lambda: self._renderer(data),
                self.policies.render,
                operation_name=f"PDF generation for {ref}",
                failure_type=ErrorType.PDF_GENERATION_FAILED,
                sleep=self._sleep,
            )
            result.pdf_generated = True
            result.retry_attempts += rendered.attempts - 1
        except DeliveryError as exc:
            result.retry_attempts += _attempts(exc, self.policies.render) - 1
            result.error = f"PDF generation failed: {exc}"
            return self._failed(
                data, result, exc, ErrorType.PDF_GENERATION_FAILED, keep_error=True
            )

        # 3. document
        download_url = self.downloads.generate_secure_url(
            self.public_base_url,
            ref,
            user_email=data.user_details.email,
            user_phone=data.user_details.phone,
        )
        try:
            sent = await execute_with_retry(
                lambda: self.messenger.send_document(
                    to=phone,
                    text=messages.document_caption(data),
                    document_url=download_url,
                    file_name=data.file_name,
                ),
                self.policies.document,
                operation_name=f"document message for {ref}",
                failure_type=ErrorType.WHATSAPP_DELIVERY_FAILED,
                sleep=self._sleep,
            )
            result.retry_attempts += sent.attempts - 1
            result.message_id = sent.value.message_id
            result.whatsapp_sent = True
            result.success = True
            return self._delivered(data, result, started)
        except DeliveryError as exc:
            result.retry_attempts += _attempts(exc, self.policies.document) - 1
            logger.warning("Document delivery failed for %s, using fallback: %s", ref, exc)
            document_error = exc

        # 4. fallback
        try:
            fallback = await execute_with_retry(
                lambda: self.messenger.send_text(
                    to=phone, text=messages.fallback_text(data, download_url)
                ),
                self.policies.fallback,
                operation_name=f"fallback message for {ref}",
                failure_type=ErrorType.FALLBACK_DELIVERY_FAILED,
                sleep=self._sleep,
            )
            result.retry_attempts += fallback.attempts - 1
            result.message_id = fallback.value.message_id
            result.whatsapp_sent = True
            result.fallback_used = True
            result.success = True
            return self._delivered(data, result, started)
        except DeliveryError as exc:
            result.retry_attempts += _attempts(exc, self.policies.fallback) - 1
            result.fallback_used = True
            result.error = f"{document_error}; fallback failed: {exc}"

        # 5. admin
        await self._notify_admin(data, result.error, download_url, result.retry_attempts)
        return self._failed(
            data, result, document_error, ErrorType.FALLBACK_DELIVERY_FAILED, keep_error=True
        )

    async def _notify_admin(
        self,
        data: ReceiptData,
        error: str | None,
        download_url: str | None,
        attempts: int,
    ) -> None:
        ref = data.operation_details.payment_reference
        logger.critical(
            "Receipt delivery failed on every route for %s (%s): %s",
            ref,
            data.user_details.email,
            error,
        )
        if not self.admin_phone_number:
            return
        try:
            await self.messenger.send_text(
                to=self.admin_phone_number,
                text=messages.admin_failure_text(data, error or "unknown", download_url, attempts),
            )
        except DeliveryError as exc:
            logger.error("Admin notification for %s failed: %s", ref, exc)

    def _delivered(
        self, data: ReceiptData, result: DeliveryResult, started: float
    ) -> DeliveryResult:
        ref = data.operation_details.payment_reference
        logger.info(
            "Delivered receipt for %s (fallback=%s, retries=%d)",
            ref,
            result.fallback_used,
            result.retry_attempts,
        )
        self._emit(
            ReceiptDelivered(
                metadata=EventMetadata.create(correlation_id=ref),
                service_kind=data.operation_details.type,
                payment_reference=ref,
                message_id=result.message_id,
                fallback_used=result.fallback_used,
                retry_attempts=result.retry_attempts,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
        )
        return result

    def _failed(
        self,
        data: ReceiptData,
        result: DeliveryResult,
        error: BaseException,
        error_type: ErrorType | None = None,
        keep_error: bool = False,
    ) -> DeliveryResult:
        ref = data.operation_details.payment_reference
        result.success = False
        result.error_type = error_type or classify_error(error)
        if not keep_error or result.error is None:
            result.error = str(error)
        logger.error(
            "Receipt delivery failed for %s [%s]: %s", ref, result.error_type.value, result.error
        )
        self._emit(
            ReceiptDeliveryFailed(
                metadata=EventMetadata.create(correlation_id=ref),
                service_kind=data.operation_details.type,
                payment_reference=ref,
                error_type=result.error_type.value,
                error=result.error,
                pdf_generated=result.pdf_generated,
                retry_attempts=result.retry_attempts,
            )
        )
        return result
