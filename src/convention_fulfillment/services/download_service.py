"""Receipt download with rate limiting and optional signed-token access.

Checks run cheapest first and stop at the first failure: reference
format, per-IP rate limit, token, record lookup, confirmation, render.
Every outcome is reported as a DownloadServed or DownloadRejected event.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from convention_fulfillment.delivery.errors import DeliveryError
from convention_fulfillment.delivery.renderer import render_html, render_pdf_async
from convention_fulfillment.delivery.retry import (
    PDF_GENERATION_POLICY,
    RetryPolicy,
    execute_with_retry,
)
from convention_fulfillment.events import (
    DownloadRejected,
    DownloadServed,
    EventEmitter,
    EventMetadata,
)
from convention_fulfillment.security.download_tokens import AccessDecision, SecureDownloadService
from convention_fulfillment.security.rate_limit import RateLimiter
from convention_fulfillment.services.receipt_service import ReceiptData, ReceiptService
from convention_fulfillment.services.references import is_valid_payment_reference

logger = logging.getLogger(__name__)

PUBLIC_CACHE = "public, max-age=3600"
PRIVATE_CACHE = "private, no-cache, no-store, must-revalidate"
NO_CACHE = "no-cache, no-store, must-revalidate"


class DownloadError(Exception):
    """A refused download, carrying its HTTP mapping."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        reason: str,
        retry_after: int | None = None,
    ):
        self.status_code = status_code
        self.code = code
        self.message = message
        self.reason = reason
        self.retry_after = retry_after
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": False, "error": self.code, "message": self.message}
        if self.retry_after is not None:
            body["retryAfter"] = self.retry_after
        return body


@dataclass(frozen=True)
class DownloadResponse:
    content: bytes
    media_type: str
    file_name: str
    headers: dict[str, str] = field(default_factory=dict)


class ReceiptDownloadService:
    """Serves rendered receipts behind the download security checks."""

    def __init__(
        self,
        session: AsyncSession,
        rate_limiter: RateLimiter,
        downloads: SecureDownloadService,
        *,
        emitter: EventEmitter | None = None,
        render_policy: RetryPolicy = PDF_GENERATION_POLICY,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self.session = session
        self.rate_limiter = rate_limiter
        self.downloads = downloads
        self.emitter = emitter
        self.render_policy = render_policy
        self._sleep = sleep

    def _emit(self, event: Any) -> None:
        if self.emitter is not None:
            self.emitter.emit(event)

    async def serve(
        self,
        payment_reference: str | None,
        client_ip: str,
        *,
        token: str | None = None,
        output_format: str = "pdf",
    ) -> DownloadResponse:
        """Render the receipt for a reference, or raise DownloadError."""
        started = time.monotonic()
        try:
            response = await self._serve(
                payment_reference, client_ip, token, output_format
            )
        except DownloadError as exc:
            self._reject(payment_reference, client_ip, exc)
            raise
        except Exception as exc:
            logger.exception("Unexpected error serving receipt %s", payment_reference)
            error = DownloadError(
                500, "INTERNAL_SERVER_ERROR", "Internal server error", "internal"
            )
            self._reject(payment_reference, client_ip, error)
            raise error from exc

        duration_ms = int((time.monotonic() - started) * 1000)
        self._emit(
            DownloadServed(
                metadata=EventMetadata.create(
                    correlation_id=payment_reference, actor_type="user"
                ),
                payment_reference=payment_reference or "",
                client_ip=client_ip,
                output_format=output_format,
                secure=token is not None,
                duration_ms=duration_ms,
                size_bytes=len(response.content),
            )
        )
        logger.info(
            "Served %s receipt %s to %s in %dms",
            output_format,
            payment_reference,
            client_ip,
            duration_ms,
        )
        return response

    async def _serve(
        self,
        payment_reference: str | None,
        client_ip: str,
        token: str | None,
        output_format: str,
    ) -> DownloadResponse:
        if not payment_reference:
            raise DownloadError(
                400, "MISSING_PAYMENT_REFERENCE", "Payment reference is required", "validation"
            )
        if not is_valid_payment_reference(payment_reference):
            raise DownloadError(
                400,
                "INVALID_PAYMENT_REFERENCE",
                "Invalid payment reference format",
                "validation",
            )
        if output_format not in ("pdf", "html"):
            raise DownloadError(
                400, "INVALID_FORMAT", "Format must be 'pdf' or 'html'", "validation"
            )

        limit = self.rate_limiter.hit(client_ip)
        if not limit.allowed:
            raise DownloadError(
                429,
                "RATE_LIMIT_EXCEEDED",
                f"Too many requests. Please try again in {limit.retry_after_seconds} seconds",
                "rate_limit",
                retry_after=limit.retry_after_seconds,
            )

        decision = None
        if token is not None:
            decision = self.downloads.authorize(token, client_ip, payment_reference)
            if not decision.allowed:
                raise self._token_error(decision)

        try:
            response = await self._render(payment_reference, output_format, decision)
        except Exception:
            if decision is not None:
                self.downloads.release(decision)
            raise

        self.downloads.record_access(payment_reference, client_ip, success=True)
        return response

    def _token_error(self, decision: AccessDecision) -> DownloadError:
        reason = decision.reason or "Invalid or expired token"
        if decision.status_code == 403:
            return DownloadError(403, "ACCESS_DENIED", reason, "token")
        if decision.status_code == 429:
            return DownloadError(429, "RATE_LIMIT_EXCEEDED", reason, "token")
        return DownloadError(401, "INVALID_TOKEN", reason, "token")

    async def _render(
        self,
        payment_reference: str,
        output_format: str,
        decision: AccessDecision | None,
    ) -> DownloadResponse:
        data = await ReceiptService(self.session).get_receipt_data(payment_reference)
        if data is None:
            raise DownloadError(
                404, "PAYMENT_REFERENCE_NOT_FOUND", "Payment record not found", "not_found"
            )
        if not data.confirmed:
            raise DownloadError(
                400, "PAYMENT_NOT_CONFIRMED", "Payment not confirmed", "not_confirmed"
            )

        if output_format == "html":
            return DownloadResponse(
                content=render_html(data).encode("utf-8"),
                media_type="text/html; charset=utf-8",
                file_name=data.file_name.replace(".pdf", ".html"),
                headers={"Cache-Control": NO_CACHE},
            )

        pdf = await self._render_pdf(data)
        headers = {"Cache-Control": PRIVATE_CACHE if decision is not None else PUBLIC_CACHE}
        if decision is not None and decision.remaining_downloads is not None:
            headers["X-Downloads-Remaining"] = str(decision.remaining_downloads)
        return DownloadResponse(
            content=pdf,
            media_type="application/pdf",
            file_name=data.file_name,
            headers=headers,
        )

    async def _render_pdf(self, data: ReceiptData) -> bytes:
        kwargs: dict[str, Any] = {}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        try:
            result = await execute_with_retry(
                lambda: render_pdf_async(data),
                self.render_policy,
                operation_name=f"PDF download for {data.operation_details.payment_reference}",
                **kwargs,
            )
        except DeliveryError as exc:
            raise DownloadError(
                503, "PDF_GENERATION_FAILED", "Failed to generate PDF", "generation"
            ) from exc
        return result.value

    def _reject(self, payment_reference: str | None, client_ip: str, error: DownloadError) -> None:
        logger.warning(
            "Download rejected for %s from %s: %s (%s)",
            payment_reference,
            client_ip,
            error.code,
            error.message,
        )
        self._emit(
            DownloadRejected(
                metadata=EventMetadata.create(
                    correlation_id=payment_reference, actor_type="user"
                ),
                payment_reference=payment_reference,
                client_ip=client_ip,
                reason=error.reason,
                status_code=error.status_code,
                detail=error.message,
            )
        )

    async def create_secure_link(
        self,
        base_url: str,
        payment_reference: str | None,
        *,
        user_email: str | None = None,
        user_phone: str | None = None,
        expires_in: int | None = None,
        max_downloads: int | None = None,
        allowed_ips: list[str] | None = None,
    ) -> dict[str, Any]:
        """Mint a token URL for a confirmed record. `expires_in` is in seconds."""
        if not payment_reference:
            raise DownloadError(
                400, "MISSING_PAYMENT_REFERENCE", "Payment reference is required", "validation"
            )
        if not is_valid_payment_reference(payment_reference):
            raise DownloadError(
                400,
                "INVALID_PAYMENT_REFERENCE",
                "Invalid payment reference format",
                "validation",
            )
        data = await ReceiptService(self.session).get_receipt_data(payment_reference)
        if data is None:
            raise DownloadError(
                404, "PAYMENT_REFERENCE_NOT_FOUND", "Payment record not found", "not_found"
            )
        if not data.confirmed:
            raise DownloadError(
                400, "PAYMENT_NOT_CONFIRMED", "Payment not confirmed", "not_confirmed"
            )

        lifetime = timedelta(seconds=expires_in) if expires_in else None
        url = self.downloads.generate_secure_url(
            base_url,
            payment_reference,
            user_email=user_email,
            user_phone=user_phone,
            expires_in=lifetime,
            max_downloads=max_downloads,
            allowed_ips=allowed_ips,
        )
        config = self.downloads.config
        effective = min(lifetime or config.default_expiry, config.max_expiry)
        return {
            "secureURL": url,
            "expiresIn": int(effective.total_seconds()),
            "maxDownloads": max_downloads or config.default_max_downloads,
        }
