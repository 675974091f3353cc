"""Fulfillment facade: the one place collaborators are wired together.

Usage:
    fulfillment = Fulfillment.from_settings(get_settings())

    # Per-request services share the facade's gateways and stores
    async with session_factory() as session:
        link = await fulfillment.bookings(session).create_booking("dinner", body)

The facade owns everything that must outlive a request: gateway and
messaging clients, the QR signer, rate-limit and quota stores, the event
emitter and the metrics recorder. Services that need a database session
are built per call.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from convention_fulfillment.config import Settings
from convention_fulfillment.delivery.pipeline import DeliveryPolicies, ReceiptDeliveryPipeline
from convention_fulfillment.delivery.retry import PDF_GENERATION_POLICY, RetryPolicy
from convention_fulfillment.events import EventEmitter, log_event
from convention_fulfillment.gateways.base import MessagingProvider, PaymentGateway
from convention_fulfillment.gateways.paystack import PaystackGateway
from convention_fulfillment.gateways.paystack_stub import StubPaymentGateway
from convention_fulfillment.gateways.wasender import WASenderClient
from convention_fulfillment.gateways.wasender_stub import StubMessagingProvider
from convention_fulfillment.metrics import MetricsRecorder
from convention_fulfillment.security.download_tokens import SecureDownloadService
from convention_fulfillment.security.rate_limit import (
    InMemoryQuotaStore,
    InMemoryRateLimiter,
    RateLimiter,
)
from convention_fulfillment.services.booking_service import BookingService
from convention_fulfillment.services.download_service import ReceiptDownloadService
from convention_fulfillment.services.qr_regeneration import QRRegenerationService
from convention_fulfillment.services.qr_service import QRCodeService

logger = logging.getLogger(__name__)


@dataclass
class Fulfillment:
    """Long-lived collaborators plus factories for per-session services."""

    settings: Settings
    gateway: PaymentGateway
    messenger: MessagingProvider
    qr_service: QRCodeService
    downloads: SecureDownloadService
    rate_limiter: RateLimiter
    emitter: EventEmitter = field(default_factory=EventEmitter)
    metrics: MetricsRecorder = field(default_factory=MetricsRecorder)
    delivery_policies: DeliveryPolicies = field(default_factory=DeliveryPolicies)
    render_policy: RetryPolicy = PDF_GENERATION_POLICY
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def __post_init__(self) -> None:
        self.emitter.on_all(self.metrics)
        self.emitter.on_all(log_event)

    @classmethod
    def from_settings(cls, settings: Settings) -> Fulfillment:
        """Real clients where credentials are configured, stubs otherwise."""
        gateway: PaymentGateway
        if settings.paystack_secret_key:
            gateway = PaystackGateway(
                settings.paystack_secret_key,
                base_url=settings.paystack_base_url,
                timeout=settings.http_timeout_seconds,
            )
        else:
            logger.warning("PAYSTACK_SECRET_KEY not set, using stub payment gateway")
            gateway = StubPaymentGateway()

        messenger: MessagingProvider
        if settings.wasender_api_key:
            messenger = WASenderClient(
                settings.wasender_api_key,
                base_url=settings.wasender_base_url,
                timeout=settings.http_timeout_seconds,
            )
        else:
            logger.warning("WASENDER_API_KEY not set, using stub messaging provider")
            messenger = StubMessagingProvider()

        return cls(
            settings=settings,
            gateway=gateway,
            messenger=messenger,
            qr_service=QRCodeService(settings.qr_secret_key),
            downloads=SecureDownloadService(settings.pdf_secret_key, InMemoryQuotaStore()),
            rate_limiter=InMemoryRateLimiter(
                max_requests=settings.rate_limit_max_requests,
                window_seconds=settings.rate_limit_window_seconds,
            ),
        )

    @property
    def delivery(self) -> ReceiptDeliveryPipeline:
        return ReceiptDeliveryPipeline(
            self.messenger,
            self.downloads,
            self.settings.public_base_url,
            emitter=self.emitter,
            admin_phone_number=self.settings.admin_phone_number,
            policies=self.delivery_policies,
            sleep=self.sleep,
        )

    def bookings(self, session: AsyncSession) -> BookingService:
        return BookingService(
            session,
            self.gateway,
            self.qr_service,
            delivery=self.delivery,
            emitter=self.emitter,
            callback_url=self.settings.payment_callback_url,
        )

    def regeneration(self, session: AsyncSession) -> QRRegenerationService:
        return QRRegenerationService(
            session,
            self.qr_service,
            delivery=self.delivery,
            emitter=self.emitter,
        )

    def receipts(self, session: AsyncSession) -> ReceiptDownloadService:
        return ReceiptDownloadService(
            session,
            self.rate_limiter,
            self.downloads,
            emitter=self.emitter,
            render_policy=self.render_policy,
            sleep=self.sleep,
        )

    def sweep(self) -> int:
        """Drop idle rate-limit windows and stale download history."""
        removed = self.rate_limiter.cleanup() + self.downloads.cleanup()
        if removed:
            logger.debug("Swept %d stale limiter and download entries", removed)
        return removed
