"""Admin-triggered QR code regeneration with an audit trail."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from convention_fulfillment.delivery.pipeline import DeliveryResult, ReceiptDeliveryPipeline
from convention_fulfillment.events import EventEmitter, EventMetadata, QRCodeRegenerated
from convention_fulfillment.models import QRCodeHistory, User, utcnow
from convention_fulfillment.services.qr_service import QRCodeError, QRCodeService
from convention_fulfillment.services.receipt_service import build_receipt_data
from convention_fulfillment.services.service_kinds import (
    ServiceKind,
    get_kind_spec,
    kind_names,
)

logger = logging.getLogger(__name__)


class QRRegenerationError(Exception):
    """Regeneration refused; message is safe to show the admin."""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class RegenerationResult:
    payment_reference: str
    service_type: str
    old_qr_code: str
    new_qr_code: str
    new_qr_image: str
    history_id: UUID
    seats: int
    delivery: DeliveryResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "message": "QR code regenerated successfully",
            "oldQRCode": self.old_qr_code,
            "newQRCode": self.new_qr_code,
            "newQRImage": self.new_qr_image,
            "historyId": str(self.history_id),
            "seats": self.seats,
            "whatsappSent": bool(self.delivery and self.delivery.whatsapp_sent),
        }


class QRRegenerationService:
    """Replaces every seat code on a confirmed record and logs who did it."""

    def __init__(
        self,
        session: AsyncSession,
        qr_service: QRCodeService,
        *,
        delivery: ReceiptDeliveryPipeline | None = None,
        emitter: EventEmitter | None = None,
    ):
        self.session = session
        self.qr_service = qr_service
        self.delivery = delivery
        self.emitter = emitter

    async def regenerate(
        self,
        service_type: str | None,
        service_id: str | None,
        admin_id: str,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> RegenerationResult:
        if not service_type or not service_id:
            raise QRRegenerationError("serviceType and serviceId are required")
        if service_type not in kind_names():
            raise QRRegenerationError(
                f"Invalid service type. Must be one of: {', '.join(kind_names())}"
            )

        spec = get_kind_spec(ServiceKind(service_type))
        result = await self.session.execute(
            select(spec.model).where(spec.model.payment_reference == service_id)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise QRRegenerationError(
                f"{service_type} record not found with payment reference: {service_id}",
                status_code=404,
            )
        user = await self.session.get(User, record.user_id)
        if user is None:
            raise QRRegenerationError("User not found for this service record", status_code=404)
        if not record.confirmed:
            raise QRRegenerationError("Payment not confirmed")
        if not record.qr_codes:
            raise QRRegenerationError("No QR code to regenerate")

        now = now or utcnow()
        valid_until = spec.qr_expiry(record) if spec.qr_expiry else None
        seats = []
        history: list[QRCodeHistory] = []
        for seat in record.qr_codes:
            try:
                issued = self.qr_service.regenerate(
                    seat["code"], lifetime=spec.qr_lifetime, valid_until=valid_until, now=now
                )
            except QRCodeError as exc:
                raise QRRegenerationError(f"Stored QR code is unusable: {exc}") from exc
            history.append(
                QRCodeHistory(
                    user_id=record.user_id,
                    service_type=spec.name,
                    service_id=record.payment_reference,
                    old_qr_code=seat["code"],
                    new_qr_code=issued.code,
                    regenerated_by=admin_id,
                    reason=reason,
                )
            )
            seats.append(
                {
                    **seat,
                    "code": issued.code,
                    "image": issued.image,
                    "issuedAt": now.isoformat(),
                    "validUntil": issued.payload.valid_until.isoformat(),
                }
            )

        old_primary = record.qr_codes[0]["code"]
        record.qr_codes = seats
        self.session.add_all(history)
        await self.session.commit()

        logger.info(
            "Admin %s regenerated %d QR code(s) for %s %s",
            admin_id,
            len(seats),
            spec.name,
            record.payment_reference,
        )
        if self.emitter is not None:
            self.emitter.emit(
                QRCodeRegenerated(
                    metadata=EventMetadata.create(
                        correlation_id=record.payment_reference,
                        actor_id=admin_id,
                        actor_type="admin",
                    ),
                    service_kind=spec.name,
                    payment_reference=record.payment_reference,
                    history_id=history[0].history_id,
                    regenerated_by=admin_id,
                    reason=reason,
                )
            )

        delivery = None
        if self.delivery is not None:
            try:
                delivery = await self.delivery.deliver(build_receipt_data(spec, record, user))
            except Exception:
                logger.exception(
                    "Sending regenerated QR code failed for %s", record.payment_reference
                )

        return RegenerationResult(
            payment_reference=record.payment_reference,
            service_type=spec.name,
            old_qr_code=old_primary,
            new_qr_code=seats[0]["code"],
            new_qr_image=seats[0]["image"],
            history_id=history[0].history_id,
            seats=len(seats),
            delivery=delivery,
        )

    async def history(self, service_id: str) -> list[QRCodeHistory]:
        """Audit rows for one payment reference, newest first."""
        result = await self.session.execute(
            select(QRCodeHistory)
            .where(QRCodeHistory.service_id == service_id)
            .order_by(QRCodeHistory.created_at.desc())
        )
        return list(result.scalars().all())
