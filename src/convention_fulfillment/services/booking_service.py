"""Booking orchestration: create, confirm, fail, list.

createBooking commits the pending record before the gateway is called, so
a webhook can never arrive for a reference the store does not hold yet.
Confirmation is idempotent by a conditional status update; QR issuance
and receipt delivery run only for the call that performed the transition.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from convention_fulfillment.delivery.pipeline import DeliveryResult, ReceiptDeliveryPipeline
from convention_fulfillment.events import (
    BookingCreated,
    BookingValidationFailed,
    EventEmitter,
    EventMetadata,
    PaymentConfirmed,
    PaymentFailed,
    PaymentInitializationFailed,
    QRCodesIssued,
    WebhookReferenceNotFound,
)
from convention_fulfillment.gateways.base import PaymentGateway, PaymentGatewayError
from convention_fulfillment.models import User, as_utc, utcnow
from convention_fulfillment.services.qr_service import QRCodeService
from convention_fulfillment.services.receipt_service import build_receipt_data
from convention_fulfillment.services.references import generate_payment_reference
from convention_fulfillment.services.service_kinds import (
    SERVICE_KINDS,
    ServiceKindSpec,
    get_kind_spec,
)
from convention_fulfillment.services.state_machine import BookingStateMachine, BookingStatus
from convention_fulfillment.services.user_service import (
    ensure_room_available,
    find_or_create_user,
)
from convention_fulfillment.services.validation import BookingValidationError

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class BookingNotFoundError(LookupError):
    """No service record holds the payment reference."""

    def __init__(self, payment_reference: str, kind: str | None = None):
        self.payment_reference = payment_reference
        self.kind = kind
        super().__init__(f"No booking found for payment reference {payment_reference}")


class PaymentInitializationError(Exception):
    """The gateway did not hand back a checkout link."""

    def __init__(self, payment_reference: str, reason: str):
        self.payment_reference = payment_reference
        self.reason = reason
        super().__init__("Failed to initialize payment")


@dataclass(frozen=True)
class BookingLink:
    payment_link: str
    payment_reference: str
    total_amount: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "paymentLink": self.payment_link,
            "paymentReference": self.payment_reference,
            "totalAmount": self.total_amount,
        }


@dataclass(frozen=True)
class ConfirmationResult:
    payment_reference: str
    service_kind: str
    already_confirmed: bool
    qr_codes_issued: int
    delivery: DeliveryResult | None = None


@dataclass(frozen=True)
class WebhookOutcome:
    """What the webhook handler did with one gateway event."""

    processed: bool
    action: str
    confirmation: ConfirmationResult | None = None


class BookingService:
    """Runs the booking lifecycle for every service kind."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: PaymentGateway,
        qr_service: QRCodeService,
        *,
        delivery: ReceiptDeliveryPipeline | None = None,
        emitter: EventEmitter | None = None,
        callback_url: str | None = None,
    ):
        self.session = session
        self.gateway = gateway
        self.qr_service = qr_service
        self.delivery = delivery
        self.emitter = emitter
        self.callback_url = callback_url

    def _emit(self, event: Any) -> None:
        if self.emitter is not None:
            self.emitter.emit(event)

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_booking(
        self,
        kind: str,
        body: dict[str, Any],
        now: datetime | None = None,
    ) -> BookingLink:
        """Validate, price, persist as pending, then start the checkout.

        Raises:
            UnknownServiceKindError: kind is not bookable.
            BookingValidationError: the body breaks a validation rule.
            PaymentInitializationError: the gateway gave no checkout link.
        """
        spec = get_kind_spec(kind)
        now = now or datetime.now(timezone.utc)

        try:
            booking = spec.validator(body, now)
            if spec.requires_availability:
                fields = booking.record_fields
                await ensure_room_available(
                    self.session,
                    fields["accommodation_type"],
                    fields["check_in_date"],
                    fields["check_out_date"],
                )
        except BookingValidationError as exc:
            self._emit(
                BookingValidationFailed(
                    metadata=EventMetadata.create(actor_type="user"),
                    service_kind=spec.name,
                    message=exc.message,
                    error_count=len(exc.errors),
                )
            )
            raise

        user = await find_or_create_user(
            self.session,
            full_name=booking.full_name,
            email=booking.email,
            phone_number=booking.phone_number,
        )
        reference = generate_payment_reference(
            spec.prefix, booking.phone_number, int(now.timestamp() * 1000)
        )
        record = spec.model(
            user_id=user.user_id,
            payment_reference=reference,
            amount=booking.amount,
            status=BookingStatus.PENDING.value,
            seat_holders=booking.holders,
            qr_codes=[],
            **booking.record_fields,
        )
        self.session.add(record)
        await self.session.commit()
        logger.info(
            "Created pending %s booking %s for %s (amount=%d)",
            spec.name,
            reference,
            booking.email,
            booking.amount,
        )
        self._emit(
            BookingCreated(
                metadata=EventMetadata.create(correlation_id=reference, actor_type="user"),
                service_kind=spec.name,
                payment_reference=reference,
                user_id=user.user_id,
                amount=booking.amount,
                seats=len(booking.holders),
            )
        )

        reason = None
        try:
            result = await self.gateway.initialize(
                amount=booking.amount,
                email=booking.email,
                reference=reference,
                callback_url=self.callback_url,
                metadata={
                    "serviceType": spec.name,
                    "userId": str(user.user_id),
                    "recordId": str(record.id),
                },
            )
            if not result.ok:
                reason = result.message or "gateway returned no checkout link"
        except PaymentGatewayError as exc:
            reason = str(exc)

        if reason is not None:
            await self._fail_record(spec, record, reason)
            self._emit(
                PaymentInitializationFailed(
                    metadata=EventMetadata.create(correlation_id=reference),
                    service_kind=spec.name,
                    payment_reference=reference,
                    reason=reason,
                )
            )
            raise PaymentInitializationError(reference, reason)

        return BookingLink(
            payment_link=result.authorization_url,
            payment_reference=reference,
            total_amount=booking.amount,
        )

    # =========================================================================
    # Lookup
    # =========================================================================

    async def find_by_reference(
        self, payment_reference: str
    ) -> tuple[ServiceKindSpec, Any] | None:
        """Exact reference match across every kind, in table order."""
        for spec in SERVICE_KINDS.values():
            record = await self._find_in_kind(spec, payment_reference)
            if record is not None:
                return spec, record
        return None

    async def _find_in_kind(self, spec: ServiceKindSpec, payment_reference: str) -> Any | None:
        result = await self.session.execute(
            select(spec.model).where(spec.model.payment_reference == payment_reference)
        )
        return result.scalar_one_or_none()

    async def get_booking(self, kind: str, payment_reference: str) -> Any:
        spec = get_kind_spec(kind)
        record = await self._find_in_kind(spec, payment_reference)
        if record is None:
            raise BookingNotFoundError(payment_reference, spec.name)
        return record

    async def list_bookings(
        self,
        kind: str,
        page: int = 1,
        limit: int = 10,
        confirmed: bool | None = None,
    ) -> tuple[list[Any], dict[str, Any]]:
        """One page of records, newest first, plus the pagination block."""
        spec = get_kind_spec(kind)
        model = spec.model
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        query = select(model)
        if confirmed is True:
            query = query.where(model.status == BookingStatus.CONFIRMED.value)
        elif confirmed is False:
            query = query.where(model.status != BookingStatus.CONFIRMED.value)

        total = await self.session.scalar(
            select(func.count()).select_from(query.subquery())
        ) or 0

        query = query.order_by(model.created_at.desc()).offset((page - 1) * limit).limit(limit)
        result = await self.session.execute(query)
        records = list(result.scalars().all())

        total_pages = math.ceil(total / limit) if total else 0
        pagination = {
            "currentPage": page,
            "totalPages": total_pages,
            "totalItems": total,
            "hasNext": page < total_pages,
            "hasPrev": page > 1,
            "limit": limit,
        }
        return records, pagination

    # =========================================================================
    # Confirmation
    # =========================================================================

    async def confirm_booking(
        self,
        payment_reference: str,
        now: datetime | None = None,
    ) -> ConfirmationResult:
        """Mark the record paid, issue its QR codes and deliver the receipt.

        Safe to call any number of times; only the first call issues codes
        and delivers. Delivery failures are reported in the result and never
        undo the confirmation.

        Raises:
            BookingNotFoundError: no record holds the reference.
        """
        found = await self.find_by_reference(payment_reference)
        if found is None:
            raise BookingNotFoundError(payment_reference)
        spec, record = found
        now = now or utcnow()

        if record.status == BookingStatus.CONFIRMED.value:
            return self._already_confirmed(spec, record)
        BookingStateMachine.validate_transition(record.status, BookingStatus.CONFIRMED.value)

        # Conditional update: concurrent deliveries of the same webhook race here
        model = spec.model
        claimed = await self.session.execute(
            update(model)
            .where(model.id == record.id, model.status != BookingStatus.CONFIRMED.value)
            .values(status=BookingStatus.CONFIRMED.value, confirmed_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            await self.session.rollback()
            await self.session.refresh(record)
            return self._already_confirmed(spec, record)

        record.status = BookingStatus.CONFIRMED.value
        record.confirmed_at = now
        record.qr_codes = self._issue_seats(spec, record, now)
        await self.session.commit()

        logger.info(
            "Confirmed %s booking %s with %d QR code(s)",
            spec.name,
            payment_reference,
            len(record.qr_codes),
        )
        self._emit(
            PaymentConfirmed(
                metadata=EventMetadata.create(
                    correlation_id=payment_reference, actor_type="webhook"
                ),
                service_kind=spec.name,
                payment_reference=payment_reference,
                amount=record.amount,
                already_confirmed=False,
            )
        )
        if record.qr_codes:
            self._emit(
                QRCodesIssued(
                    metadata=EventMetadata.create(correlation_id=payment_reference),
                    service_kind=spec.name,
                    payment_reference=payment_reference,
                    count=len(record.qr_codes),
                    valid_until=datetime.fromisoformat(record.qr_codes[0]["validUntil"]),
                )
            )

        delivery = await self._deliver(spec, record)
        return ConfirmationResult(
            payment_reference=payment_reference,
            service_kind=spec.name,
            already_confirmed=False,
            qr_codes_issued=len(record.qr_codes),
            delivery=delivery,
        )

    def _already_confirmed(self, spec: ServiceKindSpec, record: Any) -> ConfirmationResult:
        logger.info("Booking %s already confirmed, skipping", record.payment_reference)
        self._emit(
            PaymentConfirmed(
                metadata=EventMetadata.create(
                    correlation_id=record.payment_reference, actor_type="webhook"
                ),
                service_kind=spec.name,
                payment_reference=record.payment_reference,
                amount=record.amount,
                already_confirmed=True,
            )
        )
        return ConfirmationResult(
            payment_reference=record.payment_reference,
            service_kind=spec.name,
            already_confirmed=True,
            qr_codes_issued=0,
        )

    def _issue_seats(
        self, spec: ServiceKindSpec, record: Any, now: datetime
    ) -> list[dict[str, Any]]:
        """One QR code per seat holder."""
        valid_until = spec.qr_expiry(record) if spec.qr_expiry else None
        holders = record.seat_holders or [None]
        seats = []
        for index, holder in enumerate(holders, start=1):
            issued = self.qr_service.issue(
                spec.name,
                str(record.id),
                str(record.user_id),
                lifetime=spec.qr_lifetime,
                valid_until=valid_until,
                metadata={
                    "paymentReference": record.payment_reference,
                    "seat": index,
                    "holder": holder,
                },
                now=now,
            )
            seats.append(
                {
                    "seat": index,
                    "holder": holder,
                    "code": issued.code,
                    "image": issued.image,
                    "issuedAt": as_utc(now).isoformat(),
                    "validUntil": issued.payload.valid_until.isoformat(),
                }
            )
        return seats

    async def _deliver(self, spec: ServiceKindSpec, record: Any) -> DeliveryResult | None:
        if self.delivery is None:
            return None
        try:
            user = await self.session.get(User, record.user_id)
            if user is None:
                logger.error("No user %s for %s", record.user_id, record.payment_reference)
                return None
            result = await self.delivery.deliver(build_receipt_data(spec, record, user))
        except Exception:
            # Confirmation already committed; delivery problems stay here
            logger.exception("Receipt delivery crashed for %s", record.payment_reference)
            result = None

        record.delivery_status = "sent" if result is not None and result.success else "failed"
        if result is not None and result.success:
            record.delivered_at = utcnow()
        await self.session.commit()
        return result

    # =========================================================================
    # Failure
    # =========================================================================

    async def mark_failed(self, payment_reference: str, reason: str) -> bool:
        """Flip a pending record to failed. Returns False when nothing changed."""
        found = await self.find_by_reference(payment_reference)
        if found is None:
            raise BookingNotFoundError(payment_reference)
        spec, record = found
        if not BookingStateMachine.can_transition(record.status, BookingStatus.FAILED.value):
            logger.info(
                "Ignoring failure for %s in status %s", payment_reference, record.status
            )
            return False
        await self._fail_record(spec, record, reason)
        self._emit(
            PaymentFailed(
                metadata=EventMetadata.create(
                    correlation_id=payment_reference, actor_type="webhook"
                ),
                service_kind=spec.name,
                payment_reference=payment_reference,
                reason=reason,
            )
        )
        return True

    async def _fail_record(self, spec: ServiceKindSpec, record: Any, reason: str) -> None:
        BookingStateMachine.validate_transition(record.status, BookingStatus.FAILED.value)
        record.status = BookingStatus.FAILED.value
        await self.session.commit()
        logger.warning(
            "%s booking %s failed: %s", spec.name, record.payment_reference, reason
        )

    # =========================================================================
    # Gateway events
    # =========================================================================

    async def process_gateway_event(
        self, event: str | None, data: dict[str, Any]
    ) -> WebhookOutcome:
        """Apply one verified gateway event. Never raises for unknown references."""
        reference = data["reference"]
        status = data.get("status")

        if event == "charge.failed":
            try:
                changed = await self.mark_failed(
                    reference, data.get("gateway_response") or "charge failed"
                )
            except BookingNotFoundError:
                return self._unknown_reference(reference, event)
            return WebhookOutcome(processed=changed, action="failed")

        if event not in (None, "charge.success"):
            logger.info("Ignoring gateway event %s for %s", event, reference)
            return WebhookOutcome(processed=False, action="ignored")

        if status is None:
            try:
                verified = await self.gateway.verify(reference)
            except PaymentGatewayError as exc:
                logger.warning("Could not verify %s with gateway: %s", reference, exc)
                return WebhookOutcome(processed=False, action="unverified")
            status = verified.status

        if status != "success":
            logger.info("Ignoring %s with status %s", reference, status)
            return WebhookOutcome(processed=False, action="ignored")

        try:
            confirmation = await self.confirm_booking(reference)
        except BookingNotFoundError:
            return self._unknown_reference(reference, event or "charge.success")
        return WebhookOutcome(
            processed=not confirmation.already_confirmed,
            action="duplicate" if confirmation.already_confirmed else "confirmed",
            confirmation=confirmation,
        )

    def _unknown_reference(self, reference: str, event: str) -> WebhookOutcome:
        logger.warning("Webhook for unknown payment reference %s", reference)
        self._emit(
            WebhookReferenceNotFound(
                metadata=EventMetadata.create(correlation_id=reference, actor_type="webhook"),
                payment_reference=reference,
                gateway_event=event,
            )
        )
        return WebhookOutcome(processed=False, action="not_found")
