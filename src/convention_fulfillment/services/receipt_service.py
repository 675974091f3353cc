"""Receipt data lookup across all service record tables."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from convention_fulfillment.models import User, as_utc
from convention_fulfillment.services.service_kinds import SERVICE_KINDS, ServiceKindSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserDetails:
    name: str
    email: str
    phone: str
    registration_id: str


@dataclass(frozen=True)
class OperationDetails:
    type: str
    amount: int
    payment_reference: str
    date: datetime
    status: str
    description: str
    additional_info: str


@dataclass(frozen=True)
class ReceiptData:
    """Normalized view of one confirmed (or pending) service record."""

    user_details: UserDetails
    operation_details: OperationDetails
    qr_code_data: str | None
    qr_image: str | None = None

    @property
    def confirmed(self) -> bool:
        return self.operation_details.status == "confirmed"

    @property
    def file_name(self) -> str:
        op = self.operation_details
        return f"GOSA_2025_{op.type}_{op.payment_reference}.pdf"

    def to_dict(self) -> dict[str, Any]:
        op = self.operation_details
        return {
            "userDetails": {
                "name": self.user_details.name,
                "email": self.user_details.email,
                "phone": self.user_details.phone,
                "registrationId": self.user_details.registration_id,
            },
            "operationDetails": {
                "type": op.type,
                "amount": op.amount,
                "paymentReference": op.payment_reference,
                "date": op.date.isoformat(),
                "status": op.status,
                "description": op.description,
                "additionalInfo": op.additional_info,
            },
            "qrCodeData": self.qr_code_data,
        }


class ReceiptService:
    """Finds a service record by payment reference and normalizes it.

    Tables are searched in the fixed kind order; the first hit wins. A
    reference matches exactly, or as the prefix of a longer reference
    separated by an underscore.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_in_kind(self, spec: ServiceKindSpec, payment_reference: str) -> Any | None:
        model = spec.model
        result = await self.session.execute(
            select(model)
            .where(
                or_(
                    model.payment_reference == payment_reference,
                    model.payment_reference.startswith(
                        f"{payment_reference}_", autoescape=True
                    ),
                )
            )
            .order_by(model.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_record(self, payment_reference: str) -> tuple[ServiceKindSpec, Any] | None:
        """Return (kind, record) for the first table holding the reference."""
        for spec in SERVICE_KINDS.values():
            record = await self.find_in_kind(spec, payment_reference)
            if record is not None:
                return spec, record
        return None

    async def get_receipt_data(self, payment_reference: str) -> ReceiptData | None:
        found = await self.find_record(payment_reference)
        if found is None:
            return None

        spec, record = found
        user = await self.session.get(User, record.user_id)
        if user is None:
            logger.warning(
                "Record %s references missing user %s", record.payment_reference, record.user_id
            )
            return None
        return build_receipt_data(spec, record, user)


def build_receipt_data(spec: ServiceKindSpec, record: Any, user: User) -> ReceiptData:
    """Normalize a record and its owner into receipt form."""
    first_seat = record.qr_codes[0] if record.qr_codes else {}
    date = record.confirmed_at or record.created_at

    return ReceiptData(
        user_details=UserDetails(
            name=user.full_name,
            email=user.email,
            phone=user.phone_number,
            registration_id=str(record.id),
        ),
        operation_details=OperationDetails(
            type=spec.name,
            amount=record.amount,
            payment_reference=record.payment_reference,
            date=as_utc(date),
            status=record.status,
            description=spec.description,
            additional_info=spec.additional_info(record),
        ),
        qr_code_data=first_seat.get("code"),
        qr_image=first_seat.get("image"),
    )
