"""Pydantic schemas for API request/response models."""

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake-case attributes, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ============================================================================
# Envelopes
# ============================================================================


class ErrorResponse(BaseModel):
    """Error envelope shared by every route."""

    success: bool = False
    message: str
    error: str | None = None
    errors: list[str] | None = None
    retry_after: int | None = Field(default=None, serialization_alias="retryAfter")


class MessageResponse(BaseModel):
    success: bool = True
    message: str


# ============================================================================
# Bookings
# ============================================================================


class BookingLinkData(CamelModel):
    payment_link: str
    payment_reference: str
    total_amount: int


class BookingLinkResponse(BaseModel):
    success: bool = True
    data: BookingLinkData


class Pagination(CamelModel):
    current_page: int
    total_pages: int
    total_items: int
    has_next: bool
    has_prev: bool
    limit: int


class BookingListResponse(BaseModel):
    success: bool = True
    data: list[dict[str, Any]]
    pagination: Pagination


class BookingResponse(BaseModel):
    success: bool = True
    data: dict[str, Any]


def serialize_record(record: Any) -> dict[str, Any]:
    """Service record as a camelCase JSON-safe dict."""
    data = {to_camel(key): value for key, value in record.to_dict().items()}
    data["confirmed"] = record.confirmed
    return jsonable_encoder(data)


# ============================================================================
# Receipts
# ============================================================================


class SecureLinkRequest(CamelModel):
    """Body for minting a token-gated download link."""

    payment_reference: str | None = None
    user_email: str | None = None
    user_phone: str | None = None
    expires_in: int | None = Field(default=None, ge=60)
    max_downloads: int | None = Field(default=None, ge=1, le=100)
    allowed_ips: list[str] | None = Field(default=None, alias="allowedIPs")


class SecureLinkData(BaseModel):
    secureURL: str
    expiresIn: int
    maxDownloads: int


class SecureLinkResponse(BaseModel):
    success: bool = True
    data: SecureLinkData


class ReferenceRequest(CamelModel):
    payment_reference: str | None = None


class DeliveryResponse(BaseModel):
    success: bool
    message: str
    data: dict[str, Any]


class DownloadStatsResponse(BaseModel):
    success: bool = True
    data: dict[str, Any]


# ============================================================================
# QR codes
# ============================================================================


class QRValidateRequest(CamelModel):
    qr_data: str | None = None


class QRValidateResponse(BaseModel):
    success: bool
    valid: bool
    data: dict[str, Any] | None = None
    error: str | None = None


class QRRegenerateRequest(CamelModel):
    service_type: str | None = None
    service_id: str | None = None
    admin_id: str | None = None
    reason: str | None = Field(default=None, max_length=500)


class QRHistoryEntry(CamelModel):
    history_id: UUID
    user_id: UUID
    service_type: str
    service_id: str
    old_qr_code: str
    new_qr_code: str
    regenerated_by: str
    reason: str | None = None
    created_at: datetime


class QRHistoryResponse(BaseModel):
    success: bool = True
    data: list[QRHistoryEntry]
