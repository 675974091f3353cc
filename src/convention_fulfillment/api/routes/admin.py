"""Admin endpoints: QR regeneration and its audit trail."""

from typing import Annotated, Any

from fastapi import APIRouter, Query, status

from convention_fulfillment.api.dependencies import DbSession, FulfillmentDep
from convention_fulfillment.api.errors import error_response
from convention_fulfillment.api.schemas import (
    ErrorResponse,
    QRHistoryEntry,
    QRHistoryResponse,
    QRRegenerateRequest,
)
from convention_fulfillment.services.qr_regeneration import QRRegenerationError

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post(
    "/qr/regenerate",
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def regenerate_qr(
    db: DbSession,
    fulfillment: FulfillmentDep,
    payload: QRRegenerateRequest,
) -> Any:
    """Replace a confirmed booking's QR codes and re-send the receipt."""
    if not payload.admin_id:
        return error_response(status.HTTP_400_BAD_REQUEST, "adminId is required")
    try:
        result = await fulfillment.regeneration(db).regenerate(
            payload.service_type,
            payload.service_id,
            payload.admin_id,
            payload.reason,
        )
    except QRRegenerationError as exc:
        return error_response(exc.status_code, exc.message)
    return result.to_dict()


@router.get(
    "/qr/history",
    response_model=QRHistoryResponse,
    responses={400: {"model": ErrorResponse}},
)
async def qr_history(
    db: DbSession,
    fulfillment: FulfillmentDep,
    service_id: Annotated[str | None, Query(alias="serviceId")] = None,
) -> Any:
    """Regeneration audit trail for one payment reference."""
    if not service_id:
        return error_response(status.HTTP_400_BAD_REQUEST, "serviceId is required")
    rows = await fulfillment.regeneration(db).history(service_id)
    return QRHistoryResponse(data=[QRHistoryEntry.model_validate(row) for row in rows])
