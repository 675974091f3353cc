"""QR code validation endpoint."""

from typing import Any

from fastapi import APIRouter, status

from convention_fulfillment.api.dependencies import FulfillmentDep
from convention_fulfillment.api.errors import error_response
from convention_fulfillment.api.schemas import (
    ErrorResponse,
    QRValidateRequest,
    QRValidateResponse,
)

router = APIRouter(prefix="/qr", tags=["qr"])


@router.post(
    "/validate",
    response_model=QRValidateResponse,
    responses={400: {"model": ErrorResponse}},
)
async def validate_qr(
    fulfillment: FulfillmentDep,
    payload: QRValidateRequest,
) -> Any:
    """Check a scanned code's signature and expiry."""
    if not payload.qr_data:
        return error_response(status.HTTP_400_BAD_REQUEST, "qrData is required")

    result = fulfillment.qr_service.validate(payload.qr_data)
    return QRValidateResponse(
        success=result.valid,
        valid=result.valid,
        data=result.data.to_json_dict() if result.data is not None else None,
        error=result.error,
    )
