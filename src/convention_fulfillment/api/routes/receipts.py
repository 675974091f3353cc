"""Receipt download, secure links and re-delivery."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Query, status
from fastapi.responses import Response

from convention_fulfillment.api.dependencies import ClientIP, DbSession, FulfillmentDep
from convention_fulfillment.api.errors import error_response
from convention_fulfillment.api.schemas import (
    DeliveryResponse,
    DownloadStatsResponse,
    ErrorResponse,
    MessageResponse,
    ReferenceRequest,
    SecureLinkData,
    SecureLinkRequest,
    SecureLinkResponse,
)
from convention_fulfillment.services.download_service import DownloadError
from convention_fulfillment.services.receipt_service import ReceiptService
from convention_fulfillment.services.references import is_valid_payment_reference

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/receipt", tags=["receipts"])

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
}

_ERRORS: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def _download_error(exc: DownloadError) -> Response:
    headers = dict(SECURITY_HEADERS)
    if exc.retry_after is not None:
        headers["Retry-After"] = str(exc.retry_after)
    return error_response(
        exc.status_code,
        exc.message,
        error=exc.code,
        retry_after=exc.retry_after,
        headers=headers,
    )


@router.get(
    "/download",
    response_class=Response,
    responses={200: {"content": {"application/pdf": {}, "text/html": {}}}, **_ERRORS},
)
async def download_receipt(
    db: DbSession,
    fulfillment: FulfillmentDep,
    client_ip: ClientIP,
    ref: str | None = None,
    token: str | None = None,
    output: Annotated[str, Query(alias="format")] = "pdf",
) -> Response:
    """Rendered receipt for a confirmed booking, as PDF or HTML."""
    try:
        result = await fulfillment.receipts(db).serve(
            ref, client_ip, token=token, output_format=output
        )
    except DownloadError as exc:
        return _download_error(exc)

    headers = {
        **SECURITY_HEADERS,
        **result.headers,
        "Content-Disposition": f'attachment; filename="{result.file_name}"',
    }
    return Response(content=result.content, media_type=result.media_type, headers=headers)


@router.post(
    "/secure-link",
    response_model=SecureLinkResponse,
    responses=_ERRORS,
)
async def create_secure_link(
    db: DbSession,
    fulfillment: FulfillmentDep,
    payload: SecureLinkRequest,
) -> Any:
    """Mint a signed, expiring, download-limited link."""
    try:
        link = await fulfillment.receipts(db).create_secure_link(
            fulfillment.settings.public_base_url,
            payload.payment_reference,
            user_email=payload.user_email,
            user_phone=payload.user_phone,
            expires_in=payload.expires_in,
            max_downloads=payload.max_downloads,
            allowed_ips=payload.allowed_ips,
        )
    except DownloadError as exc:
        return _download_error(exc)
    return SecureLinkResponse(data=SecureLinkData(**link))


@router.post(
    "/resend",
    response_model=DeliveryResponse,
    responses={**_ERRORS, 502: {"model": DeliveryResponse}},
)
async def resend_receipt(
    db: DbSession,
    fulfillment: FulfillmentDep,
    payload: ReferenceRequest,
) -> Any:
    """Run WhatsApp delivery again for a confirmed booking."""
    ref = payload.payment_reference
    if not ref:
        return error_response(
            status.HTTP_400_BAD_REQUEST,
            "Payment reference is required",
            error="MISSING_PAYMENT_REFERENCE",
        )
    data = await ReceiptService(db).get_receipt_data(ref)
    if data is None:
        return error_response(
            status.HTTP_404_NOT_FOUND,
            "Payment record not found",
            error="PAYMENT_REFERENCE_NOT_FOUND",
        )
    if not data.confirmed:
        return error_response(
            status.HTTP_400_BAD_REQUEST,
            "Payment not confirmed",
            error="PAYMENT_NOT_CONFIRMED",
        )

    result = await fulfillment.delivery.deliver(data)
    response = DeliveryResponse(
        success=result.success,
        message="Receipt sent successfully" if result.success else "Receipt delivery failed",
        data=result.to_dict(),
    )
    if not result.success:
        return Response(
            content=response.model_dump_json(),
            status_code=status.HTTP_502_BAD_GATEWAY,
            media_type="application/json",
        )
    return response


@router.get(
    "/stats",
    response_model=DownloadStatsResponse,
    responses={400: {"model": ErrorResponse}},
)
async def download_stats(
    fulfillment: FulfillmentDep,
    ref: str | None = None,
) -> Any:
    """Access history for one payment reference."""
    if not ref or not is_valid_payment_reference(ref):
        return error_response(
            status.HTTP_400_BAD_REQUEST,
            "Invalid payment reference format",
            error="INVALID_PAYMENT_REFERENCE",
        )
    return DownloadStatsResponse(data=fulfillment.downloads.get_download_stats(ref))


@router.post(
    "/revoke",
    response_model=MessageResponse,
    responses={400: {"model": ErrorResponse}},
)
async def revoke_tokens(
    fulfillment: FulfillmentDep,
    payload: ReferenceRequest,
) -> Any:
    """Invalidate every download token issued so far for a reference."""
    ref = payload.payment_reference
    if not ref or not is_valid_payment_reference(ref):
        return error_response(
            status.HTTP_400_BAD_REQUEST,
            "Invalid payment reference format",
            error="INVALID_PAYMENT_REFERENCE",
        )
    fulfillment.downloads.revoke(ref)
    logger.info("Download tokens revoked for %s", ref)
    return MessageResponse(message="Download tokens revoked")
