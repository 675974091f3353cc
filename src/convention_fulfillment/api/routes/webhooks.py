"""Payment gateway webhook."""

import json
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Header, Request, status

from convention_fulfillment.api.dependencies import DbSession, FulfillmentDep
from convention_fulfillment.api.errors import error_response
from convention_fulfillment.api.schemas import ErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhooks"])


@router.post(
    "/payment",
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def payment_webhook(
    request: Request,
    db: DbSession,
    fulfillment: FulfillmentDep,
    x_paystack_signature: Annotated[str | None, Header()] = None,
) -> Any:
    """Confirm or fail a booking from a signed gateway event.

    Always 200 once the payload is authentic and names a reference, so the
    gateway stops retrying even when receipt delivery failed. The one
    exception is a status-less event the gateway could not confirm: that
    answers 503 so the gateway redelivers it.
    """
    raw = await request.body()
    if not fulfillment.gateway.verify_signature(raw, x_paystack_signature):
        logger.warning("Rejected webhook with bad signature")
        return error_response(status.HTTP_401_UNAUTHORIZED, "Invalid signature")

    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid JSON payload")

    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, dict) or not data.get("reference"):
        return error_response(status.HTTP_400_BAD_REQUEST, "Failed!")

    outcome = await fulfillment.bookings(db).process_gateway_event(payload.get("event"), data)
    if outcome.action == "unverified":
        return error_response(
            status.HTTP_503_SERVICE_UNAVAILABLE, "Payment verification unavailable"
        )
    body: dict[str, Any] = {
        "success": True,
        "processed": outcome.processed,
        "action": outcome.action,
    }
    confirmation = outcome.confirmation
    if confirmation is not None:
        body["qrCodesIssued"] = confirmation.qr_codes_issued
        if confirmation.delivery is not None:
            body["delivery"] = confirmation.delivery.to_dict()
    return body
