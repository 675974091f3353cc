"""Booking endpoints, one set shared by every service kind."""

import json
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Path, Query, Request, status

from convention_fulfillment.api.dependencies import DbSession, FulfillmentDep
from convention_fulfillment.api.errors import error_response
from convention_fulfillment.api.schemas import (
    BookingLinkData,
    BookingLinkResponse,
    BookingListResponse,
    BookingResponse,
    ErrorResponse,
    Pagination,
    serialize_record,
)
from convention_fulfillment.services.booking_service import (
    BookingNotFoundError,
    PaymentInitializationError,
)
from convention_fulfillment.services.service_kinds import UnknownServiceKindError
from convention_fulfillment.services.validation import BookingValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/booking", tags=["bookings"])

ServiceKindPath = Annotated[str, Path(description="Service kind, e.g. dinner")]


@router.post(
    "/{kind}",
    response_model=BookingLinkResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def create_booking(
    request: Request,
    db: DbSession,
    fulfillment: FulfillmentDep,
    kind: ServiceKindPath,
) -> Any:
    """Validate and price a booking, then return the checkout link."""
    try:
        body = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Malformed booking body for %s", kind)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Something went wrong")
    if not isinstance(body, dict):
        return error_response(status.HTTP_400_BAD_REQUEST, "Request body must be a JSON object")

    try:
        link = await fulfillment.bookings(db).create_booking(kind, body)
    except UnknownServiceKindError as exc:
        return error_response(status.HTTP_404_NOT_FOUND, str(exc))
    except BookingValidationError as exc:
        return error_response(status.HTTP_400_BAD_REQUEST, exc.message, errors=exc.errors)
    except PaymentInitializationError as exc:
        logger.error("Payment initialization failed for %s: %s", exc.payment_reference, exc.reason)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))

    return BookingLinkResponse(
        data=BookingLinkData(
            payment_link=link.payment_link,
            payment_reference=link.payment_reference,
            total_amount=link.total_amount,
        )
    )


@router.get(
    "/{kind}",
    response_model=BookingListResponse,
    responses={404: {"model": ErrorResponse}},
)
async def list_bookings(
    db: DbSession,
    fulfillment: FulfillmentDep,
    kind: ServiceKindPath,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
    confirmed: bool | None = None,
) -> Any:
    """List bookings of one kind, newest first."""
    try:
        records, pagination = await fulfillment.bookings(db).list_bookings(
            kind, page=page, limit=limit, confirmed=confirmed
        )
    except UnknownServiceKindError as exc:
        return error_response(status.HTTP_404_NOT_FOUND, str(exc))

    return BookingListResponse(
        data=[serialize_record(record) for record in records],
        pagination=Pagination.model_validate(pagination),
    )


@router.get(
    "/{kind}/{payment_reference}",
    response_model=BookingResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_booking(
    db: DbSession,
    fulfillment: FulfillmentDep,
    kind: ServiceKindPath,
    payment_reference: Annotated[str, Path()],
) -> Any:
    """Fetch one booking by payment reference."""
    try:
        record = await fulfillment.bookings(db).get_booking(kind, payment_reference)
    except UnknownServiceKindError as exc:
        return error_response(status.HTTP_404_NOT_FOUND, str(exc))
    except BookingNotFoundError:
        return error_response(status.HTTP_404_NOT_FOUND, "Booking not found")
    return BookingResponse(data=serialize_record(record))

