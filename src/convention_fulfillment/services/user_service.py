"""Payer lookup and room availability."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from convention_fulfillment.models import AccommodationBooking, User
from convention_fulfillment.services.pricing import ROOM_CAPACITY
from convention_fulfillment.services.validation import BookingValidationError

logger = logging.getLogger(__name__)


async def find_or_create_user(
    session: AsyncSession,
    *,
    full_name: str,
    email: str,
    phone_number: str,
) -> User:
    """Resolve the payer by (email, phone), creating one on first booking."""
    result = await session.execute(
        select(User).where(User.email == email, User.phone_number == phone_number)
    )
    user = result.scalar_one_or_none()
    if user is not None:
        return user

    user = User(full_name=full_name, email=email, phone_number=phone_number)
    session.add(user)
    await session.flush()
    logger.info("Created user %s for %s", user.user_id, email)
    return user


async def count_overlapping_bookings(
    session: AsyncSession,
    accommodation_type: str,
    check_in: datetime,
    check_out: datetime,
) -> int:
    """Confirmed bookings of this room type that share at least one night."""
    return (
        await session.scalar(
            select(func.count())
            .select_from(AccommodationBooking)
            .where(
                AccommodationBooking.accommodation_type == accommodation_type,
                AccommodationBooking.status == "confirmed",
                AccommodationBooking.check_in_date < check_out,
                AccommodationBooking.check_out_date > check_in,
            )
        )
        or 0
    )


async def ensure_room_available(
    session: AsyncSession,
    accommodation_type: str,
    check_in: datetime,
    check_out: datetime,
) -> None:
    """Raise BookingValidationError when the room type is full for the dates."""
    booked = await count_overlapping_bookings(session, accommodation_type, check_in, check_out)
    capacity = ROOM_CAPACITY[accommodation_type]
    if booked >= capacity:
        logger.info(
            "No %s rooms for %s..%s (%d/%d booked)",
            accommodation_type,
            check_in.date(),
            check_out.date(),
            booked,
            capacity,
        )
        raise BookingValidationError(
            f"No {accommodation_type} rooms available for the selected dates"
        )
