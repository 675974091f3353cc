"""Static price tables and quote calculation.

Amounts are whole Naira. Totals are computed once at booking time and
stored on the record; nothing here is consulted after creation.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta

DINNER_PRICE_PER_GUEST = 75

ACCOMMODATION_RATES: dict[str, int] = {
    "standard": 100,
    "premium": 200,
    "luxury": 350,
}

# Confirmed bookings allowed to overlap any given night
ROOM_CAPACITY: dict[str, int] = {
    "standard": 50,
    "premium": 30,
    "luxury": 15,
}

GUESTS_INCLUDED_PER_ROOM = 2
EXTRA_GUEST_RATE = 0.3

BROCHURE_PRICES: dict[str, int] = {
    "digital": 1200,
    "physical": 1200,
}

MIN_GOODWILL_DONATION = 10
MIN_DONATION = 5


@dataclass(frozen=True)
class AccommodationQuote:
    """Price breakdown for a room booking."""

    accommodation_type: str
    nights: int
    nightly_rate: int
    extra_guests: int
    extra_guest_fee_per_night: int
    total: int


def count_nights(check_in: datetime, check_out: datetime) -> int:
    """Partial days round up; a stay is never shorter than one night."""
    days = (check_out - check_in) / timedelta(days=1)
    return max(1, math.ceil(days))


def dinner_total(number_of_guests: int) -> int:
    return DINNER_PRICE_PER_GUEST * number_of_guests


def brochure_total(brochure_type: str, quantity: int) -> int:
    return BROCHURE_PRICES[brochure_type] * quantity


def accommodation_quote(
    accommodation_type: str,
    check_in: datetime,
    check_out: datetime,
    number_of_guests: int,
) -> AccommodationQuote:
    """Nightly rate times nights, plus a surcharge per guest beyond two."""
    nightly_rate = ACCOMMODATION_RATES[accommodation_type]
    nights = count_nights(check_in, check_out)
    extra_guests = max(0, number_of_guests - GUESTS_INCLUDED_PER_ROOM)
    extra_fee = math.floor(nightly_rate * EXTRA_GUEST_RATE) * extra_guests

    return AccommodationQuote(
        accommodation_type=accommodation_type,
        nights=nights,
        nightly_rate=nightly_rate,
        extra_guests=extra_guests,
        extra_guest_fee_per_night=extra_fee,
        total=(nightly_rate + extra_fee) * nights,
    )
