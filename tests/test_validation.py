"""Tests for booking request validation."""

from datetime import datetime, timezone

import pytest

from conftest import dinner_body
from convention_fulfillment.services.references import (
    generate_payment_reference,
    is_valid_payment_reference,
)
from convention_fulfillment.services.validation import (
    BookingValidationError,
    validate_accommodation,
    validate_brochure,
    validate_convention,
    validate_dinner,
    validate_donation,
    validate_goodwill,
)

NOW = datetime(2025, 12, 1, 12, 0, tzinfo=timezone.utc)


def accommodation_body(**overrides):
    body = {
        "email": "ada@example.com",
        "fullName": "Ada Obi",
        "phoneNumber": "+2348012345678",
        "accommodationType": "premium",
        "checkInDate": "2025-12-20",
        "checkOutDate": "2025-12-23",
        "numberOfGuests": 3,
        "guestDetails": [{"name": "Ada"}, {"name": "Bola"}, {"name": "Chi"}],
    }
    body.update(overrides)
    return body


class TestDinnerValidation:
    """Test dinner reservation validation."""

    def test_valid_booking_is_priced(self):
        """Two guests at 75 each."""
        booking = validate_dinner(dinner_body(2), NOW)

        assert booking.amount == 150
        assert booking.email == "ada@example.com"
        assert booking.holders == ["Guest 1", "Guest 2"]
        assert booking.record_fields["number_of_guests"] == 2

    def test_email_is_lowercased(self):
        """Emails are normalized before persistence."""
        booking = validate_dinner(dinner_body(1, email="  Ada@Example.COM "), NOW)
        assert booking.email == "ada@example.com"

    def test_missing_fields(self):
        """Any missing required field fails with one message."""
        body = dinner_body()
        del body["guestDetails"]

        with pytest.raises(BookingValidationError) as exc_info:
            validate_dinner(body, NOW)

        assert exc_info.value.message.startswith("Please provide all required fields")

    def test_blank_string_counts_as_missing(self):
        """Whitespace-only values are missing."""
        with pytest.raises(BookingValidationError, match="Please provide"):
            validate_dinner(dinner_body(fullName="   "), NOW)

    def test_invalid_email(self):
        """Malformed email is rejected before anything else."""
        with pytest.raises(BookingValidationError, match="Invalid email format"):
            validate_dinner(dinner_body(email="not-an-email"), NOW)

    def test_guest_count_bounds(self):
        """Between one and ten guests."""
        with pytest.raises(BookingValidationError, match="between 1 and 10"):
            validate_dinner(dinner_body(numberOfGuests=11), NOW)
        with pytest.raises(BookingValidationError, match="between 1 and 10"):
            validate_dinner(dinner_body(numberOfGuests=0), NOW)

    @pytest.mark.parametrize("raw", ["--5", "\u00b2", "3.5", "1e1", "five"])
    def test_malformed_guest_count(self, raw):
        """Strings int() would reject are a validation error, not a crash."""
        with pytest.raises(BookingValidationError, match="between 1 and 10"):
            validate_dinner(dinner_body(numberOfGuests=raw), NOW)

    @pytest.mark.parametrize("raw", ["2", " 2 ", 2.0])
    def test_numeric_guest_count(self, raw):
        assert validate_dinner(dinner_body(2, numberOfGuests=raw), NOW).amount == 150

    def test_guest_details_must_match_count(self):
        """One guest entry per declared guest."""
        body = dinner_body(2)
        body["guestDetails"] = [{"name": "Only one"}]

        with pytest.raises(BookingValidationError, match="must match numberOfGuests"):
            validate_dinner(body, NOW)

    def test_guest_errors_are_collected(self):
        """Every guest problem is reported, not just the first."""
        body = dinner_body(3)
        body["guestDetails"] = [
            {"name": ""},
            {"name": "Bola", "email": "bad"},
            {"name": "x" * 101},
        ]

        with pytest.raises(BookingValidationError) as exc_info:
            validate_dinner(body, NOW)

        assert exc_info.value.message == "Guest details validation failed"
        assert exc_info.value.errors == [
            "Guest 1: Name is required",
            "Guest 2: Invalid email format",
            "Guest 3: Name must be less than 100 characters",
        ]

    def test_special_requests_length(self):
        """Special requests are capped at 1000 characters."""
        with pytest.raises(BookingValidationError, match="Special requests"):
            validate_dinner(dinner_body(1, specialRequests="x" * 1001), NOW)


class TestAccommodationValidation:
    """Test accommodation booking validation."""

    def test_valid_booking_is_priced(self):
        """Premium, three nights, one extra guest."""
        booking = validate_accommodation(accommodation_body(), NOW)

        assert booking.amount == 780
        assert booking.record_fields["nights"] == 3
        assert booking.record_fields["confirmation_code"].startswith("ACCOM-")
        assert booking.holders == ["Ada Obi"]

    def test_unknown_room_type(self):
        """Only standard, premium and luxury exist."""
        with pytest.raises(BookingValidationError, match="Invalid accommodation type"):
            validate_accommodation(accommodation_body(accommodationType="suite"), NOW)

    def test_unparseable_dates(self):
        """Dates must be ISO strings."""
        with pytest.raises(BookingValidationError, match="Invalid date format"):
            validate_accommodation(accommodation_body(checkInDate="next friday"), NOW)

    def test_check_in_in_past(self):
        """Check-in before today is refused."""
        with pytest.raises(BookingValidationError, match="cannot be in the past"):
            validate_accommodation(accommodation_body(checkInDate="2025-11-30"), NOW)

    def test_check_in_today_is_allowed(self):
        """Earlier today still counts as today."""
        booking = validate_accommodation(
            accommodation_body(checkInDate="2025-12-01T08:00:00Z", checkOutDate="2025-12-02"),
            NOW,
        )
        assert booking.record_fields["nights"] == 1

    def test_check_out_after_check_in(self):
        """Check-out must follow check-in."""
        with pytest.raises(BookingValidationError, match="must be after check-in"):
            validate_accommodation(
                accommodation_body(checkInDate="2025-12-20", checkOutDate="2025-12-20"), NOW
            )

    def test_too_far_in_advance(self):
        """No bookings more than a year out."""
        with pytest.raises(BookingValidationError, match="1 year in advance"):
            validate_accommodation(
                accommodation_body(checkInDate="2027-01-10", checkOutDate="2027-01-12"), NOW
            )

    def test_maximum_stay(self):
        """Stays are capped at thirty nights."""
        with pytest.raises(BookingValidationError, match="Maximum stay is 30 nights"):
            validate_accommodation(
                accommodation_body(checkInDate="2025-12-02", checkOutDate="2026-01-05"), NOW
            )


class TestOtherKinds:
    """Test brochure, convention, goodwill and donation validation."""

    def test_brochure(self):
        """Quantity drives both price and recipient count."""
        booking = validate_brochure(
            {
                "email": "ada@example.com",
                "fullName": "Ada Obi",
                "phoneNumber": "+2348012345678",
                "quantity": 2,
                "brochureType": "digital",
                "recipientDetails": [{"name": "A"}, {"name": "B"}],
            },
            NOW,
        )
        assert booking.amount == 2400
        assert booking.record_fields["brochure_type"] == "digital"

    def test_brochure_recipient_mismatch(self):
        """Recipients must match quantity."""
        with pytest.raises(BookingValidationError, match="must match quantity"):
            validate_brochure(
                {
                    "email": "ada@example.com",
                    "fullName": "Ada Obi",
                    "phoneNumber": "+2348012345678",
                    "quantity": 2,
                    "brochureType": "physical",
                    "recipientDetails": [{"name": "A"}],
                },
                NOW,
            )

    def test_convention_uses_declared_amount(self):
        """Convention amount comes from the request; persons add seats."""
        booking = validate_convention(
            {
                "email": "ada@example.com",
                "fullName": "Ada Obi",
                "phoneNumber": "+2348012345678",
                "quantity": 2,
                "amount": 25000,
                "persons": [{"name": "Bola"}],
            },
            NOW,
        )
        assert booking.amount == 25000
        assert booking.holders == ["Ada Obi", "Bola"]

    def test_goodwill_message_length(self):
        """Short messages are rejected with an error list."""
        with pytest.raises(BookingValidationError) as exc_info:
            validate_goodwill(
                {
                    "email": "ada@example.com",
                    "fullName": "Ada Obi",
                    "phoneNumber": "+2348012345678",
                    "message": "Too short",
                    "donationAmount": 50,
                    "anonymous": False,
                },
                NOW,
            )
        assert exc_info.value.errors == ["Message must be at least 10 characters long"]

    def test_goodwill_minimum_donation(self):
        """Goodwill donations start at 10."""
        with pytest.raises(BookingValidationError) as exc_info:
            validate_goodwill(
                {
                    "email": "ada@example.com",
                    "fullName": "Ada Obi",
                    "phoneNumber": "+2348012345678",
                    "message": "Congratulations to the class of 2025!",
                    "donationAmount": 5,
                    "anonymous": "false",
                },
                NOW,
            )
        assert exc_info.value.errors == ["Minimum donation amount is 10"]

    def test_donation_requires_donor_name_unless_anonymous(self):
        """Named donations need a donor name."""
        body = {
            "email": "ada@example.com",
            "fullName": "Ada Obi",
            "phoneNumber": "+2348012345678",
            "amount": 100,
            "anonymous": False,
        }
        with pytest.raises(BookingValidationError, match="Donor name is required"):
            validate_donation(body, NOW)

        booking = validate_donation({**body, "anonymous": True}, NOW)
        assert booking.record_fields["receipt_number"].startswith("DON-20251201-")

    def test_donation_minimum(self):
        """Donations start at 5."""
        with pytest.raises(BookingValidationError, match="Minimum donation amount is 5"):
            validate_donation(
                {
                    "email": "ada@example.com",
                    "fullName": "Ada Obi",
                    "phoneNumber": "+2348012345678",
                    "amount": 4,
                    "anonymous": True,
                },
                NOW,
            )


class TestPaymentReferences:
    """Test reference generation and format gate."""

    def test_reference_layout(self):
        """Prefix, unix millis and phone digits."""
        ref = generate_payment_reference("DINNER", "+234 801-234-5678", 1735000000000)
        assert ref == "DINNER_1735000000000_2348012345678"
        assert is_valid_payment_reference(ref)

    def test_rejects_malformed(self):
        """Lowercase prefixes, spaces and empty values fail the gate."""
        assert not is_valid_payment_reference(None)
        assert not is_valid_payment_reference("")
        assert not is_valid_payment_reference("dinner_123456")
        assert not is_valid_payment_reference("DINNER_12 34")
        assert not is_valid_payment_reference("<script>")
