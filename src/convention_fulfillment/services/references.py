"""Payment references and other human-facing identifiers."""

from __future__ import annotations

import re
import secrets
import string
import time
from datetime import datetime

PAYMENT_REFERENCE_PATTERN = re.compile(r"^[A-Z]{3,10}_[A-Za-z0-9_+-]{4,64}$")

_ALPHANUMERIC = string.ascii_uppercase + string.digits


def normalize_phone(phone_number: str) -> str:
    """Digits only, so the phone can sit inside a reference."""
    return re.sub(r"\D", "", phone_number)


def generate_payment_reference(
    prefix: str,
    phone_number: str,
    now_ms: int | None = None,
) -> str:
    """Build `<PREFIX>_<unixMillis>_<phone digits>`."""
    millis = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{prefix}_{millis}_{normalize_phone(phone_number)}"


def is_valid_payment_reference(reference: str | None) -> bool:
    """Cheap format gate applied before any store lookup."""
    if not reference:
        return False
    return PAYMENT_REFERENCE_PATTERN.match(reference) is not None


def _random_suffix(length: int) -> str:
    return "".join(secrets.choice(_ALPHANUMERIC) for _ in range(length))


def generate_confirmation_code(now_ms: int | None = None) -> str:
    """Accommodation confirmation code, e.g. ACCOM-123456-X7Q2."""
    millis = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"ACCOM-{str(millis)[-6:]}-{_random_suffix(4)}"


def generate_receipt_number(today: datetime) -> str:
    """Donation receipt number, e.g. DON-20251226-4KD9QZ."""
    return f"DON-{today.strftime('%Y%m%d')}-{_random_suffix(6)}"
