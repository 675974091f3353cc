"""QR code issuance, validation and regeneration.

Every code carries the same encoding: a compact JSON document with the
service type, record id, user id, expiry and free-form metadata, plus an
HMAC-SHA256 `sig` over the canonical form of those fields. Scanners can
read the payload offline; only holders of the key can mint one.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from io import BytesIO
from typing import Any

import qrcode
from qrcode.constants import ERROR_CORRECT_M

logger = logging.getLogger(__name__)

QR_IMAGE_WIDTH = 256
QR_BORDER_MODULES = 1
REQUIRED_FIELDS = ("type", "id", "userId")


class QRCodeError(Exception):
    """Raised when a code cannot be issued or regenerated."""


@dataclass(frozen=True)
class QRPayload:
    """Decoded QR content."""

    type: str
    id: str
    user_id: str
    valid_until: datetime
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "id": self.id,
            "userId": self.user_id,
            "validUntil": self.valid_until.astimezone(timezone.utc).isoformat(),
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class QRValidationResult:
    """Outcome of validating raw scanned content."""

    valid: bool
    data: QRPayload | None = None
    error: str | None = None


@dataclass(frozen=True)
class IssuedQRCode:
    """An encoded code and its rendered PNG."""

    code: str
    image: str  # data:image/png;base64,...
    payload: QRPayload


def _canonical(body: dict[str, Any]) -> bytes:
    return json.dumps(body, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")


class QRCodeService:
    """Mints and checks signed QR payloads."""

    def __init__(self, secret_key: str):
        if not secret_key:
            raise ValueError("QR secret key is required")
        self._key = secret_key.encode("utf-8")

    def _sign(self, body: dict[str, Any]) -> str:
        return hmac.new(self._key, _canonical(body), hashlib.sha256).hexdigest()

    def encode(self, payload: QRPayload) -> str:
        body = payload.to_json_dict()
        body["sig"] = self._sign(payload.to_json_dict())
        return json.dumps(body, separators=(",", ":"), default=str)

    def render_image(self, content: str) -> str:
        """Render content as a black-on-white PNG data URL about 256 px wide."""
        qr = qrcode.QRCode(
            version=None,
            error_correction=ERROR_CORRECT_M,
            box_size=10,
            border=QR_BORDER_MODULES,
        )
        qr.add_data(content)
        qr.make(fit=True)
        qr.box_size = max(1, QR_IMAGE_WIDTH // (qr.modules_count + 2 * QR_BORDER_MODULES))

        img = qr.make_image(fill_color="black", back_color="white")
        buffer = BytesIO()
        img.save(buffer, format="PNG")
        return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")

    def issue(
        self,
        service_type: str,
        record_id: str,
        user_id: str,
        *,
        lifetime: timedelta,
        valid_until: datetime | None = None,
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
        render: bool = True,
    ) -> IssuedQRCode:
        """Mint a code. An explicit `valid_until` wins if it is in the future."""
        now = now or datetime.now(timezone.utc)
        expiry = valid_until if valid_until is not None and valid_until > now else now + lifetime
        if expiry <= now:
            raise QRCodeError("QR code expiry must be in the future")

        payload = QRPayload(
            type=service_type,
            id=str(record_id),
            user_id=str(user_id),
            valid_until=expiry,
            metadata=metadata or {},
        )
        code = self.encode(payload)
        image = self.render_image(code) if render else ""
        return IssuedQRCode(code=code, image=image, payload=payload)

    def decode(
        self,
        raw: str,
        *,
        check_expiry: bool = True,
        now: datetime | None = None,
    ) -> QRValidationResult:
        """Decode and authenticate; expiry is checked only when asked."""
        try:
            body = json.loads(raw)
        except (TypeError, ValueError):
            return QRValidationResult(valid=False, error="Invalid QR code format")
        if not isinstance(body, dict):
            return QRValidationResult(valid=False, error="Invalid QR code format")

        if any(not body.get(name) for name in REQUIRED_FIELDS):
            return QRValidationResult(valid=False, error="Missing required QR code fields")

        signature = body.pop("sig", None)
        if not isinstance(signature, str) or not hmac.compare_digest(
            signature, self._sign(body)
        ):
            return QRValidationResult(valid=False, error="Invalid QR code signature")

        try:
            raw_expiry = str(body.get("validUntil"))
            valid_until = datetime.fromisoformat(raw_expiry.replace("Z", "+00:00"))
        except ValueError:
            return QRValidationResult(valid=False, error="Invalid QR code format")
        if valid_until.tzinfo is None:
            valid_until = valid_until.replace(tzinfo=timezone.utc)

        payload = QRPayload(
            type=str(body["type"]),
            id=str(body["id"]),
            user_id=str(body["userId"]),
            valid_until=valid_until,
            metadata=body.get("metadata") or {},
        )

        now = now or datetime.now(timezone.utc)
        if check_expiry and valid_until <= now:
            return QRValidationResult(valid=False, data=payload, error="QR code has expired")
        return QRValidationResult(valid=True, data=payload)

    def validate(self, raw: str, now: datetime | None = None) -> QRValidationResult:
        """Parse, authenticate and expiry-check scanned content."""
        return self.decode(raw, check_expiry=True, now=now)

    def regenerate(
        self,
        old_raw: str,
        *,
        lifetime: timedelta,
        valid_until: datetime | None = None,
        now: datetime | None = None,
    ) -> IssuedQRCode:
        """Re-issue an existing code with a fresh expiry.

        Expired codes are accepted; malformed or forged ones are not.
        Type, id, user and metadata carry over unchanged.
        """
        result = self.decode(old_raw, check_expiry=False)
        if result.data is None:
            raise QRCodeError(result.error or "Invalid QR code format")

        old = result.data
        return self.issue(
            old.type,
            old.id,
            old.user_id,
            lifetime=lifetime,
            valid_until=valid_until,
            metadata=old.metadata,
            now=now,
        )
