"""Signed, expiring, quota-limited receipt download tokens.

Token layout: base64url(JSON payload) "." base64url(HMAC-SHA256 of the
encoded payload). Payload keys: ref, exp, iat, maxDl, and optionally
email, phone, ips. Nothing about a token is stored server-side except its
download count and the per-reference access history.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from urllib.parse import urlencode

from convention_fulfillment.security.rate_limit import QuotaStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenConfig:
    """
    Download token defaults.

    Attributes:
        default_expiry: Lifetime when the caller gives none. Default 24h.
        max_expiry: Longest lifetime a caller may request. Default 7 days.
        default_max_downloads: Download quota per token. Default 10.
        history_limit: Access attempts remembered per reference. Default 100.
        history_ttl: Attempts older than this are dropped by cleanup().
    """

    default_expiry: timedelta = timedelta(hours=24)
    max_expiry: timedelta = timedelta(days=7)
    default_max_downloads: int = 10
    history_limit: int = 100
    history_ttl: timedelta = timedelta(days=7)

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.default_expiry <= timedelta(0):
            raise ValueError("default_expiry must be positive")
        if self.max_expiry < self.default_expiry:
            raise ValueError("max_expiry must be >= default_expiry")
        if self.default_max_downloads < 1:
            raise ValueError("default_max_downloads must be at least 1")
        if self.history_limit < 1:
            raise ValueError("history_limit must be at least 1")


@dataclass(frozen=True)
class DownloadToken:
    """Decoded token claims."""

    token_id: str
    payment_reference: str
    issued_at: datetime
    expires_at: datetime
    max_downloads: int
    user_email: str | None = None
    user_phone: str | None = None
    allowed_ips: tuple[str, ...] = ()

    @property
    def quota_key(self) -> str:
        return f"{self.payment_reference}:{self.token_id}"


@dataclass(frozen=True)
class AccessDecision:
    """Result of authorizing one download."""

    allowed: bool
    status_code: int = 200
    reason: str | None = None
    token: DownloadToken | None = None
    remaining_downloads: int | None = None


@dataclass(frozen=True)
class AccessAttempt:
    at: datetime
    client_ip: str
    success: bool
    reason: str | None = None


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


class SecureDownloadService:
    """Issues and checks receipt download tokens."""

    def __init__(
        self,
        secret_key: str,
        quota_store: QuotaStore,
        config: TokenConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        if not secret_key:
            raise ValueError("download token secret key is required")
        self._key = secret_key.encode("utf-8")
        self._quota = quota_store
        self.config = config or TokenConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._history: dict[str, deque[AccessAttempt]] = {}
        self._revoked: dict[str, datetime] = {}

    def _sign(self, encoded_payload: str) -> str:
        digest = hmac.new(self._key, encoded_payload.encode("ascii"), hashlib.sha256).digest()
        return _b64encode(digest)

    def generate_token(
        self,
        payment_reference: str,
        *,
        user_email: str | None = None,
        user_phone: str | None = None,
        expires_in: timedelta | None = None,
        max_downloads: int | None = None,
        allowed_ips: list[str] | None = None,
    ) -> str:
        now = self._clock()
        lifetime = expires_in or self.config.default_expiry
        if lifetime <= timedelta(0):
            raise ValueError("expires_in must be positive")
        lifetime = min(lifetime, self.config.max_expiry)
        quota = max_downloads or self.config.default_max_downloads
        if quota < 1:
            raise ValueError("max_downloads must be at least 1")

        payload: dict[str, Any] = {
            "ref": payment_reference,
            "iat": int(now.timestamp()),
            "exp": int((now + lifetime).timestamp()),
            "maxDl": quota,
        }
        if user_email:
            payload["email"] = user_email
        if user_phone:
            payload["phone"] = user_phone
        if allowed_ips:
            payload["ips"] = list(allowed_ips)

        encoded = _b64encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
        return f"{encoded}.{self._sign(encoded)}"

    def generate_secure_url(self, base_url: str, payment_reference: str, **options: Any) -> str:
        """Download URL carrying a fresh token."""
        token = self.generate_token(payment_reference, **options)
        query = urlencode({"ref": payment_reference, "token": token})
        return f"{base_url.rstrip('/')}/api/v1/receipt/download?{query}"

    def parse_token(self, token: str | None) -> DownloadToken | None:
        """Verify the signature and decode claims; None if forged or malformed."""
        if not token or token.count(".") != 1:
            return None
        encoded, signature = token.split(".")
        if not hmac.compare_digest(signature, self._sign(encoded)):
            return None
        try:
            payload = json.loads(_b64decode(encoded))
            return DownloadToken(
                token_id=signature[:16],
                payment_reference=str(payload["ref"]),
                issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
                expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
                max_downloads=int(payload["maxDl"]),
                user_email=payload.get("email"),
                user_phone=payload.get("phone"),
                allowed_ips=tuple(payload.get("ips") or ()),
            )
        except (ValueError, KeyError, TypeError):
            return None

    def authorize(
        self,
        token: str | None,
        client_ip: str,
        payment_reference: str | None = None,
    ) -> AccessDecision:
        """Check signature, expiry, revocation and IP, then consume one download."""
        claims = self.parse_token(token)
        if claims is None or (
            payment_reference is not None and claims.payment_reference != payment_reference
        ):
            return self._deny(payment_reference, client_ip, 401, "Invalid or expired token")

        ref = claims.payment_reference
        revoked_at = self._revoked.get(ref)
        if revoked_at is not None and claims.issued_at <= revoked_at:
            return self._deny(ref, client_ip, 401, "Invalid or expired token")

        if self._clock() >= claims.expires_at:
            return self._deny(ref, client_ip, 401, "Token has expired")

        if claims.allowed_ips and client_ip not in claims.allowed_ips:
            return self._deny(ref, client_ip, 403, "Access denied from this IP address")

        remaining = self._quota.try_consume(
            claims.quota_key, claims.max_downloads, expires_at=claims.expires_at
        )
        if remaining is None:
            return self._deny(ref, client_ip, 429, "Maximum download limit reached")

        return AccessDecision(
            allowed=True,
            token=claims,
            remaining_downloads=remaining,
        )

    def release(self, decision: AccessDecision) -> None:
        """Refund the download consumed by `decision` when serving failed."""
        if decision.allowed and decision.token is not None:
            self._quota.release(decision.token.quota_key)

    def _deny(
        self,
        payment_reference: str | None,
        client_ip: str,
        status_code: int,
        reason: str,
    ) -> AccessDecision:
        if payment_reference:
            self.record_access(payment_reference, client_ip, success=False, reason=reason)
        logger.warning(
            "Download denied for %s from %s: %s", payment_reference, client_ip, reason
        )
        return AccessDecision(allowed=False, status_code=status_code, reason=reason)

    def record_access(
        self,
        payment_reference: str,
        client_ip: str,
        *,
        success: bool,
        reason: str | None = None,
    ) -> None:
        with self._lock:
            history = self._history.setdefault(
                payment_reference, deque(maxlen=self.config.history_limit)
            )
            history.append(
                AccessAttempt(at=self._clock(), client_ip=client_ip, success=success, reason=reason)
            )

    def get_download_stats(self, payment_reference: str) -> dict[str, Any]:
        with self._lock:
            attempts = list(self._history.get(payment_reference, ()))
        successes = [a for a in attempts if a.success]
        return {
            "paymentReference": payment_reference,
            "totalAttempts": len(attempts),
            "successfulDownloads": len(successes),
            "failedAttempts": len(attempts) - len(successes),
            "uniqueIPs": len({a.client_ip for a in attempts}),
            "lastAccess": attempts[-1].at.isoformat() if attempts else None,
            "revoked": payment_reference in self._revoked,
            "recentAttempts": [
                {
                    "at": a.at.isoformat(),
                    "ip": a.client_ip,
                    "success": a.success,
                    "reason": a.reason,
                }
                for a in attempts[-10:]
            ],
        }

    def revoke(self, payment_reference: str) -> int:
        """Invalidate every token issued so far for the reference."""
        with self._lock:
            self._revoked[payment_reference] = self._clock()
        cleared = self._quota.clear_prefix(f"{payment_reference}:")
        logger.info("Revoked download tokens for %s", payment_reference)
        return cleared

    def cleanup(self) -> int:
        """Drop stale access history, expired revocations and dead token quotas."""
        now = self._clock()
        cutoff = now - self.config.history_ttl
        removed = 0
        with self._lock:
            for ref in list(self._history):
                history = self._history[ref]
                while history and history[0].at < cutoff:
                    history.popleft()
                    removed += 1
                if not history:
                    del self._history[ref]
            # Tokens never outlive max_expiry, so older revocations are moot
            for ref, revoked_at in list(self._revoked.items()):
                if revoked_at < now - self.config.max_expiry:
                    del self._revoked[ref]
        return removed + self._quota.cleanup(now)
