"""Per-key rate limiting and download quotas.

Both are the only shared mutable state in the service. The protocols let
a multi-instance deployment swap in a shared store; the in-memory versions
serialize each read-check-update under a lock.
"""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Mapping, Protocol


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a rate-limit check."""

    allowed: bool
    remaining: int
    retry_after_seconds: int = 0


class RateLimiter(Protocol):
    """Sliding-window limiter keyed by client identity."""

    def check(self, key: str) -> RateLimitDecision:
        """Report whether one more request would be allowed. Does not record."""
        ...

    def record(self, key: str) -> None:
        """Record a request against the key."""
        ...

    def hit(self, key: str) -> RateLimitDecision:
        """Atomically check and, when allowed, record."""
        ...

    def reset(self, key: str | None = None) -> None:
        ...

    def cleanup(self) -> int:
        """Forget idle keys; returns how many were dropped."""
        ...


class QuotaStore(Protocol):
    """Counters with an upper bound, consumed atomically."""

    def try_consume(
        self, key: str, limit: int, expires_at: datetime | None = None
    ) -> int | None:
        """Increment if below `limit`; return remaining uses, or None if exhausted.

        `expires_at` marks when the counter may be forgotten by `cleanup`.
        """
        ...

    def release(self, key: str) -> None:
        """Give back one use after a failed attempt."""
        ...

    def count(self, key: str) -> int:
        ...

    def clear_prefix(self, prefix: str) -> int:
        """Drop every counter whose key starts with `prefix`."""
        ...

    def cleanup(self, now: datetime) -> int:
        """Drop counters whose expiry has passed."""
        ...


class InMemoryRateLimiter:
    """Sliding-window rate limiter for single-process deployments."""

    def __init__(
        self,
        max_requests: int = 5,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._hits: dict[str, deque[float]] = {}

    def _prune(self, key: str, now: float) -> deque[float]:
        hits = self._hits.setdefault(key, deque())
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
        return hits

    def _decision(self, hits: deque[float], now: float) -> RateLimitDecision:
        if len(hits) < self.max_requests:
            return RateLimitDecision(allowed=True, remaining=self.max_requests - len(hits))
        retry_after = max(1, math.ceil(hits[0] + self.window_seconds - now))
        return RateLimitDecision(allowed=False, remaining=0, retry_after_seconds=retry_after)

    def check(self, key: str) -> RateLimitDecision:
        with self._lock:
            now = self._clock()
            return self._decision(self._prune(key, now), now)

    def record(self, key: str) -> None:
        with self._lock:
            now = self._clock()
            self._prune(key, now).append(now)

    def hit(self, key: str) -> RateLimitDecision:
        with self._lock:
            now = self._clock()
            hits = self._prune(key, now)
            decision = self._decision(hits, now)
            if decision.allowed:
                hits.append(now)
                return RateLimitDecision(allowed=True, remaining=decision.remaining - 1)
            return decision

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)

    def cleanup(self) -> int:
        """Forget keys with no hits inside the window."""
        with self._lock:
            now = self._clock()
            idle = [key for key in list(self._hits) if not self._prune(key, now)]
            for key in idle:
                del self._hits[key]
            return len(idle)


class InMemoryQuotaStore:
    """Bounded counters for single-process deployments."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: dict[str, int] = {}
        self._expiry: dict[str, datetime] = {}

    def try_consume(
        self, key: str, limit: int, expires_at: datetime | None = None
    ) -> int | None:
        with self._lock:
            used = self._counts.get(key, 0)
            if used >= limit:
                return None
            self._counts[key] = used + 1
            if expires_at is not None:
                self._expiry[key] = expires_at
            return limit - used - 1

    def release(self, key: str) -> None:
        with self._lock:
            used = self._counts.get(key, 0)
            if used <= 1:
                self._counts.pop(key, None)
                self._expiry.pop(key, None)
            else:
                self._counts[key] = used - 1

    def count(self, key: str) -> int:
        with self._lock:
            return self._counts.get(key, 0)

    def clear_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [key for key in self._counts if key.startswith(prefix)]
            for key in keys:
                del self._counts[key]
                self._expiry.pop(key, None)
            return len(keys)

    def cleanup(self, now: datetime) -> int:
        with self._lock:
            expired = [key for key, at in self._expiry.items() if at <= now]
            for key in expired:
                del self._expiry[key]
                self._counts.pop(key, None)
            return len(expired)


def client_ip_from_headers(headers: Mapping[str, str], fallback: str | None = None) -> str:
    """Client IP from proxy headers, first x-forwarded-for hop winning."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = headers.get(header)
        if value and value.strip():
            return value.strip()
    return fallback or "unknown"
