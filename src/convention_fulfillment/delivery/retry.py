"""Bounded retry with exponential backoff.

A RetryPolicy is a value; execute_with_retry applies it to any awaitable
factory. Classification of retryable vs terminal failures lives here and
nowhere else.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar

import httpx

from convention_fulfillment.delivery.errors import DeliveryError, ErrorType

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry budget for one kind of operation.

    Attributes:
        max_attempts: Total attempts including the first one.
        initial_delay_ms: Delay before the second attempt.
        backoff_multiplier: Factor applied to the delay after each attempt.
        max_delay_ms: Upper bound for any single delay.
        attempt_timeout: Seconds allowed per attempt; None means the
            operation enforces its own timeout.
    """

    max_attempts: int = 3
    initial_delay_ms: int = 1000
    backoff_multiplier: float = 2.0
    max_delay_ms: int = 30000
    attempt_timeout: float | None = None

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay_ms < 0:
            raise ValueError("initial_delay_ms cannot be negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be at least 1")
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError("max_delay_ms must be >= initial_delay_ms")
        if self.attempt_timeout is not None and self.attempt_timeout <= 0:
            raise ValueError("attempt_timeout must be positive")

    def backoff(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        delay_ms = self.initial_delay_ms * (self.backoff_multiplier ** (attempt - 1))
        return min(delay_ms, self.max_delay_ms) / 1000

    def is_retryable(self, error: BaseException) -> bool:
        return is_retryable_error(error)


DEFAULT_POLICY = RetryPolicy(
    max_attempts=3, initial_delay_ms=1000, backoff_multiplier=2, max_delay_ms=30000
)
PDF_GENERATION_POLICY = RetryPolicy(
    max_attempts=3,
    initial_delay_ms=1000,
    backoff_multiplier=2,
    max_delay_ms=15000,
    attempt_timeout=30.0,
)
WHATSAPP_POLICY = RetryPolicy(
    max_attempts=4, initial_delay_ms=2000, backoff_multiplier=1.5, max_delay_ms=20000
)
FALLBACK_POLICY = RetryPolicy(
    max_attempts=2, initial_delay_ms=1000, backoff_multiplier=1.5, max_delay_ms=5000
)


class RetryExhaustedError(DeliveryError):
    """Every attempt failed with a retryable error."""

    def __init__(self, attempts: int, last_error: BaseException, error_type: ErrorType):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            error_type,
            f"Operation failed after {attempts} attempts: {last_error}",
            retryable=False,
        )


class TerminalFailureError(DeliveryError):
    """A non-retryable failure, raised on the attempt where it happened."""

    def __init__(self, attempts: int, last_error: BaseException, error_type: ErrorType):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(error_type, str(last_error), retryable=False)


@dataclass(frozen=True)
class RetryResult(Generic[T]):
    """Successful value plus how many attempts it took."""

    value: T
    attempts: int


def is_retryable_error(error: BaseException) -> bool:
    """Transient failures are retried; input and auth problems are not."""
    if isinstance(error, DeliveryError):
        return error.retryable
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        code = error.response.status_code
        return code >= 500 or code == 429
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, (ValueError, TypeError, KeyError)):
        return False
    return True


def classify_error(error: BaseException, default: ErrorType = ErrorType.UNKNOWN) -> ErrorType:
    """Map an exception to the ErrorType reported to monitoring."""
    if isinstance(error, DeliveryError):
        return error.error_type
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return ErrorType.TIMEOUT
    if isinstance(error, httpx.HTTPStatusError) and error.response.status_code == 429:
        return ErrorType.RATE_LIMIT_EXCEEDED
    if isinstance(error, httpx.TransportError):
        return ErrorType.NETWORK_ERROR
    if isinstance(error, (ValueError, TypeError, KeyError)):
        return ErrorType.DATA_VALIDATION_FAILED
    return default


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    operation_name: str = "operation",
    failure_type: ErrorType = ErrorType.UNKNOWN,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RetryResult[T]:
    """Run `operation` until it succeeds or the policy gives up.

    Raises:
        TerminalFailureError: a non-retryable error occurred.
        RetryExhaustedError: all attempts failed with retryable errors.
    """
    last_error: BaseException | None = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            if policy.attempt_timeout is not None:
                value = await asyncio.wait_for(operation(), timeout=policy.attempt_timeout)
            else:
                value = await operation()
            if attempt > 1:
                logger.info("%s succeeded on attempt %d", operation_name, attempt)
            return RetryResult(value=value, attempts=attempt)
        except Exception as exc:
            last_error = exc
            error_type = classify_error(exc, failure_type)

            if not policy.is_retryable(exc):
                logger.warning(
                    "%s failed with terminal %s on attempt %d: %s",
                    operation_name,
                    error_type.value,
                    attempt,
                    exc,
                )
                raise TerminalFailureError(attempt, exc, error_type) from exc

            if attempt == policy.max_attempts:
                break

            delay = policy.backoff(attempt)
            logger.warning(
                "%s attempt %d/%d failed (%s), retrying in %.1fs",
                operation_name,
                attempt,
                policy.max_attempts,
                exc,
                delay,
            )
            await sleep(delay)

    assert last_error is not None
    error_type = classify_error(last_error, failure_type)
    logger.error(
        "%s failed after %d attempts: %s", operation_name, policy.max_attempts, last_error
    )
    raise RetryExhaustedError(policy.max_attempts, last_error, error_type) from last_error
