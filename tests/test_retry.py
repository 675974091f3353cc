"""Tests for bounded retry with backoff."""

import asyncio

import httpx
import pytest

from convention_fulfillment.delivery.errors import DeliveryError, ErrorType
from convention_fulfillment.delivery.retry import (
    PDF_GENERATION_POLICY,
    WHATSAPP_POLICY,
    RetryExhaustedError,
    RetryPolicy,
    TerminalFailureError,
    classify_error,
    execute_with_retry,
    is_retryable_error,
)


class Flaky:
    """Fails with the given errors in order, then returns 'ok'."""

    def __init__(self, *errors: Exception):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


class SleepRecorder:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class TestRetryPolicy:
    """Test policy configuration."""

    def test_backoff_grows_and_caps(self):
        """Delay multiplies each attempt up to the cap."""
        policy = RetryPolicy(
            max_attempts=5, initial_delay_ms=1000, backoff_multiplier=2, max_delay_ms=3000
        )
        assert policy.backoff(1) == 1.0
        assert policy.backoff(2) == 2.0
        assert policy.backoff(3) == 3.0
        assert policy.backoff(4) == 3.0

    def test_named_policies(self):
        """Production policies keep their documented budgets."""
        assert WHATSAPP_POLICY.max_attempts == 4
        assert WHATSAPP_POLICY.backoff(2) == 3.0
        assert PDF_GENERATION_POLICY.attempt_timeout == 30.0

    def test_invalid_configuration(self):
        """Nonsense budgets are rejected."""
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
        with pytest.raises(ValueError):
            RetryPolicy(initial_delay_ms=5000, max_delay_ms=1000)
        with pytest.raises(ValueError):
            RetryPolicy(backoff_multiplier=0.5)


class TestClassification:
    """Test retryable vs terminal classification."""

    def test_delivery_errors(self):
        """Network trouble retries; bad input and auth do not."""
        assert is_retryable_error(DeliveryError(ErrorType.NETWORK_ERROR, "down")) is True
        assert is_retryable_error(DeliveryError(ErrorType.TIMEOUT, "slow")) is True
        assert is_retryable_error(DeliveryError(ErrorType.INVALID_PHONE_NUMBER, "bad")) is False
        assert (
            is_retryable_error(
                DeliveryError(ErrorType.AUTHENTICATION_FAILED, "no", status_code=401)
            )
            is False
        )

    def test_client_status_codes_are_terminal_except_429(self):
        """4xx never retries, except rate limiting."""
        assert (
            DeliveryError(ErrorType.WHATSAPP_DELIVERY_FAILED, "x", status_code=404).retryable
            is False
        )
        assert (
            DeliveryError(ErrorType.RATE_LIMIT_EXCEEDED, "x", status_code=429).retryable is True
        )

    def test_generic_errors(self):
        """Timeouts and transport errors retry; value errors do not."""
        assert is_retryable_error(asyncio.TimeoutError()) is True
        assert is_retryable_error(httpx.ConnectError("refused")) is True
        assert is_retryable_error(ValueError("bad")) is False

    def test_classify(self):
        """Exceptions map onto reported error types."""
        assert classify_error(httpx.ReadTimeout("slow")) == ErrorType.TIMEOUT
        assert classify_error(httpx.ConnectError("refused")) == ErrorType.NETWORK_ERROR
        assert classify_error(KeyError("x")) == ErrorType.DATA_VALIDATION_FAILED
        assert classify_error(RuntimeError("?"), ErrorType.PDF_GENERATION_FAILED) == (
            ErrorType.PDF_GENERATION_FAILED
        )


class TestExecuteWithRetry:
    """Test the retry loop."""

    async def test_first_attempt_success(self):
        """No retries, no sleeping."""
        op = Flaky()
        sleep = SleepRecorder()

        result = await execute_with_retry(op, RetryPolicy(), sleep=sleep)

        assert result.value == "ok"
        assert result.attempts == 1
        assert sleep.delays == []

    async def test_recovers_after_transient_failures(self):
        """Retries until success and sleeps between attempts."""
        op = Flaky(
            DeliveryError(ErrorType.NETWORK_ERROR, "down"),
            DeliveryError(ErrorType.TIMEOUT, "slow"),
        )
        sleep = SleepRecorder()
        policy = RetryPolicy(max_attempts=3, initial_delay_ms=100, backoff_multiplier=2)

        result = await execute_with_retry(op, policy, sleep=sleep)

        assert result.attempts == 3
        assert op.calls == 3
        assert sleep.delays == [0.1, 0.2]

    async def test_exhausted(self):
        """Gives up after max_attempts retryable failures."""
        op = Flaky(*[DeliveryError(ErrorType.NETWORK_ERROR, "down") for _ in range(5)])

        with pytest.raises(RetryExhaustedError) as exc_info:
            await execute_with_retry(
                op,
                RetryPolicy(max_attempts=3, initial_delay_ms=0, max_delay_ms=0),
                sleep=SleepRecorder(),
            )

        assert exc_info.value.attempts == 3
        assert exc_info.value.error_type == ErrorType.NETWORK_ERROR
        assert op.calls == 3

    async def test_terminal_failure_stops_immediately(self):
        """A non-retryable error is not retried."""
        op = Flaky(DeliveryError(ErrorType.INVALID_PHONE_NUMBER, "bad number"))

        with pytest.raises(TerminalFailureError) as exc_info:
            await execute_with_retry(op, RetryPolicy(max_attempts=4), sleep=SleepRecorder())

        assert exc_info.value.attempts == 1
        assert exc_info.value.error_type == ErrorType.INVALID_PHONE_NUMBER
        assert op.calls == 1

    async def test_failure_type_applies_to_unclassified_errors(self):
        """Unknown exceptions are reported under the caller's failure type."""
        op = Flaky(*[RuntimeError("renderer crashed") for _ in range(2)])

        with pytest.raises(RetryExhaustedError) as exc_info:
            await execute_with_retry(
                op,
                RetryPolicy(max_attempts=2, initial_delay_ms=0, max_delay_ms=0),
                failure_type=ErrorType.PDF_GENERATION_FAILED,
                sleep=SleepRecorder(),
            )

        assert exc_info.value.error_type == ErrorType.PDF_GENERATION_FAILED

    async def test_attempt_timeout(self):
        """Each attempt is bounded by attempt_timeout."""

        async def hang() -> str:
            await asyncio.sleep(10)
            return "never"

        with pytest.raises(RetryExhaustedError) as exc_info:
            await execute_with_retry(
                hang,
                RetryPolicy(
                    max_attempts=2, initial_delay_ms=0, max_delay_ms=0, attempt_timeout=0.01
                ),
                sleep=SleepRecorder(),
            )

        assert exc_info.value.error_type == ErrorType.TIMEOUT
