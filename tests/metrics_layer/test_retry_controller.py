"""
Tests for the Retry Controller and Cancellation Token.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from chain_metrics.cancellation import CancellationToken
from chain_metrics.exceptions import (
    AbortError,
    ExhaustedRetryError,
    NetworkError,
    ValidationError,
)
from chain_metrics.retry import RetryController, retry_async


# ============================================================
# FIXTURES
# ============================================================

class RecordingSleep:
    """Sleep replacement that records requested delays without waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def controller(sleep):
    return RetryController(max_attempts=3, base_delay_ms=1000, sleep=sleep)


def server_error():
    return NetworkError("HTTP 500", status_code=500)


# ============================================================
# RETRY CONTROLLER
# ============================================================

class TestRetryBackoff:
    """Backoff schedule and exhaustion."""

    def test_delay_schedule(self, controller):
        assert [controller.delay_ms(n) for n in range(3)] == [0, 1000, 2000]

    @pytest.mark.asyncio
    async def test_permanent_failure_attempts_at_exponential_delays(self, controller, sleep):
        operation = AsyncMock(side_effect=server_error())

        with pytest.raises(ExhaustedRetryError) as exc_info:
            await controller.run(operation)

        assert operation.await_count == 3
        assert sleep.delays == [1.0, 2.0]
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, NetworkError)

    @pytest.mark.asyncio
    async def test_success_after_transient_failure(self, controller, sleep):
        operation = AsyncMock(side_effect=[server_error(), "payload"])

        result = await controller.run(operation)

        assert result == "payload"
        assert operation.await_count == 2
        assert sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_first_attempt_has_no_delay(self, controller, sleep):
        operation = AsyncMock(return_value="ok")
        assert await controller.run(operation) == "ok"
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(self, controller, sleep):
        operation = AsyncMock(side_effect=ValidationError("missing id"))

        with pytest.raises(ValidationError):
            await controller.run(operation)

        assert operation.await_count == 1
        assert sleep.delays == []

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryController(max_attempts=0)

    @pytest.mark.asyncio
    async def test_retry_async_shortcut(self):
        operation = AsyncMock(side_effect=[server_error(), 7])
        assert await retry_async(operation, max_attempts=2, base_delay_ms=1) == 7


class TestRetryCancellation:
    """Cancellation stops further attempts."""

    @pytest.mark.asyncio
    async def test_cancelled_token_prevents_any_attempt(self, controller):
        token = CancellationToken("t")
        token.cancel()
        operation = AsyncMock(return_value="ok")

        with pytest.raises(AbortError):
            await controller.run(operation, token)

        operation.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_during_backoff_stops_retries(self):
        token = CancellationToken("t")
        operation = AsyncMock(side_effect=server_error())

        async def cancelling_sleep(seconds):
            token.cancel()
            await asyncio.sleep(0)

        controller = RetryController(max_attempts=3, base_delay_ms=1000, sleep=cancelling_sleep)

        with pytest.raises(AbortError):
            await controller.run(operation, token)

        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_late_result_after_cancel_is_discarded(self, controller):
        token = CancellationToken("t")
        gate = asyncio.Event()

        async def slow_operation():
            await gate.wait()
            return "late"

        task = asyncio.ensure_future(controller.run(slow_operation, token))
        await asyncio.sleep(0)
        token.cancel()
        gate.set()

        with pytest.raises(AbortError):
            await task


# ============================================================
# CANCELLATION TOKEN
# ============================================================

class TestCancellationToken:
    """Token primitives."""

    @pytest.mark.asyncio
    async def test_guard_returns_result_when_not_cancelled(self):
        token = CancellationToken("t")

        async def value():
            return 5

        assert await token.guard(value()) == 5

    @pytest.mark.asyncio
    async def test_guard_propagates_operation_error(self):
        token = CancellationToken("t")

        async def failing():
            raise NetworkError("boom")

        with pytest.raises(NetworkError):
            await token.guard(failing())

    @pytest.mark.asyncio
    async def test_sleep_ends_early_on_cancel(self):
        token = CancellationToken("t")
        task = asyncio.ensure_future(token.sleep(60))
        await asyncio.sleep(0)
        token.cancel()

        with pytest.raises(AbortError):
            await asyncio.wait_for(task, timeout=1)

    def test_cancel_is_idempotent(self):
        token = CancellationToken("t")
        token.cancel()
        token.cancel()
        assert token.cancelled
        with pytest.raises(AbortError):
            token.raise_if_cancelled()
