"""
Retry Controller - Bounded exponential backoff with cooperative cancellation.

Attempt n (0-based) waits base_delay_ms * 2^(n-1) before running, so
three attempts with a 1000ms base start after delays of 0, 1000 and
2000ms. Only retryable errors are retried; anything else propagates on
the first occurrence. A cancelled sequence raises AbortError, which the
token owner discards.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from chain_metrics.cancellation import CancellationToken
from chain_metrics.exceptions import AbortError, ExhaustedRetryError, NetworkError


logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


class RetryController:
    """
    Wraps an async operation with bounded exponential-backoff retry.

    Usage:
        controller = RetryController(max_attempts=3, base_delay_ms=1000)
        payload = await controller.run(lambda: provider.fetch_category(...), token)
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay_ms: int = 1000,
        retryable: tuple[type[BaseException], ...] = (NetworkError,),
        sleep: Optional[SleepFunc] = None,
        name: str = "retry",
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.retryable = retryable
        self.name = name
        self._sleep = sleep or asyncio.sleep

    def delay_ms(self, attempt: int) -> int:
        """Delay before the given 0-based attempt."""
        if attempt == 0:
            return 0
        return self.base_delay_ms * 2 ** (attempt - 1)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        token: Optional[CancellationToken] = None,
    ) -> T:
        """
        Run the operation until it succeeds or the budget is spent.

        Raises:
            ExhaustedRetryError: every attempt failed with a retryable error
            AbortError: the token was cancelled
            Exception: any non-retryable error, unchanged
        """
        last_error: Optional[BaseException] = None

        for attempt in range(self.max_attempts):
            delay = self.delay_ms(attempt)
            if delay > 0:
                await self._wait(delay / 1000, token)

            if token is not None:
                token.raise_if_cancelled()

            try:
                if token is not None:
                    return await token.guard(operation())
                return await operation()

            except AbortError:
                raise

            except self.retryable as e:
                last_error = e
                remaining = self.max_attempts - attempt - 1
                if remaining > 0:
                    logger.warning(
                        f"[{self.name}] Attempt {attempt + 1}/{self.max_attempts} failed: {e}, "
                        f"retrying in {self.delay_ms(attempt + 1)}ms"
                    )
                else:
                    logger.warning(
                        f"[{self.name}] Attempt {attempt + 1}/{self.max_attempts} failed: {e}"
                    )

        raise ExhaustedRetryError(
            message=f"Failed after {self.max_attempts} attempts",
            attempts=self.max_attempts,
            last_error=last_error,
            source_name=self.name,
        ) from last_error

    async def _wait(self, seconds: float, token: Optional[CancellationToken]) -> None:
        if token is None:
            await self._sleep(seconds)
        else:
            await token.guard(self._sleep(seconds))


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay_ms: int = 1000,
    token: Optional[CancellationToken] = None,
) -> T:
    """Functional shortcut for a one-off RetryController run."""
    controller = RetryController(max_attempts=max_attempts, base_delay_ms=base_delay_ms)
    return await controller.run(operation, token)
