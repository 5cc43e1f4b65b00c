"""
Cancellation Tokens - Cooperative cancellation for requests and tasks.

One mechanism covers superseded requests, consumer teardown and
periodic refresh. Owners call cancel(); workers check the token before
each suspension point or race their awaitable against it with guard().
"""

import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from chain_metrics.exceptions import AbortError


logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """
    Cancel signal owned by one logical request.

    Usage:
        token = CancellationToken("tvl-30D")
        try:
            data = await token.guard(provider.fetch_page(...))
        except AbortError:
            return []
    """

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._cancelled = False
        self._event: Optional[asyncio.Event] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Signal cancellation. Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._event is not None:
            self._event.set()
        logger.debug(f"[token:{self.name}] Cancelled")

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise AbortError(f"Request {self.name!r} was cancelled", source_name=self.name)

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        if self._cancelled:
            return
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await the operation unless the token is cancelled first.

        On cancellation the operation's task is cancelled and AbortError
        is raised; a result arriving after cancellation is discarded.
        """
        if self._cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()

        operation = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self.wait())
        try:
            await asyncio.wait({operation, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            operation.cancel()
            raise
        finally:
            waiter.cancel()

        if self._cancelled:
            if not operation.done():
                operation.cancel()
            elif not operation.cancelled():
                # Retrieve the outcome so a late failure is not reported as unhandled.
                operation.exception()
            raise AbortError(f"Request {self.name!r} was cancelled", source_name=self.name)

        return operation.result()

    async def sleep(self, seconds: float) -> None:
        """Sleep that ends early, with AbortError, when the token is cancelled."""
        await self.guard(asyncio.sleep(seconds))

    def __repr__(self) -> str:
        return f"<CancellationToken(name={self.name!r}, cancelled={self._cancelled})>"
