"""
Scheduling - Periodic refresh and debounced manual refresh.

PeriodicTask replaces interval polling with an explicit start/stop
lifecycle; both it and Debouncer stop through the same CancellationToken
used for requests.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from chain_metrics.cancellation import CancellationToken
from chain_metrics.exceptions import AbortError


logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[None]]


class PeriodicTask:
    """
    Runs an action every interval seconds until stopped.

    The first run happens one interval after start(). A failing action is
    logged and the schedule continues.
    """

    def __init__(self, interval_seconds: float, action: Action, name: str = "periodic") -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._interval = interval_seconds
        self._action = action
        self._name = name
        self._token: Optional[CancellationToken] = None
        self._task: Optional[asyncio.Task] = None
        self.run_count = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._token = CancellationToken(self._name)
        self._task = asyncio.ensure_future(self._loop(self._token))
        logger.debug(f"[{self._name}] Started with interval {self._interval}s")

    async def stop(self) -> None:
        if self._token is not None:
            self._token.cancel()
        task, self._task = self._task, None
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.debug(f"[{self._name}] Stopped after {self.run_count} runs")

    async def _loop(self, token: CancellationToken) -> None:
        while not token.cancelled:
            try:
                await token.sleep(self._interval)
            except AbortError:
                return

            try:
                await token.guard(self._action())
                self.run_count += 1
            except AbortError:
                return
            except Exception:
                logger.exception(f"[{self._name}] Scheduled run failed")


class Debouncer:
    """
    Coalesces rapid triggers into one trailing execution.

    Every trigger() restarts the window and returns a future that resolves
    when the coalesced execution finishes.
    """

    def __init__(self, delay_seconds: float, action: Action, name: str = "debounce") -> None:
        self._delay = delay_seconds
        self._action = action
        self._name = name
        self._timer: Optional[asyncio.Task] = None
        self._pending: Optional[asyncio.Future] = None
        self._token: Optional[CancellationToken] = None
        self.run_count = 0

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def trigger(self) -> asyncio.Future:
        if self._token is not None:
            self._token.cancel()

        if self._pending is None or self._pending.done():
            self._pending = asyncio.get_running_loop().create_future()

        self._token = CancellationToken(self._name)
        self._timer = asyncio.ensure_future(self._fire(self._token, self._pending))
        return self._pending

    def cancel(self) -> None:
        """Drop any pending execution. Waiters receive AbortError."""
        if self._token is not None:
            self._token.cancel()
        if self._pending is not None and not self._pending.done():
            self._pending.set_exception(AbortError(f"{self._name} cancelled", source_name=self._name))
            # Waiters may never await it; mark it retrieved.
            self._pending.exception()
        self._pending = None

    async def _fire(self, token: CancellationToken, pending: asyncio.Future) -> None:
        try:
            await token.sleep(self._delay)
        except AbortError:
            return

        self._pending = None
        try:
            await self._action()
            self.run_count += 1
            if not pending.done():
                pending.set_result(None)
        except Exception as e:
            logger.warning(f"[{self._name}] Debounced action failed: {e}")
            if not pending.done():
                pending.set_exception(e)
                pending.exception()
