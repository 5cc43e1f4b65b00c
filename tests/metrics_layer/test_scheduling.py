"""
Tests for periodic and debounced scheduling.
"""

import asyncio

import pytest

from chain_metrics.exceptions import AbortError
from chain_metrics.scheduling import Debouncer, PeriodicTask


class Counter:
    """Async action that counts its runs."""

    def __init__(self, fail=False):
        self.runs = 0
        self.fail = fail

    async def __call__(self):
        self.runs += 1
        if self.fail:
            raise RuntimeError("scheduled failure")


class TestPeriodicTask:
    """Explicit start/stop lifecycle."""

    @pytest.mark.asyncio
    async def test_runs_until_stopped(self):
        action = Counter()
        task = PeriodicTask(0.01, action)

        task.start()
        assert task.running is True
        await asyncio.sleep(0.05)
        await task.stop()

        runs = action.runs
        assert runs >= 1
        assert task.running is False

        await asyncio.sleep(0.03)
        assert action.runs == runs

    @pytest.mark.asyncio
    async def test_first_run_waits_one_interval(self):
        action = Counter()
        task = PeriodicTask(10, action)

        task.start()
        await asyncio.sleep(0)
        await task.stop()

        assert action.runs == 0

    @pytest.mark.asyncio
    async def test_failures_do_not_stop_schedule(self):
        action = Counter(fail=True)
        task = PeriodicTask(0.01, action)

        task.start()
        await asyncio.sleep(0.05)
        await task.stop()

        assert action.runs >= 2

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        task = PeriodicTask(10, Counter())
        task.start()
        task.start()
        assert task.running is True
        await task.stop()

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            PeriodicTask(0, Counter())


class TestDebouncer:
    """Trailing-edge coalescing."""

    @pytest.mark.asyncio
    async def test_rapid_triggers_coalesce(self):
        action = Counter()
        debouncer = Debouncer(0.01, action)

        futures = [debouncer.trigger() for _ in range(5)]
        await futures[-1]

        assert action.runs == 1
        assert debouncer.run_count == 1
        assert all(future is futures[0] for future in futures)

    @pytest.mark.asyncio
    async def test_separate_windows_run_separately(self):
        action = Counter()
        debouncer = Debouncer(0.01, action)

        await debouncer.trigger()
        await debouncer.trigger()

        assert action.runs == 2

    @pytest.mark.asyncio
    async def test_cancel_rejects_waiters(self):
        action = Counter()
        debouncer = Debouncer(0.01, action)

        future = debouncer.trigger()
        debouncer.cancel()

        with pytest.raises(AbortError):
            await future
        await asyncio.sleep(0.03)
        assert action.runs == 0
        assert debouncer.pending is False

    @pytest.mark.asyncio
    async def test_failure_reaches_waiters(self):
        debouncer = Debouncer(0.01, Counter(fail=True))

        with pytest.raises(RuntimeError):
            await debouncer.trigger()
