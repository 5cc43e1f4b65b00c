"""
Tests for the Paginated History Fetcher.

============================================================
PURPOSE
============================================================
Page caching, has_more detection, request supersession,
invalidation and optimistic mutation.

============================================================
"""

import asyncio
from datetime import timedelta

import pytest

from chain_metrics.cache import CacheStore
from chain_metrics.cancellation import CancellationToken
from chain_metrics.clock import MockClock
from chain_metrics.config import MetricsLayerConfig
from chain_metrics.exceptions import ValidationError
from chain_metrics.history import PaginatedHistoryFetcher, page_key
from chain_metrics.models import HistoryState, MetricSeriesPoint
from chain_metrics.providers.mock import MockMetricsProvider, build_series


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
def clock():
    return MockClock()


@pytest.fixture
def cache(clock):
    return CacheStore(clock=clock).namespace("ethereum")


@pytest.fixture
def config():
    config = MetricsLayerConfig()
    config.history.page_size = 30
    return config


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def provider(clock):
    return MockMetricsProvider(clock=clock, total_points=75)


@pytest.fixture
def fetcher(provider, cache, config, sleep):
    return PaginatedHistoryFetcher(
        provider, "ethereum", "totalTVL", "30D", cache=cache, config=config, sleep=sleep
    )


# ============================================================
# LOADING AND PAGINATION
# ============================================================

class TestInitialLoad:
    """Page 0 and the state machine."""

    @pytest.mark.asyncio
    async def test_load_first_page(self, fetcher, provider):
        assert fetcher.state is HistoryState.IDLE

        points = await fetcher.load()

        assert len(points) == 30
        assert fetcher.state is HistoryState.READY
        assert fetcher.has_more is True
        assert provider.calls[0] == ("page", "ethereum", "totalTVL", "30D", 0, 30)

    @pytest.mark.asyncio
    async def test_cached_page_skips_provider(self, fetcher, provider, cache, clock):
        cached = (MetricSeriesPoint(timestamp=clock.now(), value=1.0),)
        cache.set(page_key("totalTVL", "30D", 0), cached, 300_000)

        points = await fetcher.load()

        assert points == list(cached)
        assert provider.call_count("page") == 0
        assert fetcher.cache_info.hit is True
        assert fetcher.has_more is False

    @pytest.mark.asyncio
    async def test_page_is_cached_after_fetch(self, fetcher, cache):
        await fetcher.load()
        assert cache.get(page_key("totalTVL", "30D", 0)) is not None

    @pytest.mark.asyncio
    async def test_load_retries_then_succeeds(self, fetcher, provider, sleep):
        provider.fail_pages(times=2)

        points = await fetcher.load()

        assert len(points) == 30
        assert provider.call_count("page") == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_load_exhausts_retry_count(self, fetcher, provider, sleep):
        provider.fail_pages()

        points = await fetcher.load()

        assert points == []
        assert fetcher.state is HistoryState.ERROR
        assert fetcher.error is not None
        assert fetcher.view().is_error is True
        assert provider.call_count("page") == 3

    @pytest.mark.asyncio
    async def test_malformed_page_sets_error(self, fetcher, provider, sleep):
        async def bad_page(*args):
            return [{"timestamp": "2024-01-01T00:00:00Z"}]

        provider.fetch_page = bad_page

        await fetcher.load()

        assert fetcher.state is HistoryState.ERROR
        assert sleep.delays == []


class TestLoadMore:
    """Appending pages."""

    @pytest.mark.asyncio
    async def test_pages_until_short_page(self, fetcher, provider):
        await fetcher.load()
        await fetcher.load_more()
        assert fetcher.has_more is True

        appended = await fetcher.load_more()

        assert len(appended) == 15
        assert len(fetcher.data) == 75
        assert fetcher.has_more is False
        assert [call[4] for call in provider.calls] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_series_stays_ascending_and_unique(self, fetcher):
        await fetcher.load()
        await fetcher.load_more()

        timestamps = [point.timestamp for point in fetcher.data]
        assert timestamps == sorted(timestamps)
        assert len(set(timestamps)) == len(timestamps)

    @pytest.mark.asyncio
    async def test_no_call_when_exhausted(self, fetcher, provider):
        await fetcher.load()
        await fetcher.load_more()
        await fetcher.load_more()
        calls = provider.call_count("page")

        assert await fetcher.load_more() == []
        assert provider.call_count("page") == calls

    @pytest.mark.asyncio
    async def test_no_call_before_load(self, fetcher, provider):
        assert await fetcher.load_more() == []
        assert provider.call_count("page") == 0

    @pytest.mark.asyncio
    async def test_failure_is_not_retried(self, fetcher, provider, sleep):
        await fetcher.load()
        provider.fail_pages(times=1)

        appended = await fetcher.load_more()

        assert appended == []
        assert provider.call_count("page") == 2
        assert sleep.delays == []
        assert fetcher.error is not None
        assert fetcher.state is HistoryState.READY
        assert len(fetcher.data) == 30

    @pytest.mark.asyncio
    async def test_overlapping_points_are_dropped(self, fetcher, provider, clock):
        await fetcher.load()
        tail = fetcher.data[-1]
        overlap = [
            {"timestamp": tail.timestamp.isoformat(), "value": 1.0},
            {"timestamp": (tail.timestamp + timedelta(days=1)).isoformat(), "value": 2.0},
        ]

        async def overlapping_page(*args):
            return overlap

        provider.fetch_page = overlapping_page

        appended = await fetcher.load_more()

        assert len(appended) == 1
        assert appended[0].value == 2.0
        assert fetcher.has_more is False

    @pytest.mark.asyncio
    async def test_overlapping_full_pages_advance(self, fetcher, provider, clock):
        """Each page repeats the previous page's last point."""
        series = build_series(clock.now(), 100)
        requested = []

        async def overlapping_pages(network_id, metric, timeframe, page, page_size):
            requested.append(page)
            start = page * (page_size - 1)
            return series[start:start + page_size]

        provider.fetch_page = overlapping_pages
        await fetcher.load()

        for _ in range(10):
            if not fetcher.has_more:
                break
            await fetcher.load_more()

        assert requested == [0, 1, 2, 3]
        assert fetcher.has_more is False
        assert len(fetcher.data) == 100
        timestamps = [point.timestamp for point in fetcher.data]
        assert len(set(timestamps)) == 100


# ============================================================
# SUPERSESSION AND LIFECYCLE
# ============================================================

class TestSupersession:
    """A newer request cancels the older one."""

    @pytest.mark.asyncio
    async def test_second_load_supersedes_first(self, fetcher, provider):
        provider.page_gate = asyncio.Event()

        first = asyncio.ensure_future(fetcher.load())
        await asyncio.sleep(0)
        second = asyncio.ensure_future(fetcher.load())
        await asyncio.sleep(0)
        provider.page_gate.set()

        first_result, second_result = await asyncio.gather(first, second)

        assert first_result == []
        assert len(second_result) == 30
        assert len(fetcher.data) == 30
        assert fetcher.state is HistoryState.READY

    @pytest.mark.asyncio
    async def test_close_discards_in_flight_result(self, fetcher, provider):
        provider.page_gate = asyncio.Event()

        task = asyncio.ensure_future(fetcher.load())
        await asyncio.sleep(0)
        fetcher.close()
        provider.page_gate.set()

        assert await task == []
        assert fetcher.data == ()
        assert await fetcher.load() == []

    @pytest.mark.asyncio
    async def test_fetch_page_with_cancelled_token_is_empty(self, fetcher):
        token = CancellationToken("t")
        token.cancel()

        assert await fetcher.fetch_page(0, token=token) == []


class TestInvalidationAndMutation:
    """refetch and mutate."""

    @pytest.mark.asyncio
    async def test_refetch_invalidates_pages(self, fetcher, provider, cache):
        await fetcher.load()
        await fetcher.load_more()

        await fetcher.refetch()

        assert provider.call_count("page") == 3
        assert cache.get(page_key("totalTVL", "30D", 1)) is None
        assert len(fetcher.data) == 30

    @pytest.mark.asyncio
    async def test_refetch_leaves_other_keys(self, fetcher, cache):
        cache.set(page_key("totalTVLX", "30D", 0), ("other",), 300_000)
        await fetcher.load()

        await fetcher.refetch()

        assert cache.get(page_key("totalTVLX", "30D", 0)) == ("other",)

    @pytest.mark.asyncio
    async def test_mutate_replaces_data_and_primes_cache(self, fetcher, provider, cache, clock):
        await fetcher.load()
        now = clock.now()
        points = [
            MetricSeriesPoint(timestamp=now, value=3.0),
            MetricSeriesPoint(timestamp=now - timedelta(days=1), value=2.0),
        ]

        fetcher.mutate(points)

        assert [point.value for point in fetcher.data] == [2.0, 3.0]
        assert cache.get(page_key("totalTVL", "30D", 0)) == fetcher.data

        await fetcher.load()
        assert provider.call_count("page") == 1
        assert [point.value for point in fetcher.data] == [2.0, 3.0]

    @pytest.mark.asyncio
    async def test_load_more_after_mutate_continues_from_mutated_length(self, fetcher, provider, clock):
        await fetcher.load()
        end = clock.now() - timedelta(days=200)
        fetcher.mutate([
            MetricSeriesPoint(timestamp=end - timedelta(days=i), value=float(i))
            for i in range(45)
        ])

        appended = await fetcher.load_more()

        assert provider.calls[-1][4] == 2
        assert len(appended) == 15
        assert len(fetcher.data) == 60

    def test_mutate_rejects_duplicates(self, fetcher, clock):
        now = clock.now()
        with pytest.raises(ValidationError):
            fetcher.mutate([
                MetricSeriesPoint(timestamp=now, value=1.0),
                MetricSeriesPoint(timestamp=now, value=2.0),
            ])

    @pytest.mark.asyncio
    async def test_mutate_wins_over_in_flight_load(self, fetcher, provider, clock):
        provider.page_gate = asyncio.Event()
        task = asyncio.ensure_future(fetcher.load())
        await asyncio.sleep(0)

        fetcher.mutate([MetricSeriesPoint(timestamp=clock.now(), value=9.0)])
        provider.page_gate.set()

        assert await task == []
        assert [point.value for point in fetcher.data] == [9.0]


class TestDerivedViews:
    """Summary and moving averages over loaded data."""

    @pytest.mark.asyncio
    async def test_summary_and_moving_average(self, fetcher):
        await fetcher.load()

        stats = fetcher.summary()
        averages = fetcher.moving_average(7)

        assert stats.count == 30
        assert len(averages) == 30
        assert averages[5] is None
        assert averages[6] is not None

    @pytest.mark.asyncio
    async def test_on_update_receives_series(self, provider, cache, config, sleep):
        updates = []
        fetcher = PaginatedHistoryFetcher(
            provider, "ethereum", "totalTVL", "30D",
            cache=cache, config=config, sleep=sleep,
            on_update=lambda key, points: updates.append((key, len(points))),
        )

        await fetcher.load()
        await fetcher.load_more()

        assert updates == [("totalTVL-30D", 30), ("totalTVL-30D", 60)]
