"""
Tests for the Metrics Store.
"""

from datetime import datetime, timezone

import pytest

from chain_metrics.clock import MockClock
from chain_metrics.fallback import synthesize
from chain_metrics.models import Category, MetricSeriesPoint
from chain_metrics.store import MetricsStore


@pytest.fixture
def store():
    return MetricsStore()


@pytest.fixture
def bundle():
    return synthesize(Category.TVL, "ethereum", "30D", MockClock())


class TestMutations:
    """Each mutation produces a new snapshot."""

    def test_initial_snapshot_is_empty(self, store):
        snapshot = store.snapshot()
        assert snapshot.usage is None
        assert snapshot.historical == {}
        assert snapshot.version == 0

    def test_named_setters(self, store, bundle):
        store.set_usage_metrics(bundle)
        store.set_tvl_metrics(bundle)
        store.set_cashflow_metrics(bundle)
        store.set_market_overview(bundle)
        store.set_ai_analysis(bundle)

        snapshot = store.snapshot()
        for category in Category:
            assert snapshot.category(category) is bundle
        assert snapshot.version == 5

    def test_set_category_dispatches(self, store, bundle):
        store.set_category(Category.TVL, bundle)
        assert store.snapshot().tvl is bundle
        assert store.snapshot().usage is None

    def test_snapshots_are_immutable(self, store, bundle):
        before = store.snapshot()
        store.set_tvl_metrics(bundle)
        assert before.tvl is None
        assert store.snapshot() is not before

    def test_historical_data_by_key(self, store):
        point = MetricSeriesPoint(timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc), value=1.0)
        store.set_historical_data("totalTVL-30D", [point])
        store.set_historical_data("dominance-30D", [])

        historical = store.snapshot().historical
        assert historical["totalTVL-30D"] == (point,)
        assert historical["dominance-30D"] == ()

    def test_set_loading_only_on_change(self, store):
        store.set_loading(False)
        assert store.snapshot().version == 0

        store.set_loading(True)
        store.set_loading(True)
        assert store.snapshot().version == 1

    def test_clear_data(self, store, bundle):
        store.set_tvl_metrics(bundle)
        store.set_error("tvl: failed")
        store.set_loading(True)

        store.clear_data()

        snapshot = store.snapshot()
        assert snapshot.tvl is None
        assert snapshot.error is None
        assert snapshot.is_loading is False


class TestSubscriptions:
    """One channel for every change."""

    def test_listener_receives_every_change(self, store, bundle):
        received = []
        store.subscribe(received.append)

        store.set_tvl_metrics(bundle)
        store.set_error("boom")

        assert [snapshot.version for snapshot in received] == [1, 2]
        assert received[-1].error == "boom"

    def test_unsubscribe(self, store, bundle):
        received = []
        unsubscribe = store.subscribe(received.append)
        unsubscribe()
        unsubscribe()

        store.set_tvl_metrics(bundle)

        assert received == []

    def test_failing_listener_does_not_block_others(self, store, bundle):
        received = []

        def failing(snapshot):
            raise RuntimeError("listener bug")

        store.subscribe(failing)
        store.subscribe(received.append)

        store.set_tvl_metrics(bundle)

        assert len(received) == 1
