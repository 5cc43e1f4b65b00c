"""
Tests for the Fallback Synthesizer.

============================================================
PURPOSE
============================================================
A fallback bundle must have exactly the key structure of a live
bundle for every category, with benign default values.

============================================================
"""

import pytest

from chain_metrics.clock import MockClock
from chain_metrics.config import MetricsLayerConfig
from chain_metrics.fallback import FallbackSynthesizer, synthesize
from chain_metrics.models import BUNDLE_TYPES, Category, Severity, Trend
from chain_metrics.orchestrator import AggregationOrchestrator
from chain_metrics.providers.mock import MockMetricsProvider


# ============================================================
# FIXTURES
# ============================================================

def key_structure(value):
    """Nested dict keys, ignoring leaf values and list contents."""
    if isinstance(value, dict):
        return {key: key_structure(item) for key, item in value.items()}
    return None


@pytest.fixture
def clock():
    return MockClock()


@pytest.fixture
def synthesizer(clock):
    return FallbackSynthesizer(clock)


@pytest.fixture
def config():
    config = MetricsLayerConfig()
    config.refresh.auto_refresh = False
    return config


# ============================================================
# DEFAULTS
# ============================================================

class TestFallbackDefaults:
    """Benign defaults for every metric."""

    @pytest.mark.parametrize("category", list(Category))
    def test_every_metric_present(self, synthesizer, category):
        bundle = synthesizer.synthesize(category, "ethereum", "30D")
        names = set(BUNDLE_TYPES[category].METRIC_NAMES)

        assert set(bundle.metrics) == names
        assert set(bundle.rolling_averages) == names
        assert set(bundle.spike_detection) == names
        assert bundle.is_fallback is True

    def test_snapshots_are_zeroed_and_stable(self, synthesizer):
        bundle = synthesizer.synthesize(Category.USAGE, "ethereum", "30D")
        for snapshot in bundle.metrics.values():
            assert snapshot.value == 0.0
            assert snapshot.trend is Trend.STABLE

    def test_fear_greed_index_is_neutral(self, synthesizer):
        bundle = synthesizer.synthesize(Category.MARKET, "bitcoin", "7D")
        assert bundle.metrics["fearGreedIndex"].value == 50.0

    def test_rolling_windows_empty(self, synthesizer):
        bundle = synthesizer.synthesize(Category.TVL, "ethereum", "30D")
        for averages in bundle.rolling_averages.values():
            assert averages.to_dict() == {"7d": None, "30d": None, "90d": None}

    def test_spikes_are_negative(self, synthesizer):
        bundle = synthesizer.synthesize(Category.CASHFLOW, "ethereum", "30D")
        for result in bundle.spike_detection.values():
            assert result.is_spike is False
            assert result.severity is Severity.LOW
            assert result.confidence == 0.0
            assert result.message == "No data available for spike detection"

    def test_ai_decor_is_hold(self, synthesizer):
        bundle = synthesizer.synthesize(Category.AI, "ethereum", "30D")
        assert bundle.analysis["sentiment"] == "neutral"
        assert bundle.analysis["signals"][0]["type"] == "hold"
        assert bundle.analysis["riskAssessment"]["maxScore"] == 10

    def test_id_carries_category_network_timeframe_and_time(self, synthesizer, clock):
        bundle = synthesizer.synthesize(Category.USAGE, "ethereum", "30D")
        assert bundle.id == f"usage-fallback-ethereum-30D-{clock.now_ms()}"
        assert bundle.created_at == clock.now()

    def test_deterministic_for_same_instant(self, clock):
        first = synthesize(Category.USAGE, "ethereum", "30D", clock)
        second = synthesize(Category.USAGE, "ethereum", "30D", clock)
        assert first == second


# ============================================================
# SCHEMA PARITY
# ============================================================

class TestSchemaParity:
    """Live and fallback bundles share one key structure."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("category", list(Category))
    async def test_matches_live_bundle(self, clock, config, synthesizer, category):
        provider = MockMetricsProvider(clock=clock, history_length=40)
        orchestrator = AggregationOrchestrator(
            provider, config=config, clock=clock, categories=[category]
        )

        view = await orchestrator.load("ethereum", "30D")
        live = view.categories[category].data
        fallback = synthesizer.synthesize(category, "ethereum", "30D")

        assert live.is_fallback is False
        live_dict = live.to_dict()
        fallback_dict = fallback.to_dict()
        assert key_structure(live_dict) == key_structure(fallback_dict)
        assert type(live) is type(fallback)
