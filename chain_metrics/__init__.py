"""
Chain Metrics Package - Metrics resilience and analytics layer.

Fetches blockchain network metrics from unreliable upstream providers and
always hands the presentation layer a fully-shaped result.

Features:
- Parallel per-category fetches with isolated failure handling
- Bounded exponential-backoff retry with cooperative cancellation
- Schema-complete fallback bundles when upstream data is unusable
- TTL cache with pattern invalidation and per-network namespaces
- Paginated history with load-more, refetch and client-side mutation
- Rolling averages and spike detection over every series

Quick Start:
    from chain_metrics import (
        AggregationOrchestrator,
        DashboardApiProvider,
        ProviderConfig,
    )

    async def main():
        async with DashboardApiProvider(ProviderConfig(base_url="http://localhost:3000/api")) as provider:
            orchestrator = AggregationOrchestrator(provider)
            view = await orchestrator.start("ethereum", "30D")

            usage = view.usage
            print(usage.metrics["dailyActiveAddresses"].value, view.is_degraded)

            history = orchestrator.create_history_fetcher("totalTVL")
            await history.load()
            await history.load_more()

            await orchestrator.stop()

Adding New Providers:
    1. Create class extending BaseMetricsProvider
    2. Implement: fetch_category(), fetch_page()
    3. Raise NetworkError for transport and HTTP failures
"""

from chain_metrics.cache import CacheStore, NamespacedCache
from chain_metrics.cancellation import CancellationToken
from chain_metrics.clock import MockClock, SystemClock, get_clock, set_clock
from chain_metrics.config import (
    CacheTTLConfig,
    HistoryConfig,
    MetricsLayerConfig,
    ProviderConfig,
    RefreshConfig,
    RetryConfig,
    RollingWindowConfig,
    SpikeConfig,
    get_config,
    set_config,
)
from chain_metrics.exceptions import (
    AbortError,
    ConfigurationError,
    ExhaustedRetryError,
    MetricsLayerError,
    NetworkError,
    ValidationError,
)
from chain_metrics.fallback import FallbackSynthesizer, synthesize
from chain_metrics.history import PaginatedHistoryFetcher
from chain_metrics.logging_config import setup_logging
from chain_metrics.models import (
    AggregateView,
    AIAnalysis,
    CacheInfo,
    CashflowMetrics,
    Category,
    CategoryBundle,
    CategoryState,
    HistoryState,
    HistoryView,
    MarketOverview,
    MetricSeriesPoint,
    MetricSnapshot,
    RollingAverageSet,
    SeriesSummary,
    Severity,
    SpikeDetectionResult,
    Trend,
    TVLMetrics,
    UsageMetrics,
)
from chain_metrics.orchestrator import AggregationOrchestrator
from chain_metrics.providers import BaseMetricsProvider, DashboardApiProvider, MockMetricsProvider
from chain_metrics.retry import RetryController
from chain_metrics.scheduling import Debouncer, PeriodicTask
from chain_metrics.store import MetricsStore, StoreSnapshot
from chain_metrics.validation import validate_category_payload, validate_series


__version__ = "1.0.0"

__all__ = [
    # Orchestration
    "AggregationOrchestrator",
    "PaginatedHistoryFetcher",
    "MetricsStore",
    "StoreSnapshot",
    # Resilience
    "CacheStore",
    "NamespacedCache",
    "CancellationToken",
    "RetryController",
    "FallbackSynthesizer",
    "synthesize",
    "Debouncer",
    "PeriodicTask",
    # Validation
    "validate_category_payload",
    "validate_series",
    # Providers
    "BaseMetricsProvider",
    "DashboardApiProvider",
    "MockMetricsProvider",
    # Models
    "AggregateView",
    "AIAnalysis",
    "CacheInfo",
    "CashflowMetrics",
    "Category",
    "CategoryBundle",
    "CategoryState",
    "HistoryState",
    "HistoryView",
    "MarketOverview",
    "MetricSeriesPoint",
    "MetricSnapshot",
    "RollingAverageSet",
    "SeriesSummary",
    "Severity",
    "SpikeDetectionResult",
    "Trend",
    "TVLMetrics",
    "UsageMetrics",
    # Exceptions
    "MetricsLayerError",
    "NetworkError",
    "ValidationError",
    "AbortError",
    "ExhaustedRetryError",
    "ConfigurationError",
    # Config
    "MetricsLayerConfig",
    "RetryConfig",
    "CacheTTLConfig",
    "HistoryConfig",
    "RefreshConfig",
    "SpikeConfig",
    "RollingWindowConfig",
    "ProviderConfig",
    "get_config",
    "set_config",
    # Clock & logging
    "SystemClock",
    "MockClock",
    "get_clock",
    "set_clock",
    "setup_logging",
]
