"""
Metrics snapshot demo.

Demonstrates:
- Parallel category loading through the orchestrator
- Fallback bundles when a category keeps failing
- Paginated history with load-more
- Rolling averages and spike detection on the loaded data

Runs against the in-process mock provider by default. Pass --live to use
the dashboard API configured through CHAIN_METRICS_API_URL.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from chain_metrics import (
    AggregationOrchestrator,
    AggregateView,
    Category,
    DashboardApiProvider,
    MetricsLayerConfig,
    MockMetricsProvider,
    setup_logging,
)


logger = logging.getLogger(__name__)


def print_banner(text: str) -> None:
    """Print a banner."""
    print("\n" + "=" * 60)
    print(f"  {text}")
    print("=" * 60)


def print_view(view: AggregateView) -> None:
    """Print every category of an aggregate view."""
    print(f"  Network: {view.network_id} | Timeframe: {view.timeframe}")
    print(f"  Loading: {view.is_loading} | Error: {view.is_error} | Degraded: {view.is_degraded}")

    for category, state in view.categories.items():
        bundle = state.data
        marker = "FALLBACK" if state.is_fallback else ("cached" if state.cache_info.hit else "live")
        print(f"\n  [{category.value}] {marker}")
        if state.error:
            print(f"    error: {state.error}")
        if bundle is None:
            continue
        for name, snapshot in bundle.metrics.items():
            spike = bundle.spike_detection[name]
            averages = bundle.rolling_averages[name]
            print(
                f"    {name:<22} {snapshot.value:>14,.2f}  {snapshot.trend.value:<6} "
                f"7d={averages.d7}  spike={spike.is_spike} ({spike.severity.value})"
            )


async def run(live: bool, network_id: str, timeframe: str) -> None:
    config = MetricsLayerConfig.from_env()
    config.refresh.auto_refresh = False

    if live:
        provider = DashboardApiProvider(config.provider)
    else:
        provider = MockMetricsProvider(history_length=40)
        provider.fail_category(Category.AI, status_code=503)
        # Retry backoff is irrelevant for the demo
        config.retry.base_delay_ms = 10

    async with provider:
        orchestrator = AggregationOrchestrator(provider, config=config)

        print_banner(f"LOAD: {network_id} / {timeframe}")
        view = await orchestrator.start(network_id, timeframe)
        print_view(view)

        print_banner("RELOAD (served from cache)")
        view = await orchestrator.load(network_id, timeframe)
        print_view(view)

        print_banner("HISTORY: totalTVL")
        history = orchestrator.create_history_fetcher("totalTVL")
        await history.load()
        while history.has_more:
            appended = await history.load_more()
            if not appended:
                break
        stats = history.summary()
        print(f"  Points: {stats.count} | Average: {stats.average:,.2f} | Trend: {stats.trend.value}")
        print(f"  Change: {stats.change_percent:.2f}% | Volatility: {stats.volatility:.2f}%")
        print(f"  Cache: {history.cache_info.to_dict()}")

        await orchestrator.stop()
        print(f"\n  Cache stats: {orchestrator.cache.stats()}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Print a metrics snapshot")
    parser.add_argument("--live", action="store_true", help="Use the dashboard API")
    parser.add_argument("--network", default="ethereum")
    parser.add_argument("--timeframe", default="30D")
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()

    setup_logging(level=args.log_level)
    try:
        asyncio.run(run(args.live, args.network, args.timeframe))
    except Exception as e:
        logger.error(f"Snapshot failed: {e}", exc_info=True)
        raise


if __name__ == "__main__":
    main()
