"""
Aggregation Orchestrator - Parallel category fetches, one unified view.

============================================================
RESPONSIBILITY
============================================================
- Fans out one independent pipeline per category
- Each pipeline: cache -> provider (with retry) -> validation ->
  rolling statistics and spike detection -> cache write
- Any failure inside a pipeline ends in that category's fallback bundle;
  no other category is affected
- Manual refresh is debounced; periodic refresh runs between start()
  and stop()
- Every finished bundle is published to the MetricsStore
- Switching to a new pair shows fallback placeholders until each
  category settles

============================================================
FAILURE REPORTING
============================================================
- NetworkError, ValidationError and ExhaustedRetryError are anticipated:
  the category is degraded (fallback data plus a diagnostic error)
  and the aggregate is_error stays False
- Any other exception is unexpected: it is logged with its traceback,
  the category still gets its fallback, and is_error becomes True
- AbortError belongs to a superseded request and is discarded

============================================================
"""

import asyncio
import logging
from dataclasses import replace
from typing import Iterable, Optional

from chain_metrics.cache import CacheStore
from chain_metrics.cancellation import CancellationToken
from chain_metrics.clock import ClockProtocol, get_clock
from chain_metrics.config import MetricsLayerConfig, get_config
from chain_metrics.exceptions import AbortError, MetricsLayerError
from chain_metrics.fallback import FallbackSynthesizer
from chain_metrics.history import PaginatedHistoryFetcher
from chain_metrics.models import (
    BUNDLE_TYPES,
    AggregateView,
    CacheInfo,
    Category,
    CategoryBundle,
    CategoryState,
)
from chain_metrics.providers.base import BaseMetricsProvider
from chain_metrics.retry import RetryController, SleepFunc
from chain_metrics.rolling_stats import rolling_averages
from chain_metrics.scheduling import Debouncer, PeriodicTask
from chain_metrics.spike_detection import detect_batch
from chain_metrics.store import MetricsStore
from chain_metrics.validation import ValidatedCategory, validate_category_payload


logger = logging.getLogger(__name__)


def category_key(category: Category, timeframe: str) -> str:
    return f"{category.value}-{timeframe}"


class AggregationOrchestrator:
    """
    Composes every category into one AggregateView.

    Usage:
        orchestrator = AggregationOrchestrator(provider)
        view = await orchestrator.start("ethereum", "30D")
        ...
        await orchestrator.refresh()
        await orchestrator.stop()
    """

    def __init__(
        self,
        provider: BaseMetricsProvider,
        cache: Optional[CacheStore] = None,
        config: Optional[MetricsLayerConfig] = None,
        store: Optional[MetricsStore] = None,
        clock: Optional[ClockProtocol] = None,
        sleep: Optional[SleepFunc] = None,
        categories: Iterable[Category] = tuple(Category),
    ) -> None:
        self._provider = provider
        self._config = config or get_config()
        self._clock = clock or get_clock()
        self._cache = cache if cache is not None else CacheStore(clock=self._clock)
        self._store = store or MetricsStore()
        self._sleep = sleep
        self._categories = tuple(categories)
        self._fallback = FallbackSynthesizer(self._clock)

        self._network_id: Optional[str] = None
        self._timeframe: Optional[str] = None
        self._states: dict[Category, CategoryState] = {
            category: CategoryState(category) for category in self._categories
        }
        self._tokens: dict[Category, CancellationToken] = {}
        self._unexpected: dict[Category, str] = {}
        self._fetchers: list[PaginatedHistoryFetcher] = []

        self._debouncer = Debouncer(
            self._config.refresh.debounce_ms / 1000,
            self._refresh_now,
            name="orchestrator:refresh",
        )
        self._periodic: Optional[PeriodicTask] = None

    # --------------------------------------------------------
    # Read side
    # --------------------------------------------------------

    @property
    def store(self) -> MetricsStore:
        return self._store

    @property
    def cache(self) -> CacheStore:
        return self._cache

    @property
    def is_running(self) -> bool:
        return self._periodic is not None and self._periodic.running

    @property
    def is_loading(self) -> bool:
        return any(state.is_loading for state in self._states.values())

    def state(self, category: Category) -> CategoryState:
        return self._states[category]

    def view(self) -> AggregateView:
        """Current aggregate over every category."""
        errors = [
            f"{category.value}: {state.error}"
            for category, state in self._states.items()
            if state.error
        ]
        is_error = bool(self._unexpected)
        return AggregateView(
            network_id=self._network_id or "",
            timeframe=self._timeframe or "",
            categories=dict(self._states),
            is_loading=self.is_loading,
            is_error=is_error,
            is_degraded=any(
                state.error is not None or (state.is_fallback and not state.is_loading)
                for state in self._states.values()
            ),
            error="; ".join(errors) if errors else None,
        )

    # --------------------------------------------------------
    # Loading
    # --------------------------------------------------------

    async def load(self, network_id: str, timeframe: str, force: bool = False) -> AggregateView:
        """
        Fetch every category for (network_id, timeframe) in parallel.

        Args:
            force: bypass cached bundles

        Returns:
            The aggregate view once every category of this request has
            settled (or been superseded)
        """
        same_pair = (network_id, timeframe) == (self._network_id, self._timeframe)
        self._network_id = network_id
        self._timeframe = timeframe

        for category in self._categories:
            previous = self._states[category]
            self._states[category] = (
                replace(previous, is_loading=True)
                if same_pair
                else self._placeholder_state(category, network_id, timeframe)
            )
        self._store.set_loading(True)

        logger.info(f"[orchestrator] Loading {network_id}/{timeframe} (force={force})")
        await asyncio.gather(*(
            self._load_category(category, network_id, timeframe, force)
            for category in self._categories
        ))
        return self.view()

    async def _load_category(
        self,
        category: Category,
        network_id: str,
        timeframe: str,
        force: bool,
    ) -> None:
        token = self._supersede(category)
        namespace = self._cache.namespace(network_id)
        key = category_key(category, timeframe)
        name = f"{category.value}:{network_id}-{timeframe}"

        if not force:
            cached = namespace.get(key)
            if cached is not None:
                info = namespace.get_entry_info(key)
                logger.debug(f"[orchestrator] Cache hit for {name}")
                self._finish(category, token, CategoryState(
                    category,
                    data=cached,
                    is_fallback=cached.is_fallback,
                    cache_info=CacheInfo(hit=True, timestamp=info.timestamp, size=info.size),
                ))
                return

        retry = RetryController(
            max_attempts=self._config.retry.max_attempts,
            base_delay_ms=self._config.retry.base_delay_ms,
            sleep=self._sleep,
            name=f"orchestrator:{name}",
        )

        try:
            raw = await retry.run(
                lambda: self._provider.fetch_category(category, network_id, timeframe),
                token,
            )
            validated = validate_category_payload(category, network_id, timeframe, raw, self._clock)
            bundle = self._build_bundle(validated)

        except AbortError:
            logger.debug(f"[orchestrator] {name} superseded")
            return

        except MetricsLayerError as e:
            if token.cancelled:
                return
            logger.warning(f"[orchestrator] {name} degraded to fallback: {e}")
            self._finish(category, token, self._fallback_state(category, network_id, timeframe, str(e)))
            return

        except Exception as e:
            if token.cancelled:
                return
            logger.exception(f"[orchestrator] {name} failed unexpectedly")
            self._finish(
                category,
                token,
                self._fallback_state(category, network_id, timeframe, f"Unexpected error: {e}"),
                unexpected_error=str(e),
            )
            return

        if token.cancelled:
            return

        namespace.set(key, bundle, self._config.cache_ttl.for_category(category))
        info = namespace.get_entry_info(key)
        self._finish(category, token, CategoryState(
            category,
            data=bundle,
            cache_info=CacheInfo(hit=False, timestamp=info.timestamp, size=info.size),
        ))

    def _build_bundle(self, validated: ValidatedCategory) -> CategoryBundle:
        """Attach rolling averages and spike detection to a validated payload."""
        category = validated.category
        windows = self._config.rolling.windows
        threshold = self._config.spike.for_category(category)

        history_values = {
            name: [point.value for point in validated.history.get(name, [])]
            for name in validated.metrics
        }
        rolling = {
            name: rolling_averages(values, windows) for name, values in history_values.items()
        }
        spikes = detect_batch(
            {
                name: values + [validated.metrics[name].value]
                for name, values in history_values.items()
            },
            threshold,
            windows,
        )

        return BUNDLE_TYPES[category](
            id=validated.id,
            network_id=validated.network_id,
            timeframe=validated.timeframe,
            created_at=validated.created_at,
            updated_at=validated.updated_at,
            metrics=validated.metrics,
            rolling_averages=rolling,
            spike_detection=spikes,
            analysis=validated.analysis,
        )

    def _fallback_state(
        self,
        category: Category,
        network_id: str,
        timeframe: str,
        error: str,
    ) -> CategoryState:
        return CategoryState(
            category,
            data=self._fallback.synthesize(category, network_id, timeframe),
            is_fallback=True,
            error=error,
        )

    def _placeholder_state(self, category: Category, network_id: str, timeframe: str) -> CategoryState:
        """Fallback data shown while the first bundle of a new pair is in flight."""
        return CategoryState(
            category,
            data=self._fallback.synthesize(category, network_id, timeframe),
            is_loading=True,
            is_fallback=True,
        )

    def _supersede(self, category: Category) -> CancellationToken:
        previous = self._tokens.get(category)
        if previous is not None:
            previous.cancel()
        token = CancellationToken(f"orchestrator:{category.value}")
        self._tokens[category] = token
        return token

    def _finish(
        self,
        category: Category,
        token: CancellationToken,
        state: CategoryState,
        unexpected_error: Optional[str] = None,
    ) -> None:
        """Commit a category result unless its request was superseded."""
        if token.cancelled:
            return
        if unexpected_error is None:
            self._unexpected.pop(category, None)
        else:
            self._unexpected[category] = unexpected_error

        self._states[category] = state
        if state.data is not None:
            self._store.set_category(category, state.data)
        if not self.is_loading:
            self._store.set_loading(False)
            self._store.set_error(self.view().error)

    # --------------------------------------------------------
    # Refresh
    # --------------------------------------------------------

    def refresh(self) -> asyncio.Future:
        """
        Invalidate and refetch every category, debounced.

        Rapid calls coalesce into one refresh; every caller receives the
        same future.
        """
        return self._debouncer.trigger()

    async def _refresh_now(self) -> None:
        if self._network_id is None or self._timeframe is None:
            logger.warning("[orchestrator] Refresh requested before any load")
            return

        network_id, timeframe = self._network_id, self._timeframe
        namespace = self._cache.namespace(network_id)
        pattern = "^(" + "|".join(category.value for category in self._categories) + ")-"
        removed = namespace.delete_by_pattern(pattern)
        logger.info(f"[orchestrator] Refreshing {network_id}/{timeframe}, invalidated {removed} entries")

        await asyncio.gather(
            self.load(network_id, timeframe, force=True),
            *(fetcher.refetch() for fetcher in self._fetchers if fetcher.network_id == network_id),
        )

    # --------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------

    async def start(self, network_id: str, timeframe: str) -> AggregateView:
        """Mount: initial load plus periodic refresh when enabled."""
        if self._config.refresh.auto_refresh and not self.is_running:
            self._periodic = PeriodicTask(
                self._config.refresh.interval_seconds,
                self._refresh_now,
                name="orchestrator:periodic",
            )
            self._periodic.start()
        return await self.load(network_id, timeframe)

    async def stop(self) -> None:
        """Unmount: stop refresh, cancel in-flight requests, close fetchers."""
        if self._periodic is not None:
            await self._periodic.stop()
            self._periodic = None
        self._debouncer.cancel()

        for token in self._tokens.values():
            token.cancel()
        for category, state in self._states.items():
            if state.is_loading:
                self._states[category] = replace(state, is_loading=False)
        for fetcher in self._fetchers:
            fetcher.close()
        self._fetchers.clear()
        self._store.set_loading(False)
        logger.info("[orchestrator] Stopped")

    def create_history_fetcher(
        self,
        metric: str,
        timeframe: Optional[str] = None,
        network_id: Optional[str] = None,
    ) -> PaginatedHistoryFetcher:
        """History fetcher sharing this orchestrator's cache, config and store."""
        network_id = network_id or self._network_id
        timeframe = timeframe or self._timeframe
        if network_id is None or timeframe is None:
            raise ValueError("network_id and timeframe are required before the first load")

        fetcher = PaginatedHistoryFetcher(
            self._provider,
            network_id,
            metric,
            timeframe,
            cache=self._cache.namespace(network_id),
            config=self._config,
            sleep=self._sleep,
            on_update=self._store.set_historical_data,
        )
        self._fetchers.append(fetcher)
        return fetcher

    def __repr__(self) -> str:
        return (
            f"<AggregationOrchestrator(network={self._network_id}, timeframe={self._timeframe}, "
            f"loading={self.is_loading})>"
        )
