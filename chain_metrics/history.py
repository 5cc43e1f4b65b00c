"""
Paginated History Fetcher - Long series, one page at a time.

============================================================
STATE MACHINE (per metric/timeframe key)
============================================================

    IDLE -> LOADING -> READY | ERROR
    READY -> LOADING_MORE -> READY

A short page (fewer than page_size points) ends the series:
has_more becomes False.

============================================================
RULES
============================================================

- Pages are cached under "{metric}-{timeframe}-page-{n}" for the
  history page TTL. A cached page is returned without a network call.
- Each logical request owns a CancellationToken. Starting a new request
  cancels the previous one; close() cancels whatever is in flight.
  A cancelled request resolves to [] and changes nothing.
- Only the initial load is retried. load_more failures are reported at
  once through the error field.
- The loaded series stays ascending with unique timestamps: appended
  points not strictly after the current tail are dropped.

============================================================
"""

import logging
import math
import re
from typing import Callable, Optional, Sequence, Union

from chain_metrics.cache import CacheStore, NamespacedCache
from chain_metrics.cancellation import CancellationToken
from chain_metrics.config import MetricsLayerConfig, get_config
from chain_metrics.exceptions import AbortError, MetricsLayerError, ValidationError
from chain_metrics.models import (
    CacheInfo,
    HistoryState,
    HistoryView,
    MetricSeriesPoint,
    SeriesSummary,
)
from chain_metrics.providers.base import BaseMetricsProvider
from chain_metrics.retry import RetryController, SleepFunc
from chain_metrics.rolling_stats import moving_average_series, summary
from chain_metrics.validation import validate_series


logger = logging.getLogger(__name__)

CacheLike = Union[CacheStore, NamespacedCache]


def history_key(metric: str, timeframe: str) -> str:
    return f"{metric}-{timeframe}"


def page_key(metric: str, timeframe: str, page: int) -> str:
    return f"{history_key(metric, timeframe)}-page-{page}"


class PaginatedHistoryFetcher:
    """
    Loads and extends the history of one metric for one network.

    Usage:
        fetcher = PaginatedHistoryFetcher(provider, "ethereum", "totalTVL", "30D")
        await fetcher.load()
        while fetcher.has_more:
            await fetcher.load_more()
        view = fetcher.view()
    """

    def __init__(
        self,
        provider: BaseMetricsProvider,
        network_id: str,
        metric: str,
        timeframe: str,
        cache: Optional[CacheLike] = None,
        config: Optional[MetricsLayerConfig] = None,
        sleep: Optional[SleepFunc] = None,
        on_update: Optional[Callable[[str, tuple[MetricSeriesPoint, ...]], None]] = None,
    ) -> None:
        self._provider = provider
        self._on_update = on_update
        self.network_id = network_id
        self.metric = metric
        self.timeframe = timeframe
        self._config = config or get_config()
        self._cache = cache if cache is not None else CacheStore().namespace(network_id)

        self.key = history_key(metric, timeframe)
        self.page_size = self._config.history.page_size
        self._page_ttl_ms = self._config.cache_ttl.history_page
        self._name = f"history:{network_id}-{self.key}"

        self._retry = RetryController(
            max_attempts=self._config.history.retry_count,
            base_delay_ms=self._config.retry.base_delay_ms,
            sleep=sleep,
            name=self._name,
        )

        self._data: list[MetricSeriesPoint] = []
        self._state = HistoryState.IDLE
        self._error: Optional[str] = None
        self._has_more = True
        self._next_page = 0
        self._token: Optional[CancellationToken] = None
        self._closed = False

    # --------------------------------------------------------
    # Read side
    # --------------------------------------------------------

    @property
    def data(self) -> tuple[MetricSeriesPoint, ...]:
        return tuple(self._data)

    @property
    def state(self) -> HistoryState:
        return self._state

    @property
    def is_loading(self) -> bool:
        return self._state is HistoryState.LOADING

    @property
    def is_loading_more(self) -> bool:
        return self._state is HistoryState.LOADING_MORE

    @property
    def has_more(self) -> bool:
        return self._has_more

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def cache_info(self) -> CacheInfo:
        """Observability of the page-0 cache entry."""
        entry = self._cache.get_entry_info(page_key(self.metric, self.timeframe, 0))
        return CacheInfo(
            hit=entry is not None,
            timestamp=entry.timestamp if entry else None,
            size=len(self._data),
        )

    def view(self) -> HistoryView:
        return HistoryView(
            data=tuple(self._data),
            state=self._state,
            is_loading=self.is_loading,
            is_loading_more=self.is_loading_more,
            is_error=self._error is not None,
            error=self._error,
            has_more=self._has_more,
            cache_info=self.cache_info,
        )

    def summary(self) -> SeriesSummary:
        return summary([point.value for point in self._data])

    def moving_average(self, window: int) -> list[Optional[float]]:
        return moving_average_series([point.value for point in self._data], window)

    # --------------------------------------------------------
    # Page access
    # --------------------------------------------------------

    async def fetch_page(
        self,
        page: int,
        page_size: Optional[int] = None,
        token: Optional[CancellationToken] = None,
    ) -> list[MetricSeriesPoint]:
        """
        One page, from cache when live, else from the provider.

        Returns [] when the token is cancelled.
        """
        try:
            return await self._fetch_page(page, page_size or self.page_size, token)
        except AbortError:
            logger.debug(f"[{self._name}] Page {page} request aborted")
            return []

    async def _fetch_page(
        self,
        page: int,
        page_size: int,
        token: Optional[CancellationToken],
    ) -> list[MetricSeriesPoint]:
        key = page_key(self.metric, self.timeframe, page)

        cached = self._cache.get(key)
        if cached is not None:
            logger.debug(f"[{self._name}] Cache hit for {key}")
            return list(cached)

        request = self._provider.fetch_page(
            self.network_id, self.metric, self.timeframe, page, page_size
        )
        raw = await (token.guard(request) if token is not None else request)
        if token is not None:
            token.raise_if_cancelled()

        points = validate_series(raw, source=key)
        self._cache.set(key, tuple(points), self._page_ttl_ms)
        logger.debug(f"[{self._name}] Fetched {len(points)} points for page {page}")
        return points

    def _publish(self) -> None:
        if self._on_update is not None:
            self._on_update(self.key, tuple(self._data))

    def _supersede(self) -> CancellationToken:
        if self._token is not None:
            self._token.cancel()
        self._token = CancellationToken(self._name)
        return self._token

    # --------------------------------------------------------
    # Transitions
    # --------------------------------------------------------

    async def load(self) -> list[MetricSeriesPoint]:
        """Initial load of page 0, retried with exponential backoff."""
        if self._closed:
            return []

        token = self._supersede()
        self._state = HistoryState.LOADING
        self._error = None

        try:
            points = await self._retry.run(
                lambda: self._fetch_page(0, self.page_size, token),
                token,
            )
        except AbortError:
            return []
        except MetricsLayerError as e:
            if token.cancelled:
                return []
            self._state = HistoryState.ERROR
            self._error = str(e)
            logger.warning(f"[{self._name}] Initial load failed: {e}")
            return []

        if token.cancelled:
            return []

        self._data = list(points)
        self._has_more = len(points) >= self.page_size
        self._next_page = 1
        self._state = HistoryState.READY
        self._publish()
        logger.info(f"[{self._name}] Loaded {len(points)} points, has_more={self._has_more}")
        return list(points)

    async def load_more(self) -> list[MetricSeriesPoint]:
        """
        Append the next page. No retry.

        Returns the points actually appended.
        """
        if self._closed or self._state is not HistoryState.READY or not self._has_more:
            return []

        token = self._supersede()
        page = self._next_page
        self._state = HistoryState.LOADING_MORE

        try:
            points = await self._fetch_page(page, self.page_size, token)
        except AbortError:
            return []
        except MetricsLayerError as e:
            if token.cancelled:
                return []
            self._state = HistoryState.READY
            self._error = str(e)
            logger.warning(f"[{self._name}] Load more (page {page}) failed: {e}")
            return []

        if token.cancelled:
            return []

        tail = self._data[-1].timestamp if self._data else None
        appended = [point for point in points if tail is None or point.timestamp > tail]
        dropped = len(points) - len(appended)
        if dropped:
            logger.debug(f"[{self._name}] Dropped {dropped} points not after the current tail")

        self._data.extend(appended)
        self._has_more = len(points) >= self.page_size
        self._next_page = page + 1
        self._state = HistoryState.READY
        self._error = None
        self._publish()
        return appended

    async def refetch(self) -> list[MetricSeriesPoint]:
        """Invalidate every cached page of this key, then load again."""
        removed = self._cache.delete_by_pattern(f"^{re.escape(self.key)}-page-")
        logger.debug(f"[{self._name}] Invalidated {removed} cached pages")
        return await self.load()

    def mutate(self, points: Sequence[MetricSeriesPoint]) -> None:
        """
        Replace the loaded series in memory and re-prime the page-0 cache.

        Any in-flight request is cancelled so it cannot overwrite the
        mutation. No network call is made.
        """
        ordered = sorted(points, key=lambda point: point.timestamp)
        for previous, current in zip(ordered, ordered[1:]):
            if previous.timestamp == current.timestamp:
                raise ValidationError(
                    f"Duplicate timestamp {current.timestamp.isoformat()} in mutation",
                    source_name=self._name,
                )

        if self._token is not None:
            self._token.cancel()

        self._data = ordered
        self._next_page = math.ceil(len(ordered) / self.page_size)
        self._state = HistoryState.READY
        self._error = None
        self._cache.set(
            page_key(self.metric, self.timeframe, 0),
            tuple(ordered[:self.page_size]),
            self._page_ttl_ms,
        )
        self._publish()

    def close(self) -> None:
        """Unmount: cancel in-flight work and ignore further requests."""
        self._closed = True
        if self._token is not None:
            self._token.cancel()
        logger.debug(f"[{self._name}] Closed")

    def __repr__(self) -> str:
        return (
            f"<PaginatedHistoryFetcher(key={self.key!r}, state={self._state.value}, "
            f"points={len(self._data)}, has_more={self._has_more})>"
        )
