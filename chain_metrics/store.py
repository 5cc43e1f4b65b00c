"""
Metrics Store - Explicit state container for the presentation layer.

State changes only through the mutation methods below, and every change
is announced on one subscription channel. Each mutation replaces the
snapshot wholesale; listeners never see a half-updated state.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Optional, Sequence

from chain_metrics.models import Category, CategoryBundle, MetricSeriesPoint


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoreSnapshot:
    """Immutable view of the store at one instant."""
    usage: Optional[CategoryBundle] = None
    tvl: Optional[CategoryBundle] = None
    cashflow: Optional[CategoryBundle] = None
    market: Optional[CategoryBundle] = None
    ai: Optional[CategoryBundle] = None
    historical: dict[str, tuple[MetricSeriesPoint, ...]] = field(default_factory=dict)
    is_loading: bool = False
    error: Optional[str] = None
    version: int = 0

    def category(self, category: Category) -> Optional[CategoryBundle]:
        return getattr(self, category.value)


StoreListener = Callable[[StoreSnapshot], None]


class MetricsStore:
    """
    Shared client-side store.

    Usage:
        store = MetricsStore()
        unsubscribe = store.subscribe(lambda snapshot: render(snapshot))
        store.set_usage_metrics(bundle)
        unsubscribe()
    """

    def __init__(self) -> None:
        self._snapshot = StoreSnapshot()
        self._listeners: list[StoreListener] = []

    def snapshot(self) -> StoreSnapshot:
        return self._snapshot

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register a listener. Returns the function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # --------------------------------------------------------
    # Mutations
    # --------------------------------------------------------

    def set_usage_metrics(self, bundle: CategoryBundle) -> None:
        self._update(usage=bundle)

    def set_tvl_metrics(self, bundle: CategoryBundle) -> None:
        self._update(tvl=bundle)

    def set_cashflow_metrics(self, bundle: CategoryBundle) -> None:
        self._update(cashflow=bundle)

    def set_market_overview(self, bundle: CategoryBundle) -> None:
        self._update(market=bundle)

    def set_ai_analysis(self, bundle: CategoryBundle) -> None:
        self._update(ai=bundle)

    def set_category(self, category: Category, bundle: CategoryBundle) -> None:
        """Dispatch to the setter of the bundle's category."""
        self._update(**{category.value: bundle})

    def set_historical_data(self, key: str, points: Sequence[MetricSeriesPoint]) -> None:
        historical = dict(self._snapshot.historical)
        historical[key] = tuple(points)
        self._update(historical=historical)

    def set_loading(self, is_loading: bool) -> None:
        if is_loading != self._snapshot.is_loading:
            self._update(is_loading=is_loading)

    def set_error(self, error: Optional[str]) -> None:
        self._update(error=error)

    def clear_data(self) -> None:
        self._update(
            usage=None,
            tvl=None,
            cashflow=None,
            market=None,
            ai=None,
            historical={},
            is_loading=False,
            error=None,
        )

    def _update(self, **changes) -> None:
        self._snapshot = replace(self._snapshot, version=self._snapshot.version + 1, **changes)
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._snapshot)
            except Exception as e:
                logger.error(f"[store] Listener error: {e}", exc_info=True)

    def __repr__(self) -> str:
        return f"<MetricsStore(version={self._snapshot.version}, listeners={len(self._listeners)})>"
