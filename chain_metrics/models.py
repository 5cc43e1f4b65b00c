"""
Metrics Layer Models - Typed structures shared by every component.

Provides strict typing for series points, snapshots, derived analytics
and the per-category bundles handed to the presentation layer.

Bundles are frozen: a fetch cycle produces a new bundle and replaces
the old one wholesale, nothing patches a bundle field by field.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Optional


class Trend(Enum):
    """Direction of a metric."""
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class Severity(Enum):
    """Spike severity band."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Category(Enum):
    """Metric categories fetched by the orchestrator."""
    USAGE = "usage"
    TVL = "tvl"
    CASHFLOW = "cashflow"
    MARKET = "market"
    AI = "ai"


class HistoryState(Enum):
    """Lifecycle of a paginated history key."""
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    LOADING_MORE = "loading_more"
    ERROR = "error"


# Days covered by each supported timeframe
TIMEFRAME_DAYS: dict[str, int] = {
    "1H": 1,
    "24H": 1,
    "7D": 7,
    "30D": 30,
    "90D": 90,
    "1Y": 365,
}

ROLLING_WINDOWS: tuple[int, ...] = (7, 30, 90)


def timeframe_days(timeframe: str) -> int:
    """Number of days covered by a timeframe, 30 when unknown."""
    return TIMEFRAME_DAYS.get(timeframe.upper(), 30)


# =============================================================
# SERIES & SNAPSHOTS
# =============================================================


@dataclass(frozen=True)
class MetricSeriesPoint:
    """One observation of a time series. Series are ascending by timestamp."""
    timestamp: datetime
    value: float
    volume: Optional[float] = None
    sample_count: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "value": self.value,
            "volume": self.volume,
            "sampleCount": self.sample_count,
        }


@dataclass(frozen=True)
class MetricSnapshot:
    """
    Current state of one metric.

    Fallback bundles carry value 0.0 with a stable trend; change fields
    may be None when the upstream omits them.
    """
    value: Optional[float]
    change: Optional[float]
    change_percent: Optional[float]
    trend: Trend
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "change": self.change,
            "changePercent": self.change_percent,
            "trend": self.trend.value,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class RollingAverageSet:
    """
    Trailing averages for one metric.

    A window is None until the series holds at least that many samples.
    """
    d7: Optional[float] = None
    d30: Optional[float] = None
    d90: Optional[float] = None

    @classmethod
    def from_windows(cls, values: dict[int, Optional[float]]) -> "RollingAverageSet":
        return cls(d7=values.get(7), d30=values.get(30), d90=values.get(90))

    def get(self, window: int) -> Optional[float]:
        return {7: self.d7, 30: self.d30, 90: self.d90}.get(window)

    def shortest_available(self) -> Optional[float]:
        """The shortest window that has a value, or None."""
        for value in (self.d7, self.d30, self.d90):
            if value is not None:
                return value
        return None

    def to_dict(self) -> dict[str, Optional[float]]:
        return {"7d": self.d7, "30d": self.d30, "90d": self.d90}


@dataclass(frozen=True)
class SpikeDetectionResult:
    """Classification of a metric's latest observation against its baseline."""
    is_spike: bool
    severity: Severity
    confidence: float
    threshold: float
    current_value: float
    baseline: float
    deviation: float
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "isSpike": self.is_spike,
            "severity": self.severity.value,
            "confidence": self.confidence,
            "threshold": self.threshold,
            "currentValue": self.current_value,
            "baseline": self.baseline,
            "deviation": self.deviation,
            "message": self.message,
        }


@dataclass(frozen=True)
class SeriesSummary:
    """Summary statistics over an ordered numeric series."""
    total: float
    average: float
    max: float
    min: float
    change_percent: float
    trend: Trend
    current: float = 0.0
    volatility: float = 0.0
    count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "average": self.average,
            "max": self.max,
            "min": self.min,
            "changePercent": self.change_percent,
            "trend": self.trend.value,
            "current": self.current,
            "volatility": self.volatility,
            "count": self.count,
        }


# =============================================================
# CACHE
# =============================================================


@dataclass
class CacheEntry:
    """Entry owned by the cache store. Consumers never touch it directly."""
    key: str
    value: Any
    written_at: int  # epoch ms
    ttl_ms: int
    hits: int = 0
    last_accessed: int = 0

    def age_ms(self, now_ms: int) -> int:
        return now_ms - self.written_at

    def is_expired(self, now_ms: int) -> bool:
        return self.age_ms(now_ms) > self.ttl_ms


@dataclass(frozen=True)
class CacheEntryInfo:
    """Observability view of a live cache entry."""
    timestamp: int
    size: int
    age_ms: int = 0
    ttl_remaining_ms: int = 0


@dataclass(frozen=True)
class CacheInfo:
    """Cache observability exposed to consumers."""
    hit: bool = False
    timestamp: Optional[int] = None
    size: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"hit": self.hit, "timestamp": self.timestamp, "size": self.size}


@dataclass(frozen=True)
class CacheStats:
    """Aggregate cache statistics."""
    total_entries: int
    total_hits: int
    total_misses: int
    hit_rate: float
    oldest_entry: Optional[int]
    newest_entry: Optional[int]
    expired_entries: int


# =============================================================
# CATEGORY BUNDLES
# =============================================================


@dataclass(frozen=True)
class CategoryBundle:
    """
    Complete metric set for one category and one (network, timeframe).

    Subclasses declare METRIC_NAMES; every name is present in metrics,
    rolling_averages and spike_detection for live and fallback bundles
    alike. analysis holds the category-specific sub-object, normalised
    onto a fixed template at the validation boundary.
    """
    CATEGORY: ClassVar[Category]
    METRIC_NAMES: ClassVar[tuple[str, ...]] = ()

    id: str
    network_id: str
    timeframe: str
    created_at: datetime
    updated_at: datetime
    metrics: dict[str, MetricSnapshot] = field(default_factory=dict)
    rolling_averages: dict[str, RollingAverageSet] = field(default_factory=dict)
    spike_detection: dict[str, SpikeDetectionResult] = field(default_factory=dict)
    analysis: dict[str, Any] = field(default_factory=dict)
    is_fallback: bool = False

    @property
    def category(self) -> Category:
        return self.CATEGORY

    def metric(self, name: str) -> MetricSnapshot:
        return self.metrics[name]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "category": self.CATEGORY.value,
            "blockchain": self.network_id,
            "timeframe": self.timeframe,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "metrics": {name: snap.to_dict() for name, snap in self.metrics.items()},
            "rollingAverages": {
                name: averages.to_dict() for name, averages in self.rolling_averages.items()
            },
            "spikeDetection": {
                name: result.to_dict() for name, result in self.spike_detection.items()
            },
            "analysis": self.analysis,
            "isFallback": self.is_fallback,
        }


@dataclass(frozen=True)
class UsageMetrics(CategoryBundle):
    CATEGORY: ClassVar[Category] = Category.USAGE
    METRIC_NAMES: ClassVar[tuple[str, ...]] = (
        "dailyActiveAddresses",
        "newAddresses",
        "dailyTransactions",
        "transactionVolume",
        "averageFee",
        "hashRate",
    )


@dataclass(frozen=True)
class TVLMetrics(CategoryBundle):
    CATEGORY: ClassVar[Category] = Category.TVL
    METRIC_NAMES: ClassVar[tuple[str, ...]] = (
        "totalTVL",
        "chainTVL",
        "dominance",
        "protocolCount",
    )


@dataclass(frozen=True)
class CashflowMetrics(CategoryBundle):
    CATEGORY: ClassVar[Category] = Category.CASHFLOW
    METRIC_NAMES: ClassVar[tuple[str, ...]] = (
        "bridgeFlows",
        "exchangeFlows",
        "stakingMetrics",
        "miningValidation",
    )


@dataclass(frozen=True)
class MarketOverview(CategoryBundle):
    CATEGORY: ClassVar[Category] = Category.MARKET
    METRIC_NAMES: ClassVar[tuple[str, ...]] = (
        "marketCap",
        "dominance",
        "volume24h",
        "priceChange24h",
        "fearGreedIndex",
    )


@dataclass(frozen=True)
class AIAnalysis(CategoryBundle):
    """AI-derived signals. The analysis payload is opaque decor data."""
    CATEGORY: ClassVar[Category] = Category.AI
    METRIC_NAMES: ClassVar[tuple[str, ...]] = ()


BUNDLE_TYPES: dict[Category, type[CategoryBundle]] = {
    Category.USAGE: UsageMetrics,
    Category.TVL: TVLMetrics,
    Category.CASHFLOW: CashflowMetrics,
    Category.MARKET: MarketOverview,
    Category.AI: AIAnalysis,
}


# =============================================================
# CONSUMER VIEWS
# =============================================================


@dataclass(frozen=True)
class CategoryState:
    """Per-category result of one fetch cycle."""
    category: Category
    data: Optional[CategoryBundle] = None
    is_loading: bool = False
    is_fallback: bool = False
    error: Optional[str] = None
    cache_info: CacheInfo = field(default_factory=CacheInfo)


@dataclass(frozen=True)
class AggregateView:
    """
    Unified view over every category.

    is_error is True only when a category pipeline failed in a way the
    resilience layer did not anticipate; anticipated failures are
    reported through is_degraded and the per-category error field.
    """
    network_id: str
    timeframe: str
    categories: dict[Category, CategoryState]
    is_loading: bool = False
    is_error: bool = False
    is_degraded: bool = False
    error: Optional[str] = None

    def _data(self, category: Category) -> Optional[CategoryBundle]:
        state = self.categories.get(category)
        return state.data if state else None

    @property
    def usage(self) -> Optional[CategoryBundle]:
        return self._data(Category.USAGE)

    @property
    def tvl(self) -> Optional[CategoryBundle]:
        return self._data(Category.TVL)

    @property
    def cashflow(self) -> Optional[CategoryBundle]:
        return self._data(Category.CASHFLOW)

    @property
    def market(self) -> Optional[CategoryBundle]:
        return self._data(Category.MARKET)

    @property
    def ai(self) -> Optional[CategoryBundle]:
        return self._data(Category.AI)

    @property
    def cache_info(self) -> dict[Category, CacheInfo]:
        return {category: state.cache_info for category, state in self.categories.items()}


@dataclass(frozen=True)
class HistoryView:
    """Consumer contract of one paginated history key."""
    data: tuple[MetricSeriesPoint, ...]
    state: HistoryState
    is_loading: bool
    is_loading_more: bool
    is_error: bool
    error: Optional[str]
    has_more: bool
    cache_info: CacheInfo
