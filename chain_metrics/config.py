"""
Metrics Layer - Configuration.

============================================================
CONFIGURABLE RESILIENCE PARAMETERS
============================================================

- Retry budget and backoff base
- Cache TTL per category and for history pages
- History page size and initial-load retry count
- Periodic refresh interval and manual refresh debounce
- Spike threshold (global and per category)
- Provider endpoint and timeout

Configuration can be loaded from:
- Default values
- Environment variables (a local .env file is honoured)
- YAML config file

============================================================
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
import logging

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigurationError
from .models import Category


logger = logging.getLogger(__name__)


# =============================================================
# SUB-CONFIGURATIONS
# =============================================================


@dataclass
class RetryConfig:
    """Bounded exponential backoff: delay before attempt n is base * 2^(n-1)."""
    max_attempts: int = 3
    base_delay_ms: int = 1000


@dataclass
class CacheTTLConfig:
    """
    Cache TTLs in milliseconds.

    Volatile categories expire first: usage after a minute, AI analysis
    after ten.
    """
    usage: int = 60_000
    tvl: int = 300_000
    cashflow: int = 300_000
    market: int = 300_000
    ai: int = 600_000
    history_page: int = 300_000

    def for_category(self, category: Category) -> int:
        return {
            Category.USAGE: self.usage,
            Category.TVL: self.tvl,
            Category.CASHFLOW: self.cashflow,
            Category.MARKET: self.market,
            Category.AI: self.ai,
        }[category]

    def to_dict(self) -> dict[str, int]:
        return {
            "usage": self.usage,
            "tvl": self.tvl,
            "cashflow": self.cashflow,
            "market": self.market,
            "ai": self.ai,
            "history_page": self.history_page,
        }


@dataclass
class HistoryConfig:
    """Paginated history settings. retry_count bounds the attempts of the initial page load."""
    page_size: int = 30
    retry_count: int = 3


@dataclass
class RefreshConfig:
    """Periodic and manual refresh settings."""
    interval_seconds: float = 60.0
    debounce_ms: int = 500
    auto_refresh: bool = True


@dataclass
class SpikeConfig:
    """Spike threshold as a percent deviation from the baseline."""
    threshold_percent: float = 20.0
    category_overrides: dict[str, float] = field(default_factory=dict)

    def for_category(self, category: Category) -> float:
        return self.category_overrides.get(category.value, self.threshold_percent)


@dataclass
class RollingWindowConfig:
    """Rolling average windows, in samples."""
    windows: tuple[int, ...] = (7, 30, 90)


@dataclass
class ProviderConfig:
    """Upstream dashboard API settings."""
    base_url: str = "http://localhost:3000/api"
    timeout_seconds: float = 10.0


# =============================================================
# MAIN CONFIGURATION
# =============================================================


@dataclass
class MetricsLayerConfig:
    """Main configuration combining every sub-configuration."""
    retry: RetryConfig = field(default_factory=RetryConfig)
    cache_ttl: CacheTTLConfig = field(default_factory=CacheTTLConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    refresh: RefreshConfig = field(default_factory=RefreshConfig)
    spike: SpikeConfig = field(default_factory=SpikeConfig)
    rolling: RollingWindowConfig = field(default_factory=RollingWindowConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)

    def validate(self) -> None:
        """Raise ConfigurationError on values the layer cannot run with."""
        if self.retry.max_attempts < 1:
            raise ConfigurationError("max_attempts must be >= 1", config_key="retry.max_attempts")
        if self.retry.base_delay_ms < 0:
            raise ConfigurationError("base_delay_ms must be >= 0", config_key="retry.base_delay_ms")
        if self.history.page_size < 1:
            raise ConfigurationError("page_size must be >= 1", config_key="history.page_size")
        if self.history.retry_count < 1:
            raise ConfigurationError("retry_count must be >= 1", config_key="history.retry_count")
        if self.refresh.interval_seconds <= 0:
            raise ConfigurationError(
                "interval_seconds must be > 0", config_key="refresh.interval_seconds"
            )
        if self.spike.threshold_percent <= 0:
            raise ConfigurationError(
                "threshold_percent must be > 0", config_key="spike.threshold_percent"
            )
        for name, ttl in self.cache_ttl.to_dict().items():
            if ttl <= 0:
                raise ConfigurationError(f"TTL for {name} must be > 0", config_key=f"cache_ttl.{name}")
        if not self.rolling.windows or any(w < 1 for w in self.rolling.windows):
            raise ConfigurationError("rolling windows must be positive", config_key="rolling.windows")

    @classmethod
    def from_env(cls) -> "MetricsLayerConfig":
        """
        Load configuration from environment variables.

        Environment variables:
        - CHAIN_METRICS_MAX_ATTEMPTS
        - CHAIN_METRICS_BASE_DELAY_MS
        - CHAIN_METRICS_PAGE_SIZE
        - CHAIN_METRICS_HISTORY_RETRY_COUNT
        - CHAIN_METRICS_REFRESH_INTERVAL
        - CHAIN_METRICS_REFRESH_DEBOUNCE_MS
        - CHAIN_METRICS_SPIKE_THRESHOLD
        - CHAIN_METRICS_API_URL
        - CHAIN_METRICS_API_TIMEOUT
        """
        load_dotenv()
        config = cls()

        try:
            if os.getenv("CHAIN_METRICS_MAX_ATTEMPTS"):
                config.retry.max_attempts = int(os.getenv("CHAIN_METRICS_MAX_ATTEMPTS"))
            if os.getenv("CHAIN_METRICS_BASE_DELAY_MS"):
                config.retry.base_delay_ms = int(os.getenv("CHAIN_METRICS_BASE_DELAY_MS"))
            if os.getenv("CHAIN_METRICS_PAGE_SIZE"):
                config.history.page_size = int(os.getenv("CHAIN_METRICS_PAGE_SIZE"))
            if os.getenv("CHAIN_METRICS_HISTORY_RETRY_COUNT"):
                config.history.retry_count = int(os.getenv("CHAIN_METRICS_HISTORY_RETRY_COUNT"))
            if os.getenv("CHAIN_METRICS_REFRESH_INTERVAL"):
                config.refresh.interval_seconds = float(os.getenv("CHAIN_METRICS_REFRESH_INTERVAL"))
            if os.getenv("CHAIN_METRICS_REFRESH_DEBOUNCE_MS"):
                config.refresh.debounce_ms = int(os.getenv("CHAIN_METRICS_REFRESH_DEBOUNCE_MS"))
            if os.getenv("CHAIN_METRICS_SPIKE_THRESHOLD"):
                config.spike.threshold_percent = float(os.getenv("CHAIN_METRICS_SPIKE_THRESHOLD"))
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric environment value: {e}", original_error=e)

        if os.getenv("CHAIN_METRICS_API_URL"):
            config.provider.base_url = os.getenv("CHAIN_METRICS_API_URL")
        if os.getenv("CHAIN_METRICS_API_TIMEOUT"):
            config.provider.timeout_seconds = float(os.getenv("CHAIN_METRICS_API_TIMEOUT"))

        config.validate()
        return config

    @classmethod
    def from_yaml(cls, path: Path) -> "MetricsLayerConfig":
        """Load configuration from a YAML file. Missing keys keep their defaults."""
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load YAML config from {path}: {e}", original_error=e)

        config = cls()

        if "retry" in data:
            r = data["retry"]
            config.retry = RetryConfig(
                max_attempts=r.get("max_attempts", 3),
                base_delay_ms=r.get("base_delay_ms", 1000),
            )

        if "cache_ttl" in data:
            defaults = CacheTTLConfig()
            c = data["cache_ttl"]
            config.cache_ttl = CacheTTLConfig(
                **{key: c.get(key, value) for key, value in defaults.to_dict().items()}
            )

        if "history" in data:
            h = data["history"]
            config.history = HistoryConfig(
                page_size=h.get("page_size", 30),
                retry_count=h.get("retry_count", 3),
            )

        if "refresh" in data:
            r = data["refresh"]
            config.refresh = RefreshConfig(
                interval_seconds=r.get("interval_seconds", 60.0),
                debounce_ms=r.get("debounce_ms", 500),
                auto_refresh=r.get("auto_refresh", True),
            )

        if "spike" in data:
            s = data["spike"]
            config.spike = SpikeConfig(
                threshold_percent=s.get("threshold_percent", 20.0),
                category_overrides=dict(s.get("category_overrides", {})),
            )

        if "rolling" in data:
            config.rolling = RollingWindowConfig(
                windows=tuple(data["rolling"].get("windows", (7, 30, 90)))
            )

        if "provider" in data:
            p = data["provider"]
            config.provider = ProviderConfig(
                base_url=p.get("base_url", ProviderConfig.base_url),
                timeout_seconds=p.get("timeout_seconds", 10.0),
            )

        config.validate()
        logger.info(f"Loaded metrics layer config from {path}")
        return config

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "retry": {
                "max_attempts": self.retry.max_attempts,
                "base_delay_ms": self.retry.base_delay_ms,
            },
            "cache_ttl": self.cache_ttl.to_dict(),
            "history": {
                "page_size": self.history.page_size,
                "retry_count": self.history.retry_count,
            },
            "refresh": {
                "interval_seconds": self.refresh.interval_seconds,
                "debounce_ms": self.refresh.debounce_ms,
                "auto_refresh": self.refresh.auto_refresh,
            },
            "spike": {
                "threshold_percent": self.spike.threshold_percent,
                "category_overrides": self.spike.category_overrides,
            },
            "rolling": {"windows": list(self.rolling.windows)},
            "provider": {
                "base_url": self.provider.base_url,
                "timeout_seconds": self.provider.timeout_seconds,
            },
        }


# =============================================================
# GLOBAL CONFIG SINGLETON
# =============================================================


_default_config: Optional[MetricsLayerConfig] = None


def get_config() -> MetricsLayerConfig:
    """Get the global metrics layer configuration."""
    global _default_config
    if _default_config is None:
        _default_config = MetricsLayerConfig.from_env()
    return _default_config


def set_config(config: MetricsLayerConfig) -> None:
    """Set the global metrics layer configuration."""
    global _default_config
    config.validate()
    _default_config = config
