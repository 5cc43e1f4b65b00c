"""
Metrics Layer - Mock Provider.

============================================================
PURPOSE
============================================================
Deterministic in-process provider for tests and the demo script.

FEATURES:
- Generated camelCase payloads for every category
- Generated, paginated history series
- Scripted failures per category and for history pages
- Payload overrides for malformed-data scenarios
- Gates that hold a request until the test releases it
- Full call log

============================================================
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from chain_metrics.clock import ClockProtocol, get_clock
from chain_metrics.exceptions import NetworkError
from chain_metrics.models import BUNDLE_TYPES, Category
from chain_metrics.providers.base import BaseMetricsProvider


logger = logging.getLogger(__name__)


# ============================================================
# PAYLOAD GENERATION
# ============================================================

def _wave(base_value: float, index: int) -> float:
    return round(base_value * (1 + 0.05 * math.sin(index / 3)), 4)


def build_series(
    end: datetime,
    length: int,
    base_value: float = 1000.0,
    step: timedelta = timedelta(days=1),
) -> list[dict[str, Any]]:
    """Ascending raw points ending at `end`, one per step."""
    start = end - step * (length - 1)
    return [
        {
            "timestamp": (start + step * i).isoformat(),
            "value": _wave(base_value, i),
            "volume": _wave(base_value / 10, i + 1),
        }
        for i in range(length)
    ]


def build_category_payload(
    category: Category,
    network_id: str,
    timeframe: str,
    now: datetime,
    base_value: float = 1000.0,
    history_length: int = 0,
) -> dict[str, Any]:
    """A well-formed raw payload, shaped like the dashboard API returns it."""
    payload: dict[str, Any] = {
        "id": f"{category.value}-{network_id}-{timeframe}",
        "blockchain": network_id,
        "timeframe": timeframe,
        "createdAt": now.isoformat(),
        "updatedAt": now.isoformat(),
    }

    names = BUNDLE_TYPES[category].METRIC_NAMES
    for offset, name in enumerate(names):
        value = base_value * (offset + 1)
        payload[name] = {
            "value": value,
            "change": value * 0.02,
            "changePercent": 2.0,
            "trend": "up",
            "timestamp": now.isoformat(),
        }

    if history_length > 0:
        payload["history"] = {
            name: build_series(now - timedelta(days=1), history_length, base_value * (offset + 1))
            for offset, name in enumerate(names)
        }

    if category == Category.TVL:
        payload["tvlAnalysis"] = {"tvlChange24h": 1.5, "tvlChange7d": 3.2, "tvlChange30d": 8.0}
    elif category == Category.CASHFLOW:
        payload["flowAnalysis"] = {"miningEfficiency": {"current": 0.9, "average": 0.85}}
    elif category == Category.MARKET:
        payload["marketAnalysis"] = {"volatilityMetrics": {"current": 42.0, "index": 55.0}}
    elif category == Category.AI:
        payload.update({
            "sentiment": "bullish",
            "confidence": 72,
            "signals": [{"type": "buy", "strength": 7, "confidence": 72}],
        })

    return payload


# ============================================================
# SCRIPTED FAILURES
# ============================================================

@dataclass
class FailureScript:
    """Raise NetworkError for the next `remaining` calls, forever when None."""
    status_code: int = 500
    remaining: Optional[int] = None

    def consume(self) -> bool:
        if self.remaining is None:
            return True
        if self.remaining <= 0:
            return False
        self.remaining -= 1
        return True


# ============================================================
# MOCK PROVIDER
# ============================================================

class MockMetricsProvider(BaseMetricsProvider):
    """
    In-process provider with scripted behaviour.

    Usage:
        provider = MockMetricsProvider(clock=MockClock())
        provider.fail_category(Category.USAGE, status_code=500)
        provider.fail_pages(times=1)
        provider.page_gate = asyncio.Event()
    """

    def __init__(
        self,
        clock: Optional[ClockProtocol] = None,
        base_value: float = 1000.0,
        history_length: int = 0,
        total_points: int = 90,
        latency_seconds: float = 0.0,
    ) -> None:
        super().__init__()
        self._clock = clock
        self.base_value = base_value
        self.history_length = history_length
        self.total_points = total_points
        self.latency_seconds = latency_seconds

        self._category_failures: dict[Category, FailureScript] = {}
        self._page_failure: Optional[FailureScript] = None
        self._overrides: dict[Category, Any] = {}

        self.category_gate: Optional[asyncio.Event] = None
        self.page_gate: Optional[asyncio.Event] = None

        self.calls: list[tuple[Any, ...]] = []
        self.closed = False

    @property
    def name(self) -> str:
        return "mock"

    @property
    def clock(self) -> ClockProtocol:
        return self._clock or get_clock()

    # --------------------------------------------------------
    # Scripting
    # --------------------------------------------------------

    def fail_category(
        self,
        category: Category,
        status_code: int = 500,
        times: Optional[int] = None,
    ) -> None:
        self._category_failures[category] = FailureScript(status_code, times)

    def fail_pages(self, status_code: int = 500, times: Optional[int] = None) -> None:
        self._page_failure = FailureScript(status_code, times)

    def override_payload(self, category: Category, payload: Any) -> None:
        """Return this raw payload instead of a generated one."""
        self._overrides[category] = payload

    def reset(self) -> None:
        self._category_failures.clear()
        self._page_failure = None
        self._overrides.clear()
        self.calls.clear()

    def call_count(self, kind: str) -> int:
        return sum(1 for call in self.calls if call[0] == kind)

    # --------------------------------------------------------
    # Provider interface
    # --------------------------------------------------------

    async def fetch_category(self, category: Category, network_id: str, timeframe: str) -> Any:
        self.calls.append(("category", category, network_id, timeframe))
        await self._simulate(self.category_gate)

        script = self._category_failures.get(category)
        if script is not None and script.consume():
            raise NetworkError(
                message=f"HTTP {script.status_code}",
                source_name=self.name,
                status_code=script.status_code,
                request_url=f"mock://{category.value}/{network_id}",
            )

        if category in self._overrides:
            return self._overrides[category]

        return build_category_payload(
            category,
            network_id,
            timeframe,
            self.clock.now(),
            self.base_value,
            self.history_length,
        )

    async def fetch_page(
        self,
        network_id: str,
        metric: str,
        timeframe: str,
        page: int,
        page_size: int,
    ) -> Any:
        self.calls.append(("page", network_id, metric, timeframe, page, page_size))
        await self._simulate(self.page_gate)

        if self._page_failure is not None and self._page_failure.consume():
            raise NetworkError(
                message=f"HTTP {self._page_failure.status_code}",
                source_name=self.name,
                status_code=self._page_failure.status_code,
                request_url=f"mock://history/{network_id}/{metric}?page={page}",
            )

        series = build_series(self.clock.now(), self.total_points, self.base_value)
        return series[page * page_size:(page + 1) * page_size]

    async def _simulate(self, gate: Optional[asyncio.Event]) -> None:
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)
        if gate is not None:
            await gate.wait()

    async def close(self) -> None:
        self.closed = True
        await super().close()
