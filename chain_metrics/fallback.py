"""
Fallback Synthesizer - Schema-complete placeholder bundles.

When a category cannot be fetched or its payload is malformed, the
consumer still receives a bundle with every field a live bundle has:
zeroed snapshots with a stable trend, empty rolling windows, non-spike
detection entries and the default analysis templates.

Schema completeness is unconditional; data freshness is not.
"""

import logging
from typing import Optional

from chain_metrics.clock import ClockProtocol, get_clock
from chain_metrics.models import (
    BUNDLE_TYPES,
    Category,
    CategoryBundle,
    MetricSnapshot,
    RollingAverageSet,
    Severity,
    SpikeDetectionResult,
    Trend,
)
from chain_metrics.validation import analysis_template


logger = logging.getLogger(__name__)

NO_DATA_MESSAGE = "No data available for spike detection"

# Metrics whose neutral reading is not zero
NEUTRAL_VALUES: dict[str, float] = {
    "fearGreedIndex": 50.0,
}


class FallbackSynthesizer:
    """
    Produces placeholder bundles from a fixed table of defaults.

    Deterministic for a given clock reading: two calls at the same
    instant return equal bundles.
    """

    def __init__(self, clock: Optional[ClockProtocol] = None) -> None:
        self._clock = clock

    @property
    def clock(self) -> ClockProtocol:
        return self._clock or get_clock()

    def synthesize(self, category: Category, network_id: str, timeframe: str) -> CategoryBundle:
        bundle_type = BUNDLE_TYPES[category]
        now = self.clock.now()
        now_ms = self.clock.now_ms()

        metrics = {
            name: MetricSnapshot(
                value=NEUTRAL_VALUES.get(name, 0.0),
                change=0.0,
                change_percent=0.0,
                trend=Trend.STABLE,
                timestamp=now,
            )
            for name in bundle_type.METRIC_NAMES
        }
        rolling = {name: RollingAverageSet() for name in bundle_type.METRIC_NAMES}
        spikes = {
            name: SpikeDetectionResult(
                is_spike=False,
                severity=Severity.LOW,
                confidence=0.0,
                threshold=0.0,
                current_value=0.0,
                baseline=0.0,
                deviation=0.0,
                message=NO_DATA_MESSAGE,
            )
            for name in bundle_type.METRIC_NAMES
        }

        logger.debug(f"[fallback] Synthesized {category.value} bundle for {network_id}/{timeframe}")

        return bundle_type(
            id=f"{category.value}-fallback-{network_id}-{timeframe}-{now_ms}",
            network_id=network_id,
            timeframe=timeframe,
            created_at=now,
            updated_at=now,
            metrics=metrics,
            rolling_averages=rolling,
            spike_detection=spikes,
            analysis=analysis_template(category),
            is_fallback=True,
        )


def synthesize(
    category: Category,
    network_id: str,
    timeframe: str,
    clock: Optional[ClockProtocol] = None,
) -> CategoryBundle:
    """Functional form of FallbackSynthesizer.synthesize."""
    return FallbackSynthesizer(clock).synthesize(category, network_id, timeframe)
