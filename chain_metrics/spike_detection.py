"""
Spike Detector - Classifies the latest observation against its baseline.

deviation = (current - baseline) / baseline * 100
isSpike   = |deviation| > threshold

Severity bands on |deviation|:
    < 2 x threshold  -> low
    < 4 x threshold  -> medium
    otherwise        -> high

Confidence grows linearly from 0 at the threshold to 1.0 at the start
of the high band (4 x threshold) and is capped there.

The detector is stateless.
"""

import logging
from typing import Iterable, Mapping, Optional, Sequence

from chain_metrics.models import ROLLING_WINDOWS, Severity, SpikeDetectionResult
from chain_metrics.rolling_stats import rolling_averages


logger = logging.getLogger(__name__)

SEVERITY_TEXT = {
    Severity.LOW: "moderate",
    Severity.MEDIUM: "significant",
    Severity.HIGH: "critical",
}


def no_spike(
    current_value: float,
    baseline: float,
    threshold_percent: float,
    message: str,
) -> SpikeDetectionResult:
    return SpikeDetectionResult(
        is_spike=False,
        severity=Severity.LOW,
        confidence=0.0,
        threshold=threshold_percent,
        current_value=current_value,
        baseline=baseline,
        deviation=0.0,
        message=message,
    )


def severity_for(abs_deviation: float, threshold_percent: float) -> Severity:
    if abs_deviation < 2 * threshold_percent:
        return Severity.LOW
    if abs_deviation < 4 * threshold_percent:
        return Severity.MEDIUM
    return Severity.HIGH


def detect(
    current_value: float,
    baseline: float,
    threshold_percent: float,
    metric_name: str = "metric",
) -> SpikeDetectionResult:
    """
    Classify current_value relative to baseline.

    Args:
        current_value: Latest observation
        baseline: Rolling average (or series mean) to compare against
        threshold_percent: Minimum |deviation| in percent for a spike
        metric_name: Used in the result message
    """
    if threshold_percent <= 0:
        raise ValueError("threshold_percent must be > 0")

    if baseline == 0:
        return no_spike(current_value, baseline, threshold_percent, "Baseline is zero, deviation undefined")

    deviation = (current_value - baseline) / baseline * 100
    abs_deviation = abs(deviation)
    is_spike = abs_deviation > threshold_percent

    if not is_spike:
        return SpikeDetectionResult(
            is_spike=False,
            severity=Severity.LOW,
            confidence=0.0,
            threshold=threshold_percent,
            current_value=current_value,
            baseline=baseline,
            deviation=deviation,
            message="No significant spike detected",
        )

    severity = severity_for(abs_deviation, threshold_percent)
    confidence = min(1.0, (abs_deviation - threshold_percent) / (3 * threshold_percent))
    direction = "above" if deviation > 0 else "below"

    return SpikeDetectionResult(
        is_spike=True,
        severity=severity,
        confidence=confidence,
        threshold=threshold_percent,
        current_value=current_value,
        baseline=baseline,
        deviation=deviation,
        message=(
            f"{metric_name} shows {SEVERITY_TEXT[severity]} spike of "
            f"{abs_deviation:.1f}% {direction} normal levels"
        ),
    )


def baseline_for(series: Sequence[float], windows: Iterable[int] = ROLLING_WINDOWS) -> Optional[float]:
    """
    Baseline for the latest point: shortest available rolling average over
    the history before it, else the mean of that history.
    """
    history = series[:-1]
    if not history:
        return None
    averages = rolling_averages(history, windows)
    baseline = averages.shortest_available()
    if baseline is None:
        baseline = sum(history) / len(history)
    return baseline


def detect_for_series(
    series: Sequence[float],
    threshold_percent: float,
    metric_name: str = "metric",
    windows: Iterable[int] = ROLLING_WINDOWS,
) -> SpikeDetectionResult:
    """Classify the last value of a series against the history before it."""
    if not series:
        return no_spike(0.0, 0.0, threshold_percent, "No data available for spike detection")

    current = series[-1]
    baseline = baseline_for(series, windows)
    if baseline is None:
        return no_spike(current, current, threshold_percent, "Insufficient historical data")

    return detect(current, baseline, threshold_percent, metric_name)


def detect_batch(
    series_by_metric: Mapping[str, Sequence[float]],
    threshold_percent: float,
    windows: Iterable[int] = ROLLING_WINDOWS,
) -> dict[str, SpikeDetectionResult]:
    """detect_for_series for every metric of a category."""
    windows = tuple(windows)
    results = {
        name: detect_for_series(series, threshold_percent, name, windows)
        for name, series in series_by_metric.items()
    }
    spikes = [name for name, result in results.items() if result.is_spike]
    if spikes:
        logger.info(f"[spike] Detected spikes in {', '.join(spikes)}")
    return results
