"""
Rolling Statistics Engine - Windowed averages and series summaries.

A window average is None until the series holds at least `window`
samples. That is a hard rule, not an estimate: no partial windows.
"""

import logging
import math
from typing import Iterable, Optional, Sequence

from chain_metrics.models import ROLLING_WINDOWS, RollingAverageSet, SeriesSummary, Trend


logger = logging.getLogger(__name__)

# Percent change inside this band is reported as stable
TREND_DEAD_BAND_PERCENT = 1.0


def moving_average(series: Sequence[float], index: int, window: int) -> Optional[float]:
    """
    Mean of the `window` values ending at `index`.

    Returns None when index < window - 1 (insufficient history).

    Example:
        moving_average([10, 20, 30, 40], 2, 3) -> 20.0
        moving_average([10, 20, 30, 40], 1, 3) -> None
    """
    if window < 1:
        raise ValueError("window must be >= 1")
    if index < 0 or index >= len(series):
        raise IndexError(f"index {index} out of range for series of length {len(series)}")
    if index < window - 1:
        return None

    values = series[index - window + 1:index + 1]
    return sum(values) / window


def moving_average_series(series: Sequence[float], window: int) -> list[Optional[float]]:
    """Moving average at every index, None where history is insufficient."""
    result: list[Optional[float]] = []
    running = 0.0
    for i, value in enumerate(series):
        running += value
        if i >= window:
            running -= series[i - window]
        result.append(running / window if i >= window - 1 else None)
    return result


def rolling_averages(
    series: Sequence[float],
    windows: Iterable[int] = ROLLING_WINDOWS,
) -> RollingAverageSet:
    """Averages for each window at the latest observation."""
    if not series:
        return RollingAverageSet()

    last = len(series) - 1
    return RollingAverageSet.from_windows(
        {window: moving_average(series, last, window) for window in windows}
    )


def classify_trend(change_percent: float) -> Trend:
    """Up above +1%, down below -1%, stable in between."""
    if change_percent > TREND_DEAD_BAND_PERCENT:
        return Trend.UP
    if change_percent < -TREND_DEAD_BAND_PERCENT:
        return Trend.DOWN
    return Trend.STABLE


def percent_change(first: float, last: float) -> float:
    """(last - first) / first * 100, 0 when first is 0."""
    if first == 0:
        return 0.0
    return (last - first) / first * 100


def summary(series: Sequence[float]) -> SeriesSummary:
    """
    Summary statistics over an ordered series.

    volatility is the population standard deviation as a percent of the
    mean.
    """
    if not series:
        return SeriesSummary(
            total=0.0,
            average=0.0,
            max=0.0,
            min=0.0,
            change_percent=0.0,
            trend=Trend.STABLE,
        )

    total = float(sum(series))
    average = total / len(series)
    change = percent_change(series[0], series[-1])

    variance = sum((value - average) ** 2 for value in series) / len(series)
    volatility = math.sqrt(variance) / average * 100 if average != 0 else 0.0

    return SeriesSummary(
        total=total,
        average=average,
        max=float(max(series)),
        min=float(min(series)),
        change_percent=change,
        trend=classify_trend(change),
        current=float(series[-1]),
        volatility=volatility,
        count=len(series),
    )
