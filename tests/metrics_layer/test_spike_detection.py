"""
Tests for the Spike Detector.
"""

import pytest

from chain_metrics.models import Severity
from chain_metrics.spike_detection import detect, detect_batch, detect_for_series


class TestSpikeClassification:
    """Boundaries with baseline 100 and threshold 5%."""

    def test_below_threshold_is_not_a_spike(self):
        result = detect(104, 100, 5)
        assert result.is_spike is False
        assert result.confidence == 0.0
        assert result.deviation == pytest.approx(4.0)

    def test_just_over_threshold_is_low(self):
        result = detect(106, 100, 5)
        assert result.is_spike is True
        assert result.severity is Severity.LOW

    def test_medium_band(self):
        result = detect(115, 100, 5)
        assert result.severity is Severity.MEDIUM

    def test_far_over_threshold_is_high(self):
        result = detect(121, 100, 5)
        assert result.is_spike is True
        assert result.severity is Severity.HIGH

    def test_negative_deviation(self):
        result = detect(80, 100, 5)
        assert result.is_spike is True
        assert result.deviation == pytest.approx(-20.0)
        assert "below" in result.message

    def test_exactly_at_threshold_is_not_a_spike(self):
        assert detect(105, 100, 5).is_spike is False

    def test_confidence_scales_and_caps(self):
        assert detect(110, 100, 5).confidence == pytest.approx(5 / 15)
        assert detect(150, 100, 5).confidence == 1.0

    def test_zero_baseline(self):
        result = detect(50, 0, 5)
        assert result.is_spike is False
        assert result.deviation == 0.0

    def test_result_carries_inputs(self):
        result = detect(121, 100, 5)
        assert result.current_value == 121
        assert result.baseline == 100
        assert result.threshold == 5

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            detect(1, 1, 0)


class TestSeriesDetection:
    """Baseline derived from history."""

    def test_uses_shortest_rolling_window(self):
        history = [100.0] * 7
        result = detect_for_series(history + [130.0], threshold_percent=20)
        assert result.baseline == 100.0
        assert result.is_spike is True

    def test_falls_back_to_mean_with_short_history(self):
        result = detect_for_series([90.0, 110.0, 130.0], threshold_percent=20)
        assert result.baseline == 100.0
        assert result.deviation == pytest.approx(30.0)

    def test_single_point_has_no_baseline(self):
        result = detect_for_series([42.0], threshold_percent=20)
        assert result.is_spike is False
        assert result.baseline == 42.0

    def test_empty_series(self):
        assert detect_for_series([], threshold_percent=20).is_spike is False

    def test_batch(self):
        results = detect_batch(
            {"steady": [100.0] * 8, "jump": [100.0] * 7 + [200.0]},
            threshold_percent=20,
        )
        assert results["steady"].is_spike is False
        assert results["jump"].is_spike is True
        assert results["jump"].severity is Severity.HIGH
