# tests/test_metrics.py
"""Tests for image_transformer/infra/metrics.py"""
from __future__ import annotations

import pytest

from image_transformer.infra.metrics import (
    HISTOGRAM_WINDOW,
    LatencyWindow,
    MetricsCollector,
    Timer,
    metric_key,
)


class TestMetricKey:
    def test_no_labels(self):
        assert metric_key("image_requests_total") == "image_requests_total"

    def test_labels_sorted(self):
        key = metric_key("image_requests_total", {"outcome": "ok", "endpoint": "meta"})
        assert key == "image_requests_total{endpoint=meta,outcome=ok}"


class TestLatencyWindow:
    def test_empty(self):
        assert LatencyWindow().summary()["count"] == 0

    def test_percentiles(self):
        window = LatencyWindow()
        for i in range(1, 101):
            window.add(i / 100)

        stats = window.summary()
        assert stats["count"] == 100
        assert stats["min"] == 0.01
        assert stats["max"] == 1.0
        assert stats["p50"] == pytest.approx(0.51)
        assert stats["p99"] == pytest.approx(1.0)

    def test_window_bounded_but_count_is_lifetime(self):
        window = LatencyWindow()
        for _ in range(HISTOGRAM_WINDOW + 5):
            window.add(0.1)

        assert len(window.samples) == HISTOGRAM_WINDOW
        assert window.summary()["count"] == HISTOGRAM_WINDOW + 5


class TestMetricsCollector:
    def test_increment_and_reset(self):
        collector = MetricsCollector()
        collector.increment("image_failures_total", stage="decode")
        collector.increment("image_failures_total", stage="decode")

        assert collector.get_metrics()["counters"] == {"image_failures_total{stage=decode}": 2}

        collector.reset()
        assert collector.get_metrics() == {"counters": {}, "histograms": {}}

    def test_timer_records_on_exception(self):
        collector = MetricsCollector()

        with pytest.raises(RuntimeError):
            with Timer("image_processing_seconds", collector=collector, endpoint="meta"):
                raise RuntimeError("boom")

        histograms = collector.get_metrics()["histograms"]
        assert histograms["image_processing_seconds{endpoint=meta}"]["count"] == 1
