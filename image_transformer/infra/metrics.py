# image_transformer/infra/metrics.py
"""
In-process request metrics for the image endpoints.

Keys are rendered as ``name{label=value,...}`` with labels sorted, e.g.
``image_requests_total{endpoint=transform,outcome=ok}``. Latencies are kept
in a bounded window per key; ``count`` is the lifetime total.
"""
from __future__ import annotations

import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from threading import Lock

from image_transformer.infra.logging_config import get_logger

logger = get_logger(__name__)

HISTOGRAM_WINDOW = 10_000
PERCENTILES = (("p50", 0.50), ("p95", 0.95), ("p99", 0.99))


def metric_key(name: str, labels: dict | None = None) -> str:
    if not labels:
        return name
    rendered = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
    return f"{name}{{{rendered}}}"


@dataclass
class LatencyWindow:
    samples: deque = field(default_factory=lambda: deque(maxlen=HISTOGRAM_WINDOW))
    total: int = 0

    def add(self, seconds: float) -> None:
        self.samples.append(seconds)
        self.total += 1

    def summary(self) -> dict:
        ordered = sorted(self.samples)
        if not ordered:
            return {"count": self.total, "min": 0, "max": 0, "avg": 0, "p50": 0, "p95": 0, "p99": 0}

        last = len(ordered) - 1
        stats = {
            "count": self.total,
            "min": ordered[0],
            "max": ordered[-1],
            "avg": sum(ordered) / len(ordered),
        }
        for label, fraction in PERCENTILES:
            stats[label] = ordered[min(int(len(ordered) * fraction), last)]
        return stats


class MetricsCollector:
    """Thread-safe counters and latency windows, served as JSON on /metrics"""

    def __init__(self):
        self._lock = Lock()
        self._counters: dict[str, int] = defaultdict(int)
        self._latencies: dict[str, LatencyWindow] = defaultdict(LatencyWindow)

    def increment(self, name: str, **labels) -> None:
        with self._lock:
            self._counters[metric_key(name, labels)] += 1

    def observe(self, name: str, seconds: float, **labels) -> None:
        with self._lock:
            self._latencies[metric_key(name, labels)].add(seconds)

    def get_metrics(self) -> dict:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "histograms": {k: w.summary() for k, w in self._latencies.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._latencies.clear()
        logger.info("Metrics reset")


_collector = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    return _collector


class Timer:
    """Observe the wall time of a ``with`` block, success or failure"""

    def __init__(self, name: str, collector: MetricsCollector | None = None, **labels):
        self.name = name
        self.labels = labels
        self.collector = collector or _collector
        self._started: float | None = None

    def __enter__(self):
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._started is not None:
            self.collector.observe(self.name, time.perf_counter() - self._started, **self.labels)


class ImageMetrics:
    """Image endpoint metrics, recorded by the transport layer"""

    @staticmethod
    def request_completed(endpoint: str, outcome: str) -> None:
        _collector.increment("image_requests_total", endpoint=endpoint, outcome=outcome)

    @staticmethod
    def stage_failed(stage: str) -> None:
        _collector.increment("image_failures_total", stage=stage)

    @staticmethod
    def track_processing_time(endpoint: str) -> Timer:
        return Timer("image_processing_seconds", endpoint=endpoint)
