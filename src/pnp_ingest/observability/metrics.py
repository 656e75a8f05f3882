"""In-process metrics for the ingest workers.

Counters and histograms keyed by label sets, cheap enough to update from every
worker thread on every message. The health API serves ``snapshot()`` as JSON.

Example:
    >>> metrics = IngestMetrics()
    >>> metrics.messages.labels(kind="incident", operation="insert").inc()
    >>> metrics.duration.labels(kind="incident").observe(0.012)
    >>> metrics.registry.snapshot()["messages_total"][0]["value"]
    1.0
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any

DURATION_BUCKETS = (0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, 60.0, float("inf"))


@dataclass(frozen=True)
class Labels:
    """Immutable, order-independent label set."""

    items: tuple[tuple[str, str], ...] = ()

    @classmethod
    def of(cls, values: dict[str, str]) -> Labels:
        return cls(tuple(sorted((k, str(v)) for k, v in values.items())))

    def to_dict(self) -> dict[str, str]:
        return dict(self.items)


class Counter:
    """Monotonically increasing count per label set."""

    kind = "counter"

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description
        self._lock = threading.Lock()
        self._values: dict[Labels, float] = {}

    def labels(self, **labels: str) -> _CounterChild:
        return _CounterChild(self, Labels.of(labels))

    def inc(self, value: float = 1.0) -> None:
        self.labels().inc(value)

    def value(self, **labels: str) -> float:
        with self._lock:
            return self._values.get(Labels.of(labels), 0.0)

    def _add(self, labels: Labels, value: float) -> None:
        if value < 0:
            raise ValueError("counters only go up")
        with self._lock:
            self._values[labels] = self._values.get(labels, 0.0) + value

    def collect(self) -> list[dict[str, Any]]:
        with self._lock:
            return [{"labels": labels.to_dict(), "value": value} for labels, value in self._values.items()]


class _CounterChild:
    def __init__(self, counter: Counter, labels: Labels):
        self._counter = counter
        self._labels = labels

    def inc(self, value: float = 1.0) -> None:
        self._counter._add(self._labels, value)


class Histogram:
    """Cumulative bucket counts, sum and count per label set."""

    kind = "histogram"

    def __init__(self, name: str, description: str = "", buckets: tuple[float, ...] = DURATION_BUCKETS):
        self.name = name
        self.description = description
        self._buckets = buckets
        self._lock = threading.Lock()
        self._data: dict[Labels, dict[str, Any]] = {}

    def labels(self, **labels: str) -> _HistogramChild:
        return _HistogramChild(self, Labels.of(labels))

    def observe(self, value: float) -> None:
        self.labels().observe(value)

    def count(self, **labels: str) -> int:
        with self._lock:
            data = self._data.get(Labels.of(labels))
            return data["count"] if data else 0

    def _observe(self, labels: Labels, value: float) -> None:
        with self._lock:
            data = self._data.setdefault(
                labels, {"buckets": dict.fromkeys(self._buckets, 0), "sum": 0.0, "count": 0}
            )
            data["sum"] += value
            data["count"] += 1
            for bound in self._buckets:
                if value <= bound:
                    data["buckets"][bound] += 1

    def collect(self) -> list[dict[str, Any]]:
        with self._lock:
            return [
                {
                    "labels": labels.to_dict(),
                    # JSON has no infinity
                    "buckets": {("+Inf" if b == float("inf") else str(b)): n for b, n in data["buckets"].items()},
                    "sum": data["sum"],
                    "count": data["count"],
                }
                for labels, data in self._data.items()
            ]


class _HistogramChild:
    def __init__(self, histogram: Histogram, labels: Labels):
        self._histogram = histogram
        self._labels = labels

    def observe(self, value: float) -> None:
        self._histogram._observe(self._labels, value)


class MetricsRegistry:
    """Get-or-create registry of named metrics."""

    def __init__(self) -> None:
        self._metrics: dict[str, Counter | Histogram] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, description: str = "") -> Counter:
        with self._lock:
            metric = self._metrics.setdefault(name, Counter(name, description))
        if not isinstance(metric, Counter):
            raise TypeError(f"metric {name!r} is a {metric.kind}")
        return metric

    def histogram(self, name: str, description: str = "", buckets: tuple[float, ...] = DURATION_BUCKETS) -> Histogram:
        with self._lock:
            metric = self._metrics.setdefault(name, Histogram(name, description, buckets))
        if not isinstance(metric, Histogram):
            raise TypeError(f"metric {name!r} is a {metric.kind}")
        return metric

    def snapshot(self) -> dict[str, list[dict[str, Any]]]:
        with self._lock:
            metrics = list(self._metrics.values())
        return {metric.name: metric.collect() for metric in metrics}


class IngestMetrics:
    """The pipeline's own metrics, registered on one registry."""

    def __init__(self, registry: MetricsRegistry | None = None):
        self.registry = registry or MetricsRegistry()
        self.messages = self.registry.counter("messages_total", "Messages finished, by kind and operation")
        self.errors = self.registry.counter("errors_total", "Failed attempts, by kind and error tag")
        self.retries = self.registry.counter("retries_total", "Transient failures that were retried")
        self.duration = self.registry.histogram("message_duration_seconds", "End-to-end message latency")

    def snapshot(self) -> dict[str, list[dict[str, Any]]]:
        return self.registry.snapshot()
