"""
In-process metrics for the ledger service.

Counters, gauges and histograms are thread-safe and live in a single
registry exported at ``GET /metrics`` in Prometheus text format.
"""

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import ClassVar

_HISTOGRAM_WINDOW = 1000


@dataclass
class _Metric:
    name: str
    description: str = ""
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    prometheus_type: ClassVar[str] = "untyped"

    def samples(self) -> list[tuple[str, float]]:
        raise NotImplementedError


@dataclass
class Counter(_Metric):
    """Monotonic counter."""

    _value: int = 0

    prometheus_type: ClassVar[str] = "counter"

    def inc(self, amount: int = 1) -> None:
        with self._lock:
            self._value += amount

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def samples(self) -> list[tuple[str, float]]:
        return [(self.name, self.value)]


@dataclass
class Gauge(_Metric):
    """Up/down count of something currently in progress."""

    _value: float = 0.0

    prometheus_type: ClassVar[str] = "gauge"

    def inc(self, amount: float = 1.0) -> None:
        with self._lock:
            self._value += amount

    def dec(self, amount: float = 1.0) -> None:
        self.inc(-amount)

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    def samples(self) -> list[tuple[str, float]]:
        return [(self.name, self.value)]


@dataclass
class Histogram(_Metric):
    """Summary over the most recent observations."""

    _window: deque = field(default_factory=lambda: deque(maxlen=_HISTOGRAM_WINDOW), repr=False)

    prometheus_type: ClassVar[str] = "summary"

    def observe(self, value: float) -> None:
        with self._lock:
            self._window.append(value)

    def samples(self) -> list[tuple[str, float]]:
        with self._lock:
            observed = list(self._window)
        return [(f"{self.name}_count", len(observed)), (f"{self.name}_sum", sum(observed))]


class MetricsRegistry:
    """Name -> metric; asking twice for a name returns the same metric."""

    def __init__(self) -> None:
        self._metrics: dict[str, _Metric] = {}
        self._lock = threading.Lock()

    def _get(self, cls: type[_Metric], name: str, description: str) -> _Metric:
        with self._lock:
            metric = self._metrics.setdefault(name, cls(name, description))
        if not isinstance(metric, cls):
            raise TypeError(f"Metric {name} is already registered as a {metric.prometheus_type}")
        return metric

    def counter(self, name: str, description: str = "") -> Counter:
        return self._get(Counter, name, description)

    def gauge(self, name: str, description: str = "") -> Gauge:
        return self._get(Gauge, name, description)

    def histogram(self, name: str, description: str = "") -> Histogram:
        return self._get(Histogram, name, description)

    def to_prometheus(self) -> str:
        with self._lock:
            metrics = sorted(self._metrics.values(), key=lambda m: m.name)
        lines: list[str] = []
        for metric in metrics:
            if metric.description:
                lines.append(f"# HELP {metric.name} {metric.description}")
            lines.append(f"# TYPE {metric.name} {metric.prometheus_type}")
            lines.extend(f"{sample} {value}" for sample, value in metric.samples())
        return "\n".join(lines) + "\n"


REGISTRY = MetricsRegistry()


legacy_null_owner_rows = REGISTRY.counter(
    "legacy_null_owner_rows_total", "Rows observed with a null owner column"
)
sync_runs = REGISTRY.counter("sync_runs_total", "Per-principal sync tasks started")
sync_failures = REGISTRY.counter("sync_failures_total", "Per-principal sync tasks that failed or timed out")
sync_duration = REGISTRY.histogram("sync_duration_seconds", "Per-principal sync task duration")
upstream_errors = REGISTRY.counter("upstream_errors_total", "Non-2xx or failed calls to the budgeting service")
remote_dispatches = REGISTRY.counter("remote_dispatches_total", "Split transactions dispatched upstream")
api_requests = REGISTRY.counter("api_requests_total", "Total API requests")
api_errors = REGISTRY.counter("api_errors_total", "API responses with a 5xx status")
api_latency = REGISTRY.histogram("api_latency_seconds", "API request latency")
active_requests = REGISTRY.gauge("api_active_requests", "Requests currently in flight")
