"""
Metrics collection for the royalty ledger.

Every ledger component reports into one MetricsCollector:
- Counters: distributions, deposits, rejected transfers, busy locks
- Gauges: tracks with a payout in flight
- Histograms: payout latency in milliseconds

Series are keyed by name plus an optional label set and can be rendered in
the Prometheus text format under the collector's prefix.
"""

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

# Payout latency bounds in milliseconds; +Inf is implicit
LATENCY_BOUNDS_MS = (1, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000)

Labels = dict[str, str] | None


@dataclass
class Histogram:
    """Cumulative bucket counts for one labelled series."""

    bounds: tuple[float, ...] = LATENCY_BOUNDS_MS
    counts: list[int] = field(default_factory=list)
    sum: float = 0.0
    count: int = 0

    def __post_init__(self):
        if not self.counts:
            self.counts = [0] * (len(self.bounds) + 1)

    def observe(self, value: float) -> None:
        self.sum += value
        self.count += 1
        for idx, bound in enumerate(self.bounds):
            if value <= bound:
                self.counts[idx] += 1
        self.counts[-1] += 1

    @property
    def mean(self) -> float:
        return self.sum / self.count if self.count else 0.0

    def buckets(self) -> list[tuple[str, int]]:
        """(upper bound, cumulative count) pairs ending with +Inf."""
        labels = [str(b) for b in self.bounds] + ["+Inf"]
        return list(zip(labels, self.counts))


def _labels_key(labels: Labels) -> str:
    if not labels:
        return ""
    return ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))


def _series(name: str, key: str, extra: str = "") -> str:
    inner = ",".join(part for part in (key, extra) if part)
    return f"{name}{{{inner}}}" if inner else name


class MetricsCollector:
    """Thread-safe counters, gauges and histograms with optional labels."""

    def __init__(self, prefix: str = "royalty"):
        self.prefix = prefix
        self._lock = threading.RLock()
        self._counters: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._gauges: dict[str, dict[str, float]] = defaultdict(lambda: defaultdict(float))
        self._histograms: dict[str, dict[str, Histogram]] = defaultdict(dict)

    # Counters

    def increment(self, name: str, value: int = 1, labels: Labels = None) -> None:
        with self._lock:
            self._counters[name][_labels_key(labels)] += value

    def get_counter(self, name: str, labels: Labels = None) -> int:
        with self._lock:
            return self._counters[name].get(_labels_key(labels), 0)

    # Gauges

    def increment_gauge(self, name: str, value: float = 1.0, labels: Labels = None) -> None:
        with self._lock:
            self._gauges[name][_labels_key(labels)] += value

    def decrement_gauge(self, name: str, value: float = 1.0, labels: Labels = None) -> None:
        self.increment_gauge(name, -value, labels)

    def get_gauge(self, name: str, labels: Labels = None) -> float:
        with self._lock:
            return self._gauges[name].get(_labels_key(labels), 0.0)

    # Histograms

    def observe(self, name: str, value: float, labels: Labels = None) -> None:
        with self._lock:
            series = self._histograms[name]
            key = _labels_key(labels)
            if key not in series:
                series[key] = Histogram()
            series[key].observe(value)

    def get_histogram(self, name: str, labels: Labels = None) -> Histogram | None:
        with self._lock:
            return self._histograms[name].get(_labels_key(labels))

    @contextmanager
    def timer(self, name: str, labels: Labels = None):
        """Observe the block's wall time in milliseconds, even if it raises."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.observe(name, (time.perf_counter() - start) * 1000, labels)

    # Export

    def snapshot(self) -> dict[str, Any]:
        """Plain-dict copy of every series, keyed by name then label key."""
        with self._lock:
            return {
                "counters": {n: dict(v) for n, v in self._counters.items() if v},
                "gauges": {n: dict(v) for n, v in self._gauges.items() if v},
                "histograms": {
                    n: {k: {"count": h.count, "sum": h.sum, "mean": h.mean} for k, h in v.items()}
                    for n, v in self._histograms.items()
                    if v
                },
            }

    def to_prometheus(self) -> str:
        """Render every series in the Prometheus text format."""
        lines = []
        with self._lock:
            for kind, store in (("counter", self._counters), ("gauge", self._gauges)):
                for name, values in store.items():
                    metric = f"{self.prefix}_{name}"
                    lines.append(f"# TYPE {metric} {kind}")
                    lines.extend(f"{_series(metric, key)} {value}" for key, value in values.items())

            for name, series in self._histograms.items():
                metric = f"{self.prefix}_{name}"
                lines.append(f"# TYPE {metric} histogram")
                for key, hist in series.items():
                    for le, count in hist.buckets():
                        bound = f'le="{le}"'
                        lines.append(f"{_series(metric + '_bucket', key, bound)} {count}")
                    lines.append(f"{_series(metric + '_sum', key)} {hist.sum:.2f}")
                    lines.append(f"{_series(metric + '_count', key)} {hist.count}")

        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()


# Process-wide collector used when a component is not given its own
metrics = MetricsCollector()
