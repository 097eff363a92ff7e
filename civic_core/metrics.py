"""Thread-safe metrics collectors shared across the integration core."""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass


@dataclass
class UpstreamCounters:
    calls: int = 0
    failures: int = 0
    cache_hits: int = 0
    stale_served: int = 0
    short_circuits: int = 0
    api_time: float = 0.0


class UpstreamMetrics:
    """Track cumulative timings and outcome counts per upstream."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, UpstreamCounters] = {}

    def _get(self, upstream: str) -> UpstreamCounters:
        counters = self._counters.get(upstream)
        if counters is None:
            counters = self._counters[upstream] = UpstreamCounters()
        return counters

    def add_call(self, upstream: str, duration: float, *, failed: bool = False) -> None:
        with self._lock:
            counters = self._get(upstream)
            counters.calls += 1
            counters.api_time += duration
            if failed:
                counters.failures += 1

    def add_cache_hit(self, upstream: str) -> None:
        with self._lock:
            self._get(upstream).cache_hits += 1

    def add_stale_served(self, upstream: str) -> None:
        with self._lock:
            self._get(upstream).stale_served += 1

    def add_short_circuit(self, upstream: str) -> None:
        with self._lock:
            self._get(upstream).short_circuits += 1

    def snapshot(self, upstream: str) -> dict[str, float]:
        with self._lock:
            return asdict(self._get(upstream))


metrics = UpstreamMetrics()
