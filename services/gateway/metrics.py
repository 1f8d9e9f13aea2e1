"""
Gateway counters and latency tracking
"""

import threading
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any

LATENCY_WINDOW = 100
LATENCY_BUCKETS_MS = (10, 50, 100, 250, 500, 1000, 2500, 5000)


@dataclass
class GatewayMetrics:
    """
    Request outcome counters

    Counter names:
        requests, requests_<priority>, cache_hits, cache_misses, provider_success, fallback_used,
        retries, breaker_skips, rate_limit_skips, rejections, transient_failures,
        breaker_trips, exhausted, stale_served, no_data
    """

    counters: Counter = field(default_factory=Counter)
    provider_counters: dict[str, Counter] = field(default_factory=dict)
    latencies_ms: deque = field(default_factory=lambda: deque(maxlen=LATENCY_WINDOW))
    histogram: Counter = field(default_factory=Counter)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def incr(self, name: str, provider: str | None = None, amount: int = 1) -> None:
        with self._lock:
            self.counters[name] += amount
            if provider is not None:
                self.provider_counters.setdefault(provider, Counter())[name] += amount

    def record_latency(self, latency_ms: float) -> None:
        with self._lock:
            self.latencies_ms.append(latency_ms)
            self.histogram[_bucket(latency_ms)] += 1

    @property
    def total_requests(self) -> int:
        return self.counters["requests"]

    @property
    def error_rate(self) -> float:
        """Share of requests that produced no fresh value"""
        total = self.counters["requests"]
        if total == 0:
            return 0.0
        return (self.counters["no_data"] + self.counters["stale_served"]) / total

    @property
    def cache_hit_rate(self) -> float:
        lookups = self.counters["cache_hits"] + self.counters["cache_misses"]
        return self.counters["cache_hits"] / lookups if lookups else 0.0

    @property
    def avg_latency_ms(self) -> float:
        with self._lock:
            samples = list(self.latencies_ms)
        return sum(samples) / len(samples) if samples else 0.0

    def latency_histogram(self) -> dict[str, int]:
        with self._lock:
            return {label: self.histogram.get(label, 0) for label in _bucket_labels()}

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            counters = dict(self.counters)
            providers = {name: dict(counter) for name, counter in self.provider_counters.items()}
        return {
            "counters": counters,
            "providers": providers,
            "error_rate": round(self.error_rate, 4),
            "avg_latency_ms": round(self.avg_latency_ms, 2),
        }

    def reset(self) -> None:
        with self._lock:
            self.counters.clear()
            self.provider_counters.clear()
            self.latencies_ms.clear()
            self.histogram.clear()


def _bucket(latency_ms: float) -> str:
    for bound in LATENCY_BUCKETS_MS:
        if latency_ms <= bound:
            return f"<={bound}ms"
    return f">{LATENCY_BUCKETS_MS[-1]}ms"


def _bucket_labels() -> list[str]:
    return [f"<={bound}ms" for bound in LATENCY_BUCKETS_MS] + [f">{LATENCY_BUCKETS_MS[-1]}ms"]
