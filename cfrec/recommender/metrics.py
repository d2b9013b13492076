"""Metrics service for tracking engine performance.

Thread-safe counters and latency tracking for recommendation requests,
cache effectiveness and background similarity refresh.
"""

import threading
from collections import defaultdict
from typing import Dict


class _LatencyStats:
    __slots__ = ("count", "total_ms", "min_ms", "max_ms")

    def __init__(self):
        self.count = 0
        self.total_ms = 0.0
        self.min_ms = float('inf')
        self.max_ms = 0.0

    def add(self, latency_ms: float) -> None:
        self.count += 1
        self.total_ms += latency_ms
        if latency_ms < self.min_ms:
            self.min_ms = latency_ms
        if latency_ms > self.max_ms:
            self.max_ms = latency_ms

    def as_dict(self) -> Dict:
        avg_latency = self.total_ms / self.count if self.count > 0 else 0.0
        return {
            "count": self.count,
            "average_latency_ms": round(avg_latency, 2),
            "min_latency_ms": round(self.min_ms, 2) if self.min_ms != float('inf') else 0.0,
            "max_latency_ms": round(self.max_ms, 2),
        }


class MetricsService:
    """Counters for the recommendation engine.

    One instance is shared by the engine and the API; tests build their own.
    """

    def __init__(self):
        """Initialize metrics counters."""
        self._lock = threading.Lock()
        self._requests: Dict[str, _LatencyStats] = defaultdict(_LatencyStats)
        self._cache_hits = 0
        self._cache_misses = 0
        self._degraded = 0
        self._refresh: Dict[str, int] = defaultdict(int)

    def record_request(self, strategy: str, latency_ms: float) -> None:
        """Record a recommendation request with its latency.

        Args:
            strategy: Strategy name (user-based, item-based, hybrid, popular)
            latency_ms: Latency in milliseconds
        """
        with self._lock:
            self._requests[strategy].add(latency_ms)

    def record_cache(self, hit: bool) -> None:
        with self._lock:
            if hit:
                self._cache_hits += 1
            else:
                self._cache_misses += 1

    def record_degraded(self) -> None:
        """Record a request answered with an empty list because of a failure."""
        with self._lock:
            self._degraded += 1

    def record_refresh(self, outcome: str) -> None:
        """Record a refresh job outcome: enqueued, completed, failed or dropped."""
        with self._lock:
            self._refresh[outcome] += 1

    def get_metrics(self) -> Dict:
        """Get current metrics.

        Returns:
            Dictionary with metrics including:
            - requests: per-strategy count and latency statistics
            - cache: hits, misses and hit rate
            - degraded_responses: reads that fell back to an empty list
            - refresh: refresh job counts by outcome
        """
        with self._lock:
            lookups = self._cache_hits + self._cache_misses
            return {
                "requests": {name: stats.as_dict() for name, stats in self._requests.items()},
                "cache": {
                    "hits": self._cache_hits,
                    "misses": self._cache_misses,
                    "hit_rate": round(self._cache_hits / lookups, 4) if lookups else 0.0,
                },
                "degraded_responses": self._degraded,
                "refresh": dict(self._refresh),
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._requests.clear()
            self._cache_hits = 0
            self._cache_misses = 0
            self._degraded = 0
            self._refresh.clear()


# Default instance used by the API service
metrics_service = MetricsService()
