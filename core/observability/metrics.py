"""
Metrics Collection for the ERP API access layer

Collects and exposes metrics for:
- Requests issued (by HTTP method)
- Responses received (by status code)
- Access token refreshes (attempts, successes, failures, shared waits)
- Authentication and network failures
- Request latency (average, p95)

Metrics are held in memory for the lifetime of the process.
"""

import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, List, Optional, Any


# =============================================================================
# Metric Data Classes
# =============================================================================

@dataclass
class RequestMetrics:
    """Metrics for request dispatch."""
    sent: int = 0
    retried: int = 0
    network_errors: int = 0
    auth_failures: int = 0

    by_method: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    by_status: Dict[int, int] = field(default_factory=lambda: defaultdict(int))


@dataclass
class RefreshMetrics:
    """Metrics for access token refresh."""
    attempts: int = 0
    succeeded: int = 0
    failed: int = 0
    shared: int = 0


@dataclass
class TimingMetrics:
    """Request latency metrics."""
    # Raw timing samples (keep last N for percentile calculations)
    samples: List[float] = field(default_factory=list)
    max_samples: int = 1000

    by_method: Dict[str, List[float]] = field(default_factory=lambda: defaultdict(list))

    def add_sample(self, duration_ms: float, method: str = None):
        """Add a timing sample."""
        self.samples.append(duration_ms)
        if len(self.samples) > self.max_samples:
            self.samples = self.samples[-self.max_samples:]

        if method:
            self.by_method[method].append(duration_ms)
            if len(self.by_method[method]) > self.max_samples:
                self.by_method[method] = self.by_method[method][-self.max_samples:]

    def get_average(self, method: str = None) -> float:
        samples = self.by_method.get(method, []) if method else self.samples
        return statistics.mean(samples) if samples else 0.0

    def get_p95(self, method: str = None) -> float:
        samples = self.by_method.get(method, []) if method else self.samples
        if not samples:
            return 0.0
        sorted_samples = sorted(samples)
        idx = int(len(sorted_samples) * 0.95)
        return sorted_samples[min(idx, len(sorted_samples) - 1)]


# =============================================================================
# Metrics Collector (Singleton)
# =============================================================================

class ApiMetrics:
    """
    Thread-safe metrics collector for API traffic.

    Usage:
        metrics = ApiMetrics.instance()
        metrics.record_request("GET")
        metrics.record_response("GET", 200, duration_ms=42.0)
    """

    _instance: Optional["ApiMetrics"] = None
    _instance_lock = Lock()

    def __init__(self):
        self.requests = RequestMetrics()
        self.refreshes = RefreshMetrics()
        self.timings = TimingMetrics()
        self._lock = Lock()

    @classmethod
    def instance(cls) -> "ApiMetrics":
        """Get singleton instance."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def reset(self) -> None:
        """Drop every counter and sample."""
        with self._lock:
            self.requests = RequestMetrics()
            self.refreshes = RefreshMetrics()
            self.timings = TimingMetrics()

    # =========================================================================
    # Requests
    # =========================================================================

    def record_request(self, method: str, retry: bool = False):
        with self._lock:
            self.requests.sent += 1
            self.requests.by_method[method] += 1
            if retry:
                self.requests.retried += 1

    def record_response(self, method: str, status: int, duration_ms: float = None):
        with self._lock:
            self.requests.by_status[status] += 1
            if duration_ms is not None:
                self.timings.add_sample(duration_ms, method)

    def record_network_error(self):
        with self._lock:
            self.requests.network_errors += 1

    def record_auth_failure(self):
        with self._lock:
            self.requests.auth_failures += 1

    # =========================================================================
    # Refresh
    # =========================================================================

    def record_refresh_started(self):
        with self._lock:
            self.refreshes.attempts += 1

    def record_refresh_shared(self):
        """A caller joined a refresh that was already in flight."""
        with self._lock:
            self.refreshes.shared += 1

    def record_refresh_finished(self, success: bool):
        with self._lock:
            if success:
                self.refreshes.succeeded += 1
            else:
                self.refreshes.failed += 1

    # =========================================================================
    # Summary
    # =========================================================================

    def get_timing_stats(self, method: str = None) -> Dict[str, float]:
        with self._lock:
            return {
                "average_ms": self.timings.get_average(method),
                "p95_ms": self.timings.get_p95(method),
                "sample_count": len(self.timings.by_method.get(method, []) if method else self.timings.samples),
            }

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        with self._lock:
            return {
                "requests": {
                    "sent": self.requests.sent,
                    "retried": self.requests.retried,
                    "network_errors": self.requests.network_errors,
                    "auth_failures": self.requests.auth_failures,
                    "by_method": dict(self.requests.by_method),
                    "by_status": dict(self.requests.by_status),
                },
                "refreshes": {
                    "attempts": self.refreshes.attempts,
                    "succeeded": self.refreshes.succeeded,
                    "failed": self.refreshes.failed,
                    "shared": self.refreshes.shared,
                },
                "timings": {
                    "overall": {
                        "average_ms": self.timings.get_average(),
                        "p95_ms": self.timings.get_p95(),
                    },
                    "by_method": {
                        method: {
                            "average_ms": self.timings.get_average(method),
                            "p95_ms": self.timings.get_p95(method),
                        }
                        for method in self.timings.by_method.keys()
                    },
                },
            }


# =============================================================================
# Module-level convenience functions
# =============================================================================

def get_metrics() -> ApiMetrics:
    """Get the global metrics collector."""
    return ApiMetrics.instance()


def get_metrics_summary() -> Dict[str, Any]:
    return get_metrics().get_summary()
