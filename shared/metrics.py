"""
Prometheus metrics for the distributed rate limiter.
"""

import threading
import time
from contextlib import contextmanager
from typing import Dict, Any, Optional

from prometheus_client import Counter, Histogram, CollectorRegistry, REGISTRY


class MetricsCollector:
    """Centralized metrics collector for rate limiters."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else REGISTRY
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up limiter metrics."""
        self._metrics["ratelimiter_withdrawals_total"] = Counter(
            "ratelimiter_withdrawals_total",
            "Total token withdrawals",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["ratelimiter_lock_contention_total"] = Counter(
            "ratelimiter_lock_contention_total",
            "Total failed attempts to acquire the counter lock",
            registry=self.registry
        )

        self._metrics["ratelimiter_window_rollovers_total"] = Counter(
            "ratelimiter_window_rollovers_total",
            "Total windows started from an expired remote counter",
            registry=self.registry
        )

        self._metrics["ratelimiter_errors_total"] = Counter(
            "ratelimiter_errors_total",
            "Total withdraw errors",
            ["error_type"],
            registry=self.registry
        )

        self._metrics["ratelimiter_reconcile_duration_seconds"] = Histogram(
            "ratelimiter_reconcile_duration_seconds",
            "Duration of the reserve/commit round trips in seconds",
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_withdrawal(self, outcome: str):
        """Record a served withdrawal."""
        self._metrics["ratelimiter_withdrawals_total"].labels(outcome=outcome).inc()

    def record_contention(self):
        """Record a lost race for the counter lock."""
        self._metrics["ratelimiter_lock_contention_total"].inc()

    def record_rollover(self):
        """Record a window started by this process."""
        self._metrics["ratelimiter_window_rollovers_total"].inc()

    def record_error(self, error_type: str):
        """Record error metrics."""
        self._metrics["ratelimiter_errors_total"].labels(error_type=error_type).inc()

    @contextmanager
    def time_operation(self, operation_name: str, **labels):
        """Context manager to time an operation."""
        start_time = time.perf_counter()
        try:
            yield
        finally:
            duration = time.perf_counter() - start_time
            metric = self._metrics.get(operation_name)
            if metric is not None:
                (metric.labels(**labels) if labels else metric).observe(duration)


_default_collector: Optional[MetricsCollector] = None
_default_lock = threading.Lock()


def get_metrics_collector() -> MetricsCollector:
    """Get the process-wide collector registered on the default registry."""
    global _default_collector
    with _default_lock:
        if _default_collector is None:
            _default_collector = MetricsCollector()
        return _default_collector
