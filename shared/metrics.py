"""
Shared metrics configuration for the Grepolis API Reflector.
"""

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry, generate_latest
from typing import Dict, Any, Optional
import time
from contextlib import contextmanager


class MetricsCollector:
    """Centralized metrics collector for services."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        # A private registry keeps independently constructed services from
        # colliding on metric names.
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        # Service info
        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        # Health check metrics
        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        # Error metrics
        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        if self.service_name == "reflector":
            self._setup_reflector_metrics()

    def _setup_reflector_metrics(self):
        """Set up reflector-specific metrics."""
        self._metrics["reflector_cache_hits_total"] = Counter(
            "reflector_cache_hits_total",
            "Total cache hits",
            ["endpoint"],
            registry=self.registry
        )

        self._metrics["reflector_cache_misses_total"] = Counter(
            "reflector_cache_misses_total",
            "Total cache misses",
            ["endpoint"],
            registry=self.registry
        )

        self._metrics["reflector_cache_evictions_total"] = Counter(
            "reflector_cache_evictions_total",
            "Total cache entries evicted to respect capacity",
            registry=self.registry
        )

        self._metrics["reflector_cache_entries"] = Gauge(
            "reflector_cache_entries",
            "Number of entries currently cached",
            registry=self.registry
        )

        self._metrics["reflector_upstream_requests_total"] = Counter(
            "reflector_upstream_requests_total",
            "Total origin API requests",
            ["endpoint", "outcome"],
            registry=self.registry
        )

        self._metrics["reflector_upstream_duration_seconds"] = Histogram(
            "reflector_upstream_duration_seconds",
            "Origin API request duration in seconds",
            ["endpoint"],
            registry=self.registry
        )

        self._metrics["reflector_coalesced_requests_total"] = Counter(
            "reflector_coalesced_requests_total",
            "Requests that joined an in-flight origin fetch",
            ["endpoint"],
            registry=self.registry
        )

    def render(self) -> bytes:
        """Render the registry in Prometheus exposition format."""
        return generate_latest(self.registry)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    @contextmanager
    def time_operation(self, operation_name: str, **labels):
        """Context manager to time an operation."""
        start_time = time.perf_counter()
        try:
            yield
        finally:
            duration = time.perf_counter() - start_time
            if operation_name in self._metrics:
                self._metrics[operation_name].labels(**labels).observe(duration)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        if labels:
            metric = metric.labels(**labels)
        metric.inc()

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        if labels:
            metric = metric.labels(**labels)
        metric.set(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
