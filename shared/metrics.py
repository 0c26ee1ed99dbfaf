"""
Shared metrics configuration for the OSM GeoJSON tooling.
"""

import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, Info, generate_latest


class MetricsCollector:
    """Metrics collector for one service instance.

    Each collector owns its registry so several instances (tests, CLI runs
    inside a server process) never collide on metric names.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up metrics for the service."""

        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "0.1.0"
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

        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        self._metrics["rate_limit_hits_total"] = Counter(
            "rate_limit_hits_total",
            "Requests rejected by the rate limiter",
            registry=self.registry
        )

        self._metrics["artifact_lookups_total"] = Counter(
            "artifact_lookups_total",
            "Artifact lookups by outcome",
            ["result"],
            registry=self.registry
        )

        self._metrics["upstream_fetches_total"] = Counter(
            "upstream_fetches_total",
            "Upstream relation fetches by outcome",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["artifact_writes_total"] = Counter(
            "artifact_writes_total",
            "Artifacts written to the output directory",
            registry=self.registry
        )

        self._metrics["resolutions_total"] = Counter(
            "resolutions_total",
            "Sub-area resolutions by outcome",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["resolution_duration_seconds"] = Histogram(
            "resolution_duration_seconds",
            "Resolution plus write duration in seconds",
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def render(self) -> bytes:
        """Render the registry in Prometheus text format."""
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

    @contextmanager
    def time_operation(self, operation_name: str, **labels):
        """Context manager to time an operation."""
        start_time = time.time()
        try:
            yield
        finally:
            duration = time.time() - start_time
            metric = self._metrics.get(operation_name)
            if metric is not None:
                (metric.labels(**labels) if labels else metric).observe(duration)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        metric = self._metrics.get(metric_name)
        if metric is not None:
            (metric.labels(**labels) if labels else metric).inc()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
