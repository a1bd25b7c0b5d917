"""
Shared metrics configuration for the StayChill client data layer.
"""

from typing import Dict, Any, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest


class MetricsCollector:
    """Prometheus metrics for one client instance.

    Each collector owns its registry so several clients (tabs) can live in the
    same process without duplicate-timeseries errors.
    """

    def __init__(self, service_name: str = "staychill_client", registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up client metrics."""

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests dispatched",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        self._metrics["http_retries_total"] = Counter(
            "http_retries_total",
            "Total request retries after a failed attempt",
            ["method", "endpoint"],
            registry=self.registry
        )

        # Cache metrics
        self._metrics["cache_lookups_total"] = Counter(
            "cache_lookups_total",
            "Cache lookups by layer and result",
            ["layer", "result"],
            registry=self.registry
        )

        # Error metrics
        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Classified errors surfaced to consumers",
            ["error_kind"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

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

    def record_cache_lookup(self, layer: str, hit: bool):
        """Record a query-cache or persistent-cache lookup."""
        self._metrics["cache_lookups_total"].labels(layer=layer, result="hit" if hit else "miss").inc()

    def record_error(self, error_kind: str):
        """Record error metrics."""
        self._metrics["errors_total"].labels(error_kind=error_kind).inc()

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).inc()

    def get_sample_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """Read back a sample value, mostly for tests and diagnostics."""
        return self.registry.get_sample_value(name, labels or {})

    def export(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)
