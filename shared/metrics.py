"""
Shared metrics configuration for the Tribute Cache service.
"""

from prometheus_client import Counter, Histogram, Info, CollectorRegistry
from typing import Dict, Any, Optional


class MetricsCollector:
    """Centralized metrics collector for services."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry
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

        self._setup_cache_metrics()

    def _setup_cache_metrics(self):
        """Set up cache-layer metrics."""
        self._metrics["cache_lookups_total"] = Counter(
            "cache_lookups_total",
            "Total cache lookups by outcome",
            ["resource_type", "result"],
            registry=self.registry
        )

        self._metrics["cache_stores_total"] = Counter(
            "cache_stores_total",
            "Total captured upstream responses",
            ["resource_type", "result"],
            registry=self.registry
        )

        self._metrics["cache_invalidations_total"] = Counter(
            "cache_invalidations_total",
            "Total cache invalidations",
            ["scope"],
            registry=self.registry
        )

        self._metrics["cache_tier_errors_total"] = Counter(
            "cache_tier_errors_total",
            "Total cache tier failures",
            ["tier"],
            registry=self.registry
        )

        self._metrics["cache_lookup_duration_seconds"] = Histogram(
            "cache_lookup_duration_seconds",
            "Cache lookup duration in seconds",
            ["resource_type"],
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

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_cache_lookup(self, resource_type: str, result: str, duration: Optional[float] = None):
        """Record a cache lookup outcome (hit, miss, error)."""
        self._metrics["cache_lookups_total"].labels(resource_type=resource_type, result=result).inc()
        if duration is not None:
            self._metrics["cache_lookup_duration_seconds"].labels(resource_type=resource_type).observe(duration)

    def record_cache_store(self, resource_type: str, result: str):
        """Record the outcome of capturing an upstream response."""
        self._metrics["cache_stores_total"].labels(resource_type=resource_type, result=result).inc()

    def record_invalidation(self, scope: str):
        """Record an invalidation (all, entity)."""
        self._metrics["cache_invalidations_total"].labels(scope=scope).inc()

    def record_tier_error(self, tier: str):
        """Record a tier failure."""
        self._metrics["cache_tier_errors_total"].labels(tier=tier).inc()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
