"""
Shared metrics configuration for the Feature Flag service.
"""

from typing import Dict, Any, Optional

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry


class MetricsCollector:
    """Centralized metrics collector for services.

    Each collector owns its registry so that several service instances (one
    per test, for example) can coexist in one process.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
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

        if self.service_name == "evaluation":
            self._setup_evaluation_metrics()

    def _setup_evaluation_metrics(self):
        """Set up evaluation-specific metrics."""
        self._metrics["flag_evaluations_total"] = Counter(
            "flag_evaluations_total",
            "Total flag evaluations",
            ["reason", "decision"],
            registry=self.registry
        )

        self._metrics["flag_evaluation_duration_seconds"] = Histogram(
            "flag_evaluation_duration_seconds",
            "Flag evaluation duration in seconds, including the definition fetch",
            buckets=(0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 1.0),
            registry=self.registry
        )

        self._metrics["flag_evaluation_errors_total"] = Counter(
            "flag_evaluation_errors_total",
            "Evaluations that ended in an input error",
            ["code"],
            registry=self.registry
        )

        self._metrics["flag_version_anomalies_total"] = Counter(
            "flag_version_anomalies_total",
            "Evaluations that fell back because the current version was unresolved",
            registry=self.registry
        )

        self._metrics["flag_store_loads_total"] = Counter(
            "flag_store_loads_total",
            "Flag definition loads",
            ["source", "status"],
            registry=self.registry
        )

        self._metrics["flag_store_size"] = Gauge(
            "flag_store_size",
            "Number of flag definitions held in the local snapshot",
            registry=self.registry
        )

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

    def record_evaluation(self, reason: str, decision: bool, duration: float, anomaly: bool = False):
        """Record the outcome of one flag evaluation."""
        self.increment_counter("flag_evaluations_total", reason=reason, decision=str(decision).lower())
        self.observe_histogram("flag_evaluation_duration_seconds", duration)
        if anomaly:
            self.increment_counter("flag_version_anomalies_total")

    def record_evaluation_error(self, code: str):
        """Record an evaluation that could not produce a result."""
        self.increment_counter("flag_evaluation_errors_total", code=code)

    def record_store_load(self, source: str, status: str, size: Optional[int] = None):
        """Record a flag store (re)load."""
        self.increment_counter("flag_store_loads_total", source=source, status=status)
        if size is not None:
            self.set_gauge("flag_store_size", size)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        metric = self._metrics.get(metric_name)
        if metric is not None:
            (metric.labels(**labels) if labels else metric).inc()

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        metric = self._metrics.get(metric_name)
        if metric is not None:
            (metric.labels(**labels) if labels else metric).set(value)

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        metric = self._metrics.get(metric_name)
        if metric is not None:
            (metric.labels(**labels) if labels else metric).observe(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)

