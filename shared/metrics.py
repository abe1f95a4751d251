"""
Shared metrics configuration for the Request Pipeline.
"""

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry
from typing import Dict, Any, Optional
import threading


class MetricsCollector:
    """Centralized metrics collector for services."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        # Each collector owns a registry so several services can live in one process.
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
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

        # Out-of-band faults (data loss, undecidable auth, dead letters)
        self._metrics["faults_total"] = Counter(
            "faults_total",
            "Total operational faults",
            ["fault_type", "service"],
            registry=self.registry
        )

        # Service-specific metrics
        if self.service_name == "gateway":
            self._setup_gateway_metrics()
            self._setup_authorizer_metrics()
            self._setup_dispatch_metrics()
        elif self.service_name == "authorizer":
            self._setup_authorizer_metrics()
        elif self.service_name == "dispatch":
            self._setup_dispatch_metrics()
        elif self.service_name == "persister":
            self._setup_persister_metrics()

    def _setup_gateway_metrics(self):
        """Set up gateway-specific metrics."""
        self._metrics["gateway_rejections_total"] = Counter(
            "gateway_rejections_total",
            "Requests rejected before execution",
            ["reason"],
            registry=self.registry
        )

        self._metrics["execution_duration_seconds"] = Histogram(
            "execution_duration_seconds",
            "Primary unit execution duration in seconds",
            ["status"],
            registry=self.registry
        )

    def _setup_authorizer_metrics(self):
        """Set up authorizer-specific metrics."""
        self._metrics["auth_decisions_total"] = Counter(
            "auth_decisions_total",
            "Total authorizer decisions",
            ["decision"],
            registry=self.registry
        )

        self._metrics["auth_cache_total"] = Counter(
            "auth_cache_total",
            "Authorizer cache lookups",
            ["result"],
            registry=self.registry
        )

        self._metrics["auth_cache_entries"] = Gauge(
            "auth_cache_entries",
            "Entries held by the authorizer cache",
            registry=self.registry
        )

    def _setup_dispatch_metrics(self):
        """Set up outcome routing metrics."""
        self._metrics["outcomes_routed_total"] = Counter(
            "outcomes_routed_total",
            "Outcomes handed to a queue",
            ["condition"],
            registry=self.registry
        )

        self._metrics["enqueue_retries_total"] = Counter(
            "enqueue_retries_total",
            "Enqueue attempts that were retried",
            ["queue"],
            registry=self.registry
        )

        self._metrics["outcomes_dropped_total"] = Counter(
            "outcomes_dropped_total",
            "Outcomes dropped after exhausting enqueue retries",
            ["condition"],
            registry=self.registry
        )

    def _setup_persister_metrics(self):
        """Set up batch consumer metrics."""
        self._metrics["batches_processed_total"] = Counter(
            "batches_processed_total",
            "Batches received from the success queue",
            registry=self.registry
        )

        self._metrics["items_processed_total"] = Counter(
            "items_processed_total",
            "Queue items processed by outcome",
            ["status"],
            registry=self.registry
        )

        self._metrics["batch_duration_seconds"] = Histogram(
            "batch_duration_seconds",
            "Batch processing duration in seconds",
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

    def record_fault(self, fault_type: str, service: Optional[str] = None):
        """Record an out-of-band fault."""
        service_name = service or self.service_name
        self._metrics["faults_total"].labels(fault_type=fault_type, service=service_name).inc()

    def increment_counter(self, metric_name: str, amount: float = 1, **labels):
        """Increment a counter metric."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        with self._lock:
            (metric.labels(**labels) if labels else metric).inc(amount)

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        (metric.labels(**labels) if labels else metric).set(value)

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        (metric.labels(**labels) if labels else metric).observe(value)

    def sample_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """Read back a sample from this collector's registry."""
        return self.registry.get_sample_value(name, labels or {})


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
