"""
Shared metrics configuration for the Token Verifier.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, Info


class MetricsCollector:
    """Centralized metrics collector for the verifier.

    Each collector owns a registry unless one is passed in, so several
    collectors can coexist in a single process (tests build many apps).
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up metrics for the service."""

        self.service_info = Info(
            "service",
            "Service information",
            registry=self.registry
        )
        self.service_info.info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self.http_requests_total = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self.http_request_duration_seconds = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self.health_check_total = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        # Verification metrics
        self.token_verifications_total = Counter(
            "token_verifications_total",
            "Token verification outcomes",
            ["outcome"],
            registry=self.registry
        )

        self.discovery_requests_total = Counter(
            "discovery_requests_total",
            "Provider discovery requests",
            ["document", "result"],
            registry=self.registry
        )

        self.jwks_refreshes_total = Counter(
            "jwks_refreshes_total",
            "Signing key cache refreshes",
            ["trigger", "result"],
            registry=self.registry
        )

        self.jwks_refresh_duration_seconds = Histogram(
            "jwks_refresh_duration_seconds",
            "Signing key refresh duration in seconds",
            registry=self.registry
        )

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self.http_request_duration_seconds.labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).observe(duration)

    def record_health_check(self, status: str):
        self.health_check_total.labels(status=status).inc()

    def record_verification(self, outcome: str):
        """Record a verification outcome ("accepted" or a failure reason)."""
        self.token_verifications_total.labels(outcome=outcome).inc()

    def record_discovery_request(self, document: str, result: str):
        self.discovery_requests_total.labels(document=document, result=result).inc()

    def record_jwks_refresh(self, trigger: str, result: str, duration: Optional[float] = None):
        self.jwks_refreshes_total.labels(trigger=trigger, result=result).inc()
        if duration is not None:
            self.jwks_refresh_duration_seconds.observe(duration)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
