"""Prometheus metrics for Shelfguard."""

from prometheus_client import Counter, Gauge, Histogram, Info

from shelfguard import __version__


class ShelfguardMetrics:
    """Metrics collection for Shelfguard."""

    def __init__(self) -> None:
        self.info = Info("shelfguard", "Shelfguard admission and query filtering")
        self.info.info({"version": __version__, "algorithm": "token_bucket"})

        # Admission
        self.admission_total = Counter(
            "shelfguard_admission_total",
            "Total number of admission decisions",
            ["result"],
        )

        self.limiter_clients = Gauge(
            "shelfguard_limiter_clients",
            "Client keys currently tracked by the rate limiter",
        )

        self.limiter_evictions_total = Counter(
            "shelfguard_limiter_evictions_total",
            "Idle client entries removed by the sweeper",
        )

        # Query filtering
        self.validation_failures_total = Counter(
            "shelfguard_validation_failures_total",
            "List requests rejected for invalid paging or sort parameters",
            ["resource"],
        )

        # HTTP
        self.http_requests_total = Counter(
            "shelfguard_http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status"],
        )

        self.http_request_duration = Histogram(
            "shelfguard_http_request_duration_seconds",
            "Duration of HTTP requests",
            ["method", "endpoint"],
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
        )


# Singleton instance
metrics = ShelfguardMetrics()
