"""
Prometheus metrics collection.

Each collector owns its registry, so several apps (one per test) can live
in one process without duplicate-registration errors.
"""

import time
from typing import Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info

from .. import __version__

logger = structlog.get_logger(__name__)


class MetricsCollector:
    """
    Centralized metrics collection for EventGate.

    Counters are labelled by tenant id, never by credential.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry or CollectorRegistry()

        self.service_info = Info(
            "eventgate_service",
            "EventGate service information",
            registry=self.registry,
        )
        self.service_info.info({
            "version": __version__,
            "service": "eventgate",
        })

        # Request metrics
        self.requests_total = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry,
        )

        self.request_duration = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=self.registry,
        )

        # Ingestion metrics
        self.events_ingested_total = Counter(
            "events_ingested_total",
            "Events durably stored",
            ["tenant"],
            registry=self.registry,
        )

        self.duplicates_suppressed_total = Counter(
            "events_duplicates_suppressed_total",
            "Events skipped because their id was already processed",
            ["tenant"],
            registry=self.registry,
        )

        self.batch_size_events = Histogram(
            "ingestion_batch_size_events",
            "Number of events per batch request",
            buckets=[1, 5, 10, 25, 50, 100, 250, 500],
            registry=self.registry,
        )

        self.identify_total = Counter(
            "identify_calls_total",
            "Identify calls by outcome",
            ["tenant", "outcome"],
            registry=self.registry,
        )

        # Admission metrics
        self.rate_limited_total = Counter(
            "rate_limited_requests_total",
            "Requests rejected by the rate limiter",
            ["tenant"],
            registry=self.registry,
        )

        self.rate_limit_errors_total = Counter(
            "rate_limit_store_errors_total",
            "Rate limit store failures that were allowed through",
            ["operation"],
            registry=self.registry,
        )

        self.storage_failures_total = Counter(
            "storage_failures_total",
            "Failed storage writes",
            ["store"],
            registry=self.registry,
        )

        # Store gauges
        self.rate_limit_buckets = Gauge(
            "rate_limit_buckets",
            "Live rate limit buckets",
            registry=self.registry,
        )

        self.dedup_records = Gauge(
            "dedup_records",
            "Live deduplication records",
            registry=self.registry,
        )

        self.uptime_seconds = Gauge(
            "uptime_seconds",
            "Service uptime in seconds",
            registry=self.registry,
        )

        self._start_time = time.time()

    def record_request(
        self,
        method: str,
        endpoint: str,
        status_code: int,
        duration_seconds: float
    ) -> None:
        """Record HTTP request metrics."""
        self.requests_total.labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self.request_duration.labels(
            method=method,
            endpoint=endpoint
        ).observe(duration_seconds)

    def record_ingestion(self, tenant_id: str, stored: int, batch_size: Optional[int] = None) -> None:
        if stored:
            self.events_ingested_total.labels(tenant=tenant_id).inc(stored)
        if batch_size is not None:
            self.batch_size_events.observe(batch_size)

    def record_duplicate(self, tenant_id: str, count: int = 1) -> None:
        self.duplicates_suppressed_total.labels(tenant=tenant_id).inc(count)

    def record_identify(self, tenant_id: str, created: bool) -> None:
        self.identify_total.labels(tenant=tenant_id, outcome="created" if created else "updated").inc()

    def record_rate_limited(self, tenant_id: str) -> None:
        self.rate_limited_total.labels(tenant=tenant_id).inc()

    def record_rate_limit_error(self, operation: str) -> None:
        self.rate_limit_errors_total.labels(operation=operation).inc()

    def record_storage_failure(self, store: str, count: int = 1) -> None:
        self.storage_failures_total.labels(store=store).inc(count)

    def update_store_gauges(self, rate_limit_buckets: Optional[int], dedup_records: Optional[int]) -> None:
        """Refresh store sizes; None leaves a gauge untouched."""
        if rate_limit_buckets is not None:
            self.rate_limit_buckets.set(rate_limit_buckets)
        if dedup_records is not None:
            self.dedup_records.set(dedup_records)
        self.uptime_seconds.set(time.time() - self._start_time)


def store_size(store: object) -> Optional[int]:
    """Entry count of an in-memory store, None when it cannot tell."""
    try:
        return len(store)  # type: ignore[arg-type]
    except TypeError:
        return None
