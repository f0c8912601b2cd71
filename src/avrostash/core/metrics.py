"""
Prometheus metrics collection.

In-memory counters for the projection pipeline; Prometheus handles storage.
"""

import time
from typing import Optional

import structlog
from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram, Info

logger = structlog.get_logger(__name__)


class MetricsCollector:
    """
    Centralized metrics collection for avrostash.

    A separate registry can be passed so several collectors (tests) do not
    clash on the global one.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry if registry is not None else REGISTRY

        # Service info
        self.service_info = Info(
            "avrostash_service",
            "avrostash service information",
            registry=self.registry,
        )
        self.service_info.info({
            "version": "0.1.0",
            "service": "avrostash",
        })

        # Event metrics
        self.events_received_total = Counter(
            "events_received_total",
            "Total events received for projection",
            registry=self.registry,
        )

        self.documents_projected_total = Counter(
            "documents_projected_total",
            "Total documents produced",
            ["source"],
            registry=self.registry,
        )

        self.events_dropped_total = Counter(
            "events_dropped_total",
            "Total events dropped without a document",
            ["reason"],
            registry=self.registry,
        )

        self.batch_size_events = Histogram(
            "projection_batch_size_events",
            "Number of events per batch",
            buckets=[1, 5, 10, 25, 50, 100, 250, 500, 1000],
            registry=self.registry,
        )

        self.batch_duration = Histogram(
            "projection_batch_duration_seconds",
            "Batch processing duration in seconds",
            buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
            registry=self.registry,
        )

        # Schema metrics
        self.schema_file_reads_total = Counter(
            "schema_file_reads_total",
            "Total reads of backing schema files",
            registry=self.registry,
        )

        self.schema_cache_hits_total = Counter(
            "schema_cache_hits_total",
            "Total schema lookups served from the cache",
            registry=self.registry,
        )

        # System metrics
        self.uptime_seconds = Gauge(
            "uptime_seconds",
            "Service uptime in seconds",
            registry=self.registry,
        )

        self._start_time = time.time()

    def record_batch(self, events_count: int, duration_seconds: float) -> None:
        """Record a processed batch."""
        self.events_received_total.inc(events_count)
        self.batch_size_events.observe(events_count)
        self.batch_duration.observe(duration_seconds)

    def record_projected(self, source: str) -> None:
        self.documents_projected_total.labels(source=source or "unknown").inc()

    def record_dropped(self, reason: str, count: int = 1) -> None:
        self.events_dropped_total.labels(reason=reason).inc(count)

    def record_schema_read(self) -> None:
        self.schema_file_reads_total.inc()

    def record_schema_cache_hit(self) -> None:
        self.schema_cache_hits_total.inc()

    def update_system_metrics(self) -> None:
        """Update system-level metrics."""
        self.uptime_seconds.set(time.time() - self._start_time)
