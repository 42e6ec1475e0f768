"""
Prometheus metrics for monitoring queue pollers.

Defines and exposes metrics for:
- Poll results (batch found, empty, transient error)
- Message settlement (deleted, poisoned)
- Batch outcomes and processing latency
- In-flight batches and the current backoff delay

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from group_queue.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for batch latency histograms (in seconds)
LATENCY_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0)


class MetricsCollector:
    """
    Prometheus metrics collector for group queue listeners.

    Usage:
        metrics = get_metrics()
        metrics.start_server()

        metrics.polls.labels(queue="orders", result="batch").inc()
        metrics.record_batch("orders", "ok", latency=0.42)
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        """
        Initialize Prometheus metrics.

        Args:
            registry: Registry to register metrics with (tests pass a fresh one)
        """
        self.registry = registry

        self.polls = Counter(
            "group_queue_polls_total",
            "Total poll cycles",
            ["queue", "result"],  # result: batch, empty, error, cancelled
            registry=registry,
        )

        self.messages_fetched = Counter(
            "group_queue_messages_fetched_total",
            "Total messages fetched",
            ["queue"],
            registry=registry,
        )

        self.messages_deleted = Counter(
            "group_queue_messages_deleted_total",
            "Total messages deleted after successful processing",
            ["queue"],
            registry=registry,
        )

        self.messages_poisoned = Counter(
            "group_queue_messages_poisoned_total",
            "Total messages moved to the poison queue",
            ["queue"],
            registry=registry,
        )

        self.batches = Counter(
            "group_queue_batches_total",
            "Total processed batches by outcome",
            ["queue", "outcome"],  # outcome: ok, cancelled, failed
            registry=registry,
        )

        self.batch_latency = Histogram(
            "group_queue_batch_latency_seconds",
            "Time to execute and settle one batch",
            ["queue"],
            buckets=LATENCY_BUCKETS,
            registry=registry,
        )

        self.in_flight = Gauge(
            "group_queue_batches_in_flight",
            "Number of batches currently being processed",
            ["queue"],
            registry=registry,
        )

        self.backoff_delay = Gauge(
            "group_queue_backoff_delay_seconds",
            "Most recent idle polling delay",
            ["queue"],
            registry=registry,
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=self.registry)
        logger.info(f"Prometheus metrics server started on port {port}")

    # Convenience methods

    def record_poll(self, queue: str, result: str, fetched: int = 0) -> None:
        """
        Record one poll cycle.

        Args:
            queue: Queue name
            result: batch, empty, error or cancelled
            fetched: Number of messages fetched
        """
        self.polls.labels(queue=queue, result=result).inc()
        if fetched:
            self.messages_fetched.labels(queue=queue).inc(fetched)

    def record_batch(
        self,
        queue: str,
        outcome: str,
        latency: float | None = None,
    ) -> None:
        """
        Record a settled batch.

        Args:
            queue: Queue name
            outcome: ok, cancelled or failed
            latency: Optional processing latency in seconds
        """
        self.batches.labels(queue=queue, outcome=outcome).inc()
        if latency is not None:
            self.batch_latency.labels(queue=queue).observe(latency)


_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
