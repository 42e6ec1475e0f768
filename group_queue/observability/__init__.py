"""Observability layer - logging, metrics, and tracing."""

from group_queue.observability.logging import setup_logging
from group_queue.observability.metrics import MetricsCollector, get_metrics
from group_queue.observability.tracing import get_tracer, setup_tracing

__all__ = ["setup_logging", "MetricsCollector", "get_metrics", "setup_tracing", "get_tracer"]
