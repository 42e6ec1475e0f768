"""
Structured logging for queue pollers.

Production logs are JSON lines, development logs are rendered for the
console. Batch processing tasks bind their queue and batch identity with
batch_context(), so every event logged while a handler runs (including
events from the handler itself) carries the batch it belongs to.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from structlog.types import Processor

from group_queue.config.settings import get_settings
from group_queue.observability.tracing import add_trace_context

# Stdlib loggers that are chatty at INFO
_QUIET_LOGGERS = ("asyncio", "redis", "opentelemetry")


def _processors(json_output: bool, with_trace_ids: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if with_trace_ids:
        processors.append(add_trace_context)

    if json_output:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def setup_logging(level: str | None = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        level: Log level override (defaults to LOG_LEVEL from settings)

    Usage:
        setup_logging()
        logger = structlog.get_logger(__name__)
        logger.info("Batch settled", queue="orders", deleted=32)
    """
    settings = get_settings()
    level = (level or settings.log_level).upper()

    structlog.configure(
        processors=_processors(settings.is_production, settings.tracing_enabled),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Queue clients log through the stdlib
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level),
    )
    # basicConfig is a no-op once handlers exist, the level still applies
    logging.getLogger().setLevel(getattr(logging, level))
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, logging.getLogger().level))


@contextmanager
def batch_context(queue: str, batch_size: int, first_message_id: str) -> Iterator[None]:
    """
    Bind batch identity to every event logged inside the block.

    Safe to use from concurrent batch tasks: each asyncio task runs in
    its own copy of the context.
    """
    with structlog.contextvars.bound_contextvars(
        queue=queue,
        batch_size=batch_size,
        first_message_id=first_message_id,
    ):
        yield
