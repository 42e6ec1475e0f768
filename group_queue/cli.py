"""
Command-line interface for group-queue.

Provides commands to run a queue handler, push messages onto a queue,
and check broker health.

Usage:
    group-queue listen orders myapp.handlers:handle_orders
    group-queue enqueue orders '{"id": 1}' '{"id": 2}'
    group-queue health
"""

import asyncio
import importlib
import signal
import sys
from typing import Any, Callable

import click

from group_queue.config.poller import PollerConfig
from group_queue.config.settings import get_settings
from group_queue.observability.logging import setup_logging
from group_queue.observability.metrics import get_metrics


def _load_handler(path: str) -> Callable[..., Any]:
    """Import ``module:function`` and return the function."""
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise click.BadParameter("expected 'module:function'", param_hint="HANDLER")

    try:
        module = importlib.import_module(module_name)
        handler = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise click.BadParameter(f"cannot load {path}: {e}", param_hint="HANDLER") from e

    if not callable(handler):
        raise click.BadParameter(f"{path} is not callable", param_hint="HANDLER")
    return handler


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Group Queue - batch queue triggers with adaptive polling."""
    setup_logging(level="DEBUG" if debug else None)

    settings = get_settings()
    if settings.tracing_enabled:
        from group_queue.observability.tracing import setup_tracing

        setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )


@main.command()
@click.argument("queue")
@click.argument("handler")
@click.option("--group-size", type=int, default=None, help="Messages per batch")
@click.option("--min-interval", type=float, default=0.0, help="Minimum polling interval (seconds)")
@click.option("--max-interval", type=float, default=0.0, help="Maximum polling interval (seconds)")
@click.option("--max-dequeue-count", type=int, default=None, help="Deliveries before poisoning")
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
def listen(
    queue: str,
    handler: str,
    group_size: int | None,
    min_interval: float,
    max_interval: float,
    max_dequeue_count: int | None,
    metrics: bool,
) -> None:
    """Poll QUEUE and run HANDLER (module:function) on each batch."""
    from group_queue.host import JobHost

    func = _load_handler(handler)

    overrides: dict[str, Any] = {}
    if max_dequeue_count is not None:
        overrides["max_dequeue_count"] = max_dequeue_count
    config = PollerConfig(**overrides)

    async def run():
        host = JobHost(config=config)
        host.group_queue_trigger(
            queue,
            group_size=group_size,
            min_polling_interval=min_interval,
            max_polling_interval=max_interval,
        )(func)

        if metrics:
            get_metrics().start_server()

        # Handle shutdown signals
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)

        await host.run_forever(stop_event)

    asyncio.run(run())


@main.command()
@click.argument("queue")
@click.argument("payloads", nargs=-1, required=True)
def enqueue(queue: str, payloads: tuple[str, ...]) -> None:
    """Push PAYLOADS onto QUEUE."""
    from group_queue.queues.redis_stream import RedisStreamQueue
    from group_queue.trigger.attribute import normalize_queue_name

    async def push() -> list[str]:
        client = RedisStreamQueue(normalize_queue_name(queue))
        try:
            await client.ensure_exists()
            return [await client.enqueue(payload) for payload in payloads]
        finally:
            await client.close()

    message_ids = asyncio.run(push())
    click.echo(f"Enqueued {len(message_ids)} messages to {queue}")
    for message_id in message_ids:
        click.echo(f"  {message_id}")


@main.command()
def health() -> None:
    """Check health of the queue broker."""
    import structlog
    logger = structlog.get_logger()

    async def check():
        results: dict[str, bool] = {}

        try:
            from group_queue.queues.redis_stream import RedisStreamQueue
            queue = RedisStreamQueue("health")
            results["redis"] = await queue.health_check()
            await queue.close()
        except Exception as e:
            results["redis"] = False
            logger.error("Redis health check failed", error=str(e))

        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)

        for name, status in results.items():
            icon = "✓" if status else "✗"
            color = "green" if status else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))

        click.echo("-" * 40)

        if all(results.values()):
            click.echo(click.style("All core services healthy!", fg="green"))
            sys.exit(0)
        else:
            click.echo(click.style("Some services unhealthy!", fg="red"))
            sys.exit(1)

    asyncio.run(check())


if __name__ == "__main__":
    main()
