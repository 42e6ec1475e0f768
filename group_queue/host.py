"""
Job host - registers queue handlers and runs one listener per handler.

Usage:
    host = JobHost()

    @host.group_queue_trigger("orders", group_size=16)
    async def handle_orders(orders: list[Order]) -> None:
        ...

    async with host:
        await stop_event.wait()
"""

import asyncio
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Callable

import structlog

from group_queue.config.poller import PollerConfig
from group_queue.errors import InvalidOperationError
from group_queue.listener.listener import GroupQueueListener
from group_queue.queues.redis_stream import RedisStreamQueue
from group_queue.trigger.attribute import GroupQueueTrigger
from group_queue.trigger.function_executor import FunctionExecutor
from group_queue.trigger.provider import GroupQueueTriggerBindingProvider, QueueFactory

logger = structlog.get_logger(__name__)


@dataclass
class _Registration:
    func: Callable[..., Any]
    trigger: GroupQueueTrigger
    parameter_type: Any = None


class JobHost:
    """
    Hosts group queue handlers.

    Queues are created through ``queue_factory`` (Redis Streams by
    default). The host owns the queue clients it creates and closes them
    on stop().
    """

    def __init__(
        self,
        queue_factory: QueueFactory | None = None,
        config: PollerConfig | None = None,
    ):
        """
        Initialize the host.

        Args:
            queue_factory: Returns a queue client for a queue name
            config: Poller defaults
        """
        self._config = config or PollerConfig()
        self._queue_factory = queue_factory or self._redis_queue
        self._provider = GroupQueueTriggerBindingProvider(self._queue_factory, self._config)
        self._registrations: list[_Registration] = []
        self._listeners: list[GroupQueueListener] = []
        self._started = False

    def _redis_queue(self, name: str) -> RedisStreamQueue:
        return RedisStreamQueue(name, config=self._config)

    @property
    def listeners(self) -> list[GroupQueueListener]:
        return list(self._listeners)

    def register(
        self,
        func: Callable[..., Any],
        trigger: GroupQueueTrigger,
        parameter_type: Any = None,
    ) -> None:
        """
        Register a handler for a trigger.

        Raises:
            InvalidOperationError: If the host is already running
        """
        if self._started:
            raise InvalidOperationError("Cannot register handlers on a running host.")
        self._registrations.append(_Registration(func, trigger, parameter_type))

    def group_queue_trigger(
        self,
        queue_name: str,
        group_size: int | None = None,
        min_polling_interval: float = 0.0,
        max_polling_interval: float = 0.0,
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator form of register()."""

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.register(
                func,
                GroupQueueTrigger(
                    queue_name=queue_name,
                    group_size=group_size or self._config.group_size,
                    min_polling_interval=min_polling_interval,
                    max_polling_interval=max_polling_interval,
                ),
            )
            return func

        return decorator

    async def start(self) -> None:
        """
        Create and start a listener for every registered handler.

        Raises:
            InvalidOperationError: If already started
            QueueConnectionError: If a queue cannot be reached; listeners
                started before the failure are stopped again
        """
        if self._started:
            raise InvalidOperationError("The host has already been started.")
        self._started = True

        try:
            for registration in self._registrations:
                executor = FunctionExecutor(
                    registration.func,
                    registration.parameter_type,
                    queue_name=registration.trigger.normalized_queue_name,
                )
                listener = await self._provider.create_listener(registration.trigger, executor)
                self._listeners.append(listener)
                await listener.start()
        except Exception as e:
            logger.error(
                "Job host failed to start, stopping started listeners",
                error=str(e),
                error_type=type(e).__name__,
            )
            await self.stop()
            raise

        logger.info("Job host started", listeners=len(self._listeners))

    async def stop(self, timeout: float | None = None) -> None:
        """Stop every listener, wait for in-flight batches and close queues."""
        results = await asyncio.gather(
            *(listener.stop(timeout) for listener in self._listeners),
            return_exceptions=True,
        )

        for listener, result in zip(self._listeners, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Listener stopped with error",
                    queue=listener.name,
                    error=str(result),
                    error_type=type(result).__name__,
                )
            listener.close()
            await listener.queue.close()
            if listener.poison_queue is not None:
                await listener.poison_queue.close()

        self._listeners.clear()
        self._started = False
        logger.info("Job host stopped")

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        """Run until ``stop_event`` is set, then stop gracefully."""
        try:
            await self.start()
            await stop_event.wait()
        finally:
            await self.stop()

    async def __aenter__(self) -> "JobHost":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()
