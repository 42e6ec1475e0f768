"""
Executor that invokes a plain Python handler for each batch.

The batch is bound to the handler's parameter type, then the handler is
awaited (coroutine functions) or run in a worker thread (regular
functions). Handler exceptions turn into a failed ExecutionResult;
cancellation propagates so the listener can abort cleanly.
"""

import asyncio
import inspect
from typing import Any, Callable

import structlog

from group_queue.errors import OperationCancelledError
from group_queue.listener.executor import ExecutionResult
from group_queue.queues.base import QueueMessage
from group_queue.timers.cancellation import CancellationToken
from group_queue.trigger.binding import (
    CANCEL_TOKEN_PARAMETER,
    bind_batch,
    infer_parameter_type,
    trigger_reason,
)

logger = structlog.get_logger(__name__)


class FunctionExecutor:
    """
    Runs a user handler on each batch.

    Handlers take the bound batch as their first parameter and may
    declare a ``cancel_token`` keyword to observe shutdown.

    Usage:
        async def handle(orders: list[Order]) -> None:
            ...

        executor = FunctionExecutor(handle, queue_name="orders")
        result = await executor.execute(batch, token)
    """

    def __init__(
        self,
        func: Callable[..., Any],
        parameter_type: Any = None,
        queue_name: str = "",
    ):
        """
        Initialize the executor.

        Args:
            func: Handler (sync or async)
            parameter_type: Batch parameter type (inferred from annotations if omitted)
            queue_name: Queue name used in logs
        """
        if func is None:
            raise ValueError("func is required")

        self._func = func
        self._parameter_type = parameter_type or infer_parameter_type(func)
        self._queue_name = queue_name
        self._is_async = inspect.iscoroutinefunction(func)
        self._accepts_token = (
            CANCEL_TOKEN_PARAMETER in inspect.signature(func).parameters
        )

    @property
    def parameter_type(self) -> Any:
        return self._parameter_type

    async def execute(
        self,
        batch: list[QueueMessage],
        cancel_token: CancellationToken,
    ) -> ExecutionResult:
        cancel_token.raise_if_cancellation_requested()

        logger.debug(
            trigger_reason(self._queue_name),
            handler=self._func.__qualname__,
            size=len(batch),
        )

        kwargs: dict[str, Any] = {}
        if self._accepts_token:
            kwargs[CANCEL_TOKEN_PARAMETER] = cancel_token

        try:
            value = bind_batch(batch, self._parameter_type)
            if self._is_async:
                await self._func(value, **kwargs)
            else:
                await asyncio.to_thread(self._func, value, **kwargs)
        except OperationCancelledError:
            raise
        except Exception as e:
            logger.warning(
                "Handler raised",
                queue=self._queue_name,
                handler=self._func.__qualname__,
                error=str(e),
                error_type=type(e).__name__,
            )
            return ExecutionResult(succeeded=False, error=e)

        return ExecutionResult(succeeded=True)
