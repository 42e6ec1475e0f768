"""
Batch queue listener - polls a queue and dispatches message groups.

The listener is the command of its own TaskSeriesTimer. Every poll:
1. Fetches up to group_size messages with a visibility timeout
2. Empty: waits a randomized exponential backoff delay
3. Non-empty: dispatches the batch to the executor as a background task
   and only waits until the number of in-flight batches is back at or
   below group_size // 2
4. Settles each batch: delete on success, poison or redeliver on failure

Delivery is at-least-once: a batch is deleted only after the executor
reports success, so crashes and cancellations lead to redelivery once the
visibility timeout expires.
"""

import asyncio
import time
from types import TracebackType

import structlog

from group_queue.errors import OperationCancelledError, QueueTransientError
from group_queue.listener.executor import Executor
from group_queue.listener.outcome import BatchOutcome, OutcomeStatus
from group_queue.observability.logging import batch_context
from group_queue.observability.metrics import get_metrics
from group_queue.observability.tracing import get_tracer, traced
from group_queue.queues.base import QueueClient, QueueMessage
from group_queue.timers.backoff import QueuePollingIntervals, RandomizedExponentialBackoff
from group_queue.timers.cancellation import CancellationToken
from group_queue.timers.series import TaskSeriesCommandResult, TaskSeriesTimer

logger = structlog.get_logger(__name__)

DEFAULT_GROUP_SIZE = 32
DEFAULT_MAX_DEQUEUE_COUNT = 100
DEFAULT_VISIBILITY_TIMEOUT = 600.0  # 10 minutes


class GroupQueueListener:
    """
    Adaptive batch poller for a queue.

    Features:
    - Batches of up to group_size messages per fetch
    - Up to group_size // 2 batches processed concurrently
    - Randomized exponential backoff while the queue is empty
    - Poison queue for messages that keep failing
    - Graceful shutdown that waits for in-flight batches

    Usage:
        listener = GroupQueueListener(executor, queue, poison_queue, group_size=32)
        await listener.start()
        ...
        await listener.stop()
    """

    def __init__(
        self,
        executor: Executor,
        queue: QueueClient,
        poison_queue: QueueClient | None = None,
        group_size: int = DEFAULT_GROUP_SIZE,
        min_polling_interval: float = 0.0,
        max_polling_interval: float = 0.0,
        *,
        max_dequeue_count: int = DEFAULT_MAX_DEQUEUE_COUNT,
        visibility_timeout: float = DEFAULT_VISIBILITY_TIMEOUT,
        name: str | None = None,
    ):
        """
        Initialize the listener.

        Args:
            executor: Runs the handler on each batch
            queue: Queue to poll
            poison_queue: Destination for messages that exceeded
                max_dequeue_count (None disables dead-lettering)
            group_size: Maximum messages per batch
            min_polling_interval: Minimum polling delay in seconds (0 = 2s)
            max_polling_interval: Maximum polling delay in seconds (0 = 60s)
            max_dequeue_count: Deliveries before a failing message is poisoned
            visibility_timeout: Seconds fetched messages stay hidden
            name: Listener name for logs and metrics (defaults to queue name)

        Raises:
            ValueError: On missing collaborators or invalid bounds
        """
        if executor is None:
            raise ValueError("executor is required")
        if queue is None:
            raise ValueError("queue is required")
        if group_size <= 0:
            raise ValueError("group_size must be positive")
        if max_dequeue_count <= 0:
            raise ValueError("max_dequeue_count must be positive")
        if visibility_timeout <= 0:
            raise ValueError("visibility_timeout must be positive")

        self._executor = executor
        self._queue = queue
        self._poison_queue = poison_queue
        self._group_size = group_size
        self._new_batch_threshold = group_size // 2
        self._max_dequeue_count = max_dequeue_count
        self._visibility_timeout = visibility_timeout
        self._name = name or queue.name

        self._backoff = RandomizedExponentialBackoff(
            min_polling_interval or QueuePollingIntervals.MINIMUM,
            max_polling_interval or QueuePollingIntervals.DEFAULT_MAXIMUM,
        )
        self._found_message_since_last_delay = False
        self._stop_waiting: asyncio.Future[None] | None = None
        self._processing: set[asyncio.Task[BatchOutcome]] = set()

        self._timer = TaskSeriesTimer(self, name=self._name)
        self._tracer = get_tracer(__name__)
        self._disposed = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def queue(self) -> QueueClient:
        return self._queue

    @property
    def poison_queue(self) -> QueueClient | None:
        return self._poison_queue

    @property
    def group_size(self) -> int:
        return self._group_size

    @property
    def new_batch_threshold(self) -> int:
        """Maximum in-flight batches before polling pauses."""
        return self._new_batch_threshold

    @property
    def in_flight(self) -> int:
        """Number of batches currently tracked as in flight."""
        return len(self._processing)

    @property
    def backoff(self) -> RandomizedExponentialBackoff:
        return self._backoff

    @property
    def timer(self) -> TaskSeriesTimer:
        return self._timer

    # ── Lifecycle ────────────────────────────────────────────

    async def start(self) -> None:
        """
        Start polling.

        Raises:
            InvalidOperationError: If already started
        """
        self._timer.start()
        logger.info(
            "Group queue listener started",
            queue=self._name,
            group_size=self._group_size,
            min_interval=self._backoff.minimum,
            max_interval=self._backoff.maximum,
        )

    async def stop(self, timeout: float | None = None) -> None:
        """
        Stop polling and wait for every in-flight batch to finish.

        Args:
            timeout: Maximum seconds to wait for the poll loop to exit

        Raises:
            InvalidOperationError: If not started or already stopped
        """
        try:
            await self._timer.stop(timeout)
        finally:
            await self._drain_all()
        logger.info("Group queue listener stopped", queue=self._name)

    def cancel(self) -> None:
        """Request the poll loop to stop without waiting."""
        self._timer.cancel()

    def close(self) -> None:
        """Release the listener. Idempotent."""
        if self._disposed:
            return
        self._timer.close()
        self._disposed = True

    async def __aenter__(self) -> "GroupQueueListener":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        try:
            await self.stop()
        finally:
            self.close()

    # ── Poll cycle ───────────────────────────────────────────

    async def execute(self, cancel_token: CancellationToken) -> TaskSeriesCommandResult:
        """
        Run one poll cycle.

        Returns:
            The wait to complete before the next poll
        """
        self._rearm_stop_waiting()
        metrics = get_metrics()

        try:
            batch = await self._queue.fetch(
                self._group_size, self._visibility_timeout, cancel_token
            )
        except QueueTransientError as e:
            logger.warning("Fetch failed, backing off", queue=self._name, error=str(e))
            metrics.record_poll(self._name, "error")
            return self._create_backoff_result()

        if batch and cancel_token.is_cancellation_requested:
            # stop() may already have drained; leave the batch to redeliver
            logger.debug(
                "Fetched batch after stop, not dispatching",
                queue=self._name,
                size=len(batch),
            )
            metrics.record_poll(self._name, "cancelled", len(batch))
            return TaskSeriesCommandResult()

        if not batch:
            metrics.record_poll(self._name, "empty")
            return self._create_backoff_result()

        metrics.record_poll(self._name, "batch", len(batch))
        task = asyncio.create_task(
            self._process_batch(batch, cancel_token),
            name=f"group-queue-batch:{self._name}",
        )
        self._processing.add(task)
        metrics.in_flight.labels(queue=self._name).set(len(self._processing))
        self._found_message_since_last_delay = True

        logger.debug(
            "Dispatched batch",
            queue=self._name,
            size=len(batch),
            in_flight=len(self._processing),
        )
        return self._create_succeeded_result()

    def _rearm_stop_waiting(self) -> None:
        """Release any waiter on the previous signal and create a fresh one."""
        if self._stop_waiting is not None and not self._stop_waiting.done():
            self._stop_waiting.set_result(None)
        self._stop_waiting = asyncio.get_running_loop().create_future()

    def _create_succeeded_result(self) -> TaskSeriesCommandResult:
        return TaskSeriesCommandResult(wait=self._wait_for_new_batch_threshold())

    def _create_backoff_result(self) -> TaskSeriesCommandResult:
        delay = self._backoff.next_delay(self._found_message_since_last_delay)
        self._found_message_since_last_delay = False
        get_metrics().backoff_delay.labels(queue=self._name).set(delay)

        assert self._stop_waiting is not None
        return TaskSeriesCommandResult(
            wait=self._delay_with_notification(delay, self._stop_waiting)
        )

    async def _delay_with_notification(
        self, delay: float, stop_waiting: asyncio.Future[None]
    ) -> None:
        """Sleep for ``delay`` seconds unless ``stop_waiting`` resolves first."""
        sleeper = asyncio.ensure_future(asyncio.sleep(delay))
        try:
            await asyncio.wait({sleeper, stop_waiting}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeper.cancel()

    async def _wait_for_new_batch_threshold(self) -> None:
        """Drain finished batches until in-flight count is within the ceiling."""
        while len(self._processing) > self._new_batch_threshold:
            done, _ = await asyncio.wait(
                self._processing, return_when=asyncio.FIRST_COMPLETED
            )
            for task in done:
                self._settle(task)

    async def _drain_all(self) -> None:
        """Wait for every in-flight batch, including ones dispatched during shutdown."""
        while self._processing:
            done, _ = await asyncio.wait(self._processing)
            for task in done:
                self._settle(task)

    def _settle(self, task: asyncio.Task[BatchOutcome]) -> None:
        """Remove a finished batch task from the in-flight set and log its outcome."""
        self._processing.discard(task)
        get_metrics().in_flight.labels(queue=self._name).set(len(self._processing))

        if task.cancelled():
            logger.info("Batch task cancelled", queue=self._name)
            return

        outcome = task.result()
        if outcome.status is OutcomeStatus.FAILED:
            logger.error(
                "Batch processing failed",
                queue=self._name,
                size=outcome.batch_size,
                error=str(outcome.error),
                error_type=type(outcome.error).__name__,
            )
        elif outcome.status is OutcomeStatus.EXECUTOR_FAILED:
            logger.warning(
                "Batch handler failed, messages left for redelivery",
                queue=self._name,
                size=outcome.batch_size,
                poisoned=outcome.poisoned,
            )
        else:
            logger.debug(
                "Batch settled",
                queue=self._name,
                status=outcome.status.value,
                deleted=outcome.deleted,
            )

    # ── Batch processing ─────────────────────────────────────

    async def _process_batch(
        self,
        batch: list[QueueMessage],
        cancel_token: CancellationToken,
    ) -> BatchOutcome:
        """
        Execute the handler on a batch and settle its messages.

        Never raises for ordinary errors; the result is tagged instead so
        the drain step can log it without tearing down the poll loop.
        """
        start_time = time.monotonic()

        try:
            with batch_context(self._name, len(batch), batch[0].message_id), traced(
                self._tracer,
                "group_queue.process_batch",
                {"queue": self._name, "batch_size": len(batch)},
            ):
                result = await self._executor.execute(batch, cancel_token)

                if result.succeeded:
                    for message in batch:
                        await self._queue.delete(message, cancel_token)
                    get_metrics().messages_deleted.labels(queue=self._name).inc(len(batch))
                    outcome = BatchOutcome(
                        status=OutcomeStatus.OK,
                        batch_size=len(batch),
                        deleted=len(batch),
                    )
                else:
                    poisoned = 0
                    if self._poison_queue is not None:
                        poisoned = await self._poison_exhausted(batch, cancel_token)
                    outcome = BatchOutcome(
                        status=OutcomeStatus.EXECUTOR_FAILED,
                        batch_size=len(batch),
                        deleted=poisoned,
                        poisoned=poisoned,
                        error=result.error,
                    )
        except OperationCancelledError:
            outcome = BatchOutcome.cancelled(len(batch))
        except Exception as e:
            outcome = BatchOutcome.failed(len(batch), e)

        get_metrics().record_batch(
            self._name, outcome.status.value, time.monotonic() - start_time
        )
        return outcome

    async def _poison_exhausted(
        self,
        batch: list[QueueMessage],
        cancel_token: CancellationToken,
    ) -> int:
        """
        Move messages that reached max_dequeue_count to the poison queue.

        Returns:
            Number of messages moved
        """
        moved = 0
        for message in batch:
            if message.dequeue_count < self._max_dequeue_count:
                continue

            await self._copy_to_poison_queue(message, cancel_token)
            await self._queue.delete(message, cancel_token)
            moved += 1

            logger.warning(
                "Moved message to poison queue",
                queue=self._name,
                message_id=message.message_id,
                dequeue_count=message.dequeue_count,
            )

        if moved:
            get_metrics().messages_poisoned.labels(queue=self._name).inc(moved)
        return moved

    async def _copy_to_poison_queue(
        self,
        message: QueueMessage,
        cancel_token: CancellationToken,
    ) -> None:
        assert self._poison_queue is not None
        await self._poison_queue.ensure_exists()
        await self._poison_queue.enqueue(message.body, cancel_token)
