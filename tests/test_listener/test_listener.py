"""
Tests for GroupQueueListener.

Tests verify that the listener correctly:
- Backs off while the queue is empty and resets once work is found
- Deletes messages after the handler succeeds
- Moves exhausted messages to the poison queue on failure
- Caps the number of in-flight batches
- Waits for in-flight batches on shutdown
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from group_queue.errors import (
    InvalidOperationError,
    ObjectDisposedError,
    QueueTransientError,
)
from group_queue.listener.executor import ExecutionResult
from group_queue.listener.listener import GroupQueueListener
from group_queue.listener.outcome import BatchOutcome, OutcomeStatus
from group_queue.queues.memory import InMemoryQueue
from group_queue.timers.cancellation import CancellationToken


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


async def _settle_all(listener: GroupQueueListener) -> list[BatchOutcome]:
    """Await every dispatched batch and return outcomes."""
    tasks = list(listener._processing)
    outcomes = [await task for task in tasks]
    await listener._drain_all()
    return outcomes


def _discard(result) -> None:
    """Close an un-awaited wait coroutine."""
    if asyncio.iscoroutine(result.wait):
        result.wait.close()


# ── Construction ──────────────────────────────────────────


class TestConstruction:
    """Validation and derived settings."""

    def test_requires_executor(self, queue):
        with pytest.raises(ValueError, match="executor"):
            GroupQueueListener(None, queue)

    def test_requires_queue(self, succeeding_executor):
        with pytest.raises(ValueError, match="queue"):
            GroupQueueListener(succeeding_executor, None)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"group_size": 0},
            {"max_dequeue_count": 0},
            {"visibility_timeout": 0},
        ],
    )
    def test_rejects_non_positive_settings(self, succeeding_executor, queue, kwargs):
        with pytest.raises(ValueError):
            GroupQueueListener(succeeding_executor, queue, **kwargs)

    @pytest.mark.parametrize("group_size,threshold", [(32, 16), (5, 2), (1, 0)])
    def test_new_batch_threshold(self, succeeding_executor, queue, group_size, threshold):
        listener = GroupQueueListener(succeeding_executor, queue, group_size=group_size)
        assert listener.new_batch_threshold == threshold

    def test_zero_intervals_use_defaults(self, succeeding_executor, queue):
        listener = GroupQueueListener(succeeding_executor, queue)
        assert listener.backoff.minimum == 2.0
        assert listener.backoff.maximum == 60.0

    def test_explicit_intervals(self, succeeding_executor, queue):
        listener = GroupQueueListener(
            succeeding_executor, queue, min_polling_interval=0.5, max_polling_interval=5.0
        )
        assert listener.backoff.minimum == 0.5
        assert listener.backoff.maximum == 5.0

    def test_name_defaults_to_queue_name(self, succeeding_executor, queue):
        listener = GroupQueueListener(succeeding_executor, queue)
        assert listener.name == "orders"


# ── Poll cycle ────────────────────────────────────────────


class TestPollCycle:
    """One execute() call at a time."""

    @pytest.mark.asyncio
    async def test_empty_queue_backs_off(self, succeeding_executor, queue, token):
        listener = GroupQueueListener(succeeding_executor, queue)

        result = await listener.execute(token)

        assert result.wait is not None
        assert listener.backoff.current_interval == 2.0
        assert listener.in_flight == 0
        assert succeeding_executor.batches == []
        _discard(result)

    @pytest.mark.asyncio
    async def test_successful_batch_is_deleted(
        self, succeeding_executor, queue, poison_queue, token
    ):
        for i in range(5):
            queue.add(f'{{"id": {i}}}')
        queue.delete = AsyncMock(wraps=queue.delete)
        listener = GroupQueueListener(succeeding_executor, queue, poison_queue)

        result = await listener.execute(token)
        await result.wait
        outcomes = await _settle_all(listener)

        assert outcomes[0].status is OutcomeStatus.OK
        assert outcomes[0].deleted == 5
        assert queue.delete.await_count == 5
        assert len(queue) == 0
        assert len(poison_queue) == 0
        assert not poison_queue.exists
        assert succeeding_executor.message_count == 5
        # Dispatching a batch doesn't touch the backoff
        assert listener.backoff.exponent == 0

    @pytest.mark.asyncio
    async def test_batch_respects_group_size(self, succeeding_executor, queue, token):
        for i in range(10):
            queue.add(str(i))
        listener = GroupQueueListener(succeeding_executor, queue, group_size=4)

        await listener.execute(token)
        await _settle_all(listener)

        assert [len(b) for b in succeeding_executor.batches] == [4]
        assert len(queue) == 6

    @pytest.mark.asyncio
    async def test_messages_delivered_in_fetch_order(self, succeeding_executor, queue, token):
        for body in ("a", "b", "c"):
            queue.add(body)
        listener = GroupQueueListener(succeeding_executor, queue)

        await listener.execute(token)
        await _settle_all(listener)

        assert [m.body for m in succeeding_executor.batches[0]] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_found_work_resets_backoff(self, succeeding_executor, queue, token):
        listener = GroupQueueListener(succeeding_executor, queue)
        for _ in range(3):
            _discard(await listener.execute(token))
        assert listener.backoff.current_interval > 2.0

        queue.add("work")
        await listener.execute(token)
        await _settle_all(listener)
        _discard(await listener.execute(token))

        assert listener.backoff.current_interval == 2.0
        assert listener.backoff.exponent == 1

    @pytest.mark.asyncio
    async def test_transient_fetch_error_backs_off(self, succeeding_executor, queue, token):
        queue.fetch = AsyncMock(side_effect=QueueTransientError("broker down", "orders"))
        listener = GroupQueueListener(succeeding_executor, queue)

        result = await listener.execute(token)

        assert result.wait is not None
        assert listener.backoff.exponent == 1
        _discard(result)

    @pytest.mark.asyncio
    async def test_other_fetch_error_propagates(self, succeeding_executor, queue, token):
        queue.fetch = AsyncMock(side_effect=RuntimeError("corrupt"))
        listener = GroupQueueListener(succeeding_executor, queue)

        with pytest.raises(RuntimeError, match="corrupt"):
            await listener.execute(token)

    @pytest.mark.asyncio
    async def test_next_poll_releases_pending_backoff_wait(
        self, succeeding_executor, queue, token
    ):
        listener = GroupQueueListener(
            succeeding_executor, queue, min_polling_interval=30.0, max_polling_interval=60.0
        )
        result = await listener.execute(token)
        waiter = asyncio.ensure_future(result.wait)
        await asyncio.sleep(0.01)
        assert not waiter.done()

        _discard(await listener.execute(token))

        await asyncio.wait_for(waiter, timeout=1.0)


# ── Failure handling ──────────────────────────────────────


class TestFailureHandling:
    """Poison queue and outcome classification."""

    @pytest.mark.asyncio
    async def test_exhausted_message_moved_to_poison(
        self, failing_executor, queue, poison_queue, token
    ):
        queue.add('{"id": 1}', dequeue_count=149)
        listener = GroupQueueListener(failing_executor, queue, poison_queue)

        await listener.execute(token)
        outcomes = await _settle_all(listener)

        assert outcomes[0].status is OutcomeStatus.EXECUTOR_FAILED
        assert outcomes[0].poisoned == 1
        assert isinstance(outcomes[0].error, RuntimeError)
        assert poison_queue.exists
        assert poison_queue.peek() == ['{"id": 1}']
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_message_below_limit_stays_for_redelivery(
        self, failing_executor, queue, poison_queue, token
    ):
        queue.add("retry me")
        listener = GroupQueueListener(failing_executor, queue, poison_queue)

        await listener.execute(token)
        outcomes = await _settle_all(listener)

        assert outcomes[0].poisoned == 0
        assert queue.peek() == ["retry me"]
        assert len(poison_queue) == 0

    @pytest.mark.asyncio
    async def test_only_exhausted_messages_poisoned(
        self, failing_executor, queue, poison_queue, token
    ):
        queue.add("fresh")
        queue.add("stale", dequeue_count=99)
        listener = GroupQueueListener(failing_executor, queue, poison_queue)

        await listener.execute(token)
        outcomes = await _settle_all(listener)

        assert outcomes[0].poisoned == 1
        assert poison_queue.peek() == ["stale"]
        assert queue.peek() == ["fresh"]

    @pytest.mark.asyncio
    async def test_custom_max_dequeue_count(
        self, failing_executor, queue, poison_queue, token
    ):
        queue.add("x", dequeue_count=2)
        listener = GroupQueueListener(
            failing_executor, queue, poison_queue, max_dequeue_count=3
        )

        await listener.execute(token)
        await _settle_all(listener)

        assert poison_queue.peek() == ["x"]

    @pytest.mark.asyncio
    async def test_without_poison_queue_nothing_is_removed(
        self, failing_executor, queue, token
    ):
        queue.add("x", dequeue_count=500)
        listener = GroupQueueListener(failing_executor, queue, None)

        await listener.execute(token)
        outcomes = await _settle_all(listener)

        assert outcomes[0].status is OutcomeStatus.EXECUTOR_FAILED
        assert len(queue) == 1

    @pytest.mark.asyncio
    async def test_cancelled_executor_leaves_messages(
        self, cancelling_executor, queue, poison_queue, token
    ):
        queue.add("x", dequeue_count=500)
        listener = GroupQueueListener(cancelling_executor, queue, poison_queue)

        await listener.execute(token)
        outcomes = await _settle_all(listener)

        assert outcomes[0].status is OutcomeStatus.CANCELLED
        assert len(queue) == 1
        assert len(poison_queue) == 0

    @pytest.mark.asyncio
    async def test_settlement_error_is_contained(self, succeeding_executor, queue, token):
        queue.add("x")
        queue.delete = AsyncMock(side_effect=RuntimeError("delete failed"))
        listener = GroupQueueListener(succeeding_executor, queue)

        await listener.execute(token)
        outcomes = await _settle_all(listener)

        assert outcomes[0].status is OutcomeStatus.FAILED
        assert str(outcomes[0].error) == "delete failed"
        assert listener.in_flight == 0


# ── Concurrency ───────────────────────────────────────────


class TestConcurrency:
    """In-flight batch ceiling."""

    @pytest.mark.asyncio
    async def test_poll_waits_once_threshold_exceeded(self, gated_executor, queue, token):
        for i in range(20):
            queue.add(str(i))
        executor = gated_executor
        listener = GroupQueueListener(executor, queue, group_size=4)

        # Threshold is 2: the first two dispatches return immediately
        for _ in range(2):
            result = await listener.execute(token)
            await asyncio.wait_for(result.wait, timeout=1.0)

        result = await listener.execute(token)
        waiter = asyncio.ensure_future(result.wait)
        await asyncio.sleep(0.05)

        assert listener.in_flight == 3
        assert not waiter.done()

        executor.gate.set()
        await asyncio.wait_for(waiter, timeout=1.0)
        assert listener.in_flight <= 2
        await _settle_all(listener)

    @pytest.mark.asyncio
    async def test_running_listener_caps_in_flight(self, gated_executor, queue):
        for i in range(40):
            queue.add(str(i))
        executor = gated_executor
        listener = GroupQueueListener(
            executor, queue, group_size=4, min_polling_interval=0.01, max_polling_interval=0.05
        )

        await listener.start()
        try:
            await _wait_until(lambda: listener.in_flight == 3)
            await asyncio.sleep(0.05)
            assert listener.in_flight == 3
            assert len(queue) == 40

            executor.gate.set()
            await _wait_until(lambda: len(queue) == 0)
        finally:
            await listener.stop()
            listener.close()

        assert executor.finished == 10


# ── Lifecycle ─────────────────────────────────────────────


class TestLifecycle:
    """start/stop/close and graceful shutdown."""

    @pytest.mark.asyncio
    async def test_processes_queue_until_stopped(self, succeeding_executor, queue):
        for i in range(7):
            queue.add(str(i))
        listener = GroupQueueListener(
            succeeding_executor,
            queue,
            group_size=2,
            min_polling_interval=0.01,
            max_polling_interval=0.05,
        )

        await listener.start()
        await _wait_until(lambda: len(queue) == 0)
        await listener.stop()
        listener.close()

        assert succeeding_executor.message_count == 7
        assert not listener.timer.is_running

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_batch(self, slow_executor, queue):
        queue.add("slow")
        executor = slow_executor
        listener = GroupQueueListener(
            executor, queue, min_polling_interval=0.01, max_polling_interval=0.05
        )

        await listener.start()
        await _wait_until(lambda: executor.batches)
        await listener.stop()

        assert listener.in_flight == 0
        # The token was cancelled before settlement, so the message is redelivered later
        assert len(queue) == 1
        listener.close()

    @pytest.mark.asyncio
    async def test_stop_before_start_raises(self, succeeding_executor, queue):
        listener = GroupQueueListener(succeeding_executor, queue)
        with pytest.raises(InvalidOperationError):
            await listener.stop()

    @pytest.mark.asyncio
    async def test_stop_before_start_leaves_listener_startable(self, succeeding_executor, queue):
        queue.add("x")
        listener = GroupQueueListener(
            succeeding_executor, queue, min_polling_interval=0.01, max_polling_interval=0.05
        )
        with pytest.raises(InvalidOperationError):
            await listener.stop()
        assert not listener.timer.cancel_token.is_cancellation_requested

        await listener.start()
        await _wait_until(lambda: len(queue) == 0)
        await listener.stop()

        assert succeeding_executor.message_count == 1

    @pytest.mark.asyncio
    async def test_batch_fetched_after_stop_timeout_is_not_dispatched(
        self, succeeding_executor, queue
    ):
        class SlowFetchQueue(InMemoryQueue):
            async def fetch(self, max_count, visibility_timeout, cancel_token=None):
                batch = await super().fetch(max_count, visibility_timeout, cancel_token)
                await asyncio.sleep(0.3)
                return batch

        slow_queue = SlowFetchQueue("slow")
        slow_queue.add("x")
        listener = GroupQueueListener(succeeding_executor, slow_queue)

        await listener.start()
        await asyncio.sleep(0.02)
        await listener.stop(timeout=0.05)
        await asyncio.wait_for(listener.timer.join(), timeout=2.0)

        assert listener.in_flight == 0
        assert succeeding_executor.batches == []
        # Left hidden until the visibility timeout, then redelivered
        assert len(slow_queue) == 1

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, succeeding_executor, queue):
        listener = GroupQueueListener(succeeding_executor, queue)
        await listener.start()
        try:
            with pytest.raises(InvalidOperationError):
                await listener.start()
        finally:
            await listener.stop()

    @pytest.mark.asyncio
    async def test_closed_listener_cannot_start(self, succeeding_executor, queue):
        listener = GroupQueueListener(succeeding_executor, queue)
        listener.close()
        listener.close()

        with pytest.raises(ObjectDisposedError):
            await listener.start()

    @pytest.mark.asyncio
    async def test_context_manager(self, succeeding_executor, queue):
        queue.add("x")
        listener = GroupQueueListener(
            succeeding_executor, queue, min_polling_interval=0.01, max_polling_interval=0.05
        )

        async with listener:
            await _wait_until(lambda: len(queue) == 0)

        assert not listener.timer.is_running
        with pytest.raises(ObjectDisposedError):
            await listener.start()

    @pytest.mark.asyncio
    async def test_execute_passes_token_to_executor(self, queue):
        seen: list[CancellationToken] = []

        class TokenExecutor:
            async def execute(self, batch, cancel_token):
                seen.append(cancel_token)
                return ExecutionResult(succeeded=True)

        queue.add("x")
        token = CancellationToken()
        listener = GroupQueueListener(TokenExecutor(), queue)

        await listener.execute(token)
        await _settle_all(listener)

        assert seen == [token]


