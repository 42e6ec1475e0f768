"""Pytest fixtures for group-queue tests."""

import asyncio

import pytest

from group_queue.errors import OperationCancelledError
from group_queue.listener.executor import ExecutionResult
from group_queue.queues.base import QueueMessage
from group_queue.queues.memory import InMemoryQueue
from group_queue.timers.cancellation import CancellationToken


class RecordingExecutor:
    """Executor that records batches and returns a fixed verdict."""

    def __init__(self, succeed: bool = True, delay: float = 0.0):
        self.succeed = succeed
        self.delay = delay
        self.batches: list[list[QueueMessage]] = []

    async def execute(
        self, batch: list[QueueMessage], cancel_token: CancellationToken
    ) -> ExecutionResult:
        self.batches.append(batch)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.succeed:
            return ExecutionResult(succeeded=True)
        return ExecutionResult(succeeded=False, error=RuntimeError("handler failed"))

    @property
    def message_count(self) -> int:
        return sum(len(batch) for batch in self.batches)


class GatedExecutor:
    """Executor that blocks every batch until the gate is opened."""

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.gate = asyncio.Event()
        self.started = asyncio.Event()
        self.finished = 0

    async def execute(
        self, batch: list[QueueMessage], cancel_token: CancellationToken
    ) -> ExecutionResult:
        self.started.set()
        await self.gate.wait()
        self.finished += 1
        return ExecutionResult(succeeded=self.succeed)


class CancellingExecutor:
    """Executor that always observes cancellation."""

    async def execute(
        self, batch: list[QueueMessage], cancel_token: CancellationToken
    ) -> ExecutionResult:
        raise OperationCancelledError("cancelled mid-batch")


@pytest.fixture
def queue() -> InMemoryQueue:
    """Source queue."""
    return InMemoryQueue("orders")


@pytest.fixture
def poison_queue() -> InMemoryQueue:
    """Poison queue for the source queue."""
    return InMemoryQueue("orders-poison")


@pytest.fixture
def token() -> CancellationToken:
    return CancellationToken()


@pytest.fixture
def succeeding_executor() -> RecordingExecutor:
    return RecordingExecutor(succeed=True)


@pytest.fixture
def failing_executor() -> RecordingExecutor:
    return RecordingExecutor(succeed=False)


@pytest.fixture
def gated_executor() -> GatedExecutor:
    return GatedExecutor()


@pytest.fixture
def cancelling_executor() -> CancellingExecutor:
    return CancellingExecutor()


@pytest.fixture
def slow_executor() -> RecordingExecutor:
    """Succeeds after a short delay."""
    return RecordingExecutor(delay=0.2)
