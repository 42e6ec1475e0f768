"""
Executor contract for batch processing.

The listener hands every fetched batch to an Executor and only looks at
the verdict: success deletes the batch, failure leaves it to redelivery or
the poison queue. Executors may raise OperationCancelledError when the
cancellation token fires; any other problem should be reported as a
failed ExecutionResult.
"""

from dataclasses import dataclass
from typing import Protocol

from group_queue.queues.base import QueueMessage
from group_queue.timers.cancellation import CancellationToken


@dataclass(frozen=True)
class ExecutionResult:
    """
    Verdict of one executor run.

    Attributes:
        succeeded: Whether the batch was processed successfully
        error: Error reported by the handler, if any
    """

    succeeded: bool
    error: BaseException | None = None


class Executor(Protocol):
    """Runs user processing logic on a batch of messages."""

    async def execute(
        self,
        batch: list[QueueMessage],
        cancel_token: CancellationToken,
    ) -> ExecutionResult:
        ...
