"""
Batch queue listener.

Classes:
    GroupQueueListener: Polls a queue and dispatches batches to an executor
    Executor: Protocol for batch handlers
    ExecutionResult: Verdict returned by an executor
    BatchOutcome: Tagged result of one batch processing task
    OutcomeStatus: OK, EXECUTOR_FAILED, CANCELLED or FAILED
"""

from group_queue.listener.executor import ExecutionResult, Executor
from group_queue.listener.listener import GroupQueueListener
from group_queue.listener.outcome import BatchOutcome, OutcomeStatus

__all__ = [
    "BatchOutcome",
    "ExecutionResult",
    "Executor",
    "GroupQueueListener",
    "OutcomeStatus",
]
