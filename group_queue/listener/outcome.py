"""Tagged result of processing one batch."""

import enum
from dataclasses import dataclass


class OutcomeStatus(enum.Enum):
    """How a batch processing task ended."""

    OK = "ok"  # executor succeeded, every message deleted
    EXECUTOR_FAILED = "executor_failed"  # executor failed, poison/redeliver applied
    CANCELLED = "cancelled"  # cancellation observed, batch left to redeliver
    FAILED = "failed"  # unexpected error while executing or settling


@dataclass(frozen=True)
class BatchOutcome:
    """
    Result of one batch processing task.

    Attributes:
        status: How the task ended
        batch_size: Number of messages in the batch
        deleted: Messages deleted from the source queue
        poisoned: Messages copied to the poison queue
        error: Executor error (EXECUTOR_FAILED) or unexpected error (FAILED)
    """

    status: OutcomeStatus
    batch_size: int
    deleted: int = 0
    poisoned: int = 0
    error: BaseException | None = None

    @classmethod
    def cancelled(cls, batch_size: int) -> "BatchOutcome":
        return cls(status=OutcomeStatus.CANCELLED, batch_size=batch_size)

    @classmethod
    def failed(cls, batch_size: int, error: BaseException) -> "BatchOutcome":
        return cls(status=OutcomeStatus.FAILED, batch_size=batch_size, error=error)
