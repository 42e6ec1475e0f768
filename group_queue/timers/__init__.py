"""
Scheduling primitives for the queue poller.

Classes:
    RandomizedExponentialBackoff: Delay strategy driven by found/not-found history
    QueuePollingIntervals: Default polling bounds
    TaskSeriesTimer: Recurring command runner with cooperative cancellation
    TaskSeriesCommand: Protocol for commands run by TaskSeriesTimer
    TaskSeriesCommandResult: Wait returned by one command run
    CancellationToken: Explicit cancellation signal
"""

from group_queue.timers.backoff import QueuePollingIntervals, RandomizedExponentialBackoff
from group_queue.timers.cancellation import CancellationToken
from group_queue.timers.series import (
    TaskSeriesCommand,
    TaskSeriesCommandResult,
    TaskSeriesTimer,
)

__all__ = [
    "CancellationToken",
    "QueuePollingIntervals",
    "RandomizedExponentialBackoff",
    "TaskSeriesCommand",
    "TaskSeriesCommandResult",
    "TaskSeriesTimer",
]
