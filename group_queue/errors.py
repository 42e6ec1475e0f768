"""
Exception hierarchy for the group queue poller.

Configuration mistakes are reported with plain ``ValueError``; everything
raised by the poller itself derives from ``GroupQueueError``.
"""


class GroupQueueError(Exception):
    """Base exception for group queue errors."""


class InvalidOperationError(GroupQueueError, RuntimeError):
    """Raised when a lifecycle method is called in the wrong state."""


class ObjectDisposedError(InvalidOperationError):
    """Raised when a timer or listener is used after close()."""


class OperationCancelledError(GroupQueueError):
    """Raised when a cancellation token has been triggered."""


class QueueTransientError(GroupQueueError):
    """
    A queue operation failed for a reason that may go away on retry.

    Queue clients translate their driver's connection and timeout errors
    into this type so the listener can back off instead of stopping.
    """

    def __init__(self, message: str, queue_name: str | None = None):
        super().__init__(message)
        self.queue_name = queue_name


class MessageNotFoundError(GroupQueueError, LookupError):
    """Raised when deleting a message that is gone or was redelivered."""


class QueueConnectionError(GroupQueueError):
    """Raised when a trigger cannot reach its queue at binding time."""


class BindingError(GroupQueueError, ValueError):
    """Raised when message payloads cannot be bound to a handler parameter."""

    def __init__(self, message: str, payload: str | None = None):
        super().__init__(message)
        self.payload = payload
