"""
Abstract queue client used by the group queue listener.

A queue client fetches messages with a visibility timeout: fetched messages
are hidden from other consumers until they are deleted or the timeout
expires, at which point they are delivered again with a higher dequeue
count. This gives at-least-once delivery; the listener never acknowledges
a message it has not processed.

Clients must be safe for concurrent use: the poll loop fetches while
batch tasks delete and enqueue at the same time.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from types import TracebackType

from group_queue.timers.cancellation import CancellationToken


@dataclass(frozen=True)
class QueueMessage:
    """
    A message fetched from a queue.

    Attributes:
        message_id: Unique message identifier
        body: Raw message payload
        dequeue_count: Number of times the message has been delivered,
            including this delivery
        visible_until: When the message becomes visible again if it is
            not deleted
        receipt: Client-specific handle required to delete this delivery
    """

    message_id: str
    body: str
    dequeue_count: int = 1
    visible_until: datetime | None = None
    receipt: str | None = None


class QueueClient(ABC):
    """
    Abstract base class for queue clients.

    Subclasses must implement:
        - fetch(): Get up to N visible messages and hide them
        - delete(): Remove a fetched message
        - enqueue(): Add a new message
        - ensure_exists(): Create the queue if missing
    """

    def __init__(self, name: str):
        """
        Initialize the client.

        Args:
            name: Queue name
        """
        self._name = name

    @property
    def name(self) -> str:
        """Queue name."""
        return self._name

    @abstractmethod
    async def fetch(
        self,
        max_count: int,
        visibility_timeout: float,
        cancel_token: CancellationToken | None = None,
    ) -> list[QueueMessage]:
        """
        Fetch up to ``max_count`` visible messages.

        Args:
            max_count: Maximum number of messages to return
            visibility_timeout: Seconds the messages stay hidden
            cancel_token: Optional cancellation token

        Returns:
            Fetched messages, possibly empty
        """
        ...

    @abstractmethod
    async def delete(
        self,
        message: QueueMessage,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        """
        Delete a fetched message.

        Args:
            message: Message returned by fetch()
            cancel_token: Optional cancellation token
        """
        ...

    @abstractmethod
    async def enqueue(
        self,
        body: str,
        cancel_token: CancellationToken | None = None,
    ) -> str:
        """
        Add a message to the queue.

        Args:
            body: Raw message payload
            cancel_token: Optional cancellation token

        Returns:
            Message ID
        """
        ...

    @abstractmethod
    async def ensure_exists(self) -> None:
        """Create the queue if it does not exist yet."""
        ...

    async def close(self) -> None:
        """Release client resources."""

    async def __aenter__(self) -> "QueueClient":
        await self.ensure_exists()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @staticmethod
    def _check_cancelled(cancel_token: CancellationToken | None) -> None:
        if cancel_token is not None:
            cancel_token.raise_if_cancellation_requested()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self._name!r})"
