"""
Process-local queue client with visibility timeouts.

Useful for tests and for running handlers without a broker. Behaves like a
durable queue within one process: fetched messages are hidden until they
are deleted or their visibility timeout expires, and every delivery bumps
the message's dequeue count.
"""

import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from group_queue.errors import MessageNotFoundError
from group_queue.queues.base import QueueClient, QueueMessage
from group_queue.timers.cancellation import CancellationToken


@dataclass
class _Entry:
    message_id: str
    body: str
    dequeue_count: int = 0
    visible_at: float = 0.0
    receipt: str | None = None


class InMemoryQueue(QueueClient):
    """
    In-memory queue honouring visibility timeouts and dequeue counts.

    Usage:
        queue = InMemoryQueue("orders")
        await queue.enqueue('{"id": 1}')
        batch = await queue.fetch(max_count=32, visibility_timeout=600)
        await queue.delete(batch[0])
    """

    def __init__(
        self,
        name: str = "memory",
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the queue.

        Args:
            name: Queue name
            clock: Monotonic clock in seconds, injectable for tests
        """
        super().__init__(name)
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._exists = False

    @property
    def exists(self) -> bool:
        """True once ensure_exists() has been called."""
        return self._exists

    async def ensure_exists(self) -> None:
        self._exists = True

    async def fetch(
        self,
        max_count: int,
        visibility_timeout: float,
        cancel_token: CancellationToken | None = None,
    ) -> list[QueueMessage]:
        self._check_cancelled(cancel_token)
        if max_count <= 0:
            raise ValueError("max_count must be positive")

        now = self._clock()
        visible_until = datetime.now(timezone.utc) + timedelta(seconds=visibility_timeout)
        batch: list[QueueMessage] = []

        for entry in self._entries.values():
            if len(batch) >= max_count:
                break
            if entry.visible_at > now:
                continue

            entry.dequeue_count += 1
            entry.visible_at = now + visibility_timeout
            entry.receipt = uuid.uuid4().hex
            batch.append(
                QueueMessage(
                    message_id=entry.message_id,
                    body=entry.body,
                    dequeue_count=entry.dequeue_count,
                    visible_until=visible_until,
                    receipt=entry.receipt,
                )
            )

        return batch

    async def delete(
        self,
        message: QueueMessage,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        self._check_cancelled(cancel_token)

        entry = self._entries.get(message.message_id)
        if entry is None or entry.receipt != message.receipt:
            raise MessageNotFoundError(
                f"Message {message.message_id} not found in queue {self.name}"
            )
        del self._entries[message.message_id]

    async def enqueue(
        self,
        body: str,
        cancel_token: CancellationToken | None = None,
    ) -> str:
        self._check_cancelled(cancel_token)
        return self.add(body)

    def add(self, body: str, dequeue_count: int = 0) -> str:
        """
        Add a message synchronously, optionally as if already delivered.

        Args:
            body: Raw message payload
            dequeue_count: Deliveries already made before this one

        Returns:
            Message ID
        """
        message_id = uuid.uuid4().hex
        self._entries[message_id] = _Entry(
            message_id=message_id,
            body=body,
            dequeue_count=dequeue_count,
        )
        return message_id

    def peek(self) -> list[str]:
        """Bodies of all messages, visible or not, in insertion order."""
        return [entry.body for entry in self._entries.values()]

    def __len__(self) -> int:
        return len(self._entries)
