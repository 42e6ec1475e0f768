"""
Queue clients for the group queue listener.

Classes:
    QueueClient: Abstract base class for queue clients
    QueueMessage: A fetched message with its dequeue count
    InMemoryQueue: Process-local queue with visibility timeouts
    RedisStreamQueue: Redis Streams-backed queue

Example:
    from group_queue.queues import RedisStreamQueue

    async with RedisStreamQueue("orders") as queue:
        await queue.enqueue('{"id": 1}')
        batch = await queue.fetch(max_count=32, visibility_timeout=600)
"""

from group_queue.queues.base import QueueClient, QueueMessage
from group_queue.queues.memory import InMemoryQueue
from group_queue.queues.redis_stream import RedisStreamQueue

__all__ = ["InMemoryQueue", "QueueClient", "QueueMessage", "RedisStreamQueue"]
