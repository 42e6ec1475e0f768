"""
Redis Streams queue client with visibility-timeout semantics.

Maps the queue client contract onto a stream and a consumer group:
- fetch() first reclaims entries that have been pending longer than the
  visibility timeout (XAUTOCLAIM), then reads new entries (XREADGROUP)
- the dequeue count is the entry's delivery counter (XPENDING)
- delete() acknowledges and removes the entry (XACK + XDEL)
- enqueue() appends an entry with approximate trimming (XADD)

An entry that is read but never deleted stays in the pending list and is
handed out again once it has been idle for a full visibility timeout.
"""

import logging
import time
import uuid
from datetime import datetime, timedelta, timezone

import redis.asyncio as redis

from group_queue.config.poller import PollerConfig
from group_queue.config.settings import get_settings
from group_queue.errors import MessageNotFoundError, QueueTransientError
from group_queue.queues.base import QueueClient, QueueMessage
from group_queue.timers.cancellation import CancellationToken

logger = logging.getLogger(__name__)

BODY_FIELD = "body"

# Driver errors that are worth retrying on the next poll
_TRANSIENT_ERRORS = (redis.ConnectionError, redis.TimeoutError)


class RedisStreamQueue(QueueClient):
    """
    Queue client backed by a Redis Stream and consumer group.

    Usage:
        queue = RedisStreamQueue("orders")
        await queue.ensure_exists()
        await queue.enqueue('{"id": 1}')
        batch = await queue.fetch(max_count=32, visibility_timeout=600)
        for message in batch:
            await queue.delete(message)
        await queue.close()
    """

    def __init__(
        self,
        name: str,
        redis_url: str | None = None,
        config: PollerConfig | None = None,
        consumer_name: str | None = None,
    ):
        """
        Initialize the client.

        Args:
            name: Queue name; the stream key is ``stream_prefix + name``
            redis_url: Redis connection URL (default from settings)
            config: Poller configuration for stream naming and trimming
            consumer_name: Consumer name within the group (generated if omitted)
        """
        super().__init__(name)
        self._config = config or PollerConfig()
        self._redis_url = redis_url or str(get_settings().redis_url)
        self._consumer_name = consumer_name or f"poller_{uuid.uuid4().hex[:8]}"
        self._redis: redis.Redis | None = None
        self._group_ready = False

    @property
    def stream_name(self) -> str:
        """Redis key of the backing stream."""
        return f"{self._config.stream_prefix}{self.name}"

    @property
    def consumer_group(self) -> str:
        return self._config.consumer_group

    @property
    def redis(self) -> redis.Redis:
        """Get Redis client, connecting lazily."""
        if self._redis is None:
            self._redis = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def ensure_exists(self) -> None:
        """Create the stream and consumer group if they don't exist."""
        if self._group_ready:
            return

        try:
            await self.redis.xgroup_create(
                name=self.stream_name,
                groupname=self.consumer_group,
                id="0",
                mkstream=True,
            )
            logger.info(
                f"Created consumer group '{self.consumer_group}' "
                f"for stream '{self.stream_name}'"
            )
        except redis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise
            # Group already exists - this is fine
        except _TRANSIENT_ERRORS as e:
            raise QueueTransientError(
                f"Cannot reach stream {self.stream_name}: {e}", self.name
            ) from e

        self._group_ready = True

    async def fetch(
        self,
        max_count: int,
        visibility_timeout: float,
        cancel_token: CancellationToken | None = None,
    ) -> list[QueueMessage]:
        """
        Fetch up to ``max_count`` messages, reclaiming expired deliveries first.

        Raises:
            QueueTransientError: On Redis connection or timeout errors
        """
        self._check_cancelled(cancel_token)
        if max_count <= 0:
            raise ValueError("max_count must be positive")

        try:
            entries = await self._reclaim_expired(max_count, visibility_timeout)

            remaining = max_count - len(entries)
            if remaining > 0:
                response = await self.redis.xreadgroup(
                    groupname=self.consumer_group,
                    consumername=self._consumer_name,
                    streams={self.stream_name: ">"},
                    count=remaining,
                )
                # response is a list of [stream_name, [(id, fields), ...]]
                for _, msg_list in response or []:
                    entries.extend(msg_list)

            if not entries:
                return []

            delivery_counts = await self._get_delivery_counts(
                [msg_id for msg_id, _ in entries]
            )
        except _TRANSIENT_ERRORS as e:
            raise QueueTransientError(
                f"Fetch from {self.stream_name} failed: {e}", self.name
            ) from e

        visible_until = datetime.now(timezone.utc) + timedelta(seconds=visibility_timeout)
        return [
            QueueMessage(
                message_id=msg_id,
                body=fields.get(BODY_FIELD, ""),
                dequeue_count=delivery_counts.get(msg_id, 1),
                visible_until=visible_until,
                receipt=msg_id,
            )
            for msg_id, fields in entries
        ]

    async def _reclaim_expired(
        self, count: int, visibility_timeout: float
    ) -> list[tuple[str, dict[str, str]]]:
        """
        Claim entries whose visibility timeout has expired.

        Returns:
            List of (message_id, fields) for reclaimed entries
        """
        try:
            # XAUTOCLAIM returns: [next_start_id, [(msg_id, fields), ...], [deleted_ids]]
            result = await self.redis.xautoclaim(
                name=self.stream_name,
                groupname=self.consumer_group,
                consumername=self._consumer_name,
                min_idle_time=int(visibility_timeout * 1000),
                start_id="0-0",
                count=count,
            )
        except redis.ResponseError as e:
            # XAUTOCLAIM requires Redis 6.2+
            if "unknown command" in str(e).lower():
                logger.warning(
                    "XAUTOCLAIM not available (requires Redis 6.2+), "
                    "skipping redelivery of expired messages"
                )
                return []
            raise

        if not result or not result[1]:
            return []

        claimed = [(msg_id, fields) for msg_id, fields in result[1] if fields]
        if claimed:
            logger.info(
                f"Reclaimed {len(claimed)} expired messages from {self.stream_name}"
            )
        return claimed

    async def _get_delivery_counts(self, message_ids: list[str]) -> dict[str, int]:
        """
        Get delivery counts for a list of message IDs.

        Args:
            message_ids: List of message IDs to check

        Returns:
            Dict mapping message_id to delivery count
        """
        pipe = self.redis.pipeline()
        for msg_id in message_ids:
            pipe.xpending_range(
                name=self.stream_name,
                groupname=self.consumer_group,
                min=msg_id,
                max=msg_id,
                count=1,
            )
        results = await pipe.execute()

        delivery_counts: dict[str, int] = {}
        for pending_info in results:
            for info in pending_info or []:
                delivery_counts[info["message_id"]] = info["times_delivered"]
        return delivery_counts

    async def delete(
        self,
        message: QueueMessage,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        """
        Acknowledge and remove a message.

        Raises:
            MessageNotFoundError: If the entry was not pending in the group
            QueueTransientError: On Redis connection or timeout errors
        """
        self._check_cancelled(cancel_token)
        msg_id = message.receipt or message.message_id

        try:
            acked = await self.redis.xack(self.stream_name, self.consumer_group, msg_id)
            await self.redis.xdel(self.stream_name, msg_id)
        except _TRANSIENT_ERRORS as e:
            raise QueueTransientError(
                f"Delete from {self.stream_name} failed: {e}", self.name
            ) from e

        if not acked:
            raise MessageNotFoundError(
                f"Message {msg_id} is not pending in {self.stream_name}"
            )
        logger.debug(f"Deleted message {msg_id} from {self.stream_name}")

    async def enqueue(
        self,
        body: str,
        cancel_token: CancellationToken | None = None,
    ) -> str:
        """
        Append a message to the stream.

        Raises:
            QueueTransientError: On Redis connection or timeout errors
        """
        self._check_cancelled(cancel_token)

        try:
            message_id = await self.redis.xadd(
                name=self.stream_name,
                fields={
                    BODY_FIELD: body,
                    "enqueued_at": str(time.time()),
                },
                maxlen=self._config.max_stream_length,
                approximate=True,
            )
        except _TRANSIENT_ERRORS as e:
            raise QueueTransientError(
                f"Enqueue to {self.stream_name} failed: {e}", self.name
            ) from e

        logger.debug(f"Enqueued message {message_id} to {self.stream_name}")
        return str(message_id)

    async def get_stream_length(self) -> int:
        """Get total number of messages in the stream."""
        return await self.redis.xlen(self.stream_name)

    async def health_check(self) -> bool:
        """Check if Redis connection is healthy."""
        try:
            await self.redis.ping()
            return True
        except Exception:
            return False

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info(f"Redis connection closed for stream {self.stream_name}")
