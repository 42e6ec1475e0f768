"""Creates listeners for group queue triggers."""

from typing import Callable

import structlog

from group_queue.config.poller import PollerConfig
from group_queue.errors import QueueConnectionError
from group_queue.listener.executor import Executor
from group_queue.listener.listener import GroupQueueListener
from group_queue.queues.base import QueueClient
from group_queue.trigger.attribute import GroupQueueTrigger

logger = structlog.get_logger(__name__)

QueueFactory = Callable[[str], QueueClient]


class GroupQueueTriggerBindingProvider:
    """
    Resolves a trigger's queues and builds its listener.

    The main queue is created if missing; the poison queue is created
    lazily by the listener the first time a message is dead-lettered.
    """

    def __init__(self, queue_factory: QueueFactory, config: PollerConfig | None = None):
        """
        Initialize the provider.

        Args:
            queue_factory: Returns a queue client for a (normalized) queue name
            config: Poller defaults for intervals, visibility and poison handling
        """
        if queue_factory is None:
            raise ValueError("queue_factory is required")
        self._queue_factory = queue_factory
        self._config = config or PollerConfig()

    async def create_listener(
        self,
        trigger: GroupQueueTrigger,
        executor: Executor,
    ) -> GroupQueueListener:
        """
        Build a listener for ``trigger``.

        Raises:
            QueueConnectionError: If the queues cannot be reached or created
        """
        queue_name = trigger.normalized_queue_name
        try:
            queue = self._queue_factory(queue_name)
            await queue.ensure_exists()
            poison_queue = self._queue_factory(
                trigger.poison_queue_name(self._config.poison_queue_suffix)
            )
        except Exception as e:
            raise QueueConnectionError(
                f"Cannot connect to queue {trigger.queue_name}: {e}"
            ) from e

        logger.info(
            "Created group queue listener",
            queue=queue_name,
            poison_queue=poison_queue.name,
            group_size=trigger.group_size,
        )
        return GroupQueueListener(
            executor,
            queue,
            poison_queue,
            trigger.group_size,
            trigger.min_polling_interval or self._config.min_polling_interval,
            trigger.max_polling_interval or self._config.max_polling_interval,
            max_dequeue_count=self._config.max_dequeue_count,
            visibility_timeout=self._config.visibility_timeout,
        )
