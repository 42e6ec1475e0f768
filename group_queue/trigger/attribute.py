"""Declarative description of a group queue trigger."""

from dataclasses import dataclass

DEFAULT_GROUP_SIZE = 32
DEFAULT_POISON_SUFFIX = "-poison"


def normalize_queue_name(queue_name: str) -> str:
    """Queue names are case-insensitive; use the lower-cased form everywhere."""
    return queue_name.strip().lower()


@dataclass(frozen=True)
class GroupQueueTrigger:
    """
    Binds a handler to a queue, delivering messages in groups.

    Attributes:
        queue_name: Name of the queue to poll
        group_size: Maximum number of messages per invocation
        min_polling_interval: Minimum polling delay in seconds (0 = default)
        max_polling_interval: Maximum polling delay in seconds (0 = default)
    """

    queue_name: str
    group_size: int = DEFAULT_GROUP_SIZE
    min_polling_interval: float = 0.0
    max_polling_interval: float = 0.0

    def __post_init__(self) -> None:
        if not self.queue_name or not self.queue_name.strip():
            raise ValueError("queue_name is required")
        if self.group_size <= 0:
            raise ValueError("group_size must be positive")
        if self.min_polling_interval < 0 or self.max_polling_interval < 0:
            raise ValueError("polling intervals must not be negative")

    @property
    def normalized_queue_name(self) -> str:
        return normalize_queue_name(self.queue_name)

    def poison_queue_name(self, suffix: str = DEFAULT_POISON_SUFFIX) -> str:
        """Name of the queue that receives this trigger's poison messages."""
        return f"{self.normalized_queue_name}{suffix}"
