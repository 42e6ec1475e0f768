"""
Queue poller configuration.

Provides Pydantic settings for the batch listener: how many messages to
fetch per poll, the polling interval bounds used by the backoff strategy,
how long fetched messages stay hidden, and when a repeatedly failing
message is moved to the poison queue.

Parameter Tuning Guide:
    - group_size: Messages fetched per poll. The listener lets up to
      group_size // 2 batches run concurrently before it pauses polling,
      so larger groups also mean more parallelism.
    - min_polling_interval / max_polling_interval: Bounds for idle polling.
      A value of 0 selects the built-in defaults (2 seconds / 1 minute).
    - visibility_timeout: Must exceed the slowest expected batch, otherwise
      messages are redelivered while still being processed.
    - max_dequeue_count: Deliveries after which a failing message is
      copied to the poison queue and removed.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PollerConfig(BaseSettings):
    """
    Configuration for the group queue listener.

    All settings can be overridden via environment variables prefixed with GROUP_QUEUE_.

    Example:
        GROUP_QUEUE_GROUP_SIZE=16
        GROUP_QUEUE_MAX_POLLING_INTERVAL=30
        GROUP_QUEUE_MAX_DEQUEUE_COUNT=5
    """

    model_config = SettingsConfigDict(
        env_prefix="GROUP_QUEUE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Batching
    group_size: int = Field(
        default=32,
        gt=0,
        description="Maximum number of messages fetched and dispatched per poll.",
    )

    # Polling intervals (seconds, 0 = default)
    min_polling_interval: float = Field(
        default=2.0,
        ge=0.0,
        description="Delay after a poll that follows found work.",
    )
    max_polling_interval: float = Field(
        default=60.0,
        ge=0.0,
        description="Upper bound of the idle polling delay.",
    )

    # Delivery
    visibility_timeout: float = Field(
        default=600.0,
        gt=0.0,
        description="Seconds a fetched message stays hidden from other consumers.",
    )
    max_dequeue_count: int = Field(
        default=100,
        ge=1,
        description="Deliveries after which a failing message goes to the poison queue.",
    )
    poison_queue_suffix: str = Field(
        default="-poison",
        description="Suffix appended to the queue name to form the poison queue name.",
    )

    # Redis stream configuration
    stream_prefix: str = Field(
        default="group_queue:",
        description="Prefix for Redis stream keys.",
    )
    consumer_group: str = Field(
        default="group_queue_workers",
        description="Consumer group shared by all pollers of a queue.",
    )
    max_stream_length: int = Field(
        default=100_000,
        ge=100,
        description="Approximate maximum stream length before trimming.",
    )
