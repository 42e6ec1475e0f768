"""Configuration for the group queue poller."""

from group_queue.config.poller import PollerConfig
from group_queue.config.settings import Settings, get_settings

__all__ = ["PollerConfig", "Settings", "get_settings"]
