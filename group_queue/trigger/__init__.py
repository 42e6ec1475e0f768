"""
Trigger binding: declare a handler for a queue and build its listener.

Classes:
    GroupQueueTrigger: Queue name, group size and polling bounds
    GroupQueueTriggerBindingProvider: Resolves queues and creates listeners
    FunctionExecutor: Executor that calls a plain handler with bound payloads
"""

from group_queue.trigger.attribute import GroupQueueTrigger, normalize_queue_name
from group_queue.trigger.binding import bind_batch, infer_parameter_type, trigger_reason
from group_queue.trigger.function_executor import FunctionExecutor
from group_queue.trigger.provider import GroupQueueTriggerBindingProvider, QueueFactory

__all__ = [
    "FunctionExecutor",
    "GroupQueueTrigger",
    "GroupQueueTriggerBindingProvider",
    "QueueFactory",
    "bind_batch",
    "infer_parameter_type",
    "normalize_queue_name",
    "trigger_reason",
]
