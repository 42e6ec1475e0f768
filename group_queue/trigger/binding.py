"""
Conversion of message batches into handler arguments.

Message bodies are JSON documents. A batch is bound to the handler's
parameter type by joining the bodies into a JSON array and validating it
with pydantic, so ``list[Order]`` receives parsed ``Order`` models. Two
types bypass JSON: ``list[str]`` receives the raw bodies and
``list[QueueMessage]`` receives the messages themselves.
"""

import collections.abc
import inspect
import typing
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Callable, get_args, get_origin

from pydantic import TypeAdapter, ValidationError

from group_queue.errors import BindingError
from group_queue.queues.base import QueueMessage

CANCEL_TOKEN_PARAMETER = "cancel_token"


@lru_cache(maxsize=128)
def _adapter(target: Any) -> TypeAdapter:
    return TypeAdapter(target)


def _item_type(target: Any) -> Any:
    if get_origin(target) in (list, collections.abc.Sequence):
        args = get_args(target)
        return args[0] if args else Any
    return None


def infer_parameter_type(func: Callable[..., Any]) -> Any:
    """
    Find the type of the handler's batch parameter.

    The batch parameter is the first parameter other than ``cancel_token``;
    an unannotated parameter receives raw bodies (``list[str]``).

    Raises:
        BindingError: If the handler takes no batch parameter
    """
    params = [
        p
        for p in inspect.signature(func).parameters.values()
        if p.name != CANCEL_TOKEN_PARAMETER
    ]
    if not params:
        raise BindingError(f"Handler {func.__qualname__} must accept a batch parameter")

    hints = typing.get_type_hints(func)
    return hints.get(params[0].name, list[str])


def bind_batch(messages: list[QueueMessage], target: Any) -> Any:
    """
    Convert a batch of messages into a value of type ``target``.

    Args:
        messages: Fetched messages, in fetch order
        target: Handler parameter type

    Returns:
        The bound value

    Raises:
        BindingError: If the bodies don't validate against ``target``
    """
    item = _item_type(target)
    if item is QueueMessage:
        return list(messages)
    if item is str:
        return [message.body for message in messages]

    invoke_string = "[" + ",".join(message.body for message in messages) + "]"
    try:
        return _adapter(target).validate_json(invoke_string)
    except ValidationError as e:
        raise BindingError(
            f"Unable to bind batch of {len(messages)} messages to {target}: {e}",
            payload=invoke_string,
        ) from e


def trigger_reason(queue_name: str, now: datetime | None = None) -> str:
    """Human-readable reason attached to every handler invocation."""
    now = now or datetime.now(timezone.utc)
    return f"New message on queue {queue_name} at {now.isoformat()}"
