"""
Listener records for the EventBus.

Priorities decide both order and how a listener is awaited:

- CRITICAL, HIGH: one at a time, each bounded by its tier's timeout
- NORMAL: together via asyncio.gather
- LOW: background task; notification and audit sinks live here so that
  delivery never holds up a command that has already committed
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Union

EventPayload = dict[str, Any]

CallbackType = Union[
    Callable[[EventPayload], Any],
    Callable[[EventPayload], Awaitable[Any]],
]


class ListenerPriority(Enum):
    CRITICAL = 0
    HIGH = 10
    NORMAL = 50
    LOW = 100


@dataclass(slots=True, frozen=True)
class EventListener:
    callback: CallbackType
    priority: ListenerPriority
    identifier: str
    once: bool = False


def default_identifier(event_name: str, callback: CallbackType) -> str:
    """`module.qualname@event`, so re-subscribing the same function is a no-op."""
    name = getattr(callback, "__qualname__", None) or getattr(callback, "__name__", "callback")
    return f"{getattr(callback, '__module__', '?')}.{name}@{event_name}"
