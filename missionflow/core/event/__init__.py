"""Event bus used to announce committed progression changes."""

from missionflow.core.event.bus import EventBus
from missionflow.core.event.types import (
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
)

__all__ = [
    "EventBus",
    "EventListener",
    "EventPayload",
    "CallbackType",
    "ListenerPriority",
]
