"""
In-process pub/sub between the engine and whatever consumes its events.

Services publish after their transaction commits:
`progression.mission.completed`, `ranks.promoted`, `notification.<kind>`,
`audit.transaction.logged`, `store.purchased` and so on. Subscribers match
exact names or `fnmatch` patterns (`notification.*`).

Listener timeouts for the CRITICAL and HIGH tiers come from
`events.listener_timeout.*` unless passed explicitly.
"""

from __future__ import annotations

import inspect
from collections import Counter
from fnmatch import fnmatchcase
from typing import TYPE_CHECKING, Any, Optional

from missionflow.core.event.scheduler import EventScheduler
from missionflow.core.event.types import (
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
    default_identifier,
)
from missionflow.core.logging.logger import get_logger

if TYPE_CHECKING:
    from missionflow.core.config.manager import ConfigManager

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0


class EventBus:
    """
    >>> bus = EventBus()
    >>> bus.subscribe("notification.*", deliver, priority=ListenerPriority.LOW)
    >>> await bus.publish("notification.rank_up", {"participant_id": "p-1"})
    """

    def __init__(
        self,
        scheduler: Optional[EventScheduler] = None,
        config_manager: Optional[type[ConfigManager]] = None,
        *,
        critical_timeout_seconds: Optional[float] = None,
        high_timeout_seconds: Optional[float] = None,
    ) -> None:
        self._scheduler = scheduler or EventScheduler()
        self._listeners: dict[str, list[EventListener]] = {}
        self._published: Counter[str] = Counter()

        def timeout(tier: str, explicit: Optional[float]) -> float:
            if explicit is not None:
                return float(explicit)
            if config_manager is None:
                return DEFAULT_TIMEOUT_SECONDS
            return float(
                config_manager.get(f"events.listener_timeout.{tier}_seconds", DEFAULT_TIMEOUT_SECONDS)
            )

        self._critical_timeout = timeout("critical", critical_timeout_seconds)
        self._high_timeout = timeout("high", high_timeout_seconds)

    def subscribe(
        self,
        event_name: str,
        callback: CallbackType,
        *,
        priority: ListenerPriority = ListenerPriority.NORMAL,
        identifier: Optional[str] = None,
        once: bool = False,
    ) -> str:
        """
        Register `callback(payload)` for an event name or pattern.

        Returns the listener id; subscribing an id twice keeps the first.

        Raises:
            ValueError: the callback does not take exactly one argument
        """
        try:
            arity = len(inspect.signature(callback).parameters)
        except (TypeError, ValueError):
            arity = 1
        if arity != 1:
            raise ValueError(f"Listener {callback!r} must take one argument (the payload)")

        listener = EventListener(
            callback=callback,
            priority=priority,
            identifier=identifier or default_identifier(event_name, callback),
            once=once,
        )
        bucket = self._listeners.setdefault(event_name, [])
        if any(existing.identifier == listener.identifier for existing in bucket):
            logger.debug(
                "Listener already subscribed",
                extra={"event_name": event_name, "listener_id": listener.identifier},
            )
        else:
            bucket.append(listener)
        return listener.identifier

    def unsubscribe(self, event_name: str, identifier: str) -> bool:
        bucket = self._listeners.get(event_name, [])
        kept = [listener for listener in bucket if listener.identifier != identifier]
        self._listeners[event_name] = kept
        return len(kept) != len(bucket)

    def clear(self) -> None:
        self._listeners.clear()

    def _matching(self, event_name: str) -> list[EventListener]:
        matched: list[EventListener] = []
        for pattern, bucket in self._listeners.items():
            if pattern != event_name and not fnmatchcase(event_name, pattern):
                continue
            matched.extend(bucket)
            if any(listener.once for listener in bucket):
                self._listeners[pattern] = [listener for listener in bucket if not listener.once]
        matched.sort(key=lambda listener: listener.priority.value)
        return matched

    async def publish(self, event_name: str, data: EventPayload) -> list[Any]:
        """Deliver `data`; returns the results of all non-LOW listeners."""
        self._published[event_name] += 1
        listeners = self._matching(event_name)
        if not listeners:
            return []
        return await self._scheduler.execute(
            event_name=event_name,
            payload=data,
            listeners=listeners,
            logger=logger,
            critical_timeout=self._critical_timeout,
            high_timeout=self._high_timeout,
        )

    async def drain(self) -> None:
        await self._scheduler.drain()

    def get_listener_count(self, event_name: Optional[str] = None) -> int:
        return sum(
            len(bucket)
            for pattern, bucket in self._listeners.items()
            if event_name is None or pattern == event_name or fnmatchcase(event_name, pattern)
        )

    def get_metrics_summary(self) -> dict[str, Any]:
        return {
            "total_events_published": sum(self._published.values()),
            "events_by_type": dict(self._published),
            "total_listeners": self.get_listener_count(),
            "listener_errors": self._scheduler.listener_errors,
        }
