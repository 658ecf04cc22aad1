"""
Runs the listeners matched by one publish, tier by tier.

A listener that raises or overruns its timeout is logged, counted in
`listener_errors` and contributes `None` to the results; the remaining
listeners and the publisher carry on.
"""

from __future__ import annotations

import asyncio
import inspect
from itertools import groupby
from logging import Logger
from typing import Any, Optional

from missionflow.core.event.types import EventListener, EventPayload, ListenerPriority


class EventScheduler:
    def __init__(self) -> None:
        self._background: set[asyncio.Task[Any]] = set()
        self.listener_errors = 0

    async def execute(
        self,
        *,
        event_name: str,
        payload: EventPayload,
        listeners: list[EventListener],
        logger: Logger,
        critical_timeout: Optional[float],
        high_timeout: Optional[float],
    ) -> list[Any]:
        """
        Run `listeners` (already sorted by priority) and return the results
        of every tier except LOW, which is only scheduled.
        """
        timeouts = {
            ListenerPriority.CRITICAL: critical_timeout,
            ListenerPriority.HIGH: high_timeout,
        }
        results: list[Any] = []

        for priority, group in groupby(listeners, key=lambda listener: listener.priority):
            tier = list(group)
            calls = [self._call(lst, event_name, payload, logger) for lst in tier]

            if priority is ListenerPriority.LOW:
                for listener, call in zip(tier, calls):
                    task = asyncio.create_task(call, name=f"event:{event_name}:{listener.identifier}")
                    self._background.add(task)
                    task.add_done_callback(self._background.discard)
            elif priority is ListenerPriority.NORMAL:
                results.extend(await asyncio.gather(*calls))
            else:
                for listener, call in zip(tier, calls):
                    results.append(
                        await self._bounded(call, timeouts[priority], listener, event_name, logger)
                    )

        return results

    async def _bounded(
        self,
        call: Any,
        timeout: Optional[float],
        listener: EventListener,
        event_name: str,
        logger: Logger,
    ) -> Any:
        if not timeout or timeout <= 0:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError:
            self.listener_errors += 1
            logger.error(
                "Listener exceeded its timeout",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "timeout_seconds": timeout,
                },
            )
            return None

    async def _call(
        self,
        listener: EventListener,
        event_name: str,
        payload: EventPayload,
        logger: Logger,
    ) -> Any:
        try:
            if inspect.iscoroutinefunction(listener.callback):
                return await listener.callback(payload)
            # plain functions run off the event loop
            return await asyncio.to_thread(listener.callback, payload)
        except Exception:
            self.listener_errors += 1
            logger.error(
                "Listener raised",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "priority": listener.priority.name,
                },
                exc_info=True,
            )
            return None

    async def drain(self) -> None:
        """Wait for LOW listeners still running."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
