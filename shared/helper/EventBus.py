"""In-process publish/subscribe channel.

Components never reach into each other's caches. The topic manager publishes
``topic.deleted`` and friends, the retrieval layer subscribes and drops its own
query agents. Progress updates fan out over the same bus.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

EventCallback = Callable[[dict[str, Any]], None | Awaitable[None]]


class EventBus:
    """Minimal async event bus for in-process notifications."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logging = logger or logging.getLogger(__name__)
        self._subscribers: dict[str, list[EventCallback]] = {}
        self._lock = asyncio.Lock()

    async def subscribe(self, event_name: str, callback: EventCallback) -> None:
        async with self._lock:
            self._subscribers.setdefault(event_name, []).append(callback)

    async def unsubscribe(self, event_name: str, callback: EventCallback) -> None:
        async with self._lock:
            if event_name in self._subscribers:
                self._subscribers[event_name] = [cb for cb in self._subscribers[event_name] if cb != callback]

    def subscriber_count(self, event_name: str) -> int:
        return len(self._subscribers.get(event_name, []))

    async def broadcast(self, event_name: str, payload: dict[str, Any]) -> None:
        """Deliver a payload to every subscriber of ``event_name``.

        A failing subscriber is logged and skipped; it never breaks delivery
        to the remaining listeners nor the publisher.

        Args:
            event_name (str): The event to publish.
            payload (dict[str, Any]): Event data handed to each callback.
        """
        async with self._lock:
            callbacks = list(self._subscribers.get(event_name, []))
        for cb in callbacks:
            try:
                result = cb(payload)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                self.logging.debug("Event subscriber for '%s' failed: %s", event_name, exc)
