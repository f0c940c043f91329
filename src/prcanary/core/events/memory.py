"""
In-memory event bus implementation.

Events are delivered immediately to every matching handler and are not
persisted. A failing handler is logged and does not stop delivery to the
others, nor does it propagate into the publisher.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from prcanary.core.logging import get_logger

if TYPE_CHECKING:
    from prcanary.core.events import Event, EventHandler

__all__ = ["InMemoryEventBus"]

logger = get_logger(__name__)


@dataclass
class Subscription:
    """Internal subscription record."""

    id: str
    pattern: str
    handler: EventHandler


class InMemoryEventBus:
    """In-process event bus.

    Example::

        bus = InMemoryEventBus()
        await bus.subscribe("plan.*", on_plan)
        await bus.publish(Event(event_type="plan.applied", source="controller"))
    """

    def __init__(self, history_size: int = 0) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = asyncio.Lock()
        self._closed = False
        self._history_size = history_size
        self.history: list[Event] = []

    async def publish(self, event: Event) -> None:
        """Publish an event to all matching subscribers.

        Handlers are called concurrently using asyncio.gather.
        """
        if self._closed:
            return

        if self._history_size:
            self.history.append(event)
            del self.history[: -self._history_size]

        async with self._lock:
            handlers_to_call = [
                (sub.id, sub.handler)
                for sub in self._subscriptions.values()
                if event.matches(sub.pattern)
            ]

        if not handlers_to_call:
            return

        async def safe_call(sub_id: str, handler: EventHandler) -> None:
            try:
                await handler(event)
            except Exception as e:
                logger.warning(
                    "event_handler_error",
                    subscription_id=sub_id,
                    event_type=event.event_type,
                    error=str(e),
                )

        await asyncio.gather(*[safe_call(sub_id, handler) for sub_id, handler in handlers_to_call])

    async def subscribe(self, event_type: str, handler: EventHandler) -> str:
        """Subscribe to events matching a pattern (supports ``*`` and ``type.*``)."""
        sub_id = f"sub_{uuid.uuid4().hex[:12]}"
        async with self._lock:
            self._subscriptions[sub_id] = Subscription(id=sub_id, pattern=event_type, handler=handler)
        return sub_id

    async def unsubscribe(self, subscription_id: str) -> None:
        """Remove a subscription."""
        async with self._lock:
            self._subscriptions.pop(subscription_id, None)

    async def close(self) -> None:
        """Mark bus as closed and clear subscriptions."""
        self._closed = True
        async with self._lock:
            self._subscriptions.clear()

    @property
    def subscription_count(self) -> int:
        """Number of active subscriptions."""
        return len(self._subscriptions)
