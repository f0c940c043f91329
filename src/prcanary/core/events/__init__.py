"""Observability event stream.

Why This Package Exists
-----------------------
Every state transition and plan application is an event other systems care
about: dashboards, alerting, audit trails. The control plane does not format
or ship those itself; it publishes structured :class:`Event` objects on an
``EventBus`` and external subscribers decide what to do with them.

Usage::

    from prcanary.core.events import Event, InMemoryEventBus

    bus = InMemoryEventBus()

    async def handler(event: Event):
        print(event.payload["to_state"])

    await bus.subscribe("environment.*", handler)

Event types
-----------
``environment.transition``  {canary_id, from_state, to_state, revision, outcome}
``plan.applied``            {canary_id, from_state, to_state, revision, outcome, operations}
``routes.published``        {version, rules, ready_ids}
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

__all__ = [
    "Event",
    "EventBus",
    "EventHandler",
    "InMemoryEventBus",
    "TRANSITION",
    "PLAN_APPLIED",
    "ROUTES_PUBLISHED",
]

TRANSITION = "environment.transition"
PLAN_APPLIED = "plan.applied"
ROUTES_PUBLISHED = "routes.published"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class Event:
    """Immutable event payload.

    Attributes:
        event_type: Dot-separated type (e.g., ``environment.transition``)
        source: Origin component
        payload: Event-specific data
        timestamp: When the event occurred (UTC)
        correlation_id: Optional ID linking related events (the canary id)
        event_id: Unique event identifier
    """

    event_type: str
    source: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)
    correlation_id: str | None = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def matches(self, pattern: str) -> bool:
        """Check if event type matches a pattern (supports wildcards).

        Examples:
            - ``environment.*`` matches ``environment.transition``
            - ``*`` matches everything
        """
        if pattern == "*":
            return True
        if pattern.endswith(".*"):
            prefix = pattern[:-2]
            return self.event_type.startswith(prefix + ".")
        return self.event_type == pattern

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "source": self.source,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
            "correlation_id": self.correlation_id,
        }


EventHandler = Callable[[Event], Awaitable[None]]


@runtime_checkable
class EventBus(Protocol):
    """Protocol for event bus implementations."""

    async def publish(self, event: Event) -> None:
        """Publish an event to all matching subscribers."""
        ...

    async def subscribe(self, event_type: str, handler: EventHandler) -> str:
        """Subscribe to events matching a pattern; returns a subscription ID."""
        ...

    async def unsubscribe(self, subscription_id: str) -> None:
        """Remove a subscription."""
        ...

    async def close(self) -> None:
        """Clean up resources."""
        ...


from prcanary.core.events.memory import InMemoryEventBus  # noqa: E402
