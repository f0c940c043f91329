"""Canonical lifecycle signals and deduplication.

Whatever the feed looks like (polled list, pushed webhook), it ends up as a
stream of :class:`SignalEvent` triples ``(canary_id, revision, state)`` plus
the ``requested_at`` timestamp that orders revisions of one environment.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from prcanary.model.environments import LifecycleState
from prcanary.model.tags import CanaryID


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class SignalEvent:
    """One canonical lifecycle event."""

    canary_id: CanaryID
    revision: str
    state: LifecycleState
    requested_at: datetime = field(default_factory=utcnow)
    source: str = "unknown"

    @property
    def dedupe_key(self) -> tuple[str, str, bool, datetime]:
        # Open and Updated for one revision are the same intent; Closed is not.
        # A later return to an earlier revision carries a newer requested_at.
        return (self.canary_id, self.revision, self.state == LifecycleState.CLOSED, self.requested_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "canary_id": self.canary_id,
            "revision": self.revision,
            "state": self.state.value,
            "requested_at": self.requested_at.isoformat(),
            "source": self.source,
        }


SignalHandler = Callable[[SignalEvent], Awaitable[None]]


class EventDeduplicator:
    """Bounded memory of already-delivered ``(id, revision, closed, requested_at)`` keys.

    Example:
        >>> dedupe = EventDeduplicator(max_entries=2)
        >>> dedupe.first_seen(event)
        True
        >>> dedupe.first_seen(event)
        False
    """

    def __init__(self, max_entries: int = 4096):
        self._max_entries = max_entries
        self._seen: OrderedDict[tuple[str, str, bool, datetime], None] = OrderedDict()

    def first_seen(self, event: SignalEvent) -> bool:
        """Record *event*; False if its key was already delivered."""
        key = event.dedupe_key
        if key in self._seen:
            self._seen.move_to_end(key)
            return False
        self._seen[key] = None
        while len(self._seen) > self._max_entries:
            self._seen.popitem(last=False)
        return True

    def forget(self, canary_id: str) -> None:
        """Drop every key for *canary_id* (after the environment is gone)."""
        for key in [k for k in self._seen if k[0] == canary_id]:
            del self._seen[key]

    def __len__(self) -> int:
        return len(self._seen)
