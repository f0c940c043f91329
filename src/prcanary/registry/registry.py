"""Environment registry: the authoritative desired/applied map.

Ordering rules applied by :meth:`EnvironmentRegistry.upsert_desired`:

- Open/Updated for an open environment must carry a different revision with
  a ``requested_at`` no older than the current one; otherwise ``StaleEvent``.
- Updated for an unknown environment is accepted as an Open (the Open was
  lost or is late; a late Open is then stale).
- Closed is forced: accepted whatever its revision, unless the environment
  is already closed.
- A closed environment is only reopened by an Open strictly newer than the
  close. Updated never supersedes Closed.
- After an environment is pruned and removed, a tombstone keeps rejecting
  events no newer than its close.

Entries are immutable and replaced wholesale; :meth:`snapshot` copies the
map of references under a short lock, so cross-id readers see a consistent
picture without locking individual entries.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from datetime import datetime

from prcanary.core.errors import StaleEvent
from prcanary.core.logging import get_logger
from prcanary.model.environments import (
    AppliedEnvironment,
    ControllerState,
    DesiredEnvironment,
    LifecycleState,
)
from prcanary.registry.store import MemoryRegistryStore, RegistryEntry, RegistryStore
from prcanary.signals.base import SignalEvent

logger = get_logger(__name__)


class EnvironmentRegistry:
    """CanaryID → latest DesiredEnvironment and AppliedEnvironment."""

    def __init__(self, store: RegistryStore | None = None, tombstone_window: int = 4096):
        self._store = store or MemoryRegistryStore()
        self._lock = threading.Lock()
        self._entries: dict[str, RegistryEntry] = self._store.load_all()
        self._tombstones: OrderedDict[str, datetime] = OrderedDict()
        self._tombstone_window = tombstone_window
        if self._entries:
            logger.info("registry_loaded", entries=len(self._entries))

    # ── Desired state ────────────────────────────────────────────

    def upsert_desired(self, event: SignalEvent) -> DesiredEnvironment:
        """Apply a lifecycle event to the desired state.

        Raises:
            StaleEvent: If the event does not advance the desired state.
        """
        cid = event.canary_id
        with self._lock:
            entry = self._entries.get(cid, RegistryEntry())
            new = self._next_desired(entry, event)
            self._put(cid, RegistryEntry(desired=new, applied=entry.applied))
            self._tombstones.pop(cid, None)
        logger.info(
            "desired_updated",
            canary_id=cid,
            revision=new.revision,
            state=new.state.value,
        )
        return new

    def _next_desired(self, entry: RegistryEntry, event: SignalEvent) -> DesiredEnvironment:
        current = entry.desired
        stale = StaleEvent(f"{event.state.value} event does not advance {event.canary_id}").with_context(
            canary_id=event.canary_id, revision=event.revision
        )

        if current is None:
            tombstone = self._tombstones.get(event.canary_id)
            if tombstone is not None and event.requested_at <= tombstone:
                raise stale.with_context(reason="pruned")
            if event.state == LifecycleState.CLOSED:
                has_resources = entry.applied is not None and entry.applied.state != ControllerState.ABSENT
                if not has_resources:
                    raise stale.with_context(reason="unknown")
                return DesiredEnvironment(event.canary_id, event.revision, event.requested_at, LifecycleState.CLOSED)
            return DesiredEnvironment(event.canary_id, event.revision, event.requested_at, LifecycleState.OPEN)

        if current.closed:
            if event.state == LifecycleState.OPEN and event.requested_at > current.requested_at:
                return DesiredEnvironment(event.canary_id, event.revision, event.requested_at, LifecycleState.OPEN)
            raise stale.with_context(reason="closed")

        if event.state == LifecycleState.CLOSED:
            return DesiredEnvironment(
                event.canary_id,
                event.revision,
                max(event.requested_at, current.requested_at),
                LifecycleState.CLOSED,
            )

        if event.revision == current.revision:
            raise stale.with_context(reason="duplicate")
        if event.requested_at < current.requested_at:
            raise stale.with_context(reason="older")
        return DesiredEnvironment(event.canary_id, event.revision, event.requested_at, LifecycleState.UPDATED)

    def get_desired(self, canary_id: str) -> DesiredEnvironment | None:
        entry = self._entries.get(canary_id)
        return entry.desired if entry else None

    # ── Applied state (controller only) ──────────────────────────

    def get_applied(self, canary_id: str) -> AppliedEnvironment | None:
        entry = self._entries.get(canary_id)
        return entry.applied if entry else None

    def record_applied(self, canary_id: str, applied: AppliedEnvironment) -> None:
        """Store the controller's view of *canary_id*.

        Once a closed environment is recorded Absent the whole entry is
        removed.
        """
        with self._lock:
            entry = self._entries.get(canary_id, RegistryEntry())
            desired = entry.desired
            if applied.state == ControllerState.ABSENT and (desired is None or desired.closed):
                self._entries.pop(canary_id, None)
                self._store.delete(canary_id)
                if desired is not None:
                    self._tombstones[canary_id] = desired.requested_at
                    while len(self._tombstones) > self._tombstone_window:
                        self._tombstones.popitem(last=False)
                removed = True
            else:
                self._put(canary_id, RegistryEntry(desired=desired, applied=applied))
                removed = False
        if removed:
            logger.info("environment_removed", canary_id=canary_id)

    # ── Cross-id reads ───────────────────────────────────────────

    def get(self, canary_id: str) -> RegistryEntry | None:
        return self._entries.get(canary_id)

    def list_active_ids(self) -> list[str]:
        """Every id with an entry, i.e. not yet fully pruned."""
        return sorted(self.snapshot())

    def snapshot(self) -> dict[str, RegistryEntry]:
        """Consistent point-in-time copy of all entries."""
        with self._lock:
            return dict(self._entries)

    def applied_snapshot(self) -> list[AppliedEnvironment]:
        return [e.applied for e in self.snapshot().values() if e.applied is not None]

    def __len__(self) -> int:
        return len(self._entries)

    def _put(self, canary_id: str, entry: RegistryEntry) -> None:
        self._entries[canary_id] = entry
        self._store.save(canary_id, entry)
